from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative, one-shot cancellation flag shared by a streaming session and
    the adapter call it drives. Once cancelled it stays cancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, work: Awaitable[T]) -> Optional[T]:
        """
        Run `work` as its own task and return its result, unless the token
        fires first: then the task is cancelled at whatever read it is blocked
        on, awaited until it has unwound, and None is returned.
        Errors raised by `work` propagate.
        """
        task = asyncio.ensure_future(work)
        if self.cancelled:
            task.cancel()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
        try:
            return await task
        except asyncio.CancelledError:
            if not self.cancelled:
                raise
            logger.debug("Work cancelled by token: %s", self.reason)
            return None
