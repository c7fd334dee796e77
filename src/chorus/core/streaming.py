from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .errors import InvalidInput, ProviderError, ProviderUnavailable
from .models import ProviderSelection
from .ports import ProviderAdapter, WireMessage

logger = logging.getLogger(__name__)

DeltaCallback = Callable[[str, str], None]  # (delta, running content)


class StreamState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL = (StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED)


@dataclass
class StreamOutcome:
    state: StreamState
    content: str
    error: Optional[ProviderError] = None


class StreamingSession:
    """
    Lifecycle of one in-flight generation:

        idle -> requested -> streaming -> completed | cancelled | failed

    Deltas are accumulated here and republished as (delta, running content).
    After cancel() no further delta is accepted, so the frozen content is
    exactly what had been delivered when the user stopped.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        on_delta: Optional[DeltaCallback] = None,
        on_streaming: Optional[Callable[[], None]] = None,
        stream: bool = True,
        token: Optional[CancellationToken] = None,
    ):
        self.adapter = adapter
        self.on_delta = on_delta
        self.on_streaming = on_streaming
        self.stream = stream
        self.state = StreamState.IDLE
        self.token = token or CancellationToken()
        self._parts: List[str] = []
        self._task: Optional["asyncio.Task[StreamOutcome]"] = None

    @property
    def content(self) -> str:
        return "".join(self._parts)

    @property
    def active(self) -> bool:
        return self.state in (StreamState.REQUESTED, StreamState.STREAMING)

    def start(self, selection: ProviderSelection, messages: List[WireMessage]) -> "asyncio.Task[StreamOutcome]":
        if self.state is not StreamState.IDLE:
            raise InvalidInput(f"Streaming session already {self.state.value}")
        self.state = StreamState.REQUESTED
        self._task = asyncio.ensure_future(self._run(selection, list(messages)))
        return self._task

    def cancel(self, handle: Optional["asyncio.Task[StreamOutcome]"] = None) -> None:
        if handle is not None and handle is not self._task:
            return
        if self.state in TERMINAL:
            return
        self.token.cancel()

    async def wait(self) -> StreamOutcome:
        if self._task is None:
            raise InvalidInput("Streaming session was never started")
        return await self._task

    def _accept(self, delta: str) -> None:
        if self.token.cancelled or not delta:
            return
        if self.state is StreamState.REQUESTED:
            self.state = StreamState.STREAMING
            if self.on_streaming:
                self.on_streaming()
        self._parts.append(delta)
        if self.on_delta:
            self.on_delta(delta, self.content)

    async def _run(self, selection: ProviderSelection, messages: List[WireMessage]) -> StreamOutcome:
        on_token = self._accept if self.stream else None
        try:
            # Guarded twice: the adapter observes the token itself, and this
            # outer guard unblocks us even if it doesn't.
            final = await self.token.guard(
                self.adapter.send_chat(selection.model_id, messages, self.token, on_token=on_token)
            )
        except ProviderError as e:
            return self._fail(selection, e)
        except Exception as e:
            return self._fail(selection, ProviderUnavailable(str(e) or e.__class__.__name__))

        if self.token.cancelled:
            self.state = StreamState.CANCELLED
            logger.info("Generation on %s/%s cancelled with %d chars",
                        selection.provider_id, selection.model_id, len(self.content))
            return StreamOutcome(self.state, self.content)

        if not self.stream and final:
            self._accept(final)
        self.state = StreamState.COMPLETED
        return StreamOutcome(self.state, self.content)

    def _fail(self, selection: ProviderSelection, error: ProviderError) -> StreamOutcome:
        if self.token.cancelled:
            self.state = StreamState.CANCELLED
            return StreamOutcome(self.state, self.content)
        self.state = StreamState.FAILED
        logger.error("Generation on %s/%s failed: %s", selection.provider_id, selection.model_id, error)
        return StreamOutcome(self.state, self.content, error)
