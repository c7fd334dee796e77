from __future__ import annotations
import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from chorus.core.cancellation import CancellationToken
from chorus.core.errors import SearchUnavailable
from chorus.core.models import ModelInfo, ProviderInfo
from chorus.core.ports import SearchClient, TokenCallback, WireMessage
from chorus.providers.registry import ProviderRegistry

_LOREM_50 = (
    "Lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor "
    "incididunt ut labore et dolore magna aliqua Curabitur non nulla sit amet nisl "
    "tempor convallis quis ac lectus Phasellus viverra nulla ut metus varius laoreet "
    "Quisque rutrum Aenean imperdiet Etiam ultricies nisi vel augue Curabitur ullamcorper ultricies nisi"
).split()


@ProviderRegistry.register("echo")
class EchoAdapter:
    """
    Offline stub that returns a fixed 50-word lorem ipsum.
    Streaming yields one word at a time with a small delay to simulate tokens.
    """
    catalog = ProviderInfo(
        id="echo",
        display_name="Echo (offline)",
        default_model="echo-lorem",
        models=[ModelInfo("echo-lorem", "Echo lorem", "Echo (offline) language model")],
    )

    def __init__(self, token_delay: float = 0.125, words: Optional[List[str]] = None,
                 search: Optional[SearchClient] = None):
        self.token_delay = float(token_delay)
        self.words = list(words) if words is not None else list(_LOREM_50)
        self.search = search

    @property
    def provider_id(self) -> str:
        return self.catalog.id

    @classmethod
    def create(cls, *, provider_cfg: Dict[str, Any], secrets=None, search: Optional[SearchClient] = None):
        provider_cfg = provider_cfg or {}
        return cls(token_delay=provider_cfg.get("token_delay", 0.125), search=search)

    async def list_models(self) -> List[ModelInfo]:
        return list(self.catalog.models)

    async def stream_chat(
        self, model: str, messages: List[WireMessage], token: CancellationToken
    ) -> AsyncIterator[str]:
        last_idx = len(self.words) - 1
        for i, w in enumerate(self.words):
            if token.cancelled:
                return
            yield w + ("" if i == last_idx else " ")
            await asyncio.sleep(self.token_delay)

    async def send_chat(
        self,
        model: str,
        messages: List[WireMessage],
        token: CancellationToken,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        if on_token is None:
            return " ".join(self.words)
        parts: List[str] = []

        async def consume() -> None:
            async for piece in self.stream_chat(model, messages, token):
                parts.append(piece)
                on_token(piece)

        await token.guard(consume())
        return "".join(parts)

    async def search_web(self, query: str) -> str:
        if self.search is None:
            raise SearchUnavailable("No search client configured")
        return await self.search.search(query)

    async def aclose(self) -> None:
        return None
