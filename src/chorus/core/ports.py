from __future__ import annotations
from typing import Protocol, AsyncIterator, Callable, List, Dict, Optional

from .cancellation import CancellationToken
from .models import ChatSession, DocumentFile, ExtractedDocument, Message, ModelInfo, Role

WireMessage = Dict[str, str]
TokenCallback = Callable[[str], None]


class ProviderAdapter(Protocol):
    """
    Interface the core uses to talk to any LLM backend.
    'messages' are OpenAI-style: [{'role': 'system'|'user'|'assistant', 'content': '...'}, ...]
    """

    provider_id: str

    async def list_models(self) -> List[ModelInfo]:
        """Live catalog. Raises ProviderUnavailable on any failure."""
        ...

    def stream_chat(
        self, model: str, messages: List[WireMessage], token: CancellationToken
    ) -> AsyncIterator[str]:
        """
        Lazy, finite, non-restartable sequence of text deltas in arrival order.
        Ends quietly when `token` is cancelled.
        """
        ...

    async def send_chat(
        self,
        model: str,
        messages: List[WireMessage],
        token: CancellationToken,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Streams when `on_token` is given, otherwise asks for a single JSON
        document. Returns the concatenated text ('' if cancelled before any delta).
        """
        ...

    async def search_web(self, query: str) -> str:
        """Raises SearchUnavailable."""
        ...


class ChatRepository(Protocol):
    """Durable copy of sessions and finalized messages."""

    async def create_session(self, title: str, user_id: Optional[str] = None) -> ChatSession: ...

    async def list_sessions(self, user_id: Optional[str] = None) -> List[ChatSession]: ...

    async def get_session(self, session_id: str) -> ChatSession: ...

    async def update_session_title(self, session_id: str, title: str) -> None: ...

    async def update_session_pinned(self, session_id: str, pinned: bool) -> None: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def list_messages(self, session_id: str) -> List[Message]: ...

    async def append_message(self, session_id: str, role: Role, content: str) -> Message: ...


class SearchClient(Protocol):
    async def search(self, query: str) -> str: ...


class DocumentExtractor(Protocol):
    async def extract(self, file: DocumentFile, hint: Optional[str] = None) -> ExtractedDocument: ...
