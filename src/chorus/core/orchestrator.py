from __future__ import annotations
import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from .cancellation import CancellationToken
from .errors import ChorusError, DocumentExtractionError, InvalidInput, ProviderError, SearchUnavailable
from .models import (
    AnalysisContext,
    DocumentFile,
    ExtractedDocument,
    GenerationState,
    Message,
    ModelInfo,
    Notification,
    ProviderSelection,
    short_title,
    validate_id,
)
from .ports import ChatRepository, DocumentExtractor
from .prompt import PromptAssembler
from .streaming import StreamingSession, StreamOutcome, StreamState

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openrouter"
DEFAULT_TITLE = "New Chat"
DOCUMENT_READY_TEXT = "Document processed. You can now ask questions about the document."

UpdateListener = Callable[[Message], None]
NotifyListener = Callable[[Notification], None]


class ChatOrchestrator:
    """
    One conversation: transcript, provider/model selection, generation state,
    analysis context and (once the first message is sent) the persisted
    session identity. At most one generation runs at a time.

    The transcript is optimistic: entries are shown first and persisted after;
    `Message.persisted` records which ones the store has accepted.
    """

    def __init__(
        self,
        registry,
        repository: ChatRepository,
        *,
        assembler: Optional[PromptAssembler] = None,
        documents: Optional[DocumentExtractor] = None,
        session_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        user_id: Optional[str] = None,
        stream: bool = True,
    ):
        self.registry = registry
        self.repository = repository
        self.assembler = assembler or PromptAssembler()
        self.documents = documents
        self.session_id = validate_id(session_id) if session_id is not None else None
        self.user_id = user_id
        self.stream = stream

        self.title = DEFAULT_TITLE
        self.transcript: List[Message] = []
        self.state = GenerationState.READY
        self.web_search = False
        self.analysis = AnalysisContext()
        self.notifications: List[Notification] = []

        provider = provider_id or (DEFAULT_PROVIDER if DEFAULT_PROVIDER in registry else registry.providers()[0].id)
        self.selection = ProviderSelection(provider, registry.resolve_default_model(provider))
        self._known_models: Dict[str, List[str]] = {}

        self._turn = 0
        self._pending: Set[CancellationToken] = set()
        self._turn_lock = asyncio.Lock()
        self._analysis_lock = asyncio.Lock()
        self._listeners: List[UpdateListener] = []
        self._notify_listeners: List[NotifyListener] = []

    # ----- observers -----

    def add_listener(self, fn: UpdateListener) -> None:
        self._listeners.append(fn)

    def remove_listener(self, fn: UpdateListener) -> None:
        if fn in self._listeners:
            self._listeners.remove(fn)

    def add_notify_listener(self, fn: NotifyListener) -> None:
        self._notify_listeners.append(fn)

    def _publish(self, message: Message) -> None:
        for fn in list(self._listeners):
            fn(message)

    def _notify(self, level: str, title: str, message: str) -> None:
        note = Notification(level=level, title=title, message=message)
        self.notifications.append(note)
        for fn in list(self._notify_listeners):
            fn(note)

    def _append(self, message: Message) -> Message:
        self.transcript.append(message)
        self._publish(message)
        return message

    # ----- selection -----

    def known_models(self, provider_id: Optional[str] = None) -> List[str]:
        pid = provider_id or self.selection.provider_id
        if pid in self._known_models:
            return list(self._known_models[pid])
        return [m.id for m in self.registry.static_models(pid)]

    def _default_for(self, provider_id: str) -> str:
        default = self.registry.resolve_default_model(provider_id)
        allowed = self.known_models(provider_id)
        if not allowed or default in allowed:
            return default
        return allowed[0]

    def select_provider(self, provider_id: str) -> ProviderSelection:
        """Switching provider always drops the old model for the new provider's default."""
        info = self.registry.info(provider_id)
        self.selection = ProviderSelection(info.id, self._default_for(info.id))
        logger.info("Selected provider %s (model %s)", info.id, self.selection.model_id)
        return self.selection

    def select_model(self, model_id: str) -> ProviderSelection:
        pid = self.selection.provider_id
        if model_id not in self.known_models(pid):
            raise InvalidInput(f"Model '{model_id}' is not offered by provider '{pid}'")
        self.selection = ProviderSelection(pid, model_id)
        return self.selection

    async def refresh_models(self) -> List[ModelInfo]:
        pid = self.selection.provider_id
        models = await self.registry.fetch_models(pid)
        self._known_models[pid] = [m.id for m in models]
        if self.selection.provider_id == pid and self.selection.model_id not in self._known_models[pid]:
            self.selection = ProviderSelection(pid, self._default_for(pid))
        return models

    def _ensure_valid_selection(self) -> ProviderSelection:
        pid, mid = self.selection.provider_id, self.selection.model_id
        if mid not in self.known_models(pid):
            corrected = self._default_for(pid)
            logger.warning("Model %s does not belong to %s; using %s", mid, pid, corrected)
            self.selection = ProviderSelection(pid, corrected)
        return self.selection

    def set_web_search(self, enabled: bool) -> None:
        self.web_search = bool(enabled)

    # ----- session binding -----

    async def load(self) -> None:
        """Replace the transcript with the persisted messages of the bound session."""
        if self.session_id is None:
            return
        messages = await self.repository.list_messages(self.session_id)
        for m in messages:
            m.persisted = True
        self.transcript = list(messages)
        last_user = next((m for m in reversed(self.transcript) if m.role == "user"), None)
        if last_user is not None:
            self.title = short_title(last_user.content)
        else:
            self.title = (await self.repository.get_session(self.session_id)).title

    def reset(self) -> None:
        """Back to a draft conversation."""
        if self._pending:
            self.stop_generation()
        self.session_id = None
        self.title = DEFAULT_TITLE
        self.transcript = []
        self.analysis = AnalysisContext()
        self.state = GenerationState.READY

    async def _create_session(self, first_text: str) -> None:
        try:
            session = await self.repository.create_session(short_title(first_text), user_id=self.user_id)
        except ChorusError as e:
            logger.error("Error creating chat session: %s", e)
            self._notify("error", "Error", "Failed to create chat session")
            return
        self.session_id = session.id
        self.title = session.title

    async def _persist(self, message: Message, session_id: Optional[str]) -> None:
        if message.persisted or message.local_only or session_id is None:
            return
        try:
            await self.repository.append_message(session_id, message.role, message.content)
        except ChorusError as e:
            logger.error("Error adding %s message to %s: %s", message.role, session_id, e)
            self._notify("error", "Error", "Failed to save message")
            return
        message.persisted = True

    # ----- turn lifecycle -----

    async def _search(self, query: str) -> Optional[str]:
        try:
            return await self.registry.adapter(self.selection.provider_id).search_web(query) or None
        except SearchUnavailable as e:
            logger.warning("Web search unavailable: %s", e)
            return None

    async def send_user_message(self, text: str, use_web_search: Optional[bool] = None) -> Optional[Message]:
        """
        Run one turn. Returns the finalized assistant message, or None when the
        turn was stopped before any text arrived or the provider failed first.

        Turns run one at a time: a turn sent while a stopped one is still
        persisting waits for it. The turn's token exists from SUBMITTED on,
        so a stop during session creation, search or that wait is honoured.
        """
        if not text or not text.strip():
            raise InvalidInput("Please enter a message")
        if self.state in (GenerationState.SUBMITTED, GenerationState.STREAMING):
            raise InvalidInput("A response is still being generated")

        selection = self._ensure_valid_selection()
        self.state = GenerationState.SUBMITTED
        self._turn += 1
        turn = self._turn
        token = CancellationToken()
        self._pending.add(token)
        use_web_search = self.web_search if use_web_search is None else use_web_search
        user_msg = self._append(Message(role="user", content=text))

        try:
            async with self._turn_lock:
                return await self._run_turn(turn, token, selection, user_msg, use_web_search)
        finally:
            self._pending.discard(token)

    def _history_before(self, message: Message) -> List[Message]:
        if message not in self.transcript:
            return []
        prior = self.transcript[: self.transcript.index(message)]
        return [m for m in prior if not m.local_only and m.content]

    async def _run_turn(
        self,
        turn: int,
        token: CancellationToken,
        selection: ProviderSelection,
        user_msg: Message,
        use_web_search: bool,
    ) -> Optional[Message]:
        outcome = StreamOutcome(StreamState.CANCELLED, "")
        assistant: Optional[Message] = None
        session_id: Optional[str] = None
        try:
            history = self._history_before(user_msg)
            if self.session_id is None:
                await self._create_session(user_msg.content)
                history = []
            session_id = self.session_id
            await self._persist(user_msg, session_id)

            search_text = None
            if use_web_search and not token.cancelled:
                search_text = await token.guard(self._search(user_msg.content))

            if not token.cancelled:
                messages = self.assembler.assemble(None, self.analysis, search_text, history, user_msg.content)
                assistant = self._append(Message(role="assistant", content=""))
                session = StreamingSession(
                    self.registry.adapter(selection.provider_id),
                    on_delta=lambda _delta, content: self._on_delta(assistant, content),
                    on_streaming=self._on_streaming,
                    stream=self.stream,
                    token=token,
                )
                outcome = await session.start(selection, messages)
            else:
                logger.info("Turn %d stopped before the provider was called", turn)
        except BaseException:
            if turn == self._turn:
                self.state = GenerationState.ERROR
            raise

        try:
            await self._persist(user_msg, session_id)
            if outcome.state is StreamState.FAILED:
                self._notify("error", "Error", "Failed to get a response")
            if not outcome.content:
                if assistant is not None and assistant in self.transcript:
                    self.transcript.remove(assistant)
                return None
            assistant.content = outcome.content
            await self._persist(assistant, session_id)
            return assistant
        finally:
            # A newer turn owns the state once it has started.
            if turn == self._turn:
                if outcome.state is StreamState.FAILED:
                    self.state = GenerationState.ERROR
                else:
                    self.state = GenerationState.READY

    def _on_streaming(self) -> None:
        if self.state is GenerationState.SUBMITTED:
            self.state = GenerationState.STREAMING

    def _on_delta(self, assistant: Message, content: str) -> None:
        assistant.content = content
        self._publish(assistant)

    def stop_generation(self) -> None:
        """
        The user's stop always wins: every submitted or queued turn is
        cancelled and state returns to ready even if cancel fails.
        """
        try:
            for token in list(self._pending):
                token.cancel()
        except Exception as e:
            logger.error("Error stopping generation: %s", e)
            self._notify("error", "Error", "Failed to stop generation")
        finally:
            self.state = GenerationState.READY

    # ----- documents -----

    async def process_document(self, file: DocumentFile, hint: Optional[str] = None) -> Optional[ExtractedDocument]:
        if self.documents is None:
            self._notify("error", "Error", "Document processing is not configured")
            return None
        try:
            result = await self.documents.extract(file, hint)
        except (DocumentExtractionError, ProviderError) as e:
            logger.error("Error processing document %s: %s", file.name, e)
            self._notify("error", "Error", "Failed to process document")
            return None

        async with self._analysis_lock:
            self.analysis = AnalysisContext(
                vision_analysis=result.vision_analysis or self.analysis.vision_analysis,
                document_analysis=result.document_analysis or self.analysis.document_analysis,
            )
        self._append(Message(role="assistant", content=DOCUMENT_READY_TEXT, local_only=True))
        return result

    def clear_analysis(self) -> None:
        self.analysis = AnalysisContext()
