from __future__ import annotations
import datetime as dt
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from chorus.core.errors import PersistenceError, SessionNotFound
from chorus.core.models import ChatSession, Message, Role, new_id, utcnow, validate_id

logger = logging.getLogger(__name__)


def _newest_first(sessions: List[ChatSession]) -> List[ChatSession]:
    return sorted(sessions, key=lambda s: s.updated_at, reverse=True)


class InMemoryChatRepository:
    """Process-local store for tests and throwaway runs."""

    def __init__(self) -> None:
        self._sessions: Dict[str, ChatSession] = {}
        self._messages: Dict[str, List[Message]] = {}

    def _session(self, session_id: str) -> ChatSession:
        validate_id(session_id)
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(f"Session {session_id} not found") from None

    async def create_session(self, title: str, user_id: Optional[str] = None) -> ChatSession:
        if user_id is not None:
            validate_id(user_id, "user")
        session = ChatSession(id=new_id(), title=title, user_id=user_id)
        self._sessions[session.id] = session
        self._messages[session.id] = []
        return session

    async def list_sessions(self, user_id: Optional[str] = None) -> List[ChatSession]:
        if user_id is not None:
            validate_id(user_id, "user")
        return _newest_first([s for s in self._sessions.values() if user_id is None or s.user_id == user_id])

    async def get_session(self, session_id: str) -> ChatSession:
        return self._session(session_id)

    async def update_session_title(self, session_id: str, title: str) -> None:
        session = self._session(session_id)
        session.title = title
        session.updated_at = utcnow()

    async def update_session_pinned(self, session_id: str, pinned: bool) -> None:
        session = self._session(session_id)
        session.pinned = bool(pinned)
        session.updated_at = utcnow()

    async def delete_session(self, session_id: str) -> None:
        self._session(session_id)
        del self._sessions[session_id]
        self._messages.pop(session_id, None)

    async def list_messages(self, session_id: str) -> List[Message]:
        self._session(session_id)
        return sorted(
            (Message(role=m.role, content=m.content, id=m.id, created_at=m.created_at, persisted=True)
             for m in self._messages[session_id]),
            key=lambda m: m.created_at,
        )

    async def append_message(self, session_id: str, role: Role, content: str) -> Message:
        session = self._session(session_id)
        message = Message(role=role, content=content, persisted=True)
        self._messages[session_id].append(message)
        session.updated_at = message.created_at
        return message


class JsonlChatRepository:
    """
    File-backed store:
    - <root>/sessions.json        index of sessions
    - <root>/<session_id>.jsonl   header record, then one message record per line
    """

    def __init__(self, root_dir: Path):
        self._root = Path(root_dir)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create sessions dir {self._root}: {e}") from e
        self._index_path = self._root / "sessions.json"

    # Internal helpers

    def _load_index(self) -> Dict[str, ChatSession]:
        if not self._index_path.exists():
            return {}
        try:
            raw = json.loads(self._index_path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Unreadable session index: {e}") from e
        return {
            sid: ChatSession(
                id=sid,
                title=rec["title"],
                pinned=bool(rec.get("pinned", False)),
                created_at=dt.datetime.fromisoformat(rec["created_at"]),
                updated_at=dt.datetime.fromisoformat(rec["updated_at"]),
                user_id=rec.get("user_id"),
            )
            for sid, rec in raw.items()
        }

    def _save_index(self, sessions: Dict[str, ChatSession]) -> None:
        data = {
            s.id: {
                "title": s.title,
                "pinned": s.pinned,
                "created_at": s.created_at.isoformat(),
                "updated_at": s.updated_at.isoformat(),
                "user_id": s.user_id,
            }
            for s in sessions.values()
        }
        tmp = self._index_path.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._index_path)
        except OSError as e:
            raise PersistenceError(f"Cannot write session index: {e}") from e

    def _log_path(self, session_id: str) -> Path:
        return self._root / f"{session_id}.jsonl"

    def _write_record(self, session_id: str, rec: Dict) -> None:
        try:
            with self._log_path(session_id).open("a", encoding="utf-8") as f:
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")
        except OSError as e:
            raise PersistenceError(f"Cannot write to session {session_id}: {e}") from e

    def _existing(self, sessions: Dict[str, ChatSession], session_id: str) -> ChatSession:
        validate_id(session_id)
        if session_id not in sessions:
            raise SessionNotFound(f"Session {session_id} not found")
        return sessions[session_id]

    # ChatRepository

    async def create_session(self, title: str, user_id: Optional[str] = None) -> ChatSession:
        if user_id is not None:
            validate_id(user_id, "user")
        sessions = self._load_index()
        session = ChatSession(id=new_id(), title=title, user_id=user_id)
        sessions[session.id] = session
        self._write_record(session.id, {
            "type": "header",
            "ts": session.created_at.isoformat(),
            "meta": {"title": title},
        })
        self._save_index(sessions)
        return session

    async def list_sessions(self, user_id: Optional[str] = None) -> List[ChatSession]:
        if user_id is not None:
            validate_id(user_id, "user")
        sessions = self._load_index().values()
        return _newest_first([s for s in sessions if user_id is None or s.user_id == user_id])

    async def get_session(self, session_id: str) -> ChatSession:
        return self._existing(self._load_index(), session_id)

    async def update_session_title(self, session_id: str, title: str) -> None:
        sessions = self._load_index()
        session = self._existing(sessions, session_id)
        session.title = title
        session.updated_at = utcnow()
        self._save_index(sessions)

    async def update_session_pinned(self, session_id: str, pinned: bool) -> None:
        sessions = self._load_index()
        session = self._existing(sessions, session_id)
        session.pinned = bool(pinned)
        session.updated_at = utcnow()
        self._save_index(sessions)

    async def delete_session(self, session_id: str) -> None:
        sessions = self._load_index()
        self._existing(sessions, session_id)
        del sessions[session_id]
        self._save_index(sessions)
        try:
            self._log_path(session_id).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot delete session {session_id}: {e}") from e

    async def list_messages(self, session_id: str) -> List[Message]:
        self._existing(self._load_index(), session_id)
        path = self._log_path(session_id)
        messages: List[Message] = []
        if not path.exists():
            return messages
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except ValueError:
                    logger.warning("Skipping corrupt record in %s", path.name)
                    continue
                if obj.get("type") == "message" and obj.get("role") in ("user", "assistant"):
                    messages.append(Message(
                        role=obj["role"],
                        content=obj.get("content", ""),
                        id=obj.get("id") or new_id(),
                        created_at=dt.datetime.fromisoformat(obj["ts"]),
                        persisted=True,
                    ))
        return sorted(messages, key=lambda m: m.created_at)

    async def append_message(self, session_id: str, role: Role, content: str) -> Message:
        sessions = self._load_index()
        session = self._existing(sessions, session_id)
        message = Message(role=role, content=content, persisted=True)
        self._write_record(session_id, {
            "type": "message",
            "id": message.id,
            "ts": message.created_at.isoformat(),
            "role": role,
            "content": content,
        })
        session.updated_at = message.created_at
        self._save_index(sessions)
        return message
