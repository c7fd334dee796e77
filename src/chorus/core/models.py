from __future__ import annotations
import datetime as dt
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from .errors import InvalidIdentifier

Role = Literal["system", "user", "assistant"]

TITLE_LIMIT = 30

_UUID4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def validate_id(value: Optional[str], what: str = "session") -> str:
    """Reject anything not shaped like a version-4 UUID before it reaches a store."""
    if not value or not _UUID4.match(value):
        raise InvalidIdentifier(f"Invalid {what} ID: {value!r}")
    return value


def short_title(text: str, limit: int = TITLE_LIMIT) -> str:
    """First `limit` characters, with an ellipsis when the text was longer."""
    return text[:limit] + ("..." if len(text) > limit else "")


@dataclass
class Message:
    """
    One transcript entry. `content` is only rewritten while the entry is the
    in-progress assistant reply; `persisted` flips once the store accepted it.
    """
    role: Role
    content: str
    id: str = field(default_factory=new_id)
    created_at: dt.datetime = field(default_factory=utcnow)
    persisted: bool = False
    local_only: bool = False  # notifications that never go to the store

    def as_wire(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatSession:
    id: str
    title: str
    pinned: bool = False
    created_at: dt.datetime = field(default_factory=utcnow)
    updated_at: dt.datetime = field(default_factory=utcnow)
    user_id: Optional[str] = None


@dataclass(frozen=True)
class ModelInfo:
    id: str
    display_name: str
    description: str = ""
    context_length: int = 4096


@dataclass(frozen=True)
class ProviderInfo:
    """Static catalog entry: instant UI defaults and the fallback model list."""
    id: str
    display_name: str
    default_model: Optional[str]
    models: List[ModelInfo] = field(default_factory=list)


@dataclass(frozen=True)
class ProviderSelection:
    provider_id: str
    model_id: str


class GenerationState(str, Enum):
    READY = "ready"
    SUBMITTED = "submitted"
    STREAMING = "streaming"
    ERROR = "error"


@dataclass(frozen=True)
class AnalysisContext:
    vision_analysis: Optional[str] = None
    document_analysis: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.vision_analysis or self.document_analysis)


@dataclass(frozen=True)
class DocumentFile:
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ExtractedDocument:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    vision_analysis: Optional[str] = None
    document_analysis: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    level: Literal["info", "error"]
    title: str
    message: str
