from __future__ import annotations
from typing import Optional


class ChorusError(Exception):
    """Base class for every error the chat layer surfaces."""


class InvalidInput(ChorusError):
    """
    Rejected before any side effect: empty message, send while a generation
    is in flight, unknown model, malformed identifier.
    """


class InvalidIdentifier(InvalidInput):
    """Identifier is not shaped like a version-4 UUID."""


class ProviderError(ChorusError):
    """Base class for provider-level failures."""


class ProviderUnavailable(ProviderError):
    """Vendor catalog/endpoint unreachable, or the credential it needs is absent."""


class ProviderHTTPError(ProviderError):
    """
    Non-2xx answer from a vendor. 429 and 5xx are transient (retrying by
    sending again may help); other 4xx mean the request or config is wrong.
    """

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = int(status)
        super().__init__(message or f"HTTP error! status: {self.status}")

    @property
    def transient(self) -> bool:
        return self.status == 429 or 500 <= self.status <= 599


class ProviderStreamParseError(ProviderError):
    """A single stream event could not be decoded. Logged and skipped by adapters."""


class SearchUnavailable(ChorusError):
    """Web search failed; callers treat this as 'no search context'."""


class DocumentExtractionError(ChorusError):
    """No text could be extracted from an uploaded document."""


class PersistenceError(ChorusError):
    """The session/message store rejected or failed a write."""


class SessionNotFound(PersistenceError):
    """No stored session has the given id."""
