# src/chorus/services/search.py
from __future__ import annotations
import json
import logging
from typing import Optional

import httpx

from chorus.core.errors import SearchUnavailable

logger = logging.getLogger(__name__)


class HttpSearchClient:
    """
    Best-effort web search over a JSON endpoint:
      POST {"query": q}  ->  {"response": "<json string with response.message>"}
    Every failure surfaces as SearchUnavailable; callers carry on without context.
    """

    def __init__(self, url: str, token: Optional[str] = None, *, timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str) -> str:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self.client.post(self.url, json={"query": query}, headers=headers)
        except httpx.HTTPError as e:
            raise SearchUnavailable(f"Search request failed: {e}") from e
        if not response.is_success:
            raise SearchUnavailable(f"Search failed: {response.status_code} {response.reason_phrase}")
        try:
            inner = json.loads(response.json()["response"])
            result = inner["response"]["message"]
        except (ValueError, KeyError, TypeError) as e:
            raise SearchUnavailable(f"Malformed search response: {e}") from e
        if not result:
            raise SearchUnavailable("Search returned no results")
        logger.debug("Search for %r returned %d chars", query, len(result))
        return str(result)
