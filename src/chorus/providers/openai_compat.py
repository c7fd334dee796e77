# src/chorus/providers/openai_compat.py
from __future__ import annotations
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from chorus.core.cancellation import CancellationToken
from chorus.core.errors import (
    ProviderHTTPError,
    ProviderStreamParseError,
    ProviderUnavailable,
    SearchUnavailable,
)
from chorus.core.models import ModelInfo, ProviderInfo
from chorus.core.ports import SearchClient, TokenCallback, WireMessage
from chorus.providers.sse import SSEParser

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
        msg = (data.get("error") or {}).get("message")
        if msg:
            return str(msg)
    except Exception:
        pass
    return f"HTTP error! status: {response.status_code}"


def decode_delta(payload: str) -> Tuple[str, Optional[str]]:
    """
    Pull the incremental text and finish reason out of one chat-completion
    chunk. Raises ProviderStreamParseError if the payload is not JSON or
    does not have the chat-completion chunk shape.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProviderStreamParseError(f"Undecodable stream event: {payload[:80]!r}") from e
    try:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            return "", None
        choice = choices[0] or {}
        delta = choice.get("delta") or {}
        content = delta.get("content") or ""
        finish_reason = choice.get("finish_reason")
    except (TypeError, AttributeError, IndexError, KeyError) as e:
        raise ProviderStreamParseError(f"Malformed stream event: {payload[:80]!r}") from e
    if not isinstance(content, str):
        raise ProviderStreamParseError(f"Non-text delta content: {payload[:80]!r}")
    return content, finish_reason


class OpenAICompatibleAdapter:
    """
    Base for vendors that speak OpenAI-style chat completions over HTTP:
    - GET  /models            -> vendor catalog, normalised by `_parse_models`
    - POST /chat/completions  -> one JSON document, or `data:` events ending in [DONE]
    Vendor subclasses set `catalog`, `base_url`, `default_params` and override
    the catalog parser. Transport and HTTP failures leave as neutral provider errors.
    """

    catalog: ProviderInfo = ProviderInfo(id="", display_name="", default_model=None)
    base_url: str = ""
    default_params: Dict[str, Any] = {}
    stop_on_finish_reason: bool = False

    def __init__(
        self,
        api_key: Optional[str],
        *,
        search: Optional[SearchClient] = None,
        params: Optional[Dict[str, Any]] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.search = search
        self.params = {**self.default_params, **(params or {})}
        if base_url:
            self.base_url = base_url
        self.timeout = timeout
        self._client = client

    @property
    def provider_id(self) -> str:
        return self.catalog.id

    @classmethod
    def create(cls, *, provider_cfg: Dict[str, Any], secrets, search: Optional[SearchClient] = None):
        provider_cfg = provider_cfg or {}
        return cls(
            api_key=secrets.secret(cls.catalog.id, "api_key"),
            search=search,
            params=provider_cfg.get("params") or {},
            base_url=provider_cfg.get("base_url"),
            timeout=provider_cfg.get("timeout"),
        )

    # ----- transport -----

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Reads are unbounded: a slow stream is only ended by the user.
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(None, connect=self.timeout or 10.0),
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable(f"{self.catalog.display_name} API key is not configured")

    # ----- catalog -----

    def _parse_models(self, data: Any) -> List[ModelInfo]:
        return [
            ModelInfo(id=m["id"], display_name=m.get("name") or m["id"])
            for m in (data.get("data") or [])
        ]

    async def list_models(self) -> List[ModelInfo]:
        self._require_key()
        try:
            response = await self.client.get("/models", headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{self.provider_id} catalog unreachable: {e}") from e
        if not response.is_success:
            raise ProviderUnavailable(f"{self.provider_id} catalog: {_error_message(response)}")
        try:
            return self._parse_models(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderUnavailable(f"{self.provider_id} catalog malformed: {e}") from e

    # ----- chat -----

    def _build_body(self, model: str, messages: List[WireMessage], *, stream: bool) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": list(messages),
            "stream": stream,
            **self.params,
        }

    def _interpret(self, payloads: List[str]) -> Tuple[List[str], bool]:
        deltas: List[str] = []
        for payload in payloads:
            try:
                delta, finish_reason = decode_delta(payload)
            except ProviderStreamParseError as e:
                logger.warning("%s: skipping stream event: %s", self.provider_id, e)
                continue
            if delta:
                deltas.append(delta)
            if self.stop_on_finish_reason and finish_reason == "stop":
                return deltas, True
        return deltas, False

    async def stream_chat(
        self, model: str, messages: List[WireMessage], token: CancellationToken
    ) -> AsyncIterator[str]:
        self._require_key()
        body = self._build_body(model, messages, stream=True)
        try:
            async with self.client.stream(
                "POST", "/chat/completions", json=body, headers=self._headers()
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise ProviderHTTPError(response.status_code, _error_message(response))

                parser = SSEParser()
                async for chunk in response.aiter_bytes():
                    if token.cancelled:
                        return
                    deltas, finished = self._interpret(parser.feed(chunk))
                    for delta in deltas:
                        yield delta
                    if finished or parser.done:
                        return
                # Body ended without the sentinel: keep what arrived.
                deltas, _ = self._interpret(parser.flush())
                for delta in deltas:
                    yield delta
                logger.debug("%s: stream ended without sentinel", self.provider_id)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{self.provider_id} request failed: {e}") from e

    async def _complete(self, model: str, messages: List[WireMessage]) -> str:
        body = self._build_body(model, messages, stream=False)
        try:
            response = await self.client.post("/chat/completions", json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"{self.provider_id} request failed: {e}") from e
        if not response.is_success:
            raise ProviderHTTPError(response.status_code, _error_message(response))
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderStreamParseError("Invalid response structure from API") from e
        return (content or "").strip()

    async def send_chat(
        self,
        model: str,
        messages: List[WireMessage],
        token: CancellationToken,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        self._require_key()
        if on_token is None:
            return (await token.guard(self._complete(model, messages))) or ""

        parts: List[str] = []

        async def consume() -> None:
            stream = self.stream_chat(model, messages, token)
            try:
                async for delta in stream:
                    parts.append(delta)
                    on_token(delta)
            finally:
                await stream.aclose()

        await token.guard(consume())
        if token.cancelled:
            logger.info("%s: generation cancelled after %d deltas", self.provider_id, len(parts))
        return "".join(parts)

    async def search_web(self, query: str) -> str:
        if self.search is None:
            raise SearchUnavailable("No search client configured")
        return await self.search.search(query)

