# tests/unit/test_echo_provider.py

from __future__ import annotations
import sys
from pathlib import Path

import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.core.cancellation import CancellationToken  # type: ignore
from chorus.core.errors import SearchUnavailable  # type: ignore
from chorus.providers.echo import EchoAdapter  # type: ignore


@pytest.mark.asyncio
async def test_echo_streams_words_and_joins():
    adapter = EchoAdapter(token_delay=0.0, words=["a", "b", "c"])
    got = []
    text = await adapter.send_chat("echo-lorem", [], CancellationToken(), on_token=got.append)
    assert got == ["a ", "b ", "c"]
    assert text == "a b c"
    assert await adapter.send_chat("echo-lorem", [], CancellationToken()) == "a b c"


@pytest.mark.asyncio
async def test_echo_stops_when_token_fires():
    adapter = EchoAdapter(token_delay=0.0, words=["w"] * 10)
    token = CancellationToken()
    got = []

    def on_token(d):
        got.append(d)
        if len(got) == 3:
            token.cancel()

    text = await adapter.send_chat("echo-lorem", [], token, on_token=on_token)
    assert len(got) == 3
    assert text == "w w w "


@pytest.mark.asyncio
async def test_echo_catalog_and_search():
    adapter = EchoAdapter.create(provider_cfg={"token_delay": 0})
    assert [m.id for m in await adapter.list_models()] == ["echo-lorem"]
    assert adapter.provider_id == "echo"
    with pytest.raises(SearchUnavailable):
        await adapter.search_web("q")
