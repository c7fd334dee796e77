# tests/unit/test_registry.py

from __future__ import annotations
import sys
from pathlib import Path

import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.core.errors import InvalidInput, ProviderUnavailable  # type: ignore
from chorus.core.models import ModelInfo, ProviderInfo  # type: ignore
from chorus.providers.registry import GLOBAL_FALLBACK_MODEL, ProviderRegistry  # type: ignore


class StubAdapter:
    def __init__(self, provider_id, live=None, error=None):
        self.provider_id = provider_id
        self.live = live
        self.error = error
        self.closed = False

    async def list_models(self):
        if self.error:
            raise self.error
        return list(self.live or [])

    async def aclose(self):
        self.closed = True


CATALOG = [
    ProviderInfo("alpha", "Alpha", "a-2", [ModelInfo("a-1", "A1"), ModelInfo("a-2", "A2")]),
    ProviderInfo("beta", "Beta", None, [ModelInfo("b-1", "B1")]),
    ProviderInfo("gamma", "Gamma", None, []),
]


def registry(**adapters):
    return ProviderRegistry(adapters, catalog=CATALOG)


def test_registry_register_and_get(monkeypatch):
    # keep the class-level table clean for other tests
    monkeypatch.setattr(ProviderRegistry, "_classes", dict(ProviderRegistry._classes))

    @ProviderRegistry.register("Dummy")
    class DummyProvider:
        pass

    # Case-insensitive lookup
    assert ProviderRegistry.get("dummy") is DummyProvider
    assert ProviderRegistry.get("DUMMY") is DummyProvider


def test_registry_unknown_raises():
    with pytest.raises(KeyError):
        ProviderRegistry.get("does-not-exist")


def test_builtins_register_on_import():
    ProviderRegistry.ensure_imports()
    for name in ("groq", "helpingai", "openrouter", "echo"):
        assert name in ProviderRegistry.registered()


def test_resolve_default_model_precedence():
    reg = registry()
    assert reg.resolve_default_model("alpha") == "a-2"           # declared default
    assert reg.resolve_default_model("beta") == "b-1"            # first static model
    assert reg.resolve_default_model("gamma") == GLOBAL_FALLBACK_MODEL
    assert reg.resolve_default_model("unknown") == GLOBAL_FALLBACK_MODEL


def test_info_and_adapter_unknown_are_invalid_input():
    reg = registry()
    with pytest.raises(InvalidInput):
        reg.info("nope")
    with pytest.raises(InvalidInput):
        reg.adapter("alpha")  # in catalog, but no adapter wired


@pytest.mark.asyncio
async def test_fetch_models_live_then_fallbacks():
    live = [ModelInfo("a-9", "A9")]
    reg = registry(
        alpha=StubAdapter("alpha", live=live),
        beta=StubAdapter("beta", error=ProviderUnavailable("offline")),
        gamma=StubAdapter("gamma", live=[]),
    )
    assert await reg.fetch_models("alpha") == live
    assert [m.id for m in await reg.fetch_models("beta")] == ["b-1"]   # failure -> static
    assert await reg.fetch_models("gamma") == []                        # empty live -> static (empty)


@pytest.mark.asyncio
async def test_catalog_defaults_to_adapter_catalogs_and_aclose():
    class WithCatalog(StubAdapter):
        catalog = ProviderInfo("delta", "Delta", "d-1", [ModelInfo("d-1", "D1")])

    adapter = WithCatalog("delta")
    reg = ProviderRegistry({"delta": adapter})
    assert [p.id for p in reg.providers()] == ["delta"]
    assert "DELTA" in reg
    await reg.aclose()
    assert adapter.closed is True
