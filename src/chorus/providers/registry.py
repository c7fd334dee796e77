from __future__ import annotations
import logging
from typing import Callable, Dict, Iterable, List, Optional, Type
from importlib import import_module

from chorus.core.errors import InvalidInput, ProviderError
from chorus.core.models import ModelInfo, ProviderInfo
from chorus.core.ports import ProviderAdapter

logger = logging.getLogger(__name__)

# Last resort when a provider declares neither a default nor any model.
GLOBAL_FALLBACK_MODEL = "qwen/qwen-vl-plus:free"

BUILTIN_MODULES = (
    "chorus.providers.groq",
    "chorus.providers.helpingai",
    "chorus.providers.openrouter",
    "chorus.providers.echo",
)


class ProviderRegistry:
    """
    Two layers:
    - class level: adapter classes register themselves by provider id (@register)
    - instance level: the static catalog plus one live adapter per provider,
      with fallback to the static model list when a live fetch fails
    """

    _classes: Dict[str, Type] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[Type], Type]:
        name = name.lower()
        def deco(klass: Type) -> Type:
            cls._classes[name] = klass
            return klass
        return deco

    @classmethod
    def get(cls, name: str) -> Type:
        key = name.lower()
        if key not in cls._classes:
            raise KeyError(f"Provider '{name}' not registered")
        return cls._classes[key]

    @classmethod
    def ensure_imports(cls) -> None:
        """
        Import built-in adapters so their @register decorators run.
        Call once at bootstrap before get().
        """
        for module in BUILTIN_MODULES:
            import_module(module)

    @classmethod
    def registered(cls) -> List[str]:
        return list(cls._classes)

    # ----- instance: catalog + adapters -----

    def __init__(
        self,
        adapters: Dict[str, ProviderAdapter],
        catalog: Optional[Iterable[ProviderInfo]] = None,
        fallback_model: str = GLOBAL_FALLBACK_MODEL,
    ):
        self._adapters = {k.lower(): v for k, v in adapters.items()}
        if catalog is None:
            catalog = [a.catalog for a in self._adapters.values()]
        self._catalog: Dict[str, ProviderInfo] = {p.id.lower(): p for p in catalog}
        self.fallback_model = fallback_model

    def providers(self) -> List[ProviderInfo]:
        return list(self._catalog.values())

    def __contains__(self, provider_id: str) -> bool:
        return provider_id.lower() in self._catalog

    def info(self, provider_id: str) -> ProviderInfo:
        try:
            return self._catalog[provider_id.lower()]
        except KeyError:
            raise InvalidInput(f"Unknown provider '{provider_id}'") from None

    def adapter(self, provider_id: str) -> ProviderAdapter:
        try:
            return self._adapters[provider_id.lower()]
        except KeyError:
            raise InvalidInput(f"Provider '{provider_id}' has no adapter") from None

    def static_models(self, provider_id: str) -> List[ModelInfo]:
        info = self._catalog.get(provider_id.lower())
        return list(info.models) if info else []

    def resolve_default_model(self, provider_id: str) -> str:
        """Declared default, else the first static model, else the global fallback."""
        info = self._catalog.get(provider_id.lower())
        if info is not None:
            if info.default_model:
                return info.default_model
            if info.models:
                return info.models[0].id
        return self.fallback_model

    async def fetch_models(self, provider_id: str) -> List[ModelInfo]:
        """Live catalog, or the static list when the vendor can't be reached."""
        static = self.static_models(provider_id)
        try:
            models = await self.adapter(provider_id).list_models()
        except ProviderError as e:
            logger.warning("Error fetching models for %s, using static list: %s", provider_id, e)
            return static
        if not models:
            logger.warning("Provider %s returned an empty catalog, using static list", provider_id)
            return static
        return models

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            close = getattr(adapter, "aclose", None)
            if close is not None:
                await close()
