# src/chorus/providers/openrouter.py
from __future__ import annotations
from typing import Any, Dict, List

from chorus.core.models import ModelInfo, ProviderInfo
from chorus.providers.openai_compat import OpenAICompatibleAdapter
from chorus.providers.registry import ProviderRegistry

APP_REFERER = "https://github.com/chorus-chat/chorus"
APP_TITLE = "Chorus"


@ProviderRegistry.register("openrouter")
class OpenRouterAdapter(OpenAICompatibleAdapter):
    catalog = ProviderInfo(
        id="openrouter",
        display_name="OpenRouter",
        default_model="qwen/qwen-vl-plus:free",
        models=[ModelInfo("qwen/qwen-vl-plus:free", "qwen/qwen-vl-plus:free", "OpenRouter language model")],
    )
    base_url = "https://openrouter.ai/api/v1"
    default_params = {"max_tokens": 4000, "temperature": 0.7, "top_p": 1}

    def _headers(self) -> Dict[str, str]:
        return {
            **super()._headers(),
            "HTTP-Referer": APP_REFERER,
            "X-Title": APP_TITLE,
        }

    def _parse_models(self, data: Any) -> List[ModelInfo]:
        return [
            ModelInfo(
                id=m["id"],
                display_name=m.get("name") or m["id"].split("/")[-1],
                description=m.get("description") or "OpenRouter language model",
                context_length=int(m.get("context_length") or 4096),
            )
            for m in data["data"]
        ]
