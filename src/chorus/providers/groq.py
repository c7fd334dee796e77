# src/chorus/providers/groq.py
from __future__ import annotations
from typing import Any, List

from chorus.core.models import ModelInfo, ProviderInfo
from chorus.providers.openai_compat import OpenAICompatibleAdapter
from chorus.providers.registry import ProviderRegistry

_EXCLUDED = ("whisper", "vision", "guard", "tts")


@ProviderRegistry.register("groq")
class GroqAdapter(OpenAICompatibleAdapter):
    catalog = ProviderInfo(
        id="groq",
        display_name="Groq",
        default_model="llama3-70b-8192",
        models=[
            ModelInfo("llama3-70b-8192", "Llama-3 70B", "Groq language model"),
            ModelInfo("llama3-8b-8192", "Llama-3 8B", "Groq language model"),
            ModelInfo("mixtral-8x7b-32768", "Mixtral 8x7B", "Groq language model"),
        ],
    )
    base_url = "https://api.groq.com/openai/v1"
    default_params = {"max_tokens": 4000, "temperature": 0.7, "top_p": 1}

    def _parse_models(self, data: Any) -> List[ModelInfo]:
        # Audio, guard and vision models can't hold a text chat.
        models = []
        for m in data["data"]:
            if any(k in m["id"] for k in _EXCLUDED):
                continue
            ctx = int(m.get("context_window") or 4096)
            models.append(ModelInfo(
                id=m["id"],
                display_name=" ".join(m["id"].split("-")).upper(),
                description=f"{m.get('owned_by', 'unknown')} language model with {ctx:,} context window",
                context_length=ctx,
            ))
        return models
