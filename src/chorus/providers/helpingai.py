# src/chorus/providers/helpingai.py
from __future__ import annotations
from typing import Any, List

from chorus.core.models import ModelInfo, ProviderInfo
from chorus.providers.openai_compat import OpenAICompatibleAdapter
from chorus.providers.registry import ProviderRegistry


@ProviderRegistry.register("helpingai")
class HelpingAIAdapter(OpenAICompatibleAdapter):
    """
    The catalog endpoint answers with a bare list of model names, and the
    stream may end on finish_reason == "stop" before any [DONE] arrives.
    """
    catalog = ProviderInfo(
        id="helpingai",
        display_name="Indian AI",
        default_model="HelpingAI2.5-10B",
        models=[ModelInfo("HelpingAI2.5-10B", "HelpingAI2.5-10B", "Indian AI language model")],
    )
    base_url = "https://api.helpingai.co/v1"
    default_params = {"max_tokens": 7000, "temperature": 0.4}
    stop_on_finish_reason = True

    def _parse_models(self, data: Any) -> List[ModelInfo]:
        return [
            ModelInfo(id=str(name), display_name=str(name), description="Indian AI Language Model")
            for name in data
        ]
