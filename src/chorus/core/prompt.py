from __future__ import annotations
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .context import ContextWindowManager
from .models import AnalysisContext, Message
from .ports import WireMessage

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant with real-time search capabilities and document "
    "analysis abilities. When providing information, please be clear and accurate."
)

ANALYSIS_HEADER = "Analysis Results:\n\n"
ANALYSIS_FOOTER = "\n\nPlease consider this analysis when responding."
SEARCH_TEMPLATE = (
    "Additional real-time search information to consider:\n\n{results}\n\n"
    "Combine this information with any relevant document content in your response."
)

HistoryItem = Union[Message, WireMessage]


def load_system_prompt(path: Optional[Path] = None) -> str:
    prompt_path = path or Path(__file__).resolve().parents[1] / "prompts" / "system.txt"
    if prompt_path.exists():
        text = prompt_path.read_text(encoding="utf-8").strip()
        if text:
            return text
    return DEFAULT_SYSTEM_PROMPT


def analysis_message(ctx: Optional[AnalysisContext]) -> Optional[WireMessage]:
    if ctx is None or ctx.is_empty():
        return None
    body = ANALYSIS_HEADER
    if ctx.vision_analysis:
        body += f"Vision Analysis:\n{ctx.vision_analysis}\n\n"
    if ctx.document_analysis:
        body += f"Document Analysis:\n{ctx.document_analysis}"
    return {"role": "system", "content": body + ANALYSIS_FOOTER}


def search_message(results: Optional[str]) -> Optional[WireMessage]:
    if not results:
        return None
    return {"role": "system", "content": SEARCH_TEMPLATE.format(results=results)}


def _as_wire(item: HistoryItem) -> WireMessage:
    if isinstance(item, Message):
        return item.as_wire()
    return {"role": str(item["role"]), "content": str(item["content"])}


class PromptAssembler:
    """
    Builds the ordered request for one turn:
      system prompt, [analysis context], [search context], history, new user message.
    Pure: reads its inputs, never mutates them, does no I/O.
    """

    def __init__(self, system_prompt: str = DEFAULT_SYSTEM_PROMPT,
                 window: Optional[ContextWindowManager] = None):
        self.system_prompt = system_prompt
        self.window = window

    def assemble(
        self,
        system_prompt: Optional[str],
        analysis: Optional[AnalysisContext],
        web_search_result: Optional[str],
        history: Iterable[HistoryItem],
        new_user_message: Optional[str],
    ) -> List[WireMessage]:
        preamble: List[WireMessage] = [{"role": "system", "content": system_prompt or self.system_prompt}]
        for extra in (analysis_message(analysis), search_message(web_search_result)):
            if extra is not None:
                preamble.append(extra)

        # Stray system entries in the history would double up the system prompt.
        prior = [w for w in map(_as_wire, history) if w["role"] != "system"]
        new = {"role": "user", "content": new_user_message} if new_user_message is not None else None

        if self.window is not None:
            prior = self.window.trim(preamble, prior, new)
        return preamble + prior + ([new] if new else [])
