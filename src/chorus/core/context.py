# src/chorus/core/context.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import tiktoken

from .ports import WireMessage


class TokenCounter:
    """
    Counts tokens for a list of OpenAI-style messages with the cl100k_base
    encoding. Vendor tokenizers differ, so counts are an estimate.
    """
    def __init__(self, encoding: str = "cl100k_base"):
        self._enc = tiktoken.get_encoding(encoding)

    def count_text(self, text: str) -> int:
        return len(self._enc.encode(text or "", disallowed_special=()))

    def count_messages(self, messages: List[WireMessage]) -> int:
        # per-message overhead ~ 4 (role, separators), conservative
        return sum(4 + self.count_text(str(m.get("content", ""))) for m in messages)


@dataclass(frozen=True)
class ContextPolicy:
    """
    max_input_tokens: hard cap for the request messages (pre-response).
    response_reserve_tokens: budget you want to leave for the model to answer.
    always_keep_last_n: always keep this many most-recent history messages.
    """
    max_input_tokens: int
    response_reserve_tokens: int = 1024
    always_keep_last_n: int = 6

    @classmethod
    def from_config(cls, context: Optional[Dict[str, Any]]) -> Optional["ContextPolicy"]:
        if not context:
            return None
        return cls(
            max_input_tokens=int(context["max_input_tokens"]),
            response_reserve_tokens=int(context.get("response_reserve_tokens", 1024)),
            always_keep_last_n=int(context.get("always_keep_last_n", 6)),
        )


class ContextWindowManager:
    """
    Trims the oldest history until preamble + history + new message fits within
    (max_input_tokens - response_reserve_tokens). The preamble (system and
    context messages) and the new user message are never dropped; the last N
    history messages are only dropped as a last resort.
    """
    def __init__(self, policy: ContextPolicy, counter: Optional[TokenCounter] = None):
        self.policy = policy
        self.counter = counter or TokenCounter()

    def trim(
        self,
        preamble: List[WireMessage],
        history: List[WireMessage],
        new_message: Optional[WireMessage] = None,
    ) -> List[WireMessage]:
        fixed_tail = [new_message] if new_message else []
        target = max(1, self.policy.max_input_tokens - max(0, self.policy.response_reserve_tokens))

        def fits(h: List[WireMessage]) -> bool:
            return self.counter.count_messages(preamble + h + fixed_tail) <= target

        if fits(history):
            return list(history)

        keep_tail_n = min(self.policy.always_keep_last_n, len(history))
        head = history[:-keep_tail_n] if keep_tail_n > 0 else list(history)
        tail = history[-keep_tail_n:] if keep_tail_n > 0 else []

        # Oldest first, keeping the protected tail intact
        drop_idx = 0
        while drop_idx < len(head) and not fits(head[drop_idx:] + tail):
            drop_idx += 1
        trimmed = head[drop_idx:] + tail

        # Still over: shorten the tail too
        while trimmed and not fits(trimmed):
            trimmed = trimmed[1:]
        return trimmed
