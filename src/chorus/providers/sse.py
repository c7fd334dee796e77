from __future__ import annotations
import codecs
from typing import List, Optional

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"


class SSEParser:
    """
    Incremental parser for `data: <json>` event streams.

    Network reads can split a record (or a multi-byte character) anywhere, so
    bytes are decoded incrementally and only complete lines are interpreted.
    Feeding a body in one read or in many yields the same payload sequence.
    Lines without the data prefix (comments, `event:`, `id:`, keep-alives) are
    ignored. The sentinel payload ends the stream; anything after it is dropped.
    """

    def __init__(self, sentinel: Optional[str] = DONE_SENTINEL):
        self.sentinel = sentinel
        self.done = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> List[str]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._payloads(lines)

    def flush(self) -> List[str]:
        """Body ended: interpret whatever trailing line never got its newline."""
        if self.done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._payloads([tail]) if tail else []

    def _payloads(self, lines: List[str]) -> List[str]:
        out: List[str] = []
        for raw in lines:
            line = raw.rstrip("\r").strip()
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if not payload:
                continue
            if self.sentinel is not None and payload == self.sentinel:
                self.done = True
                break
            out.append(payload)
        return out
