# tests/unit/test_sse_parser.py

from __future__ import annotations
import sys
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.providers.sse import SSEParser  # type: ignore


BODY = (
    ': keep-alive\n'
    'data: {"choices":[{"delta":{"content":"Hé"}}]}\n'
    '\n'
    'event: ping\n'
    'data: {"choices":[{"delta":{"content":"llo"}}]}\r\n'
    'data: [DONE]\n'
    'data: {"choices":[{"delta":{"content":"ignored"}}]}\n'
).encode("utf-8")


def _parse_in_chunks(body: bytes, size: int):
    parser = SSEParser()
    out = []
    for i in range(0, len(body), size):
        out.extend(parser.feed(body[i:i + size]))
    out.extend(parser.flush())
    return out, parser


def test_whole_body_payloads_and_sentinel():
    out, parser = _parse_in_chunks(BODY, len(BODY))
    assert out == [
        '{"choices":[{"delta":{"content":"Hé"}}]}',
        '{"choices":[{"delta":{"content":"llo"}}]}',
    ]
    assert parser.done is True


def test_chunk_boundaries_do_not_change_result():
    expected, _ = _parse_in_chunks(BODY, len(BODY))
    # Every split size, including ones that cut the two-byte "é" in half
    for size in range(1, 40):
        got, _ = _parse_in_chunks(BODY, size)
        assert got == expected, f"chunk size {size}"


def test_trailing_line_without_newline_is_flushed():
    parser = SSEParser()
    assert parser.feed(b'data: {"a":1}\ndata: {"b":2}') == ['{"a":1}']
    assert parser.flush() == ['{"b":2}']
    assert parser.done is False


def test_feed_after_done_is_ignored():
    parser = SSEParser()
    parser.feed(b"data: [DONE]\n")
    assert parser.done
    assert parser.feed(b'data: {"late":true}\n') == []
    assert parser.flush() == []


def test_non_data_lines_and_empty_payloads_skipped():
    parser = SSEParser()
    assert parser.feed(b"id: 7\nretry: 100\ndata:\ndata:   \n: comment\n") == []
