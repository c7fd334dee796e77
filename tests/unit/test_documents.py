# tests/unit/test_documents.py

from __future__ import annotations
import io
import sys
from pathlib import Path
from types import SimpleNamespace

import docx
import pytest
from pypdf import PdfWriter

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from chorus.core.errors import DocumentExtractionError, ProviderUnavailable  # type: ignore
from chorus.core.models import DocumentFile  # type: ignore
from chorus.services.documents import (  # type: ignore
    ANALYSIS_FAILED_TEXT,
    DOCX_MIME,
    DocumentProcessor,
)


class FakeCompletions:
    def __init__(self, reply="summary", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


def processor(reply="summary", error=None):
    completions = FakeCompletions(reply, error)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return DocumentProcessor("key", client=client, vision_model="vis", analysis_model="ana"), completions


def _docx_bytes(*paragraphs):
    d = docx.Document()
    for p in paragraphs:
        d.add_paragraph(p)
    buf = io.BytesIO()
    d.save(buf)
    return buf.getvalue()


@pytest.mark.asyncio
async def test_plain_text_is_summarised_with_hint():
    proc, calls = processor("The numbers went up.")
    result = await proc.extract(DocumentFile("n.txt", "text/plain", b"revenue grew ten percent"), hint="trend?")

    assert result.text == "revenue grew ten percent"
    assert result.document_analysis == "The numbers went up."
    assert result.vision_analysis is None
    assert result.metadata == {
        "word_count": 4, "file_type": "text/plain", "processing_method": "text", "file_size": 24,
    }
    sent = calls.calls[0]
    assert sent["model"] == "ana"
    assert "User Query: trend?" in sent["messages"][1]["content"]


@pytest.mark.asyncio
async def test_image_goes_to_vision_model_as_data_url():
    proc, calls = processor("A red bicycle.")
    result = await proc.extract(DocumentFile("b.png", "image/png", b"\x89PNG\r\n"))

    assert result.vision_analysis == "A red bicycle."
    assert result.document_analysis is None
    assert result.metadata["processing_method"] == "vision"
    content = calls.calls[0]["messages"][0]["content"]
    assert calls.calls[0]["model"] == "vis"
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_docx_text_is_extracted():
    proc, _ = processor()
    data = _docx_bytes("First paragraph.", "Second one.")
    result = await proc.extract(DocumentFile("r.docx", DOCX_MIME, data))
    assert result.text == "First paragraph.\nSecond one."
    assert result.metadata["processing_method"] == "docx"


@pytest.mark.asyncio
async def test_pdf_without_text_is_an_extraction_error():
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buf = io.BytesIO()
    writer.write(buf)

    proc, calls = processor()
    with pytest.raises(DocumentExtractionError):
        await proc.extract(DocumentFile("blank.pdf", "application/pdf", buf.getvalue()))
    assert calls.calls == []


@pytest.mark.asyncio
async def test_empty_and_unreadable_files():
    proc, _ = processor()
    with pytest.raises(DocumentExtractionError):
        await proc.extract(DocumentFile("e.txt", "text/plain", b""))
    with pytest.raises(DocumentExtractionError):
        await proc.extract(DocumentFile("x.docx", DOCX_MIME, b"not a zip"))


@pytest.mark.asyncio
async def test_analysis_failure_falls_back_but_vision_failure_raises():
    proc, _ = processor(error=RuntimeError("connection reset"))
    result = await proc.extract(DocumentFile("n.txt", "text/plain", b"some words"))
    assert result.document_analysis == ANALYSIS_FAILED_TEXT

    with pytest.raises(ProviderUnavailable):
        await proc.extract(DocumentFile("p.jpg", "image/jpeg", b"\xff\xd8"))


@pytest.mark.asyncio
async def test_without_key_vision_is_unavailable():
    proc = DocumentProcessor(None)
    with pytest.raises(ProviderUnavailable):
        await proc.describe_image(DocumentFile("p.jpg", "image/jpeg", b"\xff\xd8"))
