# src/chorus/services/documents.py
from __future__ import annotations
import asyncio
import base64
import io
import logging
from typing import Any, Dict, List, Optional

import docx
from openai import AsyncOpenAI
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from chorus.core.errors import DocumentExtractionError, ProviderError, ProviderHTTPError, ProviderUnavailable
from chorus.core.models import DocumentFile, ExtractedDocument

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_VISION_MODEL = "llama-3.2-11b-vision-preview"
DEFAULT_ANALYSIS_MODEL = "llama-3.3-70b-specdec"

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

VISION_PROMPT = (
    "Analyze this image in detail. Describe what you see, including any text, objects, "
    "people, colors, and composition."
)
DOCUMENT_PROMPT = "Analyze this document thoroughly. Extract key information, main points, and important details."
ANALYST_SYSTEM_PROMPT = (
    "You are a document analysis assistant. Extract key information and insights "
    "from the provided document."
)
ANALYSIS_FAILED_TEXT = "Failed to analyze document content."


def _classify_openai_exception(exc: Exception) -> ProviderError:
    """
    Convert OpenAI/client exceptions into neutral provider errors.
    Avoid hard dependency on specific SDK exception classes by inspecting attributes.
    """
    status = getattr(exc, "status_code", None) or getattr(exc, "http_status", None)
    if status is not None:
        return ProviderHTTPError(int(status), str(exc))
    return ProviderUnavailable(str(exc) or exc.__class__.__name__)


def _pdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n".join((page.extract_text() or "") for page in reader.pages)
    except PdfReadError as e:
        raise DocumentExtractionError(f"Unreadable PDF: {e}") from e


def _docx_text(data: bytes) -> str:
    try:
        document = docx.Document(io.BytesIO(data))
    except Exception as e:
        raise DocumentExtractionError(f"Unreadable DOCX: {e}") from e
    return "\n".join(p.text for p in document.paragraphs)


class DocumentProcessor:
    """
    Turns an uploaded file into text plus an analysis for the next turns:
    - image/*  -> vision model description (becomes the vision analysis)
    - PDF/DOCX -> local text extraction, then a summary from the analysis model
    - other    -> decoded as UTF-8 text, then summarised the same way
    """

    def __init__(
        self,
        api_key: Optional[str],
        *,
        base_url: str = GROQ_BASE_URL,
        vision_model: str = DEFAULT_VISION_MODEL,
        analysis_model: str = DEFAULT_ANALYSIS_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.vision_model = vision_model
        self.analysis_model = analysis_model
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    @classmethod
    def create(cls, *, documents_cfg: Optional[Dict[str, Any]], secrets) -> "DocumentProcessor":
        cfg = documents_cfg or {}
        provider = cfg.get("provider", "groq")
        return cls(
            api_key=secrets.secret(provider, "api_key"),
            base_url=cfg.get("base_url") or GROQ_BASE_URL,
            vision_model=cfg.get("vision_model") or DEFAULT_VISION_MODEL,
            analysis_model=cfg.get("analysis_model") or DEFAULT_ANALYSIS_MODEL,
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()

    async def _complete(self, model: str, messages: List[Dict[str, Any]], max_tokens: int) -> str:
        if self.client is None:
            raise ProviderUnavailable("No API key available for document analysis")
        try:
            resp = await self.client.chat.completions.create(
                model=model, messages=messages, max_tokens=max_tokens
            )
        except Exception as e:
            raise _classify_openai_exception(e) from e
        return resp.choices[0].message.content or ""

    async def describe_image(self, file: DocumentFile, hint: Optional[str] = None) -> str:
        data_url = f"data:{file.content_type};base64,{base64.b64encode(file.data).decode('ascii')}"
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": hint or VISION_PROMPT},
                {"type": "image_url", "image_url": {"url": data_url}},
            ],
        }]
        return await self._complete(self.vision_model, messages, max_tokens=1024)

    async def analyze(self, content: str, hint: Optional[str] = None) -> str:
        if hint:
            prompt = f"Based on the document content:\n\n{content}\n\nUser Query: {hint}"
        else:
            prompt = f"{DOCUMENT_PROMPT}\n\n{content}"
        messages = [
            {"role": "system", "content": ANALYST_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            return await self._complete(self.analysis_model, messages, max_tokens=2048)
        except ProviderError as e:
            logger.error("Error analyzing document: %s", e)
            return ANALYSIS_FAILED_TEXT

    async def extract(self, file: DocumentFile, hint: Optional[str] = None) -> ExtractedDocument:
        if not file.data:
            raise DocumentExtractionError("No file provided")

        file_type = (file.content_type or "").lower()
        vision: Optional[str] = None
        if file_type.startswith("image/"):
            text = vision = await self.describe_image(file, hint)
            method = "vision"
        elif file_type == "application/pdf":
            text, method = await asyncio.to_thread(_pdf_text, file.data), "pdf"
        elif file_type == DOCX_MIME:
            text, method = await asyncio.to_thread(_docx_text, file.data), "docx"
        else:
            text, method = file.data.decode("utf-8", errors="replace"), "text"

        if not text.strip():
            raise DocumentExtractionError("No content could be extracted from the document")

        document = None if vision is not None else await self.analyze(text, hint)
        logger.info("Processed %s via %s (%d bytes)", file.name, method, file.size)
        return ExtractedDocument(
            text=text,
            metadata={
                "word_count": len(text.split()),
                "file_type": file_type,
                "processing_method": method,
                "file_size": file.size,
            },
            vision_analysis=vision,
            document_analysis=document,
        )
