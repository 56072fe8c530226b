"""
PDF text extraction for pdfsentry.

Thin adapter over pypdf. Extraction is best-effort: malformed or hostile
documents are common inputs here, so any parser failure degrades to empty
text and the error message is returned to the caller instead of raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO

from pypdf import PdfReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractedText:
    """Text and document metadata recovered from a PDF buffer."""
    text: str = ""
    page_count: int = 0
    document_info: dict[str, str] = field(default_factory=dict)
    error: str | None = None


def _read_document_info(reader: PdfReader) -> dict[str, str]:
    """Flatten the /Info dictionary to plain strings, dropping the leading '/'."""
    info: dict[str, str] = {}
    metadata = reader.metadata
    if not metadata:
        return info
    for key, value in metadata.items():
        name = str(key).lstrip("/")
        try:
            info[name] = str(value)
        except Exception as exc:  # indirect objects can fail to resolve
            logger.debug("Skipping unreadable info entry %s: %s", name, exc)
    return info


def extract_text(buffer: bytes, max_length: int) -> ExtractedText:
    """
    Extract page text from *buffer*, capped at *max_length* characters.

    Pages that fail to extract are skipped. If the document cannot be opened
    at all the result carries empty text and ``error`` is set.
    """
    try:
        reader = PdfReader(BytesIO(buffer))
        page_count = len(reader.pages)
        document_info = _read_document_info(reader)
    except Exception as exc:
        logger.info("PDF parsing failed, scanning raw bytes only: %s", exc)
        return ExtractedText(error=str(exc) or type(exc).__name__)

    chunks: list[str] = []
    total = 0
    for page_number, page in enumerate(reader.pages, start=1):
        if total >= max_length:
            break
        try:
            text = page.extract_text() or ""
        except Exception as exc:
            logger.warning("Text extraction failed on page %d: %s", page_number, exc)
            continue
        chunks.append(text)
        total += len(text) + 1

    return ExtractedText(
        text="\n".join(chunks)[:max_length],
        page_count=page_count,
        document_info=document_info,
    )
