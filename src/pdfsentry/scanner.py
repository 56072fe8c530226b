"""
Scan orchestration: one full pass over a single PDF buffer.

Combines extracted page text with the raw bytes into one scan surface,
builds the line table once, runs every enabled rule collection against it
and derives the overall risk level. This is the function each worker-pool
execution unit runs per task, and the one the inline executor calls
directly.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from .detection import detect_category
from .extraction import extract_text
from .models import (
    DocumentMetadata,
    Finding,
    RiskLevel,
    ScanOptions,
    ScanResult,
    Severity,
)
from .positions import build_offset_table
from .rules import DETECTOR_CATEGORIES

logger = logging.getLogger(__name__)

RAW_CONTENT_SEPARATOR = "\n---RAW_PDF_CONTENT---\n"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ScanError(Exception):
    """Base class for pdfsentry errors."""


class InputValidationError(ScanError):
    """Raised when the input buffer or options are unusable."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def coerce_options(options: ScanOptions | Mapping[str, Any] | None) -> ScanOptions:
    """Accept a ScanOptions, a plain mapping of option fields, or None."""
    if options is None:
        return ScanOptions()
    if isinstance(options, ScanOptions):
        return options
    try:
        return ScanOptions.model_validate(dict(options))
    except ValidationError as exc:
        raise InputValidationError(f"Invalid scan options: {exc}") from exc


def build_scan_surface(text: str, buffer: bytes) -> str:
    """
    Join extracted text and the raw buffer into one string.

    The raw bytes are decoded one byte per character so payloads hidden in
    structural syntax that extraction strips (dictionary keys, font arrays)
    remain visible to the rules.
    """
    return text + RAW_CONTENT_SEPARATOR + buffer.decode("latin-1")


_RISK_BY_SEVERITY: dict[Severity, RiskLevel] = {
    Severity.LOW: RiskLevel.LOW,
    Severity.MEDIUM: RiskLevel.MEDIUM,
    Severity.HIGH: RiskLevel.HIGH,
    Severity.CRITICAL: RiskLevel.CRITICAL,
}


def calculate_risk_level(findings: list[Finding]) -> RiskLevel:
    """Highest severity among *findings*, or ``none`` when there are none."""
    if not findings:
        return RiskLevel.NONE
    worst = max(findings, key=lambda f: f.severity.rank).severity
    return _RISK_BY_SEVERITY[worst]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def scan(
    buffer: bytes | None,
    options: ScanOptions | Mapping[str, Any] | None = None,
) -> ScanResult:
    """
    Scan one PDF buffer and return its ScanResult.

    Raises:
        InputValidationError: *buffer* is missing, empty or not bytes, or
            *options* do not validate.

    Extraction failures are not errors: the scan continues over the raw
    bytes and the message lands in ``metadata.extraction_error``. Any other
    exception during detection is returned as a failure result.
    """
    if buffer is None:
        raise InputValidationError("PDF buffer is required")
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        raise InputValidationError("Input must be a bytes-like buffer")
    buffer = bytes(buffer)
    if not buffer:
        raise InputValidationError("PDF buffer is required")

    scan_options = coerce_options(options)

    try:
        extracted = extract_text(buffer, scan_options.max_content_length)
        content = build_scan_surface(extracted.text, buffer)
        offsets = build_offset_table(content)

        findings: list[Finding] = []
        for detector, category in DETECTOR_CATEGORIES.items():
            if detector not in scan_options.detectors:
                continue
            findings.extend(
                detect_category(category, content, scan_options.threshold, offsets)
            )

        return ScanResult(
            success=True,
            metadata=DocumentMetadata(
                page_count=extracted.page_count,
                document_info=extracted.document_info,
                content_length=len(content),
                extraction_error=extracted.error,
            ),
            findings=findings,
            risk_level=calculate_risk_level(findings),
            safe_to_use=not findings,
            raw_content=content if scan_options.include_raw_content else None,
        )
    except Exception as exc:
        logger.exception("Scan failed")
        return ScanResult.failure(str(exc) or type(exc).__name__)
