"""
Pydantic models for all pdfsentry data structures.

All data structures are defined here for single-source-of-truth.
Pydantic provides built-in JSON serialization (used by the CLI's --json
mode), validation of caller-supplied options, and immutability for the
values that cross process boundaries inside the worker pool.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# --- Enums ---

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal position: low=1 ... critical=4."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class RiskLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Category(str, Enum):
    """Rule collection a finding came from."""
    XSS = "xss"
    JS_INJECTION = "js-injection"
    FORM_INJECTION = "form-injection"


class Detector(str, Enum):
    """Detector names accepted in ScanOptions.detectors."""
    XSS = "xss"
    JS = "js"
    FORM = "form"


class MagicByteCheck(str, Enum):
    STRICT = "strict"      # buffer must start with %PDF-
    STANDARD = "standard"  # %PDF- within the first 1KB
    FULL = "full"          # %PDF- anywhere in the buffer


# --- Rules ---

class Rule(BaseModel):
    """A single detection rule: compiled pattern plus its classification."""
    model_config = ConfigDict(frozen=True)

    pattern: re.Pattern[str]
    name: str
    description: str
    severity: Severity


# --- Findings ---

class Location(BaseModel):
    """Where a match sits in the scan surface. line/column are 1-based."""
    model_config = ConfigDict(frozen=True)

    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    line: int = Field(ge=1)
    column: int = Field(ge=1)


class Finding(BaseModel):
    """One detected occurrence of a suspicious pattern."""
    model_config = ConfigDict(frozen=True)

    category: Category
    name: str
    description: str
    severity: Severity
    matched_text: str
    location: Location
    context: str = ""


# --- Options ---

DEFAULT_MAX_CONTENT_LENGTH = 10_000_000  # 10MB of extracted text


class ScanOptions(BaseModel):
    """Per-call scan configuration. Never mutated once built."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    detectors: tuple[Detector, ...] = (Detector.XSS, Detector.JS, Detector.FORM)
    threshold: Severity = Severity.MEDIUM
    max_content_length: int = Field(default=DEFAULT_MAX_CONTENT_LENGTH, gt=0)
    include_raw_content: bool = False
    magic_byte_check: MagicByteCheck = MagicByteCheck.FULL


# --- Results ---

class DocumentMetadata(BaseModel):
    """What the extractor learned about the document, plus the surface size."""
    model_config = ConfigDict(frozen=True)

    page_count: int = 0
    document_info: dict[str, str] = {}
    content_length: int = 0
    extraction_error: str | None = None  # set when text extraction degraded


class ScanResult(BaseModel):
    """Result returned for every scan, successful or not. Never mutated once built."""
    model_config = ConfigDict(frozen=True)

    success: bool
    metadata: DocumentMetadata | None = None
    findings: list[Finding] = []
    risk_level: RiskLevel = RiskLevel.NONE
    safe_to_use: bool = False
    error: str | None = None
    raw_content: str | None = None

    @classmethod
    def failure(cls, message: str) -> ScanResult:
        """Failure shape: no findings, never safe to use."""
        return cls(
            success=False,
            error=message,
            findings=[],
            risk_level=RiskLevel.NONE,
            safe_to_use=False,
        )
