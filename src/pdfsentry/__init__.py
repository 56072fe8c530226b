"""
pdfsentry: detect script-injection indicators in untrusted PDF files.

All processing runs locally. Detection is lexical: ordered regex rules run
over the extracted page text and the raw PDF bytes.
"""

__version__ = "0.1.0"

from .api import scan_buffer, scan_file, scan_files, scan_many, validate_magic_bytes
from .models import (
    Category,
    Detector,
    DocumentMetadata,
    Finding,
    Location,
    MagicByteCheck,
    RiskLevel,
    Rule,
    ScanOptions,
    ScanResult,
    Severity,
)
from .pool import InlineExecutor, PoolClosedError, WorkerCrashedError, WorkerPool
from .scanner import InputValidationError, ScanError

__all__ = [
    "Category",
    "Detector",
    "DocumentMetadata",
    "Finding",
    "InlineExecutor",
    "InputValidationError",
    "Location",
    "MagicByteCheck",
    "PoolClosedError",
    "RiskLevel",
    "Rule",
    "ScanError",
    "ScanOptions",
    "ScanResult",
    "Severity",
    "WorkerCrashedError",
    "WorkerPool",
    "scan_buffer",
    "scan_file",
    "scan_files",
    "scan_many",
    "validate_magic_bytes",
]
