"""
Public scanning entry points: scan a PDF by path or by buffer.

Both validate the input at the boundary (bytes-like, carries the %PDF-
signature) and hand the scan to an executor. Neither ever raises: every
failure, including a crashed worker, comes back as a ScanResult with
``success=False``, an ``error`` message, no findings and
``safe_to_use=False``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import Future
from pathlib import Path
from typing import Any

from .models import MagicByteCheck, ScanOptions, ScanResult
from .pool import InlineExecutor, ScanExecutor
from .scanner import InputValidationError, coerce_options

logger = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF-"
STANDARD_SEARCH_WINDOW = 1024

_DEFAULT_EXECUTOR = InlineExecutor()

OptionsArg = ScanOptions | Mapping[str, Any] | None


def validate_magic_bytes(buffer: bytes, mode: MagicByteCheck | str = MagicByteCheck.FULL) -> bool:
    """
    Check *buffer* for the PDF signature.

    - ``strict``: the buffer starts with ``%PDF-``
    - ``standard``: the signature appears within the first 1KB
    - ``full``: the signature appears anywhere
    """
    mode = MagicByteCheck(mode)
    if isinstance(buffer, memoryview):
        buffer = buffer.tobytes()
    if mode == MagicByteCheck.STRICT:
        return buffer[:len(PDF_SIGNATURE)] == PDF_SIGNATURE
    if mode == MagicByteCheck.STANDARD:
        return PDF_SIGNATURE in buffer[:STANDARD_SEARCH_WINDOW]
    return PDF_SIGNATURE in buffer


def _resolve(submitted: Future[ScanResult] | ScanResult) -> ScanResult:
    """Wait on a submitted scan, turning any exception into a failure result."""
    if isinstance(submitted, ScanResult):
        return submitted
    try:
        return submitted.result()
    except Exception as exc:
        logger.warning("Scan task failed: %s", exc)
        return ScanResult.failure(str(exc) or type(exc).__name__)


def _submit(
    buffer: Any,
    options: OptionsArg,
    executor: ScanExecutor | None,
    signature_error: str,
) -> Future[ScanResult] | ScanResult:
    """Validate and submit; returns a failure result instead of raising."""
    try:
        if not isinstance(buffer, (bytes, bytearray, memoryview)):
            raise InputValidationError("Input must be a bytes-like buffer")
        scan_options = coerce_options(options)
        if not validate_magic_bytes(buffer, scan_options.magic_byte_check):
            raise InputValidationError(signature_error)
        return (executor or _DEFAULT_EXECUTOR).submit(buffer, scan_options)
    except Exception as exc:
        return ScanResult.failure(str(exc) or type(exc).__name__)


def _submit_file(
    file_path: str | Path,
    options: OptionsArg,
    executor: ScanExecutor | None,
) -> Future[ScanResult] | ScanResult:
    path = Path(file_path)
    try:
        buffer = path.read_bytes()
    except FileNotFoundError:
        return ScanResult.failure(f"File not found: {path}")
    except OSError as exc:
        return ScanResult.failure(f"Could not read {path}: {exc.strerror or exc}")
    return _submit(buffer, options, executor, "File must be a valid PDF")


def scan_buffer(
    buffer: bytes,
    options: OptionsArg = None,
    executor: ScanExecutor | None = None,
) -> ScanResult:
    """
    Scan an in-memory PDF.

    Args:
        buffer: Raw PDF bytes.
        options: ScanOptions or a mapping of its fields.
        executor: Where to run the scan. Defaults to inline execution.
    """
    return _resolve(_submit(buffer, options, executor, "Buffer must contain a valid PDF"))


def scan_file(
    file_path: str | Path,
    options: OptionsArg = None,
    executor: ScanExecutor | None = None,
) -> ScanResult:
    """Read *file_path* and scan it. See ``scan_buffer``."""
    return _resolve(_submit_file(file_path, options, executor))


def scan_many(
    buffers: Iterable[bytes],
    options: OptionsArg = None,
    executor: ScanExecutor | None = None,
) -> list[ScanResult]:
    """
    Submit every buffer before waiting on any, then collect results in
    submission order. With a WorkerPool the scans run in parallel.
    """
    submitted = [
        _submit(buffer, options, executor, "Buffer must contain a valid PDF")
        for buffer in buffers
    ]
    return [_resolve(item) for item in submitted]


def scan_files(
    file_paths: Iterable[str | Path],
    options: OptionsArg = None,
    executor: ScanExecutor | None = None,
) -> list[ScanResult]:
    """Like ``scan_many`` for paths on disk; unreadable files become failures."""
    submitted = [_submit_file(path, options, executor) for path in file_paths]
    return [_resolve(item) for item in submitted]
