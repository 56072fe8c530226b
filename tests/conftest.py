"""
Shared pytest fixtures for all pdfsentry tests.

Provides builders for PDF payloads with known content (raw structural
fragments and small but well-formed single-page documents) and module-level
scan functions the worker-pool tests hand to spawned execution units.
"""

import os
import re
import time
from pathlib import Path

import pytest

from pdfsentry.models import DocumentMetadata, ScanOptions, ScanResult
from pdfsentry.scanner import scan

# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

# CVE-2024-4367 style FontMatrix injection reaching into the PDF.js viewer.
MALICIOUS_FONT_OBJECT = (
    "5 0 obj\n"
    "<< /BaseFont /SNCSTG+CMBX12 /FontDescriptor 6 0 R /FontMatrix [ 1 2 3 4 5 (1); "
    "alert('origin: '+window.origin+', pdf url: '+(window.PDFViewerApplication?"
    "window.PDFViewerApplication.url:document.URL)) ] /Subtype /Type1 /Type /Font >>\n"
    "endobj"
)

BENIGN_FONT_OBJECT = (
    "5 0 obj\n"
    "<< /BaseFont /SNCSTG+CMBX12 /FontDescriptor 6 0 R "
    "/FontMatrix [ 0.001 0 0 0.001 0 0 ] /Subtype /Type1 /Type /Font >>\n"
    "endobj"
)


# ---------------------------------------------------------------------------
# Helpers: build PDF bytes with known content
# ---------------------------------------------------------------------------

def make_raw_pdf(*fragments: str) -> bytes:
    """
    Return a signature-carrying buffer made of raw object fragments.

    These are not parseable documents; text extraction degrades and only
    the raw bytes are scanned.
    """
    body = "\n".join(fragments)
    return f"%PDF-1.4\n{body}\n%%EOF\n".encode("latin-1")


def _pdf_string(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    return f"({escaped})"


def make_text_pdf(
    lines: list[str],
    title: str = "Quarterly report",
    extra_objects: list[str] | None = None,
) -> bytes:
    """
    Build a well-formed single-page PDF whose page shows *lines* in Helvetica.

    *extra_objects* are raw dictionaries appended as additional indirect
    objects (e.g. an /OpenAction or /AcroForm dictionary).
    """
    content_ops = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        content_ops.append(f"{_pdf_string(line)} Tj T*")
    content_ops.append("ET")
    stream = "\n".join(content_ops).encode("latin-1")

    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        (
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>"
        ),
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        f"<< /Title {_pdf_string(title)} /Producer (pdfsentry tests) >>".encode("latin-1"),
    ]
    for extra in extra_objects or []:
        objects.append(extra.encode("latin-1"))

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R /Info 6 0 R >>\n" % (len(objects) + 1)
    out += b"startxref\n%d\n%%%%EOF\n" % xref_offset
    return bytes(out)


# ---------------------------------------------------------------------------
# Scan functions for worker-pool tests (must be importable by child processes)
# ---------------------------------------------------------------------------

_SLEEP_RE = re.compile(rb"SLEEP=([\d.]+)")


def _honour_sleep(buffer: bytes) -> None:
    match = _SLEEP_RE.search(buffer or b"")
    if match:
        time.sleep(float(match.group(1)))


def slow_scan(buffer: bytes, options: ScanOptions) -> ScanResult:
    """Sleep for the SLEEP=<seconds> marker in *buffer*, then scan normally."""
    _honour_sleep(buffer)
    return scan(buffer, options)


def crash_scan(buffer: bytes, options: ScanOptions) -> ScanResult:
    """Kill the execution unit outright when *buffer* contains CRASH."""
    _honour_sleep(buffer)
    if b"CRASH" in buffer:
        os._exit(3)
    return scan(buffer, options)


def length_scan(buffer: bytes, options: ScanOptions) -> ScanResult:
    """Skip detection and report how many bytes reached the unit."""
    return ScanResult(
        success=True,
        safe_to_use=True,
        metadata=DocumentMetadata(content_length=len(buffer)),
    )


def raising_scan(buffer: bytes, options: ScanOptions) -> ScanResult:
    """Raise an ordinary exception when *buffer* contains RAISE."""
    if b"RAISE" in buffer:
        raise RuntimeError("detector exploded")
    return scan(buffer, options)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def malicious_pdf() -> bytes:
    return make_raw_pdf(MALICIOUS_FONT_OBJECT)


@pytest.fixture
def benign_pdf() -> bytes:
    return make_raw_pdf(BENIGN_FONT_OBJECT)


@pytest.fixture
def pdf_file(tmp_path) -> Path:
    path = tmp_path / "report.pdf"
    path.write_bytes(make_text_pdf(["Quarterly report", "Revenue grew 4% year over year."]))
    return path
