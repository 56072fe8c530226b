"""
Tests for pdfsentry.extraction: pypdf-backed text extraction.
"""

from unittest.mock import patch

from pdfsentry.extraction import ExtractedText, extract_text
from tests.conftest import make_raw_pdf, make_text_pdf


class TestExtractText:
    """Tests for extract_text()."""

    def test_extracts_page_text_and_info(self):
        buffer = make_text_pdf(["Hello auditor", "Second line"], title="Audit pack")
        extracted = extract_text(buffer, 10_000)
        assert extracted.error is None
        assert extracted.page_count == 1
        assert "Hello auditor" in extracted.text
        assert "Second line" in extracted.text
        assert extracted.document_info["Title"] == "Audit pack"
        assert extracted.document_info["Producer"] == "pdfsentry tests"

    def test_text_capped_at_max_length(self):
        buffer = make_text_pdf(["A fairly long line of visible page text"])
        extracted = extract_text(buffer, 10)
        assert len(extracted.text) <= 10

    def test_parser_failure_degrades(self):
        with patch("pdfsentry.extraction.PdfReader", side_effect=ValueError("broken xref")):
            extracted = extract_text(make_raw_pdf("junk"), 10_000)
        assert extracted == ExtractedText(error="broken xref")

    def test_page_failure_skips_page(self):
        class _BadPage:
            def extract_text(self):
                raise KeyError("/Contents")

        class _Reader:
            def __init__(self, stream):
                self.pages = [_BadPage()]
                self.metadata = None

        with patch("pdfsentry.extraction.PdfReader", _Reader):
            extracted = extract_text(b"%PDF-1.4", 10_000)
        assert extracted.text == ""
        assert extracted.page_count == 1
        assert extracted.error is None
