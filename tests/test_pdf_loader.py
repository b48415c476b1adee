"""Tests for PDF text extraction."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from filecatalog.extraction.pdf_loader import extract_pdf, iter_page_texts


def _mock_doc(page_texts, metadata=None, images_per_page=0) -> MagicMock:
    pages = []
    for text in page_texts:
        page = MagicMock()
        page.get_text.return_value = text
        page.get_images.return_value = [object()] * images_per_page
        pages.append(page)

    doc = MagicMock()
    doc.__len__ = MagicMock(return_value=len(pages))
    doc.__getitem__ = MagicMock(side_effect=lambda i: pages[i])
    doc.metadata = metadata if metadata is not None else {}
    return doc


class TestIterPageTexts:
    """Test page text iteration."""

    def test_normalizes_and_skips_blank_pages(self):
        """Test page text is normalized and blank pages dropped."""
        doc = _mock_doc(["  Page 1  \n\n line ", "   ", "Page 3"])
        assert list(iter_page_texts(doc, Path("x.pdf"))) == ["Page 1\nline", "Page 3"]


class TestExtractPdf:
    """Test extract_pdf."""

    @patch("filecatalog.extraction.pdf_loader.fitz")
    def test_extract_text_and_metadata(self, mock_fitz, tmp_path):
        """Test text is joined and metadata counts pages and images."""
        doc = _mock_doc(["First", "Second"], metadata={"title": "Annual Report"}, images_per_page=1)
        mock_fitz.open.return_value = doc
        pdf_path = tmp_path / "report.pdf"
        pdf_path.write_bytes(b"dummy")

        result = extract_pdf(pdf_path)

        assert result.text == "First\nSecond"
        assert result.metadata == {"title": "Annual Report", "pages": 2, "tables": 0, "images": 2}
        doc.close.assert_called_once()

    @patch("filecatalog.extraction.pdf_loader.fitz")
    def test_title_falls_back_to_stem(self, mock_fitz, tmp_path):
        """Test a missing title falls back to the file stem."""
        mock_fitz.open.return_value = _mock_doc(["Text"], metadata={"title": ""})
        result = extract_pdf(tmp_path / "my_document.pdf")
        assert result.metadata["title"] == "my_document"

    @patch("filecatalog.extraction.pdf_loader.fitz")
    def test_open_error_propagates(self, mock_fitz, tmp_path):
        """Test an open failure propagates."""
        mock_fitz.open.side_effect = RuntimeError("cannot open broken document")
        with pytest.raises(RuntimeError, match="broken"):
            extract_pdf(tmp_path / "broken.pdf")
