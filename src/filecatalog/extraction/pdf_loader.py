"""PDF text extraction with PyMuPDF (fitz)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from filecatalog.models import ExtractionResult
from filecatalog.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def iter_page_texts(doc: "fitz.Document", path: Path) -> Iterator[str]:
    """Yield the normalized text of each page that has any."""
    for index in range(len(doc)):
        try:
            text = doc[index].get_text() or ""
        except Exception as exc:  # pragma: no cover - damaged page
            LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
            continue
        normalized = normalize_whitespace(text.splitlines())
        if normalized:
            yield normalized


def extract_pdf(path: Path) -> ExtractionResult:
    """Convert a PDF into text plus page/table/image counts.

    Errors opening the document propagate to the caller.
    """
    doc = fitz.open(path)
    try:
        info = doc.metadata or {}
        pages = list(iter_page_texts(doc, path))
        image_count = 0
        for index in range(len(doc)):
            try:
                image_count += len(doc[index].get_images())
            except Exception:  # pragma: no cover - damaged page
                continue
        metadata = {
            "title": info.get("title") or Path(path).stem,
            "pages": len(doc),
            "tables": 0,
            "images": image_count,
        }
        return ExtractionResult(text="\n".join(pages), metadata=metadata)
    finally:
        doc.close()
