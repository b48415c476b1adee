"""Classification of files by extension and in-process reading of text files."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Literal

from filecatalog.errors import FileReadError
from filecatalog.utils.text import decode_text

ContentClass = Literal["text", "document", "unsupported"]

LANGUAGES: dict[str, str] = {
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".go": "go",
    ".java": "java",
    ".js": "javascript",
    ".jsx": "javascript",
    ".kt": "kotlin",
    ".php": "php",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".scala": "scala",
    ".sh": "shell",
    ".bash": "shell",
    ".swift": "swift",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".md": "markdown",
    ".markdown": "markdown",
    ".rst": "restructuredtext",
    ".html": "html",
    ".htm": "html",
}

TEXT_EXTENSIONS = frozenset(
    set(LANGUAGES)
    | {
        ".txt", ".text", ".log", ".csv", ".tsv", ".json", ".yaml", ".yml",
        ".toml", ".ini", ".cfg", ".conf", ".xml", ".sql", ".css", ".tex",
    }
)

# Formats that need the extraction backend to become text.
DOCUMENT_EXTENSIONS = frozenset({".pdf", ".docx", ".pptx", ".xlsx", ".odt", ".epub"})


def language_for(path: Path) -> str | None:
    return LANGUAGES.get(Path(path).suffix.lower())


def classify(path: Path) -> ContentClass:
    """Decide how a file's content is recovered, from its name only."""
    suffix = Path(path).suffix.lower()
    if suffix in DOCUMENT_EXTENSIONS:
        return "document"
    if suffix in TEXT_EXTENSIONS:
        return "text"
    mime_type, _ = mimetypes.guess_type(Path(path).name)
    if mime_type and mime_type.startswith("text/"):
        return "text"
    return "unsupported"


def read_text_file(path: Path) -> str:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise FileReadError(path, exc.strerror or str(exc)) from exc
    return decode_text(data)
