"""Turn stored content into the text that gets embedded.

Three strategies, picked from the record's language and annotations:

* code: the head of the source plus a summary of detected classes/methods,
* document: title, tag and category lines ahead of the body,
* generic: the text truncated to a character budget.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from filecatalog.models import ContentRecord
from filecatalog.utils.text import truncate

MAX_CHARS = 8000
CODE_CHARS = 4000

CODE_LANGUAGES = frozenset(
    {
        "c", "cpp", "csharp", "go", "java", "javascript", "kotlin", "php",
        "python", "ruby", "rust", "scala", "shell", "swift", "typescript",
    }
)
DOCUMENT_LANGUAGES = frozenset({"markdown", "restructuredtext", "html"})
DOCUMENT_KEYS = ("title", "tags", "category")


def _as_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, Iterable):
        return [str(item) for item in value]
    return [str(value)]


def purpose_of(record: ContentRecord) -> str:
    if record.language in CODE_LANGUAGES:
        return "code"
    if record.language in DOCUMENT_LANGUAGES or any(
        record.annotations.get(key) for key in DOCUMENT_KEYS
    ):
        return "document"
    return "generic"


def prepare_content(text: str, *, max_chars: int = MAX_CHARS) -> str:
    return truncate(text or "", max_chars).strip()


def prepare_code_content(
    text: str, annotations: Mapping[str, Any], *, code_chars: int = CODE_CHARS
) -> str:
    parts = [(text or "")[:code_chars]]
    if annotations.get("classes"):
        parts.append("Classes: " + ", ".join(_as_list(annotations["classes"])))
    if annotations.get("methods"):
        parts.append("Methods: " + ", ".join(_as_list(annotations["methods"])))
    return "\n\n".join(parts).strip()


def prepare_document_content(
    text: str, annotations: Mapping[str, Any], *, max_chars: int = MAX_CHARS
) -> str:
    parts = []
    if annotations.get("title"):
        parts.append(f"Title: {annotations['title']}")
    if annotations.get("tags"):
        parts.append("Tags: " + ", ".join(_as_list(annotations["tags"])))
    if annotations.get("category"):
        parts.append(f"Category: {annotations['category']}")
    parts.append(truncate(text or "", max_chars))
    return "\n\n".join(parts).strip()


def prepare_text(record: ContentRecord, *, max_chars: int = MAX_CHARS) -> str:
    """Text to submit to the embedding backend for ``record``."""
    purpose = purpose_of(record)
    if purpose == "code":
        return prepare_code_content(record.text, record.annotations, code_chars=min(CODE_CHARS, max_chars))
    if purpose == "document":
        return prepare_document_content(record.text, record.annotations, max_chars=max_chars)
    return prepare_content(record.text, max_chars=max_chars)
