"""Text helpers used when preparing content for storage and embedding."""

from __future__ import annotations

from typing import Iterable

ELLIPSIS = "..."


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())


def truncate(text: str, max_chars: int, *, marker: str = ELLIPSIS) -> str:
    """Cut ``text`` to ``max_chars`` characters, appending ``marker`` if cut."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + marker


def decode_text(data: bytes) -> str:
    """Decode file bytes as UTF-8, replacing undecodable sequences."""
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    return data.decode("utf-8", errors="replace")
