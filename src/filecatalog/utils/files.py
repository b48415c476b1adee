"""Utility helpers for working with files: walking and content hashing."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator

from filecatalog.errors import FileReadError

BLOCK_SIZE = 1 << 20
HASH_LENGTH = 64


def iter_file_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield regular file paths from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from sorted(child for child in item.rglob("*") if child.is_file())
        elif item.is_file():
            yield item


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def hash_stream(handle: BinaryIO) -> tuple[str, int]:
    """Hash a binary stream to its end, returning ``(digest, size)``."""
    sha = hashlib.sha256()
    size = 0
    for chunk in iter(lambda: handle.read(BLOCK_SIZE), b""):
        sha.update(chunk)
        size += len(chunk)
    return sha.hexdigest(), size


def compute_sha256(path: Path) -> str:
    """Compute SHA256 hash for a file."""
    digest, _ = hash_path(path)
    return digest


def hash_path(path: Path) -> tuple[str, int]:
    """Hash a file on disk; read failures surface as :class:`FileReadError`."""
    try:
        with Path(path).open("rb") as handle:
            return hash_stream(handle)
    except OSError as exc:
        raise FileReadError(path, exc.strerror or str(exc)) from exc


def humanize_bytes(size: int) -> str:
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    for unit in units:
        if value < 1024 or unit == units[-1]:
            return f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} {units[-1]}"
