"""Shared fixtures: temporary databases and fake backends."""

from __future__ import annotations

import zlib
from pathlib import Path
from typing import Callable, List, Sequence

import numpy as np
import pytest

from filecatalog.index.catalog import CatalogStore
from filecatalog.index.content import ContentStore
from filecatalog.index.storage import SQLiteDatabase
from filecatalog.models import TaskStatus


class FakeEmbedder:
    """Deterministic embedding backend: one pseudo-random vector per text."""

    def __init__(self, dimension: int = 4, passage_prefix: str = "", query_prefix: str = "") -> None:
        self.dimension = dimension
        self.passage_prefix = passage_prefix
        self.query_prefix = query_prefix
        self.calls: List[List[str]] = []

    def vector_for(self, text: str) -> np.ndarray:
        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        return rng.random(self.dimension).astype("float32")

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        batch = list(texts)
        self.calls.append(batch)
        return np.vstack([self.vector_for(text) for text in batch])

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed([self.query_prefix + text])[0]


class ScriptedBackend:
    """Extraction backend that answers polls from a fixed script.

    The last status of the script repeats once it is exhausted.
    """

    def __init__(self, statuses: Sequence[TaskStatus] = (), submit_error: Exception | None = None) -> None:
        self.statuses = list(statuses)
        self.submit_error = submit_error
        self.submitted: List[Path] = []
        self.polls = 0

    def submit(self, path: Path) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(Path(path))
        return f"task-{len(self.submitted)}"

    def poll(self, task_id: str) -> TaskStatus:
        index = min(self.polls, len(self.statuses) - 1)
        self.polls += 1
        return self.statuses[index]


@pytest.fixture
def database(tmp_path: Path):
    db = SQLiteDatabase(tmp_path / "catalog.db")
    yield db
    db.close()


@pytest.fixture
def catalog(database: SQLiteDatabase) -> CatalogStore:
    return CatalogStore(database)


@pytest.fixture
def content(database: SQLiteDatabase) -> ContentStore:
    return ContentStore(database)


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[..., Path]:
    """Write ``data`` to a file below ``tmp_path/files``."""

    def _write(name: str, data: bytes | str) -> Path:
        path = tmp_path / "files" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def fake_embedder() -> Callable[..., FakeEmbedder]:
    return FakeEmbedder


@pytest.fixture
def scripted_backend() -> Callable[..., ScriptedBackend]:
    return ScriptedBackend
