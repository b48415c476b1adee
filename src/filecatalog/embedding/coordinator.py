"""Embedding of stored content."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from filecatalog.embedding.encoder import EmbeddingBackend, backend_call
from filecatalog.embedding.preparation import MAX_CHARS, prepare_text
from filecatalog.errors import BackendError, BackendFailureError, DimensionMismatchError
from filecatalog.index.content import ContentStore
from filecatalog.models import ContentRecord

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingStats:
    embedded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class EmbeddingCoordinator:
    """Prepares content, submits it to the backend in batches and stores vectors."""

    def __init__(
        self,
        embedder: EmbeddingBackend,
        content: ContentStore,
        *,
        batch_size: int = 32,
        max_chars: int = MAX_CHARS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.embedder = embedder
        self.content = content
        self.batch_size = batch_size
        self.max_chars = max_chars

    @property
    def dimension(self) -> int:
        return int(self.embedder.dimension)

    def prepare(self, record: ContentRecord) -> str:
        return prepare_text(record, max_chars=self.max_chars)

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Embed ``texts`` batch by batch, keeping input order."""
        texts = [self.embedder.passage_prefix + text for text in texts]
        if not texts:
            return np.empty((0, self.dimension), dtype="float32")

        batches: List[np.ndarray] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            vectors = np.asarray(backend_call(self.embedder.embed, batch), dtype="float32")
            if vectors.ndim != 2 or vectors.shape[0] != len(batch):
                raise BackendFailureError(
                    f"Embedding backend returned {vectors.shape[0] if vectors.ndim else 0} "
                    f"vectors for {len(batch)} texts"
                )
            if vectors.shape[1] != self.dimension:
                raise DimensionMismatchError(self.dimension, vectors.shape[1], "backend output")
            batches.append(vectors)
        return np.vstack(batches)

    def embed_record(self, content_id: int) -> bool:
        """Embed a single content row; returns ``False`` if it has no usable text."""
        record = self.content.require(content_id)
        text = self.prepare(record)
        if not text:
            LOGGER.debug("Content %s has no text to embed", content_id)
            return False
        vector = self.embed_texts([text])[0]
        self.content.set_embedding(content_id, vector)
        return True

    def embed_pending(self, limit: Optional[int] = None) -> EmbeddingStats:
        """Embed every content row that does not have a vector yet.

        A batch the backend fails on is counted and left pending for a later
        run; a dimension mismatch stops the run.
        """
        stats = EmbeddingStats()
        records = self.content.pending_embeddings(limit)
        prepared = [(record, self.prepare(record)) for record in records]
        todo = [(record, text) for record, text in prepared if text]
        stats.skipped = len(prepared) - len(todo)

        for start in range(0, len(todo), self.batch_size):
            chunk = todo[start : start + self.batch_size]
            try:
                vectors = self.embed_texts([text for _, text in chunk])
            except BackendError as exc:
                LOGGER.warning("Embedding batch of %d failed: %s", len(chunk), exc)
                stats.failed += len(chunk)
                ids = ", ".join(str(record.id) for record, _ in chunk)
                stats.errors.append(f"content {ids}: {exc}")
                continue
            for (record, _), vector in zip(chunk, vectors):
                self.content.set_embedding(record.id, vector)
                stats.embedded += 1

        LOGGER.info(
            "Embedded %d content rows (%d skipped, %d failed)",
            stats.embedded,
            stats.skipped,
            stats.failed,
        )
        return stats
