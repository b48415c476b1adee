"""Similarity and exact-duplicate queries."""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np

from filecatalog.embedding.encoder import EmbeddingBackend, backend_call
from filecatalog.errors import DimensionMismatchError
from filecatalog.index.catalog import CatalogStore
from filecatalog.index.content import ContentStore
from filecatalog.models import ContentRecord, DuplicateSet, SimilarityMatch


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine distance between each row of ``matrix`` and ``query``.

    Zero vectors have no direction; their distance is 1.0.
    """
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        similarity = np.where(norms > 0, dots / norms, 0.0)
    return 1.0 - np.clip(similarity, -1.0, 1.0)


class SimilarityIndex:
    """Nearest-neighbour search by cosine distance over stored embeddings.

    ``dimension`` pins the index to one embedding size; when omitted it is
    taken from the stored vectors. Stores holding more than one dimension
    cannot be queried until they are rebuilt.
    """

    def __init__(
        self,
        content: ContentStore,
        catalog: Optional[CatalogStore] = None,
        *,
        dimension: Optional[int] = None,
        embedder: Optional[EmbeddingBackend] = None,
    ) -> None:
        self.content = content
        self.catalog = catalog
        self.dimension = dimension
        self.embedder = embedder

    def _load(self) -> tuple[List[ContentRecord], Optional[np.ndarray]]:
        records = list(self.content.iter_embedded())
        if not records:
            return records, None
        dims = sorted({record.embedding.shape[0] for record in records})
        if len(dims) > 1:
            raise DimensionMismatchError(dims[0], dims[-1], "store holds mixed embedding dimensions")
        if self.dimension is not None and dims[0] != self.dimension:
            raise DimensionMismatchError(self.dimension, dims[0], "stored embeddings")
        return records, np.vstack([record.embedding for record in records])

    def nearest(
        self,
        query: Sequence[float] | np.ndarray,
        k: int = 10,
        *,
        exclude_id: Optional[int] = None,
    ) -> List[SimilarityMatch]:
        """Return up to ``k`` records ordered by ascending cosine distance.

        Equal distances keep insertion order.
        """
        vector = np.asarray(query, dtype="float32").reshape(-1)
        if self.dimension is not None and vector.shape[0] != self.dimension:
            raise DimensionMismatchError(self.dimension, vector.shape[0], "query vector")

        records, matrix = self._load()
        if matrix is None or k <= 0:
            return []
        if vector.shape[0] != matrix.shape[1]:
            raise DimensionMismatchError(matrix.shape[1], vector.shape[0], "query vector")

        distances = cosine_distances(matrix, vector)
        order = np.argsort(distances, kind="stable")

        results: List[SimilarityMatch] = []
        for idx in order:
            record = records[idx]
            if exclude_id is not None and record.id == exclude_id:
                continue
            results.append(SimilarityMatch(record=record, distance=float(distances[idx])))
            if len(results) >= k:
                break
        return results

    def nearest_to(self, content_id: int, k: int = 10) -> List[SimilarityMatch]:
        """Neighbours of a stored record, excluding the record itself."""
        record = self.content.require(content_id)
        if record.embedding is None:
            return []
        return self.nearest(record.embedding, k, exclude_id=record.id)

    def search(self, text: str, k: int = 10) -> List[SimilarityMatch]:
        """Embed ``text`` as a query and return its nearest records."""
        if self.embedder is None:
            raise RuntimeError("SimilarityIndex.search needs an embedding backend")
        return self.nearest(backend_call(self.embedder.embed_query, text), k)

    def duplicates(self) -> List[DuplicateSet]:
        if self.catalog is None:
            raise RuntimeError("SimilarityIndex.duplicates needs a catalog store")
        return self.catalog.duplicate_sets()
