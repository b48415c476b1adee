"""Tests for the embedding coordinator."""

from __future__ import annotations

import numpy as np
import pytest

from filecatalog.embedding.coordinator import EmbeddingCoordinator
from filecatalog.errors import BackendFailureError, BackendUnreachableError, DimensionMismatchError
from filecatalog.models import ContentType


class WideEmbedder:
    """Claims one dimension but returns another."""

    dimension = 4
    passage_prefix = ""
    query_prefix = ""

    def embed(self, texts):
        return np.ones((len(texts), 6), dtype="float32")

    def embed_query(self, text):
        return np.ones(6, dtype="float32")


class ShortEmbedder(WideEmbedder):
    """Drops the last text of every batch."""

    def embed(self, texts):
        return np.ones((len(texts) - 1, self.dimension), dtype="float32")


class FlakyEmbedder(WideEmbedder):
    """Raises ``error`` for any batch containing ``bad_text``."""

    def __init__(self, bad_text, error):
        self.bad_text = bad_text
        self.error = error

    def embed(self, texts):
        if self.bad_text in texts:
            raise self.error
        return np.ones((len(texts), self.dimension), dtype="float32")


@pytest.fixture
def file_id(catalog, write_file) -> int:
    record, _ = catalog.find_or_create(write_file("notes.txt", "some notes"))
    return record.id


def _add_file(catalog, write_file, name: str, body: str) -> int:
    record, _ = catalog.find_or_create(write_file(name, body))
    return record.id


class TestEmbedTexts:
    """Test batch embedding of raw texts."""

    def test_batches_preserve_order(self, content, fake_embedder):
        """Test vectors come back in input order across batches."""
        embedder = fake_embedder(dimension=4)
        coordinator = EmbeddingCoordinator(embedder, content, batch_size=2)
        texts = ["one", "two", "three", "four", "five"]

        vectors = coordinator.embed_texts(texts)

        assert embedder.calls == [["one", "two"], ["three", "four"], ["five"]]
        assert vectors.shape == (5, 4)
        for text, vector in zip(texts, vectors):
            np.testing.assert_allclose(vector, embedder.vector_for(text))

    def test_passage_prefix_applied(self, content, fake_embedder):
        """Test the backend's passage prefix is prepended."""
        embedder = fake_embedder(passage_prefix="passage: ")
        EmbeddingCoordinator(embedder, content).embed_texts(["hello"])
        assert embedder.calls == [["passage: hello"]]

    def test_empty_input(self, content, fake_embedder):
        """Test no texts gives an empty matrix without calling the backend."""
        embedder = fake_embedder(dimension=3)
        vectors = EmbeddingCoordinator(embedder, content).embed_texts([])
        assert vectors.shape == (0, 3)
        assert embedder.calls == []

    def test_wrong_width_is_fatal(self, content):
        """Test vectors of the wrong width raise DimensionMismatchError."""
        with pytest.raises(DimensionMismatchError) as excinfo:
            EmbeddingCoordinator(WideEmbedder(), content).embed_texts(["x"])
        assert excinfo.value.expected == 4
        assert excinfo.value.actual == 6

    def test_count_mismatch(self, content):
        """Test a short reply from the backend is a backend failure."""
        with pytest.raises(BackendFailureError, match="vectors for 2 texts"):
            EmbeddingCoordinator(ShortEmbedder(), content).embed_texts(["a", "b"])

    def test_backend_exception_is_mapped(self, content):
        """Test an arbitrary backend exception becomes BackendFailureError."""
        embedder = FlakyEmbedder("x", RuntimeError("CUDA out of memory"))
        with pytest.raises(BackendFailureError, match="RuntimeError: CUDA out of memory"):
            EmbeddingCoordinator(embedder, content).embed_texts(["x"])

    def test_connection_error_is_unreachable(self, content):
        """Test a connection failure becomes BackendUnreachableError."""
        embedder = FlakyEmbedder("x", ConnectionError("model host refused"))
        with pytest.raises(BackendUnreachableError, match="model host refused"):
            EmbeddingCoordinator(embedder, content).embed_texts(["x"])

    def test_batch_size_must_be_positive(self, content, fake_embedder):
        """Test a zero batch size is rejected."""
        with pytest.raises(ValueError):
            EmbeddingCoordinator(fake_embedder(), content, batch_size=0)


class TestEmbedStored:
    """Test embedding of stored content rows."""

    def test_embed_record(self, content, fake_embedder, file_id):
        """Test a single row is embedded from its stripped text."""
        embedder = fake_embedder()
        record, _ = content.upsert(file_id, ContentType.RAW, "  some notes  ")

        assert EmbeddingCoordinator(embedder, content).embed_record(record.id) is True

        stored = content.require(record.id)
        np.testing.assert_allclose(stored.embedding, embedder.vector_for("some notes"))

    def test_embed_record_without_text(self, content, fake_embedder, file_id):
        """Test a blank row is not embedded."""
        record, _ = content.upsert(file_id, ContentType.RAW, "   ")
        assert EmbeddingCoordinator(fake_embedder(), content).embed_record(record.id) is False
        assert content.require(record.id).embedding is None

    def test_embed_record_backend_failure(self, content, file_id):
        """Test a failing backend surfaces as BackendFailureError and stores nothing."""
        record, _ = content.upsert(file_id, ContentType.RAW, "some notes")
        embedder = FlakyEmbedder("some notes", RuntimeError("boom"))

        with pytest.raises(BackendFailureError):
            EmbeddingCoordinator(embedder, content).embed_record(record.id)

        assert content.require(record.id).embedding is None

    def test_embed_pending(self, catalog, content, fake_embedder, write_file):
        """Test pending rows are embedded in batches and blank rows skipped."""
        ids = []
        for index in range(3):
            file_id = _add_file(catalog, write_file, f"f{index}.txt", f"body {index}")
            record, _ = content.upsert(file_id, ContentType.RAW, f"body {index}")
            ids.append(record.id)
        empty_file = _add_file(catalog, write_file, "empty.txt", "")
        content.upsert(empty_file, ContentType.RAW, "")
        embedder = fake_embedder()

        stats = EmbeddingCoordinator(embedder, content, batch_size=2).embed_pending()

        assert stats.embedded == 3
        assert stats.skipped == 1
        assert stats.failed == 0
        assert embedder.calls == [["body 0", "body 1"], ["body 2"]]
        assert all(content.require(content_id).has_embedding for content_id in ids)
        assert [record.text for record in content.pending_embeddings()] == [""]

    def test_failed_batch_stays_pending(self, catalog, content, write_file):
        """Test a failing batch is counted and the rest of the run continues."""
        ids = []
        for index in range(3):
            file_id = _add_file(catalog, write_file, f"f{index}.txt", f"body {index}")
            record, _ = content.upsert(file_id, ContentType.RAW, f"body {index}")
            ids.append(record.id)
        embedder = FlakyEmbedder("body 1", RuntimeError("quota exceeded"))

        stats = EmbeddingCoordinator(embedder, content, batch_size=1).embed_pending()

        assert (stats.embedded, stats.failed) == (2, 1)
        assert len(stats.errors) == 1
        assert stats.errors[0].startswith(f"content {ids[1]}:")
        assert "quota exceeded" in stats.errors[0]
        assert [record.id for record in content.pending_embeddings()] == [ids[1]]

    def test_dimension_mismatch_stops_the_run(self, catalog, content, write_file):
        """Test a wrong-width backend aborts embed_pending."""
        file_id = _add_file(catalog, write_file, "a.txt", "alpha")
        content.upsert(file_id, ContentType.RAW, "alpha")

        with pytest.raises(DimensionMismatchError):
            EmbeddingCoordinator(WideEmbedder(), content).embed_pending()

    def test_embed_pending_limit(self, catalog, content, fake_embedder, write_file):
        """Test the limit caps how many rows are embedded."""
        for index in range(3):
            file_id = _add_file(catalog, write_file, f"f{index}.txt", f"body {index}")
            content.upsert(file_id, ContentType.RAW, f"body {index}")

        stats = EmbeddingCoordinator(fake_embedder(), content).embed_pending(limit=2)

        assert stats.embedded == 2
        assert len(content.pending_embeddings()) == 1

    def test_code_content_is_summarised(self, content, fake_embedder, file_id):
        """Test code annotations are appended to the embedded text."""
        embedder = fake_embedder()
        content.upsert(
            file_id,
            ContentType.PROCESSED,
            "class Parser; end",
            annotations={"classes": ["Parser"]},
            language="ruby",
        )

        EmbeddingCoordinator(embedder, content).embed_pending()

        assert embedder.calls == [["class Parser; end\n\nClasses: Parser"]]
