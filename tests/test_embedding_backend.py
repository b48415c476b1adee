"""Tests for the sentence-transformers embedding backend."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from filecatalog.embedding.encoder import (
    DEFAULT_MODEL,
    MODELS,
    EmbeddingBackend,
    EmbeddingConfig,
    EmbeddingModel,
    available_models,
    backend_call,
    resolve_model,
)
from filecatalog.errors import BackendFailureError, BackendUnreachableError, DimensionMismatchError


def _fake_transformer(dimension: int) -> MagicMock:
    model = MagicMock()
    model.get_sentence_embedding_dimension.return_value = dimension
    model.encode.side_effect = lambda sentences, **kwargs: np.ones(
        (len(sentences), dimension), dtype="float64"
    )
    return model


class TestRegistry:
    """Test the model registry."""

    @pytest.mark.parametrize(
        "name,dimension",
        [
            ("all-MiniLM-L6-v2", 384),
            ("all-mpnet-base-v2", 768),
            ("multi-qa-MiniLM-L6-cos-v1", 384),
            ("e5-base-v2", 768),
            ("bge-base-en-v1.5", 768),
            ("gte-small", 384),
        ],
    )
    def test_dimensions(self, name, dimension):
        """Test each registered model's dimension."""
        assert MODELS[name].dimension == dimension

    def test_default_model_registered(self):
        """Test the default model is in the registry."""
        assert DEFAULT_MODEL in MODELS

    def test_only_e5_has_prefixes(self):
        """Test only e5 needs passage and query prefixes."""
        prefixed = {name for name, spec in MODELS.items() if spec.passage_prefix or spec.query_prefix}
        assert prefixed == {"e5-base-v2"}
        assert MODELS["e5-base-v2"].passage_prefix == "passage: "
        assert MODELS["e5-base-v2"].query_prefix == "query: "

    def test_resolve_by_repo_id(self):
        """Test models resolve by full repository id."""
        assert resolve_model("intfloat/e5-base-v2") is MODELS["e5-base-v2"]

    def test_resolve_unknown(self):
        """Test an unregistered name resolves to None."""
        assert resolve_model("someone/custom-model") is None

    def test_available_models(self):
        """Test the listing covers every model."""
        listing = available_models()
        assert len(listing) == len(MODELS)
        assert "all-MiniLM-L6-v2 (384d) - Fast, general-purpose model" in listing


class TestEmbeddingModel:
    """Test EmbeddingModel loading and encoding."""

    @patch("filecatalog.embedding.encoder.SentenceTransformer")
    def test_loads_registered_model(self, mock_st):
        """Test a registered model loads from its repository id."""
        mock_st.return_value = _fake_transformer(384)

        model = EmbeddingModel(EmbeddingConfig(model_name="all-MiniLM-L6-v2", device="cpu"))

        assert model.dimension == 384
        assert model.passage_prefix == ""
        mock_st.assert_called_once_with(
            "sentence-transformers/all-MiniLM-L6-v2", backend="torch", device="cpu"
        )
        assert isinstance(model, EmbeddingBackend)

    @patch("filecatalog.embedding.encoder.SentenceTransformer")
    def test_unknown_model_passed_through(self, mock_st):
        """Test an unregistered name is handed to sentence-transformers as is."""
        mock_st.return_value = _fake_transformer(256)

        model = EmbeddingModel(EmbeddingConfig(model_name="someone/custom-model"))

        assert model.dimension == 256
        assert mock_st.call_args[0][0] == "someone/custom-model"
        assert model.query_prefix == ""

    @patch("filecatalog.embedding.encoder.SentenceTransformer")
    def test_embed_returns_float32(self, mock_st):
        """Test embeddings are float32 and use the configured batch size."""
        transformer = _fake_transformer(768)
        mock_st.return_value = transformer
        model = EmbeddingModel(EmbeddingConfig(model_name="all-mpnet-base-v2", batch_size=8))

        vectors = model.embed(["a", "b", "c"])

        assert vectors.shape == (3, 768)
        assert vectors.dtype == np.float32
        kwargs = transformer.encode.call_args[1]
        assert kwargs["batch_size"] == 8
        assert kwargs["normalize_embeddings"] is True

    @patch("filecatalog.embedding.encoder.SentenceTransformer")
    def test_embed_query_applies_query_prefix(self, mock_st):
        """Test queries get the model's query prefix."""
        transformer = _fake_transformer(768)
        mock_st.return_value = transformer
        model = EmbeddingModel(EmbeddingConfig(model_name="e5-base-v2"))

        vector = model.embed_query("invoices from 2023")

        assert vector.shape == (768,)
        assert transformer.encode.call_args[0][0] == ["query: invoices from 2023"]
        assert model.passage_prefix == "passage: "

    @patch("filecatalog.embedding.encoder.SentenceTransformer")
    def test_missing_model_is_unreachable(self, mock_st):
        """Test a model download failure raises BackendUnreachableError."""
        mock_st.side_effect = OSError("We couldn't connect to 'https://huggingface.co'")

        with pytest.raises(BackendUnreachableError, match="huggingface"):
            EmbeddingModel(EmbeddingConfig(model_name="all-MiniLM-L6-v2"))

    @patch("filecatalog.embedding.encoder.SentenceTransformer")
    def test_bad_model_is_failure(self, mock_st):
        """Test a model that cannot be loaded raises BackendFailureError."""
        mock_st.side_effect = ValueError("Unrecognized model")

        with pytest.raises(BackendFailureError, match="ValueError: Unrecognized model"):
            EmbeddingModel(EmbeddingConfig(model_name="someone/broken"))


class TestBackendCall:
    """Test mapping of backend exceptions."""

    def test_passes_result_through(self):
        """Test a successful call returns its value."""
        assert backend_call(len, [1, 2, 3]) == 3

    def test_os_error_is_unreachable(self):
        """Test connection failures become BackendUnreachableError."""
        def call():
            raise ConnectionResetError("reset by peer")

        with pytest.raises(BackendUnreachableError) as excinfo:
            backend_call(call)
        assert isinstance(excinfo.value.__cause__, ConnectionResetError)

    def test_other_error_is_failure(self):
        """Test any other exception becomes BackendFailureError."""
        def call():
            raise RuntimeError("CUDA out of memory")

        with pytest.raises(BackendFailureError, match="RuntimeError: CUDA out of memory"):
            backend_call(call)

    def test_catalog_errors_unchanged(self):
        """Test errors already in the catalog hierarchy are not rewrapped."""
        def call():
            raise DimensionMismatchError(4, 6, "backend output")

        with pytest.raises(DimensionMismatchError):
            backend_call(call)
