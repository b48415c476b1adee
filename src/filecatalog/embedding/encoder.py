"""Embedding model management."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Literal, Protocol, Sequence, TypeVar, runtime_checkable

import numpy as np
from sentence_transformers import SentenceTransformer

from filecatalog.errors import BackendFailureError, BackendUnreachableError, CatalogError

DEFAULT_MODEL = "all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ModelSpec:
    repo_id: str
    dimension: int
    description: str
    passage_prefix: str = ""
    query_prefix: str = ""


MODELS: dict[str, ModelSpec] = {
    "all-MiniLM-L6-v2": ModelSpec(
        "sentence-transformers/all-MiniLM-L6-v2", 384, "Fast, general-purpose model"
    ),
    "all-mpnet-base-v2": ModelSpec(
        "sentence-transformers/all-mpnet-base-v2", 768, "Higher quality, slower"
    ),
    "multi-qa-MiniLM-L6-cos-v1": ModelSpec(
        "sentence-transformers/multi-qa-MiniLM-L6-cos-v1",
        384,
        "Optimized for Q&A and semantic search",
    ),
    "e5-base-v2": ModelSpec(
        "intfloat/e5-base-v2",
        768,
        'Requires "passage: " and "query: " prefixes',
        passage_prefix="passage: ",
        query_prefix="query: ",
    ),
    "bge-base-en-v1.5": ModelSpec("BAAI/bge-base-en-v1.5", 768, "High-quality embeddings"),
    "gte-small": ModelSpec("Supabase/gte-small", 384, "Smaller, faster model"),
}


def resolve_model(name: str) -> ModelSpec | None:
    """Look up a model by short name or full repository id."""
    if name in MODELS:
        return MODELS[name]
    for spec in MODELS.values():
        if spec.repo_id == name:
            return spec
    return None


def available_models() -> list[str]:
    return [f"{key} ({spec.dimension}d) - {spec.description}" for key, spec in MODELS.items()]


@runtime_checkable
class EmbeddingBackend(Protocol):
    """What the coordinators need from an embedding model.

    Vectors come back in input order, one per text, each ``dimension`` long.
    Framing prefixes are applied by the caller, not by ``embed``.
    """

    dimension: int
    passage_prefix: str
    query_prefix: str

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...

    def embed_query(self, text: str) -> np.ndarray: ...


def backend_call(call: Callable[..., T], *args) -> T:
    """Run an embedding backend call, mapping its failures onto backend errors.

    OS-level failures (connection, timeout, missing model files) become
    :class:`BackendUnreachableError`; anything else the backend raises becomes
    :class:`BackendFailureError`.
    """
    try:
        return call(*args)
    except CatalogError:
        raise
    except OSError as exc:
        raise BackendUnreachableError(f"Embedding backend unreachable: {exc}") from exc
    except Exception as exc:
        raise BackendFailureError(f"Embedding backend failed: {type(exc).__name__}: {exc}") from exc


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 32
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class EmbeddingModel:
    """Thin wrapper around `SentenceTransformer` for query and document embeddings."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        spec = resolve_model(self.config.model_name)
        self.name = self.config.model_name
        self.passage_prefix = spec.passage_prefix if spec else ""
        self.query_prefix = spec.query_prefix if spec else ""

        self._model = backend_call(
            lambda: SentenceTransformer(
                spec.repo_id if spec else self.config.model_name,
                backend=self.config.backend,
                device=self.config.device,
            )
        )
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        if spec and spec.dimension != self.dimension:
            logger.warning(
                "Model %s reports dimension %d, registry says %d",
                self.name,
                self.dimension,
                spec.dimension,
            )
        logger.info("Loaded embedding model %s (%dd, backend %s)", self.name, self.dimension, self.config.backend)

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        embeddings = self._model.encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding, with query framing."""
        return self.embed([self.query_prefix + text])[0]
