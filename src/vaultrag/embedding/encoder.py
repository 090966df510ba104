"""Embedding model interface and the local sentence-transformers implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Literal, Protocol, Sequence, runtime_checkable

import numpy as np

from vaultrag.errors import ProviderConfigError, ProviderRateLimitError

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingModel(Protocol):
    """Maps text to a fixed-length vector.

    ``id`` names the vector namespace in the store: vectors produced by
    different models are never compared with each other.
    """

    id: str
    dimension: int

    def embed(self, text: str) -> List[float]:
        ...


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: rate limits and transient server failures.

    Configuration errors are never retried.
    """
    if isinstance(error, ProviderConfigError):
        return False
    if isinstance(error, ProviderRateLimitError):
        return True
    status = getattr(error, "status", None)
    return status == 429 or (isinstance(status, int) and 500 <= status < 600)


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    backend: Literal["torch", "onnx", "openvino"] = "torch"
    device: str | None = None


class SentenceTransformerEmbeddingModel:
    """Thin wrapper around `SentenceTransformer` producing normalized float32 vectors."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        from sentence_transformers import SentenceTransformer

        self.config = config or EmbeddingConfig()
        try:
            self._model = SentenceTransformer(
                self.config.model_name, backend=self.config.backend, device=self.config.device
            )
        except Exception as e:
            if self.config.backend == "torch":
                raise
            logger.warning(
                f"Failed to load model with backend '{self.config.backend}': {e}. "
                "Falling back to PyTorch."
            )
            self.config.backend = "torch"
            self._model = SentenceTransformer(self.config.model_name, device=self.config.device)

        self.id = self.config.model_name
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(f"Loaded {self.id} | Backend: {self.config.backend} | Dimension: {self.dimension}")

    def embed_many(self, texts: Sequence[str]) -> np.ndarray:
        embeddings = self._model.encode(
            list(texts),
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0].tolist()
