"""Shared fixtures: a deterministic embedding model and temporary stores."""

from __future__ import annotations

import hashlib
import re
import threading
from pathlib import Path
from typing import List

import numpy as np
import pytest

from vaultrag.errors import DocumentReadError
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.ingestion.vault import InMemoryDocumentStore


class HashingEmbeddingModel:
    """Bag-of-words vectors: every lower-cased word is hashed into a bucket."""

    def __init__(self, dimension: int = 64, model_id: str = "test/hashing") -> None:
        self.id = model_id
        self.dimension = dimension
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def embed(self, text: str) -> List[float]:
        with self._lock:
            self.calls.append(text)
        vector = np.zeros(self.dimension, dtype="float32")
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


@pytest.fixture
def embedding_model() -> HashingEmbeddingModel:
    return HashingEmbeddingModel()


@pytest.fixture
def store(tmp_path: Path):
    """Temporary SQLite vector store, closed after the test."""
    vector_store = SQLiteVectorStore(tmp_path / "vectors.db")
    yield vector_store
    vector_store.close()


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


class UnreadableDocumentStore(InMemoryDocumentStore):
    """Lists every document but fails to read the ones named in ``broken``."""

    def __init__(self, *args, broken=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.broken = set(broken)

    def read(self, path):
        if path in self.broken:
            raise DocumentReadError(path, "permission denied")
        return super().read(path)
