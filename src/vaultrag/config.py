"""Application configuration defaults."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from vaultrag.embedding.encoder import DEFAULT_MODEL
from vaultrag.index.search import RAGOptions


def _get_default_db_path() -> Path:
    """Get the default database path based on platform and execution context."""
    user_db = Path.home() / ".vaultrag" / "vaultrag.db"

    if getattr(sys, "frozen", False):
        return user_db

    # When running from source, prefer local data/ if it exists
    local_db = Path("data/vaultrag.db")
    if local_db.exists():
        return local_db

    return user_db


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    vault_path: Path = Path(".")
    model_name: str = DEFAULT_MODEL
    chunk_size: int = 1000
    min_similarity: float = 0.0
    limit: int = 10
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    concurrency: int = 8

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.limit <= 0:
            raise ValueError("limit must be positive")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def rag_options(self) -> RAGOptions:
        return RAGOptions(
            chunk_size=self.chunk_size,
            min_similarity=self.min_similarity,
            limit=self.limit,
            include_patterns=list(self.include_patterns),
            exclude_patterns=list(self.exclude_patterns),
        )
