"""Core vaultrag data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(slots=True)
class ChunkMetadata:
    """1-indexed, inclusive line range of a chunk inside its document."""

    start_line: int
    end_line: int

    def to_dict(self) -> dict:
        return {"startLine": self.start_line, "endLine": self.end_line}

    @classmethod
    def from_dict(cls, data: dict) -> "ChunkMetadata":
        return cls(start_line=int(data["startLine"]), end_line=int(data["endLine"]))


@dataclass(slots=True)
class Chunk:
    """Embedded piece of a document as persisted in the vector store."""

    path: str
    modified_time: int
    content: str
    embedding_model_id: str
    vector_dimension: int
    vector: List[float]
    metadata: ChunkMetadata
    id: Optional[int] = None

    def validate(self) -> None:
        if len(self.vector) != self.vector_dimension:
            raise ValueError(
                f"Chunk vector for {self.path} has {len(self.vector)} values, "
                f"expected {self.vector_dimension}"
            )
        if not 1 <= self.metadata.start_line <= self.metadata.end_line:
            raise ValueError(
                f"Invalid line range {self.metadata.start_line}-{self.metadata.end_line} "
                f"for chunk of {self.path}"
            )


@dataclass(slots=True)
class SimilarityResult:
    """A stored chunk (without its vector) ranked against a query."""

    id: int
    path: str
    modified_time: int
    content: str
    embedding_model_id: str
    vector_dimension: int
    metadata: ChunkMetadata
    similarity: float


@dataclass(slots=True)
class IndexProgress:
    completed_chunks: int
    total_chunks: int
    total_files: int
    waiting_for_rate_limit: bool = False


@dataclass(slots=True)
class SearchScope:
    """Restricts a search to files and folder prefixes. Empty means no restriction."""

    files: List[str] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.folders


@dataclass(slots=True)
class DocumentInfo:
    """Entry listed by a document store."""

    path: str
    modified_time: int


@dataclass(slots=True)
class EmbeddingDbStats:
    model: str
    row_count: int
    total_data_bytes: int


@dataclass(slots=True)
class IndexSettings:
    """Chunking and file filters an index was last built with."""

    chunk_size: int
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
