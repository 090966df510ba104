"""Semantic query interface over the vault index."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, List, Literal, Optional, Union

from vaultrag.embedding.encoder import EmbeddingModel
from vaultrag.index.indexer import Indexer, IndexOptions, IndexStats
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.ingestion.vault import DocumentStore
from vaultrag.models import IndexProgress, IndexSettings, SearchScope, SimilarityResult

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RAGOptions:
    chunk_size: int = 1000
    min_similarity: float = 0.0
    limit: int = 10
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Idle:
    type: Literal["idle"] = "idle"


@dataclass(slots=True)
class ReadingInputs:
    type: Literal["reading-inputs"] = "reading-inputs"


@dataclass(slots=True)
class Indexing:
    index_progress: IndexProgress
    type: Literal["indexing"] = "indexing"


@dataclass(slots=True)
class Querying:
    type: Literal["querying"] = "querying"


@dataclass(slots=True)
class QueryingDone:
    query_result: List[SimilarityResult]
    type: Literal["querying-done"] = "querying-done"


QueryProgressState = Union[Idle, ReadingInputs, Indexing, Querying, QueryingDone]
QueryProgressCallback = Callable[[QueryProgressState], None]


class RAGEngine:
    """High-level API: keep the index fresh, then rank chunks against a query."""

    def __init__(
        self,
        store: SQLiteVectorStore,
        documents: DocumentStore,
        embedding_model: EmbeddingModel,
        options: RAGOptions | None = None,
        *,
        indexer: Indexer | None = None,
    ) -> None:
        self.store = store
        self.documents = documents
        self.embedding_model = embedding_model
        self.options = options or RAGOptions()
        self.indexer = indexer or Indexer(store, documents)

    def set_embedding_model(self, embedding_model: EmbeddingModel) -> None:
        self.embedding_model = embedding_model

    def set_options(self, options: RAGOptions) -> None:
        self.options = options

    def use_saved_index_settings(self) -> bool:
        """Adopt the chunk size and filters the current model was last indexed with.

        Returns False when the model has no saved settings yet.
        """
        settings = self.store.load_index_settings(self.embedding_model.id)
        if settings is None:
            return False
        self.options = replace(
            self.options,
            chunk_size=settings.chunk_size,
            include_patterns=list(settings.include_patterns),
            exclude_patterns=list(settings.exclude_patterns),
        )
        return True

    def _index_options(self, reindex_all: bool) -> IndexOptions:
        return IndexOptions(
            chunk_size=self.options.chunk_size,
            include_patterns=list(self.options.include_patterns),
            exclude_patterns=list(self.options.exclude_patterns),
            reindex_all=reindex_all,
        )

    def update_index(
        self,
        *,
        reindex_all: bool = False,
        on_progress: Optional[QueryProgressCallback] = None,
        cancel_event: threading.Event | None = None,
        join_in_flight: bool = False,
    ) -> IndexStats:
        """Run an index pass and remember its settings for later queries."""
        self.store.save_index_settings(
            self.embedding_model.id,
            IndexSettings(
                chunk_size=self.options.chunk_size,
                include_patterns=list(self.options.include_patterns),
                exclude_patterns=list(self.options.exclude_patterns),
            ),
        )
        return self._refresh(
            reindex_all=reindex_all,
            on_progress=on_progress,
            cancel_event=cancel_event,
            join_in_flight=join_in_flight,
        )

    def _refresh(
        self,
        *,
        reindex_all: bool,
        on_progress: Optional[QueryProgressCallback],
        cancel_event: threading.Event | None,
        join_in_flight: bool,
    ) -> IndexStats:
        def forward(progress: IndexProgress) -> None:
            if on_progress is not None:
                on_progress(Indexing(index_progress=progress))

        return self.indexer.reindex(
            self.embedding_model,
            self._index_options(reindex_all),
            on_progress=forward,
            cancel_event=cancel_event,
            join_in_flight=join_in_flight,
        )

    def query(
        self,
        text: str,
        *,
        scope: SearchScope | None = None,
        on_progress: Optional[QueryProgressCallback] = None,
        cancel_event: threading.Event | None = None,
    ) -> List[SimilarityResult]:
        """Refresh the index incrementally and return the chunks closest to ``text``.

        Provider errors are not retried here and propagate to the caller.
        """
        if not text.strip():
            raise ValueError("Query text is empty")

        def notify(state: QueryProgressState) -> None:
            if on_progress is not None:
                on_progress(state)

        try:
            notify(ReadingInputs())
            self._refresh(
                reindex_all=False, on_progress=on_progress, cancel_event=cancel_event, join_in_flight=True
            )
            notify(Querying())
            query_vector = self.embedding_model.embed(text)
            results = self.store.similarity_search(
                query_vector,
                self.embedding_model.id,
                min_similarity=self.options.min_similarity,
                limit=self.options.limit,
                scope=scope,
            )
            LOGGER.debug("Query matched %d chunks", len(results))
            notify(QueryingDone(query_result=results))
            return results
        finally:
            notify(Idle())
