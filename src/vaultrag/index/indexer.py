"""Incremental vault indexing pipeline."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from vaultrag.embedding.encoder import EmbeddingModel, is_retryable
from vaultrag.embedding.retry import RetryPolicy, retry_with_backoff
from vaultrag.errors import (
    ChunkContentError,
    DocumentReadError,
    IndexingCancelled,
    IndexingError,
    ProviderConfigError,
    ProviderRateLimitError,
)
from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.ingestion.vault import DocumentStore
from vaultrag.models import Chunk, ChunkMetadata, DocumentInfo, IndexProgress
from vaultrag.utils.files import filter_paths
from vaultrag.utils.text import DEFAULT_CHUNK_OVERLAP, MarkdownSplitter, strip_null_bytes

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexProgress], None]


@dataclass(slots=True)
class IndexOptions:
    chunk_size: int = 1000
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    reindex_all: bool = False
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP


@dataclass(slots=True)
class IndexStats:
    indexed_files: List[str] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)
    failed_files: Dict[str, str] = field(default_factory=dict)
    total_chunks: int = 0
    embedded_chunks: int = 0


@dataclass(slots=True)
class _PendingChunk:
    path: str
    modified_time: int
    content: str
    metadata: ChunkMetadata


def _batched(items: Sequence[_PendingChunk], size: int) -> List[Sequence[_PendingChunk]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


class Indexer:
    """Keeps the vector store in sync with a document store.

    Only new and modified documents are re-embedded; chunks of deleted
    documents are removed. Runs for the same embedding model are serialised.
    """

    def __init__(
        self,
        store: SQLiteVectorStore,
        documents: DocumentStore,
        *,
        batch_size: int = 100,
        concurrency: int = 8,
        retry_policy: RetryPolicy | None = None,
        retryable: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.documents = documents
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self.retryable = retryable
        self._sleep = sleep
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._last_stats: Dict[str, IndexStats] = {}

    def _lock_for(self, model_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(model_id, threading.Lock())

    def reindex(
        self,
        embedding_model: EmbeddingModel,
        options: IndexOptions | None = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: threading.Event | None = None,
        join_in_flight: bool = False,
    ) -> IndexStats:
        """Bring the index for ``embedding_model`` up to date.

        With ``join_in_flight`` a caller that finds a run already in progress
        waits for it and returns its stats instead of starting another one.
        """
        options = options or IndexOptions()
        lock = self._lock_for(embedding_model.id)
        if not lock.acquire(blocking=False):
            if join_in_flight:
                LOGGER.info("Index update for %s already running, waiting for it", embedding_model.id)
                with lock:
                    return self._last_stats.get(embedding_model.id, IndexStats())
            lock.acquire()
        try:
            stats = self._run(embedding_model, options, on_progress, cancel_event)
            self._last_stats[embedding_model.id] = stats
            return stats
        finally:
            lock.release()

    def _run(
        self,
        model: EmbeddingModel,
        options: IndexOptions,
        on_progress: Optional[ProgressCallback],
        cancel_event: threading.Event | None,
    ) -> IndexStats:
        stats = IndexStats()
        listed = self.documents.list_documents()
        by_path = {doc.path: doc for doc in listed}
        candidate_paths = filter_paths(
            by_path, include=options.include_patterns, exclude=options.exclude_patterns
        )
        candidates = [by_path[path] for path in candidate_paths]
        contents: Dict[str, str] = {}

        if options.reindex_all:
            targets = candidates
            self.store.clear(model.id)
        else:
            stats.deleted_files = self._delete_removed_documents(model, set(by_path))
            targets = self._find_stale(model, candidates, contents, stats)

        if not targets and not stats.failed_files:
            LOGGER.info("Index for %s is up to date", model.id)
            return stats

        pending = self._chunk_documents(targets, options, contents, stats)
        # Up-to-date documents count as usable, so only a vault where every
        # candidate failed to read aborts the run.
        if all(doc.path in stats.failed_files for doc in candidates):
            raise IndexingError("All files failed to process. Stopping indexing process.")
        if not targets:
            LOGGER.info(
                "Index for %s is up to date, %d unreadable files skipped", model.id, len(stats.failed_files)
            )
            return stats

        # Stale documents that are now empty only need their old chunks removed.
        chunked_paths = {item.path for item in pending}
        emptied = [doc.path for doc in targets if doc.path in stats.skipped_files]
        if emptied:
            self.store.delete_by_paths(emptied, model.id)

        stats.total_chunks = len(pending)
        total_files = len(chunked_paths)
        emitter = _ProgressEmitter(on_progress, total_chunks=len(pending), total_files=total_files)
        emitter.emit()
        if pending:
            self._embed_and_store(model, pending, emitter, cancel_event, stats)
        stats.indexed_files = sorted(chunked_paths)
        LOGGER.info(
            "Indexed %d chunks from %d files for %s (%d deleted, %d skipped, %d failed)",
            stats.embedded_chunks,
            len(stats.indexed_files),
            model.id,
            len(stats.deleted_files),
            len(stats.skipped_files),
            len(stats.failed_files),
        )
        return stats

    def _delete_removed_documents(self, model: EmbeddingModel, existing: set[str]) -> List[str]:
        removed = [path for path in self.store.list_indexed_paths(model.id) if path not in existing]
        if removed:
            LOGGER.info("Removing %d deleted documents from the index", len(removed))
            self.store.delete_by_paths(removed, model.id)
        return removed

    def _find_stale(
        self,
        model: EmbeddingModel,
        candidates: List[DocumentInfo],
        contents: Dict[str, str],
        stats: IndexStats,
    ) -> List[DocumentInfo]:
        indexed = self.store.indexed_mtimes(model.id)
        stale: List[DocumentInfo] = []
        for doc in candidates:
            if doc.path in indexed:
                if doc.modified_time > indexed[doc.path]:
                    stale.append(doc)
                continue
            try:
                content = self.documents.read(doc.path)
            except DocumentReadError as exc:
                LOGGER.warning("%s", exc)
                stats.failed_files[doc.path] = str(exc)
                continue
            if not content:
                continue
            contents[doc.path] = content
            stale.append(doc)
        return stale

    def _chunk_documents(
        self,
        targets: List[DocumentInfo],
        options: IndexOptions,
        contents: Dict[str, str],
        stats: IndexStats,
    ) -> List[_PendingChunk]:
        splitter = MarkdownSplitter(options.chunk_size, overlap=options.chunk_overlap)
        pending: List[_PendingChunk] = []
        for doc in targets:
            content = contents.pop(doc.path, None)
            if content is None:
                try:
                    content = self.documents.read(doc.path)
                except DocumentReadError as exc:
                    LOGGER.warning("%s", exc)
                    stats.failed_files[doc.path] = str(exc)
                    continue
            sanitized = strip_null_bytes(content)
            pieces = splitter.create_chunks(sanitized) if sanitized else []
            if not pieces:
                LOGGER.debug("Skipping empty document %s", doc.path)
                stats.skipped_files.append(doc.path)
                continue
            LOGGER.debug("Split %s into %d chunks", doc.path, len(pieces))
            pending.extend(
                _PendingChunk(
                    path=doc.path,
                    modified_time=doc.modified_time,
                    content=piece.content,
                    metadata=ChunkMetadata(start_line=piece.start_line, end_line=piece.end_line),
                )
                for piece in pieces
            )
        return pending

    def _embed_and_store(
        self,
        model: EmbeddingModel,
        pending: List[_PendingChunk],
        emitter: "_ProgressEmitter",
        cancel_event: threading.Event | None,
        stats: IndexStats,
    ) -> None:
        replaced: set[str] = set()
        abort = threading.Event()

        def on_retry(error: BaseException, attempt: int, delay: float) -> None:
            if isinstance(error, ProviderRateLimitError) or getattr(error, "status", None) == 429:
                emitter.emit(waiting_for_rate_limit=True)

        try:
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                for batch in _batched(pending, self.batch_size):
                    _check_cancelled(cancel_event)
                    futures: Dict[Future, int] = {
                        pool.submit(self._embed_chunk, model, item, (cancel_event, abort), on_retry): index
                        for index, item in enumerate(batch)
                    }
                    vectors: List[List[float]] = [[] for _ in batch]
                    try:
                        for future in as_completed(futures):
                            vectors[futures[future]] = future.result()
                            emitter.advance()
                    except BaseException:
                        abort.set()
                        for future in futures:
                            future.cancel()
                        raise

                    # Old chunks of a path go away in the same transaction that
                    # writes its first new batch.
                    new_paths = [p for p in dict.fromkeys(item.path for item in batch) if p not in replaced]
                    replaced.update(new_paths)
                    self.store.replace(
                        new_paths,
                        [
                            Chunk(
                                path=item.path,
                                modified_time=item.modified_time,
                                content=item.content,
                                embedding_model_id=model.id,
                                vector_dimension=model.dimension,
                                vector=vector,
                                metadata=item.metadata,
                            )
                            for item, vector in zip(batch, vectors)
                        ],
                        model.id,
                    )
                    stats.embedded_chunks += len(batch)
        except ProviderConfigError as exc:
            LOGGER.error("Embedding provider is not configured: %s", exc)
            raise
        except ProviderRateLimitError as exc:
            LOGGER.warning(
                "Rate limit still exceeded after %d attempts, stopping after %d chunks",
                self.retry_policy.attempts,
                stats.embedded_chunks,
            )
            raise
        except IndexingCancelled:
            LOGGER.info("Indexing cancelled after %d chunks", stats.embedded_chunks)
            raise
        except Exception:
            LOGGER.exception("Indexing aborted after %d chunks", stats.embedded_chunks)
            raise

    def _embed_chunk(
        self,
        model: EmbeddingModel,
        item: _PendingChunk,
        stop_events: Sequence[threading.Event | None],
        on_retry: Callable[[BaseException, int, float], None],
    ) -> List[float]:
        if not item.content:
            raise ChunkContentError(f"Chunk content is empty in file: {item.path}")
        if "\x00" in item.content:
            raise ChunkContentError(f"Chunk content contains null bytes in file: {item.path}")

        def call() -> List[float]:
            for event in stop_events:
                _check_cancelled(event)
            return list(model.embed(item.content))

        return retry_with_backoff(
            call,
            policy=self.retry_policy,
            retryable=self.retryable,
            on_retry=on_retry,
            sleep=self._sleep,
        )


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise IndexingCancelled("Indexing was cancelled")


class _ProgressEmitter:
    """Serialises progress callbacks coming from the main and worker threads."""

    def __init__(self, callback: Optional[ProgressCallback], *, total_chunks: int, total_files: int) -> None:
        self.callback = callback
        self.total_chunks = total_chunks
        self.total_files = total_files
        self.completed = 0
        self._lock = threading.Lock()

    def advance(self) -> None:
        with self._lock:
            self.completed += 1
        self.emit()

    def emit(self, *, waiting_for_rate_limit: bool = False) -> None:
        if self.callback is None:
            return
        with self._lock:
            self.callback(
                IndexProgress(
                    completed_chunks=self.completed,
                    total_chunks=self.total_chunks,
                    total_files=self.total_files,
                    waiting_for_rate_limit=waiting_for_rate_limit,
                )
            )
