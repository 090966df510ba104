"""SQLite vector store with one table per embedding model."""

from __future__ import annotations

import hashlib
import json
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

from vaultrag.models import (
    Chunk,
    ChunkMetadata,
    EmbeddingDbStats,
    IndexSettings,
    SearchScope,
    SimilarityResult,
)

# SQLite's default limit on host parameters is 999 on older builds.
_MAX_PARAMS = 900


def _table_name(model_id: str) -> str:
    sanitized = re.sub(r"[^0-9a-zA-Z_]", "_", model_id)
    digest = hashlib.sha1(model_id.encode("utf-8")).hexdigest()[:8]
    return f"vectors_{sanitized}_{digest}"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteVectorStore:
    """Persistence layer for chunk embeddings.

    Every embedding model gets its own table, so vectors of different models
    (and dimensions) are never compared. All access goes through one
    re-entrant lock: indexer worker threads and queries can share the store,
    and a mutation wrapped in :meth:`transaction` is never observed half-done.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._depth = 0
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on error. Nested uses join the outer one."""
        with self._lock:
            self._depth += 1
            try:
                yield self._conn
                if self._depth == 1:
                    self._conn.commit()
            except Exception:
                if self._depth == 1:
                    self._conn.rollback()
                raise
            finally:
                self._depth -= 1

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vector_models (
                    model_id TEXT PRIMARY KEY,
                    table_name TEXT NOT NULL UNIQUE,
                    dimension INTEGER NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS index_settings (
                    model_id TEXT PRIMARY KEY,
                    chunk_size INTEGER NOT NULL,
                    include_patterns TEXT NOT NULL,
                    exclude_patterns TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

    def _registered_table(self, model_id: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT table_name FROM vector_models WHERE model_id = ?", (model_id,)
        ).fetchone()
        return row["table_name"] if row else None

    def register_model(self, model_id: str, dimension: int) -> str:
        """Create the namespace for ``model_id`` if needed and return its table name."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT table_name, dimension FROM vector_models WHERE model_id = ?", (model_id,)
            ).fetchone()
            if row:
                if row["dimension"] != dimension:
                    raise ValueError(
                        f"Model {model_id} is registered with dimension {row['dimension']}, "
                        f"got {dimension}"
                    )
                return row["table_name"]

            table = _table_name(model_id)
            conn.execute(
                "INSERT INTO vector_models(model_id, table_name, dimension) VALUES (?, ?, ?)",
                (model_id, table, dimension),
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS "{table}" (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL,
                    mtime INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    embedding BLOB NOT NULL,
                    metadata TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(f'CREATE INDEX IF NOT EXISTS "idx_{table}_path" ON "{table}"(path)')
            return table

    def insert(self, chunks: Sequence[Chunk]) -> None:
        """Append chunks. No dedup: callers delete a path's old chunks first."""
        if not chunks:
            return
        model_ids = {chunk.embedding_model_id for chunk in chunks}
        if len(model_ids) != 1:
            raise ValueError("All chunks of a batch must belong to one embedding model")
        for chunk in chunks:
            chunk.validate()

        first = chunks[0]
        with self.transaction() as conn:
            table = self.register_model(first.embedding_model_id, first.vector_dimension)
            conn.executemany(
                f"""
                INSERT INTO "{table}"(path, mtime, content, dimension, embedding, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.path,
                        chunk.modified_time,
                        chunk.content,
                        chunk.vector_dimension,
                        sqlite3.Binary(np.asarray(chunk.vector, dtype="float32").tobytes()),
                        json.dumps(chunk.metadata.to_dict(), ensure_ascii=True),
                    )
                    for chunk in chunks
                ],
            )

    def delete_by_paths(self, paths: Sequence[str], model_id: str) -> None:
        with self.transaction() as conn:
            table = self._registered_table(model_id)
            if table is None:
                return
            paths = list(paths)
            for start in range(0, len(paths), _MAX_PARAMS):
                batch = paths[start : start + _MAX_PARAMS]
                placeholders = ", ".join("?" for _ in batch)
                conn.execute(f'DELETE FROM "{table}" WHERE path IN ({placeholders})', batch)

    def replace(self, paths: Sequence[str], chunks: Sequence[Chunk], model_id: str) -> None:
        """Delete the chunks of ``paths`` and insert ``chunks`` atomically."""
        if any(chunk.embedding_model_id != model_id for chunk in chunks):
            raise ValueError(f"Chunks do not belong to model {model_id}")
        with self.transaction():
            self.delete_by_paths(paths, model_id)
            self.insert(chunks)

    def clear(self, model_id: str) -> None:
        with self.transaction() as conn:
            table = self._registered_table(model_id)
            if table is not None:
                conn.execute(f'DELETE FROM "{table}"')

    def drop_model(self, model_id: str) -> None:
        """Remove a model's namespace entirely."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM index_settings WHERE model_id = ?", (model_id,))
            table = self._registered_table(model_id)
            if table is None:
                return
            conn.execute(f'DROP TABLE IF EXISTS "{table}"')
            conn.execute("DELETE FROM vector_models WHERE model_id = ?", (model_id,))

    def save_index_settings(self, model_id: str, settings: IndexSettings) -> None:
        """Remember how ``model_id``'s index is chunked and filtered."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO index_settings(model_id, chunk_size, include_patterns, exclude_patterns)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(model_id) DO UPDATE SET
                    chunk_size = excluded.chunk_size,
                    include_patterns = excluded.include_patterns,
                    exclude_patterns = excluded.exclude_patterns,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    model_id,
                    settings.chunk_size,
                    json.dumps(list(settings.include_patterns)),
                    json.dumps(list(settings.exclude_patterns)),
                ),
            )

    def load_index_settings(self, model_id: str) -> Optional[IndexSettings]:
        with self._lock:
            row = self._conn.execute(
                "SELECT chunk_size, include_patterns, exclude_patterns FROM index_settings WHERE model_id = ?",
                (model_id,),
            ).fetchone()
        if row is None:
            return None
        return IndexSettings(
            chunk_size=row["chunk_size"],
            include_patterns=json.loads(row["include_patterns"]),
            exclude_patterns=json.loads(row["exclude_patterns"]),
        )

    def list_indexed_paths(self, model_id: str) -> List[str]:
        with self._lock:
            table = self._registered_table(model_id)
            if table is None:
                return []
            rows = self._conn.execute(f'SELECT DISTINCT path FROM "{table}" ORDER BY path').fetchall()
        return [row["path"] for row in rows]

    def indexed_mtimes(self, model_id: str) -> Dict[str, int]:
        """Stored modification time per indexed path, in one query."""
        with self._lock:
            table = self._registered_table(model_id)
            if table is None:
                return {}
            rows = self._conn.execute(
                f'SELECT path, MAX(mtime) AS mtime FROM "{table}" GROUP BY path'
            ).fetchall()
        return {row["path"]: row["mtime"] for row in rows}

    def get_chunks_for_path(self, path: str, model_id: str) -> List[Chunk]:
        with self._lock:
            table = self._registered_table(model_id)
            if table is None:
                return []
            rows = self._conn.execute(
                f'SELECT * FROM "{table}" WHERE path = ? ORDER BY id', (path,)
            ).fetchall()
        chunks = [
            Chunk(
                id=row["id"],
                path=row["path"],
                modified_time=row["mtime"],
                content=row["content"],
                embedding_model_id=model_id,
                vector_dimension=row["dimension"],
                vector=np.frombuffer(row["embedding"], dtype="float32").tolist(),
                metadata=ChunkMetadata.from_dict(json.loads(row["metadata"])),
            )
            for row in rows
        ]
        chunks.sort(key=lambda chunk: chunk.metadata.start_line)
        return chunks

    def similarity_search(
        self,
        query_vector: Sequence[float],
        model_id: str,
        *,
        min_similarity: float = 0.0,
        limit: int = 10,
        scope: SearchScope | None = None,
    ) -> List[SimilarityResult]:
        """Rank chunks by cosine similarity to ``query_vector``, best first."""
        query = np.asarray(query_vector, dtype="float32")
        if limit <= 0:
            return []

        conditions: List[str] = []
        params: List[object] = []
        if scope is not None and not scope.is_empty:
            clauses: List[str] = []
            if scope.files:
                clauses.append(f"path IN ({', '.join('?' for _ in scope.files)})")
                params.extend(scope.files)
            for folder in scope.folders:
                clauses.append("path LIKE ? ESCAPE '\\'")
                params.append(f"{_escape_like(folder.rstrip('/'))}/%")
            conditions.append("(" + " OR ".join(clauses) + ")")

        with self._lock:
            row = self._conn.execute(
                "SELECT table_name, dimension FROM vector_models WHERE model_id = ?", (model_id,)
            ).fetchone()
            if row is None:
                return []
            if query.shape != (row["dimension"],):
                raise ValueError(
                    f"Query vector has dimension {query.shape[-1] if query.ndim else 0}, "
                    f"model {model_id} stores {row['dimension']}"
                )
            where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            rows = self._conn.execute(
                f'SELECT id, path, mtime, content, dimension, embedding, metadata FROM "{row["table_name"]}" {where}',
                params,
            ).fetchall()

        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(r["embedding"], dtype="float32") for r in rows])
        norms = np.linalg.norm(embeddings, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, (embeddings @ query) / norms, 0.0)

        order = np.argsort(-scores, kind="stable")
        results: List[SimilarityResult] = []
        for idx in order:
            score = float(scores[idx])
            if score < min_similarity:
                break
            r = rows[idx]
            results.append(
                SimilarityResult(
                    id=r["id"],
                    path=r["path"],
                    modified_time=r["mtime"],
                    content=r["content"],
                    embedding_model_id=model_id,
                    vector_dimension=r["dimension"],
                    metadata=ChunkMetadata.from_dict(json.loads(r["metadata"])),
                    similarity=score,
                )
            )
            if len(results) >= limit:
                break
        return results

    def get_stats(self) -> List[EmbeddingDbStats]:
        stats: List[EmbeddingDbStats] = []
        with self._lock:
            models = self._conn.execute(
                "SELECT model_id, table_name FROM vector_models ORDER BY model_id"
            ).fetchall()
            for model in models:
                row = self._conn.execute(
                    f"""
                    SELECT COUNT(*) AS row_count,
                           COALESCE(SUM(LENGTH(embedding) + LENGTH(content) + LENGTH(metadata)), 0)
                               AS total_bytes
                    FROM "{model['table_name']}"
                    """
                ).fetchone()
                stats.append(
                    EmbeddingDbStats(
                        model=model["model_id"],
                        row_count=row["row_count"],
                        total_data_bytes=int(row["total_bytes"]),
                    )
                )
        return stats

    def vacuum(self) -> None:
        with self._lock:
            self._conn.execute("VACUUM")
