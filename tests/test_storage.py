"""Tests for SQLiteVectorStore."""

import sqlite3
from typing import List

import numpy as np
import pytest

from vaultrag.index.storage import SQLiteVectorStore
from vaultrag.models import Chunk, ChunkMetadata, IndexSettings, SearchScope

MODEL = "test/model"


def make_chunk(
    path: str,
    vector: List[float],
    *,
    content: str = "content",
    mtime: int = 100,
    model_id: str = MODEL,
    start_line: int = 1,
    end_line: int = 1,
) -> Chunk:
    return Chunk(
        path=path,
        modified_time=mtime,
        content=content,
        embedding_model_id=model_id,
        vector_dimension=len(vector),
        vector=vector,
        metadata=ChunkMetadata(start_line=start_line, end_line=end_line),
    )


def unit_with_similarity(similarity: float) -> List[float]:
    """Unit vector whose cosine with [1, 0, 0] equals ``similarity``."""
    return [similarity, float(np.sqrt(1 - similarity**2)), 0.0]


class TestSQLiteVectorStore:
    """Test initialization and schema."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = SQLiteVectorStore(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    def test_schema_creation(self, store):
        """Model registry exists and a per-model table appears on first insert."""
        conn = store.connection
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='vector_models'"
        )
        assert cursor.fetchone() is not None

        table = store.register_model(MODEL, 3)
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
        assert cursor.fetchone() is not None
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='index' AND name=?", (f"idx_{table}_path",)
        )
        assert cursor.fetchone() is not None

    def test_pragma_settings(self, store):
        conn = store.connection
        assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert conn.execute("PRAGMA synchronous").fetchone()[0] == 1

    def test_connection_property(self, store):
        assert isinstance(store.connection, sqlite3.Connection)

    def test_close(self, tmp_path):
        store = SQLiteVectorStore(tmp_path / "close_test.db")
        conn = store.connection
        store.close()

        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")

    def test_models_get_separate_tables(self, store):
        """Similar model ids never share a table."""
        first = store.register_model("provider/model-a", 3)
        second = store.register_model("provider/model_a", 3)
        assert first != second

    def test_register_model_dimension_mismatch(self, store):
        store.register_model(MODEL, 3)
        assert store.register_model(MODEL, 3)
        with pytest.raises(ValueError, match="dimension"):
            store.register_model(MODEL, 4)


class TestInsert:
    """Test inserting and reading back chunks."""

    def test_insert_and_get_chunks(self, store):
        store.insert(
            [
                make_chunk("a.md", [1.0, 0.0, 0.0], content="second", start_line=5, end_line=8),
                make_chunk("a.md", [0.0, 1.0, 0.0], content="first", start_line=1, end_line=4),
            ]
        )

        chunks = store.get_chunks_for_path("a.md", MODEL)

        assert [chunk.content for chunk in chunks] == ["first", "second"]
        assert chunks[0].metadata == ChunkMetadata(start_line=1, end_line=4)
        assert chunks[0].vector == pytest.approx([0.0, 1.0, 0.0])
        assert chunks[0].id is not None

    def test_insert_empty_is_noop(self, store):
        store.insert([])
        assert store.get_stats() == []

    def test_insert_rejects_vector_length_mismatch(self, store):
        chunk = make_chunk("a.md", [1.0, 0.0, 0.0])
        chunk.vector_dimension = 4

        with pytest.raises(ValueError, match="expected 4"):
            store.insert([chunk])

    def test_insert_rejects_invalid_line_range(self, store):
        with pytest.raises(ValueError, match="line range"):
            store.insert([make_chunk("a.md", [1.0, 0.0, 0.0], start_line=3, end_line=2)])

    def test_insert_rejects_mixed_models(self, store):
        with pytest.raises(ValueError, match="one embedding model"):
            store.insert(
                [
                    make_chunk("a.md", [1.0, 0.0, 0.0]),
                    make_chunk("b.md", [1.0, 0.0, 0.0], model_id="other/model"),
                ]
            )

    def test_failed_insert_rolls_back(self, store):
        """A batch containing an invalid chunk writes nothing."""
        bad = make_chunk("b.md", [1.0, 0.0, 0.0])
        bad.vector_dimension = 2
        with pytest.raises(ValueError):
            store.insert([make_chunk("a.md", [1.0, 0.0, 0.0]), bad])
        assert store.list_indexed_paths(MODEL) == []


class TestMutations:
    """Test delete, replace and clear."""

    def test_delete_by_paths(self, store):
        store.insert(
            [
                make_chunk("a.md", [1.0, 0.0, 0.0]),
                make_chunk("b.md", [0.0, 1.0, 0.0]),
                make_chunk("c.md", [0.0, 0.0, 1.0]),
            ]
        )

        store.delete_by_paths(["a.md", "c.md"], MODEL)

        assert store.list_indexed_paths(MODEL) == ["b.md"]

    def test_delete_by_paths_unknown_model(self, store):
        store.delete_by_paths(["a.md"], "missing/model")

    def test_delete_many_paths(self, store):
        """Deletes more paths than fit into one SQL statement."""
        store.insert([make_chunk(f"note-{i}.md", [1.0, 0.0, 0.0]) for i in range(1200)])

        store.delete_by_paths([f"note-{i}.md" for i in range(1100)], MODEL)

        assert len(store.list_indexed_paths(MODEL)) == 100

    def test_replace(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0], content="old", mtime=100)])

        store.replace(
            ["a.md"], [make_chunk("a.md", [0.0, 1.0, 0.0], content="new", mtime=200)], MODEL
        )

        chunks = store.get_chunks_for_path("a.md", MODEL)
        assert [chunk.content for chunk in chunks] == ["new"]
        assert store.indexed_mtimes(MODEL) == {"a.md": 200}

    def test_replace_rejects_other_model(self, store):
        with pytest.raises(ValueError):
            store.replace(["a.md"], [make_chunk("a.md", [1.0], model_id="x/y")], MODEL)

    def test_clear_keeps_other_models(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0])])
        store.insert([make_chunk("a.md", [1.0, 0.0], model_id="other/model")])

        store.clear(MODEL)

        assert store.list_indexed_paths(MODEL) == []
        assert store.list_indexed_paths("other/model") == ["a.md"]

    def test_drop_model(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0])])

        store.drop_model(MODEL)

        assert store.get_stats() == []
        # A dropped model may come back with a different dimension.
        store.register_model(MODEL, 5)

    def test_indexed_mtimes(self, store):
        store.insert(
            [
                make_chunk("a.md", [1.0, 0.0, 0.0], mtime=100),
                make_chunk("b.md", [1.0, 0.0, 0.0], mtime=300),
            ]
        )
        assert store.indexed_mtimes(MODEL) == {"a.md": 100, "b.md": 300}
        assert store.indexed_mtimes("missing/model") == {}

    def test_transaction_rolls_back_nested_work(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0])])

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.delete_by_paths(["a.md"], MODEL)
                raise RuntimeError("boom")

        assert store.list_indexed_paths(MODEL) == ["a.md"]


class TestSimilaritySearch:
    """Test ranking, thresholds and scopes."""

    def test_ranking_with_threshold(self, store):
        store.insert(
            [
                make_chunk("c.md", unit_with_similarity(0.2), content="C"),
                make_chunk("a.md", unit_with_similarity(0.9), content="A"),
                make_chunk("b.md", unit_with_similarity(0.5), content="B"),
            ]
        )

        results = store.similarity_search([1.0, 0.0, 0.0], MODEL, min_similarity=0.3, limit=10)

        assert [result.content for result in results] == ["A", "B"]
        assert results[0].similarity == pytest.approx(0.9, abs=1e-5)
        assert results[1].similarity == pytest.approx(0.5, abs=1e-5)

    def test_limit(self, store):
        store.insert([make_chunk(f"{i}.md", unit_with_similarity(i / 10)) for i in range(1, 10)])

        results = store.similarity_search([1.0, 0.0, 0.0], MODEL, limit=3)

        assert [result.path for result in results] == ["9.md", "8.md", "7.md"]

    def test_results_sorted_descending(self, store):
        rng = np.random.default_rng(7)
        store.insert([make_chunk(f"{i}.md", rng.normal(size=3).tolist()) for i in range(20)])

        results = store.similarity_search([0.3, -0.2, 0.9], MODEL, min_similarity=-1.0, limit=20)

        similarities = [result.similarity for result in results]
        assert similarities == sorted(similarities, reverse=True)
        assert len(results) == 20

    def test_unknown_model_returns_empty(self, store):
        assert store.similarity_search([1.0, 0.0, 0.0], "missing/model") == []

    def test_dimension_mismatch(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0])])
        with pytest.raises(ValueError, match="dimension"):
            store.similarity_search([1.0, 0.0], MODEL)

    def test_scope_files_and_folders(self, store):
        vector = [1.0, 0.0, 0.0]
        store.insert(
            [
                make_chunk("notes/a.md", vector),
                make_chunk("notes/deep/b.md", vector),
                make_chunk("notesextra/c.md", vector),
                make_chunk("root.md", vector),
                make_chunk("other.md", vector),
            ]
        )

        results = store.similarity_search(
            vector, MODEL, scope=SearchScope(files=["root.md"], folders=["notes"])
        )

        assert sorted(result.path for result in results) == ["notes/a.md", "notes/deep/b.md", "root.md"]

    def test_scope_folder_with_like_wildcards(self, store):
        vector = [1.0, 0.0, 0.0]
        store.insert([make_chunk("a_b/x.md", vector), make_chunk("axb/y.md", vector)])

        results = store.similarity_search(vector, MODEL, scope=SearchScope(folders=["a_b/"]))

        assert [result.path for result in results] == ["a_b/x.md"]

    def test_empty_scope_searches_everything(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0]), make_chunk("b/c.md", [1.0, 0.0, 0.0])])

        results = store.similarity_search([1.0, 0.0, 0.0], MODEL, scope=SearchScope())

        assert len(results) == 2


class TestStats:
    """Test per-model statistics."""

    def test_get_stats(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0]), make_chunk("b.md", [1.0, 0.0, 0.0])])
        store.insert([make_chunk("a.md", [1.0, 0.0], model_id="another/model")])

        stats = {row.model: row for row in store.get_stats()}

        assert stats[MODEL].row_count == 2
        assert stats["another/model"].row_count == 1
        assert stats[MODEL].total_data_bytes > stats["another/model"].total_data_bytes

    def test_vacuum(self, store):
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0])])
        store.drop_model(MODEL)
        store.vacuum()


class TestIndexSettings:
    """Test the per-model record of chunking and filter settings."""

    def test_missing_settings(self, store):
        assert store.load_index_settings(MODEL) is None

    def test_save_and_load(self, store):
        settings = IndexSettings(chunk_size=500, include_patterns=["notes/**"], exclude_patterns=["*.draft.md"])

        store.save_index_settings(MODEL, settings)

        assert store.load_index_settings(MODEL) == settings
        assert store.load_index_settings("another/model") is None

    def test_save_overwrites(self, store):
        store.save_index_settings(MODEL, IndexSettings(chunk_size=500, exclude_patterns=["a/**"]))
        store.save_index_settings(MODEL, IndexSettings(chunk_size=800))

        assert store.load_index_settings(MODEL) == IndexSettings(chunk_size=800)

    def test_drop_model_forgets_settings(self, store):
        store.save_index_settings(MODEL, IndexSettings(chunk_size=500))
        store.save_index_settings("another/model", IndexSettings(chunk_size=700))
        store.insert([make_chunk("a.md", [1.0, 0.0, 0.0])])

        store.drop_model(MODEL)
        store.drop_model("another/model")

        assert store.load_index_settings(MODEL) is None
        assert store.load_index_settings("another/model") is None

    def test_settings_survive_reopen(self, tmp_path):
        db_path = tmp_path / "settings.db"
        first = SQLiteVectorStore(db_path)
        first.save_index_settings(MODEL, IndexSettings(chunk_size=640, include_patterns=["x/*.md"]))
        first.close()

        second = SQLiteVectorStore(db_path)
        try:
            assert second.load_index_settings(MODEL) == IndexSettings(chunk_size=640, include_patterns=["x/*.md"])
        finally:
            second.close()
