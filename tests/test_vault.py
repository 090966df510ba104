"""Tests for document stores."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from vaultrag.errors import DocumentReadError
from vaultrag.ingestion.vault import DocumentStore, FileSystemDocumentStore, InMemoryDocumentStore


class TestFileSystemDocumentStore:
    """Test the filesystem vault."""

    def test_list_documents(self, tmp_path: Path) -> None:
        (tmp_path / "notes").mkdir()
        note = tmp_path / "notes" / "a.md"
        note.write_text("hello", encoding="utf-8")
        os.utime(note, ns=(1_700_000_000_123_000_000, 1_700_000_000_123_000_000))
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        documents = FileSystemDocumentStore(tmp_path).list_documents()

        assert [doc.path for doc in documents] == ["notes/a.md"]
        assert documents[0].modified_time == 1_700_000_000_123

    def test_read_and_write(self, tmp_path: Path) -> None:
        store = FileSystemDocumentStore(tmp_path)

        store.write("new/note.md", "# Title\nbody")

        assert store.exists("new/note.md")
        assert store.read("new/note.md") == "# Title\nbody"

    def test_read_missing(self, tmp_path: Path) -> None:
        with pytest.raises(DocumentReadError) as excinfo:
            FileSystemDocumentStore(tmp_path).read("missing.md")
        assert excinfo.value.path == "missing.md"

    def test_read_invalid_utf8(self, tmp_path: Path) -> None:
        (tmp_path / "bad.md").write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(DocumentReadError):
            FileSystemDocumentStore(tmp_path).read("bad.md")

    def test_paths_cannot_escape_vault(self, tmp_path: Path) -> None:
        vault = tmp_path / "vault"
        vault.mkdir()
        with pytest.raises(ValueError, match="escapes"):
            FileSystemDocumentStore(vault).write("../outside.md", "x")

    def test_satisfies_protocol(self, tmp_path: Path) -> None:
        assert isinstance(FileSystemDocumentStore(tmp_path), DocumentStore)
        assert isinstance(InMemoryDocumentStore(), DocumentStore)


class TestInMemoryDocumentStore:
    """Test the in-memory store."""

    def test_put_and_list(self) -> None:
        store = InMemoryDocumentStore({"b.md": "b", "a.md": "a"}, mtime=5)

        assert [(doc.path, doc.modified_time) for doc in store.list_documents()] == [
            ("a.md", 5),
            ("b.md", 5),
        ]

    def test_write_bumps_mtime(self) -> None:
        store = InMemoryDocumentStore({"a.md": "a"}, mtime=5)

        store.write("a.md", "changed")

        assert store.read("a.md") == "changed"
        assert store.list_documents()[0].modified_time == 6

    def test_remove(self) -> None:
        store = InMemoryDocumentStore({"a.md": "a"})
        store.remove("a.md")

        assert not store.exists("a.md")
        with pytest.raises(DocumentReadError):
            store.read("a.md")
