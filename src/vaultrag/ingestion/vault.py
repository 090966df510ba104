"""Document store abstraction and a filesystem-backed vault implementation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Protocol, runtime_checkable

from vaultrag.errors import DocumentReadError
from vaultrag.models import DocumentInfo
from vaultrag.utils.files import iter_markdown_paths

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Source of the documents to index and the target of applied edits.

    Paths are vault-relative POSIX strings; modification times are integer
    milliseconds.
    """

    def list_documents(self) -> List[DocumentInfo]:
        ...

    def read(self, path: str) -> str:
        ...

    def write(self, path: str, content: str) -> None:
        ...

    def exists(self, path: str) -> bool:
        ...


class FileSystemDocumentStore:
    """Markdown files below a vault root directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes the vault: {path}")
        return resolved

    def list_documents(self) -> List[DocumentInfo]:
        documents = []
        for file_path in iter_markdown_paths(self.root):
            documents.append(
                DocumentInfo(
                    path=file_path.relative_to(self.root).as_posix(),
                    modified_time=file_path.stat().st_mtime_ns // 1_000_000,
                )
            )
        return documents

    def read(self, path: str) -> str:
        try:
            return self._resolve(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentReadError(path, str(exc)) from exc

    def write(self, path: str, content: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        LOGGER.debug("Wrote %s (%d chars)", path, len(content))

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


class InMemoryDocumentStore:
    """Dictionary-backed store, handy for embedding vaultrag in other hosts."""

    def __init__(self, documents: Dict[str, str] | None = None, *, mtime: int = 0) -> None:
        self._contents: Dict[str, str] = {}
        self._mtimes: Dict[str, int] = {}
        for path, content in (documents or {}).items():
            self.put(path, content, mtime=mtime)

    def put(self, path: str, content: str, *, mtime: int) -> None:
        self._contents[path] = content
        self._mtimes[path] = mtime

    def remove(self, path: str) -> None:
        self._contents.pop(path, None)
        self._mtimes.pop(path, None)

    def list_documents(self) -> List[DocumentInfo]:
        return [DocumentInfo(path=path, modified_time=self._mtimes[path]) for path in sorted(self._contents)]

    def read(self, path: str) -> str:
        try:
            return self._contents[path]
        except KeyError as exc:
            raise DocumentReadError(path, "no such document") from exc

    def write(self, path: str, content: str) -> None:
        self.put(path, content, mtime=self._mtimes.get(path, 0) + 1)

    def exists(self, path: str) -> bool:
        return path in self._contents
