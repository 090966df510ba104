"""Utility helpers for working with vault files and glob patterns."""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Iterable, Iterator, List


def iter_markdown_paths(root: Path) -> Iterator[Path]:
    """Yield markdown files under ``root`` in a stable order, skipping hidden folders."""
    for path in sorted(root.rglob("*.md")):
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts[:-1]):
            continue
        if path.is_file():
            yield path


def expand_pattern(pattern: str) -> List[str]:
    """Expand a glob so that it also matches nested paths.

    Examples:
        '*.md' -> ['*.md', '**/*.md']
        'archive/**' -> ['archive/**', '**/archive/**']
    """
    pattern = pattern.strip()
    if not pattern or pattern.startswith("#"):
        return []
    if pattern.startswith("**/"):
        # fnmatch's '*' crosses '/', so '**/' alone would demand a parent folder.
        return [pattern, pattern[3:]]
    if pattern.startswith("*.") or "/**" in pattern:
        return [pattern, "**/" + pattern]
    return [pattern]


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        for expanded in expand_pattern(pattern):
            if fnmatch.fnmatchcase(path, expanded):
                return True
    return False


def filter_paths(
    paths: Iterable[str], *, include: Iterable[str] = (), exclude: Iterable[str] = ()
) -> List[str]:
    """Drop paths matching ``exclude``, then keep only ``include`` matches if any are given."""
    include = list(include)
    exclude = list(exclude)
    kept = [path for path in paths if not matches_any(path, exclude)]
    if include:
        kept = [path for path in kept if matches_any(path, include)]
    return kept
