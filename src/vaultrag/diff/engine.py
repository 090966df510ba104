"""Line-level diff blocks with word/character highlighting.

``compute_diff`` turns two versions of a document into an ordered list of
blocks. Joining the original side of every block with ``\\n`` gives back the
original text, and likewise for the modified side.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Dict, List, Literal, Optional, Sequence, Tuple, Union

INLINE_DIFF_MAX_TOKENS = 300
INLINE_DIFF_MAX_CHARS = 800

TokenKind = Literal["unchanged", "added", "removed"]

_WORD_RE = re.compile(r"\s+|\S+")


@dataclass(slots=True)
class Token:
    text: str
    kind: TokenKind


@dataclass(slots=True)
class UnchangedBlock:
    value: str
    type: Literal["unchanged"] = "unchanged"


@dataclass
class ModifiedBlock:
    """A changed region. A side is ``None`` when its line range is empty."""

    original_value: Optional[str] = None
    modified_value: Optional[str] = None
    move_id: Optional[int] = None
    type: Literal["modified"] = "modified"
    _tokens: Optional[Tuple[Optional[List[Token]], Optional[List[Token]]]] = field(
        default=None, init=False, repr=False, compare=False
    )

    def _highlight(self) -> Tuple[Optional[List[Token]], Optional[List[Token]]]:
        if self._tokens is None:
            inline = inline_tokens(self.original_value, self.modified_value)
            if inline is None:
                self._tokens = (None, None)
            else:
                original, modified = inline
                self._tokens = (
                    original if self.original_value is not None else None,
                    modified if self.modified_value is not None else None,
                )
        return self._tokens

    @property
    def original_tokens(self) -> Optional[List[Token]]:
        return self._highlight()[0]

    @property
    def modified_tokens(self) -> Optional[List[Token]]:
        return self._highlight()[1]


DiffBlock = Union[UnchangedBlock, ModifiedBlock]


def split_lines(text: str) -> List[str]:
    """Split on ``\\n``; the empty document has no lines at all."""
    return text.split("\n") if text else []


def _diff_sequence(original: Sequence[str], modified: Sequence[str]) -> List[Tuple[str, str]]:
    """LCS edit script as ``(op, item)`` pairs, op in equal/delete/insert."""
    rows, cols = len(original), len(modified)
    lengths = [[0] * (cols + 1) for _ in range(rows + 1)]
    for i in range(rows - 1, -1, -1):
        for j in range(cols - 1, -1, -1):
            if original[i] == modified[j]:
                lengths[i][j] = lengths[i + 1][j + 1] + 1
            else:
                lengths[i][j] = max(lengths[i + 1][j], lengths[i][j + 1])

    ops: List[Tuple[str, str]] = []
    i = j = 0
    while i < rows and j < cols:
        if original[i] == modified[j]:
            ops.append(("equal", original[i]))
            i += 1
            j += 1
        elif lengths[i + 1][j] >= lengths[i][j + 1]:
            ops.append(("delete", original[i]))
            i += 1
        else:
            ops.append(("insert", modified[j]))
            j += 1
    ops.extend(("delete", item) for item in original[i:])
    ops.extend(("insert", item) for item in modified[j:])
    return ops


def _push(tokens: List[Token], kind: TokenKind, text: str) -> None:
    if not text:
        return
    if tokens and tokens[-1].kind == kind:
        tokens[-1].text += text
    else:
        tokens.append(Token(text=text, kind=kind))


def _use_char_diff(deleted: str, inserted: str) -> bool:
    if len(deleted) + len(inserted) > INLINE_DIFF_MAX_CHARS:
        return False
    single_word = not any(ch.isspace() for ch in deleted + inserted)
    short = len(deleted) + len(inserted) <= 40
    if not (single_word or short):
        return False
    # Only near-equal strings get character highlights; unrelated words stay whole.
    matcher = SequenceMatcher(None, deleted, inserted, autojunk=False)
    shared = sum(block.size for block in matcher.get_matching_blocks())
    return shared > 0 and shared * 2 >= min(len(deleted), len(inserted))


def inline_tokens(
    original: Optional[str], modified: Optional[str]
) -> Optional[Tuple[List[Token], List[Token]]]:
    """Word-level highlight of a changed region, refined to characters for small edits.

    Returns ``None`` when both sides are empty or the region is too large.
    """
    original_text = original or ""
    modified_text = modified or ""
    if not original_text and not modified_text:
        return None

    original_words = _WORD_RE.findall(original_text)
    modified_words = _WORD_RE.findall(modified_text)
    if len(original_words) + len(modified_words) > INLINE_DIFF_MAX_TOKENS:
        return None

    ops = _diff_sequence(original_words, modified_words)
    original_tokens: List[Token] = []
    modified_tokens: List[Token] = []

    index = 0
    while index < len(ops):
        op, value = ops[index]
        if op == "equal":
            _push(original_tokens, "unchanged", value)
            _push(modified_tokens, "unchanged", value)
            index += 1
            continue

        deleted: List[str] = []
        inserted: List[str] = []
        while index < len(ops) and ops[index][0] != "equal":
            (deleted if ops[index][0] == "delete" else inserted).append(ops[index][1])
            index += 1
        deleted_text = "".join(deleted)
        inserted_text = "".join(inserted)

        if deleted_text and inserted_text and _use_char_diff(deleted_text, inserted_text):
            for char_op, char in _diff_sequence(deleted_text, inserted_text):
                if char_op == "equal":
                    _push(original_tokens, "unchanged", char)
                    _push(modified_tokens, "unchanged", char)
                elif char_op == "delete":
                    _push(original_tokens, "removed", char)
                else:
                    _push(modified_tokens, "added", char)
        else:
            _push(original_tokens, "removed", deleted_text)
            _push(modified_tokens, "added", inserted_text)

    return original_tokens, modified_tokens


def _assign_moves(blocks: List[DiffBlock]) -> None:
    """Link pure deletions to pure insertions of identical text."""
    deletions: Dict[str, List[ModifiedBlock]] = {}
    for block in blocks:
        if isinstance(block, ModifiedBlock) and block.modified_value is None:
            deletions.setdefault(block.original_value or "", []).append(block)

    next_id = 0
    for block in blocks:
        if not isinstance(block, ModifiedBlock) or block.original_value is not None:
            continue
        text = block.modified_value or ""
        if not text.strip():
            continue
        candidates = deletions.get(text)
        if candidates:
            source = candidates.pop(0)
            source.move_id = block.move_id = next_id
            next_id += 1


def compute_diff(original: str, modified: str) -> List[DiffBlock]:
    """Diff two documents into unchanged and modified line blocks."""
    original_lines = split_lines(original)
    modified_lines = split_lines(modified)

    blocks: List[DiffBlock] = []
    matcher = SequenceMatcher(None, original_lines, modified_lines, autojunk=False)
    for tag, o_start, o_end, m_start, m_end in matcher.get_opcodes():
        if tag == "equal":
            blocks.append(UnchangedBlock(value="\n".join(original_lines[o_start:o_end])))
            continue
        blocks.append(
            ModifiedBlock(
                original_value="\n".join(original_lines[o_start:o_end]) if o_end > o_start else None,
                modified_value="\n".join(modified_lines[m_start:m_end]) if m_end > m_start else None,
            )
        )

    _assign_moves(blocks)
    return blocks


def original_text(blocks: Sequence[DiffBlock]) -> str:
    parts: List[str] = []
    for block in blocks:
        if isinstance(block, UnchangedBlock):
            parts.append(block.value)
        elif block.original_value is not None:
            parts.append(block.original_value)
    return "\n".join(parts)


def modified_text(blocks: Sequence[DiffBlock]) -> str:
    parts: List[str] = []
    for block in blocks:
        if isinstance(block, UnchangedBlock):
            parts.append(block.value)
        elif block.modified_value is not None:
            parts.append(block.modified_value)
    return "\n".join(parts)
