"""Interactive accept/reject state over a list of diff blocks."""

from __future__ import annotations

import logging
from typing import List, Sequence

from vaultrag.diff.engine import DiffBlock, ModifiedBlock, UnchangedBlock, compute_diff
from vaultrag.errors import InvalidBlockError

LOGGER = logging.getLogger(__name__)


class DiffReview:
    """Holds the blocks of one proposed edit while the user reviews them.

    Accepting or rejecting a modified block collapses it into an unchanged
    block, or removes it when the chosen side is empty. Untouched modified
    blocks resolve to their original text on :meth:`finalize`.
    """

    def __init__(self, blocks: Sequence[DiffBlock]) -> None:
        self.blocks: List[DiffBlock] = list(blocks)

    @classmethod
    def from_texts(cls, original: str, modified: str) -> "DiffReview":
        return cls(compute_diff(original, modified))

    @property
    def pending_count(self) -> int:
        return sum(1 for block in self.blocks if isinstance(block, ModifiedBlock))

    def _modified_block(self, index: int) -> ModifiedBlock:
        if not 0 <= index < len(self.blocks):
            raise InvalidBlockError(f"Block index {index} out of range (0..{len(self.blocks) - 1})")
        block = self.blocks[index]
        if not isinstance(block, ModifiedBlock):
            raise InvalidBlockError(f"Block {index} is unchanged and cannot be accepted or rejected")
        return block

    def _resolve(self, index: int, value: str | None) -> None:
        if value is None:
            del self.blocks[index]
        else:
            self.blocks[index] = UnchangedBlock(value=value)

    def accept_block(self, index: int) -> None:
        block = self._modified_block(index)
        self._resolve(index, block.modified_value)

    def reject_block(self, index: int) -> None:
        block = self._modified_block(index)
        self._resolve(index, block.original_value)

    def accept_all(self) -> str:
        for index in range(len(self.blocks) - 1, -1, -1):
            if isinstance(self.blocks[index], ModifiedBlock):
                self.accept_block(index)
        return self.finalize()

    def reject_all(self) -> str:
        for index in range(len(self.blocks) - 1, -1, -1):
            if isinstance(self.blocks[index], ModifiedBlock):
                self.reject_block(index)
        return self.finalize()

    def finalize(self) -> str:
        """Current document text: resolved values, original text for pending blocks."""
        parts: List[str] = []
        for block in self.blocks:
            if isinstance(block, UnchangedBlock):
                parts.append(block.value)
            elif block.original_value is not None:
                parts.append(block.original_value)
        if self.pending_count:
            LOGGER.debug("Finalizing with %d undecided blocks kept as original", self.pending_count)
        return "\n".join(parts)
