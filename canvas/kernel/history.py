"""
Canvas Kernel — History

Bounded, linear undo/redo log of whole-tree snapshots.

Invariants after every transition:
  - items is non-empty
  - 0 <= index < len(items) <= max_size
  - items[index] is the committed tree

Committing after an undo truncates the redo tail first. Snapshots are deep
copies on the way in and on the way out, so the live tree never aliases a
stored entry.
"""

from __future__ import annotations

import copy
import logging

from canvas.kernel.types import DEFAULT_MAX_HISTORY_SIZE, Block, HistoryItem, now_ms

logger = logging.getLogger(__name__)


class History:
    def __init__(
        self,
        blocks: list[Block | None] | None = None,
        *,
        action: str = "Initial State",
        max_size: int = DEFAULT_MAX_HISTORY_SIZE,
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        self._items: list[HistoryItem] = []
        self._index = 0
        self.reset(blocks or [], action)

    # -- read --

    @property
    def items(self) -> list[HistoryItem]:
        return list(self._items)

    @property
    def index(self) -> int:
        return self._index

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._items)

    def current(self) -> list[Block | None]:
        """Deep copy of the tree at the current position."""
        return copy.deepcopy(self._items[self._index].blocks)

    def can_undo(self) -> bool:
        return self._index > 0

    def can_redo(self) -> bool:
        return self._index < len(self._items) - 1

    # -- write --

    def commit(self, blocks: list[Block | None], action: str) -> None:
        del self._items[self._index + 1 :]
        self._items.append(_snapshot(blocks, action))
        excess = len(self._items) - self._max_size
        if excess > 0:
            del self._items[:excess]
        self._index = len(self._items) - 1
        logger.debug("history: commit %r (%d/%d)", action, len(self._items), self._max_size)

    def undo(self) -> list[Block | None] | None:
        """Step back. Returns the restored tree, or None at the start."""
        if not self.can_undo():
            return None
        self._index -= 1
        return self.current()

    def redo(self) -> list[Block | None] | None:
        if not self.can_redo():
            return None
        self._index += 1
        return self.current()

    def jump(self, index: int) -> list[Block | None] | None:
        if index < 0 or index >= len(self._items):
            return None
        self._index = index
        return self.current()

    def reset(self, blocks: list[Block | None], action: str) -> None:
        """Collapse to a single entry equal to blocks."""
        self._items = [_snapshot(blocks, action)]
        self._index = 0

    def set_max_size(self, max_size: int) -> None:
        """
        Change the bound. Shrinking drops the oldest entries before the
        current one first, then redo entries after it.
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        excess = len(self._items) - max_size
        if excess <= 0:
            return
        front = min(excess, self._index)
        del self._items[:front]
        self._index -= front
        excess -= front
        if excess > 0:
            del self._items[len(self._items) - excess :]


def _snapshot(blocks: list[Block | None], action: str) -> HistoryItem:
    return HistoryItem(blocks=copy.deepcopy(blocks), action=action, timestamp=now_ms())
