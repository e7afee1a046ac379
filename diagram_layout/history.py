"""
Bounded undo/redo history of position snapshots.

Snapshots are taken before a drag gesture commits and before a reflow.
Only positions are recorded; graph structure comes from the parser and
is never rolled back by undo.
"""

import time
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .config import DEFAULT_MAX_HISTORY
from .models import Position


@dataclass
class HistoryEntry:
    """A snapshot of node positions at a point in time."""
    positions: dict[str, Position]
    timestamp: float = field(default_factory=time.time)


class HistoryManager:
    """
    Linear undo/redo history.

    - push() records a new undo entry and clears the redo stack
    - undo()/redo() move one entry across, recording the current
      positions on the opposite stack
    - Both stacks hold at most max_history entries; the oldest is evicted
    """

    def __init__(self, max_history: int = DEFAULT_MAX_HISTORY):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self._max_history = max_history
        self._undo: list[HistoryEntry] = []
        self._redo: list[HistoryEntry] = []

    @property
    def max_history(self) -> int:
        return self._max_history

    @property
    def can_undo(self) -> bool:
        return len(self._undo) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._redo) > 0

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def _append(self, stack: list[HistoryEntry], positions: Mapping[str, Position]):
        stack.append(HistoryEntry(positions=dict(positions)))
        # Trim history if too long
        while len(stack) > self._max_history:
            stack.pop(0)

    def push(self, positions: Mapping[str, Position]):
        """Record a snapshot before a mutation. Invalidates redo."""
        self._redo.clear()
        self._append(self._undo, positions)

    def undo(self, current: Mapping[str, Position]) -> Optional[dict[str, Position]]:
        """Pop the last undo entry; current positions go onto the redo stack."""
        if not self._undo:
            return None
        entry = self._undo.pop()
        self._append(self._redo, current)
        return entry.positions

    def redo(self, current: Mapping[str, Position]) -> Optional[dict[str, Position]]:
        """Pop the last redo entry; current positions go onto the undo stack."""
        if not self._redo:
            return None
        entry = self._redo.pop()
        self._append(self._undo, current)
        return entry.positions

    def clear(self):
        self._undo.clear()
        self._redo.clear()
