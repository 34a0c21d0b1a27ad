"""Bounded undo/redo stacks."""

from __future__ import annotations

from collections import deque
from typing import Deque, List, Optional

from ..core.diagram import Diagram, HistoryEntry


class HistoryStack:
    """LIFO stack of diagram snapshots; the oldest entry is evicted at capacity."""

    def __init__(self, limit: int = 50):
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._entries: Deque[HistoryEntry] = deque(maxlen=limit)

    def push(self, diagram: Diagram, label: str) -> HistoryEntry:
        entry = HistoryEntry(diagram=diagram, label=label)
        self._entries.append(entry)
        return entry

    def pop(self) -> Optional[HistoryEntry]:
        if not self._entries:
            return None
        return self._entries.pop()

    def peek(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    @property
    def labels(self) -> List[str]:
        """Entry labels, oldest first."""
        return [entry.label for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)
