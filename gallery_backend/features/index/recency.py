"""Bounded most-recent-first rings of `(id, timestamp_ms)` entries."""
from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from typing import NamedTuple


class RecencyEntry(NamedTuple):
    id: str
    timestamp: int


class RecencyRing:
    """
    Fixed-capacity ring; `push` inserts at the front and evicts from the back.

    Timestamps are expected to be pushed in non-decreasing order, so iteration
    (front to back) is newest first.
    """

    def __init__(self, limit: int = 1000):
        self.limit = max(1, int(limit))
        self._entries: deque[RecencyEntry] = deque(maxlen=self.limit)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RecencyEntry]:
        return iter(self._entries)

    def push(self, image_id: str, timestamp: int) -> None:
        self._entries.appendleft(RecencyEntry(image_id, int(timestamp)))

    def discard(self, image_id: str) -> int:
        """Remove every entry for `image_id`; returns how many were dropped."""
        before = len(self._entries)
        if not any(e.id == image_id for e in self._entries):
            return 0
        kept = [e for e in self._entries if e.id != image_id]
        self._entries = deque(kept, maxlen=self.limit)
        return before - len(self._entries)

    def since(self, timestamp: int) -> list[RecencyEntry]:
        """Entries strictly newer than `timestamp`, newest first."""
        out: list[RecencyEntry] = []
        for entry in self._entries:
            if entry.timestamp <= timestamp:
                break
            out.append(entry)
        return out

    def timestamp_of(self, image_id: str) -> int | None:
        for entry in self._entries:
            if entry.id == image_id:
                return entry.timestamp
        return None
