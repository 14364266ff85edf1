"""
bounded frontier of beam entries, kept as a fixed capacity min-heap
"""

from __future__ import annotations
import heapq
from typing import Iterator, List, Optional, Tuple

from .beam_entry import BeamEntry

RankKey = Tuple[float, int, int]


def rank_key(entry: BeamEntry) -> RankKey:
    """
    Larger key = better rank.

    Ties on total (common among equal emissions) fall back to the smaller
    label, then to the older entry, so ordering never depends on heap layout.
    """
    return (entry.newp.total, -entry.label, -entry.index)


class BeamFrontier:
    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")

        self.capacity = capacity
        # keys are cached at push time, members are not rescored while inside
        self._heap: List[Tuple[RankKey, BeamEntry]] = []

    def __len__(self) -> int:
        return len(self._heap)

    def __iter__(self) -> Iterator[BeamEntry]:
        # unsorted
        return (entry for _, entry in self._heap)

    def __contains__(self, entry: BeamEntry) -> bool:
        return any(member is entry for _, member in self._heap)

    def push(self, entry: BeamEntry) -> Optional[BeamEntry]:
        """
        Insert an entry, evicting the lowest ranked member when over capacity.

        The evicted entry has its newp reset so it reads as inactive until it
        qualifies again. Returns the evicted entry, or None.
        """
        heapq.heappush(self._heap, (rank_key(entry), entry))

        if len(self._heap) <= self.capacity:
            return None

        _, evicted = heapq.heappop(self._heap)
        evicted.newp.reset()
        return evicted

    def peek_min(self) -> BeamEntry:
        if not self._heap:
            raise IndexError("peek_min on an empty frontier")
        return self._heap[0][1]

    def top(self, n: int) -> List[BeamEntry]:
        # best n members, best first, membership untouched
        return [entry for _, entry in heapq.nlargest(n, self._heap, key=lambda item: item[0])]

    def extract_sorted(self) -> List[BeamEntry]:
        # O(n log n); best first
        ordered = sorted(self._heap, key=lambda item: item[0], reverse=True)
        self._heap = []
        return [entry for _, entry in ordered]

    def reset(self) -> None:
        self._heap = []
