"""
beam entries: log-domain probability bundles and the prefix tree arena
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

# probability 0 in the log domain
LOG_ZERO = float("-inf")

ROOT_LABEL = -1


def log_sum_exp(log_prob_1: float, log_prob_2: float) -> float:
    # log(exp(a) + exp(b)) without leaving the log domain
    if log_prob_1 == LOG_ZERO:
        return log_prob_2
    if log_prob_2 == LOG_ZERO:
        return log_prob_1

    if log_prob_1 > log_prob_2:
        return log_prob_1 + math.log1p(math.exp(log_prob_2 - log_prob_1))
    return log_prob_2 + math.log1p(math.exp(log_prob_1 - log_prob_2))


@dataclass
class BeamProbability:
    blank: float = LOG_ZERO
    label: float = LOG_ZERO
    total: float = LOG_ZERO

    def reset(self) -> None:
        self.blank = LOG_ZERO
        self.label = LOG_ZERO
        self.total = LOG_ZERO

    def copy(self) -> "BeamProbability":
        return BeamProbability(self.blank, self.label, self.total)


@dataclass(eq=False)
class BeamEntry:
    """
    One prefix hypothesis.

    `parent` is an index into the owning BeamTree (None for the root) and
    `children` holds the arena indices of the expanded children, or None
    until the entry has been expanded. `index` doubles as creation order.
    """

    index: int
    label: int
    parent: Optional[int] = None
    children: Optional[List[int]] = None
    oldp: BeamProbability = field(default_factory=BeamProbability)
    newp: BeamProbability = field(default_factory=BeamProbability)
    state: Any = None

    @property
    def active(self) -> bool:
        return self.newp.total > LOG_ZERO

    @property
    def has_children(self) -> bool:
        return self.children is not None

    def __repr__(self) -> str:
        return (
            f"BeamEntry(index={self.index}, label={self.label}, parent={self.parent}, "
            f"total={self.newp.total:.4f})"
        )


class BeamTree:
    """
    Arena owning every entry of one decode pass.

    Entries are never removed while the tree is alive; the whole arena is
    dropped when the decoder resets.
    """

    def __init__(self):
        self.entries: List[BeamEntry] = []

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> BeamEntry:
        return self.entries[index]

    @property
    def root(self) -> BeamEntry:
        if not self.entries:
            raise IndexError("tree is empty, create the root first")
        return self.entries[0]

    def create(self, parent: Optional[BeamEntry], label: int) -> BeamEntry:
        entry = BeamEntry(
            index=len(self.entries),
            label=label,
            parent=None if parent is None else parent.index,
        )
        self.entries.append(entry)
        return entry

    def create_root(self) -> BeamEntry:
        if self.entries:
            raise RuntimeError("root already exists for this tree")

        root = self.create(None, ROOT_LABEL)
        root.newp.total = 0.0  # ln(1)
        root.newp.blank = 0.0  # ln(1)
        return root

    def parent_of(self, entry: BeamEntry) -> Optional[BeamEntry]:
        if entry.parent is None:
            return None
        return self.entries[entry.parent]

    def populate_children(self, entry: BeamEntry, labels: Iterable[int]) -> List[BeamEntry]:
        if entry.has_children:
            raise RuntimeError(f"children of entry {entry.index} already populated")

        children = [self.create(entry, label) for label in labels]
        entry.children = [child.index for child in children]
        return children

    def children_of(self, entry: BeamEntry) -> List[BeamEntry]:
        if entry.children is None:
            return []
        return [self.entries[i] for i in entry.children]

    def label_sequence(self, entry: BeamEntry, merge_repeated: bool) -> List[int]:
        labels = []
        prev_label = ROOT_LABEL
        node = entry

        # stop at the root, its sentinel label is never emitted
        while node.parent is not None:
            if not merge_repeated or node.label != prev_label:
                labels.append(node.label)
            prev_label = node.label
            node = self.entries[node.parent]

        labels.reverse()
        return labels
