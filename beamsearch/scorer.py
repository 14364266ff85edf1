"""
beam scorers: hooks consulted whenever a hypothesis is extended

a scorer lets the host attach a language model or a lexical constraint
without the decoder knowing anything about its state
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, List, Sequence


class BaseBeamScorer:
    """
    No-op scorer for plain decoding.

    Subclasses override the hooks they need. States are opaque to the
    decoder; every hook returns a value instead of mutating its input so a
    state can be shared between a parent and its children.
    """

    def initialize_state(self) -> Any:
        # state attached to the root of every decode pass
        return None

    def expand_state(self, from_state: Any, from_label: int, to_label: int) -> Any:
        return from_state

    def expansion_score(self, state: Any, previous_score: float) -> float:
        # previous_score is the log-probability the extension starts from
        return previous_score

    def expand_state_end(self, state: Any) -> Any:
        return state

    def end_expansion_score(self, state: Any) -> float:
        return 0.0


@dataclass
class HistoryBeamState:
    score: float = 0.0
    labels: List[int] = field(default_factory=list)


class DictionaryBeamScorer(BaseBeamScorer):
    """
    Penalizes hypotheses that can no longer spell a dictionary word.

    Args:
        dictionary: label sequences that are allowed outputs
        penalty: log-domain addend for histories that are not a prefix of any
            word, and again at sequence end for histories that are not a word
    """

    def __init__(self, dictionary: Sequence[Sequence[int]], penalty: float = math.log(0.01)):
        if penalty > 0:
            raise ValueError(f"penalty must be a log-probability <= 0, got {penalty}")

        self.dictionary = [tuple(word) for word in dictionary]
        self._words = set(self.dictionary)
        self.penalty = penalty

    def initialize_state(self) -> HistoryBeamState:
        return HistoryBeamState(score=0.0, labels=[])

    def expand_state(self, from_state: HistoryBeamState, from_label: int, to_label: int) -> HistoryBeamState:
        labels = from_state.labels + [to_label]
        return HistoryBeamState(score=self._score_history(labels), labels=labels)

    def expansion_score(self, state: HistoryBeamState, previous_score: float) -> float:
        return previous_score + state.score

    def expand_state_end(self, state: HistoryBeamState) -> HistoryBeamState:
        # an unfinished word is as bad as a history that left the dictionary
        score = 0.0 if tuple(state.labels) in self._words else self.penalty
        return HistoryBeamState(score=score, labels=state.labels)

    def end_expansion_score(self, state: HistoryBeamState) -> float:
        return state.score

    def _score_history(self, labels: List[int]) -> float:
        candidate = tuple(labels)

        for word in self.dictionary:
            # longer than the word, can't be a prefix
            if len(candidate) > len(word):
                continue
            if word[: len(candidate)] == candidate:
                return 0.0  # ln(1)

        return self.penalty
