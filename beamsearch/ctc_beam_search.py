"""
single sequence CTC prefix beam search

Example (Graves, Fig. 7.5), class 0 = 'a', class 1 = blank:

        a    -
    P = [0.3  0.7]  t = 0
        [0.4  0.6]  t = 1

    P(l = '')  = P(--) = 0.7 * 0.6 = 0.42
    P(l = 'a') = P(a-) + P(aa) + P(-a) = 0.58

best path decoding picks '' here, beam search recovers 'a'.

recurrences used by step():

    P(l=abcd @ t) = P(l=abc @ t-1) * P(d @ t)
                  + P(l=abcd @ t-1) * (P(d @ t) + P(- @ t))      (extension)

    P(l=abc? @ t) = P(l=abc @ t-1) * P(? @ t)                   (growth)

with the usual exception that repeating the last label is only reachable
through the blank mass of the shorter prefix.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch

from .beam_entry import LOG_ZERO, BeamEntry, BeamProbability, BeamTree, log_sum_exp
from .errors import ConfigurationError
from .scorer import BaseBeamScorer
from .top_n import BeamFrontier

logger = logging.getLogger(__name__)


class CTCBeamSearch:
    """
    Stateful beam search over one sequence.

    Call reset() once per sequence, step() once per timestep, then
    finalize() and top_paths(). Scores returned by top_paths() are negative
    log-probabilities, lower is better.

    Args:
        num_classes: size of the emission vector, blank included
        beam_width: maximum number of tracked hypotheses
        blank_index: blank class, defaults to the last class
        merge_repeated: collapse consecutive identical labels in output paths
        scorer: hooks applied whenever a hypothesis is extended
        normalize_emissions: subtract each timestep's max log-probability first
    """

    def __init__(
        self,
        num_classes: int,
        beam_width: int,
        blank_index: Optional[int] = None,
        merge_repeated: bool = True,
        scorer: Optional[BaseBeamScorer] = None,
        normalize_emissions: bool = False,
    ):
        if num_classes < 2:
            raise ConfigurationError(f"num_classes must be >= 2 (labels + blank), got {num_classes}")

        if beam_width < 1:
            raise ConfigurationError(f"beam_width must be >= 1, got {beam_width}")

        if blank_index is None:
            blank_index = num_classes - 1

        if not 0 <= blank_index < num_classes:
            raise ConfigurationError(f"blank_index {blank_index} out of range for {num_classes} classes")

        self.num_classes = num_classes
        self.beam_width = beam_width
        self.blank_index = blank_index
        self.merge_repeated = merge_repeated
        self.scorer = scorer if scorer is not None else BaseBeamScorer()
        self.normalize_emissions = normalize_emissions

        # children are always created in ascending class id, blank excluded
        self._labels = [c for c in range(num_classes) if c != blank_index]

        self._frontier = BeamFrontier(beam_width)
        self._tree: Optional[BeamTree] = None
        self._finalized = False
        self._time_step = 0

    @property
    def frontier(self) -> BeamFrontier:
        return self._frontier

    @property
    def tree(self) -> Optional[BeamTree]:
        return self._tree

    @property
    def time_step(self) -> int:
        return self._time_step

    def reset(self) -> None:
        self._frontier.reset()

        # the root and everything grown from it lives until the next reset
        self._tree = BeamTree()
        root = self._tree.create_root()
        root.state = self.scorer.initialize_state()

        self._frontier.push(root)
        self._finalized = False
        self._time_step = 0

    def step(self, log_input_t: Sequence[float]) -> None:
        self._check_reset()

        if self._finalized:
            raise ConfigurationError("step() called after finalize(), call reset() first")

        emissions = self._prepare_input(log_input_t)
        blank_log_prob = emissions[self.blank_index]
        tree = self._tree
        scorer = self.scorer

        # best first, so growth below visits the strongest prefixes first
        branches = self._frontier.extract_sorted()

        for entry in branches:
            # P(.. @ t) becomes P(.. @ t-1)
            entry.oldp = entry.newp.copy()

        for entry in branches:
            parent = tree.parent_of(entry)

            if parent is not None:
                if parent.active:
                    # a repeated label is only reachable through the parent's blank mass
                    previous = parent.oldp.blank if entry.label == parent.label else parent.oldp.total
                    entry.newp.label = log_sum_exp(
                        entry.newp.label, scorer.expansion_score(entry.state, previous)
                    )
                entry.newp.label += emissions[entry.label]

            entry.newp.blank = entry.oldp.total + blank_log_prob
            entry.newp.total = log_sum_exp(entry.newp.blank, entry.newp.label)

            if entry.active:
                self._frontier.push(entry)

        for entry in branches:
            if not self._is_candidate(entry.oldp):
                continue

            if not entry.has_children:
                tree.populate_children(entry, self._labels)

            for child in tree.children_of(entry):
                if child.active:
                    continue
                self._grow(entry, child, emissions)

        self._time_step += 1

    def _grow(self, parent: BeamEntry, child: BeamEntry, emissions: List[float]) -> None:
        # a brand new prefix has no blank mass yet
        child.newp.blank = LOG_ZERO
        child.state = self.scorer.expand_state(parent.state, parent.label, child.label)

        previous = parent.oldp.blank if child.label == parent.label else parent.oldp.total
        child.newp.label = emissions[child.label] + self.scorer.expansion_score(child.state, previous)
        child.newp.total = child.newp.label

        if self._is_candidate(child.newp):
            self._frontier.push(child)
        else:
            # not in the beam
            child.oldp.reset()
            child.newp.reset()

    def _is_candidate(self, prob: BeamProbability) -> bool:
        if prob.total <= LOG_ZERO:
            return False

        if len(self._frontier) < self.beam_width:
            return True

        return prob.total > self._frontier.peek_min().newp.total

    def finalize(self) -> None:
        """Apply the scorer's end-of-sequence adjustment and re-rank."""
        self._check_reset()

        if self._finalized:
            raise ConfigurationError("finalize() already called for this sequence")

        for entry in self._frontier.extract_sorted():
            entry.state = self.scorer.expand_state_end(entry.state)
            entry.newp.total += self.scorer.end_expansion_score(entry.state)

            if entry.active:
                self._frontier.push(entry)

        self._finalized = True

        if not len(self._frontier):
            logger.warning("beam collapsed after %d steps, no hypothesis has non-zero probability", self._time_step)

    def top_paths(
        self,
        n: int,
        merge_repeated: Optional[bool] = None,
    ) -> Tuple[List[List[int]], List[float]]:
        """
        Best n label sequences and their negative log-probabilities.

        Does not modify the frontier, so it can be called mid-sequence to
        inspect a truncated decode.
        """
        self._check_reset()

        if n < 1:
            raise ConfigurationError(f"n must be >= 1, got {n}")

        if n > self.beam_width:
            raise ConfigurationError(f"requested {n} paths but beam_width is {self.beam_width}")

        if n > len(self._frontier):
            raise ConfigurationError(
                f"requested {n} paths but only {len(self._frontier)} hypotheses are in the beam"
            )

        if merge_repeated is None:
            merge_repeated = self.merge_repeated

        paths = []
        scores = []

        for entry in self._frontier.top(n):
            paths.append(self._tree.label_sequence(entry, merge_repeated))
            scores.append(-entry.newp.total)

        return paths, scores

    def decode_sequence(
        self,
        log_probs,
        seq_len: Optional[int] = None,
        top_paths: int = 1,
    ) -> Tuple[List[List[int]], List[float]]:
        """Run reset/step/finalize over a (time, num_classes) matrix."""
        emissions = _to_numpy(log_probs)

        if emissions.ndim != 2:
            raise ConfigurationError(f"log_probs must have shape (time, num_classes), got {emissions.shape}")

        max_time = emissions.shape[0]
        if seq_len is None:
            seq_len = max_time

        if not 0 <= seq_len <= max_time:
            raise ConfigurationError(f"seq_len {seq_len} outside [0, {max_time}]")

        self.reset()

        for t in range(seq_len):
            self.step(emissions[t])

        self.finalize()

        if not len(self._frontier):
            return [], []

        return self.top_paths(top_paths)

    def _check_reset(self) -> None:
        if self._tree is None:
            raise ConfigurationError("beam search used before reset()")

    def _prepare_input(self, log_input_t) -> List[float]:
        row = _to_numpy(log_input_t)

        if row.ndim != 1 or row.shape[0] != self.num_classes:
            raise ConfigurationError(
                f"expected an emission vector of {self.num_classes} classes, got shape {row.shape}"
            )

        if self.normalize_emissions:
            peak = row.max()
            if peak > LOG_ZERO:
                row = row - peak

        # plain floats for the scalar loops in step()
        return row.tolist()


def _to_numpy(values) -> np.ndarray:
    if isinstance(values, torch.Tensor):
        return values.detach().to(device="cpu", dtype=torch.float64).numpy()
    return np.asarray(values, dtype=np.float64)
