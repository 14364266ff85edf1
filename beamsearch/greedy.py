"""
best path (greedy) CTC decoding
"""

from __future__ import annotations
from typing import List, Optional, Tuple

import numpy as np
import torch

from .beam_search import DecodeResult, _prepare_input_lengths, _validate_log_probs, pack_results
from .errors import ConfigurationError


def greedy_decode_single(
    log_probs: np.ndarray,
    seq_len: Optional[int] = None,
    blank_index: Optional[int] = None,
    merge_repeated: bool = True,
) -> Tuple[List[int], float]:
    """
    Argmax class per timestep, blanks dropped.

    With merge_repeated, a class equal to the previous timestep's argmax is
    not emitted again, so 'a a - a' gives [a, a]. The score is the negative
    sum of the chosen log-probabilities.
    """
    max_time, num_classes = log_probs.shape

    if blank_index is None:
        blank_index = num_classes - 1

    if seq_len is None:
        seq_len = max_time

    if not 0 <= seq_len <= max_time:
        raise ConfigurationError(f"seq_len {seq_len} outside [0, {max_time}]")

    path = []
    score = 0.0
    prev_class = -1

    # np.argmax keeps the first index on ties
    best_classes = np.argmax(log_probs[:seq_len], axis=-1).tolist() if seq_len else []

    for t, best in enumerate(best_classes):
        score -= float(log_probs[t, best])

        if best != blank_index and not (merge_repeated and best == prev_class):
            path.append(best)
        prev_class = best

    return path, score


def ctc_greedy_decode(
    log_probs,
    input_lengths=None,
    blank_index: Optional[int] = None,
    merge_repeated: bool = True,
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Greedy decode a (batch, time, vocab) batch into one padded path per item."""
    emissions = _validate_log_probs(log_probs)
    batch_size, max_time, num_classes = emissions.shape
    lengths = _prepare_input_lengths(input_lengths, batch_size, max_time)

    if blank_index is None:
        blank_index = num_classes - 1

    results = []
    for b in range(batch_size):
        path, score = greedy_decode_single(emissions[b], lengths[b], blank_index, merge_repeated)
        results.append(DecodeResult(paths=[path], scores=[score], seq_len=lengths[b]))

    return pack_results(results, top_paths=1)
