from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple
import logging
import multiprocessing as mp

import numpy as np
import torch

from .ctc_beam_search import CTCBeamSearch
from .errors import ConfigurationError
from .scorer import BaseBeamScorer

logger = logging.getLogger(__name__)


class DecoderOptions(NamedTuple):
    blank_index: Optional[int] = None  # None = last class
    merge_repeated: bool = True
    normalize_emissions: bool = False
    num_workers: int = 1


@dataclass
class DecodeResult:
    """
    Decoding of one batch item.

    scores are negative log-probabilities, ascending (best first). A
    degenerate result has no paths because every hypothesis reached
    probability 0; error is set when the item itself was malformed.
    """

    paths: List[List[int]] = field(default_factory=list)
    scores: List[float] = field(default_factory=list)
    seq_len: int = 0
    degenerate: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.degenerate


def _prepare_input_lengths(input_lengths, batch_size: int, max_time: int) -> List[int]:

    if input_lengths is None:
        return [max_time] * batch_size

    if isinstance(input_lengths, torch.Tensor):
        input_lengths = input_lengths.detach().cpu().numpy()

    input_lengths = np.asarray(input_lengths)

    if input_lengths.ndim != 1 or input_lengths.size != batch_size:
        raise ConfigurationError(f"input_lengths must have shape ({batch_size},)")

    if not np.issubdtype(input_lengths.dtype, np.integer):
        raise ConfigurationError(f"input_lengths must be integers, got {input_lengths.dtype}")

    return [int(length) for length in input_lengths]

def _validate_log_probs(log_probs) -> np.ndarray:

    if isinstance(log_probs, torch.Tensor):
        if not log_probs.is_floating_point():
            raise ConfigurationError(f"log_probs must be floating point, got {log_probs.dtype}")
        log_probs = log_probs.detach().to(device="cpu", dtype=torch.float64).numpy()

    log_probs = np.asarray(log_probs, dtype=np.float64)

    if log_probs.ndim != 3:
        raise ConfigurationError(f"log_probs must have shape (batch, time, vocab), got {tuple(log_probs.shape)}")

    return log_probs

def _decode_item(
    batch_index: int,
    search_kwargs: Dict[str, Any],
    top_paths: int,
    emissions: np.ndarray,
    seq_len: int,
) -> DecodeResult:
    # every item gets its own search, tree and scorer state
    try:
        search = CTCBeamSearch(**search_kwargs)
        paths, scores = search.decode_sequence(emissions, seq_len, top_paths)

    except ConfigurationError as e:
        logger.warning("batch item %d failed: %s", batch_index, e)
        return DecodeResult(seq_len=seq_len, error=str(e))

    if not paths:
        return DecodeResult(seq_len=seq_len, degenerate=True)

    logger.debug("batch item %d: %d steps, best score %.4f", batch_index, seq_len, scores[0])
    return DecodeResult(paths=paths, scores=scores, seq_len=seq_len)

def pack_results(results: List[DecodeResult], top_paths: int) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """
    Pad per-item results into (sequences, lengths, scores) tensors.

    sequences is (batch, top_paths, max_len) filled with -1 past each length;
    missing paths have length 0 and score +inf.
    """
    batch_size = len(results)
    max_len = max((len(path) for r in results for path in r.paths), default=0)

    sequences = torch.full((batch_size, top_paths, max_len), -1, dtype=torch.int64)
    lengths = torch.zeros((batch_size, top_paths), dtype=torch.int64)
    scores = torch.full((batch_size, top_paths), float("inf"), dtype=torch.float32)

    for b, result in enumerate(results):
        for k, (path, score) in enumerate(zip(result.paths[:top_paths], result.scores[:top_paths])):
            if path:
                sequences[b, k, : len(path)] = torch.tensor(path, dtype=torch.int64)
            lengths[b, k] = len(path)
            scores[b, k] = score

    return sequences, lengths, scores

class CTCBeamSearchDecoder:
    """
    Batched CPU CTC beam search.

    Each batch item is decoded independently; with options.num_workers > 1
    items are spread over a process pool. Returned scores are negative
    log-probabilities, lower is better.
    """

    def __init__(
        self,
        beam_width: int,
        num_classes: int,
        top_paths: int = 1,
        batch_size: Optional[int] = None,
        options: DecoderOptions = None,
        scorer: Optional[BaseBeamScorer] = None,
    ):
        if options is None:
            options = DecoderOptions()

        if top_paths < 1:
            raise ConfigurationError(f"top_paths must be >= 1, got {top_paths}")

        if top_paths > beam_width:
            raise ConfigurationError(f"top_paths ({top_paths}) cannot exceed beam_width ({beam_width})")

        if options.num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {options.num_workers}")

        self.beam_width = beam_width
        self.num_classes = num_classes
        self.top_paths = top_paths
        self.batch_size = batch_size
        self.options = options
        self.scorer = scorer

        self._search_kwargs = dict(
            num_classes=num_classes,
            beam_width=beam_width,
            blank_index=options.blank_index,
            merge_repeated=options.merge_repeated,
            scorer=scorer,
            normalize_emissions=options.normalize_emissions,
        )

        # fail on bad configuration here rather than once per item
        probe = CTCBeamSearch(**self._search_kwargs)
        self.blank_index = probe.blank_index

    def decode_batch(self, log_probs, input_lengths=None) -> List[DecodeResult]:
        emissions = _validate_log_probs(log_probs)

        batch_size, max_time, num_classes = emissions.shape
        if self.batch_size is not None and batch_size != self.batch_size:
            raise ConfigurationError(f"batch_size mismatch: expected {self.batch_size}, got {batch_size}")

        if num_classes != self.num_classes:
            raise ConfigurationError(f"num_classes mismatch: expected {self.num_classes}, got {num_classes}")

        lengths = _prepare_input_lengths(input_lengths, batch_size, max_time)

        jobs = [
            (b, self._search_kwargs, self.top_paths, emissions[b], lengths[b])
            for b in range(batch_size)
        ]

        num_workers = min(self.options.num_workers, batch_size)

        if num_workers > 1:
            with mp.get_context("fork").Pool(num_workers) as pool:
                results = pool.starmap(_decode_item, jobs)
        else:
            results = [_decode_item(*job) for job in jobs]

        failed = sum(1 for r in results if r.error is not None)
        if failed:
            logger.warning("%d of %d batch items could not be decoded", failed, batch_size)

        return results

    def decode(
        self,
        log_probs,
        input_lengths=None,
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        results = self.decode_batch(log_probs, input_lengths)
        return pack_results(results, self.top_paths)

    def decode_greedy(
        self,
        log_probs,
        input_lengths=None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:

        sequences, lengths, _ = self.decode(log_probs, input_lengths)

        best_sequences = sequences[:, 0, :]
        best_lengths = lengths[:, 0]

        return best_sequences, best_lengths

def ctc_beam_search_decode(
    log_probs,
    beam_width: int = 10,
    blank_index: Optional[int] = None,
    input_lengths=None,
    top_paths: int = 1,
    merge_repeated: bool = True,
    scorer: Optional[BaseBeamScorer] = None,
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    num_classes = log_probs.shape[-1]

    decoder = CTCBeamSearchDecoder(
        beam_width=beam_width,
        num_classes=num_classes,
        top_paths=top_paths,
        options=DecoderOptions(blank_index=blank_index, merge_repeated=merge_repeated),
        scorer=scorer,
    )

    return decoder.decode(log_probs, input_lengths)

def ctc_beam_search(
    log_probs,
    input_lengths,
    beam_width: int,
    blank_idx: int,
    top_k: int,
    scorer: Optional[BaseBeamScorer] = None,
) -> Tuple[torch.Tensor, torch.Tensor]:

    if top_k > beam_width:
        raise ConfigurationError("top_k cannot exceed beam_width")

    sequences, _, scores = ctc_beam_search_decode(
        log_probs,
        beam_width=beam_width,
        blank_index=blank_idx,
        input_lengths=input_lengths,
        top_paths=top_k,
        scorer=scorer,
    )

    # already best first, scores ascending
    return sequences, scores

__all__ = [
    "CTCBeamSearchDecoder",
    "DecoderOptions",
    "DecodeResult",
    "ctc_beam_search_decode",
    "ctc_beam_search",
    "pack_results",
]
