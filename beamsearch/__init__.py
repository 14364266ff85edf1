"""
CPU CTC Beam Search Decoder

This package provides a prefix beam search decoder for CTC emission models
(speech, handwriting) with pluggable hypothesis scorers, plus a greedy
best path decoder. Scores are negative log-probabilities.
"""

from .beam_entry import LOG_ZERO, BeamEntry, BeamProbability, BeamTree, log_sum_exp
from .beam_search import (
    CTCBeamSearchDecoder,
    DecodeResult,
    DecoderOptions,
    ctc_beam_search,
    ctc_beam_search_decode,
)
from .ctc_beam_search import CTCBeamSearch
from .errors import ConfigurationError
from .greedy import ctc_greedy_decode, greedy_decode_single
from .scorer import BaseBeamScorer, DictionaryBeamScorer, HistoryBeamState
from .top_n import BeamFrontier

__version__ = "1.0.0"
__all__ = [
    'CTCBeamSearchDecoder',
    'CTCBeamSearch',
    'DecodeResult',
    'DecoderOptions',
    'ctc_beam_search_decode',
    'ctc_beam_search',
    'ctc_greedy_decode',
    'greedy_decode_single',
    'BaseBeamScorer',
    'DictionaryBeamScorer',
    'HistoryBeamState',
    'BeamFrontier',
    'BeamEntry',
    'BeamProbability',
    'BeamTree',
    'ConfigurationError',
    'LOG_ZERO',
    'log_sum_exp',
]
