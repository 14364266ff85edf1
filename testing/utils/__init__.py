"""
util for module access
"""

from .timing import run_timed, print_timing_table
from .similarity import (
    levenshtein_distance,
    normalized_similarity,
    compute_avg_edit_distance,
    exact_match_rate,
)
from .tokenization import (
    make_tokens,
    detokenize,
    format_decoder_outputs,
    format_reference_outputs,
    print_decoder_outputs,
)
from .inputs import (
    generate_test_inputs,
    peaked_log_probs,
    random_frame_classes,
    graves_example,
)


__all__ = [
    "run_timed",
    "print_timing_table",
    "levenshtein_distance",
    "normalized_similarity",
    "compute_avg_edit_distance",
    "exact_match_rate",
    "make_tokens",
    "detokenize",
    "format_decoder_outputs",
    "format_reference_outputs",
    "print_decoder_outputs",
    "generate_test_inputs",
    "peaked_log_probs",
    "random_frame_classes",
    "graves_example",
]
