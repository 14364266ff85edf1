import math

import numpy as np
import pytest
import torch

from beamsearch import BaseBeamScorer, ConfigurationError, CTCBeamSearch, greedy_decode_single

from utils import generate_test_inputs, graves_example, peaked_log_probs, random_frame_classes


def test_graves_example_recovers_both_paths():
    search = CTCBeamSearch(num_classes=2, beam_width=2)

    paths, scores = search.decode_sequence(graves_example(), top_paths=2)

    assert paths == [[0], []]
    assert scores[0] == pytest.approx(-math.log(0.58), abs=1e-9)
    assert scores[1] == pytest.approx(-math.log(0.42), abs=1e-9)


@pytest.mark.parametrize("beam_width", [3, 8])
def test_graves_example_wider_beam(beam_width):
    search = CTCBeamSearch(num_classes=2, beam_width=beam_width)

    paths, scores = search.decode_sequence(graves_example(), top_paths=2)

    assert paths == [[0], []]
    assert [math.exp(-s) for s in scores] == pytest.approx([0.58, 0.42], abs=1e-9)


def test_graves_example_beam_one_is_best_path():
    search = CTCBeamSearch(num_classes=2, beam_width=1)

    paths, scores = search.decode_sequence(graves_example(), top_paths=1)

    assert paths == [[]]
    assert scores[0] == pytest.approx(-math.log(0.42), abs=1e-9)


def test_zero_length_input_yields_empty_path_with_probability_one():
    search = CTCBeamSearch(num_classes=5, beam_width=4)
    log_probs = torch.log_softmax(torch.randn(6, 5), dim=-1)

    paths, scores = search.decode_sequence(log_probs, seq_len=0, top_paths=1)

    assert paths == [[]]
    assert scores == [0.0]


def test_step_before_reset():
    search = CTCBeamSearch(num_classes=3, beam_width=2)

    with pytest.raises(ConfigurationError):
        search.step([0.0, 0.0, 0.0])

    with pytest.raises(ConfigurationError):
        search.top_paths(1)


def test_emission_length_mismatch():
    search = CTCBeamSearch(num_classes=3, beam_width=2)
    search.reset()

    with pytest.raises(ConfigurationError):
        search.step([math.log(0.5), math.log(0.5)])


def test_top_paths_limits():
    search = CTCBeamSearch(num_classes=3, beam_width=4)
    search.reset()

    # only the root is in the beam
    with pytest.raises(ConfigurationError):
        search.top_paths(2)

    with pytest.raises(ConfigurationError):
        search.top_paths(5)

    with pytest.raises(ConfigurationError):
        search.top_paths(0)

    paths, scores = search.top_paths(1)
    assert paths == [[]]


def test_step_after_finalize_needs_reset():
    search = CTCBeamSearch(num_classes=3, beam_width=2)
    search.reset()
    search.step(np.log([0.2, 0.3, 0.5]))
    search.finalize()

    with pytest.raises(ConfigurationError):
        search.step(np.log([0.2, 0.3, 0.5]))

    with pytest.raises(ConfigurationError):
        search.finalize()

    search.reset()
    search.step(np.log([0.2, 0.3, 0.5]))
    assert search.time_step == 1


@pytest.mark.parametrize("beam_width", [1, 2, 5, 16])
def test_frontier_never_exceeds_beam_width(beam_width):
    log_probs, _ = generate_test_inputs(1, 40, 7, seed=beam_width)
    search = CTCBeamSearch(num_classes=7, beam_width=beam_width)
    search.reset()

    for t in range(log_probs.shape[1]):
        search.step(log_probs[0, t])
        assert len(search.frontier) <= beam_width
        assert all(entry.active for entry in search.frontier)


def test_children_populated_at_most_once():
    log_probs, _ = generate_test_inputs(1, 25, 4, seed=3)
    search = CTCBeamSearch(num_classes=4, beam_width=6)
    search.decode_sequence(log_probs[0])

    tree = search.tree
    for entry in tree.entries:
        if entry.has_children:
            assert len(entry.children) == 3
    # every entry belongs to exactly one parent's children list
    owned = [i for entry in tree.entries if entry.has_children for i in entry.children]
    assert len(owned) == len(set(owned)) == len(tree) - 1


def test_decoding_is_deterministic():
    log_probs, _ = generate_test_inputs(1, 50, 9, seed=11)

    first = CTCBeamSearch(num_classes=9, beam_width=6).decode_sequence(log_probs[0], top_paths=4)
    second = CTCBeamSearch(num_classes=9, beam_width=6).decode_sequence(log_probs[0], top_paths=4)

    assert first == second


def test_reset_discards_previous_sequence():
    log_probs, _ = generate_test_inputs(2, 30, 6, seed=5)
    search = CTCBeamSearch(num_classes=6, beam_width=4)

    search.decode_sequence(log_probs[0], top_paths=2)
    reused = search.decode_sequence(log_probs[1], top_paths=2)
    fresh = CTCBeamSearch(num_classes=6, beam_width=4).decode_sequence(log_probs[1], top_paths=2)

    assert reused == fresh


def test_scores_are_sorted_and_paths_exclude_blank():
    log_probs, _ = generate_test_inputs(1, 30, 6, seed=2)
    search = CTCBeamSearch(num_classes=6, beam_width=8)

    paths, scores = search.decode_sequence(log_probs[0], top_paths=5)

    assert scores == sorted(scores)
    assert all(label != 5 for path in paths for label in path)


@pytest.mark.parametrize("seed", range(8))
def test_beam_width_one_matches_best_path(seed):
    vocab_size, blank = 6, 5
    frames = random_frame_classes(30, vocab_size, blank, seed=seed)
    log_probs = peaked_log_probs(frames, vocab_size)

    search = CTCBeamSearch(num_classes=vocab_size, beam_width=1, merge_repeated=True)
    paths, _ = search.decode_sequence(log_probs)
    greedy_path, _ = greedy_decode_single(log_probs.numpy(), blank_index=blank, merge_repeated=True)

    assert paths[0] == greedy_path


def test_merge_repeated_on_same_tree():
    # a - a b: the beam holds the raw history [a, a, b]
    a, b, blank = 0, 1, 2
    log_probs = peaked_log_probs([a, blank, a, b], vocab_size=3)

    search = CTCBeamSearch(num_classes=3, beam_width=8)
    search.decode_sequence(log_probs)

    merged, merged_scores = search.top_paths(1, merge_repeated=True)
    raw, raw_scores = search.top_paths(1, merge_repeated=False)

    assert merged == [[a, b]]
    assert raw == [[a, a, b]]
    assert merged_scores == raw_scores


def test_blank_index_can_be_first_class():
    # same distribution as the textbook example with the columns swapped
    log_probs = graves_example().flip(-1)
    search = CTCBeamSearch(num_classes=2, beam_width=2, blank_index=0)

    paths, scores = search.decode_sequence(log_probs, top_paths=2)

    assert paths == [[1], []]
    assert scores[0] == pytest.approx(-math.log(0.58), abs=1e-9)


def test_normalize_emissions_ignores_per_frame_offsets():
    log_probs, _ = generate_test_inputs(1, 20, 5, seed=8)
    log_probs = log_probs.double()
    shifted = log_probs[0] + torch.arange(20, dtype=log_probs.dtype).unsqueeze(1)

    plain = CTCBeamSearch(num_classes=5, beam_width=4, normalize_emissions=True)
    offset = CTCBeamSearch(num_classes=5, beam_width=4, normalize_emissions=True)

    paths_a, scores_a = plain.decode_sequence(log_probs[0], top_paths=3)
    paths_b, scores_b = offset.decode_sequence(shifted, top_paths=3)

    assert paths_a == paths_b
    assert scores_a == pytest.approx(scores_b, abs=1e-4)


def test_collapsed_beam_is_degenerate_not_an_error():
    search = CTCBeamSearch(num_classes=3, beam_width=3)
    with np.errstate(divide="ignore"):
        log_probs = np.log([[0.2, 0.3, 0.5], [0.0, 0.0, 0.0], [0.2, 0.3, 0.5]])
        paths, scores = search.decode_sequence(log_probs)

    assert paths == []
    assert scores == []
    assert len(search.frontier) == 0


def test_invalid_configuration():
    with pytest.raises(ConfigurationError):
        CTCBeamSearch(num_classes=1, beam_width=2)

    with pytest.raises(ConfigurationError):
        CTCBeamSearch(num_classes=3, beam_width=0)

    with pytest.raises(ConfigurationError):
        CTCBeamSearch(num_classes=3, beam_width=2, blank_index=3)


class CountingScorer(BaseBeamScorer):
    def __init__(self):
        self.calls = {"init": 0, "end": 0}

    def initialize_state(self):
        self.calls["init"] += 1
        return ()

    def expand_state(self, from_state, from_label, to_label):
        return from_state + (to_label,)

    def expand_state_end(self, state):
        self.calls["end"] += 1
        return state


def test_scorer_hooks_are_called():
    scorer = CountingScorer()
    search = CTCBeamSearch(num_classes=3, beam_width=3, scorer=scorer)
    log_probs = peaked_log_probs([0, 2, 1], vocab_size=3)

    paths, _ = search.decode_sequence(log_probs, top_paths=1)

    assert scorer.calls["init"] == 1
    assert scorer.calls["end"] == 3
    assert search.tree.root.state == ()
    best = search.frontier.top(1)[0]
    assert best.state == tuple(paths[0])
