"""
Unit tests for the reference shufflers.
"""

import numpy as np
import pytest

from frequency_analysis import Algorithm, UnknownAlgorithmError
from unsort import NumpyShuffler, fisher_yates, sattolo


def test_fisher_yates_returns_permutation():
    rng = np.random.default_rng(0)
    out = fisher_yates(np.arange(10, dtype=np.int64), rng)
    assert sorted(out.tolist()) == list(range(10))


def test_sattolo_has_no_fixed_points():
    """Test that no element stays at its starting index."""
    rng = np.random.default_rng(0)
    for length in range(2, 12):
        for _ in range(50):
            out = sattolo(np.arange(length, dtype=np.int64), rng)
            assert sorted(out.tolist()) == list(range(length))
            assert not (out == np.arange(length)).any()


def test_sattolo_produces_a_single_cycle():
    rng = np.random.default_rng(5)
    out = sattolo(np.arange(9, dtype=np.int64), rng)

    seen, i = set(), 0
    while i not in seen:
        seen.add(i)
        i = int(out[i])
    assert len(seen) == 9


def test_shuffler_does_not_mutate_input():
    shuffler = NumpyShuffler(seed=1)
    sequence = [0, 1, 2, 3, 4]
    shuffler.shuffle(sequence, Algorithm.FISHER_YATES)
    arr = np.arange(5, dtype=np.int64)
    shuffler.shuffle(arr, "unique-idx")
    assert sequence == [0, 1, 2, 3, 4]
    np.testing.assert_array_equal(arr, np.arange(5))


def test_shuffler_is_reproducible_with_seed():
    a = NumpyShuffler(seed=99)
    b = NumpyShuffler(seed=99)
    for _ in range(5):
        np.testing.assert_array_equal(
            a.shuffle(range(8), "fisher-yates"),
            b.shuffle(range(8), "fisher-yates"),
        )


def test_shuffler_rejects_unknown_algorithm():
    with pytest.raises(UnknownAlgorithmError):
        NumpyShuffler(seed=0).shuffle([0, 1, 2], "bubble")


class RecordingRng:
    """Wraps a Generator and records every integers() call."""

    def __init__(self, seed):
        self._rng = np.random.default_rng(seed)
        self.highs = []

    def integers(self, low, high):
        self.highs.append(np.asarray(high).tolist())
        return self._rng.integers(low, high)


@pytest.mark.parametrize("shuffle,highs", [
    (fisher_yates, [[6, 5, 4, 3, 2]]),
    (sattolo, [[5, 4, 3, 2, 1]]),
])
def test_swap_targets_are_drawn_in_one_batch(shuffle, highs):
    """Test that all swap targets come from a single vectorised draw."""
    rng = RecordingRng(3)
    out = shuffle(np.arange(6, dtype=np.int64), rng)
    assert rng.highs == highs
    assert sorted(out.tolist()) == list(range(6))


@pytest.mark.parametrize("shuffle", [fisher_yates, sattolo])
@pytest.mark.parametrize("length", [0, 1])
def test_short_sequences_are_left_alone(shuffle, length):
    rng = RecordingRng(0)
    out = shuffle(np.arange(length, dtype=np.int64), rng)
    assert out.tolist() == list(range(length))
    assert rng.highs == []
