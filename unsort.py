"""Reference shufflers for the two algorithm families.

Both operate on a copy of the input and draw from a numpy Generator, so a
seeded NumpyShuffler replays the same sequence of permutations.
"""
from typing import Optional, Sequence
import threading

import numpy as np
import numpy.typing as npt

from frequency_analysis import Algorithm, AlgorithmLike

IntArray = npt.NDArray[np.int64]


def _swap_down(arr: IntArray, positions: IntArray, targets: IntArray) -> IntArray:
    for i, j in zip(positions.tolist(), targets.tolist()):
        arr[i], arr[j] = arr[j], arr[i]
    return arr


def fisher_yates(arr: IntArray, rng: np.random.Generator) -> IntArray:
    """Shuffle in place so that every permutation is equally likely."""
    if len(arr) < 2:
        return arr
    positions = np.arange(len(arr) - 1, 0, -1)
    # All swap targets in one draw: j uniform in [0, i] for each i.
    targets = rng.integers(0, positions + 1)
    return _swap_down(arr, positions, targets)


def sattolo(arr: IntArray, rng: np.random.Generator) -> IntArray:
    """Shuffle in place into a uniformly random single cycle.

    Same loop as Fisher-Yates, except j is drawn strictly below i. Every element
    therefore ends up away from the index it started at (for length >= 2), and
    is equally likely to land at any of the other length - 1 indices.
    """
    if len(arr) < 2:
        return arr
    positions = np.arange(len(arr) - 1, 0, -1)
    targets = rng.integers(0, positions)
    return _swap_down(arr, positions, targets)


class NumpyShuffler:
    """Shuffler backed by a numpy Generator; safe to share between threads."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()

    def shuffle(self, sequence: Sequence[int], algorithm: AlgorithmLike) -> IntArray:
        algorithm = Algorithm.parse(algorithm)
        arr = np.array(sequence, dtype=np.int64)
        with self._lock:
            if algorithm is Algorithm.FISHER_YATES:
                return fisher_yates(arr, self._rng)
            return sattolo(arr, self._rng)
