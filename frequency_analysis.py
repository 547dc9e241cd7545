from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Protocol, Sequence, Tuple, TypeAlias, Union
import enum
import logging
import threading
import time

import numpy as np
import numpy.typing as npt

logger = logging.getLogger(__name__)

# Type alias for clarity: an NxN array of integer counts where element [i, j] is
#    the number of trials in which input index i landed at output position j.
# For example, after 4 trials of length 2 that alternate [0, 1] and [1, 0], every
#    cell holds 2: each index spent half of the trials at each position.
CountMatrix: TypeAlias = npt.NDArray[np.int64]
Permutation: TypeAlias = npt.NDArray[np.int64]  # 1D array, a bijection over 0..N-1
FrozenMatrix: TypeAlias = Tuple[Tuple[int, ...], ...]

# A cell is flagged when it deviates from the expected count by more than this fraction.
DEVIATION_TOLERANCE = 0.05


class FrequencyAnalysisError(Exception):
    """Base class for every error raised by a frequency analysis run."""


class InvalidParameterError(FrequencyAnalysisError, ValueError):
    """Sequence length or trial count below 1."""


class DegenerateInputError(FrequencyAnalysisError, ValueError):
    """The index-biased family has no off-diagonal cell when the length is 1."""


class ShuffleFailedError(FrequencyAnalysisError, RuntimeError):
    """The shuffle collaborator raised, or returned something that is not a permutation."""


class RunAbortedError(ShuffleFailedError):
    """Trials stopped because another partition of the same run failed."""


class UnknownAlgorithmError(FrequencyAnalysisError, ValueError):
    """The algorithm selector is not one of the known families."""


class Algorithm(enum.Enum):
    """Algorithm families, each with its own baseline and diagonal policy."""
    FISHER_YATES = "fisher-yates"
    UNIQUE_IDX = "unique-idx"

    @classmethod
    def parse(cls, value: Union["Algorithm", str]) -> "Algorithm":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownAlgorithmError(f"Invalid algo: {value!r}") from None


AlgorithmLike: TypeAlias = Union[Algorithm, str]


class Shuffler(Protocol):
    def shuffle(self, sequence: Sequence[int], algorithm: Algorithm) -> Sequence[int]:
        ...


def _check_positive(name: str, value: int) -> None:
    if value < 1:
        raise InvalidParameterError(f"{name} must be at least 1, got {value}")


@dataclass(frozen=True)
class RunConfig:
    """Everything a single analysis run needs. No state is shared between runs."""
    length: int
    trials: int
    algorithm: Algorithm = Algorithm.UNIQUE_IDX

    def __post_init__(self) -> None:
        _check_positive("length", self.length)
        _check_positive("trials", self.trials)
        object.__setattr__(self, "algorithm", Algorithm.parse(self.algorithm))


def identity(length: int) -> Permutation:
    """Generate the identity sequence [0, 1, ..., length - 1]."""
    _check_positive("length", length)
    return np.arange(length, dtype=np.int64)


# Trial runner

def run_trials(
    length: int,
    trials: int,
    shuffler: Shuffler,
    algorithm: AlgorithmLike,
    *,
    abort: Optional[threading.Event] = None,
) -> Iterator[Permutation]:
    """Lazily produce one shuffled identity sequence per trial.

    Parameters are validated before the first trial runs, so a bad length or
    trial count fails at the call site rather than on first iteration.

    Raises:
        InvalidParameterError: length or trials below 1.
        UnknownAlgorithmError: unrecognized algorithm selector.
        ShuffleFailedError: while iterating, if the shuffler raises or returns
            something other than a permutation of 0..length-1.
        RunAbortedError: while iterating, once `abort` is set.
    """
    _check_positive("length", length)
    _check_positive("trials", trials)
    return _trials(length, trials, shuffler, Algorithm.parse(algorithm), abort)


def _trials(
    length: int,
    trials: int,
    shuffler: Shuffler,
    algorithm: Algorithm,
    abort: Optional[threading.Event],
) -> Iterator[Permutation]:
    expected_sorted = identity(length)
    for trial in range(trials):
        if abort is not None and abort.is_set():
            raise RunAbortedError(f"run aborted before trial {trial}")
        sequence = identity(length)
        try:
            result = shuffler.shuffle(sequence, algorithm)
            permutation = np.asarray(result)
        except Exception as exc:
            raise ShuffleFailedError(f"shuffle failed on trial {trial}: {exc}") from exc

        # Floats would truncate into a valid-looking permutation.
        if not np.issubdtype(permutation.dtype, np.integer):
            raise ShuffleFailedError(f"shuffle returned non-integer values on trial {trial}: {result!r}")
        permutation = permutation.astype(np.int64, copy=False)
        if permutation.shape != (length,) or not np.array_equal(np.sort(permutation), expected_sorted):
            raise ShuffleFailedError(f"shuffle returned a non-permutation on trial {trial}: {result!r}")
        yield permutation


# Frequency accumulator

def init_counts(length: int) -> CountMatrix:
    """Zero-filled length x length count matrix."""
    _check_positive("length", length)
    return np.zeros((length, length), dtype=np.int64)


def record(counts: CountMatrix, permutation: Permutation) -> CountMatrix:
    """Tally one trial: input index permutation[j] landed at output position j.

    The permutation is a bijection, so every row gains exactly one count.
    The matrix is updated in place and returned.
    """
    counts[permutation, np.arange(len(permutation))] += 1
    return counts


def accumulate(length: int, outcomes: Iterable[Permutation]) -> CountMatrix:
    counts = init_counts(length)
    for permutation in outcomes:
        record(counts, permutation)
    return counts


def merge_counts(parts: Iterable[CountMatrix]) -> CountMatrix:
    """Sum count matrices accumulated over disjoint partitions of the trials."""
    parts = list(parts)
    if not parts:
        raise InvalidParameterError("no count matrices to merge")
    return np.sum(parts, axis=0, dtype=np.int64)


# Baseline calculator

def expected(length: int, trials: int, algorithm: AlgorithmLike) -> float:
    """Expected count per eligible cell for a perfectly uniform algorithm of the family.

    Uniform permutations spread each index over all `length` positions. The
    index-biased family never leaves an index in place, so each index is
    spread over the other `length - 1` positions.
    """
    _check_positive("length", length)
    _check_positive("trials", trials)
    algorithm = Algorithm.parse(algorithm)
    if algorithm is Algorithm.FISHER_YATES:
        return trials / length
    if length == 1:
        raise DegenerateInputError(f"{algorithm.value} is undefined for length 1 (no off-diagonal cell)")
    return trials / (length - 1)


def round_for_display(baseline: float) -> int:
    # Half rounds up.
    return int(np.floor(baseline + 0.5))


# Distribution analyzer

@dataclass(frozen=True)
class CellStatistic:
    count: int
    frequency: float
    deviates: bool
    is_zero: bool


@dataclass(frozen=True)
class RowStatistic:
    index: int
    cells: Tuple[CellStatistic, ...]
    max_count: int
    min_count: int
    freq_max: float
    freq_min: float
    range_pct: float


@dataclass(frozen=True)
class GlobalStatistic:
    freq_max: float
    freq_min: float


def eligible_mask(length: int, algorithm: AlgorithmLike) -> npt.NDArray[np.bool_]:
    """True for every cell that takes part in min/max statistics."""
    algorithm = Algorithm.parse(algorithm)
    if algorithm is Algorithm.UNIQUE_IDX:
        return ~np.eye(length, dtype=np.bool_)
    return np.ones((length, length), dtype=np.bool_)


def deviation_flags(counts: CountMatrix, baseline: float) -> npt.NDArray[np.bool_]:
    """Cells that deviate more than 5% from the expected count.

    A zero count is never flagged, even though it is as far from the baseline
    as a cell can be. Renderers mark those cells as zero instead.
    """
    counts = np.asarray(counts)
    return (counts != 0) & (np.abs(baseline - counts) > baseline * DEVIATION_TOLERANCE)


def analyze(
    counts: CountMatrix,
    trials: int,
    algorithm: AlgorithmLike,
    baseline: float,
) -> Tuple[GlobalStatistic, Tuple[RowStatistic, ...]]:
    """Compute global and per-row frequency statistics for a count matrix.

    Rows and columns are visited in increasing index order. A cell is eligible
    for min/max unless the family is index-biased and the cell sits on the
    diagonal.

    Args:
        counts: NxN count matrix, rows are input indices, columns output positions.
        trials: Number of trials the matrix was accumulated over.
        algorithm: Algorithm family the counts came from.
        baseline: Unrounded expected count per eligible cell.

    Returns:
        (global statistic, row statistics in index order)
    """
    algorithm = Algorithm.parse(algorithm)
    _check_positive("trials", trials)
    if not baseline > 0:
        raise InvalidParameterError(f"baseline must be positive, got {baseline}")
    counts = np.asarray(counts, dtype=np.int64)
    length = counts.shape[0]
    if counts.shape != (length, length) or length < 1:
        raise InvalidParameterError(f"count matrix must be square and non-empty, got shape {counts.shape}")

    eligible = eligible_mask(length, algorithm)
    if not eligible.any():
        raise DegenerateInputError(f"{algorithm.value} has no eligible cell for length {length}")

    freqs = counts / trials
    flags = deviation_flags(counts, baseline)

    rows = []
    for i in range(length):
        row_eligible = counts[i][eligible[i]]
        max_count = int(row_eligible.max())
        min_count = int(row_eligible.min())
        cells = tuple(
            CellStatistic(
                count=int(counts[i, j]),
                frequency=float(freqs[i, j]),
                deviates=bool(flags[i, j]),
                is_zero=bool(counts[i, j] == 0),
            )
            for j in range(length)
        )
        rows.append(RowStatistic(
            index=i,
            cells=cells,
            max_count=max_count,
            min_count=min_count,
            freq_max=max_count / trials,
            freq_min=min_count / trials,
            range_pct=abs(max_count - min_count) / baseline * 100.0,
        ))

    global_stats = GlobalStatistic(
        freq_max=float(freqs[eligible].max()),
        freq_min=float(freqs[eligible].min()),
    )
    return global_stats, tuple(rows)


# Report model

@dataclass(frozen=True)
class Report:
    """Everything a renderer needs; nothing has to be recomputed downstream."""
    counts: FrozenMatrix
    length: int
    trials: int
    algorithm: Algorithm
    baseline: float
    rows: Tuple[RowStatistic, ...]
    global_stats: GlobalStatistic
    duration_ms: float

    @property
    def rounded_baseline(self) -> int:
        return round_for_display(self.baseline)

    def count_matrix(self) -> CountMatrix:
        """A fresh numpy copy of the counts."""
        return np.array(self.counts, dtype=np.int64)


def freeze(counts: CountMatrix) -> FrozenMatrix:
    return tuple(tuple(int(c) for c in row) for row in np.asarray(counts))


def build_report(
    counts: CountMatrix,
    length: int,
    trials: int,
    algorithm: AlgorithmLike,
    baseline: float,
    rows: Iterable[RowStatistic],
    global_stats: GlobalStatistic,
    duration_ms: float,
) -> Report:
    return Report(
        counts=freeze(counts),
        length=length,
        trials=trials,
        algorithm=Algorithm.parse(algorithm),
        baseline=float(baseline),
        rows=tuple(rows),
        global_stats=global_stats,
        duration_ms=float(duration_ms),
    )


# Orchestration

def now_ns() -> int:
    return time.perf_counter_ns()


def ns_to_ms(ns: int) -> float:
    return ns / 1_000_000.0


def split_trials(trials: int, chunks: int) -> list[int]:
    """Split a trial count into at most `chunks` near-equal positive parts."""
    chunks = max(1, min(chunks, trials))
    base, extra = divmod(trials, chunks)
    return [base + (1 if k < extra else 0) for k in range(chunks)]


def _accumulate_chunk(
    length: int,
    trials: int,
    shuffler: Shuffler,
    algorithm: Algorithm,
    abort: threading.Event,
) -> CountMatrix:
    logger.debug("accumulating chunk of %d trials", trials)
    try:
        return accumulate(length, run_trials(length, trials, shuffler, algorithm, abort=abort))
    except Exception:
        abort.set()
        raise


def _accumulate_parallel(length: int, trials: int, shuffler: Shuffler, algorithm: Algorithm, workers: int) -> CountMatrix:
    """Tally partitions of the trials on a thread pool and sum the matrices.

    The first failing partition stops its siblings, and its own error is the
    one raised, not the RunAbortedError of a sibling it stopped.
    """
    parts = split_trials(trials, workers)
    abort = threading.Event()
    with ThreadPoolExecutor(max_workers=len(parts)) as pool:
        futures = [pool.submit(_accumulate_chunk, length, n, shuffler, algorithm, abort) for n in parts]

    failures = [f.exception() for f in futures if f.exception() is not None]
    if failures:
        logger.debug("%d of %d partitions failed", len(failures), len(parts))
        raise next((e for e in failures if not isinstance(e, RunAbortedError)), failures[0])
    return merge_counts(f.result() for f in futures)


def run_analysis(config: RunConfig, shuffler: Shuffler, workers: int = 1) -> Report:
    """Run every trial for `config`, then analyze the counts into a Report.

    With workers > 1 the trials are partitioned, each partition is tallied into
    its own matrix on a thread pool, and the matrices are summed. The shuffler
    must then tolerate calls from several threads.
    """
    _check_positive("workers", workers)
    length, trials, algorithm = config.length, config.trials, config.algorithm

    # Degenerate families fail before any trial runs.
    baseline = expected(length, trials, algorithm)

    logger.info(
        "running %d %s shuffles of length %d on %d worker(s)",
        trials, algorithm.value, length, workers,
    )
    start = now_ns()
    if workers == 1:
        counts = accumulate(length, run_trials(length, trials, shuffler, algorithm))
    else:
        counts = _accumulate_parallel(length, trials, shuffler, algorithm, workers)
    duration_ms = ns_to_ms(now_ns() - start)

    global_stats, rows = analyze(counts, trials, algorithm, baseline)
    logger.info(
        "finished in %.1f ms: freq max=%.4f min=%.4f",
        duration_ms, global_stats.freq_max, global_stats.freq_min,
    )
    return build_report(counts, length, trials, algorithm, baseline, rows, global_stats, duration_ms)
