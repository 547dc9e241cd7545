"""
Shuffle frequency distribution

Shuffles the identity sequence [0..length-1] many times, counts how often each
input index lands at each output position and prints the table, marking every
cell that deviates more than 5% from the expected count.

How to run:
  python distribution_cli.py
  python distribution_cli.py --length 10 --trials-exp 6 --algorithm fisher-yates
  python distribution_cli.py --length 8 --trials 250000 --workers 4 --seed 7
"""
from typing import List, Optional
import argparse
import logging
import math
import sys

from frequency_analysis import Algorithm, FrequencyAnalysisError, Report, RunConfig, run_analysis
from unsort import NumpyShuffler

logger = logging.getLogger(__name__)

ERROR_NOTICE = "Any value marked * deviates more than 5% from expected value, and may indicate uneven distribution"

_SI_PREFIXES = ["", "k", "M", "G", "T", "P"]


def fmt_pct(fraction: float) -> str:
    return f"{fraction * 100:.1f}%"


def fmt_si(n: int) -> str:
    """One significant digit with an SI suffix: 100000 -> '100k', 12345 -> '10k'."""
    if n == 0:
        return "0"
    magnitude = int(math.floor(math.log10(abs(n))))
    step = 10 ** magnitude
    # Half rounds up (2500 -> 3k), unlike round().
    rounded = (abs(n) + step // 2) // step * step * (1 if n > 0 else -1)
    group = min(int(math.floor(math.log10(abs(rounded)))) // 3, len(_SI_PREFIXES) - 1)
    scaled = rounded / 10 ** (3 * group)
    return f"{scaled:g}{_SI_PREFIXES[group]}"


def format_table(report: Report) -> List[str]:
    header = ["Input"] + [f"Idx {j}" for j in range(report.length)] + ["Expected", "Range"]
    body = []
    for row in report.rows:
        cells = [f"{c.count}*" if c.deviates else f"{c.count}" for c in row.cells]
        body.append([f"Idx {row.index}"] + cells + [f"{report.rounded_baseline}", f"{row.range_pct:.1f}%"])

    widths = [max(len(r[k]) for r in [header] + body) for k in range(len(header))]
    lines = ["  ".join(v.rjust(w) for v, w in zip(r, widths)) for r in [header] + body]
    lines.insert(1, "-" * len(lines[0]))
    return lines


def format_report(report: Report) -> str:
    lines = [
        f"Frequency Distribution (array length: {report.length}, iterations: {fmt_si(report.trials)}, "
        f"algorithm: {report.algorithm.value})",
        "",
    ]
    lines += format_table(report)
    lines += [
        "",
        f"Max freq: {fmt_pct(report.global_stats.freq_max)}, Min freq: {fmt_pct(report.global_stats.freq_min)}",
        f"Duration: {report.duration_ms:.0f}ms",
        ERROR_NOTICE,
    ]
    return "\n".join(lines)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Check how evenly a shuffle algorithm distributes positions.")
    ap.add_argument("--length", type=int, default=8, help="Length of the shuffled sequence")
    trials = ap.add_mutually_exclusive_group()
    trials.add_argument("--trials", type=int, default=None, help="Number of shuffles (default 100000)")
    trials.add_argument("--trials-exp", type=int, default=None, help="Run 10**k shuffles")
    ap.add_argument("--algorithm", type=str, default=Algorithm.UNIQUE_IDX.value,
                    help="One of: " + ", ".join(a.value for a in Algorithm))
    ap.add_argument("--seed", type=int, default=None, help="Random seed for the reference shuffler")
    ap.add_argument("--workers", type=int, default=1, help="Threads to spread the trials over")
    ap.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.trials_exp is not None:
        trials = 10 ** args.trials_exp
    elif args.trials is not None:
        trials = args.trials
    else:
        trials = 100000

    try:
        config = RunConfig(length=args.length, trials=trials, algorithm=args.algorithm)
        print(f"Executing {fmt_si(config.trials)} shuffle operations with array length {config.length}...")
        report = run_analysis(config, NumpyShuffler(args.seed), workers=args.workers)
    except FrequencyAnalysisError as exc:
        logger.debug("run failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(format_report(report))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
