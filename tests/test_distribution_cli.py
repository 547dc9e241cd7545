"""
Tests for the command-line front end and text renderer.
"""

import numpy as np
import pytest

from distribution_cli import ERROR_NOTICE, fmt_pct, fmt_si, format_report, main
from frequency_analysis import analyze, build_report


@pytest.mark.parametrize("n,text", [
    (100000, "100k"),
    (1000000, "1M"),
    (12345, "10k"),
    (2500, "3k"),
    (2499, "2k"),
    (950, "1k"),
    (8, "8"),
    (10, "10"),
    (0, "0"),
])
def test_fmt_si(n, text):
    assert fmt_si(n) == text


def test_fmt_pct():
    assert fmt_pct(0.125) == "12.5%"
    assert fmt_pct(1 / 7) == "14.3%"


def test_format_report_marks_deviating_cells():
    counts = np.array([[3, 1], [1, 3]])
    global_stats, rows = analyze(counts, 4, "fisher-yates", 2.0)
    report = build_report(counts, 2, 4, "fisher-yates", 2.0, rows, global_stats, 12.0)

    text = format_report(report)

    assert "array length: 2" in text
    assert "3*" in text
    assert "Max freq: 75.0%, Min freq: 25.0%" in text
    assert "Duration: 12ms" in text
    assert "100.0%" in text  # row range: (3 - 1) / 2
    assert text.endswith(ERROR_NOTICE)


def test_main_prints_table(capsys):
    code = main(["--length", "4", "--trials", "200", "--algorithm", "fisher-yates", "--seed", "3"])
    out = capsys.readouterr().out

    assert code == 0
    assert "Executing 200 shuffle operations with array length 4..." in out
    assert "Idx 3" in out
    assert "Expected" in out and "Range" in out


def test_main_trials_exp(capsys):
    code = main(["--length", "3", "--trials-exp", "2", "--seed", "1", "--workers", "2"])
    out = capsys.readouterr().out
    assert code == 0
    assert "iterations: 100" in out


def test_main_reports_bad_input(capsys):
    code = main(["--length", "3", "--trials", "0"])
    err = capsys.readouterr().err
    assert code == 1
    assert "trials must be at least 1" in err


def test_main_reports_unknown_algorithm(capsys):
    code = main(["--algorithm", "bogo"])
    assert code == 1
    assert "bogo" in capsys.readouterr().err


def test_main_reports_degenerate_family(capsys):
    code = main(["--length", "1", "--algorithm", "unique-idx"])
    assert code == 1
    assert "length 1" in capsys.readouterr().err
