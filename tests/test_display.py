"""Tests for revbench.display — terminal tables and Markdown reports."""

from __future__ import annotations

import math
import unittest

from revbench.bisect import BisectOutcome, BisectStep
from revbench.display import (
    export_markdown,
    format_bisect_outcome,
    format_bytes,
    format_judgement,
    format_ratio,
    format_results,
    format_time,
)
from revbench.judge import judge
from revbench.results import BenchmarkConfig, BenchmarkResults

from revbench_test_helpers import make_results, make_tree


class TestValueFormatting(unittest.TestCase):
    """Tests for the scalar formatters."""

    def test_format_time_units(self) -> None:
        self.assertEqual(format_time(5e-9), "5.00ns")
        self.assertEqual(format_time(2.5e-6), "2.50µs")
        self.assertEqual(format_time(0.0125), "12.50ms")
        self.assertEqual(format_time(3.0), "3.00s")
        self.assertEqual(format_time(math.nan), "N/A")

    def test_format_bytes(self) -> None:
        self.assertEqual(format_bytes(512), "512 B")
        self.assertEqual(format_bytes(2048), "2.00 KiB")
        self.assertEqual(format_bytes(3 * 1024 * 1024), "3.00 MiB")

    def test_format_ratio(self) -> None:
        self.assertEqual(format_ratio(1.0), "1.000")
        self.assertEqual(format_ratio(math.inf), "inf")


class TestFormatResults(unittest.TestCase):
    """Tests for format_results()."""

    def test_lists_every_leaf(self) -> None:
        text = format_results(make_results({"g": {"x": 0.1}, "y": 0.002}, commit="abc123"))
        self.assertIn("abc123", text)
        self.assertIn("g/x", text)
        self.assertIn("y", text)
        self.assertIn("100.00ms", text)

    def test_empty_tree(self) -> None:
        self.assertIn("(no benchmarks)", format_results(make_results({})))

    def test_shows_revision_and_env(self) -> None:
        results = BenchmarkResults(
            name="pkg",
            commit="abc",
            tree=make_tree({"a": 0.1}),
            timestamp="t",
            toolchain_version="3.12.0",
            config=BenchmarkConfig(revision="v2", env={"MODE": "fast"}),
        )
        text = format_results(results)
        self.assertIn("Target:    v2", text)
        self.assertIn("MODE=fast", text)


class TestFormatJudgement(unittest.TestCase):
    """Tests for format_judgement() and export_markdown()."""

    def setUp(self) -> None:
        self.baseline = make_results({"slow": 0.1, "same": 0.1, "gone": 0.1}, commit="base")
        self.target = make_results({"slow": 0.2, "same": 0.1, "new": 0.1}, commit="head")
        self.judgement = judge(self.baseline, self.target)

    def test_table_and_summary(self) -> None:
        text = format_judgement(self.judgement)
        self.assertIn("slow", text)
        self.assertIn("2.000", text)
        self.assertIn("Added: new", text)
        self.assertIn("Removed: gone", text)
        self.assertIn("Overall: regression", text)

    def test_only_changed(self) -> None:
        text = format_judgement(self.judgement, only_changed=True)
        self.assertIn("slow", text)
        self.assertNotIn("same", text)

    def test_nothing_changed(self) -> None:
        j = judge(make_tree({"a": 0.1}), make_tree({"a": 0.1}))
        self.assertIn("(no changed benchmarks)", format_judgement(j, only_changed=True))

    def test_markdown(self) -> None:
        md = export_markdown(self.judgement, self.baseline, self.target)
        self.assertTrue(md.startswith("# Benchmark Report"))
        self.assertIn("| Benchmark | Time ratio | Peak memory ratio |", md)
        self.assertIn("| `slow` | 2.000 :x: | 1.000 |", md)
        self.assertIn("* added: `new`", md)
        self.assertIn("* removed: `gone`", md)
        self.assertIn("`head`", md)

    def test_markdown_without_results(self) -> None:
        md = export_markdown(judge(make_tree({"a": 0.1}), make_tree({"a": 0.05})))
        self.assertNotIn("## Job Properties", md)
        self.assertIn(":white_check_mark:", md)


class TestFormatBisectOutcome(unittest.TestCase):
    """Tests for format_bisect_outcome()."""

    def test_success(self) -> None:
        outcome = BisectOutcome(
            culprit_revision="deadbeef" * 5,
            steps=[
                BisectStep(revision="cafe" * 10, verdict="bad", detail="overall regression"),
                BisectStep(revision="deadbeef" * 5, verdict="bad"),
            ],
            total_commits=4,
            executions=3,
        )
        text = format_bisect_outcome(outcome)
        self.assertIn("First regressed revision: " + "deadbeef" * 5, text)
        self.assertIn("3 benchmark runs", text)
        self.assertNotIn("Steps:", text)
        verbose = format_bisect_outcome(outcome, verbose=True)
        self.assertIn("cafecaf [bad]", verbose)

    def test_failure(self) -> None:
        text = format_bisect_outcome(BisectOutcome(culprit_revision=None))
        self.assertIn("Could not identify", text)


if __name__ == "__main__":
    unittest.main()
