"""Tests for revbench.judge — ratios, verdicts, tree comparison and aggregation."""

from __future__ import annotations

import math
import unittest
from unittest.mock import patch

from revbench.judge import (
    DEFAULT_POLICY,
    Judgement,
    TrialJudgement,
    Verdict,
    classify,
    has_regression,
    improvement_dominates,
    judge,
    judge_trial,
    memory_regressed,
    ratio,
    regression_dominates,
    time_regressed,
)
from revbench.results import ResultTree

from revbench_test_helpers import make_results, make_tree, make_trial


class TestRatio(unittest.TestCase):
    """Tests for ratio()."""

    def test_plain_ratio(self) -> None:
        self.assertAlmostEqual(ratio(2.0, 3.0), 1.5)

    def test_zero_over_zero_is_one(self) -> None:
        self.assertEqual(ratio(0, 0), 1.0)

    def test_nonzero_over_zero_is_inf(self) -> None:
        self.assertTrue(math.isinf(ratio(0, 5)))


class TestClassify(unittest.TestCase):
    """Tests for classify()."""

    def test_above_band_is_regression(self) -> None:
        self.assertEqual(classify(1.06, 0.05), Verdict.REGRESSION)

    def test_inside_band_is_invariant(self) -> None:
        self.assertEqual(classify(1.04, 0.05), Verdict.INVARIANT)
        self.assertEqual(classify(0.96, 0.05), Verdict.INVARIANT)

    def test_below_band_is_improvement(self) -> None:
        self.assertEqual(classify(0.94, 0.05), Verdict.IMPROVEMENT)

    def test_band_edges_are_invariant(self) -> None:
        self.assertEqual(classify(1.0, 0.0), Verdict.INVARIANT)

    def test_symbol(self) -> None:
        self.assertEqual(Verdict.REGRESSION.symbol, "!")
        self.assertEqual(Verdict.IMPROVEMENT.symbol, "+")
        self.assertEqual(Verdict.INVARIANT.symbol, "=")


class TestJudgeTrial(unittest.TestCase):
    """Tests for judge_trial()."""

    def test_time_regression(self) -> None:
        j = judge_trial(make_trial(0.100), make_trial(0.106))
        self.assertAlmostEqual(j.time_ratio, 1.06)
        self.assertEqual(j.time_verdict, Verdict.REGRESSION)
        self.assertEqual(j.memory_verdict, Verdict.INVARIANT)
        self.assertTrue(j.is_regression)

    def test_time_within_tolerance(self) -> None:
        j = judge_trial(make_trial(0.100), make_trial(0.104))
        self.assertEqual(j.time_verdict, Verdict.INVARIANT)
        self.assertEqual(j.verdict(), Verdict.INVARIANT)

    def test_memory_uses_its_own_tolerance(self) -> None:
        j = judge_trial(make_trial(memory=1000), make_trial(memory=1020))
        self.assertAlmostEqual(j.memory_ratio, 1.02)
        self.assertEqual(j.memory_verdict, Verdict.REGRESSION)

    def test_custom_tolerances(self) -> None:
        j = judge_trial(make_trial(0.1), make_trial(0.106), time_tolerance=0.10)
        self.assertEqual(j.time_verdict, Verdict.INVARIANT)
        self.assertEqual(j.time_tolerance, 0.10)

    def test_zero_memory_both_sides(self) -> None:
        j = judge_trial(make_trial(memory=0), make_trial(memory=0))
        self.assertEqual(j.memory_ratio, 1.0)
        self.assertEqual(j.memory_verdict, Verdict.INVARIANT)

    def test_memory_from_zero_is_regression(self) -> None:
        j = judge_trial(make_trial(memory=0), make_trial(memory=64))
        self.assertTrue(math.isinf(j.memory_ratio))
        self.assertEqual(j.memory_verdict, Verdict.REGRESSION)

    def test_symmetry(self) -> None:
        a, b = make_trial(0.100), make_trial(0.106)
        self.assertEqual(judge_trial(a, b).time_verdict, Verdict.REGRESSION)
        self.assertEqual(judge_trial(b, a).time_verdict, Verdict.IMPROVEMENT)

    def test_symmetry_of_invariance(self) -> None:
        a, b = make_trial(0.100), make_trial(0.104)
        self.assertEqual(judge_trial(a, b).time_verdict, Verdict.INVARIANT)
        self.assertEqual(judge_trial(b, a).time_verdict, Verdict.INVARIANT)


class TestJudgeTree(unittest.TestCase):
    """Tests for judge() over result trees."""

    def test_mirrors_common_structure(self) -> None:
        base = make_tree({"io": {"read": 0.1, "write": 0.2}, "parse": 0.3})
        target = make_tree({"io": {"read": 0.2, "write": 0.2}, "parse": 0.3})
        j = judge(base, target)
        self.assertIsInstance(j["io"], Judgement)
        self.assertIsInstance(j["parse"], TrialJudgement)
        paths = [p for p, _ in j.leaves()]
        self.assertEqual(paths, [("io", "read"), ("io", "write"), ("parse",)])
        self.assertEqual(j["io"]["read"].time_verdict, Verdict.REGRESSION)

    def test_added_benchmark_is_reported_not_judged(self) -> None:
        base = make_tree({"a": 0.1})
        target = make_tree({"a": 0.1, "b": 0.1})
        j = judge(base, target)
        self.assertEqual(j.added_paths(), [("b",)])
        self.assertEqual(j.removed_paths(), [])
        self.assertNotIn("b", j)
        self.assertEqual(j.verdict(), Verdict.INVARIANT)

    def test_removed_benchmark_is_reported(self) -> None:
        base = make_tree({"a": 0.1, "gone": 0.1})
        target = make_tree({"a": 0.1})
        j = judge(base, target)
        self.assertEqual(j.removed_paths(), [("gone",)])
        self.assertEqual(len(j), 1)

    def test_nested_added_and_removed_paths(self) -> None:
        base = make_tree({"g": {"x": 0.1, "old": 0.1}})
        target = make_tree({"g": {"x": 0.1, "new": 0.1}})
        j = judge(base, target)
        self.assertEqual(j.added_paths(), [("g", "new")])
        self.assertEqual(j.removed_paths(), [("g", "old")])

    def test_kind_mismatch_is_removed_and_added(self) -> None:
        base = make_tree({"x": 0.1})
        target = make_tree({"x": {"inner": 0.1}})
        j = judge(base, target)
        self.assertNotIn("x", j)
        self.assertEqual(j.added_paths(), [("x",)])
        self.assertEqual(j.removed_paths(), [("x",)])

    def test_accepts_benchmark_results(self) -> None:
        base = make_results({"a": 0.1})
        target = make_results({"a": 0.2})
        self.assertTrue(judge(base, target).has_regression)

    def test_empty_trees(self) -> None:
        j = judge(ResultTree(), ResultTree())
        self.assertEqual(len(j), 0)
        self.assertEqual(j.verdict(), Verdict.INVARIANT)

    def test_deterministic(self) -> None:
        base = make_tree({"a": 0.1, "b": {"c": 0.2}})
        target = make_tree({"a": 0.2, "b": {"c": 0.1}})
        self.assertEqual(judge(base, target), judge(base, target))

    def test_performs_no_io(self) -> None:
        base = make_tree({"a": 0.1})
        target = make_tree({"a": 0.2})
        with (
            patch("builtins.open", side_effect=AssertionError("open called")),
            patch("subprocess.run", side_effect=AssertionError("subprocess called")),
        ):
            j = judge(base, target)
        self.assertTrue(j.has_regression)


class TestAggregation(unittest.TestCase):
    """Tests for verdict aggregation policies."""

    def setUp(self) -> None:
        base = make_tree({"g": {"slow": 0.1, "fast": 0.1, "same": 0.1}})
        target = make_tree({"g": {"slow": 0.2, "fast": 0.05, "same": 0.1}})
        self.judgement = judge(base, target)

    def test_default_policy_is_regression_dominates(self) -> None:
        self.assertIs(DEFAULT_POLICY, regression_dominates)

    def test_regression_dominates(self) -> None:
        self.assertEqual(self.judgement.verdict(), Verdict.REGRESSION)
        self.assertEqual(self.judgement["g"].verdict(), Verdict.REGRESSION)

    def test_improvement_dominates(self) -> None:
        self.assertEqual(self.judgement.verdict(improvement_dominates), Verdict.IMPROVEMENT)

    def test_custom_policy(self) -> None:
        def majority(verdicts):
            verdicts = list(verdicts)
            return max(set(verdicts), key=verdicts.count)

        base = make_tree({"a": 0.1, "b": 0.1, "c": 0.1})
        target = make_tree({"a": 0.1, "b": 0.1, "c": 0.5})
        self.assertEqual(judge(base, target).verdict(majority), Verdict.INVARIANT)

    def test_improvement_without_regression(self) -> None:
        j = judge(make_tree({"a": 0.1, "b": 0.1}), make_tree({"a": 0.05, "b": 0.1}))
        self.assertEqual(j.verdict(), Verdict.IMPROVEMENT)

    def test_all_invariant(self) -> None:
        j = judge(make_tree({"a": 0.1}), make_tree({"a": 0.101}))
        self.assertEqual(j.verdict(), Verdict.INVARIANT)

    def test_leaf_verdict_combines_time_and_memory(self) -> None:
        leaf = judge_trial(make_trial(0.1, memory=100), make_trial(0.05, memory=200))
        self.assertEqual(leaf.verdict(), Verdict.REGRESSION)
        self.assertEqual(leaf.verdict(improvement_dominates), Verdict.IMPROVEMENT)


class TestFilters(unittest.TestCase):
    """Tests for Judgement filters and predicates."""

    def setUp(self) -> None:
        base = make_tree(
            {
                "g": {"slow": 0.1, "same": 0.1},
                "fast": 0.1,
                "fat": make_trial(0.1, memory=100),
            }
        )
        target = make_tree(
            {
                "g": {"slow": 0.2, "same": 0.1},
                "fast": 0.05,
                "fat": make_trial(0.1, memory=200),
            }
        )
        self.judgement = judge(base, target)

    def test_regressions(self) -> None:
        paths = [p for p, _ in self.judgement.regressions().leaves()]
        self.assertEqual(paths, [("fat",), ("g", "slow")])

    def test_improvements(self) -> None:
        paths = [p for p, _ in self.judgement.improvements().leaves()]
        self.assertEqual(paths, [("fast",)])

    def test_filter_drops_empty_groups(self) -> None:
        filtered = self.judgement.filter(lambda leaf: False)
        self.assertEqual(len(filtered), 0)

    def test_predicates(self) -> None:
        self.assertTrue(has_regression(self.judgement))
        self.assertTrue(time_regressed(self.judgement))
        self.assertTrue(memory_regressed(self.judgement))
        self.assertTrue(self.judgement.has_improvement)

    def test_time_only_regression(self) -> None:
        j = judge(make_tree({"a": 0.1}), make_tree({"a": 0.2}))
        self.assertTrue(time_regressed(j))
        self.assertFalse(memory_regressed(j))


if __name__ == "__main__":
    unittest.main()
