"""Classify performance changes between two benchmark result trees.

For every benchmark present in both trees the judge computes::

    time_ratio   = target.median_time_s / baseline.median_time_s
    memory_ratio = target.peak_bytes    / baseline.peak_bytes

and classifies each ratio against a tolerance: above ``1 + tol`` is a
regression, below ``1 - tol`` an improvement, anything in between is
invariant.  Benchmarks present on only one side are reported as added or
removed and never produce a ratio.

The judge is a pure function of its inputs: no I/O, no hidden state.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Callable, Union

from revbench.results import BenchmarkResults, ResultTree, Trial

DEFAULT_TIME_TOLERANCE = 0.05
DEFAULT_MEMORY_TOLERANCE = 0.01


class Verdict(enum.Enum):
    """Outcome of comparing one measurement against its baseline."""

    IMPROVEMENT = "improvement"
    REGRESSION = "regression"
    INVARIANT = "invariant"

    @property
    def symbol(self) -> str:
        """Single-character symbol for compact display."""
        return {
            Verdict.IMPROVEMENT: "+",
            Verdict.REGRESSION: "!",
            Verdict.INVARIANT: "=",
        }[self]


# ---------------------------------------------------------------------------
# Aggregation policies
# ---------------------------------------------------------------------------

AggregationPolicy = Callable[[Iterable[Verdict]], Verdict]


def regression_dominates(verdicts: Iterable[Verdict]) -> Verdict:
    """Regression if any verdict regressed, else improvement if any improved."""
    seen = set(verdicts)
    if Verdict.REGRESSION in seen:
        return Verdict.REGRESSION
    if Verdict.IMPROVEMENT in seen:
        return Verdict.IMPROVEMENT
    return Verdict.INVARIANT


def improvement_dominates(verdicts: Iterable[Verdict]) -> Verdict:
    """Improvement if any verdict improved, else regression if any regressed."""
    seen = set(verdicts)
    if Verdict.IMPROVEMENT in seen:
        return Verdict.IMPROVEMENT
    if Verdict.REGRESSION in seen:
        return Verdict.REGRESSION
    return Verdict.INVARIANT


DEFAULT_POLICY: AggregationPolicy = regression_dominates


# ---------------------------------------------------------------------------
# Ratios and verdicts
# ---------------------------------------------------------------------------


def ratio(baseline: float, target: float) -> float:
    """``target / baseline``, with ``0/0 == 1`` and ``x/0 == inf``."""
    if baseline == 0:
        return 1.0 if target == 0 else math.inf
    return target / baseline


def classify(value: float, tolerance: float) -> Verdict:
    """Classify a ratio against a symmetric tolerance band around 1."""
    if value > 1 + tolerance:
        return Verdict.REGRESSION
    if value < 1 - tolerance:
        return Verdict.IMPROVEMENT
    return Verdict.INVARIANT


@dataclass(frozen=True)
class TrialJudgement:
    """Comparison of one benchmark between baseline and target."""

    time_ratio: float
    memory_ratio: float
    time_verdict: Verdict
    memory_verdict: Verdict
    time_tolerance: float = DEFAULT_TIME_TOLERANCE
    memory_tolerance: float = DEFAULT_MEMORY_TOLERANCE

    def verdict(self, policy: AggregationPolicy = DEFAULT_POLICY) -> Verdict:
        """Combined time and memory verdict."""
        return policy((self.time_verdict, self.memory_verdict))

    @property
    def is_regression(self) -> bool:
        return Verdict.REGRESSION in (self.time_verdict, self.memory_verdict)

    @property
    def is_improvement(self) -> bool:
        return Verdict.IMPROVEMENT in (self.time_verdict, self.memory_verdict)


def judge_trial(
    baseline: Trial,
    target: Trial,
    time_tolerance: float = DEFAULT_TIME_TOLERANCE,
    memory_tolerance: float = DEFAULT_MEMORY_TOLERANCE,
) -> TrialJudgement:
    """Compare two trials by median time and peak memory."""
    time_ratio = ratio(baseline.median_time_s, target.median_time_s)
    memory_ratio = ratio(baseline.peak_bytes, target.peak_bytes)
    return TrialJudgement(
        time_ratio=time_ratio,
        memory_ratio=memory_ratio,
        time_verdict=classify(time_ratio, time_tolerance),
        memory_verdict=classify(memory_ratio, memory_tolerance),
        time_tolerance=time_tolerance,
        memory_tolerance=memory_tolerance,
    )


# ---------------------------------------------------------------------------
# Judgement tree
# ---------------------------------------------------------------------------


JudgementNode = Union[TrialJudgement, "Judgement"]
LeafPath = tuple[str, ...]


@dataclass(frozen=True)
class Judgement:
    """Judgement tree mirroring the two compared result trees.

    ``added`` and ``removed`` name the entries at this level that exist
    only in the target or only in the baseline, respectively.
    """

    children: dict[str, JudgementNode] = field(default_factory=dict)
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    def __getitem__(self, name: str) -> JudgementNode:
        return self.children[name]

    def __contains__(self, name: object) -> bool:
        return name in self.children

    def __len__(self) -> int:
        return len(self.children)

    def leaves(self) -> Iterator[tuple[LeafPath, TrialJudgement]]:
        """Yield ``(path, judgement)`` for every compared benchmark."""
        for name in sorted(self.children):
            node = self.children[name]
            if isinstance(node, TrialJudgement):
                yield (name,), node
            else:
                for sub_path, leaf in node.leaves():
                    yield (name, *sub_path), leaf

    def added_paths(self) -> list[LeafPath]:
        """Paths of every entry present only in the target."""
        paths: list[LeafPath] = [(name,) for name in self.added]
        for name in sorted(self.children):
            node = self.children[name]
            if isinstance(node, Judgement):
                paths.extend((name, *sub) for sub in node.added_paths())
        return sorted(paths)

    def removed_paths(self) -> list[LeafPath]:
        """Paths of every entry present only in the baseline."""
        paths: list[LeafPath] = [(name,) for name in self.removed]
        for name in sorted(self.children):
            node = self.children[name]
            if isinstance(node, Judgement):
                paths.extend((name, *sub) for sub in node.removed_paths())
        return sorted(paths)

    def verdict(self, policy: AggregationPolicy = DEFAULT_POLICY) -> Verdict:
        """Aggregate verdict over every descendant benchmark."""
        return policy(leaf.verdict(policy) for _, leaf in self.leaves())

    def filter(self, keep: Callable[[TrialJudgement], bool]) -> Judgement:
        """Sub-judgement holding only the benchmarks for which *keep* is true.

        Empty groups are dropped; added/removed entries are not carried over.
        """
        children: dict[str, JudgementNode] = {}
        for name, node in self.children.items():
            if isinstance(node, TrialJudgement):
                if keep(node):
                    children[name] = node
            else:
                sub = node.filter(keep)
                if sub.children:
                    children[name] = sub
        return Judgement(children=children)

    def regressions(self) -> Judgement:
        """Benchmarks with a time or memory regression."""
        return self.filter(lambda leaf: leaf.is_regression)

    def improvements(self) -> Judgement:
        """Benchmarks with a time or memory improvement."""
        return self.filter(lambda leaf: leaf.is_improvement)

    @property
    def has_regression(self) -> bool:
        return any(leaf.is_regression for _, leaf in self.leaves())

    @property
    def has_improvement(self) -> bool:
        return any(leaf.is_improvement for _, leaf in self.leaves())


def _tree_of(value: ResultTree | BenchmarkResults) -> ResultTree:
    if isinstance(value, BenchmarkResults):
        return value.tree
    return value


def judge(
    baseline: ResultTree | BenchmarkResults,
    target: ResultTree | BenchmarkResults,
    time_tolerance: float = DEFAULT_TIME_TOLERANCE,
    memory_tolerance: float = DEFAULT_MEMORY_TOLERANCE,
) -> Judgement:
    """Compare *target* against *baseline*.

    Walks the union of both trees' names at every level.  An entry that is
    a benchmark on one side and a group on the other cannot be compared; it
    is reported as both removed and added.

    Args:
        baseline: Results (or tree) of the reference run.
        target: Results (or tree) of the run under test.
        time_tolerance: Relative band for median time considered noise.
        memory_tolerance: Relative band for peak memory considered noise.
    """
    base_tree = _tree_of(baseline)
    target_tree = _tree_of(target)

    children: dict[str, JudgementNode] = {}
    added: list[str] = []
    removed: list[str] = []

    for name in sorted(set(base_tree) | set(target_tree)):
        if name not in base_tree:
            added.append(name)
            continue
        if name not in target_tree:
            removed.append(name)
            continue
        base_node = base_tree[name]
        target_node = target_tree[name]
        if isinstance(base_node, Trial) and isinstance(target_node, Trial):
            children[name] = judge_trial(base_node, target_node, time_tolerance, memory_tolerance)
        elif isinstance(base_node, ResultTree) and isinstance(target_node, ResultTree):
            children[name] = judge(base_node, target_node, time_tolerance, memory_tolerance)
        else:
            removed.append(name)
            added.append(name)

    return Judgement(children=children, added=tuple(added), removed=tuple(removed))


# ---------------------------------------------------------------------------
# Predicates for bisection
# ---------------------------------------------------------------------------

RegressionPredicate = Callable[[Judgement], bool]


def has_regression(judgement: Judgement) -> bool:
    """Any benchmark regressed in time or memory."""
    return judgement.has_regression


def time_regressed(judgement: Judgement) -> bool:
    """Any benchmark regressed in median time."""
    return any(leaf.time_verdict is Verdict.REGRESSION for _, leaf in judgement.leaves())


def memory_regressed(judgement: Judgement) -> bool:
    """Any benchmark regressed in peak memory."""
    return any(leaf.memory_verdict is Verdict.REGRESSION for _, leaf in judgement.leaves())
