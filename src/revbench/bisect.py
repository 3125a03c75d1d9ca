"""Automated performance-regression bisection across git history.

Binary-searches an ordered list of revisions to find the first one at
which a caller-supplied predicate over a :class:`~revbench.judge.Judgement`
(by default: "anything regressed") holds when judged against the fixed
known-good baseline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from revbench import git
from revbench.errors import (
    BenchmarkExecutionError,
    CheckoutError,
    DirtyRepositoryError,
    HarnessProtocolError,
    InconclusiveRevisionError,
    InvalidBisectionRangeError,
    MissingSuiteError,
    NotARepositoryError,
)
from revbench.harness import DEFAULT_TUNE_FILE, execute, resolve_script
from revbench.judge import (
    DEFAULT_MEMORY_TOLERANCE,
    DEFAULT_TIME_TOLERANCE,
    Judgement,
    RegressionPredicate,
    has_regression,
    judge,
)
from revbench.logging import LoggerFactory, get_logger
from revbench.results import BenchmarkConfig, BenchmarkResults

log = get_logger("bisect")

Executor = Callable[[str], BenchmarkResults]

# Failures that make a single candidate unmeasurable.
_CANDIDATE_FAILURES = (
    BenchmarkExecutionError,
    CheckoutError,
    HarnessProtocolError,
    MissingSuiteError,
)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class BisectStep:
    """Result of evaluating a single revision during bisect."""

    revision: str
    verdict: str  # "good", "bad", "inconclusive"
    detail: str = ""
    duration_seconds: float = 0.0
    judgement: Judgement | None = None

    @property
    def revision_short(self) -> str:
        return self.revision[:7]


@dataclass
class BisectOutcome:
    """Final result of a bisect operation."""

    culprit_revision: str | None
    steps: list[BisectStep] = field(default_factory=list)
    total_commits: int = 0
    executions: int = 0  # harness runs, baseline and endpoints included

    @property
    def success(self) -> bool:
        """True if the first bad revision was found."""
        return self.culprit_revision is not None

    @property
    def search_trace(self) -> list[tuple[str, str]]:
        """``(revision, verdict)`` pairs in evaluation order."""
        return [(step.revision, step.verdict) for step in self.steps]


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class _Evaluator:
    """Runs, caches and judges revisions against the fixed baseline."""

    def __init__(
        self,
        executor: Executor,
        predicate: RegressionPredicate,
        time_tolerance: float,
        memory_tolerance: float,
    ) -> None:
        self.executor = executor
        self.predicate = predicate
        self.time_tolerance = time_tolerance
        self.memory_tolerance = memory_tolerance
        self.cache: dict[str, BenchmarkResults] = {}
        self.steps: list[BisectStep] = []
        self.executions = 0

    def results(self, revision: str) -> BenchmarkResults:
        """Results at *revision*, executing the harness only on a cache miss."""
        cached = self.cache.get(revision)
        if cached is not None:
            return cached
        start = time.monotonic()
        self.executions += 1
        try:
            results = self.executor(revision)
        except _CANDIDATE_FAILURES as exc:
            self.steps.append(
                BisectStep(
                    revision=revision,
                    verdict="inconclusive",
                    detail=f"{type(exc).__name__}: {exc}"[:200],
                    duration_seconds=time.monotonic() - start,
                )
            )
            raise InconclusiveRevisionError(
                revision,
                list(self.steps),
                f"could not benchmark revision {revision[:7]}: {exc}",
            ) from exc
        self.cache[revision] = results
        return results

    def evaluate(self, baseline: BenchmarkResults, revision: str) -> bool:
        """Judge *revision* against *baseline*, record the step, return the predicate."""
        start = time.monotonic()
        results = self.results(revision)
        judgement = judge(baseline, results, self.time_tolerance, self.memory_tolerance)
        regressed = self.predicate(judgement)
        self.steps.append(
            BisectStep(
                revision=revision,
                verdict="bad" if regressed else "good",
                detail=f"overall {judgement.verdict().value}",
                duration_seconds=time.monotonic() - start,
                judgement=judgement,
            )
        )
        return regressed


def _validate_range(good_rev: str, bad_rev: str, commits: Sequence[str]) -> tuple[int, int]:
    """Return the initial (lo, hi) search window, or raise."""
    if not commits:
        raise InvalidBisectionRangeError("Empty commit list; nothing to bisect.")
    if bad_rev not in commits:
        raise InvalidBisectionRangeError(f"Bad revision {bad_rev} is not in the commit list.")
    hi = commits.index(bad_rev)
    lo = 0
    if good_rev in commits:
        good_index = commits.index(good_rev)
        if good_index >= hi:
            raise InvalidBisectionRangeError(
                f"Good revision {good_rev} does not precede bad revision {bad_rev}."
            )
        lo = good_index + 1
    return lo, hi


def bisect(
    good_rev: str,
    bad_rev: str,
    commits: Sequence[str],
    predicate: RegressionPredicate,
    executor: Executor,
    *,
    good_results: BenchmarkResults | None = None,
    bad_results: BenchmarkResults | None = None,
    time_tolerance: float = DEFAULT_TIME_TOLERANCE,
    memory_tolerance: float = DEFAULT_MEMORY_TOLERANCE,
) -> BisectOutcome:
    """Find the first revision in *commits* at which *predicate* holds.

    Args:
        good_rev: Known-good revision; its results are the fixed baseline.
        bad_rev: Known-bad revision; must appear in *commits*.
        commits: Revisions ordered chronologically from good to bad.
        predicate: Decides from a judgement whether the regression is present.
        executor: Benchmarks one revision.
        good_results: Pre-computed baseline results, skipping one execution.
        bad_results: Pre-computed results at *bad_rev*, skipping one execution.
        time_tolerance: Passed to :func:`~revbench.judge.judge`.
        memory_tolerance: Passed to :func:`~revbench.judge.judge`.

    Raises:
        InvalidBisectionRangeError: The range is malformed, or the predicate
            does not hold between *good_rev* and *bad_rev*.
        InconclusiveRevisionError: A revision could not be benchmarked;
            carries the partial trace.
    """
    lo, hi = _validate_range(good_rev, bad_rev, commits)

    ev = _Evaluator(executor, predicate, time_tolerance, memory_tolerance)
    if good_results is not None:
        ev.cache[good_rev] = good_results
    if bad_results is not None:
        ev.cache[bad_rev] = bad_results

    baseline = ev.results(good_rev)
    if not ev.evaluate(baseline, bad_rev):
        raise InvalidBisectionRangeError(
            f"No regression between {good_rev} and {bad_rev}; nothing to bisect."
        )

    # Invariant: commits[hi] is bad; everything before lo is good.
    while lo < hi:
        mid = (lo + hi) // 2
        log.info(
            "Bisect step: testing %s (%d revisions remaining)", commits[mid][:7], hi - lo
        )
        if ev.evaluate(baseline, commits[mid]):
            hi = mid
        else:
            lo = mid + 1

    culprit = commits[hi]
    log.info("Bisect complete: first regressed revision is %s", culprit[:7])
    return BisectOutcome(
        culprit_revision=culprit,
        steps=ev.steps,
        total_commits=len(commits),
        executions=ev.executions,
    )


# ---------------------------------------------------------------------------
# Repository front end
# ---------------------------------------------------------------------------


def run_bisect(
    pkg_dir: Path,
    good_rev: str,
    bad_rev: str,
    config: BenchmarkConfig | None = None,
    *,
    predicate: RegressionPredicate = has_regression,
    script: str | Path | None = None,
    tune_file: Path | None = None,
    retune: bool = False,
    time_tolerance: float = DEFAULT_TIME_TOLERANCE,
    memory_tolerance: float = DEFAULT_MEMORY_TOLERANCE,
    good_results: BenchmarkResults | None = None,
    bad_results: BenchmarkResults | None = None,
    logger_factory: LoggerFactory | None = None,
    timeout: float | None = None,
) -> BisectOutcome:
    """Bisect the git history of the package at *pkg_dir*.

    Resolves both revisions, lists the commits between them, checks the
    repository preconditions once up front, and runs :func:`bisect` with
    the isolated harness as executor.

    Saved results for either endpoint are used instead of running it
    again; their recorded commit must be the resolved endpoint sha.
    """
    pkg_dir = Path(pkg_dir)
    config = config or BenchmarkConfig()
    if not git.is_git_repo(pkg_dir):
        raise NotARepositoryError(f"{pkg_dir} is not a git repo, cannot bisect")
    if git.is_dirty(pkg_dir):
        raise DirtyRepositoryError(
            f"{pkg_dir} is dirty. Please commit/stash your changes before bisecting"
        )

    good_hash = git.resolve_revision(pkg_dir, good_rev)
    bad_hash = git.resolve_revision(pkg_dir, bad_rev)
    if good_hash is None:
        raise InvalidBisectionRangeError(f"Could not resolve good revision: {good_rev}")
    if bad_hash is None:
        raise InvalidBisectionRangeError(f"Could not resolve bad revision: {bad_rev}")
    endpoints = (("good", good_results, good_hash), ("bad", bad_results, bad_hash))
    for label, results, sha in endpoints:
        if results is not None and results.commit != sha:
            raise InvalidBisectionRangeError(
                f"Saved {label} results are for {results.commit}, not {sha}"
            )

    commits = git.get_commit_range(pkg_dir, good_hash, bad_hash)
    if not commits:
        raise InvalidBisectionRangeError(
            f"No commits found between {good_rev} and {bad_rev}. "
            "Ensure good is an ancestor of bad."
        )
    log.info(
        "Bisecting %s: good=%s bad=%s (%d commits)",
        pkg_dir.name,
        good_hash[:7],
        bad_hash[:7],
        len(commits),
    )

    script_path = resolve_script(pkg_dir, script)
    tune_path = Path(tune_file) if tune_file is not None else DEFAULT_TUNE_FILE
    if not tune_path.is_absolute():
        tune_path = pkg_dir / tune_path

    def executor(revision: str) -> BenchmarkResults:
        return execute(
            pkg_dir,
            config.with_revision(revision),
            script_path,
            tune_path,
            retune,
            logger_factory=logger_factory,
            timeout=timeout,
        )

    return bisect(
        good_hash,
        bad_hash,
        [good_hash, *commits],
        predicate,
        executor,
        good_results=good_results,
        bad_results=bad_results,
        time_tolerance=time_tolerance,
        memory_tolerance=memory_tolerance,
    )
