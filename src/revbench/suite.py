"""Minimal benchmark definition and measurement engine.

A benchmark script defines a module-level ``SUITE``::

    from revbench.suite import Benchmark, BenchmarkSuite

    SUITE = BenchmarkSuite()
    SUITE["parse"] = BenchmarkSuite()

    @SUITE["parse"].add("small")
    def parse_small():
        parse(SMALL_DOC)

Timing uses ``time.perf_counter`` with the garbage collector paused, the
same way :mod:`timeit` does.  Memory is measured separately on one
evaluation with :mod:`tracemalloc`, so tracing overhead never leaks into
the timings.  tracemalloc sees live memory only, so the figures are the
peak above the starting level and the blocks still held afterwards, not
a running total of everything allocated.
"""

from __future__ import annotations

import gc
import logging
import math
import statistics
import time
import tracemalloc
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from revbench.results import ResultTree, Trial

log = logging.getLogger("revbench")

# A sample should last at least this long so timer resolution is negligible.
TARGET_SAMPLE_TIME_S = 1e-3
MAX_EVALS = 10_000


@dataclass
class BenchmarkParams:
    """Per-benchmark execution parameters (the tuning data)."""

    samples: int = 100
    evals: int = 1
    seconds: float = 5.0  # time budget for all samples

    def to_dict(self) -> dict[str, Any]:
        """Serialize the persisted part (evals and samples)."""
        return {"samples": self.samples, "evals": self.evals}


@dataclass
class Benchmark:
    """A single benchmarked callable.

    If *setup* is given it runs once before sampling; a non-None return
    value is passed to *func* as its only argument.
    """

    func: Callable[..., Any]
    setup: Callable[[], Any] | None = None
    params: BenchmarkParams = field(default_factory=BenchmarkParams)

    def _bound(self) -> Callable[[], Any]:
        if self.setup is None:
            return self.func
        arg = self.setup()
        if arg is None:
            return self.func
        func = self.func
        return lambda: func(arg)


SuiteNode = Union[Benchmark, "BenchmarkSuite"]


class BenchmarkSuite:
    """A named, nestable group of benchmarks."""

    def __init__(self) -> None:
        self._entries: dict[str, SuiteNode] = {}

    def __setitem__(self, name: str, node: SuiteNode) -> None:
        if not isinstance(node, (Benchmark, BenchmarkSuite)):
            raise TypeError(f"{name!r}: expected Benchmark or BenchmarkSuite")
        self._entries[name] = node

    def __getitem__(self, name: str) -> SuiteNode:
        return self._entries[name]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def items(self) -> Iterator[tuple[str, SuiteNode]]:
        return iter(self._entries.items())

    def add(
        self,
        name: str,
        *,
        setup: Callable[[], Any] | None = None,
        params: BenchmarkParams | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator registering a function as benchmark *name*."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self[name] = Benchmark(func, setup=setup, params=params or BenchmarkParams())
            return func

        return decorator

    def benchmarks(self) -> Iterator[tuple[tuple[str, ...], Benchmark]]:
        """Yield ``(path, benchmark)`` for every leaf."""
        for name, node in self._entries.items():
            if isinstance(node, Benchmark):
                yield (name,), node
            else:
                for sub_path, bench in node.benchmarks():
                    yield (name, *sub_path), bench


# ---------------------------------------------------------------------------
# Tuning
# ---------------------------------------------------------------------------


def tune(suite: BenchmarkSuite) -> None:
    """Choose ``evals`` and ``samples`` for every benchmark in place."""
    for path, bench in suite.benchmarks():
        call = bench._bound()
        start = time.perf_counter()
        call()
        once = max(time.perf_counter() - start, 1e-9)

        if once >= TARGET_SAMPLE_TIME_S:
            evals = 1
        else:
            evals = min(MAX_EVALS, math.ceil(TARGET_SAMPLE_TIME_S / once))
        budget_samples = int(bench.params.seconds / (once * evals))
        bench.params.evals = evals
        bench.params.samples = max(1, min(bench.params.samples, budget_samples))
        log.debug(
            "Tuned %s: evals=%d samples=%d", "/".join(path), evals, bench.params.samples
        )


def suite_params(suite: BenchmarkSuite) -> dict[str, Any]:
    """Nested dict of persisted parameters, mirroring the suite."""
    data: dict[str, Any] = {}
    for name, node in suite.items():
        if isinstance(node, Benchmark):
            data[name] = node.params.to_dict()
        else:
            data[name] = suite_params(node)
    return data


def load_params(suite: BenchmarkSuite, data: dict[str, Any]) -> None:
    """Apply persisted parameters.  Names absent from *data* keep their defaults."""
    for name, node in suite.items():
        entry = data.get(name)
        if not isinstance(entry, dict):
            continue
        if isinstance(node, Benchmark):
            node.params.evals = int(entry.get("evals", node.params.evals))
            node.params.samples = int(entry.get("samples", node.params.samples))
        else:
            load_params(node, entry)


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------


def _time_samples(call: Callable[[], Any], params: BenchmarkParams) -> list[float]:
    """Per-evaluation times of each sample, stopping early past the budget."""
    times: list[float] = []
    gc_was_enabled = gc.isenabled()
    gc.disable()
    try:
        deadline = time.perf_counter() + params.seconds
        for _ in range(params.samples):
            start = time.perf_counter()
            for _ in range(params.evals):
                call()
            end = time.perf_counter()
            times.append((end - start) / params.evals)
            if end > deadline:
                break
    finally:
        if gc_was_enabled:
            gc.enable()
    return times


def _measure_memory(call: Callable[[], Any]) -> tuple[int, int]:
    """Return (peak bytes, retained blocks) for one evaluation.

    The peak is the traced high-water mark above the level at the start of
    the call.  Retained blocks are those allocated by the call and still
    alive once it returns, its return value included.
    """
    started = not tracemalloc.is_tracing()
    if started:
        tracemalloc.start()
    try:
        ignore = [tracemalloc.Filter(False, tracemalloc.__file__)]
        before = tracemalloc.take_snapshot().filter_traces(ignore)
        tracemalloc.reset_peak()
        base, _ = tracemalloc.get_traced_memory()
        result = call()
        _, peak = tracemalloc.get_traced_memory()
        after = tracemalloc.take_snapshot().filter_traces(ignore)
        del result
    finally:
        if started:
            tracemalloc.stop()
    blocks = sum(max(stat.count_diff, 0) for stat in after.compare_to(before, "lineno"))
    return max(peak - base, 0), blocks


def run_benchmark(bench: Benchmark) -> Trial:
    """Measure one benchmark with its current parameters."""
    call = bench._bound()
    times = _time_samples(call, bench.params)
    peak, blocks = _measure_memory(call)
    return Trial(
        samples=len(times),
        evals=bench.params.evals,
        min_time_s=min(times),
        median_time_s=statistics.median(times),
        mean_time_s=statistics.mean(times),
        max_time_s=max(times),
        peak_bytes=peak,
        retained_blocks=blocks,
    )


def run_suite(suite: BenchmarkSuite) -> ResultTree:
    """Run every benchmark and return the result tree."""
    entries: dict[str, Trial | ResultTree] = {}
    for name, node in suite.items():
        if isinstance(node, Benchmark):
            log.info("Running %s...", name)
            entries[name] = run_benchmark(node)
        else:
            entries[name] = run_suite(node)
    return ResultTree(entries)
