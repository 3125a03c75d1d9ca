"""Terminal and Markdown formatting for results, judgements and bisections.

Produces aligned plain-text tables for the terminal and a Markdown
report of a judgement suitable for pull requests and issues.
"""

from __future__ import annotations

import math

from revbench.bisect import BisectOutcome
from revbench.judge import Judgement, TrialJudgement, Verdict
from revbench.results import BenchmarkResults


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------


def format_time(seconds: float, precision: int = 2) -> str:
    """Format a time value with adaptive units."""
    if math.isnan(seconds):
        return "N/A"
    if seconds < 1e-6:
        return f"{seconds * 1e9:.{precision}f}ns"
    if seconds < 1e-3:
        return f"{seconds * 1e6:.{precision}f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.{precision}f}ms"
    return f"{seconds:.{precision}f}s"


def format_bytes(n: int) -> str:
    """Format a byte count with binary units."""
    value = float(n)
    for unit in ("B", "KiB", "MiB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GiB"


def format_ratio(value: float) -> str:
    """Format a ratio, keeping infinities readable."""
    if math.isinf(value):
        return "inf"
    return f"{value:.3f}"


def _path(path: tuple[str, ...]) -> str:
    return "/".join(path)


def _table(headers: list[str], rows: list[list[str]], right: set[int] | None = None) -> str:
    """Aligned text table; columns in *right* are right-aligned."""
    right = right or set()
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(cells: list[str]) -> str:
        parts = [
            cell.rjust(widths[i]) if i in right else cell.ljust(widths[i])
            for i, cell in enumerate(cells)
        ]
        return "  " + "  ".join(parts).rstrip()

    out = [line(headers), "  " + "  ".join("─" * w for w in widths)]
    out.extend(line(row) for row in rows)
    return "\n".join(out)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


def format_results(results: BenchmarkResults) -> str:
    """Format one benchmark run for display."""
    title = f"Benchmark results for {results.name}"
    lines = [title, "─" * len(title)]
    lines.append(f"Commit:    {results.commit}")
    lines.append(f"Toolchain: Python {results.toolchain_version}")
    lines.append(f"Timestamp: {results.timestamp}")
    if results.config.revision is not None:
        lines.append(f"Target:    {results.config.revision}")
    if results.config.env:
        env = ", ".join(f"{k}={v}" for k, v in sorted(results.config.env.items()))
        lines.append(f"Env:       {env}")
    lines.append("")

    rows = [
        [
            _path(path),
            format_time(trial.median_time_s),
            format_time(trial.min_time_s),
            format_time(trial.mean_time_s),
            format_bytes(trial.peak_bytes),
            str(trial.retained_blocks),
            f"{trial.samples}x{trial.evals}",
        ]
        for path, trial in results.tree.leaves()
    ]
    if not rows:
        lines.append("  (no benchmarks)")
    else:
        lines.append(
            _table(
                ["Benchmark", "Median", "Min", "Mean", "Peak mem", "Blocks", "Samples"],
                rows,
                right={1, 2, 3, 4, 5, 6},
            )
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Judgements
# ---------------------------------------------------------------------------


def _changed(leaf: TrialJudgement) -> bool:
    return leaf.is_regression or leaf.is_improvement


def format_judgement(judgement: Judgement, *, only_changed: bool = False) -> str:
    """Format a judgement as a table of ratios and verdicts."""
    lines: list[str] = []
    rows = [
        [
            _path(path),
            format_ratio(leaf.time_ratio),
            leaf.time_verdict.value,
            format_ratio(leaf.memory_ratio),
            leaf.memory_verdict.value,
        ]
        for path, leaf in judgement.leaves()
        if not only_changed or _changed(leaf)
    ]
    if rows:
        lines.append(_table(["Benchmark", "Time", "", "Peak mem", ""], rows, right={1, 3}))
    else:
        lines.append("  (no changed benchmarks)" if only_changed else "  (no common benchmarks)")

    added = judgement.added_paths()
    removed = judgement.removed_paths()
    if added:
        lines.append("")
        lines.append("Added: " + ", ".join(_path(p) for p in added))
    if removed:
        lines.append("")
        lines.append("Removed: " + ", ".join(_path(p) for p in removed))

    lines.append("")
    lines.append(f"Overall: {judgement.verdict().value}")
    return "\n".join(lines)


_MARK = {
    Verdict.REGRESSION: ":x:",
    Verdict.IMPROVEMENT: ":white_check_mark:",
    Verdict.INVARIANT: "",
}


def export_markdown(
    judgement: Judgement,
    baseline: BenchmarkResults | None = None,
    target: BenchmarkResults | None = None,
) -> str:
    """Render a judgement as a Markdown report."""
    out = ["# Benchmark Report", ""]
    if baseline is not None and target is not None:
        out.append("## Job Properties")
        out.append(f"* Target: `{target.commit}` ({target.timestamp})")
        out.append(f"* Baseline: `{baseline.commit}` ({baseline.timestamp})")
        out.append(f"* Package: {target.name}")
        out.append("")

    leaves = list(judgement.leaves())
    tol = leaves[0][1] if leaves else None
    out.append("## Results")
    out.append(
        "A ratio greater than `1.0` denotes a possible regression (marked with :x:), "
        "while a ratio less than `1.0` denotes a possible improvement (marked with "
        ":white_check_mark:)."
    )
    if tol is not None:
        out.append(
            f"Tolerances: time {tol.time_tolerance:.0%}, memory {tol.memory_tolerance:.0%}."
        )
    out.append("")
    out.append("| Benchmark | Time ratio | Peak memory ratio |")
    out.append("|-----------|-----------:|------------------:|")
    for path, leaf in leaves:
        time_cell = f"{format_ratio(leaf.time_ratio)} {_MARK[leaf.time_verdict]}".rstrip()
        mem_cell = f"{format_ratio(leaf.memory_ratio)} {_MARK[leaf.memory_verdict]}".rstrip()
        out.append(f"| `{_path(path)}` | {time_cell} | {mem_cell} |")

    added = judgement.added_paths()
    removed = judgement.removed_paths()
    if added or removed:
        out.append("")
        out.append("## Changed Benchmarks")
        for p in added:
            out.append(f"* added: `{_path(p)}`")
        for p in removed:
            out.append(f"* removed: `{_path(p)}`")

    if baseline is not None and target is not None:
        out.append("")
        out.append("## Toolchain")
        out.append(f"* Target: Python {target.toolchain_version}")
        out.append(f"* Baseline: Python {baseline.toolchain_version}")
    return "\n".join(out) + "\n"


# ---------------------------------------------------------------------------
# Bisection
# ---------------------------------------------------------------------------


def format_bisect_outcome(outcome: BisectOutcome, *, verbose: bool = False) -> str:
    """Summarize a bisection; *verbose* lists every step."""
    lines = [
        f"Bisect complete: {outcome.executions} benchmark runs "
        f"over {outcome.total_commits} revisions in range."
    ]
    if outcome.success and outcome.culprit_revision:
        lines.append(f"First regressed revision: {outcome.culprit_revision}")
    else:
        lines.append("Could not identify the first regressed revision.")
    if verbose:
        lines.append("")
        lines.append("Steps:")
        for step in outcome.steps:
            lines.append(
                f"  {step.revision_short} [{step.verdict}] "
                f"({step.duration_seconds:.1f}s) {step.detail[:80]}"
            )
    return "\n".join(lines)
