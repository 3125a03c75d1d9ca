"""Command-line interface for revbench.

Subcommands:
    revbench run       Benchmark a package at one revision
    revbench show      Display a saved results file
    revbench judge     Judge two saved results files
    revbench compare   Benchmark two revisions and judge them
    revbench bisect    Find the revision that introduced a regression
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import click

from revbench import __version__
from revbench.config import RunSettings, load_settings, parse_env_pairs, validate_settings
from revbench.errors import RevbenchError
from revbench.logging import setup_logging
from revbench.results import BenchmarkResults, read_results


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """revbench — benchmark a package across its git history."""


def _common_run_options(func: Any) -> Any:
    """Options shared by the commands that launch benchmark runs."""
    options = [
        click.option(
            "--profile",
            "profile_path",
            type=click.Path(exists=True, path_type=Path),
            default=None,
            help="YAML profile (default: benchmark/revbench.yaml if present).",
        ),
        click.option("--script", type=str, default=None, help="Benchmark script defining SUITE."),
        click.option("--tune-file", type=str, default=None, help="Tuning data file."),
        click.option("--retune", is_flag=True, default=False, help="Force re-tuning."),
        click.option(
            "--executable",
            type=str,
            default=None,
            help="Interpreter command line, e.g. 'python3 -X dev'.",
        ),
        click.option("--env", "env_pairs", type=str, multiple=True, help="KEY=VALUE env var."),
        click.option("--timeout", type=float, default=None, help="Per-run timeout in seconds."),
        click.option("-v", "--verbose", is_flag=True, help="Show detailed output."),
        click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors."),
        click.option(
            "--log-file",
            type=click.Path(dir_okay=False, path_type=Path),
            default=None,
            help="Also write a DEBUG log to this file.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _resolve_settings(
    pkg: str,
    profile_path: Path | None,
    overrides: dict[str, Any],
    env_pairs: tuple[str, ...],
) -> RunSettings:
    from revbench.harness import locate_package

    try:
        overrides["env"] = parse_env_pairs(env_pairs)
        pkg_dir = locate_package(pkg)
        settings = load_settings(pkg_dir, profile_path, cli_overrides=overrides)
    except (ValueError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc

    problems = validate_settings(settings)
    for problem in problems:
        if problem.severity == "warning":
            click.echo(f"Warning: {problem.message}", err=True)
    errors = [p for p in problems if p.severity == "error"]
    if errors:
        raise click.ClickException("; ".join(p.message for p in errors))
    return settings


def _benchmark(pkg: str, revision: str | None, settings: RunSettings) -> BenchmarkResults:
    from revbench.harness import benchmarkpkg

    try:
        return benchmarkpkg(
            pkg,
            settings.benchmark_config(revision),
            script=settings.script,
            tune_file=settings.tune_file,
            retune=settings.retune,
            timeout=settings.timeout,
        )
    except (RevbenchError, ValueError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from exc


# ---------------------------------------------------------------------------
# run / show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("pkg")
@click.option("--revision", type=str, default=None, help="Git revision to benchmark.")
@click.option(
    "--resultfile",
    type=click.Path(path_type=Path),
    default=None,
    help="Write the results to this JSON file.",
)
@_common_run_options
def run(
    pkg: str,
    revision: str | None,
    resultfile: Path | None,
    profile_path: Path | None,
    script: str | None,
    tune_file: str | None,
    retune: bool,
    executable: str | None,
    env_pairs: tuple[str, ...],
    timeout: float | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark package PKG (a directory or an importable name)."""
    from revbench.display import format_results
    from revbench.results import write_results

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    settings = _resolve_settings(
        pkg,
        profile_path,
        {
            "script": script,
            "tune_file": tune_file,
            "retune": retune or None,
            "executable": executable,
            "timeout": timeout,
        },
        env_pairs,
    )
    results = _benchmark(pkg, revision, settings)
    if resultfile is not None:
        write_results(resultfile, results)
        click.echo(f"Benchmark results written to {resultfile}")
    click.echo(format_results(results))


@main.command()
@click.argument("resultfile", type=click.Path(exists=True, path_type=Path))
def show(resultfile: Path) -> None:
    """Display a saved RESULTFILE."""
    from revbench.display import format_results

    try:
        results = read_results(resultfile)
    except (ValueError, KeyError) as exc:
        raise click.ClickException(f"Cannot read {resultfile}: {exc}") from exc
    click.echo(format_results(results))


# ---------------------------------------------------------------------------
# judge / compare
# ---------------------------------------------------------------------------


def _echo_judgement(
    baseline: BenchmarkResults,
    target: BenchmarkResults,
    time_tolerance: float,
    memory_tolerance: float,
    *,
    markdown: bool,
    only_changed: bool,
) -> None:
    from revbench.display import export_markdown, format_judgement
    from revbench.judge import judge

    judgement = judge(baseline, target, time_tolerance, memory_tolerance)
    if markdown:
        click.echo(export_markdown(judgement, baseline, target), nl=False)
    else:
        click.echo(f"Target:   {target.commit}")
        click.echo(f"Baseline: {baseline.commit}")
        click.echo("")
        click.echo(format_judgement(judgement, only_changed=only_changed))


@main.command("judge")
@click.argument("baseline_file", type=click.Path(exists=True, path_type=Path))
@click.argument("target_file", type=click.Path(exists=True, path_type=Path))
@click.option("--time-tolerance", type=float, default=0.05, show_default=True)
@click.option("--memory-tolerance", type=float, default=0.01, show_default=True)
@click.option("--markdown", is_flag=True, help="Emit a Markdown report.")
@click.option("--only-changed", is_flag=True, help="Hide invariant benchmarks.")
def judge_cmd(
    baseline_file: Path,
    target_file: Path,
    time_tolerance: float,
    memory_tolerance: float,
    markdown: bool,
    only_changed: bool,
) -> None:
    """Judge TARGET_FILE against BASELINE_FILE."""
    try:
        baseline = read_results(baseline_file)
        target = read_results(target_file)
    except (ValueError, KeyError) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_judgement(
        baseline,
        target,
        time_tolerance,
        memory_tolerance,
        markdown=markdown,
        only_changed=only_changed,
    )


@main.command()
@click.argument("pkg")
@click.argument("target")
@click.argument("baseline", required=False)
@click.option("--markdown", is_flag=True, help="Emit a Markdown report.")
@click.option("--only-changed", is_flag=True, help="Hide invariant benchmarks.")
@_common_run_options
def compare(
    pkg: str,
    target: str,
    baseline: str | None,
    markdown: bool,
    only_changed: bool,
    profile_path: Path | None,
    script: str | None,
    tune_file: str | None,
    retune: bool,
    executable: str | None,
    env_pairs: tuple[str, ...],
    timeout: float | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark PKG at TARGET and BASELINE (default: working tree) and judge them."""
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    settings = _resolve_settings(
        pkg,
        profile_path,
        {
            "script": script,
            "tune_file": tune_file,
            "retune": retune or None,
            "executable": executable,
            "timeout": timeout,
        },
        env_pairs,
    )
    target_results = _benchmark(pkg, target, settings)
    baseline_results = _benchmark(pkg, baseline, settings)
    _echo_judgement(
        baseline_results,
        target_results,
        settings.time_tolerance,
        settings.memory_tolerance,
        markdown=markdown,
        only_changed=only_changed,
    )


# ---------------------------------------------------------------------------
# bisect
# ---------------------------------------------------------------------------


@main.command("bisect")
@click.argument("pkg")
@click.option("--good", "good_rev", required=True, help="Known-good git revision.")
@click.option("--bad", "bad_rev", required=True, help="Known-bad git revision.")
@click.option(
    "--metric",
    type=click.Choice(["any", "time", "memory"]),
    default="any",
    show_default=True,
    help="Which regressions count.",
)
@click.option(
    "--good-results",
    "good_results_file",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Saved results for the good revision, used instead of running it.",
)
@click.option(
    "--bad-results",
    "bad_results_file",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Saved results for the bad revision, used instead of running it.",
)
@_common_run_options
def bisect_cmd(
    pkg: str,
    good_rev: str,
    bad_rev: str,
    metric: str,
    good_results_file: Path | None,
    bad_results_file: Path | None,
    profile_path: Path | None,
    script: str | None,
    tune_file: str | None,
    retune: bool,
    executable: str | None,
    env_pairs: tuple[str, ...],
    timeout: float | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Bisect PKG's git history to find the revision that introduced a regression."""
    from revbench.bisect import run_bisect
    from revbench.display import format_bisect_outcome
    from revbench.errors import InconclusiveRevisionError
    from revbench.harness import locate_package
    from revbench.judge import has_regression, memory_regressed, time_regressed

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    settings = _resolve_settings(
        pkg,
        profile_path,
        {
            "script": script,
            "tune_file": tune_file,
            "retune": retune or None,
            "executable": executable,
            "timeout": timeout,
        },
        env_pairs,
    )
    predicate = {"any": has_regression, "time": time_regressed, "memory": memory_regressed}[metric]
    try:
        good_results = read_results(good_results_file) if good_results_file else None
        bad_results = read_results(bad_results_file) if bad_results_file else None
    except ValueError as exc:
        raise click.ClickException(f"Cannot read saved results: {exc}") from exc

    click.echo(f"Bisecting {pkg}: good={good_rev} bad={bad_rev}")
    try:
        outcome = run_bisect(
            locate_package(pkg),
            good_rev,
            bad_rev,
            settings.benchmark_config(),
            predicate=predicate,
            script=settings.script,
            tune_file=Path(settings.tune_file) if settings.tune_file else None,
            retune=settings.retune,
            time_tolerance=settings.time_tolerance,
            memory_tolerance=settings.memory_tolerance,
            good_results=good_results,
            bad_results=bad_results,
            timeout=settings.timeout,
        )
    except InconclusiveRevisionError as exc:
        for step in exc.steps:
            click.echo(f"  {step.revision_short} [{step.verdict}] {step.detail[:80]}", err=True)
        raise click.ClickException(str(exc)) from exc
    except (RevbenchError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo("")
    click.echo(format_bisect_outcome(outcome, verbose=verbose))
