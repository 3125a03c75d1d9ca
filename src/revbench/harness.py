"""Isolated execution of a package's benchmark suite.

:func:`execute` runs the suite in a fresh interpreter subprocess,
optionally at another git revision.  The repository working tree is the
only shared mutable state, so checkout, run, and restore happen under a
per-repository lock, and the original HEAD is restored on every exit
path.

:func:`benchmarkpkg` is the convenience front end: it locates the
package directory, the benchmark script and the tuning file, applies a
post-processing hook, and can write the results to disk.
"""

from __future__ import annotations

import dataclasses
import importlib.util
import json
import os
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

import revbench
from revbench import git
from revbench.errors import (
    BenchmarkExecutionError,
    CheckoutError,
    DirtyRepositoryError,
    HarnessProtocolError,
    MissingSuiteError,
    NotARepositoryError,
)
from revbench.logging import LoggerFactory, LogSink, default_logger_factory, get_logger
from revbench.results import (
    DIRTY_COMMIT,
    NON_GIT_COMMIT,
    BenchmarkConfig,
    BenchmarkResults,
    ResultTree,
    write_results,
)
from revbench.worker import BOOTSTRAP, EXIT_MISSING_SUITE

log = get_logger("harness")

DEFAULT_SCRIPT = Path("benchmark") / "benchmarks.py"
DEFAULT_TUNE_FILE = Path("benchmark") / "tune.json"

Postprocess = Callable[[ResultTree], "ResultTree | None"]


# ---------------------------------------------------------------------------
# Per-repository locking
# ---------------------------------------------------------------------------

_repo_locks: dict[str, threading.Lock] = {}
_repo_locks_guard = threading.Lock()


def repository_lock(repo_dir: Path) -> threading.Lock:
    """Return the lock serializing executions against *repo_dir*."""
    key = str(repo_dir.resolve())
    with _repo_locks_guard:
        lock = _repo_locks.get(key)
        if lock is None:
            lock = _repo_locks[key] = threading.Lock()
        return lock


# ---------------------------------------------------------------------------
# Checkout / restore
# ---------------------------------------------------------------------------


@contextmanager
def checked_out(repo_dir: Path, revision: str) -> Iterator[None]:
    """Check out *revision* for the duration of the block.

    The branch (or detached sha) checked out on entry is restored on
    exit, whether the block succeeds or raises.  A failed restore is
    logged as a warning and never replaces the block's own outcome.
    """
    original_sha = git.current_revision(repo_dir)
    original_ref = git.current_branch(repo_dir) or original_sha

    git.checkout(repo_dir, revision)
    try:
        yield
    finally:
        try:
            git.checkout(repo_dir, original_ref)
        except CheckoutError as exc:
            log.warning("Failed to return to original revision %s: %s", original_ref, exc)
        after_sha = git.resolve_revision(repo_dir, "HEAD")
        if after_sha != original_sha:
            log.warning(
                "Failed to return back to original sha %s, package now at %s",
                original_sha,
                after_sha,
            )


def commit_label(repo_dir: Path, is_repo: bool) -> str:
    """Label for the revision currently checked out in *repo_dir*."""
    if not is_repo:
        return NON_GIT_COMMIT
    if git.is_dirty(repo_dir):
        return DIRTY_COMMIT
    return git.current_revision(repo_dir)


# ---------------------------------------------------------------------------
# Subprocess launch
# ---------------------------------------------------------------------------


def _build_env(pkg_dir: Path, config: BenchmarkConfig) -> dict[str, str]:
    """Environment for the benchmark subprocess.

    The checked-out source tree (and its ``src/`` directory, if any) comes
    first on ``PYTHONPATH`` so the benchmarked revision is what gets
    imported; revbench's own location follows so the bootstrap resolves.
    """
    env = dict(os.environ)
    env.update(config.env)

    paths = [str(pkg_dir)]
    if (pkg_dir / "src").is_dir():
        paths.insert(0, str(pkg_dir / "src"))
    paths.append(str(Path(revbench.__file__).resolve().parent.parent))
    existing = env.get("PYTHONPATH")
    if existing:
        paths.append(existing)
    env["PYTHONPATH"] = os.pathsep.join(paths)
    return env


def _relay_output(output: str, sink: LogSink) -> None:
    for line in output.splitlines():
        if line.strip():
            sink.info("%s", line)


def launch_worker(
    pkg_dir: Path,
    config: BenchmarkConfig,
    instruction: dict[str, object],
    *,
    sink: LogSink,
    timeout: float | None = None,
) -> None:
    """Run the worker subprocess and wait for it.

    Raises:
        MissingSuiteError: The script defined no ``SUITE``.
        BenchmarkExecutionError: Nonzero exit or timeout.
    """
    pkg_dir = pkg_dir.resolve()
    cmd = [*config.executable, "-c", BOOTSTRAP, json.dumps(instruction)]
    log.debug("Launching %s", cmd[: len(config.executable)])
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            cwd=str(pkg_dir),
            env=_build_env(pkg_dir, config),
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        partial = exc.output if isinstance(exc.output, str) else (exc.output or b"").decode(
            errors="replace"
        )
        raise BenchmarkExecutionError(
            f"Benchmark run timed out after {timeout}s", returncode=-1, output=partial
        ) from exc
    except OSError as exc:
        raise BenchmarkExecutionError(
            f"Could not launch {config.executable[0]}: {exc}", returncode=-1
        ) from exc

    output = proc.stdout or ""
    _relay_output(output, sink)

    if proc.returncode == EXIT_MISSING_SUITE:
        raise MissingSuiteError(
            f"`SUITE` variable not found in {instruction['script']}, "
            "make sure the BenchmarkSuite is named `SUITE`"
        )
    if proc.returncode != 0:
        raise BenchmarkExecutionError(
            f"Benchmark run failed (exit {proc.returncode})",
            returncode=proc.returncode,
            output=output,
        )


def parse_worker_output(path: Path) -> tuple[ResultTree, str, str]:
    """Parse the worker's output file into (tree, toolchain version, toolchain info).

    Raises:
        HarnessProtocolError: If the file is missing or malformed.
    """
    if not path.is_file():
        raise HarnessProtocolError(f"Benchmark process produced no output at {path}")
    try:
        data = json.loads(path.read_text())
        if not isinstance(data, dict) or not isinstance(data.get("toolchain"), dict):
            raise ValueError("expected an object with results and toolchain")
        tree = ResultTree.from_dict(data["results"])
        toolchain = data["toolchain"]
        return tree, str(toolchain["version"]), str(toolchain.get("info", ""))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
        raise HarnessProtocolError(f"Malformed benchmark output in {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _run_here(
    pkg_dir: Path,
    config: BenchmarkConfig,
    script: Path,
    tune_file: Path,
    retune: bool,
    *,
    name: str,
    is_repo: bool,
    sink: LogSink,
    timeout: float | None,
) -> BenchmarkResults:
    """Benchmark whatever is currently checked out in *pkg_dir*."""
    commit = commit_label(pkg_dir, is_repo)

    with tempfile.TemporaryDirectory(prefix="revbench-") as tmp:
        output = Path(tmp) / "results.json"
        instruction = {
            "script": str(script.resolve()),
            "output": str(output),
            "tune_file": str(tune_file.resolve()),
            "retune": retune,
        }
        log.info("Running benchmarks for %s at %s...", name, commit[:12])
        launch_worker(pkg_dir, config, instruction, sink=sink, timeout=timeout)
        tree, toolchain_version, toolchain_info = parse_worker_output(output)

    return BenchmarkResults(
        name=name,
        commit=commit,
        tree=tree,
        timestamp=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        toolchain_version=toolchain_version,
        toolchain_info=toolchain_info,
        config=config,
    )


def execute(
    pkg_dir: Path,
    config: BenchmarkConfig,
    script: Path,
    tune_file: Path,
    retune: bool = False,
    *,
    name: str | None = None,
    logger_factory: LoggerFactory | None = None,
    timeout: float | None = None,
) -> BenchmarkResults:
    """Run the benchmark suite in *script* for the package at *pkg_dir*.

    Args:
        pkg_dir: Package (and git repository) root.
        config: Revision, environment and interpreter to use.
        script: Benchmark script defining ``SUITE``.
        tune_file: Tuning data file, loaded unless *retune* is set.
        retune: Re-derive tuning parameters and overwrite *tune_file*.
        name: Package identifier recorded in the results (default: directory name).
        logger_factory: Zero-argument callable producing the sink that
            receives the subprocess output.
        timeout: Optional limit on the subprocess run, in seconds.

    Raises:
        FileNotFoundError: *script* does not exist.
        NotARepositoryError: A revision was requested outside a git repository.
        DirtyRepositoryError: A revision was requested on a dirty work tree.
        CheckoutError: The revision could not be checked out.
        MissingSuiteError: The script defines no ``SUITE``.
        BenchmarkExecutionError: The subprocess failed.
        HarnessProtocolError: The subprocess output was missing or malformed.
    """
    pkg_dir = Path(pkg_dir)
    script = Path(script)
    if not script.is_file():
        raise FileNotFoundError(f"benchmark script at {script} not found")

    is_repo = git.is_git_repo(pkg_dir)
    if config.revision is not None and not is_repo:
        raise NotARepositoryError(
            f"{pkg_dir} is not a git repo, cannot benchmark at {config.revision}"
        )

    sink = (logger_factory or default_logger_factory)()
    label = name or pkg_dir.resolve().name

    def run() -> BenchmarkResults:
        return _run_here(
            pkg_dir,
            config,
            script,
            Path(tune_file),
            retune,
            name=label,
            is_repo=is_repo,
            sink=sink,
            timeout=timeout,
        )

    with repository_lock(pkg_dir):
        if config.revision is None:
            return run()
        if git.is_dirty(pkg_dir):
            raise DirtyRepositoryError(
                f"{pkg_dir} is dirty. Please commit/stash your changes "
                "before benchmarking a specific commit"
            )
        with checked_out(pkg_dir, config.revision):
            return run()


# ---------------------------------------------------------------------------
# Package-level front end
# ---------------------------------------------------------------------------


def locate_package(pkg: str | Path) -> Path:
    """Resolve *pkg* (a directory or an importable package name) to its root directory.

    Raises:
        ValueError: If no such directory or package exists.
    """
    path = Path(pkg)
    if path.is_dir():
        return path
    try:
        spec = importlib.util.find_spec(str(pkg))
    except (ImportError, ValueError):
        spec = None
    if spec is None or spec.origin is None:
        raise ValueError(f"No package '{pkg}' found.")
    # <root>/<pkg>/__init__.py or <root>/src/<pkg>/__init__.py
    root = Path(spec.origin).resolve().parent.parent
    if root.name == "src":
        root = root.parent
    return root


def resolve_script(pkg_dir: Path, script: str | Path | None) -> Path:
    """Default to ``benchmark/benchmarks.py``; relative paths are relative to *pkg_dir*."""
    if script is None:
        return pkg_dir / DEFAULT_SCRIPT
    script = Path(script)
    return script if script.is_absolute() else pkg_dir / script


def benchmarkpkg(
    pkg: str | Path,
    target: BenchmarkConfig | str | None = None,
    *,
    script: str | Path | None = None,
    tune_file: str | Path | None = None,
    postprocess: Postprocess | None = None,
    resultfile: Path | None = None,
    retune: bool = False,
    logger_factory: LoggerFactory | None = None,
    timeout: float | None = None,
) -> BenchmarkResults:
    """Benchmark package *pkg* at *target* (a config, a git identifier, or None).

    *postprocess* receives the result tree and may return a replacement.
    If *resultfile* is set the results are also written there.
    """
    config = BenchmarkConfig.coerce(target)
    pkg_dir = locate_package(pkg)
    script_path = resolve_script(pkg_dir, script)
    tune_path = Path(tune_file) if tune_file is not None else pkg_dir / DEFAULT_TUNE_FILE
    if not tune_path.is_absolute():
        tune_path = pkg_dir / tune_path

    results = execute(
        pkg_dir,
        config,
        script_path,
        tune_path,
        retune,
        name=str(pkg) if not Path(pkg).is_dir() else None,
        logger_factory=logger_factory,
        timeout=timeout,
    )

    if postprocess is not None:
        replacement = postprocess(results.tree)
        if replacement is not None:
            results = dataclasses.replace(results, tree=replacement)

    if resultfile is not None:
        write_results(Path(resultfile), results)
    return results
