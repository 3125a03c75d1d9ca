"""Shared test fixtures for revbench tests."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Any

from revbench.results import BenchmarkConfig, BenchmarkResults, ResultTree, Trial

HAS_GIT = shutil.which("git") is not None

_GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def make_trial(
    median: float = 0.1,
    *,
    memory: int = 1024,
    blocks: int = 10,
    samples: int = 10,
    evals: int = 1,
) -> Trial:
    """Create a Trial around a median time (seconds)."""
    return Trial(
        samples=samples,
        evals=evals,
        min_time_s=median * 0.9,
        median_time_s=median,
        mean_time_s=median * 1.01,
        max_time_s=median * 1.2,
        peak_bytes=memory,
        retained_blocks=blocks,
    )


def make_tree(spec: dict[str, Any]) -> ResultTree:
    """Build a ResultTree from name -> median | Trial | nested dict."""
    entries: dict[str, Any] = {}
    for name, value in spec.items():
        if isinstance(value, dict):
            entries[name] = make_tree(value)
        elif isinstance(value, Trial):
            entries[name] = value
        else:
            entries[name] = make_trial(float(value))
    return ResultTree(entries)


def make_results(
    tree: ResultTree | dict[str, Any],
    *,
    commit: str = "a" * 40,
    name: str = "pkg",
    revision: str | None = None,
) -> BenchmarkResults:
    """Create BenchmarkResults around a tree."""
    if isinstance(tree, dict):
        tree = make_tree(tree)
    return BenchmarkResults(
        name=name,
        commit=commit,
        tree=tree,
        timestamp="2024-01-01T00:00:00Z",
        toolchain_version="3.12.0",
        toolchain_info="version: 3.12.0",
        config=BenchmarkConfig(revision=revision),
    )


def worker_payload(tree: ResultTree, version: str = "3.12.0") -> dict[str, Any]:
    """The JSON document a worker subprocess writes."""
    return {"results": tree.to_dict(), "toolchain": {"version": version, "info": "test"}}


# ---------------------------------------------------------------------------
# Git repositories
# ---------------------------------------------------------------------------


def run_git(repo: Path, *args: str) -> str:
    """Run git in *repo* and return stripped stdout."""
    proc = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=str(repo),
        env=_GIT_ENV,
        capture_output=True,
        text=True,
        check=True,
    )
    return proc.stdout.strip()


def init_repo(repo: Path) -> None:
    """Initialize an empty repository on branch ``main``."""
    repo.mkdir(parents=True, exist_ok=True)
    run_git(repo, "init", "-q")
    run_git(repo, "symbolic-ref", "HEAD", "refs/heads/main")


def commit_files(repo: Path, files: dict[str, str], message: str = "change") -> str:
    """Write *files*, commit them, and return the new sha."""
    for rel, content in files.items():
        path = repo / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    run_git(repo, "add", "-A")
    run_git(repo, "commit", "-q", "-m", message)
    return run_git(repo, "rev-parse", "HEAD")
