"""Thin git helpers used by the harness and bisection.

Each helper shells out to ``git`` in the repository directory with a
timeout.  Only :func:`checkout` raises on failure; the query helpers
return None or an empty value so callers decide how to react.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

from revbench.errors import CheckoutError, NotARepositoryError
from revbench.logging import get_logger

log = get_logger("git")


def _git(repo_dir: Path, *args: str, timeout: int = 30) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=str(repo_dir),
        timeout=timeout,
        check=False,
    )


def is_git_repo(repo_dir: Path) -> bool:
    """True if *repo_dir* is the top level of a git work tree."""
    return (repo_dir / ".git").exists()


def resolve_revision(repo_dir: Path, rev: str) -> str | None:
    """Resolve a revision spec to a full commit hash."""
    proc = _git(repo_dir, "rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}", timeout=10)
    if proc.returncode == 0:
        return proc.stdout.strip()
    return None


def current_revision(repo_dir: Path) -> str:
    """Return the full sha of HEAD.

    Raises:
        NotARepositoryError: If HEAD cannot be resolved.
    """
    sha = resolve_revision(repo_dir, "HEAD")
    if sha is None:
        raise NotARepositoryError(f"{repo_dir} has no resolvable HEAD")
    return sha


def current_branch(repo_dir: Path) -> str | None:
    """Return the checked-out branch name, or None when HEAD is detached."""
    proc = _git(repo_dir, "symbolic-ref", "--short", "-q", "HEAD", timeout=10)
    if proc.returncode == 0 and proc.stdout.strip():
        return proc.stdout.strip()
    return None


def is_dirty(repo_dir: Path) -> bool:
    """True if tracked files have staged or unstaged changes.

    Untracked files (such as a freshly written tuning file) do not count.
    """
    proc = _git(repo_dir, "status", "--porcelain", "--untracked-files=no")
    if proc.returncode != 0:
        raise NotARepositoryError(f"git status failed in {repo_dir}: {proc.stderr.strip()}")
    return bool(proc.stdout.strip())


def checkout(repo_dir: Path, rev: str) -> None:
    """Check out *rev* in *repo_dir*.

    Raises:
        CheckoutError: If git refuses, typically because *rev* does not resolve.
    """
    log.debug("git checkout %s in %s", rev, repo_dir)
    proc = _git(repo_dir, "checkout", "--quiet", rev, timeout=60)
    if proc.returncode != 0:
        raise CheckoutError(f"git checkout {rev} failed: {proc.stderr.strip()[:200]}")


def get_commit_range(repo_dir: Path, good_rev: str, bad_rev: str) -> list[str]:
    """Get the list of commit hashes between good and bad (exclusive of good).

    Returns commits in chronological order (oldest first).
    The good commit is NOT included; the bad commit IS included.
    """
    proc = _git(repo_dir, "rev-list", "--ancestry-path", f"{good_rev}..{bad_rev}")
    if proc.returncode != 0:
        log.error("git rev-list failed: %s", proc.stderr.strip())
        return []
    # rev-list returns newest first; reverse for chronological.
    commits = [c.strip() for c in proc.stdout.strip().split("\n") if c.strip()]
    commits.reverse()
    return commits


def get_commit_info(repo_dir: Path, commit: str) -> tuple[str, str, str] | None:
    """Get (author, date, subject) for a commit, or None on failure."""
    proc = _git(repo_dir, "log", "--format=%an%n%as%n%s", "-1", commit, timeout=10)
    if proc.returncode == 0:
        lines = proc.stdout.strip().split("\n")
        if len(lines) >= 3:
            return (lines[0], lines[1], lines[2])
    return None
