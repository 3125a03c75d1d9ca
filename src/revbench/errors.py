"""Exception taxonomy for revbench.

Precondition failures (:class:`NotARepositoryError`,
:class:`DirtyRepositoryError`, :class:`InvalidBisectionRangeError`) are
raised before any repository mutation.  Execution failures carry the
captured subprocess output or the partial bisection trace.
"""

from __future__ import annotations

from typing import Any


class RevbenchError(Exception):
    """Base class for all revbench errors."""


class NotARepositoryError(RevbenchError):
    """A revision was requested for a directory without git metadata."""


class DirtyRepositoryError(RevbenchError):
    """A revision was requested while the working tree had uncommitted changes."""


class CheckoutError(RevbenchError):
    """``git checkout`` failed, usually because the ref does not resolve."""


class MissingSuiteError(RevbenchError):
    """The benchmark script ran but did not define ``SUITE``."""


class HarnessProtocolError(RevbenchError):
    """The benchmark subprocess exited cleanly but its output is missing or malformed."""


class BenchmarkExecutionError(RevbenchError):
    """The benchmark subprocess exited with a nonzero status."""

    def __init__(self, message: str, *, returncode: int, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class InvalidBisectionRangeError(RevbenchError):
    """The good/bad revisions do not bracket a regression."""


class InconclusiveRevisionError(RevbenchError):
    """A candidate revision could not be benchmarked during bisection.

    ``steps`` holds the bisection trace collected up to and including the
    failed candidate.
    """

    def __init__(self, revision: str, steps: list[Any], message: str = "") -> None:
        super().__init__(message or f"could not benchmark revision {revision}")
        self.revision = revision
        self.steps = steps
