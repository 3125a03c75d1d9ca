"""Benchmark result data structures and serialization.

Hierarchy::

    BenchmarkResults (one completed harness run)
      → config: BenchmarkConfig
      → tree: ResultTree
        → name → Trial | ResultTree

Files produced::

    <resultfile>.json — BenchmarkResults, written by write_results()

All values are immutable once constructed.  Trees from different revisions
of the same suite may have different leaves; nothing here treats that as
an error.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Union

log = logging.getLogger("revbench")

DIRTY_COMMIT = "dirty"
NON_GIT_COMMIT = "non gitrepo"

FORMAT_VERSION = 2


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BenchmarkConfig:
    """How, and at which revision, to run a benchmark suite.

    ``revision`` is any git identifier (sha, branch, tag, ``HEAD~1``);
    ``None`` benchmarks the working tree as it is.
    """

    revision: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    executable: tuple[str, ...] = (sys.executable,)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "executable", tuple(self.executable))
        if not self.executable:
            raise ValueError("executable must name at least the interpreter")

    @classmethod
    def coerce(cls, target: BenchmarkConfig | str | None) -> BenchmarkConfig:
        """Accept a config, a git identifier, or None."""
        if isinstance(target, BenchmarkConfig):
            return target
        return cls(revision=target)

    def with_revision(self, revision: str | None) -> BenchmarkConfig:
        """Return a copy of this config targeting *revision*."""
        return replace(self, revision=revision)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "revision": self.revision,
            "env": dict(self.env),
            "executable": list(self.executable),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkConfig:
        """Deserialize from a dict."""
        return cls(
            revision=data.get("revision"),
            env=data.get("env", {}),
            executable=tuple(data.get("executable") or (sys.executable,)),
        )


# ---------------------------------------------------------------------------
# Leaf statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Trial:
    """Measured statistics for one named benchmark.

    Memory figures come from :mod:`tracemalloc` over one evaluation, which
    sees live memory only: ``peak_bytes`` is the high-water mark above the
    starting level and ``retained_blocks`` counts blocks still allocated
    when the evaluation returns.  Memory allocated and freed again before
    the peak is not counted.
    """

    samples: int
    evals: int
    min_time_s: float
    median_time_s: float
    mean_time_s: float
    max_time_s: float
    peak_bytes: int
    retained_blocks: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict, tagged as a trial."""
        return {
            "trial": True,
            "samples": self.samples,
            "evals": self.evals,
            "min_time_s": self.min_time_s,
            "median_time_s": self.median_time_s,
            "mean_time_s": self.mean_time_s,
            "max_time_s": self.max_time_s,
            "peak_bytes": self.peak_bytes,
            "retained_blocks": self.retained_blocks,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Trial:
        """Deserialize from a dict, ignoring unknown fields.

        Raises:
            ValueError: If a field is missing or not a number.
        """
        values: dict[str, Any] = {}
        for name in cls.__dataclass_fields__:
            if name not in data:
                raise ValueError(f"Trial is missing {name!r}")
            value = data[name]
            # bool is an int subclass but never a valid statistic
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Trial field {name!r} is not a number: {value!r}")
            values[name] = value
        return cls(**values)


# ---------------------------------------------------------------------------
# Result tree
# ---------------------------------------------------------------------------


ResultNode = Union[Trial, "ResultTree"]


class ResultTree(Mapping[str, ResultNode]):
    """Read-only hierarchical mapping of benchmark names to results."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, ResultNode] | None = None) -> None:
        checked: dict[str, ResultNode] = {}
        for name, node in (entries or {}).items():
            if isinstance(node, Mapping) and not isinstance(node, ResultTree):
                node = ResultTree(node)
            if not isinstance(node, (Trial, ResultTree)):
                raise TypeError(
                    f"{name!r}: expected Trial or ResultTree, got {type(node).__name__}"
                )
            checked[str(name)] = node
        self._entries = MappingProxyType(checked)

    def __getitem__(self, name: str) -> ResultNode:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResultTree):
            return dict(self._entries) == dict(other._entries)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(sorted(self._entries.items(), key=lambda kv: kv[0])))

    def __repr__(self) -> str:
        return f"ResultTree({dict(self._entries)!r})"

    def leaves(self) -> Iterator[tuple[tuple[str, ...], Trial]]:
        """Yield ``(path, trial)`` for every leaf, sorted by name at each level."""
        for name in sorted(self._entries):
            node = self._entries[name]
            if isinstance(node, Trial):
                yield (name,), node
            else:
                for sub_path, trial in node.leaves():
                    yield (name, *sub_path), trial

    def leaf_paths(self) -> set[tuple[str, ...]]:
        """The set of leaf paths (the suite's shape)."""
        return {path for path, _ in self.leaves()}

    def find(self, path: tuple[str, ...] | list[str]) -> ResultNode | None:
        """Look up a node by path, or None if any component is missing."""
        node: ResultNode = self
        for name in path:
            if not isinstance(node, ResultTree) or name not in node:
                return None
            node = node[name]
        return node

    def to_dict(self) -> dict[str, Any]:
        """Serialize to nested JSON-compatible dicts."""
        return {name: node.to_dict() for name, node in self._entries.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResultTree:
        """Deserialize the nested dict format produced by :meth:`to_dict`.

        Raises:
            ValueError: If *data* or any entry is not in that format.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Malformed result tree: {type(data).__name__}")
        entries: dict[str, ResultNode] = {}
        for name, value in data.items():
            if not isinstance(value, Mapping):
                raise ValueError(f"Malformed result entry {name!r}: {type(value).__name__}")
            if value.get("trial") is True:
                entries[name] = Trial.from_dict(value)
            else:
                entries[name] = cls.from_dict(value)
        return cls(entries)


# ---------------------------------------------------------------------------
# Run-level result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BenchmarkResults:
    """One completed benchmark run of a package."""

    name: str  # package identifier
    commit: str  # resolved sha, DIRTY_COMMIT or NON_GIT_COMMIT
    tree: ResultTree
    timestamp: str
    toolchain_version: str
    toolchain_info: str = ""
    config: BenchmarkConfig = field(default_factory=BenchmarkConfig)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "format_version": FORMAT_VERSION,
            "name": self.name,
            "commit": self.commit,
            "timestamp": self.timestamp,
            "toolchain_version": self.toolchain_version,
            "toolchain_info": self.toolchain_info,
            "config": self.config.to_dict(),
            "tree": self.tree.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BenchmarkResults:
        """Deserialize from a dict.

        Raises:
            ValueError: If the data is malformed or was written by an
                incompatible version.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Malformed results: {type(data).__name__}")
        version = data.get("format_version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported results format version {version!r}")
        return cls(
            name=data["name"],
            commit=data["commit"],
            tree=ResultTree.from_dict(data.get("tree", {})),
            timestamp=data.get("timestamp", ""),
            toolchain_version=data.get("toolchain_version", ""),
            toolchain_info=data.get("toolchain_info", ""),
            config=BenchmarkConfig.from_dict(data.get("config", {})),
        )


# ---------------------------------------------------------------------------
# I/O functions
# ---------------------------------------------------------------------------


def write_results(path: Path, results: BenchmarkResults) -> None:
    """Write *results* to *path* as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(results.to_dict(), indent=2) + "\n")
    log.info("Wrote benchmark results to %s", path)


def read_results(path: Path) -> BenchmarkResults:
    """Read results previously written with :func:`write_results`.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"No results file at {path}")
    return BenchmarkResults.from_dict(json.loads(path.read_text()))
