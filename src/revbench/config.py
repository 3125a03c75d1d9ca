"""Run settings and YAML profile loading.

Handles:
- Loading a benchmark profile from a YAML file.
- Merging CLI options with profile defaults (CLI wins).
- Parsing ``KEY=VALUE`` environment overrides.
- Validating the final settings before execution.
"""

from __future__ import annotations

import logging
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from revbench.judge import DEFAULT_MEMORY_TOLERANCE, DEFAULT_TIME_TOLERANCE
from revbench.results import BenchmarkConfig

log = logging.getLogger("revbench")

DEFAULT_PROFILE = Path("benchmark") / "revbench.yaml"


# ---------------------------------------------------------------------------
# RunSettings
# ---------------------------------------------------------------------------


@dataclass
class RunSettings:
    """Resolved settings for benchmarking one package."""

    executable: list[str] = field(default_factory=lambda: [sys.executable])
    env: dict[str, str] = field(default_factory=dict)
    script: str | None = None  # default: benchmark/benchmarks.py
    tune_file: str | None = None  # default: benchmark/tune.json
    time_tolerance: float = DEFAULT_TIME_TOLERANCE
    memory_tolerance: float = DEFAULT_MEMORY_TOLERANCE
    timeout: float | None = None
    retune: bool = False

    def benchmark_config(self, revision: str | None = None) -> BenchmarkConfig:
        """The immutable per-run config for *revision*."""
        return BenchmarkConfig(
            revision=revision,
            env=self.env,
            executable=tuple(self.executable),
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single settings validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_settings(settings: RunSettings) -> list[ValidationError]:
    """Validate run settings.  An empty list means valid."""
    errors: list[ValidationError] = []

    if not settings.executable:
        errors.append(
            ValidationError(
                field="executable",
                message="No interpreter configured; set 'executable' or --executable.",
            )
        )

    for name in ("time_tolerance", "memory_tolerance"):
        value = getattr(settings, name)
        if not 0 <= value < 1:
            errors.append(
                ValidationError(
                    field=name,
                    message=f"{name} must be in [0, 1) (got {value}).",
                )
            )

    if settings.timeout is not None and settings.timeout <= 0:
        errors.append(
            ValidationError(
                field="timeout",
                message=f"Timeout must be positive (got {settings.timeout}).",
            )
        )

    for key in settings.env:
        if not key or "=" in key:
            errors.append(
                ValidationError(
                    field="env",
                    message=f"Invalid environment variable name: {key!r}",
                )
            )

    return errors


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------


def load_profile(profile_path: Path) -> dict[str, Any]:
    """Load a benchmark profile from a YAML file.

    Profile format::

        executable: ["python3", "-X", "dev"]
        env:
          PYTHONHASHSEED: "0"
        script: benchmark/benchmarks.py
        tune_file: benchmark/tune.json
        time_tolerance: 0.05
        memory_tolerance: 0.01
        timeout: 3600

    Returns:
        The parsed YAML as a dict.  An empty file yields an empty dict.
    """
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Profile must be a YAML mapping, got {type(data).__name__}")
    return data


def _parse_executable(value: Any) -> list[str]:
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValueError("'executable' must be a string or a list of strings")


def settings_from_profile(
    profile_data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> RunSettings:
    """Build RunSettings from a parsed profile, letting CLI values win.

    *cli_overrides* keys match RunSettings field names; None values are
    ignored.  CLI ``env`` entries are merged over the profile's.
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    settings = RunSettings()

    if "executable" in cli:
        settings.executable = _parse_executable(cli["executable"])
    elif "executable" in profile_data:
        settings.executable = _parse_executable(profile_data["executable"])

    env = profile_data.get("env") or {}
    if not isinstance(env, dict):
        raise ValueError("Profile 'env' must be a mapping of NAME -> value")
    settings.env = {str(k): str(v) for k, v in env.items()}
    settings.env.update(cli.get("env", {}))

    for name in ("script", "tune_file"):
        value = cli.get(name, profile_data.get(name))
        if value is not None:
            setattr(settings, name, str(value))

    for name in ("time_tolerance", "memory_tolerance"):
        value = cli.get(name, profile_data.get(name))
        if value is not None:
            setattr(settings, name, float(value))

    timeout = cli.get("timeout", profile_data.get("timeout"))
    if timeout is not None:
        settings.timeout = float(timeout)

    settings.retune = bool(cli.get("retune", profile_data.get("retune", False)))
    return settings


def load_settings(
    pkg_dir: Path,
    profile_path: Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> RunSettings:
    """Load settings from *profile_path*, or the package's default profile if present."""
    if profile_path is None:
        default = pkg_dir / DEFAULT_PROFILE
        profile_data = load_profile(default) if default.exists() else {}
    else:
        profile_data = load_profile(profile_path)
    return settings_from_profile(profile_data, cli_overrides=cli_overrides)


# ---------------------------------------------------------------------------
# Environment pairs
# ---------------------------------------------------------------------------


def parse_env_pairs(pairs: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a dict.

    Raises:
        ValueError: If a pair has no ``=`` or an empty key.
    """
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid env format (expected KEY=VALUE): {pair}")
        env[key] = value
    return env
