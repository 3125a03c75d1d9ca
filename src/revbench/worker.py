"""Benchmark-subprocess entry point.

The harness launches the configured interpreter with a short bootstrap
that calls :func:`main` with a JSON instruction::

    {"script": "...", "output": "...", "tune_file": "...", "retune": false}

Everything here runs inside the fresh subprocess, at the revision being
benchmarked.  Log messages go to stderr, which the harness captures.
"""

from __future__ import annotations

import json
import platform
import runpy
import sys
from pathlib import Path
from typing import Any

from revbench.logging import get_logger, setup_logging
from revbench.suite import BenchmarkSuite, load_params, run_suite, suite_params, tune

log = get_logger("worker")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MISSING_SUITE = 3

BOOTSTRAP = "import sys; from revbench.worker import main; sys.exit(main(sys.argv[1]))"


def toolchain_metadata() -> dict[str, str]:
    """Identify the interpreter build running the benchmarks."""
    return {
        "version": platform.python_version(),
        "implementation": platform.python_implementation(),
        "build": sys.version,
        "executable": sys.executable,
        "platform": platform.platform(),
    }


def _format_toolchain_info(meta: dict[str, str]) -> str:
    return "\n".join(f"{key}: {value}" for key, value in meta.items())


def load_suite(script: Path) -> BenchmarkSuite | None:
    """Execute *script* and return its ``SUITE``, or None if it has none."""
    namespace = runpy.run_path(str(script), run_name="__revbench_suite__")
    suite = namespace.get("SUITE")
    if not isinstance(suite, BenchmarkSuite):
        return None
    return suite


def prepare_tuning(suite: BenchmarkSuite, tune_file: Path, retune: bool) -> None:
    """Load tuning data from *tune_file*, or tune and save it."""
    if tune_file.is_file() and not retune:
        log.info("Using benchmark tuning data in %s", tune_file.resolve())
        load_params(suite, json.loads(tune_file.read_text()))
        return
    log.info("Creating benchmark tuning file %s...", tune_file.resolve())
    tune(suite)
    tune_file.parent.mkdir(parents=True, exist_ok=True)
    tune_file.write_text(json.dumps(suite_params(suite), indent=2) + "\n")


def run_instruction(instruction: dict[str, Any]) -> int:
    """Carry out one harness instruction and return the exit code."""
    script = Path(instruction["script"])
    output = Path(instruction["output"])
    tune_file = Path(instruction["tune_file"])
    retune = bool(instruction.get("retune", False))

    suite = load_suite(script)
    if suite is None:
        log.error(
            "`SUITE` variable not found in %s, make sure the BenchmarkSuite is named `SUITE`",
            script,
        )
        return EXIT_MISSING_SUITE

    prepare_tuning(suite, tune_file, retune)

    log.info("Running benchmarks...")
    tree = run_suite(suite)

    meta = toolchain_metadata()
    payload = {
        "results": tree.to_dict(),
        "toolchain": {"version": meta["version"], "info": _format_toolchain_info(meta)},
    }
    output.write_text(json.dumps(payload))
    return EXIT_OK


def main(instruction_json: str) -> int:
    """Subprocess entry point; see the module docstring."""
    setup_logging(verbose=False)
    try:
        instruction = json.loads(instruction_json)
    except json.JSONDecodeError as exc:
        log.error("Invalid harness instruction: %s", exc)
        return EXIT_ERROR
    return run_instruction(instruction)
