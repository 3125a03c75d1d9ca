"""Logging setup for revbench.

Configures a console handler whose level follows the CLI verbosity flags
and an optional file handler that always logs at DEBUG level.  Every
revbench module logs through a child of the ``revbench`` logger.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, Protocol

_LOGGER_NAME = "revbench"
_DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"


class LogSink(Protocol):
    """Anything that accepts log messages like a :class:`logging.Logger`."""

    def info(self, msg: str, *args: object) -> None: ...

    def warning(self, msg: str, *args: object) -> None: ...


LoggerFactory = Callable[[], LogSink]


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    stream: object = None,
) -> logging.Logger:
    """Configure and return the root revbench logger.

    Args:
        verbose: If True, set console log level to DEBUG.
        quiet: If True, set console log level to WARNING. Ignored if *verbose* is True.
        log_file: If provided, add a file handler at DEBUG level to this path.
        stream: Stream for the console handler (default: stderr).

    Returns:
        The configured root logger for revbench.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Remove any existing handlers to allow reconfiguration.
    logger.handlers.clear()

    console = logging.StreamHandler(stream or sys.stderr)  # type: ignore[arg-type]
    if verbose:
        console.setLevel(logging.DEBUG)
    elif quiet:
        console.setLevel(logging.WARNING)
    else:
        console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a named child logger under the revbench namespace.

    Args:
        name: The logger name (will be prefixed with ``revbench.``).
    """
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def default_logger_factory() -> logging.Logger:
    """Sink for output relayed from benchmark subprocesses."""
    return get_logger("worker")
