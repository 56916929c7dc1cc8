"""Logging setup for concourse-harness.

Everything logs under the ``concourse_harness`` logger. The console follows
the CLI's verbosity flags; an optional log file always records at DEBUG, so
installer and control-script output can be inspected after a failed run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

_LOGGER_NAME = "concourse_harness"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"


def _console_level(verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the ``concourse_harness`` logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        verbose: Show DEBUG output (installer and script lines) on the console.
        quiet: Only show warnings and errors. Ignored if *verbose* is True.
        log_file: Also write everything, at DEBUG, to this file.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(_console_level(verbose, quiet))
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the child logger ``concourse_harness.<name>``."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


def log_lines(
    logger: logging.Logger, level: int, lines: Iterable[str], *, prefix: str = ""
) -> None:
    """Log each line of a subprocess's output as its own record.

    Blank lines are skipped.
    """
    if not logger.isEnabledFor(level):
        return
    for line in lines:
        if line.strip():
            logger.log(level, "%s%s", prefix, line)
