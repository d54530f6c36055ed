"""
Logging utilities for peerkeeper.

All peerkeeper modules log through loggers in the ``peerkeeper``
namespace obtained from :func:`get_logger`. The library never configures
the root logger on its own; the CLI (or an embedding application) calls
:func:`setup_logging` once. Until then every logger carries a
``NullHandler`` so that importing peerkeeper stays silent.

Severity labels used by the analyzer (``high`` / ``medium`` / ``low``)
map onto logging levels through :func:`level_for_severity` so that
recorded diagnostics and log lines agree.
"""

from __future__ import annotations

import os
import sys
import logging
import threading
from typing import IO, Dict, Optional

from peerkeeper.constants import (
    LOG_DATE_FORMAT,
    LOG_DEFAULT_FORMAT,
    LOG_VERBOSE_FORMAT,
)

_ROOT_NAME = "peerkeeper"

_lock = threading.Lock()

_SEVERITY_LEVELS: Dict[str, int] = {
    "critical": logging.ERROR,
    "high": logging.WARNING,
    "medium": logging.WARNING,
    "low": logging.INFO,
}


class ColoredFormatter(logging.Formatter):
    """Formatter that tints the level name with ANSI colors on a TTY."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str,
        *,
        datefmt: Optional[str] = None,
        use_color: bool = True,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not (self.use_color and _stderr_supports_color()):
            return super().format(record)

        color = self.COLORS.get(record.levelname)
        if not color:
            return super().format(record)

        # Work on a copy so other handlers see the plain level name
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def _stderr_supports_color() -> bool:
    if os.environ.get("NO_COLOR") or os.environ.get("CI"):
        return False
    try:
        return sys.stderr.isatty()
    except (AttributeError, OSError):
        return False


def setup_logging(
    *,
    level: int = logging.INFO,
    verbose: bool = False,
    stream: Optional[IO[str]] = None,
) -> None:
    """Install a single stream handler on the ``peerkeeper`` logger.

    Safe to call repeatedly; previous handlers are replaced.

    Args:
        level: Logging level (e.g. ``logging.DEBUG``).
        verbose: Use the timestamped format including logger names.
        stream: Output stream; defaults to ``sys.stderr``.
    """
    with _lock:
        root_logger = logging.getLogger(_ROOT_NAME)
        root_logger.handlers.clear()
        root_logger.setLevel(level)

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setLevel(level)
        handler.setFormatter(
            ColoredFormatter(
                LOG_VERBOSE_FORMAT if verbose else LOG_DEFAULT_FORMAT,
                datefmt=LOG_DATE_FORMAT,
                use_color=not os.environ.get("NO_COLOR"),
            )
        )

        root_logger.addHandler(handler)
        root_logger.propagate = False


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger inside the ``peerkeeper`` namespace.

    Args:
        name: Short component name (``"resolver"``) or a dotted module
            name already under ``peerkeeper``.

    Returns:
        The namespaced :class:`logging.Logger`.

    Example::

        >>> get_logger("merger").name
        'peerkeeper.merger'
    """
    if not name or name == _ROOT_NAME:
        logger = logging.getLogger(_ROOT_NAME)
    elif name.startswith(f"{_ROOT_NAME}."):
        logger = logging.getLogger(name)
    else:
        logger = logging.getLogger(f"{_ROOT_NAME}.{name}")

    if not logger.handlers and (not logger.parent or not logger.parent.handlers):
        logger.addHandler(logging.NullHandler())

    return logger


def level_for_severity(severity: Optional[str]) -> int:
    """Map a diagnostic severity label onto a logging level.

    Unknown or missing labels log at ``INFO``.
    """
    if not severity:
        return logging.INFO
    return _SEVERITY_LEVELS.get(severity.lower(), logging.INFO)
