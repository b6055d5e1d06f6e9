"""
Logging utilities for depforge.

Centralizes logger configuration for the ``depforge`` namespace. Library
code only ever calls :func:`get_logger`; handlers are installed exclusively
by :func:`setup_logging` (called from the CLI or by embedding
applications), so importing depforge never produces output on its own.

Resolution sessions log through :class:`SessionLoggerAdapter`, which tags
every record with the session identifier so interleaved output from
concurrent sessions stays attributable.
"""

from __future__ import annotations

import os
import sys
import logging
import threading
from typing import IO, Any, MutableMapping, Optional, Tuple

from depforge.constants import (
    LOG_DATE_FORMAT,
    LOG_DEFAULT_FORMAT,
    LOG_VERBOSE_FORMAT,
)

_ROOT_NAME = "depforge"

_logging_configured: bool = False
_lock = threading.Lock()


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name when writing to a terminal.

    The record itself is never mutated, so other handlers attached to the
    same logger keep receiving plain level names.
    """

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
        stream: Optional[IO[str]] = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color
        self._stream = stream

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname)
        if not (color and self.use_color and self._should_use_color()):
            return super().format(record)

        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original

    def _should_use_color(self) -> bool:
        """Determine whether ANSI colors should be emitted."""
        if os.environ.get("NO_COLOR") or os.environ.get("CI"):
            return False
        stream = self._stream or sys.stderr
        try:
            return stream.isatty()
        except (AttributeError, OSError, ValueError):
            return False


def verbosity_to_level(verbose: int) -> int:
    """Map a repeated ``-v`` count to a logging level.

    ``0`` → WARNING, ``1`` → INFO, ``2`` or more → DEBUG.
    """
    if verbose <= 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(
    *,
    level: int = logging.INFO,
    verbose: bool = False,
    stream: Optional[IO[str]] = None,
) -> None:
    """Install the depforge handler on the package logger.

    Safe to call repeatedly; each call replaces the previous handler under
    a process-wide lock.

    Args:
        level: Logging level (e.g., ``logging.INFO``, ``logging.DEBUG``).
        verbose: Use the verbose format with timestamps and logger names.
        stream: Output stream; defaults to ``sys.stderr``.
    """
    global _logging_configured

    with _lock:
        root_logger = logging.getLogger(_ROOT_NAME)
        root_logger.handlers.clear()
        root_logger.setLevel(level)

        target = stream or sys.stderr
        handler = logging.StreamHandler(target)
        handler.setLevel(level)
        handler.setFormatter(
            ColoredFormatter(
                LOG_VERBOSE_FORMAT if verbose else LOG_DEFAULT_FORMAT,
                datefmt=LOG_DATE_FORMAT,
                use_color=not os.environ.get("NO_COLOR"),
                stream=target,
            )
        )

        root_logger.addHandler(handler)
        root_logger.propagate = False
        _logging_configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger within the depforge namespace.

    Args:
        name: Logger name; ``"resolver"`` and ``"depforge.resolver"`` both
            map to ``depforge.resolver``.

    Returns:
        A logger instance under the ``depforge`` hierarchy.
    """
    if not name or name == _ROOT_NAME:
        qualified = _ROOT_NAME
    elif name.startswith(_ROOT_NAME + "."):
        qualified = name
    else:
        qualified = f"{_ROOT_NAME}.{name}"

    logger = logging.getLogger(qualified)

    # Library-safe default when nobody configured logging
    root_logger = logging.getLogger(_ROOT_NAME)
    if not root_logger.handlers:
        root_logger.addHandler(logging.NullHandler())

    return logger


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Prefix records with ``[session-id]`` for one resolution session."""

    def __init__(self, logger: logging.Logger, session_id: str) -> None:
        super().__init__(logger, {"session_id": session_id})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['session_id']}] {msg}", kwargs


def is_logging_configured() -> bool:
    """Return True if depforge logging has been configured."""
    return _logging_configured


def disable_logging() -> None:
    """Remove depforge handlers and silence the namespace."""
    global _logging_configured

    with _lock:
        root_logger = logging.getLogger(_ROOT_NAME)
        root_logger.handlers.clear()
        root_logger.addHandler(logging.NullHandler())
        root_logger.setLevel(logging.NOTSET)
        _logging_configured = False
