# log.py
# SPDX-License-Identifier: MIT
"""Package logging helpers for bulkload.

The package logger gets a NullHandler at import time so embedding
applications see nothing until they opt in via :func:`configure_logging`
or :class:`bulkload.core.config.LoggingConfig`.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any

__all__ = [
    "PACKAGE_LOGGER_NAME",
    "DEFAULT_LOG_FORMAT",
    "CappedWarning",
    "get_logger",
    "configure_logging",
    "temp_level",
]

PACKAGE_LOGGER_NAME = "bulkload"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.getLogger(PACKAGE_LOGGER_NAME).addHandler(logging.NullHandler())


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``name`` or the package logger when no name is given."""
    return logging.getLogger(name or PACKAGE_LOGGER_NAME)


def _coerce_level(level: int | str) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream=None,
    fmt: str | None = None,
    datefmt: str | None = None,
    propagate: bool | None = None,
    logger_name: str = PACKAGE_LOGGER_NAME,
) -> logging.Logger:
    """Attach a stream handler to a bulkload logger and set its level.

    Calling this repeatedly does not stack handlers; an existing
    StreamHandler whose stream was closed is pointed at the new stream.

    Args:
        level (int | str): Level or level name. Unknown names fall back to
            INFO.
        stream (IO[str] | None): Destination stream, sys.stderr by default.
        fmt (str | None): Record format; DEFAULT_LOG_FORMAT when omitted.
        datefmt (str | None): Optional date format for the formatter.
        propagate (bool | None): Propagation flag. None keeps propagation
            on so root handlers (pytest's caplog included) still see records.
        logger_name (str): Logger to configure.

    Returns:
        logging.Logger: The configured logger.
    """
    logger = get_logger(logger_name or PACKAGE_LOGGER_NAME)
    logger.setLevel(_coerce_level(level))
    logger.propagate = True if propagate is None else bool(propagate)

    target = stream if stream is not None else sys.stderr
    existing = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    if existing:
        for handler in existing:
            if getattr(getattr(handler, "stream", None), "closed", False):
                handler.stream = target
        return logger

    handler = logging.StreamHandler(target)
    handler.setFormatter(logging.Formatter(fmt=fmt or DEFAULT_LOG_FORMAT, datefmt=datefmt))
    logger.addHandler(handler)
    return logger


@contextmanager
def temp_level(level: int | str, name: str | None = None):
    """Set a logger level for the duration of a ``with`` block.

    Yields:
        logging.Logger: The logger whose level was changed.
    """
    logger = get_logger(name or PACKAGE_LOGGER_NAME)
    previous = logger.level
    logger.setLevel(_coerce_level(level))
    try:
        yield logger
    finally:
        logger.setLevel(previous)


class CappedWarning:
    """Emit a warning for the first ``limit`` occurrences of a condition.

    After the limit is reached a single debug line notes that further
    warnings are suppressed; occurrences are still counted.

    Attributes:
        logger (logging.Logger): Destination logger.
        limit (int): Maximum number of warnings to emit.
        label (str): Short description used in the suppression notice.
        count (int): Occurrences seen so far.
    """

    def __init__(self, logger: logging.Logger, *, limit: int, label: str) -> None:
        self.logger = logger
        self.limit = max(0, int(limit))
        self.label = label
        self.count = 0

    def __call__(self, msg: str, *args: Any) -> None:
        self.count += 1
        if self.count <= self.limit:
            self.logger.warning(msg, *args)
            if self.count == self.limit:
                self.logger.debug("Suppressing further %s warnings", self.label)
