"""Logging configuration for burst.

burst logs through loguru and stays silent by default (library behavior).
A run turns logging on when the builder is given a sink.

Example:
    from burst import BurstBuilder, LogConfig

    builder = BurstBuilder()
    builder.set_logger(LogConfig(level="DEBUG", file="burst.log"))

    # or a colored terminal sink
    builder.use_term_logger()
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger
from rich.logging import RichHandler

logger.disable("burst")

# handler ids added by burst and not yet removed, across overlapping runs
_active_handlers: set[int] = set()

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} - {message}"
)

# RichHandler renders time, level and location itself
RICH_FORMAT = "{message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration for a fleet run.

    Attributes:
        level: Minimum log level.
        file: Path to a log file. If provided, everything down to TRACE is written there.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def _enable(handler_ids: list[int]) -> list[int]:
    _active_handlers.update(handler_ids)
    logger.enable("burst")
    return handler_ids


def _setup_logging(config: LogConfig) -> list[int]:
    """Configure logging and return handler IDs for cleanup."""
    handler_ids: list[int] = []

    if config.console:
        hid = logger.add(
            sys.stderr,
            level=config.level,
            format=CONSOLE_FORMAT,
            colorize=True,
            filter="burst",
        )
        handler_ids.append(hid)

    if config.file:
        hid = logger.add(
            config.file,
            level="TRACE",
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            diagnose=False,  # tracebacks may carry key material
            enqueue=True,
            filter="burst",
        )
        handler_ids.append(hid)

    return _enable(handler_ids)


def _setup_sink(sink: Any, level: LogLevel = "INFO") -> list[int]:
    """Attach an arbitrary loguru sink (path, stream, callable or logging.Handler)."""
    return _enable([logger.add(sink, level=level, filter="burst")])


def _setup_term_logging(level: LogLevel = "INFO") -> list[int]:
    """Attach a rich console sink."""
    handler = RichHandler(markup=False, rich_tracebacks=True, show_path=False)
    return _enable([logger.add(handler, level=level, format=RICH_FORMAT, filter="burst")])


def _teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers; logging goes quiet once no burst handler is left."""
    for hid in handler_ids:
        logger.remove(hid)
        _active_handlers.discard(hid)
    if not _active_handlers:
        logger.disable("burst")
