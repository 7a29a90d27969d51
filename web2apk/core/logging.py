"""
Structured logging for web2apk.

Build workers log through structlog. Each build task binds its ``build_id`` and
attempt number, so interleaved output from concurrent builds can be told apart.
Output is colored console text on a terminal and one JSON object per line elsewhere.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .config import Config

# Libraries whose INFO output drowns build progress
NOISY_LOGGERS = ("asyncio", "PIL")


def _use_console(log_format: str) -> bool:
    if log_format == "auto":
        return sys.stderr.isatty()
    return log_format == "console"


def _renderers(console: bool) -> list[structlog.types.Processor]:
    if console:
        return [structlog.dev.ConsoleRenderer(colors=True)]
    return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]


def setup_logging(config: Config | None = None) -> None:
    """Configure stdlib and structlog output.

    Args:
        config: Optional configuration. If None, INFO level with automatic format.
    """
    log_level = config.log_level if config else "INFO"
    log_format = config.log_format if config else "auto"
    level = getattr(logging, log_level, logging.INFO)
    console = _use_console(log_format)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=log_level == "DEBUG",
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler])
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_renderers(console),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        # stdout stays free for CLI tables
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically with ``__name__``."""
    return structlog.get_logger(name)


def bind_context(**kwargs: object) -> None:
    """Attach key-value pairs to every later log entry of the current task.

    asyncio tasks copy the context when created, so values bound inside one
    build's task never leak into another's.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Drop all bound context variables."""
    structlog.contextvars.clear_contextvars()
