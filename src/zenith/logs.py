"""structlog setup for zenith.

The dashboard owns the whole terminal, so by default only critical events reach
stderr. Point ``--log-file`` somewhere (or set ``ZENITH_LOG``) to see more.
"""

import os
import sys
from pathlib import Path

import structlog

LEVELS: dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
    "critical": 50,
}


def resolve_level(level: str | None, log_file: Path | None) -> int:
    """Pick the numeric level from the argument, the environment or the default."""
    name = level or os.environ.get("ZENITH_LOG") or ("info" if log_file else "critical")
    try:
        return LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"unknown log level: {name}") from None


def configure_logging(level: str | None = None, log_file: Path | None = None) -> None:
    """Configure structlog for the session."""
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        factory = structlog.WriteLoggerFactory(file=log_file.open("a", encoding="utf-8"))
    else:
        factory = structlog.PrintLoggerFactory(file=sys.stderr)

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level, log_file)),
        logger_factory=factory,
        cache_logger_on_first_use=False,
    )
