import logging
import sys
from typing import Any

import structlog

from .settings import Settings


def build_processors(settings: Settings) -> list[Any]:
    """Processor chain: console output in debug, one JSON object per line otherwise."""
    processors: list[Any] = [
        # Job context bound per delivery via contextvars
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
    ]

    if settings.debug:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            )
        )
        # ConsoleRenderer formats exc_info itself
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())

    return processors


def setup_logging(settings: Settings) -> None:
    """Configure structured logging with structlog."""
    level = getattr(logging, settings.log_level)

    # Third-party libraries (sqlalchemy, httpx) still log through stdlib
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_job_context(**context: Any) -> None:
    """Bind job-specific context to every log line of the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)
