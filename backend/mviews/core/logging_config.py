"""Structured logging configuration via structlog.

Context travels in structlog.contextvars: middleware binds request_id per
request, and builds and refresh loops bind tenant_code / model for their
own task, so every event of one view's lifecycle can be filtered together.
stdlib loggers (uvicorn, asyncpg, sqlalchemy) are rendered the same way.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from mviews.core.config import settings

SERVICE_NAME = "mviews"

# Libraries whose INFO output is per-query or per-request noise
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "asyncpg")


def _add_service(
    logger: logging.Logger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


@contextmanager
def view_log_context(tenant_code: str, model: str | None = None) -> Iterator[None]:
    """Bind tenant_code (and model) to every event logged inside the block.

    Context is per asyncio task, so concurrent builds of one tenant's models
    keep their own ``model``.
    """
    bound = {"tenant_code": tenant_code}
    if model is not None:
        bound["model"] = model
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def configure_logging() -> None:
    """Configure structlog as the logging backend. Call once at app startup."""
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.app_env == "development":
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
