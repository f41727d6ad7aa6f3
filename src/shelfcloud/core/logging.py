"""structlog setup for ShelfCloud.

structlog renders both its own events and records from the standard
``logging`` module (uvicorn, httpx, SQLAlchemy) through one handler on
the root logger. Values bound with ``log_context`` - the request
``correlation_id``, or the query of a background refresh - are merged
into every event emitted inside the block.

Usage:
    configure_logging(settings)
    logger = get_logger(__name__)

    with log_context(query="dune", page=1):
        logger.info("search_upstream_fetched", items=20)
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from shelfcloud.config import Settings

SERVICE_NAME = "shelfcloud"

# Chatty third-party loggers and the level they are held at
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}


def _add_service(_: Any, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(settings: Settings) -> None:
    """Route structlog and stdlib logging through one renderer.

    JSON lines when ``settings.use_json_logs``, colored console otherwise.
    """
    level = getattr(logging, settings.log_level.value, logging.INFO)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: Processor
    if settings.use_json_logs:
        shared.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, usually for ``__name__``."""
    return structlog.get_logger(name)


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Bind values to every log entry emitted inside the context.

    Example:
        with log_context(query="dune", page=2):
            logger.info("background_refresh_started")
    """
    return structlog.contextvars.bound_contextvars(**kwargs)
