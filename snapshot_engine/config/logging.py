"""
Logging Configuration

structlog on top of the standard library, shared by the read API, the
Prefect rebuild flows and the seeding script. Every event carries the
emitting service so API and worker logs can be told apart downstream.
"""

import logging
import sys
from typing import Callable, List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level

from snapshot_engine.config.settings import get_settings

# Request lines are logged by RequestLoggingMiddleware
QUIET_LOGGERS = ("uvicorn.access", "asyncio", "httpx")


def _service_processor(service: str) -> Callable:
    def add_service(logger, method_name, event_dict):
        event_dict.setdefault("service", service)
        return event_dict

    return add_service


def _shared_processors(service: Optional[str]) -> List[Callable]:
    processors: List[Callable] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if service:
        processors.append(_service_processor(service))
    return processors


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    service: Optional[str] = None,
) -> None:
    """
    Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Override the configured level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override the configured format ("json" or "text")
        service: Name attached to every event, e.g. "api" or "rebuild-worker"
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    fmt = log_format or settings.monitoring.log_format
    numeric_level = getattr(logging, level, logging.INFO)

    shared = _shared_processors(service)
    structlog.configure(
        processors=shared + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=fmt,
        environment=settings.app_env,
    )
