import logging
import sys

import structlog

from coreextract.core.config import settings

# Chatty third-party loggers held at WARNING unless asked for.
QUIET_LOGGERS = ("urllib3", "celery.redirected", "multipart")


def _resolve_level(name: str | None) -> int:
    level = logging.getLevelName((name or settings.log_level).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level_name: str | None = None) -> None:
    """Route stdlib and structlog output through one JSON renderer on stdout.

    Used by the API at import time and by the Celery worker on startup.
    """
    level = _resolve_level(level_name)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.db_echo else logging.WARNING
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
