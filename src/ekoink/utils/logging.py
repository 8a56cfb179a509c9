"""
Logging setup: structlog key/value events for services, stdlib records for
routers and clients.

Authenticated requests bind their caller (account, API key or dashboard user)
into structlog's context variables, so usage, delivery and task events logged
while serving the request carry it without passing it around.
"""

import logging
import sys

import structlog

from ..config import Settings

SERVICE_NAME = "ekoink"
QUIET_LOGGERS = ("httpx", "httpcore", "openai")


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(settings: Settings):
    """Configure structlog and the root logger at ``settings.log_level``."""
    level = logging.getLevelName(settings.log_level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str):
    return structlog.get_logger(name)


def bind_request_context(**values):
    """Replace the caller bound to this request's structlog events."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**values)
