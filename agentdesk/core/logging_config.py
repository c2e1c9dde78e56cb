"""structlog configuration shared by the console entrypoint and tests."""

import logging

import structlog

from agentdesk.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure structlog with a level filter and quiet transport loggers."""
    name = (level or settings.log_level).upper()
    numeric = getattr(logging, name, logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("socketio").setLevel(logging.WARNING)
    logging.getLogger("engineio").setLevel(logging.WARNING)
