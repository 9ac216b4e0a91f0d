"""
Structured logging setup (structlog over stdlib logging)

Core modules log through logging.getLogger(__name__); the API layer uses
structlog.get_logger(__name__). Both end up in the same handler, rendered
as JSON or console output.
"""
import logging
import sys

import structlog
from structlog.types import EventDict

# Keys whose values must never reach a log line
SENSITIVE_KEYS = frozenset({
    "password",
    "token",
    "access_token",
    "impersonation_token",
    "authorization",
    "secret",
    "jwt_secret",
})


def redact_sensitive(logger, method_name: str, event_dict: EventDict) -> EventDict:
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = "[REDACTED]"
    return event_dict


def setup_logging(level: str = "INFO", json_logs: bool = False):
    """Configure stdlib logging and structlog to share one renderer"""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive,
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    # uvicorn access logs duplicate the request logging middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
