"""
Structured logging configuration using structlog.

Standardized log format:
{
    "ts": "2026-10-19T04:30:00.123456Z",
    "level": "info",
    "service": "ownertoken",
    "event": "token.created",
    "module": "ownertoken.services.registry",
    "function": "create_token",
    "line": 42,
    ...additional context...
}
"""
import structlog
import logging
from typing import Any, Optional
from .config import Settings, get_settings


def make_service_name_processor(service_name: str):
    """Build a processor that adds the service name to all log entries."""
    def add_service_name(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", service_name)
        return event_dict
    return add_service_name


def add_module_info(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add module, function, and line number to log entries."""
    frame = structlog._frames._find_first_app_frame_and_name()[0]
    if frame:
        event_dict["module"] = frame.f_globals.get("__name__", "unknown")
        event_dict["function"] = frame.f_code.co_name
        event_dict["line"] = frame.f_lineno
    return event_dict


def setup_logging(json_output: bool = True, service_name: str = "ownertoken", level: str = "INFO"):
    """
    Configure structured logging with standardized fields.

    Args:
        json_output: If True, output JSON logs. If False, use console format.
        service_name: Name of the service embedding the token registries.
        level: Minimum log level name.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        make_service_name_processor(service_name),
        structlog.processors.TimeStamper(fmt="iso", key="ts"),
        structlog.processors.add_log_level,
        add_module_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
    )


def get_logger(**initial_values):
    """Get a configured structlog logger."""
    return structlog.get_logger(**initial_values)


def setup_logging_from_settings(settings: Optional[Settings] = None):
    """Configure logging from LOG_JSON and LOG_LEVEL settings."""
    settings = settings or get_settings()
    setup_logging(json_output=settings.LOG_JSON, level=settings.LOG_LEVEL)
