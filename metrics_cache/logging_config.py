"""structlog wiring for processes that host a ``CacheStore``."""
import logging.config
from typing import Any, Dict, Optional

import structlog

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Route structlog events through stdlib logging.

    Args:
        log_level: Root log level name (DEBUG, INFO, ...)
        json_output: Render JSON lines; otherwise use the coloured console renderer
    """
    level = log_level.upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log level: {log_level}")

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processor": renderer,
                "foreign_pre_chain": _SHARED_PROCESSORS,
            },
        },
        "handlers": {
            "default": {
                "level": level,
                "class": "logging.StreamHandler",
                "formatter": "structured",
            },
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": level,
                "propagate": True,
            },
        }
    })

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def log_error(logger: Any, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Emit a standardized ``error_occurred`` event for a caught exception."""
    error_details = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **(context or {})
    }
    logger.error("error_occurred", **error_details)
