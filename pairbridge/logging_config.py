"""
Logging configuration keyed on the deployment environment.

Production only reports errors; development logs lifecycle transitions at
INFO. Health check access lines are suppressed in both modes.
"""

import logging
import logging.config
from typing import Any, Dict

HEALTH_PATH = "/api/health"

# Logger name -> handler. Application loggers propagate to the root handler.
_ROUTES = {
    "uvicorn": "default",
    "uvicorn.error": "default",
    "uvicorn.access": "access",
}


class HealthCheckFilter(logging.Filter):
    """Drop uvicorn access lines for health probes."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name != "uvicorn.access":
            return True
        message = record.getMessage()
        return not ("GET" in message and HEALTH_PATH in message)


def level_for(environment: str) -> str:
    return "ERROR" if environment == "production" else "INFO"


def get_logging_config(environment: str = "development") -> Dict[str, Any]:
    """dictConfig document for *environment* (``production`` or ``development``)."""
    level = level_for(environment)

    def stdout_handler(formatter: str, **extra: Any) -> Dict[str, Any]:
        return {
            "class": "logging.StreamHandler",
            "formatter": formatter,
            "stream": "ext://sys.stdout",
            **extra,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"health_check_filter": {"()": HealthCheckFilter}},
        "formatters": {
            "default": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
            "access": {"format": "%(message)s"},
        },
        "handlers": {
            "default": stdout_handler("default"),
            "access": stdout_handler("access", filters=["health_check_filter"]),
        },
        "loggers": {
            name: {"handlers": [handler], "level": level, "propagate": False}
            for name, handler in _ROUTES.items()
        },
        "root": {"level": level, "handlers": ["default"]},
    }


def configure_logging(environment: str = "development") -> None:
    """Apply the logging configuration for *environment*."""
    logging.config.dictConfig(get_logging_config(environment))
