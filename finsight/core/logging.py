import sys
from logging.config import dictConfig
from typing import Any

from finsight.core.config import settings

APP_LOGGER = "finsight"
LOG_FORMAT = "%(levelprefix)s %(asctime)s [%(name)s] %(message)s"

# Raw generation output is logged at DEBUG here; never lower than INFO
RAW_OUTPUT_LOGGER = "finsight.services.response_validator"


def build_logging_config(level: str) -> dict[str, Any]:
    """dictConfig for the service: uvicorn's formatters, one stdout handler for the app."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": LOG_FORMAT,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "server": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stderr,
            },
            "app": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stdout,
            },
        },
        "root": {"handlers": ["server"], "level": "INFO"},
        "loggers": {
            "uvicorn.error": {"handlers": ["server"], "level": "INFO", "propagate": False},
            APP_LOGGER: {"handlers": ["app"], "level": level, "propagate": False},
            RAW_OUTPUT_LOGGER: {
                "handlers": ["app"],
                "level": level if level not in ("DEBUG", "NOTSET") else "INFO",
                "propagate": False,
            },
        },
    }


def setup_logging(level: str | None = None) -> None:
    """Configures application-wide logging using dictConfig."""
    dictConfig(build_logging_config(level or settings.log_level))
