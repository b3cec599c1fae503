import logging
import os
from logging.config import dictConfig
from typing import Any, Dict

ENGINE_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"


def _level(env_name: str, default: str) -> str:
    value = os.getenv(env_name, default).upper()
    return value if isinstance(logging.getLevelName(value), int) else default


def build_logging_config() -> Dict[str, Any]:
    """dictConfig for the sync engine.

    Engine modules log under ``lessonsync`` and sync events under
    ``lessonsync.telemetry``; each has its own level. Everything else stays at
    WARNING unless LESSONSYNC_DEBUG_HTTP=1. Setting LESSONSYNC_TELEMETRY_FILE
    also appends the event lines to that file.
    """
    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "engine",
        },
    }
    telemetry_handlers = []
    telemetry_file = os.getenv("LESSONSYNC_TELEMETRY_FILE")
    if telemetry_file:
        handlers["telemetry_file"] = {
            "class": "logging.FileHandler",
            "formatter": "telemetry",
            "filename": telemetry_file,
            "encoding": "utf-8",
        }
        telemetry_handlers.append("telemetry_file")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "engine": {"format": ENGINE_LOG_FORMAT},
            "telemetry": {"format": TELEMETRY_LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "lessonsync": {"level": _level("LESSONSYNC_LOG_LEVEL", "INFO")},
            "lessonsync.telemetry": {
                "level": _level("LESSONSYNC_TELEMETRY_LEVEL", "INFO"),
                "handlers": telemetry_handlers,
            },
        },
        "root": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    }


def configure_logging() -> None:
    dictConfig(build_logging_config())

    if os.getenv("LESSONSYNC_DEBUG_HTTP", "0") == "1":
        for name in ("httpx", "httpcore", "uvicorn.access"):
            logging.getLogger(name).setLevel(logging.DEBUG)
