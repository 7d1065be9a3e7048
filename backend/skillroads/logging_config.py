import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in {"1", "true", "yes", "on"}


def configure_logging() -> None:
    """Configure process logging from ``SKILLROADS_LOG_*`` environment flags.

    ``SKILLROADS_LOG_TELEMETRY=0`` silences the per-event ``TELEMETRY`` lines
    while keeping listener failures visible; ``SKILLROADS_DEBUG_SQL=1`` echoes
    statements issued by the progression repository.
    """
    level = os.getenv("SKILLROADS_LOG_LEVEL", "INFO").upper()
    telemetry_level = "INFO" if os.getenv("SKILLROADS_LOG_TELEMETRY", "1") != "0" else "WARNING"

    loggers = {
        "skillroads.telemetry": {"level": telemetry_level},
        "uvicorn.access": {"level": "WARNING"},
    }
    if _flag("SKILLROADS_DEBUG_SQL"):
        loggers["sqlalchemy.engine"] = {"level": "INFO"}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": loggers,
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )
