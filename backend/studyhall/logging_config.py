import logging
import os
from logging.config import dictConfig

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TELEMETRY_LOG_FORMAT = "%(asctime)s %(message)s"
TELEMETRY_LOGGER = "studyhall.telemetry"


def configure_logging() -> None:
    """Configure process logging based on environment flags.

    Telemetry lines are already JSON, so they get a bare formatter and their own
    handler. ``STUDYHALL_TELEMETRY_LOG=0`` silences them without touching app logs.
    """
    level = os.getenv("STUDYHALL_LOG_LEVEL", "INFO").upper()
    telemetry_level = "INFO" if os.getenv("STUDYHALL_TELEMETRY_LOG", "1") == "1" else "WARNING"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
                "telemetry": {
                    "format": TELEMETRY_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
                "telemetry": {
                    "class": "logging.StreamHandler",
                    "formatter": "telemetry",
                },
            },
            "loggers": {
                TELEMETRY_LOGGER: {
                    "handlers": ["telemetry"],
                    "level": telemetry_level,
                    "propagate": False,
                },
                "studyhall": {
                    "level": level,
                },
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
        }
    )

    if os.getenv("STUDYHALL_DEBUG_SQL", "0") == "1":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
