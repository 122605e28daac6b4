import logging
from logging.config import dictConfig

from config import settings

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Route every module logger through one stream handler on the root."""
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
            "root": {
                "handlers": ["default"],
                "level": (level or settings.log_level).upper(),
            },
        }
    )

    # APScheduler logs every tick at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
