"""Process-wide logging configuration.

Installs a single stdout handler on the root logger so every module logger
(``logging.getLogger(__name__)``) is emitted without per-module setup. The RQ
worker and uvicorn loggers share the same handler.
"""
import logging
import os
from logging.config import dictConfig

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_DICT_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s:%(name)s:%(message)s",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": LOG_LEVEL,
            "formatter": "default",
            "stream": "ext://sys.stdout",
        }
    },
    "root": {"level": LOG_LEVEL, "handlers": ["console"]},
    "loggers": {
        "uvicorn": {"level": LOG_LEVEL, "handlers": ["console"], "propagate": False},
        "uvicorn.error": {"level": LOG_LEVEL, "handlers": ["console"], "propagate": False},
        "uvicorn.access": {"level": LOG_LEVEL, "handlers": ["console"], "propagate": False},
        "rq.worker": {"level": LOG_LEVEL, "handlers": ["console"], "propagate": False},
    },
}


def configure_logging() -> None:
    """Configure logging once; a root logger that already has handlers is left alone."""
    root = logging.getLogger()
    if root.handlers:
        return
    dictConfig(_DICT_CONFIG)
