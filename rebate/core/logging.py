"""JSON logging for the rebate backend."""
from __future__ import annotations

import logging
import logging.config
from typing import Optional

from pythonjsonlogger import jsonlogger

JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
# httpx logs every PayPal request line at INFO.
QUIET_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: str = "INFO") -> None:
    """Send every record through a single JSON handler on the root logger."""

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": jsonlogger.JsonFormatter, "fmt": JSON_FORMAT}},
            "handlers": {"stream": {"class": "logging.StreamHandler", "formatter": "json"}},
            "root": {"level": level.upper(), "handlers": ["stream"]},
            "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        }
    )


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["setup_logging", "get_logger"]
