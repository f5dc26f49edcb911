"""
Logging Utilities - one place to configure console + file logging.

Usage:
    from coursepay.utils.logger import configure_logging, get_logger

    configure_logging(level="INFO", log_dir="logs")
    logger = get_logger(__name__)
    logger.info("Payment initiated: %s", reference)
"""
import logging
import logging.config
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None, filename: str = "server.log") -> None:
    """Configure root logging to the console and, when log_dir is given, to a file in it."""
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": level,
        }
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "level": level,
            "filename": os.path.join(log_dir, filename),
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": LOG_FORMAT}},
            "handlers": handlers,
            "root": {"handlers": list(handlers), "level": level},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "LOG_FORMAT"]
