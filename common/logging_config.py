# common/logging_config.py

import logging
import os

APP_LOGGER = "classroom-scheduling"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level=None):
    """Attach a stream handler to the application logger (idempotent).
    Level defaults to the LOGLEVEL env var, then INFO.
    """
    if level is None:
        level = getattr(logging, os.getenv("LOGLEVEL", "INFO").upper(), logging.INFO)
    logger = logging.getLogger(APP_LOGGER)
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(ch)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Child of the application logger, e.g. get_logger("reschedule")."""
    return logging.getLogger(f"{APP_LOGGER}.{name}")
