"""Logging setup for the viewer: one labelled stream handler on the package logger."""

import logging
import sys

__all__ = [
    "setup_logging",
    "get_logger",
    "reset_logging",
]

LOGGER_NAME = "leveldb_viewer"

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formats records as 'LABEL logger: message'."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        text = f"{label} {record.name}: {record.getMessage()}"
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(level: str | int = logging.INFO, stream=None) -> logging.Logger:
    """Configure the package logger. Idempotent: later calls only update the level."""
    global _logger
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    if _logger is not None:
        _logger.setLevel(level)
        return _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    if _logger is None:
        return setup_logging()
    return _logger


def reset_logging() -> None:
    """Drop the configured handler. Mainly for tests."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers[:]:
            _logger.removeHandler(handler)
        _logger.propagate = True
    _logger = None
