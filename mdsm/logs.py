"""Timestamped console and run-log output."""

import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "mdsm"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class RunLogFormatter(logging.Formatter):
    """``[2024-10-20 01:02:03] message`` with a level tag on problems."""

    def __init__(self):
        super().__init__("[%(asctime)s] %(message)s", DATE_FORMAT)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        if record.levelno >= logging.WARNING:
            stamp, _, message = line.partition("] ")
            line = f"{stamp}] [{record.levelname}] {message}"
        return line


def setup_logging(stream=None) -> logging.Logger:
    """Configure the ``mdsm`` logger with a console handler."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(RunLogFormatter())
    logger.addHandler(handler)
    return logger


def attach_run_log(log_file: Path, logger: Optional[logging.Logger] = None) -> logging.Handler:
    """Duplicate everything logged from now on into the run log."""
    logger = logger or logging.getLogger(LOGGER_NAME)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(RunLogFormatter())
    logger.addHandler(handler)
    return handler
