"""Logging configuration for unbind."""

import logging
import sys
from datetime import datetime
from pathlib import Path


class ConsoleFormatter(logging.Formatter):
    """Compact single-line formatter."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        message = f"{timestamp} {record.levelname:8} {record.name}: {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """
    Configure the ``unbind`` logger hierarchy.

    The TUI owns the terminal, so when it runs a log file should be given;
    otherwise records go to stderr.
    """
    logger = logging.getLogger("unbind")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ConsoleFormatter())
    logger.addHandler(handler)
    logger.propagate = False
