"""
Console and durable file logging for pipeline runs.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

PACKAGE_LOGGER = "crispr_counts"
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def setup_run_logging(
    log_file: Optional[Union[Path, str]] = None, level: int = logging.INFO
) -> logging.Logger:
    """
    Configure the package logger with a console handler and, if given, a
    file handler appending to `log_file`.

    Calling it again replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_formatter())
    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(_formatter())
        logger.addHandler(file_handler)
    return logger


@contextmanager
def extra_log_file(log_file: Union[Path, str]) -> Iterator[Path]:
    """
    Additionally copy package log records to `log_file` inside the block.

    Nothing is added if the package logger already writes to that file.
    """
    log_file = Path(log_file)
    logger = logging.getLogger(PACKAGE_LOGGER)
    target = os.path.abspath(log_file)
    if any(
        isinstance(h, logging.FileHandler) and h.baseFilename == target
        for h in logger.handlers
    ):
        yield log_file
        return
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(_formatter())
    logger.addHandler(handler)
    try:
        yield log_file
    finally:
        logger.removeHandler(handler)
        handler.close()
