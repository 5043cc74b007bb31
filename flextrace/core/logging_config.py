"""
Logging configuration for FlexTrace.

Two setups, one per entry point:
    tracectl:  rotating file only, stdout stays reserved for command output
    viewer:    rotating file + colored console on the FlexTrace, uvicorn and
               FastAPI loggers, which stop propagating to the root logger

Library code (writers, capture hooks) only obtains module loggers and never
configures handlers itself.

Usage:
    from .logging_config import setup_cli_logging, setup_viewer_logging

    setup_cli_logging(log_level="INFO")
    setup_viewer_logging(log_level="DEBUG")
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import colorlog

from ..config import LOGS_DIR
from .constants import (
    COLORLOG_COLORS,
    LOG_BACKUP_COUNT,
    LOG_FILE_CLI,
    LOG_FILE_VIEWER,
    LOG_FORMAT_COLORED,
    LOG_FORMAT_FILE,
    LOG_MAX_BYTES,
    VIEWER_LOGGERS,
)


def _level(log_level: str) -> int:
    return getattr(logging, log_level.upper(), logging.INFO)


def _file_handler(log_file: Path, level: int) -> RotatingFileHandler:
    """Rotating UTF-8 handler; creates the log directory on first use."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(log_file),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT_FILE))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setFormatter(colorlog.ColoredFormatter(LOG_FORMAT_COLORED, log_colors=COLORLOG_COLORS))
    handler.setLevel(level)
    return handler


def setup_cli_logging(log_level: str = "INFO", log_dir: Path = LOGS_DIR) -> Path:
    """
    Route all logging to log_dir/tracectl.log, replacing the root handlers.

    Returns:
        Path of the log file.
    """
    level = _level(log_level)
    log_file = log_dir / LOG_FILE_CLI

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(_file_handler(log_file, level))
    return log_file


def setup_viewer_logging(log_level: str = "INFO", log_dir: Path = LOGS_DIR) -> Path:
    """
    Log the viewer to log_dir/viewer.log and the console.

    Access logs stay at INFO so requests are visible at any level.

    Returns:
        Path of the log file.
    """
    level = _level(log_level)
    log_file = log_dir / LOG_FILE_VIEWER
    file_handler = _file_handler(log_file, level)
    console_handler = _console_handler(level)

    for name in VIEWER_LOGGERS:
        log = logging.getLogger(name)
        log.handlers.clear()
        log.setLevel(level)
        log.addHandler(file_handler)
        log.addHandler(console_handler)
        log.propagate = False

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    return log_file
