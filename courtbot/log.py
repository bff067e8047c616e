"""
Logging setup for the service and the CLI.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from rich.logging import RichHandler

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def _rotating_handler(path: Path, level: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def configure_logging(
    level: str | int = "INFO",
    log_file: str | Path | None = None,
    error_log_file: str | Path | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Level name or number for the console and application log
        log_file: Rotating application log, skipped when None
        error_log_file: Rotating ERROR-only log, skipped when None
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(rich_tracebacks=True, show_path=False)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        root_logger.addHandler(_rotating_handler(Path(log_file), level))
    if error_log_file:
        root_logger.addHandler(_rotating_handler(Path(error_log_file), logging.ERROR))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
