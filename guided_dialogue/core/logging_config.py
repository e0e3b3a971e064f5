# guided_dialogue/core/logging_config.py
"""Root logger setup: console plus a rotating dialogue.log"""

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_FILE_NAME = 'dialogue.log'
MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5

# Libraries whose INFO output drowns the dialogue trace
QUIET_LOGGERS = ("redis", "asyncio")


def _default_level() -> str:
    from guided_dialogue.core.config import settings

    return os.getenv("LOG_LEVEL") or ("DEBUG" if settings.DEBUG else "INFO")


def _has_console(logger: logging.Logger) -> bool:
    return any(type(h) is logging.StreamHandler for h in logger.handlers)


def _has_file(logger: logging.Logger, path: Path) -> bool:
    target = str(path.resolve())
    return any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == target
        for h in logger.handlers
    )


def setup_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger. Safe to call repeatedly: handlers are only
    attached once per destination.

    Args:
        level: Log level name, defaults to LOG_LEVEL or DEBUG/INFO from settings
        log_dir: Directory for dialogue.log, defaults to LOG_DIR or ./logs
    """
    root = logging.getLogger()
    root.setLevel((level or _default_level()).upper())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if not _has_console(root):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    directory = Path(log_dir or os.getenv("LOG_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / LOG_FILE_NAME

    if not _has_file(root, log_file):
        file_handler = RotatingFileHandler(
            filename=str(log_file),
            maxBytes=MAX_LOG_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root
