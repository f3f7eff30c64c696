"""
logger.py
Logging setup: console output, optional rotating file, password masking.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

import config

ROOT_LOGGER = "gym"


class PasswordMaskFilter(logging.Filter):
    """Masks `password=...` / `pwd: ...` fragments before records are emitted."""

    _pattern = re.compile(r'(password|passwd|pwd)["\']?\s*[:=]\s*["\']?([^"\'\s]+)', re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._pattern.sub(r"\1: ********", str(record.msg))
        return True


def setup_logger(
    name: str = ROOT_LOGGER,
    level: str | int | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """
    Configure the application logger once (handlers are not duplicated on Streamlit reruns).

    Module loggers are created with logging.getLogger(__name__); they propagate
    to the root logger, so the handlers are attached there and the named
    logger is returned for the caller's own messages.
    """
    logger = logging.getLogger(name)
    root = logging.getLogger()
    if getattr(root, "_gym_configured", False):
        return logger

    level = level or config.LOG_LEVEL
    log_file = log_file or config.LOG_FILE
    root.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PasswordMaskFilter())
    root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(PasswordMaskFilter())
        root.addHandler(file_handler)

    root._gym_configured = True
    return logger
