from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "cyclegraph"
LOG_FILE_NAME = "extract.log.jsonl"


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(out_dir: str, formatter: logging.Formatter) -> logging.Handler | None:
    log_dir = Path(out_dir) / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
    except OSError:
        # Extraction must not fail because OUT_DIR is read-only.
        return None
    handler.setFormatter(formatter)
    return handler


def get_logger() -> logging.Logger:
    """Return the package logger, attaching JSON handlers on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(_level(settings.log_level))
    logger.propagate = False
    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(message)s")

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if settings.log_to_file:
        handler = _file_handler(settings.out_dir, formatter)
        if handler is not None:
            logger.addHandler(handler)
    return logger


def log_event(event: str, **fields: Any) -> None:
    get_logger().info(event, extra={"event": event, **fields})


def log_warning(event: str, **fields: Any) -> None:
    get_logger().warning(event, extra={"event": event, **fields})
