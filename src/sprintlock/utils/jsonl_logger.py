"""
JSONL logging utility for sprintlock.

This module provides JSONL (JSON Lines) logging with a structured format.
Each log entry is a single JSON object on its own line; files rotate daily
and are renamed to ``YYYY-MM-DD.jsonl``.
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .request_context import get_current_request_id

ROOT_LOGGER = "sprintlock"


class JSONLFormatter(logging.Formatter):
    """Custom JSONL formatter for structured logging."""

    def __init__(self, service: Optional[str] = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSONL entry."""
        request_id = getattr(record, "req_id", None) or get_current_request_id()

        log_entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "service": self.service or "unknown",
            "logger": record.name,
            "request_id": request_id,
            "msg": record.getMessage(),
        }

        if hasattr(record, "error") and record.error:
            log_entry["error"] = record.error

        if hasattr(record, "context") and record.context:
            log_entry["context"] = record.context

        if record.exc_info:
            log_entry["stack"] = self.formatException(record.exc_info)

        log_entry["file"] = record.filename
        log_entry["line"] = record.lineno
        if record.funcName:
            log_entry["func"] = record.funcName

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class JSONLHandler(TimedRotatingFileHandler):
    """Daily rotating file handler with JSONL formatting."""

    def __init__(self, log_dir: str, service: str, level: int = logging.INFO):
        service_dir = Path(log_dir) / service
        service_dir.mkdir(parents=True, exist_ok=True)
        log_file = service_dir / f"{service}.jsonl"

        super().__init__(
            filename=str(log_file),
            when="midnight",
            interval=1,
            backupCount=30,  # Keep 30 days of logs
            encoding="utf-8",
        )
        self.setFormatter(JSONLFormatter(service=service))
        self.setLevel(level)

    def doRollover(self) -> None:
        """Override doRollover to use YYYY-MM-DD.jsonl format."""
        if self.stream:
            self.stream.close()
            self.stream = None

        if self.backupCount > 0:
            base_path = Path(self.baseFilename)
            date_str = datetime.fromtimestamp(int(time.time())).strftime("%Y-%m-%d")
            new_filename = base_path.parent / f"{date_str}.jsonl"
            if os.path.exists(self.baseFilename):
                os.rename(self.baseFilename, str(new_filename))

        if not self.delay:
            self.stream = self._open()


def setup_jsonl_logger(
    service: str, log_dir: str = "logs", level: int = logging.INFO
) -> logging.Logger:
    """
    Set up a JSONL logger for a specific service.

    Args:
        service: Service name (e.g., 'engine', 'api')
        log_dir: Base log directory (default: 'logs')
        level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(f"{ROOT_LOGGER}.{service}")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(JSONLHandler(log_dir, service, level))
    logger.propagate = False
    return logger


def configure_logging(
    level: str = "INFO", log_format: str = "text", log_dir: str = "logs"
) -> logging.Logger:
    """Configure the package root logger.

    ``json`` writes JSONL files under ``log_dir/engine``; ``text`` writes
    human-readable lines to stderr.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    if log_format == "json":
        logger.addHandler(JSONLHandler(log_dir, "engine", numeric_level))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler.setLevel(numeric_level)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(component: str) -> logging.Logger:
    """Get the logger of a package component (e.g. 'coordinator')."""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    error: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
    **kwargs,
) -> None:
    """
    Log a message with structured context.

    Args:
        logger: Logger instance
        level: Log level (e.g., logging.INFO, logging.ERROR)
        message: Log message
        error: Error message (for error logs)
        context: Structured context (wave, task_id, path, version, ...)
        **kwargs: Additional fields merged into the context
    """
    merged = dict(context or {})
    merged.update(kwargs)
    extra: dict[str, Any] = {}
    if error:
        extra["error"] = error
    if merged:
        extra["context"] = merged
    logger.log(level, message, extra=extra)
