"""Structured logging configuration.

Console output stays human-readable; ``logs/app.log`` and ``logs/error.log``
carry one JSON object per line for log shipping.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from primepulse.config import settings

SERVICE_NAME = "primepulse"

# Libraries that are chatty at INFO during every cycle
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "apscheduler.executors.default": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class PipelineJsonFormatter(JsonFormatter):
    """Adds service, level and source fields to every JSON record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = (
            datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        log_record["service"] = SERVICE_NAME
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.filename}:{record.lineno}"
        if record.exc_info:
            log_record.setdefault("exc_type", record.exc_info[0].__name__)


def setup_logging(
    base_dir: Optional[str | Path] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """Install console and JSON file handlers on the root logger.

    Args:
        base_dir: Directory that holds the logs/ folder. Defaults to
                  settings.log_dir, then the current directory.
        level: Root level name. Defaults to settings.log_level.
    """
    logs_dir = Path(base_dir or settings.log_dir or Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    level_name = (level or settings.log_level).upper()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console)

    json_formatter = PipelineJsonFormatter("%(message)s")
    for filename, handler_level in (("app.log", logging.DEBUG), ("error.log", logging.ERROR)):
        handler = logging.FileHandler(logs_dir / filename, encoding="utf-8")
        handler.setLevel(handler_level)
        handler.setFormatter(json_formatter)
        root_logger.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    return root_logger


class ContextAdapter(logging.LoggerAdapter):
    """Merges fixed context (scope_id, identifier) into each record's extra."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """
    Logger carrying context fields, e.g. ``get_logger(__name__, scope_id=3)``.

    Per-call ``extra`` values win over the bound context.
    """
    return ContextAdapter(logging.getLogger(name), context)
