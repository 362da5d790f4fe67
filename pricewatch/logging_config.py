"""Logging setup: readable console output plus JSON files for log shipping."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from pricewatch.config import settings

# Context fields a check binds to its records; lifted to top-level JSON keys
CHECK_CONTEXT_FIELDS = ("item_id", "run_id", "host", "trigger")

# Chatty libraries and the level they are capped at
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "apscheduler.executors.default": logging.WARNING,
    "asyncio": logging.WARNING,
}


class CheckJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per record, with check context when a check bound one."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.utcnow().isoformat() + "Z"
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.filename}:{record.lineno}"
        log_record["service"] = "pricewatch"

        for key in CHECK_CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value


def setup_logging(base_dir: str | Path | None = None, level: Optional[str] = None) -> logging.Logger:
    """Configure the root logger.

    Args:
        base_dir: Directory that receives the logs/ folder; defaults to the
                  current working directory.
        level: Log level name; defaults to the LOG_LEVEL setting.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(console_handler)

    json_formatter = CheckJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    for filename, handler_level in (("app.log", logging.DEBUG), ("error.log", logging.ERROR)):
        handler = logging.FileHandler(logs_dir / filename)
        handler.setLevel(handler_level)
        handler.setFormatter(json_formatter)
        root_logger.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    return root_logger


class CheckLoggerAdapter(logging.LoggerAdapter):
    """Attaches the bound check context to every record as `extra` fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> CheckLoggerAdapter:
    """
    Get a logger bound to check context.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, e.g. item_id=42, host='www.amazon.com'
    """
    return CheckLoggerAdapter(logging.getLogger(name), context)
