"""Log file and console handlers for the fryler logger tree."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "fryler.log"
ROOT_LOGGER = "fryler"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "taskName"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ContextFormatter(logging.Formatter):
    """``[timestamp] [LEVEL] logger: message {"extra": "fields"}``"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")
        line = f"[{timestamp}] [{record.levelname}] {record.name}: {record.getMessage()}"
        context = {key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS}
        if context:
            line = f"{line} {json.dumps(context, default=str, ensure_ascii=False)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _rotated_name(default_name: str) -> str:
    # fryler.log.2026-01-31 -> fryler-2026-01-31.log
    path = Path(default_name)
    stem, _, date_suffix = path.name.rpartition(".")
    base = stem[: -len(".log")] if stem.endswith(".log") else stem
    return str(path.with_name(f"{base}-{date_suffix}.log"))


def configure_logging(log_dir: str | Path, level: str = "info", quiet: bool = False) -> Path:
    """Attach file and console handlers to the ``fryler`` logger, replacing earlier ones."""
    directory = Path(log_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(_LEVELS.get(level.strip().lower(), logging.INFO))
    logger.propagate = False

    formatter = ContextFormatter()
    file_handler = TimedRotatingFileHandler(log_path, when="midnight", backupCount=14, encoding="utf-8", utc=True)
    file_handler.namer = _rotated_name
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if not quiet:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(formatter)
        logger.addHandler(console)
    return log_path
