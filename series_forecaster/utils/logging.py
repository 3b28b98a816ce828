"""
Logging setup for series-forecaster.

``configure_logging(config)`` is called once by the CLI before any series is
loaded.  Library modules only ever use ``logging.getLogger(__name__)``.

Series context
--------------
Backtest and runner log calls pass ``extra={"series_id": ..., "strategy": ...}``.
The text format appends that context as ``[series_id/strategy]``; the JSON
format emits it as top-level keys::

    {"ts": "2024-03-01T12:30:00Z", "level": "WARNING", "logger": "...",
     "msg": "...", "series_id": "north", "strategy": "holt"}

Python warnings (e.g. a LightGBM or scipy runtime warning raised mid-fit) are
routed through the ``py.warnings`` logger so they land in the same handlers.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from series_forecaster.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

CONTEXT_FIELDS = ("series_id", "strategy")

# Third-party loggers that chatter at INFO during model fits.
_QUIET_LOGGERS = ("lightgbm", "joblib", "sklearn")

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def _context_suffix(record: logging.LogRecord) -> str:
    parts = [str(getattr(record, f)) for f in CONTEXT_FIELDS if getattr(record, f, None)]
    return f" [{'/'.join(parts)}]" if parts else ""


class _TextFormatter(logging.Formatter):
    """Plain text with the series context, if any, appended to the message."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        suffix = _context_suffix(record)
        if not suffix:
            return line
        head, sep, tail = line.partition("\n")
        return head + suffix + sep + tail


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(
            (key, val) for key, val in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handlers(config: "LoggingConfig", level: int) -> list[logging.Handler]:
    formatter: logging.Formatter = (
        _JsonFormatter() if config.json_format else _TextFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    )
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: "LoggingConfig") -> None:
    """Install stdout (and optional file) handlers on the root logger.

    Replaces any handlers already on the root logger, so calling it twice
    does not duplicate output.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=_build_handlers(config, level), force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
