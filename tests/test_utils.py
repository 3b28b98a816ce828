"""Tests for logging setup and time helpers."""

from __future__ import annotations

import json
import logging
import re
import warnings
from datetime import datetime, timedelta, timezone

import pytest

from series_forecaster.config import LoggingConfig
from series_forecaster.utils.logging import (
    LOG_FORMAT,
    _JsonFormatter,
    _TextFormatter,
    configure_logging,
)
from series_forecaster.utils.time_utils import elapsed_seconds, make_run_slug, utcnow


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


def test_configure_logging_sets_level_and_file(tmp_path):
    log_file = tmp_path / "logs" / "run.log"
    configure_logging(LoggingConfig(level="DEBUG", log_file=str(log_file)))
    assert logging.getLogger().level == logging.DEBUG
    logging.getLogger("series_forecaster.test").info("hello file")
    for h in logging.getLogger().handlers:
        h.flush()
    assert "hello file" in log_file.read_text(encoding="utf-8")


def test_json_formatter_includes_extra():
    record = logging.LogRecord("x.y", logging.INFO, __file__, 1, "run %s", ("a",), None)
    record.series_id = "north"
    payload = json.loads(_JsonFormatter().format(record))
    assert payload["msg"] == "run a"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "x.y"
    assert payload["series_id"] == "north"


def test_text_formatter_appends_series_context():
    record = logging.LogRecord("x.y", logging.WARNING, __file__, 1, "fit failed", (), None)
    record.series_id = "north"
    record.strategy = "holt"
    line = _TextFormatter(LOG_FORMAT).format(record)
    assert line.endswith("x.y: fit failed [north/holt]")


def test_text_formatter_without_context_is_plain():
    record = logging.LogRecord("x.y", logging.INFO, __file__, 1, "hello", (), None)
    assert _TextFormatter(LOG_FORMAT).format(record).endswith("x.y: hello")


def test_warnings_are_routed_to_log_file(tmp_path):
    log_file = tmp_path / "run.log"
    configure_logging(LoggingConfig(level="WARNING", log_file=str(log_file)))
    with warnings.catch_warnings():
        warnings.simplefilter("always")
        warnings.warn("loss went flat", RuntimeWarning)
    for h in logging.getLogger().handlers:
        h.flush()
    assert "loss went flat" in log_file.read_text(encoding="utf-8")


def test_utcnow_is_aware():
    assert utcnow().tzinfo is not None


def test_run_slug_format():
    slug = make_run_slug(datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc))
    assert re.fullmatch(r"20240301T123000Z_[0-9a-f]{8}", slug)


def test_elapsed_seconds():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert elapsed_seconds(start, start + timedelta(seconds=90)) == 90.0
