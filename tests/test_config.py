"""
Tests for configuration loading and validation.

What we test
------------
1. Defaults: built-in AppConfig values and the committed default.toml.
2. TOML loading: explicit path, partial sections, local.toml merge.
3. Env overrides: SERIES_FORECASTER_* variables win over TOML.
4. Validation: pydantic errors and semantic checks both surface as
   InvalidConfiguration.
5. Immutability: config sections are frozen.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from series_forecaster.config import (
    AppConfig,
    ForecastingConfig,
    LoggingConfig,
    load_config,
    validate_forecasting_config,
)
from series_forecaster.errors import InvalidConfiguration
from series_forecaster.strategies.registry import KNOWN_STRATEGIES


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in (
        "SERIES_FORECASTER_LOG_LEVEL",
        "SERIES_FORECASTER_MAX_WORKERS",
        "SERIES_FORECASTER_SELECTION_METRIC",
        "SERIES_FORECASTER_DEBUG",
    ):
        monkeypatch.delenv(var, raising=False)


# ── Defaults ──────────────────────────────────────────────────────────────────

def test_builtin_defaults():
    cfg = AppConfig()
    assert cfg.forecasting.horizon == 7
    assert cfg.forecasting.selection_metric == "mse"
    assert cfg.forecasting.confidence_levels == [0.80, 0.95]
    assert cfg.smoothing.max_iter == 200
    assert cfg.regressor.mode == "recursive"
    assert cfg.debug is False


def test_committed_default_toml_loads():
    cfg = load_config()
    assert "damped_holt" in cfg.forecasting.candidate_strategies
    validate_forecasting_config(cfg.forecasting, known_strategies=KNOWN_STRATEGIES)


# ── TOML loading ──────────────────────────────────────────────────────────────

def test_explicit_path(write_config):
    path = write_config(
        '[forecasting]\n'
        'candidate_strategies = ["naive"]\n'
        'horizon = 3\n'
        '[logging]\n'
        'level = "debug"\n'
    )
    cfg = load_config(path)
    assert cfg.forecasting.candidate_strategies == ["naive"]
    assert cfg.forecasting.horizon == 3
    # unspecified fields keep their defaults
    assert cfg.forecasting.initial_window_size == 30
    assert cfg.logging.level == "DEBUG"


def test_project_debug_flag(write_config):
    cfg = load_config(write_config("[project]\ndebug = true\n"))
    assert cfg.debug is True


def test_local_toml_merged(write_config):
    path = write_config("[forecasting]\nhorizon = 3\nseason_length = 12\n")
    write_config("[forecasting]\nhorizon = 9\n", name="local.toml")
    cfg = load_config(path)
    assert cfg.forecasting.horizon == 9
    assert cfg.forecasting.season_length == 12


def test_missing_explicit_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")


# ── Env overrides ─────────────────────────────────────────────────────────────

def test_env_overrides(write_config, monkeypatch):
    path = write_config("[forecasting]\nmax_workers = 2\n")
    monkeypatch.setenv("SERIES_FORECASTER_MAX_WORKERS", "6")
    monkeypatch.setenv("SERIES_FORECASTER_SELECTION_METRIC", "MAPE")
    monkeypatch.setenv("SERIES_FORECASTER_LOG_LEVEL", "warning")
    monkeypatch.setenv("SERIES_FORECASTER_DEBUG", "yes")
    cfg = load_config(path)
    assert cfg.forecasting.max_workers == 6
    assert cfg.forecasting.selection_metric == "mape"
    assert cfg.logging.level == "WARNING"
    assert cfg.debug is True


# ── Validation ────────────────────────────────────────────────────────────────

def test_bad_log_level_is_invalid_configuration(write_config):
    with pytest.raises(InvalidConfiguration, match="Log level"):
        load_config(write_config('[logging]\nlevel = "LOUD"\n'))


def test_bad_type_is_invalid_configuration(write_config):
    with pytest.raises(InvalidConfiguration):
        load_config(write_config('[forecasting]\nhorizon = "soon"\n'))


@pytest.mark.parametrize(
    "updates,match",
    [
        ({"candidate_strategies": []}, "empty"),
        ({"candidate_strategies": ["naive", "naive"]}, "duplicates"),
        ({"candidate_strategies": ["naive", "arima"]}, "arima"),
        ({"horizon": 0}, "horizon"),
        ({"initial_window_size": 0}, "initial_window_size"),
        ({"season_length": 0}, "season_length"),
        ({"confidence_levels": [0.8, 1.0]}, "confidence level"),
        ({"selection_metric": "smape"}, "selection_metric"),
        ({"max_workers": 0}, "max_workers"),
        ({"holdout_size": -1}, "holdout_size"),
    ],
)
def test_semantic_validation(updates, match):
    cfg = ForecastingConfig(**updates)
    with pytest.raises(InvalidConfiguration, match=match):
        validate_forecasting_config(cfg, known_strategies=KNOWN_STRATEGIES)


def test_valid_config_passes_through():
    cfg = ForecastingConfig()
    assert validate_forecasting_config(cfg, known_strategies=KNOWN_STRATEGIES) is cfg


def test_invalid_configuration_is_value_error():
    with pytest.raises(ValueError):
        validate_forecasting_config(ForecastingConfig(horizon=-1))


# ── Immutability ──────────────────────────────────────────────────────────────

def test_sections_are_frozen():
    cfg = AppConfig()
    with pytest.raises(ValidationError):
        cfg.forecasting.horizon = 99
    with pytest.raises(ValidationError):
        LoggingConfig().level = "DEBUG"
