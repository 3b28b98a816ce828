"""
Shared pytest fixtures for the series-forecaster test suite.

Provides:
  - Series factories: constant, linear trend, exact weekly cycle, noisy walk.
  - ``fast_config``: an ``AppConfig`` with small windows and baseline
    candidates so pipeline tests stay quick.
  - ``write_config``: writes a TOML config file into ``tmp_path``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import numpy as np
import pytest

from series_forecaster.config import AppConfig, ForecastingConfig, OutputConfig
from series_forecaster.series.timeseries import TimeSeries

WEEKLY_PATTERN = [1.0, 3.0, 5.0, 2.0, 4.0, 6.0, 0.5]


# ── Series factories ──────────────────────────────────────────────────────────

def make_series(values, series_id: str = "s1", start: str = "2024-01-01", freq: str = "D") -> TimeSeries:
    return TimeSeries.from_values(series_id, values, start=start, freq=freq)


def weekly_values(n: int, level: float = 10.0) -> np.ndarray:
    """Exactly periodic values with period 7."""
    return np.array([level + WEEKLY_PATTERN[i % 7] for i in range(n)])


@pytest.fixture
def constant_series() -> TimeSeries:
    return make_series([5.0] * 30, series_id="flat")


@pytest.fixture
def trend_series() -> TimeSeries:
    """y = 2t + 1 for t = 0..29."""
    return make_series(2.0 * np.arange(30) + 1.0, series_id="trend")


@pytest.fixture
def weekly_series() -> TimeSeries:
    return make_series(weekly_values(60), series_id="weekly")


@pytest.fixture
def noisy_series() -> TimeSeries:
    """Random walk with drift, fixed seed."""
    rng = np.random.default_rng(42)
    return make_series(100.0 + np.cumsum(rng.normal(0.5, 2.0, size=80)), series_id="noisy")


# ── Config ────────────────────────────────────────────────────────────────────

@pytest.fixture
def fast_config(tmp_path: Path) -> AppConfig:
    """Baseline candidates, W=10, H=5, sequential, outputs under tmp_path."""
    return AppConfig(
        forecasting=ForecastingConfig(
            candidate_strategies=["mean", "naive", "seasonal_naive"],
            season_length=7,
            initial_window_size=10,
            horizon=5,
            confidence_levels=[0.80, 0.95],
            selection_metric="mse",
            max_workers=1,
            holdout_size=0,
        ),
        output=OutputConfig(
            output_dir=str(tmp_path / "outputs"),
            model_dir=str(tmp_path / "models"),
        ),
    )


def with_forecasting(config: AppConfig, **updates) -> AppConfig:
    """Copy ``config`` with forecasting fields replaced."""
    return config.model_copy(
        update={"forecasting": config.forecasting.model_copy(update=updates)}
    )


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[str], Path]:
    """Return a function that writes TOML text to ``tmp_path/conf/app.toml``."""

    def _write(text: str, name: str = "app.toml") -> Path:
        conf_dir = tmp_path / "conf"
        conf_dir.mkdir(exist_ok=True)
        path = conf_dir / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
