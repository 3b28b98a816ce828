"""
Baseline forecasting strategies.

Why baselines first?
--------------------
Every smarter strategy has to beat these to earn its place in a ranking.
Each baseline tests one hypothesis about the series:

  MeanStrategy           "The series fluctuates around a stable level."
                          Tests: is there any structure beyond the average?

  NaiveStrategy          "The series is a random walk; the best guess for
                          tomorrow is today."
                          Tests: is any signal present at all?

  SeasonalNaiveStrategy  "The series repeats with period m; the best guess
                          for a day is the same day one season ago."
                          Tests: is the seasonal cycle exploitable?

Interval widths follow the textbook benchmark-method formulas, so a constant
training series yields zero-width intervals around the constant.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from series_forecaster.errors import InvalidConfiguration
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import FittedModel, ForecastStrategy


def _rms(x: np.ndarray) -> float:
    """Root mean square, 0.0 for an empty array."""
    if len(x) == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(x))))


# ── Mean ──────────────────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class FittedMean(FittedModel):
    mean: float
    resid_std: float

    def _point_path(self, horizon: int) -> np.ndarray:
        return np.full(horizon, self.mean)

    def _step_std(self, horizon: int) -> np.ndarray:
        return np.full(horizon, self.resid_std * math.sqrt(1.0 + 1.0 / self.n_obs))

    @property
    def params(self) -> dict[str, Any]:
        return {"mean": self.mean, "resid_std": self.resid_std}


class MeanStrategy(ForecastStrategy):
    """Every step equals the training mean."""

    name = "mean"
    min_history = 1

    def _fit(self, series: TimeSeries) -> FittedModel:
        y = series.values
        n = len(y)
        return FittedMean(
            strategy=self.name,
            series_id=series.series_id,
            last_timestamp=series.end,
            freq=series.freq,
            n_obs=n,
            mean=float(np.mean(y)),
            resid_std=float(np.std(y, ddof=1)) if n > 1 else 0.0,
        )


# ── Naive ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class FittedNaive(FittedModel):
    last_value: float
    sigma: float

    def _point_path(self, horizon: int) -> np.ndarray:
        return np.full(horizon, self.last_value)

    def _step_std(self, horizon: int) -> np.ndarray:
        return self.sigma * np.sqrt(np.arange(1, horizon + 1, dtype=np.float64))

    @property
    def params(self) -> dict[str, Any]:
        return {"last_value": self.last_value, "sigma": self.sigma}


class NaiveStrategy(ForecastStrategy):
    """Every step equals the last observed value (random walk).

    ``sigma`` is the root mean square of the one-step differences, and the
    step-h standard deviation grows as ``sigma * sqrt(h)``.
    """

    name = "naive"
    min_history = 1

    def _fit(self, series: TimeSeries) -> FittedModel:
        y = series.values
        return FittedNaive(
            strategy=self.name,
            series_id=series.series_id,
            last_timestamp=series.end,
            freq=series.freq,
            n_obs=len(y),
            last_value=float(y[-1]),
            sigma=_rms(np.diff(y)),
        )


# ── Seasonal naive ────────────────────────────────────────────────────────────

@dataclass(frozen=True, eq=False)
class FittedSeasonalNaive(FittedModel):
    last_season: tuple[float, ...]
    sigma: float

    @property
    def season_length(self) -> int:
        return len(self.last_season)

    def _point_path(self, horizon: int) -> np.ndarray:
        # step h repeats y[n - m + ((h - 1) mod m)]
        m = self.season_length
        season = np.asarray(self.last_season, dtype=np.float64)
        return season[np.arange(horizon) % m]

    def _step_std(self, horizon: int) -> np.ndarray:
        m = self.season_length
        completed = np.arange(horizon) // m
        return self.sigma * np.sqrt(completed + 1.0)

    @property
    def params(self) -> dict[str, Any]:
        return {"season_length": self.season_length, "sigma": self.sigma}


class SeasonalNaiveStrategy(ForecastStrategy):
    """Step h repeats the value observed one season before it.

    Args:
        season_length: Period ``m`` in steps (7 for a weekly cycle on daily data).
    """

    name = "seasonal_naive"

    def __init__(self, season_length: int = 7) -> None:
        if season_length < 1:
            raise InvalidConfiguration(
                f"season_length must be >= 1, got {season_length}", strategy=self.name
            )
        self.season_length = season_length
        self.min_history = season_length

    def _fit(self, series: TimeSeries) -> FittedModel:
        y = series.values
        m = self.season_length
        return FittedSeasonalNaive(
            strategy=self.name,
            series_id=series.series_id,
            last_timestamp=series.end,
            freq=series.freq,
            n_obs=len(y),
            last_season=tuple(float(v) for v in y[-m:]),
            sigma=_rms(y[m:] - y[:-m]),
        )

    def __repr__(self) -> str:
        return f"SeasonalNaiveStrategy(season_length={self.season_length})"
