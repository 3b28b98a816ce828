"""
Forecast output models.

``Forecast`` is the deliverable of a fitted strategy: an ordered run of
``ForecastStep`` objects, one per horizon step, each with a point estimate
and zero or more two-sided ``PredictionInterval`` bounds.

All three models are frozen.  A forecast is created once by
``FittedModel.forecast()`` and then only read by the evaluator, the runner
and the caller.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class PredictionInterval(BaseModel):
    """Two-sided interval at one confidence level, e.g. ``0.95``."""

    model_config = ConfigDict(frozen=True)

    level: float
    lower: float
    upper: float

    @model_validator(mode="after")
    def validate_bounds(self) -> "PredictionInterval":
        if not 0.0 < self.level < 1.0:
            raise ValueError(f"level must be in (0.0, 1.0), got {self.level}.")
        if self.lower > self.upper:
            raise ValueError(
                f"lower ({self.lower}) must be <= upper ({self.upper})."
            )
        return self

    @property
    def width(self) -> float:
        return self.upper - self.lower


class ForecastStep(BaseModel):
    """Point estimate and intervals for one horizon step.

    Attributes:
        step:      1-based horizon step index.
        timestamp: Forecasted timestamp.
        point:     Central estimate.
        intervals: Intervals ordered by ascending level.
    """

    model_config = ConfigDict(frozen=True)

    step: int
    timestamp: datetime
    point: float
    intervals: tuple[PredictionInterval, ...] = ()

    @field_validator("step")
    @classmethod
    def validate_step(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"step must be >= 1, got {v}.")
        return v

    def interval(self, level: float) -> Optional[PredictionInterval]:
        for iv in self.intervals:
            if abs(iv.level - level) < 1e-9:
                return iv
        return None


class Forecast(BaseModel):
    """Multi-step forecast for one series from one strategy."""

    model_config = ConfigDict(frozen=True)

    series_id: str
    strategy: str
    steps: tuple[ForecastStep, ...]

    @model_validator(mode="after")
    def validate_step_order(self) -> "Forecast":
        for expected, s in enumerate(self.steps, start=1):
            if s.step != expected:
                raise ValueError(
                    f"steps must be numbered 1..n in order; position {expected} has step {s.step}."
                )
        return self

    @property
    def horizon(self) -> int:
        return len(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def points(self) -> np.ndarray:
        return np.array([s.point for s in self.steps], dtype=np.float64)

    @property
    def timestamps(self) -> pd.DatetimeIndex:
        return pd.DatetimeIndex([s.timestamp for s in self.steps])

    @property
    def levels(self) -> list[float]:
        if not self.steps:
            return []
        return [iv.level for iv in self.steps[0].intervals]

    def interval(self, level: float) -> tuple[np.ndarray, np.ndarray]:
        """Lower and upper bound arrays at ``level``.

        Raises:
            KeyError: If the forecast carries no interval at that level.
        """
        lower: list[float] = []
        upper: list[float] = []
        for s in self.steps:
            iv = s.interval(level)
            if iv is None:
                raise KeyError(f"No {level:.0%} interval on forecast for '{self.series_id}'.")
            lower.append(iv.lower)
            upper.append(iv.upper)
        return np.array(lower), np.array(upper)

    def to_frame(self) -> pd.DataFrame:
        """One row per step: ``series_id, strategy, step, timestamp, point`` and
        ``lower_<pct>`` / ``upper_<pct>`` columns per level."""
        rows = []
        for s in self.steps:
            row: dict = {
                "series_id": self.series_id,
                "strategy":  self.strategy,
                "step":      s.step,
                "timestamp": s.timestamp,
                "point":     s.point,
            }
            for iv in s.intervals:
                pct = f"{iv.level * 100:g}"
                row[f"lower_{pct}"] = iv.lower
                row[f"upper_{pct}"] = iv.upper
            rows.append(row)
        return pd.DataFrame(rows)
