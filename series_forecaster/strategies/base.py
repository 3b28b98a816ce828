"""
Strategy contract shared by every forecasting method.

Interface contract
------------------
All strategies implement:

  fit(series: TimeSeries) -> FittedModel
    Learn whatever the method needs from ONE training series.  The strategy
    object itself holds only configuration and is never mutated, so the same
    instance can be fit on many windows, from many threads.

  FittedModel.forecast(horizon, levels=()) -> Forecast
    Produce ``horizon`` steps after the last training timestamp, each with a
    point estimate and one Gaussian interval per requested level.

Subclasses of ``FittedModel`` only supply the point path and the per-step
forecast standard deviation; interval construction, timestamps and input
checks live here so all strategies behave the same at the edges.
"""

from __future__ import annotations

import logging
import operator
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd
from scipy.stats import norm

from series_forecaster.errors import (
    ForecastingError,
    InsufficientHistory,
    InvalidConfiguration,
)
from series_forecaster.models.forecast import Forecast, ForecastStep, PredictionInterval
from series_forecaster.series.timeseries import TimeSeries

logger = logging.getLogger(__name__)


def validate_horizon(horizon: Any) -> int:
    """Return ``horizon`` as an int, or raise ``InvalidConfiguration``."""
    if isinstance(horizon, bool):
        raise InvalidConfiguration(f"horizon must be a positive integer, got {horizon!r}")
    try:
        h = operator.index(horizon)
    except TypeError:
        raise InvalidConfiguration(
            f"horizon must be a positive integer, got {horizon!r}"
        ) from None
    if h < 1:
        raise InvalidConfiguration(f"horizon must be a positive integer, got {h}")
    return h


def interval_multiplier(level: float) -> float:
    """Two-sided standard-normal quantile for a confidence level in (0, 1)."""
    if not 0.0 < level < 1.0:
        raise InvalidConfiguration(f"confidence level must be in (0, 1), got {level}")
    return float(norm.ppf(0.5 + level / 2.0))


@dataclass(frozen=True, eq=False)
class FittedModel(ABC):
    """Result of fitting one strategy on one training series.

    Attributes:
        strategy:       Name of the strategy that produced this model.
        series_id:      Training series id.
        last_timestamp: Last training timestamp (forecast origin).
        freq:           Frequency alias of the training series.
        n_obs:          Number of training observations used.
    """

    strategy: str
    series_id: str
    last_timestamp: pd.Timestamp
    freq: str
    n_obs: int

    @abstractmethod
    def _point_path(self, horizon: int) -> np.ndarray:
        """Point forecasts for steps 1..horizon."""

    @abstractmethod
    def _step_std(self, horizon: int) -> np.ndarray:
        """Forecast standard deviation for steps 1..horizon."""

    @property
    def params(self) -> dict[str, Any]:
        """Learned parameters as plain Python values."""
        return {}

    def forecast(self, horizon: int, levels: Sequence[float] = ()) -> Forecast:
        """Forecast ``horizon`` steps with an interval per level in ``levels``.

        Raises:
            InvalidConfiguration: Non-positive horizon or a level outside (0, 1).
        """
        h = validate_horizon(horizon)
        multipliers = [(float(lv), interval_multiplier(float(lv))) for lv in sorted(levels)]

        points = np.asarray(self._point_path(h), dtype=np.float64)
        std = np.asarray(self._step_std(h), dtype=np.float64)
        std = np.where(np.isfinite(std), np.maximum(std, 0.0), 0.0)

        timestamps = pd.date_range(
            start=pd.Timestamp(self.last_timestamp) + pd.tseries.frequencies.to_offset(self.freq),
            periods=h,
            freq=self.freq,
        )

        steps = []
        for i in range(h):
            intervals = tuple(
                PredictionInterval(
                    level=level,
                    lower=float(points[i] - z * std[i]),
                    upper=float(points[i] + z * std[i]),
                )
                for level, z in multipliers
            )
            steps.append(ForecastStep(
                step=i + 1,
                timestamp=timestamps[i].to_pydatetime(),
                point=float(points[i]),
                intervals=intervals,
            ))

        return Forecast(series_id=self.series_id, strategy=self.strategy, steps=tuple(steps))

    # ── Persistence ───────────────────────────────────────────────────────────

    def save(self, artifact_path: Path) -> None:
        """Serialize this fitted model to a joblib pickle file."""
        import joblib

        artifact_path = Path(artifact_path)
        artifact_path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, artifact_path)
        logger.info("Fitted model saved: %s (%s / %s)", artifact_path, self.series_id, self.strategy)


def load_fitted_model(artifact_path: Path) -> FittedModel:
    """Load a fitted model written by ``FittedModel.save()``.

    Raises:
        FileNotFoundError: If ``artifact_path`` does not exist.
        TypeError:         If the file does not hold a ``FittedModel``.
    """
    import joblib

    artifact_path = Path(artifact_path)
    if not artifact_path.exists():
        raise FileNotFoundError(f"Model artifact not found: {artifact_path}")
    model = joblib.load(artifact_path)
    if not isinstance(model, FittedModel):
        raise TypeError(f"{artifact_path} does not contain a FittedModel.")
    return model


class ForecastStrategy(ABC):
    """Base class for all strategies.

    Subclasses set ``name`` and ``min_history`` and implement ``_fit()``.
    ``allows_missing`` is True only for strategies that can drop incomplete
    windows themselves.
    """

    name: str = "strategy"
    min_history: int = 1
    allows_missing: bool = False

    def fit(self, series: TimeSeries) -> FittedModel:
        """Fit on ``series`` and return an immutable ``FittedModel``.

        Raises:
            InvalidSeries:       Missing values where the strategy needs none.
            InsufficientHistory: Fewer than ``min_history`` observations.
        """
        if not self.allows_missing:
            series.require_complete()
        if len(series) < self.min_history:
            raise InsufficientHistory(
                f"{self.name} needs at least {self.min_history} observations, got {len(series)}",
                series_id=series.series_id,
                strategy=self.name,
            )
        try:
            return self._fit(series)
        except ForecastingError as exc:
            raise exc.with_context(series_id=series.series_id, strategy=self.name)

    @abstractmethod
    def _fit(self, series: TimeSeries) -> FittedModel:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
