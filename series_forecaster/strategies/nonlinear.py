"""
Nonlinear autoregressive strategies on sliding lag windows.

Each training sample is a window of ``lag_order`` consecutive values and the
value that follows it (or, in direct mode, the value ``k`` steps after it).
Windows whose lags or target contain NaN are dropped, so this is the one
strategy family that accepts a series with missing points.

Two regressor backends share the windowing code:

  mlp    scikit-learn ``MLPRegressor``
  lgbm   LightGBM ``LGBMRegressor``

Both are fit on values standardised with the training mean and standard
deviation, and both use a fixed ``random_state`` so the same series always
gives the same model.

Multi-step modes
----------------
  recursive  One step-1 model; each prediction is appended to the window and
             fed back in.  Any horizon is allowed.
  direct     One model per step k = 1..K, each predicting y[t+k] from the
             window ending at t.  K is the largest step (up to
             ``max_direct_horizon``) with at least ``min_windows`` samples;
             asking for more steps raises ``InvalidConfiguration``.

Intervals use the in-sample residual RMS.  Recursive mode grows it as
sigma * sqrt(h); direct mode uses each step model's own residual RMS.
"""

from __future__ import annotations

import logging
import warnings
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

import numpy as np
from sklearn.exceptions import ConvergenceWarning

from series_forecaster.errors import InsufficientHistory, InvalidConfiguration
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import FittedModel, ForecastStrategy

logger = logging.getLogger(__name__)

MODES = ("recursive", "direct")

# Small training sets routinely stop short of the MLP iteration cap.  One
# targeted filter, installed at import; fits never touch the filter list.
warnings.filterwarnings(
    "ignore", category=ConvergenceWarning, module=r"sklearn\.neural_network"
)


def lag_windows(z: np.ndarray, lag_order: int, step: int = 1) -> tuple[np.ndarray, np.ndarray]:
    """Complete (lags, target) pairs with the target ``step`` points after the window.

    Returns:
        ``X`` of shape (n_windows, lag_order) and ``y`` of shape (n_windows,).
        Windows containing NaN anywhere are dropped.
    """
    n_rows = len(z) - lag_order - step + 1
    if n_rows <= 0:
        return np.empty((0, lag_order)), np.empty(0)
    X = np.lib.stride_tricks.sliding_window_view(z, lag_order)[:n_rows]
    y = z[lag_order + step - 1: lag_order + step - 1 + n_rows]
    keep = ~(np.isnan(X).any(axis=1) | np.isnan(y))
    return np.array(X[keep]), np.array(y[keep])


@dataclass(frozen=True, eq=False)
class FittedRegressor(FittedModel):
    """Fitted lag regressor.  ``regressors`` is empty for a constant series."""

    mode: str
    lag_order: int
    mean: float
    scale: float
    last_window: tuple[float, ...]
    regressors: tuple[Any, ...]
    step_sigma: tuple[float, ...]

    @property
    def max_horizon(self) -> int | None:
        """Largest forecastable horizon, or None when unbounded."""
        if self.mode == "direct" and self.regressors:
            return len(self.regressors)
        return None

    def _check_horizon(self, horizon: int) -> None:
        limit = self.max_horizon
        if limit is not None and horizon > limit:
            raise InvalidConfiguration(
                f"direct model was trained for {limit} step(s), {horizon} requested",
                series_id=self.series_id,
                strategy=self.strategy,
            )

    def _point_path(self, horizon: int) -> np.ndarray:
        self._check_horizon(horizon)
        if not self.regressors:
            return np.full(horizon, self.mean)

        window = np.asarray(self.last_window, dtype=np.float64)
        if self.mode == "direct":
            x = window.reshape(1, -1)
            z = np.array([float(reg.predict(x)[0]) for reg in self.regressors[:horizon]])
        else:
            reg = self.regressors[0]
            z = np.empty(horizon)
            for h in range(horizon):
                z[h] = float(reg.predict(window.reshape(1, -1))[0])
                window = np.append(window[1:], z[h])
        return self.mean + self.scale * z

    def _step_std(self, horizon: int) -> np.ndarray:
        if self.mode == "direct" and self.regressors:
            return np.asarray(self.step_sigma[:horizon], dtype=np.float64)
        return self.step_sigma[0] * np.sqrt(np.arange(1, horizon + 1, dtype=np.float64))

    @property
    def params(self) -> dict[str, Any]:
        return {
            "mode":       self.mode,
            "lag_order":  self.lag_order,
            "mean":       self.mean,
            "scale":      self.scale,
            "n_models":   len(self.regressors),
            "step_sigma": list(self.step_sigma),
        }


class NonlinearRegressorStrategy(ForecastStrategy):
    """Lag-window regression; subclasses choose the regressor backend.

    Args:
        lag_order:          Number of lagged values per window.
        min_windows:        Minimum complete step-1 windows to fit.
        mode:               ``"recursive"`` or ``"direct"``.
        max_direct_horizon: Most step models trained in direct mode.
        random_state:       Seed passed to the regressor.
    """

    allows_missing = True

    def __init__(
        self,
        lag_order: int = 7,
        min_windows: int = 10,
        mode: str = "recursive",
        max_direct_horizon: int = 14,
        random_state: int = 0,
    ) -> None:
        if lag_order < 1:
            raise InvalidConfiguration(f"lag_order must be >= 1, got {lag_order}", strategy=self.name)
        if min_windows < 1:
            raise InvalidConfiguration(f"min_windows must be >= 1, got {min_windows}", strategy=self.name)
        if mode not in MODES:
            raise InvalidConfiguration(f"mode must be one of {MODES}, got {mode!r}", strategy=self.name)
        if max_direct_horizon < 1:
            raise InvalidConfiguration(
                f"max_direct_horizon must be >= 1, got {max_direct_horizon}", strategy=self.name
            )
        self.lag_order = lag_order
        self.min_windows = min_windows
        self.mode = mode
        self.max_direct_horizon = max_direct_horizon
        self.random_state = random_state
        self.min_history = lag_order + 1

    @abstractmethod
    def _make_regressor(self) -> Any:
        """Return a fresh, unfitted regressor."""

    def _fit_one(self, X: np.ndarray, y: np.ndarray) -> tuple[Any, float]:
        """Fit one regressor; return it with its standardised residual RMS."""
        reg = self._make_regressor()
        reg.fit(X, y)
        resid = y - reg.predict(X)
        return reg, float(np.sqrt(np.mean(np.square(resid))))

    def _fit(self, series: TimeSeries) -> FittedModel:
        y = series.values
        p = self.lag_order
        observed = y[~np.isnan(y)]
        mean = float(np.mean(observed)) if len(observed) else 0.0
        scale = float(np.std(observed)) if len(observed) else 0.0

        if np.isnan(y[-p:]).any():
            raise InsufficientHistory(
                f"last {p} values contain NaN; no complete window to forecast from",
                series_id=series.series_id,
                strategy=self.name,
            )

        z = (y - mean) / scale if scale > 0 else y - mean
        X1, t1 = lag_windows(z, p, step=1)
        if len(X1) < self.min_windows:
            raise InsufficientHistory(
                f"{self.name} needs {self.min_windows} complete lag windows of order {p}, "
                f"got {len(X1)}",
                series_id=series.series_id,
                strategy=self.name,
            )

        common = dict(
            strategy=self.name,
            series_id=series.series_id,
            last_timestamp=series.end,
            freq=series.freq,
            n_obs=int(len(observed)),
            mode=self.mode,
            lag_order=p,
            mean=mean,
            scale=scale,
            last_window=tuple(float(v) for v in z[-p:]),
        )

        if scale == 0.0:
            logger.debug("%s: constant series %s, flat forecast", self.name, series.series_id)
            return FittedRegressor(regressors=(), step_sigma=(0.0,), **common)

        regressors: list[Any] = []
        sigmas: list[float] = []
        reg, rms = self._fit_one(X1, t1)
        regressors.append(reg)
        sigmas.append(rms * scale)

        if self.mode == "direct":
            for k in range(2, self.max_direct_horizon + 1):
                Xk, tk = lag_windows(z, p, step=k)
                if len(Xk) < self.min_windows:
                    break
                reg, rms = self._fit_one(Xk, tk)
                regressors.append(reg)
                sigmas.append(rms * scale)

        logger.debug(
            "%s fit on %s: %d window(s), %d model(s), mode=%s",
            self.name, series.series_id, len(X1), len(regressors), self.mode,
        )
        return FittedRegressor(regressors=tuple(regressors), step_sigma=tuple(sigmas), **common)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(lag_order={self.lag_order}, mode={self.mode!r})"


class MLPStrategy(NonlinearRegressorStrategy):
    """Multi-layer perceptron on lag windows."""

    name = "mlp"

    def __init__(
        self,
        hidden_layer_sizes: tuple[int, ...] = (32,),
        max_iter: int = 500,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.hidden_layer_sizes = tuple(hidden_layer_sizes)
        self.max_iter = max_iter

    def _make_regressor(self) -> Any:
        from sklearn.neural_network import MLPRegressor

        return MLPRegressor(
            hidden_layer_sizes=self.hidden_layer_sizes,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )


class LightGBMStrategy(NonlinearRegressorStrategy):
    """Gradient-boosted trees on lag windows."""

    name = "lgbm"

    def __init__(
        self,
        n_estimators: int = 100,
        learning_rate: float = 0.05,
        num_leaves: int = 15,
        min_child_samples: int = 5,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._hyperparams: dict[str, Any] = {
            "n_estimators":      n_estimators,
            "learning_rate":     learning_rate,
            "num_leaves":        num_leaves,
            "min_child_samples": min_child_samples,
        }

    def _make_regressor(self) -> Any:
        import lightgbm as lgb

        return lgb.LGBMRegressor(
            **self._hyperparams,
            random_state=self.random_state,
            n_jobs=1,
            verbose=-1,
        )
