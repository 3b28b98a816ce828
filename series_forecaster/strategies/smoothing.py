"""
Exponential smoothing strategies: simple (SES), Holt linear trend and
damped-trend Holt.

Model (component form)
----------------------
    forecast   y_hat[t]  = l[t-1] + phi * b[t-1]
    level      l[t]      = alpha * y[t] + (1 - alpha) * (l[t-1] + phi * b[t-1])
    trend      b[t]      = beta * (l[t] - l[t-1]) + (1 - beta) * phi * b[t-1]

SES drops the trend (b = 0), Holt fixes phi = 1.  States start at
l[0] = y[0] and b[0] = y[1] - y[0].

Parameter fitting
-----------------
alpha, beta (and phi for the damped variant) minimise the mean squared
one-step-ahead error with ``scipy.optimize.minimize`` (L-BFGS-B).  The loss is
divided by the training variance so the tolerance means the same thing on
series of any scale.  Bounds keep alpha and beta strictly inside (0, 1) and
phi inside [0.8, 0.98].

Only hitting the iteration limit counts as non-convergence.  L-BFGS-B also
stops on "abnormal termination in line search" near flat optima; that result
is accepted as long as the loss is finite.

Intervals
---------
Gaussian innovations with variance sigma^2 (mean in-sample squared one-step
error).  The step-h variance is sigma^2 * (1 + sum_{j=1}^{h-1} c_j^2) with
c_j = alpha * (1 + beta * phi_j) and phi_j = phi + phi^2 + ... + phi^j.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from scipy.optimize import minimize

from series_forecaster.errors import OptimizationDidNotConverge
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import FittedModel, ForecastStrategy

logger = logging.getLogger(__name__)

_EPS = 1e-4
_PHI_BOUNDS = (0.8, 0.98)


def _run_filter(
    y: np.ndarray,
    alpha: float,
    beta: float,
    phi: float,
    trend: bool,
) -> tuple[np.ndarray, float, float]:
    """Run the smoothing recursion over ``y``.

    Returns:
        (one-step errors for y[1:], final level, final trend)
    """
    level = float(y[0])
    slope = float(y[1] - y[0]) if trend else 0.0
    errors = np.empty(len(y) - 1, dtype=np.float64)

    for t in range(1, len(y)):
        prev_level = level
        forecast = prev_level + phi * slope
        errors[t - 1] = y[t] - forecast
        level = alpha * y[t] + (1.0 - alpha) * forecast
        if trend:
            slope = beta * (level - prev_level) + (1.0 - beta) * phi * slope

    return errors, level, slope


def _phi_cumsum(phi: float, horizon: int) -> np.ndarray:
    """phi_j = phi + phi^2 + ... + phi^j for j = 1..horizon."""
    return np.cumsum(phi ** np.arange(1, horizon + 1, dtype=np.float64))


@dataclass(frozen=True, eq=False)
class FittedExponentialSmoothing(FittedModel):
    alpha: float
    beta: float
    phi: float
    level: float
    slope: float
    sigma: float
    n_iter: int

    def _point_path(self, horizon: int) -> np.ndarray:
        return self.level + _phi_cumsum(self.phi, horizon) * self.slope

    def _step_std(self, horizon: int) -> np.ndarray:
        c = self.alpha * (1.0 + self.beta * _phi_cumsum(self.phi, max(horizon - 1, 0)))
        cum = np.concatenate(([0.0], np.cumsum(np.square(c))))
        return self.sigma * np.sqrt(1.0 + cum[:horizon])

    @property
    def params(self) -> dict[str, Any]:
        return {
            "alpha": self.alpha,
            "beta":  self.beta,
            "phi":   self.phi,
            "level": self.level,
            "slope": self.slope,
            "sigma": self.sigma,
        }


class ExponentialSmoothingStrategy(ForecastStrategy):
    """Shared fitting logic for the three smoothing variants.

    Args:
        max_iter:  L-BFGS-B iteration limit; reaching it raises
                   ``OptimizationDidNotConverge``.
        tolerance: Convergence tolerance on the normalised loss.
    """

    trend: bool = False
    damped: bool = False

    def __init__(self, max_iter: int = 200, tolerance: float = 1e-8) -> None:
        self.max_iter = max_iter
        self.tolerance = tolerance

    def _unpack(self, x: np.ndarray) -> tuple[float, float, float]:
        alpha = float(x[0])
        beta = float(x[1]) if self.trend else 0.0
        if self.damped:
            phi = float(x[2])
        else:
            phi = 1.0
        return alpha, beta, phi

    def _initial_guess(self) -> tuple[list[float], list[tuple[float, float]]]:
        x0 = [0.5]
        bounds = [(_EPS, 1.0 - _EPS)]
        if self.trend:
            x0.append(0.1)
            bounds.append((_EPS, 1.0 - _EPS))
        if self.damped:
            x0.append(0.9)
            bounds.append(_PHI_BOUNDS)
        return x0, bounds

    def _fit(self, series: TimeSeries) -> FittedModel:
        y = series.values
        scale = float(np.var(y))
        if scale <= 0.0:
            scale = 1.0

        def loss(x: np.ndarray) -> float:
            alpha, beta, phi = self._unpack(x)
            errors, _, _ = _run_filter(y, alpha, beta, phi, self.trend)
            return float(np.mean(np.square(errors)) / scale)

        x0, bounds = self._initial_guess()
        result = minimize(
            loss,
            x0=np.array(x0),
            method="L-BFGS-B",
            bounds=bounds,
            tol=self.tolerance,
            options={"maxiter": self.max_iter},
        )

        if result.status == 1 or not np.isfinite(result.fun):
            raise OptimizationDidNotConverge(
                f"{self.name} did not converge within {self.max_iter} iterations "
                f"({result.message})",
                series_id=series.series_id,
                strategy=self.name,
            )

        alpha, beta, phi = self._unpack(result.x)
        errors, level, slope = _run_filter(y, alpha, beta, phi, self.trend)
        sigma = float(np.sqrt(np.mean(np.square(errors))))

        logger.debug(
            "%s fit on %s: alpha=%.4f beta=%.4f phi=%.4f sigma=%.4g nit=%d",
            self.name, series.series_id, alpha, beta, phi, sigma, result.nit,
        )

        return FittedExponentialSmoothing(
            strategy=self.name,
            series_id=series.series_id,
            last_timestamp=series.end,
            freq=series.freq,
            n_obs=len(y),
            alpha=alpha,
            beta=beta,
            phi=phi,
            level=level,
            slope=slope,
            sigma=sigma,
            n_iter=int(result.nit),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(max_iter={self.max_iter}, tolerance={self.tolerance:g})"


class SimpleExponentialSmoothingStrategy(ExponentialSmoothingStrategy):
    """Level only; flat forecast at the final smoothed level."""

    name = "ses"
    min_history = 2


class HoltStrategy(ExponentialSmoothingStrategy):
    """Level plus linear trend."""

    name = "holt"
    min_history = 3
    trend = True


class DampedHoltStrategy(ExponentialSmoothingStrategy):
    """Level plus a trend that flattens out geometrically with ``phi``."""

    name = "damped_holt"
    min_history = 3
    trend = True
    damped = True
