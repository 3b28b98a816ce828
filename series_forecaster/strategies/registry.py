"""
Strategy registry: maps configured names to strategy instances.

Runners never branch on strategy names; they ask the registry for instances
built from the current ``AppConfig`` and treat them uniformly.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Optional

from series_forecaster.config import AppConfig
from series_forecaster.errors import InvalidConfiguration
from series_forecaster.strategies.base import ForecastStrategy
from series_forecaster.strategies.baselines import (
    MeanStrategy,
    NaiveStrategy,
    SeasonalNaiveStrategy,
)
from series_forecaster.strategies.nonlinear import LightGBMStrategy, MLPStrategy
from series_forecaster.strategies.smoothing import (
    DampedHoltStrategy,
    HoltStrategy,
    SimpleExponentialSmoothingStrategy,
)


def _regressor_kwargs(config: AppConfig) -> dict:
    reg = config.regressor
    return dict(
        lag_order=reg.lag_order,
        min_windows=reg.min_windows,
        mode=reg.mode,
        max_direct_horizon=reg.max_direct_horizon,
        random_state=reg.random_state,
    )


_BUILDERS: dict[str, Callable[[AppConfig], ForecastStrategy]] = {
    "mean": lambda cfg: MeanStrategy(),
    "naive": lambda cfg: NaiveStrategy(),
    "seasonal_naive": lambda cfg: SeasonalNaiveStrategy(
        season_length=cfg.forecasting.season_length,
    ),
    "ses": lambda cfg: SimpleExponentialSmoothingStrategy(
        max_iter=cfg.smoothing.max_iter, tolerance=cfg.smoothing.tolerance,
    ),
    "holt": lambda cfg: HoltStrategy(
        max_iter=cfg.smoothing.max_iter, tolerance=cfg.smoothing.tolerance,
    ),
    "damped_holt": lambda cfg: DampedHoltStrategy(
        max_iter=cfg.smoothing.max_iter, tolerance=cfg.smoothing.tolerance,
    ),
    "mlp": lambda cfg: MLPStrategy(
        hidden_layer_sizes=tuple(cfg.regressor.hidden_layer_sizes),
        max_iter=cfg.regressor.mlp_max_iter,
        **_regressor_kwargs(cfg),
    ),
    "lgbm": lambda cfg: LightGBMStrategy(
        n_estimators=cfg.regressor.n_estimators,
        learning_rate=cfg.regressor.learning_rate,
        num_leaves=cfg.regressor.num_leaves,
        min_child_samples=cfg.regressor.min_child_samples,
        **_regressor_kwargs(cfg),
    ),
}

KNOWN_STRATEGIES: tuple[str, ...] = tuple(_BUILDERS)


def build_strategy(name: str, config: Optional[AppConfig] = None) -> ForecastStrategy:
    """Return a fresh strategy for ``name`` configured from ``config``.

    Raises:
        InvalidConfiguration: Unknown name.
    """
    try:
        builder = _BUILDERS[name]
    except KeyError:
        raise InvalidConfiguration(
            f"unknown strategy '{name}'; known: {list(KNOWN_STRATEGIES)}",
            strategy=name,
        ) from None
    return builder(config or AppConfig())


def build_strategies(
    names: Sequence[str],
    config: Optional[AppConfig] = None,
) -> list[ForecastStrategy]:
    """Return one fresh instance per name, in the given order.

    Raises:
        InvalidConfiguration: Empty ``names`` or an unknown name.
    """
    if not names:
        raise InvalidConfiguration("no candidate strategies configured")
    return [build_strategy(n, config) for n in names]
