"""
Backtester: score strategies over rolling origins of one series.

How it works
------------
1. Reject a series with missing values (``InvalidSeries``).
2. Generate origins with ``generate_rolling_origins()``.
3. For each strategy, sweep every origin:
   a. Take the training prefix ``series.head(origin.train_size)``.
   b. ``fitted = strategy.fit(prefix)``; a fresh fit per origin.
   c. ``fitted.forecast(origin.horizon)`` and emit one ForecastError per step.
4. A strategy that raises at any origin is recorded as a ``FailureReport``
   and excluded from the result; the other strategies continue.

Sweeps are independent, so with ``max_workers > 1`` they run on a thread
pool.  Each sweep returns its own list; the results are merged in the
calling thread after every sweep has finished.

Leakage proof
-------------
- Strategies receive only ``series.head(train_size)``.
- Actual values are read from positions >= train_size and are never passed
  to a strategy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from series_forecaster.backtest.metrics import ForecastError
from series_forecaster.backtest.origins import BacktestOrigin, generate_rolling_origins
from series_forecaster.errors import FailureReport, ForecastingError, InvalidConfiguration
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import ForecastStrategy

log = logging.getLogger(__name__)


class BacktestResult(Mapping[str, tuple[ForecastError, ...]]):
    """Read-only mapping of strategy name to its backtest errors.

    Errors are ordered by origin, then step.  Failed strategies are absent
    from the mapping and listed in ``failures`` instead.
    """

    def __init__(
        self,
        series_id: str,
        errors: dict[str, tuple[ForecastError, ...]],
        origins: Sequence[BacktestOrigin],
        failures: dict[str, FailureReport],
    ) -> None:
        self.series_id = series_id
        self._errors = dict(errors)
        self.origins: tuple[BacktestOrigin, ...] = tuple(origins)
        self.failures: dict[str, FailureReport] = dict(failures)

    def __getitem__(self, strategy: str) -> tuple[ForecastError, ...]:
        return self._errors[strategy]

    def __iter__(self) -> Iterator[str]:
        return iter(self._errors)

    def __len__(self) -> int:
        return len(self._errors)

    @property
    def strategies(self) -> list[str]:
        return list(self._errors)

    def __repr__(self) -> str:
        return (
            f"BacktestResult({self.series_id!r}, strategies={self.strategies}, "
            f"origins={len(self.origins)}, failures={sorted(self.failures)})"
        )


class Backtester:
    """Rolling-origin, expanding-window backtester.

    Args:
        initial_window_size: Training points at the first origin.
        horizon:             Steps forecast at every origin.
        max_workers:         Thread pool size for strategy sweeps (1 = sequential).
    """

    def __init__(self, initial_window_size: int, horizon: int, max_workers: int = 1) -> None:
        if initial_window_size < 1:
            raise InvalidConfiguration(
                f"initial_window_size must be >= 1, got {initial_window_size}"
            )
        if horizon < 1:
            raise InvalidConfiguration(f"horizon must be a positive integer, got {horizon}")
        if max_workers < 1:
            raise InvalidConfiguration(f"max_workers must be >= 1, got {max_workers}")
        self.initial_window_size = initial_window_size
        self.horizon = horizon
        self.max_workers = max_workers

    def evaluate(
        self,
        series: TimeSeries,
        strategies: Sequence[ForecastStrategy],
    ) -> BacktestResult:
        """Backtest every strategy on ``series``.

        Raises:
            InvalidConfiguration: No strategies, or duplicate strategy names.
            InvalidSeries:        ``series`` has missing values.
            InsufficientHistory:  ``len(series) < initial_window_size + 1``.
        """
        if not strategies:
            raise InvalidConfiguration("no strategies to backtest", series_id=series.series_id)
        names = [s.name for s in strategies]
        if len(set(names)) != len(names):
            raise InvalidConfiguration(
                f"duplicate strategy names: {names}", series_id=series.series_id
            )

        series.require_complete()
        try:
            origins = generate_rolling_origins(
                len(series), self.initial_window_size, self.horizon
            )
        except ForecastingError as exc:
            raise exc.with_context(series_id=series.series_id)

        log.debug(
            "Backtest %s | n=%d | origins=%d | strategies=%s",
            series.series_id, len(series), len(origins), names,
        )

        outcomes: dict[str, list[ForecastError] | FailureReport] = {}
        if self.max_workers == 1 or len(strategies) == 1:
            for strategy in strategies:
                outcomes[strategy.name] = self._sweep_isolated(series, strategy, origins)
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(strategies))) as executor:
                futures = {
                    executor.submit(self._sweep_isolated, series, s, origins): s.name
                    for s in strategies
                }
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()

        errors: dict[str, tuple[ForecastError, ...]] = {}
        failures: dict[str, FailureReport] = {}
        for name in names:
            outcome = outcomes[name]
            if isinstance(outcome, FailureReport):
                failures[name] = outcome
            else:
                errors[name] = tuple(outcome)

        log.info(
            "Backtest complete | series=%s | origins=%d | ok=%d | failed=%d",
            series.series_id, len(origins), len(errors), len(failures),
        )
        return BacktestResult(series.series_id, errors, origins, failures)

    def _sweep_isolated(
        self,
        series: TimeSeries,
        strategy: ForecastStrategy,
        origins: Sequence[BacktestOrigin],
    ) -> list[ForecastError] | FailureReport:
        """Run one strategy sweep, converting any exception into a FailureReport."""
        try:
            return self._sweep(series, strategy, origins)
        except Exception as exc:
            log.warning(
                "Strategy %s failed on %s: %s: %s",
                strategy.name, series.series_id, type(exc).__name__, exc,
                extra={"series_id": series.series_id, "strategy": strategy.name},
            )
            return FailureReport.from_exception(
                exc, stage="BACKTEST", series_id=series.series_id, strategy=strategy.name
            )

    @staticmethod
    def _sweep(
        series: TimeSeries,
        strategy: ForecastStrategy,
        origins: Sequence[BacktestOrigin],
    ) -> list[ForecastError]:
        errors: list[ForecastError] = []
        for origin in origins:
            train = series.head(origin.train_size)
            fitted = strategy.fit(train)
            forecast = fitted.forecast(origin.horizon)
            actuals = series.values[origin.test_start:origin.test_stop]
            for fc_step, actual in zip(forecast.steps, actuals):
                errors.append(ForecastError(
                    series_id=series.series_id,
                    strategy=strategy.name,
                    origin_index=origin.origin_index,
                    origin=train.end.to_pydatetime(),
                    step=fc_step.step,
                    timestamp=fc_step.timestamp,
                    actual=float(actual),
                    predicted=fc_step.point,
                ))
        return errors
