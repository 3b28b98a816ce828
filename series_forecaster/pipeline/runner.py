"""
Per-series forecasting run: split, backtest, select, refit, forecast.

State machine
-------------
    IDLE -> SPLIT -> BACKTEST -> SELECT_MODEL -> REFIT -> FORECAST -> DONE
                              (any step) -> FAILED

  SPLIT         Training part ends at ``cutoff`` if given, otherwise the last
                ``holdout_size`` points are held out (0 = no holdout).
  BACKTEST      Every candidate is scored by the rolling-origin Backtester on
                the training part only.
  SELECT_MODEL  Candidates are ranked by ``selection_metric``.
  REFIT         The top-ranked candidate is fit on the whole training part.
                If that fit fails the next-ranked candidate is tried;
                ``NoValidStrategy`` when none is left.
  FORECAST      ``horizon`` steps with one interval per confidence level.  If
                a holdout exists the forecast is scored against it.

Failure handling
----------------
Any exception moves the run to FAILED and is captured as a ``FailureReport``
naming the state it happened in.  ``run()`` never raises for a per-series
problem and a FAILED run never carries a forecast.  Callers that prefer
exceptions call ``ForecastRun.raise_for_failure()``.

Configuration problems (no candidates, unknown names, bad horizon) are
raised from the constructor instead: they are not per-series failures.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import numpy as np

from series_forecaster.backtest.comparison import StrategyRanking, compare, summarize_backtest
from series_forecaster.backtest.evaluator import Backtester, BacktestResult
from series_forecaster.backtest.metrics import (
    ErrorRecord,
    ErrorSummary,
    ForecastError,
    error_records,
    summarize,
)
from series_forecaster.config import AppConfig, validate_forecasting_config
from series_forecaster.errors import (
    FailureReport,
    InvalidConfiguration,
    NoValidStrategy,
)
from series_forecaster.models.forecast import Forecast
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import FittedModel, ForecastStrategy
from series_forecaster.strategies.registry import KNOWN_STRATEGIES, build_strategies
from series_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "IDLE"
    SPLIT = "SPLIT"
    BACKTEST = "BACKTEST"
    SELECT_MODEL = "SELECT_MODEL"
    REFIT = "REFIT"
    FORECAST = "FORECAST"
    DONE = "DONE"
    FAILED = "FAILED"


# ── Result type ───────────────────────────────────────────────────────────────

@dataclass
class ForecastRun:
    """Outcome of one ``ForecastRunner.run()`` call.

    Attributes:
        series_id:         Series that was forecast.
        state:             Final state, DONE or FAILED.
        history:           Every state visited, in order.
        train:             Training part after SPLIT.
        holdout:           Held-out part (None when the whole series trains).
        backtest:          Backtest errors per strategy.
        summaries:         ErrorSummary per successfully backtested strategy.
        records:           The same summaries flattened into ErrorRecords.
        ranking:           Candidates best first.
        selected_strategy: Strategy used for the final forecast.
        fitted_model:      Model refit on the training part.
        forecast:          Final forecast (None unless DONE).
        holdout_summary:   Forecast scored against the holdout, when one exists.
        refit_failures:    Higher-ranked candidates that failed to refit.
        failure:           Structured cause when FAILED.
    """

    series_id: str
    state: RunState = RunState.IDLE
    history: list[RunState] = field(default_factory=lambda: [RunState.IDLE])
    train: Optional[TimeSeries] = None
    holdout: Optional[TimeSeries] = None
    backtest: Optional[BacktestResult] = None
    summaries: dict[str, ErrorSummary] = field(default_factory=dict)
    records: list[ErrorRecord] = field(default_factory=list)
    ranking: list[StrategyRanking] = field(default_factory=list)
    selected_strategy: Optional[str] = None
    fitted_model: Optional[FittedModel] = None
    forecast: Optional[Forecast] = None
    holdout_summary: Optional[ErrorSummary] = None
    refit_failures: list[FailureReport] = field(default_factory=list)
    failure: Optional[FailureReport] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    _exception: Optional[BaseException] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE

    def raise_for_failure(self) -> None:
        """Re-raise the exception that failed this run; no-op when DONE."""
        if self._exception is not None:
            raise self._exception

    def _advance(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)


# ── Runner ────────────────────────────────────────────────────────────────────

class ForecastRunner:
    """Runs the full per-series state machine.

    Args:
        config:      Application configuration.
        strategies:  Candidate strategies; built from
                     ``config.forecasting.candidate_strategies`` when None.
        max_workers: Thread pool size for backtest sweeps; defaults to
                     ``config.forecasting.max_workers``.

    Raises:
        InvalidConfiguration: Empty candidates, unknown names, bad settings.
    """

    def __init__(
        self,
        config: AppConfig,
        strategies: Optional[Sequence[ForecastStrategy]] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.config = config
        fc = config.forecasting
        if strategies is None:
            validate_forecasting_config(fc, known_strategies=KNOWN_STRATEGIES)
            strategies = build_strategies(fc.candidate_strategies, config)
        else:
            if not strategies:
                raise InvalidConfiguration("no candidate strategies supplied")
            validate_forecasting_config(
                fc.model_copy(update={"candidate_strategies": [s.name for s in strategies]})
            )
        self.strategies: list[ForecastStrategy] = list(strategies)
        self._by_name = {s.name: s for s in self.strategies}
        self.backtester = Backtester(
            initial_window_size=fc.initial_window_size,
            horizon=fc.horizon,
            max_workers=max_workers if max_workers is not None else fc.max_workers,
        )

    def run(self, series: TimeSeries, cutoff: Optional[Any] = None) -> ForecastRun:
        """Forecast one series.  Never raises for per-series failures."""
        run = ForecastRun(series_id=series.series_id, started_at=utcnow())
        try:
            self._split(run, series, cutoff)
            self._backtest(run)
            self._select(run)
            self._refit(run)
            self._forecast(run)
            run._advance(RunState.DONE)
            logger.info(
                "Run %s DONE | strategy=%s | horizon=%d",
                run.series_id, run.selected_strategy, run.forecast.horizon,
            )
        except Exception as exc:
            stage = run.state.value
            run.failure = FailureReport.from_exception(exc, stage=stage, series_id=run.series_id)
            run._exception = exc
            run.forecast = None
            run._advance(RunState.FAILED)
            logger.warning(
                "Run %s FAILED in %s: %s: %s",
                run.series_id, stage, run.failure.kind, run.failure.message,
                extra={"series_id": run.series_id, "strategy": run.failure.strategy},
            )
        run.finished_at = utcnow()
        return run

    # ── States ────────────────────────────────────────────────────────────────

    def _split(self, run: ForecastRun, series: TimeSeries, cutoff: Optional[Any]) -> None:
        run._advance(RunState.SPLIT)
        holdout_size = self.config.forecasting.holdout_size
        if cutoff is not None:
            split = series.split_at(cutoff)
            run.train, run.holdout = split.train, split.test
        elif holdout_size > 0:
            split = series.split_holdout(holdout_size)
            run.train, run.holdout = split.train, split.test
        else:
            run.train, run.holdout = series, None

    def _backtest(self, run: ForecastRun) -> None:
        run._advance(RunState.BACKTEST)
        run.backtest = self.backtester.evaluate(run.train, self.strategies)
        if len(run.backtest) == 0:
            detail = "; ".join(
                f"{name}: {fr.kind}" for name, fr in sorted(run.backtest.failures.items())
            )
            raise NoValidStrategy(
                f"every candidate failed the backtest ({detail})", series_id=run.series_id
            )

    def _select(self, run: ForecastRun) -> None:
        run._advance(RunState.SELECT_MODEL)
        run.summaries = summarize_backtest(run.backtest)
        run.records = error_records(run.series_id, run.summaries)
        run.ranking = compare(
            {run.series_id: run.backtest}, metric=self.config.forecasting.selection_metric
        )

    def _refit(self, run: ForecastRun) -> None:
        run._advance(RunState.REFIT)
        for ranked in run.ranking:
            strategy = self._by_name[ranked.strategy]
            try:
                run.fitted_model = strategy.fit(run.train)
            except Exception as exc:
                report = FailureReport.from_exception(
                    exc, stage=RunState.REFIT.value, series_id=run.series_id, strategy=strategy.name
                )
                run.refit_failures.append(report)
                logger.info(
                    "Refit of %s failed on %s (%s); trying next candidate",
                    strategy.name, run.series_id, report.kind,
                    extra={"series_id": run.series_id, "strategy": strategy.name},
                )
                continue
            run.selected_strategy = strategy.name
            return
        raise NoValidStrategy(
            f"all {len(run.ranking)} ranked candidate(s) failed to refit",
            series_id=run.series_id,
        )

    def _forecast(self, run: ForecastRun) -> None:
        run._advance(RunState.FORECAST)
        fc = self.config.forecasting
        run.forecast = run.fitted_model.forecast(fc.horizon, levels=fc.confidence_levels)
        if run.holdout is not None:
            run.holdout_summary = summarize(_holdout_errors(run.forecast, run.train, run.holdout))


def _holdout_errors(
    forecast: Forecast,
    train: TimeSeries,
    holdout: TimeSeries,
) -> list[ForecastError]:
    """Pair forecast steps with holdout points (up to the shorter of the two)."""
    errors = []
    for fc_step, actual in zip(forecast.steps, holdout.values):
        if np.isnan(actual):
            continue
        errors.append(ForecastError(
            series_id=forecast.series_id,
            strategy=forecast.strategy,
            origin_index=0,
            origin=train.end.to_pydatetime(),
            step=fc_step.step,
            timestamp=fc_step.timestamp,
            actual=float(actual),
            predicted=fc_step.point,
        ))
    return errors
