"""
Tests for the rolling-origin Backtester.

What we test
------------
1. Worked example: naive on a ten-point series with W=6, H=1 gives
   errors [2, 2, -1, 2] and MSE 3.25.
2. Shape: one error per (origin, step), ordered by origin then step.
3. Leakage: a strategy never sees points at or after its origin.
4. Isolation: a failing strategy becomes a FailureReport; others survive.
5. Concurrency: a thread pool gives the same errors as a sequential run.
6. Rejection: missing values, short series, empty or duplicate strategies.
7. Constant series: mean, naive and seasonal naive score MSE 0.
"""

from __future__ import annotations

import numpy as np
import pytest

from series_forecaster.backtest.comparison import summarize_backtest
from series_forecaster.backtest.evaluator import Backtester
from series_forecaster.errors import (
    InsufficientHistory,
    InvalidConfiguration,
    InvalidSeries,
    OptimizationDidNotConverge,
)
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import FittedModel
from series_forecaster.strategies.baselines import (
    MeanStrategy,
    NaiveStrategy,
    SeasonalNaiveStrategy,
)

from conftest import make_series

WORKED = [10.0, 12.0, 11.0, 13.0, 15.0, 14.0, 16.0, 18.0, 17.0, 19.0]


class _RecordingNaive(NaiveStrategy):
    """Naive strategy that remembers the last timestamp of every training prefix."""

    name = "recording"

    def __init__(self) -> None:
        self.seen_ends = []

    def _fit(self, series: TimeSeries) -> FittedModel:
        self.seen_ends.append(series.end)
        return super()._fit(series)


class _ExplodingStrategy(MeanStrategy):
    name = "exploding"

    def _fit(self, series: TimeSeries) -> FittedModel:
        raise OptimizationDidNotConverge("synthetic failure")


# ── Worked example ────────────────────────────────────────────────────────────

def test_naive_worked_example():
    result = Backtester(initial_window_size=6, horizon=1).evaluate(
        make_series(WORKED), [NaiveStrategy()]
    )
    errors = result["naive"]
    assert [e.error for e in errors] == [2.0, 2.0, -1.0, 2.0]
    assert [e.predicted for e in errors] == [14.0, 16.0, 18.0, 17.0]
    assert summarize_backtest(result)["naive"].mse == pytest.approx(3.25)


# ── Shape ─────────────────────────────────────────────────────────────────────

def test_one_error_per_origin_and_step(weekly_series):
    result = Backtester(initial_window_size=30, horizon=7).evaluate(
        weekly_series, [MeanStrategy(), SeasonalNaiveStrategy(7)]
    )
    n_origins = 60 - 30 - 7 + 1
    assert len(result.origins) == n_origins
    for name in ("mean", "seasonal_naive"):
        errors = result[name]
        assert len(errors) == n_origins * 7
        keys = [(e.origin_index, e.step) for e in errors]
        assert keys == sorted(keys)


def test_exact_cycle_scores_zero_for_seasonal_naive(weekly_series):
    result = Backtester(initial_window_size=14, horizon=7).evaluate(
        weekly_series, [SeasonalNaiveStrategy(7)]
    )
    assert summarize_backtest(result)["seasonal_naive"].mse == pytest.approx(0.0)


def test_truncated_origin_for_short_series():
    result = Backtester(initial_window_size=6, horizon=7).evaluate(
        make_series(WORKED), [NaiveStrategy()]
    )
    assert len(result.origins) == 1
    assert [e.step for e in result["naive"]] == [1, 2, 3, 4]


# ── Leakage ───────────────────────────────────────────────────────────────────

def test_strategy_sees_only_training_prefix():
    series = make_series(WORKED)
    strategy = _RecordingNaive()
    result = Backtester(initial_window_size=6, horizon=2).evaluate(series, [strategy])
    for origin, seen_end in zip(result.origins, strategy.seen_ends):
        assert seen_end == series.index[origin.train_size - 1]
    for e in result["recording"]:
        assert e.timestamp > e.origin


# ── Isolation ─────────────────────────────────────────────────────────────────

def test_failing_strategy_is_reported_not_raised(noisy_series):
    result = Backtester(initial_window_size=20, horizon=3).evaluate(
        noisy_series, [NaiveStrategy(), _ExplodingStrategy()]
    )
    assert result.strategies == ["naive"]
    failure = result.failures["exploding"]
    assert failure.kind == "OptimizationDidNotConverge"
    assert failure.stage == "BACKTEST"
    assert failure.series_id == "noisy"
    assert failure.strategy == "exploding"


def test_strategy_needing_more_history_fails_alone():
    result = Backtester(initial_window_size=4, horizon=1).evaluate(
        make_series(WORKED), [NaiveStrategy(), SeasonalNaiveStrategy(7)]
    )
    assert "naive" in result
    assert result.failures["seasonal_naive"].kind == "InsufficientHistory"


# ── Constant series ───────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "strategy",
    [MeanStrategy(), NaiveStrategy(), SeasonalNaiveStrategy(season_length=7)],
    ids=lambda s: s.name,
)
def test_constant_series_backtests_with_zero_mse(strategy, constant_series):
    result = Backtester(10, 3).evaluate(constant_series, [strategy])
    summary = summarize_backtest(result)[strategy.name]
    assert summary.n_samples == (30 - 10 - 3 + 1) * 3
    assert summary.mse == 0.0
    assert summary.mape == 0.0


# ── Concurrency ───────────────────────────────────────────────────────────────

def test_thread_pool_matches_sequential(noisy_series):
    strategies = [MeanStrategy(), NaiveStrategy(), SeasonalNaiveStrategy(7)]
    seq = Backtester(20, 5, max_workers=1).evaluate(noisy_series, strategies)
    par = Backtester(20, 5, max_workers=3).evaluate(noisy_series, strategies)
    assert seq.strategies == par.strategies
    for name in seq:
        np.testing.assert_allclose(
            [e.predicted for e in seq[name]], [e.predicted for e in par[name]]
        )


# ── Rejection ─────────────────────────────────────────────────────────────────

def test_missing_values_rejected():
    values = list(WORKED)
    values[3] = np.nan
    with pytest.raises(InvalidSeries):
        Backtester(6, 1).evaluate(make_series(values), [NaiveStrategy()])


def test_short_series_raises_with_series_id():
    with pytest.raises(InsufficientHistory) as exc_info:
        Backtester(10, 1).evaluate(make_series(WORKED, series_id="tiny"), [NaiveStrategy()])
    assert exc_info.value.series_id == "tiny"


def test_no_strategies_raises(noisy_series):
    with pytest.raises(InvalidConfiguration):
        Backtester(10, 1).evaluate(noisy_series, [])


def test_duplicate_names_raise(noisy_series):
    with pytest.raises(InvalidConfiguration, match="duplicate"):
        Backtester(10, 1).evaluate(noisy_series, [NaiveStrategy(), NaiveStrategy()])


@pytest.mark.parametrize("kwargs", [
    {"initial_window_size": 0, "horizon": 1},
    {"initial_window_size": 5, "horizon": 0},
    {"initial_window_size": 5, "horizon": 1, "max_workers": 0},
])
def test_bad_constructor_arguments(kwargs):
    with pytest.raises(InvalidConfiguration):
        Backtester(**kwargs)
