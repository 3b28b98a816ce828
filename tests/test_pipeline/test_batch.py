"""
Tests for BatchRunner.

What we test
------------
1. Dispatch: every series runs; forecasts, ranking and ErrorRecords merge
   and the comparison table is pivoted from the merged records.
2. Isolation: one failing series does not affect the others; backtest
   and refit failures of single strategies are collected per series.
3. Selection: series_ids restricts the batch; unknown ids raise.
4. Cancellation: setting the event cancels series that have not started.
5. Concurrency: pool size does not change results.
"""

from __future__ import annotations

import threading

import numpy as np
import pytest

from series_forecaster.errors import InsufficientHistory, OptimizationDidNotConverge
from series_forecaster.pipeline.batch import BatchRunner
from series_forecaster.series.repository import SeriesRepository
from series_forecaster.series.timeseries import TimeSeries
from series_forecaster.strategies.base import FittedModel
from series_forecaster.strategies.baselines import MeanStrategy, NaiveStrategy, SeasonalNaiveStrategy

from conftest import make_series, weekly_values, with_forecasting


class _CancelOnFit(NaiveStrategy):
    """Naive strategy that sets a cancel event the first time it is fit."""

    name = "cancel_on_fit"

    def __init__(self, event: threading.Event) -> None:
        self.event = event

    def _fit(self, series: TimeSeries) -> FittedModel:
        self.event.set()
        return super()._fit(series)


class _AlwaysFails(MeanStrategy):
    name = "always_fails"

    def _fit(self, series: TimeSeries) -> FittedModel:
        raise InsufficientHistory("never enough")


class _FailsOnRefit(SeasonalNaiveStrategy):
    """Seasonal naive that fails once the training part reaches 40 points."""

    name = "flaky_seasonal"

    def _fit(self, series: TimeSeries) -> FittedModel:
        if len(series) >= 40:
            raise OptimizationDidNotConverge("refit blew up")
        return super()._fit(series)


def _repo(*ids: str, n: int = 40) -> SeriesRepository:
    return SeriesRepository([
        make_series(weekly_values(n, level=10.0 * (i + 1)), series_id=sid)
        for i, sid in enumerate(ids)
    ])


# ── Dispatch ──────────────────────────────────────────────────────────────────

def test_every_series_forecast(fast_config):
    config = with_forecasting(fast_config, max_workers=3)
    report = BatchRunner(config).run(_repo("a", "b", "c"))
    assert sorted(report.successes) == ["a", "b", "c"]
    assert report.failures == []
    assert report.cancelled == []
    assert {sid: fc.horizon for sid, fc in report.forecasts.items()} == {"a": 5, "b": 5, "c": 5}
    assert report.ranking[0].strategy == "seasonal_naive"
    assert report.ranking[0].n_series == 3
    assert len(report.comparison) == 9
    assert report.finished_at >= report.started_at


def test_comparison_is_built_from_merged_records(fast_config):
    report = BatchRunner(with_forecasting(fast_config, max_workers=2)).run(_repo("b", "a"))
    assert report.records == report.runs["a"].records + report.runs["b"].records
    assert len(report.records) == 2 * 3 * 6
    rows = list(report.comparison[["series_id", "strategy"]].itertuples(index=False, name=None))
    assert rows == [
        ("a", "mean"), ("a", "naive"), ("a", "seasonal_naive"),
        ("b", "mean"), ("b", "naive"), ("b", "seasonal_naive"),
    ]
    seasonal = report.comparison[report.comparison.strategy == "seasonal_naive"]
    assert list(seasonal["mse"]) == pytest.approx([0.0, 0.0])


# ── Isolation ─────────────────────────────────────────────────────────────────

def test_failing_series_is_isolated(fast_config):
    repo = _repo("a", "b")
    repo.add(make_series(np.arange(5.0), series_id="short"))
    report = BatchRunner(with_forecasting(fast_config, max_workers=2)).run(repo)
    assert sorted(report.successes) == ["a", "b"]
    assert [f.series_id for f in report.failures] == ["short"]
    assert report.failures[0].kind == "InsufficientHistory"
    assert "short" not in report.forecasts


def test_strategy_failures_are_collected(fast_config):
    runner = BatchRunner(
        fast_config, strategies=[_AlwaysFails(), _FailsOnRefit(), NaiveStrategy()]
    )
    report = runner.run(_repo("a", "b"))
    assert sorted(report.successes) == ["a", "b"]
    assert report.failures == []
    assert {run.selected_strategy for run in report.runs.values()} == {"naive"}
    assert [(f.series_id, f.strategy, f.stage) for f in report.strategy_failures] == [
        ("a", "always_fails", "BACKTEST"),
        ("a", "flaky_seasonal", "REFIT"),
        ("b", "always_fails", "BACKTEST"),
        ("b", "flaky_seasonal", "REFIT"),
    ]


def test_all_series_failing_gives_empty_ranking(fast_config):
    repo = SeriesRepository([make_series(np.arange(5.0), series_id="x")])
    report = BatchRunner(fast_config).run(repo)
    assert report.successes == {}
    assert report.ranking == []
    assert report.comparison.empty


# ── Selection ─────────────────────────────────────────────────────────────────

def test_subset_of_series(fast_config):
    report = BatchRunner(fast_config).run(_repo("a", "b", "c"), series_ids=["b"])
    assert list(report.runs) == ["b"]


def test_unknown_series_raises(fast_config):
    with pytest.raises(KeyError, match="zzz"):
        BatchRunner(fast_config).run(_repo("a"), series_ids=["a", "zzz"])


# ── Cancellation ──────────────────────────────────────────────────────────────

def test_cancel_event_stops_pending_series(fast_config):
    event = threading.Event()
    config = with_forecasting(fast_config, max_workers=1)
    runner = BatchRunner(config, strategies=[_CancelOnFit(event), MeanStrategy()])
    report = runner.run(_repo("a", "b", "c"), cancel_event=event)
    assert list(report.runs) == ["a"]
    assert report.runs["a"].succeeded
    assert report.cancelled == ["b", "c"]


def test_pre_set_event_cancels_everything(fast_config):
    event = threading.Event()
    event.set()
    report = BatchRunner(fast_config).run(_repo("a", "b"), cancel_event=event)
    assert report.runs == {}
    assert report.cancelled == ["a", "b"]
    assert report.ranking == []


# ── Concurrency ───────────────────────────────────────────────────────────────

def test_pool_size_does_not_change_results(fast_config):
    repo = _repo("a", "b", "c", "d")
    seq = BatchRunner(with_forecasting(fast_config, max_workers=1)).run(repo)
    par = BatchRunner(with_forecasting(fast_config, max_workers=4)).run(repo)
    for sid in repo.ids():
        np.testing.assert_array_equal(seq.forecasts[sid].points, par.forecasts[sid].points)
    assert [r.strategy for r in seq.ranking] == [r.strategy for r in par.ranking]
