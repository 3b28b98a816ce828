"""
Tests for cross-strategy comparison.

What we test
------------
1. compare(): series coverage first, then the selection metric averaged
   over per-series values; ties fall back to the other metric, then name.
2. Missing values: a None metric ranks after any present value.
3. comparison_frame() and records_frame(): one row per (series, strategy)
   with every metric, pivoted from ErrorRecords.
4. Errors: unknown metric, nothing to compare.
"""

from __future__ import annotations

from datetime import datetime

import numpy as np
import pytest

from series_forecaster.backtest.comparison import (
    compare,
    comparison_frame,
    records_frame,
    summarize_backtest,
)
from series_forecaster.backtest.metrics import ForecastError, error_records
from series_forecaster.errors import InvalidConfiguration


def _errs(strategy: str, pairs, series_id: str = "s1") -> list[ForecastError]:
    return [
        ForecastError(
            series_id=series_id,
            strategy=strategy,
            origin_index=0,
            origin=datetime(2024, 1, 1),
            step=i + 1,
            timestamp=datetime(2024, 1, 2 + i),
            actual=actual,
            predicted=predicted,
        )
        for i, (actual, predicted) in enumerate(pairs)
    ]


# ── Ranking ───────────────────────────────────────────────────────────────────

class TestCompare:
    def test_ranks_by_mse(self):
        errors = {"s1": {
            "naive": _errs("naive", [(10.0, 8.0)]),     # mse 4
            "mean":  _errs("mean", [(10.0, 9.0)]),      # mse 1
            "holt":  _errs("holt", [(10.0, 7.0)]),      # mse 9
        }}
        ranking = compare(errors)
        assert [r.strategy for r in ranking] == ["mean", "naive", "holt"]
        assert [r.rank for r in ranking] == [1, 2, 3]
        assert ranking[0].mean_mse == pytest.approx(1.0)

    def test_ranks_by_mape(self):
        errors = {"s1": {
            # small relative error on a large actual, large squared error
            "a": _errs("a", [(1000.0, 990.0)]),    # mse 100, mape 1
            "b": _errs("b", [(10.0, 8.0)]),        # mse 4,   mape 20
        }}
        assert [r.strategy for r in compare(errors, metric="mape")] == ["a", "b"]
        assert [r.strategy for r in compare(errors, metric="mse")] == ["b", "a"]

    def test_means_are_over_series(self):
        errors = {
            "s1": {"naive": _errs("naive", [(10.0, 8.0)], "s1")},                  # mse 4
            "s2": {"naive": _errs("naive", [(10.0, 10.0), (10.0, 10.0)], "s2")},   # mse 0
        }
        (row,) = compare(errors)
        assert row.mean_mse == pytest.approx(2.0)
        assert row.n_series == 2
        assert row.n_samples == 3

    def test_partial_coverage_ranks_after_full_coverage(self):
        errors = {
            "easy": {
                "full":    _errs("full", [(10.0, 9.0)], "easy"),       # mse 1
                "partial": _errs("partial", [(10.0, 8.0)], "easy"),    # mse 4
            },
            "hard": {
                "full": _errs("full", [(10.0, 0.0)], "hard"),          # mse 100
            },
        }
        ranking = compare(errors)
        assert [(r.strategy, r.n_series) for r in ranking] == [("full", 2), ("partial", 1)]
        assert ranking[0].mean_mse == pytest.approx(50.5)
        assert ranking[1].mean_mse == pytest.approx(4.0)

    def test_tie_broken_by_other_metric(self):
        errors = {"s1": {
            "a": _errs("a", [(10.0, 8.0)]),     # mse 4, mape 20
            "b": _errs("b", [(100.0, 98.0)]),   # mse 4, mape 2
        }}
        assert [r.strategy for r in compare(errors)] == ["b", "a"]

    def test_full_tie_broken_by_name(self):
        errors = {"s1": {
            "zeta":  _errs("zeta", [(10.0, 8.0)]),
            "alpha": _errs("alpha", [(10.0, 8.0)]),
        }}
        assert [r.strategy for r in compare(errors)] == ["alpha", "zeta"]

    def test_missing_mape_ranks_last(self):
        errors = {"s1": {
            "zero": _errs("zero", [(0.0, 0.0)]),      # mse 0, mape None
            "some": _errs("some", [(10.0, 12.0)]),    # mse 4, mape 20
        }}
        assert [r.strategy for r in compare(errors, metric="mape")] == ["some", "zero"]

    def test_accepts_backtest_result(self, noisy_series):
        from series_forecaster.backtest.evaluator import Backtester
        from series_forecaster.strategies.baselines import MeanStrategy, NaiveStrategy

        result = Backtester(20, 3).evaluate(noisy_series, [MeanStrategy(), NaiveStrategy()])
        ranking = compare({"noisy": result})
        assert {r.strategy for r in ranking} == {"mean", "naive"}
        # random walk with drift: last value beats the long-run mean
        assert ranking[0].strategy == "naive"


# ── Errors ────────────────────────────────────────────────────────────────────

def test_unknown_metric_raises():
    with pytest.raises(InvalidConfiguration, match="selection metric"):
        compare({"s1": {"a": _errs("a", [(1.0, 1.0)])}}, metric="smape")


def test_nothing_to_compare_raises():
    with pytest.raises(InvalidConfiguration):
        compare({})


# ── Frames ────────────────────────────────────────────────────────────────────

def test_comparison_frame_rows():
    errors = {
        "s2": {"naive": _errs("naive", [(10.0, 8.0)], "s2")},
        "s1": {
            "naive": _errs("naive", [(0.0, 1.0), (10.0, 9.0)]),
            "mean":  _errs("mean", [(10.0, 10.0)]),
        },
    }
    df = comparison_frame(errors)
    assert list(df[["series_id", "strategy"]].itertuples(index=False, name=None)) == [
        ("s1", "mean"), ("s1", "naive"), ("s2", "naive"),
    ]
    row = df[(df.series_id == "s1") & (df.strategy == "naive")].iloc[0]
    assert row["n_samples"] == 2
    assert row["n_mape_excluded"] == 1
    assert row["mape"] == pytest.approx(10.0)


def test_comparison_frame_empty_has_columns():
    df = comparison_frame({})
    assert df.empty
    assert "mse" in df.columns


def test_summarize_backtest():
    summaries = summarize_backtest({"naive": _errs("naive", [(10.0, 8.0), (10.0, 12.0)])})
    assert summaries["naive"].mse == pytest.approx(4.0)
    assert summaries["naive"].mae == pytest.approx(2.0)


def test_records_frame_pivots_merged_records():
    records = (
        error_records("s2", summarize_backtest({"naive": _errs("naive", [(10.0, 8.0)], "s2")}))
        + error_records("s1", summarize_backtest({"mean": _errs("mean", [(0.0, 1.0)])}))
    )
    df = records_frame(records)
    assert list(df.columns) == [
        "series_id", "strategy", "n_samples", "n_mape_excluded", "mse", "mape", "mae", "rmse",
    ]
    assert list(df["series_id"]) == ["s1", "s2"]
    s1 = df.iloc[0]
    assert s1["n_mape_excluded"] == 1
    assert np.isnan(s1["mape"])
    assert df.iloc[1]["rmse"] == pytest.approx(2.0)


def test_records_frame_empty_has_columns():
    df = records_frame([])
    assert df.empty
    assert "n_mape_excluded" in df.columns
