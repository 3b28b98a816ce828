"""
Backtest error samples and summary metrics.

Metric design rationale
-----------------------
MSE (Mean Squared Error)
  Default selection metric.  Squaring punishes large misses, which is what
  matters when a forecast feeds capacity or budget decisions.
  Interpretation: lower is better; 0 is perfect.

MAPE (Mean Absolute Percentage Error)
  Scale-free, so it compares strategies across series of different
  magnitude.  Reported in PERCENT: 10.0 means "off by 10% on average".
  Safeguard: samples whose actual value is exactly zero are excluded (the
  ratio is undefined) and counted in ``n_mape_excluded``.  If every sample is
  excluded, MAPE is None rather than a misleading 0.

MAE / RMSE
  Reported alongside for readability: "off by X units on average" and the
  square-root of MSE in the series' own units.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ForecastError:
    """One prediction-vs-actual sample from a backtest.

    Attributes:
        series_id:    Series the sample belongs to.
        strategy:     Strategy that made the prediction.
        origin_index: Which rolling origin this came from.
        origin:       Last training timestamp at that origin.
        step:         1-based horizon step.
        timestamp:    Timestamp being predicted.
        actual:       Observed value.
        predicted:    Point forecast.
    """

    series_id: str
    strategy: str
    origin_index: int
    origin: datetime
    step: int
    timestamp: datetime
    actual: float
    predicted: float

    @property
    def error(self) -> float:
        """Signed error, ``actual - predicted``."""
        return self.actual - self.predicted


@dataclass(frozen=True)
class ErrorSummary:
    """Aggregate metrics over a set of ForecastErrors.

    Float fields are None when there is nothing to compute them from
    (``n_samples == 0``, or every actual is zero for ``mape``).

    Attributes:
        mse:             Mean squared error.
        mape:            Mean absolute percentage error, in percent.
        n_samples:       Samples summarised.
        n_mape_excluded: Samples left out of MAPE because the actual was zero.
        mae:             Mean absolute error.
        rmse:            Root mean squared error.
    """

    mse: float | None
    mape: float | None
    n_samples: int
    n_mape_excluded: int
    mae: float | None = None
    rmse: float | None = None

    def metric(self, name: str) -> float | None:
        """Look up a metric by name (``mse``, ``mape``, ``mae``, ``rmse``)."""
        if name not in ("mse", "mape", "mae", "rmse"):
            raise KeyError(f"Unknown metric '{name}'.")
        return getattr(self, name)


@dataclass(frozen=True)
class ErrorRecord:
    """One ``(series, strategy, metric)`` value, append-only.

    Runs collect these per series and batches concatenate them; the
    comparison table is a pivot of the merged records.
    """

    series_id: str
    strategy: str
    metric: str
    value: float | None


def summarize(errors: Sequence[ForecastError]) -> ErrorSummary:
    """Compute MSE, MAPE, MAE and RMSE for a set of ForecastErrors.

    Args:
        errors: Samples to summarise (any mix of origins and steps).

    Returns:
        ErrorSummary; all float fields None when ``errors`` is empty.
    """
    n = len(errors)
    if n == 0:
        return ErrorSummary(mse=None, mape=None, n_samples=0, n_mape_excluded=0)

    diffs = [e.error for e in errors]
    sq_sum = sum(d * d for d in diffs)
    mse = sq_sum / n
    mae = sum(abs(d) for d in diffs) / n

    mape_terms = [
        abs(e.error) / abs(e.actual) * 100.0
        for e in errors
        if e.actual != 0.0
    ]
    n_excluded = n - len(mape_terms)
    mape = (sum(mape_terms) / len(mape_terms)) if mape_terms else None

    return ErrorSummary(
        mse=mse,
        mape=mape,
        n_samples=n,
        n_mape_excluded=n_excluded,
        mae=mae,
        rmse=math.sqrt(mse),
    )


def error_records(
    series_id: str,
    summaries: Mapping[str, ErrorSummary],
) -> list[ErrorRecord]:
    """Flatten per-strategy summaries into ErrorRecords, strategies sorted by name."""
    records: list[ErrorRecord] = []
    for strategy in sorted(summaries):
        s = summaries[strategy]
        for metric in ("mse", "mape", "mae", "rmse"):
            records.append(ErrorRecord(
                series_id=series_id,
                strategy=strategy,
                metric=metric,
                value=s.metric(metric),
            ))
        records.append(ErrorRecord(series_id, strategy, "n_samples", float(s.n_samples)))
        records.append(ErrorRecord(series_id, strategy, "n_mape_excluded", float(s.n_mape_excluded)))
    return records
