"""
Cross-strategy comparison and ranking.

  summarize_backtest   one ErrorSummary per strategy for one series
  compare              rank strategies across many series
  comparison_frame     one row per (series, strategy), ready to render
  records_frame        the same table pivoted from merged ErrorRecords

Ranking rule
------------
Strategies that produced errors on more of the supplied series rank first.
Within the same coverage they are ordered by the mean of the selection metric
over the series they were scored on.  Ties fall back to the other metric (MAPE
for an MSE ranking, MSE for a MAPE ranking) and finally to the strategy name,
so the same inputs always give the same order.  A missing value (e.g. MAPE
when every actual was zero) ranks after any present value.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass

import pandas as pd

from series_forecaster.backtest.metrics import (
    ErrorRecord,
    ErrorSummary,
    ForecastError,
    error_records,
    summarize,
)
from series_forecaster.config import SELECTION_METRICS
from series_forecaster.errors import InvalidConfiguration

# series_id -> strategy -> errors.  A BacktestResult fits the inner mapping.
SeriesErrors = Mapping[str, Mapping[str, Sequence[ForecastError]]]


@dataclass(frozen=True)
class StrategyRanking:
    """One strategy's position in a cross-series comparison.

    Attributes:
        rank:      1-based position (1 = best).
        strategy:  Strategy name.
        mean_mse:  Mean per-series MSE (None if no series had samples).
        mean_mape: Mean per-series MAPE in percent (None if undefined everywhere).
        n_series:  Series that contributed.
        n_samples: Total error samples across those series.
    """

    rank: int
    strategy: str
    mean_mse: float | None
    mean_mape: float | None
    n_series: int
    n_samples: int


def summarize_backtest(
    result: Mapping[str, Sequence[ForecastError]],
) -> dict[str, ErrorSummary]:
    """Aggregate metrics per strategy for one series."""
    return {strategy: summarize(errors) for strategy, errors in result.items()}


def _mean(values: list[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    return (sum(present) / len(present)) if present else None


def _missing_last(v: float | None) -> tuple[bool, float]:
    return (v is None, v if v is not None else 0.0)


def compare(
    all_series_errors: SeriesErrors,
    metric: str = "mse",
) -> list[StrategyRanking]:
    """Rank strategies by coverage, then mean ``metric`` across the supplied series.

    Args:
        all_series_errors: series_id -> strategy -> ForecastErrors.
        metric:            ``"mse"`` or ``"mape"``.

    Returns:
        Rankings, best first.

    Raises:
        InvalidConfiguration: Unknown metric, or no strategy errors at all.
    """
    if metric not in SELECTION_METRICS:
        raise InvalidConfiguration(
            f"selection metric must be one of {SELECTION_METRICS}, got '{metric}'"
        )

    per_strategy: dict[str, list[ErrorSummary]] = defaultdict(list)
    for series_id in sorted(all_series_errors):
        for strategy, errors in all_series_errors[series_id].items():
            per_strategy[strategy].append(summarize(errors))

    if not per_strategy:
        raise InvalidConfiguration("nothing to compare: no strategy errors supplied")

    rows = []
    for strategy, summaries in per_strategy.items():
        rows.append((
            strategy,
            _mean([s.mse for s in summaries]),
            _mean([s.mape for s in summaries]),
            sum(1 for s in summaries if s.n_samples > 0),
            sum(s.n_samples for s in summaries),
        ))

    if metric == "mse":
        rows.sort(key=lambda r: (-r[3], _missing_last(r[1]), _missing_last(r[2]), r[0]))
    else:
        rows.sort(key=lambda r: (-r[3], _missing_last(r[2]), _missing_last(r[1]), r[0]))

    return [
        StrategyRanking(
            rank=i,
            strategy=strategy,
            mean_mse=mse,
            mean_mape=mape,
            n_series=n_series,
            n_samples=n_samples,
        )
        for i, (strategy, mse, mape, n_series, n_samples) in enumerate(rows, start=1)
    ]


_FRAME_COLUMNS = [
    "series_id", "strategy", "n_samples", "n_mape_excluded",
    "mse", "mape", "mae", "rmse",
]


def records_frame(records: Sequence[ErrorRecord]) -> pd.DataFrame:
    """Pivot ErrorRecords into one row per (series_id, strategy).

    Missing metric values (``None``) become NaN.
    """
    if not records:
        return pd.DataFrame(columns=_FRAME_COLUMNS)
    long = pd.DataFrame([asdict(r) for r in records])
    wide = long.pivot(index=["series_id", "strategy"], columns="metric", values="value").reset_index()
    wide.columns.name = None
    for col in ("n_samples", "n_mape_excluded"):
        wide[col] = wide[col].astype(int)
    wide = wide.sort_values(["series_id", "strategy"]).reset_index(drop=True)
    return wide[_FRAME_COLUMNS]


def comparison_frame(all_series_errors: SeriesErrors) -> pd.DataFrame:
    """One row per (series_id, strategy) with every summary metric."""
    records: list[ErrorRecord] = []
    for series_id in sorted(all_series_errors):
        records.extend(error_records(series_id, summarize_backtest(all_series_errors[series_id])))
    return records_frame(records)
