"""
Batch dispatch: one ForecastRunner run per series on a thread pool.

Each worker runs one series end to end and returns its own ``ForecastRun``;
nothing is shared between workers except the immutable series and
strategies.  Results are merged into the ``BatchReport`` in the calling
thread as futures complete, so there is no shared accumulator to lock.

Failure isolation
-----------------
- Per-series failure:    captured in that series' ForecastRun (FAILED) and
                         listed in ``BatchReport.failures``; the batch continues.
- Per-strategy failure:  a backtest or refit failure of one candidate, listed
                         in ``BatchReport.strategy_failures``.
- Cancellation:          setting ``cancel_event`` cancels every series that has
                         not started yet.  They are listed in
                         ``BatchReport.cancelled``; completed runs are kept.

Inner backtests run sequentially (``max_workers=1``) because the batch pool
already uses the configured worker count.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import pandas as pd

from series_forecaster.backtest.comparison import StrategyRanking, compare, records_frame
from series_forecaster.backtest.metrics import ErrorRecord
from series_forecaster.config import AppConfig
from series_forecaster.errors import FailureReport, RunCancelled
from series_forecaster.models.forecast import Forecast
from series_forecaster.pipeline.runner import ForecastRun, ForecastRunner
from series_forecaster.series.repository import SeriesRepository
from series_forecaster.strategies.base import ForecastStrategy
from series_forecaster.utils.time_utils import elapsed_seconds, utcnow

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    """Merged outcome of a batch.

    Attributes:
        runs:        ForecastRun per series that ran (DONE or FAILED).
        cancelled:   Series ids cancelled before they ran, sorted.
        ranking:     Cross-series strategy ranking over every backtest.
        records:     ErrorRecords of every run, merged in series order.
        comparison:  ``records`` pivoted to one row per (series, strategy).
        started_at:  UTC start time.
        finished_at: UTC finish time.
    """

    runs: dict[str, ForecastRun] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    ranking: list[StrategyRanking] = field(default_factory=list)
    records: list[ErrorRecord] = field(default_factory=list)
    comparison: pd.DataFrame = field(default_factory=pd.DataFrame)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def successes(self) -> dict[str, ForecastRun]:
        return {sid: r for sid, r in self.runs.items() if r.succeeded}

    @property
    def failures(self) -> list[FailureReport]:
        """Series-level failures, one per FAILED run."""
        return [r.failure for _, r in sorted(self.runs.items()) if r.failure is not None]

    @property
    def strategy_failures(self) -> list[FailureReport]:
        """Per-strategy backtest and refit failures across every run."""
        reports: list[FailureReport] = []
        for _, run in sorted(self.runs.items()):
            if run.backtest is not None:
                reports.extend(run.backtest.failures[name] for name in sorted(run.backtest.failures))
            reports.extend(run.refit_failures)
        return reports

    @property
    def forecasts(self) -> dict[str, Forecast]:
        return {sid: r.forecast for sid, r in self.successes.items()}


class BatchRunner:
    """Forecast many series concurrently.

    Args:
        config:     Application configuration; ``forecasting.max_workers``
                    sizes the pool.
        strategies: Candidate strategies shared (read-only) by every worker.
    """

    def __init__(
        self,
        config: AppConfig,
        strategies: Optional[Sequence[ForecastStrategy]] = None,
    ) -> None:
        self.config = config
        self.runner = ForecastRunner(config, strategies=strategies, max_workers=1)

    def run(
        self,
        repository: SeriesRepository,
        series_ids: Optional[Sequence[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchReport:
        """Run every requested series and merge the results.

        Raises:
            KeyError: A requested series id is not in the repository.
        """
        ids = list(series_ids) if series_ids is not None else repository.ids()
        unknown = [sid for sid in ids if sid not in repository]
        if unknown:
            raise KeyError(f"Unknown series_id(s): {unknown}")

        report = BatchReport(started_at=utcnow())
        max_workers = max(1, min(self.config.forecasting.max_workers, len(ids) or 1))
        logger.info("Batch starting | series=%d | workers=%d", len(ids), max_workers)

        def _run_one(series_id: str) -> ForecastRun:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled("batch cancelled before this series started", series_id=series_id)
            return self.runner.run(repository.get(series_id))

        cancelled: list[str] = []
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(_run_one, sid): sid for sid in ids}
            for future in as_completed(futures):
                series_id = futures[future]
                if future.cancelled():
                    cancelled.append(series_id)
                    continue
                try:
                    report.runs[series_id] = future.result()
                except RunCancelled:
                    cancelled.append(series_id)
                if cancel_event is not None and cancel_event.is_set():
                    for f in futures:
                        f.cancel()

        report.cancelled = sorted(cancelled)
        backtests = {
            sid: r.backtest for sid, r in sorted(report.runs.items()) if r.backtest is not None
        }
        if any(len(bt) for bt in backtests.values()):
            report.ranking = compare(backtests, metric=self.config.forecasting.selection_metric)
        for _, run in sorted(report.runs.items()):
            report.records.extend(run.records)
        report.comparison = records_frame(report.records)
        report.finished_at = utcnow()

        logger.info(
            "Batch complete | ok=%d | failed=%d | cancelled=%d | %.1fs",
            len(report.successes), len(report.failures), len(report.cancelled),
            elapsed_seconds(report.started_at, report.finished_at),
        )
        return report
