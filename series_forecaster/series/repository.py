"""
In-memory repository of independent series, one per ``series_id``.

The repository is the hand-off point between the external ingestion/cleaning
collaborator and the forecasting core.  Series are added once and read many
times; the repository hands out the immutable ``TimeSeries`` objects
themselves, so concurrent workers share nothing mutable.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any, Optional

import pandas as pd

from series_forecaster.series.timeseries import TimeSeries

logger = logging.getLogger(__name__)


class SeriesRepository:
    """Holds exactly one ``TimeSeries`` per series id."""

    def __init__(self, series: Optional[list[TimeSeries]] = None) -> None:
        self._series: dict[str, TimeSeries] = {}
        for s in series or []:
            self.add(s)

    def add(self, series: TimeSeries) -> None:
        """Register a series.

        Raises:
            ValueError: If a series with the same id is already present.
        """
        if series.series_id in self._series:
            raise ValueError(f"Series '{series.series_id}' is already registered.")
        self._series[series.series_id] = series

    def get(self, series_id: str) -> TimeSeries:
        """Return the series for ``series_id``.

        Raises:
            KeyError: If the id is unknown.
        """
        try:
            return self._series[series_id]
        except KeyError:
            raise KeyError(f"Unknown series_id '{series_id}'.") from None

    def slice(
        self,
        series_id: str,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
    ) -> TimeSeries:
        """Return the points of one series within ``[start, end]``."""
        return self.get(series_id).slice(start, end)

    def ids(self) -> list[str]:
        """Series ids in sorted order (stable dispatch and report order)."""
        return sorted(self._series)

    def __contains__(self, series_id: object) -> bool:
        return series_id in self._series

    def __len__(self) -> int:
        return len(self._series)

    def __iter__(self) -> Iterator[TimeSeries]:
        for series_id in self.ids():
            yield self._series[series_id]

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        id_col: str = "series_id",
        time_col: str = "ds",
        value_col: str = "y",
        freq: Optional[str] = None,
    ) -> "SeriesRepository":
        """Build a repository from a long-format frame (one row per id and timestamp).

        Args:
            df:        Frame with id, timestamp and value columns.
            id_col:    Column holding the series id.
            time_col:  Column holding timestamps (parsed with ``pd.to_datetime``).
            value_col: Column holding numeric values.
            freq:      Frequency alias applied to every series; inferred if None.

        Raises:
            KeyError: If a required column is missing.
            InvalidSeries: If any series is irregular.
        """
        missing = [c for c in (id_col, time_col, value_col) if c not in df.columns]
        if missing:
            raise KeyError(f"Input frame is missing column(s): {missing}")

        frame = df[[id_col, time_col, value_col]].copy()
        frame[time_col] = pd.to_datetime(frame[time_col])
        frame[value_col] = pd.to_numeric(frame[value_col], errors="coerce")

        repo = cls()
        for series_id, group in frame.groupby(id_col, sort=True):
            group = group.sort_values(time_col)
            repo.add(TimeSeries(
                series_id=str(series_id),
                index=pd.DatetimeIndex(group[time_col]),
                values=group[value_col].to_numpy(dtype="float64"),
                freq=freq,
            ))

        logger.info("Loaded %d series from frame (%d rows)", len(repo), len(frame))
        return repo
