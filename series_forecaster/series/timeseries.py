"""
Time series and train/test split value types.

A ``TimeSeries`` is the unit every strategy, backtest and runner works on:
one ``series_id``, a strictly increasing ``DatetimeIndex`` on a single fixed
frequency, and a read-only float array of values.

Gaps are explicit
-----------------
A missing day is a row whose value is NaN, never an omitted row.  The
constructor rejects an index that skips a frequency step, so position ``i``
always means "``i`` steps after ``start``".  Position arithmetic in the
strategies (seasonal offsets, lag windows) depends on this.

Missing values
--------------
NaN values are allowed at construction because the nonlinear regressor can
drop incomplete lag windows.  Every other consumer calls
``require_complete()`` first; interpolation is the caller's job.

Both types are frozen.  Slicing returns new objects and the value arrays are
marked non-writeable so a series handed to a worker thread cannot change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd
from pandas.tseries.frequencies import to_offset

from series_forecaster.errors import InvalidConfiguration, InvalidSeries

DEFAULT_FREQ = "D"


@dataclass(frozen=True, eq=False)
class TimeSeries:
    """One regular, time-indexed numeric series.

    Attributes:
        series_id: Category key (e.g. a region code).
        index:     Strictly increasing timestamps on one fixed frequency.
        values:    Float values aligned with ``index``; NaN marks a missing point.
        freq:      Frequency alias; inferred from ``index`` when omitted.
    """

    series_id: str
    index: pd.DatetimeIndex
    values: np.ndarray
    freq: Optional[str] = None
    offset: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        index = pd.DatetimeIndex(self.index)
        values = np.asarray(self.values, dtype=np.float64).copy()

        if values.ndim != 1:
            raise InvalidSeries(
                f"values must be one-dimensional, got shape {values.shape}",
                series_id=self.series_id,
            )
        if len(index) != len(values):
            raise InvalidSeries(
                f"index has {len(index)} timestamps but values has {len(values)} entries",
                series_id=self.series_id,
            )
        if index.has_duplicates:
            raise InvalidSeries("duplicate timestamps", series_id=self.series_id)
        if not index.is_monotonic_increasing:
            raise InvalidSeries(
                "timestamps must be strictly increasing", series_id=self.series_id
            )

        offset = _resolve_offset(index, self.freq, self.series_id)
        if len(index) > 0:
            expected = pd.date_range(start=index[0], periods=len(index), freq=offset)
            if not index.equals(expected):
                raise InvalidSeries(
                    f"timestamps skip steps of frequency '{offset.freqstr}'; "
                    "encode gaps as NaN rows instead of omitting them",
                    series_id=self.series_id,
                )
            index = expected

        values.setflags(write=False)
        object.__setattr__(self, "index", index)
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "offset", offset)
        object.__setattr__(self, "freq", offset.freqstr)

    # ── Constructors ──────────────────────────────────────────────────────────

    @classmethod
    def from_pandas(
        cls,
        series_id: str,
        series: pd.Series,
        freq: Optional[str] = None,
    ) -> "TimeSeries":
        """Build from a pandas Series indexed by timestamps."""
        return cls(
            series_id=series_id,
            index=pd.DatetimeIndex(series.index),
            values=series.to_numpy(dtype=np.float64, na_value=np.nan),
            freq=freq,
        )

    @classmethod
    def from_values(
        cls,
        series_id: str,
        values: Any,
        start: str | pd.Timestamp = "2020-01-01",
        freq: str = DEFAULT_FREQ,
    ) -> "TimeSeries":
        """Build from bare values laid out on a regular index from ``start``."""
        arr = np.asarray(values, dtype=np.float64)
        index = pd.date_range(start=start, periods=len(arr), freq=freq)
        return cls(series_id=series_id, index=index, values=arr, freq=freq)

    # ── Basic properties ──────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        if len(self) == 0:
            return f"TimeSeries({self.series_id!r}, empty, freq={self.freq})"
        return (
            f"TimeSeries({self.series_id!r}, n={len(self)}, "
            f"{self.start.date()}..{self.end.date()}, freq={self.freq})"
        )

    @property
    def start(self) -> pd.Timestamp:
        return self.index[0]

    @property
    def end(self) -> pd.Timestamp:
        return self.index[-1]

    @property
    def has_missing(self) -> bool:
        return bool(np.isnan(self.values).any())

    def require_complete(self) -> "TimeSeries":
        """Return self, or raise ``InvalidSeries`` if any value is missing."""
        if len(self) == 0:
            raise InvalidSeries("series is empty", series_id=self.series_id)
        if self.has_missing:
            n_missing = int(np.isnan(self.values).sum())
            raise InvalidSeries(
                f"series has {n_missing} missing value(s); interpolate before forecasting",
                series_id=self.series_id,
            )
        return self

    # ── Slicing ───────────────────────────────────────────────────────────────

    def head(self, n: int) -> "TimeSeries":
        """First ``n`` points (the training prefix for one backtest origin)."""
        return self._take(slice(0, n))

    def tail(self, n: int) -> "TimeSeries":
        """Last ``n`` points."""
        if n <= 0:
            return self._take(slice(len(self), len(self)))
        return self._take(slice(len(self) - n, len(self)))

    def slice(
        self,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
    ) -> "TimeSeries":
        """Points with ``start <= timestamp <= end`` (either bound optional)."""
        mask = np.ones(len(self), dtype=bool)
        if start is not None:
            mask &= self.index >= pd.Timestamp(start)
        if end is not None:
            mask &= self.index <= pd.Timestamp(end)
        positions = np.flatnonzero(mask)
        if len(positions) == 0:
            return self._take(slice(0, 0))
        return self._take(slice(positions[0], positions[-1] + 1))

    def _take(self, sl: slice) -> "TimeSeries":
        return TimeSeries(
            series_id=self.series_id,
            index=self.index[sl],
            values=self.values[sl],
            freq=self.freq,
        )

    # ── Splitting ─────────────────────────────────────────────────────────────

    def split_at(self, cutoff: Any) -> "Split":
        """Partition into training (``<= cutoff``) and testing (``> cutoff``) parts.

        Raises:
            InvalidConfiguration: If the cutoff leaves either part empty.
        """
        cutoff_ts = pd.Timestamp(cutoff)
        n_train = int((self.index <= cutoff_ts).sum())
        if n_train == 0 or n_train == len(self):
            raise InvalidConfiguration(
                f"cutoff {cutoff_ts} leaves an empty training or testing part "
                f"(series spans {self.start} .. {self.end})",
                series_id=self.series_id,
            )
        return Split(train=self.head(n_train), test=self._take(slice(n_train, len(self))))

    def split_holdout(self, holdout_size: int) -> "Split":
        """Hold out the last ``holdout_size`` points as the testing part."""
        if not 0 < holdout_size < len(self):
            raise InvalidConfiguration(
                f"holdout_size must be in [1, {len(self) - 1}], got {holdout_size}",
                series_id=self.series_id,
            )
        n_train = len(self) - holdout_size
        return Split(train=self.head(n_train), test=self._take(slice(n_train, len(self))))

    # ── Conversion ────────────────────────────────────────────────────────────

    def future_index(self, horizon: int) -> pd.DatetimeIndex:
        """Timestamps of the ``horizon`` steps following ``end``."""
        return pd.date_range(start=self.end + self.offset, periods=horizon, freq=self.offset)

    def to_pandas(self) -> pd.Series:
        return pd.Series(np.array(self.values), index=self.index, name=self.series_id)


@dataclass(frozen=True, eq=False)
class Split:
    """Immutable train/test partition of one series.

    Invariants (checked at construction):
      - Both parts are non-empty and belong to the same series.
      - ``train.end < test.start``.
      - ``test.start`` is exactly one frequency step after ``train.end``.
    """

    train: TimeSeries
    test: TimeSeries

    def __post_init__(self) -> None:
        if len(self.train) == 0 or len(self.test) == 0:
            raise InvalidSeries(
                "split parts must be non-empty", series_id=self.train.series_id
            )
        if self.train.series_id != self.test.series_id:
            raise InvalidSeries(
                f"split mixes series '{self.train.series_id}' and '{self.test.series_id}'"
            )
        if self.train.freq != self.test.freq:
            raise InvalidSeries(
                f"split parts differ in frequency ({self.train.freq} vs {self.test.freq})",
                series_id=self.train.series_id,
            )
        if not self.train.end < self.test.start:
            raise InvalidSeries(
                f"train end {self.train.end} is not before test start {self.test.start}",
                series_id=self.train.series_id,
            )
        if self.train.end + self.train.offset != self.test.start:
            raise InvalidSeries(
                f"gap between train end {self.train.end} and test start {self.test.start}",
                series_id=self.train.series_id,
            )

    @property
    def cutoff(self) -> pd.Timestamp:
        """Last training timestamp."""
        return self.train.end

    @property
    def series_id(self) -> str:
        return self.train.series_id


def _resolve_offset(index: pd.DatetimeIndex, freq: Optional[str], series_id: str):
    """Pick the frequency: explicit ``freq``, then the index's own, then inference."""
    try:
        if freq is not None:
            return to_offset(freq)
        if index.freq is not None:
            return index.freq
    except ValueError as exc:
        raise InvalidSeries(f"unknown frequency '{freq}': {exc}", series_id=series_id) from exc

    if len(index) >= 3:
        inferred = pd.infer_freq(index)
        if inferred is not None:
            return to_offset(inferred)
    if len(index) >= 2:
        steps = np.unique(np.diff(index.asi8))
        if len(steps) == 1:
            return to_offset(pd.Timedelta(int(steps[0]), unit="ns"))
        raise InvalidSeries(
            "cannot infer a fixed frequency from irregular timestamps; "
            "encode gaps as NaN rows",
            series_id=series_id,
        )
    return to_offset(DEFAULT_FREQ)
