"""
Series data layer.

Modules
-------
timeseries  : TimeSeries (regular, immutable series) and Split (train/test).
repository  : SeriesRepository, one TimeSeries per series id.
"""

from series_forecaster.series.repository import SeriesRepository
from series_forecaster.series.timeseries import Split, TimeSeries

__all__ = ["SeriesRepository", "Split", "TimeSeries"]
