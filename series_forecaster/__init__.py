"""
Series Forecaster: model fitting, rolling-origin backtesting and selection
for many independent univariate series.

Packages
--------
series      : TimeSeries, Split and the SeriesRepository.
strategies  : Forecasting strategy family (mean, naive, seasonal naive,
              exponential smoothing, nonlinear lag regression).
backtest    : Rolling-origin backtester, error metrics, cross-series comparison.
pipeline    : ForecastRunner state machine and parallel BatchRunner.
"""

__version__ = "0.3.0"
