"""
Rolling-origin backtesting and strategy comparison.

Modules
-------
origins     Expanding-window origin generation.
evaluator   Backtester: fit and score every strategy at every origin.
metrics     ForecastError samples, MSE / MAPE / MAE / RMSE summaries.
comparison  Per-series summaries, cross-series ranking, comparison frame.
reporter    CSV files and JSON manifest.
"""
