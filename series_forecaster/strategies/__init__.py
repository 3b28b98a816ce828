"""
Forecasting strategies.

Each strategy fits one training series and returns an immutable
``FittedModel`` that forecasts with Gaussian prediction intervals.

  mean, naive, seasonal_naive      baselines.py
  ses, holt, damped_holt           smoothing.py
  mlp, lgbm                        nonlinear.py

Use ``build_strategies(names, config)`` from ``registry.py`` to get
configured instances by name.
"""
