"""
Rolling-origin (expanding window) origin generation.

Design
------
Rolling-origin evaluation simulates deployment: at each origin we freeze
what a strategy "knows" and ask it for the next ``horizon`` points.

Given a series of length L, an initial window W and a horizon H:

  origin k trains on points [0, W + k)      (expanding window)
           tests on points  [W + k, W + k + H)

The boundary advances by one point per origin and stops when fewer than H
points remain after it, giving exactly ``L - W - H + 1`` origins for
``L >= W + H``.

Short series
------------
When ``W + 1 <= L < W + H`` no full-horizon origin fits.  A single origin
with a truncated ``L - W`` step horizon is produced instead, so short series
still get scored.  ``L < W + 1`` leaves no test point and raises
``InsufficientHistory``.

Leakage prevention
------------------
Each origin carries positions, not data.  ``train_size`` is the only part a
strategy sees; test positions are always at or after it.
"""

from __future__ import annotations

from dataclasses import dataclass

from series_forecaster.errors import InsufficientHistory, InvalidConfiguration


@dataclass(frozen=True)
class BacktestOrigin:
    """One rolling-origin evaluation point.

    Attributes:
        origin_index: Zero-based index (for sorting and display).
        train_size:   Number of leading points used for training.
        horizon:      Number of test points after the training prefix.
    """

    origin_index: int
    train_size: int
    horizon: int

    @property
    def test_start(self) -> int:
        return self.train_size

    @property
    def test_stop(self) -> int:
        return self.train_size + self.horizon


def generate_rolling_origins(
    series_length: int,
    initial_window_size: int,
    horizon: int,
) -> list[BacktestOrigin]:
    """Generate expanding-window origins.

    Args:
        series_length:       Number of points in the series (L).
        initial_window_size: Training points at the first origin (W >= 1).
        horizon:             Steps forecast at every origin (H >= 1).

    Returns:
        List of BacktestOrigin objects, sorted by origin_index.

    Raises:
        InvalidConfiguration: If W or H is not positive.
        InsufficientHistory:  If L < W + 1.
    """
    if initial_window_size < 1:
        raise InvalidConfiguration(
            f"initial_window_size must be >= 1, got {initial_window_size}"
        )
    if horizon < 1:
        raise InvalidConfiguration(f"horizon must be a positive integer, got {horizon}")
    if series_length < initial_window_size + 1:
        raise InsufficientHistory(
            f"backtest needs at least {initial_window_size + 1} points "
            f"(initial window {initial_window_size} + 1 test point), got {series_length}"
        )

    if series_length < initial_window_size + horizon:
        return [BacktestOrigin(
            origin_index=0,
            train_size=initial_window_size,
            horizon=series_length - initial_window_size,
        )]

    n_origins = series_length - initial_window_size - horizon + 1
    return [
        BacktestOrigin(origin_index=k, train_size=initial_window_size + k, horizon=horizon)
        for k in range(n_origins)
    ]
