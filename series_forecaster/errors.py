"""
Error taxonomy for the forecasting core.

Every failure that leaves a strategy, a series run or a batch is one of the
classes below, or is converted into a ``FailureReport`` that names its kind.
Callers never receive a bare ``None`` in place of a forecast.

  InsufficientHistory         Series or window too short for the operation.
  OptimizationDidNotConverge  Parameter fitting hit its iteration bound.
  InvalidConfiguration        Bad run settings (horizon <= 0, no candidates).
  NoValidStrategy             Every candidate failed for one series.
  InvalidSeries               Input series is irregular or has missing values.
  RunCancelled                A batch was cancelled before this series ran.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ForecastingError(Exception):
    """Base class for structured forecasting failures.

    Attributes:
        series_id: Series the failure belongs to, when known.
        strategy:  Strategy name the failure belongs to, when known.
    """

    kind = "ForecastingError"

    def __init__(
        self,
        message: str,
        series_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.series_id = series_id
        self.strategy = strategy

    def with_context(
        self,
        series_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> "ForecastingError":
        """Fill in series/strategy context that was unknown at raise time."""
        if self.series_id is None:
            self.series_id = series_id
        if self.strategy is None:
            self.strategy = strategy
        return self


class InsufficientHistory(ForecastingError):
    """The series (or training window) is too short for the requested operation."""

    kind = "InsufficientHistory"


class OptimizationDidNotConverge(ForecastingError):
    """Numerical parameter fitting exceeded its iteration or tolerance bounds."""

    kind = "OptimizationDidNotConverge"


class InvalidConfiguration(ForecastingError, ValueError):
    """Run settings are unusable, e.g. a non-positive horizon or no candidates."""

    kind = "InvalidConfiguration"


class NoValidStrategy(ForecastingError):
    """Every candidate strategy failed to fit or forecast for one series."""

    kind = "NoValidStrategy"


class InvalidSeries(ForecastingError, ValueError):
    """Input series violates the clean, regular, complete input contract."""

    kind = "InvalidSeries"


class RunCancelled(ForecastingError):
    """The batch was cancelled before this series finished."""

    kind = "RunCancelled"


@dataclass(frozen=True)
class FailureReport:
    """Structured description of one failure.

    Attributes:
        kind:      Error class name, e.g. ``"InsufficientHistory"``.
        series_id: Series the failure belongs to (None for config-level errors).
        stage:     Runner state or component where it happened.
        message:   Human-readable cause.
        strategy:  Strategy name if the failure is strategy-specific.
    """

    kind: str
    series_id: Optional[str]
    stage: str
    message: str
    strategy: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        stage: str,
        series_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> "FailureReport":
        if isinstance(exc, ForecastingError):
            return cls(
                kind=exc.kind,
                series_id=exc.series_id or series_id,
                stage=stage,
                message=exc.message,
                strategy=exc.strategy or strategy,
            )
        return cls(
            kind=type(exc).__name__,
            series_id=series_id,
            stage=stage,
            message=str(exc),
            strategy=strategy,
        )
