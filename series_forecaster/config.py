"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      committed static defaults
  2. ``config/local.toml``        optional local overrides (gitignored)
  3. ``.env``                     local env overrides (gitignored)
  4. Environment variables        ``SERIES_FORECASTER_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Every runner and CLI command receives an ``AppConfig`` (or one of its
sections), never raw dicts or scattered env var lookups.

Validation is split in two.  pydantic checks field types and simple ranges
when a section is built; ``validate_forecasting_config()`` checks the run
settings that only make sense together (horizon, window, candidate names)
and raises ``InvalidConfiguration`` so runners can report it like any other
forecasting failure.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from series_forecaster.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

SELECTION_METRICS = ("mse", "mape")


# ── Sub-config models ─────────────────────────────────────────────────────────


class ForecastingConfig(BaseModel):
    """Per-run forecasting settings.

    Attributes:
        candidate_strategies: Strategy names to backtest, in preference order.
        season_length:        Seasonal period in steps (7 = weekly on daily data).
        initial_window_size:  Training points at the first backtest origin.
        horizon:              Steps forecast at every origin and in the final forecast.
        confidence_levels:    Interval levels, each in (0, 1).
        selection_metric:     ``"mse"`` or ``"mape"``.
        max_workers:          Thread pool size for batch and backtest dispatch.
        holdout_size:         Trailing points held out of training (0 = none).
    """

    model_config = ConfigDict(frozen=True)

    candidate_strategies: list[str] = ["mean", "naive", "seasonal_naive", "ses", "holt"]
    season_length: int = 7
    initial_window_size: int = 30
    horizon: int = 7
    confidence_levels: list[float] = [0.80, 0.95]
    selection_metric: str = "mse"
    max_workers: int = 4
    holdout_size: int = 0


class SmoothingConfig(BaseModel):
    """Exponential smoothing optimizer bounds."""

    model_config = ConfigDict(frozen=True)

    max_iter: int = 200
    tolerance: float = 1e-8


class RegressorConfig(BaseModel):
    """Nonlinear lag regressor settings (shared by ``mlp`` and ``lgbm``)."""

    model_config = ConfigDict(frozen=True)

    lag_order: int = 7
    min_windows: int = 10
    mode: str = "recursive"
    max_direct_horizon: int = 14
    random_state: int = 0
    hidden_layer_sizes: list[int] = [32]
    mlp_max_iter: int = 500
    n_estimators: int = 100
    learning_rate: float = 0.05
    num_leaves: int = 15
    min_child_samples: int = 5


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = ""
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class OutputConfig(BaseModel):
    """Where reports and fitted-model artifacts are written."""

    model_config = ConfigDict(frozen=True)

    output_dir: str = "data/outputs"
    model_dir: str = "data/models"


class AppConfig(BaseModel):
    """Complete application configuration.

    Constructed by ``load_config()``, which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    forecasting: ForecastingConfig = ForecastingConfig()
    smoothing: SmoothingConfig = SmoothingConfig()
    regressor: RegressorConfig = RegressorConfig()
    logging: LoggingConfig = LoggingConfig()
    output: OutputConfig = OutputConfig()
    debug: bool = False


# ── Semantic validation ───────────────────────────────────────────────────────


def validate_forecasting_config(
    cfg: ForecastingConfig,
    known_strategies: Optional[tuple[str, ...]] = None,
) -> ForecastingConfig:
    """Check run settings that pydantic field types cannot express.

    Args:
        cfg:              Settings to check.
        known_strategies: Valid strategy names; unchecked when None.

    Returns:
        ``cfg`` unchanged, so calls can be chained.

    Raises:
        InvalidConfiguration: On the first invalid setting found.
    """
    if not cfg.candidate_strategies:
        raise InvalidConfiguration("candidate_strategies is empty; nothing to evaluate")
    if len(set(cfg.candidate_strategies)) != len(cfg.candidate_strategies):
        raise InvalidConfiguration(
            f"candidate_strategies has duplicates: {cfg.candidate_strategies}"
        )
    if known_strategies is not None:
        unknown = [s for s in cfg.candidate_strategies if s not in known_strategies]
        if unknown:
            raise InvalidConfiguration(
                f"unknown strategy name(s) {unknown}; known: {list(known_strategies)}"
            )
    if cfg.horizon < 1:
        raise InvalidConfiguration(f"horizon must be a positive integer, got {cfg.horizon}")
    if cfg.initial_window_size < 1:
        raise InvalidConfiguration(
            f"initial_window_size must be >= 1, got {cfg.initial_window_size}"
        )
    if cfg.season_length < 1:
        raise InvalidConfiguration(f"season_length must be >= 1, got {cfg.season_length}")
    for level in cfg.confidence_levels:
        if not 0.0 < level < 1.0:
            raise InvalidConfiguration(f"confidence level must be in (0, 1), got {level}")
    if cfg.selection_metric not in SELECTION_METRICS:
        raise InvalidConfiguration(
            f"selection_metric must be one of {SELECTION_METRICS}, got '{cfg.selection_metric}'"
        )
    if cfg.max_workers < 1:
        raise InvalidConfiguration(f"max_workers must be >= 1, got {cfg.max_workers}")
    if cfg.holdout_size < 0:
        raise InvalidConfiguration(f"holdout_size must be >= 0, got {cfg.holdout_size}")
    return cfg


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``; built-in defaults are used
            when that default file is absent.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError:    If an explicit ``config_path`` does not exist.
        InvalidConfiguration: If merged config values fail validation.
    """
    root = _find_project_root()

    # 1. Load .env file (silently skip if missing)
    load_dotenv(dotenv_path=root / ".env", override=False)

    # 2. Load TOML config
    raw: dict[str, Any] = {}
    if config_path is None:
        config_path = root / "config" / "default.toml"
        if not config_path.exists():
            logger.debug("No %s; using built-in defaults", config_path)
            config_path = None
    else:
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

    if config_path is not None:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)

        # Also merge local.toml if present (gitignored local overrides)
        local_config_path = config_path.parent / "local.toml"
        if local_config_path.exists() and local_config_path != config_path:
            with open(local_config_path, "rb") as f:
                raw = _deep_merge(raw, tomllib.load(f))

    # 3. Apply SERIES_FORECASTER_* environment variable overrides
    raw = _apply_env_overrides(raw)

    # 4. Build and validate AppConfig
    try:
        return _build_app_config(raw)
    except ValidationError as exc:
        raise InvalidConfiguration(f"invalid configuration: {exc}") from exc


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply SERIES_FORECASTER_* env vars to the raw config dict.

    Supported overrides:
      SERIES_FORECASTER_LOG_LEVEL         raw["logging"]["level"]
      SERIES_FORECASTER_MAX_WORKERS       raw["forecasting"]["max_workers"]
      SERIES_FORECASTER_SELECTION_METRIC  raw["forecasting"]["selection_metric"]
      SERIES_FORECASTER_DEBUG             raw["debug"]
    """
    if log_level := os.environ.get("SERIES_FORECASTER_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if max_workers := os.environ.get("SERIES_FORECASTER_MAX_WORKERS"):
        raw.setdefault("forecasting", {})["max_workers"] = max_workers

    if metric := os.environ.get("SERIES_FORECASTER_SELECTION_METRIC"):
        raw.setdefault("forecasting", {})["selection_metric"] = metric.lower()

    if debug := os.environ.get("SERIES_FORECASTER_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        forecasting=ForecastingConfig(**raw.get("forecasting", {})),
        smoothing=SmoothingConfig(**raw.get("smoothing", {})),
        regressor=RegressorConfig(**raw.get("regressor", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        output=OutputConfig(**raw.get("output", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
