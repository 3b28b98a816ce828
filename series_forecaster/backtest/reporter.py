"""
Result reporting: CSV files and a JSON manifest.

Output layout (one CLI run):
  outputs/{command}_{run_slug}/
    forecasts.csv      one row per (series, step) with interval bounds
    comparison.csv     one row per (series, strategy) with every metric
    ranking.csv        cross-series strategy ranking
    failures.csv       one row per FailureReport
    manifest.json      run config, counts, output file paths

Rendering (charts, narrative reports) is downstream of these files.
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Sequence
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from series_forecaster.backtest.comparison import StrategyRanking
from series_forecaster.errors import FailureReport
from series_forecaster.models.forecast import Forecast

log = logging.getLogger(__name__)


# ── CSV output ─────────────────────────────────────────────────────────────────

def write_forecasts_csv(forecasts: Sequence[Forecast], path: Path) -> None:
    """Write every forecast step as CSV.

    Interval columns are the union of levels across forecasts, so series
    forecast with different levels still share one header.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    levels = sorted({lv for fc in forecasts for lv in fc.levels})
    fieldnames = ["series_id", "strategy", "step", "timestamp", "point"]
    for lv in levels:
        pct = f"{lv * 100:g}"
        fieldnames += [f"lower_{pct}", f"upper_{pct}"]

    n_rows = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for fc in sorted(forecasts, key=lambda x: x.series_id):
            for s in fc.steps:
                row: dict[str, Any] = {
                    "series_id": fc.series_id,
                    "strategy":  fc.strategy,
                    "step":      s.step,
                    "timestamp": s.timestamp.isoformat(),
                    "point":     _fmt(s.point),
                }
                for iv in s.intervals:
                    pct = f"{iv.level * 100:g}"
                    row[f"lower_{pct}"] = _fmt(iv.lower)
                    row[f"upper_{pct}"] = _fmt(iv.upper)
                writer.writerow(row)
                n_rows += 1
    log.info("Forecast CSV written: %s (%d rows)", path, n_rows)


def write_comparison_csv(frame: pd.DataFrame, path: Path) -> None:
    """Write the per-(series, strategy) comparison frame as CSV."""
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False, float_format="%.4f")
    log.info("Comparison CSV written: %s (%d rows)", path, len(frame))


def write_ranking_csv(rankings: Sequence[StrategyRanking], path: Path) -> None:
    """Write the cross-series ranking as CSV."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = ["rank", "strategy", "mean_mse", "mean_mape", "n_series", "n_samples"]
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for r in rankings:
            writer.writerow({
                "rank":      r.rank,
                "strategy":  r.strategy,
                "mean_mse":  _fmt(r.mean_mse),
                "mean_mape": _fmt(r.mean_mape),
                "n_series":  r.n_series,
                "n_samples": r.n_samples,
            })
    log.info("Ranking CSV written: %s", path)


def write_failures_csv(failures: Sequence[FailureReport], path: Path) -> None:
    """Write FailureReports as CSV (header only when there are none)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fieldnames = ["series_id", "strategy", "stage", "kind", "message"]
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for fr in failures:
            writer.writerow({k: v for k, v in asdict(fr).items() if k in fieldnames})
    log.info("Failures CSV written: %s (%d rows)", path, len(failures))


# ── JSON manifest ──────────────────────────────────────────────────────────────

def build_run_manifest(
    command: str,
    run_slug: str,
    n_series: int,
    n_succeeded: int,
    failures: Sequence[FailureReport],
    cancelled: Sequence[str],
    rankings: Sequence[StrategyRanking],
    output_files: dict[str, Path],
    config_snapshot: dict[str, Any],
) -> dict[str, Any]:
    """Build a JSON manifest summarising one run."""
    return {
        "schema_version": "1.0",
        "built_at":     datetime.now(tz=timezone.utc).isoformat(),
        "command":      command,
        "run_slug":     run_slug,
        "series_count": n_series,
        "succeeded":    n_succeeded,
        "failed":       len(failures),
        "cancelled":    list(cancelled),
        "best_strategy": rankings[0].strategy if rankings else None,
        "ranking": [asdict(r) for r in rankings],
        "output_files": {k: str(v) for k, v in output_files.items()},
        "config_snapshot": config_snapshot,
    }


def write_manifest(manifest: dict[str, Any], path: Path) -> None:
    """Write the manifest dict as pretty-printed JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, default=str)
    log.info("Run manifest written: %s", path)


def make_output_dir(base_dir: str | Path, command: str, run_slug: str) -> Path:
    """Build the deterministic output directory path for one run."""
    return Path(base_dir) / f"{command}_{run_slug}"


def _fmt(v: float | None) -> str:
    """Format float to 4 decimal places, or empty string for None."""
    if v is None:
        return ""
    return f"{v:.4f}"
