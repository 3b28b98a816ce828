"""
series-forecaster CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()`` and apply command-line overrides.
  2. Configure logging.
  3. Load the input series from a long-format CSV (``series_id, ds, y``).
  4. Run the backtest or forecast.
  5. Write CSV / JSON outputs and report the result to stdout.

Install and run::

    pip install -e .
    series-forecaster --help
    series-forecaster validate-config
    series-forecaster backtest --input data/regions.csv
    series-forecaster forecast --input data/regions.csv --horizon 14 --save-models
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer

app = typer.Typer(
    name="series-forecaster",
    help="Rolling-origin backtesting and forecasting for per-category time series.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from series_forecaster.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from series_forecaster.utils.logging import configure_logging
    configure_logging(config.logging)


def _apply_overrides(config, **overrides):
    """Return ``config`` with non-None forecasting overrides applied and validated."""
    from series_forecaster.config import validate_forecasting_config
    from series_forecaster.errors import InvalidConfiguration
    from series_forecaster.strategies.registry import KNOWN_STRATEGIES

    update = {k: v for k, v in overrides.items() if v is not None and v != []}
    forecasting = config.forecasting.model_copy(update=update)
    try:
        validate_forecasting_config(forecasting, known_strategies=KNOWN_STRATEGIES)
    except InvalidConfiguration as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    return config.model_copy(update={"forecasting": forecasting})


def _load_repository_or_exit(input_path: str, freq: Optional[str], series_ids: Optional[List[str]]):
    """Read a long-format CSV into a SeriesRepository, exiting on bad input."""
    import pandas as pd

    from series_forecaster.errors import InvalidSeries
    from series_forecaster.series.repository import SeriesRepository

    path = Path(input_path)
    if not path.exists():
        typer.echo(f"[ERROR] Input file not found: {path}", err=True)
        raise typer.Exit(code=1)

    try:
        repo = SeriesRepository.from_frame(pd.read_csv(path), freq=freq)
    except (KeyError, InvalidSeries, ValueError) as exc:
        typer.echo(f"[ERROR] Could not load series from {path}: {exc}", err=True)
        raise typer.Exit(code=1)

    unknown = [sid for sid in series_ids or [] if sid not in repo]
    if unknown:
        typer.echo(f"[ERROR] Unknown series id(s): {', '.join(unknown)}", err=True)
        raise typer.Exit(code=1)
    return repo


def _print_ranking(rankings) -> None:
    typer.echo(f"  {'rank':>4}  {'strategy':<16} {'mean_mse':>12} {'mean_mape':>10}  series")
    for r in rankings:
        mse = f"{r.mean_mse:.4f}" if r.mean_mse is not None else "-"
        mape = f"{r.mean_mape:.2f}%" if r.mean_mape is not None else "-"
        typer.echo(f"  {r.rank:>4}  {r.strategy:<16} {mse:>12} {mape:>10}  {r.n_series}")


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    from series_forecaster.config import validate_forecasting_config
    from series_forecaster.errors import InvalidConfiguration
    from series_forecaster.strategies.registry import KNOWN_STRATEGIES

    config = _load_config_or_exit(config_path)
    fc = config.forecasting
    try:
        validate_forecasting_config(fc, known_strategies=KNOWN_STRATEGIES)
    except InvalidConfiguration as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Candidates:       {', '.join(fc.candidate_strategies)}")
    typer.echo(f"  Selection metric: {fc.selection_metric}")
    typer.echo(f"  Initial window:   {fc.initial_window_size}")
    typer.echo(f"  Horizon:          {fc.horizon}")
    typer.echo(f"  Season length:    {fc.season_length}")
    typer.echo(f"  Confidence:       {', '.join(f'{c:.0%}' for c in fc.confidence_levels)}")
    typer.echo(f"  Max workers:      {fc.max_workers}")
    typer.echo(f"  Log level:        {config.logging.level}")
    typer.echo(f"  Debug mode:       {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(json.dumps(config.model_dump(), indent=2, default=str))

    typer.echo("")
    typer.echo("[OK] Config valid.")


@app.command("backtest")
def backtest(
    input_path: str = typer.Option(
        ...,
        "--input",
        help="Long-format CSV with series_id, ds, y columns.",
    ),
    series: Optional[List[str]] = typer.Option(
        None,
        "--series",
        help="Series id to include (repeatable). All series if omitted.",
    ),
    strategies: Optional[List[str]] = typer.Option(
        None,
        "--strategy",
        help="Candidate strategy (repeatable). Uses config candidates if omitted.",
    ),
    window: Optional[int] = typer.Option(
        None,
        "--window",
        help="Initial training window size. Uses config default if omitted.",
    ),
    horizon: Optional[int] = typer.Option(
        None,
        "--horizon",
        help="Forecast horizon at each origin. Uses config default if omitted.",
    ),
    metric: Optional[str] = typer.Option(
        None,
        "--metric",
        help="Selection metric: mse or mape.",
    ),
    freq: Optional[str] = typer.Option(
        None,
        "--freq",
        help="Frequency alias (e.g. D, W). Inferred from timestamps if omitted.",
    ),
    output_dir: Optional[str] = typer.Option(
        None,
        "--output-dir",
        help="Base output directory. Uses config [output] output_dir if omitted.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Backtest candidate strategies on every series and rank them.

    Writes comparison.csv, ranking.csv, failures.csv and manifest.json.
    """
    from series_forecaster.backtest.comparison import compare, comparison_frame
    from series_forecaster.backtest.evaluator import Backtester
    from series_forecaster.backtest.reporter import (
        build_run_manifest,
        make_output_dir,
        write_comparison_csv,
        write_failures_csv,
        write_manifest,
        write_ranking_csv,
    )
    from series_forecaster.errors import FailureReport, ForecastingError
    from series_forecaster.strategies.registry import build_strategies
    from series_forecaster.utils.time_utils import make_run_slug

    config = _load_config_or_exit(config_path)
    config = _apply_overrides(
        config,
        candidate_strategies=strategies,
        initial_window_size=window,
        horizon=horizon,
        selection_metric=metric.lower() if metric else None,
    )
    _configure_logging(config)
    fc = config.forecasting

    repo = _load_repository_or_exit(input_path, freq, series)
    ids = series or repo.ids()
    candidates = build_strategies(fc.candidate_strategies, config)
    backtester = Backtester(fc.initial_window_size, fc.horizon, max_workers=fc.max_workers)

    typer.echo(
        f"backtest | series={len(ids)} | window={fc.initial_window_size} | "
        f"horizon={fc.horizon} | candidates={', '.join(fc.candidate_strategies)}"
    )

    results = {}
    failures: list[FailureReport] = []
    for sid in ids:
        try:
            result = backtester.evaluate(repo.get(sid), candidates)
        except ForecastingError as exc:
            failures.append(FailureReport.from_exception(exc, stage="BACKTEST", series_id=sid))
            typer.echo(f"  [FAIL] {sid}: {exc.kind}: {exc.message}")
            continue
        results[sid] = result
        failures.extend(result.failures[name] for name in sorted(result.failures))
        typer.echo(
            f"  [OK] {sid}: {len(result.origins)} origin(s), "
            f"{len(result)} strategy(ies) scored, {len(result.failures)} failed"
        )

    rankings = compare(results, metric=fc.selection_metric) if any(len(r) for r in results.values()) else []

    run_slug = make_run_slug()
    out_dir = make_output_dir(output_dir or config.output.output_dir, "backtest", run_slug)
    files = {
        "comparison_csv": out_dir / "comparison.csv",
        "ranking_csv":    out_dir / "ranking.csv",
        "failures_csv":   out_dir / "failures.csv",
    }
    write_comparison_csv(comparison_frame(results), files["comparison_csv"])
    write_ranking_csv(rankings, files["ranking_csv"])
    write_failures_csv(failures, files["failures_csv"])
    write_manifest(
        build_run_manifest(
            command="backtest",
            run_slug=run_slug,
            n_series=len(ids),
            n_succeeded=len(results),
            failures=failures,
            cancelled=[],
            rankings=rankings,
            output_files=files,
            config_snapshot=config.model_dump(),
        ),
        out_dir / "manifest.json",
    )

    typer.echo("")
    if not rankings:
        typer.echo("[ERROR] No strategy could be scored on any series.", err=True)
        raise typer.Exit(code=1)
    _print_ranking(rankings)
    typer.echo("")
    typer.echo(f"[OK] Backtest written to {out_dir}")


@app.command("forecast")
def forecast(
    input_path: str = typer.Option(
        ...,
        "--input",
        help="Long-format CSV with series_id, ds, y columns.",
    ),
    series: Optional[List[str]] = typer.Option(
        None,
        "--series",
        help="Series id to include (repeatable). All series if omitted.",
    ),
    strategies: Optional[List[str]] = typer.Option(
        None,
        "--strategy",
        help="Candidate strategy (repeatable). Uses config candidates if omitted.",
    ),
    horizon: Optional[int] = typer.Option(
        None,
        "--horizon",
        help="Steps to forecast. Uses config default if omitted.",
    ),
    holdout: Optional[int] = typer.Option(
        None,
        "--holdout",
        help="Trailing points held out and scored. Uses config default if omitted.",
    ),
    freq: Optional[str] = typer.Option(
        None,
        "--freq",
        help="Frequency alias (e.g. D, W). Inferred from timestamps if omitted.",
    ),
    output_dir: Optional[str] = typer.Option(
        None,
        "--output-dir",
        help="Base output directory. Uses config [output] output_dir if omitted.",
    ),
    save_models: bool = typer.Option(
        False,
        "--save-models",
        help="Save each selected fitted model as a joblib artifact.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Select a strategy per series, refit it and forecast with intervals.

    Writes forecasts.csv, comparison.csv, ranking.csv, failures.csv and
    manifest.json.  Exits with code 1 if no series could be forecast.
    """
    from series_forecaster.backtest.reporter import (
        build_run_manifest,
        make_output_dir,
        write_comparison_csv,
        write_failures_csv,
        write_forecasts_csv,
        write_manifest,
        write_ranking_csv,
    )
    from series_forecaster.pipeline.batch import BatchRunner
    from series_forecaster.utils.time_utils import make_run_slug

    config = _load_config_or_exit(config_path)
    config = _apply_overrides(
        config,
        candidate_strategies=strategies,
        horizon=horizon,
        holdout_size=holdout,
    )
    _configure_logging(config)

    repo = _load_repository_or_exit(input_path, freq, series)
    report = BatchRunner(config).run(repo, series_ids=series or None)

    for sid, run in sorted(report.runs.items()):
        if run.succeeded:
            line = f"  [OK] {sid}: {run.selected_strategy}"
            if run.holdout_summary is not None and run.holdout_summary.mse is not None:
                line += f" | holdout mse={run.holdout_summary.mse:.4f}"
            typer.echo(line)
        else:
            typer.echo(f"  [FAIL] {sid}: {run.failure.kind} in {run.failure.stage}: {run.failure.message}")

    run_slug = make_run_slug(report.started_at)
    out_dir = make_output_dir(output_dir or config.output.output_dir, "forecast", run_slug)
    files = {
        "forecasts_csv":  out_dir / "forecasts.csv",
        "comparison_csv": out_dir / "comparison.csv",
        "ranking_csv":    out_dir / "ranking.csv",
        "failures_csv":   out_dir / "failures.csv",
    }
    write_forecasts_csv(list(report.forecasts.values()), files["forecasts_csv"])
    write_comparison_csv(report.comparison, files["comparison_csv"])
    write_ranking_csv(report.ranking, files["ranking_csv"])
    failures = report.failures + report.strategy_failures
    write_failures_csv(failures, files["failures_csv"])

    if save_models:
        model_dir = Path(config.output.model_dir) / run_slug
        for sid, run in sorted(report.successes.items()):
            run.fitted_model.save(model_dir / f"{sid}_{run.selected_strategy}.pkl")
        files["model_dir"] = model_dir
        typer.echo(f"  Models saved to {model_dir}")

    write_manifest(
        build_run_manifest(
            command="forecast",
            run_slug=run_slug,
            n_series=len(report.runs) + len(report.cancelled),
            n_succeeded=len(report.successes),
            failures=failures,
            cancelled=report.cancelled,
            rankings=report.ranking,
            output_files=files,
            config_snapshot=config.model_dump(),
        ),
        out_dir / "manifest.json",
    )

    typer.echo("")
    if not report.successes:
        typer.echo("[ERROR] No series could be forecast.", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"[OK] {len(report.successes)}/{len(report.runs)} series forecast; "
        f"outputs in {out_dir}"
    )


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
