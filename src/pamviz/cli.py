from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from rich.console import Console
from rich.table import Table

from pamviz.core.config import PamConfig, PlotOptions
from pamviz.core.data import load_dataset, ped_from_config, validate_dataset
from pamviz.core.errors import PamVizError
from pamviz.logging_config import setup_logging
from pamviz.model.pam import PamModel, fit_pam_from_config
from pamviz.viz.pam_plots import save_pam_plot


app = typer.Typer(add_completion=False, help="Piece-wise exponential additive model effect plots")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
):
    setup_logging(logging.DEBUG if verbose else logging.INFO, log_file=log_file)


def _load_cfg(config: str) -> PamConfig:
    return PamConfig.from_yaml(config)


def _fail(err: Exception) -> typer.Exit:
    console.print(f"[red]{err}[/red]")
    return typer.Exit(code=1)


def _print_dataframe(df: pd.DataFrame, title: str, max_rows: int = 20) -> None:
    tbl = Table(title=title, show_lines=False)
    for c in df.columns:
        tbl.add_column(str(c))
    for _, row in df.head(max_rows).iterrows():
        tbl.add_row(*[str(row[c]) for c in df.columns])
    console.print(tbl)
    if len(df) > max_rows:
        console.print(f"(showing first {max_rows} of {len(df)} rows)")


def _plot_options(base: PlotOptions, **overrides) -> PlotOptions:
    """Apply the command-line overrides that were given (not None) on top of the config."""

    options = base.model_copy(update={k: v for k, v in overrides.items() if v is not None})
    # model_copy does not re-run validators.
    return PlotOptions.model_validate(options.model_dump())


@app.command("validate-data")
def validate_data(
    config: str = typer.Option(..., "--config", help="Path to project YAML config"),
    data: str = typer.Argument(..., help="Dataset CSV or Parquet (one row per subject)"),
    strict: bool = typer.Option(True, "--strict/--no-strict", help="Fail on non-numeric values"),
):
    cfg = _load_cfg(config)
    df = load_dataset(data)
    try:
        validate_dataset(df, cfg, strict=strict)
    except (PamVizError, ValueError) as e:
        raise _fail(e) from e
    console.print("Data validated successfully.")


@app.command("split")
def split(
    config: str = typer.Option(..., "--config"),
    data: str = typer.Option(..., "--data"),
    output: str = typer.Option("ped.csv", "--output"),
):
    """Write the piece-wise exponential (PED) version of a dataset."""

    cfg = _load_cfg(config)
    df = load_dataset(data)
    try:
        ped = ped_from_config(df, cfg)
    except PamVizError as e:
        raise _fail(e) from e
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    ped.to_csv(output, index=False)
    console.print(f"Wrote {len(ped)} PED rows to {output}")


@app.command("fit")
def fit(
    config: str = typer.Option(..., "--config"),
    data: str = typer.Option(..., "--data"),
    out: str = typer.Option("pam.joblib", "--out"),
):
    """Split raw data into PED format, fit the PAM and save it."""

    cfg = _load_cfg(config)
    df = load_dataset(data)
    try:
        ped = ped_from_config(df, cfg)
        model = fit_pam_from_config(ped, cfg)
    except PamVizError as e:
        raise _fail(e) from e

    Path(out).parent.mkdir(parents=True, exist_ok=True)
    model.save(out)
    console.print(f"Fitted PAM with predictors={cfg.predictors}. Saved to {out}")


@app.command("terms")
def terms(
    model: str = typer.Option(..., "--model"),
):
    pam = PamModel.load(model)
    _print_dataframe(pam.term_table(), title="Model terms", max_rows=100)


@app.command("plot")
def plot(
    config: str = typer.Option(..., "--config"),
    model: str = typer.Option(..., "--model"),
    data: str = typer.Option(..., "--data", help="Raw data the model was fit to"),
    predictors: Optional[List[str]] = typer.Option(
        None, "--predictor", help="Predictor(s) to plot; defaults to all configured predictors"
    ),
    out_dir: str = typer.Option("plots", "--out-dir"),
    area: Optional[bool] = typer.Option(
        None, "--area/--no-area", help="Overlay significant cells only / whole significant time rows"
    ),
    se: Optional[float] = typer.Option(None, "--se", help="Standard errors for the significance band"),
    num_grid: Optional[int] = typer.Option(None, "--num-grid"),
    levels: Optional[List[float]] = typer.Option(None, "--level", help="Contour level (repeatable)"),
    no_rugx: bool = typer.Option(False, "--no-rugx", help="Skip the response rug"),
    no_rugy: bool = typer.Option(False, "--no-rugy", help="Skip the predictor rug"),
    dpi: int = typer.Option(200, "--dpi"),
):
    """Save one effect-surface plot per predictor (pam_<predictor>.png)."""

    cfg = _load_cfg(config)
    pam = PamModel.load(model)
    df = load_dataset(data)

    try:
        options = _plot_options(
            cfg.plot,
            area=area,
            se=se,
            num_grid=num_grid,
            levs=list(levels) if levels else None,
            rugx=False if no_rugx else None,
            rugy=False if no_rugy else None,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    plot_predictors = list(predictors) if predictors else list(cfg.predictors)
    out_dir_p = Path(out_dir)

    for p in plot_predictors:
        out_path = out_dir_p / f"pam_{p}.png"
        try:
            save_pam_plot(pam, p, df, out_path=out_path, options=options, dpi=dpi)
        except PamVizError as e:
            raise _fail(e) from e
        console.print(f"Wrote: {out_path}")
