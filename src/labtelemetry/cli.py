"""Command line interface for the labtelemetry package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .demo import run_demo
from .device.runner import device_app
from .pipeline import FitComparison, run_comparison

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})
app.add_typer(device_app, name="device")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, WARNING...)."),
) -> None:
    """Instrument telemetry acquisition and reduction."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_comparison(result: FitComparison) -> None:
    for label, fit, error in (
        (result.label_a, result.fit_a, result.error_a),
        (result.label_b, result.fit_b, result.error_b),
    ):
        if fit is None:
            typer.echo(f"{label}: no fit ({error})")
        else:
            typer.echo(f"{label}: a={fit.a:.6g} b={fit.b:.6g} c={fit.c:.6g} (MSE={fit.mse:.3f})")
    if result.intersection is None:
        typer.echo(f"Intersection: none ({result.intersection_error})")
    else:
        typer.echo(f"Intersection: x={result.intersection.x:.2f} y={result.intersection.y:.0f}")


@app.command()
def fit(
    input_path: Path = typer.Option(..., "--in", help="Input CSV with the measured series."),
    x: str = typer.Option("distance", "--x", help="Abscissa column."),
    a: str = typer.Option("period_a", "--a", help="First series column."),
    b: str = typer.Option("period_b", "--b", help="Second series column."),
    unbounded: bool = typer.Option(
        False, "--unbounded", help="Accept crossings outside the measured range (non-negative x)."
    ),
) -> None:
    """Fit quadratics to two series and report where they cross."""

    try:
        result = run_comparison(input_path, x=x, a=a, b=b, domain=None if unbounded else "data")
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc
    _echo_comparison(result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo data."),
) -> None:
    """Generate a synthetic pendulum dataset and fit it."""

    result = run_demo(out_dir)
    _echo_comparison(result)
    typer.echo(f"Demo dataset written to {out_dir}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
