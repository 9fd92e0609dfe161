"""Demo dataset utilities."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

from .pipeline import FitComparison, run_comparison


def create_demo_dataset(points: int = 9, noise_ms: float = 0.5) -> pd.DataFrame:
    """Reversible pendulum: period about both pivots versus weight distance (mm)."""
    rng = np.random.default_rng(42)
    distance = np.linspace(0.0, 100.0, points)
    period_a = 0.02 * distance**2 - 3.0 * distance + 1900.0
    period_b = -0.01 * distance**2 + 1.0 * distance + 1800.0
    period_a += rng.normal(scale=noise_ms, size=points)
    period_b += rng.normal(scale=noise_ms, size=points)
    return pd.DataFrame({"distance": distance, "period_a": period_a, "period_b": period_b})


def run_demo(out_dir: Path) -> FitComparison:
    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / "demo_pendulum.csv"
    create_demo_dataset().to_csv(csv_path, index=False)
    return run_comparison(csv_path, x="distance", a="period_a", b="period_b")
