"""Measurement series containers and CSV loading."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Sequence

import numpy as np
import pandas as pd


@dataclass
class MeasurementSeries:
    """Ordered (x, y) points of one measured family, kept sorted by x."""

    label: str
    points: list[tuple[float, float]] = field(default_factory=list)

    @classmethod
    def from_arrays(cls, label: str, x: Iterable[float], y: Iterable[float]) -> "MeasurementSeries":
        series = cls(label)
        for xi, yi in zip(x, y):
            series.append(xi, yi)
        return series

    def __len__(self) -> int:
        return len(self.points)

    def append(self, x: float, y: float) -> None:
        self.points.append((float(x), float(y)))
        self.points.sort(key=lambda point: point[0])

    def upsert(self, x: float, y: float) -> None:
        """Replace the point measured at the same *x*, or insert a new one."""
        for idx, (xi, _) in enumerate(self.points):
            if xi == float(x):
                self.points[idx] = (float(x), float(y))
                return
        self.append(x, y)

    def remove(self, index: int) -> tuple[float, float]:
        return self.points.pop(index)

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        if not self.points:
            return np.empty(0), np.empty(0)
        arr = np.asarray(self.points, dtype=float)
        return arr[:, 0], arr[:, 1]

    def to_frame(self) -> pd.DataFrame:
        x, y = self.as_arrays()
        return pd.DataFrame({"x": x, "y": y, "series": self.label})


def load_series_csv(path: str | Path, x: str, columns: Sequence[str]) -> Dict[str, MeasurementSeries]:
    """Load *columns* of the CSV at *path* as series over the shared *x* column.

    Parameters
    ----------
    path:
        CSV file with a header row.
    x:
        Name of the abscissa column (e.g. `distance`).
    columns:
        Names of the ordinate columns, one series each. Rows where either the
        abscissa or that ordinate is missing are skipped for that series.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    df = pd.read_csv(path)
    missing = ({x} | set(columns)) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")

    series: Dict[str, MeasurementSeries] = {}
    for column in columns:
        subset = df[[x, column]].apply(pd.to_numeric, errors="coerce").dropna()
        series[column] = MeasurementSeries.from_arrays(
            column,
            subset[x].to_numpy(dtype=float),
            subset[column].to_numpy(dtype=float),
        )
    return series


def group_series(df: pd.DataFrame, key: str, x: str, y: str) -> Dict[str, MeasurementSeries]:
    """Split a long table into one series per value of the categorical *key*."""

    missing = {key, x, y} - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")
    grouped: Dict[str, MeasurementSeries] = {}
    for value, group in df.sort_values([key, x], kind="mergesort").groupby(key, sort=True):
        label = f"{key}={value:g}" if isinstance(value, (int, float, np.number)) else f"{key}={value}"
        grouped[label] = MeasurementSeries.from_arrays(
            label, group[x].to_numpy(dtype=float), group[y].to_numpy(dtype=float)
        )
    return grouped
