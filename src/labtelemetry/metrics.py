"""Reductions over a sample window: averages, block sums and outlier flags."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import InsufficientSamples
from .sampling import WindowSpec

OUTLIER_THRESHOLD = 0.05


@dataclass(frozen=True)
class OutlierReport:
    flags: Tuple[bool, ...]
    indices: Tuple[int, ...]
    mean: Optional[float]
    threshold: float

    @property
    def has_outliers(self) -> bool:
        return bool(self.indices)


@dataclass(frozen=True)
class WindowSummary:
    count: int
    average: Optional[float]
    block_sums: Optional[list[float]]
    outliers: OutlierReport


def average(samples: Sequence[float]) -> Optional[float]:
    """Arithmetic mean, or None for an empty window."""
    values = np.asarray(samples, dtype=float)
    if values.size == 0:
        return None
    return float(values.mean())


def block_sums(samples: Sequence[float], count: int = 90, block: int = 10) -> list[float]:
    """
    Sum consecutive blocks of the most recent *count* samples.

    With 90 period readings in blocks of 10 this yields the cumulative time of
    the 10th, 20th, ... 90th oscillation.
    """
    if block < 1 or count < block or count % block:
        raise ValueError(f"count ({count}) must be a positive multiple of block ({block})")
    values = np.asarray(samples, dtype=float)
    if values.size < count:
        raise InsufficientSamples(f"Block sums need {count} samples, got {values.size}")
    recent = values[-count:]
    return [float(total) for total in recent.reshape(-1, block).sum(axis=1)]


def detect_outliers(
    samples: Sequence[float],
    last: int = 90,
    threshold: float = OUTLIER_THRESHOLD,
) -> OutlierReport:
    """
    Flag samples deviating from the mean of the last *last* samples by more
    than *threshold* (relative to that mean).

    Flags cover the whole window; samples before the inspected tail are never
    flagged. Indices refer to positions in *samples*.
    """
    values = np.asarray(samples, dtype=float)
    if values.size == 0:
        return OutlierReport(flags=(), indices=(), mean=None, threshold=threshold)
    start = max(values.size - last, 0)
    tail = values[start:]
    mean = float(tail.mean())
    deviating = np.abs(tail - mean) > threshold * abs(mean)
    flags = np.zeros(values.size, dtype=bool)
    flags[start:] = deviating
    indices = tuple(int(idx) for idx in np.flatnonzero(flags))
    return OutlierReport(
        flags=tuple(bool(flag) for flag in flags),
        indices=indices,
        mean=mean,
        threshold=threshold,
    )


def summarize_window(
    samples: Sequence[float],
    spec: WindowSpec,
    *,
    block_count: int = 90,
    block_size: int = 10,
    outlier_window: int = 90,
    outlier_threshold: float = OUTLIER_THRESHOLD,
) -> WindowSummary:
    sums: Optional[list[float]] = None
    if spec.capacity >= block_count and len(samples) >= block_count:
        sums = block_sums(samples, count=block_count, block=block_size)
    return WindowSummary(
        count=len(samples),
        average=average(samples),
        block_sums=sums,
        outliers=detect_outliers(samples, last=outlier_window, threshold=outlier_threshold),
    )
