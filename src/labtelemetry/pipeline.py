"""High level orchestration for two-series fit comparison."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from .data import MeasurementSeries, load_series_csv
from .errors import FitError
from .models import Intersection, QuadraticFit, combined_domain, fit_quadratic, intersect

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitComparison:
    """Fits of two series and their crossing point; failures carry a reason instead of a value."""

    label_a: str
    label_b: str
    fit_a: Optional[QuadraticFit]
    fit_b: Optional[QuadraticFit]
    intersection: Optional[Intersection]
    error_a: Optional[str] = None
    error_b: Optional[str] = None
    intersection_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.intersection is not None


def _try_fit(series: MeasurementSeries) -> Tuple[Optional[QuadraticFit], Optional[str]]:
    x, y = series.as_arrays()
    try:
        return fit_quadratic(x, y), None
    except FitError as exc:
        logger.info("No fit for %s: %s", series.label, exc)
        return None, str(exc)


def compare_series(
    series_a: MeasurementSeries,
    series_b: MeasurementSeries,
    *,
    domain: str | Tuple[float, float] | None = "data",
) -> FitComparison:
    """
    Fit both series and intersect the curves.

    `domain="data"` restricts the crossing to the x range spanned by the
    observations, `None` accepts any non-negative crossing, and an explicit
    `(lo, hi)` tuple is used as given.
    """

    fit_a, error_a = _try_fit(series_a)
    fit_b, error_b = _try_fit(series_b)
    intersection: Optional[Intersection] = None
    intersection_error: Optional[str] = None
    if fit_a is None or fit_b is None:
        intersection_error = "Both series need a fit before intersecting"
    else:
        bounds = combined_domain(fit_a, fit_b) if domain == "data" else domain
        try:
            intersection = intersect(fit_a, fit_b, bounds)  # type: ignore[arg-type]
        except FitError as exc:
            intersection_error = str(exc)
    return FitComparison(
        label_a=series_a.label,
        label_b=series_b.label,
        fit_a=fit_a,
        fit_b=fit_b,
        intersection=intersection,
        error_a=error_a,
        error_b=error_b,
        intersection_error=intersection_error,
    )


def run_comparison(
    path: str | Path,
    *,
    x: str,
    a: str,
    b: str,
    domain: str | Tuple[float, float] | None = "data",
) -> FitComparison:
    """Load two columns of a CSV and compare their quadratic fits."""

    series = load_series_csv(path, x, [a, b])
    return compare_series(series[a], series[b], domain=domain)
