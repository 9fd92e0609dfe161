"""Quadratic least-squares fits and curve intersections."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import InsufficientData, NoIntersection

_EPS = 1e-12


@dataclass
class QuadraticFit:
    """y = a*x**2 + b*x + c fitted by least squares."""

    a: float
    b: float
    c: float
    mse: float
    x: np.ndarray
    y: np.ndarray
    predictions: np.ndarray
    residuals: np.ndarray

    @property
    def coefficients(self) -> Tuple[float, float, float]:
        return self.a, self.b, self.c

    @property
    def domain(self) -> Tuple[float, float]:
        return float(self.x.min()), float(self.x.max())

    def evaluate(self, x: float | np.ndarray) -> float | np.ndarray:
        values = self.a * np.square(x) + self.b * np.asarray(x) + self.c
        return float(values) if np.ndim(values) == 0 else values

    def curve(self, points: int = 50) -> Tuple[np.ndarray, np.ndarray]:
        """Evenly spaced samples of the fitted curve across the observed domain."""
        lo, hi = self.domain
        xs = np.linspace(lo, hi, max(points, 2))
        return xs, self.evaluate(xs)

    def as_dict(self) -> dict[str, float]:
        return {"a": self.a, "b": self.b, "c": self.c, "mse": self.mse}


@dataclass(frozen=True)
class Intersection:
    x: float
    y: float


def build_design_matrix(x: np.ndarray) -> np.ndarray:
    """Columns x**2, x, 1."""

    if x.ndim != 1:
        raise ValueError("x must be 1-D array")
    return np.column_stack([np.square(x), x, np.ones_like(x)])


def fit_quadratic(x: Sequence[float] | np.ndarray, y: Sequence[float] | np.ndarray) -> QuadraticFit:
    """Solve the 3x3 normal equations (X^T X) beta = X^T y for (a, b, c)."""

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if xs.shape != ys.shape or xs.ndim != 1:
        raise InsufficientData("x and y must be 1-D sequences of equal length")
    finite = np.isfinite(xs) & np.isfinite(ys)
    xs, ys = xs[finite], ys[finite]
    if np.unique(xs).size < 3:
        raise InsufficientData(f"Quadratic fit needs at least 3 distinct x values, got {np.unique(xs).size}")

    X = build_design_matrix(xs)
    try:
        beta = np.linalg.solve(X.T @ X, X.T @ ys)
    except np.linalg.LinAlgError as exc:  # pragma: no cover - guarded by distinct-x check
        raise InsufficientData("Normal equations are singular") from exc
    predictions = X @ beta
    residuals = ys - predictions
    a, b, c = (float(value) for value in beta)
    return QuadraticFit(
        a=a,
        b=b,
        c=c,
        mse=float(np.mean(np.square(residuals))),
        x=xs,
        y=ys,
        predictions=predictions,
        residuals=residuals,
    )


def _real_roots(a: float, b: float, c: float) -> list[float]:
    scale = max(abs(a), abs(b), abs(c), 1.0)
    if abs(a) <= _EPS * scale:
        if abs(b) <= _EPS * scale:
            return []
        return [-c / b]
    disc = b * b - 4.0 * a * c
    if disc < 0:
        if disc > -_EPS * scale * scale:
            disc = 0.0
        else:
            return []
    root = math.sqrt(disc)
    # numerically stable pair
    q = -0.5 * (b + math.copysign(root, b))
    roots = [q / a]
    if q != 0.0:
        roots.append(c / q)
    return sorted(set(roots))


def intersect(
    fit_a: QuadraticFit,
    fit_b: QuadraticFit,
    domain: Optional[Tuple[float, float]] = None,
) -> Intersection:
    """
    Point where the two fitted curves cross.

    With a *domain* the root must lie inside it; otherwise the root must be
    non-negative. When two roots qualify the smaller one is taken.
    """

    roots = _real_roots(fit_a.a - fit_b.a, fit_a.b - fit_b.b, fit_a.c - fit_b.c)
    if not roots:
        raise NoIntersection("Fitted curves have no real intersection")
    if domain is not None:
        lo, hi = sorted(domain)
        tol = 1e-9 * max(abs(lo), abs(hi), 1.0)
        candidates = [root for root in roots if lo - tol <= root <= hi + tol]
        if not candidates:
            raise NoIntersection(
                f"Curves cross at {', '.join(f'{r:.6g}' for r in roots)}, outside [{lo:.6g}, {hi:.6g}]"
            )
    else:
        candidates = [root for root in roots if root >= 0.0]
        if not candidates:
            raise NoIntersection("Curves only cross at negative x")
    x = min(candidates)
    return Intersection(x=float(x), y=float(fit_a.evaluate(x)))


def combined_domain(fit_a: QuadraticFit, fit_b: QuadraticFit) -> Tuple[float, float]:
    """Range of x covered by the observations of both fits combined."""
    lo_a, hi_a = fit_a.domain
    lo_b, hi_b = fit_b.domain
    return min(lo_a, lo_b), max(hi_a, hi_b)
