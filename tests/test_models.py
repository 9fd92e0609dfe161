from __future__ import annotations

import math

import numpy as np
import pytest

from labtelemetry.errors import InsufficientData, NoIntersection
from labtelemetry.models import combined_domain, fit_quadratic, intersect


def test_quadratic_fit_recovers_exact_coefficients() -> None:
    x = np.array([0.0, 1.0, 2.0, 3.0, 4.0])
    y = 2 * x**2 - 3 * x + 5
    fit = fit_quadratic(x, y)
    assert fit.coefficients == pytest.approx((2.0, -3.0, 5.0), abs=1e-9)
    assert fit.mse == pytest.approx(0.0, abs=1e-18)
    assert fit.evaluate(5.0) == pytest.approx(40.0)
    assert fit.domain == (0.0, 4.0)


def test_quadratic_fit_mse_with_noise() -> None:
    rng = np.random.default_rng(1234)
    x = np.linspace(0.0, 100.0, 21)
    noise = rng.normal(scale=0.5, size=x.size)
    fit = fit_quadratic(x, 0.01 * x**2 + x + 1800 + noise)
    assert fit.a == pytest.approx(0.01, abs=1e-3)
    assert fit.mse == pytest.approx(float(np.mean(fit.residuals**2)))
    assert 0.0 < fit.mse < 1.0


def test_quadratic_fit_matches_numpy_polyfit() -> None:
    x = np.array([10.0, 20.0, 35.0, 50.0, 80.0, 95.0])
    y = np.array([1903.1, 1861.0, 1820.4, 1800.2, 1788.9, 1801.7])
    fit = fit_quadratic(x, y)
    expected = np.polyfit(x, y, 2)
    assert fit.coefficients == pytest.approx(tuple(expected), rel=1e-5)


@pytest.mark.parametrize(
    "x,y",
    [
        ([1.0, 1.0, 2.0, 2.0], [1.0, 2.0, 3.0, 4.0]),
        ([1.0, 2.0], [1.0, 2.0]),
        ([], []),
        ([1.0, 2.0, 3.0], [1.0, 2.0]),
    ],
)
def test_quadratic_fit_rejects_degenerate_input(x, y) -> None:
    with pytest.raises(InsufficientData):
        fit_quadratic(x, y)


def _fit(a: float, b: float, c: float, xs=(0.0, 1.0, 2.0, 3.0)):
    x = np.asarray(xs)
    return fit_quadratic(x, a * x**2 + b * x + c)


def test_intersection_picks_non_negative_root() -> None:
    point = intersect(_fit(1.0, 0.0, 0.0), _fit(-1.0, 0.0, 4.0))
    assert point.x == pytest.approx(math.sqrt(2.0))
    assert point.y == pytest.approx(2.0)


def test_intersection_respects_domain() -> None:
    # roots at x=1 and x=3
    upper = _fit(1.0, -4.0, 3.0)
    flat = _fit(0.0, 0.0, 0.0)
    assert intersect(upper, flat).x == pytest.approx(1.0)
    assert intersect(upper, flat, domain=(2.0, 4.0)).x == pytest.approx(3.0)
    with pytest.raises(NoIntersection):
        intersect(upper, flat, domain=(5.0, 9.0))


def test_intersection_of_linear_difference() -> None:
    point = intersect(_fit(1.0, 1.0, 0.0), _fit(1.0, 0.0, 2.0))
    assert point.x == pytest.approx(2.0)
    assert point.y == pytest.approx(6.0)


def test_no_real_intersection() -> None:
    with pytest.raises(NoIntersection):
        intersect(_fit(1.0, 0.0, 1.0), _fit(-1.0, 0.0, -1.0))
    with pytest.raises(NoIntersection):
        intersect(_fit(1.0, 0.0, 1.0), _fit(1.0, 0.0, 2.0))


def test_negative_only_crossing_is_rejected() -> None:
    # y=x+5 and y=0 cross at x=-5 only
    with pytest.raises(NoIntersection):
        intersect(_fit(0.0, 1.0, 5.0), _fit(0.0, 0.0, 0.0))


def test_combined_domain() -> None:
    assert combined_domain(_fit(1, 0, 0, xs=(1, 2, 3)), _fit(1, 0, 0, xs=(2, 5, 6))) == (1.0, 6.0)
