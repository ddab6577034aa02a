"""Statistics helpers for performance analytics"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class SeriesStatistics:
    mean: float
    std_dev: float
    count: int


@dataclass(frozen=True)
class RegressionResult:
    slope: float
    intercept: float
    r2: float
    residual_std_error: float
    change_percent: float
    forecast: Optional[Tuple[float, float, float]] = None  # value, low, high


def describe(values: Sequence[float]) -> SeriesStatistics:
    """Mean and population standard deviation"""
    if len(values) == 0:
        return SeriesStatistics(mean=0.0, std_dev=0.0, count=0)
    array = np.asarray(values, dtype=float)
    return SeriesStatistics(
        mean=float(array.mean()),
        std_dev=float(array.std()),
        count=len(array),
    )


def percentiles(values: Sequence[float], points: Sequence[float] = (50, 95, 99)) -> Tuple[float, ...]:
    if len(values) == 0:
        return tuple(0.0 for _ in points)
    array = np.asarray(values, dtype=float)
    return tuple(float(p) for p in np.percentile(array, points))


def linear_regression(
    xs: Sequence[float],
    ys: Sequence[float],
    forecast_min_r2: float = 0.7,
    z_score: float = 1.96,
) -> Optional[RegressionResult]:
    """
    Ordinary least squares over (x, y) pairs.

    Returns None for fewer than three points or when every x is equal.
    A one-step-ahead forecast at x = last + 1 is attached when R² exceeds
    `forecast_min_r2`.
    """
    n = len(xs)
    if n < 3 or n != len(ys):
        return None

    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)

    x_mean = x.mean()
    y_mean = y.mean()
    sxx = float(np.sum((x - x_mean) ** 2))
    if sxx == 0:
        return None

    slope = float(np.sum((x - x_mean) * (y - y_mean)) / sxx)
    intercept = float(y_mean - slope * x_mean)

    predicted = slope * x + intercept
    ss_residual = float(np.sum((y - predicted) ** 2))
    ss_total = float(np.sum((y - y_mean) ** 2))
    if ss_total == 0:
        r2 = 1.0 if ss_residual == 0 else 0.0
    else:
        r2 = 1 - ss_residual / ss_total

    residual_std_error = math.sqrt(ss_residual / (n - 2))

    first, last = float(y[0]), float(y[-1])
    change_percent = (last - first) / first * 100 if first != 0 else 0.0

    forecast = None
    if r2 > forecast_min_r2:
        next_x = float(x[-1]) + 1
        next_y = slope * next_x + intercept
        margin = z_score * residual_std_error
        forecast = (next_y, next_y - margin, next_y + margin)

    return RegressionResult(
        slope=slope,
        intercept=intercept,
        r2=r2,
        residual_std_error=residual_std_error,
        change_percent=change_percent,
        forecast=forecast,
    )


def weighted_mean(values: Sequence[float], weights: Sequence[float]) -> float:
    total = float(sum(weights))
    if total == 0:
        return 0.0
    return float(np.dot(np.asarray(values, dtype=float), np.asarray(weights, dtype=float)) / total)
