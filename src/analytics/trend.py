"""Least-squares trend fitting over evenly spaced observations."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

SLOPE_THRESHOLD = 0.05


@dataclass(frozen=True)
class TrendFit:
    slope: float
    intercept: float


def fit_linear_trend(values: list[float]) -> TrendFit | None:
    """Fit ``value = slope * index + intercept`` by ordinary least squares.

    Returns None for fewer than two observations.
    """
    n = len(values)
    if n < 2:
        return None

    x = np.arange(n, dtype=float)
    y = np.asarray(values, dtype=float)
    x_mean = x.mean()
    y_mean = y.mean()
    denom = float(np.sum((x - x_mean) ** 2))
    slope = float(np.sum((x - x_mean) * (y - y_mean)) / denom)
    intercept = float(y_mean - slope * x_mean)
    return TrendFit(slope=slope, intercept=intercept)


def classify_slope(slope: float, threshold: float = SLOPE_THRESHOLD) -> str:
    """``improving`` above +threshold, ``declining`` below -threshold."""
    if slope > threshold:
        return "improving"
    if slope < -threshold:
        return "declining"
    return "stable"
