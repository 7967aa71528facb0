"""Trend analysis over a metric's history."""

from __future__ import annotations

from dataclasses import dataclass

from src.analytics.trend import classify_slope, fit_linear_trend


@dataclass(frozen=True)
class DataPoint:
    date: str
    value: float


@dataclass(frozen=True)
class TrendResult:
    current_value: float
    trend: str  # improving, declining, stable
    slope: float
    change_rate: float
    projection: float
    data_points: list[DataPoint]
    metric: str = ""


class TrendAnalyzer:
    """Least-squares trend over an ordered series of data points."""

    def analyze(self, data_points: list[DataPoint], metric: str = "") -> TrendResult | None:
        """Classify the series and project one step ahead.

        Points are taken in the given order; ``date`` is informational only.
        Returns None when fewer than two points are supplied.
        """
        fit = fit_linear_trend([p.value for p in data_points])
        if fit is None:
            return None

        first = data_points[0].value
        last = data_points[-1].value
        change_rate = (last - first) / first * 100 if first != 0 else 0.0

        return TrendResult(
            current_value=last,
            trend=classify_slope(fit.slope),
            slope=fit.slope,
            change_rate=change_rate,
            projection=last + fit.slope,
            data_points=list(data_points),
            metric=metric,
        )
