"""Dashboard aggregator: concurrent fan-out of summary queries with caching.

A summary is built from independent fetches (counts, totals, recent
activity, one per performance metric). They run concurrently as one task
each; the aggregator waits for all of them and merges the results in its
own task, in a fixed order. A failed fetch is logged and its part of the
summary is left at the default value: the dashboard prefers a partial
answer to none.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from src.dashboard.cache import TTLCache
from src.models.common import utc_now
from src.models.dashboard import (
    ActivityItem,
    DashboardSummary,
    MetricSummary,
    TimeInterval,
    TimeSeriesPoint,
)

logger = logging.getLogger(__name__)

PERFORMANCE_METRICS: tuple[str, ...] = (
    "credits_issued",
    "revenue",
    "verification_rate",
    "monitoring_coverage",
)
METRIC_PERIOD = "30d"
TREND_THRESHOLD_PCT = 5.0

SUMMARY_KEY = "dashboard_summary"


@dataclass(frozen=True)
class MetricData:
    current_value: float
    previous_value: float
    period: str


class DashboardDataSource(Protocol):
    async def get_project_count(self, user_id: UUID | None) -> int: ...

    async def get_total_credits(self, user_id: UUID | None) -> float: ...

    async def get_total_revenue(self, user_id: UUID | None) -> float: ...

    async def get_active_monitoring_areas(self, user_id: UUID | None) -> int: ...

    async def get_recent_activity(
        self, user_id: UUID | None, limit: int,
    ) -> list[ActivityItem]: ...

    async def get_metric_value(self, metric: str, period: str) -> MetricData: ...

    async def get_time_series(
        self, metric: str, start: datetime, end: datetime, interval: TimeInterval,
    ) -> list[TimeSeriesPoint]: ...


def summary_cache_key(user_id: UUID | None) -> str:
    return SUMMARY_KEY if user_id is None else f"{SUMMARY_KEY}_{user_id}"


def timeseries_cache_key(
    metric: str, interval: str, start: datetime, end: datetime,
) -> str:
    return f"timeseries_{metric}_{interval}_{start:%Y%m%d}_{end:%Y%m%d}"


def summarize_metric(data: MetricData) -> MetricSummary:
    """Change figures are only computed against a positive previous value."""
    if data.previous_value <= 0:
        return MetricSummary(value=data.current_value, period=data.period)

    change = data.current_value - data.previous_value
    change_pct = change / data.previous_value * 100
    if change_pct > TREND_THRESHOLD_PCT:
        trend = "up"
    elif change_pct < -TREND_THRESHOLD_PCT:
        trend = "down"
    else:
        trend = "stable"
    return MetricSummary(
        value=data.current_value,
        change=change,
        change_percent=change_pct,
        period=data.period,
        trend=trend,
    )


class DashboardAggregator:
    """Builds and caches dashboard summaries and time series."""

    def __init__(
        self,
        source: DashboardDataSource,
        cache: TTLCache,
        *,
        summary_ttl: float = 300.0,
        recent_series_ttl: float = 300.0,
        historical_series_ttl: float = 3600.0,
        activity_limit: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._source = source
        self._cache = cache
        self._summary_ttl = summary_ttl
        self._recent_series_ttl = recent_series_ttl
        self._historical_series_ttl = historical_series_ttl
        self._activity_limit = activity_limit
        self._clock = clock

    @property
    def cache(self) -> TTLCache:
        return self._cache

    async def get_summary(self, user_id: UUID | None = None) -> DashboardSummary:
        key = summary_cache_key(user_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        summary = await self._build_summary(user_id)
        self._cache.set(key, summary, self._summary_ttl)
        return summary

    async def get_time_series(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        interval: TimeInterval = TimeInterval.DAY,
    ) -> list[TimeSeriesPoint]:
        """Fetch (or reuse) one bucketed series. Fetch errors propagate.

        Windows reaching into the last 24 hours are cached briefly since
        their newest buckets are still filling.
        """
        key = timeseries_cache_key(metric, interval.value, start, end)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        points = await self._source.get_time_series(metric, start, end, interval)
        recent = end > self._clock() - timedelta(hours=24)
        ttl = self._recent_series_ttl if recent else self._historical_series_ttl
        self._cache.set(key, points, ttl)
        return points

    async def refresh_cache(self) -> DashboardSummary:
        """Drop every cached entry and rebuild the global summary."""
        self._cache.clear()
        return await self.get_summary(None)

    def invalidate_user_cache(self, user_id: UUID) -> None:
        self._cache.delete(summary_cache_key(user_id))

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _build_summary(self, user_id: UUID | None) -> DashboardSummary:
        src = self._source
        fetches: list[tuple[str, Awaitable[Any]]] = [
            ("total_projects", src.get_project_count(user_id)),
            ("total_credits", src.get_total_credits(user_id)),
            ("total_revenue", src.get_total_revenue(user_id)),
            ("active_monitoring_areas", src.get_active_monitoring_areas(user_id)),
            ("recent_activity", src.get_recent_activity(user_id, self._activity_limit)),
        ]
        fetches += [
            (f"metric:{m}", src.get_metric_value(m, METRIC_PERIOD))
            for m in PERFORMANCE_METRICS
        ]

        tasks = [asyncio.ensure_future(aw) for _, aw in fetches]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        summary = DashboardSummary(cached_at=self._clock())
        failed = 0
        for (name, _), result in zip(fetches, results):
            if isinstance(result, Exception):
                failed += 1
                logger.warning(
                    "Dashboard fetch %s failed: %s", name, result, exc_info=result,
                )
                continue
            if isinstance(result, BaseException):
                raise result
            _merge(summary, name, result)

        if failed:
            logger.info(
                "Dashboard summary for %s built with %d of %d fetches failing",
                user_id or "all users", failed, len(fetches),
            )
        return summary


def _merge(summary: DashboardSummary, name: str, value: Any) -> None:
    if name.startswith("metric:"):
        summary.performance_metrics[name.removeprefix("metric:")] = summarize_metric(value)
    elif name == "recent_activity":
        summary.recent_activity = list(value)
    else:
        setattr(summary, name, value)
