"""Tests for DashboardAggregator.

Covers: summary assembly, concurrent fan-out, partial results when a fetch
fails, metric trend classification, per-user caching and invalidation,
refresh, and time-series caching with recent/historical TTLs.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from uuid_extensions import uuid7

from src.dashboard.aggregator import (
    PERFORMANCE_METRICS,
    DashboardAggregator,
    MetricData,
    summarize_metric,
    summary_cache_key,
    timeseries_cache_key,
)
from src.dashboard.cache import TTLCache
from src.models.dashboard import ActivityItem, TimeInterval, TimeSeriesPoint

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeDashboardSource:
    """Canned answers. Every call sleeps briefly so overlap is observable."""

    def __init__(self, *, fail: set[str] | None = None) -> None:
        self.fail = fail or set()
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _answer(self, name: str, value):
        self.calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if name in self.fail:
                raise RuntimeError(f"{name} unavailable")
            return value
        finally:
            self.in_flight -= 1

    async def get_project_count(self, user_id: UUID | None) -> int:
        return await self._answer("project_count", 12)

    async def get_total_credits(self, user_id: UUID | None) -> float:
        return await self._answer("total_credits", 45000.0)

    async def get_total_revenue(self, user_id: UUID | None) -> float:
        return await self._answer("total_revenue", 675000.0)

    async def get_active_monitoring_areas(self, user_id: UUID | None) -> int:
        return await self._answer("monitoring_areas", 7)

    async def get_recent_activity(self, user_id: UUID | None, limit: int) -> list[ActivityItem]:
        item = ActivityItem(
            id=uuid7(), type="report_execution", description="Report completed",
            timestamp=NOW, user_id=user_id,
        )
        return await self._answer("recent_activity", [item])

    async def get_metric_value(self, metric: str, period: str) -> MetricData:
        return await self._answer(f"metric:{metric}", MetricData(110.0, 100.0, period))

    async def get_time_series(self, metric, start, end, interval) -> list[TimeSeriesPoint]:
        return await self._answer(
            f"series:{metric}", [TimeSeriesPoint(time=start, value=5.0)],
        )


def _make_aggregator(source: FakeDashboardSource, **kwargs) -> DashboardAggregator:
    return DashboardAggregator(source, TTLCache(), clock=lambda: NOW, **kwargs)


# ===================================================================
# Summary
# ===================================================================


class TestSummary:

    @pytest.mark.anyio
    async def test_assembles_every_part(self) -> None:
        aggregator = _make_aggregator(FakeDashboardSource())
        summary = await aggregator.get_summary()
        assert summary.total_projects == 12
        assert summary.total_credits == 45000.0
        assert summary.total_revenue == 675000.0
        assert summary.active_monitoring_areas == 7
        assert len(summary.recent_activity) == 1
        assert list(summary.performance_metrics) == list(PERFORMANCE_METRICS)
        assert summary.performance_metrics["revenue"].trend == "up"
        assert summary.cached_at == NOW

    @pytest.mark.anyio
    async def test_fetches_run_concurrently(self) -> None:
        source = FakeDashboardSource()
        await _make_aggregator(source).get_summary()
        assert len(source.calls) == 5 + len(PERFORMANCE_METRICS)
        assert source.max_in_flight == len(source.calls)

    @pytest.mark.anyio
    async def test_failed_fetch_is_left_at_default(self) -> None:
        source = FakeDashboardSource(fail={"total_revenue", "metric:verification_rate"})
        summary = await _make_aggregator(source).get_summary()
        assert summary.total_revenue == 0.0
        assert summary.total_projects == 12
        assert "verification_rate" not in summary.performance_metrics
        assert "credits_issued" in summary.performance_metrics

    @pytest.mark.anyio
    async def test_cached_per_user(self) -> None:
        source = FakeDashboardSource()
        aggregator = _make_aggregator(source)
        user = uuid7()

        first = await aggregator.get_summary(user)
        calls = len(source.calls)
        assert await aggregator.get_summary(user) is first
        assert len(source.calls) == calls

        await aggregator.get_summary(None)
        assert len(source.calls) == 2 * calls

    @pytest.mark.anyio
    async def test_invalidate_user(self) -> None:
        source = FakeDashboardSource()
        aggregator = _make_aggregator(source)
        user = uuid7()
        first = await aggregator.get_summary(user)
        aggregator.invalidate_user_cache(user)
        assert await aggregator.get_summary(user) is not first

    @pytest.mark.anyio
    async def test_refresh_clears_everything(self) -> None:
        source = FakeDashboardSource()
        aggregator = _make_aggregator(source)
        user = uuid7()
        await aggregator.get_summary(user)
        stale = await aggregator.get_summary(None)

        fresh = await aggregator.refresh_cache()
        assert fresh is not stale
        assert aggregator.cache.get(summary_cache_key(user)) is None
        assert aggregator.cache.get(summary_cache_key(None)) is fresh

    def test_summary_to_dict(self) -> None:
        from src.models.dashboard import DashboardSummary, MetricSummary

        summary = DashboardSummary(
            total_projects=1,
            performance_metrics={"revenue": MetricSummary(value=2.0, period="30d")},
            cached_at=NOW,
        )
        payload = summary.to_dict()
        assert payload["performance_metrics"]["revenue"]["trend"] == "stable"
        assert payload["cached_at"] == "2024-06-01T12:00:00+00:00"


class TestSummarizeMetric:

    @pytest.mark.parametrize(
        ("current", "previous", "trend"),
        [
            (110.0, 100.0, "up"),
            (105.0, 100.0, "stable"),
            (95.0, 100.0, "stable"),
            (90.0, 100.0, "down"),
        ],
    )
    def test_trend(self, current: float, previous: float, trend: str) -> None:
        assert summarize_metric(MetricData(current, previous, "30d")).trend == trend

    def test_change_figures(self) -> None:
        summary = summarize_metric(MetricData(150.0, 120.0, "30d"))
        assert summary.change == pytest.approx(30.0)
        assert summary.change_percent == pytest.approx(25.0)
        assert summary.period == "30d"

    @pytest.mark.parametrize("previous", [0.0, -5.0])
    def test_no_positive_baseline(self, previous: float) -> None:
        summary = summarize_metric(MetricData(50.0, previous, "30d"))
        assert summary.value == 50.0
        assert summary.change == 0.0
        assert summary.change_percent == 0.0
        assert summary.trend == "stable"


# ===================================================================
# Time series
# ===================================================================


class TestTimeSeries:

    def test_cache_key(self) -> None:
        start = datetime(2024, 5, 1, tzinfo=timezone.utc)
        end = datetime(2024, 5, 31, tzinfo=timezone.utc)
        assert timeseries_cache_key("revenue", "day", start, end) == (
            "timeseries_revenue_day_20240501_20240531"
        )

    @pytest.mark.anyio
    async def test_series_is_cached(self) -> None:
        source = FakeDashboardSource()
        aggregator = _make_aggregator(source)
        start, end = NOW - timedelta(days=30), NOW
        first = await aggregator.get_time_series("revenue", start, end, TimeInterval.DAY)
        second = await aggregator.get_time_series("revenue", start, end, TimeInterval.DAY)
        assert first is second
        assert source.calls == ["series:revenue"]

    @pytest.mark.anyio
    async def test_recent_window_uses_short_ttl(self) -> None:
        clock_now = [0.0]
        cache = TTLCache(clock=lambda: clock_now[0])
        source = FakeDashboardSource()
        aggregator = DashboardAggregator(
            source, cache, recent_series_ttl=10, historical_series_ttl=1000,
            clock=lambda: NOW,
        )
        await aggregator.get_time_series("credits_issued", NOW - timedelta(days=7), NOW)
        await aggregator.get_time_series(
            "credits_issued", NOW - timedelta(days=60), NOW - timedelta(days=30),
        )
        clock_now[0] = 11
        await aggregator.get_time_series("credits_issued", NOW - timedelta(days=7), NOW)
        await aggregator.get_time_series(
            "credits_issued", NOW - timedelta(days=60), NOW - timedelta(days=30),
        )
        # only the recent window was refetched
        assert source.calls.count("series:credits_issued") == 3

    @pytest.mark.anyio
    async def test_fetch_errors_propagate(self) -> None:
        aggregator = _make_aggregator(FakeDashboardSource(fail={"series:revenue"}))
        with pytest.raises(RuntimeError):
            await aggregator.get_time_series("revenue", NOW - timedelta(days=1), NOW)
