"""Tests for the dashboard API endpoints.

Covers: summary (global and per user) with caching, refresh and user
invalidation, cache stats, time series validation and errors, and widget
CRUD with reordering. The data source is replaced by an in-memory fake.
"""

from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from uuid_extensions import uuid7

from src.api.dependencies import get_dashboard_source
from src.api.main import app
from src.dashboard.aggregator import MetricData
from src.models.dashboard import TimeSeriesPoint


class FakeDashboardSource:
    def __init__(self) -> None:
        self.summary_builds = 0
        self.series_requests: list[tuple] = []

    async def get_project_count(self, user_id):
        self.summary_builds += 1
        return 4

    async def get_total_credits(self, user_id):
        return 2500.0

    async def get_total_revenue(self, user_id):
        raise RuntimeError("transactions replica down")

    async def get_active_monitoring_areas(self, user_id):
        return 3

    async def get_recent_activity(self, user_id, limit):
        return []

    async def get_metric_value(self, metric, period):
        return MetricData(120.0, 100.0, period)

    async def get_time_series(self, metric, start, end, interval):
        if metric not in {"credits", "revenue", "projects"}:
            raise ValueError(f"unknown metric: {metric}")
        self.series_requests.append((metric, start, end, interval))
        return [TimeSeriesPoint(time=start, value=1.0), TimeSeriesPoint(time=end, value=2.0)]


@pytest.fixture
def fake_source(client):
    source = FakeDashboardSource()
    app.dependency_overrides[get_dashboard_source] = lambda: source
    app.state.dashboard_cache.clear()
    yield source
    app.state.dashboard_cache.clear()


class TestSummary:

    @pytest.mark.anyio
    async def test_partial_summary(self, client: AsyncClient, fake_source) -> None:
        response = await client.get("/v1/dashboard/summary")
        assert response.status_code == 200
        data = response.json()
        assert data["total_projects"] == 4
        assert data["total_credits"] == 2500.0
        assert data["total_revenue"] == 0.0
        assert data["performance_metrics"]["credits_issued"]["trend"] == "up"
        assert data["performance_metrics"]["credits_issued"]["change_percent"] == pytest.approx(20.0)

    @pytest.mark.anyio
    async def test_summary_is_cached_until_refresh(self, client: AsyncClient, fake_source) -> None:
        await client.get("/v1/dashboard/summary")
        await client.get("/v1/dashboard/summary")
        assert fake_source.summary_builds == 1

        response = await client.post("/v1/dashboard/refresh")
        assert response.status_code == 200
        assert fake_source.summary_builds == 2

        stats = (await client.get("/v1/dashboard/cache/stats")).json()
        assert stats["size"] == 1
        assert stats["hits"] >= 1

    @pytest.mark.anyio
    async def test_user_invalidation(self, client: AsyncClient, fake_source) -> None:
        user = str(uuid7())
        await client.get("/v1/dashboard/summary", params={"user_id": user})
        assert (await client.delete(f"/v1/dashboard/cache/users/{user}")).status_code == 204
        await client.get("/v1/dashboard/summary", params={"user_id": user})
        assert fake_source.summary_builds == 2


class TestTimeSeries:

    @pytest.mark.anyio
    async def test_series(self, client: AsyncClient, fake_source) -> None:
        response = await client.get(
            "/v1/dashboard/timeseries/credits",
            params={"start": "2024-01-01T00:00:00", "end": "2024-03-01T00:00:00", "interval": "week"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["interval"] == "week"
        assert len(data["points"]) == 2
        _, start, end, _ = fake_source.series_requests[0]
        assert start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 1, tzinfo=timezone.utc)

    @pytest.mark.anyio
    async def test_default_window(self, client: AsyncClient, fake_source) -> None:
        response = await client.get("/v1/dashboard/timeseries/revenue")
        assert response.status_code == 200
        _, start, end, interval = fake_source.series_requests[0]
        assert (end - start).days == 30
        assert interval == "day"

    @pytest.mark.anyio
    async def test_start_after_end(self, client: AsyncClient, fake_source) -> None:
        response = await client.get(
            "/v1/dashboard/timeseries/credits",
            params={"start": "2024-03-01T00:00:00Z", "end": "2024-01-01T00:00:00Z"},
        )
        assert response.status_code == 422

    @pytest.mark.anyio
    async def test_unknown_metric(self, client: AsyncClient, fake_source) -> None:
        response = await client.get("/v1/dashboard/timeseries/emissions")
        assert response.status_code == 400


class TestWidgets:

    @pytest.mark.anyio
    async def test_widget_crud_and_positions(self, client: AsyncClient) -> None:
        user = str(uuid7())
        first = (await client.post("/v1/dashboard/widgets", json={
            "user_id": user, "widget_type": "metric", "title": "Credits", "position": 0,
        })).json()
        second = (await client.post("/v1/dashboard/widgets", json={
            "widget_type": "chart", "title": "Revenue", "position": 1,
            "config": {"metric": "revenue", "interval": "month"},
        })).json()
        assert second["config"]["interval"] == "month"

        listed = (await client.get("/v1/dashboard/widgets", params={"user_id": user})).json()
        assert [w["title"] for w in listed] == ["Credits", "Revenue"]

        moved = await client.put("/v1/dashboard/widgets/positions", json={
            "positions": {first["id"]: 1, second["id"]: 0},
        })
        assert moved.json() == {"updated": 2}
        listed = (await client.get("/v1/dashboard/widgets", params={"user_id": user})).json()
        assert [w["title"] for w in listed] == ["Revenue", "Credits"]

        patched = await client.patch(f"/v1/dashboard/widgets/{first['id']}", json={"size": "large"})
        assert patched.json()["size"] == "large"

        assert (await client.delete(f"/v1/dashboard/widgets/{first['id']}")).status_code == 204
        assert (await client.get(f"/v1/dashboard/widgets/{first['id']}")).status_code == 404

    @pytest.mark.anyio
    async def test_invalid_widget_type(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/dashboard/widgets", json={"widget_type": "map", "title": "x"},
        )
        assert response.status_code == 422
