"""FastAPI dashboard endpoints.

GET    /v1/dashboard/summary                 - cached summary (optionally per user)
GET    /v1/dashboard/timeseries/{metric}     - bucketed series
POST   /v1/dashboard/refresh                 - clear cache, rebuild global summary
DELETE /v1/dashboard/cache/users/{user_id}   - drop one user's cached summary
GET    /v1/dashboard/cache/stats             - hits, misses, size, evictions
GET    /v1/dashboard/widgets                 - widgets for a user or section
POST   /v1/dashboard/widgets                 - create widget
PUT    /v1/dashboard/widgets/positions       - reorder widgets
GET    /v1/dashboard/widgets/{widget_id}     - get widget
PATCH  /v1/dashboard/widgets/{widget_id}     - update widget
DELETE /v1/dashboard/widgets/{widget_id}     - delete widget
"""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from src.api.dependencies import (
    get_dashboard_aggregator,
    get_dashboard_cache,
    get_dashboard_widget_repo,
)
from src.dashboard.aggregator import DashboardAggregator
from src.dashboard.cache import TTLCache
from src.db.tables import DashboardWidgetRow
from src.models.common import Visibility, new_uuid7, utc_now
from src.models.dashboard import DashboardWidget, TimeInterval, WidgetSize, WidgetType
from src.repositories.widgets import DashboardWidgetRepository

router = APIRouter(prefix="/v1/dashboard", tags=["dashboard"])

DEFAULT_SERIES_WINDOW = timedelta(days=30)


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateWidgetRequest(BaseModel):
    user_id: UUID | None = None
    dashboard_section: str = ""
    widget_type: WidgetType
    title: str = Field(..., min_length=1, max_length=255)
    config: dict[str, Any] = Field(default_factory=dict)
    size: WidgetSize = WidgetSize.MEDIUM
    position: int = 0
    refresh_interval_seconds: int = Field(default=300, ge=0)
    visibility: Visibility = Visibility.PRIVATE


class UpdateWidgetRequest(BaseModel):
    dashboard_section: str | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    config: dict[str, Any] | None = None
    size: WidgetSize | None = None
    position: int | None = None
    refresh_interval_seconds: int | None = Field(default=None, ge=0)
    visibility: Visibility | None = None


class PositionsRequest(BaseModel):
    positions: dict[UUID, int]


def _row_to_widget(row: DashboardWidgetRow) -> DashboardWidget:
    return DashboardWidget(
        id=row.id,
        user_id=row.user_id,
        dashboard_section=row.dashboard_section,
        widget_type=row.widget_type,
        title=row.title,
        config=row.config or {},
        size=row.size,
        position=row.position,
        refresh_interval_seconds=row.refresh_interval_seconds,
        visibility=row.visibility,
        last_refreshed_at=row.last_refreshed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Summary and series
# ---------------------------------------------------------------------------


@router.get("/summary")
async def get_summary(
    user_id: UUID | None = None,
    aggregator: DashboardAggregator = Depends(get_dashboard_aggregator),
) -> dict:
    summary = await aggregator.get_summary(user_id)
    return summary.to_dict()


@router.get("/timeseries/{metric}")
async def get_time_series(
    metric: str,
    start: datetime | None = None,
    end: datetime | None = None,
    interval: TimeInterval = TimeInterval.DAY,
    aggregator: DashboardAggregator = Depends(get_dashboard_aggregator),
) -> dict:
    end = _aware(end) if end is not None else utc_now()
    start = _aware(start) if start is not None else end - DEFAULT_SERIES_WINDOW
    if start > end:
        raise HTTPException(status_code=422, detail="start must not be after end.")
    try:
        points = await aggregator.get_time_series(metric, start, end, interval)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "metric": metric,
        "interval": interval.value,
        "points": [p.to_dict() for p in points],
    }


@router.post("/refresh")
async def refresh(
    aggregator: DashboardAggregator = Depends(get_dashboard_aggregator),
) -> dict:
    summary = await aggregator.refresh_cache()
    return summary.to_dict()


@router.delete("/cache/users/{user_id}", status_code=204)
async def invalidate_user_cache(
    user_id: UUID,
    aggregator: DashboardAggregator = Depends(get_dashboard_aggregator),
) -> Response:
    aggregator.invalidate_user_cache(user_id)
    return Response(status_code=204)


@router.get("/cache/stats")
async def cache_stats(cache: TTLCache = Depends(get_dashboard_cache)) -> dict:
    return cache.stats().to_dict()


# ---------------------------------------------------------------------------
# Widgets
# ---------------------------------------------------------------------------


@router.get("/widgets", response_model=list[DashboardWidget])
async def list_widgets(
    user_id: UUID | None = None,
    section: str | None = None,
    repo: DashboardWidgetRepository = Depends(get_dashboard_widget_repo),
) -> list[DashboardWidget]:
    if section:
        rows = await repo.list_by_section(section)
    else:
        rows = await repo.list_for_user(user_id)
    return [_row_to_widget(r) for r in rows]


@router.post("/widgets", status_code=201, response_model=DashboardWidget)
async def create_widget(
    body: CreateWidgetRequest,
    repo: DashboardWidgetRepository = Depends(get_dashboard_widget_repo),
) -> DashboardWidget:
    row = await repo.create(widget_id=new_uuid7(), **body.model_dump())
    return _row_to_widget(row)


@router.put("/widgets/positions")
async def update_positions(
    body: PositionsRequest,
    repo: DashboardWidgetRepository = Depends(get_dashboard_widget_repo),
) -> dict:
    moved = await repo.update_positions(body.positions)
    return {"updated": moved}


@router.get("/widgets/{widget_id}", response_model=DashboardWidget)
async def get_widget(
    widget_id: UUID,
    repo: DashboardWidgetRepository = Depends(get_dashboard_widget_repo),
) -> DashboardWidget:
    row = await repo.get(widget_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Widget {widget_id} not found.")
    return _row_to_widget(row)


@router.patch("/widgets/{widget_id}", response_model=DashboardWidget)
async def update_widget(
    widget_id: UUID,
    body: UpdateWidgetRequest,
    repo: DashboardWidgetRepository = Depends(get_dashboard_widget_repo),
) -> DashboardWidget:
    row = await repo.update(widget_id, **body.model_dump(exclude_none=True))
    if row is None:
        raise HTTPException(status_code=404, detail=f"Widget {widget_id} not found.")
    return _row_to_widget(row)


@router.delete("/widgets/{widget_id}", status_code=204)
async def delete_widget(
    widget_id: UUID,
    repo: DashboardWidgetRepository = Depends(get_dashboard_widget_repo),
) -> Response:
    if not await repo.delete(widget_id):
        raise HTTPException(status_code=404, detail=f"Widget {widget_id} not found.")
    return Response(status_code=204)
