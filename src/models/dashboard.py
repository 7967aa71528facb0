"""Dashboard models.

DashboardWidget is stored configuration (pydantic). The summary types are
derived, cached values and are plain dataclasses with ``to_dict`` for the
API layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import Field

from src.models.common import ReportingBase, UTCTimestamp, UUIDv7, Visibility, new_uuid7, utc_now


class WidgetType(StrEnum):
    CHART = "chart"
    METRIC = "metric"
    TABLE = "table"
    GAUGE = "gauge"


class WidgetSize(StrEnum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    FULL = "full"


class TimeInterval(StrEnum):
    """Bucket size for dashboard time series."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class DashboardWidget(ReportingBase):
    """User- or section-scoped widget configuration (storage pass-through)."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    user_id: UUID | None = None
    dashboard_section: str = ""
    widget_type: WidgetType
    title: str = Field(..., min_length=1, max_length=255)
    config: dict[str, Any] = Field(default_factory=dict)
    size: WidgetSize = WidgetSize.MEDIUM
    position: int = 0
    refresh_interval_seconds: int = Field(default=300, ge=0)
    visibility: Visibility = Visibility.PRIVATE
    last_refreshed_at: datetime | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Derived summary types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSummary:
    """Current value of a metric with its change against the previous period."""

    value: float
    change: float = 0.0
    change_percent: float = 0.0
    period: str = ""
    trend: str = "stable"  # up, down, stable

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "change": self.change,
            "change_percent": self.change_percent,
            "period": self.period,
            "trend": self.trend,
        }


@dataclass(frozen=True)
class ActivityItem:
    id: UUID
    type: str
    description: str
    timestamp: datetime
    user_id: UUID | None = None
    entity_id: UUID | None = None
    entity_type: str = ""

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "type": self.type,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "user_id": str(self.user_id) if self.user_id else None,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "entity_type": self.entity_type,
        }


@dataclass(frozen=True)
class TimeSeriesPoint:
    time: datetime
    value: float
    label: str = ""

    def to_dict(self) -> dict:
        return {"time": self.time.isoformat(), "value": self.value, "label": self.label}


@dataclass
class DashboardSummary:
    """Aggregated dashboard data. Partial when individual fetches failed."""

    total_projects: int = 0
    total_credits: float = 0.0
    total_revenue: float = 0.0
    active_monitoring_areas: int = 0
    recent_activity: list[ActivityItem] = field(default_factory=list)
    performance_metrics: dict[str, MetricSummary] = field(default_factory=dict)
    time_series_data: dict[str, list[TimeSeriesPoint]] = field(default_factory=dict)
    cached_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "total_projects": self.total_projects,
            "total_credits": self.total_credits,
            "total_revenue": self.total_revenue,
            "active_monitoring_areas": self.active_monitoring_areas,
            "recent_activity": [a.to_dict() for a in self.recent_activity],
            "performance_metrics": {
                k: v.to_dict() for k, v in self.performance_metrics.items()
            },
            "time_series_data": {
                k: [p.to_dict() for p in points]
                for k, points in self.time_series_data.items()
            },
            "cached_at": self.cached_at.isoformat() if self.cached_at else None,
        }
