"""SQLAlchemy ORM table models for the reporting subsystem.

Five tables: report definitions, schedules, executions, benchmark datasets
and dashboard widgets. Nested structures (report config, benchmark metric
list, widget config) are stored as FlexJSON (JSONB on Postgres, JSON on
SQLite for tests).

The analytical source tables a report queries (projects, carbon_credits,
transactions, monitoring_data) belong to other services and are reached
only through raw SQL in src/repositories/sql_source.py.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportDefinitionRow(Base):
    """Saved report. ``version`` increments on every config replace.

    Soft-deleted rows keep their id (executions reference them) and carry
    ``deleted_at``.
    """

    __tablename__ = "report_definitions"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    config = mapped_column(FlexJSON, nullable=False)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    visibility: Mapped[str] = mapped_column(String(50), default="private", nullable=False)
    shared_with_users = mapped_column(FlexJSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_template: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    based_on_template_id: Mapped[UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ReportScheduleRow(Base):
    __tablename__ = "report_schedules"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    report_definition_id: Mapped[UUID] = mapped_column(
        ForeignKey("report_definitions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cron_expression: Mapped[str] = mapped_column(String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC", nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    delivery_method: Mapped[str] = mapped_column(String(50), nullable=False)
    delivery_config = mapped_column(FlexJSON, nullable=False)
    recipient_emails = mapped_column(FlexJSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReportExecutionRow(Base):
    """One run. Status moves pending -> processing -> completed|failed only."""

    __tablename__ = "report_executions"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    report_definition_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    schedule_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    triggered_by: Mapped[UUID | None] = mapped_column(nullable=True)
    triggered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False, index=True)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    file_key: Mapped[str] = mapped_column(String(1000), default="", nullable=False)
    parameters = mapped_column(FlexJSON, nullable=True)
    execution_log: Mapped[str] = mapped_column(Text, default="", nullable=False)


# ---------------------------------------------------------------------------
# Benchmarks
# ---------------------------------------------------------------------------


class BenchmarkDatasetRow(Base):
    """Benchmark percentiles; ``data`` holds the list of BenchmarkMetric dicts."""

    __tablename__ = "benchmark_datasets"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    methodology: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    region: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    data = mapped_column(FlexJSON, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class DashboardWidgetRow(Base):
    __tablename__ = "dashboard_widgets"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    dashboard_section: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    widget_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    config = mapped_column(FlexJSON, nullable=False)
    size: Mapped[str] = mapped_column(String(20), default="medium", nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    refresh_interval_seconds: Mapped[int] = mapped_column(Integer, default=300, nullable=False)
    visibility: Mapped[str] = mapped_column(String(50), default="private", nullable=False)
    last_refreshed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
