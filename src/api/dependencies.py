"""FastAPI dependency injection factories for repositories and services.

Repository factories take AsyncSession via Depends(get_async_session).
Data sources over the analytical tables have their own factories so tests
can swap them through ``app.dependency_overrides``.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.benchmarks.comparator import BenchmarkService
from src.config.settings import Settings, get_settings
from src.dashboard.aggregator import DashboardAggregator, DashboardDataSource
from src.dashboard.cache import TTLCache
from src.db.session import async_session_factory, get_async_session
from src.reporting.service import QuerySource, ReportService
from src.reporting.storage import ArtifactStorage
from src.repositories.benchmarks import BenchmarkRepository
from src.repositories.reports import (
    ReportDefinitionRepository,
    ReportExecutionRepository,
    ReportScheduleRepository,
)
from src.repositories.sql_source import (
    DashboardSqlSource,
    ProjectMetricsSource,
    ReportQuerySource,
)
from src.repositories.widgets import DashboardWidgetRepository

# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


async def get_report_definition_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ReportDefinitionRepository:
    return ReportDefinitionRepository(session)


async def get_report_schedule_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ReportScheduleRepository:
    return ReportScheduleRepository(session)


async def get_report_execution_repo(
    session: AsyncSession = Depends(get_async_session),
) -> ReportExecutionRepository:
    return ReportExecutionRepository(session)


async def get_report_query_source(
    session: AsyncSession = Depends(get_async_session),
) -> QuerySource:
    return ReportQuerySource(session)


async def get_artifact_storage(
    settings: Settings = Depends(get_settings),
) -> ArtifactStorage:
    return ArtifactStorage(settings.OBJECT_STORAGE_PATH)


async def get_report_service(
    definitions: ReportDefinitionRepository = Depends(get_report_definition_repo),
    schedules: ReportScheduleRepository = Depends(get_report_schedule_repo),
    executions: ReportExecutionRepository = Depends(get_report_execution_repo),
    query_source: QuerySource = Depends(get_report_query_source),
    storage: ArtifactStorage = Depends(get_artifact_storage),
) -> ReportService:
    return ReportService(
        definitions=definitions,
        schedules=schedules,
        executions=executions,
        query_source=query_source,
        storage=storage,
    )


# ---------------------------------------------------------------------------
# Benchmarks
# ---------------------------------------------------------------------------


async def get_benchmark_repo(
    session: AsyncSession = Depends(get_async_session),
) -> BenchmarkRepository:
    return BenchmarkRepository(session)


async def get_project_metrics_source(
    session: AsyncSession = Depends(get_async_session),
) -> ProjectMetricsSource:
    return ProjectMetricsSource(session)


async def get_benchmark_service(
    metrics: ProjectMetricsSource = Depends(get_project_metrics_source),
    benchmarks: BenchmarkRepository = Depends(get_benchmark_repo),
) -> BenchmarkService:
    return BenchmarkService(metrics=metrics, benchmarks=benchmarks)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


async def get_dashboard_widget_repo(
    session: AsyncSession = Depends(get_async_session),
) -> DashboardWidgetRepository:
    return DashboardWidgetRepository(session)


async def get_dashboard_source() -> DashboardDataSource:
    return DashboardSqlSource(async_session_factory)


def get_dashboard_cache(request: Request) -> TTLCache:
    """The application's single cache instance (see src.api.main)."""
    return request.app.state.dashboard_cache


async def get_dashboard_aggregator(
    cache: TTLCache = Depends(get_dashboard_cache),
    source: DashboardDataSource = Depends(get_dashboard_source),
    settings: Settings = Depends(get_settings),
) -> DashboardAggregator:
    return DashboardAggregator(
        source,
        cache,
        summary_ttl=settings.DASHBOARD_CACHE_TTL_SECONDS,
        recent_series_ttl=settings.TIMESERIES_RECENT_TTL_SECONDS,
        historical_series_ttl=settings.TIMESERIES_HISTORICAL_TTL_SECONDS,
        activity_limit=settings.DASHBOARD_RECENT_ACTIVITY_LIMIT,
    )
