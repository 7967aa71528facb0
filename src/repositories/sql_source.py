"""Raw-SQL data sources over the analytical tables.

The projects, carbon_credits, transactions, monitoring_areas and
project_metrics tables are owned by other services; nothing here maps them
with the ORM. Three readers live in this module:

- ReportQuerySource runs compiled report queries (``?`` placeholders).
- DashboardSqlSource backs the DashboardAggregator.
- ProjectMetricsSource backs the BenchmarkService.

DashboardSqlSource opens one session per call because the aggregator runs
its fetches concurrently and an AsyncSession must not be shared between
tasks.
"""

import logging
import re
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.benchmarks.comparator import PeerProject
from src.dashboard.aggregator import MetricData
from src.models.common import utc_now
from src.models.dashboard import ActivityItem, TimeInterval, TimeSeriesPoint
from src.reporting.query_compiler import CompiledQuery
from src.repositories.reports import ReportExecutionRepository

logger = logging.getLogger(__name__)

# A single-quoted literal (with '' escapes) or a bare placeholder.
_PLACEHOLDER = re.compile(r"'(?:[^']|'')*'|\?")


def bind_positional(sql: str, args: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """Rewrite ``?`` placeholders as ``:argN`` named binds for ``text()``.

    A ``?`` inside a single-quoted literal is left alone. The jsonb ``?``
    operator cannot be told apart from a placeholder and is not supported
    in calculation expressions.
    """
    replaced = 0

    def _name(match: re.Match) -> str:
        nonlocal replaced
        if match.group() != "?":
            return match.group()
        replaced += 1
        return f":arg{replaced - 1}"

    rewritten = _PLACEHOLDER.sub(_name, sql)
    if replaced != len(args):
        msg = f"query has {replaced} placeholders but {len(args)} arguments"
        raise ValueError(msg)
    return rewritten, {f"arg{i}": value for i, value in enumerate(args)}


# ---------------------------------------------------------------------------
# Report queries
# ---------------------------------------------------------------------------


class ReportQuerySource:
    """Executes compiled report queries inside the request session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def fetch(self, query: CompiledQuery) -> tuple[list[str], list[dict[str, Any]]]:
        """Return (column names in select order, rows as dicts).

        Runs inside a SAVEPOINT so a failing query leaves the session usable
        for recording the failed execution.
        """
        sql, params = bind_positional(query.sql, query.args)
        async with self._session.begin_nested():
            result = await self._session.execute(text(sql), params)
            columns = list(result.keys())
            rows = [dict(r._mapping) for r in result]
        return columns, rows

    async def count(self, query: CompiledQuery) -> int:
        sql, params = bind_positional(query.sql, query.args)
        async with self._session.begin_nested():
            result = await self._session.execute(text(sql), params)
            return int(result.scalar_one() or 0)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

# metric -> (table, summed expression, time column)
SERIES_SOURCES: dict[str, tuple[str, str, str]] = {
    "credits": ("carbon_credits", "quantity", "created_at"),
    "revenue": ("transactions", "amount", "created_at"),
    "projects": ("projects", "1", "created_at"),
}

# Each query yields one number for the window [:start, :end).
METRIC_QUERIES: dict[str, str] = {
    "credits_issued": (
        "SELECT COALESCE(SUM(quantity), 0) FROM carbon_credits "
        "WHERE issued_at >= :start AND issued_at < :end"
    ),
    "revenue": (
        "SELECT COALESCE(SUM(amount), 0) FROM transactions "
        "WHERE created_at >= :start AND created_at < :end"
    ),
    "verification_rate": (
        "SELECT COALESCE(100.0 * SUM(CASE WHEN status IN "
        "('issued', 'retired', 'transferred') THEN 1 ELSE 0 END)"
        " / NULLIF(COUNT(*), 0), 0) FROM carbon_credits "
        "WHERE created_at >= :start AND created_at < :end"
    ),
    "monitoring_coverage": (
        "SELECT COALESCE(100.0 * COUNT(DISTINCT project_id)"
        " / NULLIF((SELECT COUNT(*) FROM projects), 0), 0) FROM project_metrics "
        "WHERE time >= :start AND time < :end"
    ),
}


def parse_period(period: str) -> timedelta:
    """``"30d"``, ``"12h"`` or ``"4w"`` to a timedelta."""
    match = re.fullmatch(r"(\d+)([hdw])", period.strip())
    if match is None:
        msg = f"unsupported period: {period!r}"
        raise ValueError(msg)
    amount, unit = int(match.group(1)), match.group(2)
    return {
        "h": timedelta(hours=amount),
        "d": timedelta(days=amount),
        "w": timedelta(weeks=amount),
    }[unit]


def time_series_sql(metric: str, interval: TimeInterval) -> str:
    try:
        table, value, time_field = SERIES_SOURCES[metric]
    except KeyError:
        msg = f"unknown metric: {metric}"
        raise ValueError(msg) from None
    return (
        f"SELECT date_trunc('{interval.value}', {time_field}) AS time_bucket, "
        f"COALESCE(SUM({value}), 0) AS value "
        f"FROM {table} "
        f"WHERE {time_field} BETWEEN :start AND :end "
        "GROUP BY time_bucket "
        "ORDER BY time_bucket ASC"
    )


class DashboardSqlSource:
    """Platform-wide dashboard figures.

    Totals are not scoped by user: the analytical tables carry no owner
    column. The user id scopes recent activity only.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def _scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        async with self._session_factory() as session:
            result = await session.execute(text(sql), params or {})
            return result.scalar_one()

    async def get_project_count(self, user_id: UUID | None) -> int:
        return int(await self._scalar("SELECT COUNT(*) FROM projects"))

    async def get_total_credits(self, user_id: UUID | None) -> float:
        return float(await self._scalar(
            "SELECT COALESCE(SUM(quantity), 0) FROM carbon_credits"
        ))

    async def get_total_revenue(self, user_id: UUID | None) -> float:
        return float(await self._scalar(
            "SELECT COALESCE(SUM(amount), 0) FROM transactions"
        ))

    async def get_active_monitoring_areas(self, user_id: UUID | None) -> int:
        return int(await self._scalar(
            "SELECT COUNT(*) FROM monitoring_areas WHERE is_active = :active",
            {"active": True},
        ))

    async def get_recent_activity(
        self, user_id: UUID | None, limit: int,
    ) -> list[ActivityItem]:
        """Latest report executions, newest first."""
        async with self._session_factory() as session:
            rows = await ReportExecutionRepository(session).list_recent(
                triggered_by=user_id, limit=limit,
            )
        return [
            ActivityItem(
                id=row.id,
                type="report_execution",
                description=f"Report execution {row.status} ({row.format})",
                timestamp=row.triggered_at,
                user_id=row.triggered_by,
                entity_id=row.report_definition_id,
                entity_type="report_definition" if row.report_definition_id else "",
            )
            for row in rows
        ]

    async def get_metric_value(self, metric: str, period: str) -> MetricData:
        """Current window ending now and the equally long window before it."""
        try:
            sql = METRIC_QUERIES[metric]
        except KeyError:
            msg = f"unknown metric: {metric}"
            raise ValueError(msg) from None

        span = parse_period(period)
        now = self._clock()
        current = await self._scalar(sql, {"start": now - span, "end": now})
        previous = await self._scalar(sql, {"start": now - 2 * span, "end": now - span})
        return MetricData(float(current), float(previous), period)

    async def get_time_series(
        self,
        metric: str,
        start: datetime,
        end: datetime,
        interval: TimeInterval,
    ) -> list[TimeSeriesPoint]:
        sql = time_series_sql(metric, interval)
        async with self._session_factory() as session:
            result = await session.execute(text(sql), {"start": start, "end": end})
            return [
                TimeSeriesPoint(time=bucket, value=float(value))
                for bucket, value in result.all()
            ]


# ---------------------------------------------------------------------------
# Benchmarks
# ---------------------------------------------------------------------------


class ProjectMetricsSource:
    """Latest value per metric from the project_metrics time series."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_project_metrics(self, project_id: UUID) -> dict[str, float]:
        result = await self._session.execute(
            text(
                "SELECT metric_name, value FROM project_metrics "
                "WHERE project_id = :project_id ORDER BY time DESC"
            ),
            {"project_id": str(project_id)},
        )
        metrics: dict[str, float] = {}
        for name, value in result.all():
            metrics.setdefault(name, float(value))
        return metrics

    async def get_projects_in_peer_group(
        self, methodology: str, region: str,
    ) -> list[PeerProject]:
        """Projects sharing methodology and region (blank matches any)."""
        sql = (
            "SELECT pm.project_id, pm.metric_name, pm.value, p.methodology, p.region "
            "FROM project_metrics pm JOIN projects p ON p.id = pm.project_id "
            "WHERE 1 = 1"
        )
        params: dict[str, Any] = {}
        if methodology:
            sql += " AND p.methodology = :methodology"
            params["methodology"] = methodology
        if region:
            sql += " AND p.region = :region"
            params["region"] = region
        sql += " ORDER BY pm.time DESC"

        result = await self._session.execute(text(sql), params)
        grouped: dict[UUID, dict[str, Any]] = {}
        for project_id, name, value, meth, reg in result.all():
            pid = project_id if isinstance(project_id, UUID) else UUID(str(project_id))
            entry = grouped.setdefault(
                pid, {"metrics": {}, "methodology": meth or "", "region": reg or ""},
            )
            entry["metrics"].setdefault(name, float(value))

        logger.debug(
            "Peer group methodology=%r region=%r has %d projects",
            methodology, region, len(grouped),
        )
        return [
            PeerProject(
                project_id=pid,
                metrics=entry["metrics"],
                methodology=entry["methodology"],
                region=entry["region"],
            )
            for pid, entry in grouped.items()
        ]
