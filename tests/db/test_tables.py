"""Tests for the ORM table models in src/db/tables.py.

Tests verify:
- All five reporting tables are created from Base.metadata
- FlexJSON columns round-trip nested structures on SQLite
- Schedules cascade with their report definition
"""

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import (
    BenchmarkDatasetRow,
    DashboardWidgetRow,
    ReportDefinitionRow,
    ReportExecutionRow,
    ReportScheduleRow,
)
from src.models.common import new_uuid7, utc_now


def _definition(**overrides) -> ReportDefinitionRow:
    now = utc_now()
    base = {
        "id": new_uuid7(),
        "name": "Credits by vintage",
        "description": "",
        "config": {
            "dataset": "carbon_credits",
            "fields": [{"name": "vintage_year"}, {"name": "quantity", "aggregate": "SUM"}],
        },
        "visibility": "private",
        "shared_with_users": [],
        "version": 1,
        "is_template": False,
        "created_at": now,
        "updated_at": now,
    }
    base.update(overrides)
    return ReportDefinitionRow(**base)


class TestTableCreation:

    EXPECTED_TABLES = {
        "report_definitions",
        "report_schedules",
        "report_executions",
        "benchmark_datasets",
        "dashboard_widgets",
    }

    @pytest.mark.anyio
    async def test_all_tables_exist(self, db_engine) -> None:
        async with db_engine.connect() as conn:
            table_names = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )
        assert self.EXPECTED_TABLES.issubset(set(table_names)), (
            f"Missing tables: {self.EXPECTED_TABLES - set(table_names)}"
        )


class TestReportDefinitionRow:

    @pytest.mark.anyio
    async def test_config_round_trips(self, db_session: AsyncSession) -> None:
        row = _definition()
        db_session.add(row)
        await db_session.flush()
        db_session.expire(row)

        loaded = await db_session.get(ReportDefinitionRow, row.id)
        assert loaded.config["fields"][1] == {"name": "quantity", "aggregate": "SUM"}
        assert loaded.deleted_at is None


class TestReportScheduleRow:

    @pytest.mark.anyio
    async def test_schedule_references_definition(self, db_session: AsyncSession) -> None:
        definition = _definition()
        db_session.add(definition)
        await db_session.flush()

        now = utc_now()
        schedule = ReportScheduleRow(
            id=new_uuid7(),
            report_definition_id=definition.id,
            name="Weekly",
            cron_expression="0 8 * * 1",
            format="pdf",
            delivery_method="email",
            delivery_config={"subject": "Weekly credits"},
            recipient_emails=["ops@example.org"],
            created_at=now,
            updated_at=now,
        )
        db_session.add(schedule)
        await db_session.flush()

        result = await db_session.execute(
            select(ReportScheduleRow).where(ReportScheduleRow.report_definition_id == definition.id)
        )
        loaded = result.scalar_one()
        assert loaded.timezone == "UTC"
        assert loaded.is_active is True
        assert loaded.recipient_emails == ["ops@example.org"]


class TestReportExecutionRow:

    @pytest.mark.anyio
    async def test_defaults(self, db_session: AsyncSession) -> None:
        row = ReportExecutionRow(id=new_uuid7(), triggered_at=utc_now(), format="csv")
        db_session.add(row)
        await db_session.flush()
        await db_session.refresh(row)
        assert row.status == "pending"
        assert row.record_count == 0
        assert row.execution_log == ""


class TestBenchmarkAndWidgetRows:

    @pytest.mark.anyio
    async def test_benchmark_metrics_list(self, db_session: AsyncSession) -> None:
        now = utc_now()
        row = BenchmarkDatasetRow(
            id=new_uuid7(),
            name="Forestry",
            category="forestry",
            year=2024,
            data=[{"metric": "carbon_sequestration_rate", "p50": 40.0}],
            created_at=now,
            updated_at=now,
        )
        db_session.add(row)
        await db_session.flush()
        loaded = await db_session.get(BenchmarkDatasetRow, row.id)
        assert loaded.data[0]["metric"] == "carbon_sequestration_rate"
        assert loaded.is_active is True

    @pytest.mark.anyio
    async def test_widget_config(self, db_session: AsyncSession) -> None:
        now = utc_now()
        row = DashboardWidgetRow(
            id=new_uuid7(),
            widget_type="chart",
            title="Issuance",
            config={"metric": "credits", "interval": "week"},
            created_at=now,
            updated_at=now,
        )
        db_session.add(row)
        await db_session.flush()
        await db_session.refresh(row)
        assert row.config == {"metric": "credits", "interval": "week"}
        assert row.position == 0
        assert row.size == "medium"
