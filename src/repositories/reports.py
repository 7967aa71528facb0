"""Report definition, schedule and execution repositories.

Definitions are soft-deleted: ``deleted_at`` is set and every read path
filters the row out. Executions keep pointing at the id.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ReportDefinitionRow, ReportExecutionRow, ReportScheduleRow
from src.models.common import Visibility, utc_now
from src.models.report import (
    ReportConfig,
    ReportDefinition,
    ReportExecution,
    ReportSchedule,
)
from src.repositories.base import Page, paginate

_UNSET = object()


class ReportDefinitionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        report_id: UUID,
        name: str,
        config: dict,
        description: str = "",
        category: str | None = None,
        created_by: UUID | None = None,
        visibility: str = Visibility.PRIVATE,
        shared_with_users: list[str] | None = None,
        is_template: bool = False,
        based_on_template_id: UUID | None = None,
    ) -> ReportDefinitionRow:
        now = utc_now()
        row = ReportDefinitionRow(
            id=report_id,
            name=name,
            description=description,
            category=category,
            config=config,
            created_by=created_by,
            visibility=visibility,
            shared_with_users=shared_with_users or [],
            version=1,
            is_template=is_template,
            based_on_template_id=based_on_template_id,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, report_id: UUID) -> ReportDefinitionRow | None:
        row = await self._session.get(ReportDefinitionRow, report_id)
        if row is None or row.deleted_at is not None:
            return None
        return row

    async def update(
        self,
        report_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        category=_UNSET,
        config: dict | None = None,
        visibility: str | None = None,
        shared_with_users: list[str] | None = None,
        is_template: bool | None = None,
    ) -> ReportDefinitionRow | None:
        """Apply the given changes and bump ``version``."""
        row = await self.get(report_id)
        if row is None:
            return None
        if name is not None:
            row.name = name
        if description is not None:
            row.description = description
        if category is not _UNSET:
            row.category = category
        if config is not None:
            row.config = config
        if visibility is not None:
            row.visibility = visibility
        if shared_with_users is not None:
            row.shared_with_users = shared_with_users
        if is_template is not None:
            row.is_template = is_template
        row.version += 1
        row.updated_at = utc_now()
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def soft_delete(self, report_id: UUID) -> bool:
        row = await self.get(report_id)
        if row is None:
            return False
        row.deleted_at = utc_now()
        await self._session.flush()
        return True

    async def list_filtered(
        self,
        *,
        category: str | None = None,
        visibility: str | None = None,
        created_by: UUID | None = None,
        is_template: bool | None = None,
        search: str | None = None,
        user_id: UUID | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page:
        """Newest-updated first.

        ``user_id`` restricts the listing to definitions the user created
        plus public ones.
        """
        stmt = select(ReportDefinitionRow).where(ReportDefinitionRow.deleted_at.is_(None))
        if category:
            stmt = stmt.where(ReportDefinitionRow.category == category)
        if visibility:
            stmt = stmt.where(ReportDefinitionRow.visibility == visibility)
        if created_by is not None:
            stmt = stmt.where(ReportDefinitionRow.created_by == created_by)
        if is_template is not None:
            stmt = stmt.where(ReportDefinitionRow.is_template.is_(is_template))
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                ReportDefinitionRow.name.ilike(pattern),
                ReportDefinitionRow.description.ilike(pattern),
            ))
        if user_id is not None:
            stmt = stmt.where(or_(
                ReportDefinitionRow.created_by == user_id,
                ReportDefinitionRow.visibility == Visibility.PUBLIC.value,
            ))
        stmt = stmt.order_by(ReportDefinitionRow.updated_at.desc())
        return await paginate(self._session, stmt, page=page, page_size=page_size)

    async def list_templates(self, category: str | None = None) -> list[ReportDefinitionRow]:
        stmt = select(ReportDefinitionRow).where(
            ReportDefinitionRow.deleted_at.is_(None),
            ReportDefinitionRow.is_template.is_(True),
            ReportDefinitionRow.visibility == Visibility.PUBLIC.value,
        )
        if category:
            stmt = stmt.where(ReportDefinitionRow.category == category)
        result = await self._session.execute(stmt.order_by(ReportDefinitionRow.name))
        return list(result.scalars().all())


class ReportScheduleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        schedule_id: UUID,
        report_definition_id: UUID,
        name: str,
        cron_expression: str,
        format: str,
        delivery_method: str,
        timezone: str = "UTC",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        is_active: bool = True,
        delivery_config: dict | None = None,
        recipient_emails: list[str] | None = None,
    ) -> ReportScheduleRow:
        now = utc_now()
        row = ReportScheduleRow(
            id=schedule_id,
            report_definition_id=report_definition_id,
            name=name,
            cron_expression=cron_expression,
            timezone=timezone,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
            format=format,
            delivery_method=delivery_method,
            delivery_config=delivery_config or {},
            recipient_emails=recipient_emails or [],
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, schedule_id: UUID) -> ReportScheduleRow | None:
        return await self._session.get(ReportScheduleRow, schedule_id)

    async def update(self, schedule_id: UUID, **changes) -> ReportScheduleRow | None:
        """Set every given column; ``None`` values are ignored."""
        row = await self.get(schedule_id)
        if row is None:
            return None
        for column, value in changes.items():
            if value is not None:
                setattr(row, column, value)
        row.updated_at = utc_now()
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def set_active(self, schedule_id: UUID, is_active: bool) -> ReportScheduleRow | None:
        return await self.update(schedule_id, is_active=is_active)

    async def delete(self, schedule_id: UUID) -> bool:
        row = await self.get(schedule_id)
        if row is None:
            return False
        await self._session.delete(row)
        await self._session.flush()
        return True

    async def list_by_definition(self, report_definition_id: UUID) -> list[ReportScheduleRow]:
        result = await self._session.execute(
            select(ReportScheduleRow)
            .where(ReportScheduleRow.report_definition_id == report_definition_id)
            .order_by(ReportScheduleRow.created_at)
        )
        return list(result.scalars().all())

    async def list_active(self) -> list[ReportScheduleRow]:
        result = await self._session.execute(
            select(ReportScheduleRow)
            .where(ReportScheduleRow.is_active.is_(True))
            .order_by(ReportScheduleRow.created_at)
        )
        return list(result.scalars().all())


class ReportExecutionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        execution_id: UUID,
        format: str,
        report_definition_id: UUID | None = None,
        schedule_id: UUID | None = None,
        triggered_by: UUID | None = None,
        parameters: dict | None = None,
    ) -> ReportExecutionRow:
        row = ReportExecutionRow(
            id=execution_id,
            report_definition_id=report_definition_id,
            schedule_id=schedule_id,
            triggered_by=triggered_by,
            triggered_at=utc_now(),
            status="pending",
            format=format,
            error_message="",
            record_count=0,
            file_size_bytes=0,
            file_key="",
            parameters=parameters or {},
            execution_log="",
        )
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def get(self, execution_id: UUID) -> ReportExecutionRow | None:
        return await self._session.get(ReportExecutionRow, execution_id)

    async def update_status(
        self,
        execution_id: UUID,
        status: str,
        *,
        error_message: str | None = None,
        record_count: int | None = None,
        file_size_bytes: int | None = None,
        file_key: str | None = None,
        completed_at: datetime | None = None,
        log_line: str | None = None,
    ) -> ReportExecutionRow | None:
        """Write a status transition. Legality is checked by the service."""
        row = await self.get(execution_id)
        if row is None:
            return None
        row.status = status
        if error_message is not None:
            row.error_message = error_message
        if record_count is not None:
            row.record_count = record_count
        if file_size_bytes is not None:
            row.file_size_bytes = file_size_bytes
        if file_key is not None:
            row.file_key = file_key
        if completed_at is not None:
            row.completed_at = completed_at
        if log_line:
            row.execution_log = f"{row.execution_log}{log_line}\n"
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def list_filtered(
        self,
        *,
        report_definition_id: UUID | None = None,
        schedule_id: UUID | None = None,
        triggered_by: UUID | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page:
        """Most recently triggered first."""
        stmt = select(ReportExecutionRow)
        if report_definition_id is not None:
            stmt = stmt.where(ReportExecutionRow.report_definition_id == report_definition_id)
        if schedule_id is not None:
            stmt = stmt.where(ReportExecutionRow.schedule_id == schedule_id)
        if triggered_by is not None:
            stmt = stmt.where(ReportExecutionRow.triggered_by == triggered_by)
        if status:
            stmt = stmt.where(ReportExecutionRow.status == status)
        if start is not None:
            stmt = stmt.where(ReportExecutionRow.triggered_at >= start)
        if end is not None:
            stmt = stmt.where(ReportExecutionRow.triggered_at <= end)
        stmt = stmt.order_by(ReportExecutionRow.triggered_at.desc())
        return await paginate(self._session, stmt, page=page, page_size=page_size)

    async def list_recent(self, *, triggered_by: UUID | None = None,
                          limit: int = 10) -> list[ReportExecutionRow]:
        stmt = select(ReportExecutionRow)
        if triggered_by is not None:
            stmt = stmt.where(ReportExecutionRow.triggered_by == triggered_by)
        result = await self._session.execute(
            stmt.order_by(ReportExecutionRow.triggered_at.desc()).limit(limit)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Row -> model
# ---------------------------------------------------------------------------


def to_definition(row: ReportDefinitionRow) -> ReportDefinition:
    return ReportDefinition(
        id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        config=ReportConfig.model_validate(row.config),
        created_by=row.created_by,
        visibility=row.visibility,
        shared_with_users=row.shared_with_users or [],
        version=row.version,
        is_template=row.is_template,
        based_on_template_id=row.based_on_template_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_schedule(row: ReportScheduleRow) -> ReportSchedule:
    return ReportSchedule(
        id=row.id,
        report_definition_id=row.report_definition_id,
        name=row.name,
        cron_expression=row.cron_expression,
        timezone=row.timezone,
        start_date=row.start_date,
        end_date=row.end_date,
        is_active=row.is_active,
        format=row.format,
        delivery_method=row.delivery_method,
        delivery_config=row.delivery_config or {},
        recipient_emails=row.recipient_emails or [],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_execution(row: ReportExecutionRow) -> ReportExecution:
    return ReportExecution(
        id=row.id,
        report_definition_id=row.report_definition_id,
        schedule_id=row.schedule_id,
        triggered_by=row.triggered_by,
        triggered_at=row.triggered_at,
        completed_at=row.completed_at,
        status=row.status,
        format=row.format,
        error_message=row.error_message,
        record_count=row.record_count,
        file_size_bytes=row.file_size_bytes,
        file_key=row.file_key,
        parameters=row.parameters or {},
        execution_log=row.execution_log,
    )
