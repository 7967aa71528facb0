"""Report service: definitions, schedules and the execution lifecycle.

An execution moves pending -> processing -> completed | failed and never
leaves a terminal state. ``execute_report`` runs the whole pipeline inline:

    validate -> compile -> query + count -> render -> store artifact

Any failure after the execution row exists marks it failed with the error
text; the caller still gets the execution back. Configuration errors are
raised before the execution row is created.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from src.export.csv_export import CsvExporter
from src.export.excel_export import ExcelExporter
from src.export.pdf_export import PdfConfig, PdfExporter
from src.models.common import ExportFormat, Visibility, new_uuid7, utc_now
from src.models.report import (
    TERMINAL_EXECUTION_STATUSES,
    ExecutionStatus,
    ReportConfig,
    ReportDefinition,
    ReportExecution,
    ReportSchedule,
)
from src.reporting.datasets import validate_report_config
from src.reporting.errors import (
    ExecutionStateError,
    ExportError,
    ReportConfigError,
    ReportNotFoundError,
)
from src.reporting.query_compiler import CompiledQuery, compile_count_query, compile_query
from src.reporting.storage import ArtifactStorage
from src.repositories.base import Page
from src.repositories.reports import (
    ReportDefinitionRepository,
    ReportExecutionRepository,
    ReportScheduleRepository,
    to_definition,
    to_execution,
    to_schedule,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"

FILE_EXTENSIONS: dict[ExportFormat, str] = {
    ExportFormat.CSV: "csv",
    ExportFormat.EXCEL: "xlsx",
    ExportFormat.PDF: "pdf",
    ExportFormat.JSON: "json",
}

MEDIA_TYPES: dict[ExportFormat, str] = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.PDF: "application/pdf",
    ExportFormat.JSON: "application/json",
}


class QuerySource(Protocol):
    async def fetch(self, query: CompiledQuery) -> tuple[list[str], list[dict[str, Any]]]: ...

    async def count(self, query: CompiledQuery) -> int: ...


@dataclass(frozen=True)
class Artifact:
    content: bytes
    media_type: str
    filename: str


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def render_rows(
    fmt: ExportFormat,
    rows: Sequence[dict[str, Any]],
    columns: Sequence[str],
    *,
    title: str = "Report",
    clock: Callable[[], datetime] = utc_now,
) -> bytes:
    """Encode a result set with the codec for ``fmt``."""
    if fmt == ExportFormat.CSV:
        return CsvExporter().export(rows, columns)
    if fmt == ExportFormat.EXCEL:
        return ExcelExporter(clock=clock).export(rows, columns)
    if fmt == ExportFormat.PDF:
        return PdfExporter(PdfConfig(title=title), clock=clock).export(rows, columns)
    if fmt == ExportFormat.JSON:
        payload = {
            "columns": list(columns),
            "rows": [{c: row.get(c) for c in columns} for row in rows],
        }
        return json.dumps(payload, default=_json_default, indent=2).encode("utf-8")
    msg = f"unsupported export format: {fmt}"
    raise ExportError(msg)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ReportService:
    """Coordinates repositories, the compiler, a query source and the codecs."""

    def __init__(
        self,
        *,
        definitions: ReportDefinitionRepository,
        schedules: ReportScheduleRepository,
        executions: ReportExecutionRepository,
        query_source: QuerySource,
        storage: ArtifactStorage,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._definitions = definitions
        self._schedules = schedules
        self._executions = executions
        self._query_source = query_source
        self._storage = storage
        self._clock = clock

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    async def create_definition(
        self,
        *,
        name: str,
        config: ReportConfig,
        description: str = "",
        category: str | None = None,
        created_by: UUID | None = None,
        visibility: Visibility = Visibility.PRIVATE,
        shared_with_users: Sequence[UUID] = (),
        is_template: bool = False,
        based_on_template_id: UUID | None = None,
    ) -> ReportDefinition:
        validate_report_config(config)
        row = await self._definitions.create(
            report_id=new_uuid7(),
            name=name,
            config=config.model_dump(mode="json"),
            description=description,
            category=category,
            created_by=created_by,
            visibility=visibility,
            shared_with_users=[str(u) for u in shared_with_users],
            is_template=is_template,
            based_on_template_id=based_on_template_id,
        )
        logger.info("Created report definition %s (%s)", row.id, name)
        return to_definition(row)

    async def get_definition(self, report_id: UUID) -> ReportDefinition:
        row = await self._definitions.get(report_id)
        if row is None:
            raise ReportNotFoundError(f"report definition {report_id} not found")
        return to_definition(row)

    async def update_definition(
        self,
        report_id: UUID,
        *,
        config: ReportConfig | None = None,
        name: str | None = None,
        description: str | None = None,
        visibility: Visibility | None = None,
        shared_with_users: Sequence[UUID] | None = None,
        is_template: bool | None = None,
    ) -> ReportDefinition:
        """Replace the given parts; the config is always replaced whole."""
        if config is not None:
            validate_report_config(config)
        row = await self._definitions.update(
            report_id,
            name=name,
            description=description,
            config=config.model_dump(mode="json") if config is not None else None,
            visibility=visibility,
            shared_with_users=(
                [str(u) for u in shared_with_users] if shared_with_users is not None else None
            ),
            is_template=is_template,
        )
        if row is None:
            raise ReportNotFoundError(f"report definition {report_id} not found")
        logger.info("Updated report definition %s to version %d", report_id, row.version)
        return to_definition(row)

    async def delete_definition(self, report_id: UUID) -> None:
        if not await self._definitions.soft_delete(report_id):
            raise ReportNotFoundError(f"report definition {report_id} not found")
        logger.info("Soft-deleted report definition %s", report_id)

    async def list_definitions(self, **filters: Any) -> Page:
        page = await self._definitions.list_filtered(**filters)
        return page._replace(items=[to_definition(r) for r in page.items])

    async def list_templates(self, category: str | None = None) -> list[ReportDefinition]:
        return [to_definition(r) for r in await self._definitions.list_templates(category)]

    async def clone_definition(
        self,
        report_id: UUID,
        *,
        name: str | None = None,
        created_by: UUID | None = None,
    ) -> ReportDefinition:
        """Private copy at version 1 that remembers its source."""
        source = await self.get_definition(report_id)
        return await self.create_definition(
            name=name or f"{source.name} (copy)",
            config=source.config,
            description=source.description,
            category=source.category,
            created_by=created_by,
            based_on_template_id=source.id,
        )

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    async def execute_report(
        self,
        *,
        definition_id: UUID | None = None,
        config: ReportConfig | None = None,
        format: ExportFormat = ExportFormat.CSV,
        triggered_by: UUID | None = None,
        schedule_id: UUID | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> ReportExecution:
        """Run a saved definition or an ad-hoc config and store the artifact."""
        title = "Report"
        if definition_id is not None:
            definition = await self.get_definition(definition_id)
            config = definition.config
            title = definition.name
        elif config is None:
            raise ReportConfigError("either a report definition or a config is required")
        validate_report_config(config)

        row = await self._executions.create(
            execution_id=new_uuid7(),
            format=format.value,
            report_definition_id=definition_id,
            schedule_id=schedule_id,
            triggered_by=triggered_by,
            parameters=parameters,
        )
        execution_id = row.id
        logger.info("Execution %s pending (format=%s)", execution_id, format.value)

        await self._transition(execution_id, ExecutionStatus.PROCESSING, log_line="processing")
        started = time.perf_counter()
        try:
            columns, rows = await self._query_source.fetch(compile_query(config))
            total = await self._query_source.count(compile_count_query(config))
            content = render_rows(format, rows, columns, title=title, clock=self._clock)
            file_key = f"reports/{execution_id}.{FILE_EXTENSIONS[format]}"
            size = self._storage.put(file_key, content)
        except Exception as exc:
            logger.exception("Execution %s failed", execution_id)
            return await self._fail(execution_id, str(exc) or type(exc).__name__)

        elapsed = time.perf_counter() - started
        row = await self._transition(
            execution_id,
            ExecutionStatus.COMPLETED,
            record_count=total,
            file_size_bytes=size,
            file_key=file_key,
            completed_at=self._clock(),
            log_line=(
                f"completed in {elapsed:.3f}s: {total} matching, "
                f"{len(rows)} rendered, {ArtifactStorage.checksum(content)}"
            ),
        )
        logger.info(
            "Execution %s completed: %d rows, %d bytes in %.3fs",
            execution_id, len(rows), size, elapsed,
        )
        return to_execution(row)

    async def get_execution(self, execution_id: UUID) -> ReportExecution:
        row = await self._executions.get(execution_id)
        if row is None:
            raise ReportNotFoundError(f"execution {execution_id} not found")
        return to_execution(row)

    async def list_executions(self, **filters: Any) -> Page:
        page = await self._executions.list_filtered(**filters)
        return page._replace(items=[to_execution(r) for r in page.items])

    async def cancel_execution(self, execution_id: UUID) -> ReportExecution:
        """Only pending or processing executions can be cancelled."""
        execution = await self.get_execution(execution_id)
        if execution.is_terminal:
            raise ExecutionStateError(
                f"execution {execution_id} is already {execution.status.value}",
            )
        logger.info("Cancelling execution %s", execution_id)
        return await self._fail(execution_id, CANCELLED_MESSAGE)

    async def get_artifact(self, execution_id: UUID) -> Artifact:
        execution = await self.get_execution(execution_id)
        if execution.status != ExecutionStatus.COMPLETED:
            raise ExecutionStateError(
                f"execution {execution_id} is {execution.status.value}, not completed",
            )
        content = self._storage.get(execution.file_key)
        ext = FILE_EXTENSIONS[execution.format]
        return Artifact(
            content=content,
            media_type=MEDIA_TYPES[execution.format],
            filename=f"report_{execution_id}.{ext}",
        )

    async def _fail(self, execution_id: UUID, message: str) -> ReportExecution:
        row = await self._transition(
            execution_id,
            ExecutionStatus.FAILED,
            error_message=message,
            completed_at=self._clock(),
            log_line=f"failed: {message}",
        )
        return to_execution(row)

    async def _transition(self, execution_id: UUID, status: ExecutionStatus, **changes: Any):
        row = await self._executions.get(execution_id)
        if row is None:
            raise ReportNotFoundError(f"execution {execution_id} not found")
        if row.status in TERMINAL_EXECUTION_STATUSES:
            raise ExecutionStateError(
                f"execution {execution_id} is {row.status}, cannot move to {status.value}",
            )
        return await self._executions.update_status(execution_id, status.value, **changes)

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    async def create_schedule(self, schedule: ReportSchedule) -> ReportSchedule:
        await self.get_definition(schedule.report_definition_id)
        row = await self._schedules.create(
            schedule_id=schedule.id,
            report_definition_id=schedule.report_definition_id,
            name=schedule.name,
            cron_expression=schedule.cron_expression,
            format=schedule.format.value,
            delivery_method=schedule.delivery_method.value,
            timezone=schedule.timezone,
            start_date=schedule.start_date,
            end_date=schedule.end_date,
            is_active=schedule.is_active,
            delivery_config=schedule.delivery_config,
            recipient_emails=schedule.recipient_emails,
        )
        logger.info("Created schedule %s for report %s", row.id, row.report_definition_id)
        return to_schedule(row)

    async def get_schedule(self, schedule_id: UUID) -> ReportSchedule:
        row = await self._schedules.get(schedule_id)
        if row is None:
            raise ReportNotFoundError(f"schedule {schedule_id} not found")
        return to_schedule(row)

    async def update_schedule(self, schedule_id: UUID, **changes: Any) -> ReportSchedule:
        row = await self._schedules.update(schedule_id, **changes)
        if row is None:
            raise ReportNotFoundError(f"schedule {schedule_id} not found")
        return to_schedule(row)

    async def toggle_schedule(self, schedule_id: UUID) -> ReportSchedule:
        current = await self.get_schedule(schedule_id)
        row = await self._schedules.set_active(schedule_id, not current.is_active)
        return to_schedule(row)

    async def delete_schedule(self, schedule_id: UUID) -> None:
        if not await self._schedules.delete(schedule_id):
            raise ReportNotFoundError(f"schedule {schedule_id} not found")

    async def list_schedules(self, report_definition_id: UUID) -> list[ReportSchedule]:
        rows = await self._schedules.list_by_definition(report_definition_id)
        return [to_schedule(r) for r in rows]
