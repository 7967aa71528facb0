"""FastAPI report endpoints.

GET    /v1/reports/datasets                          - dataset catalog
GET    /v1/reports/datasets/{name}                   - one dataset
POST   /v1/reports/compile                           - compile preview (SQL + args)
POST   /v1/reports/export                            - run an ad-hoc config, return the file
POST   /v1/reports/execute                           - ad-hoc execution with stored artifact
POST   /v1/reports                                   - create definition
GET    /v1/reports                                   - list definitions
GET    /v1/reports/templates                         - public templates
GET    /v1/reports/{report_id}                       - get definition
PUT    /v1/reports/{report_id}                       - replace definition (version++)
DELETE /v1/reports/{report_id}                       - soft delete
POST   /v1/reports/{report_id}/clone                 - private copy
POST   /v1/reports/{report_id}/execute               - execute definition
GET    /v1/reports/{report_id}/executions            - execution history
GET    /v1/reports/executions/{execution_id}         - execution status
POST   /v1/reports/executions/{execution_id}/cancel  - cancel pending/processing
GET    /v1/reports/executions/{execution_id}/download - artifact bytes
POST   /v1/reports/{report_id}/schedules             - create schedule
GET    /v1/reports/{report_id}/schedules             - list schedules
GET    /v1/reports/schedules/{schedule_id}           - get schedule
PATCH  /v1/reports/schedules/{schedule_id}           - update schedule
POST   /v1/reports/schedules/{schedule_id}/toggle    - flip is_active
DELETE /v1/reports/schedules/{schedule_id}           - delete schedule

Caller identity travels as an explicit ``user_id`` parameter.
"""

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from src.api.dependencies import get_report_query_source, get_report_service
from src.config.settings import Settings, get_settings
from src.export.csv_export import CsvConfig, CsvExporter
from src.models.common import ExportFormat, Visibility
from src.models.report import (
    DeliveryMethod,
    ExecutionStatus,
    ReportCategory,
    ReportConfig,
    ReportDefinition,
    ReportExecution,
    ReportSchedule,
)
from src.reporting.datasets import get_dataset, list_datasets, validate_report_config
from src.reporting.errors import (
    ExecutionStateError,
    ReportConfigError,
    ReportingError,
    ReportNotFoundError,
)
from src.reporting.query_compiler import compile_count_query, compile_query
from src.reporting.service import (
    FILE_EXTENSIONS,
    MEDIA_TYPES,
    QuerySource,
    ReportService,
    render_rows,
)

router = APIRouter(prefix="/v1/reports", tags=["reports"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CompileResponse(BaseModel):
    sql: str
    args: list[Any]
    count_sql: str


class ExportRequest(BaseModel):
    config: ReportConfig
    format: ExportFormat = ExportFormat.CSV
    title: str = "Report"
    stream: bool = Field(default=False, description="Stream CSV in chunks.")


class ExecuteRequest(BaseModel):
    format: ExportFormat = ExportFormat.CSV
    parameters: dict[str, Any] = Field(default_factory=dict)
    triggered_by: UUID | None = None


class AdHocExecuteRequest(ExecuteRequest):
    config: ReportConfig


class CreateReportRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: ReportCategory | None = None
    config: ReportConfig
    created_by: UUID | None = None
    visibility: Visibility = Visibility.PRIVATE
    shared_with_users: list[UUID] = Field(default_factory=list)
    is_template: bool = False


class UpdateReportRequest(BaseModel):
    config: ReportConfig
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    visibility: Visibility | None = None
    shared_with_users: list[UUID] | None = None
    is_template: bool | None = None


class CloneReportRequest(BaseModel):
    name: str | None = None
    created_by: UUID | None = None


class CreateScheduleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    cron_expression: str = Field(..., min_length=1, max_length=100)
    timezone: str = "UTC"
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool = True
    format: ExportFormat
    delivery_method: DeliveryMethod
    delivery_config: dict[str, Any] = Field(default_factory=dict)
    recipient_emails: list[str] = Field(default_factory=list)


class UpdateScheduleRequest(BaseModel):
    name: str | None = None
    cron_expression: str | None = Field(default=None, min_length=1, max_length=100)
    timezone: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    format: ExportFormat | None = None
    delivery_method: DeliveryMethod | None = None
    delivery_config: dict[str, Any] | None = None
    recipient_emails: list[str] | None = None


class PageMeta(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int


class ReportListResponse(PageMeta):
    items: list[ReportDefinition]


class ExecutionListResponse(PageMeta):
    items: list[ReportExecution]


def _to_http(exc: ReportingError) -> HTTPException:
    if isinstance(exc, ReportNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ExecutionStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ReportConfigError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


# ---------------------------------------------------------------------------
# Catalog and preview (stateless)
# ---------------------------------------------------------------------------


@router.get("/datasets")
async def get_datasets() -> list[dict]:
    return [d.to_dict() for d in list_datasets()]


@router.get("/datasets/{name}")
async def get_dataset_by_name(name: str) -> dict:
    dataset = get_dataset(name)
    if dataset is None:
        raise HTTPException(status_code=404, detail=f"Dataset {name} not found.")
    return dataset.to_dict()


@router.post("/compile", response_model=CompileResponse)
async def compile_preview(
    config: ReportConfig,
    validate: bool = Query(default=True),
) -> CompileResponse:
    """Show the SQL a config compiles to without running it."""
    try:
        if validate:
            validate_report_config(config)
        query = compile_query(config)
        count = compile_count_query(config)
    except ReportingError as exc:
        raise _to_http(exc) from exc
    return CompileResponse(sql=query.sql, args=query.args, count_sql=count.sql)


@router.post("/export")
async def export_report(
    body: ExportRequest,
    query_source: QuerySource = Depends(get_report_query_source),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Run an ad-hoc config and return the encoded file directly."""
    try:
        validate_report_config(body.config)
        columns, rows = await query_source.fetch(compile_query(body.config))
    except ReportingError as exc:
        raise _to_http(exc) from exc

    filename = f"report.{FILE_EXTENSIONS[body.format]}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if body.stream and body.format == ExportFormat.CSV:
        exporter = CsvExporter(CsvConfig(flush_rows=settings.EXPORT_STREAM_FLUSH_ROWS))

        async def _rows() -> AsyncIterator[dict]:
            for row in rows:
                yield row

        return StreamingResponse(
            exporter.stream(_rows(), columns),
            media_type=MEDIA_TYPES[ExportFormat.CSV],
            headers=headers,
        )

    try:
        content = render_rows(body.format, rows, columns, title=body.title)
    except ReportingError as exc:
        raise _to_http(exc) from exc
    return Response(content=content, media_type=MEDIA_TYPES[body.format], headers=headers)


@router.post("/execute", status_code=201, response_model=ReportExecution)
async def execute_adhoc(
    body: AdHocExecuteRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportExecution:
    try:
        return await service.execute_report(
            config=body.config,
            format=body.format,
            triggered_by=body.triggered_by,
            parameters=body.parameters,
        )
    except ReportingError as exc:
        raise _to_http(exc) from exc


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@router.post("", status_code=201, response_model=ReportDefinition)
async def create_report(
    body: CreateReportRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportDefinition:
    try:
        return await service.create_definition(
            name=body.name,
            config=body.config,
            description=body.description,
            category=body.category,
            created_by=body.created_by,
            visibility=body.visibility,
            shared_with_users=body.shared_with_users,
            is_template=body.is_template,
        )
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.get("", response_model=ReportListResponse)
async def list_reports(
    category: ReportCategory | None = None,
    visibility: Visibility | None = None,
    created_by: UUID | None = None,
    is_template: bool | None = None,
    search: str | None = None,
    user_id: UUID | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1),
    service: ReportService = Depends(get_report_service),
) -> ReportListResponse:
    result = await service.list_definitions(
        category=category,
        visibility=visibility,
        created_by=created_by,
        is_template=is_template,
        search=search,
        user_id=user_id,
        page=page,
        page_size=page_size,
    )
    return ReportListResponse(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/templates", response_model=list[ReportDefinition])
async def list_templates(
    category: ReportCategory | None = None,
    service: ReportService = Depends(get_report_service),
) -> list[ReportDefinition]:
    return await service.list_templates(category)


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


@router.get("/executions/{execution_id}", response_model=ReportExecution)
async def get_execution(
    execution_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> ReportExecution:
    try:
        return await service.get_execution(execution_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.post("/executions/{execution_id}/cancel", response_model=ReportExecution)
async def cancel_execution(
    execution_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> ReportExecution:
    try:
        return await service.cancel_execution(execution_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.get("/executions/{execution_id}/download")
async def download_execution(
    execution_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> Response:
    try:
        artifact = await service.get_artifact(execution_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


# ---------------------------------------------------------------------------
# Schedules (by id)
# ---------------------------------------------------------------------------


@router.get("/schedules/{schedule_id}", response_model=ReportSchedule)
async def get_schedule(
    schedule_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> ReportSchedule:
    try:
        return await service.get_schedule(schedule_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.patch("/schedules/{schedule_id}", response_model=ReportSchedule)
async def update_schedule(
    schedule_id: UUID,
    body: UpdateScheduleRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportSchedule:
    changes = body.model_dump(exclude_none=True)
    if "cron_expression" in changes and not changes["cron_expression"].strip():
        raise HTTPException(status_code=422, detail="cron_expression must not be blank")
    try:
        return await service.update_schedule(schedule_id, **changes)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.post("/schedules/{schedule_id}/toggle", response_model=ReportSchedule)
async def toggle_schedule(
    schedule_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> ReportSchedule:
    try:
        return await service.toggle_schedule(schedule_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.delete("/schedules/{schedule_id}", status_code=204)
async def delete_schedule(
    schedule_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> Response:
    try:
        await service.delete_schedule(schedule_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Definition by id
# ---------------------------------------------------------------------------


@router.get("/{report_id}", response_model=ReportDefinition)
async def get_report(
    report_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> ReportDefinition:
    try:
        return await service.get_definition(report_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.put("/{report_id}", response_model=ReportDefinition)
async def update_report(
    report_id: UUID,
    body: UpdateReportRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportDefinition:
    try:
        return await service.update_definition(
            report_id,
            config=body.config,
            name=body.name,
            description=body.description,
            visibility=body.visibility,
            shared_with_users=body.shared_with_users,
            is_template=body.is_template,
        )
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.delete("/{report_id}", status_code=204)
async def delete_report(
    report_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> Response:
    try:
        await service.delete_definition(report_id)
    except ReportingError as exc:
        raise _to_http(exc) from exc
    return Response(status_code=204)


@router.post("/{report_id}/clone", status_code=201, response_model=ReportDefinition)
async def clone_report(
    report_id: UUID,
    body: CloneReportRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportDefinition:
    try:
        return await service.clone_definition(
            report_id, name=body.name, created_by=body.created_by,
        )
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.post("/{report_id}/execute", status_code=201, response_model=ReportExecution)
async def execute_report(
    report_id: UUID,
    body: ExecuteRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportExecution:
    try:
        return await service.execute_report(
            definition_id=report_id,
            format=body.format,
            triggered_by=body.triggered_by,
            parameters=body.parameters,
        )
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.get("/{report_id}/executions", response_model=ExecutionListResponse)
async def list_executions(
    report_id: UUID,
    status: ExecutionStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1),
    service: ReportService = Depends(get_report_service),
) -> ExecutionListResponse:
    result = await service.list_executions(
        report_definition_id=report_id,
        status=status,
        page=page,
        page_size=page_size,
    )
    return ExecutionListResponse(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.post("/{report_id}/schedules", status_code=201, response_model=ReportSchedule)
async def create_schedule(
    report_id: UUID,
    body: CreateScheduleRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportSchedule:
    try:
        schedule = ReportSchedule(report_definition_id=report_id, **body.model_dump())
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    try:
        return await service.create_schedule(schedule)
    except ReportingError as exc:
        raise _to_http(exc) from exc


@router.get("/{report_id}/schedules", response_model=list[ReportSchedule])
async def list_schedules(
    report_id: UUID,
    service: ReportService = Depends(get_report_service),
) -> list[ReportSchedule]:
    return await service.list_schedules(report_id)
