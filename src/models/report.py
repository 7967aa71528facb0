"""Report models: declarative ReportConfig and the stored definition,
schedule and execution records built around it."""

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import Field, field_validator

from src.models.common import (
    ExportFormat,
    ReportingBase,
    UTCTimestamp,
    UUIDv7,
    Visibility,
    new_uuid7,
    utc_now,
)


class AggregateFunction(StrEnum):
    """SQL aggregate applied to a selected field."""

    SUM = "SUM"
    AVG = "AVG"
    COUNT = "COUNT"
    MIN = "MIN"
    MAX = "MAX"


class FilterOperator(StrEnum):
    """Comparison operators understood by the query compiler."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    IN = "in"
    BETWEEN = "between"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class FilterLogic(StrEnum):
    AND = "AND"
    OR = "OR"


class TimeGrain(StrEnum):
    """Bucket size for date grouping (rendered with date_trunc)."""

    NONE = "none"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class ReportCategory(StrEnum):
    FINANCIAL = "financial"
    OPERATIONAL = "operational"
    COMPLIANCE = "compliance"
    CUSTOM = "custom"


class ExecutionStatus(StrEnum):
    """Lifecycle of a report execution: pending -> processing -> completed|failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_EXECUTION_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED},
)


class DeliveryMethod(StrEnum):
    EMAIL = "email"
    S3 = "s3"
    WEBHOOK = "webhook"


# ---------------------------------------------------------------------------
# ReportConfig and its parts
# ---------------------------------------------------------------------------


class FieldConfig(ReportingBase):
    """A selected column, optionally aggregated and aliased."""

    name: str = Field(..., min_length=1)
    alias: str = ""
    aggregate: AggregateFunction | None = None
    format: str = ""
    is_hidden: bool = False
    sort_order: int = 0
    data_type: str = ""

    @field_validator("aggregate", mode="before")
    @classmethod
    def _blank_aggregate_is_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()
            return v or None
        return v


class FilterConfig(ReportingBase):
    """A single WHERE condition.

    ``operator`` is kept as free text: unknown operators compile to
    equality. ``value`` shape depends on the operator (a list for ``in``,
    a two-element list for ``between``, ignored for the null checks).
    """

    field: str = Field(..., min_length=1)
    operator: str = FilterOperator.EQ.value
    value: Any = None
    logic: FilterLogic = FilterLogic.AND

    @field_validator("logic", mode="before")
    @classmethod
    def _default_logic(cls, v: Any) -> Any:
        if v is None or v == "":
            return FilterLogic.AND
        if isinstance(v, str):
            return v.upper()
        return v


class GroupConfig(ReportingBase):
    field: str = Field(..., min_length=1)
    order: int = 0
    time_grain: TimeGrain = TimeGrain.NONE

    @field_validator("time_grain", mode="before")
    @classmethod
    def _blank_grain_is_none(cls, v: Any) -> Any:
        if v is None or v == "":
            return TimeGrain.NONE
        return v


class SortConfig(ReportingBase):
    """ORDER BY entry. Anything other than ``desc`` sorts ascending."""

    field: str = Field(..., min_length=1)
    direction: str = "asc"
    order: int = 0


class CalculationConfig(ReportingBase):
    """A computed column emitted as ``(expression) AS name``.

    The expression is inserted into the query verbatim. Only privileged
    report authors may define calculations; nothing here parses or
    sanitises the text. A bare ``?`` outside a quoted literal is taken for
    a bind placeholder when the query runs, so the jsonb ``?`` operators
    cannot be used here (``jsonb_exists`` can).
    """

    name: str = Field(..., min_length=1)
    expression: str = Field(..., min_length=1)
    data_type: str = "number"


class ReportConfig(ReportingBase):
    """Declarative description of one aggregation query."""

    dataset: str = ""
    fields: list[FieldConfig] = Field(default_factory=list)
    filters: list[FilterConfig] = Field(default_factory=list)
    groupings: list[GroupConfig] = Field(default_factory=list)
    sorts: list[SortConfig] = Field(default_factory=list)
    calculations: list[CalculationConfig] = Field(default_factory=list)
    limit: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


class ReportDefinition(ReportingBase):
    """A saved report. Updates replace the whole config and bump ``version``."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: ReportCategory | None = None
    config: ReportConfig
    created_by: UUID | None = None
    visibility: Visibility = Visibility.PRIVATE
    shared_with_users: list[UUID] = Field(default_factory=list)
    version: int = Field(default=1, ge=1)
    is_template: bool = False
    based_on_template_id: UUID | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)


class ReportSchedule(ReportingBase):
    """Recurring delivery configuration for a report definition."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    report_definition_id: UUID
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
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)

    @field_validator("cron_expression")
    @classmethod
    def _cron_not_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "cron_expression must not be blank"
            raise ValueError(msg)
        return v.strip()


class ReportExecution(ReportingBase):
    """One run of a report definition (or of an ad-hoc config)."""

    id: UUIDv7 = Field(default_factory=new_uuid7)
    report_definition_id: UUID | None = None
    schedule_id: UUID | None = None
    triggered_by: UUID | None = None
    triggered_at: UTCTimestamp = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    format: ExportFormat = ExportFormat.CSV
    error_message: str = ""
    record_count: int = 0
    file_size_bytes: int = 0
    file_key: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    execution_log: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXECUTION_STATUSES
