"""Queryable dataset catalog and report configuration validation.

The catalog lists every dataset a report may select from, with per-field
metadata. ``validate_report_config`` checks a ReportConfig against it
before compilation so the compiler can stay a pure text transform.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.models.report import (
    AggregateFunction,
    FilterConfig,
    FilterLogic,
    FilterOperator,
    ReportConfig,
    TimeGrain,
)
from src.reporting.errors import ReportConfigError


@dataclass(frozen=True)
class FieldMetadata:
    name: str
    display_name: str
    data_type: str  # string, number, date, boolean
    is_aggregatable: bool = False
    is_filterable: bool = False
    is_groupable: bool = False
    allowed_values: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "data_type": self.data_type,
            "is_aggregatable": self.is_aggregatable,
            "is_filterable": self.is_filterable,
            "is_groupable": self.is_groupable,
            "allowed_values": list(self.allowed_values),
        }


@dataclass(frozen=True)
class DatasetMetadata:
    name: str
    display_name: str
    description: str
    fields: tuple[FieldMetadata, ...]
    join_with: tuple[str, ...] = ()

    def get_field(self, name: str) -> FieldMetadata | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "fields": [f.to_dict() for f in self.fields],
            "join_with": list(self.join_with),
        }


def _f(name: str, display: str, data_type: str, *, agg: bool = False,
       filt: bool = False, group: bool = False,
       allowed: tuple[str, ...] = ()) -> FieldMetadata:
    return FieldMetadata(
        name=name,
        display_name=display,
        data_type=data_type,
        is_aggregatable=agg,
        is_filterable=filt,
        is_groupable=group,
        allowed_values=allowed,
    )


DATASETS: tuple[DatasetMetadata, ...] = (
    DatasetMetadata(
        name="projects",
        display_name="Projects",
        description="Carbon credit projects including details, status, and metrics",
        fields=(
            _f("id", "Project ID", "string", filt=True, group=True),
            _f("name", "Project Name", "string", filt=True),
            _f("status", "Status", "string", filt=True, group=True,
               allowed=("active", "pending", "completed", "cancelled")),
            _f("methodology", "Methodology", "string", filt=True, group=True),
            _f("region", "Region", "string", filt=True, group=True),
            _f("total_area_hectares", "Total Area (ha)", "number", agg=True),
            _f("estimated_credits", "Estimated Credits", "number", agg=True),
            _f("created_at", "Created Date", "date", filt=True, group=True),
        ),
        join_with=("carbon_credits", "monitoring_data"),
    ),
    DatasetMetadata(
        name="carbon_credits",
        display_name="Carbon Credits",
        description="Issued and traded carbon credits",
        fields=(
            _f("id", "Credit ID", "string", filt=True),
            _f("project_id", "Project ID", "string", filt=True, group=True),
            _f("quantity", "Quantity", "number", agg=True),
            _f("vintage_year", "Vintage Year", "number", filt=True, group=True),
            _f("status", "Status", "string", filt=True, group=True,
               allowed=("issued", "retired", "transferred", "pending")),
            _f("price_per_credit", "Price per Credit", "number", agg=True),
            _f("issued_at", "Issued Date", "date", filt=True, group=True),
        ),
        join_with=("projects", "transactions"),
    ),
    DatasetMetadata(
        name="transactions",
        display_name="Transactions",
        description="Financial transactions and revenue",
        fields=(
            _f("id", "Transaction ID", "string", filt=True),
            _f("type", "Type", "string", filt=True, group=True,
               allowed=("sale", "purchase", "retirement", "transfer")),
            _f("amount", "Amount", "number", agg=True),
            _f("currency", "Currency", "string", filt=True, group=True),
            _f("status", "Status", "string", filt=True, group=True),
            _f("created_at", "Date", "date", filt=True, group=True),
        ),
        join_with=("carbon_credits",),
    ),
    DatasetMetadata(
        name="monitoring_data",
        display_name="Monitoring Data",
        description="Environmental monitoring measurements",
        fields=(
            _f("id", "Reading ID", "string", filt=True),
            _f("project_id", "Project ID", "string", filt=True, group=True),
            _f("metric_type", "Metric Type", "string", filt=True, group=True),
            _f("value", "Value", "number", agg=True),
            _f("unit", "Unit", "string", filt=True),
            _f("recorded_at", "Recorded Date", "date", filt=True, group=True),
        ),
        join_with=("projects",),
    ),
)

_BY_NAME: dict[str, DatasetMetadata] = {d.name: d for d in DATASETS}

# Aggregates that only make sense over numeric columns.
_NUMERIC_AGGREGATES = frozenset({AggregateFunction.SUM, AggregateFunction.AVG})


def list_datasets() -> list[DatasetMetadata]:
    return list(DATASETS)


def get_dataset(name: str) -> DatasetMetadata | None:
    return _BY_NAME.get(name)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_report_config(
    config: ReportConfig,
    catalog: dict[str, DatasetMetadata] | None = None,
) -> DatasetMetadata:
    """Reject configurations the compiler would turn into a broken query.

    Checks: the dataset exists, at least one field is selected, every
    referenced field exists with the capability it is used for, filter
    values have the shape their operator needs, and filters use AND logic.
    Calculation expressions are trusted text and are not inspected.

    Returns the dataset metadata. Raises ReportConfigError on the first
    problem found.
    """
    catalog = _BY_NAME if catalog is None else catalog

    if not config.dataset:
        raise ReportConfigError("dataset is required")
    dataset = catalog.get(config.dataset)
    if dataset is None:
        raise ReportConfigError(f"unknown dataset: {config.dataset!r}")
    if not config.fields:
        raise ReportConfigError("at least one field is required")

    for fc in config.fields:
        meta = _require_field(dataset, fc.name, "field")
        if fc.aggregate in _NUMERIC_AGGREGATES and not meta.is_aggregatable:
            raise ReportConfigError(
                f"field {fc.name!r} cannot be aggregated with {fc.aggregate.value}",
            )

    for flt in config.filters:
        meta = _require_field(dataset, flt.field, "filter")
        if not meta.is_filterable:
            raise ReportConfigError(f"field {flt.field!r} is not filterable")
        _check_filter(flt)

    for grp in config.groupings:
        meta = _require_field(dataset, grp.field, "grouping")
        if not meta.is_groupable:
            raise ReportConfigError(f"field {grp.field!r} is not groupable")
        if grp.time_grain != TimeGrain.NONE and meta.data_type != "date":
            raise ReportConfigError(
                f"time grain {grp.time_grain.value!r} requires a date field, "
                f"{grp.field!r} is {meta.data_type}",
            )

    # Sorting may target an output alias or a calculation as well as a column.
    output_names = {fc.alias for fc in config.fields if fc.alias}
    output_names |= {c.name for c in config.calculations}
    for srt in config.sorts:
        if srt.field not in output_names:
            _require_field(dataset, srt.field, "sort")

    return dataset


def _require_field(dataset: DatasetMetadata, name: str, usage: str) -> FieldMetadata:
    meta = dataset.get_field(name)
    if meta is None:
        raise ReportConfigError(
            f"{usage} references unknown field {name!r} in dataset {dataset.name!r}",
        )
    return meta


def _check_filter(flt: FilterConfig) -> None:
    if flt.logic != FilterLogic.AND:
        raise ReportConfigError(
            f"filter on {flt.field!r}: only AND logic is supported",
        )
    op = flt.operator
    if op == FilterOperator.IN and not isinstance(flt.value, list):
        raise ReportConfigError(f"filter on {flt.field!r}: 'in' needs a list value")
    if op == FilterOperator.BETWEEN and (
        not isinstance(flt.value, list) or len(flt.value) != 2
    ):
        raise ReportConfigError(
            f"filter on {flt.field!r}: 'between' needs exactly two values",
        )
    if op not in {o.value for o in FilterOperator}:
        raise ReportConfigError(f"filter on {flt.field!r}: unknown operator {op!r}")
