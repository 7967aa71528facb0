"""Query compiler: ReportConfig -> parameterized SQL text + positional args.

The output uses ``?`` placeholders and PostgreSQL functions (``date_trunc``,
``ILIKE``, ``= ANY(?)``). Lists in the config are rendered in the order
given: nothing is reordered or deduplicated, so a fixed config always
compiles to the same text and argument list.

Identifiers (dataset, field names, aliases) are emitted verbatim and must
be checked against the dataset catalog first (see
``src.reporting.datasets.validate_report_config``). Calculation
expressions are trusted SQL fragments written by privileged report
authors; they are inserted as-is.

Pure functions, no state.
"""

from __future__ import annotations

from typing import Any, NamedTuple

from src.models.report import FilterConfig, FilterOperator, ReportConfig, TimeGrain
from src.reporting.errors import QueryCompileError

_COMPARISONS: dict[str, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.NE: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


class CompiledQuery(NamedTuple):
    sql: str
    args: list[Any]


def compile_query(config: ReportConfig) -> CompiledQuery:
    """Render the SELECT ... FROM ... [WHERE] [GROUP BY] [ORDER BY] [LIMIT] query."""
    _check_minimum(config)

    select: list[str] = []
    for fc in config.fields:
        expr = f"{fc.aggregate.value}({fc.name})" if fc.aggregate else fc.name
        if fc.alias:
            expr = f"{expr} AS {fc.alias}"
        select.append(expr)
    for calc in config.calculations:
        select.append(f"({calc.expression}) AS {calc.name}")

    where, args = _where(config.filters)

    group_by = [
        f"date_trunc('{g.time_grain.value}', {g.field})"
        if g.time_grain != TimeGrain.NONE else g.field
        for g in config.groupings
    ]
    order_by = [
        f"{s.field} {'DESC' if s.direction.lower() == 'desc' else 'ASC'}"
        for s in config.sorts
    ]

    sql = f"SELECT {', '.join(select)} FROM {config.dataset}"
    if where:
        sql += f" WHERE {' AND '.join(where)}"
    if group_by:
        sql += f" GROUP BY {', '.join(group_by)}"
    if order_by:
        sql += f" ORDER BY {', '.join(order_by)}"
    if config.limit > 0:
        sql += f" LIMIT {config.limit}"
    return CompiledQuery(sql, args)


def compile_count_query(config: ReportConfig) -> CompiledQuery:
    """Render ``SELECT COUNT(*) FROM dataset [WHERE ...]`` with the same filter args."""
    if not config.dataset:
        raise QueryCompileError("dataset is required")

    where, args = _where(config.filters)
    sql = f"SELECT COUNT(*) FROM {config.dataset}"
    if where:
        sql += f" WHERE {' AND '.join(where)}"
    return CompiledQuery(sql, args)


def compile_filter(flt: FilterConfig) -> tuple[str, list[Any]]:
    """Render one condition and its args.

    A malformed value for ``in`` (not a list) or ``between`` (not exactly two
    values) yields an empty condition, which callers drop. Unknown
    operators compile to equality.
    """
    op = flt.operator
    field = flt.field

    if op in _COMPARISONS:
        return f"{field} {_COMPARISONS[op]} ?", [flt.value]
    if op == FilterOperator.LIKE:
        return f"{field} ILIKE ?", [f"%{_like_text(flt.value)}%"]
    if op == FilterOperator.IN:
        if isinstance(flt.value, list):
            return f"{field} = ANY(?)", [list(flt.value)]
        return "", []
    if op == FilterOperator.BETWEEN:
        if isinstance(flt.value, list) and len(flt.value) == 2:
            return f"{field} BETWEEN ? AND ?", [flt.value[0], flt.value[1]]
        return "", []
    if op == FilterOperator.IS_NULL:
        return f"{field} IS NULL", []
    if op == FilterOperator.IS_NOT_NULL:
        return f"{field} IS NOT NULL", []
    return f"{field} = ?", [flt.value]


def _where(filters: list[FilterConfig]) -> tuple[list[str], list[Any]]:
    conditions: list[str] = []
    args: list[Any] = []
    for flt in filters:
        condition, flt_args = compile_filter(flt)
        if not condition:
            continue
        conditions.append(condition)
        args.extend(flt_args)
    return conditions, args


def _like_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _check_minimum(config: ReportConfig) -> None:
    if not config.dataset:
        raise QueryCompileError("dataset is required")
    if not config.fields and not config.calculations:
        raise QueryCompileError("at least one field or calculation is required")
