"""Column resolution shared by the export codecs."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

Row = Mapping[str, Any]


@dataclass(frozen=True)
class ColumnMapping:
    """Export column: source key, header text and an optional value formatter."""

    field_name: str
    display_name: str = ""
    data_type: str = ""
    formatter: Callable[[Any], str] | None = None

    @property
    def header(self) -> str:
        return self.display_name or self.field_name


def resolve_columns(rows: Sequence[Row], columns: Sequence[str] | None) -> list[str]:
    """Explicit columns win. Otherwise use the keys of the first row.

    The fallback follows the first row's key insertion order (dicts built by
    the SQL data source preserve SELECT order). Callers that need a stable
    order for heterogeneous rows must pass ``columns``.
    """
    if columns:
        return list(columns)
    if rows:
        return list(rows[0].keys())
    return []
