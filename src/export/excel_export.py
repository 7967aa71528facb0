"""Styled spreadsheet (XLSX) export.

Single- and multi-sheet workbooks with a styled header row, bordered data
cells, optional auto-filter, frozen header pane and per-column widths.
Charts can be attached to a sheet over its own data range.

Output is deterministic: workbook properties and ZIP member timestamps are
pinned to the exporter's clock, so identical rows + config + clock give
identical bytes.
"""

from __future__ import annotations

import io
import re
import zipfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from openpyxl import Workbook
from openpyxl.chart import AreaChart, BarChart, LineChart, PieChart, Reference, ScatterChart, Series
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError
from openpyxl.worksheet.worksheet import Worksheet

from src.export.columns import Row, resolve_columns
from src.models.common import utc_now
from src.reporting.errors import ExportError

DEFAULT_COLUMN_WIDTH = 15.0

CHART_TYPES = ("line", "bar", "column", "pie", "area", "scatter")


@dataclass(frozen=True)
class CellStyle:
    bold: bool = False
    italic: bool = False
    font_size: float | None = None
    font_color: str = ""
    fill_color: str = ""
    alignment: str = ""
    border: bool = False
    border_color: str = "000000"
    number_format: str = ""


HEADER_STYLE = CellStyle(
    bold=True,
    fill_color="4472C4",
    font_color="FFFFFF",
    alignment="center",
    border=True,
    border_color="000000",
)
DATA_STYLE = CellStyle(border=True, border_color="D3D3D3")


@dataclass(frozen=True)
class ExcelConfig:
    sheet_name: str = "Report"
    include_header: bool = True
    date_format: str = "yyyy-mm-dd"
    datetime_format: str = "yyyy-mm-dd hh:mm:ss"
    header_style: CellStyle | None = HEADER_STYLE
    data_style: CellStyle | None = DATA_STYLE
    auto_filter: bool = True
    freeze_header: bool = True
    column_widths: Mapping[str, float] = field(default_factory=dict)
    default_column_width: float = DEFAULT_COLUMN_WIDTH


@dataclass(frozen=True)
class ChartConfig:
    """Chart over the sheet's own data.

    ``category_column`` labels the x axis, each of ``value_columns`` becomes
    a series. Columns are referenced by name.
    """

    type: str
    title: str
    category_column: str
    value_columns: Sequence[str]
    anchor: str = "H2"
    width_cm: float = 15.0
    height_cm: float = 7.5


@dataclass
class SheetData:
    name: str
    rows: Sequence[Row]
    columns: Sequence[str] | None = None
    charts: Sequence[ChartConfig] = ()


class ExcelExporter:
    """Render rows to XLSX bytes with openpyxl."""

    def __init__(
        self,
        config: ExcelConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or ExcelConfig()
        self._clock = clock

    def export(
        self,
        rows: Sequence[Row],
        columns: Sequence[str] | None = None,
        *,
        charts: Sequence[ChartConfig] = (),
    ) -> bytes:
        sheet = SheetData(
            name=self.config.sheet_name or "Sheet1",
            rows=rows,
            columns=columns,
            charts=charts,
        )
        return self.export_multi_sheet([sheet])

    def export_multi_sheet(self, sheets: Sequence[SheetData]) -> bytes:
        """One worksheet per entry, in the given order."""
        if not sheets:
            raise ExportError("at least one sheet is required")

        wb = Workbook()
        # Remove default sheet
        wb.remove(wb.active)

        for sheet in sheets:
            try:
                ws = wb.create_sheet(sheet.name)
            except ValueError as exc:
                raise ExportError(f"invalid sheet name {sheet.name!r}: {exc}") from exc
            cols = self._write_sheet(ws, sheet.rows, sheet.columns)
            for chart in sheet.charts:
                self.add_chart(ws, chart, cols, len(sheet.rows))

        return self._save(wb)

    # ------------------------------------------------------------------
    # Sheet rendering
    # ------------------------------------------------------------------

    def _write_sheet(
        self, ws: Worksheet, rows: Sequence[Row], columns: Sequence[str] | None,
    ) -> list[str]:
        cfg = self.config
        cols = resolve_columns(rows, columns)
        header = _StyleSet(cfg.header_style)
        data = _StyleSet(cfg.data_style)

        first_data_row = 1
        if cfg.include_header:
            for col_idx, name in enumerate(cols, 1):
                header.apply(_put(ws, 1, col_idx, name))
            first_data_row = 2

        for row_idx, row in enumerate(rows, first_data_row):
            for col_idx, name in enumerate(cols, 1):
                value = self._cell_value(row.get(name))
                cell = _put(ws, row_idx, col_idx, value)
                data.apply(cell)
                if data.number_format:
                    continue
                if isinstance(value, datetime):
                    cell.number_format = cfg.datetime_format
                elif isinstance(value, date):
                    cell.number_format = cfg.date_format

        for col_idx, name in enumerate(cols, 1):
            width = cfg.column_widths.get(name, cfg.default_column_width)
            ws.column_dimensions[get_column_letter(col_idx)].width = width

        if cfg.auto_filter and cfg.include_header and cols and rows:
            ws.auto_filter.ref = f"A1:{get_column_letter(len(cols))}{len(rows) + 1}"

        if cfg.freeze_header and cfg.include_header:
            ws.freeze_panes = "A2"

        return cols

    @staticmethod
    def _cell_value(value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, datetime):
            # Excel has no time zones: store UTC wall time.
            if value.tzinfo is not None:
                return value.astimezone(timezone.utc).replace(tzinfo=None)
            return value
        if isinstance(value, (str, bool, int, float, Decimal, date)):
            return value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode("utf-8", errors="replace")
        if isinstance(value, UUID):
            return str(value)
        if hasattr(value, "item"):  # numpy scalar
            return value.item()
        return str(value)

    # ------------------------------------------------------------------
    # Charts
    # ------------------------------------------------------------------

    def add_chart(
        self, ws: Worksheet, chart_cfg: ChartConfig, columns: Sequence[str], n_rows: int,
    ) -> None:
        """Anchor a chart built from this sheet's columns at ``chart_cfg.anchor``."""
        if chart_cfg.type not in CHART_TYPES:
            raise ExportError(f"unsupported chart type: {chart_cfg.type!r}")
        if not self.config.include_header:
            raise ExportError("charts need a header row to name their series")
        try:
            cat_idx = list(columns).index(chart_cfg.category_column) + 1
            val_idx = [list(columns).index(c) + 1 for c in chart_cfg.value_columns]
        except ValueError as exc:
            raise ExportError(f"chart references unknown column: {exc}") from exc

        last_row = n_rows + 1
        categories = Reference(ws, min_col=cat_idx, min_row=2, max_row=last_row)

        if chart_cfg.type == "scatter":
            chart = ScatterChart()
            for idx in val_idx:
                values = Reference(ws, min_col=idx, min_row=1, max_row=last_row)
                chart.series.append(Series(values, categories, title_from_data=True))
        else:
            chart = _new_chart(chart_cfg.type)
            for idx in val_idx:
                values = Reference(ws, min_col=idx, min_row=1, max_row=last_row)
                chart.add_data(values, titles_from_data=True)
            chart.set_categories(categories)

        chart.title = chart_cfg.title
        chart.width = chart_cfg.width_cm
        chart.height = chart_cfg.height_cm
        if chart.legend is not None:
            chart.legend.position = "r"
        ws.add_chart(chart, chart_cfg.anchor)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def _save(self, wb: Workbook) -> bytes:
        stamp = self._clock().astimezone(timezone.utc).replace(tzinfo=None, microsecond=0)
        wb.properties.creator = "carbon-reporting"
        wb.properties.created = stamp
        wb.properties.modified = stamp

        buf = io.BytesIO()
        try:
            wb.save(buf)
        except (TypeError, ValueError) as exc:
            raise ExportError(f"failed to write workbook: {exc}") from exc
        return pin_archive_timestamps(buf.getvalue(), stamp)


def _put(ws: Worksheet, row: int, column: int, value: Any):
    """Write one cell. Strings stay text even when they look like formulas."""
    try:
        cell = ws.cell(row=row, column=column, value=value)
    except IllegalCharacterError as exc:
        raise ExportError(
            f"cell {get_column_letter(column)}{row} holds a character "
            f"the spreadsheet format cannot store: {value!r}"
        ) from exc
    if isinstance(value, str) and value.startswith("="):
        cell.data_type = "s"
    return cell


def _new_chart(kind: str):
    if kind == "line":
        return LineChart()
    if kind == "area":
        return AreaChart()
    if kind == "pie":
        return PieChart()
    chart = BarChart()
    chart.type = "bar" if kind == "bar" else "col"
    return chart


class _StyleSet:
    """openpyxl style objects for one CellStyle, built once per sheet."""

    def __init__(self, style: CellStyle | None) -> None:
        self.font = self.fill = self.alignment = self.border = None
        self.number_format = style.number_format if style is not None else ""
        if style is None:
            return
        if style.bold or style.italic or style.font_size or style.font_color:
            self.font = Font(
                bold=style.bold,
                italic=style.italic,
                size=style.font_size,
                color=style.font_color or None,
            )
        if style.fill_color:
            self.fill = PatternFill(
                fill_type="solid", start_color=style.fill_color, end_color=style.fill_color,
            )
        if style.alignment:
            self.alignment = Alignment(horizontal=style.alignment, vertical="center")
        if style.border:
            side = Side(style="thin", color=style.border_color)
            self.border = Border(left=side, right=side, top=side, bottom=side)

    def apply(self, cell) -> None:
        if self.font is not None:
            cell.font = self.font
        if self.fill is not None:
            cell.fill = self.fill
        if self.alignment is not None:
            cell.alignment = self.alignment
        if self.border is not None:
            cell.border = self.border
        if self.number_format:
            cell.number_format = self.number_format


_CORE_STAMP = re.compile(r"(<dcterms:(created|modified)[^>]*>)[^<]*(</dcterms:\2>)")


def pin_archive_timestamps(data: bytes, stamp: datetime) -> bytes:
    """Rewrite an OOXML archive with fixed member and core-property timestamps.

    openpyxl stamps ``modified`` with the wall clock at save time and
    zipfile stamps every member the same way.
    """
    iso = stamp.strftime("%Y-%m-%dT%H:%M:%SZ")
    date_time = (max(stamp.year, 1980), stamp.month, stamp.day, stamp.hour, stamp.minute, stamp.second)

    src = zipfile.ZipFile(io.BytesIO(data))
    out = io.BytesIO()
    with src, zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as dst:
        for info in src.infolist():
            payload = src.read(info.filename)
            if info.filename == "docProps/core.xml":
                text = payload.decode("utf-8")
                text = _CORE_STAMP.sub(lambda m: f"{m.group(1)}{iso}{m.group(3)}", text)
                payload = text.encode("utf-8")
            member = zipfile.ZipInfo(info.filename, date_time=date_time)
            member.compress_type = zipfile.ZIP_DEFLATED
            member.external_attr = info.external_attr
            dst.writestr(member, payload)
    return out.getvalue()
