"""Paginated document (PDF) export with fpdf2.

Layout: optional title block (title, subtitle, "Generated: ..." line), a
table whose header row is repeated on every page, alternating row shading
and a "Page N of M" footer. Variants add a two-column summary block before
the table, or render several titled sections with independent tables.

Column widths come from header and content length, scaled to the usable
page width and clamped to [15, 60] mm. Long strings are cut to 50
characters.

The creation date and the "Generated" line both come from the exporter's
clock, so a fixed clock gives byte-identical output.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from fpdf import FPDF
from fpdf.enums import XPos, YPos
from fpdf.errors import FPDFException

from src.export.columns import Row, resolve_columns
from src.models.common import utc_now
from src.reporting.errors import ExportError

MIN_COLUMN_WIDTH = 15.0
MAX_COLUMN_WIDTH = 60.0
MAX_TEXT_LENGTH = 50

HEADER_ROW_HEIGHT = 8
DATA_ROW_HEIGHT = 7
ALT_ROW_FILL = (245, 245, 245)

FONT = "Helvetica"


@dataclass(frozen=True)
class PdfConfig:
    page_size: str = "A4"
    orientation: str = "landscape"
    title: str = "Report"
    subtitle: str = ""
    author: str = ""
    date_format: str = "%Y-%m-%d"
    include_header: bool = True
    include_footer: bool = True
    margin_top: float = 15
    margin_bottom: float = 15
    margin_left: float = 10
    margin_right: float = 10
    header_color: tuple[int, int, int] = (68, 114, 196)
    alternate_rows: bool = True


@dataclass(frozen=True)
class ReportSection:
    title: str
    rows: Sequence[Row] = ()
    columns: Sequence[str] | None = None
    description: str = ""


class _ReportPDF(FPDF):
    """FPDF with the page-number footer."""

    def __init__(self, config: PdfConfig) -> None:
        super().__init__(
            orientation="L" if config.orientation == "landscape" else "P",
            unit="mm",
            format=config.page_size,
        )
        self._show_footer = config.include_footer

    def footer(self) -> None:
        if not self._show_footer:
            return
        self.set_y(-10)
        self.set_font(FONT, "I", 8)
        self.set_text_color(128, 128, 128)
        self.cell(0, 10, f"Page {self.page_no()} of {{nb}}", align="C")


class PdfExporter:
    """Render rows to PDF bytes."""

    def __init__(
        self,
        config: PdfConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or PdfConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Public variants
    # ------------------------------------------------------------------

    def export(
        self,
        rows: Sequence[Row],
        columns: Sequence[str] | None = None,
        column_widths: Sequence[float] | None = None,
    ) -> bytes:
        cols = resolve_columns(rows, columns)
        pdf = self._start()
        widths = (
            list(column_widths)
            if column_widths and len(column_widths) == len(cols)
            else self.column_widths(pdf, cols, rows)
        )
        self._table(pdf, cols, widths, rows)
        return self._finish(pdf)

    def export_with_summary(
        self,
        rows: Sequence[Row],
        columns: Sequence[str] | None,
        summary: Mapping[str, Any],
    ) -> bytes:
        """Key/value summary block (two pairs per line) above the table."""
        cols = resolve_columns(rows, columns)
        pdf = self._start()
        if summary:
            self._summary(pdf, summary)
        self._table(pdf, cols, self.column_widths(pdf, cols, rows), rows)
        return self._finish(pdf)

    def export_sections(self, sections: Sequence[ReportSection]) -> bytes:
        """Several titled sections, each with its own table, in one document."""
        pdf = self._start()
        for i, section in enumerate(sections):
            if i > 0:
                pdf.ln(10)
            pdf.set_font(FONT, "B", 14)
            pdf.set_text_color(0, 0, 0)
            self._line(pdf, 10, section.title)

            if section.description:
                pdf.set_font(FONT, "", 10)
                pdf.set_text_color(100, 100, 100)
                pdf.multi_cell(
                    0, 5, _latin1(section.description),
                    new_x=XPos.LMARGIN, new_y=YPos.NEXT,
                )
                pdf.ln(3)

            if section.rows:
                cols = resolve_columns(section.rows, section.columns)
                widths = self.column_widths(pdf, cols, section.rows)
                self._table(pdf, cols, widths, section.rows)
        return self._finish(pdf)

    # ------------------------------------------------------------------
    # Layout helpers
    # ------------------------------------------------------------------

    def column_widths(
        self, pdf: FPDF, columns: Sequence[str], rows: Sequence[Row],
    ) -> list[float]:
        widths = [len(c) * 2.5 for c in columns]
        for row in rows:
            for i, col in enumerate(columns):
                widths[i] = max(widths[i], len(self.format_value(row.get(col))) * 2.0)

        total = sum(widths)
        scale = pdf.epw / total if total > 0 else 1.0
        return [
            min(max(w * scale, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH) for w in widths
        ]

    def format_value(self, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            return "Yes" if value else "No"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, (float, Decimal)):
            return f"{value:.2f}"
        if isinstance(value, (datetime, date)):
            return value.strftime(self.config.date_format)
        text = value if isinstance(value, str) else str(value)
        if len(text) > MAX_TEXT_LENGTH:
            return text[: MAX_TEXT_LENGTH - 3] + "..."
        return text

    def _start(self) -> FPDF:
        cfg = self.config
        now = self._clock()

        pdf = _ReportPDF(cfg)
        pdf.creation_date = now.astimezone(timezone.utc)
        pdf.set_title(cfg.title)
        if cfg.author:
            pdf.set_author(cfg.author)
        pdf.set_margins(cfg.margin_left, cfg.margin_top, cfg.margin_right)
        pdf.set_auto_page_break(True, margin=cfg.margin_bottom)
        pdf.add_page()

        if cfg.include_header:
            self._title_block(pdf, now)
        return pdf

    def _title_block(self, pdf: FPDF, now: datetime) -> None:
        cfg = self.config
        pdf.set_font(FONT, "B", 20)
        pdf.set_text_color(0, 0, 0)
        self._line(pdf, 12, cfg.title)

        if cfg.subtitle:
            pdf.set_font(FONT, "", 12)
            pdf.set_text_color(100, 100, 100)
            self._line(pdf, 8, cfg.subtitle)

        pdf.set_font(FONT, "", 10)
        pdf.set_text_color(128, 128, 128)
        self._line(pdf, 6, f"Generated: {now.strftime(cfg.date_format + ' %H:%M')}")
        pdf.ln(8)

    def _summary(self, pdf: FPDF, summary: Mapping[str, Any]) -> None:
        pdf.set_font(FONT, "B", 12)
        pdf.set_text_color(0, 0, 0)
        self._line(pdf, 8, "Summary")

        pdf.set_font(FONT, "", 10)
        label_w = pdf.epw * 0.3
        value_w = pdf.epw * 0.2
        col = 0
        for key, value in summary.items():
            pdf.set_text_color(100, 100, 100)
            pdf.cell(label_w, 6, _latin1(f"{key}:"), new_x=XPos.RIGHT, new_y=YPos.TOP)
            pdf.set_text_color(0, 0, 0)
            pdf.cell(value_w, 6, _latin1(self.format_value(value)), new_x=XPos.RIGHT, new_y=YPos.TOP)
            col += 1
            if col >= 2:
                pdf.ln()
                col = 0
        if col:
            pdf.ln()
        pdf.ln(5)

    def _table(
        self, pdf: FPDF, columns: Sequence[str], widths: Sequence[float], rows: Sequence[Row],
    ) -> None:
        if not columns:
            return
        # The header never sits alone at the bottom of a page.
        if rows and pdf.get_y() + HEADER_ROW_HEIGHT + DATA_ROW_HEIGHT > pdf.page_break_trigger:
            pdf.add_page()
        self._table_header(pdf, columns, widths)

        for idx, row in enumerate(rows):
            # Break ourselves so the new page starts with the header row.
            if pdf.get_y() + DATA_ROW_HEIGHT > pdf.page_break_trigger:
                pdf.add_page()
                self._table_header(pdf, columns, widths)

            if self.config.alternate_rows and idx % 2 == 1:
                pdf.set_fill_color(*ALT_ROW_FILL)
            else:
                pdf.set_fill_color(255, 255, 255)

            for i, col in enumerate(columns):
                pdf.cell(
                    widths[i], DATA_ROW_HEIGHT, _latin1(self.format_value(row.get(col))),
                    border=1, align="L", fill=True,
                    new_x=XPos.RIGHT, new_y=YPos.TOP,
                )
            pdf.ln()

    def _table_header(self, pdf: FPDF, columns: Sequence[str], widths: Sequence[float]) -> None:
        pdf.set_font(FONT, "B", 9)
        pdf.set_fill_color(*self.config.header_color)
        pdf.set_text_color(255, 255, 255)
        for i, col in enumerate(columns):
            pdf.cell(
                widths[i], HEADER_ROW_HEIGHT, _latin1(col),
                border=1, align="C", fill=True,
                new_x=XPos.RIGHT, new_y=YPos.TOP,
            )
        pdf.ln()
        pdf.set_font(FONT, "", 8)
        pdf.set_text_color(0, 0, 0)

    @staticmethod
    def _line(pdf: FPDF, height: float, text: str) -> None:
        pdf.cell(0, height, _latin1(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    @staticmethod
    def _finish(pdf: FPDF) -> bytes:
        try:
            return bytes(pdf.output())
        except FPDFException as exc:
            raise ExportError(f"failed to generate PDF: {exc}") from exc


def _latin1(text: str) -> str:
    """Core PDF fonts are latin-1 only."""
    return text.encode("latin-1", errors="replace").decode("latin-1")
