"""Delimited-text (CSV) export, buffered and streaming.

Both paths share one record formatter, so for the same rows and columns the
concatenated stream chunks equal ``export()`` byte for byte. Row order is
preserved.
"""

from __future__ import annotations

import asyncio
import csv
import io
import logging
from collections.abc import AsyncIterable, AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

import numpy as np

from src.export.columns import ColumnMapping, Row, resolve_columns
from src.reporting.errors import ExportCancelledError, ExportError

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_ROWS = 1000


@dataclass(frozen=True)
class CsvConfig:
    delimiter: str = ","
    use_crlf: bool = True
    include_header: bool = True
    date_format: str = "%Y-%m-%d"
    time_format: str = "%H:%M:%S"
    null_value: str = ""
    quote_char: str = '"'
    flush_rows: int = DEFAULT_FLUSH_ROWS


class CsvExporter:
    """Render rows as CSV bytes (UTF-8)."""

    def __init__(self, config: CsvConfig | None = None) -> None:
        self.config = config or CsvConfig()

    # ------------------------------------------------------------------
    # Buffered
    # ------------------------------------------------------------------

    def export(self, rows: Sequence[Row], columns: Sequence[str] | None = None) -> bytes:
        cols = resolve_columns(rows, columns)
        buf = io.StringIO()
        writer = self._writer(buf)

        if self.config.include_header and cols:
            self._write(writer, cols)
        for row in rows:
            self._write(writer, self._record(row, cols))
        return buf.getvalue().encode("utf-8")

    def export_with_mapping(
        self, rows: Sequence[Row], mappings: Sequence[ColumnMapping],
    ) -> bytes:
        """Export with renamed headers and per-column formatters."""
        buf = io.StringIO()
        writer = self._writer(buf)

        if self.config.include_header:
            self._write(writer, [m.header for m in mappings])
        for row in rows:
            record = []
            for m in mappings:
                value = row.get(m.field_name)
                record.append(m.formatter(value) if m.formatter else self.format_value(value))
            self._write(writer, record)
        return buf.getvalue().encode("utf-8")

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        rows: AsyncIterable[Row],
        columns: Sequence[str] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[bytes]:
        """Yield CSV chunks while consuming ``rows``.

        The header is its own chunk: emitted immediately when ``columns`` is
        given, otherwise as soon as the first row fixes the column set. Data
        is flushed every ``flush_rows`` rows and once more at the end.

        When ``cancel_event`` is set the stream raises ExportCancelledError
        before writing the next row; buffered but unflushed rows are dropped.
        Task cancellation propagates the same way.
        """
        cols = list(columns) if columns else []
        buf = io.StringIO()
        writer = self._writer(buf)
        flush_every = max(self.config.flush_rows, 1)

        if self.config.include_header and cols:
            self._write(writer, cols)
            yield _drain(buf)

        count = 0
        async for row in rows:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("CSV stream cancelled after %d rows", count)
                raise ExportCancelledError(f"export cancelled after {count} rows")

            if not cols:
                cols = list(row.keys())
                if self.config.include_header and cols:
                    self._write(writer, cols)
                    yield _drain(buf)

            self._write(writer, self._record(row, cols))
            count += 1
            if count % flush_every == 0:
                yield _drain(buf)

        if buf.tell():
            yield _drain(buf)

    # ------------------------------------------------------------------
    # Formatting
    # ------------------------------------------------------------------

    def format_value(self, value: Any) -> str:
        if value is None:
            return self.config.null_value
        if isinstance(value, str):
            return value
        if isinstance(value, (bool, np.bool_)):
            return "true" if value else "false"
        if isinstance(value, (int, np.integer)):
            return str(int(value))
        if isinstance(value, (float, np.floating)):
            return np.format_float_positional(value, trim="-")
        if isinstance(value, Decimal):
            return format(value, "f")
        if isinstance(value, datetime):
            if value.time() == time(0, 0, 0):
                return value.strftime(self.config.date_format)
            return value.strftime(f"{self.config.date_format} {self.config.time_format}")
        if isinstance(value, date):
            return value.strftime(self.config.date_format)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode("utf-8", errors="replace")
        return str(value)

    def _record(self, row: Row, cols: Sequence[str]) -> list[str]:
        return [self.format_value(row.get(c)) for c in cols]

    def _writer(self, buf: io.StringIO):
        return csv.writer(
            buf,
            delimiter=self.config.delimiter,
            quotechar=self.config.quote_char,
            lineterminator="\r\n" if self.config.use_crlf else "\n",
            quoting=csv.QUOTE_MINIMAL,
        )

    @staticmethod
    def _write(writer, record: Sequence[str]) -> None:
        try:
            writer.writerow(record)
        except csv.Error as exc:
            raise ExportError(f"failed to write CSV record: {exc}") from exc


def _drain(buf: io.StringIO) -> bytes:
    data = buf.getvalue().encode("utf-8")
    buf.seek(0)
    buf.truncate(0)
    return data
