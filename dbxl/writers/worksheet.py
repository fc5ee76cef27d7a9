# dbxl/writers/worksheet.py
"""
Build one worksheet from one query result.
"""
import logging
from enum import Enum
from typing import List, Optional

from .base import SheetWriter, WorkbookBackend
from ..cells import CellRenderResult, CellValueCoercer, ValueKind
from ..columns import ColumnDescriptor
from ..defaults import settings

logger = logging.getLogger(__name__)

DATA_ROW = 1
DATE_WIDTH = 10       # dd.MM.yyyy
TIMESTAMP_WIDTH = 23  # dd.MM.yyyy hh:mm:ss.000


class SheetState(Enum):
    EMPTY = 'empty'
    HEADER_WRITTEN = 'header_written'
    POPULATING = 'populating'
    DONE = 'done'


def display_width(result: CellRenderResult) -> int:
    """Approximate number of characters a rendered cell needs."""
    value = result.value
    if result.kind is ValueKind.NULL:
        return 0
    if result.kind is ValueKind.DATE:
        return DATE_WIDTH
    if result.kind is ValueKind.TIMESTAMP:
        return TIMESTAMP_WIDTH
    if isinstance(value, bool):
        return 5
    if isinstance(value, float):
        if value.is_integer():
            return len(str(int(value)))
        return len(repr(value))
    return max((len(line) for line in str(value).splitlines()), default=0)


class WorksheetBuilder:
    """
    Populate a new worksheet from a cursor.

    The builder writes the column labels to row 0, freezes the pane below them, then
    streams rows from the cursor starting at row 1. Column formats are resolved on the
    first data row and reused for the rest of the sheet; a query without rows leaves a
    header-only sheet and resolves no formats. Column widths are fitted to the longest
    rendered value once all rows are written.

    Parameters
    ----------
    workbook : WorkbookBackend
        Workbook receiving the new sheet
    coercer : CellValueCoercer, optional
        Renders cell values. A default coercer is created when omitted.

    Attributes
    ----------
    state : SheetState
        Progress of the current build
    column_formats : List[str] or None
        Display formats resolved on the first data row; None until then

    Example
    -------
    ::

        cursor.execute("SELECT id, amount FROM payments")
        builder = WorksheetBuilder(workbook)
        builder.build('Payments', cursor.column_descriptors(), cursor)
    """

    def __init__(self, workbook: WorkbookBackend, coercer: Optional[CellValueCoercer] = None):
        self.workbook = workbook
        self.coercer = coercer or CellValueCoercer()
        self.state = SheetState.EMPTY
        self.sheet: Optional[SheetWriter] = None
        self.columns: List[ColumnDescriptor] = []
        self.column_formats: Optional[List[str]] = None
        self._widths: List[int] = []

    def build(self, sheet_name: str, columns: List[ColumnDescriptor], rows) -> SheetWriter:
        """
        Create ``sheet_name`` and fill it.

        Args:
            sheet_name: Name of the new worksheet
            columns: Column descriptors of the result, in result order
            rows: Iterable of row sequences (a cursor), consumed once, forward only

        Returns:
            The SheetWriter of the new worksheet
        """
        self.state = SheetState.EMPTY
        self.column_formats = None
        self.columns = list(columns)
        self.sheet = self.workbook.add_sheet(sheet_name)

        self._write_header()
        self.sheet.freeze_header()

        row_index = DATA_ROW
        for row in rows:
            if self.column_formats is None:
                self._resolve_column_formats()
                self.state = SheetState.POPULATING
            self._write_row(row_index, row)
            row_index += 1

        self._fit_columns()
        self.state = SheetState.DONE
        logger.info(f"Wrote {self.sheet.row_count} rows to sheet '{sheet_name}'")
        return self.sheet

    def _write_header(self) -> None:
        labels = [column.label for column in self.columns]
        self.sheet.write_header(labels)
        self._widths = [len(label) for label in labels]
        self.state = SheetState.HEADER_WRITTEN

    def _resolve_column_formats(self) -> None:
        self.column_formats = [self.coercer.column_format(column) for column in self.columns]

    def _write_row(self, row_index: int, row) -> None:
        cells = []
        for col_idx, column_format in enumerate(self.column_formats):
            value = row[col_idx] if col_idx < len(row) else None
            result = self.coercer.coerce(value, column_format)
            self._widths[col_idx] = max(self._widths[col_idx], display_width(result))
            cells.append(result)
        self.sheet.write_row(row_index, cells)

    def _fit_columns(self) -> None:
        min_width = settings.get('min_column_width', 6)
        max_width = settings.get('max_column_width', 60)
        self.sheet.set_column_widths([min(max(width + 2, min_width), max_width) for width in self._widths])


def build_worksheet(sheet_name: str, workbook: WorkbookBackend, cursor,
                    coercer: Optional[CellValueCoercer] = None) -> SheetWriter:
    """Build ``sheet_name`` in ``workbook`` from an executed :class:`~dbxl.cursors.Cursor`."""
    builder = WorksheetBuilder(workbook, coercer)
    return builder.build(sheet_name, cursor.column_descriptors(), cursor)
