# dbxl/writers/excel.py
"""
Excel (.xlsx) workbook backends using openpyxl.

* :class:`XLSXWorkbook` keeps the whole workbook in memory.
* :class:`StreamingXLSXWorkbook` uses openpyxl's write-only mode: each row is serialized
  as soon as it is appended, so memory stays flat for very large result sets.
  openpyxl writes column widths before the first row, so streamed columns are sized
  from their header labels only and do not grow to fit longer data values.
"""
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .base import SheetWriter, WorkbookBackend
from ..cells import CellRenderResult
from ..defaults import settings

logger = logging.getLogger(__name__)

HEADER_FONT = Font(bold=True)
HEADER_CELL = 'A2'  # top-left cell of the scrolling pane below the header row


def _clean_value(value: Any) -> Any:
    """Strip control characters that cannot be stored in OOXML."""
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub('', value)
    return value


def _apply(cell, result: CellRenderResult) -> None:
    cell.value = _clean_value(result.value)
    if isinstance(result.value, str):
        # keep text that starts with '=' from being stored as a formula
        cell.data_type = 's'
    if result.number_format:
        cell.number_format = result.number_format


def header_width(label: str) -> int:
    """Column width derived from a header label alone."""
    return min(max(len(label) + 2, settings.get('min_column_width', 6)),
               settings.get('max_column_width', 60))


class XLSXSheet(SheetWriter):
    """Worksheet of an in-memory openpyxl workbook."""

    def __init__(self, worksheet):
        super().__init__(worksheet.title)
        self.worksheet = worksheet

    def write_header(self, labels: Sequence[str]) -> None:
        for col_idx, label in enumerate(labels, 1):
            cell = self.worksheet.cell(row=1, column=col_idx, value=_clean_value(label))
            cell.data_type = 's'
            cell.font = HEADER_FONT

    def freeze_header(self) -> None:
        self.worksheet.freeze_panes = HEADER_CELL

    def write_row(self, row_index: int, cells: Sequence[CellRenderResult]) -> None:
        for col_idx, result in enumerate(cells, 1):
            _apply(self.worksheet.cell(row=row_index + 1, column=col_idx), result)
        self.row_count += 1

    def set_column_widths(self, widths: Sequence[float]) -> None:
        for col_idx, width in enumerate(widths, 1):
            self.worksheet.column_dimensions[get_column_letter(col_idx)].width = width


class XLSXWorkbook(WorkbookBackend):
    """In-memory .xlsx workbook."""

    extension = '.xlsx'

    def __init__(self):
        super().__init__()
        self.workbook = Workbook()
        if 'Sheet' in self.workbook.sheetnames:
            self.workbook.remove(self.workbook['Sheet'])

    def _create_sheet(self, name: str) -> SheetWriter:
        return XLSXSheet(self.workbook.create_sheet(name))

    def _save(self, path: Path) -> None:
        self.workbook.save(path)

    def close(self) -> None:
        self.workbook.close()


class StreamingXLSXSheet(SheetWriter):
    """
    Worksheet of a write-only workbook.

    openpyxl writes the sheet's column widths and pane when the first row is appended,
    so widths come from the header labels and the header row itself is held back until
    then. Widths passed to :meth:`set_column_widths` afterwards are ignored.
    """

    def __init__(self, worksheet, name: str):
        super().__init__(name)
        self.worksheet = worksheet
        self._header: Optional[List[WriteOnlyCell]] = None
        self._started = False

    def write_header(self, labels: Sequence[str]) -> None:
        self._header = []
        for col_idx, label in enumerate(labels, 1):
            cell = WriteOnlyCell(self.worksheet, value=_clean_value(label))
            cell.data_type = 's'
            cell.font = HEADER_FONT
            self._header.append(cell)
            self.worksheet.column_dimensions[get_column_letter(col_idx)].width = header_width(label)

    def freeze_header(self) -> None:
        self.worksheet.freeze_panes = HEADER_CELL

    def flush_header(self) -> None:
        if not self._started:
            self._started = True
            if self._header is not None:
                self.worksheet.append(self._header)

    def write_row(self, row_index: int, cells: Sequence[CellRenderResult]) -> None:
        self.flush_header()
        row = []
        for result in cells:
            cell = WriteOnlyCell(self.worksheet)
            _apply(cell, result)
            row.append(cell)
        self.worksheet.append(row)
        self.row_count += 1

    def set_column_widths(self, widths: Sequence[float]) -> None:
        self.flush_header()
        logger.debug(f"Sheet '{self.name}' is streamed; keeping header based column widths")


class StreamingXLSXWorkbook(WorkbookBackend):
    """Write-only .xlsx workbook for large exports."""

    extension = '.xlsx'

    def __init__(self):
        super().__init__()
        self.workbook = Workbook(write_only=True)

    def _create_sheet(self, name: str) -> SheetWriter:
        return StreamingXLSXSheet(self.workbook.create_sheet(name), name)

    def _save(self, path: Path) -> None:
        for sheet in self.sheets:
            sheet.flush_header()
        self.workbook.save(path)

    def close(self) -> None:
        self.workbook.close()
