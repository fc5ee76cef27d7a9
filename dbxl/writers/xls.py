# dbxl/writers/xls.py
"""
Legacy Excel 97-2003 (.xls) workbook backend using xlwt.
"""
import logging
from pathlib import Path
from typing import Optional, Sequence

from .base import SheetWriter, WorkbookBackend
from ..cells import CellRenderResult
from ..defaults import settings

logger = logging.getLogger(__name__)

try:
    import xlwt
    HAS_XLWT = True
except ImportError:
    HAS_XLWT = False

MAX_ROWS = 65536
MAX_COLUMNS = 256
CHAR_WIDTH = 256  # xlwt column widths are in 1/256 of a character


class XLSSheet(SheetWriter):
    """Worksheet of an xlwt workbook."""

    def __init__(self, worksheet, name: str):
        super().__init__(name)
        self.worksheet = worksheet
        self.flush_rows = settings.get('xls_flush_rows', 1000)
        self._header_style = xlwt.easyxf('font: bold on')

    def _create_style(self, number_format: Optional[str]):
        # xlwt allows ~4000 distinct styles per workbook, hence the per-format cache in get_style()
        if number_format is None:
            return xlwt.Style.default_style
        return xlwt.easyxf(num_format_str=number_format)

    def _check_width(self, count: int) -> None:
        if count > MAX_COLUMNS:
            raise ValueError(f"Sheet '{self.name}' has {count} columns; .xls files allow {MAX_COLUMNS}")

    def write_header(self, labels: Sequence[str]) -> None:
        self._check_width(len(labels))
        for col_idx, label in enumerate(labels):
            self.worksheet.write(0, col_idx, label, self._header_style)

    def freeze_header(self) -> None:
        self.worksheet.set_panes_frozen(True)
        self.worksheet.set_horz_split_pos(1)
        self.worksheet.set_remove_splits(True)

    def write_row(self, row_index: int, cells: Sequence[CellRenderResult]) -> None:
        if row_index >= MAX_ROWS:
            raise ValueError(f"Sheet '{self.name}' exceeds the {MAX_ROWS} row limit of .xls files; "
                             f"use an .xlsx file name or set 'large'")
        self._check_width(len(cells))
        for col_idx, result in enumerate(cells):
            self.worksheet.write(row_index, col_idx, result.value, self.get_style(result.number_format))
        self.row_count += 1
        if self.flush_rows and self.row_count % self.flush_rows == 0:
            self.worksheet.flush_row_data()

    def set_column_widths(self, widths: Sequence[float]) -> None:
        for col_idx, width in enumerate(widths):
            self.worksheet.col(col_idx).width = int(width * CHAR_WIDTH)


class XLSWorkbook(WorkbookBackend):
    """In-memory .xls workbook."""

    extension = '.xls'

    def __init__(self):
        if not HAS_XLWT:
            raise ImportError("xlwt is required for .xls files. Install with: pip install xlwt")
        super().__init__()
        self.workbook = xlwt.Workbook(encoding='utf-8')

    def _create_sheet(self, name: str) -> SheetWriter:
        return XLSSheet(self.workbook.add_sheet(name), name)

    def _save(self, path: Path) -> None:
        self.workbook.save(str(path))
