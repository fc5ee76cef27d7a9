# dbxl/writers/base.py
"""
Base classes for workbook backends.

A backend owns one workbook in a specific container format. Worksheets are added through
:meth:`WorkbookBackend.add_sheet`, which returns a :class:`SheetWriter` that receives the
header, the frozen pane, rendered data rows and finally the column widths. The worksheet
builder only talks to these two interfaces, so the same export code produces .xlsx, .xls
and streamed .xlsx files.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from ..cells import CellRenderResult

logger = logging.getLogger(__name__)


class SheetWriter(ABC):
    """
    Write access to a single worksheet.

    Row indexes are 0-based: the header is row 0 and data starts at row 1.

    Attributes
    ----------
    name : str
        Worksheet name
    row_count : int
        Number of data rows written (header excluded)
    """

    def __init__(self, name: str):
        self.name = name
        self.row_count = 0
        self._styles: Dict[Optional[str], Any] = {}

    def get_style(self, number_format: Optional[str]) -> Any:
        """Return the backend style for ``number_format``, creating it on first use."""
        if number_format not in self._styles:
            self._styles[number_format] = self._create_style(number_format)
        return self._styles[number_format]

    def _create_style(self, number_format: Optional[str]) -> Any:
        """Create a backend specific style object. Backends without style objects return the format."""
        return number_format

    @abstractmethod
    def write_header(self, labels: Sequence[str]) -> None:
        """Write column labels into row 0 using a bold font."""

    @abstractmethod
    def freeze_header(self) -> None:
        """Freeze the pane below the header row."""

    @abstractmethod
    def write_row(self, row_index: int, cells: Sequence[CellRenderResult]) -> None:
        """Write one data row of rendered cells."""

    @abstractmethod
    def set_column_widths(self, widths: Sequence[float]) -> None:
        """Apply final column widths, in characters."""


class WorkbookBackend(ABC):
    """
    Abstract workbook in one container format.

    Backends are context managers; leaving the context releases the workbook whether or
    not it was saved.

    Example
    -------
    ::

        with XLSXWorkbook() as workbook:
            sheet = workbook.add_sheet('Results')
            sheet.write_header(['ID', 'NAME'])
            ...
            workbook.save('report.xlsx')
    """

    #: file extension of the container format written by the backend
    extension = ''

    def __init__(self):
        self.sheets: List[SheetWriter] = []
        self.saved_path: Optional[Path] = None

    @property
    def row_count(self) -> int:
        """Total data rows written across all sheets."""
        return sum(sheet.row_count for sheet in self.sheets)

    def add_sheet(self, name: str) -> SheetWriter:
        """Create a new worksheet named ``name`` at the end of the workbook."""
        # spreadsheet applications compare sheet names case-insensitively
        if any(sheet.name.lower() == name.lower() for sheet in self.sheets):
            raise ValueError(f"Duplicate worksheet name '{name}'")
        sheet = self._create_sheet(name)
        self.sheets.append(sheet)
        logger.debug(f"Created sheet '{name}' in {self.__class__.__name__}")
        return sheet

    @abstractmethod
    def _create_sheet(self, name: str) -> SheetWriter:
        pass

    @abstractmethod
    def _save(self, path: Path) -> None:
        pass

    def save(self, path: Union[str, Path]) -> Path:
        """Serialize the workbook to ``path``, creating parent directories as needed."""
        path = Path(path)
        if path.parent and not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._save(path)
        except Exception as e:
            logger.error(f"Failed to save workbook {path}: {e}")
            raise
        self.saved_path = path
        logger.info(f"Saved workbook: {path} ({len(self.sheets)} sheets, {self.row_count} rows)")
        return path

    def close(self) -> None:
        """Release resources held by the workbook."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
