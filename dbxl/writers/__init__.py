# dbxl/writers/__init__.py
"""
Workbook backends and the worksheet builder.

Supported containers:
- .xlsx: in-memory openpyxl workbook
- .xlsx (large): write-only openpyxl workbook, rows are flushed as they are written
- .xls: legacy Excel 97-2003 workbook written with xlwt

Example
-------
::
    from dbxl.writers import open_workbook, build_worksheet

    with open_workbook('report.xlsx') as workbook:
        cursor.execute("SELECT * FROM orders")
        build_worksheet('Orders', workbook, cursor)
        workbook.save('report.xlsx')
"""
import logging
from pathlib import Path
from typing import Union

from .base import SheetWriter, WorkbookBackend
from .excel import XLSXWorkbook, StreamingXLSXWorkbook
from .xls import XLSWorkbook
from .worksheet import WorksheetBuilder, SheetState, build_worksheet

logger = logging.getLogger(__name__)

BACKENDS = {
    '.xlsx': XLSXWorkbook,
    '.xls': XLSWorkbook,
}


def open_workbook(file_name: Union[str, Path], large: bool = False) -> WorkbookBackend:
    """
    Create the workbook backend for an output file.

    Args:
        file_name: Destination file name; its extension selects the container format
        large: Use the streaming backend regardless of the extension

    Returns:
        A new, empty WorkbookBackend

    Raises:
        ValueError: If the extension is neither .xls nor .xlsx and ``large`` is not set
    """
    suffix = Path(str(file_name)).suffix.lower()
    if large:
        if suffix != StreamingXLSXWorkbook.extension:
            logger.warning(f"'{file_name}' is large and will be written in .xlsx format")
        return StreamingXLSXWorkbook()
    if suffix not in BACKENDS:
        raise ValueError(f"File name '{file_name}' must have an .xls or .xlsx extension")
    return BACKENDS[suffix]()


__all__ = ['open_workbook', 'WorkbookBackend', 'SheetWriter',
           'XLSXWorkbook', 'StreamingXLSXWorkbook', 'XLSWorkbook',
           'WorksheetBuilder', 'SheetState', 'build_worksheet']
