# dbxl/__init__.py
"""
DBXL - database to Excel exporter

Runs the SQL queries named in an export document and writes each result to a worksheet:
- bold, frozen header row with the column labels
- column display formats chosen from the SQL type, precision and scale
- high-precision decimals written as exact text instead of lossy floats
- .xlsx, streamed .xlsx for large results, and legacy .xls workbooks

Basic usage::

    import dbxl

    job = dbxl.load_config('export.json')
    paths = dbxl.export(job)

Command line::

    dbxl -config export.json
"""

__version__ = '0.1.0'

from .config import load_config, parse_config, ExportJob
from .database import Database
from .cursors import Cursor
from .exporter import export, ExportOrchestrator
from .formats import TypeFormatRegistry, resolve_format
from .logging_utils import setup_logging, cleanup_old_logs, errors_logged
from . import writers

__all__ = [
    'load_config',
    'parse_config',
    'ExportJob',
    'Database',
    'Cursor',
    'export',
    'ExportOrchestrator',
    'TypeFormatRegistry',
    'resolve_format',
    'writers',
    'setup_logging',
    'cleanup_old_logs',
    'errors_logged',
]
