# dbxl/exporter.py
"""
Run an export job: one connection, every configured file, every worksheet in order.
"""

import datetime as dt
import logging
import re
from pathlib import Path
from typing import List, Optional

from .cells import CellValueCoercer
from .config import ExportJob, OutputFile, WorksheetSpec, apply_settings
from .database import Database, connect_datasource
from .defaults import settings
from .formats import TypeFormatRegistry
from .writers import WorkbookBackend, build_worksheet, open_workbook

logger = logging.getLogger(__name__)

# JDBC escape syntax: { call proc(args) } or { ? = call func(args) }
_CALL_ESCAPE = re.compile(r'^\{\s*(?:\?\s*=\s*)?call\s+(?P<name>[^\s(}]+)\s*(?:\((?P<args>.*)\))?\s*\}$',
                          re.IGNORECASE | re.DOTALL)


def resolve_file_name(template: str, now: Optional[dt.datetime] = None) -> str:
    """
    Replace the date token (``##Date##``) in ``template`` with the current local date.

    >>> resolve_file_name('report_##Date##.xlsx', dt.datetime(2024, 3, 7))
    'report_20240307.xlsx'
    """
    now = now or dt.datetime.now()
    token = settings.get('date_token', '##Date##')
    return template.replace(token, now.strftime(settings.get('date_token_format', '%Y%m%d')))


def prepare_call_statement(statement: str, db_type: Optional[str] = None) -> str:
    """
    Translate a JDBC ``{ call proc(args) }`` escape into the database's own syntax.

    Statements not using the escape syntax are returned unchanged (stripped).

    Raises:
        ValueError: If the database has no stored procedures (sqlite)
    """
    statement = statement.strip()
    match = _CALL_ESCAPE.match(statement)
    if not match:
        return statement
    name = match.group('name')
    args = (match.group('args') or '').strip()
    if db_type == 'oracle':
        return f"BEGIN {name}({args}); END;" if args else f"BEGIN {name}; END;"
    if db_type == 'sqlserver':
        return f"EXEC {name} {args}".rstrip()
    if db_type == 'sqlite':
        raise ValueError(f"sqlite has no stored procedures, cannot run '{statement}'")
    return f"CALL {name}({args})"


class ExportOrchestrator:
    """
    Export every output file of an :class:`~dbxl.config.ExportJob`.

    One connection serves all files and worksheets. It is opened from the job's datasource
    when ``database`` is not supplied, and in that case it is closed when the run ends,
    successful or not. A failing file stops the run: the error is logged with the file,
    worksheet and query involved and raised as ``RuntimeError``.

    Parameters
    ----------
    job : ExportJob
        Validated export configuration
    database : Database, optional
        Open connection to use instead of connecting to ``job.datasource``. The caller
        keeps ownership and closes it.
    registry : TypeFormatRegistry, optional
        Format rules; defaults to the job's ``formatRules`` followed by the built-in table

    Example
    -------
    ::

        job = load_config('export.json')
        paths = ExportOrchestrator(job).run()
    """

    def __init__(self, job: ExportJob, database: Optional[Database] = None,
                 registry: Optional[TypeFormatRegistry] = None):
        self.job = job
        self.database = database
        self.registry = registry or TypeFormatRegistry(extra_rules=job.format_rules)
        self.written: List[Path] = []

    def run(self) -> List[Path]:
        """Write every output file; returns the written paths in configured order."""
        coercer = CellValueCoercer(self.registry)
        owns_connection = self.database is None
        db = self.database
        try:
            if owns_connection:
                try:
                    db = connect_datasource(self.job.datasource)
                except Exception as e:
                    logger.error(f"Failed to connect to datasource "
                                 f"{self.job.datasource.jdbc_url or self.job.datasource.type}: {e}")
                    raise
                logger.info(f"Connected to {db}")
            for output in self.job.files:
                self.written.append(self.export_file(db, output, coercer))
        finally:
            if owns_connection and db is not None:
                self._close(db)
        logger.info(f"Exported {len(self.written)} file(s)")
        return self.written

    def export_file(self, db: Database, output: OutputFile, coercer: CellValueCoercer) -> Path:
        """Build and save one output file."""
        logger.info(f"Exporting file '{output.id}' (large: {output.large})")
        worksheet = None
        try:
            with open_workbook(output.file_name, output.large) as workbook:
                if output.preparation_statement:
                    self.run_preparation(db, output.preparation_statement)
                for worksheet in output.worksheets:
                    self.export_worksheet(db, workbook, worksheet, coercer)
                worksheet = None
                return workbook.save(resolve_file_name(output.file_name))
        except Exception as e:
            if worksheet is not None:
                logger.error(f"Worksheet '{worksheet.id}' of file '{output.id}' failed: {e}\n"
                             f"Query:\n{worksheet.sql_query}")
            else:
                logger.error(f"Export of file '{output.id}' failed: {e}")
            raise RuntimeError(f"Export of file '{output.id}' failed: {e}") from e

    def run_preparation(self, db: Database, statement: str) -> None:
        """Run a file's preparatory statement for its side effects and commit."""
        sql = prepare_call_statement(statement, db.server_type)
        logger.info(f"Running preparation statement: {sql}")
        with db.cursor() as cursor:
            cursor.call(sql)
        db.commit()

    @staticmethod
    def export_worksheet(db: Database, workbook: WorkbookBackend, worksheet: WorksheetSpec,
                         coercer: CellValueCoercer) -> None:
        logger.info(f"Worksheet '{worksheet.id}' -> sheet '{worksheet.sheet_name}'")
        with db.cursor() as cursor:
            cursor.execute(worksheet.sql_query)
            build_worksheet(worksheet.sheet_name, workbook, cursor, coercer)

    @staticmethod
    def _close(db: Database) -> None:
        try:
            db.close()
            logger.debug(f"Closed connection {db}")
        except Exception as e:
            logger.error(f"Error closing connection {db}: {e}")


def export(job: ExportJob, database: Optional[Database] = None) -> List[Path]:
    """
    Apply the job's settings and run it.

    Returns:
        Paths of the written files, in configured order
    """
    apply_settings(job.settings)
    return ExportOrchestrator(job, database).run()
