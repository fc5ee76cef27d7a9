# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import copy
import logging
import sqlite3
import types
from decimal import Decimal

import pytest

from dbxl.database import Database
from dbxl.defaults import settings
from dbxl.logging_utils import ErrorCountHandler


class FakeCursor:
    """DB-API cursor serving canned results registered on a FakeConnection."""

    def __init__(self, connection):
        self.connection = connection
        self.description = None
        self.arraysize = 100
        self.closed = False
        self._rows = []

    def execute(self, sql, params=None):
        self.connection.executed.append(sql)
        if sql in self.connection.failures:
            raise self.connection.failures[sql]
        description, rows = self.connection.results.get(sql, (None, []))
        self.description = description
        self._rows = list(rows)

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def close(self):
        self.closed = True


class FakeConnection:
    """DB-API connection recording statements, commits and cursors."""

    def __init__(self):
        self.results = {}
        self.failures = {}
        self.executed = []
        self.cursors = []
        self.commits = 0
        self.closed = False

    def add_result(self, sql, description, rows):
        self.results[sql] = (description, rows)

    def cursor(self):
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def commit(self):
        self.commits += 1

    def close(self):
        self.closed = True


def column(name, type_code, precision=None, scale=None):
    """One cursor.description entry."""
    return (name, type_code, None, None, precision, scale, None)


PAYMENTS_SQL = 'SELECT id, amount FROM t'
PAYMENTS_DESCRIPTION = [column('ID', 'INT', 10, 0), column('AMOUNT', 'DECIMAL', 10, 2)]
PAYMENTS_ROWS = [(1, Decimal('10.50')), (2, Decimal('1234567890123456.78'))]


@pytest.fixture(autouse=True)
def isolate_settings():
    """Restore settings and root logger handlers changed by a test."""
    saved = copy.deepcopy(settings)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    settings.clear()
    settings.update(saved)
    for handler in list(root.handlers):
        if handler not in handlers and (isinstance(handler, (logging.FileHandler, ErrorCountHandler))
                                        or type(handler) is logging.StreamHandler):
            root.removeHandler(handler)
            if isinstance(handler, logging.FileHandler):
                handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def fake_connection():
    connection = FakeConnection()
    connection.add_result(PAYMENTS_SQL, PAYMENTS_DESCRIPTION, PAYMENTS_ROWS)
    return connection


@pytest.fixture
def fake_db(fake_connection):
    """Database wrapper around the fake connection, posing as an Oracle connection."""
    return Database(fake_connection, types.ModuleType('oracledb'), 'fake')


@pytest.fixture
def sqlite_db():
    """In-memory sqlite database with a small orders table."""
    connection = sqlite3.connect(':memory:')
    connection.execute('CREATE TABLE orders (id INTEGER, customer TEXT, total REAL)')
    connection.executemany('INSERT INTO orders VALUES (?, ?, ?)',
                           [(1, 'Aang', 12.5), (2, 'Katara', 7.25), (3, 'Sokka', None)])
    connection.commit()
    db = Database(connection, sqlite3, ':memory:')
    yield db
    connection.close()


@pytest.fixture
def export_document(tmp_path):
    """Export document with one .xlsx file and one worksheet."""
    return {
        'datasource': {
            'className': 'oracle.jdbc.driver.OracleDriver',
            'jdbcUrl': 'jdbc:oracle:thin:@//dbhost:1521/ORCL',
            'username': 'scott',
            'password': 'tiger',
        },
        'excelFile': [
            {
                'id': 'report',
                'large': False,
                'fileName': str(tmp_path / 'out' / 'report_##Date##.xlsx'),
                'worksheet': [
                    {'id': 'payments', 'sqlQuery': PAYMENTS_SQL, 'workSheetName': 'Payments'},
                ],
            }
        ],
    }
