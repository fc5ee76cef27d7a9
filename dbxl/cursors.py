# dbxl/cursors.py
"""
Cursor wrapper around DB-API cursors.
All attribute access not handled here is delegated to the underlying cursor in _cursor.
"""

import logging
from typing import Any, Iterator, List, Optional

from .columns import ColumnDescriptor, describe_columns
from .defaults import settings

logger = logging.getLogger(__name__)
__all__ = ['Cursor']


class Cursor:
    """
    Forward-only cursor returning rows exactly as the driver produces them.

    Adds column metadata (:meth:`column_descriptors`) and a helper for statements executed
    only for their side effects (:meth:`call`). Rows are tuples (or whatever sequence the
    driver returns); values are never converted.

    Attributes
    ----------
    connection : Database
        The database connection this cursor belongs to
    debug : bool
        Log statements at DEBUG level before executing them. Defaults to the
        ``debug_sql`` setting.

    Example
    -------
    ::

        with db.cursor() as cursor:
            cursor.execute("SELECT id, amount FROM payments")
            columns = cursor.column_descriptors()
            for row in cursor:
                print(row)
    """
    # Attributes that live on this class and are not delegated to the underlying cursor
    _local_attrs = ['connection', 'debug', '_cursor', '_statement', '_closed']

    def __init__(self, connection, debug: Optional[bool] = None, **kwargs):
        """
        Parameters
        ----------
        connection : Database
            Database connection object
        debug : bool, optional
            Log each statement before it runs; None uses the ``debug_sql`` setting
        **kwargs
            Passed to the underlying driver's ``cursor()``
        """
        self.connection = connection
        self.debug = settings.get('debug_sql', False) if debug is None else debug
        self._statement = None
        self._closed = False
        try:
            if hasattr(self.connection, '_connection'):
                self._cursor = self.connection._connection.cursor(**kwargs)
            else:
                self._cursor = self.connection.cursor(**kwargs)
        except Exception as e:
            raise TypeError(f'First argument must be a database connection object: {e}')

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying cursor."""
        if key == 'statement' and not hasattr(self._cursor, 'statement'):
            return self._statement
        return getattr(self._cursor, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes on this cursor or delegate to underlying cursor."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._cursor, key, value)

    def __iter__(self) -> Iterator:
        self._check_result()
        return self

    def __next__(self) -> Any:
        row = self.fetchone()
        if row is None:
            raise StopIteration
        return row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _check_result(self) -> None:
        if self._cursor.description is None:
            raise RuntimeError('Query has not been run or did not return a result set.')

    @property
    def db_type(self) -> Optional[str]:
        return getattr(self.connection, 'server_type', None)

    def execute(self, query: str, bind_vars: Optional[Any] = None) -> None:
        """Execute a database query."""
        if self.debug:
            logger.debug(f'Query:\n{query}')
        self.__dict__['_statement'] = query
        # some adapters return a cursor instead of the Database API specified None
        if bind_vars is None:
            self._cursor.execute(query)
        else:
            self._cursor.execute(query, bind_vars)

    def call(self, statement: str) -> None:
        """
        Execute a statement for its side effects only.

        Any result set the statement produces is discarded without being read.
        """
        self.execute(statement)

    def column_descriptors(self) -> List[ColumnDescriptor]:
        """Return metadata for every column of the current result."""
        self._check_result()
        return describe_columns(self._cursor.description, self.db_type)

    def fetchone(self) -> Optional[Any]:
        """Fetch the next row."""
        self._check_result()
        return self._cursor.fetchone()

    def close(self) -> None:
        """Close the underlying cursor. Safe to call more than once."""
        if not self._closed:
            self._closed = True
            self._cursor.close()
