# dbxl/columns.py
"""
Column metadata derived from DB-API cursor descriptions.

``cursor.description`` gives each column a name, a driver specific ``type_code`` and,
for most drivers, precision and scale. There is no portable declared type name, so
:func:`resolve_type_name` turns the type code into one (``NUMBER``, ``VARCHAR``,
``TIMESTAMP`` ...) using what the driver exposes.
"""

import datetime as dt
import decimal
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

logger = logging.getLogger(__name__)

# PostgreSQL type OIDs (psycopg2, psycopg, pgdb)
POSTGRES_TYPES = {
    16: 'BOOL',
    17: 'BYTEA',
    18: 'CHAR',
    20: 'BIGINT',
    21: 'SMALLINT',
    23: 'INT',
    25: 'TEXT',
    700: 'FLOAT4',
    701: 'FLOAT8',
    1042: 'BPCHAR',
    1043: 'VARCHAR',
    1082: 'DATE',
    1083: 'TIME',
    1114: 'TIMESTAMP',
    1184: 'TIMESTAMPTZ',
    1700: 'NUMERIC',
}

# MySQL field types (pymysql, mysqlclient, mysql.connector)
MYSQL_TYPES = {
    0: 'DECIMAL',
    1: 'TINYINT',
    2: 'SMALLINT',
    3: 'INT',
    4: 'FLOAT',
    5: 'DOUBLE',
    7: 'TIMESTAMP',
    8: 'BIGINT',
    9: 'MEDIUMINT',
    10: 'DATE',
    11: 'TIME',
    12: 'DATETIME',
    13: 'YEAR',
    15: 'VARCHAR',
    16: 'BIT',
    245: 'JSON',
    246: 'DECIMAL',
    252: 'BLOB',
    253: 'VARCHAR',
    254: 'CHAR',
}

# pymssql DB-API type objects compare equal to these codes
SQLSERVER_TYPES = {
    1: 'VARCHAR',
    2: 'VARBINARY',
    3: 'INT',
    4: 'DATETIME',
    5: 'DECIMAL',
}

TYPE_CODE_TABLES = {
    'postgres': POSTGRES_TYPES,
    'mysql': MYSQL_TYPES,
    'sqlserver': SQLSERVER_TYPES,
}

# pyodbc reports the python class a column converts to
PYTHON_TYPES = {
    decimal.Decimal: 'DECIMAL',
    bool: 'BIT',
    int: 'BIGINT',
    float: 'FLOAT',
    str: 'VARCHAR',
    dt.datetime: 'DATETIME',
    dt.date: 'DATE',
    dt.time: 'TIME',
    bytes: 'VARBINARY',
    bytearray: 'VARBINARY',
}


def resolve_type_name(type_code: Any, db_type: Optional[str] = None) -> str:
    """
    Derive an uppercase declared type name from a DB-API ``type_code``.

    Args:
        type_code: The second item of a ``cursor.description`` entry
        db_type: Database type of the connection ('postgres', 'oracle', ...), used to
            look up integer type codes

    Returns:
        Type name such as 'NUMBER' or 'VARCHAR', or '' when it cannot be determined

    Example:
        resolve_type_name(1700, 'postgres')   # 'NUMERIC'
        resolve_type_name(decimal.Decimal)    # 'DECIMAL'
    """
    if type_code is None:
        return ''
    if isinstance(type_code, str):
        return type_code.upper()
    if isinstance(type_code, type):
        for py_type, name in PYTHON_TYPES.items():
            if issubclass(type_code, py_type):
                return name
        return type_code.__name__.upper()
    name = getattr(type_code, 'name', None)
    if isinstance(name, str) and name:
        # oracledb / cx_Oracle: DB_TYPE_NUMBER, DB_TYPE_VARCHAR ...
        name = name.upper()
        return name[len('DB_TYPE_'):] if name.startswith('DB_TYPE_') else name
    table = TYPE_CODE_TABLES.get(db_type, {})
    try:
        return table.get(int(type_code), '')
    except (TypeError, ValueError):
        return ''


def type_key(type_name: str, precision: Optional[int], scale: Optional[int]) -> str:
    """Build the ``TYPE(precision,scale)`` key matched by format rules."""
    return f"{type_name or ''}({precision or 0},{scale or 0})".upper()


@dataclass(frozen=True)
class ColumnDescriptor:
    """
    Metadata of one result column.

    Attributes:
        position: 1-based ordinal position in the result set
        label: Column label as returned by the query (used as the header text)
        type_name: Declared SQL type name, uppercase ('' when unknown)
        precision: Total significant digits (0 when unknown)
        scale: Digits after the decimal point (0 when unknown)
    """
    position: int
    label: str
    type_name: str = ''
    precision: int = 0
    scale: int = 0

    @property
    def type_key(self) -> str:
        return type_key(self.type_name, self.precision, self.scale)

    @classmethod
    def from_description(cls, position: int, desc: Sequence, db_type: Optional[str] = None) -> 'ColumnDescriptor':
        """Build a descriptor from one ``cursor.description`` entry."""
        label = desc[0]
        type_code = desc[1] if len(desc) > 1 else None
        precision = desc[4] if len(desc) > 4 else None
        scale = desc[5] if len(desc) > 5 else None
        return cls(
            position=position,
            label='' if label is None else str(label),
            type_name=resolve_type_name(type_code, db_type),
            precision=_as_int(precision),
            scale=_as_int(scale),
        )


def _as_int(value: Any) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0


def describe_columns(description: Optional[Sequence[Sequence]], db_type: Optional[str] = None) -> List[ColumnDescriptor]:
    """
    Build column descriptors for a whole ``cursor.description``.

    Returns an empty list when the statement produced no result set.
    """
    if not description:
        return []
    columns = [ColumnDescriptor.from_description(i, desc, db_type) for i, desc in enumerate(description, 1)]
    logger.debug(f"Described {len(columns)} columns: {[c.type_key for c in columns]}")
    return columns
