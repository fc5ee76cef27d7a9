# dbxl/cells.py
"""
Cell value coercion.

Turns a raw database value plus its column's display format into the value and number
format written to one spreadsheet cell. Every Python value is handled; anything not
recognised is written as its string representation.

Decimal values get special care: they are written as numbers only when the float
conversion keeps the exact value (or the value has fewer than 16 significant digits).
Otherwise the exact plain-string representation is written as text, so amounts like
``1234567890123456.78`` never lose digits silently.

Example
-------
::

    from decimal import Decimal
    from dbxl.cells import coerce
    from dbxl.columns import ColumnDescriptor

    amount = ColumnDescriptor(1, 'AMOUNT', 'DECIMAL', 10, 2)
    coerce(Decimal('10.50'), amount)
    # CellRenderResult(value=10.5, number_format='0.00', kind=<ValueKind.DECIMAL>)
    coerce(Decimal('1234567890123456.78'), amount)
    # CellRenderResult(value='1234567890123456.78', number_format='@', kind=<ValueKind.DECIMAL>)
"""

import datetime as dt
import decimal
import logging
import math
from enum import Enum
from typing import Any, NamedTuple, Optional

from dateutil import tz
from openpyxl.styles.numbers import is_date_format

from .columns import ColumnDescriptor
from .defaults import settings
from .formats import (TypeFormatRegistry, default_registry, excel_number_format,
                      TEXT_FORMAT, GENERAL_FORMAT, DATE_FORMAT, TIMESTAMP_FORMAT)

logger = logging.getLogger(__name__)

INT64_MIN = -2 ** 63
INT64_MAX = 2 ** 63 - 1
# a double holds at least 15 significant decimal digits exactly
SAFE_DECIMAL_DIGITS = 16


class ValueKind(Enum):
    """The value kinds the coercer distinguishes, in dispatch order."""
    NULL = 'null'
    DATE = 'date'
    TIMESTAMP = 'timestamp'
    TEXT = 'text'
    BOOLEAN = 'boolean'
    FLOAT = 'float'
    INTEGER = 'integer'
    DECIMAL = 'decimal'
    LOB = 'lob'
    OTHER = 'other'


class CellRenderResult(NamedTuple):
    """
    Resolved content of one cell.

    Attributes:
        value: Value handed to the workbook backend ('' for NULL)
        number_format: Spreadsheet number format code, or None to leave the cell unformatted
        kind: The value kind that produced the result
    """
    value: Any
    number_format: Optional[str]
    kind: ValueKind


def classify(value: Any) -> ValueKind:
    """Return the :class:`ValueKind` of a raw database value."""
    if value is None:
        return ValueKind.NULL
    # datetime is a date subclass, so test it first
    if isinstance(value, dt.datetime):
        return ValueKind.TIMESTAMP
    if isinstance(value, dt.date):
        return ValueKind.DATE
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, decimal.Decimal):
        return ValueKind.DECIMAL
    if hasattr(value, 'read') and callable(value.read):
        return ValueKind.LOB
    return ValueKind.OTHER


def get_timezone(name: Optional[str] = None):
    """Return the zone timestamps are rendered in: ``name``, the ``timezone`` setting, or local."""
    name = name or settings.get('timezone')
    if not name:
        return tz.tzlocal()
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {name}")
    return zone


def decimal_fits_float(value: decimal.Decimal) -> bool:
    """
    True when ``value`` can be written as a float without losing precision.

    The float must be finite, and either convert back to exactly the same value or come
    from a decimal with fewer than 16 significant digits.
    """
    if not value.is_finite():
        return False
    as_float = float(value)
    if not math.isfinite(as_float):
        return False
    if decimal.Decimal(as_float) == value:
        return True
    return len(value.as_tuple().digits) < SAFE_DECIMAL_DIGITS


def plain_string(value: decimal.Decimal) -> str:
    """Decimal as a string without exponent notation ('1E+3' -> '1000')."""
    if not value.is_finite():
        return str(value)
    return format(value, 'f')


class CellValueCoercer:
    """
    Map raw values to :class:`CellRenderResult` using a column's resolved format.

    Column formats are resolved once per column through :meth:`column_format` and then
    passed to :meth:`coerce` for every cell of that column.

    Parameters
    ----------
    registry : TypeFormatRegistry, optional
        Rules used to resolve column formats. Defaults to the built-in table.
    timezone : tzinfo, optional
        Zone that timezone-aware timestamps are converted to. Defaults to
        :func:`get_timezone`.
    """

    def __init__(self, registry: Optional[TypeFormatRegistry] = None, timezone=None):
        self.registry = registry or default_registry
        self.timezone = timezone or get_timezone()
        self.max_text = settings.get('max_cell_text', 32767)

    def column_format(self, column: ColumnDescriptor) -> str:
        """Resolve the rule-table display format for ``column``."""
        display_format = self.registry.resolve_format(column.type_key)
        logger.debug(f"Column {column.position} '{column.label}' type {column.type_key} -> format {display_format}")
        return display_format

    def coerce(self, value: Any, column_format: str = TEXT_FORMAT) -> CellRenderResult:
        """
        Render one raw value.

        Args:
            value: Raw value fetched from the database
            column_format: Display format resolved for the value's column

        Returns:
            CellRenderResult with the cell value and spreadsheet number format
        """
        kind = classify(value)

        if kind is ValueKind.NULL:
            return CellRenderResult('', None, kind)
        if kind is ValueKind.DATE:
            return CellRenderResult(value, self._date_format(column_format, DATE_FORMAT), kind)
        if kind is ValueKind.TIMESTAMP:
            return CellRenderResult(self._localize(value), self._date_format(column_format, TIMESTAMP_FORMAT), kind)
        if kind is ValueKind.TEXT:
            return self._text(value, kind)
        if kind is ValueKind.BOOLEAN:
            return CellRenderResult(value, self._numeric_format(column_format), kind)
        if kind is ValueKind.FLOAT:
            if not math.isfinite(value):
                return self._text(str(value), kind)
            return CellRenderResult(value, self._numeric_format(column_format), kind)
        if kind is ValueKind.INTEGER:
            if INT64_MIN <= value <= INT64_MAX:
                return CellRenderResult(float(value), self._numeric_format(column_format), kind)
            return self._decimal(decimal.Decimal(value), column_format, kind)
        if kind is ValueKind.DECIMAL:
            return self._decimal(value, column_format, kind)
        if kind is ValueKind.LOB:
            return self._text(self._read_lob(value), kind)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self._text(bytes(value).hex(), kind)
        return self._text(str(value), kind)

    def _decimal(self, value: decimal.Decimal, column_format: str, kind: ValueKind) -> CellRenderResult:
        if decimal_fits_float(value):
            return CellRenderResult(float(value), self._numeric_format(column_format), kind)
        return self._text(plain_string(value), kind)

    def _text(self, text: str, kind: ValueKind) -> CellRenderResult:
        if len(text) > self.max_text:
            logger.warning(f"Truncating text value of {len(text)} characters to {self.max_text}")
            text = text[:self.max_text]
        return CellRenderResult(text, excel_number_format(TEXT_FORMAT), kind)

    def _localize(self, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value
        return value.astimezone(self.timezone).replace(tzinfo=None)

    @staticmethod
    def _read_lob(value: Any) -> str:
        data = value.read()
        if isinstance(data, (bytes, bytearray)):
            return bytes(data).hex()
        return '' if data is None else str(data)

    @staticmethod
    def _date_format(column_format: str, fallback: str) -> str:
        fmt = excel_number_format(column_format)
        return fmt if is_date_format(fmt) else fallback

    @staticmethod
    def _numeric_format(column_format: str) -> str:
        if column_format == TEXT_FORMAT or is_date_format(column_format):
            return GENERAL_FORMAT
        return excel_number_format(column_format)


_default_coercer = None


def coerce(value: Any, column: ColumnDescriptor) -> CellRenderResult:
    """Render ``value`` for ``column`` with the built-in rule table."""
    global _default_coercer
    if _default_coercer is None:
        _default_coercer = CellValueCoercer()
    return _default_coercer.coerce(value, _default_coercer.column_format(column))
