# dbxl/formats.py
"""
Type-directed display formats.

A column's declared SQL type, precision and scale are folded into a *type key* such as
``NUMBER(10,2)`` or ``VARCHAR(50,0)``. The key is matched against an ordered list of
format rules; the first rule whose pattern matches the whole key decides the display
format for every cell of that column.

Example
-------
::

    from dbxl.formats import resolve_format

    resolve_format('NUMBER(10,2)')     # '0.00'
    resolve_format('DECIMAL(18,6)')    # '0.####'
    resolve_format('VARCHAR(50,0)')    # 'text'

Formats use the ``dd.MM.yyyy`` style of the rule table. Spreadsheet number formats
accept these as-is except for ``text``, which :func:`excel_number_format` maps to ``@``.
"""

import re
from typing import Iterable, List, NamedTuple, Optional, Pattern, Tuple, Union


TEXT_FORMAT = 'text'
GENERAL_FORMAT = 'General'
DATE_FORMAT = 'dd.MM.yyyy'
TIMESTAMP_FORMAT = 'dd.MM.yyyy h:mm:ss.000'

# spreadsheet number format codes for the rule table's special names
_EXCEL_FORMATS = {
    TEXT_FORMAT: '@',
}


class FormatRule(NamedTuple):
    """A compiled type-key pattern and the display format it selects."""
    pattern: Pattern
    format: str

    @classmethod
    def create(cls, pattern: Union[str, Pattern], display_format: str) -> 'FormatRule':
        if isinstance(pattern, str):
            try:
                pattern = re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid format rule pattern '{pattern}': {e}") from e
        if not display_format:
            raise ValueError(f"Format rule '{pattern.pattern}' has no display format")
        return cls(pattern, display_format)

    def matches(self, type_key: str) -> bool:
        return self.pattern.fullmatch(type_key) is not None


# Order matters: the generic NUMBER/DECIMAL rules must come after their scale variants.
FORMAT_RULES: Tuple[FormatRule, ...] = tuple(FormatRule.create(p, f) for p, f in (
    (r'NUMBER\(\d+,2\)', '0.00'),
    (r'NUMBER\(\d+,0\)', '0'),
    (r'NUMBER.*', '0.###'),
    (r'INT\(\d+,0\)', '0'),
    (r'BIGINT\(\d+,0\)', '0'),
    (r'BIT\(1,0\)', '0'),
    (r'DECIMAL\(\d+,2\)', '0.00'),
    (r'DECIMAL\(\d+,0\)', '0'),
    (r'DECIMAL.*', '0.####'),
    (r'NUMERIC.*', '0.####'),
    (r'.*CHAR.*', TEXT_FORMAT),
    (r'DATETIME\(\d+,3\)', 'dd.MM.yyyy h:mm:ss.000'),
    (r'DATETIME\(\d+,0\)', 'dd.MM.yyyy h:mm:ss'),
    (r'DATE.*', DATE_FORMAT),
    (r'TIMESTAMP.*', TIMESTAMP_FORMAT),
))


class TypeFormatRegistry:
    """
    Read-only, ordered collection of format rules.

    The registry is built once (normally at start-up) and never mutated afterwards, so a
    single instance can be shared by every worksheet of an export.

    Parameters
    ----------
    rules : iterable of FormatRule or (pattern, format) pairs, optional
        Rules evaluated in the given order. Defaults to :data:`FORMAT_RULES`.
    extra_rules : iterable, optional
        Rules evaluated *before* ``rules``. Used for site-specific overrides coming
        from the export configuration.
    """

    def __init__(self, rules: Optional[Iterable] = None, extra_rules: Optional[Iterable] = None):
        combined: List[FormatRule] = []
        for rule in list(extra_rules or []) + list(FORMAT_RULES if rules is None else rules):
            if not isinstance(rule, FormatRule):
                rule = FormatRule.create(*rule)
            combined.append(rule)
        self._rules = tuple(combined)

    @property
    def rules(self) -> Tuple[FormatRule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def resolve_format(self, type_key: str) -> str:
        """Return the format of the first rule matching ``type_key``, or ``'text'``."""
        for rule in self._rules:
            if rule.matches(type_key):
                return rule.format
        return TEXT_FORMAT


default_registry = TypeFormatRegistry()


def resolve_format(type_key: str) -> str:
    """Resolve ``type_key`` against the built-in rule table."""
    return default_registry.resolve_format(type_key)


def excel_number_format(display_format: str) -> str:
    """Translate a rule-table format into a spreadsheet number format code."""
    return _EXCEL_FORMATS.get(display_format, display_format)
