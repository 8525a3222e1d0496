"""Value Coercer.

Converts one raw external value into the canonical representation required by
its destination field's type class. Coercion is total: every input yields an
output, unrecognized values fall back to the class default instead of raising.
"""

import re
from enum import Enum
from numbers import Number
from typing import Any, Mapping

from birthbook.domain.canonical_schema import BOOLEAN_FIELDS, DATE_FIELDS, ENUMERATION_TABLES

TRUTHY_LABELS = frozenset({"SI", "SÍ", "1", "TRUE"})

# Month/day/year as written by the form client and the legacy export
_SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")


class ValueKind(str, Enum):
    """Dynamic kind of a raw external value."""
    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    TEXT = "text"
    OTHER = "other"


def classify(value: Any) -> ValueKind:
    """Classify a raw value. Booleans are checked before numbers since bool is an int."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, Number):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.TEXT
    return ValueKind.OTHER


class ValueCoercer:
    """Coerces raw values according to the type class of their destination field.

    Parameters:
        boolean_fields: Fields persisted as integer 0/1
        enumeration_tables: Field -> {label: code} tables
        date_fields: Fields normalized to ``YYYY-MM-DD``

    Example Usage:
        ```python
        coercer = ValueCoercer()
        coercer.coerce("migrante", "sí")            # 1
        coercer.coerce("apego_piel_30min", "padre") # 2
        coercer.coerce("fecha_parto", "3/5/2024")   # "2024-03-05"
        ```
    """

    def __init__(
        self,
        boolean_fields: frozenset = BOOLEAN_FIELDS,
        enumeration_tables: Mapping[str, Mapping[str, int]] = ENUMERATION_TABLES,
        date_fields: frozenset = DATE_FIELDS,
    ):
        self.boolean_fields = boolean_fields
        self.enumeration_tables = enumeration_tables
        self.date_fields = date_fields

    def coerce(self, field_name: str, value: Any) -> Any:
        """Coerce ``value`` for the canonical field ``field_name``."""
        table = self.enumeration_tables.get(field_name)
        if table is not None:
            return self.coerce_enumeration(value, table)
        if field_name in self.boolean_fields:
            return self.coerce_boolean(value)
        if field_name in self.date_fields:
            return self.coerce_date(value)
        return value

    @staticmethod
    def coerce_boolean(value: Any) -> int:
        """Coerce to 0/1.

        Booleans map directly, numbers are 1 only when equal to 1, text is 1
        only for the truthy labels (``SI``, ``SÍ``, ``1``, ``TRUE``, any case).
        Everything else, including None, is 0.
        """
        kind = classify(value)
        if kind == ValueKind.BOOLEAN:
            return 1 if value else 0
        if kind == ValueKind.NUMBER:
            return 1 if value == 1 else 0
        if kind == ValueKind.TEXT:
            return 1 if value.strip().upper() in TRUTHY_LABELS else 0
        return 0

    @staticmethod
    def coerce_enumeration(value: Any, table: Mapping[str, int]) -> Any:
        """Coerce to an enumeration code.

        Text is looked up case-insensitively (unmatched labels give 0).
        Numbers pass through unchanged; storage rejects codes outside the table.
        """
        kind = classify(value)
        if kind == ValueKind.TEXT:
            return table.get(value.strip().upper(), 0)
        if kind == ValueKind.NUMBER:
            return value
        return 0

    @staticmethod
    def coerce_date(value: Any) -> Any:
        """Rewrite ``M/D/YYYY`` text to ``YYYY-MM-DD``. Anything else passes through."""
        if classify(value) != ValueKind.TEXT:
            return value
        match = _SLASH_DATE.search(value)
        if match is None:
            return value
        month, day, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
