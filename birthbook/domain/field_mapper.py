"""Field Mapper.

Walks an External Record, resolves each key to a canonical field name and
coerces its value. Keys that resolve outside the canonical schema are dropped
silently (logged at DEBUG), so the output is always a subset of the schema.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from birthbook.domain.mapping_tables import DEFAULT_TABLES, MappingTables
from birthbook.domain.value_coercer import ValueCoercer

logger = logging.getLogger(__name__)


class FieldMapper:
    """Maps External Records to partial canonical records.

    Rules, applied per key in iteration order:
        1. Compatibility keys (``numero``) are dropped
        2. Internal keys (``_`` prefix) are dropped unless whitelisted
        3. A purely numeric string under the record-number key ``id`` is dropped
        4. The key resolves through the alias table, else its snake_case form;
           names outside the schema are dropped
        5. None is dropped; blank strings are dropped except under ``trace_id``
        6. The value is coerced for its field; a later key resolving to the
           same field overwrites an earlier one

    Parameters:
        tables: Alias and whitelist tables
        coercer: Value coercer applied to every kept value
    """

    def __init__(self, tables: Optional[MappingTables] = None, coercer: Optional[ValueCoercer] = None):
        self.tables = tables or DEFAULT_TABLES
        self.coercer = coercer or ValueCoercer()

    def map(self, external: Mapping[str, Any]) -> Dict[str, Any]:
        """Map one External Record.

        Parameters:
            external: Raw key/value record from a form client or export

        Returns:
            dict: Canonical field name -> coerced value (never contains keys
            outside the canonical schema)
        """
        mapped: Dict[str, Any] = {}
        for key, value in external.items():
            canonical = self._resolve_key(key, value)
            if canonical is None:
                continue

            if value is None:
                continue
            # An empty trace_id is kept so the identity resolver decides
            if canonical != "trace_id" and _is_blank(value):
                continue

            mapped[canonical] = self.coercer.coerce(canonical, value)
        return mapped

    def _resolve_key(self, key: str, value: Any) -> Optional[str]:
        tables = self.tables
        if key in tables.ignored_keys:
            return None

        if key.startswith(tables.internal_prefix) and key not in tables.retained_internal_keys:
            logger.debug(f"Dropping internal key: {key}")
            return None

        if key == tables.record_number_key and isinstance(value, str) and value.isdigit():
            return None

        canonical = tables.resolve(key)
        if canonical is None:
            logger.debug(f"Dropping key outside canonical schema: {key}")
        return canonical


def _is_blank(value: Any) -> bool:
    return isinstance(value, str) and value.strip() == ""
