"""Identity Resolver.

Normalizes the mother's national identifier (RUT) and derives or validates the
dedup key (``trace_id``) of a birth event.

Two different keys are produced here:
    - ``trace_id``: the dedup key. When a client doesn't send one it is derived
      from record content plus the wall clock, so two imports of the same
      content at different instants get different keys.
    - ``data_hash``: a deterministic SHA-256 fingerprint of the identifying
      content, persisted alongside so content duplicates can be found.
"""

import hashlib
import json
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Optional

from birthbook.domain.ports import IdentityValidationError

logger = logging.getLogger(__name__)

TRACE_ID_PREFIX = "PARTO"

# Identifying content shared by the trace id and the content fingerprint
FINGERPRINT_FIELDS = ("n_parto_ano", "n_parto_mes", "fecha_parto", "rut_normalized", "nombre_y_apellido")
TRACE_KEY_FIELDS = ("n_parto_ano", "n_parto_mes", "fecha_parto", "rut", "nombre_y_apellido")


def normalize_rut(value: Any) -> Optional[str]:
    """Normalize a RUT: drop dots and dashes, trim and upper-case.

    Idempotent: ``normalize_rut(normalize_rut(x)) == normalize_rut(x)``.

    Example:
        >>> normalize_rut("12.345.678-k")
        '12345678K'
    """
    if value is None:
        return None
    normalized = str(value).replace(".", "").replace("-", "").strip().upper()
    return normalized or None


def rolling_hash32(text: str) -> int:
    """32-bit signed rolling hash (``h = h * 31 + code``), as used by existing trace ids."""
    h = 0
    for char in text:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def content_fingerprint(record: Dict[str, Any]) -> str:
    """Deterministic SHA-256 fingerprint of a record's identifying content."""
    payload = {name: _as_text(record.get(name)) for name in FINGERPRINT_FIELDS}
    record_str = json.dumps(payload, sort_keys=True)
    return hashlib.sha256(record_str.encode('utf-8')).hexdigest()


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def birth_month(fecha_parto: Any) -> Optional[int]:
    """Month number of an ISO birth date, or None when it doesn't parse."""
    if isinstance(fecha_parto, date):
        return fecha_parto.month
    if not isinstance(fecha_parto, str):
        return None
    try:
        return date.fromisoformat(fecha_parto.strip()[:10]).month
    except ValueError:
        return None


class IdentityResolver:
    """Resolves identity fields of a mapped record.

    Parameters:
        clock: Callable returning the current time in epoch milliseconds
               (injectable so tests get stable trace ids)
        derive_trace_id: When False, a record without a trace_id is rejected
                         instead of receiving a derived one

    Example Usage:
        ```python
        resolver = IdentityResolver()
        resolved = resolver.resolve({"rut": "12.345.678-9", "fecha_parto": "2024-03-05"})
        resolved["rut_normalized"]  # "123456789"
        resolved["mes_parto"]       # 3
        resolved["trace_id"]        # "PARTO_<hash>_<epoch ms>"
        ```
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None, derive_trace_id: bool = True):
        self.clock = clock or _epoch_millis
        self.derive_trace_id = derive_trace_id

    def resolve(self, partial: Dict[str, Any], salt: Optional[Any] = None) -> Dict[str, Any]:
        """Fill in identity fields of a mapped record.

        Parameters:
            partial: Output of the Field Mapper
            salt: Optional suffix for derived trace ids (the batch position),
                  keeping keys distinct when the clock doesn't advance

        Returns:
            dict: A new record with rut_normalized, mes_parto, data_hash and
            trace_id populated where derivable

        Raises:
            IdentityValidationError: If no trace_id is present and derivation is disabled
        """
        record = dict(partial)

        if record.get("rut_normalized"):
            record["rut_normalized"] = normalize_rut(record["rut_normalized"])
        elif record.get("rut"):
            record["rut_normalized"] = normalize_rut(record["rut"])

        if record.get("mes_parto") is None and record.get("fecha_parto") is not None:
            month = birth_month(record["fecha_parto"])
            if month is not None:
                record["mes_parto"] = month

        if not record.get("data_hash"):
            record["data_hash"] = content_fingerprint(record)

        trace_id = record.get("trace_id")
        if isinstance(trace_id, str):
            trace_id = trace_id.strip()
        if trace_id in (None, ""):
            if not self.derive_trace_id:
                raise IdentityValidationError(
                    "Record has no trace_id and trace id derivation is disabled",
                    rut=record.get("rut"),
                )
            trace_id = self.generate_trace_id(record, salt=salt)
            logger.debug(f"Derived trace_id {trace_id}")
        record["trace_id"] = str(trace_id)

        return record

    def generate_trace_id(self, record: Dict[str, Any], salt: Optional[Any] = None) -> str:
        """Derive ``PARTO_<abs(hash32)>_<epoch ms>[_<salt>]`` from record content and the clock."""
        millis = self.clock()
        key = "_".join(_as_text(record.get(name)) for name in TRACE_KEY_FIELDS) + f"_{millis}"
        trace_id = f"{TRACE_ID_PREFIX}_{abs(rolling_hash32(key))}_{millis}"
        if salt is not None:
            trace_id += f"_{salt}"
        return trace_id
