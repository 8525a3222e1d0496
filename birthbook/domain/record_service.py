"""Single-record operations on birth events.

The batch importer covers bulk loads; this service covers the operator path:
create one record from a form payload, read it, correct it, delete it.
Records are addressed by storage id or by trace_id.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from birthbook.domain.canonical_schema import CanonicalRecord, RelationEdge, StoredRecord
from birthbook.domain.field_mapper import FieldMapper
from birthbook.domain.identity import (
    FINGERPRINT_FIELDS,
    IdentityResolver,
    birth_month,
    content_fingerprint,
    normalize_rut,
)
from birthbook.domain.ports import RecordNotFoundError, StoragePort

logger = logging.getLogger(__name__)

# Never changed after insert
IMMUTABLE_FIELDS = frozenset({"trace_id"})


class RecordService:
    """Create, read, update and delete individual birth events.

    Parameters:
        storage: Storage port implementation
        mapper: Field Mapper used for create and update payloads
        resolver: Identity Resolver used on create
    """

    def __init__(
        self,
        storage: StoragePort,
        mapper: Optional[FieldMapper] = None,
        resolver: Optional[IdentityResolver] = None,
    ):
        self.storage = storage
        self.mapper = mapper or FieldMapper()
        self.resolver = resolver or IdentityResolver()

    def create(self, external: Mapping[str, Any], created_by: Optional[str] = None) -> StoredRecord:
        """Create one record from an External Record.

        No dedup lookup happens here: a duplicate trace_id surfaces as
        ConstraintViolationError from storage.

        Raises:
            IdentityValidationError: No trace_id and derivation disabled
            pydantic.ValidationError: Mapped values don't fit the canonical types
            ConstraintViolationError: Storage rejected the record
        """
        resolved = self.resolver.resolve(self.mapper.map(external))
        if created_by:
            resolved["creado_por"] = created_by
        record = CanonicalRecord.model_validate(resolved)
        stored = self.storage.insert(record)
        logger.info(f"Created record {stored.id} (trace_id {stored.trace_id})")
        return stored

    def get(self, key: str) -> StoredRecord:
        """Fetch a record by id or trace_id.

        Raises:
            RecordNotFoundError: If no record matches
        """
        stored = self.storage.get(key)
        if stored is None:
            raise RecordNotFoundError(key)
        return stored

    def update(self, key: str, external: Mapping[str, Any]) -> StoredRecord:
        """Apply an External Record's fields to an existing record.

        The trace_id, the storage id and the sequence number never change.
        Derived fields follow their sources: rut_normalized follows rut,
        mes_parto follows fecha_parto and data_hash follows identifying content.

        Raises:
            RecordNotFoundError: If no record matches ``key``
            pydantic.ValidationError: The merged record doesn't fit the canonical types
            ConstraintViolationError: Storage rejected the new values
        """
        stored = self.get(key)
        changes = self.mapper.map(external)
        for name in IMMUTABLE_FIELDS:
            changes.pop(name, None)
        if not changes:
            return stored

        if "rut_normalized" in changes:
            changes["rut_normalized"] = normalize_rut(changes["rut_normalized"])
        elif "rut" in changes:
            changes["rut_normalized"] = normalize_rut(changes["rut"])

        if "fecha_parto" in changes and "mes_parto" not in changes:
            month = birth_month(changes["fecha_parto"])
            if month is not None:
                changes["mes_parto"] = month

        merged: Dict[str, Any] = stored.model_dump()
        merged.update(changes)
        if "data_hash" not in changes and any(name in changes for name in FINGERPRINT_FIELDS):
            merged["data_hash"] = changes["data_hash"] = content_fingerprint(merged)
        merged["updated_at"] = datetime.now()

        validated = StoredRecord.model_validate(merged)
        persisted = {name: getattr(validated, name) for name in changes}
        persisted["updated_at"] = validated.updated_at

        updated = self.storage.update(stored.id, persisted)
        if updated is None:
            raise RecordNotFoundError(key)
        logger.info(f"Updated record {stored.id}: {sorted(changes)}")
        return updated

    def delete(self, key: str) -> None:
        """Delete a record and every relation edge that touches it.

        Raises:
            RecordNotFoundError: If no record matches ``key``
        """
        stored = self.get(key)
        if not self.storage.delete(stored.id):
            raise RecordNotFoundError(key)
        logger.info(f"Deleted record {stored.id} (trace_id {stored.trace_id})")

    def relations(self, key: str, kind: Optional[str] = None) -> List[RelationEdge]:
        """List the outgoing relation edges of a record."""
        stored = self.get(key)
        return self.storage.list_edges(record_id=stored.id, kind=kind)
