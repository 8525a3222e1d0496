"""Domain core: canonical schema, normalization pipeline and ports."""

from birthbook.domain.batch_importer import BatchImporter, ImportConfig, ImportReport, RecordFailure
from birthbook.domain.canonical_schema import CanonicalRecord, RelationEdge, RelationKind, StoredRecord
from birthbook.domain.field_mapper import FieldMapper
from birthbook.domain.identity import IdentityResolver, normalize_rut
from birthbook.domain.mapping_tables import MappingTables
from birthbook.domain.record_service import RecordService
from birthbook.domain.relation_inferencer import RelationInferencer
from birthbook.domain.value_coercer import ValueCoercer

__all__ = [
    "BatchImporter",
    "CanonicalRecord",
    "FieldMapper",
    "IdentityResolver",
    "ImportConfig",
    "ImportReport",
    "MappingTables",
    "RecordFailure",
    "RecordService",
    "RelationEdge",
    "RelationInferencer",
    "RelationKind",
    "StoredRecord",
    "ValueCoercer",
    "normalize_rut",
]
