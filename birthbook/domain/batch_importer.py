"""Batch Importer.

Runs External Records through the full import pipeline:

    map (with coercion) -> resolve identity -> dedup lookup -> validate -> insert

and, once the whole input has been consumed, the Relation Inferencer.

Per-record failures (missing identity, constraint violations, validation
errors) are counted and reported, never raised: one bad record cannot abort
the batch. Only StorageUnavailableError propagates.

Architecture:
    - Depends on ports only; storage and sources are injected
    - Input is consumed lazily in fixed-size chunks so arbitrarily large
      sources stream through with bounded memory
    - Sequential: one record is fully processed before the next
"""

import itertools
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from birthbook.domain.canonical_schema import CanonicalRecord, RelationKind
from birthbook.domain.field_mapper import FieldMapper
from birthbook.domain.identity import IdentityResolver
from birthbook.domain.ports import (
    ConstraintViolationError,
    ExternalRecord,
    IdentityValidationError,
    Result,
    StorageError,
    StoragePort,
    StorageUnavailableError,
)
from birthbook.domain.relation_inferencer import RelationInferencer

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100


@dataclass
class ImportConfig:
    """Options of one import run.

    Attributes:
        chunk_size: Records per progress checkpoint
        derive_relations: Run the Relation Inferencer after the batch
        created_by: Operator stamped into ``creado_por`` when the record has none
        skip_duplicate_content: Also skip records whose content fingerprint
                                (``data_hash``) is already stored
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    derive_relations: bool = True
    created_by: Optional[str] = None
    skip_duplicate_content: bool = False

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")


@dataclass(frozen=True)
class RecordFailure:
    """One record that could not be imported."""

    position: int
    error_type: str
    message: str
    trace_id: Optional[str] = None
    rut: Optional[str] = None
    field: Optional[str] = None


@dataclass
class ImportReport:
    """Outcome of one import run."""

    import_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[RecordFailure] = field(default_factory=list)
    relations: Dict[RelationKind, int] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.inserted + self.skipped + self.failed

    def record_failure(self, failure: RecordFailure) -> None:
        self.failed += 1
        self.errors.append(failure)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-data view of the report (JSON-serializable)."""
        return {
            "import_id": self.import_id,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": [asdict(failure) for failure in self.errors],
            "relations": {kind.value: count for kind, count in self.relations.items()},
        }


class BatchImporter:
    """Imports batches of External Records into storage.

    Parameters:
        storage: Storage port implementation
        mapper: Field Mapper (defaults to the standard alias tables)
        resolver: Identity Resolver
        inferencer: Relation Inferencer run once after the batch
        config: Import options
        on_chunk: Optional callback invoked with the running report after each chunk

    Example Usage:
        ```python
        importer = BatchImporter(storage=DuckDBAdapter(db_path=":memory:"))
        report = importer.import_records([
            {"traceId": "PARTO_1", "rut": "12.345.678-9", "consultorio": "CESFAM"},
        ])
        report.inserted  # 1
        ```
    """

    def __init__(
        self,
        storage: StoragePort,
        mapper: Optional[FieldMapper] = None,
        resolver: Optional[IdentityResolver] = None,
        inferencer: Optional[RelationInferencer] = None,
        config: Optional[ImportConfig] = None,
        on_chunk: Optional[Callable[[ImportReport], None]] = None,
    ):
        self.storage = storage
        self.mapper = mapper or FieldMapper()
        self.resolver = resolver or IdentityResolver()
        self.inferencer = inferencer or RelationInferencer()
        self.config = config or ImportConfig()
        self.on_chunk = on_chunk

    def import_records(self, records: Iterable[Mapping[str, Any]]) -> ImportReport:
        """Import an iterable of External Records.

        Returns:
            ImportReport: inserted/skipped/failed counts, per-record failures
            and per-kind relation counts

        Raises:
            StorageUnavailableError: If storage cannot be reached (aborts the run;
                records already inserted stay persisted, relations are not run)
        """
        return self.import_results(Result.success_result(record) for record in records)

    def import_results(self, results: Iterable[Result[ExternalRecord]]) -> ImportReport:
        """Import the Result stream produced by an ingester.

        Failed results (entries the ingester could not read) count as failures.
        """
        report = ImportReport()
        logger.info(f"Starting import {report.import_id} (chunk size {self.config.chunk_size})")

        positions = itertools.count()
        for chunk_number, chunk in enumerate(_chunked(results, self.config.chunk_size), start=1):
            for result in chunk:
                position = next(positions)
                if result.is_failure():
                    self._record_ingestion_failure(report, position, result)
                    continue
                self._import_one(report, position, result.value)

            logger.info(
                f"Import {report.import_id} checkpoint: chunk {chunk_number} done, "
                f"{report.inserted} inserted, {report.skipped} skipped, {report.failed} failed"
            )
            if self.on_chunk is not None:
                self.on_chunk(report)

        if self.config.derive_relations:
            report.relations = self.inferencer.infer(self.storage)

        logger.info(
            f"Import {report.import_id} finished: {report.inserted} inserted, "
            f"{report.skipped} skipped, {report.failed} failed"
        )
        return report

    def _import_one(self, report: ImportReport, position: int, external: Mapping[str, Any]) -> None:
        trace_id = None
        rut = external.get("rut") if isinstance(external, Mapping) else None
        try:
            resolved = self.resolver.resolve(self.mapper.map(external), salt=position)
            trace_id = resolved["trace_id"]
            rut = resolved.get("rut", rut)
            if self.config.created_by and not resolved.get("creado_por"):
                resolved["creado_por"] = self.config.created_by

            if self.storage.lookup(trace_id) is not None:
                report.skipped += 1
                logger.debug(f"Skipping already imported trace_id {trace_id}")
                return

            if self.config.skip_duplicate_content and self._has_content_duplicate(resolved):
                report.skipped += 1
                logger.debug(f"Skipping content duplicate of trace_id {trace_id}")
                return

            record = CanonicalRecord.model_validate(resolved)
            self.storage.insert(record)
            report.inserted += 1

        except StorageUnavailableError:
            logger.error(f"Storage unavailable at position {position}, aborting import {report.import_id}")
            raise
        except ConstraintViolationError as e:
            self._reject(report, RecordFailure(
                position=position,
                error_type=type(e).__name__,
                message=e.message,
                trace_id=trace_id,
                rut=rut,
                field=e.field,
            ))
        except PydanticValidationError as e:
            first_error = e.errors()[0] if e.errors() else {}
            location = first_error.get("loc") or ()
            self._reject(report, RecordFailure(
                position=position,
                error_type="ValidationError",
                message=str(e),
                trace_id=trace_id,
                rut=rut,
                field=str(location[0]) if location else None,
            ))
        except (IdentityValidationError, StorageError) as e:
            self._reject(report, RecordFailure(
                position=position,
                error_type=type(e).__name__,
                message=str(e),
                trace_id=trace_id,
                rut=rut,
            ))

    def _has_content_duplicate(self, resolved: Dict[str, Any]) -> bool:
        data_hash = resolved.get("data_hash")
        if not data_hash:
            return False
        return self.storage.find_by_data_hash(data_hash) is not None

    @staticmethod
    def _reject(report: ImportReport, failure: RecordFailure) -> None:
        report.record_failure(failure)
        logger.warning(
            f"Record rejected at position {failure.position}: {failure.error_type}",
            extra={
                "position": failure.position,
                "trace_id": failure.trace_id,
                "error_type": failure.error_type,
                "field": failure.field,
            },
        )

    def _record_ingestion_failure(self, report: ImportReport, position: int, result: Result) -> None:
        self._reject(report, RecordFailure(
            position=position,
            error_type=result.error_type or "IngestionError",
            message=result.error or "",
        ))


def _chunked(items: Iterable[Any], size: int) -> Iterator[List[Any]]:
    iterator = iter(items)
    while True:
        chunk = list(itertools.islice(iterator, size))
        if not chunk:
            return
        yield chunk
