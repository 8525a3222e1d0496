"""Tests for the BatchImporter pipeline, against in-memory DuckDB storage."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from birthbook.domain.batch_importer import BatchImporter, ImportConfig, ImportReport
from birthbook.domain.canonical_schema import RelationKind
from birthbook.domain.identity import IdentityResolver
from birthbook.domain.ports import Result, StorageUnavailableError


def _record(trace_id, **fields):
    record = {"traceId": trace_id, "rut": "12.345.678-9", "consultorio": "CESFAM Norte"}
    record.update(fields)
    return record


class TestImportConfig:
    """Test import options validation."""

    def test_defaults(self):
        config = ImportConfig()

        assert config.chunk_size == 100
        assert config.derive_relations is True
        assert config.skip_duplicate_content is False

    def test_chunk_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ImportConfig(chunk_size=0)


class TestImportRecords:
    """Test the happy path and dedup behaviour."""

    def test_inserts_and_derives_relations(self, storage, resolver):
        importer = BatchImporter(storage, resolver=resolver)

        report = importer.import_records([_record("P1"), _record("P2"), _record("P3")])

        assert (report.inserted, report.skipped, report.failed) == (3, 0, 0)
        assert report.processed == 3
        assert report.relations[RelationKind.SAME_CLINIC] == 6
        assert report.relations[RelationKind.SAME_MOTHER] == 6
        assert storage.count_records() == 3

    def test_records_are_normalized_before_insert(self, storage, resolver):
        importer = BatchImporter(storage, resolver=resolver)

        importer.import_records([_record("P1", fechaParto="3/5/2024", migrante="sí", apegoConPiel30Min="PADRE")])
        stored = storage.lookup("P1")

        assert stored.rut_normalized == "123456789"
        assert stored.fecha_parto == date(2024, 3, 5)
        assert stored.mes_parto == 3
        assert stored.migrante == 1
        assert stored.apego_piel_30min == 2
        assert stored.correlativo is not None

    def test_duplicate_trace_id_is_skipped(self, storage, resolver):
        importer = BatchImporter(storage, resolver=resolver)

        report = importer.import_records([_record("P1"), _record("P1", consultorio="Otro")])

        assert report.inserted == 1
        assert report.skipped == 1
        assert storage.count_records() == 1
        assert storage.lookup("P1").consultorio == "CESFAM Norte"

    def test_reimport_skips_everything(self, storage, resolver):
        records = [_record("P1"), _record("P2")]
        BatchImporter(storage, resolver=resolver).import_records(records)

        report = BatchImporter(storage, resolver=resolver).import_records(records)

        assert (report.inserted, report.skipped, report.failed) == (0, 2, 0)

    def test_records_without_trace_id_get_distinct_keys(self, storage, resolver):
        records = [{"rut": "1-9", "consultorio": "A"}, {"rut": "1-9", "consultorio": "A"}]

        report = BatchImporter(storage, resolver=resolver).import_records(records)

        assert report.inserted == 2
        trace_ids = {stored.trace_id for stored in storage.all_records()}
        assert len(trace_ids) == 2

    def test_skip_duplicate_content(self, storage, resolver):
        records = [{"rut": "1-9", "fechaParto": "2024-03-05"}, {"rut": "1-9", "fechaParto": "2024-03-05"}]
        importer = BatchImporter(storage, resolver=resolver, config=ImportConfig(skip_duplicate_content=True))

        report = importer.import_records(records)

        assert report.inserted == 1
        assert report.skipped == 1

    def test_created_by_is_stamped_when_missing(self, storage, resolver):
        importer = BatchImporter(storage, resolver=resolver, config=ImportConfig(created_by="importador"))

        importer.import_records([_record("P1"), _record("P2", creadoPor="matrona1")])

        assert storage.lookup("P1").creado_por == "importador"
        assert storage.lookup("P2").creado_por == "matrona1"

    def test_relations_can_be_disabled(self, storage, resolver):
        importer = BatchImporter(storage, resolver=resolver, config=ImportConfig(derive_relations=False))

        report = importer.import_records([_record("P1"), _record("P2")])

        assert report.relations == {}
        assert storage.count_edges() == 0

    def test_chunk_callback(self, storage, resolver):
        snapshots = []
        importer = BatchImporter(
            storage,
            resolver=resolver,
            config=ImportConfig(chunk_size=2),
            on_chunk=lambda report: snapshots.append(report.processed),
        )

        importer.import_records([_record(f"P{i}") for i in range(5)])

        assert snapshots == [2, 4, 5]

    def test_empty_input(self, storage, resolver):
        report = BatchImporter(storage, resolver=resolver).import_records([])

        assert report.processed == 0
        assert report.errors == []


class TestImportFailures:
    """Test that per-record failures are counted, never raised."""

    def test_constraint_violation_fails_only_that_record(self, storage, resolver):
        records = [_record("P1"), _record("P2", apegoConPiel30Min=7), _record("P3")]

        report = BatchImporter(storage, resolver=resolver).import_records(records)

        assert (report.inserted, report.failed) == (2, 1)
        failure = report.errors[0]
        assert failure.position == 1
        assert failure.error_type == "ConstraintViolationError"
        assert failure.trace_id == "P2"
        assert storage.lookup("P1") is not None
        assert storage.lookup("P2") is None
        assert storage.lookup("P3") is not None

    def test_validation_error_names_the_field(self, storage, resolver):
        report = BatchImporter(storage, resolver=resolver).import_records([_record("P1", edad="veinte")])

        assert report.failed == 1
        assert report.errors[0].error_type == "ValidationError"
        assert report.errors[0].field == "edad"

    def test_missing_identity(self, storage):
        importer = BatchImporter(storage, resolver=IdentityResolver(derive_trace_id=False))

        report = importer.import_records([{"rut": "12.345.678-9"}, _record("P1")])

        assert (report.inserted, report.failed) == (1, 1)
        assert report.errors[0].error_type == "IdentityValidationError"
        assert report.errors[0].rut == "12.345.678-9"

    def test_ingestion_failures_are_counted(self, storage, resolver):
        results = [
            Result.success_result(_record("P1")),
            Result.failure_result("Entry 1 is list, expected an object", error_type="UnsupportedSourceError"),
        ]

        report = BatchImporter(storage, resolver=resolver).import_results(results)

        assert (report.inserted, report.failed) == (1, 1)
        assert report.errors[0].position == 1
        assert report.errors[0].error_type == "UnsupportedSourceError"

    def test_storage_unavailable_aborts(self, resolver):
        storage = MagicMock()
        storage.lookup.side_effect = StorageUnavailableError("connection refused", operation="lookup")
        importer = BatchImporter(storage, resolver=resolver)

        with pytest.raises(StorageUnavailableError):
            importer.import_records([_record("P1")])

        storage.upsert_edges.assert_not_called()


class TestImportReport:
    """Test the report's plain-data view."""

    def test_to_dict(self, storage, resolver):
        report = BatchImporter(storage, resolver=resolver).import_records([_record("P1"), _record("P2", edad="x")])

        data = report.to_dict()

        assert data["inserted"] == 1
        assert data["failed"] == 1
        assert data["errors"][0]["field"] == "edad"
        assert data["relations"]["mismo_consultorio"] == 0

    def test_import_ids_are_unique(self):
        assert ImportReport().import_id != ImportReport().import_id
