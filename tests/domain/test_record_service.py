"""Tests for single-record operations, against in-memory DuckDB storage."""

from datetime import date

import pytest
from pydantic import ValidationError

from birthbook.domain.canonical_schema import RelationKind
from birthbook.domain.ports import ConstraintViolationError, RecordNotFoundError
from birthbook.domain.record_service import RecordService
from birthbook.domain.relation_inferencer import RelationInferencer


@pytest.fixture
def service(storage, resolver):
    return RecordService(storage, resolver=resolver)


class TestCreateAndGet:
    """Test record creation and lookup."""

    def test_create(self, service):
        stored = service.create({"traceId": "P1", "rut": "12.345.678-9", "fechaParto": "3/5/2024"}, created_by="matrona1")

        assert stored.id
        assert stored.correlativo is not None
        assert stored.rut_normalized == "123456789"
        assert stored.fecha_parto == date(2024, 3, 5)
        assert stored.creado_por == "matrona1"

    def test_create_derives_trace_id(self, service):
        stored = service.create({"rut": "12.345.678-9"})

        assert stored.trace_id.startswith("PARTO_")

    def test_create_duplicate_trace_id(self, service):
        service.create({"traceId": "P1"})

        with pytest.raises(ConstraintViolationError):
            service.create({"traceId": "P1"})

    def test_get_by_id_or_trace_id(self, service):
        stored = service.create({"traceId": "P1"})

        assert service.get(stored.id).trace_id == "P1"
        assert service.get("P1").id == stored.id

    def test_get_missing(self, service):
        with pytest.raises(RecordNotFoundError) as exc_info:
            service.get("nope")

        assert exc_info.value.key == "nope"


class TestUpdate:
    """Test corrections to existing records."""

    def test_update_rederives_identity_fields(self, service):
        stored = service.create({"traceId": "P1", "rut": "1-9", "fechaParto": "2024-03-05"})

        updated = service.update("P1", {"rut": "12.345.678-9", "fechaParto": "7/1/2024"})

        assert updated.rut_normalized == "123456789"
        assert updated.fecha_parto == date(2024, 7, 1)
        assert updated.mes_parto == 7
        assert updated.data_hash != stored.data_hash
        assert updated.updated_at is not None

    def test_update_never_changes_trace_id_or_sequence(self, service):
        stored = service.create({"traceId": "P1", "consultorio": "A"})

        updated = service.update(stored.id, {"traceId": "P2", "consultorio": "B", "correlativo": 999})

        assert updated.trace_id == "P1"
        assert updated.correlativo == stored.correlativo
        assert updated.id == stored.id
        assert updated.consultorio == "B"

    def test_non_identifying_change_keeps_fingerprint(self, service):
        stored = service.create({"traceId": "P1", "rut": "1-9", "consultorio": "A"})

        updated = service.update("P1", {"consultorio": "B"})

        assert updated.data_hash == stored.data_hash

    def test_update_without_changes(self, service):
        stored = service.create({"traceId": "P1"})

        assert service.update("P1", {"foo": "bar"}) == stored

    def test_update_rejects_invalid_values(self, service):
        service.create({"traceId": "P1"})

        with pytest.raises(ValidationError):
            service.update("P1", {"edad": "veinte"})

    def test_update_missing(self, service):
        with pytest.raises(RecordNotFoundError):
            service.update("nope", {"consultorio": "A"})


class TestDeleteAndRelations:
    """Test deletion and relation listing."""

    def test_delete_removes_record_and_edges(self, service, storage):
        first = service.create({"traceId": "P1", "consultorio": "A"})
        service.create({"traceId": "P2", "consultorio": "A"})
        RelationInferencer().infer(storage)
        assert storage.count_edges() == 2

        service.delete(first.id)

        assert storage.count_edges() == 0
        with pytest.raises(RecordNotFoundError):
            service.get("P1")

    def test_delete_missing(self, service):
        with pytest.raises(RecordNotFoundError):
            service.delete("nope")

    def test_relations(self, service, storage):
        first = service.create({"traceId": "P1", "consultorio": "A", "rut": "1-9"})
        second = service.create({"traceId": "P2", "consultorio": "A", "rut": "1-9"})
        RelationInferencer().infer(storage)

        edges = service.relations("P1")
        clinic_edges = service.relations("P1", kind=RelationKind.SAME_CLINIC.value)

        assert len(edges) == 2
        assert all(edge.source_id == first.id and edge.target_id == second.id for edge in edges)
        assert [edge.kind for edge in clinic_edges] == [RelationKind.SAME_CLINIC]
