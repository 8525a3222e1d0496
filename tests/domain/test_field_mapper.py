"""Unit tests for FieldMapper and MappingTables."""

import pytest

from birthbook.domain.canonical_schema import CANONICAL_FIELDS
from birthbook.domain.field_mapper import FieldMapper
from birthbook.domain.mapping_tables import DEFAULT_TABLES, MappingTables, camel_to_snake


class TestCamelToSnake:
    """Test the snake_case fallback."""

    @pytest.mark.parametrize("key, expected", [
        ("nombrePuebloOriginario", "nombre_pueblo_originario"),
        ("consultorio", "consultorio"),
        ("rut_normalized", "rut_normalized"),
        ("grupoRH", "grupo_r_h"),
    ])
    def test_camel_to_snake(self, key, expected):
        assert camel_to_snake(key) == expected


class TestMappingTables:
    """Test key resolution."""

    def test_alias_resolution(self):
        assert DEFAULT_TABLES.resolve("nombre") == "nombre_y_apellido"
        assert DEFAULT_TABLES.resolve("grupoRH") == "grupo_rh"
        assert DEFAULT_TABLES.resolve("semanasGestacion") == "eg"

    def test_snake_case_fallback(self):
        assert DEFAULT_TABLES.resolve("sgb_tratamiento_al_parto") == "sgb_tratamiento_al_parto"

    def test_unknown_key_resolves_to_none(self):
        assert DEFAULT_TABLES.resolve("foo") is None
        assert DEFAULT_TABLES.resolve("correlativo") is None
        assert DEFAULT_TABLES.resolve("id") is None

    def test_every_alias_targets_the_schema(self):
        assert set(DEFAULT_TABLES.aliases.values()) <= set(CANONICAL_FIELDS)

    def test_with_aliases_leaves_defaults_untouched(self):
        extended = DEFAULT_TABLES.with_aliases({"cesfam": "consultorio"})

        assert extended.resolve("cesfam") == "consultorio"
        assert DEFAULT_TABLES.resolve("cesfam") is None

    def test_tables_are_immutable(self):
        with pytest.raises(TypeError):
            DEFAULT_TABLES.aliases["cesfam"] = "consultorio"


class TestFieldMapperDropping:
    """Test which keys never reach the canonical record."""

    def test_unknown_keys_dropped(self):
        assert FieldMapper().map({"foo": "bar"}) == {}

    def test_compatibility_key_dropped(self):
        assert FieldMapper().map({"numero": 15}) == {}

    def test_internal_keys_dropped_unless_whitelisted(self):
        mapped = FieldMapper().map({
            "_internal": "x",
            "_traceId": "PARTO_1",
            "_rutNormalized": "123456789",
        })

        assert mapped == {"trace_id": "PARTO_1", "rut_normalized": "123456789"}

    def test_numeric_record_number_dropped(self):
        assert FieldMapper().map({"id": "123"}) == {}

    def test_none_and_blank_values_dropped(self):
        mapped = FieldMapper().map({"consultorio": None, "comuna": "   ", "rut": ""})

        assert mapped == {}

    def test_blank_trace_id_is_kept(self):
        assert FieldMapper().map({"traceId": ""}) == {"trace_id": ""}

    def test_none_trace_id_is_dropped(self):
        assert FieldMapper().map({"traceId": None}) == {}


class TestFieldMapperMapping:
    """Test resolution and coercion of kept keys."""

    def test_output_is_subset_of_schema(self):
        mapped = FieldMapper().map({
            "nombreYApellido": "Ana Pérez",
            "rut": "12.345.678-9",
            "consultorio": "CESFAM",
            "unknownField": 1,
        })

        assert set(mapped) <= set(CANONICAL_FIELDS)
        assert mapped == {"nombre_y_apellido": "Ana Pérez", "rut": "12.345.678-9", "consultorio": "CESFAM"}

    def test_last_write_wins(self):
        mapped = FieldMapper().map({"nombre": "Ana", "nombreYApellido": "Ana Pérez"})

        assert mapped == {"nombre_y_apellido": "Ana Pérez"}

        mapped = FieldMapper().map({"nombreYApellido": "Ana Pérez", "nombre": "Ana"})

        assert mapped == {"nombre_y_apellido": "Ana"}

    def test_values_are_coerced(self):
        mapped = FieldMapper().map({
            "migrante": "sí",
            "chagas": "NO",
            "fechaParto": "3/5/2024",
            "apegoConPiel30Min": "PADRE",
            "edad": 29,
        })

        assert mapped == {
            "migrante": 1,
            "chagas": 0,
            "fecha_parto": "2024-03-05",
            "apego_piel_30min": 2,
            "edad": 29,
        }

    def test_boolean_zero_is_kept(self):
        assert FieldMapper().map({"gemela": "NO"}) == {"gemela": 0}

    def test_injected_tables(self):
        tables = MappingTables(ignored_keys=frozenset({"numero", "comuna"}))

        assert FieldMapper(tables=tables).map({"comuna": "Arica", "consultorio": "X"}) == {"consultorio": "X"}
