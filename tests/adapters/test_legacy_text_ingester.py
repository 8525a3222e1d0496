"""Tests for the legacy tab-separated export ingester."""

import logging
from datetime import date

import pytest

from birthbook.adapters.ingesters.legacy_text_ingester import (
    LegacyTextIngester,
    normalize_delivery_type,
    normalize_parity,
    normalize_presentation,
    normalize_sex,
    normalize_skin_contact,
    parse_legacy_date,
    parse_legacy_line,
    rooming_in_from_destination,
)
from birthbook.domain.batch_importer import BatchImporter
from birthbook.domain.ports import SourceNotFoundError

WIDTH = 80


def make_cells(values):
    cells = [""] * WIDTH
    for index, value in values.items():
        cells[index] = value
    return cells


def make_line(values):
    return "\t".join(make_cells(values))


VAGINAL_BIRTH = {
    0: "12",
    1: "3",
    2: "3/5/2024",
    3: "10:30",
    4: "parto vaginal",
    5: "Ana Pérez",
    6: "12.345.678-9",
    7: "29",
    8: "NO",
    14: "Arica",
    15: "CESFAM Norte",
    16: "multipara",
    18: "cefalica",
    20: "38,5",
    21: "2",
    34: "pelota",
    45: "NEGATIVO",
    46: "POSITIVO",
    50: "TOMADO",
    52: "3450",
    53: "50.5",
    54: "34",
    55: "8",
    56: "9",
    58: "F",
    71: "SI",
    78: "SALA CUNA",
    79: "NA",
}


class TestNormalizations:
    """Test the export's value normalizations."""

    @pytest.mark.parametrize("raw, expected", [
        ("parto vaginal", "VAGINAL"),
        ("CES ELECTIVA", "CES ELE"),
        ("ces urgencia", "CES URG"),
        ("extrahospitalario", "EXTRAHOSPITALARIO"),
        ("fórceps", "FÓRCEPS"),
        (None, None),
    ])
    def test_delivery_type(self, raw, expected):
        assert normalize_delivery_type(raw) == expected

    def test_parity_and_presentation(self):
        assert normalize_parity("primipara joven") == "PRIMIPARA"
        assert normalize_parity("gran multipara") == "MULTIPARA"
        assert normalize_presentation("podalica") == "PODALICA"
        assert normalize_presentation("otra") == "OTRA"

    @pytest.mark.parametrize("raw, expected", [
        ("F", "FEMENINO"),
        ("fem", "FEMENINO"),
        ("M", "MASCULINO"),
        ("masculino", "MASCULINO"),
        ("INDETERMINADO", "INDETERMINADO"),
        ("X", None),
        (None, None),
    ])
    def test_sex(self, raw, expected):
        assert normalize_sex(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("SI", "MADRE"),
        ("sí", "MADRE"),
        ("madre", "MADRE"),
        ("con padre", "PADRE"),
        ("OTRA PERSONA", "OTRA"),
        ("NO", "NO"),
        (None, "NO"),
    ])
    def test_skin_contact(self, raw, expected):
        assert normalize_skin_contact(raw) == expected

    @pytest.mark.parametrize("destination, expected", [
        ("SALA CUNA", "SI"),
        ("sala", "SI"),
        ("NEO", "NO"),
        ("SALA NO", "NO"),
        (None, "NO"),
    ])
    def test_rooming_in(self, destination, expected):
        assert rooming_in_from_destination(destination) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("3/5/2024", ("3/5/2024", 3)),
        ("12/31/2023", ("12/31/2023", 12)),
        ("13/5/2024", (None, None)),
        ("3/5/1999", (None, None)),
        ("a/b/c", (None, None)),
        ("2024-03-05", ("2024-03-05", None)),
        ("NA", (None, None)),
        (None, (None, None)),
    ])
    def test_date(self, raw, expected):
        assert parse_legacy_date(raw) == expected


class TestParseLegacyLine:
    """Test conversion of one line into an External Record."""

    def test_vaginal_birth(self):
        record = parse_legacy_line(make_cells(VAGINAL_BIRTH), line_number=7)

        assert record["sourceLine"] == 7
        assert record["nPartoAno"] == 12
        assert record["nPartoMes"] == 3
        assert record["fechaParto"] == "3/5/2024"
        assert record["mesParto"] == 3
        assert record["tipoParto"] == "VAGINAL"
        assert record["rut"] == "12.345.678-9"
        assert record["edad"] == 29
        assert record["paridad"] == "MULTIPARA"
        assert record["presentacion"] == "CEFALICA"
        assert record["eg"] == 38.0
        assert record["peso"] == 3450.0
        assert record["talla"] == 50.5
        assert record["apgar5"] == 9
        assert record["sexo"] == "FEMENINO"
        assert record["chagas"] == 0
        assert record["rprVdrl"] == 0
        assert record["vih"] == 1
        assert record["vihAlParto"] == 1
        assert record["apegoConPiel30Min"] == "MADRE"
        assert record["alojamientoConjunto"] == "SI"
        assert record["medidasNoFarmacologicasParaElDolorCuales"] == "pelota"
        assert "causaCesarea" not in record
        assert record["comentarios"] is None

    def test_missing_flags_default_to_no(self):
        record = parse_legacy_line(make_cells(VAGINAL_BIRTH), line_number=1)

        assert record["migrante"] == "NO"
        assert record["planDeParto"] == "NO"
        assert record["discapacidad"] == "NO"
        assert record["tipoDeAnestesia"] == "SIN ANESTESIA"
        assert record["telefono"] is None

    def test_cesarean_cause_shares_column(self):
        values = {**VAGINAL_BIRTH, 4: "CES URGENCIA", 34: "sufrimiento fetal"}

        record = parse_legacy_line(make_cells(values), line_number=1)

        assert record["tipoParto"] == "CES URG"
        assert record["causaCesarea"] == "sufrimiento fetal"
        assert "medidasNoFarmacologicasParaElDolorCuales" not in record

    def test_short_cell_list(self):
        record = parse_legacy_line(["1", "2", "3/5/2024", "", "", "", "1-9", "", "", "", ""], line_number=1)

        assert record["rut"] == "1-9"
        assert record["destino"] is None
        assert record["sexo"] is None


class TestLegacyTextIngester:
    """Test reading export files."""

    def test_can_ingest(self):
        ingester = LegacyTextIngester()

        assert ingester.can_ingest("datos.txt") is True
        assert ingester.can_ingest("datos.tsv") is True
        assert ingester.can_ingest("partos.json") is False
        assert ingester.adapter_name == "legacy_text"

    def test_ingest_skips_blank_and_short_lines(self, tmp_path, caplog):
        path = tmp_path / "datos.txt"
        path.write_text(
            "\n".join([
                make_line(VAGINAL_BIRTH),
                "",
                "a\tb\tc",
                make_line({**VAGINAL_BIRTH, 6: "9.876.543-2"}),
            ]) + "\n",
            encoding="utf-8",
        )

        with caplog.at_level(logging.WARNING):
            results = list(LegacyTextIngester(chunk_size=2).ingest(str(path)))

        assert len(results) == 2
        assert all(result.is_success() for result in results)
        assert [result.value["rut"] for result in results] == ["12.345.678-9", "9.876.543-2"]
        assert results[0].value["sourceLine"] == 1
        assert results[1].value["sourceLine"] == 4
        assert "too few columns" in caplog.text

    @pytest.mark.parametrize("line", ["7\t3", "a\tb\tc", "1\t2\t3\t4\t5\t6\t7\t8\t9"])
    def test_lines_under_ten_columns_yield_nothing(self, tmp_path, line):
        path = tmp_path / "datos.txt"
        path.write_text(line + "\n", encoding="utf-8")

        assert list(LegacyTextIngester().ingest(str(path))) == []

    def test_ten_columns_are_enough(self, tmp_path):
        path = tmp_path / "datos.txt"
        path.write_text("\t".join(str(n) for n in range(1, 11)) + "\n", encoding="utf-8")

        results = list(LegacyTextIngester().ingest(str(path)))

        assert len(results) == 1
        assert results[0].value["nPartoAno"] == 1

    def test_short_line_is_never_imported(self, tmp_path, storage, resolver):
        path = tmp_path / "datos.txt"
        path.write_text("7\t3\n", encoding="utf-8")

        report = BatchImporter(storage, resolver=resolver).import_results(
            LegacyTextIngester().ingest(str(path))
        )

        assert report.inserted == 0
        assert storage.count_records() == 0

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            list(LegacyTextIngester().ingest(str(tmp_path / "datos.txt")))

    def test_import_end_to_end(self, tmp_path, storage, resolver):
        path = tmp_path / "datos.txt"
        path.write_text(make_line(VAGINAL_BIRTH) + "\n", encoding="utf-8")

        report = BatchImporter(storage, resolver=resolver).import_results(
            LegacyTextIngester().ingest(str(path))
        )
        stored = next(storage.all_records())

        assert report.inserted == 1
        assert report.failed == 0
        assert stored.trace_id.startswith("PARTO_")
        assert stored.rut_normalized == "123456789"
        assert stored.fecha_parto == date(2024, 3, 5)
        assert stored.mes_parto == 3
        assert stored.apego_piel_30min == 1
        assert stored.alojamiento_conjunto == 1
        assert stored.vih == 1
        assert stored.migrante == 0
        assert stored.source_line == 1
        assert stored.consultorio == "CESFAM Norte"
