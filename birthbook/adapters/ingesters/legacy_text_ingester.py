"""Legacy Flat-Text Export Ingestion Adapter.

This adapter implements the IngestionPort contract for the legacy birth book
export (``datos.txt``): one birth per line, tab-separated, no header, values
identified by column position.

Each line becomes an External Record in the form-client vocabulary (camelCase
keys), so both sources flow through the same Field Mapper. The export's own
spelling conventions are normalized here because they are specific to it:

    - ``NA`` means missing
    - delivery type, parity, presentation and sex have canonical spellings
    - column 34 holds the cesarean cause for cesareans, otherwise the
      non-pharmacological pain measures
    - serology results are written ``POSITIVO``/``NEGATIVO``
    - skin-to-skin contact ``SI`` means contact with the mother
    - rooming-in is not exported; it is derived from the destination

Architecture:
    - Implements IngestionPort (Hexagonal Architecture)
    - pandas chunked reading keeps memory bounded on large exports
    - Malformed lines are skipped with a warning, never abort the read
"""

import csv
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pandas as pd

from birthbook.domain.ports import (
    ExternalRecord,
    IngestionPort,
    Result,
    SourceNotFoundError,
    UnsupportedSourceError,
)

logger = logging.getLogger(__name__)

# Widest line accepted; the export uses 80 columns
MAX_COLUMNS = 128
MIN_COLUMNS = 10

MISSING_MARKERS = frozenset({"", "NA", "na"})

TEXT_COLUMNS = {
    3: "horaParto",
    5: "nombreYApellido",
    6: "rut",
    9: "nombrePuebloOriginario",
    11: "nacionalidad",
    13: "telefono",
    14: "comuna",
    15: "consultorio",
    22: "roturaMembranas",
    24: "misotrol",
    26: "monitoreo",
    28: "posicionMaternaEnElExpulsivo",
    37: "horaDeAnestesia",
    38: "medicoAnestesista",
    44: "grupoRH",
    64: "matronaPreparto",
    68: "nombreAcompanante",
    69: "parentescoAcompananteRespectoAMadre",
    72: "parentescoAcompananteRespectoARN",
    78: "destino",
    79: "comentarios",
}

# Yes/no columns; a missing value means NO
FLAG_COLUMNS = {
    8: "puebloOriginario",
    10: "migrante",
    12: "embControlado",
    17: "cca",
    19: "gemela",
    23: "induccion",
    25: "conduccionOcitocica",
    27: "libertadDeMovimientoOEnTDP",
    32: "episiotomia",
    33: "desgarro",
    35: "eq",
    40: "anestesiaLocal",
    41: "manejoFarmacologicoDelDolor",
    43: "manejoNoFarmacologicoDelDolor",
    59: "malformaciones",
    65: "acompanamientoPreparto",
    66: "acompanamientoParto",
    67: "acompanamientoPuerperioInmediato",
    74: "lactanciaPrecoz60MinDeVida",
}

INT_COLUMNS = {0: "nPartoAno", 1: "nPartoMes", 7: "edad", 21: "dias", 55: "apgar1", 56: "apgar5"}
FLOAT_COLUMNS = {20: "eg", 52: "peso", 53: "talla", 54: "cc"}

# Serology columns: POSITIVO (or a yes label) is 1, anything else 0
SEROLOGY_COLUMNS = {45: "chagas", 46: "vih", 47: "hepatitisB"}
SEROLOGY_POSITIVE = frozenset({"POSITIVO", "SI", "SÍ", "1", "TRUE"})
RPR_VDRL_COLUMN = 45
VIH_AT_BIRTH_COLUMN = 50

# Practices the export does not record
NOT_EXPORTED_FLAGS = (
    "discapacidad", "planDeParto", "trabajoDeParto", "regimenHidricoAmplioEnTDP",
    "ligaduraTardiaCordon", "atencionConPertinenciaCultural", "alumbramientoConducido",
    "acompanamientoRN", "tallerCHCC", "privadaDeLibertad", "transNoBinario",
)

_LEADING_INT = re.compile(r"[+-]?\d+")
_LEADING_FLOAT = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)")


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if cleaned in MISSING_MARKERS:
        return None
    return cleaned


def _leading_number(value: Any, pattern: re.Pattern, cast):
    cleaned = _clean(value)
    if cleaned is None:
        return None
    match = pattern.match(cleaned)
    return cast(match.group(0)) if match else None


def _populated_width(cells: List[Optional[str]]) -> int:
    """Number of columns up to the last non-empty cell.

    pandas pads short lines up to ``MAX_COLUMNS`` cells, so trailing empties
    don't tell how many fields the line really had.
    """
    for index in range(len(cells) - 1, -1, -1):
        if cells[index] is not None and cells[index].strip():
            return index + 1
    return 0


def parse_legacy_date(value: Any) -> Tuple[Optional[str], Optional[int]]:
    """Validate an ``MM/DD/YYYY`` export date.

    Returns:
        (date text, month) for a plausible date, (None, None) for an implausible
        one, and (raw text, None) when the value isn't slash-separated at all
    """
    raw = _clean(value)
    if raw is None:
        return None, None
    parts = raw.split("/")
    if len(parts) != 3:
        return raw, None
    try:
        month, day, year = (int(part) for part in parts)
    except ValueError:
        return None, None
    if 1 <= month <= 12 and 1 <= day <= 31 and 2000 <= year <= 2100:
        return raw, month
    return None, None


def normalize_delivery_type(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    upper = value.upper()
    if "VAGINAL" in upper:
        return "VAGINAL"
    if "CES ELE" in upper:
        return "CES ELE"
    if "CES URG" in upper:
        return "CES URG"
    if "EXTRAHOSPITALARIO" in upper:
        return "EXTRAHOSPITALARIO"
    return upper


def normalize_parity(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    upper = value.upper()
    for label in ("PRIMIPARA", "MULTIPARA"):
        if label in upper:
            return label
    return upper


def normalize_presentation(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    upper = value.upper()
    for label in ("CEFALICA", "PODALICA", "TRANSVERSA"):
        if label in upper:
            return label
    return upper


def normalize_sex(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    upper = value.upper()
    if upper in ("FEMENINO", "MASCULINO", "INDETERMINADO"):
        return upper
    if upper in ("F", "FEM"):
        return "FEMENINO"
    if upper in ("M", "MASC"):
        return "MASCULINO"
    return None


def normalize_skin_contact(value: Optional[str]) -> str:
    """Translate the export's skin-to-skin contact column to an enumeration label."""
    if value is None:
        return "NO"
    upper = value.upper()
    if upper in ("MADRE", "SI", "SÍ"):
        return "MADRE"
    if "PADRE" in upper:
        return "PADRE"
    if "OTRA" in upper:
        return "OTRA"
    return "NO"


def rooming_in_from_destination(destination: Optional[str]) -> str:
    if destination is None:
        return "NO"
    upper = destination.upper()
    return "SI" if "SALA" in upper and "NO" not in upper else "NO"


def parse_legacy_line(values: List[Any], line_number: int) -> ExternalRecord:
    """Build an External Record from the cells of one export line."""
    cell = lambda index: values[index] if index < len(values) else None  # noqa: E731

    record: Dict[str, Any] = {"sourceLine": line_number}

    for index, key in INT_COLUMNS.items():
        record[key] = _leading_number(cell(index), _LEADING_INT, int)
    for index, key in FLOAT_COLUMNS.items():
        record[key] = _leading_number(cell(index), _LEADING_FLOAT, float)
    for index, key in TEXT_COLUMNS.items():
        record[key] = _clean(cell(index))
    for index, key in FLAG_COLUMNS.items():
        record[key] = _clean(cell(index)) or "NO"
    for key in NOT_EXPORTED_FLAGS:
        record[key] = "NO"

    record["fechaParto"], record["mesParto"] = parse_legacy_date(cell(2))
    record["tipoParto"] = normalize_delivery_type(_clean(cell(4)))
    record["paridad"] = normalize_parity(_clean(cell(16)))
    record["presentacion"] = normalize_presentation(_clean(cell(18)))
    record["sexo"] = normalize_sex(_clean(cell(58)))
    record["tipoDeAnestesia"] = _clean(cell(36)) or "SIN ANESTESIA"

    pain_or_cesarean = _clean(cell(34))
    if record["tipoParto"] and "CES" in record["tipoParto"]:
        record["causaCesarea"] = pain_or_cesarean
    else:
        record["medidasNoFarmacologicasParaElDolorCuales"] = pain_or_cesarean

    for index, key in SEROLOGY_COLUMNS.items():
        result = _clean(cell(index))
        record[key] = 1 if result and result.upper() in SEROLOGY_POSITIVE else 0
    rpr_vdrl = _clean(cell(RPR_VDRL_COLUMN))
    record["rprVdrl"] = 1 if rpr_vdrl and rpr_vdrl.upper() in SEROLOGY_POSITIVE else 0
    vih_at_birth = _clean(cell(VIH_AT_BIRTH_COLUMN))
    record["vihAlParto"] = 1 if vih_at_birth and vih_at_birth.upper() in ("POSITIVO", "TOMADO") else 0

    record["apegoConPiel30Min"] = normalize_skin_contact(_clean(cell(71)))
    record["alojamientoConjunto"] = rooming_in_from_destination(record["destino"])

    return record


class LegacyTextIngester(IngestionPort):
    """Reads External Records from the tab-separated legacy export.

    Parameters:
        chunk_size: Lines per pandas read chunk

    Example Usage:
        ```python
        ingester = LegacyTextIngester(chunk_size=5000)
        results = list(ingester.ingest("datos.txt"))
        results[0].value["sourceLine"]  # 1
        ```
    """

    def __init__(self, chunk_size: int = 10000):
        self.chunk_size = chunk_size

    @property
    def adapter_name(self) -> str:
        return "legacy_text"

    def can_ingest(self, source: str) -> bool:
        return Path(source).suffix.lower() in (".txt", ".tsv")

    def get_source_info(self, source: str) -> Optional[dict]:
        path = Path(source)
        if not path.exists():
            return None
        return {"format": "tsv", "size": path.stat().st_size, "encoding": "utf-8"}

    def ingest(self, source: str) -> Iterator[Result[ExternalRecord]]:
        """Yield one Result per populated line of the export.

        Blank lines are skipped silently; lines with fewer than 10 columns are
        skipped with a warning.

        Raises:
            SourceNotFoundError: If the file doesn't exist
            UnsupportedSourceError: If pandas cannot parse the file at all
        """
        path = Path(source)
        if not path.exists():
            raise SourceNotFoundError(f"Source file not found: {source}", source=source)

        try:
            reader = pd.read_csv(
                path,
                sep="\t",
                header=None,
                names=range(MAX_COLUMNS),
                index_col=False,
                dtype=str,
                quoting=csv.QUOTE_NONE,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8",
                encoding_errors="replace",
                on_bad_lines="warn",
                chunksize=self.chunk_size,
            )
        except (OSError, ValueError) as e:
            raise UnsupportedSourceError(
                f"Cannot read legacy export {source}: {str(e)}",
                source=source,
                adapter=self.adapter_name,
            )

        emitted = skipped = 0
        with reader:
            for chunk in reader:
                for row_index, values in zip(chunk.index, chunk.itertuples(index=False, name=None)):
                    line_number = int(row_index) + 1
                    cells = [value if isinstance(value, str) else None for value in values]
                    column_count = _populated_width(cells)

                    if column_count == 0:
                        continue
                    if column_count < MIN_COLUMNS:
                        skipped += 1
                        logger.warning(
                            f"Line {line_number} of {source} has too few columns ({column_count}), skipping",
                            extra={"source": source, "position": line_number},
                        )
                        continue

                    emitted += 1
                    yield Result.success_result(parse_legacy_line(cells, line_number))

        logger.info(f"Read {emitted} records from {source} ({skipped} short lines skipped)")
