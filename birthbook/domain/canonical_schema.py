"""Canonical Birth Record Schema Definitions.

This module defines the canonical data model for a birth event (one row of the
``partos`` table) and the relation edges derived between birth events. These
schemas represent the closed set of fields that every external representation
(form payloads, legacy flat-text export) is normalized into.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Field type classes (boolean-as-integer, enumeration, date) drive both
      value coercion and the storage DDL, so they are declared once here
    - Type safety enforced at runtime via Pydantic V2
"""

from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Optional, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, Field


class FieldClass(str, Enum):
    """Type class of a canonical field, deciding how raw values are coerced."""
    IDENTITY = "identity"
    DEDUP_KEY = "dedup_key"
    BOOLEAN = "boolean"
    ENUMERATION = "enumeration"
    DATE = "date"
    PLAIN = "plain"


class RelationKind(str, Enum):
    """Kinds of relation edges between birth events."""
    SAME_MOTHER = "misma_madre"
    SAME_CLINIC = "mismo_consultorio"
    SAME_PERIOD = "mismo_mes"


# Fields persisted as integer 0/1
BOOLEAN_FIELDS = frozenset({
    'pueblo_originario', 'migrante', 'discapacidad', 'cca', 'gemela',
    'induccion', 'conduccion_ocitocica', 'libertad_movimiento_tdp',
    'episiotomia', 'anestesia_local', 'manejo_farmacologico_dolor',
    'manejo_no_farmacologico_dolor', 'plan_parto', 'trabajo_parto',
    'regimen_hidrico_amplio_tdp', 'ligadura_tardia_cordon',
    'atencion_pertinencia_cultural', 'alojamiento_conjunto',
    'acompanamiento_preparto', 'acompanamiento_parto',
    'acompanamiento_puerperio', 'acompanamiento_rn',
    'lactancia_precoz_60min', 'emb_controlado', 'taller_chcc',
    'privada_libertad', 'trans_no_binario', 'malformaciones',
    'chagas', 'vih', 'vih_al_parto', 'rpr_vdrl', 'hepatitis_b',
    'alumbramiento_conducido',
})

# Multi-valued enumerations: label -> integer code (unmatched labels become 0)
ENUMERATION_TABLES = MappingProxyType({
    'apego_piel_30min': MappingProxyType({
        'NO': 0,
        'MADRE': 1,
        'PADRE': 2,
        'OTRA': 3,
        'OTRA PERSONA SIGNIFICATIVA': 3,
    }),
})

DATE_FIELDS = frozenset({'fecha_parto'})

IDENTITY_FIELDS = frozenset({'rut', 'rut_normalized'})

# Long free-text columns
TEXT_FIELDS = frozenset({'comentarios'})


class CanonicalRecord(BaseModel):
    """Canonical birth event, as accepted for insertion.

    Every field except ``trace_id`` is optional: the legacy export and the
    form client both produce partial records. Boolean-as-integer and
    enumeration fields arrive already coerced; their 0/1 and code-table
    membership is enforced by the storage layer's CHECK constraints.

    Parameters:
        trace_id: Dedup key, unique across storage and never updated
        rut: Mother's national identifier as written by the operator
        rut_normalized: ``rut`` without dots and dashes, upper-cased
        fecha_parto: Birth date
        mes_parto: Month number derived from ``fecha_parto``
        source_line: Line of the legacy export the record came from
        data_hash: Content fingerprint (deterministic, unlike ``trace_id``)
        creado_por: Operator that created the record
    """

    # Identifiers
    trace_id: str = Field(..., description="Dedup key (unique, immutable)")
    creado_por: Optional[str] = None
    n_parto_ano: Optional[int] = Field(None, description="Birth number within the year")
    n_parto_mes: Optional[int] = Field(None, description="Birth number within the month")

    # Dates and times
    fecha_parto: Optional[date] = None
    hora_parto: Optional[str] = None
    mes_parto: Optional[int] = None
    tipo_parto: Optional[str] = None

    # Mother
    nombre_y_apellido: Optional[str] = None
    rut: Optional[str] = None
    rut_normalized: Optional[str] = None
    edad: Optional[int] = None
    pueblo_originario: Optional[int] = None
    nombre_pueblo_originario: Optional[str] = None
    migrante: Optional[int] = None
    nacionalidad: Optional[str] = None
    discapacidad: Optional[int] = None
    telefono: Optional[str] = None
    comuna: Optional[str] = None
    consultorio: Optional[str] = None
    paridad: Optional[str] = None
    cca: Optional[int] = None
    presentacion: Optional[str] = None
    gemela: Optional[int] = None

    # Pregnancy and labour
    eg: Optional[float] = Field(None, description="Gestational age in weeks")
    dias: Optional[int] = None
    rotura_membranas: Optional[str] = None
    induccion: Optional[int] = None
    misotrol: Optional[str] = None
    conduccion_ocitocica: Optional[int] = None
    monitoreo: Optional[str] = None
    libertad_movimiento_tdp: Optional[int] = None
    posicion_materna_expulsivo: Optional[str] = None
    episiotomia: Optional[int] = None
    desgarro: Optional[str] = None
    medidas_no_farmacologicas_dolor: Optional[str] = None
    causa_cesarea: Optional[str] = None
    eq: Optional[str] = None

    # Anaesthesia
    tipo_anestesia: Optional[str] = None
    hora_anestesia: Optional[str] = None
    medico_anestesista: Optional[str] = None
    anestesia_local: Optional[int] = None
    manejo_farmacologico_dolor: Optional[int] = None
    manejo_no_farmacologico_dolor: Optional[int] = None
    motivo_no_anestesia: Optional[str] = None

    # Birth plan and practices
    plan_parto: Optional[int] = None
    trabajo_parto: Optional[int] = None
    motivo_sin_libertad_movimiento: Optional[str] = None
    regimen_hidrico_amplio_tdp: Optional[int] = None
    ligadura_tardia_cordon: Optional[int] = None
    atencion_pertinencia_cultural: Optional[int] = None
    alumbramiento_conducido: Optional[int] = None

    # Lab results
    grupo_rh: Optional[str] = None
    chagas: Optional[int] = None
    vih: Optional[int] = None
    vih_al_parto: Optional[int] = None
    rpr_vdrl: Optional[int] = None
    hepatitis_b: Optional[int] = None
    sgb: Optional[str] = None
    sgb_tratamiento_al_parto: Optional[str] = None
    emb_controlado: Optional[int] = None

    # Newborn
    peso: Optional[float] = None
    talla: Optional[float] = None
    cc: Optional[float] = Field(None, description="Head circumference")
    apgar1: Optional[int] = None
    apgar5: Optional[int] = None
    apgar10: Optional[int] = None
    sexo: Optional[str] = None
    malformaciones: Optional[int] = None

    # Staff
    medico_obstetra: Optional[str] = None
    medico_pediatra: Optional[str] = None
    matrona_preparto: Optional[str] = None
    matrona_parto: Optional[str] = None
    matrona_rn: Optional[str] = None

    # Companionship and skin-to-skin contact
    acompanamiento_preparto: Optional[int] = None
    acompanamiento_parto: Optional[int] = None
    acompanamiento_puerperio: Optional[int] = None
    acompanamiento_rn: Optional[int] = None
    nombre_acompanante: Optional[str] = None
    parentesco_acompanante_madre: Optional[str] = None
    parentesco_acompanante_rn: Optional[str] = None
    apego_piel_30min: Optional[int] = None
    causa_no_apego: Optional[str] = None

    # Breastfeeding and destination
    lactancia_precoz_60min: Optional[int] = None
    destino: Optional[str] = None
    alojamiento_conjunto: Optional[int] = None

    # Additional information
    comentarios: Optional[str] = None
    taller_chcc: Optional[int] = None
    privada_libertad: Optional[int] = None
    trans_no_binario: Optional[int] = None

    # Import provenance
    source_line: Optional[int] = None
    data_hash: Optional[str] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )

    def to_row(self) -> dict:
        """Return the populated columns of this record, ready for an INSERT."""
        return self.model_dump(exclude_none=True)


class StoredRecord(CanonicalRecord):
    """Canonical record as read back from storage.

    Adds the columns owned by the storage layer: the primary key and the
    monotonic sequence number, neither of which is ever accepted from a caller.
    """

    id: str = Field(..., description="Storage primary key (UUID)")
    correlativo: Optional[int] = Field(None, description="Storage-assigned sequence number")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RelationEdge(BaseModel):
    """Directed relation between two stored birth events."""

    source_id: str
    target_id: str
    kind: RelationKind
    created_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    def key(self) -> tuple[str, str, str]:
        return (self.source_id, self.target_id, self.kind.value)


# ============================================================================
# Schema introspection helpers
# ============================================================================

CANONICAL_FIELDS: tuple[str, ...] = tuple(CanonicalRecord.model_fields)
STORAGE_FIELDS: tuple[str, ...] = ("id", "correlativo") + CANONICAL_FIELDS + ("created_at", "updated_at")

_SQL_TYPES = {
    int: "INTEGER",
    float: "DOUBLE PRECISION",
    date: "DATE",
    str: "VARCHAR",
}


def field_class(name: str) -> FieldClass:
    """Return the type class of a canonical field."""
    if name == "trace_id":
        return FieldClass.DEDUP_KEY
    if name in IDENTITY_FIELDS:
        return FieldClass.IDENTITY
    if name in BOOLEAN_FIELDS:
        return FieldClass.BOOLEAN
    if name in ENUMERATION_TABLES:
        return FieldClass.ENUMERATION
    if name in DATE_FIELDS:
        return FieldClass.DATE
    return FieldClass.PLAIN


def _python_type(name: str) -> type:
    annotation = CanonicalRecord.model_fields[name].annotation
    if get_origin(annotation) is Union:
        annotation = next(arg for arg in get_args(annotation) if arg is not type(None))
    return annotation


def column_definitions() -> list[str]:
    """Build the canonical column definitions of the ``partos`` table.

    Both supported databases accept the generated SQL: column types come from
    the model annotations, boolean-as-integer columns get a ``CHECK (x IN (0, 1))``
    and enumeration columns a CHECK over their code table.

    Returns:
        list[str]: One ``name TYPE [constraints]`` entry per canonical field
    """
    definitions = []
    for name in CANONICAL_FIELDS:
        sql_type = "TEXT" if name in TEXT_FIELDS else _SQL_TYPES[_python_type(name)]
        definition = f"{name} {sql_type}"

        kind = field_class(name)
        if kind == FieldClass.DEDUP_KEY:
            definition += " NOT NULL UNIQUE"
        elif kind == FieldClass.BOOLEAN:
            definition += f" CHECK ({name} IN (0, 1))"
        elif kind == FieldClass.ENUMERATION:
            codes = ", ".join(str(code) for code in sorted(set(ENUMERATION_TABLES[name].values())))
            definition += f" CHECK ({name} IN ({codes}))"

        definitions.append(definition)
    return definitions
