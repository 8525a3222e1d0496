"""Alias and whitelist tables for the Field Mapper.

Form clients and the legacy export name fields in camelCase, sometimes with
several synonyms for the same canonical field. The tables here resolve those
names. They are immutable; extend them by building a new MappingTables rather
than mutating the defaults.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from birthbook.domain.canonical_schema import CANONICAL_FIELDS

_CAMEL_BOUNDARY = re.compile(r"[A-Z]")

DEFAULT_ALIASES: Mapping[str, str] = MappingProxyType({
    # Identifiers
    '_traceId': 'trace_id',
    'traceId': 'trace_id',
    'creadoPor': 'creado_por',
    'nPartoAno': 'n_parto_ano',
    'nPartoMes': 'n_parto_mes',

    # Dates and times
    'fechaParto': 'fecha_parto',
    'fecha': 'fecha_parto',
    'horaParto': 'hora_parto',
    'hora': 'hora_parto',
    'mesParto': 'mes_parto',
    'tipoParto': 'tipo_parto',

    # Mother
    'nombreYApellido': 'nombre_y_apellido',
    'nombre': 'nombre_y_apellido',
    'rut': 'rut',
    '_rutNormalized': 'rut_normalized',
    'rutNormalized': 'rut_normalized',
    'edad': 'edad',
    'puebloOriginario': 'pueblo_originario',
    'nombrePuebloOriginario': 'nombre_pueblo_originario',
    'migrante': 'migrante',
    'nacionalidad': 'nacionalidad',
    'discapacidad': 'discapacidad',
    'telefono': 'telefono',
    'comuna': 'comuna',
    'consultorio': 'consultorio',
    'paridad': 'paridad',
    'cca': 'cca',
    'presentacion': 'presentacion',
    'gemela': 'gemela',

    # Pregnancy and labour
    'eg': 'eg',
    'semanasGestacion': 'eg',
    'dias': 'dias',
    'roturaMembranas': 'rotura_membranas',
    'induccion': 'induccion',
    'misotrol': 'misotrol',
    'conduccionOcitocica': 'conduccion_ocitocica',
    'monitoreo': 'monitoreo',
    'libertadDeMovimientoOEnTDP': 'libertad_movimiento_tdp',
    'posicionMaternaEnElExpulsivo': 'posicion_materna_expulsivo',
    'episiotomia': 'episiotomia',
    'desgarro': 'desgarro',
    'medidasNoFarmacologicasParaElDolorCuales': 'medidas_no_farmacologicas_dolor',
    'causaCesarea': 'causa_cesarea',
    'eq': 'eq',

    # Anaesthesia
    'tipoDeAnestesia': 'tipo_anestesia',
    'tipoAnestesia': 'tipo_anestesia',
    'horaDeAnestesia': 'hora_anestesia',
    'medicoAnestesista': 'medico_anestesista',
    'anestesiaLocal': 'anestesia_local',
    'manejoFarmacologicoDelDolor': 'manejo_farmacologico_dolor',
    'manejoNoFarmacologicoDelDolor': 'manejo_no_farmacologico_dolor',
    'motivoNoAnestesia': 'motivo_no_anestesia',

    # Birth plan and practices
    'planDeParto': 'plan_parto',
    'trabajoDeParto': 'trabajo_parto',
    'motivoSinLibertadDeMovimiento': 'motivo_sin_libertad_movimiento',
    'regimenHidricoAmplioEnTDP': 'regimen_hidrico_amplio_tdp',
    'ligaduraTardiaCordon': 'ligadura_tardia_cordon',
    'atencionConPertinenciaCultural': 'atencion_pertinencia_cultural',
    'alumbramientoConducido': 'alumbramiento_conducido',

    # Lab results
    'grupoRH': 'grupo_rh',
    'chagas': 'chagas',
    'vih': 'vih',
    'vihAlParto': 'vih_al_parto',
    'rprVdrl': 'rpr_vdrl',
    'hepatitisB': 'hepatitis_b',
    'sgb': 'sgb',
    'sgbConTratamientoAlParto': 'sgb_tratamiento_al_parto',
    'embControlado': 'emb_controlado',

    # Newborn
    'peso': 'peso',
    'talla': 'talla',
    'cc': 'cc',
    'perimetroCefalico': 'cc',
    'apgar1': 'apgar1',
    'apgar5': 'apgar5',
    'apgar10': 'apgar10',
    'sexo': 'sexo',
    'malformaciones': 'malformaciones',

    # Staff
    'medicoObstetra': 'medico_obstetra',
    'medicoPediatra': 'medico_pediatra',
    'matronaPreparto': 'matrona_preparto',
    'matronaParto': 'matrona_parto',
    'matronaRN': 'matrona_rn',

    # Companionship and skin-to-skin contact
    'acompanamientoPreparto': 'acompanamiento_preparto',
    'acompanamientoParto': 'acompanamiento_parto',
    'acompanamientoPuerperioInmediato': 'acompanamiento_puerperio',
    'acompanamientoRN': 'acompanamiento_rn',
    'nombreAcompanante': 'nombre_acompanante',
    'parentescoAcompananteRespectoAMadre': 'parentesco_acompanante_madre',
    'parentescoAcompananteRespectoARN': 'parentesco_acompanante_rn',
    'apegoConPiel30Min': 'apego_piel_30min',
    'causaNoApego': 'causa_no_apego',

    # Breastfeeding and destination
    'lactanciaPrecoz60MinDeVida': 'lactancia_precoz_60min',
    'destino': 'destino',
    'alojamientoConjunto': 'alojamiento_conjunto',

    # Additional information
    'comentarios': 'comentarios',
    'tallerCHCC': 'taller_chcc',
    'privadaDeLibertad': 'privada_libertad',
    'transNoBinario': 'trans_no_binario',

    # Import provenance
    'sourceLine': 'source_line',
    'dataHash': 'data_hash',
})


def camel_to_snake(name: str) -> str:
    """Convert a camelCase key to snake_case. snake_case keys are returned unchanged.

    Example:
        >>> camel_to_snake("nombrePuebloOriginario")
        'nombre_pueblo_originario'
    """
    return _CAMEL_BOUNDARY.sub(lambda match: "_" + match.group(0).lower(), name)


@dataclass(frozen=True)
class MappingTables:
    """Immutable lookup tables consulted by the Field Mapper.

    Attributes:
        aliases: External key -> canonical field name (many-to-one)
        schema_fields: Whitelist of canonical field names a record may carry
        retained_internal_keys: Internal (``_``-prefixed) keys that are still mapped
        ignored_keys: Compatibility keys that never reach the canonical record
        record_number_key: Generic key that carries a client-side row number
        internal_prefix: Marker of client-internal keys
    """

    aliases: Mapping[str, str] = field(default_factory=lambda: DEFAULT_ALIASES)
    schema_fields: frozenset = frozenset(CANONICAL_FIELDS)
    retained_internal_keys: frozenset = frozenset({'_traceId', '_rutNormalized'})
    ignored_keys: frozenset = frozenset({'numero'})
    record_number_key: str = 'id'
    internal_prefix: str = '_'

    def resolve(self, key: str) -> Optional[str]:
        """Resolve an external key to a canonical field name.

        Returns:
            The canonical name, or None when the key resolves outside the schema
        """
        canonical = self.aliases.get(key) or camel_to_snake(key)
        if canonical not in self.schema_fields:
            return None
        return canonical

    def with_aliases(self, extra: Mapping[str, str]) -> 'MappingTables':
        """Return new tables with ``extra`` aliases appended to the current ones."""
        merged = dict(self.aliases)
        merged.update(extra)
        return MappingTables(
            aliases=MappingProxyType(merged),
            schema_fields=self.schema_fields,
            retained_internal_keys=self.retained_internal_keys,
            ignored_keys=self.ignored_keys,
            record_number_key=self.record_number_key,
            internal_prefix=self.internal_prefix,
        )


DEFAULT_TABLES = MappingTables()
