"""Import Source Catalog.

Each import source is described by one SourceConfig: where its payload comes
from, how headers or positions map to target fields, which rules clean each
field, the natural key, the reference validations and lookups, and how the
merge is tagged. The pipeline is generic; everything source-specific lives
here and in the derive hooks of feedsync.domain.enrichment.

Architecture:
    - Frozen dataclasses, built once at import time
    - Layouts: "spreadsheet" (HTML or binary workbook with a header row),
      "delimited" (streamed text lines, named header or fixed positions),
      "bundle" (ZIP of delimited members, delivered by the cloud trigger)
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from feedsync.domain import enrichment
from feedsync.domain.models import ImportMode, SourceStatus
from feedsync.domain.normalizers import DEFAULT_DATE_ORDER

MB = 1024 * 1024

BOOKKEEPING_COLUMNS = ("source_tag", "last_seen_at")

ROSTER_COLUMNS = (
    "tipo_id", "id", "apellido1", "apellido2", "nombres", "sexo", "direccion",
    "telefono", "fecha_nacimiento", "estado", "municipio", "observaciones",
    "ips_primaria", "tipo_cotizante", "departamento", "rango", "email",
    "regimen", "eps",
)


@dataclass(frozen=True)
class TableSchema:
    """Target or reference table: columns (all text unless typed) and key."""

    name: str
    columns: Tuple[str, ...]
    key: Tuple[str, ...]
    integer_columns: Tuple[str, ...] = ()
    date_columns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldRule:
    """How one target field is read and cleaned.

    kind is one of: text, optional_text, upper, code, id, cups, cups_head,
    date, int, digits_int, phone, status, status_prefix, duration, trim_punct.
    column names the ColumnMap entry to read (defaults to field).
    """

    field: str
    kind: str = "text"
    column: Optional[str] = None

    @property
    def source_column(self) -> str:
        return self.column or self.field


@dataclass(frozen=True)
class ValidationRule:
    """Reference check of one field against a reference table.

    Blocking rules keep invalid rows out of the load; advisory rules only
    report. kind "codes" reports per code, kind "roster" reports per patient.
    """

    label: str
    field: str
    table: str
    column: str
    blocking: bool = True
    kind: str = "codes"
    normalize: Optional[Callable[[str], str]] = None

    def code_of(self, value) -> Optional[str]:
        if value is None or value == "":
            return None
        text = str(value)
        return self.normalize(text) if self.normalize else text


@dataclass(frozen=True)
class LookupSpec:
    """A reference table loaded whole as key -> tuple(values)."""

    table: str
    key_column: str
    value_columns: Tuple[str, ...]


@dataclass(frozen=True)
class SourceConfig:
    """Everything the generic pipeline needs to import one source."""

    id: str
    name: str
    category: str
    description: str = ""
    status: SourceStatus = SourceStatus.ACTIVE
    mode: ImportMode = ImportMode.FILE
    layout: str = "spreadsheet"
    expected_file_name: str = ""
    max_file_size: int = 50 * MB
    target: Optional[TableSchema] = None
    source_tag: str = ""
    chunk_size: int = 2000
    key_fields: Tuple[str, ...] = ()
    field_rules: Tuple[FieldRule, ...] = ()
    column_dictionary: Mapping[str, str] = field(default_factory=dict)
    required_tokens: Tuple[str, ...] = ()
    required_fields: Tuple[str, ...] = ()
    header_compact: bool = True
    fuzzy: bool = False
    fuzzy_max_length_diff: Optional[int] = None
    positions: Mapping[str, int] = field(default_factory=dict)
    date_order: Tuple[str, ...] = DEFAULT_DATE_ORDER
    constants: Mapping[str, object] = field(default_factory=dict)
    derive: Optional[enrichment.DeriveHook] = None
    validations: Tuple[ValidationRule, ...] = ()
    lookups: Tuple[str, ...] = ()
    example_fields: Tuple[str, ...] = ()
    contract_field: str = "contrato"
    retire_orphans: bool = False
    strip_quotes: bool = False
    strict_dates: bool = False
    encoding: str = "utf-8"
    delimiter: str = ";"
    min_cells: int = 3
    min_fields: int = 0
    report_title: str = ""

    @property
    def is_roster(self) -> bool:
        return self.retire_orphans

    @property
    def is_importable(self) -> bool:
        return self.status == SourceStatus.ACTIVE and self.target is not None

    @property
    def positional(self) -> bool:
        return bool(self.positions)

    def example_name(self, values: Mapping[str, object]) -> str:
        parts = [str(values.get(f) or "").strip() for f in self.example_fields]
        return " ".join(p for p in parts if p)

    def to_summary(self) -> Dict[str, object]:
        """Public description used by the API and CLI listings."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "status": self.status.value,
            "mode": self.mode.value,
            "expectedFileName": self.expected_file_name,
            "maxFileSize": self.max_file_size,
            "targetTable": self.target.name if self.target else None,
        }


# ============================================================================
# Lookup and reference tables
# ============================================================================

LOOKUPS: Dict[str, LookupSpec] = {
    "municipios": LookupSpec("divipola", "nombre_municipio", ("cod_municipio",)),
    "municipios_por_codigo": LookupSpec("divipola", "cod_municipio", ("nombre_municipio",)),
    "departamentos": LookupSpec("divipola_dep", "nombre_departamento", ("cod_departamento",)),
    "red": LookupSpec("red", "cod_hab", ("nombre_ips",)),
    "tipoid": LookupSpec("tipoid", "afi_tid_codigo", ("tipo_id",)),
}

REFERENCE_TABLES: Tuple[TableSchema, ...] = (
    TableSchema("cups", ("cups", "descripcion"), ("cups",)),
    TableSchema("cie10", ("cie10", "descripcion"), ("cie10",)),
    TableSchema("divipola", ("cod_municipio", "nombre_municipio", "cod_departamento", "nombre_departamento"), ("cod_municipio",)),
    TableSchema("divipola_dep", ("cod_departamento", "nombre_departamento"), ("cod_departamento",)),
    TableSchema("red", ("cod_hab", "nombre_ips"), ("cod_hab",)),
    TableSchema("tipoid", ("afi_tid_codigo", "tipo_id"), ("afi_tid_codigo",)),
)

BD_TABLE = TableSchema("bd", ROSTER_COLUMNS, ("tipo_id", "id"), date_columns=("fecha_nacimiento",))

CUPS_BLOCKING = ValidationRule("CUPS", "cups", "cups", "cups")
CIE10_BLOCKING = ValidationRule("CIE10", "dx1", "cie10", "cie10")
ROSTER_ADVISORY = ValidationRule("BD", "id", "bd", "id", blocking=False, kind="roster")


def _cups_prefix(value: str) -> str:
    return value.strip()[:6].upper()


def _rules(*specs) -> Tuple[FieldRule, ...]:
    return tuple(FieldRule(*spec) if isinstance(spec, tuple) else FieldRule(spec) for spec in specs)


# ============================================================================
# Clinical feeds
# ============================================================================

CITAS = SourceConfig(
    id="citas",
    name="Citas",
    category="clinico",
    description="Informe de citas del sistema clinico",
    expected_file_name="Informe_citas.xls",
    max_file_size=200 * MB,
    target=TableSchema(
        "citas",
        ("id_cita", "tipo_id", "identificacion", "nombres_completos", "fecha_asignacion",
         "fecha_cita", "estado_cita", "asunto", "sede", "contrato", "medico", "especialidad",
         "tipo_cita", "cups", "procedimiento", "unidad_funcional", "dx1", "dx2", "dx3", "dx4",
         "duracion", "sexo", "edad", "usuario_agenda", "usuario_confirma"),
        ("id_cita",),
        integer_columns=("edad",),
        date_columns=("fecha_asignacion", "fecha_cita"),
    ),
    source_tag="CITAS",
    chunk_size=100,
    key_fields=("id_cita",),
    column_dictionary={
        "ID CITA": "id_cita",
        "TIPO IDENT.": "tipo_id",
        "No. IDENTIFICACION": "identificacion",
        "PACIENTE": "nombres_completos",
        "FECHA ASIGNACION": "fecha_asignacion",
        "FECHA ATENCION": "fecha_cita",
        "ESTADO": "estado_cita",
        "ASUNTO": "asunto",
        "P. ATENCION": "sede",
        "CONTRATO": "contrato",
        "USUARIO": "usuario_agenda",
        "MEDICO": "medico",
        "ESP. MEDICO": "especialidad",
        "TIPO DE CITA": "tipo_cita",
        "CUPS": "cups",
        "PROCEDIMIENTO": "procedimiento",
        "UNIDAD FUNCIONAL": "unidad_funcional",
        "DIAGNOSTICO": "dx1",
        "D. RELACIONADO1": "dx2",
        "D. RELACIONADO2": "dx3",
        "D. RELACIONADO3": "dx4",
        "FECHA TIEMPO EN CONSULTA": "duracion",
        "SEXO": "sexo",
        "F.NACIMIENTO": "fecha_nacimiento_temp",
        "USUARIO CONFIRMA": "usuario_confirma",
    },
    required_tokens=("ID CITA", "PACIENTE"),
    required_fields=("id_cita",),
    header_compact=False,
    fuzzy=True,
    fuzzy_max_length_diff=3,
    date_order=("dmy", "iso", "ymd_slash"),
    field_rules=_rules(
        "id_cita", "tipo_id", "identificacion", "nombres_completos",
        ("fecha_asignacion", "date"), ("fecha_cita", "date"),
        ("estado_cita", "status_prefix"), "asunto", "sede", "contrato", "medico",
        "especialidad", "tipo_cita", "cups", "procedimiento", "unidad_funcional", "dx1",
        ("dx2", "optional_text"), ("dx3", "optional_text"), ("dx4", "optional_text"),
        ("duracion", "duration"), ("sexo", "optional_text"),
        ("usuario_agenda", "optional_text"), ("usuario_confirma", "optional_text"),
        "fecha_nacimiento_temp",
    ),
    derive=enrichment.derive_citas,
    validations=(ValidationRule("CUPS", "cups", "cups", "cups", blocking=False, normalize=_cups_prefix),),
    example_fields=("procedimiento",),
    min_cells=2,
)

ORDENAMIENTOS = SourceConfig(
    id="ordenamientos",
    name="Ordenamientos",
    category="clinico",
    description="Ordenes de servicios y procedimientos",
    expected_file_name="Ordenamientos.xls",
    target=TableSchema(
        "ordenamientos",
        ("fecha", "tipo_id", "id", "nombres_completos", "contrato", "medico",
         "especialidad", "cups", "cantidad", "servicio"),
        ("fecha", "id", "cups"),
        integer_columns=("cantidad",),
        date_columns=("fecha",),
    ),
    source_tag="ORDENAMIENTOS",
    key_fields=("fecha", "id", "cups"),
    column_dictionary={
        "FECHA": "fecha",
        "TIPOID": "tipo_id",
        "NUMEROID": "id",
        "PACIENTE": "nombres_completos",
        "CONTRATO": "contrato",
        "MEDICO": "medico",
        "ESPECIALIDAD": "especialidad",
        "CUPS": "cups",
        "CANTIDAD": "cantidad",
        "SERVICIO": "servicio",
    },
    required_tokens=("FECHA", "NUMEROID", "CUPS"),
    required_fields=("fecha", "id", "cups"),
    field_rules=_rules(
        ("fecha", "date"), "tipo_id", ("id", "id"), "nombres_completos", "contrato",
        "medico", "especialidad", ("cups", "cups"), ("cantidad", "int"), "servicio",
    ),
    validations=(CUPS_BLOCKING, ROSTER_ADVISORY),
    example_fields=("nombres_completos",),
)

CIRUGIAS = SourceConfig(
    id="cirugias",
    name="Cirugías",
    category="clinico",
    description="Procedimientos quirurgicos realizados",
    expected_file_name="Cirugias.xls",
    target=TableSchema(
        "cirugias",
        ("fecha", "tipo_id", "id", "apellido1", "apellido2", "nombre1", "nombre2", "edad",
         "contrato", "dx1", "medico", "especialidad", "ayudante", "anestesiologo", "cups", "sede"),
        ("fecha", "id", "cups"),
        integer_columns=("edad",),
        date_columns=("fecha",),
    ),
    source_tag="CIRUGIAS",
    key_fields=("fecha", "id", "cups"),
    column_dictionary={
        "FECHA": "fecha",
        "TIPOID": "tipo_id",
        "IDPCTE": "id",
        "PRIMERAPELLIDO": "apellido1",
        "SEGUNDOAPELLIDO": "apellido2",
        "PRIMERNOMBRE": "nombre1",
        "SEGUNDONOMBRE": "nombre2",
        "EDAD": "edad",
        "CONTRATO": "contrato",
        "DXPRINCIPAL": "dx1",
        "MEDICO": "medico",
        "ESPECIALIDAD": "especialidad",
        "AYUDANTE": "ayudante",
        "ANESTESIOLOGO": "anestesiologo",
        "CUPS": "cups",
        "SEDE": "sede",
    },
    required_tokens=("FECHA", "IDPCTE", "CUPS"),
    required_fields=("fecha", "id", "cups"),
    field_rules=_rules(
        ("fecha", "date"), "tipo_id", ("id", "id"), "apellido1", "apellido2", "nombre1",
        "nombre2", ("edad", "int"), "contrato", ("dx1", "code"), "medico", "especialidad",
        "ayudante", "anestesiologo", ("cups", "cups"), "sede",
    ),
    validations=(CUPS_BLOCKING, CIE10_BLOCKING, ROSTER_ADVISORY),
    example_fields=("nombre1", "nombre2", "apellido1", "apellido2"),
)

IMAGENES = SourceConfig(
    id="imagenes",
    name="Imágenes",
    category="clinico",
    description="Estudios de imagenes diagnosticas",
    expected_file_name="Imagenes.xls",
    target=TableSchema(
        "imagenes",
        ("fecha", "tipo_id", "id", "nombres_completos", "sexo", "edad", "cups", "birads"),
        ("fecha", "id", "cups"),
        integer_columns=("edad",),
        date_columns=("fecha",),
    ),
    source_tag="IMAGENES",
    key_fields=("fecha", "id", "cups"),
    column_dictionary={
        "TIPOIDENTIFICACION": "tipo_id",
        "IDENTIFICACION": "id",
        "NOMBRESYAPELLIDOS": "nombres_completos",
        "SEXO": "sexo",
        "EDAD": "edad",
        "ESTUDIOREALIZADO": "cups",
        "FECHA": "fecha",
        "BIRADS": "birads",
    },
    required_tokens=("FECHA", "IDENTIFICACION", "ESTUDIOREALIZADO"),
    required_fields=("fecha", "id", "cups"),
    field_rules=_rules(
        ("fecha", "date"), "tipo_id", ("id", "id"), "nombres_completos", "sexo",
        ("edad", "digits_int"), ("cups", "cups_head"), "birads",
    ),
    validations=(CUPS_BLOCKING, ROSTER_ADVISORY),
    example_fields=("nombres_completos",),
)

INCAPACIDADES = SourceConfig(
    id="incapacidades",
    name="Incapacidades",
    category="clinico",
    description="Certificados de incapacidad medica",
    expected_file_name="Incapacidades.xls",
    target=TableSchema(
        "incapacidades",
        ("fecha", "tipo_id", "id", "nombres_completos", "contrato", "dx1", "medico",
         "especialidad", "fecha_inicio", "fecha_fin", "dias_incapacidad", "justificacion"),
        ("fecha", "id"),
        integer_columns=("dias_incapacidad",),
        date_columns=("fecha", "fecha_inicio", "fecha_fin"),
    ),
    source_tag="INCAPACIDADES",
    key_fields=("fecha", "id"),
    column_dictionary={
        "FECHAATENCION": "fecha",
        "TIPOIDENTIFICACION": "tipo_id",
        "IDENTIFICACION": "id",
        "NOMBRESCOMPLETOS": "nombres_completos",
        "CONVENIOCONTRATO": "contrato",
        "DIAGNOSTICOCIE10": "dx1",
        "MEDICOTRATANTE": "medico",
        "ESPECIALIDADES": "especialidad",
        "FECHAINICIOINCAPACIDAD": "fecha_inicio",
        "FECHAFININCAPACIDAD": "fecha_fin",
        "DIASINCAPACIDAD": "dias_incapacidad",
        "DIAGNOSTICODESCRIPCION": "justificacion",
    },
    required_tokens=("FECHAATENCION", "IDENTIFICACION"),
    required_fields=("fecha", "id"),
    field_rules=_rules(
        ("fecha", "date"), "tipo_id", ("id", "id"), "nombres_completos", "contrato",
        ("dx1", "code"), "medico", "especialidad", ("fecha_inicio", "date"),
        ("fecha_fin", "date"), ("dias_incapacidad", "int"), "justificacion",
    ),
    validations=(CIE10_BLOCKING, ROSTER_ADVISORY),
    example_fields=("nombres_completos",),
)


# ============================================================================
# Roster feeds (table bd)
# ============================================================================

BD_SALUD_TOTAL = SourceConfig(
    id="bd-salud-total",
    name="BD Salud Total",
    category="bases-datos",
    description="Base de datos Salud Total (ST Cerete)",
    layout="delimited",
    expected_file_name="BD_Salud_Total.txt",
    max_file_size=100 * MB,
    target=BD_TABLE,
    source_tag="BD_ST_CERETE",
    key_fields=("tipo_id", "id"),
    column_dictionary={
        "TipoDocumento": "tipo_id_raw",
        "Documento": "id",
        "Nombre": "nombres",
        "Apellido1": "apellido1",
        "Apellido2": "apellido2",
        "Sexo": "sexo",
        "Fecha_Nacimiento": "fecha_nacimiento",
        "Direccion": "direccion",
        "telefonomovil": "telefono",
        "Ciudad": "municipio",
        "EstadoServicio": "estado",
        "Regimen": "regimen",
        "Email": "email",
        "RangoSalarial": "rango",
        "ProgramasEspeciales": "observaciones",
    },
    required_fields=("tipo_id_raw", "id", "nombres", "apellido1"),
    date_order=("mdy", "iso"),
    field_rules=_rules(
        ("tipo_id_raw", "upper"), ("id", "id"), "nombres", "apellido1", "apellido2", "sexo",
        ("fecha_nacimiento", "date"), "direccion", "telefono", ("municipio", "upper"),
        ("estado", "status"), ("regimen", "upper"), "email", "rango", "observaciones",
    ),
    constants={
        "ips_primaria": "GESTAR SALUD DE COLOMBIA CERETE CONTRIBUTIVO",
        "tipo_cotizante": "",
        "eps": "SALUD TOTAL",
    },
    derive=enrichment.derive_salud_total,
    lookups=("municipios",),
    retire_orphans=True,
    encoding="cp1252",
    delimiter="\t",
    report_title="BD SALUD TOTAL",
)

BD_SIGIRES_ST = SourceConfig(
    id="bd-sigires-st",
    name="BD Sigires ST",
    category="bases-datos",
    description="Sigires de Salud Total (PGP)",
    expected_file_name="Sigires_ST.xlsx",
    max_file_size=100 * MB,
    target=BD_TABLE,
    source_tag="BD_ST_PGP",
    key_fields=("tipo_id", "id"),
    column_dictionary={
        "BENEFICIARIOTIPOID": "tipo_id_raw",
        "BENEFICIARIOID": "id",
        "NOMBRE1": "nombre1",
        "NOMBRE2": "nombre2",
        "APELLIDO1": "apellido1",
        "APELLIDO2": "apellido2",
        "SEXO": "sexo",
        "FECHANACIMIENTO": "fecha_nacimiento",
        "DIRECCIONRES": "direccion",
        "CELULAR": "telefono",
        "MUNICIPIORES": "municipio",
        "DEPARTAMENTORES": "departamento_raw",
        "NOMBREESTADOSERVICIO": "estado",
        "REGIMEN": "regimen",
        "CORREOELECTRONICO": "email",
        "IPSPRIMARIAAFIL": "ips_primaria",
    },
    required_tokens=("BENEFICIARIOID", "APELLIDO1"),
    required_fields=("id", "apellido1"),
    date_order=("excel_serial", "iso", "mdy_short", "mdy", "dmy"),
    field_rules=_rules(
        ("tipo_id_raw", "upper"), ("id", "id"), "nombre1", "nombre2", "apellido1", "apellido2",
        "sexo", ("fecha_nacimiento", "date"), "direccion", "telefono", ("municipio", "upper"),
        ("departamento_raw", "upper"), ("estado", "status"), ("regimen", "upper"), "email",
        "ips_primaria",
    ),
    constants={"observaciones": "", "tipo_cotizante": "", "rango": "", "eps": "SALUD TOTAL"},
    derive=enrichment.derive_sigires_st,
    lookups=("municipios", "departamentos"),
    retire_orphans=True,
    report_title="BD SIGIRES ST",
)

BD_SIGIRES_NEPS = SourceConfig(
    id="bd-sigires-neps",
    name="BD Sigires NEPS",
    category="bases-datos",
    description="Sigires de Nueva EPS",
    layout="delimited",
    expected_file_name="Sigires_NEPS.txt",
    max_file_size=2048 * MB,
    target=BD_TABLE,
    source_tag="BD_SIGIRES_NEPS",
    chunk_size=5000,
    key_fields=("tipo_id", "id"),
    positions={
        "municipio": 6,
        "codigo_ips": 8,
        "tipo_id": 10,
        "id": 11,
        "apellido1": 12,
        "apellido2": 13,
        "nombre1": 14,
        "nombre2": 15,
        "fecha_nacimiento": 16,
        "sexo": 17,
        "regimen": 26,
        "estado": 28,
        "direccion": 31,
        "telefono": 33,
        "email": 35,
        "cronico": 43,
        "discapacidad": 44,
        "salud_mental": 45,
        "poblacion_vulnerable": 48,
        "victima_conflicto": 49,
        "grupo_patologia": 113,
    },
    date_order=("dmy", "iso"),
    field_rules=_rules(
        ("municipio", "upper"), "codigo_ips", ("tipo_id", "upper"), "id", "apellido1",
        "apellido2", "nombre1", "nombre2", ("fecha_nacimiento", "date"), ("sexo", "upper"),
        ("regimen", "upper"), ("estado", "upper"), "direccion", ("telefono", "phone"), "email",
        "cronico", "discapacidad", "salud_mental", "poblacion_vulnerable", "victima_conflicto",
        "grupo_patologia",
    ),
    constants={"tipo_cotizante": "", "rango": "", "eps": "NUEVA EPS"},
    derive=enrichment.derive_sigires_neps,
    lookups=("municipios", "red"),
    retire_orphans=True,
    strip_quotes=True,
    encoding="cp1252",
    delimiter=";",
    min_fields=50,
    report_title="BD SIGIRES NEPS",
)

BD_NEPS = SourceConfig(
    id="bd-neps",
    name="BD Neps",
    category="bases-datos",
    description="Base de datos Nueva EPS (sincronizacion en la nube)",
    mode=ImportMode.CLOUD,
    layout="bundle",
    expected_file_name="BD_Neps.zip",
    max_file_size=500 * MB,
    target=BD_TABLE,
    source_tag="BD_NEPS",
    chunk_size=5000,
    key_fields=("tipo_id", "id"),
    positions={
        "ips_primaria": 1,
        "tipo_id_codigo": 4,
        "id": 5,
        "apellido1": 6,
        "apellido2": 7,
        "nombres": 8,
        "tipo_cotizante": 10,
        "sexo": 13,
        "direccion": 14,
        "telefono": 15,
        "fecha_nacimiento": 16,
        "rango": 18,
        "estado": 20,
        "cod_departamento": 21,
        "cod_municipio": 22,
        "observaciones": 32,
    },
    date_order=("dmy", "iso"),
    field_rules=_rules(
        ("ips_primaria", "trim_punct"), ("tipo_id_codigo", "trim_punct"), ("id", "trim_punct"),
        ("apellido1", "trim_punct"), ("apellido2", "trim_punct"), ("nombres", "trim_punct"),
        ("tipo_cotizante", "trim_punct"), ("sexo", "trim_punct"), ("direccion", "trim_punct"),
        ("telefono", "trim_punct"), ("fecha_nacimiento", "date"), ("rango", "trim_punct"),
        ("estado", "trim_punct"), ("cod_departamento", "trim_punct"),
        ("cod_municipio", "trim_punct"), ("observaciones", "trim_punct"),
    ),
    constants={"email": "", "eps": "NUEVA EPS"},
    derive=enrichment.derive_neps_cloud,
    lookups=("tipoid", "municipios_por_codigo", "municipios"),
    retire_orphans=True,
    min_fields=33,
    report_title="BD NEPS",
)


def _coming_soon(source_id: str, name: str, category: str, description: str, file_name: str) -> SourceConfig:
    return SourceConfig(
        id=source_id,
        name=name,
        category=category,
        description=description,
        status=SourceStatus.COMING_SOON,
        expected_file_name=file_name,
    )


SOURCES: Tuple[SourceConfig, ...] = (
    _coming_soon("autorizaciones-sisma", "Autorizaciones Sisma", "autorizaciones",
                 "Autorizaciones del sistema SISMA", "Autorizaciones_Sisma.xls"),
    _coming_soon("autorizaciones-st", "Autorizaciones ST", "autorizaciones",
                 "Autorizaciones de Salud Total", "Autorizaciones_ST.xls"),
    BD_NEPS,
    BD_SALUD_TOTAL,
    BD_SIGIRES_NEPS,
    BD_SIGIRES_ST,
    _coming_soon("cervix", "Cérvix", "programas", "Programa de tamizaje de cervix", "Cervix.xls"),
    CIRUGIAS,
    CITAS,
    _coming_soon("gestantes", "Gestantes", "programas", "Programa de gestantes", "Gestantes.xls"),
    IMAGENES,
    INCAPACIDADES,
    _coming_soon("laboratorios", "Laboratorios", "clinico", "Resultados de laboratorio", "Laboratorios.xls"),
    ORDENAMIENTOS,
    _coming_soon("recetas", "Recetas", "clinico", "Formulas medicas", "Recetas.xls"),
)

_BY_ID: Dict[str, SourceConfig] = {source.id: source for source in SOURCES}


def get_source(source_id: str) -> Optional[SourceConfig]:
    """Return the source with this id, or None."""
    return _BY_ID.get(source_id)


def list_sources(category: Optional[str] = None, active_only: bool = False) -> List[SourceConfig]:
    """Sources ordered by name, optionally filtered."""
    sources = [
        s for s in SOURCES
        if (category is None or s.category == category) and (not active_only or s.is_importable)
    ]
    return sorted(sources, key=lambda s: s.name)


def target_tables() -> Dict[str, TableSchema]:
    """Every distinct target table declared by an importable source."""
    return {s.target.name: s.target for s in SOURCES if s.target is not None}
