"""Row Enrichment - Per-Source Derive Hooks.

A derive hook runs after the field rules and fills computed columns from
other columns and from the run's lookup maps (DIVIPOLA, RED, TIPOID). Hooks
mutate the value dict in place and record lookup statistics on the shared
EnrichmentStats so the report can show matched/unmatched counts.

Architecture:
    - Hooks are plain functions with the signature (values, context) -> None
    - Lookups arrive already loaded; hooks never touch storage
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional

from feedsync.domain.normalizers import calculate_age, parse_date, trim_punct

DEFAULT_DEPARTMENT = "23"

Lookup = Mapping[str, tuple]

TIPO_ID_LONG_NAMES = {
    "CEDULA DE CIUDADANIA": "CC",
    "TARJETA DE IDENTIDAD": "TI",
    "REGISTRO CIVIL": "RC",
    "CEDULA DE EXTRANJERIA": "CE",
    "PERMISO POR PROTECCION TEMPORAL": "PT",
    "MENOR DE EDAD": "ME",
    "CERTIFICADO NACIDO VIVO": "CN",
    "PASAPORTE": "PA",
}

TIPO_ID_LETTERS = {
    "C": "CC",
    "T": "TI",
    "R": "RC",
    "E": "CE",
    "PT": "PT",
    "CN": "CN",
    "M": "ME",
    "P": "PA",
    "S": "AS",
}

OBSERVATION_FLAGS = (
    ("cronico", "CRONICO"),
    ("discapacidad", "DISCAPACIDAD"),
    ("salud_mental", "SALUD MENTAL"),
)

YES_FLAGS = (
    ("poblacion_vulnerable", "POBLACION CONDICION VULNERABLE"),
    ("victima_conflicto", "PAPSIVI (VICTIMA DEL CONFLICTO ARMADO)"),
)


@dataclass
class EnrichmentStats:
    """Counters collected while transforming rows."""

    invalid_dates: Counter = field(default_factory=Counter)
    ips_matched: int = 0
    ips_unmatched: int = 0
    ips_not_found: Counter = field(default_factory=Counter)

    def as_details(self) -> Dict[str, Any]:
        details: Dict[str, Any] = {}
        if self.invalid_dates:
            details["fechas_invalidas"] = dict(self.invalid_dates)
        if self.ips_matched or self.ips_unmatched:
            details["cruces_ips_correctos"] = self.ips_matched
            details["cruces_ips_fallidos"] = self.ips_unmatched
        return details


@dataclass
class DeriveContext:
    """What a derive hook may read: lookup maps and the run's counters."""

    lookups: Mapping[str, Lookup] = field(default_factory=dict)
    stats: EnrichmentStats = field(default_factory=EnrichmentStats)

    def lookup(self, name: str) -> Lookup:
        return self.lookups.get(name, {})


DeriveHook = Callable[[MutableMapping[str, Any], DeriveContext], None]


def _first(value: Optional[tuple]) -> Optional[str]:
    return value[0] if value else None


def _join(*parts: Optional[str]) -> str:
    return " ".join(p for p in parts if p)


def resolve_department(name: Optional[str], names_to_codes: Lookup, code_length: int = 2) -> str:
    """Resolve a two-digit department code from a municipality or department name.

    Exact match first, then a containment match in either direction, then the
    default department (23, Córdoba).
    """
    if not name:
        return DEFAULT_DEPARTMENT
    upper = name.strip().upper()
    if not upper:
        return DEFAULT_DEPARTMENT

    code = _first(names_to_codes.get(upper))
    if code:
        return code[:code_length]

    for candidate, values in names_to_codes.items():
        if candidate in upper or upper in candidate:
            code = _first(values)
            if code:
                return code[:code_length]

    return DEFAULT_DEPARTMENT


def derive_citas(values: MutableMapping[str, Any], context: DeriveContext) -> None:
    """Age at assignment date from the birth date column."""
    birth = parse_date(values.pop("fecha_nacimiento_temp", None) or None)
    values["edad"] = calculate_age(birth, values.get("fecha_asignacion"))


def derive_salud_total(values: MutableMapping[str, Any], context: DeriveContext) -> None:
    raw = (values.pop("tipo_id_raw", "") or "").upper()
    values["tipo_id"] = TIPO_ID_LONG_NAMES.get(raw, raw)
    values["departamento"] = resolve_department(values.get("municipio"), context.lookup("municipios"))


def derive_sigires_st(values: MutableMapping[str, Any], context: DeriveContext) -> None:
    raw = (values.pop("tipo_id_raw", "") or "").upper()
    values["tipo_id"] = TIPO_ID_LETTERS.get(raw, raw)
    values["nombres"] = _join(values.pop("nombre1", ""), values.pop("nombre2", ""))

    department_name = values.pop("departamento_raw", "")
    if department_name:
        values["departamento"] = resolve_department(department_name, context.lookup("departamentos"))
    else:
        values["departamento"] = resolve_department(values.get("municipio"), context.lookup("municipios"))


def derive_sigires_neps(values: MutableMapping[str, Any], context: DeriveContext) -> None:
    """Names, IPS lookup against RED, department and the observation flags."""
    values["nombres"] = _join(values.pop("nombre1", ""), values.pop("nombre2", ""))

    ips_code = values.pop("codigo_ips", "")
    ips_name = _first(context.lookup("red").get(ips_code.upper())) if ips_code else None
    if ips_name:
        values["ips_primaria"] = ips_name
        context.stats.ips_matched += 1
    elif ips_code:
        values["ips_primaria"] = ""
        context.stats.ips_unmatched += 1
        context.stats.ips_not_found[ips_code] += 1

    values["departamento"] = resolve_department(values.get("municipio"), context.lookup("municipios"))

    flags = []
    for field_name, label in OBSERVATION_FLAGS:
        raw = values.pop(field_name, "")
        try:
            if raw and float(raw) >= 1:
                flags.append(label)
        except ValueError:
            continue
    for field_name, label in YES_FLAGS:
        if (values.pop(field_name, "") or "").upper() == "S":
            flags.append(label)
    grupo = (values.pop("grupo_patologia", "") or "").upper()
    if grupo:
        flags.append(grupo)
    values["observaciones"] = ", ".join(flags)


def resolve_regimen(code: Optional[str]) -> str:
    """Salary band letter -> contributory regime, level digit -> subsidized regime."""
    value = (code or "").strip().upper()
    if value in ("A", "B", "C"):
        return "CONTRIBUTIVO"
    if value in ("1", "2"):
        return "SUBSIDIADO"
    return ""


def derive_neps_cloud(values: MutableMapping[str, Any], context: DeriveContext) -> None:
    """TIPOID code lookup, regime from band, DIVIPOLA names from codes."""
    tipo_code = values.pop("tipo_id_codigo", "")
    values["tipo_id"] = _first(context.lookup("tipoid").get(tipo_code.upper())) or tipo_code.upper()
    values["regimen"] = resolve_regimen(values.get("rango"))

    dep_code = trim_punct(values.pop("cod_departamento", ""))
    mun_code = trim_punct(values.pop("cod_municipio", ""))
    municipio = None
    if dep_code and mun_code:
        municipio = _first(context.lookup("municipios_por_codigo").get(dep_code.zfill(2) + mun_code.zfill(3)))
    values["municipio"] = (municipio or mun_code).upper()
    if dep_code:
        values["departamento"] = dep_code.zfill(2)
    else:
        values["departamento"] = resolve_department(values["municipio"], context.lookup("municipios"))
