"""Report Builder - CSV Sections and Human Messages for an Import Run.

Reports are plain text made of sections::

    === SECCION: <TITLE> ===
    <csv header>
    <csv rows>

Sections are separated by a blank line. The error report carries problem
sections (invalid codes, roster mismatches, unmatched IPS codes) and, for
roster feeds, the run summary. The info report carries the summary and the
date-quality counters. The error message joins short human sentences.
"""

import csv
import io
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from feedsync.domain.enrichment import EnrichmentStats
from feedsync.domain.priority import ORPHAN_STATUS
from feedsync.domain.sources import SourceConfig, ValidationRule
from feedsync.domain.validator import Finding, ValidationOutcome

ROSTER_SECTION_TITLE = "PACIENTES NO ENCONTRADOS EN BD NOMINAL"
IPS_SECTION_TITLE = "CODIGOS IPS NO ENCONTRADOS EN TABLA RED"


@dataclass
class ReportStats:
    """Everything the report needs to know about a finished run."""

    source: SourceConfig
    total: int = 0
    unique: int = 0
    inserted: int = 0
    updated: int = 0
    complemented: int = 0
    retired: int = 0
    duplicates: int = 0
    skipped: int = 0
    processing_errors: int = 0
    date_errors: int = 0
    transform_errors: int = 0
    orphan_failure: bool = False
    validation: ValidationOutcome = field(default_factory=ValidationOutcome)
    enrichment: EnrichmentStats = field(default_factory=EnrichmentStats)


@dataclass(frozen=True)
class ReportBundle:
    error_report: Optional[str] = None
    info_report: Optional[str] = None
    error_message: Optional[str] = None


def _section(
    title: str,
    header: Optional[Sequence[str]],
    rows: Sequence[Sequence],
    quoting: int = csv.QUOTE_MINIMAL,
) -> str:
    buffer = io.StringIO()
    buffer.write(f"=== SECCION: {title} ===\n")
    if header:
        buffer.write(",".join(header) + "\n")
    writer = csv.writer(buffer, quoting=quoting, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def _group_codes(findings: Sequence[Finding]) -> "OrderedDict[str, Tuple[str, int]]":
    grouped: "OrderedDict[str, Tuple[str, int]]" = OrderedDict()
    for finding in findings:
        if finding.code in grouped:
            example, count = grouped[finding.code]
            grouped[finding.code] = (example, count + 1)
        else:
            grouped[finding.code] = (finding.example, 1)
    return grouped


class ReportBuilder:
    """Compiles ReportStats into the three report strings."""

    def __init__(self, include_info: bool = True):
        self.include_info = include_info

    def code_section(self, rule: ValidationRule, findings: Sequence[Finding]) -> str:
        grouped = _group_codes(findings)
        rows = [(code, example, count) for code, (example, count) in grouped.items()]
        return _section(
            f"CODIGOS {rule.label} NO ENCONTRADOS",
            (rule.label, "EJEMPLO_PACIENTE", "REGISTROS_AFECTADOS"),
            rows,
            quoting=csv.QUOTE_NONNUMERIC,
        )

    def roster_section(self, findings: Sequence[Finding]) -> str:
        unique: "OrderedDict[str, Finding]" = OrderedDict()
        for finding in findings:
            unique.setdefault(finding.code, finding)
        rows = [(f.code, f.example, f.contract) for f in unique.values()]
        return _section(
            ROSTER_SECTION_TITLE, ("IDENTIFICACION", "NOMBRE", "CONTRATO"), rows, quoting=csv.QUOTE_ALL
        )

    def ips_section(self, not_found: Counter) -> str:
        rows = sorted(not_found.items(), key=lambda item: (-item[1], item[0]))
        return _section(IPS_SECTION_TITLE, ("Codigo IPS", "Cantidad registros"), rows)

    def summary_section(self, stats: ReportStats) -> str:
        source = stats.source
        title = source.report_title or source.name.upper()
        rows: List[Tuple[str, int]] = [
            ("Total registros en archivo", stats.total),
            ("Registros unicos", stats.unique),
            ("Insertados nuevos", stats.inserted),
            ("Actualizados", stats.updated),
            ("Complementados", stats.complemented),
        ]
        if source.retire_orphans:
            rows.append((f"Huerfanos marcados ({ORPHAN_STATUS})", stats.retired))
        rows.append(("Duplicados en archivo", stats.duplicates))
        rows.append(("Sin tipo_id o id" if source.is_roster else "Filas omitidas sin clave", stats.skipped))
        rows.append(("Errores de procesamiento", stats.processing_errors))
        if stats.enrichment.ips_matched or stats.enrichment.ips_unmatched:
            rows.append(("Cruces IPS correctos", stats.enrichment.ips_matched))
            rows.append(("Cruces IPS fallidos", stats.enrichment.ips_unmatched))
        return _section(f"RESUMEN DE IMPORTACION {title}", None, rows)

    def date_section(self, invalid_dates: Mapping[str, int]) -> Optional[str]:
        if not invalid_dates:
            return None
        rows = sorted(invalid_dates.items())
        return _section("FECHAS INVALIDAS", ("Campo", "Registros"), rows)

    def messages(self, stats: ReportStats) -> List[str]:
        messages: List[str] = []
        for rule, findings in stats.validation.rejected.items():
            messages.append(f"{len({f.code for f in findings})} códigos {rule.label} no encontrados")
        for rule, findings in stats.validation.advisories.items():
            distinct = len({f.code for f in findings})
            if rule.kind == "roster":
                messages.append(f"{distinct} pacientes no encontrados en BD nominal")
            else:
                messages.append(f"{distinct} códigos {rule.label} no encontrados")
        if stats.validation.unverified_rows:
            messages.append(
                f"{stats.validation.unverified_rows} registros sin verificar por fallo en la consulta de referencia"
            )
        if stats.retired:
            messages.append(f'{stats.retired} registros marcados como "{ORPHAN_STATUS}"')
        if stats.orphan_failure:
            messages.append("No fue posible marcar los registros huerfanos")
        if stats.complemented:
            messages.append(f"{stats.complemented} registros complementados")
        if stats.enrichment.ips_unmatched:
            messages.append(f"{stats.enrichment.ips_unmatched} códigos IPS no encontrados en tabla RED")
        if stats.date_errors:
            messages.append(f"{stats.date_errors} registros con fecha invalida")
        if stats.transform_errors:
            messages.append(f"{stats.transform_errors} registros no pudieron transformarse")
        if stats.processing_errors:
            messages.append(f"{stats.processing_errors} registros con error de procesamiento")
        return messages

    def compile(self, stats: ReportStats) -> ReportBundle:
        """Build error report, info report and error message for a run."""
        problem_sections: List[str] = []
        if stats.source.is_roster:
            problem_sections.append(self.summary_section(stats))
        for rule, findings in stats.validation.rejected.items():
            problem_sections.append(self.code_section(rule, findings))
        for rule, findings in stats.validation.advisories.items():
            if rule.kind == "roster":
                problem_sections.append(self.roster_section(findings))
            else:
                problem_sections.append(self.code_section(rule, findings))
        if stats.enrichment.ips_not_found:
            problem_sections.append(self.ips_section(stats.enrichment.ips_not_found))

        info_report = None
        if self.include_info:
            info_sections = [self.summary_section(stats)]
            dates = self.date_section(stats.enrichment.invalid_dates)
            if dates:
                info_sections.append(dates)
            info_report = "\n\n".join(info_sections)

        messages = self.messages(stats)
        return ReportBundle(
            error_report="\n\n".join(problem_sections) if problem_sections else None,
            info_report=info_report,
            error_message=". ".join(messages) + "." if messages else None,
        )

    @staticmethod
    def details(stats: ReportStats) -> Dict[str, object]:
        """History-record details for the run."""
        details: Dict[str, object] = {
            "insertados": stats.inserted,
            "actualizados": stats.updated,
            "complementados": stats.complemented,
            "duplicados_archivo": stats.duplicates,
            "filas_omitidas_sin_pk": stats.skipped,
            "errores_procesamiento": stats.processing_errors,
        }
        if stats.source.retire_orphans:
            details["huerfanos_marcados"] = stats.retired
        for rule, findings in stats.validation.rejected.items():
            details[f"{rule.label.lower()}_invalidos"] = len(findings)
        for rule, findings in stats.validation.advisories.items():
            key = "no_nominales" if rule.kind == "roster" else f"{rule.label.lower()}_no_encontrados"
            details[key] = len(findings)
        if stats.validation.unverified_rows:
            details["sin_verificar"] = stats.validation.unverified_rows
        details.update(stats.enrichment.as_details())
        return details
