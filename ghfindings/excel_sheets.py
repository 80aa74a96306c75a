"""Findings, summary and repository sheets of the Excel report."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ghfindings.models import NO_POD, CollectionResults, Finding
from ghfindings.xlsx import CellStyle, Workbook, Worksheet, column_letter

FINDINGS_HEADERS = (
    "Repository", "Finding Type", "Severity", "State", "Title",
    "Created Date", "Updated Date", "Pod", "Attribution", "Quarter",
    "URL", "Rule ID", "Secret Type", "Package Name", "Vulnerable Version Range",
)

REPOSITORY_HEADERS = (
    "Repository", "Pod", "Environment Type", "Code Scanning",
    "Secret Scanning", "Dependabot", "Access Errors",
)

TYPE_ORDER = ("code_scanning", "secrets", "dependabot")
TYPE_NAMES = {
    "code_scanning": "Code Scanning",
    "secrets": "Secret Scanning",
    "dependabot": "Dependabot",
}

TITLE_STYLE = CellStyle(bold=True, size=16)
COLUMN_WIDTH = 15

_HIGH_CRITICAL = frozenset({"high", "critical", "High", "Critical"})


@dataclass(frozen=True)
class ReportStyles:
    """The cell styles shared by the report sheets."""

    header: CellStyle
    sub_header: CellStyle
    high_critical: CellStyle


def make_styles() -> ReportStyles:
    """The header, sub-header and high/critical styles of the report."""
    return ReportStyles(
        header=CellStyle(bold=True, font_color="FFFFFF", fill_color="366092"),
        sub_header=CellStyle(bold=True, fill_color="E7E6E6"),
        high_critical=CellStyle(bold=True, fill_color="FFE0E0"),
    )


def calculate_percentage(part: int, total: int) -> str:
    """``part`` as a percentage of ``total`` with one decimal; ``"0%"`` for no total."""
    if total == 0:
        return "0%"
    return f"{part / total * 100:.1f}%"


def bool_to_yes_no(value: bool) -> str:
    """``"Yes"`` for a true value, ``"No"`` otherwise."""
    if value:
        return "Yes"
    return "No"


def count_by_severity(findings: Iterable[Finding], severity: str) -> int:
    """Number of findings whose severity is exactly ``severity``."""
    return sum(1 for finding in findings if finding.severity == severity)


def is_high_critical(severity: str) -> bool:
    """Whether ``severity`` counts as high or critical."""
    return severity in _HIGH_CRITICAL


def _date_text(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"


def _datetime_text(moment: datetime) -> str:
    return f"{_date_text(moment)} {moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"


def _fraction(value: int, unit: int) -> str:
    whole, rest = divmod(value, unit)
    if not rest:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{rest:0{digits}d}".rstrip("0")


def _format_duration(duration: timedelta) -> str:
    """Render a duration as e.g. ``1h2m3.5s`` or ``250ms``."""
    ns = (duration // timedelta(microseconds=1)) * 1000
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns == 0:
        return "0s"
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fraction(ns, 1_000)}µs"
    if ns < 1_000_000_000:
        return f"{sign}{_fraction(ns, 1_000_000)}ms"
    seconds, rest = divmod(ns, 1_000_000_000)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    text = _fraction(seconds * 1_000_000_000 + rest, 1_000_000_000) + "s"
    if hours or minutes:
        text = f"{minutes}m{text}"
    if hours:
        text = f"{hours}h{text}"
    return sign + text


def _write_row(sheet: Worksheet, row: int, values: Sequence[Any], first_col: int = 1) -> None:
    for col, value in enumerate(values, start=first_col):
        sheet.set_cell(f"{column_letter(col)}{row}", value)


def _heading(sheet: Worksheet, row: int, text: str, style: CellStyle) -> None:
    sheet.set_cell(f"A{row}", text)
    sheet.set_style(f"A{row}", f"A{row}", style)


def _type_counts(findings: Iterable[Finding]) -> dict[str, int]:
    counts = dict.fromkeys(TYPE_ORDER, 0)
    for finding in findings:
        if finding.type in counts:
            counts[finding.type] += 1
    return counts


def build_findings_sheet(
    workbook: Workbook, results: CollectionResults, styles: ReportStyles
) -> Worksheet:
    """The sheet listing every finding, one per row, formatted as a table."""
    sheet = workbook.add_sheet("Findings")
    _write_row(sheet, 1, FINDINGS_HEADERS)
    last = column_letter(len(FINDINGS_HEADERS))
    sheet.set_style("A1", f"{last}1", styles.header)

    for row, finding in enumerate(results.findings, start=2):
        _write_row(sheet, row, (
            finding.repository,
            finding.type,
            finding.severity,
            finding.state,
            finding.title,
            _date_text(finding.created_at),
            _date_text(finding.updated_at),
            finding.pod,
            finding.attribution,
            finding.quarter,
            finding.url,
            finding.rule_id,
            finding.secret_type,
            finding.package_name,
            finding.vulnerable_version_range,
        ))

    sheet.set_col_width("A", last, COLUMN_WIDTH)
    if results.findings:
        sheet.add_table(f"A1:{last}{len(results.findings) + 1}", "FindingsTable", "TableStyleMedium9")
    return sheet


def build_summary_sheet(
    workbook: Workbook, results: CollectionResults, styles: ReportStyles
) -> Worksheet:
    """The sheet of overall statistics and per-pod and per-type breakdowns."""
    sheet = workbook.add_sheet("Summary")
    sheet.set_cell("A1", "GitHub Security Findings Summary")
    sheet.set_style("A1", "A1", TITLE_STYLE)

    row = 3
    _write_row(sheet, row, ("Organization:", results.organization))
    row += 1
    _write_row(sheet, row, ("Collection Date:", _datetime_text(results.collected_at)))
    row += 2

    _heading(sheet, row, "Overall Statistics", styles.header)
    row += 1
    stats = results.stats
    for label, value in (
        ("Total Repositories:", len(results.repositories)),
        ("Total Findings:", len(results.findings)),
        ("Code Scanning Findings:", stats.code_scanning_findings),
        ("Secret Scanning Findings:", stats.secrets_findings),
        ("Dependabot Findings:", stats.dependabot_findings),
        ("Attributed Findings:", stats.attributed_findings),
        ("Unattributed Findings:", stats.unattributed_findings),
        ("API Calls Made:", stats.api_calls_total),
        ("Collection Duration:", _format_duration(stats.duration)),
    ):
        _write_row(sheet, row, (label, value))
        row += 1
    row += 2

    _heading(sheet, row, "Findings by Pod", styles.header)
    row += 1
    _write_row(sheet, row, ("Pod", "Code Scanning", "Secret Scanning", "Dependabot", "Total"))
    sheet.set_style(f"A{row}", f"E{row}", styles.sub_header)
    row += 1

    by_pod = results.findings_by_pod()
    pods = sorted(by_pod)
    for pod in pods:
        counts = _type_counts(by_pod[pod])
        _write_row(sheet, row, (pod, *counts.values(), sum(counts.values())))
        row += 1
    row += 2

    _heading(sheet, row, "High/Critical Severity Findings by Pod", styles.header)
    row += 1
    _write_row(sheet, row, (
        "Pod",
        "Code Scanning (High/Critical)",
        "Secret Scanning (High/Critical)",
        "Dependabot (High/Critical)",
        "Total High/Critical",
    ))
    sheet.set_style(f"A{row}", f"E{row}", styles.sub_header)
    row += 1
    for pod in pods:
        counts = _type_counts(f for f in by_pod[pod] if is_high_critical(f.severity))
        total = sum(counts.values())
        if total > 0:
            _write_row(sheet, row, (pod, *counts.values(), total))
            row += 1
    row += 2

    _heading(sheet, row, "Findings by Type", styles.header)
    row += 1
    _write_row(sheet, row, ("Finding Type", "Total", "Attributed", "Unattributed", "Attribution %"))
    sheet.set_style(f"A{row}", f"E{row}", styles.sub_header)
    row += 1

    by_type = results.findings_by_type()
    for finding_type in TYPE_ORDER:
        findings = by_type.get(finding_type)
        if findings is None:
            continue
        attributed = sum(1 for f in findings if f.pod != NO_POD)
        total = len(findings)
        _write_row(sheet, row, (
            TYPE_NAMES[finding_type],
            total,
            attributed,
            total - attributed,
            calculate_percentage(attributed, total),
        ))
        row += 1
    return sheet


def build_repository_sheet(
    workbook: Workbook, results: CollectionResults, styles: ReportStyles
) -> Worksheet:
    """The sheet listing each repository and its enabled security features."""
    sheet = workbook.add_sheet("Repositories")
    _write_row(sheet, 1, REPOSITORY_HEADERS)
    last = column_letter(len(REPOSITORY_HEADERS))
    sheet.set_style("A1", f"{last}1", styles.header)

    for row, repo in enumerate(results.repositories.values(), start=2):
        _write_row(sheet, row, (
            repo.name,
            repo.pod,
            repo.environment_type,
            bool_to_yes_no(repo.code_scanning_enabled),
            bool_to_yes_no(repo.secrets_enabled),
            bool_to_yes_no(repo.dependabot_enabled),
            repo.access_errors[0] if repo.access_errors else "",
        ))

    sheet.set_col_width("A", last, COLUMN_WIDTH)
    return sheet