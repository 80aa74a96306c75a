"""Timeline and dashboard sheets, and assembly of the full Excel report."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from ghfindings.excel_sheets import (
    TYPE_NAMES,
    TYPE_ORDER,
    ReportStyles,
    _heading,
    _write_row,
    build_findings_sheet,
    build_repository_sheet,
    build_summary_sheet,
    calculate_percentage,
    count_by_severity,
    is_high_critical,
    make_styles,
)
from ghfindings.models import NO_POD, CollectionResults, Finding
from ghfindings.xlsx import ChartSeries, LineChart, Workbook, Worksheet, column_letter

log = logging.getLogger(__name__)

TIMELINE_HEADERS = (
    "Quarter", "Total Findings",
    "Code Scan (Attributed)", "Code Scan (Unattributed)",
    "Secret Scan (Attributed)", "Secret Scan (Unattributed)",
    "Dependabot (Attributed)", "Dependabot (Unattributed)",
    "Total Attributed", "Total Unattributed",
    "Code Scan (High/Critical)",
    "Secret Scan (High/Critical)",
    "Dependabot (High/Critical)",
    "Total High/Critical",
)

CHART_SPACING = 20
TOP_PODS = 10


@dataclass
class _Breakdown:
    attributed: dict[str, int]
    unattributed: dict[str, int]
    high_critical: dict[str, int]
    total_attributed: int = 0
    total_unattributed: int = 0


def _breakdown(findings: Iterable[Finding]) -> _Breakdown:
    result = _Breakdown(
        attributed=dict.fromkeys(TYPE_ORDER, 0),
        unattributed=dict.fromkeys(TYPE_ORDER, 0),
        high_critical=dict.fromkeys(TYPE_ORDER, 0),
    )
    for finding in findings:
        attributed = finding.pod != NO_POD
        if finding.type in result.attributed:
            bucket = result.attributed if attributed else result.unattributed
            bucket[finding.type] += 1
            if is_high_critical(finding.severity):
                result.high_critical[finding.type] += 1
        if attributed:
            result.total_attributed += 1
        else:
            result.total_unattributed += 1
    return result


def build_timeline_sheet(
    workbook: Workbook, results: CollectionResults, styles: ReportStyles
) -> Worksheet:
    """The per-quarter attribution and high/critical breakdown, with trend charts."""
    sheet = workbook.add_sheet("Timeline")
    by_quarter = results.findings_by_quarter()
    quarters = sorted(by_quarter)

    _write_row(sheet, 1, TIMELINE_HEADERS)
    sheet.set_style("A1", f"{column_letter(len(TIMELINE_HEADERS))}1", styles.header)

    sheet.set_col_width("A", "A", 12)
    sheet.set_col_width("B", "B", 14)
    sheet.set_col_width("C", "H", 16)
    sheet.set_col_width("I", "J", 14)
    sheet.set_col_width("K", "N", 18)

    for row, quarter in enumerate(quarters, start=2):
        findings = by_quarter[quarter]
        counts = _breakdown(findings)
        per_type = [
            value
            for kind in TYPE_ORDER
            for value in (counts.attributed[kind], counts.unattributed[kind])
        ]
        high = [counts.high_critical[kind] for kind in TYPE_ORDER]
        _write_row(sheet, row, (
            quarter,
            len(findings),
            *per_type,
            counts.total_attributed,
            counts.total_unattributed,
            *high,
            sum(high),
        ))

    if len(quarters) > 1:
        add_timeline_charts(sheet, len(quarters))

    summary_row = len(quarters) + 4
    _heading(sheet, summary_row, "Attribution Summary", styles.header)
    build_attribution_summary(sheet, summary_row + 2, results, styles)
    return sheet


def _line_chart(sheet_name: str, last_row: int, title: str,
                columns: Iterable[tuple[str, str, str | None]]) -> LineChart:
    categories = f"{sheet_name}!$A$2:$A${last_row}"
    return LineChart(
        title=title,
        series=[
            ChartSeries(
                name=name,
                categories=categories,
                values=f"{sheet_name}!${col}$2:${col}${last_row}",
                color=color,
            )
            for name, col, color in columns
        ],
        legend_position="bottom",
        width=640,
        height=320,
        show_series_name=True,
    )


def add_timeline_charts(sheet: Worksheet, data_rows: int) -> None:
    """Add the three trend charts for ``data_rows`` quarters; failures are only logged."""
    last_row = data_rows + 1
    charts = (
        ("attribution trend", _line_chart(sheet.name, last_row, "Attribution Trend Over Time", (
            ("Attributed Findings", "I", None),
            ("Unattributed Findings", "J", None),
        ))),
        ("high/critical findings trend", _line_chart(
            sheet.name, last_row, "High/Critical Findings Trend by Type", (
                ("Code Scanning (High/Critical)", "K", "4472C4"),
                ("Secret Scanning (High/Critical)", "L", "ED7D31"),
                ("Dependabot (High/Critical)", "M", "A5A5A5"),
            ))),
        ("total high/critical findings trend", _line_chart(
            sheet.name, last_row, "Total High/Critical Findings Trend", (
                ("Total High/Critical Findings", "N", "FF0000"),
            ))),
    )
    chart_row = data_rows + 6
    for label, chart in charts:
        try:
            sheet.add_chart(f"L{chart_row}", chart)
        except ValueError as exc:
            log.warning("Could not create %s chart: %s", label, exc)
        chart_row += CHART_SPACING


def build_attribution_summary(
    sheet: Worksheet, start_row: int, results: CollectionResults, styles: ReportStyles
) -> None:
    """Write the attribution-by-type table starting at ``start_row``."""
    counts = _breakdown(results.findings)
    _write_row(sheet, start_row, ("Finding Type", "Attributed", "Unattributed", "Total", "Attribution %"))
    for row, kind in enumerate(TYPE_ORDER, start=start_row + 1):
        attributed = counts.attributed[kind]
        unattributed = counts.unattributed[kind]
        total = attributed + unattributed
        _write_row(sheet, row, (
            TYPE_NAMES[kind],
            attributed,
            unattributed,
            total,
            calculate_percentage(attributed, total),
        ))
    sheet.set_style(f"A{start_row}", f"E{start_row}", styles.header)


def build_dashboard_sheet(
    workbook: Workbook, results: CollectionResults, styles: ReportStyles
) -> Worksheet:
    """Key metrics, quarterly high/critical trend, top pods and type distribution."""
    sheet = workbook.add_sheet("Dashboard")
    _heading(sheet, 1, "Security Findings Dashboard", styles.header)

    row = 3
    _heading(sheet, row, "Key Metrics", styles.header)
    row += 2

    findings = results.findings
    metrics = (
        ("Total Findings", len(findings)),
        ("High/Critical Severity",
         count_by_severity(findings, "high") + count_by_severity(findings, "critical")),
        ("Medium Severity", count_by_severity(findings, "medium")),
        ("Low Severity", count_by_severity(findings, "low")),
    )
    for index, (label, value) in enumerate(metrics):
        col = column_letter(1 + index * 3)
        sheet.set_cell(f"{col}{row}", label)
        sheet.set_cell(f"{col}{row + 1}", value)
        sheet.set_style(f"{col}{row}", f"{col}{row + 1}", styles.header)
    row += 4

    _heading(sheet, row, "High/Critical Findings Quarterly Trend", styles.header)
    row += 2
    _write_row(sheet, row, ("Quarter", "High/Critical Count", "Change from Previous", "% Change"))
    sheet.set_style(f"A{row}", f"D{row}", styles.header)
    row += 1

    by_quarter = results.findings_by_quarter()
    previous: int | None = None
    for quarter in sorted(by_quarter):
        count = sum(1 for f in by_quarter[quarter] if is_high_critical(f.severity))
        sheet.set_cell(f"A{row}", quarter)
        sheet.set_cell(f"B{row}", count)
        if previous is not None:
            change = count - previous
            percent = f"{change / previous * 100:.1f}%" if previous > 0 else "N/A"
            sheet.set_cell(f"C{row}", f"{change:+d}")
            sheet.set_cell(f"D{row}", percent)
        previous = count
        row += 1
    row += 2

    _heading(sheet, row, "Teams with Most High/Critical Findings", styles.header)
    row += 2
    _write_row(sheet, row, ("Team/Pod", "High/Critical Count", "Code Scanning", "Secret Scanning", "Dependabot"))
    sheet.set_style(f"A{row}", f"E{row}", styles.header)
    row += 1

    pods: dict[str, dict[str, int]] = {}
    type_counts = dict.fromkeys(TYPE_ORDER, 0)
    total_high = 0
    for finding in findings:
        if not is_high_critical(finding.severity):
            continue
        total_high += 1
        stats = pods.setdefault(finding.pod or NO_POD, dict.fromkeys(("total", *TYPE_ORDER), 0))
        stats["total"] += 1
        if finding.type in type_counts:
            stats[finding.type] += 1
            type_counts[finding.type] += 1

    ranked = sorted(pods.items(), key=lambda item: item[1]["total"], reverse=True)
    for pod, stats in ranked[:TOP_PODS]:
        _write_row(sheet, row, (pod, stats["total"], *(stats[kind] for kind in TYPE_ORDER)))
        row += 1
    row += 2

    _heading(sheet, row, "High/Critical Finding Type Distribution", styles.header)
    row += 2
    _write_row(sheet, row, ("Finding Type", "Count", "% of High/Critical"))
    sheet.set_style(f"A{row}", f"C{row}", styles.header)
    row += 1
    for kind in TYPE_ORDER:
        count = type_counts[kind]
        percentage = count / total_high * 100 if total_high else 0.0
        _write_row(sheet, row, (TYPE_NAMES[kind], count, f"{percentage:.1f}%"))
        row += 1

    sheet.set_col_width("A", "A", 20)
    sheet.set_col_width("B", "E", 15)
    return sheet


def generate_excel_report(results: CollectionResults, output_dir: str | Path) -> Path:
    """Write the multi-sheet Excel report into ``output_dir`` and return its path."""
    stamp = results.collected_at.strftime("%Y-%m-%d_%H-%M-%S")
    path = Path(output_dir) / f"github_findings_{results.organization}_{stamp}.xlsx"

    workbook = Workbook()
    styles = make_styles()
    build_findings_sheet(workbook, results, styles)
    build_summary_sheet(workbook, results, styles)
    build_repository_sheet(workbook, results, styles)
    build_timeline_sheet(workbook, results, styles)
    build_dashboard_sheet(workbook, results, styles)
    workbook.save(path)

    log.info("Excel report saved to: %s", path)
    return path