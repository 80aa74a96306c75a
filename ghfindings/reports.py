"""CSV, Markdown and Excel report generation."""

from __future__ import annotations

import csv
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path

from ghfindings.excel import generate_excel_report
from ghfindings.excel_sheets import _format_duration
from ghfindings.models import ATTRIBUTED, CollectionResults, Config

log = logging.getLogger(__name__)

VERSION = "1.0.0"

CSV_HEADERS = (
    "Repository", "FindingType", "Severity", "State", "Title",
    "CreatedDate", "UpdatedDate", "Pod", "Attribution", "Quarter",
    "URL", "RuleID", "SecretType", "PackageName", "VulnerableVersionRange",
)

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

_STATUS_DESCRIPTIONS = {
    401: "Unauthorized - Invalid token or insufficient permissions",
    403: "Forbidden - Access denied to resource",
    404: "Not Found - Resource does not exist",
    422: "Unprocessable Entity - Invalid request parameters",
    429: "Too Many Requests - Rate limit exceeded",
    500: "Internal Server Error - GitHub API error",
}


def status_code_description(status_code: int) -> str:
    """A human-readable description of an HTTP status code."""
    return _STATUS_DESCRIPTIONS.get(status_code, "Unknown error")


def _stamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d_%H-%M-%S")


def _date_text(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"


def _human_time(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    period = "AM" if moment.hour < 12 else "PM"
    return (
        f"{_MONTHS[moment.month - 1]} {moment.day}, {moment.year} "
        f"at {hour}:{moment.minute:02d} {period}"
    )


def _percent(part: int, total: int) -> str:
    """``part / total * 100`` with one decimal; a zero total gives NaN or infinity."""
    if total == 0:
        if part == 0:
            return "NaN"
        return "+Inf" if part > 0 else "-Inf"
    return f"{part / total * 100:.1f}"


def _title_words(text: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in text.split(" "))


class Reporter:
    """Writes the reports of a collection run into the configured output directory."""

    def __init__(self, config: Config) -> None:
        self.config = config

    @property
    def _output_dir(self) -> Path:
        return Path(self.config.output_dir)

    def generate_csv_report(self, results: CollectionResults) -> Path:
        """Write every finding as a CSV row and return the file's path."""
        path = self._output_dir / (
            f"github_findings_{results.organization}_{_stamp(results.collected_at)}.csv"
        )
        with path.open("w", newline="", encoding="utf-8") as handle:
            writer = csv.writer(handle, lineterminator="\n")
            writer.writerow(CSV_HEADERS)
            for finding in results.findings:
                writer.writerow((
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
        log.info("CSV report saved to: %s", path)
        return path

    def generate_markdown_report(self, results: CollectionResults) -> Path:
        """Write the Markdown summary and return the file's path."""
        path = self._output_dir / (
            f"github_findings_summary_{results.organization}_{_stamp(results.collected_at)}.md"
        )
        path.write_text(self.markdown_content(results), encoding="utf-8")
        log.info("Markdown report saved to: %s", path)
        return path

    def generate_excel_report(self, results: CollectionResults) -> Path:
        """Write the Excel workbook and return the file's path."""
        return generate_excel_report(results, self._output_dir)

    def markdown_content(self, results: CollectionResults) -> str:
        """The text of the Markdown summary report."""
        stats = results.stats
        total_findings = len(results.findings)
        total_repos = len(results.repositories)
        duration = _format_duration(stats.duration)
        lines: list[str] = []
        add = lines.append

        add("# GitHub Security Findings Report\n\n")
        add(f"**Organization:** {results.organization}\n")
        add(f"**Generated:** {_human_time(results.collected_at)}\n")
        add(f"**Duration:** {duration}\n\n")

        add("## Executive Summary\n\n")
        add(
            "This report provides a comprehensive analysis of security findings across "
            f"{total_repos} repositories in the {results.organization} organization.\n\n"
        )

        add("### Key Metrics\n\n")
        add("| Metric | Count |\n")
        add("|--------|-------|\n")
        for label, value in (
            ("Total Findings", total_findings),
            ("Repositories Analyzed", total_repos),
            ("Code Scanning Findings", stats.code_scanning_findings),
            ("Secret Scanning Findings", stats.secrets_findings),
            ("Dependabot Findings", stats.dependabot_findings),
            ("Attributed Findings", stats.attributed_findings),
            ("Unattributed Findings", stats.unattributed_findings),
        ):
            add(f"| **{label}** | {value} |\n")
        add("\n")

        add("## Attribution Analysis\n\n")
        add(
            f"**Attribution Rate:** {_percent(stats.attributed_findings, total_findings)}% "
            "of findings are attributed to specific pods.\n\n"
        )

        by_pod = results.findings_by_pod()
        if len(by_pod) > 1:
            add("### Findings by Pod\n\n")
            add("| Pod | Findings Count | Percentage |\n")
            add("|-----|----------------|------------|\n")
            for pod, findings in by_pod.items():
                add(f"| {pod} | {len(findings)} | {_percent(len(findings), total_findings)}% |\n")
            add("\n")

        add("## Findings Over Time\n\n")
        by_quarter = results.findings_by_quarter()
        if by_quarter:
            add("### Quarterly Breakdown\n\n")
            add("| Quarter | Total | Attributed | Unattributed |\n")
            add("|---------|-------|------------|-------------|\n")
            for quarter in sorted(by_quarter):
                findings = by_quarter[quarter]
                attributed = sum(1 for f in findings if f.attribution == ATTRIBUTED)
                add(
                    f"| {quarter} | {len(findings)} | {attributed} | "
                    f"{len(findings) - attributed} |\n"
                )
            add("\n")

        add("## Findings by Type\n\n")
        add("| Finding Type | Count | Percentage |\n")
        add("|--------------|-------|------------|\n")
        for finding_type, findings in results.findings_by_type().items():
            name = _title_words(finding_type.replace("_", " "))
            add(f"| {name} | {len(findings)} | {_percent(len(findings), total_findings)}% |\n")
        add("\n")

        add("## Repository Coverage\n\n")
        repos = list(results.repositories.values())
        code_repos = sum(1 for r in repos if r.code_scanning_enabled)
        secret_repos = sum(1 for r in repos if r.secrets_enabled)
        dependabot_repos = sum(1 for r in repos if r.dependabot_enabled)
        add("| Security Feature | Enabled Repositories | Coverage |\n")
        add("|------------------|---------------------|----------|\n")
        for label, count in (
            ("Code Scanning", code_repos),
            ("Secret Scanning", secret_repos),
            ("Dependabot", dependabot_repos),
        ):
            add(f"| {label} | {count} | {_percent(count, total_repos)}% |\n")
        add("\n")

        if results.errors:
            add("## Errors and Access Issues\n\n")
            add(f"**Total Errors:** {len(results.errors)}\n\n")
            by_type = Counter(error.type for error in results.errors)
            by_status = Counter(
                error.status_code for error in results.errors if error.status_code > 0
            )
            if by_type:
                add("### Errors by Type\n\n")
                add("| Error Type | Count |\n")
                add("|------------|-------|\n")
                for error_type, count in by_type.items():
                    add(f"| {error_type} | {count} |\n")
                add("\n")
            if by_status:
                add("### Errors by Status Code\n\n")
                add("| Status Code | Count | Description |\n")
                add("|-------------|-------|-------------|\n")
                for status, count in by_status.items():
                    add(f"| {status} | {count} | {status_code_description(status)} |\n")
                add("\n")

        add("## Recommendations\n\n")
        add("Based on the analysis of security findings, consider the following actions:\n\n")
        if stats.unattributed_findings > 0:
            add(
                f"1. **Improve Attribution:** {stats.unattributed_findings} findings "
                f"({_percent(stats.unattributed_findings, total_findings)}%) are unattributed. "
                "Review pod assignments for repositories.\n"
            )
        if code_repos < total_repos:
            add(
                f"2. **Enable Code Scanning:** {total_repos - code_repos} repositories "
                "don't have code scanning enabled.\n"
            )
        if secret_repos < total_repos:
            add(
                f"3. **Enable Secret Scanning:** {total_repos - secret_repos} repositories "
                "don't have secret scanning enabled.\n"
            )
        if dependabot_repos < total_repos:
            add(
                f"4. **Enable Dependabot:** {total_repos - dependabot_repos} repositories "
                "don't have Dependabot enabled.\n"
            )
        add("\n")

        add("## Technical Details\n\n")
        add("- **Collection Method:** GitHub REST API v4\n")
        add(f"- **API Calls Made:** {stats.api_calls_total}\n")
        add(f"- **Cache Hits:** {stats.cache_hits}\n")
        add(f"- **Processing Time:** {duration}\n")
        add(f"- **Environment Filter:** {self.config.env_type}\n")
        if self.config.pod_filter:
            add(f"- **Pod Filter:** {', '.join(self.config.pod_filter)}\n")
        if self.config.specific_repos:
            add(f"- **Specific Repositories:** {', '.join(self.config.specific_repos)}\n")

        add("\n---\n")
        add(
            f"*Report generated by GitHub Findings Manager v{VERSION} on "
            f"{_human_time(datetime.now())}*\n"
        )
        return "".join(lines)