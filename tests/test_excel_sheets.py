from datetime import datetime, timedelta, timezone

import pytest

from ghfindings.excel_sheets import (
    FINDINGS_HEADERS,
    REPOSITORY_HEADERS,
    bool_to_yes_no,
    build_findings_sheet,
    build_repository_sheet,
    build_summary_sheet,
    calculate_percentage,
    count_by_severity,
    is_high_critical,
    make_styles,
)
from ghfindings.models import (
    CollectionResults,
    CollectionStats,
    Finding,
    Repository,
)
from ghfindings.xlsx import Workbook


def _finding(number, kind, severity, pod, repo="alpha"):
    return Finding(
        id=number,
        repository=repo,
        type=kind,
        severity=severity,
        state="open",
        created_at=datetime(2024, 2, 10, tzinfo=timezone.utc),
        updated_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        title=f"finding {number}",
        pod=pod,
        attribution="attributed" if pod != "No Pod Selected" else "unattributed",
        quarter="2024-Q1",
    )


@pytest.fixture
def results():
    findings = [
        _finding(1, "code_scanning", "high", "platform"),
        _finding(2, "secrets", "high", "No Pod Selected", repo="beta"),
        _finding(3, "dependabot", "low", "platform"),
        _finding(4, "dependabot", "critical", "security"),
    ]
    repos = {
        "alpha": Repository(name="alpha", pod="platform", code_scanning_enabled=True,
                            access_errors=["403: Custom properties not accessible", "other"]),
        "beta": Repository(name="beta"),
    }
    return CollectionResults(
        organization="acme",
        collected_at=datetime(2024, 4, 1, 12, 30, 5, tzinfo=timezone.utc),
        repositories=repos,
        findings=findings,
        stats=CollectionStats(duration=timedelta(seconds=90)),
    )


def _row_values(sheet, row, width):
    return [sheet.cells.get((row, col)) for col in range(1, width + 1)]


def _row_of(sheet, label):
    return next(row for (row, col), value in sheet.cells.items() if col == 1 and value == label)


def test_calculate_percentage():
    assert calculate_percentage(0, 0) == "0%"
    assert calculate_percentage(1, 2) == "50.0%"
    assert calculate_percentage(1, 3) == "33.3%"


def test_bool_to_yes_no():
    assert bool_to_yes_no(True) == "Yes"
    assert bool_to_yes_no(False) == "No"


def test_count_by_severity_partitions(results):
    severities = {f.severity for f in results.findings}
    total = sum(count_by_severity(results.findings, s) for s in severities)
    assert total == len(results.findings)
    assert count_by_severity(results.findings, "High") == 0


@pytest.mark.parametrize("severity,expected", [
    ("high", True), ("Critical", True), ("HIGH", False), ("medium", False),
])
def test_is_high_critical(severity, expected):
    assert is_high_critical(severity) is expected


def test_findings_sheet(results):
    book = Workbook()
    sheet = build_findings_sheet(book, results, make_styles())
    assert _row_values(sheet, 1, len(FINDINGS_HEADERS)) == list(FINDINGS_HEADERS)
    first = _row_values(sheet, 2, len(FINDINGS_HEADERS))
    assert first[0] == "alpha"
    assert first[1] == "code_scanning"
    assert first[5] == "2024-02-10"
    assert first[7] == "platform"
    assert sheet.tables[0].ref == f"A1:O{len(results.findings) + 1}"
    assert sheet.tables[0].name == "FindingsTable"
    assert sheet.styles[(1, 1)] == make_styles().header


def test_findings_sheet_without_findings_has_no_table():
    sheet = build_findings_sheet(Workbook(), CollectionResults(organization="acme"), make_styles())
    assert sheet.tables == []
    assert sheet["A2"] is None


def test_summary_statistics(results):
    sheet = build_summary_sheet(Workbook(), results, make_styles())
    assert sheet["B3"] == "acme"
    assert sheet["B4"] == "2024-04-01 12:30:05"
    assert sheet.cells[(_row_of(sheet, "Total Findings:"), 2)] == len(results.findings)
    assert sheet.cells[(_row_of(sheet, "Total Repositories:"), 2)] == len(results.repositories)
    assert sheet.cells[(_row_of(sheet, "Collection Duration:"), 2)] == "1m30s"


def test_summary_pods_sorted_and_totals_consistent(results):
    sheet = build_summary_sheet(Workbook(), results, make_styles())
    start = _row_of(sheet, "Findings by Pod") + 2
    rows = []
    row = start
    while (row, 1) in sheet.cells:
        rows.append(_row_values(sheet, row, 5))
        row += 1
    names = [r[0] for r in rows]
    assert names == sorted(names)
    assert set(names) == {f.pod for f in results.findings}
    assert all(r[1] + r[2] + r[3] == r[4] for r in rows)
    assert sum(r[4] for r in rows) == len(results.findings)


def test_summary_high_critical_skips_empty_pods(results):
    sheet = build_summary_sheet(Workbook(), results, make_styles())
    start = _row_of(sheet, "High/Critical Severity Findings by Pod") + 2
    names = []
    row = start
    while (row, 1) in sheet.cells:
        names.append(sheet.cells[(row, 1)])
        assert sheet.cells[(row, 5)] > 0
        row += 1
    expected = {f.pod for f in results.findings if is_high_critical(f.severity)}
    assert set(names) == expected


def test_summary_type_attribution(results):
    sheet = build_summary_sheet(Workbook(), results, make_styles())
    secret_row = _row_of(sheet, "Secret Scanning")
    assert _row_values(sheet, secret_row, 5) == ["Secret Scanning", 1, 0, 1, "0%" if False else calculate_percentage(0, 1)]
    dep_row = _row_of(sheet, "Dependabot")
    values = _row_values(sheet, dep_row, 5)
    assert values[1] == values[2] + values[3]


def test_repository_sheet(results):
    sheet = build_repository_sheet(Workbook(), results, make_styles())
    assert _row_values(sheet, 1, len(REPOSITORY_HEADERS)) == list(REPOSITORY_HEADERS)
    assert _row_values(sheet, 2, 7) == [
        "alpha", "platform", "", "Yes", "No", "No", "403: Custom properties not accessible",
    ]
    assert sheet["A3"] == "beta"
    assert sheet["G3"] == ""


def test_sheets_added_in_order(results):
    book = Workbook()
    styles = make_styles()
    build_findings_sheet(book, results, styles)
    build_summary_sheet(book, results, styles)
    build_repository_sheet(book, results, styles)
    assert list(book.sheets) == ["Findings", "Summary", "Repositories"]
    with pytest.raises(ValueError):
        build_summary_sheet(book, results, styles)