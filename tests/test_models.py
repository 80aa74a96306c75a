import json
from datetime import datetime, timedelta, timezone

from ghfindings.models import (
    CollectionError,
    CollectionResults,
    CollectionStats,
    Config,
    Finding,
    Repository,
    get_quarter,
)


def _finding(num, ftype="code_scanning", pod="", created=None, quarter=""):
    return Finding(
        id=num,
        repository="repo",
        type=ftype,
        pod=pod,
        created_at=created or datetime(2024, 5, 1, tzinfo=timezone.utc),
        quarter=quarter,
    )


def test_get_quarter_example_format():
    assert get_quarter(datetime(2024, 2, 10)) == "2024-Q1"


def test_get_quarter_month_boundaries_share_quarter():
    assert get_quarter(datetime(2023, 1, 1)) == get_quarter(datetime(2023, 3, 31))
    assert get_quarter(datetime(2023, 4, 1)) != get_quarter(datetime(2023, 3, 31))
    assert get_quarter(datetime(2023, 10, 1)) == get_quarter(datetime(2023, 12, 31))


def test_config_defaults_match_cli():
    config = Config(organization="org")
    assert config.env_type == "Production"
    assert config.output_dir == "./reports"
    assert config.parallel_workers == 25
    assert config.specific_repos == []


def test_attributed_and_unattributed_partition_findings():
    results = CollectionResults(
        organization="org",
        findings=[_finding(1, pod="platform"), _finding(2), _finding(3, pod="unattributed")],
    )
    attributed = results.attributed_findings()
    unattributed = results.unattributed_findings()
    assert [f.id for f in attributed] == [1]
    assert [f.id for f in unattributed] == [2, 3]
    assert len(attributed) + len(unattributed) == results.total_findings()


def test_findings_by_type_groups():
    results = CollectionResults(
        organization="org",
        findings=[_finding(1, "secrets"), _finding(2, "dependabot"), _finding(3, "secrets")],
    )
    grouped = results.findings_by_type()
    assert [f.id for f in grouped["secrets"]] == [1, 3]
    assert [f.id for f in grouped["dependabot"]] == [2]


def test_findings_by_pod_uses_unattributed_for_empty():
    results = CollectionResults(
        organization="org", findings=[_finding(1, pod="security"), _finding(2)]
    )
    grouped = results.findings_by_pod()
    assert set(grouped) == {"security", "unattributed"}
    assert grouped["unattributed"][0].id == 2


def test_findings_by_quarter_fills_missing_quarter():
    created = datetime(2022, 8, 15, tzinfo=timezone.utc)
    finding = _finding(1, created=created)
    kept = _finding(2, quarter="2021-Q4")
    results = CollectionResults(organization="org", findings=[finding, kept])
    grouped = results.findings_by_quarter()
    assert finding.quarter == get_quarter(created)
    assert grouped[get_quarter(created)] == [finding]
    assert grouped["2021-Q4"] == [kept]


def test_to_dict_is_json_serialisable_and_omits_empty_optionals():
    finding = _finding(7, "secrets", pod="p")
    finding.secret_type = "generic"
    repo = Repository(name="repo", full_name="org/repo")
    results = CollectionResults(
        organization="org",
        collected_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        repositories={"repo": repo},
        findings=[finding],
        errors=[CollectionError(repository="repo", type="secrets", message="boom", status_code=403)],
        stats=CollectionStats(total_findings=1, duration=timedelta(seconds=2)),
    )
    data = json.loads(json.dumps(results.to_dict()))
    assert data["organization"] == "org"
    assert data["findings"][0]["secret_type"] == "generic"
    assert "rule_id" not in data["findings"][0]
    assert "access_errors" not in data["repositories"]["repo"]
    assert data["errors"][0]["status_code"] == 403
    assert data["stats"]["duration"] == 2 * 10**9
    assert data["collected_at"].endswith("Z")