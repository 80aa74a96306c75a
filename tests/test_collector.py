from datetime import datetime, timezone

import pytest
import responses

from ghfindings.collector import Collector, attribute_findings
from ghfindings.ghclient import GitHubAPIError, GitHubClient, RateLimiter
from ghfindings.models import Config, CustomProperty, Finding, RepoAssignment, Repository

API = "https://api.github.com"
ORG = "example-org"


def _config(**kwargs):
    return Config(organization=ORG, token="token", **kwargs)


def _collector(config):
    return Collector(
        config,
        client=GitHubClient("token"),
        cache=None,
        limiter=RateLimiter(100000.0, 1000),
    )


def _alert(number):
    return {
        "number": number,
        "state": "open",
        "created_at": "2024-02-10T12:00:00Z",
        "updated_at": "2024-02-11T12:00:00Z",
        "html_url": f"https://example.com/alerts/{number}",
        "rule": {"id": "py/sql-injection", "severity": "high", "description": "SQL injection"},
    }


def _register_repo(rsps, name, properties, code=200, secret=404, dependabot=404):
    base = f"{API}/repos/{ORG}/{name}"
    if isinstance(properties, int):
        rsps.add(responses.GET, f"{base}/properties/values", json={"message": "x"}, status=properties)
    else:
        rsps.add(responses.GET, f"{base}/properties/values", json=properties)
    code_body = [_alert(1)] if code == 200 else {"message": "x"}
    rsps.add(responses.GET, f"{base}/code-scanning/alerts", json=code_body, status=code)
    secret_body = [] if secret == 200 else {"message": "x"}
    rsps.add(responses.GET, f"{base}/secret-scanning/alerts", json=secret_body, status=secret)
    dep_body = [] if dependabot == 200 else {"message": "x"}
    rsps.add(responses.GET, f"{base}/dependabot/alerts", json=dep_body, status=dependabot)


def test_attribute_findings_with_pod():
    finding = Finding(id=1, repository="api", type="code_scanning",
                      created_at=datetime(2024, 2, 10, tzinfo=timezone.utc))
    attribute_findings([finding], Repository(name="api", pod="platform"))
    assert finding.pod == "platform"
    assert finding.attribution == "attributed"
    assert finding.quarter == "2024-Q1"


@pytest.mark.parametrize("pod", ["", "No Pod Selected"])
def test_attribute_findings_without_pod(pod):
    finding = Finding(id=1, repository="api", type="secrets")
    attribute_findings([finding], Repository(name="api", pod=pod))
    assert finding.pod == "No Pod Selected"
    assert finding.attribution == "unattributed"


def test_filter_repositories_default_environment():
    collector = _collector(_config())
    repos = [
        Repository(name="prod", environment_type="Production"),
        Repository(name="stage", environment_type="Staging"),
        Repository(name="unknown"),
        Repository(name="old", environment_type="Production", is_archived=True),
    ]
    kept = [r.name for r in collector.filter_repositories(repos)]
    assert kept == ["prod", "unknown"]


def test_filter_repositories_non_default_environment_drops_unlabelled():
    collector = _collector(_config(env_type="Staging"))
    repos = [Repository(name="stage", environment_type="Staging"), Repository(name="unknown")]
    assert [r.name for r in collector.filter_repositories(repos)] == ["stage"]


def test_filter_repositories_pod_filter():
    collector = _collector(_config(pod_filter=["platform", "security"]))
    repos = [
        Repository(name="a", environment_type="Production", pod="platform"),
        Repository(name="b", environment_type="Production", pod="growth"),
        Repository(name="c", environment_type="Production"),
        Repository(name="d", environment_type="Production", pod="security"),
    ]
    assert [r.name for r in collector.filter_repositories(repos)] == ["a", "d"]


def test_apply_custom_properties_name_variants_and_lists():
    collector = _collector(_config())
    repo = Repository(name="api")
    collector.apply_custom_properties(repo, [
        CustomProperty("environment", "Production"),
        CustomProperty("team", ["platform", "security"]),
        CustomProperty("other", "ignored"),
    ])
    assert repo.environment_type == "Production"
    assert repo.pod == "[platform security]"


def test_apply_custom_properties_falls_back_to_assignments():
    config = _config(repo_assignments={"api": RepoAssignment("Staging", "platform")})
    collector = _collector(config)
    repo = Repository(name="api")
    collector.apply_custom_properties(repo, [CustomProperty("pod", None)])
    assert (repo.environment_type, repo.pod) == ("Staging", "platform")


def test_check_manual_assignments_keeps_fields_left_empty():
    config = _config(repo_assignments={"api": RepoAssignment(pod="platform")})
    collector = _collector(config)
    repo = Repository(name="api", environment_type="Production")
    collector.check_manual_assignments(repo)
    assert (repo.environment_type, repo.pod) == ("Production", "platform")
    other = Repository(name="web")
    collector.check_manual_assignments(other)
    assert (other.environment_type, other.pod) == ("", "")


def test_no_cache_config_opens_no_cache():
    collector = Collector(_config(no_cache=True), client=GitHubClient("token"))
    assert collector.cache is None


def test_collect_findings_full_run():
    collector = _collector(_config())
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, f"{API}/orgs/{ORG}/repos", json=[
            {"name": "api", "full_name": f"{ORG}/api", "archived": False},
            {"name": "old", "full_name": f"{ORG}/old", "archived": True},
        ])
        _register_repo(rsps, "api", [
            {"property_name": "EnvironmentType", "value": "Production"},
            {"property_name": "pod", "value": "platform"},
        ])
        results = collector.collect_findings()
        calls = len(rsps.calls)

    assert list(results.repositories) == ["api"]
    repo = results.repositories["api"]
    assert repo.code_scanning_enabled and not repo.secrets_enabled and not repo.dependabot_enabled
    assert len(results.findings) == 1
    finding = results.findings[0]
    assert finding.pod == "platform"
    assert finding.attribution == "attributed"
    assert finding.rule_id == "py/sql-injection"
    assert results.errors == []
    assert results.stats.api_calls_total == calls
    assert results.stats.total_findings == len(results.findings)
    assert results.stats.attributed_findings == 1
    assert results.stats.processed_repos == results.stats.total_repos == 1


def test_collect_findings_unauthorized():
    collector = _collector(_config())
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{API}/orgs/{ORG}/repos", json={"message": "Bad"}, status=401)
        with pytest.raises(GitHubAPIError) as info:
            collector.collect_findings()
    assert info.value.status_code == 401
    assert "unauthorized" in str(info.value)


def test_specific_repos_skip_failures():
    collector = _collector(_config(specific_repos=["missing", "api"]))
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, f"{API}/repos/{ORG}/missing", json={"message": "x"}, status=404)
        rsps.add(responses.GET, f"{API}/repos/{ORG}/api",
                 json={"name": "api", "full_name": f"{ORG}/api"})
        rsps.add(responses.GET, f"{API}/repos/{ORG}/api/properties/values", json=[])
        repos = collector.get_repositories()
    assert [r.name for r in repos] == ["api"]
    assert repos[0].full_name == f"{ORG}/api"


def test_custom_properties_forbidden_records_access_error():
    collector = _collector(_config(specific_repos=["api"]))
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, f"{API}/repos/{ORG}/api", json={"name": "api"})
        rsps.add(responses.GET, f"{API}/repos/{ORG}/api/properties/values",
                 json={"message": "x"}, status=403)
        repos = collector.get_repositories()
    assert repos[0].access_errors == ["403: Custom properties not accessible"]


def test_skip_empty_repositories():
    collector = _collector(_config(specific_repos=["api"], skip_empty_repos=True))
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, f"{API}/repos/{ORG}/api", json={"name": "api"})
        _register_repo(rsps, "api", [], code=404)
        results = collector.collect_findings()
    assert results.findings == []
    assert results.stats.skipped_repos == 1


def test_listing_failure_counts_error_repository():
    collector = _collector(_config(specific_repos=["api"], use_eager_loading=True))
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        rsps.add(responses.GET, f"{API}/repos/{ORG}/api", json={"name": "api"})
        _register_repo(rsps, "api", [], code=500)
        results = collector.collect_findings()
    assert len(results.errors) == 1
    assert results.errors[0].type == "code_scanning"
    assert results.errors[0].status_code == 500
    assert results.stats.error_repos == 1
    assert results.stats.processed_repos == results.stats.total_repos - 1