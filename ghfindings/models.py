"""Data types shared by the collector, the cache and the report writers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

ATTRIBUTED = "attributed"
UNATTRIBUTED = "unattributed"
NO_POD = "No Pod Selected"


def get_quarter(moment: datetime) -> str:
    """Return the calendar quarter of ``moment`` as e.g. ``"2024-Q1"``."""
    quarter = (moment.month - 1) // 3 + 1
    return f"{moment.year}-Q{quarter}"


@dataclass
class RepoAssignment:
    """A manual pod/environment assignment for one repository."""

    environment_type: str = ""
    pod: str = ""


@dataclass
class Config:
    """Application configuration."""

    organization: str = ""
    env_type: str = "Production"
    specific_repos: list[str] = field(default_factory=list)
    pod_filter: list[str] = field(default_factory=list)
    output_dir: str = "./reports"
    token: str = ""
    verbose: bool = False
    csv_output: bool = False
    no_cache: bool = False
    include_closed_findings: bool = False
    parallel_workers: int = 25
    use_eager_loading: bool = False
    skip_empty_repos: bool = False
    repo_assignments: dict[str, RepoAssignment] = field(default_factory=dict)


@dataclass
class Repository:
    """A GitHub repository and the properties gathered for it."""

    name: str
    full_name: str = ""
    pod: str = ""
    environment_type: str = ""
    code_scanning_enabled: bool = False
    secrets_enabled: bool = False
    dependabot_enabled: bool = False
    last_updated: datetime = ZERO_TIME
    is_archived: bool = False
    access_errors: list[str] = field(default_factory=list)


@dataclass
class Finding:
    """A single security finding (code scanning, secret or Dependabot alert)."""

    id: int
    repository: str
    type: str
    severity: str = ""
    state: str = ""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    title: str = ""
    description: str = ""
    pod: str = ""
    attribution: str = ""
    quarter: str = ""
    url: str = ""
    rule_id: str = ""
    secret_type: str = ""
    package_name: str = ""
    vulnerable_version_range: str = ""


@dataclass
class CollectionError:
    """An error met while collecting findings for a repository."""

    repository: str
    type: str
    message: str
    status_code: int = 0
    timestamp: datetime = ZERO_TIME


@dataclass
class CollectionStats:
    """Counters describing one collection run."""

    total_repos: int = 0
    processed_repos: int = 0
    skipped_repos: int = 0
    error_repos: int = 0
    total_findings: int = 0
    code_scanning_findings: int = 0
    secrets_findings: int = 0
    dependabot_findings: int = 0
    attributed_findings: int = 0
    unattributed_findings: int = 0
    api_calls_total: int = 0
    cache_hits: int = 0
    duration: timedelta = timedelta(0)


@dataclass
class CustomProperty:
    """A repository custom property as returned by the API."""

    property_name: str
    value: Any = None


@dataclass
class RateLimitInfo:
    """Rate limit information."""

    limit: int = 0
    remaining: int = 0
    reset_time: datetime = ZERO_TIME


def _time_str(moment: datetime) -> str:
    text = moment.isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def _duration_ns(duration: timedelta) -> int:
    return (duration // timedelta(microseconds=1)) * 1000


def _repository_dict(repo: Repository) -> dict[str, Any]:
    data: dict[str, Any] = {
        "name": repo.name,
        "full_name": repo.full_name,
        "pod": repo.pod,
        "environment_type": repo.environment_type,
        "code_scanning_enabled": repo.code_scanning_enabled,
        "secrets_enabled": repo.secrets_enabled,
        "dependabot_enabled": repo.dependabot_enabled,
        "last_updated": _time_str(repo.last_updated),
        "is_archived": repo.is_archived,
    }
    if repo.access_errors:
        data["access_errors"] = list(repo.access_errors)
    return data


_OPTIONAL_FINDING_FIELDS = ("rule_id", "secret_type", "package_name", "vulnerable_version_range")


def _finding_dict(finding: Finding) -> dict[str, Any]:
    data = asdict(finding)
    data["created_at"] = _time_str(finding.created_at)
    data["updated_at"] = _time_str(finding.updated_at)
    for name in _OPTIONAL_FINDING_FIELDS:
        if not data[name]:
            del data[name]
    return data


def _error_dict(error: CollectionError) -> dict[str, Any]:
    data = asdict(error)
    data["timestamp"] = _time_str(error.timestamp)
    return data


def _stats_dict(stats: CollectionStats) -> dict[str, Any]:
    data = asdict(stats)
    data["duration"] = _duration_ns(stats.duration)
    return data


@dataclass
class CollectionResults:
    """Everything gathered in one collection run."""

    organization: str
    collected_at: datetime = ZERO_TIME
    repositories: dict[str, Repository] = field(default_factory=dict)
    findings: list[Finding] = field(default_factory=list)
    errors: list[CollectionError] = field(default_factory=list)
    stats: CollectionStats = field(default_factory=CollectionStats)

    def total_findings(self) -> int:
        """Number of findings collected."""
        return len(self.findings)

    def attributed_findings(self) -> list[Finding]:
        """Findings that carry a pod."""
        return [f for f in self.findings if f.pod not in ("", UNATTRIBUTED)]

    def unattributed_findings(self) -> list[Finding]:
        """Findings without a pod."""
        return [f for f in self.findings if f.pod in ("", UNATTRIBUTED)]

    def findings_by_type(self) -> dict[str, list[Finding]]:
        """Findings grouped by their type."""
        grouped: dict[str, list[Finding]] = {}
        for finding in self.findings:
            grouped.setdefault(finding.type, []).append(finding)
        return grouped

    def findings_by_quarter(self) -> dict[str, list[Finding]]:
        """Findings grouped by quarter; fills in a missing quarter from the creation date."""
        grouped: dict[str, list[Finding]] = {}
        for finding in self.findings:
            if not finding.quarter:
                finding.quarter = get_quarter(finding.created_at)
            grouped.setdefault(finding.quarter, []).append(finding)
        return grouped

    def findings_by_pod(self) -> dict[str, list[Finding]]:
        """Findings grouped by pod; an empty pod counts as ``unattributed``."""
        grouped: dict[str, list[Finding]] = {}
        for finding in self.findings:
            grouped.setdefault(finding.pod or UNATTRIBUTED, []).append(finding)
        return grouped

    def to_dict(self) -> dict[str, Any]:
        """A JSON-ready representation of the results."""
        return {
            "organization": self.organization,
            "collected_at": _time_str(self.collected_at),
            "repositories": {name: _repository_dict(r) for name, r in self.repositories.items()},
            "findings": [_finding_dict(f) for f in self.findings],
            "errors": [_error_dict(e) for e in self.errors],
            "stats": _stats_dict(self.stats),
        }