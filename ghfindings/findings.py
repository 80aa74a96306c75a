"""Security feature detection and alert collection for single repositories."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any

from ghfindings.cache import Cache, CacheUnavailableError, generate_key
from ghfindings.ghclient import GitHubAPIError, GitHubClient, RateLimiter
from ghfindings.models import (
    ZERO_TIME,
    CollectionError,
    CollectionStats,
    Finding,
    Repository,
)

log = logging.getLogger(__name__)

CODE_SCANNING = "code_scanning"
SECRETS = "secrets"
DEPENDABOT = "dependabot"

CACHE_TTL = timedelta(hours=24)
PAGE_SIZE = 100

_CODE_SCANNING_PATH = "code-scanning/alerts"
_SECRET_SCANNING_PATH = "secret-scanning/alerts"
_DEPENDABOT_PATH = "dependabot/alerts"


def _parse_timestamp(value: Any) -> datetime:
    if not value:
        return ZERO_TIME
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return ZERO_TIME
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _nested(mapping: Any, *keys: str) -> Any:
    current = mapping
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _number(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def code_scanning_finding(alert: Mapping[str, Any], repo_name: str) -> Finding:
    """Build a finding from a code scanning alert."""
    return Finding(
        id=_number(alert.get("number")),
        repository=repo_name,
        type=CODE_SCANNING,
        severity=_text(_nested(alert, "rule", "severity")),
        state=_text(alert.get("state")),
        created_at=_parse_timestamp(alert.get("created_at")),
        updated_at=_parse_timestamp(alert.get("updated_at")),
        title=_text(_nested(alert, "rule", "description")),
        description=_text(_nested(alert, "rule", "full_description")),
        url=_text(alert.get("html_url")),
        rule_id=_text(_nested(alert, "rule", "id")),
    )


def secret_scanning_finding(alert: Mapping[str, Any], repo_name: str) -> Finding:
    """Build a finding from a secret scanning alert; secrets count as high severity."""
    secret_type = _text(alert.get("secret_type"))
    return Finding(
        id=_number(alert.get("number")),
        repository=repo_name,
        type=SECRETS,
        severity="high",
        state=_text(alert.get("state")),
        created_at=_parse_timestamp(alert.get("created_at")),
        updated_at=_parse_timestamp(alert.get("updated_at")),
        title=f"Secret detected: {secret_type}",
        url=_text(alert.get("html_url")),
        secret_type=secret_type,
    )


def dependabot_finding(alert: Mapping[str, Any], repo_name: str) -> Finding:
    """Build a finding from a Dependabot alert."""
    return Finding(
        id=_number(alert.get("number")),
        repository=repo_name,
        type=DEPENDABOT,
        severity=_text(_nested(alert, "security_vulnerability", "severity")),
        state=_text(alert.get("state")),
        created_at=_parse_timestamp(alert.get("created_at")),
        updated_at=_parse_timestamp(alert.get("updated_at")),
        title=_text(_nested(alert, "security_advisory", "summary")),
        description=_text(_nested(alert, "security_advisory", "description")),
        url=_text(alert.get("html_url")),
        package_name=_text(_nested(alert, "dependency", "package", "name")),
        vulnerable_version_range=_text(
            _nested(alert, "security_vulnerability", "vulnerable_version_range")
        ),
    )


class SecurityScanner:
    """Checks which security features a repository has and fetches their alerts."""

    def __init__(
        self,
        client: GitHubClient,
        limiter: RateLimiter,
        organization: str,
        stats: CollectionStats | None = None,
        cache: Cache | None = None,
        include_closed: bool = False,
        verbose: bool = False,
    ) -> None:
        self.client = client
        self.limiter = limiter
        self.organization = organization
        self.stats = stats if stats is not None else CollectionStats()
        self.cache = cache
        self.include_closed = include_closed
        self.verbose = verbose
        self._lock = threading.Lock()

    def _path(self, repo_name: str, endpoint: str) -> str:
        return f"repos/{self.organization}/{repo_name}/{endpoint}"

    def _add_stat(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self.stats, name, getattr(self.stats, name) + amount)

    def check_security_features(self, repo: Repository, eager: bool = False) -> None:
        """Record on ``repo`` which security features are enabled."""
        if eager:
            with ThreadPoolExecutor(max_workers=3) as pool:
                code = pool.submit(self.is_code_scanning_enabled, repo.name)
                secrets = pool.submit(self.is_secret_scanning_enabled, repo.name)
                dependabot = pool.submit(self.is_dependabot_enabled, repo.name)
                repo.code_scanning_enabled = code.result()
                repo.secrets_enabled = secrets.result()
                repo.dependabot_enabled = dependabot.result()
        else:
            repo.code_scanning_enabled = self.is_code_scanning_enabled(repo.name)
            repo.secrets_enabled = self.is_secret_scanning_enabled(repo.name)
            repo.dependabot_enabled = self.is_dependabot_enabled(repo.name)

    def _probe(
        self, repo_name: str, endpoint: str, params: Mapping[str, Any]
    ) -> tuple[bool, Mapping[str, str]]:
        self.limiter.wait()
        try:
            response = self.client.get(self._path(repo_name, endpoint), {**params, "per_page": 1})
        except GitHubAPIError as exc:
            self._add_stat("api_calls_total")
            enabled = exc.status_code is not None and exc.status_code != 404
            return enabled, exc.headers
        self._add_stat("api_calls_total")
        return True, response.headers

    def is_code_scanning_enabled(self, repo_name: str) -> bool:
        """Whether code scanning answers for the repository; cached for a day."""
        key = generate_key("code_scanning_enabled", self.organization, repo_name)
        if self.cache is not None:
            entry = self.cache.get(key)
            if entry is not None:
                self._add_stat("cache_hits")
                return bool(entry.data) and entry.data[0] == 1

        enabled, headers = self._probe(repo_name, _CODE_SCANNING_PATH, {"state": "open"})

        if self.cache is not None:
            etag = headers.get("ETag", "") or ""
            try:
                self.cache.set(key, etag, b"\x01" if enabled else b"\x00", CACHE_TTL)
            except (CacheUnavailableError, sqlite3.Error) as exc:
                log.debug("Failed to cache code scanning state for %s: %s", repo_name, exc)
        return enabled

    def is_secret_scanning_enabled(self, repo_name: str) -> bool:
        """Whether secret scanning answers for the repository."""
        enabled, _ = self._probe(repo_name, _SECRET_SCANNING_PATH, {"state": "open"})
        return enabled

    def is_dependabot_enabled(self, repo_name: str) -> bool:
        """Whether Dependabot alerts answer for the repository."""
        enabled, _ = self._probe(repo_name, _DEPENDABOT_PATH, {"state": "open"})
        return enabled

    def _collect(
        self,
        repo: Repository,
        kind: str,
        endpoint: str,
        params: Mapping[str, Any],
        build: Callable[[Mapping[str, Any], str], Finding],
        label: str,
        what: str,
    ) -> tuple[list[Finding], list[CollectionError]]:
        findings: list[Finding] = []
        errors: list[CollectionError] = []
        page_params: dict[str, Any] = {**params, "per_page": PAGE_SIZE}
        page_count = 0
        while True:
            page_count += 1
            self.limiter.wait()
            try:
                response = self.client.get(self._path(repo.name, endpoint), page_params)
            except GitHubAPIError as exc:
                status = exc.status_code or 0
                errors.append(
                    CollectionError(
                        repository=repo.name,
                        type=kind,
                        message=f"Failed to fetch {what}: {exc}",
                        status_code=status,
                        timestamp=datetime.now(timezone.utc),
                    )
                )
                if status not in (401, 403):
                    self._add_stat("api_calls_total")
                break

            self._add_stat("api_calls_total")
            alerts = response.data if isinstance(response.data, list) else []
            findings.extend(build(alert, repo.name) for alert in alerts)

            if self.verbose:
                print(
                    f"{label} {repo.name}: page {page_count}, {len(alerts)} alerts, "
                    f"next page: {response.next_page}"
                )
            if not response.next_page:
                break
            page_params["page"] = response.next_page
        return findings, errors

    def code_scanning_findings(
        self, repo: Repository
    ) -> tuple[list[Finding], list[CollectionError]]:
        """Fetch all code scanning alerts of ``repo``."""
        state = "all" if self.include_closed else "open"
        findings, errors = self._collect(
            repo,
            CODE_SCANNING,
            _CODE_SCANNING_PATH,
            {"state": state},
            code_scanning_finding,
            "Code scanning",
            "code scanning alerts",
        )
        self._add_stat("code_scanning_findings", len(findings))
        return findings, errors

    def secret_scanning_findings(
        self, repo: Repository
    ) -> tuple[list[Finding], list[CollectionError]]:
        """Fetch all secret scanning alerts of ``repo``."""
        state = "all" if self.include_closed else "open"
        findings, errors = self._collect(
            repo,
            SECRETS,
            _SECRET_SCANNING_PATH,
            {"state": state},
            secret_scanning_finding,
            "Secret scanning",
            "secret scanning alerts",
        )
        self._add_stat("secrets_findings", len(findings))
        return findings, errors

    def dependabot_findings(
        self, repo: Repository
    ) -> tuple[list[Finding], list[CollectionError]]:
        """Fetch all Dependabot alerts of ``repo``; closed ones too when configured."""
        params: dict[str, Any] = {} if self.include_closed else {"state": "open"}
        findings, errors = self._collect(
            repo,
            DEPENDABOT,
            _DEPENDABOT_PATH,
            params,
            dependabot_finding,
            "Dependabot",
            "Dependabot alerts",
        )
        self._add_stat("dependabot_findings", len(findings))
        return findings, errors