"""Repository discovery, filtering and parallel collection of security findings."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any

from ghfindings.cache import Cache, open_cache
from ghfindings.findings import SecurityScanner
from ghfindings.ghclient import GitHubAPIError, GitHubClient, RateLimiter
from ghfindings.models import (
    ATTRIBUTED,
    NO_POD,
    UNATTRIBUTED,
    CollectionError,
    CollectionResults,
    CollectionStats,
    Config,
    CustomProperty,
    Finding,
    Repository,
    get_quarter,
)

log = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 25
DEFAULT_BURST = 10
REQUESTS_PER_SECOND = 5000 / 3600
CACHE_DIR = "./cache"

_ENV_PROPERTIES = frozenset({"EnvironmentType", "environment_type", "environmentType", "environment"})
_POD_PROPERTIES = frozenset({"pod", "Pod", "POD", "team"})

_UNAUTHORIZED = "unauthorized: invalid GitHub token or insufficient permissions"

_DEFAULT: Any = object()


def _value_text(value: Any) -> str:
    """Render a property value the way a plain %v formatting would."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_value_text(item) for item in value) + "]"
    if isinstance(value, Mapping):
        inner = " ".join(f"{key}:{_value_text(item)}" for key, item in value.items())
        return f"map[{inner}]"
    return str(value)


def attribute_findings(findings: Iterable[Finding], repo: Repository) -> None:
    """Assign pod, attribution and quarter to the findings of ``repo``."""
    attributed = bool(repo.pod) and repo.pod != NO_POD
    for finding in findings:
        if attributed:
            finding.pod = repo.pod
            finding.attribution = ATTRIBUTED
        else:
            finding.pod = NO_POD
            finding.attribution = UNATTRIBUTED
        finding.quarter = get_quarter(finding.created_at)


class Collector:
    """Finds the repositories of an organization and gathers their security findings."""

    def __init__(
        self,
        config: Config,
        client: GitHubClient | None = None,
        cache: Cache | None = _DEFAULT,
        limiter: RateLimiter | None = None,
    ) -> None:
        self.config = config
        self.client = client if client is not None else GitHubClient(config.token)
        if cache is _DEFAULT:
            cache = None if config.no_cache else open_cache(CACHE_DIR)
        self.cache = cache
        self.limiter = (
            limiter if limiter is not None else RateLimiter(REQUESTS_PER_SECOND, DEFAULT_BURST)
        )
        self.stats = CollectionStats()
        self._lock = threading.Lock()
        self.scanner = SecurityScanner(
            self.client,
            self.limiter,
            config.organization,
            stats=self.stats,
            cache=self.cache,
            include_closed=config.include_closed_findings,
            verbose=config.verbose,
        )

    def _count(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self.stats, name, getattr(self.stats, name) + amount)

    def collect_findings(self) -> CollectionResults:
        """Run a full collection and return its results."""
        started = time.monotonic()
        results = CollectionResults(
            organization=self.config.organization,
            collected_at=datetime.now().astimezone(),
        )

        log.info("Fetching repositories...")
        repos = self.get_repositories()
        log.info("Found %d repositories to process", len(repos))
        self.stats.total_repos = len(repos)

        findings, errors = self._process_parallel(repos)
        results.repositories = {repo.name: repo for repo in repos}
        results.findings = findings
        results.errors = errors

        self.stats.duration = timedelta(seconds=time.monotonic() - started)
        self.stats.total_findings = len(findings)
        self.stats.processed_repos = len(repos) - self.stats.error_repos
        for finding in findings:
            if finding.attribution == ATTRIBUTED:
                self.stats.attributed_findings += 1
            else:
                self.stats.unattributed_findings += 1

        results.stats = dataclasses.replace(self.stats)
        return results

    def get_repositories(self) -> list[Repository]:
        """Return the repositories to analyse, as configured."""
        if self.config.specific_repos:
            repos: list[Repository] = []
            for name in self.config.specific_repos:
                try:
                    repos.append(self._get_repository(name))
                except GitHubAPIError as exc:
                    log.warning("Failed to get repository %s: %s", name, exc)
            return repos
        return self.filter_repositories(self._get_all_repositories())

    def _new_repository(self, data: Mapping[str, Any]) -> Repository:
        repo = Repository(
            name=str(data.get("name") or ""),
            full_name=str(data.get("full_name") or ""),
            last_updated=datetime.now().astimezone(),
            is_archived=bool(data.get("archived")),
        )
        try:
            self._fetch_custom_properties(repo)
        except GitHubAPIError as exc:
            log.debug("Failed to get custom properties for %s: %s", repo.name, exc)
        return repo

    def _get_all_repositories(self) -> list[Repository]:
        repos: list[Repository] = []
        params: dict[str, Any] = {"type": "all", "per_page": 100}
        page_count = 0
        while True:
            page_count += 1
            self.limiter.wait()
            try:
                response = self.client.get(f"orgs/{self.config.organization}/repos", params)
            except GitHubAPIError as exc:
                if exc.status_code == 401:
                    raise GitHubAPIError(_UNAUTHORIZED, 401, exc.headers) from exc
                raise GitHubAPIError(
                    f"failed to list repositories: {exc}", exc.status_code, exc.headers
                ) from exc
            self._count("api_calls_total")

            page = response.data if isinstance(response.data, list) else []
            if self.config.verbose:
                log.info(
                    "Repository listing: page %d, %d repos, next page: %d",
                    page_count,
                    len(page),
                    response.next_page,
                )
            for data in page:
                if not isinstance(data, Mapping):
                    continue
                if data.get("archived"):
                    log.debug("Skipping archived repository: %s", data.get("name"))
                    continue
                repos.append(self._new_repository(data))

            if not response.next_page:
                return repos
            params["page"] = response.next_page

    def _get_repository(self, name: str) -> Repository:
        self.limiter.wait()
        try:
            response = self.client.get(f"repos/{self.config.organization}/{name}")
        except GitHubAPIError as exc:
            if exc.status_code == 401:
                raise GitHubAPIError(_UNAUTHORIZED, 401, exc.headers) from exc
            raise GitHubAPIError(
                f"failed to get repository: {exc}", exc.status_code, exc.headers
            ) from exc
        self._count("api_calls_total")
        data = response.data if isinstance(response.data, Mapping) else {}
        return self._new_repository(data)

    def _fetch_custom_properties(self, repo: Repository) -> None:
        self.limiter.wait()
        path = f"repos/{self.config.organization}/{repo.name}/properties/values"
        try:
            response = self.client.get(path)
        except GitHubAPIError as exc:
            self._count("api_calls_total")
            if exc.status_code in (403, 404):
                log.debug(
                    "Custom properties not accessible for %s (status: %d)",
                    repo.name,
                    exc.status_code,
                )
                repo.access_errors.append(
                    f"{exc.status_code}: Custom properties not accessible"
                )
                return
            raise
        self._count("api_calls_total")

        raw = response.data if isinstance(response.data, list) else []
        properties = [
            CustomProperty(str(item.get("property_name") or ""), item.get("value"))
            for item in raw
            if isinstance(item, Mapping)
        ]
        self.apply_custom_properties(repo, properties)

    def apply_custom_properties(
        self, repo: Repository, properties: Iterable[CustomProperty]
    ) -> None:
        """Take environment type and pod from custom properties, else from assignments."""
        for prop in properties:
            value = _value_text(prop.value)
            if prop.property_name in _ENV_PROPERTIES:
                repo.environment_type = value
            elif prop.property_name in _POD_PROPERTIES:
                repo.pod = value
        if not repo.environment_type and not repo.pod:
            log.debug("No custom properties found for %s, checking manual assignments", repo.name)
            self.check_manual_assignments(repo)

    def check_manual_assignments(self, repo: Repository) -> None:
        """Apply a manual assignment for ``repo`` if one is configured."""
        assignment = (self.config.repo_assignments or {}).get(repo.name)
        if assignment is None:
            return
        if assignment.environment_type:
            repo.environment_type = assignment.environment_type
        if assignment.pod:
            repo.pod = assignment.pod

    def _included(self, repo: Repository) -> bool:
        if repo.is_archived:
            return False
        if repo.environment_type:
            if repo.environment_type != self.config.env_type:
                return False
        elif self.config.env_type != "Production":
            return False
        if self.config.pod_filter:
            return bool(repo.pod) and repo.pod in self.config.pod_filter
        return True

    def filter_repositories(self, repos: Iterable[Repository]) -> list[Repository]:
        """Keep the repositories matching the environment type and pod filters."""
        repos = list(repos)
        filtered = [repo for repo in repos if self._included(repo)]
        log.info(
            "Filtered %d repositories from %d total (env-type: %s)",
            len(filtered),
            len(repos),
            self.config.env_type,
        )
        if not filtered and repos:
            log.warning("No repositories match filter criteria. Consider:")
            log.warning("- Using --env-type '' to include all repositories")
            log.warning("- Checking if custom properties are set on repositories")
            log.warning("- Using --repos to specify repositories directly")
        return filtered

    def _process_parallel(
        self, repos: list[Repository]
    ) -> tuple[list[Finding], list[CollectionError]]:
        findings: list[Finding] = []
        errors: list[CollectionError] = []
        if not repos:
            return findings, errors
        workers = self.config.parallel_workers
        if workers <= 0:
            workers = DEFAULT_MAX_WORKERS
        workers = min(workers, len(repos))
        log.info("Using %d parallel workers to process %d repositories", workers, len(repos))

        with ThreadPoolExecutor(max_workers=workers) as pool:
            for repo_findings, repo_errors in pool.map(self.process_repository, repos):
                findings.extend(repo_findings)
                errors.extend(repo_errors)
                if repo_errors:
                    self._count("error_repos")
        return findings, errors

    def process_repository(
        self, repo: Repository
    ) -> tuple[list[Finding], list[CollectionError]]:
        """Check the features of ``repo`` and collect all of its findings."""
        log.debug("Processing repository: %s", repo.name)
        findings: list[Finding] = []
        errors: list[CollectionError] = []

        self.scanner.check_security_features(repo, eager=self.config.use_eager_loading)

        if self.config.skip_empty_repos and not (
            repo.code_scanning_enabled or repo.secrets_enabled or repo.dependabot_enabled
        ):
            log.debug("Skipping repository %s - no security features enabled", repo.name)
            self._count("skipped_repos")
            return findings, errors

        collectors = (
            (repo.code_scanning_enabled, self.scanner.code_scanning_findings),
            (repo.secrets_enabled, self.scanner.secret_scanning_findings),
            (repo.dependabot_enabled, self.scanner.dependabot_findings),
        )
        for enabled, collect in collectors:
            if enabled:
                found, failed = collect(repo)
                findings.extend(found)
                errors.extend(failed)

        attribute_findings(findings, repo)
        return findings, errors