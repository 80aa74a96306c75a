"""Command line entry point."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path

import requests

from ghfindings.assignments import AssignmentsError, load_repository_assignments
from ghfindings.collector import Collector
from ghfindings.excel_sheets import _format_duration
from ghfindings.ghclient import GitHubAPIError
from ghfindings.models import Config
from ghfindings.reports import VERSION, Reporter

log = logging.getLogger("ghfindings")


def build_parser() -> argparse.ArgumentParser:
    """The argument parser of the command."""
    parser = argparse.ArgumentParser(
        prog="github-findings-manager",
        description="Fetch and report on GitHub security findings",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--org", required=True, help="GitHub organization name (required)")
    parser.add_argument(
        "--env-type", default="Production",
        help="Environment type to filter repositories (use empty string '' for all repos)",
    )
    parser.add_argument("--repos", default="",
                        help="Comma-separated list of specific repositories to analyze")
    parser.add_argument("--pod", default="",
                        help="Comma-separated list of pods to filter repositories")
    parser.add_argument("--output", default="./reports", help="Output directory for reports")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--csv", action="store_true", help="Generate CSV fallback output")
    parser.add_argument("--no-cache", action="store_true", help="Disable caching")
    parser.add_argument("--include-closed", action="store_true",
                        help="Include closed/resolved findings in addition to open ones")
    parser.add_argument("--workers", type=int, default=25,
                        help="Number of parallel workers for processing repositories")
    parser.add_argument("--eager-loading", action="store_true",
                        help="Use eager loading optimizations to speed up processing")
    parser.add_argument("--skip-empty", action="store_true",
                        help="Skip repositories with no security features enabled")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be processed without making API calls")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging with detailed API information")
    parser.add_argument("--assignments-file", default="repo-assignments.json",
                        help="JSON file with manual repository assignments (pod/environment)")
    return parser


def split_list(value: str | None) -> list[str]:
    """Split a comma-separated option into trimmed items; empty input gives no items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",")]


def build_config(args: argparse.Namespace, token: str) -> Config:
    """The run configuration for parsed arguments and a token."""
    return Config(
        organization=args.org,
        env_type=args.env_type,
        output_dir=args.output,
        token=token,
        verbose=args.verbose,
        no_cache=args.no_cache,
        include_closed_findings=args.include_closed,
        parallel_workers=args.workers,
        use_eager_loading=args.eager_loading,
        skip_empty_repos=args.skip_empty,
        specific_repos=split_list(args.repos),
        pod_filter=split_list(args.pod),
    )


def _warn_no_findings(env_type: str) -> None:
    log.warning("No findings collected. This could be due to:")
    log.warning("   1. No repositories match the environment filter ('%s')", env_type)
    log.warning("   2. Repositories don't have security features enabled")
    log.warning("   3. GitHub token lacks required permissions (repo:security_events)")
    log.warning("   4. Organization doesn't have security features configured")
    log.warning("Try running with --debug for detailed information")
    log.warning("Or specify specific repos with --repos 'repo1,repo2'")
    log.warning("Or try a different --env-type (default is 'Production')")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command; returns the process exit status."""
    args = build_parser().parse_args(argv)

    if args.debug:
        level = logging.DEBUG
    elif args.verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(message)s", force=True)

    token = os.environ.get("GITHUB_TOKEN", "")
    if not token:
        print("GITHUB_TOKEN environment variable is required", file=sys.stderr)
        return 1

    config = build_config(args, token)

    assignments_path = Path(args.assignments_file)
    if assignments_path.exists():
        try:
            assignments = load_repository_assignments(assignments_path)
        except AssignmentsError as exc:
            log.warning("Failed to load repository assignments from %s: %s", assignments_path, exc)
        else:
            config.repo_assignments = assignments
            log.info("Loaded manual assignments for %d repositories from %s",
                     len(assignments), assignments_path)

    if config.env_type == "":
        log.info("Empty env-type specified - will include ALL repositories")

    log.info("Starting GitHub findings collection for organization: %s", config.organization)
    log.info("Environment type filter: %s", config.env_type)
    if config.specific_repos:
        log.info("Analyzing specific repositories: %s", config.specific_repos)
    if config.pod_filter:
        log.info("Pod filter: %s", config.pod_filter)

    try:
        Path(config.output_dir).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"failed to create output directory: {exc}", file=sys.stderr)
        return 1

    log.info("Collecting security findings...")
    started = time.monotonic()
    try:
        results = Collector(config).collect_findings()
    except (GitHubAPIError, requests.RequestException, OSError) as exc:
        print(f"failed to collect findings: {exc}", file=sys.stderr)
        return 1
    elapsed = timedelta(seconds=time.monotonic() - started)
    log.info("Collection completed in %s", _format_duration(elapsed))

    stats = results.stats
    log.info("Collection Results Summary:")
    log.info("- Repositories found: %d", len(results.repositories))
    log.info("- Total findings: %d", len(results.findings))
    log.info("- Code scanning findings: %d", stats.code_scanning_findings)
    log.info("- Secret scanning findings: %d", stats.secrets_findings)
    log.info("- Dependabot findings: %d", stats.dependabot_findings)
    log.info("- API calls made: %d", stats.api_calls_total)
    log.info("- Cache hits: %d", stats.cache_hits)
    log.info("- Skipped repositories: %d", stats.skipped_repos)
    log.info("- Errors encountered: %d", len(results.errors))
    log.info("Performance Information:")
    log.info("- Parallel workers: %d", config.parallel_workers)
    log.info("- Eager loading: %s", config.use_eager_loading)
    log.info("- Skip empty repos: %s", config.skip_empty_repos)
    log.info("- Run duration: %s", _format_duration(stats.duration))

    if args.debug:
        log.debug("Repository Details:")
        for name, repo in results.repositories.items():
            log.debug("- %s: env=%s, pod=%s, code_scan=%s, secrets=%s, dependabot=%s",
                      name, repo.environment_type, repo.pod, repo.code_scanning_enabled,
                      repo.secrets_enabled, repo.dependabot_enabled)
        if results.errors:
            log.debug("Errors encountered:")
            for error in results.errors:
                log.debug("- %s (%s): %s [%d]", error.repository, error.type,
                          error.message, error.status_code)

    if not results.findings:
        _warn_no_findings(config.env_type)

    log.info("Generating reports...")
    reporter = Reporter(config)
    generators = [
        ("Excel", reporter.generate_excel_report),
        ("Markdown", reporter.generate_markdown_report),
    ]
    if args.csv:
        generators.append(("CSV", reporter.generate_csv_report))
    for label, generate in generators:
        try:
            generate(results)
        except (OSError, ValueError) as exc:
            log.error("Failed to generate %s report: %s", label, exc)

    log.info("Reports generated successfully in %s", config.output_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())