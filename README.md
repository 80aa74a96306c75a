# ghfindings

A command-line tool that gathers the security findings of a GitHub
organization — code scanning alerts, secret scanning alerts and Dependabot
alerts — and writes them out as reports:

- an Excel workbook (`.xlsx`) with Findings, Summary, Repositories,
  Timeline and Dashboard sheets; the Timeline sheet carries three line
  charts of the quarterly trends when there is more than one quarter;
- a Markdown summary with key metrics, attribution analysis, a quarterly
  breakdown, repository coverage, an error breakdown and recommendations;
- optionally a flat CSV file, one row per finding.

The workbook is written by the package's own small `.xlsx` writer
(`ghfindings.xlsx`); the only third-party dependency is `requests`.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Usage

The tool reads a GitHub token from the `GITHUB_TOKEN` environment variable
and exits with status 1 if it is not set. The token needs access to the
security alerts of the repositories you analyse.

```
export GITHUB_TOKEN=token
github-findings-manager --org myorg
```

Common variations:

```
# Only some repositories
github-findings-manager --org myorg --repos 'repo1,repo2'

# Only repositories that belong to certain pods
github-findings-manager --org myorg --pod 'platform,security'

# Repositories of another environment type
github-findings-manager --org myorg --env-type Staging

# Also write a CSV file, into a custom directory
github-findings-manager --org myorg --csv --output /path/to/reports
```

### Options

| Option | Default | Meaning |
|--------|---------|---------|
| `--org` | (required) | GitHub organization name |
| `--env-type` | `Production` | Environment type to filter repositories |
| `--repos` | | Comma-separated list of repositories to analyse |
| `--pod` | | Comma-separated list of pods to filter repositories |
| `--output` | `./reports` | Directory the reports are written to (created if missing) |
| `--verbose` | off | Informational logging and per-page progress lines |
| `--debug` | off | Debug logging, including per-repository details and errors |
| `--csv` | off | Also write a CSV report |
| `--no-cache` | off | Do not use the local cache in `./cache` |
| `--include-closed` | off | Include closed and resolved findings |
| `--workers` | `25` | Number of repositories processed in parallel (0 or less means 25) |
| `--eager-loading` | off | Check a repository's three security features concurrently |
| `--skip-empty` | off | Skip repositories with no security features enabled |
| `--dry-run` | off | Accepted, but has no effect |
| `--assignments-file` | `repo-assignments.json` | Manual pod/environment assignments |
| `--version` | | Print the version and exit |

### Repository selection

With `--repos`, exactly the named repositories are fetched and analysed; the
environment and pod filters are not applied, and a repository that cannot be
fetched is skipped with a warning.

Without `--repos`, every repository of the organization is listed, archived
ones are dropped, and the rest are filtered:

- a repository with an environment type is kept only if it equals
  `--env-type`;
- a repository without an environment type is kept only when `--env-type` is
  the default `Production`;
- with `--pod`, a repository is kept only if it has a pod that is in the list.

The environment type and pod come from the repository's custom properties
(`EnvironmentType`, `environment_type`, `environmentType` or `environment`;
`pod`, `Pod`, `POD` or `team`).

### Manual assignments

The assignments file is read only if it exists; a file that cannot be parsed
is reported as a warning and ignored. An assignment is applied when the
custom properties of a repository could be read but set neither an
environment type nor a pod:

```json
{
  "comment": "Assignments for repositories without custom properties",
  "repositories": {
    "billing-service": {"environment_type": "Production", "pod": "payments"},
    "internal-tools": {"pod": "platform"}
  }
}
```

When the custom properties endpoint answers 403 or 404, this is recorded as
an access error of the repository (shown on the Repositories sheet) and the
assignments file is not consulted for it.

### Attribution

A finding is *attributed* when its repository has a pod; otherwise its pod is
recorded as `No Pod Selected` and it is *unattributed*. Every finding also
carries the quarter it was created in, such as `2024-Q1`. Secret scanning
findings are always given the severity `high`.

### Output files

Reports are named after the organization and the local collection time:

- `github_findings_<org>_<YYYY-MM-DD_HH-MM-SS>.xlsx`
- `github_findings_summary_<org>_<YYYY-MM-DD_HH-MM-SS>.md`
- `github_findings_<org>_<YYYY-MM-DD_HH-MM-SS>.csv` (with `--csv`)

A report that fails to be written is logged as an error; the others are still
written.

Requests are paced by a token bucket at GitHub's limit of 5000 per hour with
a burst of 10. Unless `--no-cache` is given, the result of the code scanning
availability check is kept for 24 hours in an SQLite database,
`./cache/cache.db`.

## Using it as a library

- `ghfindings.collector.Collector(config)` runs a collection with
  `collect_findings()` and returns a `ghfindings.models.CollectionResults`.
- `ghfindings.reports.Reporter(config)` writes the reports with
  `generate_excel_report`, `generate_markdown_report` and
  `generate_csv_report`; `markdown_content` returns the Markdown text.
- `ghfindings.cache.Cache` is the SQLite cache (`get`, `set`, `get_etag`,
  `delete`, `clean_expired`, and `cache_findings` / `load_cached_findings`
  for JSON snapshots of results).
- `ghfindings.xlsx.Workbook` writes simple `.xlsx` files with styled cells,
  tables and line charts.

## What it does not do

- `--dry-run` is accepted on the command line but does nothing; a run always
  calls the API.
- The command does not save JSON snapshots of its results or reload earlier
  ones; `Cache.cache_findings` and `Cache.load_cached_findings` are available
  only to code that calls them.
- Only the code scanning availability check is cached; alert listings are
  always fetched afresh.