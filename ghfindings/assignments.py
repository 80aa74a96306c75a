"""Loading of manual repository pod/environment assignments."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ghfindings.models import RepoAssignment


class AssignmentsError(Exception):
    """Raised when an assignments file cannot be read or parsed."""


def _text_field(entry: dict[str, Any], name: str, repo: str) -> str:
    value = entry.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise AssignmentsError(
            f"failed to parse assignments file: {name} of {repo!r} must be a string"
        )
    return value


def load_repository_assignments(path: str | Path) -> dict[str, RepoAssignment]:
    """Read the ``repositories`` mapping of an assignments JSON file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise AssignmentsError(f"failed to read assignments file: {exc}") from exc
    try:
        document = json.loads(text)
    except ValueError as exc:
        raise AssignmentsError(f"failed to parse assignments file: {exc}") from exc

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise AssignmentsError("failed to parse assignments file: top level must be an object")

    repositories = document.get("repositories")
    if repositories is None:
        return {}
    if not isinstance(repositories, dict):
        raise AssignmentsError(
            "failed to parse assignments file: repositories must be an object"
        )

    assignments: dict[str, RepoAssignment] = {}
    for name, entry in repositories.items():
        if entry is None:
            assignments[name] = RepoAssignment()
            continue
        if not isinstance(entry, dict):
            raise AssignmentsError(
                f"failed to parse assignments file: entry for {name!r} must be an object"
            )
        assignments[name] = RepoAssignment(
            environment_type=_text_field(entry, "environment_type", name),
            pod=_text_field(entry, "pod", name),
        )
    return assignments