import json

import pytest

from ghfindings.assignments import AssignmentsError, load_repository_assignments
from ghfindings.models import RepoAssignment


def write(tmp_path, content):
    path = tmp_path / "repo-assignments.json"
    path.write_text(content if isinstance(content, str) else json.dumps(content), encoding="utf-8")
    return path


def test_loads_assignments(tmp_path):
    path = write(
        tmp_path,
        {
            "comment": "manual overrides",
            "repositories": {
                "api": {"environment_type": "Production", "pod": "platform"},
                "web": {"pod": "frontend"},
            },
        },
    )
    result = load_repository_assignments(path)
    assert result == {
        "api": RepoAssignment(environment_type="Production", pod="platform"),
        "web": RepoAssignment(environment_type="", pod="frontend"),
    }


def test_accepts_str_path_and_ignores_unknown_fields(tmp_path):
    path = write(tmp_path, {"repositories": {"svc": {"pod": "core", "owner": "someone"}}})
    result = load_repository_assignments(str(path))
    assert result["svc"].pod == "core"
    assert list(result) == ["svc"]


def test_missing_repositories_gives_empty(tmp_path):
    path = write(tmp_path, {"comment": "nothing yet"})
    assert load_repository_assignments(path) == {}


def test_missing_file_raises(tmp_path):
    with pytest.raises(AssignmentsError, match="failed to read"):
        load_repository_assignments(tmp_path / "absent.json")


def test_invalid_json_raises(tmp_path):
    path = write(tmp_path, "{not json")
    with pytest.raises(AssignmentsError, match="failed to parse"):
        load_repository_assignments(path)


@pytest.mark.parametrize(
    "document",
    [
        {"repositories": ["api"]},
        {"repositories": {"api": "platform"}},
        {"repositories": {"api": {"pod": 5}}},
        ["repositories"],
    ],
)
def test_wrong_shapes_raise(tmp_path, document):
    path = write(tmp_path, document)
    with pytest.raises(AssignmentsError):
        load_repository_assignments(path)