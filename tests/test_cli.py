import pytest

from ghfindings.cli import build_config, build_parser, main, split_list


def test_split_list_trims_items():
    assert split_list(" a, b ,c") == ["a", "b", "c"]


def test_split_list_empty():
    assert split_list("") == []
    assert split_list(None) == []


def test_split_list_keeps_empty_items():
    assert split_list("a,,b") == ["a", "", "b"]


def test_parser_defaults():
    args = build_parser().parse_args(["--org", "acme"])
    assert args.org == "acme"
    assert args.env_type == "Production"
    assert args.output == "./reports"
    assert args.workers == 25
    assert args.assignments_file == "repo-assignments.json"
    assert args.csv is False


def test_parser_requires_org():
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args([])
    assert excinfo.value.code == 2


def test_parser_empty_env_type():
    args = build_parser().parse_args(["--org", "acme", "--env-type", ""])
    assert args.env_type == ""


def test_build_config_maps_options():
    args = build_parser().parse_args([
        "--org", "acme", "--repos", "one, two", "--pod", "platform",
        "--workers", "4", "--include-closed", "--skip-empty", "--no-cache",
        "--output", "out",
    ])
    config = build_config(args, "token")
    assert config.organization == "acme"
    assert config.token == "token"
    assert config.specific_repos == ["one", "two"]
    assert config.pod_filter == ["platform"]
    assert config.parallel_workers == 4
    assert config.include_closed_findings is True
    assert config.skip_empty_repos is True
    assert config.no_cache is True
    assert config.use_eager_loading is False
    assert config.output_dir == "out"


def test_main_requires_token(monkeypatch, capsys):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    assert main(["--org", "acme"]) == 1
    assert "GITHUB_TOKEN environment variable is required" in capsys.readouterr().err


def test_main_fails_when_output_is_a_file(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("GITHUB_TOKEN", "token")
    blocker = tmp_path / "reports"
    blocker.write_text("not a directory")
    code = main([
        "--org", "acme",
        "--output", str(blocker),
        "--assignments-file", str(tmp_path / "missing.json"),
    ])
    assert code == 1
    assert "failed to create output directory" in capsys.readouterr().err