"""Tests for conductor/cli/ — Click-based CLI commands."""

from __future__ import annotations

import json
import textwrap

import pytest
from click.testing import CliRunner

from conductor.cli.app import cli
from conductor.cli.formatters import build_table, get_console, truncate


PROFILES_TOML = textwrap.dedent(
    """
    [profiles.coder]
    name = "Coder"
    model = "anthropic/claude-sonnet"
    purpose = "Writes code"

    [[workflows]]
    id = "aaa-custom"
    name = "Custom"
    steps = [{ id = "s", title = "Only", worker_id = "coder", prompt = "{task}" }]
    """
)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    path = tmp_path / "conductor.toml"
    path.write_text(PROFILES_TOML)
    monkeypatch.setenv("CONDUCTOR_CONFIG", str(path))
    monkeypatch.delenv("CONDUCTOR_WORKFLOWS_ENABLED", raising=False)
    monkeypatch.delenv("CONDUCTOR_WORKFLOW_BUILTINS", raising=False)
    return path


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class TestFormatters:
    def test_truncate(self) -> None:
        assert truncate("short") == "short"
        assert truncate("a  b\nc") == "a b c"
        assert truncate("x" * 100, 10) == "xxxxxxx..."

    def test_build_table(self) -> None:
        table = build_table("T", ["A", "B"], [[1, 2]])
        assert table.row_count == 1

    def test_console_no_color(self) -> None:
        assert get_console(no_color=True).no_color is True


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestProfilesCommand:
    def test_table(self, runner, config_path) -> None:
        result = runner.invoke(cli, ["--no-color", "profiles"])
        assert result.exit_code == 0, result.output
        assert "coder" in result.output
        assert "Worker Profiles" in result.output

    def test_json(self, runner, config_path) -> None:
        result = runner.invoke(cli, ["--json", "profiles"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data[0]["id"] == "coder"

    def test_no_config(self, runner, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("CONDUCTOR_CONFIG", str(tmp_path / "missing.toml"))
        result = runner.invoke(cli, ["profiles"])
        assert result.exit_code == 0
        assert "No worker profiles configured." in result.output

    def test_invalid_config(self, runner, tmp_path, monkeypatch) -> None:
        path = tmp_path / "bad.toml"
        path.write_text('[profiles.x]\nname = "X"\n')
        monkeypatch.setenv("CONDUCTOR_CONFIG", str(path))
        result = runner.invoke(cli, ["profiles"])
        assert result.exit_code != 0
        assert "Invalid profile" in result.output


class TestWorkflowsCommand:
    def test_list_json_sorted(self, runner, config_path) -> None:
        result = runner.invoke(cli, ["--json", "workflows", "list"])
        assert result.exit_code == 0, result.output
        ids = [wf["id"] for wf in json.loads(result.output)]
        assert ids == sorted(ids)
        assert "aaa-custom" in ids
        assert "bug-triage" in ids

    def test_list_without_builtins(self, runner, config_path, monkeypatch) -> None:
        monkeypatch.setenv("CONDUCTOR_WORKFLOW_BUILTINS", "false")
        result = runner.invoke(cli, ["--json", "workflows", "list"])
        assert [wf["id"] for wf in json.loads(result.output)] == ["aaa-custom"]

    def test_list_table(self, runner, config_path) -> None:
        result = runner.invoke(cli, ["--no-color", "workflows", "list"])
        assert result.exit_code == 0, result.output
        assert "bug-triage" in result.output

    def test_show(self, runner, config_path) -> None:
        result = runner.invoke(cli, ["--no-color", "workflows", "show", "bug-triage"])
        assert result.exit_code == 0, result.output
        assert "Bug Triage" in result.output
        assert "explorer" in result.output

    def test_show_unknown(self, runner, config_path) -> None:
        result = runner.invoke(cli, ["workflows", "show", "nope"])
        assert result.exit_code != 0
        assert 'Unknown workflow "nope".' in result.output


class TestInitCommand:
    def test_writes_file(self, runner, tmp_path) -> None:
        target = tmp_path / "conductor.toml"
        result = runner.invoke(cli, ["init", "--path", str(target)])
        assert result.exit_code == 0, result.output
        assert "[profiles.coder]" in target.read_text()

    def test_refuses_overwrite(self, runner, tmp_path) -> None:
        target = tmp_path / "conductor.toml"
        target.write_text("keep = true\n")
        result = runner.invoke(cli, ["init", "--path", str(target)])
        assert result.exit_code != 0
        assert target.read_text() == "keep = true\n"
        forced = runner.invoke(cli, ["init", "--path", str(target), "--force"])
        assert forced.exit_code == 0
