"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from codeplan.cli import main
from codeplan.config import get_sessions_dir, load_config
from codeplan.session.ledger import SessionLedger
from codeplan.session.store import SessionStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def initialized_project(tmp_project: Path) -> Path:
    """A tmp_project that has been through `codeplan init`."""
    runner = CliRunner()
    result = runner.invoke(main, ["init", "--path", str(tmp_project)])
    assert result.exit_code == 0, f"Init failed: {result.output}"
    return tmp_project


@pytest.fixture
def all_tools_installed(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("codeplan.cli.shutil.which", lambda name: f"/usr/bin/{name}")


class TestCLIInit:
    def test_init_basic(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0
        assert "Initializing" in result.output
        assert (tmp_path / ".codeplan" / "config.json").exists()
        assert (tmp_path / ".codeplan" / "index.json").exists()
        assert (tmp_path / ".codeplan" / "sessions").is_dir()

    def test_init_keeps_existing_index(self, runner: CliRunner, tmp_project: Path):
        runner.invoke(main, ["init", "--path", str(tmp_project)])
        index = json.loads((tmp_project / ".codeplan" / "index.json").read_text())
        assert len(index["files"]) == 2

    def test_init_with_provider(self, runner: CliRunner, tmp_path: Path):
        runner.invoke(main, ["init", "--path", str(tmp_path), "--provider", "openai",
                             "--model", "gpt-4o"])
        config = load_config(tmp_path)
        assert config.llm.provider == "openai"
        assert config.llm.model == "gpt-4o"

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0


class TestCLIPlan:
    def test_plan(self, runner: CliRunner, initialized_project: Path, all_tools_installed):
        result = runner.invoke(
            main, ["plan", "Refactor the login flow", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0, result.output
        assert "edit-refactor-1" in result.output
        assert "Plan is valid" in result.output

    def test_plan_json(self, runner: CliRunner, initialized_project: Path, all_tools_installed):
        result = runner.invoke(
            main, ["plan", "Refactor the login flow", "--json", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["validation"]["valid"] is True
        assert data["plan"]["steps"][0]["id"] == "analyze-1"

    def test_plan_without_test_runner(self, runner: CliRunner, initialized_project: Path,
                                      monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("codeplan.cli.shutil.which", lambda name: None)
        result = runner.invoke(
            main, ["plan", "Refactor the login flow", "--path", str(initialized_project)]
        )
        assert result.exit_code == 1
        assert "Missing dependencies: pytest" in result.output

    def test_plan_with_tool_check_disabled(self, runner: CliRunner, initialized_project: Path,
                                           monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr("codeplan.cli.shutil.which", lambda name: None)
        runner.invoke(
            main,
            ["config", "set", "planning.check_tools", "false",
             "--path", str(initialized_project)],
        )
        assert load_config(initialized_project).planning.check_tools is False

        result = runner.invoke(
            main, ["plan", "Refactor the login flow", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0, result.output
        assert "Plan is valid" in result.output

    def test_plan_over_budget(self, runner: CliRunner, initialized_project: Path,
                              all_tools_installed):
        result = runner.invoke(
            main, ["plan", "Fix typo", "--max-tokens", "10", "--path", str(initialized_project)]
        )
        assert result.exit_code == 1
        assert "exceeding limit of 10" in result.output

    def test_plan_without_project(self, runner: CliRunner, tmp_path: Path,
                                  monkeypatch: pytest.MonkeyPatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(main, ["plan", "Fix typo"])
        assert result.exit_code == 1
        assert "codeplan init" in result.output


class TestCLIContext:
    def test_context(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["context", "login", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "src/auth.py" in result.output

    def test_context_full(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["context", "login", "--full", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "hash_password" in result.output

    def test_context_nothing_found(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["context", "kubernetes", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "No relevant files" in result.output


class TestCLIRun:
    def test_run_without_api_key(self, runner: CliRunner, initialized_project: Path,
                                 monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        result = runner.invoke(main, ["run", "Fix typo", "--path", str(initialized_project)])
        assert result.exit_code == 1
        assert "No API key" in result.output

    def test_run_records_session(self, runner: CliRunner, initialized_project: Path,
                                 monkeypatch: pytest.MonkeyPatch, fake_llm):
        llm = fake_llm([
            json.dumps({"summary": "Found the typo"}),
            json.dumps({"summary": "All good", "valid": True}),
        ])
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        monkeypatch.setattr("codeplan.llm.factory.create_provider", lambda config: llm)

        result = runner.invoke(
            main, ["run", "Fix typo in readme", "--auto", "--path", str(initialized_project)]
        )

        assert result.exit_code == 0, result.output
        assert "Task completed" in result.output
        sessions = SessionStore(get_sessions_dir(initialized_project)).list()
        assert len(sessions) == 1
        assert sessions[0].task_count == 1
        assert sessions[0].end_time is not None


class TestCLISession:
    def _record_session(self, root: Path) -> str:
        ledger = SessionLedger(store=SessionStore(get_sessions_dir(root)))
        ledger.end_session()
        return ledger.session_id

    def test_session_list_empty(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(main, ["session", "list", "--path", str(initialized_project)])
        assert result.exit_code == 0
        assert "No sessions" in result.output

    def test_session_show_missing(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(main, ["session", "show", "--path", str(initialized_project)])
        assert result.exit_code == 1

    def test_session_export_markdown(self, runner: CliRunner, initialized_project: Path):
        session_id = self._record_session(initialized_project)
        result = runner.invoke(
            main, ["session", "export", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "# Session Report" in result.output
        assert session_id in result.output

    def test_session_export_json_to_file(self, runner: CliRunner, initialized_project: Path,
                                         tmp_path: Path):
        session_id = self._record_session(initialized_project)
        out = tmp_path / "report.json"
        result = runner.invoke(main, [
            "session", "export", session_id, "--format", "json",
            "--output", str(out), "--path", str(initialized_project),
        ])
        assert result.exit_code == 0
        assert json.loads(out.read_text())["session"]["id"] == session_id

    def test_session_show(self, runner: CliRunner, initialized_project: Path):
        self._record_session(initialized_project)
        result = runner.invoke(main, ["session", "show", "--path", str(initialized_project)])
        assert result.exit_code == 0
        assert "Tasks" in result.output


class TestCLIConfig:
    def test_config_show(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["config", "show", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "llm" in result.output

    def test_config_get(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["config", "get", "llm.provider", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "anthropic" in result.output

    def test_config_set(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main,
            ["config", "set", "executor.max_rate_limit_retries", "5",
             "--path", str(initialized_project)],
        )
        assert result.exit_code == 0
        assert "Set" in result.output
        assert load_config(initialized_project).executor.max_rate_limit_retries == 5

    def test_config_set_unknown_key(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["config", "set", "llm.colour", "blue", "--path", str(initialized_project)]
        )
        assert result.exit_code == 1

    def test_config_set_bad_value(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main,
            ["config", "set", "executor.max_rate_limit_retries", "many",
             "--path", str(initialized_project)],
        )
        assert result.exit_code == 1
        assert "Invalid value" in result.output


class TestCLIVersion:
    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output
