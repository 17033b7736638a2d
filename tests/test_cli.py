"""
Tests for the grimoire command line, driven through typer's CliRunner.
"""

import json

import pytest
from typer.testing import CliRunner

from grimoire.cli import app
from grimoire.providers.base import get_registry
from grimoire.repository import Repository
from grimoire.suggest import SuggestionTask

from tests.conftest import FakeSuggestionProvider


class CliFakeProvider(FakeSuggestionProvider):
    """Accepts the parameters the CLI passes to real providers."""

    def __init__(self, model=None, api_key=None, max_tokens=4096):
        super().__init__()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli(runner, db_path):
    """Invoke the CLI against the test database."""
    def invoke(*args, input=None):
        return runner.invoke(app, ["--store", str(db_path), *args], input=input)
    return invoke


@pytest.fixture
def seeded(cli):
    cli("add", "prompt", "review", "--content", "Review this diff.", "-t", "git")
    cli("add", "agent", "planner", "-d", "Plans work", "--content", "You plan.",
        "--model", "opus", "--permission-mode", "plan")
    cli("add", "command", "deploy", "--content", "Deploy $ARGUMENTS", "--argument-hint", "[env]")
    return cli


class TestAdd:

    def test_add_prompt(self, cli, db_path):
        result = cli("add", "prompt", "foo", "--content", "bar")
        assert result.exit_code == 0, result.output
        assert "Created prompt 1: foo" in result.output
        with Repository(db_path) as repo:
            assert repo.get(1).content == "bar"

    def test_add_from_file(self, cli, tmp_path, db_path):
        body = tmp_path / "skill.md"
        body.write_text("Use pdftotext.\n")
        result = cli("add", "skill", "pdf", "-d", "PDFs", "-f", str(body),
                     "--allowed-tools", "Bash")
        assert result.exit_code == 0, result.output
        with Repository(db_path) as repo:
            item = repo.get(1)
        assert item.content == "Use pdftotext.\n"
        assert item.allowed_tools == "Bash"

    def test_add_from_stdin(self, cli, db_path):
        result = cli("add", "prompt", "piped", "--content", "-", input="from stdin")
        assert result.exit_code == 0, result.output
        with Repository(db_path) as repo:
            assert repo.get(1).content == "from stdin"

    def test_validation_errors_listed(self, cli):
        result = cli("add", "agent", "foo2", "--content", "x")
        assert result.exit_code == 1
        assert "validation failed" in result.output
        assert "description: missing_required" in result.output

    def test_duplicate_name(self, seeded):
        result = seeded("add", "prompt", "REVIEW", "--content", "again")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_unknown_category(self, cli):
        result = cli("add", "widget", "w", "--content", "x")
        assert result.exit_code != 0

    def test_json_output(self, cli):
        result = cli("--json", "add", "prompt", "foo", "--content", "bar", "-t", "A", "-t", "b")
        data = json.loads(result.output)
        assert data["id"] == 1
        assert data["tags"] == ["a", "b"]
        assert data["category"] == "prompt"


class TestRead:

    def test_show(self, seeded):
        result = seeded("show", "2")
        assert result.exit_code == 0, result.output
        assert "name: planner" in result.output
        assert "permission_mode: plan" in result.output
        assert result.output.rstrip().endswith("You plan.")

    def test_show_missing(self, cli):
        result = cli("show", "99")
        assert result.exit_code == 1
        assert "Item 99 not found" in result.output

    def test_list(self, seeded):
        result = seeded("list")
        lines = result.output.strip().splitlines()
        assert [line.split()[2] for line in lines] == ["deploy", "planner", "review"]

    def test_list_filters(self, seeded):
        assert "planner" in seeded("list", "-c", "agent").output
        assert "review" not in seeded("list", "-c", "agent").output
        assert seeded("list", "-t", "git").output.split()[2] == "review"

    def test_list_json(self, seeded):
        data = json.loads(seeded("--json", "list", "-n", "1").output)
        assert [d["name"] for d in data] == ["deploy"]

    def test_find(self, seeded):
        result = seeded("find", "review")
        assert result.exit_code == 0, result.output
        assert "review" in result.output
        assert "(name)" in result.output

    def test_find_json(self, seeded):
        data = json.loads(seeded("--json", "find", "git").output)
        assert data == [{"id": 1, "matched_field": "tags", "name": "review", "category": "prompt"}]

    def test_find_nothing(self, seeded):
        assert "No matches." in seeded("find", "zzz").output

    def test_tags_and_stats(self, seeded):
        assert "1  git" in seeded("tags").output
        stats = json.loads(seeded("--json", "stats").output)
        assert stats == {"prompt": 1, "agent": 1, "skill": 0, "command": 1}


class TestEdit:

    def test_edit_and_history(self, seeded, db_path):
        result = seeded("edit", "1", "--content", "Review this diff carefully.")
        assert result.exit_code == 0, result.output
        assert "v2" in result.output

        history = seeded("history", "1").output.splitlines()
        assert history[0].startswith("v2")
        assert history[1].startswith("v1")
        assert "Review this diff." in history[1]

    def test_edit_stale_base_version(self, seeded):
        seeded("edit", "1", "--content", "second")
        result = seeded("edit", "1", "-b", "1", "--content", "third")
        assert result.exit_code == 1
        assert "reload and retry" in result.output

    def test_clear_field(self, seeded, db_path):
        result = seeded("edit", "2", "--clear", "model")
        assert result.exit_code == 0, result.output
        with Repository(db_path) as repo:
            assert repo.get(2).model is None

    def test_nothing_to_change(self, seeded):
        result = seeded("edit", "1")
        assert result.exit_code == 1

    def test_restore(self, seeded, db_path):
        seeded("edit", "1", "--content", "changed")
        result = seeded("restore", "1", "1")
        assert result.exit_code == 0, result.output
        assert "as v3" in result.output
        with Repository(db_path) as repo:
            assert repo.get(1).content == "Review this diff."

    def test_show_old_version(self, seeded):
        seeded("edit", "1", "--content", "changed")
        result = seeded("show", "1", "--version", "1")
        assert "Review this diff." in result.output


class TestDelete:

    def test_delete_with_confirmation(self, seeded):
        result = seeded("delete", "1", input="y\n")
        assert result.exit_code == 0, result.output
        assert seeded("show", "1").exit_code == 1

    def test_delete_declined(self, seeded):
        result = seeded("delete", "1", input="n\n")
        assert result.exit_code != 0
        assert seeded("show", "1").exit_code == 0

    def test_delete_twice(self, seeded):
        seeded("delete", "1", "--yes")
        result = seeded("delete", "1", "--yes")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestExport:

    def test_export_agent(self, seeded, tmp_path):
        dest = tmp_path / "claude"
        result = seeded("export", "2", "--dest", str(dest))
        assert result.exit_code == 0, result.output
        assert (dest / "agents" / "planner.md").exists()

    def test_export_uses_setting(self, seeded, tmp_path):
        dest = tmp_path / "from-setting"
        seeded("settings", "set", "export_path", str(dest))
        result = seeded("export", "3")
        assert result.exit_code == 0, result.output
        assert (dest / "commands" / "deploy.md").exists()

    def test_export_prompt_fails(self, seeded, tmp_path):
        result = seeded("export", "1", "--dest", str(tmp_path))
        assert result.exit_code == 1
        assert "cannot be exported" in result.output


class TestSuggest:

    @pytest.fixture(autouse=True)
    def fake_registered(self, monkeypatch, seeded):
        monkeypatch.setitem(get_registry()._providers, "fake", CliFakeProvider)
        seeded("settings", "set", "llm_provider", "fake")

    def test_suggest_prints_result(self, seeded, db_path):
        result = seeded("suggest", "1")
        assert result.exit_code == 0, result.output
        assert "REVIEW THIS DIFF." in result.output
        with Repository(db_path) as repo:
            assert repo.get(1).version == 1

    def test_suggest_apply(self, seeded, db_path):
        result = seeded("suggest", "1", "--action", "concise", "--apply")
        assert result.exit_code == 0, result.output
        with Repository(db_path) as repo:
            item = repo.get(1)
        assert item.version == 2
        assert item.content == "REVIEW THIS DIFF."

    def test_apply_reports_what_happened(self, seeded, db_path, monkeypatch):
        data = json.loads(seeded("--json", "suggest", "1", "--apply").output)
        assert data["applied"] is True
        assert data["version"] == 2

        monkeypatch.setattr(SuggestionTask, "accept", lambda self: False)
        result = seeded("--json", "suggest", "1", "--apply")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["applied"] is False
        assert data["version"] == 2
        with Repository(db_path) as repo:
            assert repo.get(1).version == 2

    def test_custom_without_instruction(self, seeded):
        result = seeded("suggest", "1", "--action", "custom")
        assert result.exit_code == 1
        assert "instruction" in result.output


class TestSettingsAndMaintenance:

    def test_settings(self, cli):
        assert cli("settings", "set", "llm_model", "gpt-4o").exit_code == 0
        assert cli("settings", "get", "llm_model").output.strip() == "gpt-4o"
        assert cli("settings", "get", "missing").exit_code == 1

    def test_api_key_masked(self, cli):
        cli("settings", "set", "api_key", "sk-ant-secret-value")
        output = cli("settings", "list").output
        assert "secret" not in output
        assert "api_key = sk-ant..." in output

    def test_reindex(self, seeded):
        result = seeded("reindex")
        assert result.exit_code == 0, result.output
        assert "Re-indexed 3 items" in result.output

    def test_store_from_environment(self, runner, db_path, monkeypatch):
        monkeypatch.setenv("GRIMOIRE_STORE_PATH", str(db_path))
        runner.invoke(app, ["add", "prompt", "env", "--content", "x"])
        with Repository(db_path) as repo:
            assert repo.get(1).name == "env"

    def test_default_store_in_data_dir(self, runner, isolated_home):
        result = runner.invoke(app, ["add", "prompt", "home", "--content", "x"])
        assert result.exit_code == 0, result.output
        assert (isolated_home / "grimoire.db").exists()
        assert (isolated_home / "grimoire.toml").exists()
