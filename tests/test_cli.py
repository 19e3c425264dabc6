"""Tests for the CLI module."""

import json

import pytest
from unittest.mock import patch
from click.testing import CliRunner

from crewsim.cli import main
from crewsim.store import SQLiteMemoryStore


class TestCLI:
    """Test CLI commands."""

    @pytest.fixture
    def runner(self):
        """Create CLI test runner."""
        return CliRunner()

    def test_main_help(self, runner):
        """Main command shows help."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "crewsim" in result.output
        assert "send" in result.output

    def test_version(self, runner):
        """Version flag works."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestSendCommand:
    """Test send command."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_send_formatted(self, runner):
        """Send prints the steps, routing and review."""
        result = runner.invoke(main, ["send", "build a login page", "--no-memory"])

        assert result.exit_code == 0
        assert "Routed to engineer" in result.output
        assert "The Builder [thinking]" in result.output
        assert "Technical implementation plan:" in result.output
        assert "Review:" in result.output

    def test_send_raw(self, runner):
        """Raw output is JSON with the decision, plan and result."""
        result = runner.invoke(main, ["send", "build a login page", "--no-memory", "--raw"])

        assert result.exit_code == 0
        data = json.loads(result.output[result.output.index("{"):])
        assert data["decision"]["agent_id"] == "engineer"
        assert data["result"]["agent_id"] == "engineer"
        assert data["plan"]["steps"]

    def test_send_with_crew(self, runner):
        """The crew option picks the template."""
        result = runner.invoke(main, ["send", "draft a blog post", "--crew", "content-crew", "--no-memory"])

        assert result.exit_code == 0
        assert "Routed to writer" in result.output
        assert "Crew: Active Crew" in result.output

    def test_send_persists_memory(self, runner, isolated_db_path):
        """Without --no-memory the snapshot is written to the database."""
        result = runner.invoke(main, ["send", "build a login page"])

        assert result.exit_code == 0
        assert SQLiteMemoryStore(isolated_db_path).load() is not None

    def test_send_with_agents_file(self, runner, tmp_path):
        """Agents can come from a JSON file."""
        path = tmp_path / "agents.json"
        path.write_text(json.dumps([
            {"id": "boss", "name": "Boss", "role": "coordinator"},
            {"id": "dev", "name": "Dev", "role": "engineer", "routing": {"keywords": ["code"]}},
        ]))

        result = runner.invoke(main, ["send", "write some code", "--agents", str(path), "--no-memory"])

        assert result.exit_code == 0
        assert "Routed to dev" in result.output

    def test_send_invalid_agents_file(self, runner, tmp_path):
        """Invalid agent files fail with a message."""
        path = tmp_path / "agents.json"
        path.write_text("[{}]")

        result = runner.invoke(main, ["send", "hello", "--agents", str(path), "--no-memory"])

        assert result.exit_code != 0
        assert "Could not load agents" in result.output

    def test_send_all_agents_disabled(self, runner, tmp_path):
        """A file with only disabled agents is rejected."""
        path = tmp_path / "agents.json"
        path.write_text(json.dumps([{"id": "boss", "name": "Boss", "role": "coordinator", "enabled": False}]))

        result = runner.invoke(main, ["send", "hello", "--agents", str(path), "--no-memory"])

        assert result.exit_code != 0
        assert "at least one enabled agent" in result.output


class TestListCommands:
    """Test crews and agents commands."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_crews(self, runner):
        """Crews lists every template and stars recommended ones."""
        result = runner.invoke(main, ["crews"])

        assert result.exit_code == 0
        assert "* startup-crew" in result.output
        assert "full-stack" in result.output

    def test_agents_for_crew(self, runner):
        """Agents can be limited to one crew."""
        result = runner.invoke(main, ["agents", "--crew", "dev-team"])

        assert result.exit_code == 0
        assert "support" in result.output
        assert "creative" not in result.output


class TestServeCommand:
    """Test serve command."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    @patch("uvicorn.run")
    def test_serve_default(self, mock_run, runner):
        """Serve with default options."""
        result = runner.invoke(main, ["serve"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with("crewsim.broker:app", host="127.0.0.1", port=8000, reload=False)


class TestForgetCommand:
    """Test forget command."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_forget_with_yes(self, runner, isolated_db_path):
        """Forget clears the persisted snapshot."""
        store = SQLiteMemoryStore(isolated_db_path)
        store.save({"_shared": []})

        result = runner.invoke(main, ["forget", "--yes"])

        assert result.exit_code == 0
        assert "Cleared crew memory" in result.output
        assert store.load() is None

    def test_forget_aborted(self, runner):
        """Declining the prompt aborts."""
        result = runner.invoke(main, ["forget"], input="n\n")

        assert result.exit_code == 1
        assert "Aborted" in result.output
