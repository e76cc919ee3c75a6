"""
Tests for the CLI interface.
"""
import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from claude_spend.cli.main import EXIT_CODE_FAIL, EXIT_CODE_NOT_FOUND, EXIT_CODE_PASS, app
from claude_spend.config.loader import API_KEY_ENV_VAR, BILLING_ENV_VAR

from factories import assistant_entry, user_entry, write_jsonl

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the caller's billing settings out of the tests."""
    monkeypatch.delenv(API_KEY_ENV_VAR, raising=False)
    monkeypatch.delenv(BILLING_ENV_VAR, raising=False)


@pytest.fixture
def data_dir(tmp_path):
    write_jsonl(tmp_path / "projects" / "shop" / "abc123.jsonl", [
        user_entry("add a checkout page"),
        assistant_entry(output_tokens=500, tools=["Read"]),
        assistant_entry(output_tokens=700, timestamp="2026-03-02T09:01:00Z"),
    ])
    return str(tmp_path)


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_summary(self, data_dir):
        result = runner.invoke(app, ["summary", "--data-dir", data_dir])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Usage Summary" in result.output
        assert "shop" in result.output
        assert "claude-sonnet-4" in result.output

    def test_summary_no_data(self, tmp_path):
        result = runner.invoke(app, ["summary", "--data-dir", str(tmp_path)])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No session data found" in result.output

    def test_summary_json(self, data_dir):
        result = runner.invoke(app, ["summary", "-d", data_dir, "--billing", "pro", "--json"])
        assert result.exit_code == EXIT_CODE_PASS
        payload = json.loads(result.output)
        assert payload["billing_context"] == "pro"
        assert payload["is_equivalent_cost"] is True
        assert payload["totals"]["total_queries"] == 2
        assert payload["sessions"][0]["date"] == "2026-03-02"

    def test_invalid_billing(self, data_dir):
        result = runner.invoke(app, ["summary", "-d", data_dir, "--billing", "team"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error:" in result.output

    def test_missing_config(self, data_dir, tmp_path):
        result = runner.invoke(app, ["summary", "-d", data_dir, "--config", str(tmp_path / "none.yaml")])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output

    def test_config_data_dir(self, data_dir, tmp_path):
        config_path = tmp_path / "spend.yaml"
        config_path.write_text(f"data_dir: {data_dir}\nmax_workers: 1\n", encoding="utf-8")
        result = runner.invoke(app, ["summary", "--config", str(config_path), "--json"])
        assert result.exit_code == EXIT_CODE_PASS
        assert json.loads(result.output)["totals"]["total_sessions"] == 1

    def test_session(self, data_dir):
        result = runner.invoke(app, ["session", "abc123", "-d", data_dir])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Session abc123" in result.output
        assert "add a checkout page" in result.output

    def test_session_json(self, data_dir):
        result = runner.invoke(app, ["session", "abc123", "-d", data_dir, "--json"])
        assert result.exit_code == EXIT_CODE_PASS
        payload = json.loads(result.output)
        assert len(payload["session"]["queries"]) == 2
        assert payload["billing_context"] == "api"

    def test_session_not_found(self, data_dir):
        result = runner.invoke(app, ["session", "missing", "-d", data_dir])
        assert result.exit_code == EXIT_CODE_NOT_FOUND
        assert "Session not found: missing" in result.output

    def test_prompts(self, data_dir):
        result = runner.invoke(app, ["prompts", "-d", data_dir, "--limit", "5", "--json"])
        assert result.exit_code == EXIT_CODE_PASS
        payload = json.loads(result.output)
        assert len(payload) == 1
        assert payload[0]["prompt"] == "add a checkout page"
        assert payload[0]["continuations"] == 0
        assert payload[0]["tool_counts"] == {"Read": 1}

    def test_insights_uses_service(self, data_dir):
        with patch("claude_spend.cli.main.UsageService") as mock_service:
            mock_service.return_value.get_dashboard.return_value.insights = []
            result = runner.invoke(app, ["insights", "-d", data_dir])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No insights" in result.output
        kwargs = mock_service.call_args.kwargs
        assert kwargs["billing_override"] is None
