"""
Tests for the CLI interface.
"""
import json
import os
import shutil
import tempfile

import yaml
from typer.testing import CliRunner

from resilient_ai.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from resilient_ai.config.loader import DEFAULT_CONFIG_ENV

runner = CliRunner()

GEMINI_KEY = "AIza" + "Q" * 35


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "state.db")
        self.config_path = os.path.join(self.temp_dir, "providers.yaml")
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump({
                "settings": {"db_path": self.db_path},
                "providers": [
                    {
                        "id": "gemini", "priority": 1, "daily_limit": 5, "monthly_limit": 50,
                        "min_interval_ms": 0, "endpoint": "https://example.invalid/v1/",
                        "response_shape": "chat",
                    },
                    {
                        "id": "demo", "priority": 2, "daily_limit": 1, "monthly_limit": 10,
                        "min_interval_ms": 0, "response_shape": "mock",
                    },
                ],
            }, f)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def invoke(self, *args):
        return runner.invoke(app, [*args, "--config", self.config_path])

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_init(self):
        result = self.invoke("init")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Store initialized" in result.output
        assert os.path.exists(self.db_path)

    def test_init_bad_config(self):
        with open(self.config_path, "w") as f:
            f.write("providers:\n  - id: x\n")
        result = self.invoke("init")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error initializing store" in result.output

    def test_missing_config(self, monkeypatch):
        monkeypatch.delenv(DEFAULT_CONFIG_ENV, raising=False)
        result = runner.invoke(app, ["status"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert DEFAULT_CONFIG_ENV in result.output

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv(DEFAULT_CONFIG_ENV, self.config_path)
        result = runner.invoke(app, ["status"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "gemini" in result.output

    def test_status_shows_mode_and_quota(self):
        result = self.invoke("status")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Mode:" in result.output
        assert "mock" in result.output
        assert "0/5" in result.output

    def test_set_key_masks_output(self):
        result = self.invoke("set-key", "gemini", GEMINI_KEY)
        assert result.exit_code == EXIT_CODE_PASS
        assert GEMINI_KEY not in result.output
        assert "AIza" in result.output

        status = self.invoke("status")
        assert "free" in status.output

    def test_set_key_invalid(self):
        result = self.invoke("set-key", "gemini", "your_key_here")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid key" in result.output

    def test_set_key_unknown_provider(self):
        result = self.invoke("set-key", "nobody", GEMINI_KEY)
        assert result.exit_code == EXIT_CODE_FAIL
        assert "unknown provider" in result.output

    def test_clear_keys(self):
        self.invoke("set-key", "gemini", GEMINI_KEY)
        result = self.invoke("clear-keys")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Removed 1" in result.output

    def test_request_served_by_mock_then_fallback(self):
        first = self.invoke("request", "palette", "--param", "keyword=ocean", "--param", "color_count=3")
        assert first.exit_code == EXIT_CODE_PASS
        assert "provider:demo" in first.output

        second = self.invoke("request", "palette", "--param", "keyword=forest")
        assert second.exit_code == EXIT_CODE_PASS
        assert "local-fallback" in second.output

    def test_request_json_params(self):
        params = json.dumps({"ingredients": ["chicken", "rice"], "servings": 2})
        result = self.invoke("request", "recipe", "--json", params, "--no-cache")
        assert result.exit_code == EXIT_CODE_PASS
        assert "title" in result.output

    def test_request_invalid_input(self):
        result = self.invoke("request", "recipe")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "invalid_input" in result.output

    def test_request_malformed_param(self):
        result = self.invoke("request", "palette", "--param", "keyword")
        assert result.exit_code != EXIT_CODE_PASS
