"""Tests for the command-line interface."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from firewall_advisor import cli
from firewall_advisor.models import ActionKind, RuleDuration

DEMO_ALERTS = Path(__file__).resolve().parent.parent / "demo" / "alerts.yaml"


@pytest.fixture
def config(tmp_path) -> str:
    """Write a config that keeps keys in tmp_path and ignores the environment."""
    path = tmp_path / "advisor.yaml"
    path.write_text(
        yaml.dump(
            {
                "storage": {"keys_path": str(tmp_path / "keys.json")},
                "analysis": {"env_vars": []},
                "dismissal": {"grace_period": 0.01, "poll_interval": 0.01},
                "monitor": {"poll_interval": 0.01},
                "logging": {"level": "WARNING"},
            }
        )
    )
    return str(path)


def _keys(config: str) -> dict:
    return json.loads((Path(config).parent / "keys.json").read_text())


class TestKeyCommands:
    """Tests for add-key / remove-key / list-keys."""

    def test_add_key(self, config, capsys):
        assert cli.main(["--config", config, "add-key", "sk-ant-api03-abcdefgh"]) == 0
        assert _keys(config) == {"api_key": "sk-ant-api03-abcdefgh"}
        assert "slot 0" in capsys.readouterr().out

    def test_add_second_key_uses_backup_slot(self, config):
        cli.main(["--config", config, "add-key", "sk-ant-api03-first"])
        cli.main(["--config", config, "add-key", "AIzaSySecondKey"])
        assert _keys(config)["api_key_1"] == "AIzaSySecondKey"

    def test_add_invalid_key(self, config, capsys):
        assert cli.main(["--config", config, "add-key", "hello"]) == 1
        assert "Invalid key format" in capsys.readouterr().out
        assert not (Path(config).parent / "keys.json").exists()

    def test_add_key_bad_slot(self, config):
        assert cli.main(["--config", config, "add-key", "sk-ant-x", "--slot", "42"]) == 1

    def test_remove_key(self, config):
        cli.main(["--config", config, "add-key", "sk-ant-api03-abcdefgh"])
        assert cli.main(["--config", config, "remove-key"]) == 0
        assert _keys(config) == {}

    def test_list_keys(self, config, capsys):
        cli.main(["--config", config, "add-key", "sk-ant-api03-abcdefgh"])
        capsys.readouterr()
        assert cli.main(["--config", config, "list-keys"]) == 0
        out = capsys.readouterr().out
        assert "Slot 0: sk-ant-api03..." in out
        assert "abcdefgh" not in out

    def test_list_keys_empty(self, config, capsys):
        assert cli.main(["--config", config, "list-keys"]) == 0
        assert "No API keys configured" in capsys.readouterr().out


class TestStatusCommand:
    def test_status(self, config, capsys):
        assert cli.main(["--config", config, "status"]) == 0
        out = capsys.readouterr().out
        assert "API keys: 0" in out
        assert "Remote:   disabled" in out


class TestActionCommands:
    """Tests for allow / block."""

    def test_allow_always(self, config, monkeypatch):
        actions = MagicMock()
        actions.return_value.perform_action.return_value = True
        monkeypatch.setattr(cli, "AppleScriptActions", actions)

        assert cli.main(["--config", config, "allow", "always"]) == 0
        actions.return_value.perform_action.assert_called_once_with(
            ActionKind.ALLOW, RuleDuration.ALWAYS
        )

    def test_block_failure(self, config, monkeypatch):
        actions = MagicMock()
        actions.return_value.perform_action.return_value = False
        monkeypatch.setattr(cli, "AppleScriptActions", actions)

        assert cli.main(["--config", config, "block"]) == 1
        actions.return_value.perform_action.assert_called_once_with(
            ActionKind.BLOCK, RuleDuration.NONE
        )


class TestConfigErrors:
    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("monitor: fast\n")
        assert cli.main(["--config", str(path), "status"]) == 1
        assert "Invalid config" in capsys.readouterr().out

    def test_malformed_yaml(self, tmp_path, capsys):
        path = tmp_path / "broken.yaml"
        path.write_text("monitor: [unclosed\n")
        assert cli.main(["--config", str(path), "status"]) == 1
        assert "Invalid config" in capsys.readouterr().out


class TestWatchDemo:
    """Runs the demo replay end to end with shortened timings."""

    def test_demo_runs_to_completion(self, config, monkeypatch):
        monkeypatch.setattr(cli, "DEMO_ALERT_HOLD", 0.05)
        monkeypatch.setattr(cli, "DEMO_ALERT_GAP", 0.01)
        monkeypatch.setattr(cli, "REFRESH_INTERVAL", 0.01)

        assert cli.main(["--config", config, "watch", "--demo", str(DEMO_ALERTS)]) == 0
