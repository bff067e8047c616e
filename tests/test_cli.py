"""Tests for the operator command line."""

import json

import pytest

from courtbot import cli
from courtbot.notifier import CampaignExpired, TargetAdded, TargetRemoved

from conftest import RecordingNotifier


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CAMPAIGN_STATE_PATH", str(tmp_path / "campaigns.json"))
    monkeypatch.setenv("TOKEN_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("PID_FILE", str(tmp_path / "courtbot.pid"))
    monkeypatch.setenv("FACILITY_TIMEZONE", "America/Los_Angeles")
    monkeypatch.delenv("AUTH_BEARER_TOKEN", raising=False)
    monkeypatch.delenv("SCHEDULER_ENABLED", raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    return tmp_path


@pytest.fixture
def events(monkeypatch):
    recorder = RecordingNotifier()
    monkeypatch.setattr(cli, "build_notifier", lambda settings: (recorder, None))
    return recorder


def read_state(path):
    return json.loads((path / "campaigns.json").read_text())


class TestTargetCommands:
    def test_add_poll(self, cli_env, capsys):
        assert cli.main(["add", "poll", "2099-01-01", "18:00", "60"]) == 0

        targets = read_state(cli_env)["targets"]
        assert len(targets) == 1
        assert targets[0]["kind"] == "polling"
        assert targets[0]["desired_start"] == "18:00:00"
        assert "Added polling target" in capsys.readouterr().out

    def test_add_burst(self, cli_env):
        assert cli.main(["add", "burst", "52670", "2099-01-01", "07:30", "90"]) == 0

        target = read_state(cli_env)["targets"][0]
        assert target["kind"] == "burst"
        assert target["resource_id"] == "52670"

    def test_add_invalid(self, cli_env, capsys):
        assert cli.main(["add", "poll", "2099-13-01", "18:00", "0"]) == 1

        out = capsys.readouterr().out
        assert "Invalid target" in out
        assert "duration" in out
        assert read_state(cli_env)["targets"] == []

    def test_remove(self, cli_env):
        cli.main(["add", "poll", "2099-01-01", "18:00", "60"])
        target_id = read_state(cli_env)["targets"][0]["id"]

        assert cli.main(["remove", target_id]) == 0
        assert cli.main(["remove", target_id]) == 1
        assert read_state(cli_env)["targets"] == []

    def test_list(self, cli_env, capsys):
        cli.main(["list"])
        assert "No targets configured" in capsys.readouterr().out

        cli.main(["add", "poll", "2099-01-01", "18:00", "60"])
        capsys.readouterr()
        assert cli.main(["list"]) == 0
        assert "Targets" in capsys.readouterr().out

    def test_enable_disable(self, cli_env):
        assert cli.main(["enable"]) == 0
        assert read_state(cli_env)["enabled"] is True

        assert cli.main(["disable"]) == 0
        assert read_state(cli_env)["enabled"] is False

    def test_cleanup(self, cli_env, capsys):
        cli.main(["add", "poll", "2000-01-01", "18:00", "60"])
        cli.main(["add", "poll", "2099-01-01", "18:00", "60"])
        capsys.readouterr()

        assert cli.main(["cleanup"]) == 0
        assert "Removed 1 expired target(s)" in capsys.readouterr().out

        assert cli.main(["cleanup", "--beyond", "30"]) == 0
        assert read_state(cli_env)["targets"] == []

    def test_operator_events_are_announced(self, cli_env, events):
        cli.main(["add", "burst", "52670", "2099-01-01", "07:30", "90"])
        target_id = read_state(cli_env)["targets"][0]["id"]
        cli.main(["add", "poll", "2000-01-01", "18:00", "60"])
        cli.main(["cleanup"])
        cli.main(["remove", target_id])

        added = events.of_type(TargetAdded)
        assert [e.kind for e in added] == ["burst", "polling"]
        assert added[0].resource_id == "52670"
        assert added[0].desired_start == "07:30"
        assert events.of_type(CampaignExpired) == [CampaignExpired(1)]
        assert events.of_type(TargetRemoved) == [TargetRemoved(target_id)]


class TestServiceCommands:
    def test_reload_without_service(self, cli_env, capsys):
        assert cli.main(["reload"]) == 1
        assert "not running" in capsys.readouterr().out

    def test_status(self, cli_env, capsys):
        assert cli.main(["status"]) == 0
        out = capsys.readouterr().out
        assert "stopped" in out
        assert "DISABLED" in out


class TestTokenCommands:
    def test_set_show_clear(self, cli_env, capsys):
        assert cli.main(["token", "show"]) == 0
        assert "No bearer token" in capsys.readouterr().out

        assert cli.main(["token", "set", "abcdefghijklmnop1234"]) == 0
        assert cli.main(["token", "show"]) == 0
        out = capsys.readouterr().out
        assert "abcdefgh...1234" in out
        assert "cache" in out

        assert cli.main(["token", "clear"]) == 0
        cli.main(["token", "show"])
        assert "No bearer token" in capsys.readouterr().out

    def test_set_invalid(self, cli_env):
        assert cli.main(["token", "set", "Bearer"]) == 1
