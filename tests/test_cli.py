# tests/test_cli.py
import json
import logging

import pytest
from click.testing import CliRunner

from cli import main as cli_main
from conftest import cand
from net.bootstrap import IceRuntime


@pytest.fixture
def runner(monkeypatch):
    # keep the root logger pointed at pytest's handlers
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)
    return CliRunner()


def test_candidates_lists_gathered(runner, monkeypatch):
    seen = {}

    async def fake_discover(config):
        seen["config"] = config
        return [cand("H1", 1, 2130706431, "192.168.1.10", 40001),
                cand("S1", 1, 1694498815, "203.0.113.7", 51001, "srflx")]

    monkeypatch.setattr(cli_main, "discover_candidates", fake_discover)
    result = runner.invoke(cli_main.cli, ["candidates", "-s", "stun.example.org:19302"])
    assert result.exit_code == 0, result.output
    assert "192.168.1.10:40001" in result.output
    assert "srflx" in result.output
    assert seen["config"].stun_server == ("stun.example.org", 19302)


def test_candidates_reports_empty(runner, monkeypatch):
    async def fake_discover(config):
        return []

    monkeypatch.setattr(cli_main, "discover_candidates", fake_discover)
    result = runner.invoke(cli_main.cli, ["candidates"])
    assert result.exit_code == 0
    assert "No candidates gathered" in result.output


@pytest.mark.parametrize("args", [
    ["candidates", "--stun-srv", "host:abc"],
    ["run", "--comp-cnt", "9"],
    ["run", "--nego-timeout", "0"],
])
def test_bad_options_are_usage_errors(runner, args):
    result = runner.invoke(cli_main.cli, args)
    assert result.exit_code == 2


def test_run_quits_cleanly_and_writes_log_file(runner, tmp_path):
    log_file = tmp_path / "icedemo.log"
    result = runner.invoke(cli_main.cli, ["run", "-L", str(log_file)], input="t\nq\n")
    assert result.exit_code == 0, result.output
    assert "M E N U" in result.output
    events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
    assert "shutting_down" in events
    assert events[-1] == "runtime_shutdown"


def test_candidates_with_turn_relay(runner, monkeypatch):
    seen = {}

    async def fake_discover(config):
        seen["config"] = config
        return [cand("R1", 1, 16777215, "198.51.100.2", 49152, "relay")]

    monkeypatch.setattr(cli_main, "discover_candidates", fake_discover)
    result = runner.invoke(cli_main.cli, ["candidates", "-t", "turn.example.org:3479", "-T",
                                          "-u", "alice", "-p", "secret"])
    assert result.exit_code == 0, result.output
    assert "relay" in result.output
    config = seen["config"]
    assert config.turn_server == ("turn.example.org", 3479)
    assert config.turn_kwargs()["turn_transport"] == "tcp"
    assert (config.turn_username, config.turn_password) == ("alice", "secret")


@pytest.mark.parametrize("args", [
    ["run", "--turn-srv", "turn.example.org"],
    ["candidates", "-t", "turn.example.org", "-u", "alice"],
    ["candidates", "-u", "alice", "-p", "secret"],
])
def test_incomplete_turn_options_are_usage_errors(runner, args):
    result = runner.invoke(cli_main.cli, args)
    assert result.exit_code == 2


def test_run_exits_nonzero_when_scheduler_worker_dies(runner, monkeypatch, tmp_path):
    def broken_runtime(config):
        runtime = IceRuntime(config)
        # a negative delay to the next timer is fatal for the worker
        runtime.timers.poll = lambda: (0, -5)
        runtime.start()
        runtime.worker._thread.join(2.0)
        return runtime

    monkeypatch.setattr(cli_main, "attach_runtime", broken_runtime)
    log_file = tmp_path / "icedemo.log"
    result = runner.invoke(cli_main.cli, ["run", "-L", str(log_file)], input="c\nh\n")
    assert result.exit_code == 1
    assert "Fatal: event worker stopped" in result.output
    events = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
    assert "worker_fatal" in events
    assert "fatal" in events
    assert events[-1] == "runtime_shutdown"
