"""Tests for the command line interface."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from conftest import ScriptedService
from huddle import __version__
from huddle.cli import app
from huddle.config import save_config
from huddle.exceptions import GenerationError

runner = CliRunner()


@pytest.fixture
def config_file(config, tmp_path):
    return str(save_config(config, tmp_path / "config.yaml"))


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_tools_list_groups_by_module():
    result = runner.invoke(app, ["tools", "list"])

    assert result.exit_code == 0
    assert "CHANNELS" in result.output
    assert "send_dm" in result.output
    assert "Total: 11 tools" in result.output


def test_tools_show():
    result = runner.invoke(app, ["tools", "show", "send_message"])

    assert result.exit_code == 0
    assert "channel_name" in result.output
    assert "content" in result.output


def test_tools_show_unknown():
    result = runner.invoke(app, ["tools", "show", "teleport"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_tools_call_and_channels(config_file):
    args = json.dumps({"channel_name": "Launch Room"})
    created = runner.invoke(
        app, ["tools", "call", "create_channel", "--args", args, "--user", "alice", "--config", config_file]
    )
    listed = runner.invoke(app, ["channels", "--config", config_file])

    assert created.exit_code == 0
    assert "launch-room" in created.output
    assert listed.exit_code == 0
    assert "#launch-room" in listed.output


def test_tools_call_failure_exits_nonzero(config_file):
    result = runner.invoke(app, ["tools", "call", "nope", "--user", "alice", "--config", config_file])

    assert result.exit_code == 1
    assert "Unknown tool: nope" in result.output


def test_channels_when_empty(config_file):
    result = runner.invoke(app, ["channels", "--config", config_file])

    assert result.exit_code == 0
    assert "No channels" in result.output


def test_commands_list_empty(config_file, tmp_path):
    result = runner.invoke(app, ["commands", "list", "--config", config_file, "--content-dir", str(tmp_path / "none")])

    assert result.exit_code == 0
    assert "No commands or skills found" in result.output


def test_invalid_config_exits(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("agents: [unclosed")

    result = runner.invoke(app, ["channels", "--config", str(path)])

    assert result.exit_code == 1
    assert "Config error" in result.output


def test_ask_prints_reply(config_file):
    service = ScriptedService([{"text": "Launch is **Friday**."}, "[DONE]"])

    with patch("huddle.cli.helpers.create_service", return_value=service):
        result = runner.invoke(app, ["ask", "When do we launch?", "--user", "alice", "--config", config_file])

    assert result.exit_code == 0
    assert "Launch is" in result.output
    assert "Session:" in result.output
    assert service.requests[0].turns[-1].content == "When do we launch?"


def test_ask_named_agent_uses_its_persona(config_file):
    service = ScriptedService([{"text": "Ship it."}, "[DONE]"])

    with patch("huddle.cli.helpers.create_service", return_value=service):
        result = runner.invoke(app, ["ask", "Review this", "--agent", "Ada", "--config", config_file])

    assert result.exit_code == 0
    assert "You are Ada, a pragmatic engineer." in service.requests[0].system


def test_ask_unknown_agent(config_file):
    with patch("huddle.cli.helpers.create_service", return_value=ScriptedService()):
        result = runner.invoke(app, ["ask", "hi", "--agent", "Linus", "--config", config_file])

    assert result.exit_code == 1
    assert "Unknown agent: Linus" in result.output


def test_ask_reports_failed_turn(config_file):
    service = ScriptedService(GenerationError("model unavailable"))

    with patch("huddle.cli.helpers.create_service", return_value=service):
        result = runner.invoke(app, ["ask", "hi", "--config", config_file])

    assert result.exit_code == 1
    assert "Agent reply failed: model unavailable" in result.output


def test_schedule_new_agent_message_and_send(config_file):
    service = ScriptedService([{"text": "Here is the review."}, "[DONE]"])
    args = ["--at", "2020-01-01T09:00:00", "--new-agent", "--label", "Weekly review", "--user", "alice"]
    added = runner.invoke(app, ["schedule", "add", "Review last week", *args, "--config", config_file])
    listed = runner.invoke(app, ["schedule", "list", "--user", "alice", "--config", config_file])

    with patch("huddle.cli.helpers.create_service", return_value=service):
        sent = runner.invoke(app, ["schedule", "send-due", "--config", config_file])
    after = runner.invoke(app, ["schedule", "list", "--config", config_file])

    assert added.exit_code == 0
    assert "Scheduled" in added.output
    assert "alice" in listed.output
    assert "Sent 1 scheduled message" in sent.output
    assert service.requests[0].turns[-1].content == "Review last week"
    assert "No scheduled messages" in after.output


def test_schedule_add_needs_one_target(config_file):
    neither = runner.invoke(app, ["schedule", "add", "hi", "--at", "2030-01-01", "--config", config_file])
    both = runner.invoke(
        app, ["schedule", "add", "hi", "--at", "2030-01-01", "--to", "c1", "--new-agent", "--config", config_file]
    )

    assert neither.exit_code == 1
    assert both.exit_code == 1
    assert "exactly one of --to or --new-agent" in both.output


def test_schedule_cancel_unknown(config_file):
    result = runner.invoke(app, ["schedule", "cancel", "nope", "--config", config_file])

    assert result.exit_code == 1
    assert "No pending scheduled message: nope" in result.output
