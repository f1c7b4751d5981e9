"""
Tests for the playbook runner: exit codes, limits and the JSON report.
"""

import asyncio
import json
from pathlib import Path

import pytest

from troupe.config import RunConfig
from troupe.engine.errors import ExitCode, PatternResolutionError
from troupe.engine.playbook import Task
from troupe.engine.runner import PlaybookRunner

from fakes import CALLS, FakeConnections, labels, play, record

INVENTORY = {
    "hosts": {
        "web1": {"groups": ["webservers"]},
        "web2": {"groups": ["webservers"]},
        "db1": {"groups": ["dbservers"]},
    },
}


def write_playbook(tmp_path: Path, content: str) -> Path:
    playbook_file = tmp_path / "site.yml"
    playbook_file.write_text(content)
    return playbook_file


def runner_for(playbooks, connections=None, **config):
    return PlaybookRunner(
        INVENTORY,
        playbooks,
        config=RunConfig().merged(json_output=True, **config),
        connection_factory=connections or FakeConnections(),
    )


class TestExitCodes:
    """Test the process exit code for each outcome."""

    def test_success(self, tmp_path: Path, capsys):
        playbook_file = write_playbook(tmp_path, """
- hosts: webservers
  tasks:
    - name: record it
      record: {label: a, changed: true}
""")
        assert runner_for([playbook_file]).run() == ExitCode.SUCCESS

        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "success"
        assert report["playbook"] == str(playbook_file)
        assert report["totals"]["changed"] == 2
        assert sorted(t["host"] for t in report["plays"][0]["tasks"]) == ["web1", "web2"]

    def test_host_failure(self, capsys):
        p = play(record("a", fail="{{ inventory_hostname == 'web1' }}"))
        assert runner_for([p]).run() == ExitCode.HOST_FAILED

        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "partial-failure"
        assert report["stats"]["web1"]["failed"] == 1
        assert labels("db1") == ["a"]

    def test_unreachable_only(self, capsys):
        connections = FakeConnections(unreachable={"db1"})
        assert runner_for([play(record("a"))], connections).run() == ExitCode.HOST_UNREACHABLE

    def test_unknown_pattern_runs_nothing(self, capsys):
        plays = [play(record("a")), play(record("b"), hosts="webservers:cache")]

        assert runner_for(plays).run() == ExitCode.PARSE_ERROR

        error = json.loads(capsys.readouterr().out)
        assert error["error_type"] == "pattern_error"
        assert "cache" in error["message"]
        assert CALLS == []

    def test_bad_limit(self, capsys):
        assert runner_for([play(record("a"))], limit="nosuchhost").run() == ExitCode.PARSE_ERROR

    def test_parse_error(self, tmp_path: Path, capsys):
        playbook_file = write_playbook(tmp_path, "- tasks: []\n")

        assert runner_for([playbook_file]).run() == ExitCode.PARSE_ERROR
        assert json.loads(capsys.readouterr().out)["error_type"] == "parse_error"

    def test_no_plays(self, capsys):
        assert runner_for([]).run() == ExitCode.PARSE_ERROR

    def test_plain_output(self, capsys):
        runner = PlaybookRunner(INVENTORY, [play(record("a"))], connection_factory=FakeConnections())

        assert runner.run() == ExitCode.SUCCESS

        out = capsys.readouterr().out
        assert "PLAY [test play]" in out
        assert "ok: [web1] a" in out
        assert "PLAY RECAP" in out


class TestRunnerBehaviour:
    """Test limits, empty plays and cancellation."""

    def test_limit_restricts_hosts(self, capsys):
        assert runner_for([play(record("a"))], limit="webservers:!web2").run() == ExitCode.SUCCESS
        assert [host for host, _ in CALLS] == ["web1"]

    def test_play_without_hosts_is_not_an_error(self, capsys):
        plays = [play(record("a"), hosts="web*:&dbservers"), play(record("b"), hosts="db1")]

        assert runner_for(plays).run() == ExitCode.SUCCESS
        assert CALLS == [("db1", "b")]

    def test_facts_carry_across_playbooks(self, tmp_path: Path, capsys):
        first = tmp_path / "first.yml"
        first.write_text("- hosts: db1\n  tasks:\n    - set_fact: {port: 5432}\n")
        second = tmp_path / "second.yml"
        second.write_text("- hosts: db1\n  tasks:\n    - record: {label: '{{ port }}'}\n")

        assert runner_for([first, second]).run() == ExitCode.SUCCESS
        assert labels("db1") == [5432]

    @pytest.mark.asyncio
    async def test_cancel(self):
        runner = runner_for([play(record("a"), Task(name="sleep", module="sleep", args={"seconds": 5}))])
        asyncio.get_running_loop().call_later(0.05, runner.cancel)

        report = await runner.run_async()

        assert report.cancelled
        assert report.exit_code == ExitCode.CANCELLED

    def test_pattern_error_type(self):
        runner = runner_for([play(record("a"), hosts="ghost")])
        with pytest.raises(PatternResolutionError):
            asyncio.run(runner.run_async())
