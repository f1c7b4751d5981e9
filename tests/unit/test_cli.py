"""Unit tests for CLI modules."""

import json
from pathlib import Path

import pytest

from troupe import __version__
from troupe.cli import inventory, playbook
from troupe.engine.errors import ConfigError


@pytest.fixture
def inventory_file(tmp_path: Path) -> Path:
    path = tmp_path / "hosts.ini"
    path.write_text("""
localhost ansible_connection=local

[webservers]
web1 http_port=80
web2

[dbservers]
db1

[prod:children]
webservers
dbservers
""")
    return path


class TestPlaybookCLI:
    """Tests for troupe-playbook."""

    def test_create_parser(self):
        parser = playbook.create_parser()
        assert parser.prog == "troupe-playbook"

    def test_version_string(self):
        assert __version__ in playbook.get_version_string()

    def test_no_args_shows_help(self, capsys):
        assert playbook.main([]) == 0
        assert "usage" in capsys.readouterr().out

    def test_inventory_required(self, tmp_path: Path, capsys):
        assert playbook.main([str(tmp_path / "site.yml")]) == 3
        assert "Inventory" in capsys.readouterr().err

    def test_parse_extra_vars(self, tmp_path: Path):
        vars_file = tmp_path / "vars.yml"
        vars_file.write_text("region: eu\n")

        result = playbook.parse_extra_vars([
            "port=8080 name=web",
            '{"debug": true}',
            f"@{vars_file}",
        ])

        assert result == {"port": 8080, "name": "web", "debug": True, "region": "eu"}

    @pytest.mark.parametrize("value", ["novalue", "{bad json", "@/does/not/exist.yml"])
    def test_parse_extra_vars_errors(self, value):
        with pytest.raises(ConfigError):
            playbook.parse_extra_vars([value])

    def test_missing_config_file(self, inventory_file: Path, tmp_path: Path, capsys):
        code = playbook.main(["-i", str(inventory_file), "-c", str(tmp_path / "nope.yml"), "site.yml"])
        assert code == 1

    def test_run_local_playbook(self, inventory_file: Path, tmp_path: Path, capsys):
        playbook_file = tmp_path / "site.yml"
        playbook_file.write_text("""
- hosts: localhost
  tasks:
    - name: say hello
      debug:
        msg: "hello {{ who }}"
""")

        code = playbook.main([
            "-i", str(inventory_file),
            "-e", "who=world",
            "--json",
            str(playbook_file),
        ])

        assert code == 0
        report = json.loads(capsys.readouterr().out)
        task = report["plays"][0]["tasks"][0]
        assert task["host"] == "localhost"
        assert task["msg"] == "hello world"

    def test_bad_pattern_exit_code(self, inventory_file: Path, tmp_path: Path, capsys):
        playbook_file = tmp_path / "site.yml"
        playbook_file.write_text("- hosts: ghosts\n  tasks:\n    - debug: {msg: hi}\n")

        assert playbook.main(["-i", str(inventory_file), str(playbook_file)]) == 3


class TestInventoryCLI:
    """Tests for troupe-inventory."""

    def test_create_parser(self):
        parser = inventory.create_parser()
        assert parser.prog == "troupe-inventory"

    def test_list(self, inventory_file: Path, capsys):
        assert inventory.main(["-i", str(inventory_file), "--list"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["_meta"]["hostvars"]["web1"]["http_port"] == 80
        assert data["webservers"]["hosts"] == ["web1", "web2"]
        assert data["prod"]["children"] == ["webservers", "dbservers"]
        assert data["ungrouped"]["hosts"] == ["localhost"]

    def test_host(self, inventory_file: Path, capsys):
        assert inventory.main(["-i", str(inventory_file), "--host", "web1"]) == 0
        assert json.loads(capsys.readouterr().out) == {"http_port": 80}

    def test_unknown_host(self, inventory_file: Path, capsys):
        assert inventory.main(["-i", str(inventory_file), "--host", "nope"]) == 3

    def test_graph(self, inventory_file: Path, capsys):
        assert inventory.main(["-i", str(inventory_file), "--graph", "prod"]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "@prod:"
        assert "  |--@webservers:" in lines
        assert "    |--web1" in lines

    def test_pattern(self, inventory_file: Path, capsys):
        assert inventory.main(["-i", str(inventory_file), "--pattern", "prod:!web2"]) == 0
        assert capsys.readouterr().out.split() == ["web1", "db1"]

    def test_bad_pattern(self, inventory_file: Path, capsys):
        assert inventory.main(["-i", str(inventory_file), "--pattern", "ghost"]) == 3
