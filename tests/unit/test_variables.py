"""
Tests for variable layering, hash merging and magic variables.
"""

import pytest

from troupe.engine.inventory import InventoryManager
from troupe.engine.playbook import Play, Task
from troupe.engine.state import RunState
from troupe.engine.variables import LAYER_ORDER, VariableManager, VariableScope, merge_hash


@pytest.fixture
def inv() -> InventoryManager:
    return InventoryManager.from_dict({
        "hosts": {
            "web1.example.com": {
                "groups": ["webservers"],
                "vars": {"port": 8081, "source": "host"},
            },
            "db1": {"groups": ["dbservers"]},
        },
        "groups": {
            "webservers": {"vars": {"port": 80, "source": "group", "app": {"name": "shop", "workers": 2}}},
        },
    })


class TestVariableScope:
    """Test flattening of named layers."""

    def test_precedence_order(self):
        """Every layer overrides the ones after it in LAYER_ORDER."""
        layers = {name: {"x": name} for name in LAYER_ORDER}
        assert VariableScope(layers).flatten()["x"] == "extra"

        for i, name in enumerate(LAYER_ORDER[:-1]):
            lower = {n: {"x": n} for n in LAYER_ORDER[i:]}
            assert VariableScope(lower).flatten()["x"] == name

    def test_source_of(self):
        scope = VariableScope({"play": {"a": 1}, "group": {"a": 0, "b": 2}}, magic={"inventory_hostname": "h"})
        assert scope.source_of("a") == "play"
        assert scope.source_of("b") == "group"
        assert scope.source_of("inventory_hostname") == "magic"
        assert scope.source_of("missing") is None

    def test_replace_is_default(self):
        scope = VariableScope({
            "play": {"app": {"workers": 4}},
            "group": {"app": {"name": "shop", "workers": 2}},
        })
        assert scope.flatten()["app"] == {"workers": 4}

    def test_hash_merge(self):
        scope = VariableScope(
            {
                "play": {"app": {"workers": 4}},
                "group": {"app": {"name": "shop", "workers": 2}},
            },
            hash_behaviour="merge",
        )
        assert scope.flatten()["app"] == {"name": "shop", "workers": 4}

    def test_flatten_is_read_only(self):
        flat = VariableScope({"play": {"a": 1}}).flatten()
        with pytest.raises(TypeError):
            flat["a"] = 2

    def test_flatten_copies_values(self):
        """Mutating a snapshot never reaches the layer it came from."""
        play_vars = {"items": [1, 2]}
        flat = VariableScope({"play": play_vars}).flatten()
        flat["items"].append(3)
        assert play_vars["items"] == [1, 2]

    def test_unknown_layer(self):
        with pytest.raises(ValueError, match="Unknown variable layer"):
            VariableScope({"bogus": {}})

    def test_merge_hash_nested(self):
        merged = merge_hash({"a": {"b": {"c": 1, "d": 2}}}, {"a": {"b": {"c": 3}}, "e": 4})
        assert merged == {"a": {"b": {"c": 3, "d": 2}}, "e": 4}


class TestVariableManager:
    """Test per-host, per-task scopes."""

    def test_host_beats_group(self, inv):
        variables = VariableManager(inv)
        scope = variables.get_vars(inv.get_host("web1.example.com"))
        assert scope["port"] == 8081
        assert scope["source"] == "host"

    def test_extra_beats_everything(self, inv):
        variables = VariableManager(inv, extra_vars={"port": 9000})
        task = Task(name="t", module="debug", vars={"port": 1})
        play = Play(name="p", hosts="all", vars={"port": 2})
        scope = variables.get_vars(inv.get_host("web1.example.com"), play, task)
        assert scope["port"] == 9000

    def test_task_block_role_layers(self, inv):
        variables = VariableManager(inv)
        task = Task(
            name="t",
            module="debug",
            block_vars={"a": "block", "b": "block"},
            role_vars={"a": "role", "b": "role", "c": "role"},
            role_defaults={"a": "default", "d": "default"},
            vars={"a": "task"},
        )
        scope = variables.get_vars(inv.get_host("db1"), None, task)
        assert (scope["a"], scope["b"], scope["c"], scope["d"]) == ("task", "block", "role", "default")

    def test_facts_beat_registered_and_play(self, inv):
        state = RunState()
        state.facts.set_fact("db1", "version", "fact")
        state.facts.register("db1", "version", {"rc": 0})
        state.facts.register("db1", "out", {"rc": 1})
        variables = VariableManager(inv, run_state=state)
        play = Play(name="p", hosts="all", vars={"version": "play", "out": "play"})

        scope = variables.get_vars(inv.get_host("db1"), play)

        assert scope["version"] == "fact"
        assert scope["out"] == {"rc": 1}

    def test_magic_vars(self, inv):
        variables = VariableManager(inv, check_mode=True)
        scope = variables.get_vars(inv.get_host("web1.example.com"))

        assert scope["inventory_hostname"] == "web1.example.com"
        assert scope["inventory_hostname_short"] == "web1"
        assert scope["group_names"] == ["webservers"]
        assert scope["groups"]["webservers"] == ["web1.example.com"]
        assert scope["troupe_check_mode"] is True

    def test_magic_vars_cannot_be_overridden(self, inv):
        variables = VariableManager(inv, extra_vars={"inventory_hostname": "spoofed"})
        scope = variables.get_vars(inv.get_host("db1"))
        assert scope["inventory_hostname"] == "db1"

    def test_hostvars_reads_other_hosts(self, inv):
        state = RunState()
        state.facts.set_fact("db1", "db_version", "15")
        variables = VariableManager(inv, run_state=state)

        scope = variables.get_vars(inv.get_host("web1.example.com"))

        assert scope["hostvars"]["db1"]["db_version"] == "15"
        assert scope["hostvars"]["web1.example.com"]["port"] == 8081
        assert set(scope["hostvars"]) == {"web1.example.com", "db1"}
        with pytest.raises(KeyError):
            scope["hostvars"]["nope"]
