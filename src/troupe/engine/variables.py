"""
Troupe Variable Scopes

Fixed-precedence variable layering. Highest precedence first:

    extra > task > block > role > facts > registered > play > host > group > defaults

Each task invocation gets an immutable, flattened snapshot.
"""

import copy
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from troupe.engine.inventory import Host, InventoryManager
    from troupe.engine.playbook import Play, Task
    from troupe.engine.state import RunState


# Highest precedence first
LAYER_ORDER: Tuple[str, ...] = (
    'extra',
    'task',
    'block',
    'role',
    'facts',
    'registered',
    'play',
    'host',
    'group',
    'defaults',
)

MAGIC_VARS = frozenset((
    'inventory_hostname',
    'inventory_hostname_short',
    'group_names',
    'groups',
    'hostvars',
    'troupe_check_mode',
))


def merge_hash(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = merge_hash(current, value)
        else:
            result[key] = value
    return result


class VariableScope:
    """
    Ordered stack of named variable layers.

    Layers are plain mappings. Flattening applies them from lowest to
    highest precedence, replacing values key by key, or merging nested
    mappings when ``hash_behaviour`` is "merge".
    """

    def __init__(
        self,
        layers: Optional[Mapping[str, Mapping[str, Any]]] = None,
        hash_behaviour: str = 'replace',
        magic: Optional[Mapping[str, Any]] = None,
    ):
        layers = layers or {}
        unknown = set(layers) - set(LAYER_ORDER)
        if unknown:
            raise ValueError(f"Unknown variable layer(s): {', '.join(sorted(unknown))}")
        self.layers: Dict[str, Mapping[str, Any]] = {
            name: layers.get(name) or {} for name in LAYER_ORDER
        }
        self.hash_behaviour = hash_behaviour
        self.magic: Mapping[str, Any] = magic or {}

    def layer(self, name: str) -> Mapping[str, Any]:
        return self.layers[name]

    def source_of(self, key: str) -> Optional[str]:
        """Name of the highest-precedence layer defining ``key``."""
        if key in self.magic:
            return 'magic'
        for name in LAYER_ORDER:
            if key in self.layers[name]:
                return name
        return None

    def flatten(self) -> Mapping[str, Any]:
        """Merge every layer into one read-only mapping."""
        merged: Dict[str, Any] = {}
        for name in reversed(LAYER_ORDER):
            layer = self.layers[name]
            if not layer:
                continue
            if self.hash_behaviour == 'merge':
                merged = merge_hash(merged, layer)
            else:
                merged.update(layer)
        merged = copy.deepcopy(merged)
        merged.update(self.magic)
        return MappingProxyType(merged)


class HostVars(Mapping):
    """
    Read-only view of every host's variables, computed on access.

    Exposes inventory, fact and registered variables of any host so that
    templates can read other hosts' data without touching their writers.
    """

    def __init__(self, manager: 'VariableManager'):
        self._manager = manager

    def __getitem__(self, host_name: str) -> Mapping[str, Any]:
        host = self._manager.inventory.get_host(host_name)
        if host is None:
            raise KeyError(host_name)
        return self._manager.get_scope(host, magic=False).flatten()

    def __iter__(self) -> Iterator[str]:
        return iter(self._manager.inventory.hosts)

    def __len__(self) -> int:
        return len(self._manager.inventory.hosts)


class VariableManager:
    """Builds per-host, per-task variable scopes."""

    def __init__(
        self,
        inventory: 'InventoryManager',
        run_state: Optional['RunState'] = None,
        extra_vars: Optional[Dict[str, Any]] = None,
        hash_behaviour: str = 'replace',
        check_mode: bool = False,
    ):
        self.inventory = inventory
        self.run_state = run_state
        self.extra_vars = dict(extra_vars or {})
        self.hash_behaviour = hash_behaviour
        self.check_mode = check_mode
        self.hostvars = HostVars(self)

    def get_scope(
        self,
        host: 'Host',
        play: Optional['Play'] = None,
        task: Optional['Task'] = None,
        magic: bool = True,
    ) -> VariableScope:
        """Collect the ten layers for a host (and optionally a play/task)."""
        facts: Mapping[str, Any] = {}
        registered: Mapping[str, Any] = {}
        if self.run_state is not None:
            facts = self.run_state.facts.get_facts(host.name)
            registered = self.run_state.facts.get_registered(host.name)

        layers = {
            'extra': self.extra_vars,
            'task': task.vars if task else {},
            'block': task.block_vars if task else {},
            'role': task.role_vars if task else {},
            'facts': facts,
            'registered': registered,
            'play': play.vars if play else {},
            'host': host.vars,
            'group': self.inventory.get_group_vars(host),
            'defaults': task.role_defaults if task else {},
        }
        return VariableScope(
            layers,
            hash_behaviour=self.hash_behaviour,
            magic=self._magic_vars(host) if magic else None,
        )

    def get_vars(
        self,
        host: 'Host',
        play: Optional['Play'] = None,
        task: Optional['Task'] = None,
    ) -> Mapping[str, Any]:
        """Flattened, immutable variable snapshot for one task invocation."""
        return self.get_scope(host, play, task).flatten()

    def _magic_vars(self, host: 'Host') -> Dict[str, Any]:
        return {
            'inventory_hostname': host.name,
            'inventory_hostname_short': host.name.split('.')[0],
            'group_names': self.inventory.group_names(host),
            'groups': self.inventory.groups_mapping(),
            'hostvars': self.hostvars,
            'troupe_check_mode': self.check_mode,
        }

