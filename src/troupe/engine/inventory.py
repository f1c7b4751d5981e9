"""
Troupe Inventory

Hosts, groups and their variables. Inventories are built from a plain
mapping (``InventoryManager.from_dict``) or loaded from YAML/INI files with
optional host_vars/ and group_vars/ directories.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from troupe.engine.errors import InventoryError

logger = logging.getLogger(__name__)

IMPLICIT_GROUPS = ('all', 'ungrouped')


class Host:
    """Represents a single host in the inventory."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = dict(variables) if variables else {}
        # Direct memberships in insertion order
        self._groups: List[str] = []

    @property
    def ansible_host(self) -> str:
        """Address to connect to (ansible_host or name)."""
        return self.vars.get('ansible_host', self.name)

    @property
    def ansible_port(self) -> int:
        return int(self.vars.get('ansible_port', 22))

    @property
    def ansible_user(self) -> Optional[str]:
        return self.vars.get('ansible_user')

    @property
    def ansible_connection(self) -> Optional[str]:
        return self.vars.get('ansible_connection')

    @property
    def groups(self) -> List[str]:
        """Group names this host was placed in directly."""
        return list(self._groups)

    def add_group(self, group_name: str) -> None:
        if group_name not in self._groups:
            self._groups.append(group_name)

    def set_variable(self, key: str, value: Any) -> None:
        self.vars[key] = value

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self.vars.get(key, default)

    def __repr__(self) -> str:
        return f"Host({self.name!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Host):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)


class Group:
    """Represents a group of hosts, possibly nested under parent groups."""

    def __init__(self, name: str, variables: Optional[Dict[str, Any]] = None):
        self.name = name
        self.vars: Dict[str, Any] = dict(variables) if variables else {}
        self._hosts: List[str] = []
        self._children: List[str] = []
        self._parents: List[str] = []

    @property
    def hosts(self) -> List[str]:
        """Host names directly in this group."""
        return list(self._hosts)

    @property
    def children(self) -> List[str]:
        return list(self._children)

    @property
    def parents(self) -> List[str]:
        return list(self._parents)

    def add_host(self, host_name: str) -> None:
        if host_name not in self._hosts:
            self._hosts.append(host_name)

    def add_child(self, group_name: str) -> None:
        if group_name not in self._children:
            self._children.append(group_name)

    def add_parent(self, group_name: str) -> None:
        if group_name not in self._parents:
            self._parents.append(group_name)

    def set_variable(self, key: str, value: Any) -> None:
        self.vars[key] = value

    def __repr__(self) -> str:
        return f"Group({self.name!r}, hosts={len(self._hosts)})"


class InventoryManager:
    """
    Holds hosts and groups and answers membership questions.

    Hosts and groups keep insertion order so that pattern resolution and
    group-variable merging are deterministic.
    """

    # Host range expansion: web[01:10].example.com
    RANGE_PATTERN = re.compile(r'\[(\d+):(\d+)\]')
    # INI inline variable assignment: key=value
    VAR_PATTERN = re.compile(r'(\w+)=(?:"([^"]*)"|\'([^\']*)\'|(\S+))')

    def __init__(self):
        self.hosts: Dict[str, Host] = {}
        self.groups: Dict[str, Group] = {}
        self.source: Optional[Path] = None

        for name in IMPLICIT_GROUPS:
            self.groups[name] = Group(name)

    # ------------------------------------------------------------------
    # Construction

    def add_group(
        self,
        name: str,
        variables: Optional[Dict[str, Any]] = None,
        parents: Iterable[str] = (),
    ) -> Group:
        """Create (or update) a group and link it under its parents."""
        group = self.groups.get(name)
        if group is None:
            group = self.groups[name] = Group(name)
        if variables:
            group.vars.update(variables)
        for parent in parents:
            self.add_child(parent, name)
        return group

    def add_child(self, parent: str, child: str) -> None:
        """Nest group ``child`` under group ``parent``."""
        if parent == child:
            raise InventoryError(f"Group '{parent}' cannot be its own child")
        self.add_group(parent).add_child(child)
        self.add_group(child).add_parent(parent)

    def add_host(
        self,
        name: str,
        variables: Optional[Dict[str, Any]] = None,
        groups: Iterable[str] = (),
    ) -> Host:
        """Create (or update) a host and place it in ``groups``."""
        host = self.hosts.get(name)
        if host is None:
            host = self.hosts[name] = Host(name)
        if variables:
            host.vars.update(variables)
        for group_name in groups:
            self.add_group(group_name).add_host(name)
            host.add_group(group_name)
        return host

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InventoryManager':
        """
        Build an inventory from a plain mapping.

        Layout::

            {
                "hosts": {"web1": {"groups": ["webservers"], "vars": {...}}},
                "groups": {"webservers": {"parents": ["prod"], "vars": {...}}},
            }

        Groups may also list ``children`` and ``hosts``.
        """
        if not isinstance(data, dict):
            raise InventoryError("Inventory data must be a mapping")

        inventory = cls()

        hosts_data = data.get('hosts') or {}
        if not isinstance(hosts_data, dict):
            raise InventoryError("'hosts' must be a mapping")
        for host_name, spec in hosts_data.items():
            spec = spec or {}
            if not isinstance(spec, dict):
                raise InventoryError(f"Host '{host_name}' must be a mapping")
            inventory.add_host(
                host_name,
                variables=_require_mapping(spec.get('vars'), f"vars of host '{host_name}'"),
                groups=_as_list(spec.get('groups')),
            )

        groups_data = data.get('groups') or {}
        if not isinstance(groups_data, dict):
            raise InventoryError("'groups' must be a mapping")
        for group_name, spec in groups_data.items():
            spec = spec or {}
            if not isinstance(spec, dict):
                raise InventoryError(f"Group '{group_name}' must be a mapping")
            inventory.add_group(
                group_name,
                variables=_require_mapping(spec.get('vars'), f"vars of group '{group_name}'"),
                parents=_as_list(spec.get('parents')),
            )
            for child in _as_list(spec.get('children')):
                inventory.add_child(group_name, child)
            for host_name in _as_list(spec.get('hosts')):
                inventory.add_host(host_name, groups=[group_name])

        return inventory.finalize()

    def finalize(self) -> 'InventoryManager':
        """Attach implicit groups and validate the group graph."""
        for name in list(self.groups):
            if name != 'all' and not self.groups[name].parents:
                self.groups['all'].add_child(name)
                self.groups[name].add_parent('all')
        # 'all' lists its children but is never anybody's child
        all_group = self.groups['all']
        all_group._children = [c for c in all_group._children if c != 'all']

        for host_name, host in self.hosts.items():
            explicit = [g for g in host.groups if g not in IMPLICIT_GROUPS]
            if not explicit:
                self.groups['ungrouped'].add_host(host_name)
                host.add_group('ungrouped')

        self._check_acyclic()
        return self

    def _check_acyclic(self) -> None:
        """Reject parent/child cycles, which would make inheritance endless."""
        state: Dict[str, int] = {}  # 1 = visiting, 2 = done

        def visit(name: str, path: List[str]) -> None:
            mark = state.get(name)
            if mark == 2:
                return
            if mark == 1:
                cycle = path[path.index(name):] + [name]
                raise InventoryError(f"Group cycle detected: {' -> '.join(cycle)}")
            state[name] = 1
            for child in self.groups[name].children:
                if child in self.groups:
                    visit(child, path + [name])
            state[name] = 2

        for name in self.groups:
            visit(name, [])

    # ------------------------------------------------------------------
    # Queries

    def get_hosts(self, pattern: str = "all") -> List[Host]:
        """Resolve a host pattern; see troupe.engine.patterns."""
        from troupe.engine.patterns import resolve
        return resolve(pattern, self)

    def get_host(self, name: str) -> Optional[Host]:
        return self.hosts.get(name)

    def group_hosts(self, group_name: str) -> List[Host]:
        """
        Hosts of a group and its descendants.

        Direct members come first in insertion order, then each child group
        depth-first in insertion order.
        """
        if group_name == 'all':
            return list(self.hosts.values())

        names: Dict[str, None] = {}
        seen_groups = set()

        def walk(name: str) -> None:
            if name in seen_groups or name not in self.groups:
                return
            seen_groups.add(name)
            group = self.groups[name]
            for host_name in group.hosts:
                names.setdefault(host_name, None)
            for child in group.children:
                walk(child)

        walk(group_name)
        return [self.hosts[n] for n in names if n in self.hosts]

    def group_depth(self, group_name: str) -> int:
        """Longest distance from 'all' down to the group."""
        if group_name == 'all' or group_name not in self.groups:
            return 0
        parents = self.groups[group_name].parents or ['all']
        return 1 + max(self.group_depth(p) for p in parents)

    def get_host_groups(self, host: Union[Host, str]) -> List[Group]:
        """
        Every group a host belongs to, directly or through nesting.

        Ordered by ascending depth then name, the order in which group
        variables are applied (later entries win).
        """
        host_obj = self.hosts[host] if isinstance(host, str) else host
        found: Dict[str, None] = {}
        pending = list(host_obj.groups) + ['all']
        while pending:
            name = pending.pop()
            if name in found or name not in self.groups:
                continue
            found[name] = None
            pending.extend(self.groups[name].parents)
        return sorted(
            (self.groups[n] for n in found),
            key=lambda g: (self.group_depth(g.name), g.name),
        )

    def group_names(self, host: Union[Host, str]) -> List[str]:
        """Sorted group names for a host, excluding 'all'."""
        return sorted(g.name for g in self.get_host_groups(host) if g.name != 'all')

    def groups_mapping(self) -> Dict[str, List[str]]:
        """Group name -> host names, including descendants."""
        return {name: [h.name for h in self.group_hosts(name)] for name in self.groups}

    def get_group_vars(self, host: Union[Host, str]) -> Dict[str, Any]:
        """Group variables for a host, deeper groups overriding ancestors."""
        merged: Dict[str, Any] = {}
        for group in self.get_host_groups(host):
            merged.update(group.vars)
        return merged

    # ------------------------------------------------------------------
    # File loading

    def parse(self, source: Union[str, Path]) -> 'InventoryManager':
        """
        Load an inventory file or directory.

        Args:
            source: Path to a YAML/JSON/INI file or a directory of them

        Returns:
            self for chaining
        """
        source_path = Path(source)
        if not source_path.exists():
            raise InventoryError(f"Inventory path does not exist: {source_path}")

        self.source = source_path
        if source_path.is_dir():
            base_dir = source_path
            for item in sorted(source_path.iterdir()):
                if item.is_file() and not item.name.startswith('.') and \
                        item.suffix not in ('.bak', '.orig', '.pyc', '.md'):
                    self._parse_file(item)
        else:
            base_dir = source_path.parent
            self._parse_file(source_path)

        self._load_vars_dirs(base_dir)
        logger.debug("Loaded inventory %s: %d hosts, %d groups",
                     source_path, len(self.hosts), len(self.groups))
        return self.finalize()

    def _parse_file(self, path: Path) -> None:
        content = path.read_text(encoding='utf-8')
        if path.suffix in ('.yml', '.yaml'):
            self._load_yaml_data(_safe_yaml(content, path), path)
        elif path.suffix == '.json':
            try:
                self._load_yaml_data(json.loads(content), path)
            except json.JSONDecodeError as e:
                raise InventoryError(f"Invalid JSON: {e}", file_path=str(path))
        elif content.lstrip().startswith(('---', 'all:')):
            self._load_yaml_data(_safe_yaml(content, path), path)
        else:
            self._load_ini(content, path)

    def _load_yaml_data(self, data: Any, path: Path) -> None:
        if data is None:
            return
        if not isinstance(data, dict):
            raise InventoryError("YAML inventory must be a mapping of groups", file_path=str(path))
        for group_name, group_data in data.items():
            self._load_yaml_group(group_name, group_data or {}, path)

    def _load_yaml_group(self, name: str, data: Any, path: Path) -> None:
        if not isinstance(data, dict):
            raise InventoryError(f"Group '{name}' must be a mapping", file_path=str(path))
        group = self.add_group(name, variables=data.get('vars') or {})

        hosts = data.get('hosts') or {}
        if isinstance(hosts, list):
            hosts = {h: None for h in hosts}
        for pattern, host_vars in hosts.items():
            for host_name in self._expand_range(str(pattern)):
                self.add_host(host_name, variables=host_vars or {}, groups=[group.name])

        for child_name, child_data in (data.get('children') or {}).items():
            self.add_child(name, child_name)
            self._load_yaml_group(child_name, child_data or {}, path)

    def _load_ini(self, content: str, path: Path) -> None:
        group_name: Optional[str] = None
        section = 'hosts'

        for line_num, raw_line in enumerate(content.splitlines(), 1):
            line = raw_line.strip()
            if not line or line.startswith(('#', ';')):
                continue

            if line.startswith('[') and line.endswith(']'):
                header = line[1:-1].strip()
                group_name, _, suffix = header.partition(':')
                section = suffix or 'hosts'
                if section not in ('hosts', 'vars', 'children'):
                    raise InventoryError(
                        f"Unknown section ':{section}' at line {line_num}", file_path=str(path)
                    )
                self.add_group(group_name)
                continue

            if section == 'vars':
                key, sep, value = line.partition('=')
                if not sep:
                    raise InventoryError(
                        f"Expected key=value at line {line_num}", file_path=str(path)
                    )
                self.groups[group_name].set_variable(key.strip(), _coerce(value.strip().strip('"\'')))
            elif section == 'children':
                self.add_child(group_name, line)
            else:
                target, _, rest = line.partition(' ')
                variables = {
                    m.group(1): _coerce(m.group(2) or m.group(3) or m.group(4))
                    for m in self.VAR_PATTERN.finditer(rest)
                }
                groups = [group_name] if group_name else []
                for host_name in self._expand_range(target):
                    self.add_host(host_name, variables=variables, groups=groups)

    def _expand_range(self, pattern: str) -> List[str]:
        """Expand host ranges like web[01:03].example.com."""
        match = self.RANGE_PATTERN.search(pattern)
        if not match:
            return [pattern]

        start, end = int(match.group(1)), int(match.group(2))
        width = len(match.group(1))
        names: List[str] = []
        for i in range(start, end + 1):
            expanded = pattern[:match.start()] + str(i).zfill(width) + pattern[match.end():]
            names.extend(self._expand_range(expanded))
        return names

    def _load_vars_dirs(self, base_dir: Path) -> None:
        """Apply group_vars/ and host_vars/ next to the inventory."""
        for item, data in _iter_vars_dir(base_dir / 'group_vars'):
            self.add_group(item, variables=data)
        for item, data in _iter_vars_dir(base_dir / 'host_vars'):
            if item in self.hosts:
                self.hosts[item].vars.update(data)
            else:
                logger.warning("host_vars for unknown host %s ignored", item)


Inventory = InventoryManager


def _iter_vars_dir(directory: Path):
    """Yield (name, vars) for each file or sub-directory of a vars dir."""
    if not directory.is_dir():
        return
    for item in sorted(directory.iterdir()):
        if item.is_file() and item.suffix in ('.yml', '.yaml'):
            yield item.stem, _load_vars_file(item)
        elif item.is_dir():
            merged: Dict[str, Any] = {}
            for vars_file in sorted(item.iterdir()):
                if vars_file.suffix in ('.yml', '.yaml'):
                    merged.update(_load_vars_file(vars_file))
            yield item.name, merged


def _load_vars_file(path: Path) -> Dict[str, Any]:
    data = _safe_yaml(path.read_text(encoding='utf-8'), path) or {}
    if not isinstance(data, dict):
        raise InventoryError("Variables file must contain a mapping", file_path=str(path))
    return data


def _safe_yaml(content: str, path: Path) -> Any:
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise InventoryError(f"YAML syntax error: {e}", file_path=str(path))


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _require_mapping(value: Any, what: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InventoryError(f"{what} must be a mapping")
    return value


def _coerce(value: str) -> Any:
    """Convert an INI value string to bool/None/int/float where it reads as one."""
    lowered = value.lower()
    if lowered in ('true', 'yes'):
        return True
    if lowered in ('false', 'no'):
        return False
    if lowered in ('null', 'none', '~'):
        return None
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            pass
    return value
