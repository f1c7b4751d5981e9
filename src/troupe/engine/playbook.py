"""
Troupe Playbook Model and Parser

Play/Task data model consumed by the executor, plus a YAML front end that
builds it from playbook files (roles, blocks, includes, handlers).
"""

import itertools
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from troupe.engine.errors import ParseError

# Keys of a task mapping that are not the module name
TASK_KEYWORDS = {
    'name', 'vars', 'tags', 'when', 'register', 'loop', 'loop_control',
    'with_items', 'with_list', 'with_dict', 'notify', 'listen',
    'ignore_errors', 'changed_when', 'failed_when', 'check_mode',
    'become', 'become_user', 'timeout', 'args', 'no_log', 'environment',
    'block', 'rescue', 'always',
}

INLINE_ARG = re.compile(r'(\w+)=(?:"([^"]*)"|\'([^\']*)\'|(\S+))')

_block_ids = itertools.count(1)


@dataclass
class BlockInfo:
    """Identity of a block and where it sits inside its parent block."""

    name: str
    has_rescue: bool = False
    parent: Optional['BlockInfo'] = None
    # Section of the parent block this block belongs to
    parent_section: Optional[str] = None
    id: int = field(default_factory=lambda: next(_block_ids))

    def __hash__(self) -> int:
        return self.id

    def __eq__(self, other: object) -> bool:
        return isinstance(other, BlockInfo) and other.id == self.id


@dataclass(eq=False)
class Task:
    """A single unit of work dispatched to a module (handlers are Tasks too)."""

    name: str
    module: str
    args: Dict[str, Any] = field(default_factory=dict)
    when: Any = None  # str, bool or list of them (AND)
    loop: Any = None  # list, mapping or template string
    loop_var: str = "item"
    index_var: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    notify: List[str] = field(default_factory=list)
    listen: List[str] = field(default_factory=list)
    register: Optional[str] = None
    ignore_errors: bool = False
    changed_when: Any = None
    failed_when: Any = None
    check_mode: Optional[bool] = None  # None = invocation setting
    become: Optional[bool] = None  # None = inherit from play
    become_user: Optional[str] = None
    timeout: Optional[float] = None
    vars: Dict[str, Any] = field(default_factory=dict)
    block_vars: Dict[str, Any] = field(default_factory=dict)
    role_vars: Dict[str, Any] = field(default_factory=dict)
    role_defaults: Dict[str, Any] = field(default_factory=dict)
    block: Optional[BlockInfo] = None
    block_section: Optional[str] = None  # 'block', 'rescue' or 'always'

    def block_chain(self):
        """(block, section) pairs from the innermost block outwards."""
        block, section = self.block, self.block_section
        while block is not None:
            yield block, section
            block, section = block.parent, block.parent_section

    def __repr__(self) -> str:
        return f"Task(name={self.name!r}, module={self.module!r})"


Handler = Task


@dataclass
class Play:
    """Represents a single play."""

    name: str
    hosts: str
    tasks: List[Task] = field(default_factory=list)
    handlers: List[Task] = field(default_factory=list)
    vars: Dict[str, Any] = field(default_factory=dict)
    become: Optional[bool] = None  # None = invocation setting
    become_user: Optional[str] = None
    gather_facts: bool = False
    tags: List[str] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"Play(name={self.name!r}, hosts={self.hosts!r}, tasks={len(self.tasks)})"


class PlaybookParser:
    """
    Parse YAML playbooks into Play and Task objects.

    Blocks, includes and roles are expanded statically into flat task
    lists; block membership and inherited variables travel on each Task.
    """

    def __init__(self, playbook_path: Union[str, Path]):
        self.playbook_path = Path(playbook_path)
        self._base_dir = self.playbook_path.parent

    def parse(self) -> List[Play]:
        """
        Parse the playbook file.

        Raises:
            ParseError: If the playbook is missing or malformed
        """
        if not self.playbook_path.exists():
            raise ParseError(f"Playbook not found: {self.playbook_path}", file_path=str(self.playbook_path))

        data = self._load_yaml(self.playbook_path)
        if data is None:
            return []
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            self._fail("A playbook must be a list of plays")

        return [self.parse_play(entry) for entry in data]

    def parse_play(self, data: Any) -> Play:
        """Build a Play from one parsed play mapping."""
        if not isinstance(data, dict):
            self._fail(f"A play must be a mapping, got {type(data).__name__}")
        if 'hosts' not in data:
            self._fail("Play missing required 'hosts' field")

        play = Play(
            name=data.get('name') or str(data['hosts']),
            hosts=str(data['hosts']),
            vars=self._mapping(data.get('vars'), "play 'vars'"),
            become=data.get('become'),
            become_user=data.get('become_user'),
            gather_facts=bool(data.get('gather_facts', False)),
            tags=_as_list(data.get('tags')),
        )

        for vars_file in _as_list(data.get('vars_files')):
            vars_path = self._base_dir / str(vars_file)
            if not vars_path.is_file():
                self._fail(f"vars_file not found: {vars_file}")
            play.vars.update(self._mapping(self._load_yaml(vars_path), f"vars_file {vars_file}"))

        tasks: List[Task] = []
        tasks.extend(self._parse_task_list(data.get('pre_tasks'), self._base_dir))
        for role_entry in _as_list(data.get('roles')):
            role_tasks, role_handlers = self._load_role(role_entry)
            tasks.extend(role_tasks)
            play.handlers.extend(role_handlers)
        tasks.extend(self._parse_task_list(data.get('tasks'), self._base_dir))
        tasks.extend(self._parse_task_list(data.get('post_tasks'), self._base_dir))
        play.tasks = tasks

        play.handlers.extend(self._parse_task_list(data.get('handlers'), self._base_dir))
        return play

    def _parse_task_list(self, entries: Any, base_dir: Path) -> List[Task]:
        if entries is None:
            return []
        if not isinstance(entries, list):
            self._fail("A task list must be a list")
        tasks: List[Task] = []
        for entry in entries:
            if not isinstance(entry, dict):
                self._fail(f"A task must be a mapping, got {type(entry).__name__}")
            tasks.extend(self._parse_entry(entry, base_dir))
        return tasks

    def _parse_entry(self, data: Dict[str, Any], base_dir: Path) -> List[Task]:
        """Parse a task, block, include or role include into tasks."""
        if 'block' in data:
            return self._parse_block(data, base_dir)
        for key in ('include_tasks', 'import_tasks'):
            if key in data:
                return self._parse_include(data, data[key], base_dir)
        for key in ('include_role', 'import_role'):
            if key in data:
                return self._parse_include_role(data, data[key])
        return [self.parse_task(data)]

    def parse_task(self, data: Dict[str, Any]) -> Task:
        """Build a Task from one parsed task mapping."""
        module_name = None
        module_args: Any = None
        for key, value in data.items():
            if key not in TASK_KEYWORDS:
                module_name, module_args = key, value
                break

        if module_name is None:
            self._fail(f"Task has no module: {sorted(data.keys())}")

        args = _normalize_args(module_args)
        if 'args' in data:
            args.update(self._mapping(data['args'], "task 'args'"))

        loop = None
        if 'loop' in data:
            loop = data['loop']
        elif 'with_items' in data:
            items = data['with_items']
            if isinstance(items, list):
                loop = [x for i in items for x in (i if isinstance(i, list) else [i])]
            else:
                loop = items
        elif 'with_list' in data:
            loop = data['with_list']
        elif 'with_dict' in data:
            loop = data['with_dict']

        loop_control = self._mapping(data.get('loop_control'), "'loop_control'")

        return Task(
            name=data.get('name') or module_name,
            module=module_name,
            args=args,
            when=data.get('when'),
            loop=loop,
            loop_var=loop_control.get('loop_var', 'item'),
            index_var=loop_control.get('index_var'),
            tags=[str(t) for t in _as_list(data.get('tags'))],
            notify=[str(n) for n in _as_list(data.get('notify'))],
            listen=[str(n) for n in _as_list(data.get('listen'))],
            register=data.get('register'),
            ignore_errors=bool(data.get('ignore_errors', False)),
            changed_when=data.get('changed_when'),
            failed_when=data.get('failed_when'),
            check_mode=data.get('check_mode'),
            become=data.get('become'),
            become_user=data.get('become_user'),
            timeout=data.get('timeout'),
            vars=self._mapping(data.get('vars'), "task 'vars'"),
        )

    def _parse_block(self, data: Dict[str, Any], base_dir: Path) -> List[Task]:
        """Expand a block into tasks tagged with their block and section."""
        rescue = data.get('rescue') or []
        info = BlockInfo(name=data.get('name', 'block'), has_rescue=bool(rescue))
        block_vars = self._mapping(data.get('vars'), "block 'vars'")
        inherited = {
            'when': data.get('when'),
            'tags': _as_list(data.get('tags')),
            'become': data.get('become'),
            'become_user': data.get('become_user'),
            'ignore_errors': data.get('ignore_errors'),
        }

        tasks: List[Task] = []
        for section in ('block', 'rescue', 'always'):
            for task in self._parse_task_list(data.get(section), base_dir):
                if task.block is None:
                    task.block, task.block_section = info, section
                else:
                    # Outermost enclosing block of a nested task
                    outer = task.block
                    while outer.parent is not None:
                        outer = outer.parent
                    if outer is not info:
                        outer.parent, outer.parent_section = info, section
                task.block_vars = {**block_vars, **task.block_vars}
                _inherit(task, **inherited)
                tasks.append(task)
        return tasks

    def _parse_include(self, data: Dict[str, Any], target: Any, base_dir: Path) -> List[Task]:
        """Statically inline an include_tasks/import_tasks file."""
        if isinstance(target, dict):
            target = target.get('file')
        if not target:
            self._fail("include_tasks/import_tasks requires a file path")

        path = base_dir / str(target)
        if not path.is_file():
            self._fail(f"Tasks file not found: {target}")

        include_vars = self._mapping(data.get('vars'), "include 'vars'")
        tasks = self._parse_task_list(self._load_yaml(path), path.parent)
        for task in tasks:
            task.role_vars = {**include_vars, **task.role_vars}
            _inherit(task, when=data.get('when'), tags=_as_list(data.get('tags')))
        return tasks

    def _parse_include_role(self, data: Dict[str, Any], target: Any) -> List[Task]:
        if isinstance(target, str):
            entry: Dict[str, Any] = {'role': target}
        elif isinstance(target, dict) and target.get('name'):
            entry = {'role': target['name'], **{k: v for k, v in target.items() if k != 'name'}}
        else:
            self._fail("include_role/import_role requires a role name")
        entry.update(self._mapping(data.get('vars'), "include_role 'vars'"))
        if 'when' in data:
            entry['when'] = data['when']
        if 'tags' in data:
            entry['tags'] = data['tags']
        tasks, _ = self._load_role(entry)
        return tasks

    def _load_role(self, role_entry: Any):
        """
        Load a role's tasks and handlers.

        Role defaults feed the lowest variable layer; role vars and role
        parameters feed the role layer.
        """
        if isinstance(role_entry, str):
            role_name, params = role_entry, {}
        elif isinstance(role_entry, dict):
            role_name = role_entry.get('role') or role_entry.get('name')
            params = {k: v for k, v in role_entry.items() if k not in ('role', 'name')}
        else:
            self._fail(f"Invalid role entry: {role_entry!r}")
        if not role_name:
            self._fail("Role entry must have a 'role' or 'name' key")

        role_path = self._find_role(role_name)
        role_when = params.pop('when', None)
        role_tags = _as_list(params.pop('tags', None))

        defaults = self._optional_mapping(role_path / 'defaults' / 'main.yml')
        role_vars = {**self._optional_mapping(role_path / 'vars' / 'main.yml'), **params}

        tasks_file = role_path / 'tasks' / 'main.yml'
        if not tasks_file.is_file():
            self._fail(f"Role tasks file not found: {tasks_file}")
        tasks = self._parse_task_list(self._load_yaml(tasks_file), tasks_file.parent)

        handlers_file = role_path / 'handlers' / 'main.yml'
        handlers: List[Task] = []
        if handlers_file.is_file():
            handlers = self._parse_task_list(self._load_yaml(handlers_file), handlers_file.parent)

        for task in tasks + handlers:
            task.role_defaults = {**defaults, **task.role_defaults}
            task.role_vars = {**role_vars, **task.role_vars}
        for task in tasks:
            _inherit(task, when=role_when, tags=role_tags)
        return tasks, handlers

    def _find_role(self, role_name: str) -> Path:
        for candidate in (self._base_dir / 'roles' / role_name, Path.cwd() / 'roles' / role_name):
            if candidate.is_dir():
                return candidate
        self._fail(f"Role not found: {role_name}")

    def _load_yaml(self, path: Path) -> Any:
        try:
            return yaml.safe_load(path.read_text(encoding='utf-8'))
        except yaml.YAMLError as e:
            raise ParseError(f"YAML syntax error: {e}", file_path=str(path))

    def _optional_mapping(self, path: Path) -> Dict[str, Any]:
        if not path.is_file():
            return {}
        return self._mapping(self._load_yaml(path), str(path))

    def _mapping(self, value: Any, what: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            self._fail(f"{what} must be a mapping, got {type(value).__name__}")
        return dict(value)

    def _fail(self, message: str):
        raise ParseError(message, file_path=str(self.playbook_path))


def _inherit(task: Task, when: Any = None, tags: Optional[List[Any]] = None,
             become: Optional[bool] = None, become_user: Optional[str] = None,
             ignore_errors: Optional[bool] = None) -> None:
    """Apply keywords of an enclosing block/include/role to a task."""
    if when is not None:
        task.when = _as_list(when) + _as_list(task.when)
    if tags:
        task.tags = list(dict.fromkeys([str(t) for t in tags] + task.tags))
    if become is not None and task.become is None:
        task.become = become
    if become_user and not task.become_user:
        task.become_user = become_user
    if ignore_errors and not task.ignore_errors:
        task.ignore_errors = True


def _normalize_args(args: Any) -> Dict[str, Any]:
    """Module arguments as a mapping; free-form strings go under _raw_params."""
    if args is None:
        return {}
    if isinstance(args, dict):
        return dict(args)
    if isinstance(args, str):
        parsed = {
            m.group(1): m.group(2) if m.group(2) is not None else m.group(3) if m.group(3) is not None else m.group(4)
            for m in INLINE_ARG.finditer(args)
        }
        if parsed and INLINE_ARG.sub('', args).strip() == '':
            return parsed
        return {'_raw_params': args}
    return {'_raw_params': args}


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]
