"""
Troupe Module Base

Base class and registry for all modules. The executor sees every module
through one contract: ``await module.execute(args, scope, check_mode)``
returning a ModuleResult.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Type

from troupe.engine.errors import ErrorKind, ModuleError, TroupeError
from troupe.engine.results import TaskResult, TaskStatus

if TYPE_CHECKING:
    from troupe.connections.base import Connection
    from troupe.engine.inventory import Host

logger = logging.getLogger(__name__)


@dataclass
class ModuleContext:
    """What a module may touch on its host."""

    host: 'Host'
    connection: Optional['Connection'] = None
    become: bool = False
    become_user: str = "root"


@dataclass
class ModuleResult:
    """Result of module execution."""

    changed: bool = False
    failed: bool = False
    skipped: bool = False
    msg: str = ""
    rc: Optional[int] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    results: Dict[str, Any] = field(default_factory=dict)
    # Written to the host's fact layer by the executor
    facts: Dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None

    def to_task_result(self, host: str, task_name: str) -> TaskResult:
        """Convert to TaskResult."""
        if self.failed:
            status = TaskStatus.FAILED
        elif self.skipped:
            status = TaskStatus.SKIPPED
        elif self.changed:
            status = TaskStatus.CHANGED
        else:
            status = TaskStatus.OK

        payload = dict(self.results)
        if self.rc is not None:
            payload['rc'] = self.rc
        if self.stdout is not None:
            payload['stdout'] = self.stdout
            payload['stdout_lines'] = self.stdout.splitlines()
        if self.stderr is not None:
            payload['stderr'] = self.stderr
            payload['stderr_lines'] = self.stderr.splitlines()
        if self.facts:
            payload['ansible_facts'] = dict(self.facts)

        return TaskResult(
            host=host,
            task_name=task_name,
            status=status,
            changed=self.changed and not self.failed,
            msg=self.msg,
            payload=payload,
            error_kind=self.error_kind or (ErrorKind.MODULE.value if self.failed else None),
        )


class Module(ABC):
    """
    Base class for all modules.

    Subclasses set ``name`` and implement ``run()``; arguments, the task's
    variable snapshot and the check-mode flag are available as
    ``self.args``, ``self.scope`` and ``self.check_mode`` while it runs.
    """

    # Module name (used for registration)
    name: str = ""

    required_args: List[str] = []

    # Optional arguments with defaults
    optional_args: Dict[str, Any] = {}

    # Modules that cannot simulate their effect are skipped in check mode
    supports_check_mode: bool = True

    def __init__(self, context: ModuleContext):
        self.context = context
        self.connection = context.connection
        self.args: Dict[str, Any] = {}
        self.scope: Mapping[str, Any] = {}
        self.check_mode = False

    async def execute(
        self,
        args: Dict[str, Any],
        scope: Mapping[str, Any],
        check_mode: bool = False,
    ) -> ModuleResult:
        """
        Validate arguments and run the module.

        Raises:
            ModuleError: If the module raised instead of reporting a failure
        """
        self.args = dict(args)
        self.scope = scope
        self.check_mode = check_mode

        error = self.validate_args()
        if error:
            return ModuleResult(failed=True, msg=error, error_kind=ErrorKind.INVALID_ARGS.value)

        try:
            return await self.run()
        except TroupeError:
            raise
        except Exception as e:
            logger.debug("module %s raised on %s", self.name, self.context.host.name, exc_info=True)
            raise ModuleError(self.name, self.context.host.name, str(e)) from e

    def validate_args(self) -> Optional[str]:
        """
        Validate module arguments.

        Returns:
            Error message if validation fails, None otherwise
        """
        for required in self.required_args:
            if required not in self.args:
                return f"Missing required argument: {required}"
        return None

    def get_arg(self, name: str, default: Any = None) -> Any:
        """Get an argument value with optional default."""
        if name in self.args:
            return self.args[name]
        if name in self.optional_args:
            return self.optional_args[name]
        return default

    @abstractmethod
    async def run(self) -> ModuleResult:
        """Execute the module."""


# Module registry
_modules: Dict[str, Type[Module]] = {}
_modules_imported = False


def register_module(cls: Type[Module]) -> Type[Module]:
    """Decorator to register a module class."""
    _modules[cls.name] = cls
    return cls


def get_module(name: str) -> Optional[Type[Module]]:
    """
    Get a module class by name.

    Fully qualified names (``ansible.builtin.ping``) resolve to the short
    name when no module is registered under the full one.
    """
    _ensure_modules_imported()
    if name in _modules:
        return _modules[name]
    return _modules.get(name.rsplit('.', 1)[-1])


def list_modules() -> List[str]:
    """List all registered module names."""
    _ensure_modules_imported()
    return sorted(_modules)


def _ensure_modules_imported() -> None:
    global _modules_imported
    if not _modules_imported:
        _import_builtin_modules()
        _modules_imported = True


def _import_builtin_modules() -> None:
    """Import all built-in modules to register them."""
    # These imports trigger the @register_module decorators
    from troupe.modules import builtin_assert  # noqa: F401
    from troupe.modules import builtin_command  # noqa: F401
    from troupe.modules import builtin_debug  # noqa: F401
    from troupe.modules import builtin_fail  # noqa: F401
    from troupe.modules import builtin_meta  # noqa: F401
    from troupe.modules import builtin_ping  # noqa: F401
    from troupe.modules import builtin_set_fact  # noqa: F401
    from troupe.modules import builtin_setup  # noqa: F401
