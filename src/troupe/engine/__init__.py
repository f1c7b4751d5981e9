"""
Troupe Engine

Inventory resolution, variable scoping, task execution and reporting.
The executor, pool and runner live in their own modules
(``troupe.engine.executor``, ``.pool``, ``.runner``).
"""

from troupe.engine.errors import (
    ConnectionError,
    ModuleError,
    ParseError,
    PatternResolutionError,
    TroupeError,
    UndefinedVariableError,
)
from troupe.engine.inventory import Inventory, InventoryManager
from troupe.engine.patterns import resolve
from troupe.engine.playbook import Play, PlaybookParser, Task
from troupe.engine.results import PlaybookResult, PlayResult, RunReport, TaskResult, TaskStatus
from troupe.engine.state import RunState
from troupe.engine.variables import VariableManager

__all__ = [
    'Inventory',
    'InventoryManager',
    'resolve',
    'PlaybookParser',
    'Play',
    'Task',
    'VariableManager',
    'RunState',
    'TaskResult',
    'TaskStatus',
    'PlayResult',
    'PlaybookResult',
    'RunReport',
    'TroupeError',
    'ParseError',
    'PatternResolutionError',
    'UndefinedVariableError',
    'ConnectionError',
    'ModuleError',
]
