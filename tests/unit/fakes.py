"""
Test doubles: an in-memory connection factory, recording modules and
small builders for plays and executors.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

from troupe.config import RunConfig
from troupe.connections.base import Connection, RunResult
from troupe.engine.errors import ConnectionError
from troupe.engine.executor import TaskExecutor
from troupe.engine.inventory import Host
from troupe.engine.playbook import Play, Task
from troupe.modules.base import Module, ModuleResult, register_module


class FakeConnection(Connection):
    """Connection that records commands instead of running them."""

    def __init__(self, host: Host, responses: Optional[Dict[str, RunResult]] = None):
        super().__init__(host)
        self.commands: List[str] = []
        self.responses = responses or {}
        self.closed = False

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        self.closed = True

    async def run(self, command, shell=True, cwd=None, environment=None) -> RunResult:
        self.commands.append(command)
        return self.responses.get(command, RunResult(0, "", ""))


class FakeConnections:
    """Connection factory keeping every connection it opened."""

    def __init__(self, unreachable: Set[str] = frozenset(), responses: Optional[Dict[str, RunResult]] = None):
        self.unreachable = set(unreachable)
        self.responses = responses or {}
        self.opened: Dict[str, FakeConnection] = {}
        self.connect_calls = 0

    async def __call__(self, host: Host) -> Connection:
        self.connect_calls += 1
        if host.name in self.unreachable:
            raise ConnectionError(host.name, "No route to host", connection_type="fake")
        conn = FakeConnection(host, self.responses)
        self.opened[host.name] = conn
        return conn


# Every (host, label) pair passed to the ``record`` module, in call order
CALLS: List[tuple] = []


@register_module
class RecordModule(Module):
    """Appends its label to CALLS; ``changed`` and ``fail`` control the outcome."""

    name = "record"
    optional_args = {"label": "", "changed": False, "fail": False}

    async def run(self) -> ModuleResult:
        CALLS.append((self.context.host.name, self.get_arg("label")))
        if self.get_arg("fail"):
            return ModuleResult(failed=True, msg=f"failed: {self.get_arg('label')}")
        return ModuleResult(
            changed=bool(self.get_arg("changed")),
            results={"label": self.get_arg("label")},
        )


@register_module
class SleepModule(Module):
    """Sleeps, tracking how many hosts are sleeping at the same time."""

    name = "sleep"
    optional_args = {"seconds": 0.05}
    active = 0
    peak = 0

    async def run(self) -> ModuleResult:
        cls = type(self)
        cls.active += 1
        cls.peak = max(cls.peak, cls.active)
        try:
            await asyncio.sleep(float(self.get_arg("seconds")))
        finally:
            cls.active -= 1
        CALLS.append((self.context.host.name, "slept"))
        return ModuleResult(msg="slept")


@register_module
class CrashModule(Module):
    """Raises an unexpected exception."""

    name = "crash"

    async def run(self) -> ModuleResult:
        raise RuntimeError("boom")



def make_executor(inventory, connections=None, **config) -> TaskExecutor:
    return TaskExecutor(
        inventory,
        config=RunConfig().merged(**config),
        connection_factory=connections or FakeConnections(),
    )


def record(label: Any, name: Optional[str] = None, **kwargs) -> Task:
    """A ``record`` task, named after its label unless a name is given."""
    args = {"label": label}
    for key in ("changed", "fail"):
        if key in kwargs:
            args[key] = kwargs.pop(key)
    return Task(name=name or str(label), module="record", args=args, **kwargs)


def play(*tasks: Task, hosts: str = "all", handlers=(), **kwargs) -> Play:
    return Play(name="test play", hosts=hosts, tasks=list(tasks), handlers=list(handlers), **kwargs)


def labels(host: str) -> List[str]:
    """Labels the ``record`` module saw for one host."""
    return [label for name, label in CALLS if name == host]
