"""
Troupe Result Classes

Per (host, task) execution results, per-host stats, and the run report.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from troupe.engine.errors import ExitCode


class TaskStatus(Enum):
    """Per (host, task) outcome."""
    OK = "ok"
    CHANGED = "changed"
    FAILED = "failed"
    SKIPPED = "skipped"
    UNREACHABLE = "unreachable"


class RunStatus(Enum):
    """Overall outcome of a run."""
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial-failure"
    TOTAL_FAILURE = "total-failure"


@dataclass
class TaskResult:
    """Outcome of one task on one host, loop items included."""

    host: str
    task_name: str
    status: TaskStatus
    changed: bool = False
    msg: str = ""
    # Module return data, exposed through register
    payload: Dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[str] = None
    # Failure tolerated through ignore_errors
    ignored: bool = False
    # Failure handled by a block rescue section
    rescued: bool = False
    loop_results: Optional[List['TaskResult']] = None

    @property
    def failed(self) -> bool:
        """Failed or unreachable."""
        return self.status in (TaskStatus.FAILED, TaskStatus.UNREACHABLE)

    @property
    def ok(self) -> bool:
        """ok or changed."""
        return self.status in (TaskStatus.OK, TaskStatus.CHANGED)

    @property
    def skipped(self) -> bool:
        return self.status == TaskStatus.SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        """Report entry; empty optional fields are left out."""
        result: Dict[str, Any] = {
            "host": self.host,
            "task": self.task_name,
            "status": self.status.value,
            "changed": self.changed,
        }
        if self.msg:
            result["msg"] = self.msg
        if self.payload:
            result["payload"] = self.payload
        if self.error_kind:
            result["error_kind"] = self.error_kind
        if self.ignored:
            result["ignored"] = True
        if self.rescued:
            result["rescued"] = True
        if self.loop_results is not None:
            result["loop_results"] = [r.to_dict() for r in self.loop_results]
        return result

    def to_registered(self) -> Dict[str, Any]:
        """Shape this result the way later tasks see it under a register name."""
        registered: Dict[str, Any] = dict(self.payload)
        registered.update({
            "changed": self.changed,
            "failed": self.status == TaskStatus.FAILED,
            "skipped": self.skipped,
            "unreachable": self.status == TaskStatus.UNREACHABLE,
            "status": self.status.value,
            "msg": self.msg,
        })
        if self.loop_results is not None:
            registered["results"] = [r.to_registered() for r in self.loop_results]
        return registered


# Recap columns, in display order
COUNTERS = ('ok', 'changed', 'unreachable', 'failed', 'skipped', 'rescued', 'ignored')


def _bucket(result: TaskResult) -> str:
    if result.status != TaskStatus.FAILED:
        return result.status.value
    if result.ignored:
        return 'ignored'
    if result.rescued:
        return 'rescued'
    return 'failed'


@dataclass
class HostStats:
    """Per-host counters behind PLAY RECAP and the report's ``stats``."""

    host: str
    ok: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0
    unreachable: int = 0
    ignored: int = 0
    rescued: int = 0

    def record(self, result: TaskResult) -> None:
        name = _bucket(result)
        setattr(self, name, getattr(self, name) + 1)

    def merge(self, other: 'HostStats') -> None:
        for name in COUNTERS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def counts(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in COUNTERS}

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, **self.counts()}

    @property
    def has_failures(self) -> bool:
        # ignored and rescued failures do not count against the host
        return bool(self.failed or self.unreachable)


def _combine(stats: Iterable[HostStats]) -> Dict[str, HostStats]:
    combined: Dict[str, HostStats] = {}
    for entry in stats:
        combined.setdefault(entry.host, HostStats(entry.host)).merge(entry)
    return combined


@dataclass
class PlayResult:
    """Everything one play attempted, in the order it was attempted."""

    play_name: str
    hosts: List[str]
    task_results: List[TaskResult] = field(default_factory=list)
    host_stats: Dict[str, HostStats] = field(default_factory=dict)

    def add_result(self, result: TaskResult) -> None:
        self.task_results.append(result)
        self.host_stats.setdefault(result.host, HostStats(result.host)).record(result)

    def results_for(self, host: str) -> List[TaskResult]:
        """Results for one host, in that host's execution order."""
        return [r for r in self.task_results if r.host == host]

    def get(self, host: str, task_name: str) -> Optional[TaskResult]:
        """Last result recorded for a (host, task name) pair."""
        for result in reversed(self.task_results):
            if result.host == host and result.task_name == task_name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "play": self.play_name,
            "hosts": self.hosts,
            "tasks": [r.to_dict() for r in self.task_results],
            "stats": {name: s.to_dict() for name, s in self.host_stats.items()},
        }


@dataclass
class PlaybookResult:
    """
    Report for a whole run.

    Lists every attempted (host, task) pair per play, aggregates per-host
    stats, and derives the overall status and exit code.
    """

    playbook_path: str
    play_results: List[PlayResult] = field(default_factory=list)
    cancelled: bool = False

    def add_play_result(self, result: PlayResult) -> None:
        self.play_results.append(result)

    def get_final_stats(self) -> Dict[str, HostStats]:
        """Per-host stats summed over every play, in first-seen host order."""
        return _combine(s for p in self.play_results for s in p.host_stats.values())

    def totals(self) -> Dict[str, int]:
        total = HostStats("*")
        for stats in self.get_final_stats().values():
            total.merge(stats)
        return total.counts()

    def all_results(self) -> List[TaskResult]:
        return [r for p in self.play_results for r in p.task_results]

    @property
    def status(self) -> RunStatus:
        """success, partial-failure (some hosts failed) or total-failure."""
        stats = self.get_final_stats()
        failing = sum(1 for s in stats.values() if s.has_failures)
        if failing and failing == len(stats):
            return RunStatus.TOTAL_FAILURE
        if failing or self.cancelled:
            return RunStatus.PARTIAL_FAILURE
        return RunStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        """Cancellation wins, then task failures, then unreachable hosts."""
        if self.cancelled:
            return ExitCode.CANCELLED
        totals = self.totals()
        if totals["failed"]:
            return ExitCode.HOST_FAILED
        if totals["unreachable"]:
            return ExitCode.HOST_UNREACHABLE
        return ExitCode.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "playbook": self.playbook_path,
            "status": self.status.value,
            "plays": [p.to_dict() for p in self.play_results],
            "stats": {name: s.to_dict() for name, s in self.get_final_stats().items()},
            "totals": self.totals(),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)


RunReport = PlaybookResult
