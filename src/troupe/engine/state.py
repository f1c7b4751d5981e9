"""
Troupe Run State

Everything one run shares across hosts: facts, registered results, the
handler queue, failed/unreachable host sets and the cancellation signal.

State is partitioned by host. A host's worker is the only writer of its
partition; reads of another host's partition return copies.
"""

import asyncio
import copy
from typing import Any, Dict, Mapping, Optional, Set

from troupe.engine.handlers import HandlerQueue


class FactStore:
    """Facts and registered results keyed by (host, name)."""

    def __init__(self):
        self._facts: Dict[str, Dict[str, Any]] = {}
        self._registered: Dict[str, Dict[str, Any]] = {}

    def set_fact(self, host: str, name: str, value: Any) -> None:
        self._facts.setdefault(host, {})[name] = copy.deepcopy(value)

    def set_facts(self, host: str, facts: Mapping[str, Any]) -> None:
        for name, value in facts.items():
            self.set_fact(host, name, value)

    def register(self, host: str, name: str, value: Any) -> None:
        """Store a task result under ``name``; a later write replaces it."""
        self._registered.setdefault(host, {})[name] = copy.deepcopy(value)

    def get_fact(self, host: str, name: str, default: Any = None) -> Any:
        return copy.deepcopy(self._facts.get(host, {}).get(name, default))

    def get_registered_value(self, host: str, name: str, default: Any = None) -> Any:
        return copy.deepcopy(self._registered.get(host, {}).get(name, default))

    def get_facts(self, host: str) -> Dict[str, Any]:
        return copy.deepcopy(self._facts.get(host, {}))

    def get_registered(self, host: str) -> Dict[str, Any]:
        return copy.deepcopy(self._registered.get(host, {}))

    def snapshot(self, host: str) -> Dict[str, Dict[str, Any]]:
        """Facts and registered results of one host."""
        return {'facts': self.get_facts(host), 'registered': self.get_registered(host)}

    def hosts(self) -> Set[str]:
        return set(self._facts) | set(self._registered)


class RunState:
    """
    Per-run shared state, passed explicitly to every component.

    Created at run start and discarded at run end; nothing persists across
    runs. A failed run leaves whatever partial state was written.
    """

    def __init__(self):
        self.facts = FactStore()
        self.handlers = HandlerQueue()
        # Hosts failed in the current play; reset at each play start
        self.failed_hosts: Set[str] = set()
        # Hosts that could not be reached; excluded for the rest of the run
        self.unreachable_hosts: Set[str] = set()
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def cancel_event(self) -> asyncio.Event:
        # Created lazily so it binds to the running loop
        if self._cancel_event is None:
            self._cancel_event = asyncio.Event()
        return self._cancel_event

    def cancel(self) -> None:
        """Signal run-level cancellation to every worker."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def start_play(self) -> None:
        self.failed_hosts.clear()
        self.handlers.reset()

    def mark_failed(self, host: str) -> None:
        self.failed_hosts.add(host)

    def mark_unreachable(self, host: str) -> None:
        self.unreachable_hosts.add(host)

    def is_failed(self, host: str) -> bool:
        return host in self.failed_hosts

    def is_unreachable(self, host: str) -> bool:
        return host in self.unreachable_hosts
