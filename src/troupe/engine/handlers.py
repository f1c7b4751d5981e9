"""
Troupe Handler Notification Queue

Per-host, insertion-ordered sets of notified handler names. Notifying the
same name twice is a no-op. A flush consumes the names it saw; names
notified during the flush for handlers it already passed stay queued.
"""

from typing import TYPE_CHECKING, Dict, Iterable, List

if TYPE_CHECKING:
    from troupe.engine.playbook import Task


class HandlerQueue:
    """Notifications collected during a play, partitioned by host."""

    def __init__(self):
        self._pending: Dict[str, Dict[str, None]] = {}

    def notify(self, host: str, name: str) -> bool:
        """
        Record a notification.

        Returns:
            True if the name was not already pending for the host
        """
        names = self._pending.setdefault(host, {})
        if name in names:
            return False
        names[name] = None
        return True

    def pending(self, host: str) -> List[str]:
        """Pending names for a host in notification order."""
        return list(self._pending.get(host, {}))

    def has_pending(self, host: str) -> bool:
        return bool(self._pending.get(host))

    def is_notified(self, host: str, handler: 'Task') -> bool:
        """True if the handler's name or one of its listen topics is pending."""
        names = self._pending.get(host, {})
        return handler.name in names or any(topic in names for topic in handler.listen)

    def discard(self, host: str, names: Iterable[str]) -> None:
        """Drop the given names, keeping anything notified since."""
        pending = self._pending.get(host)
        if pending is None:
            return
        for name in names:
            pending.pop(name, None)
        if not pending:
            del self._pending[host]

    def clear(self, host: str) -> None:
        self._pending.pop(host, None)

    def reset(self) -> None:
        self._pending.clear()

    def hosts(self) -> List[str]:
        return [h for h, names in self._pending.items() if names]

