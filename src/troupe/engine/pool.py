"""
Troupe Execution Pool

Fork-style bounded parallelism with asyncio. A host holds one pool slot
while its task sequence advances, so at most ``forks`` hosts are in flight
at once; tasks of one host never overlap.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, Iterable, Optional

from troupe.connections.base import Connection, create_connection_factory
from troupe.engine.errors import TaskCancelledError, TaskTimeoutError, TroupeError
from troupe.engine.inventory import Host
from troupe.engine.state import RunState

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[Host], Coroutine[Any, Any, Connection]]


class ExecutionPool:
    """
    Bounded worker pool plus the per-run connection cache.

    Args:
        forks: Maximum number of hosts advanced concurrently
        connection_factory: Async callable (host) -> connected Connection
        run_state: Supplies the run-level cancellation signal
    """

    def __init__(
        self,
        forks: int = 5,
        connection_factory: Optional[ConnectionFactory] = None,
        run_state: Optional[RunState] = None,
    ):
        self.forks = max(1, forks)
        self.connection_factory = connection_factory or create_connection_factory()
        self.run_state = run_state or RunState()
        self._connections: Dict[str, Connection] = {}

    async def run_hosts(
        self,
        hosts: Iterable[Host],
        worker: Callable[[Host], Awaitable[None]],
        on_error: Optional[Callable[[Host, Exception], None]] = None,
    ) -> None:
        """
        Run ``worker`` once per host, at most ``forks`` at a time.

        Hosts still waiting for a slot when the run is cancelled are never
        started. An exception escaping one worker is handed to ``on_error``
        and does not stop the other hosts.
        """
        semaphore = asyncio.Semaphore(self.forks)

        async def run_one(host: Host) -> None:
            async with semaphore:
                if self.run_state.cancelled:
                    return
                try:
                    await worker(host)
                except Exception as e:
                    if on_error is None:
                        raise
                    logger.error("%s: worker raised %s", host.name, e, exc_info=True)
                    on_error(host, e)

        await asyncio.gather(*(run_one(host) for host in hosts))

    async def connect(self, host: Host) -> Connection:
        """
        Connection for a host, opened on first use and reused afterwards.

        Raises:
            ConnectionError: If the host cannot be reached
        """
        conn = self._connections.get(host.name)
        if conn is None:
            conn = await self.connection_factory(host)
            self._connections[host.name] = conn
            logger.debug("%s: connected (%s)", host.name, conn.connection_type)
        return conn

    async def dispatch(
        self,
        operation: Awaitable[Any],
        host: str,
        task_name: str,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Await one module operation, bounded by a timeout and the run's
        cancellation signal.

        Raises:
            TaskTimeoutError: The operation did not finish within ``timeout``
            TaskCancelledError: The run was cancelled while it was in flight
        """
        op = asyncio.ensure_future(operation)
        cancel_waiter = asyncio.ensure_future(self.run_state.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {op, cancel_waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            op.cancel()
            raise
        finally:
            cancel_waiter.cancel()

        if op in done:
            return op.result()

        op.cancel()
        # Let the operation unwind (kill subprocesses, close channels)
        await asyncio.wait({op})

        if cancel_waiter in done:
            logger.info("%s: task '%s' cancelled", host, task_name)
            raise TaskCancelledError(host, task_name)
        logger.info("%s: task '%s' timed out after %ss", host, task_name, timeout)
        raise TaskTimeoutError(host, task_name, timeout)

    async def close(self) -> None:
        """Close every cached connection."""
        connections, self._connections = self._connections, {}
        for name, conn in connections.items():
            try:
                await conn.close()
            except (OSError, TroupeError) as e:
                logger.warning("%s: error closing connection: %s", name, e)
