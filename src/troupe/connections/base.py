"""
Troupe Connection Base Class

Abstract base class for all connection types.
"""

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional

from troupe.engine.inventory import Host

LOCAL_ADDRESSES = ('localhost', '127.0.0.1', '::1')


@dataclass
class RunResult:
    """Result of running a command on a host."""

    rc: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.rc == 0


class Connection(ABC):
    """
    Abstract base class for connections.

    A connection is opened once per host and reused by every task that
    host runs during the invocation.
    """

    def __init__(self, host: Host):
        self.host = host

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the connection.

        Raises:
            ConnectionError: If the host cannot be reached
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    async def run(
        self,
        command: str,
        shell: bool = True,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        """
        Run a command on the host.

        Args:
            command: Command to execute
            shell: If True, run through a shell
            cwd: Working directory
            environment: Environment variables

        Returns:
            RunResult with rc, stdout, stderr
        """

    @property
    def connection_type(self) -> str:
        """Return the connection type name."""
        return self.__class__.__name__.replace('Connection', '').lower()


def become_command(command: str, become_user: str = 'root') -> str:
    """Wrap a shell command for privilege escalation through sudo."""
    return f"sudo -n -u {shlex.quote(become_user)} /bin/sh -c {shlex.quote(command)}"


def select_connection_type(host: Host) -> str:
    """
    Connection type for a host.

    An explicit ``ansible_connection`` variable wins; otherwise loopback
    hosts run locally and everything else goes over SSH.
    """
    if host.ansible_connection:
        return host.ansible_connection
    if host.name in LOCAL_ADDRESSES or host.ansible_host in LOCAL_ADDRESSES:
        return 'local'
    return 'ssh'


def create_connection_factory() -> Callable[[Host], Coroutine[Any, Any, Connection]]:
    """
    Create a connection factory function.

    Returns a coroutine function that opens the appropriate connection
    for a host.
    """
    async def factory(host: Host) -> Connection:
        conn_type = select_connection_type(host)

        if conn_type == 'local':
            from troupe.connections.local import LocalConnection
            conn: Connection = LocalConnection(host)
        elif conn_type == 'ssh':
            from troupe.connections.ssh import SSHConnection
            conn = SSHConnection(host)
        else:
            from troupe.engine.errors import ConnectionError
            raise ConnectionError(host.name, f"Unknown connection type: {conn_type}", connection_type=conn_type)

        await conn.connect()
        return conn

    return factory
