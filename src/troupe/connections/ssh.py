"""
Troupe SSH Connection (asyncssh)

SSH connection using asyncssh for async operations.
"""

import logging
import os
import shlex
from typing import Optional

import asyncssh

from troupe.connections.base import Connection, RunResult
from troupe.engine.errors import ConnectionError
from troupe.engine.inventory import Host

logger = logging.getLogger(__name__)


class SSHConnection(Connection):
    """
    SSH connection using asyncssh.

    Supports:
    - Key-based authentication
    - Password authentication
    - SSH agent
    - Custom ports
    """

    def __init__(self, host: Host):
        super().__init__(host)
        self._conn: Optional[asyncssh.SSHClientConnection] = None

    async def connect(self) -> None:
        """Establish SSH connection."""
        password = self.host.get_variable('ansible_password') or \
            self.host.get_variable('ansible_ssh_pass')
        private_key = self.host.get_variable('ansible_ssh_private_key_file')
        host_key_checking = self.host.get_variable('ansible_ssh_host_key_checking', True)

        connect_kwargs = {
            'host': self.host.ansible_host,
            'port': self.host.ansible_port,
            'username': self.host.ansible_user or os.getenv('USER', 'root'),
            'connect_timeout': int(self.host.get_variable('ansible_ssh_timeout', 30)),
        }
        if private_key:
            connect_kwargs['client_keys'] = [private_key]
        if password:
            connect_kwargs['password'] = password
        if not host_key_checking or str(host_key_checking).lower() in ('false', 'no'):
            connect_kwargs['known_hosts'] = None

        logger.debug("%s: connecting to %s:%s", self.host.name, connect_kwargs['host'], connect_kwargs['port'])
        try:
            self._conn = await asyncssh.connect(**connect_kwargs)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(host=self.host.name, message=str(e), connection_type='ssh')

    async def close(self) -> None:
        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    async def run(
        self,
        command: str,
        shell: bool = True,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        """
        Run a command over SSH.

        Raises:
            ConnectionError: If the session drops while the command runs
        """
        if not self._conn:
            raise ConnectionError(host=self.host.name, message="Not connected", connection_type='ssh')

        full_command = command
        if cwd:
            full_command = f"cd {shlex.quote(cwd)} && {command}"
        if shell:
            full_command = f"/bin/sh -c {shlex.quote(full_command)}"
        if environment:
            env_prefix = " ".join(f"{k}={shlex.quote(str(v))}" for k, v in environment.items())
            full_command = f"env {env_prefix} {full_command}"

        try:
            result = await self._conn.run(full_command, check=False)
        except (OSError, asyncssh.Error) as e:
            raise ConnectionError(host=self.host.name, message=str(e), connection_type='ssh')

        return RunResult(
            rc=result.exit_status or 0,
            stdout=str(result.stdout or ""),
            stderr=str(result.stderr or ""),
        )
