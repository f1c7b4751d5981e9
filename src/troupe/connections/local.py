"""
Troupe Local Connection

Execute commands on the control node (no remote connection).
"""

import asyncio
import logging
import os
import shlex
from typing import Optional

from troupe.connections.base import Connection, RunResult

logger = logging.getLogger(__name__)


class LocalConnection(Connection):
    """Runs commands as child processes of the control node."""

    async def connect(self) -> None:
        """Nothing to open."""

    async def close(self) -> None:
        """Nothing to release."""

    async def run(
        self,
        command: str,
        shell: bool = True,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        env = os.environ.copy()
        if environment:
            env.update({k: str(v) for k, v in environment.items()})

        pipes = dict(stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE, cwd=cwd, env=env)
        logger.debug("%s: local exec %s", self.host.name, command)
        try:
            if shell:
                process = await asyncio.create_subprocess_shell(command, **pipes)
            else:
                process = await asyncio.create_subprocess_exec(*shlex.split(command), **pipes)
        except OSError as e:
            return RunResult(rc=127, stdout="", stderr=str(e))

        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except asyncio.CancelledError:
            # Timeouts and run cancellation arrive as task cancellation
            process.kill()
            await process.wait()
            raise

        return RunResult(process.returncode or 0, _text(stdout_bytes), _text(stderr_bytes))


def _text(data: bytes) -> str:
    return data.decode('utf-8', errors='replace')
