"""
Troupe command and shell modules

Run a command on the host. ``command`` executes the argument vector
directly; ``shell`` passes the string through /bin/sh.
"""

import shlex

from troupe.connections.base import become_command
from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class CommandModule(Module):
    """
    Execute commands on target hosts.

    Commands always report changed unless ``creates``/``removes`` short
    circuit them. Nothing runs in check mode.
    """

    name = "command"
    use_shell = False
    supports_check_mode = False
    optional_args = {
        "chdir": None,
        "creates": None,
        "removes": None,
    }

    def validate_args(self):
        if not self.args.get("_raw_params") and not self.args.get("cmd"):
            return "Either free-form command or 'cmd' argument is required"
        return None

    async def run(self) -> ModuleResult:
        cmd = str(self.args.get("_raw_params") or self.args.get("cmd"))
        chdir = self.get_arg("chdir")

        creates = self.get_arg("creates")
        if creates and await self._path_exists(creates):
            return ModuleResult(msg=f"skipped, since {creates} exists", rc=0)
        removes = self.get_arg("removes")
        if removes and not await self._path_exists(removes):
            return ModuleResult(msg=f"skipped, since {removes} does not exist", rc=0)

        if self.connection is None:
            return ModuleResult(failed=True, msg="No connection available")

        if self.context.become:
            exec_cmd, shell = become_command(cmd, self.context.become_user), True
        else:
            exec_cmd, shell = cmd, self.use_shell

        result = await self.connection.run(exec_cmd, shell=shell, cwd=chdir)
        return ModuleResult(
            changed=True,
            failed=result.rc != 0,
            rc=result.rc,
            stdout=result.stdout,
            stderr=result.stderr,
            msg=f"non-zero return code: {result.rc}" if result.rc != 0 else "",
            results={"cmd": cmd},
        )

    async def _path_exists(self, path: str) -> bool:
        if self.connection is None:
            return False
        probe = await self.connection.run(f"test -e {shlex.quote(str(path))}")
        return probe.success


@register_module
class ShellModule(CommandModule):
    name = "shell"
    use_shell = True
