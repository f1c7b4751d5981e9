"""Connectivity check returning ``pong``."""

from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class PingModule(Module):
    """Runs ``true`` over the host's connection and reports pong."""

    name = "ping"
    optional_args = {"data": "pong"}

    async def run(self) -> ModuleResult:
        data = self.get_arg("data")
        if self.connection is not None and not self.check_mode:
            probe = await self.connection.run("true")
            if not probe.success:
                return ModuleResult(failed=True, rc=probe.rc, msg=probe.stderr.strip() or "ping failed")

        return ModuleResult(msg=str(data), results={"ping": data})
