"""
Troupe fail module

Fail the host with a message.
"""

from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class FailModule(Module):
    name = "fail"
    optional_args = {
        "msg": "Failed as requested from task",
    }

    async def run(self) -> ModuleResult:
        return ModuleResult(failed=True, msg=str(self.get_arg("msg")))
