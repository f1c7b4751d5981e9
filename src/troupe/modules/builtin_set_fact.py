"""
Troupe set_fact module

Set host facts visible to later tasks and plays on the same host.
"""

from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class SetFactModule(Module):
    name = "set_fact"
    optional_args = {
        "cacheable": False,  # accepted and ignored, facts never outlive a run
    }

    def validate_args(self):
        if not [k for k in self.args if k != "cacheable"]:
            return "set_fact requires at least one key=value pair"
        return None

    async def run(self) -> ModuleResult:
        facts = {k: v for k, v in self.args.items() if k != "cacheable"}
        return ModuleResult(msg=f"Set {len(facts)} fact(s)", facts=facts)
