"""
Troupe meta module

Execution-control actions. The module only validates the action; the
executor acts on the ``meta_action`` it returns.
"""

from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class MetaModule(Module):
    name = "meta"

    SUPPORTED_ACTIONS = {
        "flush_handlers",  # Run pending handlers for this host now
        "noop",
    }

    async def run(self) -> ModuleResult:
        action = str(self.args.get("_raw_params") or self.args.get("free_form") or "").strip()
        if not action:
            return ModuleResult(failed=True, msg="No meta action specified")
        if action not in self.SUPPORTED_ACTIONS:
            return ModuleResult(
                failed=True,
                msg=f"Unknown meta action: {action}. Supported: {', '.join(sorted(self.SUPPORTED_ACTIONS))}",
            )
        return ModuleResult(msg=f"Meta action: {action}", results={"meta_action": action})
