"""
Troupe assert module

Fail the host unless every listed condition holds.
"""

from troupe.engine.conditionals import Conditional
from troupe.engine.errors import TemplateError
from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class AssertModule(Module):
    """Assert conditions are true."""

    name = "assert"
    required_args = ["that"]
    optional_args = {
        "msg": None,
        "success_msg": None,
        "fail_msg": None,
        "quiet": False,
    }

    async def run(self) -> ModuleResult:
        conditional = Conditional(self.args["that"])

        for condition in conditional.conditions:
            try:
                passed = conditional.evaluate_one(condition, self.scope)
            except TemplateError as e:
                return ModuleResult(
                    failed=True,
                    msg=f"Error evaluating {condition!r}: {e.message}",
                    results={"assertion": condition, "evaluated_to": False},
                )
            if not passed:
                message = self.get_arg("fail_msg") or self.get_arg("msg") or "Assertion failed"
                return ModuleResult(
                    failed=True,
                    msg=str(message),
                    results={"assertion": condition, "evaluated_to": False},
                )

        message = "" if self.get_arg("quiet") else (self.get_arg("success_msg") or "All assertions passed")
        return ModuleResult(msg=str(message))
