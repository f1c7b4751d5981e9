"""
Troupe debug module

Report a message or a variable's value. Nothing is printed here; the
display layer shows the result's msg.
"""

import json

from troupe.engine.errors import UndefinedVariableError
from troupe.engine.templating import get_template_engine
from troupe.modules.base import Module, ModuleResult, register_module


@register_module
class DebugModule(Module):
    """Print a message or a variable."""

    name = "debug"
    optional_args = {
        "msg": "Hello world!",
        "var": None,
        "verbosity": 0,
    }

    def validate_args(self):
        if "msg" in self.args and "var" in self.args:
            return "'msg' and 'var' are mutually exclusive"
        return None

    async def run(self) -> ModuleResult:
        var = self.get_arg("var")
        if var:
            # var takes an expression such as "result.stdout"
            try:
                value = get_template_engine().evaluate(str(var), self.scope)
            except UndefinedVariableError:
                value = "VARIABLE IS NOT DEFINED!"
            if isinstance(value, (dict, list)):
                output = f"{var}: {json.dumps(value, indent=2, default=str)}"
            else:
                output = f"{var}: {value}"
            return ModuleResult(msg=output, results={str(var): value, "msg": output})

        msg = self.get_arg("msg")
        output = msg if isinstance(msg, str) else json.dumps(msg, default=str)
        return ModuleResult(msg=output, results={"msg": msg})
