"""
Conditional evaluation for ``when``, ``changed_when`` and ``failed_when``.

Expressions are evaluated with the shared Jinja2 engine and the result is
coerced to a boolean with fixed rules:

- None -> False
- bool -> itself
- int/float -> non-zero
- str -> "true"/"yes"/"on"/"1" are True, "false"/"no"/"off"/"0"/"" are
  False; any other text is an error (a bare word usually means a typo)
- sequences and mappings -> non-empty
"""

from typing import Any, List, Mapping, Optional

from troupe.engine.errors import TemplateError
from troupe.engine.templating import TemplateEngine, get_template_engine

TRUE_STRINGS = frozenset(('true', 'yes', 'on', '1'))
FALSE_STRINGS = frozenset(('false', 'no', 'off', '0', ''))


def to_bool(value: Any) -> bool:
    """Coerce an evaluated value to a boolean."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise TemplateError(f"Conditional result {value!r} is not a boolean")
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return bool(value)


def normalize_conditions(when: Any) -> List[Any]:
    """Turn a ``when`` value (scalar or list) into an AND-list."""
    if when is None:
        return []
    if isinstance(when, (list, tuple)):
        return list(when)
    return [when]


class Conditional:
    """An AND-list of conditions evaluated against a variable scope."""

    def __init__(self, when: Any, engine: Optional[TemplateEngine] = None):
        self.conditions = normalize_conditions(when)
        self.engine = engine or get_template_engine()

    def __bool__(self) -> bool:
        return bool(self.conditions)

    def evaluate(self, variables: Mapping[str, Any]) -> bool:
        """
        True when every condition holds.

        Evaluation stops at the first false condition, so later conditions
        may reference names that only exist when earlier ones pass.

        Raises:
            UndefinedVariableError: If a condition references an undefined name
            TemplateError: If a condition is malformed
        """
        for condition in self.conditions:
            if not self.evaluate_one(condition, variables):
                return False
        return True

    def evaluate_one(self, condition: Any, variables: Mapping[str, Any]) -> bool:
        if isinstance(condition, bool) or condition is None:
            return bool(condition)
        if isinstance(condition, (int, float)):
            return condition != 0

        text = str(condition).strip()
        # Conditions are bare expressions; tolerate a wrapping {{ }}
        if text.startswith('{{') and text.endswith('}}'):
            text = text[2:-2].strip()
        if not text:
            return False
        return to_bool(self.engine.evaluate(text, variables, template=str(condition)))


def evaluate_when(when: Any, variables: Mapping[str, Any]) -> bool:
    """Convenience function to evaluate a when clause."""
    return Conditional(when).evaluate(variables)
