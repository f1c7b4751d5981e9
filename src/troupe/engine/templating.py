"""
Troupe Templating

Jinja2-based variable substitution for module arguments and loop sources.

A string that is exactly one ``{{ expression }}`` keeps the expression's
native type (so ``"{{ packages }}"`` renders to a list); any other string
renders to a string. Undefined names raise UndefinedVariableError.
"""

import base64
import json
import os
import re
from typing import Any, Callable, Dict, Mapping, Optional

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError
from jinja2.runtime import Undefined

from troupe.engine.errors import TemplateError, UndefinedVariableError

SINGLE_EXPRESSION = re.compile(r'^\{\{\s*(.+?)\s*\}\}$', re.DOTALL)
UNDEFINED_NAME = re.compile(r"'([^']+)' is undefined|has no attribute '([^']+)'")


def _filter_bool(value: Any) -> bool:
    """Convert value to boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1', 'on')
    return bool(value)


def _filter_to_yaml(value: Any) -> str:
    return yaml.safe_dump(value, default_flow_style=False)


def _filter_regex_replace(value: Any, pattern: str, replacement: str = '') -> str:
    return re.sub(pattern, replacement, str(value))


def _filter_b64encode(value: Any) -> str:
    if isinstance(value, bytes):
        return base64.b64encode(value).decode('utf-8')
    return base64.b64encode(str(value).encode('utf-8')).decode('utf-8')


def _filter_b64decode(value: str) -> str:
    return base64.b64decode(value).decode('utf-8')


def _filter_combine(*mappings: Dict[str, Any], recursive: bool = False) -> Dict[str, Any]:
    """Merge mappings left to right, optionally recursing into nested ones."""
    from troupe.engine.variables import merge_hash

    result: Dict[str, Any] = {}
    for mapping in mappings:
        result = merge_hash(result, mapping) if recursive else {**result, **mapping}
    return result


def _filter_dict2items(value: Mapping[str, Any]) -> list:
    return [{'key': k, 'value': v} for k, v in value.items()]


CUSTOM_FILTERS: Dict[str, Callable[..., Any]] = {
    'bool': _filter_bool,
    'to_json': lambda x: json.dumps(x),
    'to_yaml': _filter_to_yaml,
    'basename': lambda p: os.path.basename(str(p)),
    'dirname': lambda p: os.path.dirname(str(p)),
    'regex_replace': _filter_regex_replace,
    'b64encode': _filter_b64encode,
    'b64decode': _filter_b64decode,
    'combine': _filter_combine,
    'dict2items': _filter_dict2items,
}


class TemplateEngine:
    """
    Jinja2 environment configured for variable substitution.

    Provides:
    - Recursive rendering of dicts/lists
    - Native-typed evaluation of single expressions
    - Strict undefined handling reported as UndefinedVariableError
    """

    def __init__(self):
        self.env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.filters.update(CUSTOM_FILTERS)

    def render(self, template_str: Any, variables: Mapping[str, Any]) -> Any:
        """
        Render a template string with variables.

        Args:
            template_str: String potentially containing {{ }} expressions
            variables: Variables for rendering

        Returns:
            Native value for a lone expression, otherwise the rendered string

        Raises:
            UndefinedVariableError: If the template references an undefined name
            TemplateError: If the template is invalid
        """
        if not isinstance(template_str, str):
            return template_str

        if '{{' not in template_str and '{%' not in template_str:
            return template_str

        match = SINGLE_EXPRESSION.match(template_str)
        if match and '{{' not in match.group(1) and '}}' not in match.group(1):
            return self.evaluate(match.group(1), variables, template=template_str)

        try:
            return self.env.from_string(template_str).render(dict(variables))
        except UndefinedError as e:
            raise _undefined_error(e, template_str)
        except TemplateSyntaxError as e:
            raise TemplateError(f"Template syntax error: {e}", template=template_str)
        except TemplateError:
            raise
        except Exception as e:
            raise TemplateError(str(e), template=template_str)

    def evaluate(
        self,
        expression: str,
        variables: Mapping[str, Any],
        template: Optional[str] = None,
    ) -> Any:
        """Evaluate a bare Jinja2 expression and return its native value."""
        source = template or expression
        try:
            compiled = self.env.compile_expression(expression, undefined_to_none=False)
            value = compiled(dict(variables))
        except UndefinedError as e:
            raise _undefined_error(e, source)
        except TemplateSyntaxError as e:
            raise TemplateError(f"Expression syntax error: {e}", template=source)
        except TemplateError:
            raise
        except Exception as e:
            raise TemplateError(str(e), template=source)

        if isinstance(value, Undefined):
            name = getattr(value, '_undefined_name', None) or expression
            raise UndefinedVariableError(name, template=source)
        return value

    def render_recursive(self, data: Any, variables: Mapping[str, Any]) -> Any:
        """
        Recursively render templates in a data structure.

        Args:
            data: Data structure (dict, list, or scalar)
            variables: Variables for rendering

        Returns:
            Data structure with all templates rendered
        """
        if isinstance(data, str):
            return self.render(data, variables)

        if isinstance(data, dict):
            return {
                self.render(k, variables) if isinstance(k, str) else k:
                self.render_recursive(v, variables)
                for k, v in data.items()
            }

        if isinstance(data, (list, tuple)):
            return [self.render_recursive(item, variables) for item in data]

        return data


def _undefined_error(error: UndefinedError, template: str) -> UndefinedVariableError:
    match = UNDEFINED_NAME.search(str(error))
    name = (match.group(1) or match.group(2)) if match else str(error)
    return UndefinedVariableError(name, template=template)


_engine: Optional[TemplateEngine] = None


def get_template_engine() -> TemplateEngine:
    """Get the shared template engine instance."""
    global _engine
    if _engine is None:
        _engine = TemplateEngine()
    return _engine


def render(template_str: Any, variables: Mapping[str, Any]) -> Any:
    """Convenience function to render a template."""
    return get_template_engine().render(template_str, variables)


def render_recursive(data: Any, variables: Mapping[str, Any]) -> Any:
    """Convenience function to render templates recursively."""
    return get_template_engine().render_recursive(data, variables)
