"""
Tests for template rendering and conditional evaluation.
"""

import pytest

from troupe.engine.conditionals import Conditional, evaluate_when, to_bool
from troupe.engine.errors import TemplateError, UndefinedVariableError
from troupe.engine.templating import TemplateEngine, render, render_recursive


class TestTemplateEngine:
    """Test Jinja2 rendering."""

    def setup_method(self):
        self.engine = TemplateEngine()

    def test_plain_strings_untouched(self):
        assert self.engine.render("no templates here", {}) == "no templates here"
        assert self.engine.render(42, {}) == 42

    def test_lone_expression_keeps_native_type(self):
        assert self.engine.render("{{ packages }}", {"packages": ["nginx", "git"]}) == ["nginx", "git"]
        assert self.engine.render("{{ port + 1 }}", {"port": 80}) == 81

    def test_mixed_text_renders_string(self):
        assert self.engine.render("port={{ port }}", {"port": 80}) == "port=80"

    def test_undefined_variable(self):
        with pytest.raises(UndefinedVariableError) as exc_info:
            self.engine.render("{{ missing }}", {})
        assert exc_info.value.variable == "missing"

    def test_undefined_inside_text(self):
        with pytest.raises(UndefinedVariableError):
            self.engine.render("hello {{ who }}", {})

    def test_undefined_attribute(self):
        with pytest.raises(UndefinedVariableError):
            self.engine.render("{{ app.port }}", {"app": {}})

    def test_syntax_error(self):
        with pytest.raises(TemplateError):
            self.engine.render("{{ port + }}", {"port": 1})

    def test_undefined_is_a_template_error(self):
        assert issubclass(UndefinedVariableError, TemplateError)

    def test_filters(self):
        assert self.engine.render("{{ flag | bool }}", {"flag": "yes"}) is True
        assert self.engine.render("{{ path | basename }}", {"path": "/etc/nginx/nginx.conf"}) == "nginx.conf"
        assert self.engine.render("{{ a | combine(b) }}", {"a": {"x": 1}, "b": {"y": 2}}) == {"x": 1, "y": 2}
        assert self.engine.render("{{ d | dict2items }}", {"d": {"k": "v"}}) == [{"key": "k", "value": "v"}]
        assert self.engine.render("{{ missing | default('fallback') }}", {}) == "fallback"

    def test_render_recursive(self):
        data = {"name": "{{ user }}", "groups": ["{{ group }}", "wheel"], "uid": 1000}
        assert render_recursive(data, {"user": "alice", "group": "admin"}) == {
            "name": "alice",
            "groups": ["admin", "wheel"],
            "uid": 1000,
        }

    def test_module_render(self):
        assert render("{{ x }}", {"x": True}) is True


class TestConditionals:
    """Test when/changed_when/failed_when evaluation."""

    @pytest.mark.parametrize("value,expected", [
        (None, False),
        (True, True),
        (0, False),
        (2, True),
        ("yes", True),
        ("Off", False),
        ("", False),
        ([], False),
        ({"a": 1}, True),
    ])
    def test_to_bool(self, value, expected):
        assert to_bool(value) is expected

    def test_to_bool_rejects_other_strings(self):
        with pytest.raises(TemplateError):
            to_bool("maybe")

    def test_expression(self):
        assert evaluate_when("port == 80", {"port": 80}) is True
        assert evaluate_when("port == 80", {"port": 81}) is False

    def test_wrapped_expression(self):
        assert evaluate_when("{{ enabled }}", {"enabled": True}) is True

    def test_list_is_and(self):
        assert evaluate_when(["a", "b"], {"a": True, "b": True}) is True
        assert evaluate_when(["a", "b"], {"a": True, "b": False}) is False

    def test_short_circuit(self):
        """Later conditions may use names guarded by earlier ones."""
        assert evaluate_when(["result is defined", "result.rc == 0"], {}) is False

    def test_literals(self):
        assert evaluate_when(True, {}) is True
        assert evaluate_when(False, {}) is False

    def test_empty_conditional_is_falsy(self):
        assert not Conditional(None)
        assert Conditional("x")

    def test_undefined_name(self):
        with pytest.raises(UndefinedVariableError):
            evaluate_when("missing == 1", {})

    def test_bare_word_result_is_error(self):
        with pytest.raises(TemplateError):
            evaluate_when("answer", {"answer": "perhaps"})
