"""Unit tests for template expansion and the condition evaluator."""

from __future__ import annotations

import pytest

from replaykit.runtime.expression import evaluate, evaluate_condition
from replaykit.runtime.templates import apply_assign, expand_templates_deep, get_by_path, interpolate


class TestTemplates:
    def test_interpolate_known_and_unknown(self):
        assert interpolate("Hello {name}{missing}!", {"name": "Ada"}) == "Hello Ada!"

    def test_interpolate_booleans_lowercase(self):
        assert interpolate("{flag}", {"flag": True}) == "true"

    def test_expand_deep_copies_structure(self):
        step = {"target": {"candidates": [{"type": "css", "value": "#{id}"}]}, "n": 3}
        out = expand_templates_deep(step, {"id": "go"})
        assert out["target"]["candidates"][0]["value"] == "#go"
        assert step["target"]["candidates"][0]["value"] == "#{id}"
        assert out["n"] == 3

    def test_get_by_path_with_indexes(self):
        data = {"items": [{"name": "a"}, {"name": "b"}]}
        assert get_by_path(data, "items[1].name") == "b"
        assert get_by_path(data, "items[5].name") is None

    def test_apply_assign(self):
        target: dict = {}
        apply_assign(target, {"body": {"token": "t1"}, "status": 200}, {"tok": "body.token", "code": "status"})
        assert target == {"tok": "t1", "code": 200}


class TestEvaluate:
    @pytest.mark.parametrize(
        "expr,expected",
        [
            ("vars.count > 3", True),
            ("vars.count >= 10", False),
            ("vars.count == 5 && vars.name == 'bob'", True),
            ("vars.count < 2 || vars.flag", True),
            ("!vars.flag", False),
            ("(vars.count + 1) * 2 == 12", True),
            ("vars.nested.level == 2", True),
            ("vars.missing == 1", False),
        ],
    )
    def test_expressions(self, expr, expected):
        variables = {"count": 5, "name": "bob", "flag": True, "nested": {"level": 2}}
        assert bool(evaluate(expr, variables)) is expected

    def test_identifiers_outside_vars_read_as_none(self):
        assert evaluate("window", {}) is None
        assert bool(evaluate("globalThis.process", {"globalThis": 1})) is False

    def test_division_by_zero_is_not_an_error(self):
        assert bool(evaluate("1 / 0 > 0", {})) is False

    def test_true_is_not_equal_to_one(self):
        assert evaluate("true == 1", {}) is False


class TestEvaluateCondition:
    def test_string_condition(self):
        assert evaluate_condition("vars.n < 3", {"n": 1}) is True

    def test_blank_string_is_false(self):
        assert evaluate_condition("   ", {}) is False

    def test_expression_object(self):
        assert evaluate_condition({"expression": "vars.ok"}, {"ok": True}) is True

    def test_var_equals_compares_as_strings(self):
        assert evaluate_condition({"var": "n", "equals": "3"}, {"n": 3}) is True
        assert evaluate_condition({"var": "b", "equals": "true"}, {"b": True}) is True

    def test_var_without_equals_tests_truthiness(self):
        assert evaluate_condition({"var": "v"}, {"v": ""}) is False

    def test_unknown_shape_is_false(self):
        assert evaluate_condition(42, {}) is False
