"""
Unit tests for edge routing conditions.
"""

import pytest

from blockflow.core.conditions import evaluate_condition, get_path, has_path
from blockflow.core.models import Condition


def cond(operator: str, field=None, value=None, conditions=None) -> Condition:
    return Condition(operator=operator, field=field, value=value, conditions=conditions or [])


class TestPaths:
    """Tests for dotted path lookup."""

    def test_nested_dict_and_list(self):
        """Test paths walk dicts and list indices."""
        data = {"user": {"tags": ["a", "b"]}}

        assert get_path(data, "user.tags.1") == "b"
        assert get_path(data, "user.missing") is None
        assert get_path(data, None) is data

    def test_explicit_none_is_present(self):
        """Test has_path distinguishes stored None from a missing key."""
        data = {"x": None}

        assert has_path(data, "x")
        assert not has_path(data, "y")


class TestEvaluateCondition:
    """Tests for condition operators."""

    @pytest.mark.parametrize(
        "operator,field,value,expected",
        [
            ("equals", "status", "ok", True),
            ("equals", "status", "bad", False),
            ("not_equals", "status", "bad", True),
            ("contains", "tags", "vip", True),
            ("not_contains", "tags", "spam", True),
            ("greater_than", "score", 50, True),
            ("less_than", "score", 50, False),
            ("regex", "email", r"@example\.com$", True),
            ("in", "status", ["ok", "done"], True),
            ("not_in", "status", ["ok"], False),
            ("exists", "score", None, True),
            ("not_exists", "missing", None, True),
        ],
    )
    def test_operators(self, operator, field, value, expected):
        """Test each comparison operator against a sample output."""
        data = {"status": "ok", "tags": ["vip"], "score": 80, "email": "a@example.com"}

        assert evaluate_condition(cond(operator, field, value), data) is expected

    def test_operator_case_insensitive(self):
        """Test operator names are matched case-insensitively."""
        assert evaluate_condition(cond("EQUALS", "a", 1), {"a": 1})

    def test_logical_operators(self):
        """Test and/or combine nested conditions."""
        data = {"a": 1, "b": 2}
        both = cond("and", conditions=[cond("equals", "a", 1), cond("equals", "b", 2)])
        either = cond("or", conditions=[cond("equals", "a", 0), cond("equals", "b", 2)])
        neither = cond("or", conditions=[cond("equals", "a", 0), cond("equals", "b", 0)])

        assert evaluate_condition(both, data)
        assert evaluate_condition(either, data)
        assert not evaluate_condition(neither, data)

    def test_type_mismatch_is_false(self):
        """Test incomparable values evaluate to False instead of raising."""
        assert not evaluate_condition(cond("greater_than", "name", 3), {"name": "abc"})
        assert not evaluate_condition(cond("contains", "n", "x"), {"n": 5})

    def test_missing_field_comparisons(self):
        """Test missing fields never satisfy ordering comparisons."""
        assert not evaluate_condition(cond("greater_than", "missing", 0), {})
        assert not evaluate_condition(cond("contains", "missing", "x"), {})

    def test_unknown_operator_is_false(self):
        """Test unknown operators deactivate the edge."""
        assert not evaluate_condition(cond("roughly", "a", 1), {"a": 1})

    def test_whole_output_without_field(self):
        """Test a condition without a field applies to the whole output."""
        assert evaluate_condition(cond("equals", value=5), 5)
