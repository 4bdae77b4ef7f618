import pytest

from stepflow.engine.conditions import OPERATORS, ConditionEvaluator, canonical_operator, operands_for
from stepflow.engine.context import ExecutionContext
from stepflow.errors import ConditionEvaluationError, ConfigurationError


def test_equals_alias_true_for_same_values():
    assert ConditionEvaluator().evaluate("EQUALS", "1", "1") is True


def test_aliases_resolve_to_canonical_operators():
    assert canonical_operator("equals") == "ifStringEqual"
    assert canonical_operator("") == "always"
    assert canonical_operator(None) == "always"
    assert canonical_operator("GE") == "ifNumericGreaterOrEqual"
    assert canonical_operator("ifStringContains") == "ifStringContains"


def test_unknown_operator_is_configuration_error():
    with pytest.raises(ConfigurationError):
        ConditionEvaluator().evaluate("ifMoonIsFull", "a", "b")


def test_unused_operands_do_not_change_result():
    evaluator = ConditionEvaluator()
    noise = [("", "", ""), ("x", "y", "N"), ("123", "", "whatever")]
    for name, op in OPERATORS.items():
        if name.startswith("ifNumeric"):
            base = ["5", "3", ""]
        elif name.startswith("ifProperty"):
            continue
        else:
            base = ["abc", "b", ""]
        expected = evaluator.evaluate(name, *base)
        for extra in noise:
            values = [base[i] if (i + 1) in op.operands else extra[i] for i in range(3)]
            assert evaluator.evaluate(name, *values) is expected, name


def test_string_case_sensitivity_from_value3_and_options():
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate("ifStringEqual", "abc", "ABC") is False
    assert evaluator.evaluate("ifStringEqual", "abc", "ABC", "N") is True
    assert evaluator.evaluate("ifStringContains", "Hello World", "world", "", {"caseSensitive": False}) is True
    assert evaluator.evaluate("ifStringEqual", "abc", "ABC", "N", {"caseSensitive": True}) is False


def test_numeric_comparisons_accept_decimal_commas():
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate("ifNumericEqual", "1,50", "1.5") is True
    assert evaluator.evaluate("GT", "10", "9") is True
    assert evaluator.evaluate("LE", "3", "3") is True
    assert evaluator.evaluate("ifNumericMinor", "3", "2") is False


def test_non_numeric_operand_fails_evaluation():
    with pytest.raises(ConditionEvaluationError):
        ConditionEvaluator().evaluate("ifNumericGreater", "abc", "1")


def test_regex_operators_and_invalid_pattern():
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate("MATCHES", "order-1234", r"\d{4}$") is True
    assert evaluator.evaluate("ifStringNotMatchRegex", "order", r"\d") is True
    with pytest.raises(ConditionEvaluationError):
        evaluator.evaluate("MATCHES", "x", "(unclosed")


def test_property_existence_reads_run_variables():
    context = ExecutionContext(test="T", testcase="TC")
    context.bind("TOKEN", "abc")
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate("ifPropertyExist", "TOKEN", context=context) is True
    assert evaluator.evaluate("ifPropertyNotExist", "MISSING", context=context) is True
    assert evaluator.evaluate("ifPropertyExist", "TOKEN") is False


def test_property_existence_counts_definitions_of_the_current_frame():
    defined = {("T", "TC", "URL"), ("LIB", "LOGIN", "USER")}
    context = ExecutionContext(test="T", testcase="TC", definitions=lambda *key: key in defined)
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate("ifPropertyExist", "URL", context=context) is True
    assert evaluator.evaluate("ifPropertyExist", "USER", context=context) is False
    with context.library_frame("LIB", "LOGIN"):
        assert evaluator.evaluate("ifPropertyExist", "USER", context=context) is True
        assert evaluator.evaluate("ifPropertyNotExist", "URL", context=context) is True


def test_operands_for_reports_positions():
    assert operands_for("always") == ()
    assert operands_for("IS_EMPTY") == (1,)
    assert operands_for("ifStringEqual") == (1, 2, 3)
