import pytest

from sealdesk.fields.formula import evaluate_formula, format_number, to_number


@pytest.mark.parametrize("formula, values, expected", [
    ("{qty} * {price}", {"qty": "3", "price": "2.5"}, 7.5),
    ("{a} + {b} * 2", {"a": 1, "b": 4}, 9.0),
    ("({a} + {b}) * 2", {"a": 1, "b": 4}, 10.0),
    ("-{a} + 10", {"a": "4"}, 6.0),
    ("{ a } - 1", {"a": "5"}, 4.0),
    ("100 / 8", {}, 12.5),
])
def test_evaluates_arithmetic(formula, values, expected):
    assert evaluate_formula(formula, values) == pytest.approx(expected)


def test_missing_and_non_numeric_references_count_as_zero():
    assert evaluate_formula("{a} + {missing} + {text}", {"a": "2", "text": "abc"}) == 2.0
    assert evaluate_formula("{a} * 3", {"a": ""}) == 0.0


def test_division_by_zero_yields_zero():
    assert evaluate_formula("{a} / {b}", {"a": "10", "b": "0"}) == 0.0


@pytest.mark.parametrize("formula", [
    "{a} +",
    "(1 + 2",
    "__import__('os')",
    "2 ** 3",
    "",
    None,
])
def test_malformed_formulas_evaluate_to_zero(formula):
    assert evaluate_formula(formula, {"a": "1"}) == 0.0


def test_tiny_substituted_values_keep_their_exponent():
    assert evaluate_formula("{a} * 1000000", {"a": "0.0000001"}) == pytest.approx(0.1)


def test_to_number_and_format_number():
    assert to_number(" 42 ") == 42.0
    assert to_number(True) == 0.0
    assert to_number("inf") == 0.0
    assert format_number(12.0) == "12"
    assert format_number(7.5) == "7.5"
