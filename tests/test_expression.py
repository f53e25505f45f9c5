"""Tests for hydrorating.expression and hydrorating.expression_rating."""
from __future__ import annotations

import math

import pytest

from hydrorating.errors import ConfigurationError, ExpressionError, UnsupportedOperationError
from hydrorating.expression import (
    format_node,
    normalize_variable,
    parse_condition,
    parse_expression,
    tokenize,
    variable_sort_key,
)
from hydrorating.expression_rating import ExpressionRating


# ───────────────────────────── Tokenizer ─────────────────────────────


class TestTokenizer:
    def test_operators_and_numbers(self) -> None:
        kinds = [t.kind for t in tokenize("3.2 * (I1 - .5) ^ 1e2") if t.kind != "EOF"]
        assert kinds == ["NUMBER", "STAR", "LPAREN", "IDENT", "MINUS", "NUMBER", "RPAREN", "CARET", "NUMBER"]

    def test_comparisons(self) -> None:
        values = [t.value for t in tokenize("I1 <= 2 && I2 <> 3") if t.kind != "EOF"]
        assert values == ["I1", "<=", "2", "&&", "I2", "<>", "3"]

    def test_unknown_character(self) -> None:
        with pytest.raises(ExpressionError, match="position 3"):
            tokenize("I1 # 2")


# ───────────────────────────── Expressions ─────────────────────────────


class TestExpressions:
    def test_precedence(self) -> None:
        assert parse_expression("1 + 2 * 3").evaluate({}) == 7
        assert parse_expression("(1 + 2) * 3").evaluate({}) == 9
        assert parse_expression("-2 ^ 2").evaluate({}) == -4
        assert parse_expression("2 ^ 3 ^ 2").evaluate({}) == 512

    def test_variables_sorted_numerically(self) -> None:
        expr = parse_expression("i10 + I2 * $1 + i1")
        assert expr.variables == ("ARG1", "I1", "I2", "I10")

    def test_variable_forms(self) -> None:
        assert normalize_variable("i3") == "I3"
        assert normalize_variable("$2") == "ARG2"
        assert normalize_variable("r12") == "R12"
        assert normalize_variable("X1") is None
        assert variable_sort_key("I10") > variable_sort_key("I9")

    def test_functions_and_constants(self) -> None:
        expr = parse_expression("MAX(I1, 2) + ABS(-1) + ROUND(PI, 2) + LOG(100)")
        assert expr.evaluate({"I1": 5}) == pytest.approx(5 + 1 + 3.14 + 2)
        assert parse_expression("sqrt(16) + ln(e)").evaluate({}) == pytest.approx(5)

    def test_rating_formula(self) -> None:
        expr = parse_expression("3.2 * (I1 - 0.5) ^ 1.6")
        assert expr.evaluate({"I1": 2.5}) == pytest.approx(3.2 * 2**1.6)

    @pytest.mark.parametrize("text", ["", "1 +", "(I1", "I1 I2", "FOO + 1", "X1 * 2", "MIN()", "POW(1)"])
    def test_syntax_errors(self, text: str) -> None:
        with pytest.raises(ExpressionError):
            parse_expression(text)

    def test_evaluation_errors(self) -> None:
        with pytest.raises(ExpressionError, match="Division by zero"):
            parse_expression("I1 / 0").evaluate({"I1": 1})
        with pytest.raises(ExpressionError, match="no value"):
            parse_expression("I1 + I2").evaluate({"I1": 1})
        with pytest.raises(ExpressionError):
            parse_expression("SQRT(I1)").evaluate({"I1": -1})

    def test_format(self) -> None:
        assert format_node(parse_expression("1 + i1 * 2").root) == "(1 + (I1 * 2))"


# ───────────────────────────── Conditions ─────────────────────────────


class TestConditions:
    def test_word_and_symbol_comparisons(self) -> None:
        assert parse_condition("I1 LT 10").test({"I1": 5})
        assert not parse_condition("I1 GE 10").test({"I1": 5})
        assert parse_condition("I1 = 5").test({"I1": 5})
        assert parse_condition("I1 <> 4").test({"I1": 5})

    def test_boolean_operators(self) -> None:
        cond = parse_condition("I1 > 1 AND (I2 < 3 OR NOT R1 == 0)")
        assert cond.variables == ("I1", "I2", "R1")
        assert cond.test({"I1": 2, "I2": 5, "R1": 1})
        assert not cond.test({"I1": 2, "I2": 5, "R1": 0})
        assert parse_condition("I1 > 1 || I1 < -1").test({"I1": -2})
        assert parse_condition("!(I1 > 1) && I1 != 0").test({"I1": 0.5})

    def test_parenthesized_operand(self) -> None:
        assert parse_condition("(I1 + 1) * 2 > 5").test({"I1": 2})

    def test_condition_requires_comparison(self) -> None:
        with pytest.raises(ExpressionError, match="comparison"):
            parse_condition("I1 + 1")


# ───────────────────────────── ExpressionRating ─────────────────────────────


class TestExpressionRating:
    def test_rates_formula(self) -> None:
        r = ExpressionRating("2 * I1 + 1")
        assert r.ind_param_count == 1
        assert r.rate(3) == 7
        assert r.rate_values([0, 1]) == [1, 3]

    def test_multiple_parameters_bind_in_order(self) -> None:
        r = ExpressionRating(
            "I1 * 10 + I2",
            office_id="SWT",
            rating_spec_id="LOC.Elev,Opening;Flow.Formula.1",
            units_id="ft,ft;cfs",
        )
        assert r.rate_one((2, 3)) == 23

    def test_too_many_variables(self) -> None:
        with pytest.raises(ConfigurationError, match="3 variables"):
            ExpressionRating("I1 + I2 + I3", rating_spec_id="LOC.Stage;Flow.Formula.1")

    def test_expression_setter_notifies(self) -> None:
        r = ExpressionRating("I1")
        seen: list[object] = []
        r.on_changed(seen.append)
        r.expression = "I1 * 4"
        assert r.rate(2) == 8
        assert seen == [r]
        with pytest.raises(ExpressionError):
            r.expression = "I1 *"
        assert r.expression == "I1 * 4"

    def test_reverse_unsupported_and_extents_unbounded(self) -> None:
        r = ExpressionRating("I1 ^ 2")
        with pytest.raises(UnsupportedOperationError):
            r.reverse_rate(4)
        ext = r.extents()
        assert ext.low == (-math.inf, -math.inf)
        assert ext.high == (math.inf, math.inf)

    def test_record(self) -> None:
        r = ExpressionRating("I1 + 1", office_id="SWT", effective_date=1000)
        rec = r.to_record()
        assert rec["kind"] == "expression"
        assert rec["expression"] == "I1 + 1"
        assert rec["effective_date"] == 1000
