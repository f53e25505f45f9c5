"""Expression capability: arithmetic expressions and boolean conditions."""

from hydrorating.expression.lexer import Token, tokenize
from hydrorating.expression.parser import (
    DEFAULT_ENGINE,
    Condition,
    DefaultExpressionEngine,
    Expression,
    parse_condition,
    parse_expression,
)
from hydrorating.expression.types import (
    CompiledCondition,
    CompiledExpression,
    ExpressionEngine,
    format_node,
    normalize_variable,
    variable_sort_key,
)

__all__ = [
    "DEFAULT_ENGINE",
    "CompiledCondition",
    "CompiledExpression",
    "Condition",
    "DefaultExpressionEngine",
    "Expression",
    "ExpressionEngine",
    "Token",
    "format_node",
    "normalize_variable",
    "parse_condition",
    "parse_expression",
    "tokenize",
    "variable_sort_key",
]
