"""Recursive-descent parser for rating expressions and conditions.

Grammar::

    condition   := or_cond
    or_cond     := and_cond (('OR' | '||') and_cond)*
    and_cond    := not_cond (('AND' | '&&') not_cond)*
    not_cond    := ('NOT' | '!') not_cond | '(' condition ')' | comparison
    comparison  := sum COMPARE sum
    sum         := product (('+' | '-') product)*
    product     := unary (('*' | '/') unary)*
    unary       := ('-' | '+') unary | power
    power       := atom ('^' unary)?
    atom        := NUMBER | CONSTANT | VARIABLE | FUNCTION '(' sum (',' sum)* ')'
                 | '(' sum ')'
    COMPARE     := '<' | '<=' | '>' | '>=' | '==' | '!=' | '=' | '<>'
                 | 'LT' | 'LE' | 'GT' | 'GE' | 'EQ' | 'NE'
    VARIABLE    := 'I' n | 'R' n | 'ARG' n | '$' n

Public API:

* ``parse_expression(text)`` - compile arithmetic text into an ``Expression``.
* ``parse_condition(text)`` - compile boolean text into a ``Condition``.
* ``DefaultExpressionEngine`` - the two functions behind the engine protocol.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from hydrorating.errors import ExpressionError
from hydrorating.expression.lexer import SYMBOL_COMPARE, WORD_COMPARE, Token, tokenize
from hydrorating.expression.types import (
    CONSTANTS,
    FUNCTIONS,
    BinaryOp,
    BoolGroup,
    BoolNode,
    Call,
    Compare,
    Negate,
    Node,
    Not,
    Number,
    Variable,
    check_node,
    collect_variables,
    evaluate_node,
    normalize_variable,
    variable_sort_key,
)

_KEYWORDS: frozenset[str] = frozenset({"AND", "OR", "NOT", *WORD_COMPARE})


# ---------------------------------------------------------------------------
# Compiled results
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Expression:
    """A parsed arithmetic expression."""

    text: str
    root: Node
    variables: tuple[str, ...]

    def evaluate(self, bindings: Mapping[str, float]) -> float:
        return evaluate_node(self.root, bindings)


@dataclass(frozen=True, slots=True)
class Condition:
    """A parsed boolean condition."""

    text: str
    root: BoolNode
    variables: tuple[str, ...]

    def test(self, bindings: Mapping[str, float]) -> bool:
        return check_node(self.root, bindings)


def _sorted_variables(node: Node | BoolNode) -> tuple[str, ...]:
    return tuple(sorted(collect_variables(node, set()), key=variable_sort_key))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class _Parser:
    """Recursive descent parser over a token list."""

    def __init__(self, tokens: list[Token], source_text: str) -> None:
        self._tokens = tokens
        self._source = source_text
        self._pos = 0

    def _peek(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        if self._pos < len(self._tokens) - 1:
            self._pos += 1
        return tok

    def _expect(self, kind: str) -> Token:
        tok = self._peek()
        if tok.kind != kind:
            self._error(f"Expected {kind}, got {tok.kind} ({tok.value!r})", tok)
        return self._advance()

    def _error(self, msg: str, tok: Token | None = None) -> None:
        tok = tok if tok is not None else self._peek()
        raise ExpressionError(f"{msg} in {self._source!r}", tok.pos)

    def _is_word(self, word: str) -> bool:
        tok = self._peek()
        return tok.kind == "IDENT" and tok.value.upper() == word

    def expect_end(self) -> None:
        tok = self._peek()
        if tok.kind != "EOF":
            self._error(f"Unexpected token {tok.value!r}", tok)

    # --- Conditions -------------------------------------------------------

    def parse_or_cond(self) -> BoolNode:
        """or_cond := and_cond (OR and_cond)*"""
        parts = [self.parse_and_cond()]
        while self._peek().kind == "OR_OP" or self._is_word("OR"):
            self._advance()
            parts.append(self.parse_and_cond())
        if len(parts) == 1:
            return parts[0]
        return BoolGroup(operator="or", children=tuple(parts))

    def parse_and_cond(self) -> BoolNode:
        """and_cond := not_cond (AND not_cond)*"""
        parts = [self.parse_not_cond()]
        while self._peek().kind == "AND_OP" or self._is_word("AND"):
            self._advance()
            parts.append(self.parse_not_cond())
        if len(parts) == 1:
            return parts[0]
        return BoolGroup(operator="and", children=tuple(parts))

    def parse_not_cond(self) -> BoolNode:
        """not_cond := NOT not_cond | '(' condition ')' | comparison"""
        if self._peek().kind == "BANG" or self._is_word("NOT"):
            self._advance()
            return Not(self.parse_not_cond())
        if self._peek().kind == "LPAREN":
            # either a parenthesized condition or a parenthesized operand
            start = self._pos
            try:
                self._advance()
                inner = self.parse_or_cond()
                self._expect("RPAREN")
                return inner
            except ExpressionError:
                self._pos = start
        return self.parse_comparison()

    def parse_comparison(self) -> BoolNode:
        left = self.parse_sum()
        tok = self._peek()
        if tok.kind == "COMPARE":
            op = SYMBOL_COMPARE.get(tok.value, tok.value)
        elif tok.kind == "IDENT" and tok.value.upper() in WORD_COMPARE:
            op = WORD_COMPARE[tok.value.upper()]
        else:
            self._error("Expected comparison operator", tok)
        self._advance()
        right = self.parse_sum()
        return Compare(op=op, left=left, right=right)  # type: ignore[arg-type]

    # --- Arithmetic -------------------------------------------------------

    def parse_sum(self) -> Node:
        """sum := product (('+' | '-') product)*"""
        node = self.parse_product()
        while self._peek().kind in ("PLUS", "MINUS"):
            op = "+" if self._advance().kind == "PLUS" else "-"
            node = BinaryOp(op, node, self.parse_product())
        return node

    def parse_product(self) -> Node:
        """product := unary (('*' | '/') unary)*"""
        node = self.parse_unary()
        while self._peek().kind in ("STAR", "SLASH"):
            op = "*" if self._advance().kind == "STAR" else "/"
            node = BinaryOp(op, node, self.parse_unary())
        return node

    def parse_unary(self) -> Node:
        """unary := ('-' | '+') unary | power"""
        kind = self._peek().kind
        if kind == "MINUS":
            self._advance()
            return Negate(self.parse_unary())
        if kind == "PLUS":
            self._advance()
            return self.parse_unary()
        return self.parse_power()

    def parse_power(self) -> Node:
        """power := atom ('^' unary)?"""
        base = self.parse_atom()
        if self._peek().kind == "CARET":
            self._advance()
            return BinaryOp("^", base, self.parse_unary())
        return base

    def parse_atom(self) -> Node:
        tok = self._peek()

        if tok.kind == "NUMBER":
            self._advance()
            return Number(float(tok.value))

        if tok.kind == "LPAREN":
            self._advance()
            inner = self.parse_sum()
            self._expect("RPAREN")
            return inner

        if tok.kind == "IDENT":
            name = tok.value.upper()
            if name in _KEYWORDS:
                self._error(f"Unexpected operator {tok.value!r}", tok)
            self._advance()
            if name in FUNCTIONS:
                return self._parse_call(name, tok)
            if name in CONSTANTS:
                return Number(CONSTANTS[name])
            var = normalize_variable(tok.value)
            if var is None:
                self._error(f"Unknown identifier {tok.value!r}", tok)
            return Variable(var)  # type: ignore[arg-type]

        if tok.kind == "EOF":
            self._error("Unexpected end of expression", tok)
        self._error(f"Unexpected token {tok.value!r}", tok)
        raise AssertionError("unreachable")

    def _parse_call(self, name: str, tok: Token) -> Node:
        self._expect("LPAREN")
        args = [self.parse_sum()]
        while self._peek().kind == "COMMA":
            self._advance()
            args.append(self.parse_sum())
        self._expect("RPAREN")
        _, min_args, max_args = FUNCTIONS[name]
        if not min_args <= len(args) <= max_args:
            self._error(f"{name} takes {min_args}..{max_args} arguments, got {len(args)}", tok)
        return Call(name, tuple(args))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_expression(text: str) -> Expression:
    """Compile arithmetic expression text.

    Raises ExpressionError on any syntax error.
    """
    if not text or not text.strip():
        raise ExpressionError("Expression text is empty")
    parser = _Parser(tokenize(text), text)
    root = parser.parse_sum()
    parser.expect_end()
    return Expression(text=text.strip(), root=root, variables=_sorted_variables(root))


def parse_condition(text: str) -> Condition:
    """Compile boolean condition text."""
    if not text or not text.strip():
        raise ExpressionError("Condition text is empty")
    parser = _Parser(tokenize(text), text)
    root = parser.parse_or_cond()
    parser.expect_end()
    return Condition(text=text.strip(), root=root, variables=_sorted_variables(root))


class DefaultExpressionEngine:
    """Expression capability backed by this package's parser."""

    def parse(self, text: str) -> Expression:
        return parse_expression(text)

    def parse_condition(self, text: str) -> Condition:
        return parse_condition(text)


DEFAULT_ENGINE = DefaultExpressionEngine()
