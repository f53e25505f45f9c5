"""AST node types and capability protocols for rating expressions."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Literal, Protocol, TypeAlias

from hydrorating.errors import ExpressionError


ArithOp: TypeAlias = Literal["+", "-", "*", "/", "^"]
CompareOp: TypeAlias = Literal["<", "<=", ">", ">=", "==", "!="]


# ---------------------------------------------------------------------------
# Capability protocols
# ---------------------------------------------------------------------------

class CompiledExpression(Protocol):
    @property
    def variables(self) -> tuple[str, ...]: ...

    def evaluate(self, bindings: Mapping[str, float]) -> float: ...


class CompiledCondition(Protocol):
    @property
    def variables(self) -> tuple[str, ...]: ...

    def test(self, bindings: Mapping[str, float]) -> bool: ...


class ExpressionEngine(Protocol):
    """What ratings need from an expression implementation."""

    def parse(self, text: str) -> CompiledExpression: ...

    def parse_condition(self, text: str) -> CompiledCondition: ...


# ---------------------------------------------------------------------------
# Arithmetic nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Number:
    value: float


@dataclass(frozen=True, slots=True)
class Variable:
    name: str  # normalized upper case, e.g. "I1", "R2", "ARG1"


@dataclass(frozen=True, slots=True)
class Negate:
    operand: Node


@dataclass(frozen=True, slots=True)
class BinaryOp:
    op: ArithOp
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class Call:
    name: str
    args: tuple[Node, ...]


Node: TypeAlias = Number | Variable | Negate | BinaryOp | Call


# ---------------------------------------------------------------------------
# Boolean nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Compare:
    op: CompareOp
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class BoolGroup:
    """AND / OR over two or more children."""

    operator: Literal["and", "or"]
    children: tuple[BoolNode, ...]


@dataclass(frozen=True, slots=True)
class Not:
    operand: BoolNode


BoolNode: TypeAlias = Compare | BoolGroup | Not


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------

def _round(x: float, digits: float = 0) -> float:
    return float(round(x, int(digits)))


# name -> (callable, min args, max args)
FUNCTIONS: dict[str, tuple[Callable[..., float], int, int]] = {
    "ABS": (abs, 1, 1),
    "SQRT": (math.sqrt, 1, 1),
    "EXP": (math.exp, 1, 1),
    "LN": (math.log, 1, 1),
    "LOG": (math.log10, 1, 1),
    "LOG10": (math.log10, 1, 1),
    "SIN": (math.sin, 1, 1),
    "COS": (math.cos, 1, 1),
    "TAN": (math.tan, 1, 1),
    "MIN": (min, 1, 32),
    "MAX": (max, 1, 32),
    "POW": (math.pow, 2, 2),
    "FLOOR": (lambda x: float(math.floor(x)), 1, 1),
    "CEIL": (lambda x: float(math.ceil(x)), 1, 1),
    "ROUND": (_round, 1, 2),
}

CONSTANTS: dict[str, float] = {"PI": math.pi, "E": math.e}

VARIABLE_RE = re.compile(r"^(?:(I|R|ARG)(\d+)|\$(\d+))$", re.IGNORECASE)


def normalize_variable(name: str) -> str | None:
    """Return the canonical variable name, or None if *name* is not one."""
    m = VARIABLE_RE.match(name)
    if m is None:
        return None
    if m.group(3) is not None:
        return f"ARG{int(m.group(3))}"
    return f"{m.group(1).upper()}{int(m.group(2))}"


def variable_sort_key(name: str) -> tuple[str, int]:
    m = VARIABLE_RE.match(name)
    if m is None or m.group(2) is None:
        return (name, 0)
    return (m.group(1).upper(), int(m.group(2)))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def evaluate_node(node: Node, bindings: Mapping[str, float]) -> float:
    match node:
        case Number(value):
            return value
        case Variable(name):
            try:
                return float(bindings[name])
            except KeyError:
                raise ExpressionError(f"Variable {name} has no value") from None
        case Negate(operand):
            return -evaluate_node(operand, bindings)
        case BinaryOp(op, left, right):
            a = evaluate_node(left, bindings)
            b = evaluate_node(right, bindings)
            return _apply(op, a, b)
        case Call(name, args):
            fn = FUNCTIONS[name][0]
            values = [evaluate_node(a, bindings) for a in args]
            try:
                return float(fn(*values))
            except (ValueError, OverflowError) as e:
                raise ExpressionError(f"{name} failed: {e}") from e
    raise ExpressionError(f"Unknown expression node: {node!r}")


def _apply(op: ArithOp, a: float, b: float) -> float:
    try:
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            return a / b
        return float(math.pow(a, b))
    except ZeroDivisionError:
        raise ExpressionError("Division by zero") from None
    except (ValueError, OverflowError) as e:
        raise ExpressionError(f"Cannot evaluate {a} {op} {b}: {e}") from e


def check_node(node: BoolNode, bindings: Mapping[str, float]) -> bool:
    match node:
        case Compare(op, left, right):
            a = evaluate_node(left, bindings)
            b = evaluate_node(right, bindings)
            if op == "<":
                return a < b
            if op == "<=":
                return a <= b
            if op == ">":
                return a > b
            if op == ">=":
                return a >= b
            if op == "==":
                return a == b
            return a != b
        case BoolGroup("and", children):
            return all(check_node(c, bindings) for c in children)
        case BoolGroup("or", children):
            return any(check_node(c, bindings) for c in children)
        case Not(operand):
            return not check_node(operand, bindings)
    raise ExpressionError(f"Unknown condition node: {node!r}")


def collect_variables(node: Node | BoolNode, out: set[str]) -> set[str]:
    match node:
        case Variable(name):
            out.add(name)
        case Negate(operand) | Not(operand):
            collect_variables(operand, out)
        case BinaryOp(_, left, right) | Compare(_, left, right):
            collect_variables(left, out)
            collect_variables(right, out)
        case Call(_, args):
            for a in args:
                collect_variables(a, out)
        case BoolGroup(_, children):
            for c in children:
                collect_variables(c, out)
    return out


def format_node(node: Node | BoolNode) -> str:
    """Render a node back to fully parenthesized text."""
    match node:
        case Number(value):
            return str(int(value)) if value.is_integer() else repr(value)
        case Variable(name):
            return name
        case Negate(operand):
            return f"-{format_node(operand)}"
        case BinaryOp(op, left, right):
            return f"({format_node(left)} {op} {format_node(right)})"
        case Call(name, args):
            return f"{name}({', '.join(format_node(a) for a in args)})"
        case Compare(op, left, right):
            return f"{format_node(left)} {op} {format_node(right)}"
        case BoolGroup(operator, children):
            joiner = f" {operator.upper()} "
            return "(" + joiner.join(format_node(c) for c in children) + ")"
        case Not(operand):
            return f"NOT {format_node(operand)}"
    raise ExpressionError(f"Unknown node: {node!r}")
