"""Tokenizer for rating expressions and conditions."""

from __future__ import annotations

import re
from dataclasses import dataclass

from hydrorating.errors import ExpressionError


@dataclass(frozen=True, slots=True)
class Token:
    """A single lexical token."""

    kind: str  # see _TOKEN_PATTERNS keys + "EOF"
    value: str
    pos: int


# Token patterns - order matters (first match wins)
_TOKEN_PATTERNS: list[tuple[str, str]] = [
    ("WHITESPACE", r"\s+"),
    ("NUMBER", r"(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?"),
    ("COMPARE", r"<=|>=|==|!=|<>|<|>|="),
    ("AND_OP", r"&&"),
    ("OR_OP", r"\|\|"),
    ("BANG", r"!"),
    ("PLUS", r"\+"),
    ("MINUS", r"-"),
    ("STAR", r"\*"),
    ("SLASH", r"/"),
    ("CARET", r"\^"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("COMMA", r","),
    ("IDENT", r"\$\d+|[A-Za-z_][A-Za-z0-9_]*"),
]

_COMPILED_PATTERNS = [(name, re.compile(pat)) for name, pat in _TOKEN_PATTERNS]

# Word forms of comparison operators
WORD_COMPARE: dict[str, str] = {
    "LT": "<", "LE": "<=", "GT": ">", "GE": ">=", "EQ": "==", "NE": "!=",
}

# Symbol aliases normalized to the canonical comparison operators
SYMBOL_COMPARE: dict[str, str] = {"=": "==", "<>": "!="}


def tokenize(text: str) -> list[Token]:
    """Split expression text into tokens, raising on unknown characters."""
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        for name, pattern in _COMPILED_PATTERNS:
            m = pattern.match(text, pos)
            if m:
                if name != "WHITESPACE":
                    tokens.append(Token(kind=name, value=m.group(), pos=pos))
                pos = m.end()
                break
        else:
            raise ExpressionError(f"Unexpected character {text[pos]!r} in {text!r}", pos)
    tokens.append(Token(kind="EOF", value="", pos=pos))
    return tokens
