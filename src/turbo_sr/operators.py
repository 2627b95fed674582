"""
Built-in operators and the operator table used by expression trees.

Arithmetic operators are written with Python operators so the same function
evaluates ``numpy`` arrays during search and unit-carrying wrappers during
dimensional analysis. Transcendental operators are numeric only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

import numpy as np

Operator = Callable[..., Any]


def plus(x, y):
    return x + y


def sub(x, y):
    return x - y


def mult(x, y):
    return x * y


def div(x, y):
    return x / y


def safe_pow(x, y):
    """Power returning NaN instead of raising for invalid numeric inputs."""
    if isinstance(x, (np.ndarray, float, int)) and isinstance(y, (np.ndarray, float, int)):
        with np.errstate(all="ignore"):
            return np.power(np.asarray(x, dtype=float), y)
    return x**y


def neg(x):
    return -x


def square(x):
    return x * x


def cube(x):
    return x * x * x


def safe_log(x):
    with np.errstate(all="ignore"):
        return np.log(np.asarray(x, dtype=float))


def safe_sqrt(x):
    with np.errstate(all="ignore"):
        return np.sqrt(np.asarray(x, dtype=float))


def sin(x):
    return np.sin(np.asarray(x, dtype=float))


def cos(x):
    return np.cos(np.asarray(x, dtype=float))


def exp(x):
    with np.errstate(all="ignore"):
        return np.exp(np.asarray(x, dtype=float))


BINARY_ALIASES: dict[str, Operator] = {
    "+": plus,
    "plus": plus,
    "-": sub,
    "sub": sub,
    "*": mult,
    "mult": mult,
    "/": div,
    "div": div,
    "^": safe_pow,
    "pow": safe_pow,
}

UNARY_ALIASES: dict[str, Operator] = {
    "neg": neg,
    "square": square,
    "cube": cube,
    "log": safe_log,
    "sqrt": safe_sqrt,
    "sin": sin,
    "cos": cos,
    "exp": exp,
}

INFIX_NAMES: dict[Operator, str] = {plus: "+", sub: "-", mult: "*", div: "/", safe_pow: "^"}
DISPLAY_NAMES: dict[Operator, str] = {safe_log: "log", safe_sqrt: "sqrt"}

# Operators known to propagate units through their Python operator overloads.
UNIT_AWARE_OPERATORS: frozenset[Operator] = frozenset({plus, sub, mult, div, safe_pow, neg, square, cube})
# Operators that only make sense on plain numbers.
NUMERIC_ONLY_OPERATORS: frozenset[Operator] = frozenset({safe_log, safe_sqrt, sin, cos, exp})


def _resolve(ops: Iterable[str | Operator], aliases: dict[str, Operator], kind: str) -> tuple[Operator, ...]:
    resolved: list[Operator] = []
    for op in ops:
        if isinstance(op, str):
            try:
                resolved.append(aliases[op])
            except KeyError:
                raise ValueError(f"Unknown {kind} operator {op!r}; pass a callable instead") from None
        elif callable(op):
            resolved.append(op)
        else:
            raise ValueError(f"{kind.capitalize()} operator {op!r} is neither a name nor a callable")
    return tuple(resolved)


@dataclass(frozen=True)
class OperatorEnum:
    binary_operators: tuple[Operator, ...]
    unary_operators: tuple[Operator, ...] = ()

    @classmethod
    def build(cls, binary: Iterable[str | Operator], unary: Iterable[str | Operator]) -> "OperatorEnum":
        return cls(_resolve(binary, BINARY_ALIASES, "binary"), _resolve(unary, UNARY_ALIASES, "unary"))

    @property
    def nbin(self) -> int:
        return len(self.binary_operators)

    @property
    def nuna(self) -> int:
        return len(self.unary_operators)

    def all_operators(self) -> tuple[Operator, ...]:
        return self.binary_operators + self.unary_operators


def operator_name(op: Operator) -> str:
    if op in INFIX_NAMES:
        return INFIX_NAMES[op]
    if op in DISPLAY_NAMES:
        return DISPLAY_NAMES[op]
    return getattr(op, "__name__", repr(op))


def is_infix(op: Operator) -> bool:
    return op in INFIX_NAMES
