"""
Dimensional consistency checking for candidate expressions.

A tree is folded bottom-up into a ``WildcardQuantity``: a ``Quantity`` plus a
flag marking values derived only from free constants (whose units may adapt
to their context) and a flag marking a detected violation. Once a node
violates, every combinator returns the violating operand unchanged.

User operators are not required to understand ``WildcardQuantity``. Each
operator is looked up in an ``OperatorCapabilities`` table keyed by the kinds
of argument it is called with; unknown entries are probed once, memoised, and
the first fallback logs a single warning per process.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

import numpy as np

from .expression import Node, tree_mapreduce
from .operators import NUMERIC_ONLY_OPERATORS, UNIT_AWARE_OPERATORS, Operator, OperatorEnum, operator_name
from .units import DIMENSIONLESS, Quantity

if TYPE_CHECKING:
    from .config import Options
    from .dataset import Dataset

logger = logging.getLogger(__name__)

WRAPPED = "wrapped"
RAW = "raw"

UNARY_KINDS = ((WRAPPED,),)
BINARY_KINDS = ((WRAPPED, WRAPPED), (RAW, WRAPPED), (WRAPPED, RAW))


@dataclass(frozen=True, slots=True)
class WildcardQuantity:
    value: Quantity
    wildcard: bool = False
    violates: bool = False

    def isfinite(self) -> bool:
        return self.value.isfinite()

    def __mul__(self, other: object) -> "WildcardQuantity":
        if not isinstance(other, WildcardQuantity):
            return NotImplemented
        if self.violates:
            return self
        if other.violates:
            return other
        return WildcardQuantity(self.value * other.value, self.wildcard or other.wildcard, False)

    def __truediv__(self, other: object) -> "WildcardQuantity":
        if not isinstance(other, WildcardQuantity):
            return NotImplemented
        if self.violates:
            return self
        if other.violates:
            return other
        return WildcardQuantity(self.value / other.value, self.wildcard or other.wildcard, False)

    def _additive(self, other: "WildcardQuantity", op: Callable[[Any, Any], Any]) -> "WildcardQuantity":
        if self.violates:
            return self
        if other.violates:
            return other
        left, right = self.value, other.value
        if left.same_dimensions(right):
            return WildcardQuantity(op(left, right), self.wildcard and other.wildcard, False)
        if self.wildcard and other.wildcard:
            # Neither side has committed to a dimension yet; defer resolution.
            return WildcardQuantity(Quantity(op(left.ustrip(), right.ustrip())), True, False)
        if self.wildcard:
            return WildcardQuantity(op(Quantity(left.ustrip(), right.dimensions), right), False, False)
        if other.wildcard:
            return WildcardQuantity(op(left, Quantity(right.ustrip(), left.dimensions)), False, False)
        return violation()

    def __add__(self, other: object) -> "WildcardQuantity":
        if not isinstance(other, WildcardQuantity):
            return NotImplemented
        return self._additive(other, lambda a, b: a + b)

    def __sub__(self, other: object) -> "WildcardQuantity":
        if not isinstance(other, WildcardQuantity):
            return NotImplemented
        return self._additive(other, lambda a, b: a - b)

    def __pow__(self, other: object) -> "WildcardQuantity":
        if not isinstance(other, WildcardQuantity):
            return NotImplemented
        if self.violates:
            return self
        if other.violates:
            return other
        if other.value.is_dimensionless:
            return WildcardQuantity(self.value**other.value, self.wildcard, False)
        if other.wildcard:
            return WildcardQuantity(self.value ** Quantity(other.value.ustrip()), self.wildcard, False)
        return violation()

    def __neg__(self) -> "WildcardQuantity":
        if self.violates:
            return self
        return WildcardQuantity(-self.value, self.wildcard, False)


def violation() -> WildcardQuantity:
    return WildcardQuantity(Quantity(np.float64(1.0)), False, True)


class OneShotWarning:
    """A warning that is logged at most once, even when raced from many threads."""

    def __init__(self, log: logging.Logger, message: str) -> None:
        self._log = log
        self._message = message
        self._lock = threading.Lock()
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def warn(self, *args: Any) -> bool:
        if self._fired:
            return False
        with self._lock:
            if self._fired:
                return False
            self._fired = True
        self._log.warning(self._message, *args)
        return True

    def reset(self) -> None:
        with self._lock:
            self._fired = False


FALLBACK_WARNING = OneShotWarning(
    logger,
    "Encountered %r when calling %s during dimensional analysis. "
    "The operator does not accept unit-carrying values, so it will be probed by trial calls, "
    "which is slower. Define it on plain floats/arrays, or build it from +, -, *, /, ** "
    "if units should propagate through it.",
)


class OperatorCapabilities:
    """Memo of which argument kinds each operator accepts.

    ``True`` means the operator returns a ``WildcardQuantity`` when called with
    those kinds, ``False`` means it does not (it raised ``TypeError`` or
    returned something else).
    """

    def __init__(self) -> None:
        self._table: dict[tuple[Operator, tuple[str, ...]], bool] = {}
        self._lock = threading.Lock()

    def __getstate__(self) -> dict[str, Any]:
        return {"table": dict(self._table)}

    def __setstate__(self, state: dict[str, Any]) -> None:
        self._table = state["table"]
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._table)

    def declare(self, op: Operator, kinds: tuple[str, ...], capable: bool) -> None:
        with self._lock:
            self._table[(op, kinds)] = capable

    def lookup(self, op: Operator, kinds: tuple[str, ...]) -> bool | None:
        return self._table.get((op, kinds))

    def prime(self, operators: OperatorEnum) -> None:
        """Record what is already known about the configured built-in operators."""
        for op in operators.binary_operators:
            if op in UNIT_AWARE_OPERATORS:
                self.declare(op, (WRAPPED, WRAPPED), True)
                self.declare(op, (RAW, WRAPPED), False)
                self.declare(op, (WRAPPED, RAW), False)
            elif op in NUMERIC_ONLY_OPERATORS:
                for kinds in BINARY_KINDS:
                    self.declare(op, kinds, False)
        for op in operators.unary_operators:
            if op in UNIT_AWARE_OPERATORS:
                self.declare(op, (WRAPPED,), True)
            elif op in NUMERIC_ONLY_OPERATORS:
                self.declare(op, (WRAPPED,), False)

    def call(self, op: Operator, kinds: tuple[str, ...], *args: Any) -> WildcardQuantity | None:
        """Call ``op`` if it can take ``kinds``; ``None`` when it cannot."""
        known = self.lookup(op, kinds)
        if known is False:
            return None
        try:
            result = op(*args)
        except TypeError as exc:
            if known is None:
                self.declare(op, kinds, False)
            FALLBACK_WARNING.warn(exc, operator_name(op))
            return None
        if not isinstance(result, WildcardQuantity):
            if known is None:
                self.declare(op, kinds, False)
            return None
        if known is None:
            self.declare(op, kinds, True)
        return result


def _numeric(value: Any) -> WildcardQuantity:
    return WildcardQuantity(Quantity(np.float64(value), DIMENSIONLESS), False, False)


def _numeric_ok(x: WildcardQuantity) -> bool:
    return x.wildcard or x.value.is_dimensionless


def deg0_eval(x: np.ndarray, variable_units: tuple[Quantity, ...], node: Node) -> WildcardQuantity:
    if node.constant:
        return WildcardQuantity(Quantity(np.float64(node.val)), True, False)
    unit = variable_units[node.feature]
    return WildcardQuantity(Quantity(x[node.feature] * unit.value, unit.dimensions), False, False)


def deg1_eval(op: Operator, l: WildcardQuantity, capabilities: OperatorCapabilities) -> WildcardQuantity:
    if l.violates:
        return l
    if not l.isfinite():
        return violation()
    result = capabilities.call(op, (WRAPPED,), l)
    if result is not None:
        return result
    if _numeric_ok(l):
        return _numeric(op(l.value.ustrip()))
    return violation()


def deg2_eval(
    op: Operator, l: WildcardQuantity, r: WildcardQuantity, capabilities: OperatorCapabilities
) -> WildcardQuantity:
    if l.violates:
        return l
    if r.violates:
        return r
    if not l.isfinite() or not r.isfinite():
        return violation()
    result = capabilities.call(op, (WRAPPED, WRAPPED), l, r)
    if result is not None:
        return result
    if l.wildcard:
        result = capabilities.call(op, (RAW, WRAPPED), l.value.ustrip(), r)
        if result is not None:
            return result
    if r.wildcard:
        result = capabilities.call(op, (WRAPPED, RAW), l, r.value.ustrip())
        if result is not None:
            return result
    if _numeric_ok(l) and _numeric_ok(r):
        return _numeric(op(l.value.ustrip(), r.value.ustrip()))
    return violation()


def evaluate_dimensions(
    tree: Node,
    x: np.ndarray,
    variable_units: tuple[Quantity, ...],
    operators: OperatorEnum,
    capabilities: OperatorCapabilities,
) -> WildcardQuantity:
    """Fold ``tree`` on one row of features ``x`` into a single ``WildcardQuantity``."""

    def combine(node: Node, *args: WildcardQuantity) -> WildcardQuantity:
        if node.degree == 1:
            return deg1_eval(operators.unary_operators[node.op], args[0], capabilities)
        return deg2_eval(operators.binary_operators[node.op], args[0], args[1], capabilities)

    with np.errstate(all="ignore"):
        return tree_mapreduce(lambda leaf: deg0_eval(x, variable_units, leaf), lambda node: node, combine, tree)


def violates_dimensional_constraints(tree: Node, dataset: "Dataset", options: "Options") -> bool:
    if dataset.X_units is None and dataset.y_units is None:
        return False
    x = dataset.X[0, :]
    variable_units = dataset.X_units or tuple(Quantity(np.float64(1.0)) for _ in range(dataset.nfeatures))
    result = evaluate_dimensions(tree, x, variable_units, options.operators, options.capabilities)
    if result.violates:
        return True
    if dataset.y_units is not None and not result.wildcard:
        return result.value.dimensions != dataset.y_units.dimensions
    return False
