"""
Expression trees evaluated against tabular data.

A ``Node`` is a leaf (constant or feature), a unary node or a binary node.
Operators are stored as indices into an ``OperatorEnum`` so trees stay small
and pickle cleanly across process boundaries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence

import numpy as np

from .operators import OperatorEnum, is_infix, operator_name


@dataclass(slots=True, eq=False)
class Node:
    degree: int = 0
    constant: bool = True
    val: float = 0.0
    feature: int = 0
    op: int = 0
    l: "Node | None" = None
    r: "Node | None" = None

    @classmethod
    def constant_node(cls, val: float) -> "Node":
        return cls(degree=0, constant=True, val=float(val))

    @classmethod
    def feature_node(cls, feature: int) -> "Node":
        return cls(degree=0, constant=False, feature=feature)

    @classmethod
    def unary(cls, op: int, child: "Node") -> "Node":
        return cls(degree=1, constant=False, op=op, l=child)

    @classmethod
    def binary(cls, op: int, left: "Node", right: "Node") -> "Node":
        return cls(degree=2, constant=False, op=op, l=left, r=right)

    def copy(self) -> "Node":
        return Node(
            degree=self.degree,
            constant=self.constant,
            val=self.val,
            feature=self.feature,
            op=self.op,
            l=self.l.copy() if self.l is not None else None,
            r=self.r.copy() if self.r is not None else None,
        )

    def set_from(self, other: "Node") -> None:
        """Overwrite this node in place with (the fields of) ``other``."""
        self.degree = other.degree
        self.constant = other.constant
        self.val = other.val
        self.feature = other.feature
        self.op = other.op
        self.l = other.l
        self.r = other.r

    def children(self) -> tuple["Node", ...]:
        if self.degree == 0:
            return ()
        if self.degree == 1:
            return (self.l,)  # type: ignore[return-value]
        return (self.l, self.r)  # type: ignore[return-value]

    def __iter__(self) -> Iterator["Node"]:
        """Pre-order traversal."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children()))


def tree_mapreduce(
    f_leaf: Callable[[Node], Any],
    f_branch: Callable[[Node], Any],
    op: Callable[..., Any],
    tree: Node,
) -> Any:
    """Fold ``tree`` bottom-up: leaves map through ``f_leaf``, branches through
    ``f_branch`` and are combined with their children's results by ``op``."""
    if tree.degree == 0:
        return f_leaf(tree)
    children = [tree_mapreduce(f_leaf, f_branch, op, child) for child in tree.children()]
    return op(f_branch(tree), *children)


def count_nodes(tree: Node) -> int:
    return sum(1 for _ in tree)


def count_depth(tree: Node) -> int:
    return tree_mapreduce(lambda _: 1, lambda _: 1, lambda one, *depths: one + max(depths), tree)


def count_constants(tree: Node) -> int:
    return sum(1 for node in tree if node.degree == 0 and node.constant)


def get_constants(tree: Node) -> list[float]:
    return [node.val for node in tree if node.degree == 0 and node.constant]


def set_constants(tree: Node, values: Sequence[float]) -> None:
    constants = [node for node in tree if node.degree == 0 and node.constant]
    if len(constants) != len(values):
        raise ValueError(f"Expected {len(constants)} constants, got {len(values)}")
    for node, value in zip(constants, values):
        node.val = float(value)


def _format_constant(val: float) -> str:
    return f"{val:.6g}"


def string_tree(tree: Node, operators: OperatorEnum, variable_names: Sequence[str] | None = None) -> str:
    if tree.degree == 0:
        if tree.constant:
            return _format_constant(tree.val)
        if variable_names is not None:
            return variable_names[tree.feature]
        return f"x{tree.feature + 1}"
    if tree.degree == 1:
        name = operator_name(operators.unary_operators[tree.op])
        return f"{name}({string_tree(tree.l, operators, variable_names)})"  # type: ignore[arg-type]
    op = operators.binary_operators[tree.op]
    left = string_tree(tree.l, operators, variable_names)  # type: ignore[arg-type]
    right = string_tree(tree.r, operators, variable_names)  # type: ignore[arg-type]
    if is_infix(op):
        return f"({left} {operator_name(op)} {right})"
    return f"{operator_name(op)}({left}, {right})"


def eval_tree_array(tree: Node, X: np.ndarray, operators: OperatorEnum) -> tuple[np.ndarray, bool]:
    """Evaluate ``tree`` on every row of ``X`` (rows x features).

    Returns the output column and whether evaluation completed without
    producing a non-finite value. Evaluation stops at the first non-finite
    intermediate result.
    """
    nrows = X.shape[0]
    with np.errstate(all="ignore"):
        return _eval(tree, X, operators, nrows)


def _eval(tree: Node, X: np.ndarray, operators: OperatorEnum, nrows: int) -> tuple[np.ndarray, bool]:
    if tree.degree == 0:
        if tree.constant:
            out = np.full(nrows, tree.val, dtype=float)
            return out, bool(np.isfinite(tree.val))
        return np.asarray(X[:, tree.feature], dtype=float), True

    left, complete = _eval(tree.l, X, operators, nrows)  # type: ignore[arg-type]
    if not complete:
        return left, False
    if tree.degree == 1:
        out = operators.unary_operators[tree.op](left)
    else:
        right, complete = _eval(tree.r, X, operators, nrows)  # type: ignore[arg-type]
        if not complete:
            return right, False
        out = operators.binary_operators[tree.op](left, right)
    out = np.broadcast_to(np.asarray(out, dtype=float), (nrows,))
    return out, bool(np.all(np.isfinite(out)))
