"""
Structural edits of expression trees.

Every function edits ``tree`` in place (callers pass a copy) and returns the
resulting root.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from .expression import Node, count_nodes

if TYPE_CHECKING:
    from .config import Options


def _shallow(node: Node) -> Node:
    return Node(node.degree, node.constant, node.val, node.feature, node.op, node.l, node.r)


def random_node(tree: Node, rng: random.Random) -> Node:
    return rng.choice(list(tree))


def make_random_leaf(nfeatures: int, rng: random.Random) -> Node:
    if rng.random() > 0.5:
        return Node.constant_node(rng.gauss(0.0, 1.0))
    return Node.feature_node(rng.randrange(nfeatures))


def _random_op_node(options: "Options", nfeatures: int, rng: random.Random, make_bin: bool | None = None) -> Node:
    nbin, nuna = options.operators.nbin, options.operators.nuna
    if make_bin is None:
        make_bin = rng.random() < nbin / (nbin + nuna)
    if make_bin:
        return Node.binary(rng.randrange(nbin), make_random_leaf(nfeatures, rng), make_random_leaf(nfeatures, rng))
    return Node.unary(rng.randrange(nuna), make_random_leaf(nfeatures, rng))


def mutate_operator(tree: Node, options: "Options", rng: random.Random) -> Node:
    candidates = [node for node in tree if node.degree > 0]
    if not candidates:
        return tree
    node = rng.choice(candidates)
    if node.degree == 1:
        node.op = rng.randrange(options.operators.nuna)
    else:
        node.op = rng.randrange(options.operators.nbin)
    return tree


def mutate_constant(tree: Node, temperature: float, options: "Options", rng: random.Random) -> Node:
    """Scale a random constant by a factor that shrinks as the search cools."""
    constants = [node for node in tree if node.degree == 0 and node.constant]
    if not constants:
        return tree
    node = rng.choice(constants)
    bottom = 0.1
    max_change = options.perturbation_factor * temperature + 1 + bottom
    factor = max_change ** rng.random()
    if rng.random() > 0.5:
        node.val *= factor
    else:
        node.val /= factor
    if rng.random() < options.probability_negate_constant:
        node.val *= -1
    return tree


def append_random_op(tree: Node, options: "Options", nfeatures: int, rng: random.Random, make_bin: bool | None = None) -> Node:
    leaf = rng.choice([node for node in tree if node.degree == 0])
    leaf.set_from(_random_op_node(options, nfeatures, rng, make_bin))
    return tree


def insert_random_op(tree: Node, options: "Options", nfeatures: int, rng: random.Random) -> Node:
    node = random_node(tree, rng)
    new = _random_op_node(options, nfeatures, rng)
    old = _shallow(node)
    if new.degree == 1 or rng.random() < 0.5:
        new.l = old
    else:
        new.r = old
    node.set_from(new)
    return tree


def prepend_random_op(tree: Node, options: "Options", nfeatures: int, rng: random.Random) -> Node:
    new = _random_op_node(options, nfeatures, rng)
    if new.degree == 1 or rng.random() < 0.5:
        new.l = tree
    else:
        new.r = tree
    return new


def delete_random_op(tree: Node, options: "Options", nfeatures: int, rng: random.Random) -> Node:
    node = random_node(tree, rng)
    if node.degree == 0:
        node.set_from(make_random_leaf(nfeatures, rng))
    elif node.degree == 1:
        node.set_from(node.l)  # type: ignore[arg-type]
    else:
        node.set_from(node.l if rng.random() < 0.5 else node.r)  # type: ignore[arg-type]
    return tree


def gen_random_tree(length: int, options: "Options", nfeatures: int, rng: random.Random) -> Node:
    tree = make_random_leaf(nfeatures, rng)
    for _ in range(length):
        tree = append_random_op(tree, options, nfeatures, rng)
    return tree


def gen_random_tree_fixed_size(node_count: int, options: "Options", nfeatures: int, rng: random.Random) -> Node:
    tree = make_random_leaf(nfeatures, rng)
    cur_size = 1
    while cur_size < node_count:
        if cur_size == node_count - 1 and options.operators.nuna > 0:
            tree = append_random_op(tree, options, nfeatures, rng, make_bin=False)
        else:
            tree = append_random_op(tree, options, nfeatures, rng)
        cur_size = count_nodes(tree)
    return tree


def crossover_trees(tree1: Node, tree2: Node, rng: random.Random) -> tuple[Node, Node]:
    """Swap a random subtree of ``tree1`` with a random subtree of ``tree2`` (on copies)."""
    tree1 = tree1.copy()
    tree2 = tree2.copy()
    node1 = random_node(tree1, rng)
    node2 = random_node(tree2, rng)
    detached1 = _shallow(node1)
    node1.set_from(_shallow(node2))
    node2.set_from(detached1)
    return tree1, tree2
