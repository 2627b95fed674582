from __future__ import annotations

import random

import pytest

from turbo_sr.expression import Node
from turbo_sr.migration import migrate, num_to_replace
from turbo_sr.population import PopMember, Population


def _population(size: int, offset: float = 0.0) -> Population:
    return Population(
        [PopMember(Node.constant_node(offset + i), offset + i, offset + i, complexity=1) for i in range(size)]
    )


@pytest.mark.parametrize(
    "size,frac,expected",
    [(33, 0.03, 1), (33, 0.035, 1), (100, 0.03, 3), (10, 0.05, 1), (10, 0.04, 0), (5, 1.0, 5), (0, 0.5, 0)],
)
def test_num_to_replace_rounds_half_up(size, frac, expected):
    assert num_to_replace(size, frac) == expected


def test_migrate_replaces_distinct_slots_with_donor_copies():
    population = _population(100)
    donors = _population(4, offset=1000.0).members
    donor_values = [m.tree.val for m in donors]

    replaced = migrate(donors, population, random.Random(0), frac=0.1)

    assert len(replaced) == 10
    assert len(set(replaced)) == 10
    assert len(population) == 100
    for index in replaced:
        member = population.members[index]
        assert member.tree.val in donor_values
        assert all(member is not donor for donor in donors)
        assert all(member.tree is not donor.tree for donor in donors)
    untouched = set(range(100)) - set(replaced)
    assert all(population.members[i].tree.val == i for i in untouched)


def test_migrate_leaves_donor_pool_unchanged():
    population = _population(20)
    donors = _population(3, offset=50.0).members
    snapshot = [(id(m), m.tree.val, m.birth) for m in donors]

    migrate(donors, population, random.Random(1), frac=0.5, deterministic=True)
    for member in population.members:
        member.tree.val = -1.0

    assert [(id(m), m.tree.val, m.birth) for m in donors] == snapshot


def test_migrate_resets_birth_of_migrants():
    population = _population(10)
    donors = [PopMember(Node.constant_node(7.0), 7.0, 7.0, birth=-5, complexity=1)]
    replaced = migrate(donors, population, random.Random(2), frac=0.3, deterministic=True)
    assert replaced
    for index in replaced:
        assert population.members[index].birth != -5


def test_migrate_without_donors_is_noop():
    population = _population(10)
    before = list(population.members)
    assert migrate([], population, random.Random(0), frac=0.5) == []
    assert population.members == before
