"""
Best-per-complexity archive and its dominating (pareto) subset.

Slot ``i`` of a ``HallOfFame`` only ever holds a member of complexity ``i``,
and the stored score only decreases over time.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable, Sequence

from .expression import string_tree

if TYPE_CHECKING:
    from .config import Options
    from .dataset import Dataset
    from .population import PopMember

# Largest operator arity; trees may briefly exceed maxsize by this much.
MAX_DEGREE = 2

CSV_HEADER = "Complexity,Loss,Equation"


class HallOfFame:
    def __init__(self, maxsize: int) -> None:
        self.maxsize = maxsize
        size = maxsize + MAX_DEGREE
        self.members: list["PopMember | None"] = [None] * size
        self.exists: list[bool] = [False] * size

    @classmethod
    def from_options(cls, options: "Options") -> "HallOfFame":
        return cls(options.maxsize)

    def __len__(self) -> int:
        return len(self.members)

    def valid_size(self, size: int) -> bool:
        return 0 < size <= len(self.members)

    def get(self, size: int) -> "PopMember | None":
        if not self.valid_size(size) or not self.exists[size - 1]:
            return None
        return self.members[size - 1]

    def update(self, member: "PopMember") -> bool:
        """Store a copy of ``member`` if its slot is empty or it scores strictly lower."""
        size = member.complexity
        if not self.valid_size(size):
            return False
        current = self.members[size - 1]
        if self.exists[size - 1] and current is not None:
            # A NaN occupant never blocks a comparable member
            if not (member.score < current.score or math.isnan(current.score)):
                return False
        self.members[size - 1] = member.copy()
        self.exists[size - 1] = True
        return True

    def existing_members(self) -> list["PopMember"]:
        return [m for m, exists in zip(self.members, self.exists) if exists and m is not None]

    def copy(self) -> "HallOfFame":
        hof = HallOfFame(self.maxsize)
        hof.members = [m.copy() if m is not None else None for m in self.members]
        hof.exists = list(self.exists)
        return hof

    def rescore(self, dataset: "Dataset", options: "Options") -> None:
        """Recompute score and loss of every stored member against ``dataset``."""
        for member in self.existing_members():
            member.rescore(dataset, options)


def calculate_pareto_frontier(hof: HallOfFame) -> list["PopMember"]:
    """Members with strictly lower loss than every simpler archived member.

    Members whose loss is NaN never dominate and never block others.
    """
    dominating: list["PopMember"] = []
    best_loss: float | None = None
    for member in hof.existing_members():
        if math.isnan(member.loss):
            continue
        if best_loss is None or member.loss < best_loss:
            dominating.append(member.copy())
            best_loss = member.loss
    return dominating


def output_file_for(options: "Options", output: int, nout: int) -> str:
    path = str(options.output_file)
    if nout > 1:
        path = f"{path}.out{output + 1}"
    return path


def format_hall_of_fame_csv(
    dominating: Iterable["PopMember"], options: "Options", variable_names: Sequence[str] | None = None
) -> str:
    lines = [CSV_HEADER]
    for member in dominating:
        equation = string_tree(member.tree, options.operators, variable_names)
        lines.append(f'{member.complexity},{member.loss},"{equation}"')
    return "\n".join(lines) + "\n"


def save_hall_of_fame(
    path: str,
    dominating: Iterable["PopMember"],
    options: "Options",
    variable_names: Sequence[str] | None = None,
) -> None:
    """Write the dominating set to ``path`` and then to ``path + ".bkup"``.

    The second copy keeps a readable file around if the process dies
    mid-write. I/O errors propagate.
    """
    content = format_hall_of_fame_csv(dominating, options, variable_names)
    for out_file in (path, path + ".bkup"):
        with open(out_file, "w", encoding="utf-8") as handle:
            handle.write(content)
