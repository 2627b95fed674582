"""
Resumable search state: the last population snapshot of every slot plus the
archive of every output.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .hall_of_fame import HallOfFame
    from .population import Population


@dataclass
class SearchState:
    """``populations[j][i]`` is population ``i`` of output ``j``; ``None`` if it never completed a cycle."""

    populations: List[List["Population | None"]]
    halls_of_fame: List["HallOfFame"]
    schema_version: int = field(default=1)

    _SCHEMA_VERSION = 1

    @property
    def nout(self) -> int:
        return len(self.halls_of_fame)

    def population(self, output: int, index: int) -> "Population | None":
        try:
            return self.populations[output][index]
        except IndexError:
            return None

    def hall_of_fame(self) -> "HallOfFame | List[HallOfFame]":
        """The single archive for one output, else the list of archives."""
        return self.halls_of_fame[0] if self.nout == 1 else self.halls_of_fame

    def save(self, path: str, *, use_cloudpickle: bool = False) -> None:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as f:
            if use_cloudpickle:
                import cloudpickle as pickle
            else:
                import pickle
            serialized = dict(self.__dict__.items())
            serialized["schema_version"] = SearchState._SCHEMA_VERSION
            pickle.dump(serialized, f)

    @staticmethod
    def load(path: str) -> "SearchState":
        with open(path, "rb") as f:
            import pickle

            data = pickle.load(f)

        version = data.get("schema_version")
        if version is None or version > SearchState._SCHEMA_VERSION:
            raise ValueError(f"Unsupported search state schema version: {version}")
        state = SearchState.__new__(SearchState)
        state.__dict__.update(data)
        assert len(state.populations) == len(state.halls_of_fame)
        return state
