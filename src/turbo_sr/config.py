"""
Central configuration knobs for TurboSR.

Defaults are intentionally conservative so a search can run on a laptop
without further tuning. Users can override values by passing keyword args to
``Options`` and handing the result to ``equation_search``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Sequence

from .dimensional import OperatorCapabilities
from .errors import ConfigurationError
from .operators import Operator, OperatorEnum, operator_name

EarlyStopCondition = Callable[[float, int], bool]


@dataclass(slots=True)
class MutationWeights:
    """Relative weights of each mutation; normalised when sampled."""

    mutate_constant: float = 0.048
    mutate_operator: float = 0.47
    add_node: float = 0.79
    insert_node: float = 5.1
    delete_node: float = 1.7
    randomize: float = 0.00023
    do_nothing: float = 0.21

    def as_dict(self) -> dict[str, float]:
        return {
            "mutate_constant": self.mutate_constant,
            "mutate_operator": self.mutate_operator,
            "add_node": self.add_node,
            "insert_node": self.insert_node,
            "delete_node": self.delete_node,
            "randomize": self.randomize,
            "do_nothing": self.do_nothing,
        }


def _default_output_file() -> str:
    return f"hall_of_fame_{datetime.now():%Y-%m-%d_%H%M%S_%f}.csv"


@dataclass(slots=True)
class Options:
    """Search hyperparameters, stopping thresholds and persistence settings."""

    binary_operators: Sequence[str | Operator] = field(default_factory=lambda: ("+", "-", "*", "/"))
    unary_operators: Sequence[str | Operator] = ()

    # Tree size
    maxsize: int = 20
    maxdepth: int | None = None  # Defaults to maxsize
    complexity_of_operators: Mapping[str | Operator, int] | None = None
    complexity_of_constants: int = 1
    complexity_of_variables: int = 1
    warmup_maxsize_by: float = 0.0  # Fraction of total cycles over which maxsize grows from 3

    # Populations
    populations: int = 8
    population_size: int = 33
    ncycles_per_iteration: int = 100
    topn: int = 12
    tournament_selection_n: int = 12
    tournament_selection_p: float = 0.86

    # Selection pressure
    parsimony: float = 0.0032
    alpha: float = 0.1  # Annealing temperature scale
    annealing: bool = False
    use_frequency: bool = True
    use_frequency_in_tournament: bool = True
    adaptive_parsimony_scaling: float = 20.0

    # Genetic operators
    mutation_weights: MutationWeights = field(default_factory=MutationWeights)
    crossover_probability: float = 0.066
    skip_mutation_failures: bool = True
    perturbation_factor: float = 0.076
    probability_negate_constant: float = 0.01

    # Constant optimisation (scipy Nelder-Mead)
    should_optimize_constants: bool = True
    optimizer_probability: float = 0.14
    optimizer_iterations: int = 8
    optimizer_nrestarts: int = 2

    # Migration
    migration: bool = True
    hof_migration: bool = True
    fraction_replaced: float = 0.03
    fraction_replaced_hof: float = 0.035

    # Loss
    elementwise_loss: Callable | None = None  # (prediction, target) -> per-row loss
    batching: bool = False
    batch_size: int = 50
    dimensional_constraint_penalty: float | None = None  # 1000 when units are given

    # Stopping
    early_stop_condition: float | EarlyStopCondition | None = None
    timeout_in_seconds: float | None = None
    max_evals: int | None = None
    stop_file: str | None = None  # Touch this path to stop the search
    watch_stdin: bool = True  # Type "q" + enter to stop (interactive terminals only)

    # Determinism: only honoured in serial mode
    seed: int | None = None

    # Reporting; None means "decided at the call site"
    verbosity: int | None = None
    progress: bool | None = None
    return_state: bool | None = None
    print_every_n_seconds: float = 5.0

    # Persistence
    save_to_file: bool = True
    output_file: str | None = None  # Auto-generated with a timestamp if None
    use_recorder: bool = False
    recorder_file: str = "turbo_sr_recorder.json"

    # Workers for multithreading / multiprocessing; auto-detected if None
    nworkers: int | None = None

    operators: OperatorEnum = field(init=False, repr=False, default=None)  # type: ignore[assignment]
    capabilities: OperatorCapabilities = field(init=False, repr=False, default=None)  # type: ignore[assignment]
    binop_complexity: tuple[int, ...] = field(init=False, repr=False, default=())
    unaop_complexity: tuple[int, ...] = field(init=False, repr=False, default=())

    def __post_init__(self):
        """Resolve operators, fill auto-derived values and validate ranges."""
        try:
            self.operators = OperatorEnum.build(self.binary_operators, self.unary_operators)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if self.operators.nbin == 0:
            raise ConfigurationError("At least one binary operator must be configured.")

        # Everything the dimensional checker can know ahead of time
        self.capabilities = OperatorCapabilities()
        self.capabilities.prime(self.operators)

        if self.maxsize < 3:
            raise ConfigurationError(f"maxsize must be at least 3, got {self.maxsize}")
        if self.maxdepth is None:
            self.maxdepth = self.maxsize
        if self.populations < 1 or self.population_size < 1:
            raise ConfigurationError("populations and population_size must be positive")
        if self.ncycles_per_iteration < 1:
            raise ConfigurationError("ncycles_per_iteration must be positive")
        if self.tournament_selection_n > self.population_size:
            raise ConfigurationError(
                f"tournament_selection_n ({self.tournament_selection_n}) cannot exceed "
                f"population_size ({self.population_size})"
            )
        if not 0 < self.topn <= self.population_size:
            raise ConfigurationError(f"topn must be in 1..population_size, got {self.topn}")
        for name in ("fraction_replaced", "fraction_replaced_hof", "warmup_maxsize_by", "crossover_probability"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")

        self.binop_complexity, self.unaop_complexity = self._resolve_complexities()

        if self.output_file is None:
            self.output_file = _default_output_file()

    def _resolve_complexities(self) -> tuple[tuple[int, ...], tuple[int, ...]]:
        mapping = dict(self.complexity_of_operators or {})

        def lookup(op: Operator, original: str | Operator) -> int:
            for key in (op, original, operator_name(op)):
                if key in mapping:
                    return int(mapping[key])
            return 1

        binary = tuple(lookup(op, orig) for op, orig in zip(self.operators.binary_operators, self.binary_operators))
        unary = tuple(lookup(op, orig) for op, orig in zip(self.operators.unary_operators, self.unary_operators))
        return binary, unary

    @property
    def has_custom_complexity(self) -> bool:
        return (
            self.complexity_of_constants != 1
            or self.complexity_of_variables != 1
            or any(c != 1 for c in self.binop_complexity + self.unaop_complexity)
        )

    def early_stop(self, loss: float, complexity: int) -> bool:
        """Whether ``loss`` at ``complexity`` satisfies ``early_stop_condition``."""
        condition = self.early_stop_condition
        if condition is None:
            return False
        if callable(condition):
            return bool(condition(loss, complexity))
        return loss < float(condition)


DEFAULT_OPTIONS = Options()


def recommended_nworkers(*, cpu_count: int | None = None) -> int:
    """Default worker count for thread and process pools."""
    detected_cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    return max(1, detected_cpus)
