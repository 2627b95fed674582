"""
TurboSR package initialization.

This package provides a genetic-programming symbolic regression engine with
serial, thread-pool and process-pool search, pareto archives, migration,
resumable state and dimensional-analysis constraints.
"""

from .config import DEFAULT_OPTIONS, MutationWeights, Options  # noqa: F401
from .dataset import Dataset, make_datasets  # noqa: F401
from .dimensional import OperatorCapabilities, WildcardQuantity, violates_dimensional_constraints  # noqa: F401
from .errors import ConfigurationError, DimensionError, SearchCycleError, WorkerSetupError  # noqa: F401
from .expression import Node, eval_tree_array, string_tree  # noqa: F401
from .hall_of_fame import HallOfFame, calculate_pareto_frontier  # noqa: F401
from .orchestrator import SearchOrchestrator  # noqa: F401
from .population import PopMember, Population  # noqa: F401
from .state import SearchState  # noqa: F401
from .stop_condition import (  # noqa: F401
    CompositeStopper,
    FileStopper,
    MaxEvalsStopper,
    SignalStopper,
    TimeoutStopCondition,
)
from .units import Quantity, parse_units  # noqa: F401

# High-level API
from .optimize import equation_search, equation_search_datasets  # noqa: F401
