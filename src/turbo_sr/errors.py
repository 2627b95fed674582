"""
Exception types raised by TurboSR.

Configuration problems are reported synchronously before any work is
scheduled; failures inside a search cycle are wrapped once the controller
observes them and abort the whole run.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Conflicting, duplicate or invalid search settings."""


class SearchCycleError(RuntimeError):
    """An exception escaped from a spawned search cycle."""

    def __init__(self, output: int, population: int, message: str | None = None) -> None:
        self.output = output
        self.population = population
        super().__init__(message or f"Search cycle failed for output {output}, population {population}")


class WorkerSetupError(RuntimeError):
    """A worker process could not be configured or failed its self-test."""


class DimensionError(TypeError):
    """Arithmetic between quantities with incompatible physical dimensions."""

    def __init__(self, left: object, right: object, operation: str = "combine") -> None:
        self.left = left
        self.right = right
        super().__init__(f"Cannot {operation} quantities with dimensions {left} and {right}")
