"""
Stop conditions polled once per iteration of the search loop.

A stopper is a callable taking the running search (anything exposing
``halls_of_fame``, ``options`` and ``total_num_evals``) and returning True
when the search should end. Each stopper names itself through ``reason`` so
the orchestrator can report why it stopped. Checks are advisory: a stop is
noticed at most one finished cycle late.
"""

from __future__ import annotations

import os
import select
import signal
import sys
import time
from typing import Any, Callable, Protocol, TextIO, runtime_checkable


@runtime_checkable
class StopperProtocol(Protocol):
    """Callable deciding, from the current search, whether to stop."""

    def __call__(self, search) -> bool:
        ...


def stopper_reason(stopper: Callable[[Any], bool]) -> str:
    return getattr(stopper, "reason", type(stopper).__name__)


class TimeoutStopCondition(StopperProtocol):
    """Stops once ``timeout_seconds`` have passed since construction."""

    reason = "timeout"

    def __init__(self, timeout_seconds: float, clock: Callable[[], float] = time.time):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self.start_time = clock()

    def __call__(self, search) -> bool:
        return self._clock() - self.start_time > self.timeout_seconds


class FileStopper(StopperProtocol):
    """Stops as soon as ``path`` exists; ``touch`` it from another shell."""

    reason = "stop_file"

    def __init__(self, path: str):
        self.path = path

    def __call__(self, search) -> bool:
        return os.path.exists(self.path)

    def create_stop_file(self) -> None:
        with open(self.path, "w") as handle:
            handle.write(f"stop requested {time.time()}\n")

    def remove_stop_file(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)


class LossThresholdStopper(StopperProtocol):
    """Stops once every output has an archived member meeting ``early_stop_condition``."""

    reason = "loss_threshold"

    def __call__(self, search) -> bool:
        options = search.options
        if options.early_stop_condition is None:
            return False
        return all(
            any(options.early_stop(member.loss, member.complexity) for member in hof.existing_members())
            for hof in search.halls_of_fame
        )


class MaxEvalsStopper(StopperProtocol):
    """Stops when the summed expression evaluations reach ``max_evals``."""

    reason = "max_evals"

    def __init__(self, max_evals: int):
        self.max_evals = max_evals

    def __call__(self, search) -> bool:
        return search.total_num_evals >= self.max_evals


class SignalStopper(StopperProtocol):
    """Turns SIGINT / SIGTERM into a graceful stop; ``cleanup`` restores the old handlers."""

    reason = "signal"

    def __init__(self, signals=None):
        self.signals = signals or [signal.SIGINT, signal.SIGTERM]
        self.requested = False
        self._previous = {}
        for sig in self.signals:
            try:
                self._previous[sig] = signal.signal(sig, self._handle)
            except (OSError, ValueError):
                # Unsupported signal, or installed off the main thread
                continue

    def _handle(self, signum, frame) -> None:
        self.requested = True

    def __call__(self, search) -> bool:
        return self.requested

    def cleanup(self) -> None:
        for sig, handler in self._previous.items():
            try:
                signal.signal(sig, handler)
            except (OSError, ValueError):
                continue
        self._previous = {}


class StdinQuitStopper(StopperProtocol):
    """Stops when the user types ``q`` followed by enter.

    Only active for interactive terminals; reading is a non-blocking poll.
    """

    reason = "user_quit"

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream if stream is not None else sys.stdin
        self._quit = False
        try:
            self.active = bool(self.stream is not None and self.stream.isatty())
        except (AttributeError, ValueError):
            self.active = False

    def _poll(self) -> str | None:
        try:
            readable, _, _ = select.select([self.stream], [], [], 0)
        except (OSError, ValueError, TypeError):
            # select() does not support console handles everywhere
            self.active = False
            return None
        if not readable:
            return None
        return self.stream.readline()

    def __call__(self, search) -> bool:
        if self._quit or not self.active:
            return self._quit
        line = self._poll()
        if line is not None and "q" in line.strip().lower():
            self._quit = True
        return self._quit


class CompositeStopper(StopperProtocol):
    """Combines stoppers: ``mode="any"`` stops on the first hit, ``"all"`` needs every one."""

    def __init__(self, *stoppers: Callable[[Any], bool], mode: str = "any"):
        if mode not in ("any", "all"):
            raise ValueError(f"Unknown mode: {mode}")
        self.stoppers = stoppers
        self.mode = mode
        self.reason: str | None = None

    def __call__(self, search) -> bool:
        if self.mode == "any":
            for stopper in self.stoppers:
                if stopper(search):
                    self.reason = stopper_reason(stopper)
                    return True
            return False
        if all(stopper(search) for stopper in self.stoppers):
            self.reason = "+".join(stopper_reason(stopper) for stopper in self.stoppers)
            return True
        return False
