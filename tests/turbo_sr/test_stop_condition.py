from __future__ import annotations

import io
from types import SimpleNamespace

from turbo_sr.expression import Node
from turbo_sr.hall_of_fame import HallOfFame
from turbo_sr.population import PopMember
from turbo_sr.stop_condition import (
    CompositeStopper,
    FileStopper,
    LossThresholdStopper,
    MaxEvalsStopper,
    StdinQuitStopper,
    TimeoutStopCondition,
)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _hof_with(loss: float, complexity: int = 2) -> HallOfFame:
    hof = HallOfFame(maxsize=5)
    hof.update(PopMember(Node.constant_node(1.0), loss, loss, complexity=complexity))
    return hof


def test_timeout_stop_condition_uses_clock():
    clock = _FakeClock()
    stopper = TimeoutStopCondition(5.0, clock=clock)
    assert not stopper(None)
    clock.now += 5.5
    assert stopper(None)


def test_file_stopper(tmp_path):
    stopper = FileStopper(str(tmp_path / "STOP"))
    assert not stopper(None)
    stopper.create_stop_file()
    assert stopper(None)
    stopper.remove_stop_file()
    assert not stopper(None)


def test_max_evals_stopper():
    stopper = MaxEvalsStopper(100)
    assert not stopper(SimpleNamespace(total_num_evals=99.0))
    assert stopper(SimpleNamespace(total_num_evals=100.0))


def test_loss_threshold_requires_every_output(make_options):
    options = make_options(early_stop_condition=0.1)
    stopper = LossThresholdStopper()
    search = SimpleNamespace(options=options, halls_of_fame=[_hof_with(0.05), _hof_with(0.5)])
    assert not stopper(search)
    search.halls_of_fame[1] = _hof_with(0.01)
    assert stopper(search)
    assert not stopper(SimpleNamespace(options=make_options(), halls_of_fame=[_hof_with(0.0)]))


def test_stdin_quit_stopper_inactive_without_tty():
    stopper = StdinQuitStopper(stream=io.StringIO("q\n"))
    assert not stopper.active
    assert not stopper(None)


def test_composite_stopper_records_reason():
    clock = _FakeClock()
    composite = CompositeStopper(MaxEvalsStopper(10), TimeoutStopCondition(1.0, clock=clock))
    search = SimpleNamespace(total_num_evals=0.0)
    assert not composite(search)
    clock.now += 2.0
    assert composite(search)
    assert composite.reason == "timeout"

    both = CompositeStopper(MaxEvalsStopper(1), MaxEvalsStopper(2), mode="all")
    assert both(SimpleNamespace(total_num_evals=5.0))
    assert both.reason == "max_evals+max_evals"
