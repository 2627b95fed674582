"""
Human-facing reporting: a ``tqdm`` bar for single-output runs and a periodic
search-state table through logging otherwise.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Sequence, TextIO

from tqdm.auto import tqdm

from .expression import string_tree
from .hall_of_fame import calculate_pareto_frontier

if TYPE_CHECKING:
    from .config import Options
    from .dataset import Dataset
    from .hall_of_fame import HallOfFame

logger = logging.getLogger(__name__)

ZERO_POINT = 1e-10


def average_speed(equation_speed: Sequence[float]) -> float:
    return sum(equation_speed) / len(equation_speed) if equation_speed else 0.0


def string_dominating_pareto_curve(hof: "HallOfFame", dataset: "Dataset", options: "Options") -> str:
    """Table of the dominating set; ``Score`` is the loss drop per unit of complexity."""
    lines = [f"{'Complexity':<12}{'Loss':<12}{'Score':<12}Equation"]
    last_loss: float | None = None
    last_complexity = 0
    for member in calculate_pareto_frontier(hof):
        if last_loss is None:
            score = 0.0
        else:
            delta_c = member.complexity - last_complexity
            delta_l = math.log(abs(member.loss / last_loss) + ZERO_POINT) if last_loss else 0.0
            score = -delta_l / delta_c if delta_c else 0.0
        equation = string_tree(member.tree, options.operators, dataset.variable_names)
        lines.append(f"{member.complexity:<12d}{member.loss:<12.3e}{score:<12.3e}{equation}")
        last_loss = member.loss
        last_complexity = member.complexity
    return "\n".join(lines)


def print_search_state(
    halls_of_fame: Sequence["HallOfFame"],
    datasets: Sequence["Dataset"],
    *,
    options: "Options",
    equation_speed: Sequence[float],
    total_cycles: int,
    cycles_remaining: Sequence[int],
    head_node_occupation: float,
    parallelism: str,
) -> None:
    nout = len(datasets)
    completed = sum(total_cycles - remaining for remaining in cycles_remaining)
    percent = 100.0 * completed / max(1, total_cycles * nout)
    parts = [
        f"Expressions evaluated per second: {average_speed(equation_speed):.3e}",
        f"Progress: {completed} / {total_cycles * nout} total iterations ({percent:.3f}%)",
    ]
    if parallelism != "serial":
        parts.append(f"Head worker occupation: {100.0 * head_node_occupation:.1f}%")
    for j, (hof, dataset) in enumerate(zip(halls_of_fame, datasets)):
        if nout > 1:
            parts.append(f"Best equations for output {j + 1}")
        parts.append("Hall of Fame:")
        parts.append(string_dominating_pareto_curve(hof, dataset, options))
    logger.info("\n".join(parts))


class SearchProgressBar:
    """Progress over total cycles, annotated with the best current equation."""

    def __init__(self, total: int, *, disable: bool = False, file: TextIO | None = None) -> None:
        self._bar = tqdm(
            total=total, disable=disable, desc="Evolving", unit="cycle", dynamic_ncols=True, file=file
        )

    def update(
        self,
        hof: "HallOfFame",
        dataset: "Dataset",
        options: "Options",
        equation_speed: Sequence[float],
        head_node_occupation: float,
        parallelism: str,
    ) -> None:
        postfix = {"evals/s": f"{average_speed(equation_speed):.2e}"}
        if parallelism != "serial":
            postfix["occupation"] = f"{100.0 * head_node_occupation:.0f}%"
        dominating = calculate_pareto_frontier(hof)
        if dominating:
            best = dominating[-1]
            postfix["loss"] = f"{best.loss:.3e}"
            postfix["best"] = string_tree(best.tree, options.operators, dataset.variable_names)
        self._bar.set_postfix(postfix, refresh=False)
        self._bar.update(1)

    def close(self) -> None:
        self._bar.close()
