"""Status flags and diagnostics returned by the tensor learning algorithms."""

from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np


class SolveStatus(IntEnum):
    MAX_ITERATIONS = 0
    SUCCESS = 1
    EARLY_STOP = -1
    FAILURE = -2


@dataclass
class LearningOutput:
    """Diagnostics of a solve.

    Attributes:
        status: How the solve terminated.
        iterations: Number of sweeps (standard solve) or rank increases.
        error: Error of the returned model (leave-one-out estimate).
        test_error: Test error of the returned model (NaN if not computed).
        stagnation_iterations: Stagnation criterion at each iteration.
        error_iterations: Error at each iteration.
        test_error_iterations: Test error at each iteration.
        iterates: Models at each iteration (if stored).
        ranks: Ranks of the returned model.
        adapted_tree: Whether the dimension tree of the returned model was changed.
        enriched_nodes_iterations: Enriched nodes at each rank increase.
    """

    status: SolveStatus = SolveStatus.MAX_ITERATIONS
    iterations: int = 0
    error: float = np.nan
    test_error: float = np.nan
    stagnation_iterations: list = field(default_factory=list)
    error_iterations: list = field(default_factory=list)
    test_error_iterations: list = field(default_factory=list)
    iterates: list = field(default_factory=list)
    ranks: np.ndarray | None = None
    adapted_tree: bool = False
    enriched_nodes_iterations: list = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == SolveStatus.SUCCESS
