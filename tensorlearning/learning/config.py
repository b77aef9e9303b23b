"""
Configuration of the tensor learning algorithms.

Configurations are frozen dataclasses validated at construction. Nested
solves derive local configurations with dataclasses.replace and never
mutate the configuration they were given.
"""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class Algorithm(Enum):
    """Solve algorithm: fixed structure, or rank-adaptive nested solves."""

    STANDARD = "standard"
    RANK_ADAPTATION = "rank_adaptation"


class InitializationType(Enum):
    RANDOM = "random"
    ONES = "ones"
    INITIAL_GUESS = "initial_guess"


@dataclass(frozen=True)
class AlternatingMinimizationConfig:
    """Options of the alternating minimization sweeps.

    Attributes:
        max_iterations: Maximal number of sweeps.
        stagnation: Stagnation tolerance ||f - f0|| / ||f0|| between two sweeps.
        random: Randomize the order of the nodes within each tree level.
        display: Print the progress of each sweep.
    """

    max_iterations: int = 30
    stagnation: float = 1e-6
    random: bool = False
    display: bool = False

    def __post_init__(self):
        """Validate configuration."""
        if self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        if self.stagnation < 0:
            raise ValueError("stagnation must be non-negative")


@dataclass(frozen=True)
class RankAdaptationConfig:
    """Options of the rank-adaptive solve.

    Attributes:
        max_iterations: Maximal number of rank increases.
        early_stopping: Stop when the error grows by more than early_stopping_factor
            times the smallest error obtained so far (or becomes NaN).
        early_stopping_factor: Factor of the early stopping rule.
        rank_one_correction: Fit a rank-one correction of the residual before
            computing the singular values used to select the enriched nodes.
        theta: Enrich the nodes whose smallest singular value is larger than
            theta times the largest of these values.
    """

    max_iterations: int = 10
    early_stopping: bool = False
    early_stopping_factor: float = 10.0
    rank_one_correction: bool = True
    theta: float = 0.8

    def __post_init__(self):
        """Validate configuration."""
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.early_stopping_factor <= 1:
            raise ValueError("early_stopping_factor must be > 1")
        if not (0 < self.theta <= 1):
            raise ValueError("theta must be in (0, 1]")


@dataclass(frozen=True)
class TreeAdaptationConfig:
    """Options of the tree adaptation.

    Attributes:
        enabled: Try to reduce the storage by changing the dimension tree.
        tolerance: Tolerance of the tree search; chosen from the errors if None.
        max_iterations: Maximal number of iterations of the tree search.
        force_rank_adaptation: Increase the ranks at every iteration; if False,
            the ranks are kept for one iteration after a successful tree adaptation.
    """

    enabled: bool = False
    tolerance: float | None = None
    max_iterations: int = 100
    force_rank_adaptation: bool = True

    def __post_init__(self):
        """Validate configuration."""
        if self.tolerance is not None and self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")


@dataclass(frozen=True)
class ToleranceConfig:
    """Stopping tolerances of the rank-adaptive solve.

    Attributes:
        on_error: Success when the error drops below this value.
        on_stagnation: Stop when two successive iterates are closer than this value.
    """

    on_error: float = 1e-6
    on_stagnation: float = 1e-6


@dataclass(frozen=True)
class LinearModelConfig:
    """Options of the per-node linear model learning.

    Attributes:
        regularization: Select a support along a nested path at each node.
        basis_adaptation: Select a support along the basis adaptation path of each node.
        basis_adaptation_internal_nodes: Also use basis adaptation at internal nodes.
        error_estimation: Compute leave-one-out errors.
        model_selection: Select the candidate with the smallest error.
        stop_if_error_increase: Stop scanning a path when the error increases too much.
        error_increase_factor: Factor of the previous rule.
        included_coefficients: Coefficients always selected by the regularized path.
        identical_for_all_parameters: Use copies of one prototype at every node.
        correction: Small-sample correction of the least-squares leave-one-out error.
    """

    regularization: bool = False
    basis_adaptation: bool = False
    basis_adaptation_internal_nodes: bool = False
    error_estimation: bool = True
    model_selection: bool = True
    stop_if_error_increase: bool = False
    error_increase_factor: float = 2.0
    included_coefficients: tuple | None = None
    identical_for_all_parameters: bool = True
    correction: bool = True


@dataclass(frozen=True)
class LearningConfig:
    """Configuration of a tensor learning algorithm.

    Attributes:
        algorithm: STANDARD or RANK_ADAPTATION.
        rank: Initial rank, for all active non-root nodes (int) or per node.
        initialization: RANDOM, ONES or INITIAL_GUESS.
        alternating_minimization: Sweep options.
        rank_adaptation: Rank adaptation options.
        tree_adaptation: Tree adaptation options.
        tolerance: Stopping tolerances.
        linear_model: Per-node linear model options.
        test_error: Compute the error on the test data at each iteration.
        store_iterates: Keep a copy of the model at each iteration.
        display: Print the progress of the rank-adaptive solve.
        random_state: Seed of the random initializations and explorations.
    """

    algorithm: Algorithm = Algorithm.STANDARD
    rank: int | tuple = 1
    initialization: InitializationType = InitializationType.RANDOM
    alternating_minimization: AlternatingMinimizationConfig = field(
        default_factory=AlternatingMinimizationConfig
    )
    rank_adaptation: RankAdaptationConfig = field(default_factory=RankAdaptationConfig)
    tree_adaptation: TreeAdaptationConfig = field(default_factory=TreeAdaptationConfig)
    tolerance: ToleranceConfig = field(default_factory=ToleranceConfig)
    linear_model: LinearModelConfig = field(default_factory=LinearModelConfig)
    test_error: bool = False
    store_iterates: bool = True
    display: bool = False
    random_state: int | None = None

    def __post_init__(self):
        """Validate configuration."""
        if not isinstance(self.algorithm, Algorithm):
            raise ValueError(f"algorithm must be an Algorithm, got {self.algorithm!r}")
        if not isinstance(self.initialization, InitializationType):
            raise ValueError(
                f"initialization must be an InitializationType, got {self.initialization!r}"
            )
        if np.any(np.asarray(self.rank) < 0):
            raise ValueError("rank must be non-negative")
