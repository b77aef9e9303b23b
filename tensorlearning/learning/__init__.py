"""Alternating minimization algorithms for learning with tensor formats."""

from tensorlearning.learning.config import (
    Algorithm,
    AlternatingMinimizationConfig,
    InitializationType,
    LearningConfig,
    LinearModelConfig,
    RankAdaptationConfig,
    ToleranceConfig,
    TreeAdaptationConfig,
)
from tensorlearning.learning.output import LearningOutput, SolveStatus
from tensorlearning.learning.tensor_learning import TensorLearning
from tensorlearning.learning.tree_based import (
    TreeBasedTensorLearning,
    enriched_edges_to_ranks_random,
    make_ranks_admissible,
)

__all__ = [
    "Algorithm",
    "AlternatingMinimizationConfig",
    "InitializationType",
    "LearningConfig",
    "LinearModelConfig",
    "RankAdaptationConfig",
    "ToleranceConfig",
    "TreeAdaptationConfig",
    "LearningOutput",
    "SolveStatus",
    "TensorLearning",
    "TreeBasedTensorLearning",
    "enriched_edges_to_ranks_random",
    "make_ranks_admissible",
]
