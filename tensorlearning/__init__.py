"""
Learning with tree-based tensor formats.

This package provides tools for approximating high-dimensional functions and
probability densities in tree-based tensor formats (hierarchical Tucker,
tensor train) from samples.

Features:
---------
- Dense engine for tree-based tensors: orthogonalization, truncation,
  hierarchical SVD, dimension tree optimization
- Alternating minimization with exact leave-one-out error estimation
- Rank adaptation and tree adaptation
- Least-squares regression and L2 density estimation

Typical usage:
--------------
    from tensorlearning import (
        DimensionTree, FunctionalBases, LegendreBasis, LearningConfig,
        Algorithm, SquareLossFunction, TreeBasedTensorLearning,
    )

    bases = FunctionalBases.duplicate(LegendreBasis(degree=8), 4)
    config = LearningConfig(algorithm=Algorithm.RANK_ADAPTATION)
    learner = TreeBasedTensorLearning(
        DimensionTree.balanced(4), loss=SquareLossFunction(), config=config, bases=bases
    )
    f, output = learner.solve(y_train, x_train)
    y_pred = f(x_test)
"""

from tensorlearning.bases import FunctionalBases, HermiteBasis, LegendreBasis, PolynomialBasis
from tensorlearning.functional import FunctionalTensor
from tensorlearning.learning import (
    Algorithm,
    AlternatingMinimizationConfig,
    InitializationType,
    LearningConfig,
    LearningOutput,
    LinearModelConfig,
    RankAdaptationConfig,
    SolveStatus,
    TensorLearning,
    ToleranceConfig,
    TreeAdaptationConfig,
    TreeBasedTensorLearning,
)
from tensorlearning.linear_model import (
    LinearModelLearning,
    LinearModelLearningDensityL2,
    LinearModelLearningSquareLoss,
    LinearModelOutput,
)
from tensorlearning.losses import DensityL2LossFunction, LossFunction, LossKind, SquareLossFunction
from tensorlearning.tree import DimensionTree, TreeBasedTensor, hsvd, optimize_dimension_tree, truncate

__version__ = "0.1.0"

__all__ = [
    "FunctionalBases",
    "HermiteBasis",
    "LegendreBasis",
    "PolynomialBasis",
    "FunctionalTensor",
    "Algorithm",
    "AlternatingMinimizationConfig",
    "InitializationType",
    "LearningConfig",
    "LearningOutput",
    "LinearModelConfig",
    "RankAdaptationConfig",
    "SolveStatus",
    "TensorLearning",
    "ToleranceConfig",
    "TreeAdaptationConfig",
    "TreeBasedTensorLearning",
    "LinearModelLearning",
    "LinearModelLearningDensityL2",
    "LinearModelLearningSquareLoss",
    "LinearModelOutput",
    "DensityL2LossFunction",
    "LossFunction",
    "LossKind",
    "SquareLossFunction",
    "DimensionTree",
    "TreeBasedTensor",
    "hsvd",
    "optimize_dimension_tree",
    "truncate",
]
