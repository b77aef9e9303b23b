"""Per-node linear model learning with leave-one-out error estimation."""

from tensorlearning.linear_model.base import (
    LinearModelLearning,
    LinearModelOutput,
    LinearSolveMode,
)
from tensorlearning.linear_model.density_l2 import (
    LinearModelLearningDensityL2,
    density_loo_error,
)
from tensorlearning.linear_model.square_loss import (
    LinearModelLearningSquareLoss,
    square_loo_error,
)
from tensorlearning.losses import LossKind


def linear_model_for_loss(kind: LossKind, **kwargs) -> LinearModelLearning:
    """Default linear model learning for a loss kind."""
    factories = {
        LossKind.LEAST_SQUARES: LinearModelLearningSquareLoss,
        LossKind.DENSITY_L2: LinearModelLearningDensityL2,
    }
    return factories[kind](**kwargs)


__all__ = [
    "LinearModelLearning",
    "LinearModelOutput",
    "LinearSolveMode",
    "LinearModelLearningDensityL2",
    "LinearModelLearningSquareLoss",
    "density_loo_error",
    "square_loo_error",
    "linear_model_for_loss",
]
