"""
Demonstration of learning with tree-based tensor formats.

This example shows:
1. Regression of a 6-dimensional function with rank adaptation
2. The same problem with tree adaptation
3. Density estimation of a product of Gaussian densities
"""

import numpy as np

from tensorlearning import (
    Algorithm,
    AlternatingMinimizationConfig,
    DensityL2LossFunction,
    DimensionTree,
    FunctionalBases,
    HermiteBasis,
    LearningConfig,
    LegendreBasis,
    LinearModelConfig,
    RankAdaptationConfig,
    SquareLossFunction,
    ToleranceConfig,
    TreeAdaptationConfig,
    TreeBasedTensorLearning,
)


def henon_heiles(x: np.ndarray) -> np.ndarray:
    """Henon-Heiles potential, a sum of low-order couplings of neighbouring variables."""
    d = x.shape[1]
    value = 0.5 * np.sum(x ** 2, axis=1)
    for k in range(d - 1):
        value += 0.2 * (x[:, k] ** 2 * x[:, k + 1] - x[:, k + 1] ** 3 / 3)
        value += 0.2 ** 2 / 16 * (x[:, k] ** 2 + x[:, k + 1] ** 2) ** 2
    return value


def regression_demo(rng: np.random.Generator, tree_adaptation: bool = False):
    d = 6
    bases = FunctionalBases.duplicate(LegendreBasis(degree=4), d)
    config = LearningConfig(
        algorithm=Algorithm.RANK_ADAPTATION,
        random_state=0,
        test_error=True,
        display=True,
        rank_adaptation=RankAdaptationConfig(max_iterations=8),
        tree_adaptation=TreeAdaptationConfig(enabled=tree_adaptation),
        linear_model=LinearModelConfig(basis_adaptation=True),
    )

    x_train = rng.uniform(-1, 1, (1000, d))
    x_test = rng.uniform(-1, 1, (1000, d))
    learner = TreeBasedTensorLearning(
        DimensionTree.balanced(d),
        loss=SquareLossFunction(),
        config=config,
        bases=bases,
        test_data=(x_test, henon_heiles(x_test)),
    )
    f, output = learner.solve(henon_heiles(x_train), x_train)

    print(f"\nStatus: {output.status.name}, storage = {f.storage()}")
    print(f"Test error: {output.test_error:.2e}")
    if tree_adaptation:
        print(f"Tree adapted: {output.adapted_tree}")
    return f, output


def density_demo(rng: np.random.Generator):
    d = 4
    bases = FunctionalBases.duplicate(HermiteBasis(degree=6), d)
    config = LearningConfig(
        algorithm=Algorithm.RANK_ADAPTATION,
        random_state=0,
        display=True,
        alternating_minimization=AlternatingMinimizationConfig(max_iterations=10),
        rank_adaptation=RankAdaptationConfig(max_iterations=5),
        # the leave-one-out risks are negative
        tolerance=ToleranceConfig(on_error=-np.inf),
    )

    # correlated pairs (x0, x1) and (x2, x3)
    z = rng.standard_normal((5000, d))
    x = np.column_stack([z[:, 0], 0.6 * z[:, 0] + 0.8 * z[:, 1], z[:, 2], 0.6 * z[:, 2] + 0.8 * z[:, 3]])

    learner = TreeBasedTensorLearning(
        DimensionTree.balanced(d), loss=DensityL2LossFunction(), config=config, bases=bases
    )
    f, output = learner.solve(None, x)

    x_test = rng.standard_normal((2000, d))
    print(f"\nStatus: {output.status.name}, ranks = {f.ranks.tolist()}")
    print(f"Leave-one-out risk: {output.error:.3e}")
    print(f"Empirical risk on fresh samples: {DensityL2LossFunction().test_error(f, x_test):.3e}")
    return f, output


if __name__ == "__main__":
    rng = np.random.default_rng(2024)

    print("=" * 60)
    print("Regression with rank adaptation")
    print("=" * 60)
    regression_demo(rng)

    print("\n" + "=" * 60)
    print("Regression with rank and tree adaptation")
    print("=" * 60)
    regression_demo(rng, tree_adaptation=True)

    print("\n" + "=" * 60)
    print("Density estimation")
    print("=" * 60)
    density_demo(rng)
