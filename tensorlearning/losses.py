"""
Loss functions for tensor learning.

A loss function tells the learning algorithms which per-node formulas to
use (through its kind) and evaluates a model on test data.

- LEAST_SQUARES: regression, E[(y - f(x))^2]
- DENSITY_L2: L2 density estimation, ||f||^2 - 2 E[f(X)], whose minimizer
  over a space of functions is the L2 projection of the density of X
"""

from enum import Enum

import numpy as np
from scipy import linalg


class LossKind(Enum):
    LEAST_SQUARES = "least_squares"
    DENSITY_L2 = "density_l2"


class LossFunction:
    """Base class of the loss functions."""

    kind: LossKind = None
    error_type: str = None

    def test_error(self, model, data) -> float:
        raise NotImplementedError


class SquareLossFunction(LossFunction):
    """
    Least-squares loss, with relative test error ||y - f(x)|| / ||y||.

    Examples
    --------
    >>> loss = SquareLossFunction()
    >>> loss.test_error(lambda x: x[:, 0], (np.ones((4, 1)), np.ones(4)))
    0.0
    """

    kind = LossKind.LEAST_SQUARES
    error_type = "relative"

    def test_error(self, model, data) -> float:
        """
        Relative error of model on test data.

        Parameters
        ----------
        model : callable
            Function evaluable at samples of shape (N, d)
        data : tuple
            Test samples and target values (x, y)

        Returns
        -------
        error : float
        """
        if not isinstance(data, (tuple, list)) or len(data) != 2:
            raise ValueError("Least-squares test data must be a tuple (x, y)")
        x, y = data
        y = np.asarray(y, dtype=float).ravel()
        residual = linalg.norm(y - model(x))
        y_norm = linalg.norm(y)
        if y_norm == 0:
            return float(residual)
        return float(residual / y_norm)


class DensityL2LossFunction(LossFunction):
    """
    L2 density loss.

    With test samples x only, the test error is the empirical risk
    ||f||^2 - 2 mean f(x), which requires a model exposing norm() (e.g. a
    FunctionalTensor on orthonormal bases). With (x, y), where y are the
    true density values at x, it is the relative error ||y - f(x)|| / ||y||.
    """

    kind = LossKind.DENSITY_L2
    error_type = "absolute"

    def test_error(self, model, data) -> float:
        if isinstance(data, (tuple, list)):
            x, y = data
            y = np.asarray(y, dtype=float).ravel()
            return float(linalg.norm(y - model(x)) / linalg.norm(y))
        return float(model.norm() ** 2 - 2 * np.mean(model(data)))
