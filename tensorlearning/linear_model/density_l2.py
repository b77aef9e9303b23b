"""
L2 density estimation with an orthonormal basis.

For an orthonormal basis (phi_1, ..., phi_P) and samples x_1, ..., x_N of a
density g, the minimizer of the empirical risk ||f||^2 - 2/N sum_n f(x_n)
over f = sum_j a_j phi_j is a = mean(A, axis=0), with A[n, j] = phi_j(x_n).
A vector b can be given to minimize ||f||^2 - 2/N sum_n f(x_n) + 2 <a, b>,
whose solution is mean(A, axis=0) - b.

The leave-one-out estimate of the risk has a closed form in terms of N, the
coefficients, b and the moments of A.
"""

from dataclasses import dataclass

import numpy as np

from tensorlearning.linear_model.base import LinearModelLearning, LinearModelOutput
from tensorlearning.losses import LossKind


def density_loo_error(A: np.ndarray, a: np.ndarray, b=None, support=None) -> float:
    """
    Leave-one-out estimate of the L2 density risk.

    Parameters
    ----------
    A : np.ndarray
        Design matrix, shape (N, P)
    a : np.ndarray
        Coefficients, shape (P,)
    b : np.ndarray, optional
        Target vector, shape (P,)
    support : np.ndarray of bool, optional
        Coefficients kept, all by default

    Returns
    -------
    error : float
    """
    N = A.shape[0]
    if N < 2:
        return np.inf
    if support is not None:
        A = A[:, support]
        a = a[support]
        if b is not None:
            b = b[support]
    square_sum = np.sum(A ** 2)
    if b is None:
        return float(-(N ** 2) / (1 - N) ** 2 * (a @ a) + (2 * N - 1) / (N * (N - 1) ** 2) * square_sum)
    return float(
        (N ** 2 - 2 * N) / (N - 1) ** 2 * (a @ a)
        + 1 / (N - 1) ** 2 * (b @ b)
        - 2 / (N - 1) ** 2 * np.sum(A @ b)
        + (2 * N - 1) / (N * (N - 1) ** 2) * square_sum
        - 2 / (N - 1) * np.sum(A @ a)
        + 2 * (a @ b)
    )


@dataclass
class LinearModelLearningDensityL2(LinearModelLearning):
    """
    Linear model learning for the L2 density loss.

    Attributes:
        is_basis_orthonormal: The closed-form solution requires an orthonormal basis.

    Examples
    --------
    >>> A = np.random.rand(100, 3)
    >>> a, output = LinearModelLearningDensityL2().solve(None, A)
    >>> np.allclose(a, A.mean(axis=0))
    True
    """

    is_basis_orthonormal: bool = True

    loss_kind = LossKind.DENSITY_L2

    def _solve_standard(self, b, A):
        if not self.is_basis_orthonormal:
            raise ValueError("Density estimation is only implemented for orthonormal bases")

        a = A.mean(axis=0)
        if b is not None:
            if b.shape != a.shape:
                raise ValueError(f"Target must have shape {a.shape}, got {b.shape}")
            a = a - b

        output = LinearModelOutput()
        if self.error_estimation:
            output.error = density_loo_error(A, a, b)
        return a, output

    def _solve_on_support(self, b, A, a_standard, support):
        a = np.where(support, a_standard, 0.0)
        return a, density_loo_error(A, a_standard, b, support)
