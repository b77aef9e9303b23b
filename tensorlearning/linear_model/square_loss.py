"""
Least-squares linear model learning with fast leave-one-out error.

The leave-one-out residuals of a least-squares fit are e_n / (1 - h_n),
where e is the residual vector and h the diagonal of the hat matrix
A (A^T A)^+ A^T. The error reported is relative to the variance of the
target, optionally multiplied by the small-sample correction factor
N / (N - P) * (1 + tr((A^T A / N)^-1) / N).

References:
- Chapelle, Vapnik & Bengio (2002), "Model selection for small sample regression"
- Blatman & Sudret (2011), "Adaptive sparse polynomial chaos expansion based
  on least angle regression"
"""

from dataclasses import dataclass

import numpy as np
from scipy import linalg

from tensorlearning.linear_model.base import LinearModelLearning, LinearModelOutput
from tensorlearning.losses import LossKind


def square_loo_error(A: np.ndarray, y: np.ndarray, a: np.ndarray, correction: bool = True) -> float:
    """
    Relative leave-one-out error of a least-squares fit.

    Parameters
    ----------
    A : np.ndarray
        Design matrix, shape (N, P)
    y : np.ndarray
        Target, shape (N,)
    a : np.ndarray
        Least-squares coefficients, shape (P,)
    correction : bool, default=True
        Apply the small-sample correction factor

    Returns
    -------
    error : float
        sqrt(mean(loo residuals^2) / var(y)), inf if a sample has unit leverage
    """
    N, P = A.shape
    u, s, _ = linalg.svd(A, full_matrices=False)
    rank = int(np.sum(s > s[0] * max(N, P) * np.finfo(float).eps)) if len(s) > 0 else 0
    h = np.sum(u[:, :rank] ** 2, axis=1)
    if np.any(h > 1 - 1e-12):
        return np.inf

    residual = (y - A @ a) / (1 - h)
    variance = np.var(y)
    if variance == 0:
        variance = 1.0
    error = np.mean(residual ** 2) / variance

    if correction:
        if N <= P or rank < P:
            return np.inf
        gram_inv_trace = np.sum(1.0 / (s ** 2 / N))
        error *= N / (N - P) * (1 + gram_inv_trace / N)
    return float(np.sqrt(error))


@dataclass
class LinearModelLearningSquareLoss(LinearModelLearning):
    """
    Linear model learning for the least-squares loss.

    Attributes:
        correction: Apply the small-sample correction to the leave-one-out error.

    Examples
    --------
    >>> A = np.random.randn(50, 3)
    >>> y = A @ np.array([1.0, -2.0, 0.5])
    >>> a, output = LinearModelLearningSquareLoss().solve(y, A)
    >>> np.allclose(a, [1.0, -2.0, 0.5])
    True
    """

    correction: bool = True

    loss_kind = LossKind.LEAST_SQUARES

    def _fit(self, y, A) -> tuple[np.ndarray, float]:
        if not (np.all(np.isfinite(A)) and np.all(np.isfinite(y))):
            return np.full(A.shape[1], np.nan), np.nan
        a = linalg.lstsq(A, y)[0]
        error = np.nan
        if self.error_estimation:
            error = square_loo_error(A, y, a, self.correction)
        return a, error

    def _solve_standard(self, y, A):
        if y is None:
            raise ValueError("Least-squares learning requires a target")
        if y.shape[0] != A.shape[0]:
            raise ValueError(f"Target has {y.shape[0]} entries, design matrix has {A.shape[0]} rows")
        a, error = self._fit(y, A)
        return a, LinearModelOutput(error=error)

    def _solve_on_support(self, y, A, a_standard, support):
        a = np.zeros(A.shape[1])
        a_support, error = self._fit(y, A[:, support])
        a[support] = a_support
        if np.isnan(error) and np.all(np.isfinite(a_support)):
            error = square_loo_error(A[:, support], y, a_support, self.correction)
        return a, error
