"""
Learning of linear models, the per-node solver of the tensor learning algorithms.

A LinearModelLearning object solves one parameter block min_a L(A a, b),
where A is a design matrix of shape (N, P). Three modes are available,
checked in this order:

1. basis adaptation: candidate supports are the columns of a given boolean
   path matrix of shape (P, m); the support with the smallest
   leave-one-out error is selected
2. regularization: candidate supports are nested, obtained by adding the
   coefficients of the standard solution one at a time by decreasing
   magnitude (optionally after a mandatory set of included coefficients)
3. standard: solution on the full support

Subclasses provide the standard solution and the solution and error
restricted to a support.
"""

from dataclasses import dataclass, replace
from enum import Enum
import warnings

import numpy as np


class LinearSolveMode(Enum):
    STANDARD = "standard"
    REGULARIZED = "regularized"
    BASIS_ADAPTATION = "basis_adaptation"


@dataclass
class LinearModelOutput:
    """
    Diagnostics of a linear solve.

    Attributes:
        error: Leave-one-out error of the returned solution (NaN if not estimated).
        error_path: Errors of the candidate supports.
        ind: Index of the selected candidate.
        pattern: Support of the selected candidate.
        pattern_path: Candidate supports, shape (P, m).
        optimal_solution: Selected solution.
        solution_path: Solutions on the candidate supports, shape (P, m).
        flag: 2 when the solution comes from a basis adaptation path.
    """

    error: float = np.nan
    error_path: np.ndarray | None = None
    ind: int | None = None
    pattern: np.ndarray | None = None
    pattern_path: np.ndarray | None = None
    optimal_solution: np.ndarray | None = None
    solution_path: np.ndarray | None = None
    flag: int | None = None


@dataclass
class LinearModelLearning:
    """
    Base class of the linear model learning algorithms.

    Attributes:
        regularization: Select a support along a nested path.
        basis_adaptation: Select a support among the columns of basis_adaptation_path.
        basis_adaptation_path: Boolean candidate supports, shape (P, m). Defaults
            to the nested supports {0}, {0, 1}, ..., {0, ..., P-1}.
        error_estimation: Compute the leave-one-out error of the standard solution.
        model_selection: Select the candidate with the smallest error; otherwise
            the last candidate of the path is returned.
        stop_if_error_increase: Stop scanning a basis adaptation path when the error
            exceeds error_increase_factor times the previous one.
        error_increase_factor: Factor of the stopping rule above.
        included_coefficients: Indices always in the support of the regularized path.
    """

    regularization: bool = False
    basis_adaptation: bool = False
    basis_adaptation_path: np.ndarray | None = None
    error_estimation: bool = True
    model_selection: bool = True
    stop_if_error_increase: bool = False
    error_increase_factor: float = 2.0
    included_coefficients: list | None = None

    loss_kind = None

    def __post_init__(self):
        """Validate configuration."""
        if self.error_increase_factor <= 1:
            raise ValueError("error_increase_factor must be > 1")
        if self.basis_adaptation_path is not None:
            path = np.asarray(self.basis_adaptation_path)
            if path.ndim != 2:
                raise ValueError(f"basis_adaptation_path must be 2D (P, m), got shape {path.shape}")
            self.basis_adaptation_path = path != 0

    @property
    def mode(self) -> LinearSolveMode:
        if self.basis_adaptation:
            return LinearSolveMode.BASIS_ADAPTATION
        if self.regularization:
            return LinearSolveMode.REGULARIZED
        return LinearSolveMode.STANDARD

    def copy(self, **changes) -> "LinearModelLearning":
        """Independent copy, with the given attributes changed."""
        return replace(self, **changes)

    def solve(self, b, A: np.ndarray) -> tuple[np.ndarray, LinearModelOutput]:
        """
        Solve the linear model.

        Parameters
        ----------
        b : np.ndarray or None
            Target (meaning depends on the loss)
        A : np.ndarray
            Design matrix, shape (N, P)

        Returns
        -------
        a : np.ndarray
            Coefficients, shape (P,)
        output : LinearModelOutput
            Diagnostics
        """
        A = np.asarray(A, dtype=float)
        if A.ndim != 2:
            raise ValueError(f"Design matrix must be 2D (N, P), got shape {A.shape}")
        if b is not None:
            b = np.asarray(b, dtype=float).ravel()

        solvers = {
            LinearSolveMode.STANDARD: self._solve_standard,
            LinearSolveMode.REGULARIZED: self._solve_regularized,
            LinearSolveMode.BASIS_ADAPTATION: self._solve_basis_adaptation,
        }
        return solvers[self.mode](b, A)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _solve_standard(self, b, A) -> tuple[np.ndarray, LinearModelOutput]:
        raise NotImplementedError

    def _solve_on_support(self, b, A, a_standard, support) -> tuple[np.ndarray, float]:
        """Coefficients (zero outside support) and leave-one-out error on a support."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Path solvers
    # ------------------------------------------------------------------

    def _select(self, errors: np.ndarray) -> int:
        if not self.model_selection:
            finite = np.flatnonzero(np.isfinite(errors))
            return int(finite[-1]) if len(finite) > 0 else len(errors) - 1
        return int(np.argmin(errors))

    def _solve_regularized(self, b, A):
        a_standard, _ = self._solve_standard(b, A)
        P = A.shape[1]

        ranking = np.argsort(-np.abs(a_standard), kind="stable")
        included = []
        if self.included_coefficients is not None:
            included = [int(i) for i in self.included_coefficients]
            ranking = np.array([i for i in ranking if i not in included], dtype=int)

        if len(ranking) == 0:
            return a_standard, LinearModelOutput(error=np.nan)

        supports = []
        if included:
            supports.append(np.array(included, dtype=int))
        for i in range(1, len(ranking) + 1):
            supports.append(np.concatenate([np.array(included, dtype=int), ranking[:i]]))

        solution_path = np.zeros((P, len(supports)))
        pattern_path = np.zeros((P, len(supports)), dtype=bool)
        errors = np.zeros(len(supports))
        for j, support in enumerate(supports):
            pattern_path[support, j] = True
            solution_path[:, j], errors[j] = self._solve_on_support(
                b, A, a_standard, pattern_path[:, j]
            )

        ind = self._select(errors)
        a = solution_path[:, ind].copy()
        output = LinearModelOutput(
            error=errors[ind],
            error_path=errors,
            ind=ind,
            pattern=pattern_path[:, ind],
            pattern_path=pattern_path,
            optimal_solution=a,
            solution_path=solution_path,
        )
        return a, output

    def _solve_basis_adaptation(self, b, A):
        P = A.shape[1]
        path = self.basis_adaptation_path
        if path is None:
            path = np.triu(np.ones((P, P), dtype=bool))
        if path.shape[0] != P:
            raise ValueError(f"basis_adaptation_path has {path.shape[0]} rows, design matrix has {P} columns")
        a, output = self._select_optimal_path(b, A, path)
        output.flag = 2
        return a, output

    def _select_optimal_path(self, b, A, path):
        """
        Select the best support among the columns of a path.

        Empty and repeated columns are removed. Supports with more
        coefficients than samples get an infinite error.
        """
        a_standard, _ = self._solve_standard(b, A)
        N, P = A.shape

        pattern = np.asarray(path, dtype=bool)
        pattern = pattern[:, np.any(pattern, axis=0)]
        if pattern.shape[1] == 0:
            return a_standard, LinearModelOutput(error=np.nan)
        _, first = np.unique(pattern.T, axis=0, return_index=True)
        pattern = pattern[:, np.sort(first)]

        m = pattern.shape[1]

        solution_path = np.zeros((P, m))
        errors = np.full(m, np.inf)
        too_large = pattern.sum(axis=0) > N
        for i in range(m):
            if too_large[i]:
                continue
            solution_path[:, i], errors[i] = self._solve_on_support(b, A, a_standard, pattern[:, i])
            if (
                i > 0
                and self.stop_if_error_increase
                and errors[i] > self.error_increase_factor * errors[i - 1]
            ):
                warnings.warn(
                    f"Error increased by more than a factor {self.error_increase_factor} "
                    f"along the basis adaptation path, scan stopped at candidate {i}",
                    UserWarning,
                )
                errors[i + 1:] = np.inf
                break

        ind = self._select(errors)
        a = solution_path[:, ind].copy()
        output = LinearModelOutput(
            error=errors[ind],
            error_path=errors,
            ind=ind,
            pattern=pattern[:, ind],
            pattern_path=pattern,
            optimal_solution=a,
            solution_path=solution_path,
        )
        return a, output
