"""
Orthonormal polynomial bases and their tensorization.

Each univariate basis evaluates sample points into a design matrix of shape
(N, dimension). FunctionalBases groups one basis per input dimension and
produces the list of per-dimension design matrices consumed by the learning
algorithms.

References:
- Xiu (2010), "Numerical Methods for Stochastic Computations", ch. 3
"""

import math

import numpy as np
from numpy.polynomial import hermite_e, legendre


class PolynomialBasis:
    """
    Univariate polynomial basis of degree up to degree.

    Parameters
    ----------
    degree : int
        Maximal polynomial degree, the basis has degree + 1 functions

    Raises
    ------
    ValueError
        If degree < 0
    """

    is_orthonormal = True

    def __init__(self, degree: int):
        if degree < 0:
            raise ValueError(f"degree must be >= 0, got {degree}")
        self.degree = int(degree)

    @property
    def dimension(self) -> int:
        return self.degree + 1

    def eval(self, x) -> np.ndarray:
        raise NotImplementedError

    def adaptation_path(self) -> np.ndarray:
        """
        Nested candidate supports, shape (dimension, dimension).

        Column t activates the functions of degree 0..t.
        """
        return np.triu(np.ones((self.dimension, self.dimension), dtype=bool))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(degree={self.degree})"


class LegendreBasis(PolynomialBasis):
    """
    Legendre polynomials, orthonormal for the uniform probability measure on [-1, 1].

    Examples
    --------
    >>> basis = LegendreBasis(3)
    >>> basis.eval(np.array([0.0, 1.0])).shape
    (2, 4)
    """

    def eval(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float).ravel()
        scale = np.sqrt(2 * np.arange(self.dimension) + 1)
        return legendre.legvander(x, self.degree) * scale


class HermiteBasis(PolynomialBasis):
    """Probabilists' Hermite polynomials, orthonormal for the standard Gaussian measure."""

    def eval(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=float).ravel()
        scale = np.array([1.0 / np.sqrt(math.factorial(k)) for k in range(self.dimension)])
        return hermite_e.hermevander(x, self.degree) * scale


class FunctionalBases:
    """
    One univariate basis per input dimension.

    Parameters
    ----------
    bases : list of PolynomialBasis
        Basis of each dimension

    Examples
    --------
    >>> bases = FunctionalBases.duplicate(LegendreBasis(4), 3)
    >>> bases.dimensions.tolist()
    [5, 5, 5]
    """

    def __init__(self, bases):
        self.bases = list(bases)
        if len(self.bases) == 0:
            raise ValueError("Need at least one basis")

    @classmethod
    def duplicate(cls, basis: PolynomialBasis, order: int) -> "FunctionalBases":
        return cls([basis] * order)

    def __len__(self) -> int:
        return len(self.bases)

    @property
    def order(self) -> int:
        return len(self.bases)

    @property
    def dimensions(self) -> np.ndarray:
        return np.array([b.dimension for b in self.bases])

    @property
    def is_orthonormal(self) -> bool:
        return all(b.is_orthonormal for b in self.bases)

    def eval(self, x) -> list:
        """
        Evaluate every basis at the corresponding coordinate of the samples.

        Parameters
        ----------
        x : np.ndarray
            Samples, shape (N, order)

        Returns
        -------
        bases_eval : list of np.ndarray
            Design matrix of each dimension, shape (N, dimension_k)
        """
        x = np.asarray(x, dtype=float)
        if x.ndim == 1:
            x = x[:, np.newaxis]
        if x.shape[1] != self.order:
            raise ValueError(f"Samples must have {self.order} coordinates, got {x.shape[1]}")
        return [b.eval(x[:, k]) for k, b in enumerate(self.bases)]

    def adaptation_path(self) -> list:
        return [b.adaptation_path() for b in self.bases]
