"""
Shape validation and canonicalization for learning data.

Data Conventions
----------------
Samples x:
    - univariate: shape (N,) - one coordinate per sample
    - multivariate: shape (N, d) - d coordinates per sample

Targets y:
    - shape (N,) or (N, 1) for regression
    - None (or empty) for density estimation

Design matrices:
    - one array of shape (N, n_k) per dimension k, n_k being the dimension
      of the basis of dimension k

Internally, samples are canonicalized to (N, d) and targets to (N,).
"""

import numpy as np


def canonicalize_samples(x) -> np.ndarray:
    """
    Canonicalize samples to shape (N, d).

    Parameters
    ----------
    x : array_like
        Samples, shape (N,) or (N, d)

    Returns
    -------
    x_canon : np.ndarray
        Samples, shape (N, d)

    Raises
    ------
    ValueError
        If x is not 1D or 2D

    Examples
    --------
    >>> canonicalize_samples(np.zeros(10)).shape
    (10, 1)
    """
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        return x[:, np.newaxis]
    elif x.ndim == 2:
        return x
    else:
        raise ValueError(f"Samples must be 1D (N,) or 2D (N, d), got shape {x.shape}")


def canonicalize_target(y):
    """
    Canonicalize a target vector to shape (N,).

    Returns None when y is None or empty, which denotes a density
    estimation problem.

    Raises
    ------
    ValueError
        If y has more than one column
    """
    if y is None:
        return None
    y = np.asarray(y, dtype=float)
    if y.size == 0:
        return None
    if y.ndim == 2 and y.shape[1] == 1:
        return y[:, 0]
    if y.ndim != 1:
        raise ValueError(f"Target must be 1D (N,) or 2D (N, 1), got shape {y.shape}")
    return y


def validate_learning_data(x, y, order: int = None) -> None:
    """
    Validate that samples and targets have compatible shapes.

    Parameters
    ----------
    x : np.ndarray
        Canonical samples, shape (N, d)
    y : np.ndarray or None
        Canonical target, shape (N,)
    order : int, optional
        Expected number of coordinates d

    Raises
    ------
    ValueError
        If shapes are incompatible or data is empty
    """
    if x.shape[0] == 0:
        raise ValueError("Samples cannot be empty (N=0)")
    if order is not None and x.shape[1] != order:
        raise ValueError(f"Samples must have {order} coordinates, got {x.shape[1]}")
    if y is not None and y.shape[0] != x.shape[0]:
        raise ValueError(
            f"Samples and target must have same length, got x.shape={x.shape}, y.shape={y.shape}"
        )


def validate_bases_eval(bases_eval, dims=None) -> int:
    """
    Validate per-dimension design matrices and return the number of samples.

    Parameters
    ----------
    bases_eval : list of np.ndarray
        Design matrix of each dimension, shape (N, n_k)
    dims : array_like of int, optional
        Expected basis dimensions n_k

    Returns
    -------
    N : int
        Number of samples

    Raises
    ------
    ValueError
        If the matrices are not 2D, have different numbers of rows or do
        not match dims
    """
    if len(bases_eval) == 0:
        raise ValueError("Need at least one design matrix")
    n = None
    for k, h in enumerate(bases_eval):
        if np.ndim(h) != 2:
            raise ValueError(f"Design matrix {k} must be 2D (N, n_k), got shape {np.shape(h)}")
        if n is None:
            n = h.shape[0]
        elif h.shape[0] != n:
            raise ValueError(f"Design matrix {k} has {h.shape[0]} rows, expected {n}")
        if dims is not None and h.shape[1] != dims[k]:
            raise ValueError(f"Design matrix {k} has {h.shape[1]} columns, expected {dims[k]}")
    if dims is not None and len(bases_eval) != len(dims):
        raise ValueError(f"Need {len(dims)} design matrices, got {len(bases_eval)}")
    return n
