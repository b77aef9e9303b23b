"""Functions represented by a tree-based tensor of coefficients on tensorized bases."""

import numpy as np

from tensorlearning.bases import FunctionalBases
from tensorlearning.tree.tree_tensor import TreeBasedTensor


class FunctionalTensor:
    """
    Multivariate function f(x) = sum_i a_i phi_i1(x_1) ... phi_id(x_d).

    Parameters
    ----------
    tensor : TreeBasedTensor
        Coefficients a
    bases : FunctionalBases
        Basis of each dimension

    Raises
    ------
    ValueError
        If the basis dimensions do not match the tensor dimensions
    """

    def __init__(self, tensor: TreeBasedTensor, bases: FunctionalBases):
        if not np.array_equal(bases.dimensions, tensor.dims):
            raise ValueError(
                f"Basis dimensions {bases.dimensions.tolist()} do not match "
                f"tensor dimensions {tensor.dims.tolist()}"
            )
        self.tensor = tensor
        self.bases = bases

    def __call__(self, x) -> np.ndarray:
        return self.tensor.eval_diag(self.bases.eval(x))

    @property
    def ranks(self) -> np.ndarray:
        return self.tensor.ranks

    def storage(self) -> int:
        return self.tensor.storage()

    def norm(self) -> float:
        """L2 norm of the function, equal to the norm of the coefficients for orthonormal bases."""
        return self.tensor.norm()

    def __repr__(self) -> str:
        return f"FunctionalTensor({self.tensor!r})"
