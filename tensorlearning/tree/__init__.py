"""Dense engine for tree-based tensor formats."""

from tensorlearning.tree.dimension_tree import DimensionTree
from tensorlearning.tree.tree_tensor import TreeBasedTensor
from tensorlearning.tree.truncation import (
    hsvd,
    optimize_dimension_tree,
    singular_values,
    truncate,
)

__all__ = [
    "DimensionTree",
    "TreeBasedTensor",
    "truncate",
    "hsvd",
    "singular_values",
    "optimize_dimension_tree",
]
