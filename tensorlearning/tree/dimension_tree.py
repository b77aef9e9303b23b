"""
Dimension trees for tree-based tensor formats.

A dimension tree is a rooted tree whose leaves are in one-to-one
correspondence with the input dimensions 0, ..., d-1. Internal nodes group
the dimensions of their subtrees.

Nodes are integers 0, ..., nb_nodes-1 numbered breadth-first, so that the
root is node 0 and levels are non-decreasing with the node index. All node
properties are stored as arrays indexed by node id.

References:
- Hackbusch & Kuhn (2009), "A new scheme for the tensor representation"
- Falco, Hackbusch & Nouy (2018), "Tree-based tensor formats"
"""

from collections import deque

import numpy as np


class DimensionTree:
    """
    Rooted tree over the dimensions of a tensor.

    Attributes
    ----------
    parent : np.ndarray
        Parent of each node, -1 at the root
    children : list[list[int]]
        Ordered children of each node (empty for leaves)
    level : np.ndarray
        Depth of each node, 0 at the root
    dim2ind : np.ndarray
        Leaf node associated with each dimension, shape (order,)
    node2dim : np.ndarray
        Dimension associated with each node, -1 for internal nodes

    Examples
    --------
    >>> tree = DimensionTree.linear(3)
    >>> tree.nb_nodes
    5
    >>> tree.children[0]
    [1, 2]
    """

    def __init__(self, parent, children, dim2ind):
        self.parent = np.asarray(parent, dtype=int)
        self.children = [list(ch) for ch in children]
        self.dim2ind = np.asarray(dim2ind, dtype=int)

        nb_nodes = len(self.parent)
        if len(self.children) != nb_nodes:
            raise ValueError(
                f"Got {len(self.children)} children lists for {nb_nodes} nodes"
            )

        roots = np.flatnonzero(self.parent < 0)
        if len(roots) != 1:
            raise ValueError(f"Tree must have exactly one root, got {len(roots)}")
        self.root = int(roots[0])

        for node, ch in enumerate(self.children):
            for c in ch:
                if self.parent[c] != node:
                    raise ValueError(f"Node {c} listed as child of {node} but has parent {self.parent[c]}")

        self.is_leaf = np.array([len(ch) == 0 for ch in self.children])
        leaves = set(np.flatnonzero(self.is_leaf).tolist())
        if sorted(self.dim2ind.tolist()) != sorted(leaves):
            raise ValueError("dim2ind must map every dimension to exactly one leaf")

        self.node2dim = -np.ones(nb_nodes, dtype=int)
        self.node2dim[self.dim2ind] = np.arange(len(self.dim2ind))

        self.level = np.zeros(nb_nodes, dtype=int)
        queue = deque([self.root])
        while queue:
            node = queue.popleft()
            for c in self.children[node]:
                self.level[c] = self.level[node] + 1
                queue.append(c)

    @classmethod
    def from_nested(cls, nested) -> "DimensionTree":
        """
        Build a tree from nested lists of dimensions.

        An integer denotes the leaf of that dimension, a list denotes an
        internal node whose children are its items.

        Parameters
        ----------
        nested : list
            Nested description, e.g. ``[0, [1, 2]]``

        Returns
        -------
        tree : DimensionTree
        """
        if not isinstance(nested, (list, tuple)) or len(nested) < 2:
            raise ValueError("Root must be a list with at least two children")

        parent = [-1]
        children = [[]]
        leaf_dims = {}
        queue = deque([(0, nested)])
        while queue:
            node, item = queue.popleft()
            if isinstance(item, (list, tuple)):
                for sub in item:
                    new = len(parent)
                    parent.append(node)
                    children.append([])
                    children[node].append(new)
                    queue.append((new, sub))
            else:
                leaf_dims[int(item)] = node

        order = len(leaf_dims)
        if sorted(leaf_dims) != list(range(order)):
            raise ValueError(f"Leaves must cover dimensions 0..{order - 1} exactly once")
        dim2ind = [leaf_dims[k] for k in range(order)]
        return cls(parent, children, dim2ind)

    @classmethod
    def linear(cls, order: int) -> "DimensionTree":
        """Linear tree {0..d-1} -> ({0}, {1..d-1}) -> ... -> ({d-2}, {d-1})."""
        if order < 2:
            raise ValueError(f"order must be >= 2, got {order}")
        nested = [order - 2, order - 1]
        for k in range(order - 3, -1, -1):
            nested = [k, nested]
        return cls.from_nested(nested)

    @classmethod
    def balanced(cls, order: int) -> "DimensionTree":
        """Balanced binary tree obtained by recursive halving of the dimensions."""
        if order < 2:
            raise ValueError(f"order must be >= 2, got {order}")

        def split(dims):
            if len(dims) == 1:
                return dims[0]
            half = (len(dims) + 1) // 2
            return [split(dims[:half]), split(dims[half:])]

        return cls.from_nested(split(list(range(order))))

    @classmethod
    def trivial(cls, order: int) -> "DimensionTree":
        """Tree with a root directly connected to all the leaves (Tucker format)."""
        if order < 2:
            raise ValueError(f"order must be >= 2, got {order}")
        return cls.from_nested(list(range(order)))

    @property
    def nb_nodes(self) -> int:
        return len(self.parent)

    @property
    def order(self) -> int:
        return len(self.dim2ind)

    @property
    def max_level(self) -> int:
        return int(self.level.max())

    @property
    def internal_nodes(self) -> np.ndarray:
        return np.flatnonzero(~self.is_leaf)

    def nodes_with_level(self, level: int) -> np.ndarray:
        return np.flatnonzero(self.level == level)

    def child_number(self, node: int) -> int:
        """Position of node among the children of its parent."""
        if node == self.root:
            raise ValueError("The root has no parent")
        return self.children[self.parent[node]].index(node)

    def ascendants(self, node: int) -> list[int]:
        """Nodes on the path from node (excluded) up to the root (included)."""
        path = []
        while self.parent[node] >= 0:
            node = int(self.parent[node])
            path.append(node)
        return path

    def path_between(self, source: int, target: int) -> list[int]:
        """
        Nodes on the path from source to target, both included.

        The path goes up from source to the closest common ascendant of the
        two nodes, then down to target.
        """
        up = [source] + self.ascendants(source)
        down = [target] + self.ascendants(target)
        common = set(down)
        top = next(node for node in up if node in common)
        return up[: up.index(top) + 1] + down[: down.index(top)][::-1]

    def dims_of(self, node: int) -> list[int]:
        """Dimensions of the leaves below node, in left-to-right order."""
        if self.is_leaf[node]:
            return [int(self.node2dim[node])]
        dims = []
        for c in self.children[node]:
            dims.extend(self.dims_of(c))
        return dims

    def with_dim2ind(self, dim2ind) -> "DimensionTree":
        """Same topology with dimensions re-assigned to the leaves."""
        return DimensionTree(self.parent, self.children, dim2ind)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DimensionTree):
            return NotImplemented
        return (
            np.array_equal(self.parent, other.parent)
            and self.children == other.children
            and np.array_equal(self.dim2ind, other.dim2ind)
        )

    def __repr__(self) -> str:
        return f"DimensionTree(order={self.order}, nb_nodes={self.nb_nodes}, max_level={self.max_level})"
