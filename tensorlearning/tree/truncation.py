"""
Truncation, hierarchical SVD and dimension tree optimization.

All routines operate on TreeBasedTensor and rely on the fact that, once a
tensor is orthogonalized with respect to a node, the singular values of the
node core reshaped to (prod(children sizes), rank) are the singular values
of the matricization of the full tensor associated with that node.

References:
- Grasedyck (2010), "Hierarchical singular value decomposition of tensors"
- Grelier, Nouy & Chevreuil (2018), "Learning with tree-based tensor formats"
"""

import itertools
import warnings

import numpy as np
from scipy import linalg

from tensorlearning.tree.dimension_tree import DimensionTree
from tensorlearning.tree.tree_tensor import TreeBasedTensor, _apply_to_mode


def _select_rank(s: np.ndarray, eps: float, max_rank=None) -> int:
    """
    Smallest rank whose discarded singular values have a norm <= eps.

    Parameters
    ----------
    s : np.ndarray
        Singular values in decreasing order
    eps : float
        Absolute tolerance on the discarded part
    max_rank : int, optional
        Upper bound on the rank

    Returns
    -------
    rank : int
        Selected rank, at least 1
    """
    rank = len(s)
    if eps > 0:
        tail = np.sqrt(np.cumsum(s[::-1] ** 2))[::-1]  # tail[k] = ||s[k:]||
        below = np.flatnonzero(tail <= eps)
        if len(below) > 0:
            rank = int(below[0])
    if max_rank is not None:
        rank = min(rank, int(max_rank))
    return max(rank, 1)


def _node_max_rank(max_rank, node: int):
    if max_rank is None:
        return None
    if np.ndim(max_rank) == 0:
        return int(max_rank)
    return int(max_rank[node])


def truncate(tensor: TreeBasedTensor, tolerance: float = 0.0, max_rank=None) -> TreeBasedTensor:
    """
    Truncate a tree-based tensor by successive SVDs of its cores.

    Nodes are visited from the root to the leaves. The relative error of
    the result is bounded by tolerance when max_rank does not bind.

    Parameters
    ----------
    tensor : TreeBasedTensor
        Tensor to truncate
    tolerance : float, default=0
        Relative tolerance; the per-edge tolerance is
        tolerance * ||tensor|| / sqrt(number of edges)
    max_rank : int or array_like of int, optional
        Maximal rank, for all nodes or per node

    Returns
    -------
    f : TreeBasedTensor
        Truncated tensor

    Raises
    ------
    ValueError
        If tolerance is negative
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {tolerance}")

    t = tensor.tree
    f = tensor.orth()
    nodes = [int(n) for n in f.active_nodes if n != t.root]
    nodes.sort(key=lambda n: (t.level[n], n))
    eps = 0.0
    if tolerance > 0 and nodes:
        eps = tolerance * f.norm() / np.sqrt(len(nodes))

    center = t.root
    for node in nodes:
        f = f.orth_at_node(node, from_node=center)
        core = f.cores[node]
        shape = core.shape
        u, s, vt = linalg.svd(core.reshape(-1, shape[-1]), full_matrices=False)
        rank = _select_rank(s, eps, _node_max_rank(max_rank, node))
        f.cores[node] = u[:, :rank].reshape(shape[:-1] + (rank,))
        parent = t.parent[node]
        sv = s[:rank, None] * vt[:rank]
        f.cores[parent] = _apply_to_mode(sv, f.cores[parent], t.child_number(node))
        center = parent
    return f


def singular_values(tensor: TreeBasedTensor) -> list:
    """
    Singular values of the matricizations of the tensor at every node.

    Returns
    -------
    sv : list
        Entry alpha holds the singular values (decreasing) for active
        non-root nodes, [||tensor||] for the root and None for inactive nodes
    """
    t = tensor.tree
    sv = [None] * t.nb_nodes
    f = tensor.orth()
    sv[t.root] = np.array([f.norm()])
    for node in f.active_nodes:
        if node == t.root:
            continue
        g = f.orth_at_node(node, from_node=t.root)
        core = g.cores[node]
        sv[node] = linalg.svdvals(core.reshape(-1, core.shape[-1]))
    return sv


def hsvd(full: np.ndarray, tree: DimensionTree, is_active_node=None,
         tolerance: float = 0.0, max_rank=None) -> TreeBasedTensor:
    """
    Leaves-to-root hierarchical SVD of a dense tensor.

    Parameters
    ----------
    full : np.ndarray
        Dense tensor with one axis per dimension of the tree
    tree : DimensionTree
        Target dimension tree
    is_active_node : array_like of bool, optional
        Active nodes of the result (all by default)
    tolerance : float, default=0
        Relative tolerance
    max_rank : int or array_like of int, optional
        Maximal rank, for all nodes or per node

    Returns
    -------
    f : TreeBasedTensor

    Examples
    --------
    >>> x = np.random.randn(3, 4, 5)
    >>> f = hsvd(x, DimensionTree.balanced(3))
    >>> np.allclose(f.full(), x)
    True
    """
    full = np.asarray(full, dtype=float)
    if full.ndim != tree.order:
        raise ValueError(f"Tensor has {full.ndim} axes, tree has order {tree.order}")
    if is_active_node is None:
        is_active_node = np.ones(tree.nb_nodes, dtype=bool)
    is_active_node = np.asarray(is_active_node, dtype=bool)

    nb_edges = int(np.sum(is_active_node)) - 1
    eps = 0.0
    if tolerance > 0 and nb_edges > 0:
        eps = tolerance * linalg.norm(full) / np.sqrt(nb_edges)

    cores = [None] * tree.nb_nodes
    work = full
    owners = [int(tree.dim2ind[k]) for k in range(tree.order)]

    for lvl in range(tree.max_level, 0, -1):
        for node in tree.nodes_with_level(lvl):
            node = int(node)
            if not is_active_node[node]:
                continue
            if tree.is_leaf[node]:
                axes = [owners.index(node)]
            else:
                axes = [owners.index(c) for c in tree.children[node]]
            others = [a for a in range(work.ndim) if a not in axes]
            moved = np.transpose(work, axes + others)
            sizes = moved.shape[: len(axes)]
            mat = moved.reshape(int(np.prod(sizes)), -1)
            u, s, vt = linalg.svd(mat, full_matrices=False)
            rank = _select_rank(s, eps, _node_max_rank(max_rank, node))
            cores[node] = u[:, :rank].reshape(sizes + (rank,))
            rest = (s[:rank, None] * vt[:rank]).reshape((rank,) + moved.shape[len(axes):])
            work = rest
            owners = [node] + [owners[a] for a in others]

    root = tree.root
    axes = [owners.index(c) for c in tree.children[root]]
    cores[root] = np.transpose(work, axes)[..., None]
    dims = list(full.shape)
    return TreeBasedTensor(cores, tree, is_active_node, dims)


def optimize_dimension_tree(tensor: TreeBasedTensor, tolerance: float,
                            max_iterations: int, max_full_size: int = 10**7) -> TreeBasedTensor:
    """
    Search for a dimension tree with a lower storage complexity.

    Greedy search over the assignments of dimensions to leaves: at each
    iteration every transposition of two dimensions is evaluated by a
    hierarchical SVD of the full tensor at the given tolerance, and the
    best one is kept if it strictly decreases the storage. The topology of
    the tree and the active nodes are preserved.

    Parameters
    ----------
    tensor : TreeBasedTensor
        Tensor to re-approximate
    tolerance : float
        Relative tolerance of the re-approximations
    max_iterations : int
        Maximal number of accepted transpositions
    max_full_size : int, default=10**7
        Maximal number of entries of the full tensor

    Returns
    -------
    f : TreeBasedTensor
        Tensor with the best tree found, or the input tensor if no
        transposition decreases the storage
    """
    size = int(np.prod(tensor.dims, dtype=float))
    if size > max_full_size:
        warnings.warn(
            f"Full tensor has {size} entries (> {max_full_size}), tree not optimized",
            UserWarning,
        )
        return tensor

    full = tensor.full()
    tree = tensor.tree
    best = tensor
    best_storage = min(
        tensor.storage(),
        hsvd(full, tree, tensor.is_active_node, tolerance).storage(),
    )
    improved = False

    for _ in range(max_iterations):
        candidate = None
        for i, j in itertools.combinations(range(tree.order), 2):
            dim2ind = tree.dim2ind.copy()
            dim2ind[[i, j]] = dim2ind[[j, i]]
            g = hsvd(full, tree.with_dim2ind(dim2ind), tensor.is_active_node, tolerance)
            if candidate is None or g.storage() < candidate.storage():
                candidate = g
        if candidate is None or candidate.storage() >= best_storage:
            break
        best = candidate
        best_storage = candidate.storage()
        tree = candidate.tree
        improved = True

    return best if improved else tensor
