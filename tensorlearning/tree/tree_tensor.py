"""
Tree-based tensor representation and operations.

A tree-based tensor stores one parameter core per active node of a
DimensionTree. The core of a node has one mode per child and a last mode
whose size is the rank of the node:

- active leaf of dimension k: core shape (n_k, r_alpha)
- internal node: core shape (s_1, ..., s_m, r_alpha), where s_j is the rank
  of child j if it is active, or the basis dimension n_k of the leaf if
  child j is an inactive leaf
- root: r_root = 1

Inactive nodes are leaves carrying no parameter: their basis mode is held
directly by the parent core. The tensor is recovered by contracting all the
cores along the tree edges.

The Tensor-Train format is the linear tree with only the first leaf active,
the Tucker format is the trivial tree with all the leaves active.

References:
- Falco, Hackbusch & Nouy (2018), "Tree-based tensor formats"
- Grelier, Nouy & Chevreuil (2018), "Learning with tree-based tensor formats"
"""

import string

import numpy as np
from scipy import linalg

from tensorlearning.tree.dimension_tree import DimensionTree
from tensorlearning.utils.shapes import validate_bases_eval

# 'n' is reserved for the sample index in einsum subscripts
_MODE_LETTERS = string.ascii_letters.replace("n", "")


def _sample_contraction(core: np.ndarray, mats: list) -> np.ndarray:
    """
    Contract a core with one sample-indexed matrix per mode.

    Parameters
    ----------
    core : np.ndarray
        Core of shape (s_0, ..., s_m)
    mats : list
        One entry per mode of core: either a matrix of shape (n, s_j),
        contracted with mode j sample-wise, or None for the single mode
        left free

    Returns
    -------
    out : np.ndarray
        Shape (n, s_free)
    """
    letters = _MODE_LETTERS[: core.ndim]
    subscripts = [letters]
    operands = [core]
    free = ""
    for mode, mat in enumerate(mats):
        if mat is None:
            free = letters[mode]
            continue
        subscripts.append("n" + letters[mode])
        operands.append(mat)
    expr = ",".join(subscripts) + "->n" + free
    return np.einsum(expr, *operands, optimize=True)


def _apply_to_mode(mat: np.ndarray, core: np.ndarray, mode: int) -> np.ndarray:
    """Replace mode of core by mat @ (mode index): new[.., i, ..] = sum_j mat[i, j] core[.., j, ..]."""
    return np.moveaxis(np.tensordot(mat, core, axes=(1, mode)), 0, mode)


class TreeBasedTensor:
    """
    Tensor in tree-based format.

    Parameters
    ----------
    cores : list
        One entry per node of the tree: the core array for active nodes,
        None for inactive nodes
    tree : DimensionTree
        Dimension tree
    is_active_node : array_like of bool, optional
        Active nodes; inferred from the non-None cores if omitted
    dims : array_like of int, optional
        Basis dimension n_k of each dimension; inferred from the cores if omitted

    Examples
    --------
    >>> tree = DimensionTree.linear(3)
    >>> f = TreeBasedTensor.randn(tree, ranks=[1, 2, 2, 2, 2], dims=[4, 4, 4])
    >>> f.ranks.tolist()
    [1, 2, 2, 2, 2]
    >>> f.storage()
    36
    """

    def __init__(self, cores, tree: DimensionTree, is_active_node=None, dims=None):
        if len(cores) != tree.nb_nodes:
            raise ValueError(f"Need {tree.nb_nodes} cores (one per node), got {len(cores)}")

        self.tree = tree
        self.cores = [None if c is None else np.asarray(c, dtype=float) for c in cores]
        if is_active_node is None:
            is_active_node = [c is not None for c in self.cores]
        self.is_active_node = np.asarray(is_active_node, dtype=bool)

        if not self.is_active_node[tree.root]:
            raise ValueError("The root must be active")
        for node in np.flatnonzero(~self.is_active_node):
            if not tree.is_leaf[node]:
                raise ValueError(f"Inactive node {node} is not a leaf")
        for node in np.flatnonzero(self.is_active_node):
            if self.cores[node] is None:
                raise ValueError(f"Active node {node} has no core")

        if dims is None:
            dims = self._infer_dims()
        self.dims = np.asarray(dims, dtype=int)
        self._validate()

    def _infer_dims(self) -> list[int]:
        dims = []
        for k, leaf in enumerate(self.tree.dim2ind):
            if self.is_active_node[leaf]:
                dims.append(self.cores[leaf].shape[0])
            else:
                parent = self.tree.parent[leaf]
                dims.append(self.cores[parent].shape[self.tree.child_number(leaf)])
        return dims

    def _validate(self) -> None:
        t = self.tree
        root_core = self.cores[t.root]
        if root_core.shape[-1] != 1:
            raise ValueError(f"Root core must have rank 1, got shape {root_core.shape}")
        for node in np.flatnonzero(self.is_active_node):
            core = self.cores[node]
            if t.is_leaf[node]:
                if core.ndim != 2 or core.shape[0] != self.dims[t.node2dim[node]]:
                    raise ValueError(
                        f"Leaf core {node} must have shape "
                        f"({self.dims[t.node2dim[node]]}, rank), got {core.shape}"
                    )
                continue
            expected = self.child_sizes(node)
            if core.ndim != len(expected) + 1 or core.shape[:-1] != tuple(expected):
                raise ValueError(
                    f"Core {node} has shape {core.shape}, expected {tuple(expected)} + (rank,)"
                )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @staticmethod
    def core_shapes(tree: DimensionTree, ranks, dims, is_active_node) -> list:
        """Core shapes for the given ranks, None for inactive nodes."""
        ranks = np.asarray(ranks, dtype=int)
        shapes = []
        for node in range(tree.nb_nodes):
            if not is_active_node[node]:
                shapes.append(None)
                continue
            r = 1 if node == tree.root else int(ranks[node])
            if tree.is_leaf[node]:
                shapes.append((int(dims[tree.node2dim[node]]), r))
                continue
            sizes = []
            for c in tree.children[node]:
                if is_active_node[c]:
                    sizes.append(int(ranks[c]))
                else:
                    sizes.append(int(dims[tree.node2dim[c]]))
            shapes.append(tuple(sizes) + (r,))
        return shapes

    @classmethod
    def _create(cls, fill, tree, ranks, dims, is_active_node=None):
        if is_active_node is None:
            is_active_node = np.ones(tree.nb_nodes, dtype=bool)
        is_active_node = np.asarray(is_active_node, dtype=bool)
        shapes = cls.core_shapes(tree, ranks, dims, is_active_node)
        cores = [None if shape is None else fill(shape) for shape in shapes]
        return cls(cores, tree, is_active_node, dims)

    @classmethod
    def randn(cls, tree, ranks, dims, is_active_node=None, rng=None) -> "TreeBasedTensor":
        """Tensor with independent standard Gaussian core entries."""
        rng = np.random.default_rng(rng)
        return cls._create(rng.standard_normal, tree, ranks, dims, is_active_node)

    @classmethod
    def ones(cls, tree, ranks, dims, is_active_node=None) -> "TreeBasedTensor":
        return cls._create(np.ones, tree, ranks, dims, is_active_node)

    @classmethod
    def zeros(cls, tree, ranks, dims, is_active_node=None) -> "TreeBasedTensor":
        return cls._create(np.zeros, tree, ranks, dims, is_active_node)

    @classmethod
    def from_full(cls, full, tree, is_active_node=None, tolerance=0.0, max_rank=None) -> "TreeBasedTensor":
        """Approximate a dense tensor by hierarchical SVD (see truncation.hsvd)."""
        from tensorlearning.tree.truncation import hsvd

        return hsvd(full, tree, is_active_node, tolerance, max_rank)

    def copy(self) -> "TreeBasedTensor":
        cores = [None if c is None else c.copy() for c in self.cores]
        return TreeBasedTensor(cores, self.tree, self.is_active_node.copy(), self.dims.copy())

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def order(self) -> int:
        return self.tree.order

    @property
    def active_nodes(self) -> np.ndarray:
        return np.flatnonzero(self.is_active_node)

    @property
    def ranks(self) -> np.ndarray:
        """Rank of each node: 1 at the root, 0 for inactive nodes."""
        ranks = np.zeros(self.tree.nb_nodes, dtype=int)
        for node in self.active_nodes:
            ranks[node] = self.cores[node].shape[-1]
        return ranks

    def child_sizes(self, node: int) -> list[int]:
        """Sizes of the children modes of an internal node core."""
        sizes = []
        for c in self.tree.children[node]:
            if self.is_active_node[c]:
                sizes.append(self.cores[c].shape[-1])
            else:
                sizes.append(int(self.dims[self.tree.node2dim[c]]))
        return sizes

    def storage(self) -> int:
        """Number of parameters, i.e. the sum of the core sizes."""
        return int(sum(self.cores[node].size for node in self.active_nodes))

    def is_admissible_rank(self, ranks) -> bool:
        """
        Check the admissibility of a rank vector for this tree and these dims.

        A rank vector is admissible if the root rank is 1, inactive nodes
        have rank 0, every active node has a positive rank, the rank of an
        active leaf does not exceed its basis dimension, and, at every core,
        the size of each rank mode does not exceed the product of the sizes
        of the other modes.

        Parameters
        ----------
        ranks : array_like of int
            Candidate ranks, one per node

        Returns
        -------
        admissible : bool
        """
        t = self.tree
        ranks = np.asarray(ranks, dtype=int)
        if len(ranks) != t.nb_nodes or ranks[t.root] != 1:
            return False
        if np.any(ranks[~self.is_active_node] != 0):
            return False
        if np.any(ranks[self.is_active_node] < 1):
            return False

        for node in self.active_nodes:
            if t.is_leaf[node]:
                if ranks[node] > self.dims[t.node2dim[node]]:
                    return False
                continue
            sizes = []
            is_rank_mode = []
            for c in t.children[node]:
                if self.is_active_node[c]:
                    sizes.append(int(ranks[c]))
                    is_rank_mode.append(True)
                else:
                    sizes.append(int(self.dims[t.node2dim[c]]))
                    is_rank_mode.append(False)
            sizes.append(int(ranks[node]))
            is_rank_mode.append(node != t.root)
            total = np.prod(sizes, dtype=float)
            for size, rank_mode in zip(sizes, is_rank_mode):
                if rank_mode and size * size > total:
                    # size > product of the other sizes
                    return False
        return True

    # ------------------------------------------------------------------
    # Orthogonalization
    # ------------------------------------------------------------------

    def orth(self) -> "TreeBasedTensor":
        """
        Orthogonalize all the non-root cores, from the leaves to the root.

        After this operation, every non-root core reshaped to
        (prod(children sizes), rank) has orthonormal columns and the root
        core carries the norm of the tensor. Ranks exceeding the product of
        the children sizes are reduced by the QR factorizations.

        Returns
        -------
        f : TreeBasedTensor
            Orthogonalized copy
        """
        f = self.copy()
        t = f.tree
        for lvl in range(t.max_level, 0, -1):
            for node in t.nodes_with_level(lvl):
                if not f.is_active_node[node]:
                    continue
                core = f.cores[node]
                shape = core.shape
                q, r = linalg.qr(core.reshape(-1, shape[-1]), mode="economic")
                f.cores[node] = q.reshape(shape[:-1] + (q.shape[1],))
                parent = t.parent[node]
                f.cores[parent] = _apply_to_mode(r, f.cores[parent], t.child_number(node))
        return f

    def orth_at_node(self, mu: int, from_node: int | None = None) -> "TreeBasedTensor":
        """
        Orthogonalize the tensor with respect to node mu.

        All cores except the one of node mu become orthonormal with respect
        to the edge pointing towards mu, so that the map from the core of mu
        to the full tensor is an isometry.

        Parameters
        ----------
        mu : int
            Active node
        from_node : int, optional
            Node with respect to which the tensor is already orthogonalized.
            Only the cores on the path from this node to mu are then
            factorized. If None, the whole tree is orthogonalized first.

        Returns
        -------
        f : TreeBasedTensor
            Orthogonalized copy
        """
        if not self.is_active_node[mu]:
            raise ValueError(f"Node {mu} is not active")

        if from_node is None:
            f = self.orth()
            from_node = f.tree.root
        else:
            f = self.copy()
        t = f.tree
        path = t.path_between(from_node, mu)
        for node, nxt in zip(path[:-1], path[1:]):
            if t.parent[node] == nxt:
                core = f.cores[node]
                shape = core.shape
                q, r = linalg.qr(core.reshape(-1, shape[-1]), mode="economic")
                f.cores[node] = q.reshape(shape[:-1] + (q.shape[1],))
                f.cores[nxt] = _apply_to_mode(r, f.cores[nxt], t.child_number(node))
            else:
                mode = t.child_number(nxt)
                moved = np.moveaxis(f.cores[node], mode, -1)
                shape = moved.shape
                q, r = linalg.qr(moved.reshape(-1, shape[-1]), mode="economic")
                f.cores[node] = np.moveaxis(q.reshape(shape[:-1] + (q.shape[1],)), -1, mode)
                f.cores[nxt] = np.tensordot(f.cores[nxt], r, axes=(-1, 1))
        return f

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------

    def _check_compatible(self, other: "TreeBasedTensor") -> None:
        if self.tree != other.tree:
            raise ValueError("Tensors must share the same dimension tree")
        if not np.array_equal(self.is_active_node, other.is_active_node):
            raise ValueError("Tensors must share the same active nodes")
        if not np.array_equal(self.dims, other.dims):
            raise ValueError(f"Dimension mismatch: {self.dims} vs {other.dims}")

    def _gram_below(self, other: "TreeBasedTensor") -> list:
        """
        Gram matrices of the subtree bases of self and other.

        Entry alpha has shape (rank_self, rank_other); None for inactive
        nodes, whose bases are the canonical ones.
        """
        t = self.tree
        gram = [None] * t.nb_nodes
        for lvl in range(t.max_level, -1, -1):
            for node in t.nodes_with_level(lvl):
                if not self.is_active_node[node]:
                    continue
                a = self.cores[node]
                b = other.cores[node]
                if t.is_leaf[node]:
                    gram[node] = a.T @ b
                    continue
                for mode, c in enumerate(t.children[node]):
                    if gram[c] is not None:
                        b = _apply_to_mode(gram[c], b, mode)
                axes = list(range(a.ndim - 1))
                gram[node] = np.tensordot(a, b, axes=(axes, axes))
        return gram

    def dot(self, other: "TreeBasedTensor") -> float:
        """Canonical inner product of the coefficient tensors."""
        self._check_compatible(other)
        return float(self._gram_below(other)[self.tree.root][0, 0])

    def norm(self) -> float:
        return float(np.sqrt(max(self.dot(self), 0.0)))

    def __add__(self, other: "TreeBasedTensor") -> "TreeBasedTensor":
        """
        Sum of two tensors with the same tree.

        The ranks of the sum are the sums of the ranks (except at the root):
        cores are block-diagonal in the rank modes and share the basis modes
        of inactive leaves.
        """
        self._check_compatible(other)
        t = self.tree
        cores = [None] * t.nb_nodes
        for node in self.active_nodes:
            a = self.cores[node]
            b = other.cores[node]
            if t.is_leaf[node]:
                cores[node] = np.concatenate([a, b], axis=-1)
                continue
            stacked = [bool(self.is_active_node[c]) for c in t.children[node]]
            stacked.append(node != t.root)
            shape = tuple(
                sa + sb if stack else sa for sa, sb, stack in zip(a.shape, b.shape, stacked)
            )
            core = np.zeros(shape)
            core[tuple(slice(0, sa) for sa in a.shape)] += a
            core[tuple(slice(sa, None) if stack else slice(None) for sa, stack in zip(a.shape, stacked))] += b
            cores[node] = core
        return TreeBasedTensor(cores, t, self.is_active_node.copy(), self.dims.copy())

    def __neg__(self) -> "TreeBasedTensor":
        f = self.copy()
        f.cores[f.tree.root] = -f.cores[f.tree.root]
        return f

    def __sub__(self, other: "TreeBasedTensor") -> "TreeBasedTensor":
        return self + (-other)

    # ------------------------------------------------------------------
    # Evaluation at sample points
    # ------------------------------------------------------------------

    def eval_diag_below(self, bases_eval, below=None, changed=None) -> list:
        """
        Evaluations of the subtree functions at the samples.

        Parameters
        ----------
        bases_eval : list of np.ndarray
            Design matrix of each dimension, shape (n, n_k)
        below : list, optional
            Evaluations of a tensor that differs from this one only in the
            cores of the nodes in changed
        changed : list of int, optional
            Nodes whose core changed; they and their ascendants are
            re-evaluated, the other entries of below are reused

        Returns
        -------
        below : list
            Entry alpha has shape (n, rank_alpha) for active nodes and is the
            design matrix of the leaf dimension for inactive leaves
        """
        validate_bases_eval(bases_eval, self.dims)
        t = self.tree
        if below is None or changed is None:
            below = [None] * t.nb_nodes
            stale = np.ones(t.nb_nodes, dtype=bool)
        else:
            below = list(below)
            stale = np.zeros(t.nb_nodes, dtype=bool)
            for node in changed:
                stale[node] = True
                for a in t.ascendants(node):
                    stale[a] = True
        for lvl in range(t.max_level, -1, -1):
            for node in t.nodes_with_level(lvl):
                if not stale[node]:
                    continue
                if t.is_leaf[node]:
                    h = bases_eval[t.node2dim[node]]
                    below[node] = h @ self.cores[node] if self.is_active_node[node] else h
                    continue
                mats = [below[c] for c in t.children[node]] + [None]
                below[node] = _sample_contraction(self.cores[node], mats)
        return below

    def eval_diag_above(self, bases_eval, below=None) -> list:
        """
        Evaluations of the complements of the subtrees at the samples.

        Entry alpha has shape (n, rank_alpha), so that for every active
        node the function values are sum_k below[alpha][:, k] * above[alpha][:, k].
        """
        if below is None:
            below = self.eval_diag_below(bases_eval)
        t = self.tree
        n = below[t.root].shape[0]
        above = [None] * t.nb_nodes
        above[t.root] = np.ones((n, 1))
        for lvl in range(0, t.max_level):
            for node in t.nodes_with_level(lvl):
                if t.is_leaf[node]:
                    continue
                children = t.children[node]
                for mode, c in enumerate(children):
                    if not self.is_active_node[c]:
                        continue
                    mats = [below[o] for o in children] + [above[node]]
                    mats[mode] = None
                    above[c] = _sample_contraction(self.cores[node], mats)
        return above

    def eval_diag(self, bases_eval) -> np.ndarray:
        """Function values at the samples, shape (n,)."""
        return self.eval_diag_below(bases_eval)[self.tree.root][:, 0]

    def _above_along_path(self, mu: int, below: list) -> np.ndarray:
        """Entry mu of eval_diag_above, contracting only the nodes from the root to mu."""
        t = self.tree
        above = np.ones((below[t.root].shape[0], 1))
        path = t.ascendants(mu)[::-1] + [mu]
        for node, child in zip(path[:-1], path[1:]):
            mats = [below[c] for c in t.children[node]] + [above]
            mats[t.child_number(child)] = None
            above = _sample_contraction(self.cores[node], mats)
        return above

    def parameter_gradient_eval(self, mu: int, bases_eval, below=None) -> np.ndarray:
        """
        Design matrix of the tensor with respect to the core of node mu.

        The tensor is linear in each core, so that
        ``eval_diag(bases_eval) == A @ cores[mu].ravel()``.

        Parameters
        ----------
        mu : int
            Active node
        bases_eval : list of np.ndarray
            Design matrix of each dimension
        below : list, optional
            Output of eval_diag_below for this tensor, computed if None

        Returns
        -------
        A : np.ndarray
            Shape (n, cores[mu].size), columns ordered as cores[mu].ravel()
        """
        if not self.is_active_node[mu]:
            raise ValueError(f"Node {mu} is not active")
        t = self.tree
        if below is None:
            below = self.eval_diag_below(bases_eval)
        above = self._above_along_path(mu, below)

        if t.is_leaf[mu]:
            factors = [bases_eval[t.node2dim[mu]], above]
        else:
            factors = [below[c] for c in t.children[mu]] + [above]

        n = factors[0].shape[0]
        A = factors[0]
        for factor in factors[1:]:
            A = np.einsum("ni,nj->nij", A, factor).reshape(n, -1)
        return A

    def dot_gradient(self, other: "TreeBasedTensor", mu: int) -> np.ndarray:
        """
        Gradient of <self, other> with respect to the core of node mu.

        Parameters
        ----------
        other : TreeBasedTensor
            Tensor with the same tree, active nodes and dims (ranks may differ)
        mu : int
            Active node

        Returns
        -------
        g : np.ndarray
            Array with the shape of cores[mu]
        """
        self._check_compatible(other)
        t = self.tree
        gram = other._gram_below(self)  # (rank_other, rank_self)

        # gram_above[alpha]: (rank_other, rank_self) over the complement of alpha
        gram_above = [None] * t.nb_nodes
        gram_above[t.root] = np.ones((1, 1))
        path = t.ascendants(mu)[::-1] + [mu]
        for gamma, child in zip(path[:-1], path[1:]):
            mode = t.child_number(child)
            a = other.cores[gamma]
            b = self.cores[gamma]
            for m, c in enumerate(t.children[gamma]):
                if m != mode and gram[c] is not None:
                    a = _apply_to_mode(gram[c].T, a, m)
            a = _apply_to_mode(gram_above[gamma].T, a, a.ndim - 1)
            axes = [m for m in range(a.ndim) if m != mode]
            gram_above[child] = np.tensordot(a, b, axes=(axes, axes))

        g = other.cores[mu]
        if not t.is_leaf[mu]:
            for m, c in enumerate(t.children[mu]):
                if gram[c] is not None:
                    g = _apply_to_mode(gram[c].T, g, m)
        return _apply_to_mode(gram_above[mu].T, g, g.ndim - 1)

    # ------------------------------------------------------------------
    # Dense conversion
    # ------------------------------------------------------------------

    def full(self) -> np.ndarray:
        """
        Materialize the full coefficient tensor of shape dims.

        WARNING: the result has prod(dims) entries. Only use for small tensors.
        """
        t = self.tree

        def subtree(node):
            if t.is_leaf[node]:
                return self.cores[node], [int(t.node2dim[node])]
            core = self.cores[node]
            dims = []
            for mode, c in enumerate(t.children[node]):
                if self.is_active_node[c]:
                    mat, sub_dims = subtree(c)
                    core = _apply_to_mode(mat, core, mode)
                else:
                    sub_dims = [int(t.node2dim[c])]
                dims.extend(sub_dims)
            return core.reshape(-1, core.shape[-1]), dims

        vec, dims = subtree(t.root)
        tensor = vec[:, 0].reshape([int(self.dims[k]) for k in dims])
        return np.transpose(tensor, np.argsort(dims))

    def __repr__(self) -> str:
        return f"TreeBasedTensor(order={self.order}, dims={self.dims.tolist()}, ranks={self.ranks.tolist()})"
