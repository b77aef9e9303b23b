"""
Learning with tree-based tensor formats.

TreeBasedTensorLearning specializes the alternating minimization to
TreeBasedTensor: the parameters are the cores of the active nodes, visited
by increasing level (root first). Before the update of a core, the tensor
is orthogonalized with respect to its node, so that the design matrix of the
node is the evaluation of an orthonormal family of functions.

Rank adaptation selects the nodes to enrich from the singular values of the
matricizations of the current tensor (optionally after a rank-one
correction), with a repair step that keeps the ranks admissible. Tree
adaptation searches for a dimension tree with a smaller storage complexity.

References:
- Grelier, Nouy & Chevreuil (2018), "Learning with tree-based tensor formats"
- Grelier, Nouy & Lebrun (2019), "Learning high-dimensional probability
  distributions using tree tensor networks"
"""

from dataclasses import replace
import itertools
import warnings

import numpy as np

from tensorlearning.functional import FunctionalTensor
from tensorlearning.learning.config import Algorithm, InitializationType, LearningConfig
from tensorlearning.learning.output import LearningOutput, SolveStatus
from tensorlearning.learning.tensor_learning import TensorLearning, _RunState
from tensorlearning.losses import LossKind
from tensorlearning.tree.dimension_tree import DimensionTree
from tensorlearning.tree.tree_tensor import TreeBasedTensor
from tensorlearning.tree.truncation import optimize_dimension_tree, singular_values, truncate


def make_ranks_admissible(tensor: TreeBasedTensor, ranks, rng=None):
    """
    Adjust requested ranks so that they are admissible for tensor.

    The ranks of active leaves are capped at their basis dimension and the
    ranks of inactive nodes are set to 0. If the requested increments are
    still not admissible, subsets of increments of increasing size are
    dropped (in random order) until the ranks become admissible.

    Parameters
    ----------
    tensor : TreeBasedTensor
        Tensor whose ranks are increased
    ranks : array_like of int
        Requested ranks, one per node
    rng : np.random.Generator or int, optional
        Random generator for the order of the search

    Returns
    -------
    ranks : np.ndarray
        Admissible ranks (the current ranks if the search fails)
    enriched_nodes : np.ndarray
        Nodes whose rank differs from the current one
    """
    rng = np.random.default_rng(rng)
    t = tensor.tree
    current = tensor.ranks
    ranks = np.array(ranks, dtype=int)

    for node in tensor.active_nodes:
        if t.is_leaf[node]:
            ranks[node] = min(ranks[node], tensor.dims[t.node2dim[node]])
    ranks[~tensor.is_active_node] = 0
    ranks[t.root] = 1

    delta = ranks - current
    if tensor.is_admissible_rank(current + delta):
        return current + delta, np.flatnonzero(delta)

    changed = np.flatnonzero(delta)
    for size in range(1, len(changed) + 1):
        subsets = list(itertools.combinations(range(len(changed)), size))
        for j in rng.permutation(len(subsets)):
            local = delta.copy()
            local[changed[list(subsets[j])]] = 0
            if tensor.is_admissible_rank(current + local):
                return current + local, np.flatnonzero(local)

    warnings.warn(
        "Cannot find a representation with admissible ranks, returning previous ranks.",
        UserWarning,
    )
    return current.copy(), np.array([], dtype=int)


def _add_random_columns(mat: np.ndarray, added: int, rng) -> np.ndarray:
    new = mat[:, -1:] * (1 + rng.standard_normal((mat.shape[0], added)))
    norms = np.sqrt(np.sum(new ** 2, axis=0))
    norms[norms == 0] = 1.0
    return np.hstack([mat, new / norms])


def enriched_edges_to_ranks_random(tensor: TreeBasedTensor, ranks, rng=None) -> TreeBasedTensor:
    """
    Increase the ranks of a tensor by random perturbations of existing columns.

    For each enriched node, new columns are appended to the rank mode of its
    core and to the corresponding mode of its parent core. Each new column
    is the last existing column with entries multiplied by 1 + N(0, 1)
    noise, normalized.

    Parameters
    ----------
    tensor : TreeBasedTensor
        Tensor to enrich
    ranks : array_like of int
        Target ranks, not smaller than the current ones
    rng : np.random.Generator or int, optional
        Random generator

    Returns
    -------
    f : TreeBasedTensor
        Enriched copy
    """
    rng = np.random.default_rng(rng)
    ranks = np.asarray(ranks, dtype=int)
    f = tensor.copy()
    t = f.tree
    for lvl in range(1, t.max_level + 1):
        for alpha in t.nodes_with_level(lvl):
            if not f.is_active_node[alpha]:
                continue
            current = f.cores[alpha].shape[-1]
            added = int(ranks[alpha]) - current
            if added <= 0:
                continue

            core = f.cores[alpha]
            mat = _add_random_columns(core.reshape(-1, current), added, rng)
            f.cores[alpha] = mat.reshape(core.shape[:-1] + (current + added,))

            gamma = t.parent[alpha]
            mode = t.child_number(alpha)
            moved = np.moveaxis(f.cores[gamma], mode, -1)
            mat = _add_random_columns(moved.reshape(-1, current), added, rng)
            moved = mat.reshape(moved.shape[:-1] + (current + added,))
            f.cores[gamma] = np.moveaxis(moved, -1, mode)
    return f


def _unique_within_tolerance(values: np.ndarray, tol: float) -> np.ndarray:
    """Sorted values, merging each value within relative tolerance tol of the last kept one."""
    values = np.sort(values)
    if len(values) == 0:
        return values
    kept = [values[0]]
    for v in values[1:]:
        if abs(kept[-1] - v) / abs(kept[-1]) > tol:
            kept.append(v)
    return np.array(kept)


class TreeBasedTensorLearning(TensorLearning):
    """
    Learning with tree-based tensor formats.

    Parameters
    ----------
    tree : DimensionTree
        Dimension tree
    is_active_node : array_like of bool, optional
        Active nodes (all by default); inactive nodes must be leaves
    loss : LossFunction
        Loss function
    **kwargs
        Other arguments of TensorLearning (config, bases, bases_eval,
        test_data, linear_model, initial_guess)

    Examples
    --------
    >>> bases = FunctionalBases.duplicate(LegendreBasis(5), 2)
    >>> learner = TreeBasedTensorLearning(DimensionTree.linear(2), loss=SquareLossFunction(), bases=bases)
    >>> f, output = learner.solve(y, x)
    """

    def __init__(self, tree: DimensionTree, is_active_node=None, loss=None, **kwargs):
        if not isinstance(tree, DimensionTree):
            raise ValueError(f"tree must be a DimensionTree, got {type(tree).__name__}")
        if is_active_node is None:
            is_active_node = np.ones(tree.nb_nodes, dtype=bool)
        is_active_node = np.asarray(is_active_node, dtype=bool)
        if len(is_active_node) != tree.nb_nodes:
            raise ValueError(f"is_active_node must have {tree.nb_nodes} entries, got {len(is_active_node)}")
        if not is_active_node[tree.root]:
            raise ValueError("The root must be active")
        if np.any(~is_active_node & ~tree.is_leaf):
            raise ValueError("Only leaves can be inactive")

        self.tree = tree
        self.is_active_node = is_active_node
        super().__init__(loss, **kwargs)

        if self.bases is not None and len(self.bases) != tree.order:
            raise ValueError(f"Need {tree.order} bases, got {len(self.bases)}")

    @classmethod
    def tensor_train(cls, order: int, loss, **kwargs) -> "TreeBasedTensorLearning":
        """Learning in Tensor-Train format: linear tree, only the first leaf active."""
        tree = DimensionTree.linear(order)
        is_active_node = np.ones(tree.nb_nodes, dtype=bool)
        is_active_node[tree.dim2ind[1:]] = False
        return cls(tree, is_active_node, loss, **kwargs)

    @classmethod
    def tensor_train_tucker(cls, order: int, loss, **kwargs) -> "TreeBasedTensorLearning":
        """Learning in Tensor-Train Tucker format: linear tree, all nodes active."""
        tree = DimensionTree.linear(order)
        return cls(tree, np.ones(tree.nb_nodes, dtype=bool), loss, **kwargs)

    @property
    def number_of_parameters(self) -> int:
        return int(np.sum(self.is_active_node))

    # ------------------------------------------------------------------
    # Standard solve hooks
    # ------------------------------------------------------------------

    @staticmethod
    def _full_ranks(rank, tree: DimensionTree, is_active_node) -> np.ndarray:
        if np.ndim(rank) == 0:
            ranks = np.where(is_active_node, int(rank), 0)
        else:
            ranks = np.array(rank, dtype=int)
            if len(ranks) != tree.nb_nodes:
                raise ValueError(
                    f"rank must be an integer or have {tree.nb_nodes} entries, got {len(ranks)}"
                )
            ranks[~is_active_node] = 0
        ranks[tree.root] = 1
        return ranks

    def _initialize(self, y, config: LearningConfig, state: _RunState) -> TreeBasedTensor:
        dims = [h.shape[1] for h in state.bases_eval]

        guess = None
        if state.initialization == InitializationType.INITIAL_GUESS:
            guess = state.initial_guess
            if isinstance(guess, FunctionalTensor):
                guess = guess.tensor
            if guess is None:
                raise ValueError("Must provide an initial guess")
            if not np.array_equal(guess.dims, dims):
                raise ValueError(
                    f"Initial guess dimensions {guess.dims.tolist()} do not match the bases {dims}"
                )
            state.tree = guess.tree
            state.is_active_node = guess.is_active_node.copy()
        elif state.tree is None:
            state.tree = self.tree
            state.is_active_node = self.is_active_node.copy()

        tree = state.tree
        active = state.is_active_node
        if len(dims) != tree.order:
            raise ValueError(f"Need {tree.order} design matrices, got {len(dims)}")
        ranks = self._full_ranks(state.rank, tree, active)

        template = TreeBasedTensor.zeros(tree, active.astype(int), dims, active)
        if not template.is_admissible_rank(ranks):
            raise ValueError(f"Ranks {ranks.tolist()} are not admissible for this tree and these bases")

        if state.initialization == InitializationType.RANDOM:
            f = TreeBasedTensor.randn(tree, ranks, dims, active, rng=state.rng)
        elif state.initialization == InitializationType.ONES:
            f = TreeBasedTensor.ones(tree, ranks, dims, active)
        else:
            f = guess.copy()
            if np.any(ranks < f.ranks):
                f = truncate(f, max_rank=np.minimum(ranks, f.ranks))
            if not np.array_equal(ranks, f.ranks):
                f = enriched_edges_to_ranks_random(f, ranks, state.rng)

        strategy = []
        for lvl in range(tree.max_level + 1):
            strategy.extend(int(n) for n in tree.nodes_with_level(lvl) if active[n])
        state.exploration_strategy = strategy
        state.linear_models = None
        return f

    def _pre_processing(self, config: LearningConfig, state: _RunState) -> None:
        state.orthogonality_center = None
        state.below = None
        if state.linear_models is not None:
            return

        active = np.flatnonzero(state.is_active_node)
        if isinstance(self.linear_model, (list, tuple)):
            if len(self.linear_model) != len(active):
                raise ValueError(
                    f"Must provide {len(active)} LinearModelLearning objects (one per active node), "
                    f"got {len(self.linear_model)}"
                )
            models = [m.copy() for m in self.linear_model]
        elif config.linear_model.identical_for_all_parameters or len(active) == 1:
            models = [self.linear_model.copy() for _ in active]
        else:
            raise ValueError(
                f"Must provide {len(active)} LinearModelLearning objects (one per active node)"
            )

        linear_models = [None] * state.tree.nb_nodes
        for node, model in zip(active, models):
            linear_models[node] = model
        state.linear_models = linear_models

        if any(m.basis_adaptation for m in models) and state.bases_adaptation_path is None:
            if self.bases is None:
                warnings.warn("Cannot perform basis adaptation without bases, disabling it.", UserWarning)
                for m in models:
                    m.basis_adaptation = False
            else:
                state.bases_adaptation_path = self.bases.adaptation_path()

    def _randomize_exploration_strategy(self, state: _RunState) -> list:
        strategy = np.array(state.exploration_strategy)
        levels = state.tree.level[strategy]
        randomized = strategy.copy()
        for lvl in np.unique(levels):
            pos = np.flatnonzero(levels == lvl)
            randomized[pos] = strategy[pos][state.rng.permutation(len(pos))]
        return randomized.tolist()

    def _basis_adaptation_path(self, f: TreeBasedTensor, mu: int, state: _RunState) -> np.ndarray:
        """
        Candidate supports of the core of node mu, shape (core size, m).

        Leaves repeat the path of their dimension over the rank mode. Internal
        nodes whose children are all inactive combine the paths of the
        children by Kronecker products. Other internal nodes have a single
        full support.
        """
        t = f.tree
        paths = state.bases_adaptation_path
        rank = f.cores[mu].shape[-1]
        if t.is_leaf[mu]:
            return np.repeat(paths[t.node2dim[mu]], rank, axis=0)

        children = t.children[mu]
        if not any(f.is_active_node[c] for c in children):
            path = paths[t.node2dim[children[0]]]
            for c in children[1:]:
                path = np.kron(path, paths[t.node2dim[c]])
            return np.repeat(path, rank, axis=0).astype(bool)
        return np.ones((f.cores[mu].size, 1), dtype=bool)

    def _prepare_system(self, f: TreeBasedTensor, mu: int, y, config: LearningConfig, state: _RunState):
        model = state.linear_models[mu]
        if model.basis_adaptation and not f.tree.is_leaf[mu]:
            if config.linear_model.basis_adaptation_internal_nodes:
                f = truncate(f, tolerance=np.finfo(float).eps, max_rank=int(f.ranks.max()))
                state.orthogonality_center = None
            else:
                model.basis_adaptation = False

        # within a sweep, only the cores between the previous node and mu change
        center = state.orthogonality_center
        if center is None:
            f = f.orth_at_node(mu)
            state.below = f.eval_diag_below(state.bases_eval)
        else:
            f = f.orth_at_node(mu, from_node=center)
            changed = f.tree.path_between(center, mu)
            state.below = f.eval_diag_below(state.bases_eval, state.below, changed)
        state.orthogonality_center = mu

        if model.basis_adaptation:
            model.basis_adaptation_path = self._basis_adaptation_path(f, mu, state)

        A = f.parameter_gradient_eval(mu, state.bases_eval, state.below)

        if self.loss.kind == LossKind.LEAST_SQUARES:
            b = y
        elif isinstance(y, TreeBasedTensor):
            b = f.dot_gradient(y, mu).ravel()
        else:
            b = None
        return A, b, f

    def _set_parameter(self, f: TreeBasedTensor, mu: int, a: np.ndarray) -> TreeBasedTensor:
        g = f.copy()
        g.cores[mu] = np.asarray(a, dtype=float).reshape(g.cores[mu].shape)
        return g

    def _stagnation(self, f: TreeBasedTensor, f0: TreeBasedTensor) -> float:
        if f.tree != f0.tree or not np.array_equal(f.is_active_node, f0.is_active_node):
            return np.inf
        difference = (f - f0).norm()
        reference = f0.norm()
        if reference == 0:
            return 0.0 if difference == 0 else np.inf
        return difference / reference

    # ------------------------------------------------------------------
    # Rank adaptation hooks
    # ------------------------------------------------------------------

    def _tree_adaptation_enabled(self, config: LearningConfig, state: _RunState) -> bool:
        if not config.tree_adaptation.enabled:
            return False
        active = state.is_active_node if state.is_active_node is not None else self.is_active_node
        if not np.all(active):
            warnings.warn(
                "Tree adaptation is not compatible with inactive nodes, disabling it.",
                UserWarning,
            )
            return False
        return True

    def _rank_one_correction(self, f: TreeBasedTensor, y, config: LearningConfig,
                             state: _RunState) -> TreeBasedTensor:
        """Sum of f and a rank-one approximation of the residual."""
        if self.loss.kind == LossKind.LEAST_SQUARES:
            target = y - f.eval_diag(state.bases_eval)
        else:
            target = f

        am = replace(config.alternating_minimization, max_iterations=1, display=False)
        local_config = replace(
            config,
            algorithm=Algorithm.STANDARD,
            alternating_minimization=am,
            store_iterates=False,
            test_error=False,
            display=False,
        )
        local_state = state.derive(
            rank=1,
            initialization=InitializationType.ONES,
            initial_guess=None,
            tree=f.tree,
            is_active_node=f.is_active_node.copy(),
        )
        f_add, local_output = self._solve_standard(target, local_config, local_state)
        if local_output.status == SolveStatus.FAILURE:
            return f
        return f + f_add

    def _new_rank_selection(self, f: TreeBasedTensor, y, config: LearningConfig, state: _RunState):
        """
        Select the nodes whose rank is increased.

        Returns
        -------
        f : TreeBasedTensor
            Current iterate
        new_rank : np.ndarray
            Admissible ranks of the next iterate
        enriched_nodes : np.ndarray
            Nodes whose rank is increased
        tensor_for_initialization : TreeBasedTensor
            Tensor from which the next initial guess is built
        """
        ra = config.rank_adaptation
        t = f.tree
        ranks = f.ranks

        selection_rank = None
        if ra.rank_one_correction:
            increased = ranks + (f.is_active_node & (np.arange(t.nb_nodes) != t.root))
            selection_rank, _ = make_ranks_admissible(f, increased, state.rng)
            guess = truncate(self._rank_one_correction(f, y, config, state), 0.0, selection_rank)
            am = replace(config.alternating_minimization, max_iterations=10, display=False)
            local_config = replace(
                config,
                algorithm=Algorithm.STANDARD,
                alternating_minimization=am,
                store_iterates=False,
                test_error=False,
                display=False,
            )
            local_state = state.derive(
                rank=selection_rank,
                initialization=InitializationType.INITIAL_GUESS,
                initial_guess=guess,
            )
            tensor_for_selection, _ = self._solve_standard(y, local_config, local_state)
        else:
            tensor_for_selection = f

        sv = singular_values(tensor_for_selection)
        svmin = np.full(t.nb_nodes, np.nan)
        for node in f.active_nodes:
            if node != t.root and sv[node] is not None and len(sv[node]) > 0:
                svmin[node] = np.min(sv[node])

        # leaves whose rank equals the dimension of their basis
        for node in f.active_nodes:
            if t.is_leaf[node] and ranks[node] >= f.dims[t.node2dim[node]]:
                svmin[node] = np.nan
        if selection_rank is not None:
            svmin[selection_rank != tensor_for_selection.ranks] = np.nan

        norm = tensor_for_selection.norm()
        with np.errstate(invalid="ignore", divide="ignore"):
            svmin[~(svmin / norm >= np.finfo(float).eps)] = np.nan

        # nodes whose rank equals the product of the sizes of the neighbouring
        # edges, when these edges cannot be increased either
        edge = np.array([
            ranks[n] if f.is_active_node[n] else f.dims[t.node2dim[n]] for n in range(t.nb_nodes)
        ])
        cannot = np.zeros(t.nb_nodes, dtype=bool)
        cannot[t.root] = True
        cannot[t.is_leaf] = np.isnan(svmin[t.is_leaf])
        for lvl in range(t.max_level - 1, 0, -1):
            for node in t.nodes_with_level(lvl):
                if t.is_leaf[node]:
                    continue
                ch = t.children[node]
                if np.all(cannot[ch]) and edge[node] == np.prod(edge[ch]):
                    cannot[node] = True
        for lvl in range(1, t.max_level):
            for node in t.nodes_with_level(lvl):
                if cannot[node]:
                    continue
                parent = t.parent[node]
                neighbours = [parent] + [c for c in t.children[parent] if c != node]
                if np.all(cannot[neighbours]) and edge[node] == np.prod(edge[neighbours]):
                    cannot[node] = True
        svmin[cannot] = np.nan

        if np.all(np.isnan(svmin)):
            return f, ranks.copy(), np.array([], dtype=int), tensor_for_selection

        candidates = ~np.isnan(svmin)
        threshold = ra.theta * np.nanmax(svmin)
        enriched = np.flatnonzero(candidates & (np.where(candidates, svmin, -np.inf) >= threshold))
        new_rank = ranks.copy()
        new_rank[enriched] += 1

        if not f.is_admissible_rank(new_rank):
            enriched_theta = enriched
            rank_theta = new_rank
            svmin[enriched_theta] = np.nan
            remaining = svmin[~np.isnan(svmin)]
            for value in _unique_within_tolerance(remaining, 1e-2)[::-1]:
                new_rank = rank_theta.copy()
                added = ~np.isnan(svmin) & (np.where(np.isnan(svmin), -np.inf, svmin) >= value)
                new_rank[added] += 1
                if f.is_admissible_rank(new_rank):
                    enriched = np.concatenate([enriched_theta, np.flatnonzero(added)])
                    break
            if not f.is_admissible_rank(new_rank):
                new_rank = ranks.copy()
                enriched = np.array([], dtype=int)

        return f, new_rank, enriched, tensor_for_selection

    def _initial_guess_new_rank(self, state: _RunState, f: TreeBasedTensor, new_rank) -> None:
        state.initialization = InitializationType.INITIAL_GUESS
        state.rank = np.asarray(new_rank, dtype=int)
        if not np.array_equal(f.ranks, new_rank):
            state.initial_guess = truncate(f, tolerance=0.0, max_rank=new_rank)
        else:
            state.initial_guess = f

    def _adapt_tree(self, f: TreeBasedTensor, error, test_error, config: LearningConfig,
                    state: _RunState, output: LearningOutput):
        ta = config.tree_adaptation
        if ta.tolerance is not None:
            tolerance = ta.tolerance
        elif self.loss.error_type == "relative" and error is not None and np.isfinite(error) and error != 0:
            tolerance = error
        elif self.loss.error_type == "relative" and test_error is not None and np.isfinite(test_error) and test_error != 0:
            tolerance = test_error
        else:
            warnings.warn(
                "Must provide a tolerance for the tree adaptation (tree_adaptation.tolerance). "
                "Disabling tree adaptation.",
                UserWarning,
            )
            return f, False

        f_perm = optimize_dimension_tree(f, tolerance, ta.max_iterations)
        if f_perm.storage() < f.storage():
            f = f_perm
            state.tree = f.tree
            state.is_active_node = f.is_active_node.copy()
            output.adapted_tree = True
            if config.display:
                print(f"\tTree adaptation:\n\t\tRanks after permutation = {f.ranks.tolist()}")
        return f, True

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def _final_display(self, f: TreeBasedTensor) -> str:
        return f"Ranks = {f.ranks.tolist()}"

    def _adaptation_display(self, f: TreeBasedTensor, enriched_nodes) -> str:
        return f"\tEnriched nodes: {list(map(int, enriched_nodes))}\n\tRanks = {f.ranks.tolist()}"
