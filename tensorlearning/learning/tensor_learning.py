"""
Alternating minimization for learning with tensor formats.

TensorLearning implements the algorithms shared by all the tensor formats:

- the standard solve: sweeps over the parameters of the format, each
  parameter being updated by solving a linear model learning problem
  while the others are kept fixed, until stagnation or the maximal
  number of sweeps
- the rank-adaptive solve: standard solves with increasing ranks, stopped
  on success (error below tolerance), stagnation, early stopping or the
  maximal number of iterations, with optional adaptation of the tree

The format-specific operations (initialization, assembly of the linear
systems, rank selection, ...) are hooks implemented by the subclasses.
Configurations are immutable; the mutable state of a solve is held by a
_RunState passed down to nested solves.

References:
- Grelier, Nouy & Chevreuil (2018), "Learning with tree-based tensor formats"
- Holtz, Rohwedder & Schneider (2012), "The alternating linear scheme for
  tensor optimization in the tensor train format"
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
import warnings

import numpy as np

from tensorlearning.functional import FunctionalTensor
from tensorlearning.learning.config import Algorithm, InitializationType, LearningConfig
from tensorlearning.learning.output import LearningOutput, SolveStatus
from tensorlearning.linear_model import LinearModelLearning, linear_model_for_loss
from tensorlearning.losses import LossFunction, LossKind
from tensorlearning.tree.tree_tensor import TreeBasedTensor
from tensorlearning.utils.shapes import (
    canonicalize_samples,
    canonicalize_target,
    validate_bases_eval,
    validate_learning_data,
)


@dataclass
class _RunState:
    """Mutable state of a solve, derived for nested solves."""

    bases_eval: list
    rng: np.random.Generator
    rank: object = 1
    initialization: InitializationType = InitializationType.RANDOM
    initial_guess: TreeBasedTensor | None = None
    tree: object = None
    is_active_node: np.ndarray | None = None
    exploration_strategy: list | None = None
    linear_models: list | None = None
    bases_adaptation_path: list | None = None
    orthogonality_center: int | None = None
    below: list | None = None

    def derive(self, **changes) -> "_RunState":
        changes.setdefault("exploration_strategy", None)
        changes.setdefault("linear_models", None)
        changes.setdefault("orthogonality_center", None)
        changes.setdefault("below", None)
        return replace(self, **changes)


class TensorLearning(ABC):
    """
    Base class of the learning algorithms with tensor formats.

    Parameters
    ----------
    loss : LossFunction
        Loss function
    config : LearningConfig, optional
        Configuration (defaults if None)
    bases : FunctionalBases, optional
        Bases used to evaluate the samples and to build the returned functions
    bases_eval : list of np.ndarray, optional
        Precomputed design matrices, one per dimension
    test_data : optional
        Test data for the loss function: (x, y) or x
    linear_model : LinearModelLearning or list, optional
        Linear model learning prototype, or one object per parameter
    initial_guess : TreeBasedTensor or FunctionalTensor, optional
        Initial guess for InitializationType.INITIAL_GUESS
    """

    def __init__(self, loss: LossFunction, config: LearningConfig | None = None, bases=None,
                 bases_eval=None, test_data=None, linear_model=None, initial_guess=None):
        if not isinstance(loss, LossFunction):
            raise ValueError(f"loss must be a LossFunction, got {type(loss).__name__}")
        self.loss = loss
        self.config = config if config is not None else LearningConfig()
        self.bases = bases
        self.bases_eval = bases_eval
        self.test_data = test_data
        self.linear_model = linear_model if linear_model is not None else self._default_linear_model()
        if isinstance(initial_guess, FunctionalTensor):
            initial_guess = initial_guess.tensor
        self.initial_guess = initial_guess
        self._orthonormality_warning = True

        models = self.linear_model if isinstance(self.linear_model, (list, tuple)) else [self.linear_model]
        for model in models:
            if not isinstance(model, LinearModelLearning):
                raise ValueError(f"Expected LinearModelLearning objects, got {type(model).__name__}")
            if model.loss_kind is not None and model.loss_kind != loss.kind:
                raise ValueError(
                    f"{type(model).__name__} is not compatible with a {loss.kind.value} loss"
                )

    def _default_linear_model(self) -> LinearModelLearning:
        options = self.config.linear_model
        kwargs = dict(
            regularization=options.regularization,
            basis_adaptation=options.basis_adaptation,
            error_estimation=options.error_estimation,
            model_selection=options.model_selection,
            stop_if_error_increase=options.stop_if_error_increase,
            error_increase_factor=options.error_increase_factor,
            included_coefficients=(
                None if options.included_coefficients is None else list(options.included_coefficients)
            ),
        )
        if self.loss.kind == LossKind.LEAST_SQUARES:
            kwargs["correction"] = options.correction
        elif self.bases is not None:
            kwargs["is_basis_orthonormal"] = self.bases.is_orthonormal
        return linear_model_for_loss(self.loss.kind, **kwargs)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def solve(self, y=None, x=None):
        """
        Learn a tensor from the training data.

        Parameters
        ----------
        y : array_like, TreeBasedTensor or None
            Target values (least-squares loss); None for density estimation,
            or a reference tensor whose projection is subtracted (density loss)
        x : array_like, optional
            Samples, shape (N, order); evaluated with the bases. If omitted,
            the precomputed bases_eval are used

        Returns
        -------
        f : FunctionalTensor or TreeBasedTensor
            Learned function (a TreeBasedTensor when no bases are given)
        output : LearningOutput
            Diagnostics

        Raises
        ------
        ValueError
            If the data or the configuration are inconsistent
        """
        config = self.config

        if self._orthonormality_warning and (self.bases is None or not self.bases.is_orthonormal):
            self._orthonormality_warning = False
            warnings.warn(
                "The learning algorithms are designed for orthonormal bases. They work with "
                "non-orthonormal bases, but without some guarantees on their results.",
                UserWarning,
            )

        if config.test_error and (self.bases is None or self.test_data is None):
            config = replace(config, test_error=False)

        if isinstance(y, FunctionalTensor):
            y = y.tensor
        if not isinstance(y, TreeBasedTensor):
            y = canonicalize_target(y)

        if x is not None:
            if self.bases is None:
                raise ValueError("Samples x need bases to be evaluated")
            x = canonicalize_samples(x)
            validate_learning_data(x, y if isinstance(y, np.ndarray) else None, self.bases.order)
            bases_eval = self.bases.eval(x)
        elif self.bases_eval is not None:
            bases_eval = [np.asarray(h, dtype=float) for h in self.bases_eval]
        else:
            raise ValueError("Must provide samples x or precomputed bases_eval")
        n = validate_bases_eval(bases_eval)

        if isinstance(y, np.ndarray) and y.shape[0] != n:
            raise ValueError(f"Target has {y.shape[0]} entries, got {n} samples")
        if self.loss.kind == LossKind.LEAST_SQUARES and not isinstance(y, np.ndarray):
            raise ValueError("Least-squares learning requires target values y")

        state = self._new_state(config, bases_eval)
        solvers = {
            Algorithm.STANDARD: self._solve_standard,
            Algorithm.RANK_ADAPTATION: self._solve_adaptation,
        }
        f, output = solvers[config.algorithm](y, config, state)

        if config.display:
            message = self._final_display(f)
            if not np.isnan(output.error):
                message += f", error = {output.error:.2e}"
            if not np.isnan(output.test_error):
                message += f", test error = {output.test_error:.2e}"
            print(message)

        return self._as_model(f), output

    def _new_state(self, config: LearningConfig, bases_eval) -> _RunState:
        return _RunState(
            bases_eval=bases_eval,
            rng=np.random.default_rng(config.random_state),
            rank=config.rank,
            initialization=config.initialization,
            initial_guess=self.initial_guess,
        )

    def _as_model(self, f):
        if self.bases is not None:
            return FunctionalTensor(f, self.bases)
        return f

    def _test_error(self, f) -> float:
        return self.loss.test_error(FunctionalTensor(f, self.bases), self.test_data)

    # ------------------------------------------------------------------
    # Standard solve
    # ------------------------------------------------------------------

    def _solve_standard(self, y, config: LearningConfig, state: _RunState):
        """Alternating minimization with a fixed structure."""
        output = LearningOutput()
        am = config.alternating_minimization

        f = self._initialize(y, config, state)

        for k in range(1, am.max_iterations + 1):
            self._pre_processing(config, state)
            f0 = f

            if am.random:
                nodes = self._randomize_exploration_strategy(state)
            else:
                nodes = state.exploration_strategy

            node_output = None
            failed = False
            for mu in nodes:
                A, b, f = self._prepare_system(f, mu, y, config, state)
                a, node_output = state.linear_models[mu].solve(b, A)
                if a.size == 0 or not np.any(a) or not np.all(np.isfinite(a)):
                    warnings.warn(
                        f"Empty, zero or NaN solution at node {mu}, returning to the previous iterate",
                        UserWarning,
                    )
                    failed = True
                    break
                f = self._set_parameter(f, mu, a)

            output.iterations = k
            if failed:
                f = f0
                output.status = SolveStatus.FAILURE
                output.error = np.inf
                break

            stagnation = self._stagnation(f, f0)
            output.stagnation_iterations.append(stagnation)

            if config.store_iterates:
                output.iterates.append(self._as_model(f))

            output.error = node_output.error
            output.error_iterations.append(output.error)

            if config.test_error:
                output.test_error = self._test_error(f)
                output.test_error_iterations.append(output.test_error)

            if am.display:
                message = f"\tAlt. min. iteration {k}: stagnation = {stagnation:.2e}"
                if not np.isnan(output.error):
                    message += f", error = {output.error:.2e}"
                if config.test_error:
                    message += f", test error = {output.test_error:.2e}"
                print(message)

            if k > 1 and stagnation < am.stagnation:
                output.status = SolveStatus.SUCCESS
                break

        output.ranks = f.ranks
        return f, output

    # ------------------------------------------------------------------
    # Rank-adaptive solve
    # ------------------------------------------------------------------

    def _local_config(self, config: LearningConfig) -> LearningConfig:
        return replace(
            config,
            algorithm=Algorithm.STANDARD,
            store_iterates=False,
            test_error=False,
            display=False,
        )

    def _has_error_estimate(self, state: _RunState) -> bool:
        return any(m is not None and m.error_estimation for m in state.linear_models)

    def _solve_adaptation(self, y, config: LearningConfig, state: _RunState):
        """Standard solves with increasing ranks."""
        local_config = self._local_config(config)
        ra = config.rank_adaptation
        on_error = config.tolerance.on_error
        tree_adaptation = self._tree_adaptation_enabled(config, state)

        output = LearningOutput()
        status = SolveStatus.MAX_ITERATIONS
        f = None
        errors = []
        test_errors = []
        iterates = []
        enriched_nodes = []
        tree_adapted = False
        has_error = False

        for i in range(1, ra.max_iterations + 1):
            f_old = f
            f, local_output = self._solve_standard(y, local_config, state)
            has_error = self._has_error_estimate(state)
            error = local_output.error

            if np.isinf(error):
                if config.display:
                    print("Infinite error, returning the previous iterate.")
                status = SolveStatus.FAILURE
                if f_old is not None:
                    f = f_old
                break
            errors.append(error)

            if config.test_error:
                test_errors.append(self._test_error(f))

            if ra.early_stopping and i > 1:
                factor = ra.early_stopping_factor
                stop_on_test = config.test_error and (
                    np.isnan(test_errors[-1]) or factor * min(test_errors[:-1]) < test_errors[-1]
                )
                stop_on_error = has_error and (
                    np.isnan(errors[-1]) or factor * min(errors[:-1]) < errors[-1]
                )
                if stop_on_test or stop_on_error:
                    if config.display:
                        message = "Early stopping"
                        if has_error:
                            message += f", error = {errors[-1]:.2e}"
                        if config.test_error:
                            message += f", test error = {test_errors[-1]:.2e}"
                        print(message)
                    errors.pop()
                    if config.test_error:
                        test_errors.pop()
                    f = f_old
                    status = SolveStatus.EARLY_STOP
                    break

            if config.display:
                print(f"\nRank adaptation, iteration {i}:")
                print(self._adaptation_display(f, enriched_nodes))
                print(f"\tStorage complexity = {f.storage()}")
                if has_error:
                    print(f"\tError      = {errors[-1]:.2e}")
                if config.test_error:
                    print(f"\tTest error = {test_errors[-1]:.2e}")

            accepted = False
            if tree_adaptation and i > 1 and (
                not config.tree_adaptation.force_rank_adaptation or not tree_adapted
            ):
                storage_before = f.storage()
                test_error = test_errors[-1] if config.test_error else None
                f, tree_adaptation = self._adapt_tree(f, errors[-1], test_error, config, state, output)
                accepted = f.storage() < storage_before
                if accepted:
                    if config.display:
                        print(f"\t\tStorage complexity before permutation = {storage_before}")
                        print(f"\t\tStorage complexity after permutation  = {f.storage()}")
                    if config.test_error:
                        test_errors[-1] = self._test_error(f)
                        if config.display:
                            print(f"\t\tTest error after permutation = {test_errors[-1]:.2e}")

            if config.store_iterates:
                iterates.append(self._as_model(f))

            if i == ra.max_iterations:
                break

            if (config.test_error and test_errors[-1] < on_error) or (has_error and errors[-1] < on_error):
                status = SolveStatus.SUCCESS
                break

            if not tree_adaptation or not accepted:
                if (
                    i > 1
                    and not tree_adapted
                    and self._stagnation(f, f_old) < config.tolerance.on_stagnation
                ):
                    break
                tree_adapted = False
                f, new_rank, enriched_nodes, tensor_for_initialization = self._new_rank_selection(
                    f, y, config, state
                )
                output.enriched_nodes_iterations.append(enriched_nodes)
                self._initial_guess_new_rank(state, tensor_for_initialization, new_rank)
            else:
                tree_adapted = True
                enriched_nodes = []
                state.rank = f.ranks
                state.initialization = InitializationType.INITIAL_GUESS
                state.initial_guess = f

        output.status = status
        output.iterations = len(errors)
        output.iterates = iterates
        output.error_iterations = errors
        output.error = errors[-1] if errors else np.inf
        if config.test_error:
            output.test_error_iterations = test_errors
            output.test_error = test_errors[-1] if test_errors else np.nan
        output.ranks = f.ranks
        return f, output

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _initialize(self, y, config: LearningConfig, state: _RunState):
        """Initial iterate; sets the exploration strategy of state."""

    @abstractmethod
    def _pre_processing(self, config: LearningConfig, state: _RunState) -> None:
        """Called before each sweep."""

    @abstractmethod
    def _randomize_exploration_strategy(self, state: _RunState) -> list:
        """Randomized order of the parameters for one sweep."""

    @abstractmethod
    def _prepare_system(self, f, mu: int, y, config: LearningConfig, state: _RunState):
        """Design matrix A, target b and (normalized) iterate for the parameter mu."""

    @abstractmethod
    def _set_parameter(self, f, mu: int, a: np.ndarray):
        """Iterate with the parameter mu replaced by a."""

    @abstractmethod
    def _stagnation(self, f, f0) -> float:
        """Distance between two successive iterates."""

    @abstractmethod
    def _tree_adaptation_enabled(self, config: LearningConfig, state: _RunState) -> bool:
        """Whether the rank-adaptive solve may adapt the tree."""

    @abstractmethod
    def _new_rank_selection(self, f, y, config: LearningConfig, state: _RunState):
        """Return (f, new_rank, enriched_nodes, tensor_for_initialization)."""

    @abstractmethod
    def _initial_guess_new_rank(self, state: _RunState, f, new_rank) -> None:
        """Set the initial guess of the next standard solve."""

    @abstractmethod
    def _adapt_tree(self, f, error, test_error, config: LearningConfig, state: _RunState,
                    output: LearningOutput):
        """Return (f, tree_adaptation_still_enabled)."""

    def _final_display(self, f) -> str:
        return repr(f)

    def _adaptation_display(self, f, enriched_nodes) -> str:
        return f"\tEnriched nodes: {list(enriched_nodes)}"
