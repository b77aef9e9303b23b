"""
Tests for tree-based tensors.

These tests verify:
1. Core shapes, ranks and storage of the standard formats
2. Dense materialization and evaluation at sample points
3. Orthogonalization invariants
4. Inner products, sums and gradients
5. Rank admissibility
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose, assert_array_equal

from tensorlearning.tree import DimensionTree, TreeBasedTensor


def random_bases_eval(rng, n, dims):
    return [rng.standard_normal((n, d)) for d in dims]


@pytest.fixture
def rng():
    return np.random.default_rng(0)


class TestTreeBasedTensorStructure:
    """Test representation and validation."""

    def test_randn_core_shapes(self, rng):
        """Linear tree of order 3, all nodes active."""
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], [4, 4, 4], rng=rng)

        assert f.cores[0].shape == (2, 2, 1)
        assert f.cores[1].shape == (4, 2)
        assert f.cores[2].shape == (2, 2, 2)
        assert f.cores[3].shape == (4, 2)
        assert f.storage() == 36
        assert f.ranks.tolist() == [1, 2, 2, 2, 2]

    def test_tensor_train_layout(self, rng):
        """Inactive leaves put their basis mode on the parent core."""
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        f = TreeBasedTensor.randn(tree, [1, 2, 3, 0, 0], [4, 5, 6], active, rng=rng)

        assert f.cores[3] is None
        assert f.cores[2].shape == (5, 6, 3)
        assert f.cores[0].shape == (2, 3, 1)
        assert f.ranks.tolist() == [1, 2, 3, 0, 0]
        assert f.dims.tolist() == [4, 5, 6]

    def test_dims_inferred_from_cores(self, rng):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], [3, 4, 5], rng=rng)
        g = TreeBasedTensor(f.cores, tree)

        assert g.dims.tolist() == [3, 4, 5]

    def test_root_rank_must_be_one(self, rng):
        tree = DimensionTree.linear(2)
        cores = [rng.standard_normal((2, 2, 2)), rng.standard_normal((3, 2)), rng.standard_normal((3, 2))]
        with pytest.raises(ValueError, match="Root core"):
            TreeBasedTensor(cores, tree)

    def test_inactive_internal_node_rejected(self, rng):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], [3, 3, 3], rng=rng)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[2] = False
        with pytest.raises(ValueError, match="not a leaf"):
            TreeBasedTensor(f.cores, tree, active)

    def test_inconsistent_core_shape_rejected(self, rng):
        tree = DimensionTree.linear(2)
        cores = [rng.standard_normal((2, 3, 1)), rng.standard_normal((3, 2)), rng.standard_normal((3, 2))]
        with pytest.raises(ValueError, match="expected"):
            TreeBasedTensor(cores, tree)

    def test_wrong_number_of_cores(self, rng):
        with pytest.raises(ValueError, match="one per node"):
            TreeBasedTensor([rng.standard_normal((2, 2, 1))], DimensionTree.linear(2))


class TestDenseAndEvaluation:
    """Test full() and evaluation at samples."""

    def test_eval_diag_matches_full(self, rng):
        tree = DimensionTree.balanced(3)
        dims = [3, 4, 5]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], dims, rng=rng)
        bases_eval = random_bases_eval(rng, 20, dims)

        expected = np.einsum("abc,za,zb,zc->z", f.full(), *bases_eval)
        assert_allclose(f.eval_diag(bases_eval), expected, rtol=1e-10)

    def test_eval_diag_tensor_train(self, rng):
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        dims = [3, 4, 5]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 0, 0], dims, active, rng=rng)
        bases_eval = random_bases_eval(rng, 15, dims)

        expected = np.einsum("abc,za,zb,zc->z", f.full(), *bases_eval)
        assert_allclose(f.eval_diag(bases_eval), expected, rtol=1e-10)

    def test_full_dimension_order(self, rng):
        """full() axes follow the dimensions, not the leaf order."""
        tree = DimensionTree.balanced(4).with_dim2ind([3, 5, 4, 6])
        dims = [2, 3, 4, 5]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2, 2, 2], dims, rng=rng)

        assert f.full().shape == (2, 3, 4, 5)

    def test_eval_rejects_wrong_dims(self, rng):
        tree = DimensionTree.linear(2)
        f = TreeBasedTensor.randn(tree, [1, 2, 2], [3, 3], rng=rng)
        with pytest.raises(ValueError, match="columns"):
            f.eval_diag(random_bases_eval(rng, 5, [3, 4]))

    def test_eval_diag_below_changed_nodes(self, rng):
        """Only the changed nodes and their ascendants are evaluated again."""
        tree = DimensionTree.balanced(4)
        dims = [3, 3, 3, 3]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2, 2, 2], dims, rng=rng)
        bases_eval = random_bases_eval(rng, 10, dims)
        below = f.eval_diag_below(bases_eval)

        g = f.copy()
        g.cores[5] = rng.standard_normal(g.cores[5].shape)
        updated = g.eval_diag_below(bases_eval, below, [5])
        expected = g.eval_diag_below(bases_eval)

        for node in range(tree.nb_nodes):
            assert_allclose(updated[node], expected[node], rtol=1e-12)
        for node in (1, 3, 4, 6):
            assert updated[node] is below[node]

    def test_eval_diag_above_and_below(self, rng):
        """At every node, below and above contract to the function values."""
        tree = DimensionTree.balanced(4)
        dims = [3, 4, 3, 2]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2, 2, 2], dims, rng=rng)
        bases_eval = random_bases_eval(rng, 15, dims)
        below = f.eval_diag_below(bases_eval)
        above = f.eval_diag_above(bases_eval, below)
        values = f.eval_diag(bases_eval)

        for node in range(tree.nb_nodes):
            assert_allclose(np.sum(below[node] * above[node], axis=1), values, rtol=1e-10)

    def test_from_full_roundtrip(self, rng):
        x = rng.standard_normal((3, 4, 5))
        f = TreeBasedTensor.from_full(x, DimensionTree.balanced(3))

        assert_allclose(f.full(), x, atol=1e-10)


class TestOrthogonalization:
    """Test orth() and orth_at_node()."""

    def test_orth_preserves_tensor(self, rng):
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng)
        g = f.orth()

        assert_allclose(g.full(), f.full(), atol=1e-10)

    def test_orth_cores_orthonormal(self, rng):
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng)
        g = f.orth()

        for node in range(1, tree.nb_nodes):
            core = g.cores[node]
            mat = core.reshape(-1, core.shape[-1])
            assert_allclose(mat.T @ mat, np.eye(mat.shape[1]), atol=1e-10)
        assert_allclose(np.linalg.norm(g.cores[0]), np.linalg.norm(f.full()), rtol=1e-10)

    @pytest.mark.parametrize("mu", [0, 1, 2, 4, 6])
    def test_orth_at_node_isometry(self, rng, mu):
        """After orth_at_node(mu), the norm of the tensor is the norm of core mu."""
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng)
        g = f.orth_at_node(mu)

        assert_allclose(g.full(), f.full(), atol=1e-10)
        assert_allclose(np.linalg.norm(g.cores[mu]), np.linalg.norm(f.full()), rtol=1e-10)

    @pytest.mark.parametrize("source, mu", [(0, 6), (3, 6), (4, 1), (5, 0), (2, 2)])
    def test_orth_at_node_from_previous_center(self, rng, source, mu):
        """Moving the orthogonality center along the tree keeps the isometry."""
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng)
        g = f.orth_at_node(source).orth_at_node(mu, from_node=source)

        assert_allclose(g.full(), f.full(), atol=1e-10)
        assert_allclose(np.linalg.norm(g.cores[mu]), np.linalg.norm(f.full()), rtol=1e-10)

    def test_orth_at_node_factorizes_path_only(self, rng):
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng).orth_at_node(3)
        g = f.orth_at_node(4, from_node=3)

        for node in (0, 2, 5, 6):
            assert_array_equal(g.cores[node], f.cores[node])

    def test_orth_at_inactive_node_rejected(self, rng):
        tree = DimensionTree.linear(2)
        f = TreeBasedTensor.randn(tree, [1, 2, 0], [3, 3], [True, True, False], rng=rng)
        with pytest.raises(ValueError, match="not active"):
            f.orth_at_node(2)

    def test_orth_reduces_excess_rank(self, rng):
        """A leaf rank larger than its dimension is reduced by the QR factorization."""
        tree = DimensionTree.linear(2)
        cores = [rng.standard_normal((4, 4, 1)), rng.standard_normal((2, 4)), rng.standard_normal((2, 4))]
        f = TreeBasedTensor(cores, tree)
        g = f.orth()

        assert g.ranks.tolist() == [1, 2, 2]
        assert_allclose(g.full(), f.full(), atol=1e-10)


class TestAlgebra:
    """Test dot, norm, sums and gradients."""

    def test_dot_and_norm_match_full(self, rng):
        tree = DimensionTree.balanced(3)
        dims = [3, 4, 2]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], dims, rng=rng)
        g = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2], dims, rng=rng)

        assert_allclose(f.dot(g), np.sum(f.full() * g.full()), rtol=1e-10)
        assert_allclose(f.norm(), np.linalg.norm(f.full()), rtol=1e-10)

    def test_sum_and_difference(self, rng):
        tree = DimensionTree.linear(3)
        dims = [3, 3, 3]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], dims, rng=rng)
        g = TreeBasedTensor.randn(tree, [1, 1, 2, 1, 2], dims, rng=rng)

        s = f + g
        assert s.ranks.tolist() == [1, 3, 4, 3, 4]
        assert_allclose(s.full(), f.full() + g.full(), atol=1e-10)
        assert_allclose((f - g).full(), f.full() - g.full(), atol=1e-10)
        assert_allclose((f - f).norm(), 0.0, atol=1e-5)

    def test_sum_tensor_train(self, rng):
        """Inactive leaf modes are shared, not stacked."""
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 0, 0], [3, 3, 3], active, rng=rng)
        g = TreeBasedTensor.randn(tree, [1, 1, 1, 0, 0], [3, 3, 3], active, rng=rng)

        s = f + g
        assert s.cores[2].shape == (3, 3, 3)
        assert_allclose(s.full(), f.full() + g.full(), atol=1e-10)

    def test_incompatible_trees_rejected(self, rng):
        f = TreeBasedTensor.randn(DimensionTree.linear(3), [1, 2, 2, 2, 2], [3, 3, 3], rng=rng)
        g = TreeBasedTensor.randn(DimensionTree.trivial(3), [1, 2, 2, 2], [3, 3, 3], rng=rng)
        with pytest.raises(ValueError, match="same dimension tree"):
            f.dot(g)

    @pytest.mark.parametrize("mu", [0, 1, 2, 3])
    def test_parameter_gradient_eval(self, rng, mu):
        """The tensor is linear in each core: A @ core.ravel() gives the values."""
        tree = DimensionTree.linear(3)
        dims = [3, 4, 5]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 3], dims, rng=rng)
        bases_eval = random_bases_eval(rng, 12, dims)

        A = f.parameter_gradient_eval(mu, bases_eval)
        assert A.shape == (12, f.cores[mu].size)
        assert_allclose(A @ f.cores[mu].ravel(), f.eval_diag(bases_eval), rtol=1e-10)

    def test_parameter_gradient_eval_tensor_train(self, rng):
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        dims = [3, 4, 5]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 0, 0], dims, active, rng=rng)
        bases_eval = random_bases_eval(rng, 12, dims)

        A = f.parameter_gradient_eval(2, bases_eval)
        assert A.shape == (12, 4 * 5 * 2)
        assert_allclose(A @ f.cores[2].ravel(), f.eval_diag(bases_eval), rtol=1e-10)

    @pytest.mark.parametrize("mu", [0, 2, 3, 6])
    def test_parameter_gradient_eval_balanced_with_below(self, rng, mu):
        tree = DimensionTree.balanced(4)
        dims = [3, 4, 3, 2]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2, 2, 2], dims, rng=rng)
        bases_eval = random_bases_eval(rng, 15, dims)
        below = f.eval_diag_below(bases_eval)

        A = f.parameter_gradient_eval(mu, bases_eval, below)
        assert_allclose(A @ f.cores[mu].ravel(), f.eval_diag(bases_eval), rtol=1e-10)
        assert_allclose(A, f.parameter_gradient_eval(mu, bases_eval), rtol=1e-12)

    @pytest.mark.parametrize("mu", [0, 1, 2, 3, 4])
    def test_dot_gradient(self, rng, mu):
        """<gradient, core mu> equals <self, other>, which is linear in core mu."""
        tree = DimensionTree.balanced(3)
        dims = [3, 3, 4]
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], dims, rng=rng)
        g = TreeBasedTensor.randn(tree, [1, 3, 3, 2, 2], dims, rng=rng)

        grad = f.dot_gradient(g, mu)
        assert grad.shape == f.cores[mu].shape
        assert_allclose(np.sum(grad * f.cores[mu]), f.dot(g), rtol=1e-10)

    def test_negation(self, rng):
        f = TreeBasedTensor.randn(DimensionTree.linear(2), [1, 2, 2], [3, 3], rng=rng)
        assert_allclose((-f).full(), -f.full())


class TestRankAdmissibility:
    """Test is_admissible_rank."""

    def test_admissible_ranks(self):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.ones(tree, [1, 1, 1, 1, 1], [2, 2, 2])

        assert f.is_admissible_rank([1, 2, 2, 2, 2])
        assert f.is_admissible_rank([1, 1, 1, 1, 1])

    def test_inadmissible_ranks(self):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.ones(tree, [1, 1, 1, 1, 1], [2, 2, 2])

        # root core (2, 1, 1): rank of node 1 exceeds the other mode
        assert not f.is_admissible_rank([1, 2, 1, 1, 1])
        # leaf rank larger than its dimension
        assert not f.is_admissible_rank([1, 3, 3, 2, 2])
        # root rank must be 1
        assert not f.is_admissible_rank([2, 1, 1, 1, 1])
        # wrong length
        assert not f.is_admissible_rank([1, 1, 1])

    def test_inactive_nodes_have_rank_zero(self):
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        f = TreeBasedTensor.ones(tree, [1, 1, 1, 0, 0], [3, 3, 3], active)

        assert f.is_admissible_rank([1, 3, 3, 0, 0])
        assert not f.is_admissible_rank([1, 3, 3, 1, 0])
        assert not f.is_admissible_rank([1, 3, 4, 0, 0])
