"""
Tests for truncation, hierarchical SVD and dimension tree optimization.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from tensorlearning.tree import (
    DimensionTree,
    TreeBasedTensor,
    hsvd,
    optimize_dimension_tree,
    singular_values,
    truncate,
)


@pytest.fixture
def rng():
    return np.random.default_rng(1)


def coupled_tensor(rng):
    """Product of a function of (x0, x2) and a function of (x1, x3)."""
    a = rng.standard_normal((3, 3))
    b = rng.standard_normal((3, 3))
    return np.einsum("ik,jl->ijkl", a, b)


class TestHSVD:
    """Test the hierarchical SVD of dense tensors."""

    @pytest.mark.parametrize("order", [3, 4])
    def test_exact_reconstruction(self, rng, order):
        x = rng.standard_normal((3,) * order)
        f = hsvd(x, DimensionTree.balanced(order))

        assert_allclose(f.full(), x, atol=1e-10)

    def test_tensor_train_pattern(self, rng):
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        x = rng.standard_normal((3, 4, 5))
        f = hsvd(x, tree, active)

        assert f.cores[3] is None
        assert f.cores[2].shape[:2] == (4, 5)
        assert_allclose(f.full(), x, atol=1e-10)

    def test_max_rank(self, rng):
        x = rng.standard_normal((4, 4, 4))
        f = hsvd(x, DimensionTree.linear(3), max_rank=1)

        assert f.ranks.tolist() == [1, 1, 1, 1, 1]

    def test_low_rank_recovered(self, rng):
        """A rank-one tensor is recovered with rank one at a small tolerance."""
        u, v, w = rng.standard_normal(3), rng.standard_normal(4), rng.standard_normal(5)
        x = np.einsum("i,j,k->ijk", u, v, w)
        f = hsvd(x, DimensionTree.balanced(3), tolerance=1e-10)

        assert f.ranks.tolist() == [1, 1, 1, 1, 1]
        assert_allclose(f.full(), x, atol=1e-10)

    def test_wrong_order_rejected(self, rng):
        with pytest.raises(ValueError, match="axes"):
            hsvd(rng.standard_normal((3, 3)), DimensionTree.linear(3))


class TestTruncate:
    """Test truncation of tree-based tensors."""

    def test_redundant_ranks_removed(self, rng):
        """f + f has doubled ranks but the ranks of f."""
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2, 2, 2], [5, 5, 5, 5], rng=rng)
        g = truncate(f + f, tolerance=1e-8)

        assert (f + f).ranks.tolist() == [1, 4, 4, 4, 4, 4, 4]
        assert g.ranks.tolist() == [1, 2, 2, 2, 2, 2, 2]
        assert_allclose(g.full(), 2 * f.full(), atol=1e-8)

    def test_max_rank_per_node(self, rng):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 3, 3], [4, 4, 4], rng=rng)
        g = truncate(f, max_rank=[1, 2, 2, 1, 2])

        assert g.ranks.tolist() == [1, 2, 2, 1, 2]

    def test_error_bound(self, rng):
        """The truncation error is bounded by the tolerance on every edge."""
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 3, 3, 3, 3, 3, 3], [4, 4, 4, 4], rng=rng)
        tolerance = 0.3
        g = truncate(f, tolerance=tolerance)

        error = np.linalg.norm(g.full() - f.full())
        nb_edges = tree.nb_nodes - 1
        assert error <= np.sqrt(nb_edges) * tolerance * f.norm() * (1 + 1e-8)
        assert g.storage() <= f.storage()

    def test_zero_tolerance_keeps_tensor(self, rng):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], [3, 3, 3], rng=rng)
        g = truncate(f)

        assert_allclose(g.full(), f.full(), atol=1e-10)

    def test_own_ranks_idempotent(self, rng):
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng)
        g = truncate(f, max_rank=f.ranks)

        assert g.ranks.tolist() == f.ranks.tolist()
        assert_allclose(g.full(), f.full(), atol=1e-10)

    def test_negative_tolerance_rejected(self, rng):
        f = TreeBasedTensor.randn(DimensionTree.linear(2), [1, 2, 2], [3, 3], rng=rng)
        with pytest.raises(ValueError, match="tolerance"):
            truncate(f, tolerance=-1.0)


class TestSingularValues:
    """Test the singular values of the matricizations."""

    def test_energy_at_every_node(self, rng):
        """The squared singular values of every node sum to the squared norm."""
        tree = DimensionTree.balanced(4)
        f = TreeBasedTensor.randn(tree, [1, 2, 3, 2, 2, 2, 2], [3, 3, 3, 3], rng=rng)
        sv = singular_values(f)
        norm = f.norm()

        assert_allclose(sv[0], [norm])
        for node in range(1, tree.nb_nodes):
            assert_allclose(np.sum(sv[node] ** 2), norm ** 2, rtol=1e-10)
            assert np.all(np.diff(sv[node]) <= 1e-12)

    def test_matches_dense_matricization(self, rng):
        tree = DimensionTree.linear(3)
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 2, 2], [3, 4, 5], rng=rng)
        sv = singular_values(f)
        full = f.full()

        # node 1 is the leaf of dimension 0
        expected = np.linalg.svd(full.reshape(3, -1), compute_uv=False)[:2]
        assert_allclose(sv[1], expected, rtol=1e-8)

    def test_inactive_nodes(self, rng):
        tree = DimensionTree.linear(3)
        active = np.ones(tree.nb_nodes, dtype=bool)
        active[tree.dim2ind[1:]] = False
        f = TreeBasedTensor.randn(tree, [1, 2, 2, 0, 0], [3, 3, 3], active, rng=rng)
        sv = singular_values(f)

        assert sv[3] is None
        assert sv[4] is None
        assert len(sv[2]) == 2


class TestOptimizeDimensionTree:
    """Test the greedy search over dimension trees."""

    def test_storage_reduced(self, rng):
        x = coupled_tensor(rng)
        f = hsvd(x, DimensionTree.balanced(4), tolerance=1e-12)
        g = optimize_dimension_tree(f, tolerance=1e-10, max_iterations=10)

        assert g.storage() < f.storage()
        assert sorted(g.tree.dims_of(1)) in ([0, 2], [1, 3])
        assert_allclose(g.full(), x, atol=1e-8)

    def test_unchanged_when_optimal(self, rng):
        """A tensor already on its best tree is returned as is."""
        x = coupled_tensor(rng)
        tree = DimensionTree.balanced(4).with_dim2ind([3, 5, 4, 6])
        f = hsvd(x, tree, tolerance=1e-12)
        g = optimize_dimension_tree(f, tolerance=1e-10, max_iterations=10)

        assert g is f

    def test_too_large_tensor_skipped(self, rng):
        f = TreeBasedTensor.randn(DimensionTree.balanced(4), [1, 2, 2, 2, 2, 2, 2], [5, 5, 5, 5], rng=rng)
        with pytest.warns(UserWarning, match="not optimized"):
            g = optimize_dimension_tree(f, tolerance=1e-6, max_iterations=5, max_full_size=100)

        assert g is f
