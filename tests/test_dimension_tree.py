"""
Tests for dimension trees.

These tests verify:
1. Node numbering of the standard trees (linear, balanced, trivial)
2. Tree queries (levels, ascendants, child positions, dimensions)
3. Validation of malformed trees
"""

import pytest
import numpy as np
from numpy.testing import assert_array_equal

from tensorlearning.tree import DimensionTree


class TestStandardTrees:
    """Test the standard tree constructors."""

    def test_linear_tree_numbering(self):
        """Linear tree of order 3 is {0,1,2} -> ({0}, {1,2}) -> ({1}, {2})."""
        tree = DimensionTree.linear(3)

        assert tree.nb_nodes == 5
        assert tree.order == 3
        assert tree.root == 0
        assert tree.children[0] == [1, 2]
        assert tree.children[2] == [3, 4]
        assert_array_equal(tree.dim2ind, [1, 3, 4])
        assert_array_equal(tree.level, [0, 1, 1, 2, 2])
        assert tree.max_level == 2

    def test_linear_tree_order_two(self):
        """Linear tree of order 2 is a root with two leaves."""
        tree = DimensionTree.linear(2)

        assert tree.nb_nodes == 3
        assert_array_equal(tree.dim2ind, [1, 2])
        assert tree.max_level == 1

    def test_balanced_tree(self):
        """Balanced tree of order 4 groups (0, 1) and (2, 3)."""
        tree = DimensionTree.balanced(4)

        assert tree.nb_nodes == 7
        assert tree.children[0] == [1, 2]
        assert tree.dims_of(1) == [0, 1]
        assert tree.dims_of(2) == [2, 3]
        assert_array_equal(tree.dim2ind, [3, 4, 5, 6])

    def test_trivial_tree(self):
        """Trivial tree connects the root to all the leaves."""
        tree = DimensionTree.trivial(3)

        assert tree.nb_nodes == 4
        assert tree.children[0] == [1, 2, 3]
        assert tree.max_level == 1
        assert_array_equal(tree.internal_nodes, [0])

    def test_order_one_rejected(self):
        """Trees need at least two dimensions."""
        with pytest.raises(ValueError, match="order"):
            DimensionTree.linear(1)
        with pytest.raises(ValueError, match="order"):
            DimensionTree.balanced(1)


class TestTreeQueries:
    """Test structural queries."""

    def test_leaf_flags_and_node2dim(self):
        tree = DimensionTree.linear(3)

        assert_array_equal(tree.is_leaf, [False, True, False, True, True])
        assert_array_equal(tree.node2dim, [-1, 0, -1, 1, 2])

    def test_ascendants_up_to_root(self):
        tree = DimensionTree.linear(3)

        assert tree.ascendants(3) == [2, 0]
        assert tree.ascendants(1) == [0]
        assert tree.ascendants(0) == []

    @pytest.mark.parametrize(
        "source, target, expected",
        [
            (3, 6, [3, 1, 0, 2, 6]),
            (4, 3, [4, 1, 3]),
            (0, 5, [0, 2, 5]),
            (6, 0, [6, 2, 0]),
            (2, 2, [2]),
        ],
    )
    def test_path_between(self, source, target, expected):
        tree = DimensionTree.balanced(4)

        assert tree.path_between(source, target) == expected

    def test_child_number(self):
        tree = DimensionTree.linear(3)

        assert tree.child_number(1) == 0
        assert tree.child_number(4) == 1
        with pytest.raises(ValueError, match="root"):
            tree.child_number(0)

    def test_nodes_with_level(self):
        tree = DimensionTree.balanced(4)

        assert_array_equal(tree.nodes_with_level(1), [1, 2])
        assert_array_equal(tree.nodes_with_level(2), [3, 4, 5, 6])

    def test_with_dim2ind_changes_assignment(self):
        """Re-assigning dimensions keeps the topology but changes equality."""
        tree = DimensionTree.balanced(4)
        swapped = tree.with_dim2ind([3, 5, 4, 6])

        assert swapped != tree
        assert swapped.dims_of(1) == [0, 2]
        assert_array_equal(swapped.parent, tree.parent)

    def test_equality(self):
        assert DimensionTree.linear(4) == DimensionTree.linear(4)
        assert DimensionTree.linear(4) != DimensionTree.balanced(4)
        assert (DimensionTree.linear(3) == "tree") is False


class TestTreeValidation:
    """Test rejection of malformed trees."""

    def test_missing_dimension(self):
        """Leaves must cover the dimensions 0..d-1."""
        with pytest.raises(ValueError, match="dimensions"):
            DimensionTree.from_nested([0, 2])

    def test_root_must_have_children(self):
        with pytest.raises(ValueError, match="Root"):
            DimensionTree.from_nested(0)

    def test_two_roots(self):
        with pytest.raises(ValueError, match="one root"):
            DimensionTree([-1, -1], [[], []], [0, 1])

    def test_inconsistent_children(self):
        with pytest.raises(ValueError, match="parent"):
            DimensionTree([-1, 0, 0], [[1, 2], [2], []], [1, 2])

    def test_from_nested_deep(self):
        """Nested lists map to breadth-first numbering."""
        tree = DimensionTree.from_nested([[0, 1], 2])

        assert tree.children[0] == [1, 2]
        assert tree.is_leaf[2]
        assert tree.node2dim[2] == 2
        assert tree.dims_of(1) == [0, 1]
        assert np.all(tree.level[tree.dim2ind[:2]] == 2)
