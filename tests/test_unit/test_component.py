"""
Unit tests for component trees.
"""

import numpy as np
import pytest

from phylomix.io.trees import Tree
from phylomix.mixture.component import ComponentTree
from phylomix.models.catalog import ModelCatalog


@pytest.fixture
def component(tree_ab, patterns):
    component = ComponentTree(tree_ab, patterns, 0)
    component.initialize_model("HKY+G4", ModelCatalog())
    return component


class TestRateContext:
    """Temporary retargeting of the rate object."""

    def test_defaults_to_self(self, component):
        component.rate.tree = None
        with component.rate_context() as rate:
            assert rate.tree is component
        assert component.rate.tree is None

    def test_restored_after_exception(self, component):
        target = object()
        with pytest.raises(KeyError):
            with component.rate_context(target):
                assert component.rate.tree is target
                raise KeyError("boom")
        assert component.rate.tree is component

    def test_name(self, tree_ab, patterns):
        assert ComponentTree(tree_ab, patterns, 2).name == "Tree3"


class TestPatternFrequencies:
    """Working pattern frequencies."""

    def test_weighted_likelihood(self, component, patterns):
        full = component.compute_likelihood()
        component.set_pattern_frequencies(patterns.frequencies * 0.5)
        assert component.compute_likelihood() == pytest.approx(0.5 * full)
        component.reset_pattern_frequencies()
        assert component.compute_likelihood() == pytest.approx(full)

    def test_wrong_shape(self, component):
        with pytest.raises(ValueError, match="pattern frequencies"):
            component.set_pattern_frequencies(np.ones(3))

    def test_zero_frequency_patterns_ignored(self, component, patterns):
        freqs = patterns.frequencies.astype(float)
        freqs[0] = 0.0
        component.set_pattern_frequencies(freqs)
        log_lh = np.empty(patterns.n_patterns)
        score = component.compute_pattern_likelihood(log_lh)
        assert score == pytest.approx(np.dot(freqs[1:], log_lh[1:]))


class TestOptimization:
    """Branch and model parameter optimization of one tree."""

    def test_branches_do_not_decrease_likelihood(self, component):
        start = component.compute_likelihood()
        score = component.optimize_all_branches(iterations=2)
        assert score >= start
        assert score == pytest.approx(component.compute_likelihood())

    def test_branch_bounds(self, component):
        component.min_branch_length = 0.02
        component.max_branch_length = 0.5
        component.optimize_all_branches(iterations=1)
        lengths = np.array(component.tree.get_branch_lengths())
        # Unmoved branches keep their start value of 0.05 or 0.1
        assert np.all(lengths >= 0.02 - 1e-9)
        assert np.all(lengths <= 0.5 + 1e-9)

    def test_set_branch_length_bounds_clamps(self, tree_ab, patterns):
        tree_ab.set_branch_lengths([0.0, 0.0, 0.0, 0.0, 0.0, 20.0, 0.1])
        component = ComponentTree(tree_ab, patterns, 0)
        component.set_branch_length_bounds(1e-5, 5.0)
        lengths = np.array(component.tree.get_branch_lengths())
        assert lengths.min() == 1e-5
        assert lengths.max() == 5.0
        assert lengths[-1] == pytest.approx(0.1)

    @pytest.mark.parametrize("bounds", [(0.0, 1.0), (1.0, 0.5)])
    def test_invalid_branch_length_bounds(self, component, bounds):
        with pytest.raises(ValueError, match="bounds"):
            component.set_branch_length_bounds(*bounds)

    def test_rooted_tree_is_unrooted(self, patterns):
        tree = Tree.from_newick("((A:0.1,B:0.1):0.05,(C:0.1,(D:0.1,E:0.1):0.05):0.05);")
        component = ComponentTree(tree, patterns, 0)
        assert component.n_branch_parameters() == 7
        assert component.tree_length() == pytest.approx(0.65)

    def test_model_parameters(self, component):
        start = component.compute_likelihood()
        with component.rate_context():
            score = component.optimize_all_parameters()
        assert score >= start
        assert score == pytest.approx(component.compute_likelihood())

    def test_nothing_to_optimize(self, tree_ab, patterns):
        component = ComponentTree(tree_ab, patterns, 0)
        component.initialize_model("JC", ModelCatalog())
        assert component.optimize_all_parameters() == 0.0

    def test_reporting(self, component, tree_ab):
        assert component.n_branch_parameters() == 7
        assert component.tree_length() == pytest.approx(0.6)
        assert component.internal_tree_length() == pytest.approx(0.1)
        assert component.to_newick() == tree_ab.to_newick()
