"""
Unit tests for binding linked and unlinked models to component trees.
"""

import pytest

from phylomix.io.trees import Tree
from phylomix.mixture.binder import SharedResourceBinder
from phylomix.mixture.component import ComponentTree
from phylomix.models.catalog import ModelCatalog
from phylomix.models.nucleotide import HKYModel, JCModel
from phylomix.models.rates import GammaRate
from phylomix.models.spec import parse_model_spec
from phylomix.optimize.mixture import TreeMixtureOptimizer


class CountingModel(JCModel):
    """JC model recording every release."""

    name = "COUNT"
    instances = []

    def __init__(self, freq_type=None, rates=None):
        super().__init__(freq_type=freq_type, rates=rates)
        self.release_count = 0
        CountingModel.instances.append(self)

    def release(self):
        self.release_count += 1
        super().release()


@pytest.fixture
def counting_catalog():
    CountingModel.instances = []
    catalog = ModelCatalog()
    catalog.register_model("COUNT", CountingModel)
    return catalog


def make_components(patterns, newick_trees):
    return [
        ComponentTree(Tree.from_newick(newick), patterns, i)
        for i, newick in enumerate(newick_trees)
    ]


class TestLinking:
    """Linked trees share one object, unlinked trees own separate objects."""

    def test_linked_model_shared(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("HKY+G4+T2"), components)
        binder.bind()

        assert components[0].model is components[1].model
        assert components[0].rate is components[1].rate
        assert isinstance(components[0].model, HKYModel)
        assert isinstance(components[0].rate, GammaRate)
        assert len(binder.model_groups) == 1
        assert len(binder.rate_groups) == 1

    def test_unlinked_models(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("MIX{HKY,JC}+T2"), components)
        binder.bind()

        assert components[0].model is not components[1].model
        assert components[0].model.name == "HKY"
        assert components[1].model.name == "JC"
        assert len(binder.model_groups) == 2
        # Without a rate every tree keeps its own equal-rates object
        assert components[0].rate is not components[1].rate

    def test_linked_model_unlinked_rates(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("HKY+MIX{G4,E}+T2"), components)
        binder.bind()

        assert components[0].model is components[1].model
        assert components[0].rate is not components[1].rate
        assert components[0].rate.name == "G4"
        assert components[1].rate.name == "E"

    def test_rate_points_at_owning_tree(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("HKY+G4+T2"), components)
        binder.bind()
        assert components[0].rate.tree is components[0]

        components = [ComponentTree(t.copy(), patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("HKY+MIX{G4,G2}+T2"), components)
        binder.bind()
        assert components[0].rate.tree is components[0]
        assert components[1].rate.tree is components[1]

    def test_tree_count_mismatch(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        with pytest.raises(ValueError, match="declares 3 trees"):
            SharedResourceBinder(parse_model_spec("JC+T3"), components)

    def test_unknown_model(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("FOO+T2"), components)
        with pytest.raises(ValueError, match="Unknown substitution model"):
            binder.bind()


class TestEvaluationGroups:
    """Trees connected through shared objects."""

    def test_linked_trees_form_one_group(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("HKY+T2"), components)
        binder.bind()
        assert binder.evaluation_groups == [[0, 1]]
        assert components[0].lock is components[1].lock

    def test_unlinked_trees_are_independent(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("MIX{HKY,JC}+T2"), components)
        binder.bind()
        assert binder.evaluation_groups == [[0], [1]]
        assert components[0].lock is not components[1].lock

    def test_shared_rate_links_unlinked_models(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("MIX{HKY,JC}+G4+T2"), components)
        binder.bind()
        assert binder.evaluation_groups == [[0, 1]]


class TestTeardown:
    """Every model object is released exactly once."""

    TREES = [
        "((A,B),C,(D,E));",
        "((A,C),B,(D,E));",
        "((A,D),C,(B,E));",
    ]

    def test_linked_model_released_once(self, patterns, counting_catalog):
        components = make_components(patterns, self.TREES)
        binder = SharedResourceBinder(parse_model_spec("COUNT+T3"), components, counting_catalog)
        binder.bind()

        # One model per tree is created; the two transient ones are released at bind time
        assert len(CountingModel.instances) == 3
        shared = components[0].model
        transient = [m for m in CountingModel.instances if m is not shared]
        assert all(m.release_count == 1 for m in transient)
        assert shared.release_count == 0

        binder.release()
        assert all(m.release_count == 1 for m in CountingModel.instances)
        assert all(c.model is None for c in components)

    def test_unlinked_models_released_once_each(self, patterns, counting_catalog):
        components = make_components(patterns, self.TREES)
        spec = parse_model_spec("MIX{COUNT,COUNT,COUNT}+T3")
        binder = SharedResourceBinder(spec, components, counting_catalog)
        binder.bind()
        assert all(m.release_count == 0 for m in CountingModel.instances)

        binder.release()
        assert len(CountingModel.instances) == 3
        assert all(m.release_count == 1 for m in CountingModel.instances)

    def test_release_is_idempotent(self, patterns, counting_catalog):
        components = make_components(patterns, self.TREES)
        binder = SharedResourceBinder(parse_model_spec("COUNT+G4+T3"), components, counting_catalog)
        binder.bind()
        binder.release()
        binder.release()
        assert all(m.release_count == 1 for m in CountingModel.instances)

    def test_release_after_failed_bind(self, patterns, counting_catalog):
        components = make_components(patterns, self.TREES[:2])
        spec = parse_model_spec("MIX{COUNT,WAG}+T2")
        binder = SharedResourceBinder(spec, components, counting_catalog)
        with pytest.raises(ValueError, match="Unknown substitution model"):
            binder.bind()
        assert len(CountingModel.instances) == 1
        assert components[0].rate is not None

        binder.release()
        assert CountingModel.instances[0].release_count == 1
        assert all(c.model is None and c.rate is None for c in components)

    def test_failed_optimizer_setup_releases_models(self, patterns, counting_catalog):
        trees = [Tree.from_newick(newick) for newick in self.TREES[:2]]
        with pytest.raises(ValueError, match="Unknown substitution model"):
            TreeMixtureOptimizer("MIX{COUNT,WAG}+T2", patterns, trees, catalog=counting_catalog)
        assert len(CountingModel.instances) == 1
        assert CountingModel.instances[0].release_count == 1

    def test_double_release_of_model_raises(self):
        model = JCModel()
        model.release()
        with pytest.raises(RuntimeError, match="released twice"):
            model.release()


class TestParameterCount:
    """Free model parameters are counted once per link group."""

    def test_linked(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("HKY+G4+T2"), components)
        binder.bind()
        # kappa + alpha
        assert binder.n_model_parameters() == 2

    def test_unlinked(self, patterns, tree_pair):
        components = [ComponentTree(t, patterns, i) for i, t in enumerate(tree_pair)]
        binder = SharedResourceBinder(parse_model_spec("MIX{HKY+FO,JC}+T2"), components)
        binder.bind()
        # kappa + 3 frequencies for tree 1, nothing for JC
        assert binder.n_model_parameters() == 4
