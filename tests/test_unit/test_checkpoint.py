"""
Unit tests for checkpointing.
"""

import json

import numpy as np
import pytest

from phylomix.checkpoint import Checkpoint
from phylomix.mixture.component import ComponentTree
from phylomix.models.catalog import ModelCatalog


class TestCheckpoint:
    """Key-value store with nested structs."""

    def test_struct_namespacing(self):
        ckp = Checkpoint()
        ckp.start_struct("TreeMix2")
        ckp.start_struct("Tree1")
        ckp.put("answer", 42)
        ckp.end_struct()
        ckp.end_struct()

        assert "answer" not in ckp
        ckp.start_struct("TreeMix2")
        ckp.start_struct("Tree1")
        assert ckp.get("answer") == 42
        assert "answer" in ckp

    def test_restore_array_checks_length(self):
        ckp = Checkpoint()
        ckp.save_array("weights", np.array([0.25, 0.75]))
        np.testing.assert_array_equal(ckp.restore_array("weights", 2), [0.25, 0.75])
        assert ckp.restore_array("weights", 3) is None
        assert ckp.restore_array("missing", 2) is None

    def test_unbalanced_end_struct(self):
        with pytest.raises(RuntimeError):
            Checkpoint().end_struct()

    def test_dump_and_load(self, tmp_path):
        path = tmp_path / "run.ckp.json"
        ckp = Checkpoint(path)
        ckp.start_struct("TreeMix2")
        ckp.save_array("weights", [0.4, 0.6])
        ckp.end_struct()
        assert ckp.dump() == path

        with open(path) as f:
            assert json.load(f) == {"TreeMix2/weights": [0.4, 0.6]}

        loaded = Checkpoint.load(path)
        assert loaded.filename == path
        assert len(loaded) == 1
        loaded.start_struct("TreeMix2")
        np.testing.assert_allclose(loaded.restore_array("weights", 2), [0.4, 0.6])

    def test_dump_without_file(self):
        with pytest.raises(ValueError, match="No checkpoint file"):
            Checkpoint().dump()


class TestComponentCheckpoint:
    """Saving and restoring the state of one component tree."""

    def make_component(self, tree, patterns):
        component = ComponentTree(tree, patterns, 0)
        component.initialize_model("HKY+G4", ModelCatalog())
        return component

    def test_round_trip(self, tree_ab, patterns):
        component = self.make_component(tree_ab, patterns)
        component.model.rates[0] = 5.0
        component.rate.alpha = 0.7
        component.tree.set_branch_lengths(np.full(tree_ab.n_branches, 0.3))

        ckp = Checkpoint()
        component.save_checkpoint(ckp)

        fresh = self.make_component(tree_ab.copy(), patterns)
        fresh.tree.set_branch_lengths(np.full(tree_ab.n_branches, 0.1))
        assert fresh.restore_checkpoint(ckp)

        np.testing.assert_allclose(fresh.tree.get_branch_lengths(), 0.3)
        assert fresh.model.rates[0] == pytest.approx(5.0)
        assert fresh.rate.alpha == pytest.approx(0.7)

    def test_missing_branch_lengths(self, tree_ab, patterns):
        component = self.make_component(tree_ab, patterns)
        before = list(component.tree.get_branch_lengths())
        assert not component.restore_checkpoint(Checkpoint())
        assert component.tree.get_branch_lengths() == before
