"""
Tests for high-level API (fit_tree_mixture and MixtureResult).
"""

import json

import numpy as np
import pytest

from phylomix import fit_tree_mixture, MixtureResult, ModelSpecError
from phylomix.io import Alignment, Tree


TREES_TEXT = (
    "((A:0.1,B:0.1):0.05,C:0.1,(D:0.1,E:0.1):0.05);"
    "((A:0.1,C:0.1):0.05,B:0.1,(D:0.1,E:0.1):0.05);"
)


@pytest.fixture
def result(phylip_file, trees_file):
    return fit_tree_mixture("HKY+T2", phylip_file, trees_file, max_steps=3)


class TestFitTreeMixture:
    """Test fit_tree_mixture() function."""

    def test_with_file_paths(self, result, patterns):
        assert isinstance(result, MixtureResult)
        assert result.model == "HKY+T2"
        assert result.n_trees == 2
        assert result.lnL < 0
        assert sum(result.weights) == pytest.approx(1.0)
        assert result.n_sites == 54
        # kappa + 14 branches + one free weight
        assert result.n_params == 16
        assert result.posterior.shape == (patterns.n_patterns, 2)

    def test_with_objects(self, dna_alignment, tree_pair):
        result = fit_tree_mixture("JC+T2", dna_alignment, tree_pair, max_steps=2)
        assert result.trees[0] is tree_pair[0]
        assert result.trees[1] is tree_pair[1]

    def test_with_newick_text(self, fasta_file):
        result = fit_tree_mixture("JC+T2", fasta_file, TREES_TEXT, max_steps=2)
        assert len(result.trees) == 2

    def test_fasta_and_phylip_agree(self, fasta_file, phylip_file):
        r1 = fit_tree_mixture("JC+T2", fasta_file, TREES_TEXT, max_steps=2)
        r2 = fit_tree_mixture("JC+T2", phylip_file, TREES_TEXT, max_steps=2)
        assert r1.lnL == pytest.approx(r2.lnL)

    def test_tree_params(self, dna_alignment, tree_pair):
        result = fit_tree_mixture("MIX{HKY,JC}+G4+T2", dna_alignment, tree_pair, max_steps=2)
        first, second = result.tree_params
        assert first['model'].startswith("HKY{")
        assert 'kappa' in first['model_params']
        assert second['model'] == "JC"
        assert first['rate'].startswith("G4{")
        assert first['rate_params']['alpha'] == second['rate_params']['alpha']

    def test_tree_count_mismatch(self, phylip_file, trees_file):
        with pytest.raises(ValueError, match="declares 3 trees"):
            fit_tree_mixture("HKY+T3", phylip_file, trees_file)

    def test_invalid_model(self, phylip_file, trees_file):
        with pytest.raises(ModelSpecError):
            fit_tree_mixture("HKY+G4", phylip_file, trees_file)

    def test_unknown_substitution_model(self, phylip_file, trees_file):
        with pytest.raises(ValueError, match="Unknown substitution model"):
            fit_tree_mixture("WAG+T2", phylip_file, trees_file)

    def test_missing_alignment(self, tmp_path, trees_file):
        with pytest.raises(FileNotFoundError):
            fit_tree_mixture("JC+T2", tmp_path / "missing.phy", trees_file)

    def test_taxa_mismatch(self, phylip_file):
        trees = [Tree.from_newick("((A,B),C,(D,F));"), Tree.from_newick("((A,C),B,(D,F));")]
        with pytest.raises(ValueError, match="different species"):
            fit_tree_mixture("JC+T2", phylip_file, trees)


class TestMixtureResult:
    """Test MixtureResult output methods."""

    def test_information_criteria(self, result):
        assert result.aic == pytest.approx(2 * result.n_params - 2 * result.lnL)
        assert result.bic == pytest.approx(result.n_params * np.log(54) - 2 * result.lnL)

    def test_summary(self, result):
        summary = result.summary()
        assert "TREE MIXTURE MODEL: HKY+T2" in summary
        assert "Log-likelihood:" in summary
        assert "Tree 2: weight =" in summary
        assert str(result) == summary

    def test_to_json(self, result, tmp_path):
        path = tmp_path / "result.json"
        text = result.to_json(str(path))
        with open(path) as f:
            data = json.load(f)
        assert data == json.loads(text)
        assert data['model'] == "HKY+T2"
        assert len(data['weights']) == 2
        assert len(data['trees']) == 2
        assert data['convergence_info']['n_steps'] >= 1

    def test_to_dataframe(self, result):
        df = result.to_dataframe()
        assert list(df.columns) == ['tree', 'weight', 'model', 'rate', 'tree_length', 'newick']
        assert len(df) == 2
        assert df['weight'].sum() == pytest.approx(1.0)

    def test_posterior_dataframe(self, result, patterns):
        df = result.posterior_dataframe()
        assert list(df.columns) == ['frequency', 'Tree1', 'Tree2']
        assert df.index.name == 'pattern'
        np.testing.assert_allclose(
            df[['Tree1', 'Tree2']].sum(axis=1).to_numpy(), df['frequency'].to_numpy()
        )
        assert df['frequency'].sum() == 54

    def test_repr(self, result):
        assert repr(result).startswith("MixtureResult(model='HKY+T2'")


class TestDataLoading:
    """Alignment detection through the public API."""

    def test_alignment_loader_accepts_objects(self, dna_alignment):
        from phylomix.api import _load_alignment
        assert _load_alignment(dna_alignment) is dna_alignment

    def test_unparseable_alignment(self, tmp_path, trees_file):
        path = tmp_path / "junk.txt"
        path.write_text("not an alignment\n")
        with pytest.raises(ValueError, match="Failed to load alignment"):
            fit_tree_mixture("JC+T2", path, trees_file)

    def test_phylip_file_is_alignment(self, phylip_file):
        assert isinstance(Alignment.from_phylip(phylip_file), Alignment)
