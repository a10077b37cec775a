"""
Unit tests for I/O modules (sequence and tree parsing).
"""

import numpy as np
import pytest

from phylomix.io.sequences import Alignment, NUCLEOTIDE_TO_INDEX, UNKNOWN_CODE
from phylomix.io.trees import Tree, read_trees


class TestSequenceParsing:
    """PHYLIP and FASTA alignments."""

    def test_parse_phylip(self, phylip_file):
        aln = Alignment.from_phylip(phylip_file)
        assert aln.n_species == 5
        assert aln.n_sites == 54
        assert aln.names == ["A", "B", "C", "D", "E"]
        assert aln.sequences.dtype == np.int8
        assert aln.sequences.shape == (5, 54)

    def test_parse_fasta(self, fasta_file, phylip_file):
        fasta = Alignment.from_fasta(fasta_file)
        phylip = Alignment.from_phylip(phylip_file)
        assert fasta.names == phylip.names
        np.testing.assert_array_equal(fasta.sequences, phylip.sequences)

    def test_phylip_interleaved_sequence_lines(self, tmp_path):
        path = tmp_path / "multi.phy"
        path.write_text("2 8\nseq1\nACGT\nACGT\nseq2\nTTTT\nCCCC\n")
        aln = Alignment.from_phylip(path)
        assert aln.names == ["seq1", "seq2"]
        assert aln.n_sites == 8

    def test_phylip_wrong_length(self, tmp_path):
        path = tmp_path / "bad.phy"
        path.write_text("2 5\nseq1 ACGT\nseq2 ACGTA\n")
        with pytest.raises(ValueError):
            Alignment.from_phylip(path)

    def test_nucleotide_encoding(self):
        aln = Alignment.from_sequences({"x": "TCAGU-N?"})
        expected = [0, 1, 2, 3, 0, UNKNOWN_CODE, UNKNOWN_CODE, UNKNOWN_CODE]
        np.testing.assert_array_equal(aln.sequences[0], expected)
        assert NUCLEOTIDE_TO_INDEX["G"] == 3

    def test_unequal_lengths(self):
        with pytest.raises(ValueError, match="different lengths"):
            Alignment.from_sequences({"a": "ACGT", "b": "ACG"})

    def test_duplicate_names(self, tmp_path):
        path = tmp_path / "dup.fasta"
        path.write_text(">a\nACGT\n>a\nACGT\n")
        with pytest.raises(ValueError, match="duplicate"):
            Alignment.from_fasta(path)

    def test_fasta_round_trip(self, dna_alignment, tmp_path):
        path = tmp_path / "out.fasta"
        dna_alignment.to_fasta(path)
        reread = Alignment.from_fasta(path)
        np.testing.assert_array_equal(reread.sequences, dna_alignment.sequences)


class TestPatternCompression:
    """Site patterns and their frequencies."""

    def test_frequencies_sum_to_sites(self, dna_alignment, patterns):
        assert patterns.n_sites == dna_alignment.n_sites
        assert patterns.frequencies.dtype == np.int64
        assert patterns.n_patterns == 15

    def test_patterns_are_distinct(self, patterns):
        columns = {tuple(patterns.patterns[:, p]) for p in range(patterns.n_patterns)}
        assert len(columns) == patterns.n_patterns

    def test_site_to_pattern(self, dna_alignment, patterns):
        rebuilt = patterns.patterns[:, patterns.site_to_pattern]
        np.testing.assert_array_equal(rebuilt, dna_alignment.sequences)

    def test_constant_patterns(self, patterns):
        # AAAAA, CCCCC, GGGGG and TTTTT
        assert patterns.is_constant.sum() == 4
        assert patterns.frequencies[patterns.is_constant].sum() == 28

    def test_missing_data_in_constant_pattern(self):
        patterns = Alignment.from_sequences({"a": "A", "b": "-", "c": "A"}).compress_patterns()
        assert patterns.is_constant[0]

    def test_state_frequencies(self, patterns):
        freqs = patterns.state_frequencies()
        assert freqs.sum() == pytest.approx(1.0)
        assert np.all(freqs > 0)


class TestTreeParsing:
    """Newick parsing and writing."""

    def test_parse_with_lengths(self):
        tree = Tree.from_newick("((A:0.1,B:0.2):0.05,C:0.3,(D:0.1,E:0.1):0.05);")
        assert tree.n_leaves == 5
        assert tree.n_nodes == 8
        assert tree.n_branches == 7
        assert sorted(tree.leaf_names) == ["A", "B", "C", "D", "E"]
        assert tree.tree_length() == pytest.approx(0.9)
        assert tree.internal_tree_length() == pytest.approx(0.1)

    def test_default_length(self):
        tree = Tree.from_newick("((A,B),C,(D,E));")
        assert all(length == 0.1 for length in tree.get_branch_lengths())

    def test_comments_stripped(self):
        tree = Tree.from_newick("[&R] ((A:1,B:1)[x]:1,C:1);")
        assert tree.n_leaves == 3

    def test_newick_round_trip(self):
        newick = "((A:0.100000,B:0.200000):0.050000,C:0.300000);"
        assert Tree.from_newick(newick).to_newick() == newick

    def test_set_branch_lengths(self, tree_ab):
        lengths = np.linspace(0.01, 0.07, tree_ab.n_branches)
        tree_ab.set_branch_lengths(lengths)
        np.testing.assert_allclose(tree_ab.get_branch_lengths(), lengths)
        with pytest.raises(ValueError):
            tree_ab.set_branch_lengths([0.1])

    def test_copy_is_independent(self, tree_ab):
        copied = tree_ab.copy()
        copied.branch_nodes[0].branch_length = 9.0
        assert tree_ab.branch_nodes[0].branch_length != 9.0

    def test_missing_semicolon(self):
        with pytest.raises(ValueError, match="semicolon"):
            Tree.from_newick("((A,B),C)")

    def test_unnamed_leaf(self):
        with pytest.raises(ValueError, match="no name"):
            Tree.from_newick("((A,),C);")

    def test_duplicate_leaves(self):
        with pytest.raises(ValueError, match="duplicate"):
            Tree.from_newick("((A,B),A);")

    def test_read_trees_from_file(self, trees_file):
        trees = read_trees(trees_file)
        assert len(trees) == 2
        assert all(t.n_leaves == 5 for t in trees)

    def test_read_trees_from_text(self):
        trees = read_trees("((A,B),C);((A,C),B);\n")
        assert len(trees) == 2

    def test_read_trees_empty(self):
        with pytest.raises(ValueError, match="No trees"):
            read_trees("  \n")

    def test_read_trees_from_directory_with_parentheses(self, tmp_path):
        run_dir = tmp_path / "run(1)"
        run_dir.mkdir()
        path = run_dir / "trees.nwk"
        path.write_text("((A,B),C,(D,E));\n((A,C),B,(D,E));\n")
        trees = read_trees(str(path))
        assert len(trees) == 2
        assert read_trees(path)[1].to_newick() == trees[1].to_newick()


class TestUnrooting:
    """Removal of a bifurcating root."""

    ROOTED = "((A:0.1,B:0.1):0.05,(C:0.1,(D:0.1,E:0.1):0.05):0.05);"

    def test_unroot(self):
        tree = Tree.from_newick(self.ROOTED)
        assert tree.is_rooted
        assert tree.n_branches == 8
        length = tree.tree_length()

        assert tree.unroot()
        assert not tree.is_rooted
        assert tree.n_branches == 7
        assert len(tree.root.children) == 3
        assert tree.tree_length() == pytest.approx(length)
        assert all(child.parent is tree.root for child in tree.root.children)
        assert sorted(tree.leaf_names) == ["A", "B", "C", "D", "E"]

    def test_unrooted_tree_unchanged(self, tree_ab):
        newick = tree_ab.to_newick()
        assert not tree_ab.is_rooted
        assert not tree_ab.unroot()
        assert tree_ab.to_newick() == newick

    def test_root_with_leaf_child(self):
        tree = Tree.from_newick("(A:0.1,(B:0.1,(C:0.1,D:0.1):0.1):0.2);")
        assert tree.unroot()
        assert tree.n_branches == 5
        assert tree.tree_length() == pytest.approx(0.7)
        assert tree.to_newick() == "(B:0.100000,(C:0.100000,D:0.100000):0.100000,A:0.300000);"
