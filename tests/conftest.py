"""
Pytest configuration and shared fixtures.
"""

import pytest
from typer.testing import CliRunner

from phylomix.io.sequences import Alignment
from phylomix.io.trees import Tree


# Alignment columns for taxa (A, B, C, D, E) and how often each occurs.
# Some columns group A with B, others A with C, so both trees below explain
# part of the data.
SITE_COLUMNS = [
    ("AAAAA", 8),
    ("CCCCC", 7),
    ("GGGGG", 6),
    ("TTTTT", 7),
    ("AACCC", 4),
    ("GGTTT", 3),
    ("TTCCC", 2),
    ("ACACC", 3),
    ("GTGTT", 3),
    ("CTCTT", 2),
    ("AAAGG", 3),
    ("CCCTT", 2),
    ("AAAAC", 2),
    ("CACCC", 1),
    ("GGGAG", 1),
]

TREE_AB = "((A:0.1,B:0.1):0.05,C:0.1,(D:0.1,E:0.1):0.05);"
TREE_AC = "((A:0.1,C:0.1):0.05,B:0.1,(D:0.1,E:0.1):0.05);"


def build_sequences(columns):
    """Turn (column, count) pairs into one sequence per taxon."""
    n_taxa = len(columns[0][0])
    rows = [[] for _ in range(n_taxa)]
    for column, count in columns:
        for i, state in enumerate(column):
            rows[i].append(state * count)
    return {name: "".join(row) for name, row in zip("ABCDE", rows)}


@pytest.fixture
def dna_sequences():
    """Sequences of the five-taxon test alignment."""
    return build_sequences(SITE_COLUMNS)


@pytest.fixture
def dna_alignment(dna_sequences):
    """Five-taxon DNA alignment (54 sites)."""
    return Alignment.from_sequences(dna_sequences)


@pytest.fixture
def patterns(dna_alignment):
    """Site patterns of the test alignment."""
    return dna_alignment.compress_patterns()


@pytest.fixture
def tree_ab():
    return Tree.from_newick(TREE_AB)


@pytest.fixture
def tree_ac():
    return Tree.from_newick(TREE_AC)


@pytest.fixture
def tree_pair(tree_ab, tree_ac):
    """Two competing topologies."""
    return [tree_ab, tree_ac]


@pytest.fixture
def phylip_file(tmp_path, dna_sequences):
    """The test alignment written in sequential PHYLIP format."""
    n_sites = len(next(iter(dna_sequences.values())))
    lines = [f"{len(dna_sequences)} {n_sites}"]
    lines += [f"{name}  {seq}" for name, seq in dna_sequences.items()]
    path = tmp_path / "alignment.phy"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def fasta_file(tmp_path, dna_sequences):
    """The test alignment written in FASTA format."""
    lines = []
    for name, seq in dna_sequences.items():
        lines.append(f">{name}")
        lines.append(seq)
    path = tmp_path / "alignment.fasta"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def trees_file(tmp_path):
    """Newick file holding both topologies."""
    path = tmp_path / "trees.nwk"
    path.write_text(TREE_AB + "\n" + TREE_AC + "\n")
    return path


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()
