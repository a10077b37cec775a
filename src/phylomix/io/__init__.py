"""
Input/Output modules for sequence alignments and phylogenetic trees.

This module provides classes for reading and working with:

- **Sequence alignments**: FASTA and PHYLIP formats, compressed to site patterns
- **Phylogenetic trees**: Newick format, one or several trees per file
"""

from phylomix.io.sequences import Alignment, PatternTable
from phylomix.io.trees import Tree, TreeNode, read_trees

__all__ = ["Alignment", "PatternTable", "Tree", "TreeNode", "read_trees"]
