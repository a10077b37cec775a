"""
Core algorithms for phylogenetic likelihood calculation.

This module provides low-level computational routines:

- **Likelihood calculation**: Felsenstein's pruning algorithm over site patterns
- **Matrix operations**: Eigendecomposition and transition probabilities

These are expert-level functions typically not needed by end users.
"""

from phylomix.core.likelihood import PatternLikelihoodCalculator
from phylomix.core.matrix import (
    create_reversible_Q,
    eigen_decompose_rev,
    transition_matrices,
)

__all__ = [
    "PatternLikelihoodCalculator",
    "create_reversible_Q",
    "eigen_decompose_rev",
    "transition_matrices",
]
