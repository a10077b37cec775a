"""
Parameter optimization.

Per-tree branch-length and model-parameter optimizers, and the two tree
weight optimizers. The outer loop lives in :mod:`phylomix.optimize.mixture`.
"""

from phylomix.optimize.tree import optimize_branch_lengths, optimize_model_parameters
from phylomix.optimize.weights import optimize_weights_bfgs, optimize_weights_em

__all__ = [
    "optimize_branch_lengths",
    "optimize_model_parameters",
    "optimize_weights_bfgs",
    "optimize_weights_em",
]
