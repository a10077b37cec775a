"""
phylomix: maximum likelihood fitting of tree mixture models.

Each site of a DNA alignment is assumed to evolve along one of K fixed
candidate trees. phylomix estimates the tree weights, the branch lengths of
every tree and the substitution and rate parameters, which can be shared
across trees or estimated separately.

Quick Start
-----------
Fit a two-tree mixture with one shared GTR+G4 model:

>>> from phylomix import fit_tree_mixture
>>> result = fit_tree_mixture("GTR+G4+T2", "alignment.phy", "trees.nwk")
>>> print(result.summary())
>>> print(result.weights)

Examples
--------
>>> # Separate substitution models per tree, shared gamma rates
>>> result = fit_tree_mixture("MIX{GTR,HKY}+G4+T2", "data.fasta", "trees.nwk")

>>> # Per-pattern tree responsibilities
>>> df = result.posterior_dataframe()
>>> df.head()
"""

__version__ = "0.1.0"

# High-level API
from .api import fit_tree_mixture, MixtureResult

# Model strings
from .models.spec import ModelSpec, ModelSpecError, parse_model_spec

# Mixture machinery (advanced use)
from .mixture.aggregator import MixtureLikelihood, MixtureLikelihoodError
from .optimize.mixture import TreeMixtureOptimizer

# I/O classes
from .io.sequences import Alignment, PatternTable
from .io.trees import Tree, read_trees

from .checkpoint import Checkpoint

__all__ = [
    # Simple API - Start here!
    "fit_tree_mixture",
    "MixtureResult",

    # Model strings
    "parse_model_spec",
    "ModelSpec",
    "ModelSpecError",

    # Mixture (advanced)
    "TreeMixtureOptimizer",
    "MixtureLikelihood",
    "MixtureLikelihoodError",
    "Checkpoint",

    # I/O
    "Alignment",
    "PatternTable",
    "Tree",
    "read_trees",

    # Version
    "__version__",
]
