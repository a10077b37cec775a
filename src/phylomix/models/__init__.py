"""
Substitution and rate-heterogeneity models for nucleotide data.

- **Substitution models**: JC, F81, K80, HKY, TN93, GTR with ``+F``
  (empirical), ``+FQ`` (equal) and ``+FO`` (optimized) frequencies
- **Site rates**: equal rates (``E``), discrete gamma (``G<n>``),
  invariable sites (``I``) and ``I+G<n>``
- **Tree-mixture model strings**: ``GTR+G4+T2``, ``MIX{GTR,HKY}+MIX{G4,E}+T2``
- **Catalog**: descriptor strings to fresh model objects
"""

from phylomix.models.catalog import ModelCatalog
from phylomix.models.nucleotide import (
    F81Model,
    GTRModel,
    HKYModel,
    JCModel,
    K80Model,
    SubstitutionModel,
    TN93Model,
)
from phylomix.models.rates import (
    GammaRate,
    InvariantGammaRate,
    InvariantRate,
    RateHeterogeneity,
    UniformRate,
    discrete_gamma_rates,
)
from phylomix.models.spec import ModelSpec, ModelSpecError, parse_model_spec

__all__ = [
    "ModelCatalog",
    "ModelSpec",
    "ModelSpecError",
    "parse_model_spec",
    "SubstitutionModel",
    "JCModel",
    "F81Model",
    "K80Model",
    "HKYModel",
    "TN93Model",
    "GTRModel",
    "RateHeterogeneity",
    "UniformRate",
    "GammaRate",
    "InvariantRate",
    "InvariantGammaRate",
    "discrete_gamma_rates",
]
