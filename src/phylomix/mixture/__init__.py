"""
Tree mixture likelihood.

- **Component trees**: per-tree likelihood engines with a working copy of
  the pattern frequencies
- **Binding**: linked and unlinked model/rate objects, owned by link groups
- **Aggregation**: mixture log-likelihood and per-pattern responsibilities
"""

from phylomix.mixture.aggregator import MixtureLikelihood, MixtureLikelihoodError
from phylomix.mixture.binder import LinkGroup, SharedResourceBinder
from phylomix.mixture.component import ComponentTree

__all__ = [
    "ComponentTree",
    "LinkGroup",
    "MixtureLikelihood",
    "MixtureLikelihoodError",
    "SharedResourceBinder",
]
