"""
High-level API for fitting tree mixture models.

This module provides a simplified interface: load an alignment and a set of
candidate trees, fit the mixture and get a result object back.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Union
from pathlib import Path
import json

import numpy as np

from .io.sequences import Alignment
from .io.trees import Tree, read_trees
from .models.catalog import ModelCatalog
from .optimize.mixture import TreeMixtureOptimizer

try:
    import pandas as pd
    PANDAS_AVAILABLE = True
except ImportError:
    PANDAS_AVAILABLE = False


@dataclass
class MixtureResult:
    """
    Result of fitting a tree mixture model.

    Attributes
    ----------
    model : str
        Tree-mixture model string, e.g. ``"GTR+G4+T2"``
    lnL : float
        Log-likelihood of the fitted mixture
    weights : List[float]
        Tree weights, summing to one
    n_params : int
        Number of free parameters
    n_sites : int
        Number of alignment sites
    trees : List[Tree]
        Component trees with optimized branch lengths
    tree_params : List[Dict[str, Any]]
        Per-tree model and rate parameters
    posterior : np.ndarray, shape (n_patterns, K)
        Responsibilities of each tree for each pattern, scaled so that each
        row sums to the pattern frequency
    pattern_frequencies : np.ndarray
        Frequency of each pattern
    tree_length : float
        Tree length averaged over the component trees
    internal_tree_length : float
        Internal tree length averaged over the component trees
    convergence_info : Dict[str, Any]
        Outer steps taken, convergence flag and per-step history

    Examples
    --------
    >>> from phylomix import fit_tree_mixture
    >>> result = fit_tree_mixture("GTR+G4+T2", "alignment.phy", "trees.nwk")
    >>> print(result.summary())
    >>> result.to_json("mixture.json")
    """

    model: str
    lnL: float
    weights: List[float]
    n_params: int
    n_sites: int
    trees: List[Tree]
    tree_params: List[Dict[str, Any]]
    posterior: np.ndarray
    pattern_frequencies: np.ndarray
    tree_length: float
    internal_tree_length: float
    convergence_info: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_trees(self) -> int:
        return len(self.weights)

    @property
    def aic(self) -> float:
        return 2 * self.n_params - 2 * self.lnL

    @property
    def bic(self) -> float:
        return self.n_params * np.log(self.n_sites) - 2 * self.lnL

    @property
    def tree_strings(self) -> List[str]:
        """Newick strings of the component trees."""
        return [tree.to_newick() for tree in self.trees]

    def summary(self) -> str:
        """
        Generate human-readable summary of the fitted mixture.

        Returns
        -------
        str
            Formatted multi-line summary
        """
        lines = []
        lines.append("=" * 70)
        lines.append(f"TREE MIXTURE MODEL: {self.model}")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.lnL:.6f}")
        lines.append(f"Number of parameters: {self.n_params}")
        lines.append(f"AIC:                  {self.aic:.4f}")
        lines.append(f"BIC:                  {self.bic:.4f}")
        lines.append(f"Mean tree length:     {self.tree_length:.6f}")
        lines.append(f"Mean internal length: {self.internal_tree_length:.6f}")
        lines.append("")
        lines.append("TREES:")
        for i, (weight, params, newick) in enumerate(
            zip(self.weights, self.tree_params, self.tree_strings)
        ):
            lines.append(f"  Tree {i + 1}: weight = {weight:.4f}")
            lines.append(f"    model: {params['model']}")
            if params['rate'] != "E":
                lines.append(f"    rate:  {params['rate']}")
            lines.append(f"    {newick}")

        info = self.convergence_info
        if info:
            lines.append("")
            status = "converged" if info.get('converged') else "not converged"
            lines.append(f"Optimization: {info.get('n_steps')} steps, {status}")

        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export results as a JSON-serializable dictionary.

        The posterior table is not included; use :meth:`posterior_dataframe`.
        """
        return {
            'model': self.model,
            'lnL': float(self.lnL),
            'n_params': int(self.n_params),
            'aic': float(self.aic),
            'bic': float(self.bic),
            'weights': [float(w) for w in self.weights],
            'tree_length': float(self.tree_length),
            'internal_tree_length': float(self.internal_tree_length),
            'trees': self.tree_strings,
            'tree_params': self.tree_params,
            'convergence_info': {
                'n_steps': self.convergence_info.get('n_steps'),
                'converged': self.convergence_info.get('converged'),
            },
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing
        """
        json_str = json.dumps(self.to_dict(), indent=indent)
        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)
        return json_str

    def to_dataframe(self):
        """
        One row per component tree.

        Raises
        ------
        ImportError
            If pandas is not installed
        """
        if not PANDAS_AVAILABLE:
            raise ImportError(
                "pandas is required for to_dataframe(). "
                "Install with: pip install pandas"
            )
        rows = []
        for i, (weight, params, newick) in enumerate(
            zip(self.weights, self.tree_params, self.tree_strings)
        ):
            rows.append({
                'tree': i + 1,
                'weight': weight,
                'model': params['model'],
                'rate': params['rate'],
                'tree_length': self.trees[i].tree_length(),
                'newick': newick,
            })
        return pd.DataFrame(rows)

    def posterior_dataframe(self):
        """
        Responsibility table with one row per site pattern.

        Columns are ``frequency`` followed by one column per tree; each row
        sums (over the tree columns) to the pattern frequency.
        """
        if not PANDAS_AVAILABLE:
            raise ImportError(
                "pandas is required for posterior_dataframe(). "
                "Install with: pip install pandas"
            )
        df = pd.DataFrame(
            self.posterior, columns=[f"Tree{i + 1}" for i in range(self.n_trees)]
        )
        df.insert(0, 'frequency', self.pattern_frequencies)
        df.index.name = 'pattern'
        return df

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        weights = ", ".join(f"{w:.3f}" for w in self.weights)
        return f"MixtureResult(model='{self.model}', lnL={self.lnL:.2f}, weights=[{weights}])"


# =============================================================================
# File loading helpers
# =============================================================================

def _load_alignment(alignment: Union[str, Path, Alignment]) -> Alignment:
    """
    Load a DNA alignment, detecting FASTA or PHYLIP.

    Raises
    ------
    FileNotFoundError
        If the alignment file doesn't exist
    ValueError
        If the file cannot be parsed in either format
    """
    if isinstance(alignment, Alignment):
        return alignment

    path = Path(alignment)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")

    with open(path) as f:
        first = f.readline().strip()
    if first.startswith('>') or path.suffix.lower() in ('.fa', '.fasta', '.fna', '.fas'):
        readers = (Alignment.from_fasta, Alignment.from_phylip)
    else:
        readers = (Alignment.from_phylip, Alignment.from_fasta)

    errors = []
    for reader in readers:
        try:
            return reader(path)
        except ValueError as e:
            errors.append(str(e))
    raise ValueError(f"Failed to load alignment from {path}: {'; '.join(errors)}")


def _load_trees(trees) -> List[Tree]:
    """
    Load component trees.

    Parameters
    ----------
    trees : str, Path, Tree, or list
        A file with one Newick tree per record, Newick text, or a list of
        Tree objects, Newick strings or files
    """
    if isinstance(trees, Tree):
        return [trees]
    if isinstance(trees, (str, Path)):
        return read_trees(trees)

    loaded = []
    for item in trees:
        if isinstance(item, Tree):
            loaded.append(item)
        else:
            loaded.extend(read_trees(item))
    return loaded


# =============================================================================
# Main API function
# =============================================================================

def fit_tree_mixture(
    model: str,
    alignment: Union[str, Path, Alignment],
    trees,
    catalog: Optional[ModelCatalog] = None,
    **optimizer_kwargs
) -> MixtureResult:
    """
    Fit a mixture of fixed tree topologies to an alignment.

    Parameters
    ----------
    model : str
        Tree-mixture model string ending in ``+T<K>``:

        - ``"GTR+G4+T2"``: one GTR+G4 model shared by both trees
        - ``"MIX{GTR,HKY}+T2"``: a separate substitution model per tree
        - ``"GTR+MIX{G4,E}+T2"``: shared GTR, a separate rate model per tree
        - ``"MIX{GTR+G4,HKY+I}+T2"``: fully unlinked models

    alignment : str, Path, or Alignment
        DNA alignment (FASTA or sequential PHYLIP)
    trees : str, Path, Tree, or list
        The K candidate topologies (file, Newick text or Tree objects)
    catalog : ModelCatalog, optional
        Model lookup (default: built-in nucleotide models)
    **optimizer_kwargs
        Passed to :class:`~phylomix.optimize.mixture.TreeMixtureOptimizer`:
        ``max_steps``, ``epsilon``, ``logl_epsilon``, ``weight_method``,
        ``em_max_steps``, ``n_threads``, ``min_branch_length``,
        ``max_branch_length``, ``checkpoint``, ``verbose``

    Returns
    -------
    MixtureResult
        Fitted weights, trees, parameters and per-pattern responsibilities

    Raises
    ------
    ModelSpecError
        If the model string is malformed
    ValueError
        If the number of trees does not match the model, or the taxa differ
    MixtureLikelihoodError
        If the mixture likelihood of a pattern becomes zero

    Examples
    --------
    >>> from phylomix import fit_tree_mixture
    >>> result = fit_tree_mixture("HKY+G4+T2", "data.phy", "trees.nwk")
    >>> print(result.weights)

    Notes
    -----
    The Tree objects are modified in-place with optimized branch lengths.
    """
    aln = _load_alignment(alignment)
    tree_list = _load_trees(trees)
    patterns = aln.compress_patterns()

    optimizer = TreeMixtureOptimizer(model, patterns, tree_list, catalog=catalog, **optimizer_kwargs)
    try:
        lnL = optimizer.optimize()
        posterior = optimizer.get_post_prob()
        tree_params = [
            {
                'model': component.model.get_name_params(),
                'rate': component.rate.get_name_params(),
                'model_params': component.model.params_dict(),
                'rate_params': component.rate.params_dict(),
            }
            for component in optimizer.components
        ]
        return MixtureResult(
            model=optimizer.spec.model_string,
            lnL=lnL,
            weights=[float(w) for w in optimizer.weights],
            n_params=optimizer.n_parameters(),
            n_sites=patterns.n_sites,
            trees=tree_list,
            tree_params=tree_params,
            posterior=posterior,
            pattern_frequencies=patterns.frequencies.copy(),
            tree_length=optimizer.tree_length(),
            internal_tree_length=optimizer.internal_tree_length(),
            convergence_info={
                'n_steps': optimizer.n_steps,
                'converged': optimizer.converged,
                'history': optimizer.history,
            },
        )
    finally:
        optimizer.close()
