"""
One component tree of a tree mixture.
"""

import threading
from contextlib import contextmanager
from typing import Optional

import numpy as np

from ..checkpoint import Checkpoint
from ..core.likelihood import PatternLikelihoodCalculator
from ..io.sequences import PatternTable
from ..io.trees import Tree
from ..models.catalog import ModelCatalog
from ..models.nucleotide import SubstitutionModel
from ..models.rates import RateHeterogeneity
from ..optimize.tree import optimize_branch_lengths, optimize_model_parameters


class ComponentTree:
    """
    A phylogenetic tree with its own likelihood engine.

    The tree references (never owns) a substitution model and a rate object;
    when models are linked several component trees reference the same
    instances and ownership lies with the link group in
    :class:`~phylomix.mixture.binder.SharedResourceBinder`.

    ``ptn_freq`` is a working copy of the alignment's pattern frequencies.
    The mixture optimizer temporarily overwrites it with
    responsibility-weighted values and restores it with
    :meth:`reset_pattern_frequencies`.

    Parameters
    ----------
    tree : Tree
        Topology and branch lengths, modified in place: a bifurcating root is
        removed and branch lengths are optimized
    patterns : PatternTable
        Site patterns of the shared alignment
    index : int
        Position of this tree in the mixture
    """

    def __init__(self, tree: Tree, patterns: PatternTable, index: int = 0):
        tree.unroot()
        self.tree = tree
        self.patterns = patterns
        self.index = index
        self.calc = PatternLikelihoodCalculator(patterns, tree)
        self.ptn_freq = patterns.frequencies.astype(float)
        self.model: Optional[SubstitutionModel] = None
        self.rate: Optional[RateHeterogeneity] = None
        self.min_branch_length = 1e-6
        self.max_branch_length = 10.0
        # Replaced by the binder with the lock of the tree's evaluation group
        self.lock = threading.RLock()

    @property
    def name(self) -> str:
        return f"Tree{self.index + 1}"

    def initialize_model(self, descriptor: str, catalog: ModelCatalog) -> None:
        """Create this tree's own model and rate objects from a descriptor."""
        self.model, self.rate = catalog.create(descriptor, self.patterns)
        self.rate.tree = self

    # ------------------------------------------------------------------ #
    # Pattern frequencies
    # ------------------------------------------------------------------ #

    def set_pattern_frequencies(self, frequencies: np.ndarray) -> None:
        frequencies = np.asarray(frequencies, dtype=float)
        if frequencies.shape != self.ptn_freq.shape:
            raise ValueError(
                f"Expected {self.ptn_freq.shape[0]} pattern frequencies, got {frequencies.shape}"
            )
        self.ptn_freq[:] = frequencies

    def reset_pattern_frequencies(self) -> None:
        self.ptn_freq[:] = self.patterns.frequencies

    # ------------------------------------------------------------------ #
    # Likelihood
    # ------------------------------------------------------------------ #

    @contextmanager
    def rate_context(self, target=None):
        """
        Point the rate object at ``target`` (default: this tree) for the block.

        The previous target is restored on every exit path. The block holds
        the lock of the tree's evaluation group, so trees that share a model
        or rate object never use it concurrently.
        """
        with self.lock:
            previous = self.rate.tree
            self.rate.tree = self if target is None else target
            try:
                yield self.rate
            finally:
                self.rate.tree = previous

    def initialize_all_partial_lh(self) -> None:
        self.calc.initialize_buffers(self.rate.n_categories)

    def clear_all_partial_lh(self) -> None:
        self.calc.clear_buffers()

    def compute_pattern_likelihood(self, out: Optional[np.ndarray] = None) -> float:
        """
        Compute per-pattern log-likelihoods and the weighted total.

        Parameters
        ----------
        out : ndarray, shape (n_patterns,), optional
            Buffer receiving the per-pattern log-likelihoods

        Returns
        -------
        float
            Sum of ``ptn_freq * log L(pattern)``
        """
        rates, proportions = self.rate.get_categories()
        pattern_lh = self.calc.compute_pattern_log_likelihoods(
            self.model.get_Q_matrix(), self.model.pi, rates, proportions
        )
        if out is not None:
            out[:] = pattern_lh
        observed = self.ptn_freq > 0
        return float(np.dot(self.ptn_freq[observed], pattern_lh[observed]))

    def compute_likelihood(self) -> float:
        """Log-likelihood of this tree alone under its working frequencies."""
        return self.compute_pattern_likelihood()

    # ------------------------------------------------------------------ #
    # Optimization
    # ------------------------------------------------------------------ #

    def set_branch_length_bounds(self, min_length: float, max_length: float) -> None:
        """Set the branch-length bounds and clamp the current lengths into them."""
        if not 0.0 < min_length < max_length:
            raise ValueError(f"Invalid branch length bounds: [{min_length}, {max_length}]")
        self.min_branch_length = min_length
        self.max_branch_length = max_length
        lengths = np.clip(self.tree.get_branch_lengths(), min_length, max_length)
        self.tree.set_branch_lengths(lengths)

    def optimize_all_branches(
        self, iterations: int = 1, tolerance: float = 0.01, max_nr_steps: int = 100
    ) -> float:
        """Optimize every branch length; returns the new log-likelihood."""
        return optimize_branch_lengths(
            self,
            iterations=iterations,
            tolerance=tolerance,
            max_steps=max_nr_steps,
            min_length=self.min_branch_length,
            max_length=self.max_branch_length,
        )

    def optimize_all_parameters(self, epsilon: float = 1e-4) -> float:
        """
        Optimize model and rate parameters jointly against ``rate.tree``.

        Returns the new log-likelihood, or 0.0 if there is nothing to optimize.
        """
        return optimize_model_parameters(self, epsilon=epsilon)

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def n_branch_parameters(self) -> int:
        return self.tree.n_branches

    def tree_length(self) -> float:
        return self.tree.tree_length()

    def internal_tree_length(self, epsilon: float = 0.0) -> float:
        return self.tree.internal_tree_length(epsilon)

    def to_newick(self) -> str:
        return self.tree.to_newick()

    # ------------------------------------------------------------------ #
    # Checkpointing
    # ------------------------------------------------------------------ #

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        checkpoint.save_array("branch_lengths", self.tree.get_branch_lengths())
        checkpoint.save_array("model_variables", self.model.get_variables())
        checkpoint.save_array("rate_variables", self.rate.get_variables())

    def restore_checkpoint(self, checkpoint: Checkpoint) -> bool:
        """Restore whatever state the checkpoint holds; True if branch lengths were found."""
        model_vars = checkpoint.restore_array("model_variables", len(self.model.get_variables()))
        if model_vars is not None:
            self.model.set_variables(model_vars)
        rate_vars = checkpoint.restore_array("rate_variables", self.rate.get_n_dim())
        if rate_vars is not None:
            self.rate.set_variables(rate_vars)
        lengths = checkpoint.restore_array("branch_lengths", self.tree.n_branches)
        if lengths is None:
            return False
        self.tree.set_branch_lengths(lengths)
        return True

    def __repr__(self) -> str:
        model = self.model.name if self.model is not None else None
        rate = self.rate.name if self.rate is not None else None
        return f"ComponentTree(index={self.index}, model={model}, rate={rate}, {self.tree!r})"
