"""
Likelihood calculation for phylogenetic models.

This module implements Felsenstein's pruning algorithm over compressed site
patterns, vectorized across patterns and rate categories, with per-node
rescaling to avoid underflow on larger trees.
"""

from typing import Optional

import numpy as np
from scipy.special import logsumexp

from ..io.sequences import PatternTable
from ..io.trees import Tree
from .matrix import eigen_decompose_rev, transition_matrices


class PatternLikelihoodCalculator:
    """
    Compute per-pattern log-likelihoods of one tree.

    Partial-likelihood buffers are allocated explicitly with
    :meth:`initialize_buffers` and released with :meth:`clear_buffers`, so a
    caller evaluating many trees controls the peak memory. Computing without
    allocated buffers allocates them for the duration of the call.

    Attributes
    ----------
    patterns : PatternTable
        Site patterns shared with the alignment
    tree : Tree
        Phylogenetic tree; branch lengths are read at every evaluation
    n_states : int
        Number of character states (4 for nucleotides)
    """

    def __init__(self, patterns: PatternTable, tree: Tree, n_states: int = 4):
        self.patterns = patterns
        self.tree = tree
        self.n_states = n_states

        alignment_names_set = set(patterns.names)
        tree_names_set = set(tree.leaf_names)
        if alignment_names_set != tree_names_set:
            raise ValueError(
                "Alignment and tree have different species. "
                f"In alignment but not tree: {alignment_names_set - tree_names_set}. "
                f"In tree but not alignment: {tree_names_set - alignment_names_set}"
            )

        self._nodes = tree.postorder()
        self._node_index = {node: i for i, node in enumerate(self._nodes)}
        self._branch_nodes = [node for node in self._nodes if node.parent is not None]
        self._branch_index = {node: j for j, node in enumerate(self._branch_nodes)}

        row_of = {name: i for i, name in enumerate(patterns.names)}
        self._tip_partials = {}
        for node in self._nodes:
            if node.is_leaf:
                states = patterns.patterns[row_of[node.name]]
                tip = np.zeros((patterns.n_patterns, n_states))
                observed = states >= 0
                tip[np.flatnonzero(observed), states[observed]] = 1.0
                tip[~observed, :] = 1.0
                self._tip_partials[node] = tip

        self.partial_lh: Optional[np.ndarray] = None

    @property
    def buffers_allocated(self) -> bool:
        return self.partial_lh is not None

    def initialize_buffers(self, n_categories: int) -> None:
        """Allocate partial likelihoods for ``n_categories`` rate categories."""
        shape = (len(self._nodes), n_categories, self.patterns.n_patterns, self.n_states)
        if self.partial_lh is None or self.partial_lh.shape != shape:
            self.partial_lh = np.empty(shape)

    def clear_buffers(self) -> None:
        self.partial_lh = None

    def compute_pattern_log_likelihoods(
        self,
        Q: np.ndarray,
        pi: np.ndarray,
        rates: np.ndarray,
        proportions: np.ndarray,
    ) -> np.ndarray:
        """
        Compute the log-likelihood of every site pattern.

        Parameters
        ----------
        Q : ndarray, shape (n_states, n_states)
            Reversible rate matrix
        pi : ndarray, shape (n_states,)
            Equilibrium frequencies (root prior)
        rates : ndarray, shape (n_categories,)
            Relative rate of each rate category
        proportions : ndarray, shape (n_categories,)
            Probability of each rate category

        Returns
        -------
        ndarray, shape (n_patterns,)
            Log-likelihood per pattern; ``-inf`` where a pattern is impossible
        """
        rates = np.asarray(rates, dtype=float)
        proportions = np.asarray(proportions, dtype=float)
        n_cat = len(rates)

        transient = not self.buffers_allocated
        self.initialize_buffers(n_cat)
        try:
            partial = self.partial_lh

            eigenvalues, U, V = eigen_decompose_rev(Q, pi)
            lengths = np.array([node.branch_length for node in self._branch_nodes])
            times = (rates[:, np.newaxis] * lengths[np.newaxis, :]).ravel()
            P = transition_matrices(eigenvalues, U, V, times).reshape(
                n_cat, len(lengths), self.n_states, self.n_states
            )

            log_scale = np.zeros((n_cat, self.patterns.n_patterns))
            for i, node in enumerate(self._nodes):
                if node.is_leaf:
                    partial[i] = self._tip_partials[node][np.newaxis, :, :]
                    continue

                acc = np.ones(partial.shape[1:])
                for child in node.children:
                    P_child = P[:, self._branch_index[child]]
                    acc *= np.einsum('cxy,cpy->cpx', P_child, partial[self._node_index[child]])

                node_max = acc.max(axis=2)
                node_max[node_max <= 0.0] = 1.0
                acc /= node_max[:, :, np.newaxis]
                log_scale += np.log(node_max)
                partial[i] = acc

            root_partial = partial[self._node_index[self.tree.root]]
            site_lh = root_partial @ pi

            with np.errstate(divide='ignore'):
                log_cat = np.log(site_lh) + log_scale + np.log(proportions)[:, np.newaxis]
            return logsumexp(log_cat, axis=0)
        finally:
            if transient:
                self.clear_buffers()
