"""
Mixture likelihood over K component trees.

Each site pattern is generated by one of the trees, tree k with prior
probability ``weights[k]``:

    L(pattern) = sum_k weights[k] * L_k(pattern)
    lnL = sum_p freq[p] * log L(p)

The per-tree likelihoods are computed independently; the trees only
interact through the weights.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Optional

import numpy as np

from ..io.sequences import PatternTable
from .component import ComponentTree


class MixtureLikelihoodError(FloatingPointError):
    """Raised when a pattern's mixture likelihood is zero or not finite."""


class MixtureLikelihood:
    """
    Aggregate per-tree pattern likelihoods into the mixture likelihood.

    Attributes
    ----------
    components : list[ComponentTree]
        The K component trees
    weights : ndarray, shape (K,)
        Mixing weights, non-negative and summing to one
    log_pattern_lh : ndarray, shape (K, n_patterns)
        Per-tree pattern log-likelihoods from the last evaluation
    pattern_lh : ndarray, shape (K, n_patterns)
        ``exp(log_pattern_lh)``, the pattern likelihood matrix

    Parameters
    ----------
    components : list[ComponentTree]
        Component trees with bound models
    patterns : PatternTable
        Site patterns; their frequencies weight the log-likelihood
    evaluation_groups : list[list[int]], optional
        Trees that share model objects and must be evaluated one at a time;
        default: every tree on its own
    n_threads : int
        Upper bound on concurrent tree evaluations
    """

    def __init__(
        self,
        components: list[ComponentTree],
        patterns: PatternTable,
        evaluation_groups: Optional[list[list[int]]] = None,
        n_threads: int = 1,
    ):
        if not components:
            raise ValueError("A tree mixture needs at least one tree")
        self.components = components
        self.patterns = patterns
        self.frequencies = patterns.frequencies.astype(float)

        n_trees = len(components)
        self.weights = np.full(n_trees, 1.0 / n_trees)
        self.log_pattern_lh = np.zeros((n_trees, patterns.n_patterns))
        self.pattern_lh = np.zeros((n_trees, patterns.n_patterns))
        self._computed = False

        self.evaluation_groups = evaluation_groups or [[k] for k in range(n_trees)]
        self.n_threads = max(1, min(n_threads, os.cpu_count() or 1, n_trees))
        self._executor: Optional[ThreadPoolExecutor] = None
        self._serial_depth = 0

    @property
    def n_trees(self) -> int:
        return len(self.components)

    @property
    def n_patterns(self) -> int:
        return self.patterns.n_patterns

    def set_weights(self, weights) -> None:
        weights = np.asarray(weights, dtype=float)
        if weights.shape != (self.n_trees,):
            raise ValueError(f"Expected {self.n_trees} weights, got shape {weights.shape}")
        if np.any(weights < 0) or weights.sum() <= 0:
            raise ValueError(f"Invalid tree weights: {weights}")
        self.weights = weights / weights.sum()

    # ------------------------------------------------------------------ #
    # Per-tree evaluation
    # ------------------------------------------------------------------ #

    @contextmanager
    def serial(self):
        """Evaluate trees on the calling thread while inside the block."""
        self._serial_depth += 1
        try:
            yield
        finally:
            self._serial_depth -= 1

    def run_per_group(self, func) -> None:
        """
        Call ``func(k)`` for every tree, concurrently across evaluation groups.

        Trees inside one group are processed in order on a single worker.
        """
        def run_group(members: list[int]) -> None:
            for k in members:
                func(k)

        if self.n_threads == 1 or self._serial_depth > 0 or len(self.evaluation_groups) == 1:
            for members in self.evaluation_groups:
                run_group(members)
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.n_threads)
        futures = [self._executor.submit(run_group, members) for members in self.evaluation_groups]
        for future in futures:
            future.result()

    def _evaluate_tree(self, k: int) -> None:
        component = self.components[k]
        with component.rate_context():
            component.initialize_all_partial_lh()
            try:
                component.compute_pattern_likelihood(self.log_pattern_lh[k])
            finally:
                component.clear_all_partial_lh()

    def compute_tree_likelihoods(self) -> None:
        """Recompute every tree's pattern likelihoods."""
        self.run_per_group(self._evaluate_tree)
        with np.errstate(over='ignore', under='ignore'):
            np.exp(self.log_pattern_lh, out=self.pattern_lh)
        self._computed = True

    # ------------------------------------------------------------------ #
    # Mixture likelihood and posteriors
    # ------------------------------------------------------------------ #

    def _mixture_pattern_lh(self, weights: np.ndarray) -> np.ndarray:
        sub_lh = weights @ self.pattern_lh
        bad = np.flatnonzero(~(np.isfinite(sub_lh) & (sub_lh > 0.0)))
        if len(bad):
            raise MixtureLikelihoodError(
                f"Mixture likelihood is {sub_lh[bad[0]]} for pattern {bad[0]} "
                f"({len(bad)} pattern(s) affected); all component likelihoods underflowed "
                "or the parameters are invalid"
            )
        return sub_lh

    def log_likelihood(self, weights: Optional[np.ndarray] = None,
                       pattern_lh: Optional[np.ndarray] = None) -> float:
        """
        Mixture log-likelihood from the stored tree likelihoods.

        Parameters
        ----------
        weights : ndarray, optional
            Weights to evaluate (default: the current weights)
        pattern_lh : ndarray, shape (n_patterns,), optional
            Receives the mixture likelihood of every pattern
        """
        if not self._computed:
            self.compute_tree_likelihoods()
        weights = self.weights if weights is None else np.asarray(weights, dtype=float)
        sub_lh = self._mixture_pattern_lh(weights)
        if pattern_lh is not None:
            pattern_lh[:] = sub_lh
        return float(np.dot(np.log(sub_lh), self.frequencies))

    def compute_likelihood(self, pattern_lh: Optional[np.ndarray] = None) -> float:
        """Recompute all tree likelihoods and return the mixture log-likelihood."""
        self.compute_tree_likelihoods()
        return self.log_likelihood(pattern_lh=pattern_lh)

    def get_post_prob(self, out: Optional[np.ndarray] = None, recompute: bool = False) -> np.ndarray:
        """
        Frequency-scaled posterior probability of each tree for each pattern.

        Row p sums to the frequency of pattern p, so column k can be used as
        pseudo pattern frequencies for tree k.

        Parameters
        ----------
        out : ndarray, shape (n_patterns, K), optional
            Buffer receiving the responsibilities
        recompute : bool
            Recompute the tree likelihoods first

        Returns
        -------
        ndarray, shape (n_patterns, K)
            Responsibility matrix
        """
        if recompute or not self._computed:
            self.compute_tree_likelihoods()

        weighted = self.pattern_lh.T * self.weights[np.newaxis, :]
        totals = self._mixture_pattern_lh(self.weights)
        responsibilities = weighted * (self.frequencies / totals)[:, np.newaxis]

        if out is not None:
            out[:] = responsibilities
            return out
        return responsibilities

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
