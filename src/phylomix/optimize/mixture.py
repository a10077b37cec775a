"""
Alternating optimization of a tree mixture.

Each outer step:

1. computes per-pattern responsibilities from fresh tree likelihoods,
2. gives every tree its responsibility column as pattern frequencies,
3. reoptimizes the branch lengths of every tree under those frequencies,
4. updates the tree weights,
5. restores the true pattern frequencies,
6. reoptimizes model and rate parameters against the mixture likelihood.

The loop stops when a step improves the log-likelihood by less than
``epsilon`` or when ``max_steps`` steps have been taken.
"""

import warnings
from pathlib import Path
from typing import Optional

import numpy as np

from ..checkpoint import Checkpoint
from ..io.sequences import PatternTable
from ..io.trees import Tree
from ..mixture.aggregator import MixtureLikelihood
from ..mixture.binder import SharedResourceBinder
from ..mixture.component import ComponentTree
from ..models.catalog import ModelCatalog
from ..models.spec import ModelSpec, parse_model_spec
from .weights import optimize_weights_bfgs, optimize_weights_em

WEIGHT_METHODS = ("bfgs", "em")

DEFAULT_MIN_BRANCH_LENGTH = 1e-6
LONG_ALIGNMENT_SITES = 100000


class TreeMixtureOptimizer:
    """
    Fit a mixture of fixed tree topologies to an alignment.

    Parameters
    ----------
    model : str or ModelSpec
        Tree-mixture model, e.g. ``"GTR+G4+T2"`` or ``"MIX{GTR,HKY}+T2"``
    patterns : PatternTable
        Compressed alignment
    trees : list[Tree]
        One topology per mixture component; branch lengths are optimized in place
    catalog : ModelCatalog, optional
        Model lookup (default: built-in nucleotide models)
    max_steps : int
        Maximum number of outer steps; -1 means no limit
    epsilon : float
        Log-likelihood improvement regarded as convergence
    logl_epsilon : float
        Tolerance of branch-length refinement
    weight_method : str
        ``"bfgs"`` (default) or ``"em"``
    em_max_steps : int
        Step cap of the EM weight optimizer; -1 means no limit
    n_threads : int
        Upper bound on concurrent per-tree work
    min_branch_length : float, optional
        Lower bound on branch lengths (default: see :meth:`set_min_branch_length`)
    max_branch_length : float
        Upper bound on branch lengths
    checkpoint : Checkpoint, Path or str, optional
        State to resume from and to save after every outer step
    verbose : bool
        Print progress

    Examples
    --------
    >>> optimizer = TreeMixtureOptimizer("HKY+G4+T2", patterns, [tree1, tree2])
    >>> lnL = optimizer.optimize()
    >>> optimizer.weights
    array([0.62, 0.38])
    """

    def __init__(
        self,
        model,
        patterns: PatternTable,
        trees: list[Tree],
        catalog: Optional[ModelCatalog] = None,
        max_steps: int = 100,
        epsilon: float = 1e-4,
        logl_epsilon: float = 0.01,
        weight_method: str = "bfgs",
        em_max_steps: int = -1,
        n_threads: int = 1,
        min_branch_length: Optional[float] = None,
        max_branch_length: float = 10.0,
        checkpoint=None,
        verbose: bool = False,
    ):
        self.spec: ModelSpec = parse_model_spec(model) if isinstance(model, str) else model
        if len(trees) != self.spec.n_trees:
            raise ValueError(
                f"The model {self.spec.model_string} declares {self.spec.n_trees} trees "
                f"but {len(trees)} trees were given"
            )
        if weight_method not in WEIGHT_METHODS:
            raise ValueError(f"Unknown weight method '{weight_method}', expected one of {WEIGHT_METHODS}")

        self.patterns = patterns
        self.max_steps = max_steps
        self.epsilon = epsilon
        self.logl_epsilon = logl_epsilon
        self.weight_method = weight_method
        self.em_max_steps = em_max_steps
        self.verbose = verbose

        if verbose:
            print(f"Tree mixture model: {self.spec.model_string}")
            print(f"  Trees: {self.spec.n_trees}")
            print(f"  Models: {', '.join(self.spec.model_names)} "
                  f"({'linked' if self.spec.is_model_linked else 'unlinked'})")
            if self.spec.has_rate:
                print(f"  Rates: {', '.join(self.spec.siterate_names)} "
                      f"({'linked' if self.spec.is_rate_linked else 'unlinked'})")

        self.components = [ComponentTree(tree, patterns, i) for i, tree in enumerate(trees)]
        self.binder = SharedResourceBinder(self.spec, self.components, catalog, verbose=verbose)
        try:
            self.binder.bind()
        except ValueError:
            self.binder.release()
            raise
        self.mixture = MixtureLikelihood(
            self.components, patterns, self.binder.evaluation_groups, n_threads=n_threads
        )

        self.max_branch_length = max_branch_length
        self.set_min_branch_length(min_branch_length)

        if checkpoint is None or isinstance(checkpoint, Checkpoint):
            self.checkpoint = checkpoint
        elif Path(checkpoint).exists():
            self.checkpoint = Checkpoint.load(checkpoint)
        else:
            self.checkpoint = Checkpoint(checkpoint)

        self.log_likelihood: Optional[float] = None
        self.n_steps = 0
        self.converged = False
        self.history: list[dict] = []
        self.restored = self.restore_checkpoint() if self.checkpoint is not None else False

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def n_trees(self) -> int:
        return len(self.components)

    @property
    def weights(self) -> np.ndarray:
        return self.mixture.weights

    def set_min_branch_length(self, min_length: Optional[float] = None) -> float:
        """
        Set the lower bound on branch lengths of every tree.

        A missing or non-positive value selects the default of 1e-6, reduced
        to ``0.1 / n_sites`` for alignments of at least 100000 sites. Current
        branch lengths outside the bounds are moved onto them.
        """
        if min_length is None or min_length <= 0.0:
            min_length = DEFAULT_MIN_BRANCH_LENGTH
            n_sites = self.patterns.n_sites
            if n_sites >= LONG_ALIGNMENT_SITES:
                min_length = 0.1 / n_sites
                if self.verbose:
                    print(f"NOTE: minimal branch length is reduced to {min_length:.3g} "
                          "for long alignment")
        for component in self.components:
            component.set_branch_length_bounds(min_length, self.max_branch_length)
        self.min_branch_length = min_length
        return min_length

    def n_parameters(self) -> int:
        """Free parameters: model and rate per link group, all branches, K-1 weights."""
        n_branches = sum(c.n_branch_parameters() for c in self.components)
        return self.binder.n_model_parameters() + n_branches + self.n_trees - 1

    def tree_length(self) -> float:
        """Tree length averaged over the component trees."""
        return float(np.mean([c.tree_length() for c in self.components]))

    def internal_tree_length(self, epsilon: float = 0.0) -> float:
        return float(np.mean([c.internal_tree_length(epsilon) for c in self.components]))

    def tree_strings(self) -> list[str]:
        return [c.to_newick() for c in self.components]

    # ------------------------------------------------------------------ #
    # Likelihood
    # ------------------------------------------------------------------ #

    def compute_likelihood(self) -> float:
        return self.mixture.compute_likelihood()

    def get_post_prob(self, recompute: bool = False) -> np.ndarray:
        return self.mixture.get_post_prob(recompute=recompute)

    # ------------------------------------------------------------------ #
    # Phases of one outer step
    # ------------------------------------------------------------------ #

    def optimize_all_branches(self, iterations: int) -> float:
        """Reoptimize every tree's branch lengths; returns the mixture log-likelihood."""
        def optimize_tree(k: int) -> None:
            component = self.components[k]
            with component.rate_context():
                component.initialize_all_partial_lh()
                try:
                    component.optimize_all_branches(iterations, self.logl_epsilon)
                finally:
                    component.clear_all_partial_lh()

        self.mixture.run_per_group(optimize_tree)
        return self.mixture.compute_likelihood()

    def optimize_weights(self) -> float:
        if self.weight_method == "em":
            return optimize_weights_em(
                self.mixture, max_steps=self.em_max_steps, verbose=self.verbose
            )
        return optimize_weights_bfgs(self.mixture, verbose=self.verbose)

    def optimize_model_parameters(self, score: float) -> float:
        """
        Reoptimize the model and rate parameters of every tree in turn.

        Each tree's rate object is pointed at the mixture for the duration
        of its optimization, so the objective is the mixture log-likelihood.
        Linked objects are optimized once per tree that references them.
        """
        with self.mixture.serial():
            for component in self.components:
                with component.rate_context(target=self.mixture):
                    tree_score = component.optimize_all_parameters(self.epsilon)
                if tree_score != 0.0:
                    score = tree_score
        return score

    # ------------------------------------------------------------------ #
    # Outer loop
    # ------------------------------------------------------------------ #

    def optimize(self) -> float:
        """
        Run the alternating optimization until convergence or the step cap.

        Returns
        -------
        float
            Final mixture log-likelihood
        """
        prev_score = -np.inf
        score = prev_score
        self.converged = False

        step = 0
        while self.max_steps == -1 or step < self.max_steps:
            iterations = min(step + 1, 3)

            responsibilities = self.mixture.get_post_prob(recompute=True)
            for k, component in enumerate(self.components):
                component.set_pattern_frequencies(responsibilities[:, k])
            try:
                score = self.optimize_all_branches(iterations)
                if self.verbose:
                    print(f"after optimizing branches, likelihood = {score:.6f}")
                score = self.optimize_weights()
                if self.verbose:
                    print(f"after optimizing tree weights, likelihood = {score:.6f}")
            finally:
                for component in self.components:
                    component.reset_pattern_frequencies()

            score = self.optimize_model_parameters(score)

            self.history.append({
                'step': step,
                'log_likelihood': score,
                'weights': self.weights.copy(),
            })
            if self.verbose:
                print(f"step= {step} score={score:.6f}")
            if self.checkpoint is not None:
                self.save_checkpoint()

            step += 1
            if score < prev_score + self.epsilon:
                self.converged = True
                if self.verbose:
                    print("Tree mixture optimization converged")
                break
            prev_score = score

        self.n_steps = step
        if not self.converged:
            warnings.warn(
                f"Tree mixture optimization stopped after {step} steps without converging",
                UserWarning,
            )

        # Model optimization leaves the cached tree likelihoods behind the parameters
        self.log_likelihood = self.mixture.compute_likelihood()
        return self.log_likelihood

    # ------------------------------------------------------------------ #
    # Checkpointing
    # ------------------------------------------------------------------ #

    @property
    def checkpoint_struct(self) -> str:
        return f"TreeMix{self.n_trees}"

    def save_checkpoint(self) -> None:
        """Save weights and per-tree state, writing the file if one is set."""
        checkpoint = self.checkpoint
        checkpoint.start_struct(self.checkpoint_struct)
        checkpoint.save_array("weights", self.weights)
        for component in self.components:
            checkpoint.start_struct(component.name)
            component.save_checkpoint(checkpoint)
            checkpoint.end_struct()
        checkpoint.end_struct()
        if checkpoint.filename is not None:
            checkpoint.dump()

    def restore_checkpoint(self) -> bool:
        """Restore whatever state the checkpoint holds; True if weights were found."""
        checkpoint = self.checkpoint
        checkpoint.start_struct(self.checkpoint_struct)
        weights = checkpoint.restore_array("weights", self.n_trees)
        if weights is not None:
            self.mixture.set_weights(weights)
        for component in self.components:
            checkpoint.start_struct(component.name)
            component.restore_checkpoint(checkpoint)
            checkpoint.end_struct()
        checkpoint.end_struct()
        if self.verbose and weights is not None:
            print(f"Restored tree weights from checkpoint: {self.weights}")
        return weights is not None

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Release all model and rate objects and stop worker threads."""
        self.mixture.close()
        self.binder.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
