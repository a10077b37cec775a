"""
Optimization of tree mixture weights.

Both optimizers work from the per-tree pattern likelihoods cached by the
mixture: changing the weights never requires a new tree traversal.
"""

import warnings

import numpy as np
from scipy.optimize import minimize

# Bounds on the unnormalized weight variables of the quasi-Newton optimizer
MIN_PROP = 0.001
MAX_PROP = 1000.0

# Smallest weight kept by an EM update
MIN_WEIGHT = 1e-10


def optimize_weights_em(mixture, max_steps: int = -1, epsilon: float = 1e-6,
                        verbose: bool = False) -> float:
    """
    Optimize tree weights by expectation-maximization.

    Each step sets ``weights[k]`` to the summed responsibility of tree k
    divided by the number of sites, floored at ``MIN_WEIGHT``. Iteration
    stops once the log-likelihood improves by less than ``epsilon``.

    Parameters
    ----------
    mixture : MixtureLikelihood
        Mixture whose tree likelihoods are up to date
    max_steps : int
        Maximum number of EM steps; -1 means no limit
    epsilon : float
        Convergence threshold on the log-likelihood
    verbose : bool
        Print the weights after every step

    Returns
    -------
    float
        Mixture log-likelihood under the final weights
    """
    n_sites = mixture.patterns.n_sites
    prev_score = mixture.log_likelihood()
    score = prev_score

    step = 0
    while max_steps == -1 or step < max_steps:
        responsibilities = mixture.get_post_prob()
        new_weights = responsibilities.sum(axis=0) / n_sites
        mixture.weights = np.maximum(new_weights, MIN_WEIGHT)

        if verbose:
            print(f"EM step {step} weights: " + ",".join(f"{w:.6f}" for w in mixture.weights))

        score = mixture.log_likelihood()
        if score < prev_score + epsilon:
            break
        prev_score = score
        step += 1

    return score


def optimize_weights_bfgs(mixture, epsilon: float = 1e-6, maxiter: int = 200,
                          verbose: bool = False) -> float:
    """
    Optimize tree weights with L-BFGS-B.

    The optimizer works on unnormalized variables bounded to
    ``[MIN_PROP, MAX_PROP]``; the weights are the variables divided by their
    sum, so they stay positive and sum to one at every evaluation.

    Parameters
    ----------
    mixture : MixtureLikelihood
        Mixture whose tree likelihoods are up to date
    epsilon : float
        Convergence threshold on the log-likelihood
    maxiter : int
        Maximum L-BFGS-B iterations
    verbose : bool
        Print the final weights

    Returns
    -------
    float
        Mixture log-likelihood under the final weights
    """
    x0 = np.clip(mixture.weights, MIN_PROP, MAX_PROP)
    bounds = [(MIN_PROP, MAX_PROP)] * len(x0)

    def negative_lnl(x: np.ndarray) -> float:
        return -mixture.log_likelihood(weights=x / x.sum())

    start = negative_lnl(x0)
    result = minimize(
        negative_lnl,
        x0,
        method='L-BFGS-B',
        bounds=bounds,
        options={'maxiter': maxiter, 'ftol': epsilon / max(abs(start), 1.0)},
    )
    if not result.success:
        warnings.warn(f"Tree weight optimization did not converge: {result.message}", UserWarning)

    x = result.x if result.fun <= start else x0
    mixture.set_weights(x / x.sum())

    if verbose:
        print("Tree weights: " + ";".join(f"{w:.6f}" for w in mixture.weights))

    return mixture.log_likelihood()
