"""
Per-tree parameter optimization.

Branch lengths are optimized one at a time with a bounded Brent search in
log-length space; model and rate parameters are optimized jointly with
L-BFGS-B against whatever likelihood target the tree's rate object points
at (the tree itself, or the whole mixture).
"""

import numpy as np
from scipy.optimize import minimize, minimize_scalar


def optimize_branch_lengths(
    component,
    iterations: int = 1,
    tolerance: float = 0.01,
    max_steps: int = 100,
    min_length: float = 1e-6,
    max_length: float = 10.0,
) -> float:
    """
    Optimize all branch lengths of one component tree.

    Each sweep visits every branch once; sweeps stop early when a full pass
    improves the log-likelihood by less than ``tolerance``. A branch only
    moves when the move does not lower the log-likelihood.

    Parameters
    ----------
    component : ComponentTree
        Tree whose branches are optimized under its working pattern frequencies
    iterations : int
        Maximum number of sweeps over all branches
    tolerance : float
        Log-likelihood improvement below which sweeping stops
    max_steps : int
        Maximum number of function evaluations per branch
    min_length, max_length : float
        Bounds on branch lengths

    Returns
    -------
    float
        Log-likelihood after optimization
    """
    bounds = (np.log(min_length), np.log(max_length))
    score = component.compute_likelihood()

    for _ in range(iterations):
        sweep_start = score
        for node in component.tree.branch_nodes:
            original = node.branch_length

            def negative_lnl(log_length: float) -> float:
                node.branch_length = float(np.exp(log_length))
                return -component.compute_likelihood()

            result = minimize_scalar(
                negative_lnl,
                bounds=bounds,
                method='bounded',
                options={'xatol': 1e-4, 'maxiter': max_steps},
            )
            if -result.fun >= score:
                node.branch_length = float(np.exp(result.x))
                score = -result.fun
            else:
                node.branch_length = original

        if score < sweep_start + tolerance:
            break

    return score


def optimize_model_parameters(component, epsilon: float = 1e-4, maxiter: int = 200) -> float:
    """
    Jointly optimize the substitution-model and rate parameters of a tree.

    The objective is ``component.rate.tree.compute_likelihood()``, so the
    caller decides the likelihood target by retargeting the rate object.

    Parameters
    ----------
    component : ComponentTree
        Tree whose (possibly shared) model and rate objects are optimized
    epsilon : float
        Log-likelihood change regarded as convergence
    maxiter : int
        Maximum L-BFGS-B iterations

    Returns
    -------
    float
        New log-likelihood of the target, or 0.0 if the model and rate have
        no free parameters
    """
    model, rate = component.model, component.rate
    target = rate.tree if rate.tree is not None else component

    n_model = len(model.get_variables())
    bounds = model.get_bounds() + rate.get_bounds()
    if not bounds:
        return 0.0

    lower = np.array([b[0] for b in bounds])
    upper = np.array([b[1] for b in bounds])
    x0 = np.clip(np.concatenate([model.get_variables(), rate.get_variables()]), lower, upper)

    def set_params(x: np.ndarray) -> None:
        model.set_variables(x[:n_model])
        rate.set_variables(x[n_model:])

    def negative_lnl(x: np.ndarray) -> float:
        set_params(x)
        return -target.compute_likelihood()

    start = negative_lnl(x0)
    result = minimize(
        negative_lnl,
        x0,
        method='L-BFGS-B',
        bounds=bounds,
        options={'maxiter': maxiter, 'ftol': epsilon / max(abs(start), 1.0)},
    )

    if result.fun <= start:
        set_params(result.x)
        return float(-result.fun)

    set_params(x0)
    return float(-start)
