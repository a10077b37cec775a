"""
Rate heterogeneity across sites.

A rate object describes a discrete mixture of relative rates whose expected
value is 1. It also carries ``tree``: the likelihood target its parameters
are currently evaluated against. A rate object shared by several component
trees is used by one of them at a time, and callers retarget ``tree`` for the
duration of each use (see :meth:`ComponentTree.rate_context`).
"""

import numpy as np
from scipy.special import gammainc
from scipy.stats import gamma

from ..io.sequences import PatternTable

ALPHA_BOUNDS = (np.log(0.02), np.log(100.0))
PINV_BOUNDS = (1e-6, 0.99)


def discrete_gamma_rates(alpha: float, n_categories: int) -> np.ndarray:
    """
    Mean rate of each of ``n_categories`` equal-probability gamma categories.

    Uses the mean-of-category discretization of Yang (1994) for a gamma
    distribution with shape ``alpha`` and mean 1.

    Parameters
    ----------
    alpha : float
        Gamma shape parameter
    n_categories : int
        Number of categories

    Returns
    -------
    np.ndarray, shape (n_categories,)
        Category rates, averaging to 1
    """
    if n_categories == 1:
        return np.ones(1)
    quantiles = np.arange(1, n_categories) / n_categories
    cutpoints = gamma.ppf(quantiles, a=alpha, scale=1.0 / alpha)
    # Fraction of the mean carried by each interval
    cdf_plus_one = np.concatenate(([0.0], gammainc(alpha + 1.0, cutpoints * alpha), [1.0]))
    rates = n_categories * np.diff(cdf_plus_one)
    return rates / rates.mean()


class RateHeterogeneity:
    """
    Equal rates across sites (no heterogeneity), descriptor ``E``.

    Attributes
    ----------
    tree : object or None
        Current likelihood target, anything exposing ``compute_likelihood()``
    """

    name = "E"

    def __init__(self):
        self.tree = None
        self._released = False

    def init_from_patterns(self, patterns: PatternTable) -> None:
        """Set data-dependent starting values."""

    @property
    def n_categories(self) -> int:
        return len(self.get_categories()[0])

    def get_categories(self) -> tuple[np.ndarray, np.ndarray]:
        """
        Relative rates and probabilities of the rate categories.

        Returns
        -------
        rates : np.ndarray
        proportions : np.ndarray
        """
        return np.ones(1), np.ones(1)

    def get_n_dim(self) -> int:
        return 0

    def get_variables(self) -> np.ndarray:
        return np.zeros(0)

    def set_variables(self, variables: np.ndarray) -> None:
        pass

    def get_bounds(self) -> list[tuple[float, float]]:
        return []

    def get_name_params(self) -> str:
        return self.name

    def params_dict(self) -> dict:
        return {}

    def release(self) -> None:
        """Release the rate object; a rate object is released exactly once."""
        if self._released:
            raise RuntimeError(f"Rate model '{self.name}' released twice")
        self._released = True
        self.tree = None

    @property
    def released(self) -> bool:
        return self._released

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.get_name_params()})"


UniformRate = RateHeterogeneity


class GammaRate(RateHeterogeneity):
    """
    Discrete gamma rate heterogeneity, descriptor ``G<n>``.

    Parameters
    ----------
    n_categories : int
        Number of gamma categories (default 4)
    alpha : float
        Initial shape parameter (default 1.0)
    """

    def __init__(self, n_categories: int = 4, alpha: float = 1.0):
        super().__init__()
        if n_categories < 1:
            raise ValueError(f"Number of gamma categories must be positive, got {n_categories}")
        self.n_gamma = n_categories
        self.alpha = alpha

    @property
    def name(self) -> str:
        return f"G{self.n_gamma}"

    def get_categories(self) -> tuple[np.ndarray, np.ndarray]:
        rates = discrete_gamma_rates(self.alpha, self.n_gamma)
        return rates, np.full(self.n_gamma, 1.0 / self.n_gamma)

    def get_n_dim(self) -> int:
        return 1

    def get_variables(self) -> np.ndarray:
        return np.array([np.log(self.alpha)])

    def set_variables(self, variables: np.ndarray) -> None:
        self.alpha = float(np.exp(variables[0]))

    def get_bounds(self) -> list[tuple[float, float]]:
        return [ALPHA_BOUNDS]

    def get_name_params(self) -> str:
        return f"{self.name}{{{self.alpha:.4f}}}"

    def params_dict(self) -> dict:
        return {"alpha": self.alpha}


class InvariantRate(RateHeterogeneity):
    """
    Proportion of invariable sites, descriptor ``I``.

    Parameters
    ----------
    p_inv : float, optional
        Initial proportion; half the constant-site fraction when omitted
    """

    name = "I"

    def __init__(self, p_inv: float = None):
        super().__init__()
        self.p_inv = 0.1 if p_inv is None else p_inv
        self._fixed_start = p_inv is not None

    def init_from_patterns(self, patterns: PatternTable) -> None:
        if self._fixed_start:
            return
        const_fraction = np.sum(patterns.frequencies[patterns.is_constant]) / patterns.n_sites
        self.p_inv = float(np.clip(0.5 * const_fraction, 1e-3, 0.5))

    def get_categories(self) -> tuple[np.ndarray, np.ndarray]:
        return (
            np.array([0.0, 1.0 / (1.0 - self.p_inv)]),
            np.array([self.p_inv, 1.0 - self.p_inv]),
        )

    def get_n_dim(self) -> int:
        return 1

    def get_variables(self) -> np.ndarray:
        return np.array([self.p_inv])

    def set_variables(self, variables: np.ndarray) -> None:
        self.p_inv = float(variables[0])

    def get_bounds(self) -> list[tuple[float, float]]:
        return [PINV_BOUNDS]

    def get_name_params(self) -> str:
        return f"I{{{self.p_inv:.4f}}}"

    def params_dict(self) -> dict:
        return {"p_inv": self.p_inv}


class InvariantGammaRate(InvariantRate):
    """Invariable sites plus discrete gamma, descriptor ``I+G<n>``."""

    def __init__(self, n_categories: int = 4, alpha: float = 1.0, p_inv: float = None):
        super().__init__(p_inv=p_inv)
        self.gamma = GammaRate(n_categories, alpha)

    @property
    def name(self) -> str:
        return f"I+{self.gamma.name}"

    def get_categories(self) -> tuple[np.ndarray, np.ndarray]:
        gamma_rates, gamma_props = self.gamma.get_categories()
        rates = np.concatenate(([0.0], gamma_rates / (1.0 - self.p_inv)))
        proportions = np.concatenate(([self.p_inv], gamma_props * (1.0 - self.p_inv)))
        return rates, proportions

    def get_n_dim(self) -> int:
        return 2

    def get_variables(self) -> np.ndarray:
        return np.array([self.p_inv, np.log(self.gamma.alpha)])

    def set_variables(self, variables: np.ndarray) -> None:
        self.p_inv = float(variables[0])
        self.gamma.set_variables(variables[1:])

    def get_bounds(self) -> list[tuple[float, float]]:
        return [PINV_BOUNDS, ALPHA_BOUNDS]

    def get_name_params(self) -> str:
        return f"I{{{self.p_inv:.4f}}}+{self.gamma.get_name_params()}"

    def params_dict(self) -> dict:
        return {"p_inv": self.p_inv, "alpha": self.gamma.alpha}
