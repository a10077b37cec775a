"""
Nucleotide substitution models.

Every model is a reversible rate matrix built from exchangeability classes:
each of the six nucleotide pairs belongs to one class, class 0 is the
reference rate fixed at 1, and every other class is a free parameter.
"""

import numpy as np

from ..core.matrix import create_reversible_Q
from ..io.sequences import NUCLEOTIDES, PatternTable

# Nucleotide pairs in upper-triangle order of the TCAG state space
PAIRS = [(i, j) for i in range(4) for j in range(i + 1, 4)]
PAIR_NAMES = [NUCLEOTIDES[i] + NUCLEOTIDES[j] for i, j in PAIRS]

RATE_BOUNDS = (np.log(0.01), np.log(100.0))
FREQ_BOUNDS = (-5.0, 5.0)

FREQ_EQUAL = "equal"
FREQ_EMPIRICAL = "empirical"
FREQ_OPTIMIZE = "optimize"

FREQ_QUALIFIERS = {
    "F": FREQ_EMPIRICAL,
    "FQ": FREQ_EQUAL,
    "FO": FREQ_OPTIMIZE,
}


def _pair_key(a: str, b: str) -> str:
    """Pair name in TCAG order, e.g. ('A', 'C') -> 'CA'."""
    i, j = sorted((NUCLEOTIDES.index(a), NUCLEOTIDES.index(b)))
    return NUCLEOTIDES[i] + NUCLEOTIDES[j]


class SubstitutionModel:
    """
    Reversible nucleotide substitution model.

    Subclasses set ``name``, ``exchange_classes`` (pair name -> class index),
    ``param_names`` (one per free class) and ``default_freq``.

    Parameters
    ----------
    freq_type : str, optional
        One of ``"equal"``, ``"empirical"`` or ``"optimize"``; the model's
        default when omitted
    rates : sequence of float, optional
        Initial values of the free exchangeability parameters
    """

    name = "SubstitutionModel"
    exchange_classes: dict[str, int] = {}
    param_names: tuple[str, ...] = ()
    default_freq = FREQ_EQUAL
    n_states = 4

    def __init__(self, freq_type: str = None, rates=None):
        self.freq_type = freq_type or self.default_freq
        if self.freq_type not in (FREQ_EQUAL, FREQ_EMPIRICAL, FREQ_OPTIMIZE):
            raise ValueError(f"Unknown frequency type: {self.freq_type}")

        if rates is None:
            rates = [2.0 if name.startswith("kappa") else 1.0 for name in self.param_names]
        if len(rates) != len(self.param_names):
            raise ValueError(
                f"{self.name} expects {len(self.param_names)} rate parameters, got {len(rates)}"
            )
        self.rates = np.array(rates, dtype=float)
        self.pi = np.ones(self.n_states) / self.n_states
        self._released = False

    # ------------------------------------------------------------------ #
    # Frequencies
    # ------------------------------------------------------------------ #

    def init_frequencies(self, patterns: PatternTable) -> None:
        """Set starting frequencies from the data where the frequency type asks for it."""
        if self.freq_type in (FREQ_EMPIRICAL, FREQ_OPTIMIZE):
            self.pi = patterns.state_frequencies(self.n_states)
        else:
            self.pi = np.ones(self.n_states) / self.n_states

    # ------------------------------------------------------------------ #
    # Free parameters, log-transformed for the optimizer
    # ------------------------------------------------------------------ #

    def get_n_dim(self) -> int:
        """Number of free exchangeability parameters."""
        return len(self.param_names)

    def get_n_dim_freq(self) -> int:
        """Number of free frequency parameters."""
        return self.n_states - 1 if self.freq_type == FREQ_OPTIMIZE else 0

    def get_variables(self) -> np.ndarray:
        variables = list(np.log(self.rates))
        if self.freq_type == FREQ_OPTIMIZE:
            variables.extend(np.log(self.pi[:-1] / self.pi[-1]))
        return np.array(variables, dtype=float)

    def set_variables(self, variables: np.ndarray) -> None:
        variables = np.asarray(variables, dtype=float)
        n_rates = self.get_n_dim()
        self.rates = np.exp(variables[:n_rates])
        if self.freq_type == FREQ_OPTIMIZE:
            unnormalized = np.exp(np.append(variables[n_rates:], 0.0))
            self.pi = unnormalized / unnormalized.sum()

    def get_bounds(self) -> list[tuple[float, float]]:
        return [RATE_BOUNDS] * self.get_n_dim() + [FREQ_BOUNDS] * self.get_n_dim_freq()

    # ------------------------------------------------------------------ #
    # Rate matrix
    # ------------------------------------------------------------------ #

    def exchangeabilities(self) -> np.ndarray:
        """Symmetric exchangeability matrix in TCAG order."""
        class_rates = np.append(1.0, self.rates)
        S = np.zeros((self.n_states, self.n_states))
        for (i, j), pair in zip(PAIRS, PAIR_NAMES):
            S[i, j] = S[j, i] = class_rates[self.exchange_classes.get(pair, 0)]
        return S

    def get_Q_matrix(self) -> np.ndarray:
        """
        Construct the rate matrix Q.

        Returns
        -------
        np.ndarray, shape (4, 4)
            Rate matrix normalized to one substitution per time unit
        """
        return create_reversible_Q(self.exchangeabilities(), self.pi, normalize=True)

    def get_name_params(self) -> str:
        """Model name with current parameter values."""
        values = ",".join(f"{v:.4f}" for v in self.rates)
        return f"{self.name}{{{values}}}" if values else self.name

    def params_dict(self) -> dict:
        params = {name: float(v) for name, v in zip(self.param_names, self.rates)}
        params["freq_type"] = self.freq_type
        params["pi"] = {NUCLEOTIDES[i]: float(p) for i, p in enumerate(self.pi)}
        return params

    def release(self) -> None:
        """Release the model; a model is released exactly once."""
        if self._released:
            raise RuntimeError(f"{self.name} model released twice")
        self._released = True

    @property
    def released(self) -> bool:
        return self._released

    def __repr__(self) -> str:
        return f"{type(self).__name__}(freq_type='{self.freq_type}', rates={self.rates.tolist()})"


_TRANSITIONS = {_pair_key("A", "G"): 1, _pair_key("C", "T"): 1}


class JCModel(SubstitutionModel):
    """Jukes-Cantor (1969): equal rates, equal frequencies."""

    name = "JC"


class F81Model(SubstitutionModel):
    """Felsenstein (1981): equal rates, unequal frequencies."""

    name = "F81"
    default_freq = FREQ_EMPIRICAL


class K80Model(SubstitutionModel):
    """Kimura (1980): transition/transversion ratio kappa, equal frequencies."""

    name = "K80"
    exchange_classes = _TRANSITIONS
    param_names = ("kappa",)


class HKYModel(SubstitutionModel):
    """Hasegawa, Kishino & Yano (1985): kappa with unequal frequencies."""

    name = "HKY"
    exchange_classes = _TRANSITIONS
    param_names = ("kappa",)
    default_freq = FREQ_EMPIRICAL


class TN93Model(SubstitutionModel):
    """Tamura & Nei (1993): separate purine and pyrimidine transition rates."""

    name = "TN93"
    exchange_classes = {_pair_key("A", "G"): 1, _pair_key("C", "T"): 2}
    param_names = ("kappa1", "kappa2")
    default_freq = FREQ_EMPIRICAL


class GTRModel(SubstitutionModel):
    """General time-reversible model; the G-T rate is the reference."""

    name = "GTR"
    exchange_classes = {
        _pair_key("A", "C"): 1,
        _pair_key("A", "G"): 2,
        _pair_key("A", "T"): 3,
        _pair_key("C", "G"): 4,
        _pair_key("C", "T"): 5,
    }
    param_names = ("rAC", "rAG", "rAT", "rCG", "rCT")
    default_freq = FREQ_EMPIRICAL


NUCLEOTIDE_MODELS = {
    "JC": JCModel,
    "JC69": JCModel,
    "F81": F81Model,
    "K80": K80Model,
    "K2P": K80Model,
    "HKY": HKYModel,
    "HKY85": HKYModel,
    "TN": TN93Model,
    "TN93": TN93Model,
    "GTR": GTRModel,
}
