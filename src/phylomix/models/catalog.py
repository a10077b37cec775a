"""
Lookup of substitution and rate models by descriptor.
"""

import re
from typing import Callable, Optional

from ..io.sequences import PatternTable
from .spec import split_model_and_rate
from .nucleotide import FREQ_QUALIFIERS, NUCLEOTIDE_MODELS, SubstitutionModel
from .rates import GammaRate, InvariantGammaRate, InvariantRate, RateHeterogeneity

_GAMMA_TOKEN = re.compile(r'^G(\d*)$')


class ModelCatalog:
    """
    Create fresh model and rate objects from descriptor strings.

    Every call returns new, unshared objects; linking is done afterwards by
    :class:`~phylomix.mixture.binder.SharedResourceBinder`.

    Examples
    --------
    >>> catalog = ModelCatalog()
    >>> model, rate = catalog.create("HKY+F+G4")
    >>> model.name, rate.name
    ('HKY', 'G4')
    """

    def __init__(self):
        self._models: dict[str, Callable[..., SubstitutionModel]] = dict(NUCLEOTIDE_MODELS)

    def register_model(self, name: str, factory: Callable[..., SubstitutionModel]) -> None:
        """Make ``factory(freq_type=...)`` available under ``name``."""
        self._models[name.upper()] = factory

    @property
    def model_names(self) -> list[str]:
        return sorted(self._models)

    def create_model(self, descriptor: str, patterns: Optional[PatternTable] = None) -> SubstitutionModel:
        """
        Build a substitution model from e.g. ``"GTR"`` or ``"HKY+FO"``.

        Parameters
        ----------
        descriptor : str
            Model name optionally followed by one frequency qualifier
        patterns : PatternTable, optional
            Data used for empirical starting frequencies
        """
        tokens = descriptor.split('+')
        base = tokens[0].upper()
        if base not in self._models:
            raise ValueError(
                f"Unknown substitution model: '{tokens[0]}'. "
                f"Valid models are: {', '.join(self.model_names)}"
            )

        freq_type = None
        for token in tokens[1:]:
            if token.upper() not in FREQ_QUALIFIERS:
                raise ValueError(f"Unknown frequency qualifier '{token}' in '{descriptor}'")
            if freq_type is not None:
                raise ValueError(f"More than one frequency qualifier in '{descriptor}'")
            freq_type = FREQ_QUALIFIERS[token.upper()]

        model = self._models[base](freq_type=freq_type)
        if patterns is not None:
            model.init_frequencies(patterns)
        return model

    def create_rate(self, descriptor: str, patterns: Optional[PatternTable] = None) -> RateHeterogeneity:
        """
        Build a rate-heterogeneity object from e.g. ``"G4"``, ``"I+G"`` or ``"E"``.

        An empty descriptor means equal rates.
        """
        invariant = False
        n_gamma = None
        for token in (t for t in descriptor.split('+') if t):
            token = token.upper()
            match = _GAMMA_TOKEN.match(token)
            if token == 'E':
                continue
            elif token == 'I' and not invariant:
                invariant = True
            elif match and n_gamma is None:
                n_gamma = int(match.group(1)) if match.group(1) else 4
                if n_gamma < 1:
                    raise ValueError(f"Invalid number of gamma categories in '{descriptor}'")
            else:
                raise ValueError(f"Unknown or repeated site-rate token '{token}' in '{descriptor}'")

        if invariant and n_gamma:
            rate = InvariantGammaRate(n_gamma)
        elif invariant:
            rate = InvariantRate()
        elif n_gamma:
            rate = GammaRate(n_gamma)
        else:
            rate = RateHeterogeneity()

        if patterns is not None:
            rate.init_from_patterns(patterns)
        return rate

    def create(
        self, descriptor: str, patterns: Optional[PatternTable] = None
    ) -> tuple[SubstitutionModel, RateHeterogeneity]:
        """Build the model and rate objects of a full per-tree descriptor."""
        model_part, rate_part = split_model_and_rate(descriptor)
        return self.create_model(model_part, patterns), self.create_rate(rate_part, patterns)
