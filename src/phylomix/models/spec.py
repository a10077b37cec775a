"""
Parsing of tree-mixture model strings.

Accepted forms (K trees, ``+T<K>`` always last):

1. linked model and linked site rate:      ``GTR+G4+T2``
2. unlinked models, linked site rate:      ``MIX{GTR,HKY}+G4+T2``
3. linked model, unlinked site rates:      ``GTR+MIX{G4,E}+T2``
4. unlinked models and unlinked site rates: ``MIX{GTR+G4,HKY+E}+T2``

A model or site rate that is partly linked and partly unlinked is rejected,
e.g. ``MIX{GTR,GTR}+FO+T2``, ``GTR+MIX{G4,E}+I+T2`` or ``MIX{GTR+G4,JC}+T2``.
"""

import re
from dataclasses import dataclass, field


class ModelSpecError(ValueError):
    """Raised when a tree-mixture model string cannot be parsed."""


MIX_PREFIX = "MIX{"


@dataclass
class ModelSpec:
    """
    Parsed tree-mixture model string.

    Attributes
    ----------
    model_string : str
        The input with whitespace removed
    n_trees : int
        Declared number of trees K
    model_names : list[str]
        One linked model descriptor, or one per tree
    siterate_names : list[str]
        Empty, one linked rate descriptor, or one per tree
    """

    model_string: str
    n_trees: int
    model_names: list[str] = field(default_factory=list)
    siterate_names: list[str] = field(default_factory=list)

    @property
    def is_model_linked(self) -> bool:
        return len(self.model_names) == 1

    @property
    def is_rate_linked(self) -> bool:
        # With no site rate at all every tree keeps its own equal-rates object
        return len(self.siterate_names) == 1

    @property
    def has_rate(self) -> bool:
        return len(self.siterate_names) > 0

    def tree_model_name(self, i: int) -> str:
        """Effective model descriptor of tree ``i``, e.g. ``"GTR+F+G4"``."""
        if not 0 <= i < self.n_trees:
            raise IndexError(f"Tree index {i} out of range for {self.n_trees} trees")
        name = self.model_names[0 if self.is_model_linked else i]
        if self.has_rate:
            name += "+" + self.siterate_names[0 if self.is_rate_linked else i]
        return name

    def __str__(self) -> str:
        return self.model_string


def split_top_level(text: str, separator: str) -> list[str]:
    """
    Split ``text`` on ``separator`` outside ``{...}`` groups.

    Empty pieces (from leading, trailing or doubled separators) are dropped.

    Examples
    --------
    >>> split_top_level("GTR+MIX{G4,E}+I", "+")
    ['GTR', 'MIX{G4,E}', 'I']
    """
    pieces = []
    depth = 0
    start = 0
    for pos, char in enumerate(text):
        if char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
        elif char == separator and depth <= 0:
            if pos > start:
                pieces.append(text[start:pos])
            depth = 0
            start = pos + 1
    if len(text) > start:
        pieces.append(text[start:])
    return pieces


def split_model_and_rate(name: str) -> tuple[str, str]:
    """
    Divide one descriptor into its substitution-model and site-rate parts.

    The first token is the model; later tokens starting with ``F`` are
    frequency qualifiers of the model, everything else is the site rate.

    Examples
    --------
    >>> split_model_and_rate("GTR+FO+I+G4")
    ('GTR+FO', 'I+G4')
    """
    model_tokens = []
    rate_tokens = []
    for i, token in enumerate(name.split('+')):
        if not token:
            raise ModelSpecError(f"{name} is not a valid model")
        if i == 0 or token[0] == 'F':
            model_tokens.append(token)
        else:
            rate_tokens.append(token)
    return '+'.join(model_tokens), '+'.join(rate_tokens)


def _is_mix_group(token: str) -> bool:
    return len(token) > 5 and token.startswith(MIX_PREFIX) and token.endswith('}')


def parse_model_spec(model_string: str) -> ModelSpec:
    """
    Parse a tree-mixture model string.

    Parameters
    ----------
    model_string : str
        Model string such as ``"GTR+G4+T2"`` or ``"MIX{GTR,JC}+T2"``

    Returns
    -------
    ModelSpec
        Per-tree model and site-rate descriptors

    Raises
    ------
    ModelSpecError
        If the string is not a valid tree-mixture model

    Examples
    --------
    >>> spec = parse_model_spec("GTR+MIX{G4,E}+T2")
    >>> spec.model_names, spec.siterate_names, spec.is_rate_linked
    (['GTR'], ['G4', 'E'], False)
    """
    full_name = re.sub(r'\s', '', model_string)

    t_pos = full_name.rfind("+T")
    if t_pos == -1:
        raise ModelSpecError(
            f"{full_name} is not a tree mixture model, because there is no '+T'"
        )
    count_text = full_name[t_pos + 2:]
    if not count_text:
        raise ModelSpecError(
            "You need to specify the number of trees after '+T', e.g. +T2 for 2 trees"
        )
    if not re.fullmatch(r'[0-9]+', count_text) or int(count_text) < 1:
        raise ModelSpecError(
            f"Invalid number of trees '{count_text}' after '+T'; expected a positive integer"
        )

    spec = ModelSpec(model_string=full_name, n_trees=int(count_text))

    for i, token in enumerate(split_top_level(full_name[:t_pos], '+')):
        if _is_mix_group(token):
            entries = split_top_level(token[len(MIX_PREFIX):-1], ',')
            if i == 0:
                _add_unlinked_models(spec, entries)
            elif not spec.siterate_names:
                spec.siterate_names.extend(entries)
            else:
                raise ModelSpecError(
                    f"The model {full_name} is not correctly specified. "
                    "Are you using too many 'MIX'?"
                )
        elif i == 0:
            spec.model_names.append(token)
        elif len(token) <= 2 and token[0] == 'F':
            if len(spec.model_names) > 1:
                raise ModelSpecError(f"'{token}' is linked, but the models are unlinked")
            if not spec.model_names:
                raise ModelSpecError(f"'{token}' appears before the model does")
            spec.model_names[0] += "+" + token
        else:
            if len(spec.siterate_names) > 1:
                raise ModelSpecError(f"'{token}' is linked, but the site rates are unlinked")
            if spec.siterate_names:
                spec.siterate_names[0] += "+" + token
            else:
                spec.siterate_names.append(token)

    if not spec.model_names:
        raise ModelSpecError("It seems no model is defined")
    if len(spec.model_names) > 1 and len(spec.model_names) != spec.n_trees:
        raise ModelSpecError(
            f"The number of submodels specified in the mixture ({len(spec.model_names)}) "
            f"does not match the number of trees ({spec.n_trees})"
        )
    if len(spec.siterate_names) > 1 and len(spec.siterate_names) != spec.n_trees:
        raise ModelSpecError(
            f"The number of site rates specified in the mixture ({len(spec.siterate_names)}) "
            f"does not match the number of trees ({spec.n_trees})"
        )
    return spec


def _add_unlinked_models(spec: ModelSpec, entries: list[str]) -> None:
    rates = []
    for entry in entries:
        model, rate = split_model_and_rate(entry)
        spec.model_names.append(model)
        rates.append(rate)

    if any(rates):
        if not all(rates):
            missing = [i + 1 for i, rate in enumerate(rates) if not rate]
            raise ModelSpecError(
                f"Site rates are given for some submodels of {spec.model_string} but not "
                f"for submodel(s) {missing}; give every submodel a site rate (E for equal rates) "
                "or link the site rate outside MIX{...}"
            )
        spec.siterate_names.extend(rates)
