"""
Closed set of optimization algorithms and the registry the fit driver uses.

Every plugin exposes the same capability pair:
  - fit(data, K, L, **options) -> (W, H)     bootstrap, None unless separable
  - update(data, W, H, meta, *, l1_H, l2_H, l1_W, l2_W, **options) -> (loss, meta)
    mutates W and H in place; meta is the plugin's own state, None on the
    first call of a fit.
"""
from enum import Enum
from types import MappingProxyType
from typing import Callable, NamedTuple, Optional

from cnmf import anls, hals, mult, separable


class UnknownAlgorithmError(ValueError):
    """Raised for an algorithm tag that is not in the registry."""


class ConfigurationError(ValueError):
    """Raised for option combinations an algorithm cannot honor."""


class Algorithm(str, Enum):
    MULT = "mult"
    HALS = "hals"
    ANLS = "anls"
    SEP = "sep"

    @property
    def supports_regularization(self) -> bool:
        return self is not Algorithm.ANLS

    @classmethod
    def parse(cls, tag) -> "Algorithm":
        if isinstance(tag, cls):
            return tag
        try:
            return cls(str(tag).strip().lower())
        except ValueError as e:
            raise UnknownAlgorithmError(
                f"Unknown algorithm '{tag}'. Valid options: {[a.value for a in cls]}"
            ) from e


class AlgorithmPlugin(NamedTuple):
    update: Callable
    fit: Optional[Callable] = None


# Populated once at import, read-only afterwards
ALGORITHMS = MappingProxyType(
    {
        Algorithm.MULT: AlgorithmPlugin(update=mult.update),
        Algorithm.HALS: AlgorithmPlugin(update=hals.update),
        Algorithm.ANLS: AlgorithmPlugin(update=anls.update),
        Algorithm.SEP: AlgorithmPlugin(update=separable.update, fit=separable.fit),
    }
)


def get_algorithm(tag) -> AlgorithmPlugin:
    return ALGORITHMS[Algorithm.parse(tag)]


def parse_algorithms_arg(algs_string: str) -> list[Algorithm]:
    """
    Convert comma-separated algorithm names to an Algorithm list.
    Example: "mult,hals" -> [Algorithm.MULT, Algorithm.HALS]
    """
    return [Algorithm.parse(a) for a in algs_string.split(",") if a.strip()]
