"""
Parameter space declarations.

A bound may be a number or one of the data-dependent rules in
`constants.DATA_DEPENDENT_BOUNDS`. Such bounds are placeholders until
`ParameterSpace.finalize` replaces them with the actual data dimensions;
generating candidates from an unfinalized space is a configuration error.
"""
import abc
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import numpy as np

from utils import constants
from utils.exceptions import ConfigurationError

Bound = Union[int, float, str]


def _resolve_bound(value: Bound, dims: Dict[str, int], name: str) -> Bound:
    if isinstance(value, str):
        if value not in constants.DATA_DEPENDENT_BOUNDS:
            raise ConfigurationError(
                f"Parameter '{name}': unknown bound rule '{value}'. "
                f"Expected a number or one of {list(constants.DATA_DEPENDENT_BOUNDS)}."
            )
        if value not in dims:
            raise ConfigurationError(f"Parameter '{name}': bound '{value}' cannot be resolved without data.")
        return dims[value]
    return value


class Parameter(abc.ABC):
    """Base class for a single tunable parameter."""

    name: str

    @property
    @abc.abstractmethod
    def is_finalized(self) -> bool:
        raise NotImplementedError

    def finalize(self, dims: Dict[str, int]) -> "Parameter":
        return self

    @abc.abstractmethod
    def from_unit(self, u: float) -> Any:
        """Map a design coordinate in [0, 1) onto a parameter value."""
        raise NotImplementedError

    @abc.abstractmethod
    def levels(self, n: int) -> List[Any]:
        """Return up to n evenly spaced values (regular grids)."""
        raise NotImplementedError

    @abc.abstractmethod
    def contains(self, value: Any) -> bool:
        raise NotImplementedError

    @property
    def cardinality(self) -> float:
        return math.inf

    def values(self) -> List[Any]:
        raise ConfigurationError(f"Parameter '{self.name}' has no finite set of values.")

    def _check_finalized(self) -> None:
        if not self.is_finalized:
            raise ConfigurationError(
                f"Parameter '{self.name}' has an unresolved data-dependent bound; "
                "finalize the parameter space against the data first."
            )


@dataclass(frozen=True)
class Continuous(Parameter):
    """
    Real-valued parameter. With trans='log10' the bounds are given in log10
    units (e.g. lower=-4, upper=0 covers 1e-4 to 1).
    """
    name: str
    lower: Bound
    upper: Bound
    trans: Optional[str] = None

    def __post_init__(self):
        if self.trans not in (None, "log10"):
            raise ConfigurationError(f"Parameter '{self.name}': unsupported transform '{self.trans}'.")
        if self.is_finalized and float(self.lower) > float(self.upper):
            raise ConfigurationError(f"Parameter '{self.name}': lower bound exceeds upper bound.")

    @property
    def is_finalized(self) -> bool:
        return not isinstance(self.lower, str) and not isinstance(self.upper, str)

    def finalize(self, dims: Dict[str, int]) -> "Continuous":
        return replace(
            self,
            lower=_resolve_bound(self.lower, dims, self.name),
            upper=_resolve_bound(self.upper, dims, self.name),
        )

    def _inverse(self, x: float) -> float:
        return float(10 ** x) if self.trans == "log10" else float(x)

    def from_unit(self, u: float) -> float:
        self._check_finalized()
        lo, hi = float(self.lower), float(self.upper)
        return self._inverse(lo + u * (hi - lo))

    def levels(self, n: int) -> List[float]:
        self._check_finalized()
        return [self._inverse(x) for x in np.linspace(float(self.lower), float(self.upper), n)]

    def contains(self, value: Any) -> bool:
        self._check_finalized()
        try:
            x = float(value)
        except (TypeError, ValueError):
            return False
        if self.trans == "log10":
            if x <= 0:
                return False
            x = math.log10(x)
        return float(self.lower) - 1e-12 <= x <= float(self.upper) + 1e-12


@dataclass(frozen=True)
class Integer(Parameter):
    """Integer parameter with inclusive bounds."""
    name: str
    lower: Bound
    upper: Bound

    def __post_init__(self):
        if self.is_finalized and int(self.lower) > int(self.upper):
            raise ConfigurationError(f"Parameter '{self.name}': lower bound exceeds upper bound.")

    @property
    def is_finalized(self) -> bool:
        return not isinstance(self.lower, str) and not isinstance(self.upper, str)

    def finalize(self, dims: Dict[str, int]) -> "Integer":
        return replace(
            self,
            lower=_resolve_bound(self.lower, dims, self.name),
            upper=_resolve_bound(self.upper, dims, self.name),
        )

    def from_unit(self, u: float) -> int:
        self._check_finalized()
        lo, hi = int(self.lower), int(self.upper)
        return int(min(hi, lo + math.floor(u * (hi - lo + 1))))

    def levels(self, n: int) -> List[int]:
        self._check_finalized()
        raw = np.linspace(int(self.lower), int(self.upper), n)
        return list(dict.fromkeys(int(round(x)) for x in raw))

    def contains(self, value: Any) -> bool:
        self._check_finalized()
        if isinstance(value, bool):
            return False
        try:
            if not float(value).is_integer():
                return False
        except (TypeError, ValueError):
            return False
        return int(self.lower) <= int(value) <= int(self.upper)

    @property
    def cardinality(self) -> float:
        if not self.is_finalized:
            return math.inf
        return int(self.upper) - int(self.lower) + 1

    def values(self) -> List[int]:
        self._check_finalized()
        return list(range(int(self.lower), int(self.upper) + 1))


@dataclass(frozen=True)
class Categorical(Parameter):
    """Parameter drawn from an explicit list of choices (order is preserved)."""
    name: str
    choices: tuple

    def __post_init__(self):
        if len(self.choices) == 0:
            raise ConfigurationError(f"Parameter '{self.name}': categorical choices cannot be empty.")
        object.__setattr__(self, 'choices', tuple(self.choices))

    @property
    def is_finalized(self) -> bool:
        return True

    def from_unit(self, u: float) -> Any:
        return self.choices[min(len(self.choices) - 1, int(math.floor(u * len(self.choices))))]

    def levels(self, n: int) -> List[Any]:
        return list(self.choices)

    def contains(self, value: Any) -> bool:
        return value in self.choices

    @property
    def cardinality(self) -> float:
        return len(self.choices)

    def values(self) -> List[Any]:
        return list(self.choices)


def parameter_from_dict(name: str, spec: Dict[str, Any]) -> Parameter:
    """
    Build a parameter from its config representation, e.g.
    {"type": "continuous", "range": [-4, 0], "trans": "log10"} or
    {"type": "integer", "range": [1, "n_predictors"]} or
    {"type": "categorical", "values": ["rbf", "linear"]}.
    """
    kind = spec.get('type')
    if kind == 'categorical':
        return Categorical(name, tuple(spec.get('values', ())))
    if kind in ('continuous', 'integer'):
        bounds = spec.get('range')
        if not bounds or len(bounds) != 2:
            raise ConfigurationError(f"Parameter '{name}': 'range' must be a [lower, upper] pair.")
        if kind == 'continuous':
            return Continuous(name, bounds[0], bounds[1], trans=spec.get('trans'))
        return Integer(name, bounds[0], bounds[1])
    raise ConfigurationError(f"Parameter '{name}': unknown type '{kind}'.")


class ParameterSpace:
    """Ordered collection of parameters; names must be unique."""

    def __init__(self, parameters: Optional[Iterable[Parameter]] = None):
        self.parameters: tuple = tuple(parameters or ())
        names = [p.name for p in self.parameters]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate parameter names in space: {names}")

    @classmethod
    def from_dict(cls, spec: Optional[Dict[str, Dict[str, Any]]]) -> "ParameterSpace":
        return cls(parameter_from_dict(name, p) for name, p in (spec or {}).items())

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def is_empty(self) -> bool:
        return len(self.parameters) == 0

    @property
    def is_finalized(self) -> bool:
        return all(p.is_finalized for p in self.parameters)

    @property
    def cardinality(self) -> float:
        total = 1
        for p in self.parameters:
            total *= p.cardinality
        return total

    def finalize(self, n_predictors: Optional[int] = None, n_rows: Optional[int] = None) -> "ParameterSpace":
        """Return a new space with every data-dependent bound replaced by its value."""
        dims = {}
        if n_predictors is not None:
            dims[constants.BOUND_N_PREDICTORS] = int(n_predictors)
        if n_rows is not None:
            dims[constants.BOUND_N_ROWS] = int(n_rows)
        return ParameterSpace(p.finalize(dims) for p in self.parameters)

    def __getitem__(self, name: str) -> Parameter:
        for p in self.parameters:
            if p.name == name:
                return p
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self.parameters)

    def __iter__(self):
        return iter(self.parameters)

    def __repr__(self) -> str:
        return f"ParameterSpace({self.names})"
