import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np
from scipy.stats import qmc
from sklearn.model_selection import ParameterGrid

from modules.parameter_space import ParameterSpace
from utils import constants
from utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class Candidate:
    """One concrete parameter assignment; `index` is its generation order."""
    wflow_id: str
    index: int
    id: str
    params: Dict[str, Any] = field(default_factory=dict)


def _candidate_ids(n: int) -> List[str]:
    width = max(2, len(str(n)))
    return [f"config_{i + 1:0{width}d}" for i in range(n)]


def _signature(params: Dict[str, Any]) -> tuple:
    return tuple((k, repr(v)) for k, v in params.items())


class CandidateGrid:
    """Arena of candidates for one workflow, addressed by small integer index."""

    def __init__(self, wflow_id: str, assignments: Sequence[Dict[str, Any]]):
        self.wflow_id = wflow_id
        ids = _candidate_ids(len(assignments))
        self._candidates = tuple(
            Candidate(wflow_id=wflow_id, index=i, id=ids[i], params=dict(params))
            for i, params in enumerate(assignments)
        )
        self._by_id = {c.id: c for c in self._candidates}

    @property
    def candidates(self) -> tuple:
        return self._candidates

    def by_id(self, candidate_id: str) -> Candidate:
        return self._by_id[candidate_id]

    def to_records(self) -> List[Dict[str, Any]]:
        return [{'candidate_id': c.id, **c.params} for c in self._candidates]

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._candidates)

    def __getitem__(self, index: int) -> Candidate:
        return self._candidates[index]


class CandidateGridGenerator:
    """
    Builds the CandidateGrid of a workflow from its (finalized) parameter space.

    Strategies:
    - space_filling (default): Latin hypercube optimized for centered
      discrepancy. Duplicate assignments are dropped and more design points
      drawn; finite spaces no larger than `size` are enumerated completely.
    - regular: full factorial of `levels` values per parameter.
    - explicit: a user-supplied list of assignments, validated against the space.

    An empty space always yields exactly one candidate with no parameters.
    """

    def __init__(self, size: int = constants.DEFAULT_GRID_SIZE,
                 grid_type: str = "space_filling",
                 levels: int = constants.DEFAULT_GRID_LEVELS,
                 seed: Optional[int] = constants.DEFAULT_SEED,
                 logger: Optional[logging.Logger] = None):
        if size < 1:
            raise ConfigurationError(f"grid_size must be >= 1, got {size}")
        if grid_type not in constants.GRID_TYPES:
            raise ConfigurationError(f"Unknown grid_type '{grid_type}'. Expected one of {constants.GRID_TYPES}.")
        if levels < 1:
            raise ConfigurationError(f"levels must be >= 1, got {levels}")
        self.size = size
        self.grid_type = grid_type
        self.levels = levels
        self.seed = seed
        self.logger = logger or logging.getLogger(__name__)

    def generate(self, wflow_id: str, space: ParameterSpace,
                 grid: Optional[Sequence[Dict[str, Any]]] = None) -> CandidateGrid:
        if space.is_empty:
            if grid:
                raise ConfigurationError(f"[{wflow_id}] An explicit grid was given but the workflow has no tunable parameters.")
            return CandidateGrid(wflow_id, [{}])

        if not space.is_finalized:
            unresolved = [p.name for p in space if not p.is_finalized]
            raise ConfigurationError(
                f"[{wflow_id}] Parameters {unresolved} have unresolved data-dependent bounds."
            )

        if grid is not None:
            assignments = self._explicit(wflow_id, space, grid)
        elif self.grid_type == "regular":
            assignments = self._regular(wflow_id, space)
        else:
            assignments = self._space_filling(wflow_id, space)

        self.logger.debug(f"[{wflow_id}] Generated {len(assignments)} candidates ({self.grid_type}).")
        return CandidateGrid(wflow_id, assignments)

    # ------------------------------------------------------------------ #
    # Strategies                                                         #
    # ------------------------------------------------------------------ #
    def _space_filling(self, wflow_id: str, space: ParameterSpace) -> List[Dict[str, Any]]:
        if space.cardinality <= self.size:
            values = {p.name: p.values() for p in space}
            combos = [self._ordered(space, c) for c in ParameterGrid(values)]
            if len(combos) < self.size:
                self.logger.warning(
                    f"[{wflow_id}] Parameter space only has {len(combos)} distinct assignments "
                    f"(requested {self.size}); using all of them."
                )
            return combos

        rng = np.random.default_rng(self.seed)
        sampler = qmc.LatinHypercube(d=len(space), optimization="random-cd", rng=rng)

        assignments: List[Dict[str, Any]] = []
        seen = set()
        for _ in range(constants.MAX_GRID_DRAW_ROUNDS):
            needed = self.size - len(assignments)
            if needed <= 0:
                break
            design = sampler.random(n=needed)
            for row in design:
                params = {p.name: p.from_unit(float(u)) for p, u in zip(space, row)}
                key = _signature(params)
                if key in seen:
                    continue
                seen.add(key)
                assignments.append(params)
                if len(assignments) == self.size:
                    break

        if len(assignments) < self.size:
            self.logger.warning(
                f"[{wflow_id}] Only {len(assignments)} distinct candidates could be drawn "
                f"(requested {self.size})."
            )
        return assignments

    def _regular(self, wflow_id: str, space: ParameterSpace) -> List[Dict[str, Any]]:
        values = {p.name: p.levels(self.levels) for p in space}
        combos = [self._ordered(space, c) for c in ParameterGrid(values)]
        if len(combos) > self.size:
            self.logger.warning(
                f"[{wflow_id}] Regular grid has {len(combos)} candidates, more than grid_size={self.size}."
            )
        return combos

    def _explicit(self, wflow_id: str, space: ParameterSpace,
                  grid: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if len(grid) == 0:
            raise ConfigurationError(f"[{wflow_id}] Explicit grid is empty.")
        expected = set(space.names)
        assignments = []
        seen = set()
        for i, params in enumerate(grid):
            keys = set(params)
            if keys != expected:
                raise ConfigurationError(
                    f"[{wflow_id}] Grid row {i} has parameters {sorted(keys)}, expected {sorted(expected)}."
                )
            for name, value in params.items():
                if not space[name].contains(value):
                    raise ConfigurationError(f"[{wflow_id}] Grid row {i}: {name}={value!r} is outside its range.")
            ordered = self._ordered(space, params)
            key = _signature(ordered)
            if key in seen:
                raise ConfigurationError(f"[{wflow_id}] Grid row {i} duplicates an earlier row.")
            seen.add(key)
            assignments.append(ordered)
        return assignments

    @staticmethod
    def _ordered(space: ParameterSpace, params: Dict[str, Any]) -> Dict[str, Any]:
        return {name: params[name] for name in space.names}
