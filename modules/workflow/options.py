"""
Execution options of a workflow run.

Options are layered: library defaults, then the options common to one
`WorkflowSet.evaluate` call, then the options attached to a single entry
with `set_options`. Every layer is validated the same way.
"""
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional, Sequence, Union

from utils import constants
from utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class WorkflowOptions:
    grid_size: int = constants.DEFAULT_GRID_SIZE
    grid: Optional[Sequence[Dict[str, Any]]] = None
    grid_type: str = "space_filling"
    levels: int = constants.DEFAULT_GRID_LEVELS
    burn_in: int = constants.DEFAULT_BURN_IN
    alpha: float = constants.DEFAULT_ALPHA
    metrics: Any = constants.DEFAULT_METRICS
    race_metric: Optional[str] = None
    n_jobs: int = constants.DEFAULT_N_JOBS
    seed: Optional[int] = constants.DEFAULT_SEED
    max_failures: int = constants.DEFAULT_MAX_FAILURES
    adjust: str = "none"
    num_ties: int = constants.DEFAULT_NUM_TIES
    sole_survivor: str = "continue"
    elimination_policy: str = "anova"

    def __post_init__(self):
        self.validate()

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]] = None) -> "WorkflowOptions":
        return cls().merged(options or {})

    def merged(self, overrides: Optional[Union[Dict[str, Any], "WorkflowOptions"]]) -> "WorkflowOptions":
        """Return a copy with `overrides` applied; unknown option names are rejected."""
        if overrides is None:
            return self
        if isinstance(overrides, WorkflowOptions):
            overrides = overrides.to_dict()
        unknown = sorted(set(overrides) - set(self.field_names()))
        if unknown:
            raise ConfigurationError(f"Unknown workflow options: {unknown}. Valid options: {self.field_names()}")
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}

    def validate(self) -> None:
        if not isinstance(self.grid_size, int) or self.grid_size < 1:
            raise ConfigurationError(f"grid_size must be a positive integer, got {self.grid_size!r}")
        if self.grid_type not in constants.GRID_TYPES:
            raise ConfigurationError(f"grid_type must be one of {constants.GRID_TYPES}, got {self.grid_type!r}")
        if not isinstance(self.levels, int) or self.levels < 1:
            raise ConfigurationError(f"levels must be a positive integer, got {self.levels!r}")
        if not isinstance(self.burn_in, int) or self.burn_in < 2:
            raise ConfigurationError(f"burn_in must be an integer >= 2, got {self.burn_in!r}")
        if not (0.0 < float(self.alpha) < 1.0):
            raise ConfigurationError(f"alpha must be in (0, 1), got {self.alpha!r}")
        if not isinstance(self.n_jobs, int) or self.n_jobs == 0 or self.n_jobs < -1:
            raise ConfigurationError(f"n_jobs must be -1 (all cores) or a positive integer, got {self.n_jobs!r}")
        if self.seed is not None and (not isinstance(self.seed, int) or self.seed < 0):
            raise ConfigurationError(f"seed must be a non-negative integer or None, got {self.seed!r}")
        if not isinstance(self.max_failures, int) or self.max_failures < 0:
            raise ConfigurationError(f"max_failures must be a non-negative integer, got {self.max_failures!r}")
        if self.adjust not in constants.ADJUST_METHODS:
            raise ConfigurationError(f"adjust must be one of {constants.ADJUST_METHODS}, got {self.adjust!r}")
        if not isinstance(self.num_ties, int) or self.num_ties < 1:
            raise ConfigurationError(f"num_ties must be a positive integer, got {self.num_ties!r}")
        if self.sole_survivor not in constants.SOLE_SURVIVOR_MODES:
            raise ConfigurationError(
                f"sole_survivor must be one of {constants.SOLE_SURVIVOR_MODES}, got {self.sole_survivor!r}"
            )
        if self.elimination_policy not in constants.ELIMINATION_POLICIES:
            raise ConfigurationError(
                f"elimination_policy must be one of {constants.ELIMINATION_POLICIES}, got {self.elimination_policy!r}"
            )
        if self.metrics is None or (not isinstance(self.metrics, str) and len(self.metrics) == 0):
            raise ConfigurationError("metrics must name at least one metric.")
