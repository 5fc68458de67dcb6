"""
Tuning strategies.

A Tuner turns one workflow and the shared resample plan into a
WorkflowResult. Both strategies drive the same RacingController; the grid
tuner simply runs it without an elimination policy, so every candidate is
scored on every fold.
"""
import abc
import logging
from typing import Optional

from modules.racing import EliminationPolicy, RacingController, WorkflowResult, make_policy
from modules.resampling import ResamplePlan
from modules.workflow import Workflow, WorkflowOptions
from utils.exceptions import ConfigurationError


class Tuner(abc.ABC):
    """Strategy interface: `evaluate(workflow, resample_plan, options) -> WorkflowResult`."""

    name = "abstract"

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    @abc.abstractmethod
    def policy(self, options: WorkflowOptions) -> Optional[EliminationPolicy]:
        raise NotImplementedError

    def controller(self, workflow: Workflow, resample_plan: ResamplePlan,
                   options: Optional[WorkflowOptions] = None) -> RacingController:
        options = options or WorkflowOptions()
        return RacingController(
            workflow,
            resample_plan,
            options=options,
            policy=self.policy(options),
            logger=self.logger,
            tuner_name=self.name,
        )

    def evaluate(self, workflow: Workflow, resample_plan: ResamplePlan,
                 options: Optional[WorkflowOptions] = None) -> WorkflowResult:
        return self.controller(workflow, resample_plan, options).run()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class GridTuner(Tuner):
    """Full grid evaluation: every candidate on every fold, no elimination."""

    name = "grid"

    def policy(self, options: WorkflowOptions) -> None:
        return None


class RacingTuner(Tuner):
    """
    Racing with interim elimination.

    `policy` overrides the per-workflow `elimination_policy` option with a
    ready-made policy instance (useful for custom tests).
    """

    name = "race"

    def __init__(self, policy: Optional[EliminationPolicy] = None, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self._policy = policy

    def policy(self, options: WorkflowOptions) -> EliminationPolicy:
        if self._policy is not None:
            return self._policy
        return make_policy(options.elimination_policy, alpha=options.alpha,
                           adjust=options.adjust, logger=self.logger)


TUNERS = {
    GridTuner.name: GridTuner,
    RacingTuner.name: RacingTuner,
}


def get_tuner(name: str, logger: Optional[logging.Logger] = None) -> Tuner:
    """Look up a tuner by its config name ('race' or 'grid')."""
    if name not in TUNERS:
        raise ConfigurationError(f"Unknown tuning strategy '{name}'. Available: {sorted(TUNERS)}")
    return TUNERS[name](logger=logger)
