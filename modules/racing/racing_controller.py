"""
RacingController for the Workflow Racing Pipeline.

Drives fold-ordered evaluation of one workflow's candidates and applies the
interim elimination policy. The controller is a small state machine:

    INITIALIZING -> BURN_IN -> RACING -> FINALIZING -> DONE

Each step consumes exactly one fold: every active candidate is evaluated on
it (a barrier), the scores are appended to the ResultStore, and only then are
failure and statistical eliminations applied. `pending_units` and
`record_fold` expose that step so a scheduler can batch the units of several
workflows into one parallel queue; `run` drives a single workflow alone.
"""
import logging
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from joblib import Parallel, delayed

from modules.candidate_grid import Candidate, CandidateGridGenerator
from modules.evaluation_engine import Evaluator, MetricSet, is_failure
from modules.racing.elimination_policy import EliminationPolicy
from modules.racing.elimination_state import EliminationState
from modules.racing.workflow_result import WorkflowResult
from modules.resampling import Fold, ResamplePlan
from modules.result_store import ResultStore, Score
from modules.workflow import Workflow, WorkflowOptions
from utils import constants
from utils.exceptions import WorkflowFailure

Unit = Tuple[Candidate, Fold]
Outcome = Tuple[Candidate, Fold, Dict[str, Any]]


class RaceState(str, Enum):
    INITIALIZING = "initializing"
    BURN_IN = "burn_in"
    RACING = "racing"
    FINALIZING = "finalizing"
    DONE = "done"


class RacingController:
    """
    Orchestrates the evaluation of one workflow over a resample plan.

    With `policy=None` no candidate is ever eliminated and every candidate is
    evaluated on every fold (full grid evaluation).
    """

    def __init__(self, workflow: Workflow, resample_plan: ResamplePlan,
                 options: Optional[WorkflowOptions] = None,
                 policy: Optional[EliminationPolicy] = None,
                 logger: Optional[logging.Logger] = None,
                 evaluator: Optional[Evaluator] = None,
                 tuner_name: str = "race"):
        self.workflow = workflow
        self.resample_plan = resample_plan
        self.options = options or WorkflowOptions()
        self.policy = policy
        self.logger = logger or logging.getLogger(__name__)
        self.evaluator = evaluator or Evaluator(resample_plan, self.logger)
        self.tuner_name = tuner_name

        self.metrics = MetricSet.coerce(self.options.metrics)
        self.race_metric = (
            self.metrics.get(self.options.race_metric) if self.options.race_metric else self.metrics.primary
        )

        # State Tracking
        self.state = RaceState.INITIALIZING
        self.candidates = None
        self.elimination: Optional[EliminationState] = None
        self.store = ResultStore(workflow.id)
        self.race_log: List[Dict[str, Any]] = []
        self._next_fold = 0
        self._ties = 0

    @property
    def wflow_id(self) -> str:
        return self.workflow.id

    @property
    def done(self) -> bool:
        return self.state == RaceState.DONE

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def initialize(self) -> None:
        """Resolve data-dependent bounds, generate the grid and activate every candidate."""
        if self.state != RaceState.INITIALIZING:
            raise WorkflowFailure(f"[{self.wflow_id}] Controller already initialized.")

        space = self.workflow.param_space.finalize(
            n_predictors=self.resample_plan.n_predictors,
            n_rows=self.resample_plan.n_rows,
        )
        generator = CandidateGridGenerator(
            size=self.options.grid_size,
            grid_type=self.options.grid_type,
            levels=self.options.levels,
            seed=self.options.seed,
            logger=self.logger,
        )
        self.candidates = generator.generate(self.wflow_id, space, grid=self.options.grid)
        self.elimination = EliminationState(self.candidates)

        if self.policy is not None and len(self.resample_plan) <= self.options.burn_in:
            self.logger.warning(
                f"[{self.wflow_id}] Plan has {len(self.resample_plan)} folds, not more than burn_in="
                f"{self.options.burn_in}; at most one interim analysis will run."
            )

        self.state = RaceState.BURN_IN
        self.logger.info(
            f"[{self.wflow_id}] {len(self.candidates)} candidates over {len(self.resample_plan)} folds "
            f"({self.tuner_name}, metric={self.race_metric.name})."
        )

    def pending_units(self) -> List[Unit]:
        """(candidate, fold) pairs that must complete before the next elimination step."""
        if self.state not in (RaceState.BURN_IN, RaceState.RACING):
            return []
        fold = self.resample_plan[self._next_fold]
        return [(self.candidates[i], fold) for i in self.elimination.active]

    def execute_units(self, units: Sequence[Unit]) -> List[Outcome]:
        """Evaluate units with joblib; order of the returned outcomes matches `units`."""
        scores = Parallel(n_jobs=self.options.n_jobs)(
            delayed(self.evaluator.evaluate)(self.workflow, candidate, fold, self.metrics)
            for candidate, fold in units
        )
        return [(candidate, fold, s) for (candidate, fold), s in zip(units, scores)]

    def record_fold(self, outcomes: Sequence[Outcome]) -> None:
        """
        Barrier step: store the current fold's outcomes for every active
        candidate, then apply failure and statistical elimination.
        """
        if self.state not in (RaceState.BURN_IN, RaceState.RACING):
            raise WorkflowFailure(f"[{self.wflow_id}] Cannot record scores in state '{self.state.value}'.")

        fold = self.resample_plan[self._next_fold]
        expected = {self.candidates[i].id for i in self.elimination.active}
        received = [c.id for c, f, _ in outcomes if f.position == fold.position]
        if len(received) != len(outcomes) or set(received) != expected or len(received) != len(expected):
            raise WorkflowFailure(
                f"[{self.wflow_id}] Incomplete barrier on {fold.id}: expected {sorted(expected)}, got {sorted(received)}."
            )

        for candidate, _, values in sorted(outcomes, key=lambda o: o[0].index):
            self.store.extend(self._to_scores(candidate, fold, values))
        self._next_fold += 1
        self.logger.debug(f"[{self.wflow_id}] {fold.id} complete for {len(expected)} candidates.")

        if self.policy is not None:
            self._apply_failure_policy(fold)
            if fold.number >= self.options.burn_in and self.elimination.n_active >= 2:
                self._interim_analysis(fold)

        self._advance(fold)

    def run(self) -> WorkflowResult:
        """Drive the state machine to completion for this workflow alone."""
        if self.state == RaceState.INITIALIZING:
            self.initialize()
        while not self.done:
            self.record_fold(self.execute_units(self.pending_units()))
        return self.result()

    def result(self) -> WorkflowResult:
        if not self.done:
            raise WorkflowFailure(f"[{self.wflow_id}] Race not finished (state '{self.state.value}').")
        return WorkflowResult(
            wflow_id=self.wflow_id,
            tuner=self.tuner_name,
            metrics=self.metrics,
            candidates=self.candidates,
            store=self.store,
            eliminations=self.elimination.by_candidate_id(),
            race_log=list(self.race_log),
            n_folds=len(self.resample_plan),
        )

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #
    def _to_scores(self, candidate: Candidate, fold: Fold, values: Dict[str, Any]) -> List[Score]:
        scores = []
        for name in self.metrics.names:
            value = values.get(name)
            if value is None or is_failure(value):
                scores.append(Score(
                    wflow_id=self.wflow_id, candidate_id=candidate.id, fold_id=fold.id,
                    fold_position=fold.position, metric=name, value=math.nan, failed=True,
                    error=value.message if value is not None else "metric not returned",
                ))
            else:
                scores.append(Score(
                    wflow_id=self.wflow_id, candidate_id=candidate.id, fold_id=fold.id,
                    fold_position=fold.position, metric=name, value=float(value),
                ))
        return scores

    def _apply_failure_policy(self, fold: Fold) -> None:
        over = [
            i for i in self.elimination.active
            if self.store.failure_count(self.candidates[i].id) > self.options.max_failures
        ]
        if not over:
            return
        if len(over) == self.elimination.n_active:
            raise WorkflowFailure(
                f"[{self.wflow_id}] All candidates failed more than {self.options.max_failures} times."
            )
        for i in over:
            failures = self.store.failure_count(self.candidates[i].id)
            self.elimination.eliminate(
                i, fold.id, fold.number, constants.REASON_FIT_FAILURE,
                detail=f"{failures} failed folds",
            )
            self.logger.info(
                f"[{self.wflow_id}] {self.candidates[i].id} eliminated at {fold.id}: {failures} failed fits."
            )

    def _mean(self, index: int) -> float:
        vals = list(self.store.values(self.candidates[index].id, self.race_metric.name).values())
        return float(np.mean(vals)) if vals else math.nan

    def _best(self, active: Sequence[int]) -> int:
        sign = 1.0 if self.race_metric.minimize else -1.0

        def key(i):
            m = self._mean(i)
            return (math.inf if math.isnan(m) else sign * m, i)

        # A leader needs at least two scored folds to anchor any interval
        scored = [i for i in active if len(self.store.values(self.candidates[i].id, self.race_metric.name)) >= 2]
        return min(scored or active, key=key)

    def _interim_analysis(self, fold: Fold) -> None:
        active = self.elimination.active
        values = {i: self.store.values(self.candidates[i].id, self.race_metric.name) for i in active}
        best = self._best(active)
        competitors = [i for i in active if i != best]

        comparisons = self.policy.compare(best, competitors, values, self.race_metric.minimize)
        eliminated = []
        fallback = False
        for comp in comparisons:
            fallback = fallback or comp.fallback
            if not comp.eliminate:
                continue
            reason = constants.REASON_MEAN_COMPARISON if comp.fallback else constants.REASON_STATISTICAL
            detail = f"diff={comp.mean_diff:.6g}, lower={comp.lower_bound:.6g}, n={comp.n_folds}"
            self.elimination.eliminate(comp.candidate_index, fold.id, fold.number, reason, detail)
            eliminated.append(self.candidates[comp.candidate_index].id)

        if eliminated or len(active) != 2:
            self._ties = 0
        else:
            self._ties += 1
            if self._ties >= self.options.num_ties:
                loser = competitors[0]
                self.elimination.eliminate(
                    loser, fold.id, fold.number, constants.REASON_TIE_BREAK,
                    detail=f"no decision after {self._ties} analyses",
                )
                eliminated.append(self.candidates[loser].id)
                self._ties = 0

        if eliminated:
            self.logger.info(
                f"[{self.wflow_id}] {fold.id}: eliminated {eliminated}; "
                f"{self.elimination.n_active} of {len(self.candidates)} remain (best {self.candidates[best].id})."
            )
        self.race_log.append({
            'wflow_id': self.wflow_id,
            'fold_id': fold.id,
            'fold_number': fold.number,
            'n_active_before': len(active),
            'n_active_after': self.elimination.n_active,
            'best_candidate': self.candidates[best].id,
            'eliminated': ",".join(eliminated),
            'fallback': fallback,
        })

    def _advance(self, fold: Fold) -> None:
        finished = self._next_fold >= len(self.resample_plan)
        sole_survivor_stop = (
            self.policy is not None
            and self.options.sole_survivor == "stop"
            and len(self.candidates) > 1
            and self.elimination.n_active == 1
        )
        if finished or sole_survivor_stop:
            if sole_survivor_stop and not finished:
                self.logger.info(f"[{self.wflow_id}] One candidate left after {fold.id}; stopping early.")
            self.state = RaceState.FINALIZING
            self._finalize()
        elif fold.number >= self.options.burn_in and self.state == RaceState.BURN_IN:
            self.state = RaceState.RACING

    def _finalize(self) -> None:
        if all(self.store.failure_count(c.id) == len(self.store.scored_folds(c.id)) for c in self.candidates):
            raise WorkflowFailure(f"[{self.wflow_id}] Every candidate failed on every fold.")
        self.store.freeze()
        self.state = RaceState.DONE
        self.logger.info(
            f"[{self.wflow_id}] Done: {self.elimination.n_active} surviving candidates, "
            f"{len(self.store)} scores."
        )
