import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from modules.parameter_space import ParameterSpace
from modules.racing import RacingController, WorkflowResult
from modules.resampling import ResamplePlan
from modules.result_store import SCORE_COLUMNS, rank_summary
from modules.tuners import Tuner
from modules.workflow import Workflow, WorkflowOptions
from utils import constants
from utils.exceptions import (
    ConfigurationError,
    DuplicateWorkflowIdError,
    UnknownWorkflowIdError,
)

STATUS_COLUMNS = [
    'wflow_id', 'wflow_order', 'preprocessor', 'model', 'tuner', 'status',
    'n_candidates', 'n_surviving', 'error',
]


@dataclass
class _Entry:
    workflow: Workflow
    options: Dict[str, Any] = field(default_factory=dict)
    result: Optional[WorkflowResult] = None


def _named(items: Union[Mapping[str, Any], Sequence[Any]]) -> List[tuple]:
    if isinstance(items, Mapping):
        return list(items.items())
    return [(getattr(item, 'name', item.__class__.__name__), item) for item in items]


class WorkflowSet:
    """
    Named, ordered collection of workflows evaluated against one resample plan.

    Entries keep their insertion order, which is also the tie-break order of
    `rank`. Each entry carries its own execution options and, after
    `evaluate`, its own WorkflowResult; a failure in one entry never stops
    the others.
    """

    def __init__(self, workflows: Optional[Sequence[Workflow]] = None,
                 logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        for wf in workflows or ():
            self.add(wf)

    # ------------------------------------------------------------------ #
    # Construction                                                       #
    # ------------------------------------------------------------------ #
    @classmethod
    def from_cross(cls, preprocessors: Union[Mapping[str, Any], Sequence[Any]],
                   models: Mapping[str, Any], cross: bool = True,
                   logger: Optional[logging.Logger] = None) -> "WorkflowSet":
        """
        Build `<preprocessor>_<model>` workflows from every pair (cross=True)
        or from pairs matched by position (cross=False).

        A model value is either a model object or a `(model, param_space)`
        tuple; the space may also be given as a plain config dict.
        """
        preps = _named(preprocessors)
        mods = _named(models)
        if cross:
            pairs = [(p, m) for p in preps for m in mods]
        else:
            if len(preps) != len(mods):
                raise ConfigurationError(
                    f"cross=False needs as many preprocessors ({len(preps)}) as models ({len(mods)})."
                )
            pairs = list(zip(preps, mods))

        wset = cls(logger=logger)
        for (p_name, prep), (m_name, spec) in pairs:
            model, space = spec if isinstance(spec, tuple) else (spec, None)
            if not isinstance(space, ParameterSpace):
                space = ParameterSpace.from_dict(space)
            wset.add(Workflow(f"{p_name}_{m_name}", prep, model, space))
        return wset

    def add(self, workflow: Workflow, options: Optional[Dict[str, Any]] = None,
            on_conflict: str = "error") -> str:
        """Add a workflow; returns the id it was stored under."""
        wflow_id = self._resolve_id(workflow, on_conflict)
        if wflow_id != workflow.id:
            self.logger.info(f"Workflow id '{workflow.id}' already taken; stored as '{wflow_id}'.")
            workflow = workflow.renamed(wflow_id)
        entry = _Entry(workflow)
        if options:
            WorkflowOptions.from_dict(options)
            entry.options.update(options)
        self._entries[wflow_id] = entry
        return wflow_id

    def merge(self, other: "WorkflowSet", on_conflict: str = "error") -> "WorkflowSet":
        """Return a new set holding this set's entries followed by `other`'s."""
        merged = WorkflowSet(logger=self.logger)
        for source in (self, other):
            for entry in source._entries.values():
                wflow_id = merged.add(entry.workflow, entry.options, on_conflict=on_conflict)
                merged._entries[wflow_id].result = entry.result
        return merged

    def _resolve_id(self, workflow: Workflow, on_conflict: str) -> str:
        if on_conflict not in ("error", "suffix"):
            raise ConfigurationError(f"on_conflict must be 'error' or 'suffix', got {on_conflict!r}")
        if workflow.id not in self._entries:
            return workflow.id
        if on_conflict == "error":
            raise DuplicateWorkflowIdError(
                f"Workflow id '{workflow.id}' already exists. Use on_conflict='suffix' to rename."
            )
        base = f"{workflow.id}_{workflow.preprocessor_name}_{workflow.model_name}"
        candidate, counter = base, 2
        while candidate in self._entries:
            candidate = f"{base}_{counter}"
            counter += 1
        return candidate

    # ------------------------------------------------------------------ #
    # Options                                                            #
    # ------------------------------------------------------------------ #
    def _entry(self, wflow_id: str) -> _Entry:
        if wflow_id not in self._entries:
            raise UnknownWorkflowIdError(f"Unknown workflow id '{wflow_id}'. Known ids: {self.ids}")
        return self._entries[wflow_id]

    def set_options(self, wflow_ids: Union[str, Sequence[str]], **options) -> "WorkflowSet":
        """Attach execution options to one or more entries (validated immediately)."""
        ids = [wflow_ids] if isinstance(wflow_ids, str) else list(wflow_ids)
        entries = [self._entry(i) for i in ids]
        for entry in entries:
            WorkflowOptions.from_dict({**entry.options, **options})
            entry.options.update(options)
        return self

    def remove_options(self, wflow_id: str, *names: str) -> "WorkflowSet":
        """Drop attached options (all of them when no names are given)."""
        entry = self._entry(wflow_id)
        if not names:
            entry.options.clear()
        for name in names:
            entry.options.pop(name, None)
        return self

    def options(self, wflow_id: str) -> Dict[str, Any]:
        return dict(self._entry(wflow_id).options)

    def resolved_options(self, wflow_id: str, common_options: Optional[Dict[str, Any]] = None) -> WorkflowOptions:
        """Defaults, then common options, then the entry's own options."""
        return WorkflowOptions.from_dict(common_options).merged(self._entry(wflow_id).options)

    # ------------------------------------------------------------------ #
    # Evaluation                                                         #
    # ------------------------------------------------------------------ #
    def evaluate(self, tuner: Tuner, resample_plan: ResamplePlan,
                 common_options: Optional[Dict[str, Any]] = None,
                 schedule: str = "workflow", verbose: bool = False) -> "WorkflowSet":
        """
        Apply `tuner` to every entry. Results replace any earlier ones.

        schedule='workflow' runs entries one after another, fold by fold.
        schedule='global' advances every entry by one fold per step and sends
        the pending units of all entries to one joblib batch. That batch runs
        with the common n_jobs, so a per-entry n_jobs is rejected there.
        """
        if schedule not in constants.SCHEDULES:
            raise ConfigurationError(f"schedule must be one of {constants.SCHEDULES}, got {schedule!r}")
        if common_options:
            WorkflowOptions.from_dict(common_options)
        if schedule == "global":
            pinned = [w for w, e in self._entries.items() if 'n_jobs' in e.options]
            if pinned:
                raise ConfigurationError(
                    f"Per-workflow n_jobs is not supported with schedule='global' (set on {pinned}); "
                    f"pass n_jobs in common_options instead."
                )

        self.logger.info(
            f"Evaluating {len(self)} workflows with '{tuner.name}' over {len(resample_plan)} folds "
            f"(schedule={schedule})."
        )
        if schedule == "workflow":
            self._evaluate_sequential(tuner, resample_plan, common_options, verbose)
        else:
            self._evaluate_global(tuner, resample_plan, common_options, verbose)

        n_failed = sum(1 for e in self._entries.values() if e.result.is_failed)
        if n_failed:
            self.logger.warning(f"{n_failed} of {len(self)} workflows failed.")
        self.logger.info("Workflow set evaluation complete.")
        return self

    def _fail(self, wflow_id: str, tuner: Tuner, error: Exception) -> None:
        self.logger.error(f"[{wflow_id}] Workflow failed: {type(error).__name__}: {error}", exc_info=True)
        self._entries[wflow_id].result = WorkflowResult.failed(wflow_id, tuner.name, f"{type(error).__name__}: {error}")

    def _evaluate_sequential(self, tuner, resample_plan, common_options, verbose) -> None:
        ids = tqdm(self.ids, desc="Workflows", disable=not verbose)
        for wflow_id in ids:
            entry = self._entries[wflow_id]
            try:
                options = self.resolved_options(wflow_id, common_options)
                entry.result = tuner.evaluate(entry.workflow, resample_plan, options)
            except Exception as e:
                self._fail(wflow_id, tuner, e)

    def _evaluate_global(self, tuner, resample_plan, common_options, verbose) -> None:
        controllers: "OrderedDict[str, RacingController]" = OrderedDict()
        for wflow_id, entry in self._entries.items():
            try:
                ctrl = tuner.controller(entry.workflow, resample_plan,
                                        self.resolved_options(wflow_id, common_options))
                ctrl.initialize()
                controllers[wflow_id] = ctrl
            except Exception as e:
                self._fail(wflow_id, tuner, e)

        n_jobs = WorkflowOptions.from_dict(common_options).n_jobs
        progress = tqdm(total=len(resample_plan), desc="Folds", disable=not verbose)
        while controllers:
            units = [(wflow_id, candidate, fold)
                     for wflow_id, ctrl in controllers.items()
                     for candidate, fold in ctrl.pending_units()]
            scores = Parallel(n_jobs=n_jobs)(
                delayed(controllers[w].evaluator.evaluate)(
                    controllers[w].workflow, candidate, fold, controllers[w].metrics)
                for w, candidate, fold in units
            )

            outcomes: Dict[str, list] = {w: [] for w in controllers}
            for (w, candidate, fold), s in zip(units, scores):
                outcomes[w].append((candidate, fold, s))

            for wflow_id in list(controllers):
                ctrl = controllers[wflow_id]
                try:
                    ctrl.record_fold(outcomes[wflow_id])
                    if ctrl.done:
                        self._entries[wflow_id].result = ctrl.result()
                        del controllers[wflow_id]
                except Exception as e:
                    self._fail(wflow_id, tuner, e)
                    del controllers[wflow_id]
            progress.update(1)
        progress.close()

    # ------------------------------------------------------------------ #
    # Read-only views                                                    #
    # ------------------------------------------------------------------ #
    def _completed(self) -> List[tuple]:
        return [
            (order, e.result)
            for order, e in enumerate(self._entries.values())
            if e.result is not None and not e.result.is_failed
        ]

    def result(self, wflow_id: str) -> Optional[WorkflowResult]:
        return self._entry(wflow_id).result

    def workflow(self, wflow_id: str) -> Workflow:
        return self._entry(wflow_id).workflow

    def collect_scores(self) -> pd.DataFrame:
        """Score rows of every completed workflow; failed workflows contribute nothing."""
        frames = [r.scores() for _, r in self._completed()]
        frames = [f for f in frames if not f.empty]
        if not frames:
            return pd.DataFrame(columns=SCORE_COLUMNS + ['elimination_fold'])
        return pd.concat(frames, ignore_index=True)

    def collect_metrics(self) -> pd.DataFrame:
        """Summary rows (mean, std_err, n, status) of every completed workflow."""
        frames = []
        for order, r in self._completed():
            summary = r.summarize()
            summary.insert(1, 'wflow_order', order)
            frames.append(summary)
        if not frames:
            return pd.DataFrame()
        return pd.concat(frames, ignore_index=True)

    def rank(self, metric: Optional[str] = None, select_best: bool = False) -> pd.DataFrame:
        """
        Rank surviving candidates across the set on one metric (default: the
        primary metric of the first completed workflow). Failed workflows and
        workflows that do not compute the metric are left out.
        """
        completed = self._completed()
        if not completed:
            return pd.DataFrame()
        if metric is None:
            metric = completed[0][1].metrics.primary.name

        directions = {r.metrics.get(metric).minimize for _, r in completed if metric in r.metrics.names}
        if not directions:
            raise ConfigurationError(f"No completed workflow computes metric '{metric}'.")
        if len(directions) > 1:
            raise ConfigurationError(f"Metric '{metric}' has conflicting directions across workflows.")

        summary = self.collect_metrics()
        rows = summary[(summary['metric'] == metric) & (summary['status'] == 'active')]
        return rank_summary(rows, minimize=directions.pop(), select_best=select_best)

    def statuses(self) -> pd.DataFrame:
        rows = []
        for order, (wflow_id, e) in enumerate(self._entries.items()):
            r = e.result
            rows.append({
                'wflow_id': wflow_id,
                'wflow_order': order,
                'preprocessor': e.workflow.preprocessor_name,
                'model': e.workflow.model_name,
                'tuner': r.tuner if r else None,
                'status': r.status if r else 'pending',
                'n_candidates': len(r.candidates) if r and r.candidates is not None else 0,
                'n_surviving': len(r.surviving) if r else 0,
                'error': r.error if r else None,
            })
        return pd.DataFrame(rows, columns=STATUS_COLUMNS)

    @property
    def ids(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, wflow_id: str) -> bool:
        return wflow_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Workflow]:
        return (e.workflow for e in self._entries.values())

    def __repr__(self) -> str:
        return f"WorkflowSet({self.ids})"
