import json
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from modules.base.base_engine import BaseEngine
from modules.workflow_set import WorkflowSet
from utils import constants
from utils.error_handling import handle_engine_errors
from utils.file_io import save_dataframe, save_json


class ReportingEngine(BaseEngine):
    """
    Writes the tables of an evaluated WorkflowSet to `02_TuningResults`.

    Artifacts:
    - scores.parquet: one row per (workflow, candidate, fold, metric).
    - summary.parquet: mean / std_err / n per (workflow, candidate, metric).
    - ranking.parquet: surviving candidates ranked on the racing metric.
    - workflow_status.parquet: completed / failed status per workflow.
    - race_log.parquet: every interim analysis of every racing workflow.
    - best_configurations.json: the best candidate of each workflow.
    """

    def _get_engine_directory_name(self) -> str:
        return constants.TUNING_RESULTS_DIR

    @handle_engine_errors("Result reporting")
    def execute(self, workflow_set: WorkflowSet, metric: Optional[str] = None) -> Dict[str, Path]:
        self.logger.info(f"Writing tuning results for {len(workflow_set)} workflows...")

        scores = workflow_set.collect_scores()
        summary = self._flatten_params(workflow_set.collect_metrics())
        ranking = self._flatten_params(workflow_set.rank(metric=metric))
        statuses = workflow_set.statuses()
        race_log = self._race_log(workflow_set)

        paths = {
            'scores': self._save(scores, constants.SCORES_FILE),
            'summary': self._save(summary, constants.SUMMARY_FILE),
            'ranking': self._save(ranking, constants.RANKING_FILE),
            'workflow_status': self._save(statuses, constants.WORKFLOW_STATUS_FILE),
            'race_log': self._save(race_log, constants.RACE_LOG_FILE),
        }
        paths['best_configurations'] = save_json(
            self._best_configurations(workflow_set, metric),
            self.output_dir / constants.BEST_CONFIGURATIONS_FILE,
        )

        if not ranking.empty:
            top = ranking.iloc[0]
            self.logger.info(
                f"Best overall: {top['wflow_id']} / {top['candidate_id']} "
                f"({top['metric']} = {top['mean']:.6g}, n = {top['n']})"
            )
        self.logger.info(f"Tuning results saved to {self.output_dir}")
        return paths

    def _save(self, df: pd.DataFrame, filename: str) -> Path:
        return save_dataframe(df, self.output_dir / filename, excel_copy=self.excel_copy)

    @staticmethod
    def _flatten_params(df: pd.DataFrame) -> pd.DataFrame:
        # Parameter dicts have mixed value types per workflow; store them as JSON text
        if 'params' not in df.columns:
            return df
        out = df.copy()
        out['params'] = out['params'].map(lambda p: json.dumps(p, sort_keys=True, default=str))
        return out

    @staticmethod
    def _race_log(workflow_set: WorkflowSet) -> pd.DataFrame:
        frames = []
        for wflow_id in workflow_set.ids:
            result = workflow_set.result(wflow_id)
            if result is not None and not result.is_failed and result.race_log:
                frames.append(result.race_log_frame())
        if not frames:
            return pd.DataFrame(columns=['wflow_id', 'fold_id'])
        return pd.concat(frames, ignore_index=True)

    @staticmethod
    def _best_configurations(workflow_set: WorkflowSet, metric: Optional[str]) -> Dict[str, Any]:
        best: Dict[str, Any] = {}
        for wflow_id in workflow_set.ids:
            result = workflow_set.result(wflow_id)
            if result is None:
                continue
            if result.is_failed:
                best[wflow_id] = {'status': result.status, 'error': result.error}
                continue
            m = metric if metric in result.metrics.names else result.metrics.primary.name
            top = result.show_best(metric=m, n=1)
            if top.empty:
                best[wflow_id] = {'status': result.status, 'metric': m, 'candidate_id': None}
                continue
            row = top.iloc[0]
            best[wflow_id] = {
                'status': result.status,
                'metric': m,
                'candidate_id': row['candidate_id'],
                'mean': row['mean'],
                'std_err': row['std_err'],
                'n': row['n'],
                'params': row['params'],
            }
        return best
