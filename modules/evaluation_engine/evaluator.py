import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from modules.evaluation_engine.metrics import MetricSet
from modules.resampling import Fold, ResamplePlan
from utils.exceptions import FitError


@dataclass(frozen=True)
class FitFailure:
    """Marker stored in place of a metric value when the fit/predict step failed."""
    message: str


def is_failure(value: Any) -> bool:
    return isinstance(value, FitFailure)


class Evaluator:
    """
    Fits one workflow under one candidate on one fold and scores it.

    The evaluator holds no mutable state: each call reads the shared, read-only
    resample plan and returns a fresh mapping, so calls for distinct
    (candidate, fold) pairs can run concurrently in joblib workers.
    """

    def __init__(self, resample_plan: ResamplePlan, logger: Optional[logging.Logger] = None):
        self.resample_plan = resample_plan
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(self, workflow, candidate, fold: Fold, metrics: MetricSet) -> Dict[str, Union[float, FitFailure]]:
        """
        Returns {metric_name: value}. Any error raised by the preprocessor, the
        model or a metric turns every metric into a FitFailure marker.
        """
        try:
            return self._fit_and_score(workflow, candidate, fold, metrics)
        except Exception as e:
            error = FitError(f"{type(e).__name__}: {e}")
            self.logger.warning(
                f"[{workflow.id}] {candidate.id} failed on {fold.id}: {error}"
            )
            return {name: FitFailure(str(error)) for name in metrics.names}

    def _fit_and_score(self, workflow, candidate, fold: Fold, metrics: MetricSet) -> Dict[str, float]:
        train = self.resample_plan.training(fold)
        test = self.resample_plan.testing(fold)

        state, train_t = workflow.preprocessor.fit_transform(train)
        test_t = workflow.preprocessor.apply(state, test)

        artifact = workflow.model.fit(train_t, candidate.params)

        # Predict once per prediction type, then score every metric in one pass
        predictions: Dict[str, Any] = {}
        scores: Dict[str, float] = {}
        for metric in metrics:
            kind = 'prob' if metric.prediction_type == 'prob' else 'point'
            if kind not in predictions:
                if kind == 'prob':
                    if not hasattr(workflow.model, 'predict_proba'):
                        raise FitError(f"Metric '{metric.name}' needs class probabilities but the model has no predict_proba.")
                    predictions[kind] = workflow.model.predict_proba(artifact, test_t)
                else:
                    predictions[kind] = workflow.model.predict(artifact, test_t)
            scores[metric.name] = metric(predictions[kind], test_t.y)
        return scores
