"""
Metric capability: a named scoring function with a declared optimization
direction. Built-ins wrap `sklearn.metrics`; callers may register their own.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence, Union

import numpy as np
from sklearn import metrics as skm

from utils.exceptions import ConfigurationError

MINIMIZE = "minimize"
MAXIMIZE = "maximize"


@dataclass(frozen=True)
class Metric:
    """
    `func(y_true, y_pred) -> float` in scikit-learn argument order.

    Calling the metric uses the collaborator order `(predictions, truth)`.
    prediction_type is 'numeric', 'class' or 'prob'; 'prob' metrics are fed
    the model's `predict_proba` output.
    """
    name: str
    func: Callable
    direction: str = MINIMIZE
    prediction_type: str = "numeric"

    def __post_init__(self):
        if self.direction not in (MINIMIZE, MAXIMIZE):
            raise ConfigurationError(f"Metric '{self.name}': direction must be '{MINIMIZE}' or '{MAXIMIZE}'.")
        if self.prediction_type not in ("numeric", "class", "prob"):
            raise ConfigurationError(f"Metric '{self.name}': unknown prediction_type '{self.prediction_type}'.")

    @property
    def minimize(self) -> bool:
        return self.direction == MINIMIZE

    def __call__(self, predictions, truth) -> float:
        return float(self.func(truth, predictions))


def _rmse(y_true, y_pred):
    return float(np.sqrt(skm.mean_squared_error(y_true, y_pred)))


def _roc_auc(y_true, y_score):
    y_score = np.asarray(y_score)
    if y_score.ndim == 2 and y_score.shape[1] == 2:
        y_score = y_score[:, 1]
    multi = 'ovr' if np.ndim(y_score) == 2 else 'raise'
    return skm.roc_auc_score(y_true, y_score, multi_class=multi)


BUILTIN_METRICS: Dict[str, Metric] = {
    # Regression
    'rmse': Metric('rmse', _rmse, MINIMIZE),
    'mae': Metric('mae', skm.mean_absolute_error, MINIMIZE),
    'mape': Metric('mape', skm.mean_absolute_percentage_error, MINIMIZE),
    'rsq': Metric('rsq', skm.r2_score, MAXIMIZE),
    # Classification
    'accuracy': Metric('accuracy', skm.accuracy_score, MAXIMIZE, 'class'),
    'balanced_accuracy': Metric('balanced_accuracy', skm.balanced_accuracy_score, MAXIMIZE, 'class'),
    'f1': Metric('f1', skm.f1_score, MAXIMIZE, 'class'),
    'kappa': Metric('kappa', skm.cohen_kappa_score, MAXIMIZE, 'class'),
    'roc_auc': Metric('roc_auc', _roc_auc, MAXIMIZE, 'prob'),
    'log_loss': Metric('log_loss', skm.log_loss, MINIMIZE, 'prob'),
}


class MetricSet:
    """Ordered, name-unique collection of metrics. The first one is the primary metric."""

    def __init__(self, metrics: Iterable[Union[str, Metric]]):
        resolved: List[Metric] = []
        for m in metrics:
            if isinstance(m, Metric):
                resolved.append(m)
            elif m in BUILTIN_METRICS:
                resolved.append(BUILTIN_METRICS[m])
            else:
                raise ConfigurationError(f"Unknown metric '{m}'. Available: {sorted(BUILTIN_METRICS)}")
        if not resolved:
            raise ConfigurationError("A metric set needs at least one metric.")
        names = [m.name for m in resolved]
        if len(names) != len(set(names)):
            raise ConfigurationError(f"Duplicate metric names: {names}")
        self._metrics = tuple(resolved)

    @classmethod
    def coerce(cls, metrics: Union["MetricSet", Sequence[Union[str, Metric]], str, Metric]) -> "MetricSet":
        if isinstance(metrics, MetricSet):
            return metrics
        if isinstance(metrics, (str, Metric)):
            return cls([metrics])
        return cls(metrics)

    @property
    def primary(self) -> Metric:
        return self._metrics[0]

    @property
    def names(self) -> List[str]:
        return [m.name for m in self._metrics]

    def get(self, name: str) -> Metric:
        for m in self._metrics:
            if m.name == name:
                return m
        raise ConfigurationError(f"Metric '{name}' is not part of the metric set {self.names}.")

    def __iter__(self):
        return iter(self._metrics)

    def __len__(self) -> int:
        return len(self._metrics)
