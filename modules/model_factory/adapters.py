"""
Collaborator adapters over scikit-learn.

The racing core only talks to the model/preprocessor contracts:

    model.fit(partition, params) -> artifact
    model.predict(artifact, partition) -> predictions
    preprocessor.fit_transform(partition) -> (state, partition)
    preprocessor.apply(state, partition) -> partition

These classes implement them for estimators and transformers built by
ModelFactory (or passed in directly).
"""
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from sklearn.base import clone
from sklearn.pipeline import make_pipeline

from modules.model_factory.model_factory import ModelFactory
from modules.resampling import Partition


class SklearnModel:
    """Model capability backed by a named ModelFactory estimator or an estimator instance."""

    def __init__(self, estimator: Union[str, Any], fixed_params: Optional[Dict[str, Any]] = None,
                 name: Optional[str] = None):
        self.estimator = estimator
        self.fixed_params = dict(fixed_params or {})
        if name is None:
            name = estimator if isinstance(estimator, str) else estimator.__class__.__name__
        self.name = name

    def _build(self, params: Dict[str, Any]) -> Any:
        merged = {**self.fixed_params, **params}
        if isinstance(self.estimator, str):
            return ModelFactory.create(self.estimator, merged)
        model = clone(self.estimator)
        return model.set_params(**merged) if merged else model

    def fit(self, partition: Partition, params: Dict[str, Any]) -> Any:
        model = self._build(params)
        model.fit(partition.X, partition.y)
        return model

    def predict(self, artifact: Any, partition: Partition) -> Any:
        return artifact.predict(partition.X)

    def predict_proba(self, artifact: Any, partition: Partition) -> Any:
        return artifact.predict_proba(partition.X)

    def __repr__(self) -> str:
        return f"SklearnModel({self.name})"


class IdentityPreprocessor:
    """Pass-through preprocessing (the 'plain formula' workflow)."""

    name = "plain"

    def fit_transform(self, partition: Partition) -> Tuple[None, Partition]:
        return None, partition

    def apply(self, state: None, partition: Partition) -> Partition:
        return partition

    def __repr__(self) -> str:
        return "IdentityPreprocessor()"


class SklearnPreprocessor:
    """
    Preprocessing capability backed by one or more transformers. Steps may be
    transformer instances or (name, params) pairs resolved through ModelFactory.
    """

    def __init__(self, steps: Sequence[Any], name: Optional[str] = None):
        if not steps:
            raise ValueError("SklearnPreprocessor needs at least one step; use IdentityPreprocessor instead.")
        self.steps = list(steps)
        self.name = name or "_".join(self._step_name(s) for s in self.steps)

    @staticmethod
    def _step_name(step: Any) -> str:
        if isinstance(step, str):
            return step
        if isinstance(step, (tuple, list)):
            return step[0]
        return step.__class__.__name__

    def _build(self) -> Any:
        transformers = []
        for step in self.steps:
            if isinstance(step, str):
                transformers.append(ModelFactory.create_preprocessor(step))
            elif isinstance(step, (tuple, list)):
                transformers.append(ModelFactory.create_preprocessor(step[0], step[1] if len(step) > 1 else None))
            else:
                transformers.append(clone(step))
        return make_pipeline(*transformers)

    def fit_transform(self, partition: Partition) -> Tuple[Any, Partition]:
        pipeline = self._build()
        X_t = pipeline.fit_transform(partition.X, partition.y)
        return pipeline, Partition(X_t, partition.y)

    def apply(self, state: Any, partition: Partition) -> Partition:
        return Partition(state.transform(partition.X), partition.y)

    def __repr__(self) -> str:
        return f"SklearnPreprocessor({self.name})"
