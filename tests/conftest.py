"""
Shared fixtures.

`ScriptedModel` makes racing behaviour deterministic: each design row holds
the index of the fold it is tested in, and the model predicts the scripted
score of (candidate level, fold) for every test row. With y == 0 and the
'mae' metric, the observed score is exactly the scripted value.
"""
import numpy as np
import pytest
from unittest.mock import MagicMock

from modules.model_factory import IdentityPreprocessor
from modules.parameter_space import Categorical, ParameterSpace
from modules.resampling import ResamplePlan
from modules.workflow import Workflow

ROWS_PER_FOLD = 2


class ScriptedModel:
    """Predicts `table[params['level']][fold]`; a None entry raises on that fold."""

    name = "scripted"

    def __init__(self, table, offset=0.0):
        self.table = table
        self.offset = offset

    def fit(self, partition, params):
        return params.get('level', 0.0)

    def predict(self, artifact, partition):
        fold = int(np.asarray(partition.X)[0, 0])
        if isinstance(artifact, (int, float)):
            value = artifact + self.offset + 0.01 * ((fold % 3) - 1)
        else:
            value = self.table[artifact][fold]
        if value is None:
            raise RuntimeError(f"scripted failure on fold {fold}")
        return np.full(len(partition.y), float(value))


def make_plan(n_folds=10):
    n = n_folds * ROWS_PER_FOLD
    X = (np.arange(n) // ROWS_PER_FOLD).reshape(-1, 1).astype(float)
    y = np.zeros(n)
    splits = []
    for k in range(n_folds):
        test = np.arange(k * ROWS_PER_FOLD, (k + 1) * ROWS_PER_FOLD)
        train = np.setdiff1d(np.arange(n), test)
        splits.append((train, test))
    return ResamplePlan.from_splits(X, y, splits)


def make_workflow(wflow_id, table, model=None):
    """Workflow whose explicit grid levels are the keys of `table`."""
    space = ParameterSpace([Categorical('level', tuple(table))]) if table else ParameterSpace()
    return Workflow(wflow_id, IdentityPreprocessor(), model or ScriptedModel(table), space)


@pytest.fixture
def mock_logger():
    return MagicMock()


@pytest.fixture
def plan():
    return make_plan(10)


@pytest.fixture
def scripted():
    """Factory: scripted(wflow_id, table) -> (workflow, grid option)."""
    def _make(wflow_id, table):
        return make_workflow(wflow_id, table), [{'level': level} for level in table]
    return _make


@pytest.fixture
def plan_factory():
    return make_plan


@pytest.fixture
def scripted_model_cls():
    return ScriptedModel
