"""
ResamplePlan for the Workflow Racing Pipeline.

A plan is an ordered collection of fixed train/test partitions over one
dataset. It is built once (usually from a scikit-learn splitter) and then
consumed read-only: every workflow of a run iterates over the same folds in
the same order, which is what makes scores comparable fold by fold.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd

from utils.exceptions import ConfigurationError


class Partition(NamedTuple):
    """Predictors and outcome of one side of a fold."""
    X: Any
    y: Any


@dataclass(frozen=True)
class Fold:
    """One train/test partition. `position` is its 0-based place in the plan."""
    position: int
    id: str
    train_index: np.ndarray = field(repr=False)
    test_index: np.ndarray = field(repr=False)
    repeat: Optional[int] = None

    @property
    def number(self) -> int:
        """1-based fold number (number of folds consumed once this one is done)."""
        return self.position + 1


def _take(data: Any, index: np.ndarray) -> Any:
    if isinstance(data, (pd.DataFrame, pd.Series)):
        return data.iloc[index]
    return np.asarray(data)[index]


class ResamplePlan:
    """
    Ordered, immutable sequence of folds over (X, y).

    Fold ids and ordering are fixed at construction; `folds` returns a tuple so
    callers cannot reorder the plan in place.
    """

    def __init__(self, X: Any, y: Any, folds: Sequence[Fold]):
        self.X = X
        self.y = y
        self._folds = tuple(folds)
        self._validate()

    # ------------------------------------------------------------------ #
    # Construction                                                       #
    # ------------------------------------------------------------------ #
    @classmethod
    def from_splits(cls, X: Any, y: Any, splits: Sequence[tuple], n_repeats: int = 1) -> "ResamplePlan":
        """
        Build a plan from explicit (train_index, test_index) pairs.

        With n_repeats > 1 the splits are assumed to be grouped repeat by repeat
        (the order scikit-learn's Repeated* splitters produce).
        """
        splits = list(splits)
        if n_repeats < 1:
            raise ConfigurationError(f"n_repeats must be >= 1, got {n_repeats}")
        if len(splits) % n_repeats != 0:
            raise ConfigurationError(
                f"Number of splits ({len(splits)}) is not a multiple of n_repeats ({n_repeats})."
            )
        per_repeat = len(splits) // n_repeats
        width = max(2, len(str(per_repeat)))

        folds = []
        for position, (train_idx, test_idx) in enumerate(splits):
            fold_no = position % per_repeat + 1
            if n_repeats > 1:
                repeat = position // per_repeat + 1
                fold_id = f"Repeat{repeat}_Fold{fold_no:0{width}d}"
            else:
                repeat = None
                fold_id = f"Fold{fold_no:0{width}d}"
            folds.append(Fold(
                position=position,
                id=fold_id,
                train_index=np.asarray(train_idx, dtype=int),
                test_index=np.asarray(test_idx, dtype=int),
                repeat=repeat,
            ))
        return cls(X, y, folds)

    @classmethod
    def from_splitter(cls, splitter: Any, X: Any, y: Any, groups: Any = None) -> "ResamplePlan":
        """Materialize a scikit-learn splitter (KFold, RepeatedStratifiedKFold, ...)."""
        splits = list(splitter.split(X, y, groups))
        n_repeats = getattr(splitter, 'n_repeats', 1) or 1
        logging.getLogger(__name__).debug(
            f"Materialized {len(splits)} splits from {splitter.__class__.__name__}"
        )
        return cls.from_splits(X, y, splits, n_repeats=n_repeats)

    def _validate(self) -> None:
        if not self._folds:
            raise ConfigurationError("A resample plan needs at least one fold.")
        n_rows = len(self.X)
        if len(self.y) != n_rows:
            raise ConfigurationError(f"X has {n_rows} rows but y has {len(self.y)}.")

        seen = set()
        for expected, fold in enumerate(self._folds):
            if fold.position != expected:
                raise ConfigurationError(
                    f"Fold '{fold.id}' has position {fold.position}, expected {expected}."
                )
            if fold.id in seen:
                raise ConfigurationError(f"Duplicate fold id '{fold.id}'.")
            seen.add(fold.id)
            if len(fold.train_index) == 0 or len(fold.test_index) == 0:
                raise ConfigurationError(f"Fold '{fold.id}' has an empty train or test partition.")
            for idx in (fold.train_index, fold.test_index):
                if idx.min() < 0 or idx.max() >= n_rows:
                    raise ConfigurationError(f"Fold '{fold.id}' indexes rows outside the data.")

    # ------------------------------------------------------------------ #
    # Access                                                             #
    # ------------------------------------------------------------------ #
    @property
    def folds(self) -> tuple:
        return self._folds

    @property
    def fold_ids(self) -> List[str]:
        return [f.id for f in self._folds]

    @property
    def n_predictors(self) -> int:
        shape = np.shape(self.X)
        return int(shape[1]) if len(shape) > 1 else 1

    @property
    def n_rows(self) -> int:
        return int(len(self.X))

    def training(self, fold: Fold) -> Partition:
        return Partition(_take(self.X, fold.train_index), _take(self.y, fold.train_index))

    def testing(self, fold: Fold) -> Partition:
        return Partition(_take(self.X, fold.test_index), _take(self.y, fold.test_index))

    def __len__(self) -> int:
        return len(self._folds)

    def __iter__(self) -> Iterator[Fold]:
        return iter(self._folds)

    def __getitem__(self, position: int) -> Fold:
        return self._folds[position]

    def __repr__(self) -> str:
        return f"ResamplePlan(n_folds={len(self)}, n_rows={self.n_rows}, n_predictors={self.n_predictors})"
