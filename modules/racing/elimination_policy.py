"""
Interim elimination policies.

A policy receives the current best candidate and its active competitors,
each with its racing-metric values keyed by fold position, and decides for
every competitor whether it is clearly worse than the best. Differences are
oriented so that a positive value always means "worse than the best".

Policies fall back to a plain mean comparison (flagged `fallback=True`)
whenever an interval cannot be computed, either from zero variance or from
fewer than two paired folds. The fallback applies to the affected pair (or
the blocked ANOVA group) only, never to the whole comparison round.
"""
import abc
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy import stats

from utils import constants
from utils.exceptions import ConfigurationError, StatisticalTestError

# Relative tolerance below which a variance is treated as zero
_ZERO_VARIANCE_TOL = 1e-12

Values = Dict[int, Dict[int, float]]


@dataclass(frozen=True)
class Comparison:
    """Outcome of comparing one competitor against the current best."""
    candidate_index: int
    mean_diff: float
    lower_bound: float
    n_folds: int
    eliminate: bool
    fallback: bool = False
    note: str = ""


def _oriented_diffs(best: Dict[int, float], other: Dict[int, float], minimize: bool) -> np.ndarray:
    shared = sorted(set(best) & set(other))
    diffs = np.array([other[f] - best[f] for f in shared], dtype=float)
    return diffs if minimize else -diffs


def mean_comparison(best_index: int, candidate_index: int, values: Values,
                    minimize: bool, note: str = "") -> Comparison:
    """Eliminate when the mean paired difference on shared folds is worse than the best."""
    diffs = _oriented_diffs(values[best_index], values[candidate_index], minimize)
    if diffs.size == 0:
        return Comparison(candidate_index, math.nan, math.nan, 0, False, True, note or "no shared folds")
    mean_diff = float(diffs.mean())
    return Comparison(candidate_index, mean_diff, math.nan, int(diffs.size),
                      mean_diff > _ZERO_VARIANCE_TOL, True, note)


def paired_t_comparison(best_index: int, candidate_index: int, values: Values,
                        minimize: bool, alpha: float) -> Comparison:
    """One-sided paired t interval for (candidate - best) on their shared folds."""
    diffs = _oriented_diffs(values[best_index], values[candidate_index], minimize)
    n = int(diffs.size)
    if n < 2:
        raise StatisticalTestError(f"only {n} paired fold(s) available")
    sd = float(diffs.std(ddof=1))
    scale = max(1.0, float(np.abs(diffs).max()))
    if sd <= _ZERO_VARIANCE_TOL * scale:
        raise StatisticalTestError("paired differences have zero variance")

    mean_diff = float(diffs.mean())
    t_crit = float(stats.t.ppf(1.0 - alpha, df=n - 1))
    lower = mean_diff - t_crit * sd / math.sqrt(n)
    return Comparison(candidate_index, mean_diff, lower, n, lower > 0)


class EliminationPolicy(abc.ABC):
    """Pluggable interim test behind the racing controller."""

    name = "abstract"

    def __init__(self, alpha: float = constants.DEFAULT_ALPHA, adjust: str = "none",
                 logger: Optional[logging.Logger] = None):
        if not (0.0 < alpha < 1.0):
            raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")
        if adjust not in constants.ADJUST_METHODS:
            raise ConfigurationError(f"adjust must be one of {constants.ADJUST_METHODS}, got {adjust!r}")
        self.alpha = alpha
        self.adjust = adjust
        self.logger = logger or logging.getLogger(__name__)

    def level(self, n_comparisons: int) -> float:
        """One-sided significance level, Bonferroni-adjusted if requested."""
        if self.adjust == "bonferroni" and n_comparisons > 1:
            return self.alpha / n_comparisons
        return self.alpha

    def compare(self, best_index: int, competitors: Sequence[int], values: Values,
                minimize: bool) -> List[Comparison]:
        if not competitors:
            return []
        try:
            return self._compare(best_index, list(competitors), values, minimize)
        except StatisticalTestError as e:
            self.logger.warning(f"Policy fallback ({self.name}): {e}. Using plain mean comparison.")
            return [mean_comparison(best_index, c, values, minimize, note=str(e)) for c in competitors]

    @abc.abstractmethod
    def _compare(self, best_index: int, competitors: List[int], values: Values,
                 minimize: bool) -> List[Comparison]:
        raise NotImplementedError

    def _paired(self, best_index: int, candidate_index: int, values: Values,
                minimize: bool, alpha: float) -> Comparison:
        try:
            return paired_t_comparison(best_index, candidate_index, values, minimize, alpha)
        except StatisticalTestError as e:
            self.logger.warning(f"Policy fallback ({self.name}) for candidate {candidate_index}: {e}.")
            return mean_comparison(best_index, candidate_index, values, minimize, note=str(e))


class PairedTTestPolicy(EliminationPolicy):
    """
    One-sided paired t interval for (competitor - best) on the folds both
    have scores for. The competitor is dropped when the lower bound of the
    interval is above zero.
    """

    name = "paired_t"

    def _compare(self, best_index, competitors, values, minimize):
        alpha = self.level(len(competitors))
        return [self._paired(best_index, c, values, minimize, alpha) for c in competitors]


class AnovaPolicy(EliminationPolicy):
    """
    Repeated-measures (randomized block) ANOVA: metric ~ candidate + fold,
    fitted on the folds the best candidate was scored on. Competitors scored
    on all of those folds share the pooled residual mean square as a common
    standard error; one-sided intervals excluding zero eliminate.

    A competitor missing some of the best's folds (failed fits) is left out
    of the blocked fit and compared on its own paired folds instead, so its
    gaps never shrink the folds used for everyone else.
    """

    name = "anova"

    def _compare(self, best_index, competitors, values, minimize):
        alpha = self.level(len(competitors))
        folds = sorted(values[best_index])
        blocked = [c for c in competitors if set(folds) <= set(values[c])] if len(folds) >= 2 else []

        results = {}
        if blocked:
            try:
                results.update(self._blocked(best_index, blocked, folds, values, minimize, alpha))
            except StatisticalTestError as e:
                self.logger.warning(f"Policy fallback ({self.name}): {e}. Using plain mean comparison.")
                results.update({c: mean_comparison(best_index, c, values, minimize, note=str(e)) for c in blocked})
        for c in competitors:
            if c not in results:
                results[c] = self._paired(best_index, c, values, minimize, alpha)
        return [results[c] for c in competitors]

    def _blocked(self, best_index, blocked, folds, values, minimize, alpha) -> Dict[int, Comparison]:
        members = [best_index] + blocked
        n = len(folds)
        k = len(members)

        Y = np.array([[values[m][f] for f in folds] for m in members], dtype=float)
        if not minimize:
            Y = -Y

        grand = Y.mean()
        row_means = Y.mean(axis=1)
        col_means = Y.mean(axis=0)
        residuals = Y - row_means[:, None] - col_means[None, :] + grand
        df_resid = (k - 1) * (n - 1)
        mse = float((residuals ** 2).sum() / df_resid)
        scale = max(1.0, float(np.abs(Y).max()))
        if mse <= _ZERO_VARIANCE_TOL * scale ** 2:
            raise StatisticalTestError("residual variance of the blocked ANOVA is zero")

        se_diff = math.sqrt(2.0 * mse / n)
        t_crit = float(stats.t.ppf(1.0 - alpha, df=df_resid))

        results = {}
        for row, c in enumerate(blocked, start=1):
            mean_diff = float(row_means[row] - row_means[0])
            lower = mean_diff - t_crit * se_diff
            results[c] = Comparison(c, mean_diff, lower, n, lower > 0)
        return results


POLICIES = {
    PairedTTestPolicy.name: PairedTTestPolicy,
    AnovaPolicy.name: AnovaPolicy,
}


def make_policy(name: str, alpha: float = constants.DEFAULT_ALPHA, adjust: str = "none",
                logger: Optional[logging.Logger] = None) -> EliminationPolicy:
    if name not in POLICIES:
        raise ConfigurationError(f"Unknown elimination policy '{name}'. Available: {sorted(POLICIES)}")
    return POLICIES[name](alpha=alpha, adjust=adjust, logger=logger)
