import math

import pytest
from scipy import stats
from unittest.mock import MagicMock

from modules.racing import AnovaPolicy, PairedTTestPolicy, make_policy, mean_comparison
from utils.exceptions import ConfigurationError


def folds(values):
    return {i: v for i, v in enumerate(values)}


@pytest.fixture
def mock_logger():
    return MagicMock()


def test_paired_t_eliminates_when_lower_bound_is_positive(mock_logger):
    values = {0: folds([3.1, 3.2, 3.3]), 1: folds([3.95, 4.0, 4.05])}
    policy = PairedTTestPolicy(alpha=0.05, logger=mock_logger)

    (comp,) = policy.compare(0, [1], values, minimize=True)

    t_crit = stats.t.ppf(0.95, df=2)
    expected_lower = 0.8 - t_crit * 0.05 / math.sqrt(3)
    assert comp.eliminate
    assert not comp.fallback
    assert comp.n_folds == 3
    assert math.isclose(comp.mean_diff, 0.8, rel_tol=1e-9)
    assert math.isclose(comp.lower_bound, expected_lower, rel_tol=1e-9)


def test_paired_t_keeps_overlapping_candidates(mock_logger):
    values = {0: folds([3.1, 3.2, 3.3]), 1: folds([3.3, 3.0, 3.35])}
    (comp,) = PairedTTestPolicy(logger=mock_logger).compare(0, [1], values, minimize=True)
    assert not comp.eliminate
    assert comp.lower_bound < 0


def test_paired_t_respects_maximize_direction(mock_logger):
    # Higher is better: the candidate with lower values is the worse one
    values = {0: folds([0.90, 0.91, 0.92, 0.90]), 1: folds([0.70, 0.72, 0.69, 0.71])}
    (comp,) = PairedTTestPolicy(logger=mock_logger).compare(0, [1], values, minimize=False)
    assert comp.eliminate
    assert comp.mean_diff > 0


def test_paired_t_only_uses_shared_folds(mock_logger):
    values = {0: {0: 1.0, 1: 1.1, 2: 0.9, 3: 1.0}, 1: {0: 2.0, 2: 2.1, 3: 1.9}}
    (comp,) = PairedTTestPolicy(logger=mock_logger).compare(0, [1], values, minimize=True)
    assert comp.n_folds == 3


def test_zero_variance_falls_back_to_mean_comparison(mock_logger):
    values = {0: folds([1.0, 2.0, 3.0]), 1: folds([1.5, 2.5, 3.5])}
    (comp,) = PairedTTestPolicy(logger=mock_logger).compare(0, [1], values, minimize=True)

    assert comp.fallback
    assert comp.eliminate
    assert math.isnan(comp.lower_bound)
    mock_logger.warning.assert_called_once()


def test_too_few_paired_folds_falls_back(mock_logger):
    values = {0: {0: 1.0, 1: 2.0}, 1: {1: 2.5, 2: 3.0}}
    (comp,) = PairedTTestPolicy(logger=mock_logger).compare(0, [1], values, minimize=True)
    assert comp.fallback
    assert comp.n_folds == 1


def test_mean_comparison_without_shared_folds_keeps_candidate():
    comp = mean_comparison(0, 1, {0: {0: 1.0}, 1: {1: 5.0}}, minimize=True)
    assert not comp.eliminate
    assert comp.n_folds == 0


def test_bonferroni_divides_alpha(mock_logger):
    policy = PairedTTestPolicy(alpha=0.05, adjust='bonferroni', logger=mock_logger)
    assert policy.level(1) == 0.05
    assert math.isclose(policy.level(4), 0.0125)
    assert PairedTTestPolicy(alpha=0.05, logger=mock_logger).level(4) == 0.05


def test_anova_uses_pooled_residual_error(mock_logger):
    values = {
        0: folds([3.1, 3.2, 3.3]),
        1: folds([3.3, 3.0, 3.35]),
        2: folds([3.95, 4.0, 4.05]),
    }
    comps = {c.candidate_index: c for c in AnovaPolicy(logger=mock_logger).compare(0, [1, 2], values, minimize=True)}

    assert comps[2].eliminate
    assert not comps[1].eliminate
    # Both differences share the same interval half-width
    half_1 = comps[1].mean_diff - comps[1].lower_bound
    half_2 = comps[2].mean_diff - comps[2].lower_bound
    assert math.isclose(half_1, half_2, rel_tol=1e-9)


def test_anova_with_no_residual_variance_falls_back(mock_logger):
    values = {0: folds([1.0, 2.0, 3.0]), 1: folds([2.0, 3.0, 4.0])}
    (comp,) = AnovaPolicy(logger=mock_logger).compare(0, [1], values, minimize=True)
    assert comp.fallback
    assert comp.eliminate
    mock_logger.warning.assert_called_once()


def test_anova_pairs_a_candidate_with_missing_folds_separately(mock_logger):
    complete = {
        0: folds([3.1, 3.2, 3.3]),
        1: folds([3.3, 3.0, 3.35]),
        2: folds([3.95, 4.0, 4.05]),
    }
    values = {**complete, 3: {2: 3.3}}
    policy = AnovaPolicy(logger=mock_logger)

    comps = {c.candidate_index: c for c in policy.compare(0, [1, 2, 3], values, minimize=True)}
    reference = {c.candidate_index: c for c in AnovaPolicy(logger=MagicMock()).compare(0, [1, 2], complete, minimize=True)}

    for c in (1, 2):
        assert comps[c].n_folds == 3
        assert not comps[c].fallback
        assert math.isclose(comps[c].lower_bound, reference[c].lower_bound, rel_tol=1e-9)
    assert comps[2].eliminate

    assert comps[3].n_folds == 1
    assert comps[3].fallback
    assert comps[3].mean_diff == pytest.approx(0.0)
    assert not comps[3].eliminate
    mock_logger.warning.assert_called_once()
    assert "candidate 3" in mock_logger.warning.call_args.args[0]


def test_anova_results_follow_competitor_order(mock_logger):
    values = {
        0: folds([3.1, 3.2, 3.3]),
        1: {0: 3.2, 2: 3.5},
        2: folds([3.95, 4.0, 4.05]),
    }
    comps = AnovaPolicy(logger=mock_logger).compare(0, [1, 2], values, minimize=True)
    assert [c.candidate_index for c in comps] == [1, 2]
    assert comps[0].n_folds == 2


def test_no_competitors_returns_nothing(mock_logger):
    assert AnovaPolicy(logger=mock_logger).compare(0, [], {0: folds([1.0, 2.0])}, minimize=True) == []


def test_make_policy_by_name(mock_logger):
    assert isinstance(make_policy('anova', logger=mock_logger), AnovaPolicy)
    assert isinstance(make_policy('paired_t', alpha=0.1, logger=mock_logger), PairedTTestPolicy)
    with pytest.raises(ConfigurationError, match="Unknown elimination policy"):
        make_policy('bayes')


@pytest.mark.parametrize("alpha", [0.0, 1.0, -0.1])
def test_invalid_alpha_is_rejected(alpha):
    with pytest.raises(ConfigurationError):
        PairedTTestPolicy(alpha=alpha)
