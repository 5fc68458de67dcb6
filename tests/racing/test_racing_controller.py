import math

import numpy as np
import pytest
from unittest.mock import MagicMock

from modules.parameter_space import Continuous, ParameterSpace
from modules.racing import EliminationPolicy, PairedTTestPolicy, RacingController, RaceState
from modules.result_store import Score
from modules.tuners import GridTuner, RacingTuner
from modules.workflow import Workflow, WorkflowOptions
from modules.model_factory import IdentityPreprocessor
from utils import constants
from utils.exceptions import ResultStoreError, WorkflowFailure

# Five candidates over ten folds; C (mean ~4.0) is clearly worse than B (mean 3.2)
SCENARIO = {
    'A': [3.3, 3.0, 3.35, 3.1, 3.3, 3.2, 3.0, 3.3, 3.2, 3.35],
    'B': [3.1, 3.2, 3.3, 3.2, 3.1, 3.3, 3.2, 3.1, 3.3, 3.2],
    'C': [3.95, 4.0, 4.05, 4.0, 4.0, 4.0, 4.0, 4.0, 4.0, 4.0],
    'D': [3.0, 3.5, 3.2, 3.3, 3.0, 3.4, 3.1, 3.2, 3.1, 3.3],
    'E': [3.4, 3.1, 3.3, 3.1, 3.2, 3.2, 3.3, 3.0, 3.4, 3.1],
}


def race(workflow, plan, logger, policy=None, **options):
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], **options})
    controller = RacingController(workflow, plan, opts, policy=policy, logger=logger)
    return controller, controller.run()


def scored_positions(result, candidate_id):
    return result.store.scored_folds(candidate_id)


# --------------------------------------------------------------------------- #
# Elimination scenario                                                        #
# --------------------------------------------------------------------------- #
def test_clearly_worse_candidate_is_eliminated_at_fold_three(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    policy = PairedTTestPolicy(alpha=0.05, logger=mock_logger)

    _, result = race(workflow, plan, mock_logger, policy=policy, grid=grid, burn_in=3, alpha=0.05)

    record = result.eliminations['config_03']
    assert record.fold_id == 'Fold03'
    assert record.eliminated_after == 3
    assert record.reason == constants.REASON_STATISTICAL

    scores = result.scores()
    c_rows = scores[scores['candidate_id'] == record.candidate_id]
    assert sorted(c_rows['fold_position'].unique()) == [0, 1, 2]
    assert (c_rows['elimination_fold'] == 3).all()


def test_scored_folds_form_a_prefix_and_stop_at_elimination(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger), grid=grid)

    for candidate in result.candidates:
        positions = scored_positions(result, candidate.id)
        record = result.eliminations.get(candidate.id)
        expected_len = record.eliminated_after if record else len(plan)
        assert positions == list(range(expected_len))


def test_no_elimination_before_burn_in(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    policy = MagicMock(spec=EliminationPolicy)
    policy.compare.return_value = []

    race(workflow, plan, mock_logger, policy=policy, grid=grid, burn_in=4)

    # One analysis per fold from fold 4 to fold 10
    assert policy.compare.call_count == 7
    first_values = policy.compare.call_args_list[0].args[2]
    assert all(len(v) == 4 for v in first_values.values())


def test_race_log_records_each_analysis(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger), grid=grid)

    log = result.race_log_frame()
    assert log['fold_number'].tolist()[0] == 3
    first = log.iloc[0]
    assert first['n_active_before'] == 5
    assert first['n_active_after'] == 4
    assert first['eliminated'] == 'config_03'
    assert first['best_candidate'] == 'config_02'


def test_eliminations_are_logged_at_info(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger), grid=grid)

    messages = [c.args[0] for c in mock_logger.info.call_args_list]
    assert any("eliminated ['config_03']" in m for m in messages)


# --------------------------------------------------------------------------- #
# Empty space / single candidate                                              #
# --------------------------------------------------------------------------- #
def test_empty_space_gives_one_candidate_and_never_tests(plan, mock_logger, scripted_model_cls):
    workflow = Workflow('plain', IdentityPreprocessor(), scripted_model_cls({}, offset=2.0))
    policy = MagicMock(spec=EliminationPolicy)

    _, result = race(workflow, plan, mock_logger, policy=policy)

    assert len(result.candidates) == 1
    assert result.candidates[0].params == {}
    policy.compare.assert_not_called()


def test_single_candidate_is_scored_on_every_fold(plan, mock_logger, scripted_model_cls):
    workflow = Workflow("single", IdentityPreprocessor(), scripted_model_cls({}, offset=5.0), ParameterSpace())

    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger))

    assert len(result.store) == 10
    summary = result.summarize()
    assert summary.loc[0, 'n'] == 10
    assert summary.loc[0, 'status'] == 'active'


# --------------------------------------------------------------------------- #
# Determinism                                                                 #
# --------------------------------------------------------------------------- #
def _continuous_workflow(scripted_model_cls):
    space = ParameterSpace([Continuous('level', 1.0, 10.0)])
    return Workflow('cont', IdentityPreprocessor(), scripted_model_cls({}), space)


def test_same_seed_gives_identical_grids_and_eliminations(plan, mock_logger, scripted_model_cls):
    runs = []
    for _ in range(2):
        _, result = race(_continuous_workflow(scripted_model_cls), plan, mock_logger,
                         policy=PairedTTestPolicy(logger=mock_logger), grid_size=8, seed=7)
        runs.append(result)

    first, second = runs
    assert [c.params for c in first.candidates] == [c.params for c in second.candidates]
    assert ({k: v.eliminated_after for k, v in first.eliminations.items()}
            == {k: v.eliminated_after for k, v in second.eliminations.items()})
    assert first.eliminations  # the spread of levels guarantees some pruning


def test_different_seed_changes_the_grid(plan, mock_logger, scripted_model_cls):
    _, a = race(_continuous_workflow(scripted_model_cls), plan, mock_logger, grid_size=8, seed=1)
    _, b = race(_continuous_workflow(scripted_model_cls), plan, mock_logger, grid_size=8, seed=2)
    assert [c.params for c in a.candidates] != [c.params for c in b.candidates]


# --------------------------------------------------------------------------- #
# Failure handling                                                            #
# --------------------------------------------------------------------------- #
def test_candidate_failing_too_often_is_eliminated_for_failure(scripted, plan, mock_logger):
    table = {
        'good': [1.0, 1.1, 0.9, 1.0, 1.1, 0.9, 1.0, 1.1, 0.9, 1.0],
        'flaky': [None, None, None, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0, 1.0],
        'other': [1.05, 1.0, 1.0, 1.1, 0.95, 1.0, 1.05, 1.0, 1.0, 1.05],
    }
    workflow, grid = scripted('wf', table)
    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger),
                     grid=grid, max_failures=2)

    record = result.eliminations['config_02']
    assert record.reason == constants.REASON_FIT_FAILURE
    assert record.eliminated_after == 3

    failed = result.scores()
    failed = failed[failed['candidate_id'] == 'config_02']
    assert failed['failed'].all()
    assert failed['value'].isna().all()
    assert 'scripted failure' in failed['error'].iloc[0]


def test_all_candidates_failing_fails_the_workflow(scripted, plan, mock_logger):
    table = {'a': [None] * 10, 'b': [None] * 10}
    workflow, grid = scripted('wf', table)
    with pytest.raises(WorkflowFailure, match="failed"):
        race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger), grid=grid)


def test_grid_run_where_everything_fails_raises(scripted, plan, mock_logger):
    table = {'a': [None] * 10}
    workflow, grid = scripted('wf', table)
    with pytest.raises(WorkflowFailure):
        race(workflow, plan, mock_logger, policy=None, grid=grid)


def test_occasional_failure_is_recorded_but_not_fatal(scripted, plan, mock_logger):
    table = {
        'a': [1.0, None, 1.0, 1.1, 0.9, 1.0, 1.0, 1.0, 1.0, 1.0],
        'b': [2.0, 2.1, 1.9, 2.0, 2.1, 1.9, 2.0, 2.0, 2.1, 1.9],
    }
    workflow, grid = scripted('wf', table)
    _, result = race(workflow, plan, mock_logger, policy=None, grid=grid)

    summary = result.summarize().set_index('candidate_id')
    assert summary.loc['config_01', 'n'] == 9
    assert summary.loc['config_02', 'n'] == 10
    assert result.store.failure_count('config_01') == 1
    mock_logger.warning.assert_called()


# --------------------------------------------------------------------------- #
# Fallback, tie break, sole survivor                                          #
# --------------------------------------------------------------------------- #
def test_zero_variance_difference_falls_back_to_mean_comparison(scripted, plan, mock_logger):
    base = [1.0, 1.2, 0.8, 1.1, 0.9, 1.0, 1.2, 0.8, 1.1, 0.9]
    table = {'a': base, 'b': [v + 0.5 for v in base]}
    workflow, grid = scripted('wf', table)

    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger), grid=grid)

    record = result.eliminations['config_02']
    assert record.reason == constants.REASON_MEAN_COMPARISON
    assert record.eliminated_after == 3
    assert result.race_log[0]['fallback'] is True
    mock_logger.warning.assert_called()


def test_tie_break_drops_the_worse_of_two_after_num_ties(scripted, plan, mock_logger):
    table = {
        'a': [1.0, 2.0, 1.0, 2.0, 1.0, 2.0, 1.0, 2.0, 1.0, 2.0],
        'b': [2.0, 1.0, 2.0, 1.0, 2.0, 1.0, 2.0, 1.0, 2.0, 1.0],
    }
    workflow, grid = scripted('wf', table)
    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger),
                     grid=grid, burn_in=2, num_ties=2)

    record = result.eliminations['config_02']
    assert record.reason == constants.REASON_TIE_BREAK
    assert record.eliminated_after == 3


def test_sole_survivor_continue_scores_every_fold(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', {'B': SCENARIO['B'], 'C': SCENARIO['C']})
    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger),
                     grid=grid, sole_survivor='continue')

    assert result.surviving == ['config_01']
    assert scored_positions(result, 'config_01') == list(range(10))


def test_sole_survivor_stop_finalizes_immediately(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', {'B': SCENARIO['B'], 'C': SCENARIO['C']})
    controller, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger),
                              grid=grid, sole_survivor='stop')

    assert controller.state == RaceState.DONE
    assert scored_positions(result, 'config_01') == [0, 1, 2]
    assert result.summarize().set_index('candidate_id').loc['config_01', 'n'] == 3


# --------------------------------------------------------------------------- #
# State machine                                                               #
# --------------------------------------------------------------------------- #
def test_states_progress_through_burn_in_and_racing(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid, 'burn_in': 3})
    controller = RacingController(workflow, plan, opts, policy=PairedTTestPolicy(logger=mock_logger),
                                  logger=mock_logger)
    assert controller.state == RaceState.INITIALIZING

    controller.initialize()
    seen = [controller.state]
    while not controller.done:
        controller.record_fold(controller.execute_units(controller.pending_units()))
        seen.append(controller.state)

    assert seen[:3] == [RaceState.BURN_IN, RaceState.BURN_IN, RaceState.BURN_IN]
    assert RaceState.RACING in seen
    assert seen[-1] == RaceState.DONE
    assert controller.pending_units() == []


def test_incomplete_barrier_is_rejected(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid})
    controller = RacingController(workflow, plan, opts, policy=PairedTTestPolicy(logger=mock_logger),
                                  logger=mock_logger)
    controller.initialize()

    outcomes = controller.execute_units(controller.pending_units())
    with pytest.raises(WorkflowFailure, match="Incomplete barrier"):
        controller.record_fold(outcomes[:-1])


def test_store_is_frozen_when_done(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    _, result = race(workflow, plan, mock_logger, grid=grid)

    assert result.store.frozen
    with pytest.raises(ResultStoreError):
        result.store.append(Score('wf', 'config_01', 'Fold99', 99, 'mae', 1.0))


def test_grid_tuner_scores_every_candidate_on_every_fold(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid})

    result = GridTuner(logger=mock_logger).evaluate(workflow, plan, opts)

    assert result.tuner == 'grid'
    assert result.eliminations == {}
    assert len(result.store) == 5 * 10


def test_racing_and_grid_agree_on_a_clearly_separated_best(scripted, plan, mock_logger):
    rng = np.random.default_rng(3)
    table = {
        'slow': list(3.0 + rng.normal(0, 0.05, 10)),
        'best': list(2.0 + rng.normal(0, 0.05, 10)),
        'mid': list(2.6 + rng.normal(0, 0.05, 10)),
        'bad': list(3.5 + rng.normal(0, 0.05, 10)),
    }
    workflow, grid = scripted('wf', table)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid})

    raced = RacingTuner(logger=mock_logger).evaluate(workflow, plan, opts)
    full = GridTuner(logger=mock_logger).evaluate(workflow, plan, opts)

    assert raced.select_best()['level'] == 'best'
    assert full.select_best()['level'] == 'best'
    assert len(raced.store) < len(full.store)


def test_anova_policy_is_used_by_default(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid})

    controller = RacingTuner(logger=mock_logger).controller(workflow, plan, opts)

    assert controller.policy.name == 'anova'
    result = controller.run()
    assert result.eliminations['config_03'].reason == constants.REASON_STATISTICAL


def _default_race(scripted, table, plan, mock_logger, **options):
    workflow, grid = scripted('wf', table)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid, **options})
    return RacingTuner(logger=mock_logger).controller(workflow, plan, opts).run()


def test_burn_in_failures_do_not_degrade_the_other_comparisons(scripted, plan, mock_logger):
    table = {k: SCENARIO[k] for k in ('A', 'B', 'D', 'E')}
    table['F'] = [None, None] + [3.3] * 8

    result = _default_race(scripted, table, plan, mock_logger, burn_in=3)

    first = result.race_log[0]
    assert first['fold_id'] == 'Fold03'
    assert first['n_active_before'] == 5
    assert first['best_candidate'] == 'config_02'
    assert first['eliminated'] == ''
    assert result.store.failure_count('config_05') == 2
    for record in result.eliminations.values():
        assert record.reason != constants.REASON_MEAN_COMPARISON


def test_default_policy_blocks_complete_candidates_and_pairs_the_flaky_one(scripted, plan, mock_logger):
    table = {
        'a': SCENARIO['B'],
        'b': SCENARIO['A'],
        'c': SCENARIO['C'],
        'd': [3.2, None, 4.0, 4.0, 4.0, 4.0, 4.0, 4.0, 4.0, 4.0],
    }
    policy_calls = []

    workflow, grid = scripted('wf', table)
    opts = WorkflowOptions.from_dict({'metrics': ['mae'], 'grid': grid, 'burn_in': 3})
    controller = RacingTuner(logger=mock_logger).controller(workflow, plan, opts)
    compare = controller.policy.compare

    def recording(best, competitors, values, minimize):
        comps = compare(best, competitors, values, minimize)
        policy_calls.append(comps)
        return comps

    controller.policy.compare = recording
    result = controller.run()

    first = {c.candidate_index: c for c in policy_calls[0]}
    # b and c share folds 0-2 with the leader and enter the blocked fit
    assert first[1].n_folds == 3 and not first[1].fallback
    assert first[2].n_folds == 3 and not first[2].fallback
    # d failed on fold 1 and is compared on folds 0 and 2 only
    assert first[3].n_folds == 2
    assert not first[3].fallback

    assert result.eliminations['config_03'].reason == constants.REASON_STATISTICAL
    assert result.eliminations['config_03'].eliminated_after == 3
    assert 'config_02' not in result.eliminations


def test_summary_uses_only_scored_folds(scripted, plan, mock_logger):
    workflow, grid = scripted('wf', SCENARIO)
    _, result = race(workflow, plan, mock_logger, policy=PairedTTestPolicy(logger=mock_logger), grid=grid)

    summary = result.summarize().set_index('candidate_id')
    c = summary.loc['config_03']
    assert c['n'] == 3
    assert c['status'] == 'eliminated'
    assert math.isclose(c['mean'], 4.0, rel_tol=1e-9)
    assert math.isclose(c['std_err'], np.std([3.95, 4.0, 4.05], ddof=1) / math.sqrt(3), rel_tol=1e-9)
