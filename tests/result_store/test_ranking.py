import numpy as np
import pandas as pd

from modules.result_store import best_per_workflow, rank_summary


def summary_frame(rows):
    return pd.DataFrame(rows, columns=['wflow_id', 'wflow_order', 'candidate_id', 'candidate_index', 'mean'])


def test_rank_orders_by_mean_for_minimized_metric():
    df = summary_frame([
        ('a', 0, 'config_01', 0, 3.0),
        ('a', 0, 'config_02', 1, 1.0),
        ('b', 1, 'config_01', 0, 2.0),
    ])
    ranked = rank_summary(df, minimize=True)
    assert ranked['mean'].tolist() == [1.0, 2.0, 3.0]
    assert ranked['rank'].tolist() == [1, 2, 3]


def test_rank_orders_descending_for_maximized_metric():
    df = summary_frame([('a', 0, 'config_01', 0, 0.7), ('a', 0, 'config_02', 1, 0.9)])
    ranked = rank_summary(df, minimize=False)
    assert ranked['candidate_id'].tolist() == ['config_02', 'config_01']


def test_nan_means_are_ranked_last():
    df = summary_frame([
        ('a', 0, 'config_01', 0, np.nan),
        ('a', 0, 'config_02', 1, 5.0),
        ('b', 1, 'config_01', 0, 1.0),
    ])
    for minimize in (True, False):
        ranked = rank_summary(df, minimize=minimize)
        assert np.isnan(ranked['mean'].iloc[-1])
        assert ranked['rank'].tolist() == [1, 2, 3]


def test_ties_follow_workflow_then_generation_order():
    df = summary_frame([
        ('b', 1, 'config_02', 1, 1.0),
        ('b', 1, 'config_01', 0, 1.0),
        ('a', 0, 'config_03', 2, 1.0),
    ])
    ranked = rank_summary(df, minimize=True)
    assert list(zip(ranked['wflow_id'], ranked['candidate_id'])) == [
        ('a', 'config_03'), ('b', 'config_01'), ('b', 'config_02'),
    ]


def test_select_best_gives_one_row_per_workflow():
    df = summary_frame([
        ('a', 0, 'config_01', 0, 3.0),
        ('a', 0, 'config_02', 1, 2.0),
        ('b', 1, 'config_01', 0, 2.5),
        ('b', 1, 'config_02', 1, 2.5),
    ])
    ranked = rank_summary(df, minimize=True, select_best=True)

    assert ranked['wflow_id'].tolist() == ['a', 'b']
    assert ranked['candidate_id'].tolist() == ['config_02', 'config_01']
    assert ranked['rank'].tolist() == [1, 2]


def test_best_per_workflow_without_order_column():
    df = pd.DataFrame({
        'wflow_id': ['a', 'a'], 'candidate_id': ['config_01', 'config_02'],
        'candidate_index': [0, 1], 'mean': [2.0, 1.0],
    })
    best = best_per_workflow(df, minimize=True)
    assert best['candidate_id'].tolist() == ['config_02']


def test_empty_summary_ranks_to_empty_frame():
    ranked = rank_summary(summary_frame([]), minimize=True)
    assert ranked.empty
    assert 'rank' in ranked.columns
