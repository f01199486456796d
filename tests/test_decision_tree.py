"""Tests for the regression tree, its grid search and the recursive forecaster."""

import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stock_forecaster.core.cancellation import CancellationToken
from stock_forecaster.core.exceptions import ForecastCancelledError, InsufficientDataError
from stock_forecaster.core.features import FEATURE_COLUMNS
from stock_forecaster.core.modeling.decision_tree import (
    DEFAULT_TREE_GRID,
    RegressionTree,
    TreeHyperparameters,
    evaluate_decision_tree,
    forecast_decision_tree,
    grid_search_tree,
    iter_grid,
    train_decision_tree,
)

SMALL_GRID = {
    "max_depth": [2, None],
    "min_samples_split": [2, 10],
    "min_samples_leaf": [1, 5],
    "max_features": [None, "sqrt"],
}


def _regression_data(samples: int = 80, features: int = 4, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(samples, features))
    y = 3 * X[:, 0] - 2 * X[:, 1] + rng.normal(scale=0.1, size=samples)
    return X, y


def _prices(samples: int = 120, seed: int = 3) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return 100 * np.exp(np.cumsum(rng.normal(0.0005, 0.01, size=samples)))


def test_depth_zero_tree_is_single_leaf_at_target_mean():
    X, y = _regression_data()
    tree = RegressionTree(max_depth=0).fit(X, y)

    assert tree.n_leaves == 1
    np.testing.assert_allclose(tree.predict(X), np.full(len(y), y.mean()))


def test_min_samples_leaf_larger_than_half_the_data_gives_one_leaf():
    X, y = _regression_data(samples=8)
    tree = RegressionTree(min_samples_leaf=10).fit(X, y)

    assert tree.n_leaves == 1
    assert tree.depth == 0


def test_step_function_is_split_at_midpoint():
    X = np.array([[0.0], [1.0], [2.0], [3.0]])
    y = np.array([0.0, 0.0, 10.0, 10.0])

    tree = RegressionTree().fit(X, y)

    assert tree.tree_.threshold[0] == pytest.approx(1.5)
    assert tree.n_leaves == 2
    assert tree.depth == 1
    np.testing.assert_allclose(tree.predict(X), y)
    assert tree.predict_one([1.5]) == 0.0
    assert tree.predict_one([1.6]) == 10.0


def test_identical_partitions_tie_break_to_the_first_feature():
    for seed in range(100):
        rng = np.random.default_rng(seed)
        index = np.arange(12, dtype=float)
        shuffled = np.concatenate([rng.permutation(index[:6]), rng.permutation(index[6:])])
        X = np.column_stack([index, shuffled])
        y = 100 + rng.normal(scale=5.0, size=12)

        tree = RegressionTree(max_depth=1, min_samples_leaf=6).fit(X, y)

        assert tree.tree_.feature[0] == 0, seed
        assert tree.tree_.threshold[0] == pytest.approx(5.5)


def test_leaves_respect_min_samples_leaf():
    X, y = _regression_data(samples=120)
    tree = RegressionTree(min_samples_leaf=5).fit(X, y)
    arena = tree.tree_

    leaf_sizes = [arena.n_samples[node] for node in range(len(arena)) if arena.is_leaf(node)]
    assert min(leaf_sizes) >= 5
    assert sum(leaf_sizes) == len(y)


def test_feature_subsampling_is_reproducible_with_seed():
    X, y = _regression_data(samples=100, features=9)
    first = RegressionTree(max_features="log2", random_state=11).fit(X, y)
    second = RegressionTree(max_features="log2", random_state=11).fit(X, y)

    np.testing.assert_array_equal(first.predict(X), second.predict(X))


def test_predict_requires_fit():
    with pytest.raises(RuntimeError):
        RegressionTree().predict([[0.0]])


def test_default_grid_has_all_combinations():
    grid = iter_grid()

    assert len(grid) == 240
    assert all(isinstance(params, TreeHyperparameters) for params in grid)
    assert {params.max_depth for params in grid} == set(DEFAULT_TREE_GRID["max_depth"])


def test_grid_is_walked_in_declared_key_order():
    grid = iter_grid()

    assert grid[0] == TreeHyperparameters(max_depth=3, min_samples_split=2, min_samples_leaf=1, max_features=None)
    assert grid[1].max_features == "sqrt"
    assert grid[3] == TreeHyperparameters(max_depth=3, min_samples_split=2, min_samples_leaf=2, max_features=None)
    assert grid[-1].max_depth is None


def test_empty_grid_is_rejected():
    X, y = _regression_data(samples=20)

    with pytest.raises(ValueError):
        grid_search_tree(X, y, X, y, grid={"max_depth": []})


def test_grid_search_samples_configs_and_reports_progress():
    X, y = _regression_data(samples=100)
    X_val, y_val = _regression_data(samples=30, seed=1)
    calls = []

    result = grid_search_tree(
        X,
        y,
        X_val,
        y_val,
        max_configs=6,
        random_state=5,
        progress_callback=lambda done, total: calls.append((done, total)),
    )

    assert result.evaluated == 6
    assert calls == [(i, 6) for i in range(1, 7)]
    assert result.val_rmse == min(score for _, score in result.scores)


def test_grid_search_is_reproducible_with_seed():
    X, y = _regression_data(samples=100)
    X_val, y_val = _regression_data(samples=30, seed=1)

    first = grid_search_tree(X, y, X_val, y_val, grid=SMALL_GRID, random_state=9)
    second = grid_search_tree(X, y, X_val, y_val, grid=SMALL_GRID, random_state=9)

    assert first.evaluated == 16
    assert first.params == second.params
    assert first.val_rmse == second.val_rmse


def test_grid_search_honours_cancellation():
    X, y = _regression_data()
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ForecastCancelledError):
        grid_search_tree(X, y, X, y, grid=SMALL_GRID, cancel_token=token)


def test_grid_search_requires_validation_samples():
    X, y = _regression_data()

    with pytest.raises(InsufficientDataError):
        grid_search_tree(X, y, np.empty((0, 4)), np.empty(0), grid=SMALL_GRID)


def test_train_forecast_and_evaluate_on_price_history():
    prices = _prices(150)
    volumes = np.full(150, 1_000.0)
    train, val, test = prices[:110], prices[110:130], prices[130:]

    search = train_decision_tree(
        train, volumes[:110], val, volumes[110:130], grid=SMALL_GRID, random_state=1
    )
    assert search.tree.n_features_in_ == len(FEATURE_COLUMNS)

    metrics = evaluate_decision_tree(search.tree, test, volumes[130:])
    assert metrics.n_samples == len(test) - 1
    assert np.isfinite(metrics.rmse)

    forecast = forecast_decision_tree(search.tree, prices, volumes, horizon=7)
    assert forecast.shape == (7,)
    assert np.isfinite(forecast).all()
    # Leaves only hold training targets.
    assert forecast.min() >= train[1:].min() - 1e-9
    assert forecast.max() <= train[1:].max() + 1e-9


def test_train_decision_tree_rejects_single_price():
    with pytest.raises(InsufficientDataError):
        train_decision_tree([100.0], None, _prices(20), None, grid=SMALL_GRID)
