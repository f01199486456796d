import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stock_forecaster.core.exceptions import InsufficientDataError
from stock_forecaster.core.modeling.simulation import (
    GBMParams,
    evaluate_gbm,
    fit_gbm,
    forecast_gbm,
    rolling_gbm_predictions,
)


def test_positive_returns_give_positive_drift() -> None:
    params = fit_gbm([100, 105, 110])

    assert params.mu > 0
    assert params.last_price == 110


def test_fit_requires_two_prices() -> None:
    with pytest.raises(InsufficientDataError):
        fit_gbm([100])


def test_forecast_is_bit_identical_for_same_seed() -> None:
    params = GBMParams(mu=0.08, sigma=0.25, last_price=150.0)

    first = forecast_gbm(params, horizon=30, n_paths=1000, seed=42)
    second = forecast_gbm(params, horizon=30, n_paths=1000, seed=42)

    np.testing.assert_array_equal(first.median, second.median)
    np.testing.assert_array_equal(first.lower5, second.lower5)
    np.testing.assert_array_equal(first.upper95, second.upper95)


def test_different_seeds_change_the_paths() -> None:
    params = GBMParams(mu=0.08, sigma=0.25, last_price=150.0)

    first = forecast_gbm(params, horizon=10, n_paths=500, seed=1)
    second = forecast_gbm(params, horizon=10, n_paths=500, seed=2)

    assert not np.array_equal(first.median, second.median)


def test_bands_bracket_the_median() -> None:
    params = GBMParams(mu=-0.1, sigma=0.4, last_price=20.0)
    forecast = forecast_gbm(params, horizon=30, n_paths=2000, seed=0)

    assert forecast.horizon == 30
    assert np.all(forecast.lower5 <= forecast.median)
    assert np.all(forecast.median <= forecast.upper95)


def test_zero_volatility_follows_the_drift() -> None:
    params = GBMParams(mu=0.1, sigma=0.0, last_price=100.0)
    forecast = forecast_gbm(params, horizon=4, n_paths=50, seed=3)

    expected = 100.0 * np.exp(0.1 * np.arange(1, 5) / 4)
    np.testing.assert_allclose(forecast.median, expected)
    np.testing.assert_allclose(forecast.lower5, expected)
    np.testing.assert_allclose(forecast.upper95, expected)


def test_forecast_rejects_non_positive_inputs() -> None:
    params = GBMParams(mu=0.0, sigma=0.1, last_price=10.0)

    with pytest.raises(ValueError):
        forecast_gbm(params, horizon=0)
    with pytest.raises(ValueError):
        forecast_gbm(params, n_paths=0)


def test_rolling_evaluation_anchors_on_previous_actual() -> None:
    params = GBMParams(mu=0.0, sigma=0.0, last_price=1.0)

    predictions = rolling_gbm_predictions(params, [101.0, 102.0, 103.0], 100.0, n_paths=20)
    np.testing.assert_allclose(predictions, [100.0, 101.0, 102.0])

    metrics = evaluate_gbm(params, [101.0, 102.0, 103.0], 100.0, n_paths=20)
    assert metrics.mae == pytest.approx(1.0)
    assert metrics.n_samples == 3
