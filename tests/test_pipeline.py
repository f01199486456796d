"""End-to-end pipeline tests with an in-memory sequence model."""

import asyncio
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from stock_forecaster.core.cancellation import CancellationToken
from stock_forecaster.core.config import ForecastConfig
from stock_forecaster.core.exceptions import ForecastCancelledError, InsufficientDataError
from stock_forecaster.core.modeling.forecast_result import FRAME_COLUMNS
from stock_forecaster.core.modeling.sequence import EpochLosses, SequenceModel
from stock_forecaster.core.pipeline import (
    ForecastPipeline,
    calendar_span,
    future_trading_dates,
)
from stock_forecaster.core.series import PriceSeries


class PersistenceModel(SequenceModel):
    """Predicts the last value of each window."""

    def __init__(self, lookback: int) -> None:
        self.lookback = lookback
        self.epoch = 0

    def fit_one_epoch(self, X, y, X_val, y_val) -> EpochLosses:
        self.epoch += 1
        return EpochLosses(loss=1.0 / self.epoch, val_loss=1.0 / self.epoch)

    def predict_one(self, window) -> float:
        return float(window[-1])

    def snapshot_weights(self):
        return self.epoch

    def restore_weights(self, snapshot) -> None:
        self.epoch = snapshot


def _failing_factory(lookback: int) -> SequenceModel:
    raise RuntimeError("sequence backend unavailable")


def _series(n: int = 120) -> PriceSeries:
    rng = np.random.default_rng(21)
    prices = 100 * np.exp(np.cumsum(rng.normal(0.0005, 0.01, size=n)))
    volumes = rng.uniform(1e5, 2e5, size=n)
    return PriceSeries(dates=pd.bdate_range("2023-01-02", periods=n), prices=prices, volumes=volumes)


def _config(**overrides) -> ForecastConfig:
    params = {
        "ticker": "test",
        "horizon": 5,
        "lookback": 10,
        "gbm_paths": 200,
        "gbm_eval_paths": 50,
        "lstm_epochs": 3,
        "tree_max_configs": 5,
    }
    params.update(overrides)
    return ForecastConfig(**params)


def test_full_run_produces_forecasts_ensemble_and_progress():
    progress = []
    pipeline = ForecastPipeline(_config(), sequence_model_factory=PersistenceModel)

    result = pipeline.run(_series(), progress_callback=lambda pct, status: progress.append(pct))

    assert result.ticker == "TEST"
    assert set(result.forecasts) == {"lstm", "gbm", "decision_tree"}
    assert set(result.metrics) == {"lstm", "gbm", "decision_tree"}
    assert all(forecast.horizon == 5 for forecast in result.forecasts.values())
    assert result.forecasts["gbm"].has_band
    assert result.ensemble is not None
    assert result.ensemble.point.shape == (5,)
    assert result.errors == {}

    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert result.details["decision_tree"]["evaluated"] == 5
    assert result.details["lstm"]["epochs_run"] == 3


def test_forecast_dates_skip_weekends():
    result = ForecastPipeline(_config(models="gbm")).run(_series())

    assert len(result.dates) == 5
    assert all(date.dayofweek < 5 for date in result.dates)
    assert result.dates[0] > _series().last_date
    assert result.calendar_span == calendar_span(result.dates)


def test_future_trading_dates_from_friday():
    dates = future_trading_dates(pd.Timestamp("2024-01-05"), 3)

    assert [d.strftime("%Y-%m-%d") for d in dates] == ["2024-01-08", "2024-01-09", "2024-01-10"]
    assert calendar_span(dates) == "2024-01-08 to 2024-01-10"


def test_short_series_is_rejected():
    pipeline = ForecastPipeline(_config(), sequence_model_factory=PersistenceModel)

    with pytest.raises(InsufficientDataError) as excinfo:
        pipeline.run(_series(40))

    assert excinfo.value.required == 65
    assert excinfo.value.available == 40


def test_failed_model_is_reported_and_others_continue():
    pipeline = ForecastPipeline(_config(), sequence_model_factory=_failing_factory)

    result = pipeline.run(_series())

    assert "lstm" in result.errors
    assert set(result.forecasts) == {"gbm", "decision_tree"}
    assert result.ensemble is not None
    assert result.ensemble.members == ("gbm", "decision_tree")


def test_single_model_run_skips_ensemble():
    result = ForecastPipeline(_config(models=["gbm"])).run(_series())

    assert list(result.forecasts) == ["gbm"]
    assert result.ensemble is None


def test_disabled_ensemble():
    pipeline = ForecastPipeline(_config(ensemble=False), sequence_model_factory=PersistenceModel)

    assert pipeline.run(_series()).ensemble is None


def test_cancelled_run_raises():
    token = CancellationToken()
    token.cancel()
    pipeline = ForecastPipeline(_config(), sequence_model_factory=PersistenceModel)

    with pytest.raises(ForecastCancelledError):
        pipeline.run(_series(), cancel_token=token)


def test_long_form_frame_and_serialisation():
    pipeline = ForecastPipeline(_config(), sequence_model_factory=PersistenceModel)
    result = pipeline.run(_series())

    frame = result.to_frame()
    assert list(frame.columns) == FRAME_COLUMNS
    assert len(frame) == 4 * 5
    assert set(frame["Model"]) == {"lstm", "gbm", "decision_tree", "ensemble"}
    assert frame.loc[frame["Model"] == "lstm", "Lower_5"].isna().all()

    payload = result.to_dict()
    assert payload["metrics"]["gbm"].keys() == {"MAE", "RMSE", "MAPE"}
    assert len(payload["dates"]) == 5
    assert payload["ensemble"]["members"] == ["lstm", "gbm", "decision_tree"]


def test_async_run_matches_sync_run():
    config = _config(models="gbm,decision_tree")
    sync = ForecastPipeline(config).run(_series())
    result = asyncio.run(ForecastPipeline(config).run_async(_series()))

    np.testing.assert_array_equal(result.forecasts["gbm"].point, sync.forecasts["gbm"].point)
    np.testing.assert_array_equal(
        result.forecasts["decision_tree"].point, sync.forecasts["decision_tree"].point
    )
