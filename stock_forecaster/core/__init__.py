"""Core analytical components for the stock forecaster."""

from stock_forecaster.core.exceptions import (
    EmptyEnsembleError,
    ForecastCancelledError,
    ForecastingError,
    InsufficientDataError,
    NoValidSplitError,
)
from stock_forecaster.core.preprocessing import (
    MinMaxScaler,
    TimeSplit,
    build_sequences,
    context_padded,
    fit_scaler,
    time_split,
)
from stock_forecaster.core.series import PriceSeries, SeriesSplit
from stock_forecaster.core.features import FEATURE_COLUMNS, build_supervised, compute_features
from stock_forecaster.core.metrics import ForecastMetrics, regression_metrics
from stock_forecaster.core.cancellation import CancellationToken
from stock_forecaster.core.modeling import (
    EnsembleForecast,
    ForecastResult,
    ForecastRunResult,
    GBMParams,
    RegressionTree,
    SequenceModel,
    SequenceRegressorTrainer,
    blend_forecasts,
    fit_gbm,
    forecast_gbm,
    grid_search_tree,
)
from stock_forecaster.core.config import ForecastConfig, build_config, load_environment
from stock_forecaster.core.pipeline import ForecastPipeline, run_forecast

__all__ = [
    "CancellationToken",
    "EmptyEnsembleError",
    "EnsembleForecast",
    "FEATURE_COLUMNS",
    "ForecastCancelledError",
    "ForecastConfig",
    "ForecastMetrics",
    "ForecastPipeline",
    "ForecastResult",
    "ForecastRunResult",
    "ForecastingError",
    "GBMParams",
    "InsufficientDataError",
    "MinMaxScaler",
    "NoValidSplitError",
    "PriceSeries",
    "RegressionTree",
    "SeriesSplit",
    "SequenceModel",
    "SequenceRegressorTrainer",
    "TimeSplit",
    "blend_forecasts",
    "build_config",
    "build_sequences",
    "build_supervised",
    "compute_features",
    "context_padded",
    "fit_gbm",
    "fit_scaler",
    "forecast_gbm",
    "grid_search_tree",
    "load_environment",
    "regression_metrics",
    "run_forecast",
    "time_split",
]
