"""Multi-model stock price forecasting with a blended ensemble."""

from stock_forecaster.app import StockForecasterApplication
from stock_forecaster.core import (
    ForecastConfig,
    ForecastPipeline,
    ForecastRunResult,
    PriceSeries,
    build_config,
    load_environment,
)

__all__ = [
    "ForecastConfig",
    "ForecastPipeline",
    "ForecastRunResult",
    "PriceSeries",
    "StockForecasterApplication",
    "build_config",
    "load_environment",
]
