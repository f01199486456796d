"""Top-level application entry point for forecasting runs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from stock_forecaster.core import (
    CancellationToken,
    ForecastConfig,
    ForecastPipeline,
    ForecastRunResult,
    PriceSeries,
    build_config,
    load_environment,
)
from stock_forecaster.core.modeling.sequence import SequenceModelFactory
from stock_forecaster.core.pipeline import ProgressCallback

LOGGER = logging.getLogger(__name__)


class StockForecasterApplication:
    """Bind a configuration to a pipeline and run it over price histories."""

    def __init__(
        self,
        config: ForecastConfig,
        *,
        sequence_model_factory: SequenceModelFactory | None = None,
    ) -> None:
        self.config = config
        self.pipeline = ForecastPipeline(config, sequence_model_factory=sequence_model_factory)

    @classmethod
    def from_environment(cls, **overrides: Any) -> "StockForecasterApplication":
        """Create an application instance using environment variables and overrides."""

        load_environment()
        factory = overrides.pop("sequence_model_factory", None)
        config = build_config(**overrides)
        LOGGER.debug("Initialised configuration for ticker %s", config.ticker)
        return cls(config, sequence_model_factory=factory)

    def run(
        self,
        series: PriceSeries,
        *,
        progress_callback: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ForecastRunResult:
        LOGGER.info(
            "Running %s on %s trading days",
            ", ".join(self.config.models),
            len(series),
        )
        return self.pipeline.run(
            series, progress_callback=progress_callback, cancel_token=cancel_token
        )

    def run_csv(self, path: str | Path, **kwargs: Any) -> ForecastRunResult:
        """Load a price history CSV and forecast it."""

        series = PriceSeries.from_csv(path)
        LOGGER.info("Got %s trading days from %s", len(series), path)
        return self.run(series, **kwargs)


__all__ = ["StockForecasterApplication"]
