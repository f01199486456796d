"""End-to-end forecasting run: split, train, evaluate, forecast and blend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional

import numpy as np
import pandas as pd

from .cancellation import CancellationToken, check_cancelled
from .config import (
    DEFAULT_MODELS,
    MODEL_DECISION_TREE,
    MODEL_GBM,
    MODEL_LSTM,
    ForecastConfig,
)
from .exceptions import ForecastCancelledError, InsufficientDataError
from .metrics import ForecastMetrics
from .modeling.decision_tree import (
    evaluate_decision_tree,
    forecast_decision_tree,
    train_decision_tree,
)
from .modeling.ensembles import blend_forecasts
from .modeling.forecast_result import ENSEMBLE_KEY, ForecastResult, ForecastRunResult
from .modeling.sequence import (
    EpochReport,
    SequenceModelFactory,
    SequenceRegressorTrainer,
    TrainedSequenceModel,
    evaluate_sequence,
    forecast_sequence,
)
from .modeling.simulation import evaluate_gbm, fit_gbm, forecast_gbm
from .series import PriceSeries, SeriesSplit

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]

LSTM_PROGRESS_END = 30.0
GBM_PROGRESS_START = 35.0
TREE_PROGRESS_START = 55.0
TREE_PROGRESS_SPAN = 25.0
ENSEMBLE_PROGRESS = 85.0
DONE_PROGRESS = 100.0
TREE_LOG_EVERY = 10
RECENT_HISTORY_POINTS = 120


def future_trading_dates(last_date: Any, horizon: int) -> pd.DatetimeIndex:
    """Return the next ``horizon`` weekdays after ``last_date``."""

    start = pd.Timestamp(last_date).normalize() + pd.Timedelta(days=1)
    return pd.bdate_range(start=start, periods=horizon)


def calendar_span(dates: pd.DatetimeIndex) -> str:
    if len(dates) == 0:
        return ""
    return f"{dates[0]:%Y-%m-%d} to {dates[-1]:%Y-%m-%d}"


class _ProgressReporter:
    """Forward monotonically non-decreasing percentages to a callback."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self.percent = 0.0

    def update(self, percent: float, status: str) -> None:
        self.percent = max(self.percent, min(float(percent), DONE_PROGRESS))
        if self._callback is None:
            return
        try:
            self._callback(self.percent, status)
        except Exception:  # pragma: no cover - defensive guard
            LOGGER.debug("Progress callback failed at %.1f%%", self.percent, exc_info=True)


@dataclass
class _RunContext:
    series: PriceSeries
    split: SeriesSplit
    progress: _ProgressReporter
    cancel_token: CancellationToken | None
    forecasts: Dict[str, ForecastResult] = field(default_factory=dict)
    metrics: Dict[str, ForecastMetrics] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)


class ForecastPipeline:
    """Run every enabled model over a price series and blend the results."""

    def __init__(
        self,
        config: ForecastConfig | None = None,
        *,
        sequence_model_factory: SequenceModelFactory | None = None,
    ) -> None:
        self.config = config or ForecastConfig()
        self._sequence_model_factory = sequence_model_factory

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _resolve_model_factory(self) -> SequenceModelFactory:
        if self._sequence_model_factory is not None:
            return self._sequence_model_factory
        from .deep_models import lstm_model_factory

        return lstm_model_factory(**self.config.lstm_params())

    def _sequence_trainer(self) -> SequenceRegressorTrainer:
        return SequenceRegressorTrainer(
            self._resolve_model_factory(),
            lookback=self.config.lookback,
            epochs=self.config.lstm_epochs,
            patience=self.config.lstm_patience,
        )

    def _start(
        self,
        series: PriceSeries,
        progress_callback: ProgressCallback | None,
        cancel_token: CancellationToken | None,
    ) -> _RunContext:
        required = self.config.min_history
        if len(series) < required:
            raise InsufficientDataError(
                f"Not enough data: {len(series)} days.",
                required=required,
                available=len(series),
            )
        split = series.split(self.config.train_frac, self.config.val_frac)
        LOGGER.info(
            "Split %s: train=%s val=%s test=%s",
            self.config.ticker or "series",
            len(split.train),
            len(split.val),
            len(split.test),
        )
        return _RunContext(
            series=series,
            split=split,
            progress=_ProgressReporter(progress_callback),
            cancel_token=cancel_token,
        )

    def _enabled_models(self) -> list[str]:
        return [name for name in DEFAULT_MODELS if name in self.config.models]

    @contextlib.contextmanager
    def _model_stage(self, ctx: _RunContext, name: str) -> Iterator[None]:
        """Record a model failure without aborting the remaining models."""

        check_cancelled(ctx.cancel_token, name)
        try:
            yield
        except ForecastCancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Model %s failed", name)
            ctx.errors[name] = str(exc) or exc.__class__.__name__

    # ------------------------------------------------------------------
    # Per-model stages
    # ------------------------------------------------------------------
    def _epoch_callback(self, ctx: _RunContext) -> Callable[[EpochReport], None]:
        epochs = self.config.lstm_epochs

        def _on_epoch(report: EpochReport) -> None:
            ctx.progress.update(
                LSTM_PROGRESS_END * report.epoch / epochs,
                f"LSTM epoch {report.epoch}/{epochs}",
            )

        return _on_epoch

    def _finish_lstm(self, ctx: _RunContext, trained: TrainedSequenceModel) -> None:
        try:
            LOGGER.info("LSTM trained: %s epochs", trained.epochs_run)
            context = np.concatenate([ctx.split.train.prices, ctx.split.val.prices])
            metrics = evaluate_sequence(trained, context, ctx.split.test.prices)
            point = forecast_sequence(trained, ctx.series.prices, self.config.horizon)
        finally:
            trained.dispose()
        self._record(ctx, MODEL_LSTM, ForecastResult(MODEL_LSTM, point), metrics)
        ctx.details[MODEL_LSTM] = trained.to_dict()

    def _run_gbm(self, ctx: _RunContext) -> None:
        ctx.progress.update(GBM_PROGRESS_START, "Fitting GBM parameters")
        params = fit_gbm(ctx.split.train.prices)
        context_price = (
            ctx.split.val.last_price if len(ctx.split.val) else ctx.split.train.last_price
        )
        metrics = evaluate_gbm(
            params,
            ctx.split.test.prices,
            context_price,
            n_paths=self.config.gbm_eval_paths,
            base_seed=self.config.gbm_seed,
        )
        LOGGER.info("Simulating %s Monte Carlo paths", self.config.gbm_paths)
        check_cancelled(ctx.cancel_token, MODEL_GBM)
        forecast = forecast_gbm(
            params.with_last_price(ctx.series.last_price),
            horizon=self.config.horizon,
            n_paths=self.config.gbm_paths,
            seed=self.config.gbm_seed,
        )
        result = ForecastResult(MODEL_GBM, forecast.median, forecast.lower5, forecast.upper95)
        self._record(ctx, MODEL_GBM, result, metrics)
        ctx.details[MODEL_GBM] = {**params.to_dict(), "paths": self.config.gbm_paths}

    def _run_tree(self, ctx: _RunContext) -> None:
        ctx.progress.update(TREE_PROGRESS_START, "Decision tree grid search")

        def _on_config(done: int, total: int) -> None:
            ctx.progress.update(
                TREE_PROGRESS_START + TREE_PROGRESS_SPAN * done / total,
                f"Decision tree grid search {done}/{total}",
            )
            if done % TREE_LOG_EVERY == 0:
                LOGGER.info("DT grid search: %s/%s", done, total)

        train, val, test = ctx.split
        search = train_decision_tree(
            train.prices,
            train.volumes,
            val.prices,
            val.volumes,
            max_configs=self.config.tree_max_configs,
            random_state=self.config.tree_random_state,
            progress_callback=_on_config,
            cancel_token=ctx.cancel_token,
        )
        metrics = evaluate_decision_tree(search.tree, test.prices, test.volumes)
        point = forecast_decision_tree(
            search.tree, ctx.series.prices, ctx.series.volumes, self.config.horizon
        )
        self._record(ctx, MODEL_DECISION_TREE, ForecastResult(MODEL_DECISION_TREE, point), metrics)
        ctx.details[MODEL_DECISION_TREE] = {
            **search.to_dict(),
            "n_leaves": search.tree.n_leaves,
            "depth": search.tree.depth,
        }

    @staticmethod
    def _record(ctx: _RunContext, name: str, result: ForecastResult, metrics: ForecastMetrics) -> None:
        ctx.forecasts[name] = result
        ctx.metrics[name] = metrics
        LOGGER.info(
            "%s test: MAE=%.4f RMSE=%.4f MAPE=%.4f%%", name, metrics.mae, metrics.rmse, metrics.mape
        )

    def _finish(self, ctx: _RunContext) -> ForecastRunResult:
        ensemble = None
        if self.config.ensemble and len(ctx.forecasts) >= 2:
            ctx.progress.update(ENSEMBLE_PROGRESS, "Blending ensemble")
            with self._model_stage(ctx, ENSEMBLE_KEY):
                bands = {
                    name: (result.lower5, result.upper95)
                    for name, result in ctx.forecasts.items()
                    if result.has_band
                }
                ensemble = blend_forecasts(
                    {name: result.point for name, result in ctx.forecasts.items()},
                    bands or None,
                )
        else:
            ctx.progress.update(ENSEMBLE_PROGRESS, "Skipping ensemble")

        dates = future_trading_dates(ctx.series.last_date, self.config.horizon)
        span = calendar_span(dates)
        recent = ctx.series.slice(-RECENT_HISTORY_POINTS, None)
        ctx.details["recent_history"] = {
            "dates": [ts.strftime("%Y-%m-%d") for ts in recent.dates],
            "prices": [float(p) for p in recent.prices],
        }
        result = ForecastRunResult(
            ticker=self.config.ticker,
            horizon=self.config.horizon,
            dates=dates,
            calendar_span=span,
            forecasts=ctx.forecasts,
            metrics=ctx.metrics,
            ensemble=ensemble,
            errors=ctx.errors,
            details=ctx.details,
        )
        ctx.progress.update(DONE_PROGRESS, "Done")
        LOGGER.info(
            "Done! %s-day forecast for %s: %s", self.config.horizon, self.config.ticker or "series", span
        )
        return result

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def run(
        self,
        series: PriceSeries,
        *,
        progress_callback: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ForecastRunResult:
        ctx = self._start(series, progress_callback, cancel_token)
        for name in self._enabled_models():
            with self._model_stage(ctx, name):
                if name == MODEL_LSTM:
                    trained = self._sequence_trainer().fit(
                        ctx.split.train.prices,
                        ctx.split.val.prices,
                        epoch_callback=self._epoch_callback(ctx),
                        cancel_token=cancel_token,
                    )
                    self._finish_lstm(ctx, trained)
                elif name == MODEL_GBM:
                    self._run_gbm(ctx)
                else:
                    self._run_tree(ctx)
            self._mark_stage_done(ctx, name)
        return self._finish(ctx)

    async def run_async(
        self,
        series: PriceSeries,
        *,
        progress_callback: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ForecastRunResult:
        """Same as :meth:`run`, yielding to the event loop between heavy steps."""

        ctx = self._start(series, progress_callback, cancel_token)
        for name in self._enabled_models():
            with self._model_stage(ctx, name):
                if name == MODEL_LSTM:
                    trained = await self._sequence_trainer().fit_async(
                        ctx.split.train.prices,
                        ctx.split.val.prices,
                        epoch_callback=self._epoch_callback(ctx),
                        cancel_token=cancel_token,
                    )
                    await asyncio.to_thread(self._finish_lstm, ctx, trained)
                elif name == MODEL_GBM:
                    await asyncio.to_thread(self._run_gbm, ctx)
                else:
                    await asyncio.to_thread(self._run_tree, ctx)
            self._mark_stage_done(ctx, name)
        return self._finish(ctx)

    @staticmethod
    def _mark_stage_done(ctx: _RunContext, name: str) -> None:
        if name == MODEL_LSTM:
            ctx.progress.update(GBM_PROGRESS_START, "LSTM stage complete")
        elif name == MODEL_GBM:
            ctx.progress.update(TREE_PROGRESS_START, "GBM stage complete")
        else:
            ctx.progress.update(TREE_PROGRESS_START + TREE_PROGRESS_SPAN, "Decision tree stage complete")


def run_forecast(
    series: PriceSeries,
    config: Optional[ForecastConfig] = None,
    **kwargs: Any,
) -> ForecastRunResult:
    """Convenience wrapper building a :class:`ForecastPipeline` for one run."""

    factory = kwargs.pop("sequence_model_factory", None)
    return ForecastPipeline(config, sequence_model_factory=factory).run(series, **kwargs)


__all__ = [
    "CancellationToken",
    "ForecastPipeline",
    "ForecastRunResult",
    "ProgressCallback",
    "calendar_span",
    "future_trading_dates",
    "run_forecast",
]
