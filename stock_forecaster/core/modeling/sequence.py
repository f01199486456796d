"""Training loop for lookback-window sequence regressors.

The network itself is an injected :class:`SequenceModel`; this module owns
scaling, windowing, epoch scheduling, early stopping with best-weight
restoration and walk-forward forecasting. Epochs are produced by a generator
so callers can observe, pace or cancel training between epochs.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generator, List, NamedTuple, Sequence

import numpy as np

from ..cancellation import CancellationToken, check_cancelled
from ..exceptions import InsufficientDataError
from ..metrics import ForecastMetrics, regression_metrics
from ..preprocessing import MinMaxScaler, build_sequences, context_padded, fit_scaler

LOGGER = logging.getLogger(__name__)

LOG_EVERY_EPOCHS = 5


class EpochLosses(NamedTuple):
    loss: float
    val_loss: float


class SequenceModel:
    """Interface for a trainable single-output sequence regressor.

    Windows are 1D arrays of ``lookback`` scaled prices; targets are the
    scaled price that follows each window.
    """

    def fit_one_epoch(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray,
        y_val: np.ndarray,
    ) -> EpochLosses:  # pragma: no cover - interface
        raise NotImplementedError

    def predict_one(self, window: np.ndarray) -> float:  # pragma: no cover - interface
        raise NotImplementedError

    def predict_many(self, windows: np.ndarray) -> np.ndarray:
        return np.array([self.predict_one(window) for window in windows], dtype=float)

    def snapshot_weights(self) -> Any:  # pragma: no cover - interface
        raise NotImplementedError

    def restore_weights(self, snapshot: Any) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def dispose(self) -> None:
        """Release framework resources held by the model."""


SequenceModelFactory = Callable[[int], SequenceModel]


class EarlyStoppingState(str, Enum):
    IMPROVING = "improving"
    PLATEAUING = "plateauing"


@dataclass(frozen=True)
class EarlyStoppingDecision:
    improved: bool
    should_stop: bool
    state: EarlyStoppingState


class EarlyStopping:
    """Tracks the best monitored loss and how long it has gone unimproved."""

    def __init__(self, patience: int = 5, min_delta: float = 0.0) -> None:
        if patience <= 0:
            raise ValueError("patience must be positive")
        self.patience = int(patience)
        self.min_delta = float(min_delta)
        self.best = math.inf
        self.wait = 0
        self.state = EarlyStoppingState.IMPROVING

    def update(self, value: float) -> EarlyStoppingDecision:
        if value < self.best - self.min_delta:
            self.best = float(value)
            self.wait = 0
            self.state = EarlyStoppingState.IMPROVING
            return EarlyStoppingDecision(improved=True, should_stop=False, state=self.state)

        self.wait += 1
        self.state = EarlyStoppingState.PLATEAUING
        return EarlyStoppingDecision(
            improved=False,
            should_stop=self.wait >= self.patience,
            state=self.state,
        )


@dataclass(frozen=True)
class EpochReport:
    epoch: int
    loss: float
    val_loss: float
    state: EarlyStoppingState


@dataclass
class TrainedSequenceModel:
    model: SequenceModel
    scaler: MinMaxScaler
    lookback: int
    history: Dict[str, List[float]] = field(default_factory=lambda: {"loss": [], "val_loss": []})
    stopped_early: bool = False
    best_epoch: int = 0

    @property
    def epochs_run(self) -> int:
        return len(self.history["loss"])

    def dispose(self) -> None:
        self.model.dispose()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lookback": self.lookback,
            "epochs_run": self.epochs_run,
            "best_epoch": self.best_epoch,
            "stopped_early": self.stopped_early,
            "history": {key: list(values) for key, values in self.history.items()},
        }


def _advance(
    epochs: Generator[EpochReport, None, TrainedSequenceModel],
) -> EpochReport | TrainedSequenceModel:
    """Run one epoch, or return the trained model once the generator finishes."""

    try:
        return next(epochs)
    except StopIteration as stop:
        return stop.value


async def _drain_epoch(pending: "asyncio.Future[EpochReport | TrainedSequenceModel]") -> None:
    # The worker thread owns the generator until the epoch returns.
    await asyncio.wait({pending})
    if pending.cancelled() or pending.exception() is not None:
        return
    step = pending.result()
    if isinstance(step, TrainedSequenceModel):
        step.dispose()


class SequenceRegressorTrainer:
    """Fit a :class:`SequenceModel` on scaled lookback windows."""

    def __init__(
        self,
        model_factory: SequenceModelFactory,
        *,
        lookback: int = 60,
        epochs: int = 50,
        patience: int = 5,
    ) -> None:
        if lookback <= 0:
            raise ValueError("lookback must be positive")
        if epochs <= 0:
            raise ValueError("epochs must be positive")
        self.model_factory = model_factory
        self.lookback = int(lookback)
        self.epochs = int(epochs)
        self.patience = int(patience)

    def _training_windows(
        self,
        scaler: MinMaxScaler,
        train_prices: np.ndarray,
        val_prices: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        X, y = build_sequences(scaler.transform(train_prices), self.lookback)
        if len(y) == 0:
            raise InsufficientDataError(
                "Sequence regressor needs more training prices than the lookback.",
                required=self.lookback + 1,
                available=len(train_prices),
                segment="train",
            )
        val_series = context_padded(train_prices, val_prices, self.lookback)
        X_val, y_val = build_sequences(scaler.transform(val_series), self.lookback)
        return X, y, X_val, y_val

    def iter_epochs(
        self,
        train_prices: Sequence[float] | np.ndarray,
        val_prices: Sequence[float] | np.ndarray,
    ) -> Generator[EpochReport, None, TrainedSequenceModel]:
        """Yield one :class:`EpochReport` per epoch; return the trained model.

        Validation windows borrow the last ``lookback`` training prices as
        context. The weights are snapshotted whenever the monitored loss
        improves and restored when patience runs out. Without validation
        windows the training loss is monitored instead.
        """

        train_array = np.asarray(train_prices, dtype=float)
        val_array = np.asarray(val_prices, dtype=float)
        scaler = fit_scaler(train_array)
        X, y, X_val, y_val = self._training_windows(scaler, train_array, val_array)

        model = self.model_factory(self.lookback)
        trained = TrainedSequenceModel(model=model, scaler=scaler, lookback=self.lookback)
        stopper = EarlyStopping(self.patience)
        best_snapshot: Any = None
        try:
            for epoch in range(1, self.epochs + 1):
                losses = model.fit_one_epoch(X, y, X_val, y_val)
                loss = float(losses.loss)
                val_loss = float(losses.val_loss)
                monitored = val_loss if math.isfinite(val_loss) else loss
                decision = stopper.update(monitored)
                if decision.improved:
                    best_snapshot = model.snapshot_weights()
                    trained.best_epoch = epoch
                trained.history["loss"].append(loss)
                trained.history["val_loss"].append(val_loss)
                if epoch % LOG_EVERY_EPOCHS == 0:
                    LOGGER.info("LSTM Epoch %s/%s: loss=%.6f val_loss=%.6f", epoch, self.epochs, loss, val_loss)

                yield EpochReport(epoch=epoch, loss=loss, val_loss=val_loss, state=decision.state)

                if decision.should_stop:
                    if best_snapshot is not None:
                        model.restore_weights(best_snapshot)
                    trained.stopped_early = True
                    LOGGER.info(
                        "Early stopping at epoch %s; restored weights from epoch %s",
                        epoch,
                        trained.best_epoch,
                    )
                    break
        except BaseException:
            model.dispose()
            raise
        return trained

    def fit(
        self,
        train_prices: Sequence[float] | np.ndarray,
        val_prices: Sequence[float] | np.ndarray,
        *,
        epoch_callback: Callable[[EpochReport], None] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> TrainedSequenceModel:
        epochs = self.iter_epochs(train_prices, val_prices)
        try:
            while True:
                check_cancelled(cancel_token, "sequence training")
                step = _advance(epochs)
                if isinstance(step, TrainedSequenceModel):
                    return step
                if epoch_callback is not None:
                    epoch_callback(step)
        finally:
            epochs.close()

    async def fit_async(
        self,
        train_prices: Sequence[float] | np.ndarray,
        val_prices: Sequence[float] | np.ndarray,
        *,
        epoch_callback: Callable[[EpochReport], None] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> TrainedSequenceModel:
        """Train in a worker thread, returning to the event loop after each epoch.

        Cancelling the awaiting task lets the in-flight epoch finish in its
        worker thread before the model is disposed and the cancellation
        propagates.
        """

        epochs = self.iter_epochs(train_prices, val_prices)
        try:
            while True:
                check_cancelled(cancel_token, "sequence training")
                pending = asyncio.ensure_future(asyncio.to_thread(_advance, epochs))
                try:
                    step = await asyncio.shield(pending)
                except asyncio.CancelledError:
                    await _drain_epoch(pending)
                    raise
                if isinstance(step, TrainedSequenceModel):
                    return step
                if epoch_callback is not None:
                    epoch_callback(step)
        finally:
            epochs.close()


def forecast_sequence(
    trained: TrainedSequenceModel,
    prices: Sequence[float] | np.ndarray,
    horizon: int = 30,
) -> np.ndarray:
    """Walk forward from the last ``lookback`` prices, feeding predictions back."""

    if horizon <= 0:
        raise ValueError("horizon must be positive")
    history = np.asarray(prices, dtype=float)
    if len(history) < trained.lookback:
        raise InsufficientDataError(
            "Not enough history to seed the forecast window.",
            required=trained.lookback,
            available=len(history),
        )
    window = list(trained.scaler.transform(history[-trained.lookback :]))
    scaled_predictions = np.empty(horizon, dtype=float)
    for step in range(horizon):
        prediction = float(trained.model.predict_one(np.asarray(window[-trained.lookback :], dtype=float)))
        scaled_predictions[step] = prediction
        window.append(prediction)
    return trained.scaler.inverse(scaled_predictions)


def evaluate_sequence(
    trained: TrainedSequenceModel,
    context_prices: Sequence[float] | np.ndarray,
    test_prices: Sequence[float] | np.ndarray,
) -> ForecastMetrics:
    """One-step accuracy on test windows padded with trailing context."""

    series = context_padded(context_prices, test_prices, trained.lookback)
    X_test, y_test = build_sequences(trained.scaler.transform(series), trained.lookback)
    if len(y_test) == 0:
        return regression_metrics([], [])
    predictions = trained.model.predict_many(X_test)
    return regression_metrics(trained.scaler.inverse(y_test), trained.scaler.inverse(predictions))


__all__ = [
    "EarlyStopping",
    "EarlyStoppingDecision",
    "EarlyStoppingState",
    "EpochLosses",
    "EpochReport",
    "SequenceModel",
    "SequenceModelFactory",
    "SequenceRegressorTrainer",
    "TrainedSequenceModel",
    "evaluate_sequence",
    "forecast_sequence",
]
