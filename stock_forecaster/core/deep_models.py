"""PyTorch LSTM used as the default sequence-model primitive."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Dict, Optional

import numpy as np

from .modeling.sequence import EpochLosses, SequenceModel

LOGGER = logging.getLogger(__name__)

try:  # Optional dependency
    import torch
    from torch import Tensor, nn
    from torch.utils.data import DataLoader, TensorDataset
except Exception:  # pragma: no cover - torch is optional
    torch = None  # type: ignore
    nn = None  # type: ignore
    Tensor = Any  # type: ignore
    DataLoader = TensorDataset = None  # type: ignore


def _require_torch() -> None:
    if torch is None:  # pragma: no cover - guarded by runtime check
        raise ImportError(
            "PyTorch is required for the LSTM forecaster. Install torch>=2.0 "
            "(pip install 'stock-forecaster[deep]') to use it."
        )


def _to_windows(data: Any) -> np.ndarray:
    """Shape windows as ``(n_samples, lookback, 1)`` float32."""

    array = np.asarray(data, dtype=np.float32)
    if array.ndim == 1:
        array = array.reshape(1, -1)
    return array[:, :, None]


_ModuleBase = nn.Module if nn is not None else object


class _StackedLSTM(_ModuleBase):  # type: ignore[misc, valid-type]
    """LSTM -> dropout -> LSTM -> dropout -> dense(relu) -> dense(1)."""

    def __init__(self, units: int, dropout: float, dense_units: int) -> None:
        super().__init__()
        self.encoder = nn.LSTM(input_size=1, hidden_size=units, batch_first=True)
        self.encoder_dropout = nn.Dropout(dropout)
        self.decoder = nn.LSTM(input_size=units, hidden_size=units, batch_first=True)
        self.decoder_dropout = nn.Dropout(dropout)
        self.dense = nn.Linear(units, dense_units)
        self.head = nn.Linear(dense_units, 1)

    def forward(self, x: Tensor) -> Tensor:  # type: ignore[override]
        sequence, _ = self.encoder(x)
        sequence = self.encoder_dropout(sequence)
        output, _ = self.decoder(sequence)
        final_state = self.decoder_dropout(output[:, -1, :])
        return self.head(torch.relu(self.dense(final_state)))


class TorchLSTMModel(SequenceModel):
    """Two-layer LSTM regressor trained one epoch at a time."""

    def __init__(
        self,
        lookback: int,
        *,
        units: int = 64,
        dropout: float = 0.2,
        dense_units: int = 32,
        batch_size: int = 32,
        lr: float = 1e-3,
        device: str | None = None,
        random_state: int | None = None,
    ) -> None:
        _require_torch()
        self.lookback = int(lookback)
        self.units = units
        self.dropout = dropout
        self.dense_units = dense_units
        self.batch_size = batch_size
        self.lr = lr
        self.random_state = random_state
        self.device_name = device or ("cuda" if torch.cuda.is_available() else "cpu")  # type: ignore[union-attr]
        self.device = torch.device(self.device_name)

        self._generator: Optional[torch.Generator] = None
        if random_state is not None:
            torch.manual_seed(random_state)
            self._generator = torch.Generator().manual_seed(random_state)

        self._model: Optional[nn.Module] = _StackedLSTM(units, dropout, dense_units).to(self.device)
        self._optimizer = torch.optim.Adam(self._model.parameters(), lr=self.lr)
        self._criterion = nn.MSELoss()

    # sklearn compatibility
    def get_params(self, deep: bool = True) -> Dict[str, Any]:  # pragma: no cover - trivial
        return {
            "lookback": self.lookback,
            "units": self.units,
            "dropout": self.dropout,
            "dense_units": self.dense_units,
            "batch_size": self.batch_size,
            "lr": self.lr,
            "device": self.device_name,
            "random_state": self.random_state,
        }

    def _require_model(self) -> nn.Module:
        if self._model is None:
            raise RuntimeError("Model has been disposed.")
        return self._model

    def _tensor(self, windows: Any) -> Tensor:
        return torch.from_numpy(_to_windows(windows)).to(self.device)  # type: ignore[arg-type]

    def fit_one_epoch(self, X: Any, y: Any, X_val: Any, y_val: Any) -> EpochLosses:
        model = self._require_model()
        targets = torch.from_numpy(np.asarray(y, dtype=np.float32))  # type: ignore[arg-type]
        dataset = TensorDataset(torch.from_numpy(_to_windows(X)), targets)  # type: ignore[arg-type]
        dataloader = DataLoader(dataset, batch_size=self.batch_size, shuffle=True, generator=self._generator)

        model.train()
        total_loss = 0.0
        for batch_X, batch_y in dataloader:
            batch_X = batch_X.to(self.device)
            batch_y = batch_y.to(self.device)
            self._optimizer.zero_grad()
            preds = model(batch_X).squeeze(-1)
            loss = self._criterion(preds, batch_y)
            loss.backward()
            self._optimizer.step()
            total_loss += float(loss.item()) * len(batch_y)
        train_loss = total_loss / max(len(dataset), 1)

        val_loss = float("nan")
        if len(y_val) > 0:
            predictions = self.predict_many(X_val)
            val_loss = float(np.mean((predictions - np.asarray(y_val, dtype=float)) ** 2))
        return EpochLosses(loss=train_loss, val_loss=val_loss)

    def predict_many(self, windows: Any) -> np.ndarray:
        model = self._require_model()
        model.eval()
        with torch.no_grad():
            preds = model(self._tensor(windows)).squeeze(-1).cpu().numpy()
        return preds.astype(float)

    def predict_one(self, window: Any) -> float:
        return float(self.predict_many(np.asarray(window, dtype=float).reshape(1, -1))[0])

    def snapshot_weights(self) -> Dict[str, Any]:
        model = self._require_model()
        return {key: value.detach().clone() for key, value in model.state_dict().items()}

    def restore_weights(self, snapshot: Dict[str, Any]) -> None:
        self._require_model().load_state_dict(snapshot)

    def dispose(self) -> None:
        if self._model is None:
            return
        self._model = None
        self._optimizer = None
        if self.device.type == "cuda":  # pragma: no cover - hardware dependent
            torch.cuda.empty_cache()
        LOGGER.debug("Disposed LSTM model")


def lstm_model_factory(**params: Any) -> Callable[[int], TorchLSTMModel]:
    """Return a ``factory(lookback)`` building :class:`TorchLSTMModel` instances."""

    _require_torch()
    return functools.partial(TorchLSTMModel, **params)


__all__ = ["TorchLSTMModel", "lstm_model_factory"]
