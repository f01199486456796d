"""Configuration utilities for the stock forecaster package."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Iterable, Optional, Sequence

from dotenv import load_dotenv

ENV_PREFIX = "STOCK_FORECASTER_"

MODEL_LSTM = "lstm"
MODEL_GBM = "gbm"
MODEL_DECISION_TREE = "decision_tree"
DEFAULT_MODELS: tuple[str, ...] = (MODEL_LSTM, MODEL_GBM, MODEL_DECISION_TREE)

MODEL_ALIASES: dict[str, str] = {
    "lstm": MODEL_LSTM,
    "gbm": MODEL_GBM,
    "monte_carlo": MODEL_GBM,
    "decision_tree": MODEL_DECISION_TREE,
    "decisiontree": MODEL_DECISION_TREE,
    "tree": MODEL_DECISION_TREE,
    "dt": MODEL_DECISION_TREE,
}


def _coerce_iterable(
    value: Optional[Iterable[str] | str], default: Sequence[str]
) -> tuple[str, ...]:
    if value is None:
        return tuple(default)
    if isinstance(value, str):
        candidates = [part.strip() for part in value.split(",")]
    else:
        candidates = [str(item).strip() for item in value]
    return tuple(filter(None, candidates)) or tuple(default)


def _coerce_bool(value: Optional[object], *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "y", "on"}:
            return True
        if normalized in {"false", "0", "no", "n", "off"}:
            return False
    return bool(value)


def _coerce_int(value: Any, name: str, *, minimum: int | None = None) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer.") from exc
    if minimum is not None and parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}.")
    return parsed


def _coerce_optional_int(value: Any, name: str) -> int | None:
    if value is None or (isinstance(value, str) and value.strip().lower() in {"", "none", "null"}):
        return None
    return _coerce_int(value, name)


def _coerce_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number.") from exc


def normalise_models(values: Optional[Iterable[str] | str]) -> tuple[str, ...]:
    """Map model names and aliases onto canonical keys, keeping order."""

    models: list[str] = []
    for raw in _coerce_iterable(values, DEFAULT_MODELS):
        key = raw.lower().replace("-", "_").replace(" ", "_")
        if key not in MODEL_ALIASES:
            raise ValueError(
                f"Unknown model '{raw}'. Expected one of: {', '.join(DEFAULT_MODELS)}."
            )
        canonical = MODEL_ALIASES[key]
        if canonical not in models:
            models.append(canonical)
    return tuple(models)


@dataclass
class ForecastConfig:
    """Runtime configuration for :class:`ForecastPipeline`."""

    ticker: Optional[str] = None
    horizon: int = 30
    lookback: int = 60
    train_frac: float = 0.8
    val_frac: float = 0.1
    models: tuple[str, ...] = DEFAULT_MODELS
    ensemble: bool = True
    gbm_paths: int = 5000
    gbm_eval_paths: int = 500
    gbm_seed: int = 42
    lstm_epochs: int = 50
    lstm_patience: int = 5
    lstm_batch_size: int = 32
    lstm_units: int = 64
    lstm_dropout: float = 0.2
    lstm_learning_rate: float = 1e-3
    lstm_random_state: Optional[int] = None
    tree_max_configs: int = 50
    tree_random_state: Optional[int] = 42
    min_history_margin: int = 50

    def __post_init__(self) -> None:
        if self.ticker is not None:
            self.ticker = str(self.ticker).strip().upper() or None
        self.horizon = _coerce_int(self.horizon, "horizon", minimum=1)
        self.lookback = _coerce_int(self.lookback, "lookback", minimum=1)
        self.train_frac = _coerce_float(self.train_frac, "train_frac")
        self.val_frac = _coerce_float(self.val_frac, "val_frac")
        if not 0 < self.train_frac <= 1:
            raise ValueError("train_frac must be in (0, 1].")
        if not 0 <= self.val_frac < 1:
            raise ValueError("val_frac must be in [0, 1).")
        if self.train_frac + self.val_frac > 1:
            raise ValueError("train_frac + val_frac must not exceed 1.")

        self.models = normalise_models(self.models)
        self.ensemble = _coerce_bool(self.ensemble, default=True)
        self.gbm_paths = _coerce_int(self.gbm_paths, "gbm_paths", minimum=1)
        self.gbm_eval_paths = _coerce_int(self.gbm_eval_paths, "gbm_eval_paths", minimum=1)
        self.gbm_seed = _coerce_int(self.gbm_seed, "gbm_seed")
        self.lstm_epochs = _coerce_int(self.lstm_epochs, "lstm_epochs", minimum=1)
        self.lstm_patience = _coerce_int(self.lstm_patience, "lstm_patience", minimum=1)
        self.lstm_batch_size = _coerce_int(self.lstm_batch_size, "lstm_batch_size", minimum=1)
        self.lstm_units = _coerce_int(self.lstm_units, "lstm_units", minimum=1)
        self.lstm_dropout = _coerce_float(self.lstm_dropout, "lstm_dropout")
        if not 0 <= self.lstm_dropout < 1:
            raise ValueError("lstm_dropout must be in [0, 1).")
        self.lstm_learning_rate = _coerce_float(self.lstm_learning_rate, "lstm_learning_rate")
        self.lstm_random_state = _coerce_optional_int(self.lstm_random_state, "lstm_random_state")
        self.tree_max_configs = _coerce_int(self.tree_max_configs, "tree_max_configs", minimum=1)
        self.tree_random_state = _coerce_optional_int(self.tree_random_state, "tree_random_state")
        self.min_history_margin = _coerce_int(self.min_history_margin, "min_history_margin", minimum=0)

    @property
    def min_history(self) -> int:
        """Smallest series length a run accepts."""

        return self.lookback + self.horizon + self.min_history_margin

    def lstm_params(self) -> dict[str, Any]:
        return {
            "units": self.lstm_units,
            "dropout": self.lstm_dropout,
            "batch_size": self.lstm_batch_size,
            "lr": self.lstm_learning_rate,
            "random_state": self.lstm_random_state,
        }

    def to_dict(self) -> dict[str, Any]:
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["models"] = list(self.models)
        return payload


def load_environment() -> None:
    """Load configuration from an optional ``.env`` file."""

    load_dotenv()


def environment_overrides() -> dict[str, str]:
    """Collect ``STOCK_FORECASTER_<FIELD>`` variables for known config fields."""

    values: dict[str, str] = {}
    for item in fields(ForecastConfig):
        raw = os.getenv(f"{ENV_PREFIX}{item.name.upper()}")
        if raw is not None and raw.strip() != "":
            values[item.name] = raw
    return values


def build_config(**overrides: Any) -> ForecastConfig:
    """Build a :class:`ForecastConfig` from the environment and explicit overrides.

    Explicit keyword arguments win over environment variables; ``None``
    overrides are ignored so CLI flags left unset fall through.
    """

    load_environment()
    known = {item.name for item in fields(ForecastConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise TypeError(f"Unknown configuration options: {', '.join(sorted(unknown))}")

    values: dict[str, Any] = environment_overrides()
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ForecastConfig(**values)


__all__ = [
    "DEFAULT_MODELS",
    "ENV_PREFIX",
    "ForecastConfig",
    "MODEL_DECISION_TREE",
    "MODEL_GBM",
    "MODEL_LSTM",
    "build_config",
    "environment_overrides",
    "load_environment",
    "normalise_models",
]
