"""Time-ordered splitting, min-max scaling and sliding-window framing."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, NamedTuple, Sequence

import numpy as np

from .exceptions import InsufficientDataError

LOGGER = logging.getLogger(__name__)


class TimeSplit(NamedTuple):
    """Chronological train / validation / test segments."""

    train: np.ndarray
    val: np.ndarray
    test: np.ndarray


def split_bounds(n: int, train_frac: float = 0.8, val_frac: float = 0.1) -> tuple[int, int]:
    """Return the ``(train_end, val_end)`` cut indices for ``n`` observations."""

    train_frac = float(train_frac)
    val_frac = float(val_frac)
    if not 0 < train_frac <= 1:
        raise ValueError("train_frac must be in (0, 1].")
    if not 0 <= val_frac < 1:
        raise ValueError("val_frac must be in [0, 1).")
    if train_frac + val_frac > 1 + 1e-12:
        raise ValueError("train_frac + val_frac must not exceed 1.")
    train_end = int(math.floor(n * train_frac))
    val_end = min(n, int(math.floor(n * (train_frac + val_frac))))
    return train_end, val_end


def time_split(
    values: Sequence[float] | np.ndarray,
    train_frac: float = 0.8,
    val_frac: float = 0.1,
    *,
    min_length: int = 0,
) -> TimeSplit:
    """Split ``values`` into contiguous train/val/test segments without shuffling.

    ``train`` holds the oldest observations and ``test`` the newest. When any
    segment is shorter than ``min_length`` an :class:`InsufficientDataError`
    is raised so callers can bail out before training.
    """

    array = np.asarray(values, dtype=float)
    train_end, val_end = split_bounds(len(array), train_frac, val_frac)
    split = TimeSplit(
        train=array[:train_end],
        val=array[train_end:val_end],
        test=array[val_end:],
    )
    if min_length > 0:
        for name, segment in zip(split._fields, split):
            if len(segment) < min_length:
                raise InsufficientDataError(
                    "Split segment is too short.",
                    required=min_length,
                    available=len(segment),
                    segment=name,
                )
    LOGGER.debug(
        "Split %s observations into train=%s val=%s test=%s",
        len(array),
        len(split.train),
        len(split.val),
        len(split.test),
    )
    return split


@dataclass(frozen=True)
class MinMaxScaler:
    """Immutable min-max scaler fitted once on the training segment."""

    min: float
    max: float
    range: float

    def transform(self, values: Any) -> np.ndarray:
        return (np.asarray(values, dtype=float) - self.min) / self.range

    def inverse(self, values: Any) -> np.ndarray:
        return np.asarray(values, dtype=float) * self.range + self.min


def fit_scaler(data: Sequence[float] | np.ndarray) -> MinMaxScaler:
    """Fit a :class:`MinMaxScaler`; a constant series gets ``range=1``."""

    array = np.asarray(data, dtype=float)
    if array.size == 0:
        raise ValueError("Cannot fit a scaler on an empty series.")
    minimum = float(np.min(array))
    maximum = float(np.max(array))
    value_range = maximum - minimum
    if value_range == 0:
        value_range = 1.0
    return MinMaxScaler(min=minimum, max=maximum, range=value_range)


def build_sequences(scaled: Sequence[float] | np.ndarray, lookback: int = 60) -> tuple[np.ndarray, np.ndarray]:
    """Frame a scaled series as supervised ``(X, y)`` sliding windows.

    ``X[j]`` holds the ``lookback`` values preceding ``y[j]``.
    """

    if lookback <= 0:
        raise ValueError("lookback must be positive.")
    array = np.asarray(scaled, dtype=float)
    n_samples = len(array) - lookback
    if n_samples <= 0:
        return np.empty((0, lookback), dtype=float), np.empty(0, dtype=float)
    windows = np.lib.stride_tricks.sliding_window_view(array, lookback)[:n_samples]
    return np.array(windows, dtype=float), array[lookback:].copy()


def context_padded(
    context: Sequence[float] | np.ndarray,
    values: Sequence[float] | np.ndarray,
    lookback: int,
) -> np.ndarray:
    """Prefix ``values`` with the trailing ``lookback`` points of ``context``."""

    context_array = np.asarray(context, dtype=float)
    tail = context_array[-lookback:] if lookback > 0 else context_array[:0]
    return np.concatenate([tail, np.asarray(values, dtype=float)])


__all__ = [
    "MinMaxScaler",
    "TimeSplit",
    "build_sequences",
    "context_padded",
    "fit_scaler",
    "split_bounds",
    "time_split",
]
