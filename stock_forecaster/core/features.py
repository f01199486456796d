"""Technical-indicator feature engineering for the regression tree."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

RETURN_WINDOWS = (5, 10)
ROLLING_WINDOW = 20
RSI_PERIOD = 14
RSI_NEUTRAL = 50.0
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
VOLUME_WINDOW = 20

# Positional contract with the tree: never reorder.
FEATURE_COLUMNS: tuple[str, ...] = (
    "log_return",
    "return_5d",
    "return_10d",
    "rolling_mean_20",
    "rolling_std_20",
    "rsi_14",
    "macd",
    "macd_signal",
    "volume_ratio",
)


def exponential_average(values: pd.Series, span: int) -> pd.Series:
    """EMA with ``k = 2 / (span + 1)`` seeded at the first observation."""

    return values.ewm(span=span, adjust=False).mean()


def _relative_strength(prices: pd.Series, period: int = RSI_PERIOD) -> pd.Series:
    diff = prices.diff()
    gains = diff.clip(lower=0).rolling(window=period, min_periods=period).sum() / period
    losses = (-diff.clip(upper=0)).rolling(window=period, min_periods=period).sum() / period
    rsi = 100 - 100 / (1 + gains / (losses + 1e-10))
    return rsi.fillna(RSI_NEUTRAL)


def _volume_ratio(volumes: np.ndarray | None, n: int) -> pd.Series:
    if volumes is None or len(volumes) != n:
        return pd.Series(np.ones(n), dtype=float)
    series = pd.Series(volumes, dtype=float)
    mean = series.rolling(window=VOLUME_WINDOW, min_periods=VOLUME_WINDOW).mean()
    ratio = series / mean.where(mean > 0)
    return ratio.fillna(1.0)


def compute_features(
    prices: Sequence[float] | np.ndarray,
    volumes: Sequence[float] | np.ndarray | None = None,
) -> pd.DataFrame:
    """Return one indicator row per time step.

    Indicators that need more history than is available fall back to neutral
    values (0 returns, the current price as rolling mean, RSI 50, volume
    ratio 1) rather than NaN so every row can be fed to the tree.
    """

    close = pd.Series(np.asarray(prices, dtype=float))
    n = len(close)
    volume_array = None if volumes is None else np.asarray(volumes, dtype=float)

    frame = pd.DataFrame({"price": close})
    frame["log_return"] = np.log(close / close.shift(1)).fillna(0.0)
    for window in RETURN_WINDOWS:
        lagged = close.shift(window)
        frame[f"return_{window}d"] = ((close - lagged) / lagged).fillna(0.0)

    rolling = close.rolling(window=ROLLING_WINDOW, min_periods=ROLLING_WINDOW)
    frame["rolling_mean_20"] = rolling.mean().fillna(close)
    frame["rolling_std_20"] = rolling.std(ddof=0).fillna(0.0)

    frame["rsi_14"] = _relative_strength(close)

    frame["ema_12"] = exponential_average(close, MACD_FAST)
    frame["ema_26"] = exponential_average(close, MACD_SLOW)
    frame["macd"] = frame["ema_12"] - frame["ema_26"]
    frame["macd_signal"] = exponential_average(frame["macd"], MACD_SIGNAL)

    frame["volume_ratio"] = _volume_ratio(volume_array, n)
    return frame


def feature_matrix(frame: pd.DataFrame) -> np.ndarray:
    """Select :data:`FEATURE_COLUMNS` positionally as a float matrix."""

    return frame.loc[:, list(FEATURE_COLUMNS)].to_numpy(dtype=float)


def latest_feature_vector(
    prices: Sequence[float] | np.ndarray,
    volumes: Sequence[float] | np.ndarray | None = None,
) -> np.ndarray:
    return feature_matrix(compute_features(prices, volumes))[-1]


def build_supervised(
    prices: Sequence[float] | np.ndarray,
    volumes: Sequence[float] | np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Pair the features at ``t`` with the price at ``t + 1``."""

    price_array = np.asarray(prices, dtype=float)
    features = feature_matrix(compute_features(price_array, volumes))
    if len(price_array) < 2:
        return np.empty((0, len(FEATURE_COLUMNS))), np.empty(0)
    return features[:-1], price_array[1:]


__all__ = [
    "FEATURE_COLUMNS",
    "build_supervised",
    "compute_features",
    "exponential_average",
    "feature_matrix",
    "latest_feature_vector",
]
