"""Chronological price/volume series consumed by every forecasting model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

import numpy as np
import pandas as pd

from .preprocessing import split_bounds

LOGGER = logging.getLogger(__name__)

PRICE_COLUMNS = ("Close", "Adj Close")


def _optional_array(values: Any, length: int, name: str) -> np.ndarray | None:
    if values is None:
        return None
    array = np.asarray(values, dtype=float)
    if len(array) != length:
        raise ValueError(f"{name} must have the same length as prices ({len(array)} != {length}).")
    return array


@dataclass(frozen=True)
class PriceSeries:
    """Daily price history, strictly increasing by date.

    ``volumes`` is zero-filled when the provider does not supply it; the
    intraday columns (``high``, ``low``, ``open``) are optional and only carried
    through for callers that display them.
    """

    dates: pd.DatetimeIndex
    prices: np.ndarray
    volumes: np.ndarray = field(default_factory=lambda: np.empty(0))
    high: np.ndarray | None = None
    low: np.ndarray | None = None
    open: np.ndarray | None = None

    def __post_init__(self) -> None:
        dates = pd.DatetimeIndex(pd.to_datetime(self.dates))
        prices = np.asarray(self.prices, dtype=float)
        if len(dates) != len(prices):
            raise ValueError(
                f"dates and prices must have the same length ({len(dates)} != {len(prices)})."
            )
        if len(dates) > 1 and not (np.diff(dates.asi8) > 0).all():
            raise ValueError("dates must be strictly increasing with no duplicates.")
        if not np.isfinite(prices).all() or (prices <= 0).any():
            raise ValueError("prices must be finite and strictly positive.")

        volumes = np.asarray(self.volumes, dtype=float)
        if volumes.size == 0:
            volumes = np.zeros(len(prices), dtype=float)
        elif len(volumes) != len(prices):
            raise ValueError(
                f"volumes must have the same length as prices ({len(volumes)} != {len(prices)})."
            )
        volumes = np.where(np.isfinite(volumes), np.clip(volumes, 0.0, None), 0.0)

        object.__setattr__(self, "dates", dates)
        object.__setattr__(self, "prices", prices)
        object.__setattr__(self, "volumes", volumes)
        object.__setattr__(self, "high", _optional_array(self.high, len(prices), "high"))
        object.__setattr__(self, "low", _optional_array(self.low, len(prices), "low"))
        object.__setattr__(self, "open", _optional_array(self.open, len(prices), "open"))

    def __len__(self) -> int:
        return len(self.prices)

    @property
    def last_price(self) -> float:
        return float(self.prices[-1])

    @property
    def last_date(self) -> pd.Timestamp:
        return self.dates[-1]

    def slice(self, start: int | None = None, stop: int | None = None) -> "PriceSeries":
        """Return the contiguous sub-series ``[start:stop]``."""

        window = slice(start, stop)

        def _cut(values: np.ndarray | None) -> np.ndarray | None:
            return None if values is None else values[window]

        return PriceSeries(
            dates=self.dates[window],
            prices=self.prices[window],
            volumes=self.volumes[window],
            high=_cut(self.high),
            low=_cut(self.low),
            open=_cut(self.open),
        )

    def split(self, train_frac: float = 0.8, val_frac: float = 0.1) -> "SeriesSplit":
        """Split prices, volumes and dates at the same chronological cut points."""

        train_end, val_end = split_bounds(len(self), train_frac, val_frac)
        return SeriesSplit(
            train=self.slice(0, train_end),
            val=self.slice(train_end, val_end),
            test=self.slice(val_end, None),
        )

    def to_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({"Date": self.dates, "Close": self.prices, "Volume": self.volumes})
        for column, values in (("High", self.high), ("Low", self.low), ("Open", self.open)):
            if values is not None:
                frame[column] = values
        return frame

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "PriceSeries":
        """Build a series from an OHLCV dataframe with a ``Date`` column.

        Rows with unparsable dates or missing closes are dropped and the frame
        is sorted chronologically, mirroring how price frames are cleaned
        before feature engineering.
        """

        if frame.empty:
            raise ValueError("Price dataframe is empty.")
        if "Date" not in frame.columns:
            raise ValueError("Expected a 'Date' column in price data.")
        price_column = next((col for col in PRICE_COLUMNS if col in frame.columns), None)
        if price_column is None:
            raise ValueError("Expected a 'Close' or 'Adj Close' column in price data.")

        df = frame.copy()
        df["Date"] = pd.to_datetime(df["Date"], errors="coerce")
        df = df.dropna(subset=["Date"])
        for column in {price_column, "Volume", "High", "Low", "Open"}.intersection(df.columns):
            df[column] = pd.to_numeric(df[column], errors="coerce")
        df = df.dropna(subset=[price_column])
        if df.empty:
            raise ValueError("Price dataframe has no valid rows after cleaning.")

        df = df.sort_values("Date", kind="mergesort").drop_duplicates(subset="Date", keep="last").reset_index(drop=True)
        volumes = df["Volume"].fillna(0.0).to_numpy() if "Volume" in df.columns else None

        def _column(name: str) -> np.ndarray | None:
            return df[name].to_numpy(dtype=float) if name in df.columns else None

        LOGGER.debug("Loaded %s price rows using column %s", len(df), price_column)
        return cls(
            dates=pd.DatetimeIndex(df["Date"]),
            prices=df[price_column].to_numpy(dtype=float),
            volumes=volumes if volumes is not None else np.empty(0),
            high=_column("High"),
            low=_column("Low"),
            open=_column("Open"),
        )

    @classmethod
    def from_csv(cls, path: str | Path) -> "PriceSeries":
        """Load a series from a CSV file with OHLCV columns."""

        csv_path = Path(path).expanduser()
        if not csv_path.exists():
            raise FileNotFoundError(f"Price file not found: {csv_path}")
        return cls.from_frame(pd.read_csv(csv_path))


class SeriesSplit(NamedTuple):
    train: PriceSeries
    val: PriceSeries
    test: PriceSeries


__all__ = ["PriceSeries", "SeriesSplit"]
