"""Geometric Brownian motion forecaster.

Drift and volatility are annualised from daily log returns. Paths are
simulated over the unit interval split into ``horizon`` steps, which is how
the pipeline has always scaled time, so a one-step forecast covers the whole
annualised drift.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Dict, Sequence

import numpy as np

from ..exceptions import InsufficientDataError
from ..metrics import ForecastMetrics, regression_metrics

LOGGER = logging.getLogger(__name__)

TRADING_DAYS = 252
LOWER_QUANTILE = 0.05
MEDIAN_QUANTILE = 0.5
UPPER_QUANTILE = 0.95


@dataclass(frozen=True)
class GBMParams:
    """Annualised drift ``mu``, volatility ``sigma`` and the anchor price."""

    mu: float
    sigma: float
    last_price: float

    def with_last_price(self, price: float) -> "GBMParams":
        return replace(self, last_price=float(price))

    def to_dict(self) -> Dict[str, Any]:
        return {"mu": self.mu, "sigma": self.sigma, "last_price": self.last_price}


@dataclass(frozen=True)
class GBMForecast:
    median: np.ndarray
    lower5: np.ndarray
    upper95: np.ndarray

    @property
    def horizon(self) -> int:
        return len(self.median)


def fit_gbm(prices: Sequence[float] | np.ndarray) -> GBMParams:
    """Estimate GBM parameters from a training price series."""

    values = np.asarray(prices, dtype=float)
    if values.size < 2:
        raise InsufficientDataError(
            "GBM needs at least two prices to estimate returns.",
            required=2,
            available=int(values.size),
            segment="train",
        )
    log_returns = np.diff(np.log(values))
    mu = float(np.mean(log_returns) * TRADING_DAYS)
    sigma = float(np.std(log_returns) * math.sqrt(TRADING_DAYS))
    params = GBMParams(mu=mu, sigma=sigma, last_price=float(values[-1]))
    LOGGER.info("GBM params: mu=%.4f sigma=%.4f", params.mu, params.sigma)
    return params


def _order_statistic(sorted_paths: np.ndarray, quantile: float) -> np.ndarray:
    n_paths = sorted_paths.shape[0]
    index = min(int(math.floor(n_paths * quantile)), n_paths - 1)
    return sorted_paths[index].copy()


def simulate_gbm_paths(
    params: GBMParams,
    *,
    horizon: int,
    n_paths: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Return an ``(n_paths, horizon)`` matrix of simulated prices."""

    dt = 1.0 / horizon
    increments = rng.standard_normal((n_paths, horizon)) * np.sqrt(dt)
    brownian = np.cumsum(increments, axis=1)
    elapsed = np.arange(1, horizon + 1, dtype=float) / horizon
    drift = (params.mu - 0.5 * params.sigma**2) * elapsed
    return params.last_price * np.exp(drift + params.sigma * brownian)


def forecast_gbm(
    params: GBMParams,
    horizon: int = 30,
    n_paths: int = 5000,
    seed: int | None = 42,
) -> GBMForecast:
    """Median and 5/95 percentile bands over ``n_paths`` simulated paths.

    Identical ``params``, ``horizon``, ``n_paths`` and ``seed`` reproduce the
    same output exactly.
    """

    if horizon <= 0:
        raise ValueError("horizon must be positive")
    if n_paths <= 0:
        raise ValueError("n_paths must be positive")
    if not np.isfinite(params.last_price):
        raise ValueError("last_price must be a finite number")

    rng = np.random.default_rng(seed)
    paths = simulate_gbm_paths(params, horizon=horizon, n_paths=n_paths, rng=rng)
    paths.sort(axis=0)
    return GBMForecast(
        median=_order_statistic(paths, MEDIAN_QUANTILE),
        lower5=_order_statistic(paths, LOWER_QUANTILE),
        upper95=_order_statistic(paths, UPPER_QUANTILE),
    )


def rolling_gbm_predictions(
    params: GBMParams,
    test_prices: Sequence[float] | np.ndarray,
    context_last_price: float,
    *,
    n_paths: int = 500,
    base_seed: int = 42,
) -> np.ndarray:
    """One-step medians, each anchored at the previous actual price."""

    actual = np.asarray(test_prices, dtype=float)
    predictions = np.empty(actual.size, dtype=float)
    for i in range(actual.size):
        anchor = context_last_price if i == 0 else actual[i - 1]
        step = forecast_gbm(params.with_last_price(anchor), horizon=1, n_paths=n_paths, seed=base_seed + i)
        predictions[i] = step.median[0]
    return predictions


def evaluate_gbm(
    params: GBMParams,
    test_prices: Sequence[float] | np.ndarray,
    context_last_price: float,
    *,
    n_paths: int = 500,
    base_seed: int = 42,
) -> ForecastMetrics:
    predictions = rolling_gbm_predictions(
        params, test_prices, context_last_price, n_paths=n_paths, base_seed=base_seed
    )
    return regression_metrics(test_prices, predictions)


__all__ = [
    "GBMForecast",
    "GBMParams",
    "TRADING_DAYS",
    "evaluate_gbm",
    "fit_gbm",
    "forecast_gbm",
    "rolling_gbm_predictions",
    "simulate_gbm_paths",
]
