"""Point-forecast accuracy metrics shared by every model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error

MAPE_EPSILON = 1e-10
METRIC_DECIMALS = 4


@dataclass(frozen=True)
class ForecastMetrics:
    """MAE / RMSE / MAPE triple; MAPE is expressed in percent."""

    mae: float
    rmse: float
    mape: float
    n_samples: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "MAE": round(self.mae, METRIC_DECIMALS),
            "RMSE": round(self.rmse, METRIC_DECIMALS),
            "MAPE": round(self.mape, METRIC_DECIMALS),
        }


def regression_metrics(y_true: Any, y_pred: Any) -> ForecastMetrics:
    """Compare predictions against actuals.

    An empty comparison yields zeros rather than NaN. MAPE divides by
    ``|actual| + 1e-10`` so a zero price never raises.
    """

    actual = np.asarray(y_true, dtype=float).ravel()
    predicted = np.asarray(y_pred, dtype=float).ravel()
    if actual.shape != predicted.shape:
        raise ValueError(
            f"y_true and y_pred must have the same length ({actual.size} != {predicted.size})."
        )
    if actual.size == 0:
        return ForecastMetrics(mae=0.0, rmse=0.0, mape=0.0, n_samples=0)

    mae = float(mean_absolute_error(actual, predicted))
    rmse = float(np.sqrt(mean_squared_error(actual, predicted)))
    mape = float(np.mean(np.abs(predicted - actual) / (np.abs(actual) + MAPE_EPSILON)) * 100)
    return ForecastMetrics(mae=mae, rmse=rmse, mape=mape, n_samples=int(actual.size))


def root_mean_squared_error(y_true: Any, y_pred: Any) -> float:
    actual = np.asarray(y_true, dtype=float).ravel()
    if actual.size == 0:
        return float("nan")
    return float(np.sqrt(mean_squared_error(actual, np.asarray(y_pred, dtype=float).ravel())))


__all__ = ["ForecastMetrics", "MAPE_EPSILON", "regression_metrics", "root_mean_squared_error"]
