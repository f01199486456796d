"""Per-model forecasts and the combined result of one forecasting run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

import numpy as np
import pandas as pd

from ..metrics import ForecastMetrics
from .ensembles import EnsembleForecast

ENSEMBLE_KEY = "ensemble"
FRAME_COLUMNS = ["Date", "Model", "Point_Forecast", "Lower_5", "Upper_95"]


def _as_list(values: Optional[np.ndarray]) -> list[float] | None:
    return None if values is None else [float(v) for v in values]


@dataclass
class ForecastResult:
    """Point forecast of one model with optional 5th/95th percentile bands."""

    model: str
    point: np.ndarray
    lower5: Optional[np.ndarray] = None
    upper95: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        self.point = np.asarray(self.point, dtype=float)
        for name in ("lower5", "upper95"):
            values = getattr(self, name)
            if values is None:
                continue
            array = np.asarray(values, dtype=float)
            if array.shape != self.point.shape:
                raise ValueError(f"{name} must match the point forecast length.")
            setattr(self, name, array)

    @property
    def horizon(self) -> int:
        return int(self.point.size)

    @property
    def has_band(self) -> bool:
        return self.lower5 is not None and self.upper95 is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "point": _as_list(self.point),
            "lower5": _as_list(self.lower5),
            "upper95": _as_list(self.upper95),
        }


@dataclass
class ForecastRunResult(Mapping[str, Any]):
    """Everything a forecasting run produced, including per-model failures."""

    ticker: str | None
    horizon: int
    dates: pd.DatetimeIndex
    calendar_span: str
    forecasts: Dict[str, ForecastResult] = field(default_factory=dict)
    metrics: Dict[str, ForecastMetrics] = field(default_factory=dict)
    ensemble: Optional[EnsembleForecast] = None
    errors: Dict[str, str] = field(default_factory=dict)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def models(self) -> list[str]:
        return list(self.forecasts)

    def to_dict(self) -> Dict[str, Any]:
        """Return a plain dictionary representation suitable for serialization."""

        return {
            "ticker": self.ticker,
            "horizon": self.horizon,
            "dates": [ts.strftime("%Y-%m-%d") for ts in self.dates],
            "calendar_span": self.calendar_span,
            "forecasts": {name: result.to_dict() for name, result in self.forecasts.items()},
            "metrics": {name: metrics.to_dict() for name, metrics in self.metrics.items()},
            "ensemble": self.ensemble.to_dict() if self.ensemble is not None else None,
            "errors": dict(self.errors),
            "details": dict(self.details),
        }

    def to_frame(self) -> pd.DataFrame:
        """Long-form table with one row per model and forecast date."""

        rows: list[dict[str, Any]] = []
        outputs: list[tuple[str, np.ndarray, Optional[np.ndarray], Optional[np.ndarray]]] = [
            (name, result.point, result.lower5, result.upper95) for name, result in self.forecasts.items()
        ]
        if self.ensemble is not None:
            outputs.append((ENSEMBLE_KEY, self.ensemble.point, self.ensemble.lower5, self.ensemble.upper95))

        for name, point, lower, upper in outputs:
            for step, date in enumerate(self.dates[: len(point)]):
                rows.append(
                    {
                        "Date": date.strftime("%Y-%m-%d"),
                        "Model": name,
                        "Point_Forecast": float(point[step]),
                        "Lower_5": float(lower[step]) if lower is not None else np.nan,
                        "Upper_95": float(upper[step]) if upper is not None else np.nan,
                    }
                )
        return pd.DataFrame(rows, columns=FRAME_COLUMNS)

    # Mapping protocol -------------------------------------------------
    def __getitem__(self, key: str) -> Any:  # pragma: no cover - trivial mapping wrapper
        return self.to_dict()[key]

    def __iter__(self) -> Iterator[str]:  # pragma: no cover - trivial mapping wrapper
        return iter(self.to_dict())

    def __len__(self) -> int:  # pragma: no cover - trivial mapping wrapper
        return len(self.to_dict())


__all__ = ["ENSEMBLE_KEY", "FRAME_COLUMNS", "ForecastResult", "ForecastRunResult"]
