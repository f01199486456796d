"""Equal-weight blending of per-model forecasts into one banded forecast."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import EmptyEnsembleError

LOGGER = logging.getLogger(__name__)

FALLBACK_BAND_FRACTION = 0.05

Band = Tuple[Sequence[float], Sequence[float]]


@dataclass(frozen=True)
class EnsembleForecast:
    """Blended point forecast with a disagreement-widened band.

    ``disagreement`` is the per-step population standard deviation across
    members, or ``None`` when a single model was blended.
    """

    point: np.ndarray
    lower5: np.ndarray
    upper95: np.ndarray
    disagreement: Optional[np.ndarray]
    members: tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "point": self.point.tolist(),
            "lower5": self.lower5.tolist(),
            "upper95": self.upper95.tolist(),
            "disagreement": None if self.disagreement is None else self.disagreement.tolist(),
            "members": list(self.members),
        }


def _half_spread(
    point: np.ndarray,
    bands: Mapping[str, Band] | None,
    preferred_band: str | None,
) -> np.ndarray:
    if bands:
        key = preferred_band if preferred_band in bands else next(iter(bands))
        lower, upper = (np.asarray(values, dtype=float) for values in bands[key])
        if lower.shape != point.shape or upper.shape != point.shape:
            raise ValueError(f"Band '{key}' does not match the forecast horizon ({point.size}).")
        return (upper - lower) / 2
    return np.abs(point) * FALLBACK_BAND_FRACTION


def blend_forecasts(
    forecasts: Mapping[str, Sequence[float]],
    bands: Mapping[str, Band] | None = None,
    *,
    preferred_band: str | None = "gbm",
) -> EnsembleForecast:
    """Average the point forecasts and widen the base band by model disagreement.

    ``bands`` maps a model name to its ``(lower, upper)`` arrays. The half
    spread comes from ``preferred_band`` when present, otherwise from the
    first band supplied, otherwise from 5% of the blended point.
    """

    if not forecasts:
        raise EmptyEnsembleError()

    names = tuple(forecasts)
    stacked = [np.asarray(forecasts[name], dtype=float).ravel() for name in names]
    horizon = stacked[0].size
    if any(values.size != horizon for values in stacked):
        raise ValueError("All forecasts must share the same horizon.")
    matrix = np.vstack(stacked)

    point = matrix.mean(axis=0)
    half = _half_spread(point, bands, preferred_band)
    disagreement = matrix.std(axis=0) if len(names) > 1 else None
    spread = half if disagreement is None else half + disagreement

    LOGGER.debug("Blended %s forecasts over %s steps", len(names), horizon)
    return EnsembleForecast(
        point=point,
        lower5=point - spread,
        upper95=point + spread,
        disagreement=disagreement,
        members=names,
    )


__all__ = ["EnsembleForecast", "FALLBACK_BAND_FRACTION", "blend_forecasts"]
