"""Custom exceptions for the modeling package."""

from __future__ import annotations


class ForecastingError(RuntimeError):
    """Base class for errors raised by the forecasting engine."""


class InsufficientDataError(ForecastingError, ValueError):
    """Raised when a series is too short for the requested run."""

    def __init__(
        self,
        message: str | None = None,
        *,
        required: int | None = None,
        available: int | None = None,
        segment: str | None = None,
    ) -> None:
        self.required = int(required) if required is not None else None
        self.available = int(available) if available is not None else None
        self.segment = segment

        details: list[str] = [message or "Insufficient data for requested forecasting run."]
        if segment:
            details.append(f"Segment: {segment}.")
        if self.required is not None and self.available is not None:
            details.append(f"Need >= {self.required}, got {self.available}.")

        super().__init__(" ".join(details))


class EmptyEnsembleError(ForecastingError, ValueError):
    """Raised when an ensemble blend is requested without any forecasts."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "No forecasts to ensemble.")


class NoValidSplitError(ForecastingError):
    """Raised by the split search when no candidate satisfies the leaf constraints.

    Tree construction catches it and turns the node into a leaf.
    """

    def __init__(self, n_samples: int, min_samples_leaf: int) -> None:
        self.n_samples = int(n_samples)
        self.min_samples_leaf = int(min_samples_leaf)
        super().__init__(
            f"No split of {self.n_samples} samples satisfies min_samples_leaf={self.min_samples_leaf}."
        )


class ForecastCancelledError(ForecastingError):
    """Raised at a suspension point once the caller cancelled the run."""

    def __init__(self, stage: str | None = None) -> None:
        self.stage = stage
        message = "Forecast run cancelled"
        if stage:
            message += f" during {stage}"
        super().__init__(message + ".")


__all__ = [
    "ForecastingError",
    "InsufficientDataError",
    "EmptyEnsembleError",
    "NoValidSplitError",
    "ForecastCancelledError",
]
