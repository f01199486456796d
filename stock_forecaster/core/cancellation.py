"""Cooperative cancellation checked at the engine's suspension points."""

from __future__ import annotations

import threading

from .exceptions import ForecastCancelledError


class CancellationToken:
    """Thread-safe flag checked between epochs and grid configurations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str | None = None) -> None:
        if self._event.is_set():
            raise ForecastCancelledError(stage)


def check_cancelled(token: CancellationToken | None, stage: str) -> None:
    if token is not None:
        token.raise_if_cancelled(stage)


__all__ = ["CancellationToken", "check_cancelled"]
