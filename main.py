"""Command line entry point for the stock forecaster."""

from __future__ import annotations

from stock_forecaster.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
