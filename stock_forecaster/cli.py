"""Command line entry point for forecasting a price history CSV."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import pandas as pd

from stock_forecaster.app import StockForecasterApplication
from stock_forecaster.core.modeling.forecast_result import ForecastRunResult


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Forecast a stock price history with LSTM, GBM and decision tree models.",
    )
    parser.add_argument("--csv", required=True, help="Price history CSV with Date and Close columns.")
    parser.add_argument("--ticker", help="Ticker symbol used to label the output.")
    parser.add_argument(
        "--models",
        help="Comma separated list of models to run (default: lstm,gbm,decision_tree).",
    )
    parser.add_argument("--horizon", type=int, help="Trading days to forecast (default: 30).")
    parser.add_argument("--lookback", type=int, help="Sequence window length (default: 60).")
    parser.add_argument("--gbm-paths", type=int, help="Monte Carlo paths for the GBM forecast.")
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for the GBM simulation and the decision tree search.",
    )
    parser.add_argument(
        "--no-ensemble",
        action="store_true",
        help="Skip blending the model forecasts into an ensemble.",
    )
    parser.add_argument(
        "--format",
        choices=["json", "table"],
        default="json",
        help="Output format (default: %(default)s).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "ticker": args.ticker,
        "models": args.models,
        "horizon": args.horizon,
        "lookback": args.lookback,
        "gbm_paths": args.gbm_paths,
    }
    if args.seed is not None:
        overrides["gbm_seed"] = args.seed
        overrides["tree_random_state"] = args.seed
    if args.no_ensemble:
        overrides["ensemble"] = False
    return overrides


def render_table(result: ForecastRunResult) -> str:
    metrics = pd.DataFrame({name: m.to_dict() for name, m in result.metrics.items()}).T
    sections = [f"Forecast {result.ticker or ''} {result.calendar_span}".strip()]
    if not metrics.empty:
        sections.append(metrics.to_string())
    sections.append(result.to_frame().to_string(index=False))
    for name, message in result.errors.items():
        sections.append(f"{name} failed: {message}")
    return "\n\n".join(sections)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        app = StockForecasterApplication.from_environment(**build_overrides(args))
        result = app.run_csv(args.csv)
    except Exception as exc:  # pylint: disable=broad-except
        logging.exception("Forecast run failed")
        print(json.dumps({"status": "error", "message": str(exc)}), file=sys.stderr)
        return 1

    if args.format == "table":
        print(render_table(result))
    else:
        print(json.dumps({"status": "ok", **result.to_dict()}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
