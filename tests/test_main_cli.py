"""Tests for the command line interface."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest import TestCase
from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import main as entry_point  # pylint: disable=wrong-import-position
from stock_forecaster import cli  # pylint: disable=wrong-import-position
from stock_forecaster.core.modeling.forecast_result import (  # pylint: disable=wrong-import-position
    ForecastResult,
    ForecastRunResult,
)


def _stub_result() -> ForecastRunResult:
    dates = pd.bdate_range("2024-01-08", periods=2)
    return ForecastRunResult(
        ticker="AAPL",
        horizon=2,
        dates=dates,
        calendar_span="2024-01-08 to 2024-01-09",
        forecasts={"gbm": ForecastResult("gbm", [1.0, 2.0], [0.5, 1.5], [1.5, 2.5])},
    )


class ParseArgsTests(TestCase):
    """Verify the CLI argument parsing behaviour."""

    def test_defaults(self) -> None:
        args = cli.parse_args(["--csv", "prices.csv"])
        self.assertEqual(args.csv, "prices.csv")
        self.assertEqual(args.format, "json")
        self.assertEqual(args.log_level, "INFO")
        self.assertFalse(args.no_ensemble)
        self.assertIsNone(args.horizon)

    def test_overrides_from_flags(self) -> None:
        args = cli.parse_args(
            ["--csv", "p.csv", "--seed", "7", "--no-ensemble", "--models", "gbm", "--horizon", "10"]
        )
        overrides = cli.build_overrides(args)
        self.assertEqual(overrides["gbm_seed"], 7)
        self.assertEqual(overrides["tree_random_state"], 7)
        self.assertFalse(overrides["ensemble"])
        self.assertEqual(overrides["models"], "gbm")
        self.assertEqual(overrides["horizon"], 10)

    def test_root_entry_point_delegates_to_cli(self) -> None:
        self.assertIs(entry_point.main, cli.main)


class MainTests(TestCase):
    """Exercise ``main`` with the application stubbed out."""

    @patch("stock_forecaster.cli.StockForecasterApplication")
    def test_success_prints_json(self, app_cls: MagicMock) -> None:
        app_cls.from_environment.return_value.run_csv.return_value = _stub_result()
        with patch("builtins.print") as mock_print:
            code = cli.main(["--csv", "prices.csv", "--ticker", "aapl"])

        self.assertEqual(code, 0)
        app_cls.from_environment.assert_called_once()
        self.assertEqual(app_cls.from_environment.call_args.kwargs["ticker"], "aapl")
        payload = json.loads(mock_print.call_args.args[0])
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["forecasts"]["gbm"]["point"], [1.0, 2.0])

    @patch("stock_forecaster.cli.StockForecasterApplication")
    def test_failure_reports_error(self, app_cls: MagicMock) -> None:
        app_cls.from_environment.return_value.run_csv.side_effect = FileNotFoundError("missing")
        with patch("builtins.print") as mock_print:
            code = cli.main(["--csv", "missing.csv"])

        self.assertEqual(code, 1)
        payload = json.loads(mock_print.call_args.args[0])
        self.assertEqual(payload, {"status": "error", "message": "missing"})

    @patch("stock_forecaster.cli.StockForecasterApplication")
    def test_table_format(self, app_cls: MagicMock) -> None:
        app_cls.from_environment.return_value.run_csv.return_value = _stub_result()
        with patch("builtins.print") as mock_print:
            code = cli.main(["--csv", "prices.csv", "--format", "table"])

        self.assertEqual(code, 0)
        output = mock_print.call_args.args[0]
        self.assertIn("2024-01-08 to 2024-01-09", output)
        self.assertIn("Point_Forecast", output)


def test_end_to_end_csv_run(tmp_path, capsys):
    rng = np.random.default_rng(5)
    n = 100
    frame = pd.DataFrame(
        {
            "Date": pd.bdate_range("2023-01-02", periods=n),
            "Close": 50 * np.exp(np.cumsum(rng.normal(0, 0.01, size=n))),
            "Volume": rng.uniform(1e5, 2e5, size=n),
        }
    )
    path = tmp_path / "prices.csv"
    frame.to_csv(path, index=False)

    code = cli.main(
        [
            "--csv",
            str(path),
            "--models",
            "gbm,decision_tree",
            "--horizon",
            "5",
            "--lookback",
            "10",
            "--gbm-paths",
            "100",
        ]
    )

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert set(payload["forecasts"]) == {"gbm", "decision_tree"}
    assert payload["ensemble"] is not None
    assert len(payload["dates"]) == 5
