"""
Tests for the command-line entry points.
"""
import sys
from argparse import Namespace
from unittest.mock import patch

import pandas as pd
import pytest

from cli import auto_trade, backtest, download, grid_search
from cycletrader.broker.binance_client import BinanceFuturesClient
from cycletrader.data.loader import save_candles


@pytest.fixture
def candle_file(tmp_path, v_shape_candles):
    return str(save_candles(v_shape_candles, tmp_path / "v.csv"))


def run_main(module, argv):
    with patch.object(sys, "argv", [module.__name__] + argv):
        return module.main()


class TestBacktestCLI:
    def test_runs_and_writes_outputs(self, candle_file, tmp_path, capsys):
        out_dir = tmp_path / "out"
        code = run_main(backtest, [candle_file, "--min-duration", "10", "--max-duration", "30", "--output-dir", str(out_dir)])
        assert code == 0
        assert "BACKTEST RESULTS" in capsys.readouterr().out
        assert (out_dir / "trades.csv").exists()
        assert (out_dir / "equity.csv").exists()

    def test_missing_file(self, tmp_path):
        assert run_main(backtest, [str(tmp_path / "missing.csv")]) == 1

    def test_resolve_config_overrides_durations(self):
        args = Namespace(config=None, preset="server", min_duration=9, max_duration=None)
        config = backtest.resolve_config(args)
        assert config.detector.min_duration == 9
        assert config.detector.max_duration == 33
        assert config.bot.capital_percentage == 15.0


class TestGridSearchCLI:
    def test_extra_grid_file(self, tmp_path):
        path = tmp_path / "grid.yaml"
        path.write_text("leverage: [10, 20]\nuse_trailing_stop: false\n")
        assert grid_search.load_extra_grid(str(path)) == {"leverage": [10, 20], "use_trailing_stop": [False]}

    def test_extra_grid_must_be_mapping(self, tmp_path):
        path = tmp_path / "grid.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            grid_search.load_extra_grid(str(path))

    def test_build_combinations_crosses_grids(self, tmp_path):
        path = tmp_path / "grid.yaml"
        path.write_text("leverage: [10, 20]\n")
        args = Namespace(min_range=5, max_range=11, step=2, min_gap=3, grid=str(path))
        combos = grid_search.build_combinations(args)
        assert len(combos) == 6
        assert {"min_duration": 7, "max_duration": 11, "leverage": 20} in combos

    def test_runs_end_to_end(self, candle_file, tmp_path):
        out_dir = tmp_path / "grid"
        code = run_main(grid_search, [
            candle_file, "--min-range", "9", "--max-range", "15", "--step", "2",
            "--workers", "1", "--min-trades", "1", "--output-dir", str(out_dir),
        ])
        assert code == 0
        assert (out_dir / "grid_results.csv").exists()

    def test_empty_grid(self, candle_file, tmp_path):
        code = run_main(grid_search, [candle_file, "--min-range", "9", "--max-range", "10", "--output-dir", str(tmp_path)])
        assert code == 1


class TestDownloadCLI:
    def test_drop_forming_candle(self):
        index = pd.date_range("2024-01-01", periods=3, freq="h", tz="UTC", name="time")
        frame = pd.DataFrame({"Close": [1.0, 2.0, 3.0]}, index=index)
        forming = download.drop_forming_candle(frame, "1h", pd.Timestamp("2024-01-01 02:30", tz="UTC"))
        closed = download.drop_forming_candle(frame, "1h", pd.Timestamp("2024-01-01 03:00", tz="UTC"))
        assert len(forming) == 2
        assert len(closed) == 3

    def test_download_writes_file(self, tmp_path, v_shape_candles):
        output = tmp_path / "sui.csv"
        with patch.object(BinanceFuturesClient, "get_historical_klines", return_value=v_shape_candles):
            code = run_main(download, ["--start", "2024-01-01", "--output", str(output), "--quiet"])
        assert code == 0
        assert len(pd.read_csv(output)) == 100

    def test_bad_interval(self):
        assert run_main(download, ["--start", "2024-01-01", "--interval", "7x"]) == 1


class TestAutoTradeCLI:
    def test_binance_client(self):
        client = auto_trade.create_client("binance", {}, testnet=True, quantity_precision=2, dry_run=False)
        assert isinstance(client, BinanceFuturesClient)
        assert client.testnet
        assert client.quantity_precision == 2

    def test_ibkr_connection_failure(self):
        with patch("cli.auto_trade.IBKRClient.connect", return_value=False) as connect:
            client = auto_trade.create_client(
                "ibkr", {"ibkr": {"port": 4002, "client_id": 5}}, testnet=False, quantity_precision=1, dry_run=True,
            )
        assert client is None
        assert connect.call_args.kwargs["port"] == 4002
        assert connect.call_args.kwargs["client_id"] == 5

    def test_automation_section(self, tmp_path):
        path = tmp_path / "live.yaml"
        path.write_text("name: t\nautomation:\n  exchange: ibkr\n")
        assert auto_trade.load_automation_section(path) == {"exchange": "ibkr"}

    def test_missing_config(self, tmp_path):
        assert run_main(auto_trade, ["--config", str(tmp_path / "nope.yaml")]) == 1
