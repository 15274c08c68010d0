"""
Tests for grid search reporting (CSV export and charts).
"""
import pandas as pd

from cycletrader.evaluation.simulation_types import EquityPoint, SimulationResult
from cycletrader.grid_test.grid_search import GridResult
from cycletrader.grid_test.reporter import GridReporter, results_to_frame, save_results_csv


def _results():
    out = []
    for lo, hi, pnl in [(5, 9, 12.0), (5, 11, -3.0), (7, 11, 4.0)]:
        out.append(GridResult(
            params={'min_duration': lo, 'max_duration': hi},
            pnl=pnl, pnl_percent=pnl / 10, trades=4, positions=3, win_rate=50.0, final_balance=1000 + pnl,
        ))
    return sorted(out, key=lambda r: r.pnl, reverse=True)


def _simulation_result():
    t0 = pd.Timestamp("2024-01-01", tz="UTC")
    curve = [EquityPoint(i, t0 + pd.Timedelta(hours=i), 1000.0 + i, 1000.0 + 1.5 * i) for i in range(10)]
    return SimulationResult(trades=[], equity_curve=curve, final_balance=1009.0, starting_balance=1000.0)


class TestResultsTable:
    def test_rank_column(self):
        df = results_to_frame(_results())
        assert list(df['rank']) == [1, 2, 3]
        assert list(df['pnl']) == [12.0, 4.0, -3.0]
        assert df.columns[1:3].tolist() == ['min_duration', 'max_duration']

    def test_empty(self):
        assert results_to_frame([]).empty

    def test_csv(self, tmp_path):
        path = GridReporter(str(tmp_path)).save_results_csv(_results(), "grid.csv")
        df = pd.read_csv(path)
        assert len(df) == 3
        assert df.loc[0, 'min_duration'] == 5

    def test_module_csv_creates_directory(self, tmp_path):
        path = save_results_csv(_results(), str(tmp_path / "nested" / "out.csv"))
        assert pd.read_csv(path).shape[0] == 3


class TestCharts:
    def test_heatmap(self, tmp_path):
        path = GridReporter(str(tmp_path)).plot_duration_heatmap(_results())
        assert path.endswith("duration_heatmap.png")
        assert (tmp_path / "duration_heatmap.png").stat().st_size > 0

    def test_heatmap_without_durations(self, tmp_path):
        result = GridResult(params={'leverage': 10}, pnl=1.0, pnl_percent=0.1, trades=3, positions=3,
                            win_rate=100.0, final_balance=1001.0)
        assert GridReporter(str(tmp_path)).plot_duration_heatmap([result]) == ""

    def test_equity_curve(self, tmp_path):
        path = GridReporter(str(tmp_path)).plot_equity_curve(_simulation_result(), "equity.png")
        assert (tmp_path / "equity.png").exists()
        assert path == str(tmp_path / "equity.png")

    def test_empty_equity_curve(self, tmp_path):
        empty = SimulationResult(trades=[], equity_curve=[], final_balance=1000.0, starting_balance=1000.0)
        assert GridReporter(str(tmp_path)).plot_equity_curve(empty) == ""
