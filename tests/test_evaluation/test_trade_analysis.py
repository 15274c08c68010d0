"""
Tests for trade_analysis (aggregate by side and exit reason, drawdown, detection lag).
"""
import pytest
import pandas as pd

from cycletrader.evaluation.position_types import Trade
from cycletrader.evaluation.simulation_types import EquityPoint
from cycletrader.evaluation.trade_analysis import (
    aggregate_trades_by_reason,
    aggregate_trades_by_side,
    detection_lag,
    max_drawdown_pct,
    summarize_trades,
)
from cycletrader.shared.types import ExitReason, TradeType


def _trade(trade_id, side, pnl, reason=ExitReason.CYCLE_END, fees=0.0, meta=None, partial=False):
    return Trade(
        trade_id=trade_id,
        type=side,
        entry_price=100.0,
        exit_price=100.0 + pnl,
        entry_index=0,
        exit_index=1,
        pnl=pnl,
        pnl_percent=pnl,
        fees=fees,
        reason=reason,
        balance_after=1000.0 + pnl,
        partial=partial,
        cycle_metadata=meta or {},
    )


def _curve(values):
    t0 = pd.Timestamp("2024-01-01", tz="UTC")
    return [EquityPoint(i, t0 + pd.Timedelta(hours=i), v, v) for i, v in enumerate(values)]


class TestAggregateBySide:
    def test_empty(self):
        out = aggregate_trades_by_side([])
        assert out["LONG"]["count"] == 0
        assert out["SHORT"]["count"] == 0
        assert out["LONG"]["total_pnl"] == 0.0
        assert out["SHORT"]["profit_factor"] == 0.0

    def test_aggregates_long_short(self):
        trades = [
            _trade(1, TradeType.LONG, 5.0, fees=0.5),
            _trade(2, TradeType.LONG, -2.0, fees=0.5),
            _trade(3, TradeType.SHORT, 1.0),
            _trade(4, TradeType.SHORT, 1.0),
        ]
        out = aggregate_trades_by_side(trades)
        assert out["LONG"]["count"] == 2
        assert out["LONG"]["total_pnl"] == 3.0
        assert out["LONG"]["win_rate_pct"] == 50.0
        assert out["LONG"]["profit_factor"] == pytest.approx(2.5)
        assert out["LONG"]["total_fees"] == pytest.approx(1.0)
        assert out["SHORT"]["count"] == 2
        assert out["SHORT"]["profit_factor"] == float("inf")

    def test_break_even_counts_as_loss(self):
        out = aggregate_trades_by_side([_trade(1, TradeType.LONG, 0.0, reason=ExitReason.BREAK_EVEN)])
        assert out["LONG"]["losses"] == 1
        assert out["LONG"]["win_rate_pct"] == 0.0


class TestAggregateByReason:
    def test_only_present_reasons(self):
        trades = [
            _trade(1, TradeType.LONG, 3.0, reason=ExitReason.TP1_PARTIAL, partial=True),
            _trade(1, TradeType.LONG, 0.0, reason=ExitReason.BREAK_EVEN),
            _trade(2, TradeType.SHORT, -4.0, reason=ExitReason.SL_CYCLE_EXTREME),
        ]
        out = aggregate_trades_by_reason(trades)
        assert set(out) == {"TP1_Partial", "BreakEven", "SL_CycleExtreme"}
        assert out["SL_CycleExtreme"]["avg_loss"] == -4.0


class TestDrawdownAndLag:
    def test_max_drawdown(self):
        assert max_drawdown_pct(_curve([100, 120, 90, 130, 117])) == pytest.approx(25.0)
        assert max_drawdown_pct(_curve([100, 110, 120])) == 0.0
        assert max_drawdown_pct([]) == 0.0

    def test_detection_lag_one_per_position(self):
        meta = {"cycle_end_index": 30, "cycle_first_close_index": 26}
        trades = [
            _trade(1, TradeType.LONG, 2.0, meta=meta, partial=True),
            _trade(1, TradeType.LONG, 1.0, meta=meta),
            _trade(2, TradeType.SHORT, 1.0, meta={"cycle_end_index": 50, "cycle_first_close_index": 50}),
            _trade(3, TradeType.SHORT, 1.0),
        ]
        assert detection_lag(trades) == [4, 0]


class TestSummarize:
    def test_summary_keys(self):
        trades = [
            _trade(1, TradeType.LONG, 3.0, reason=ExitReason.TP1_PARTIAL, partial=True),
            _trade(1, TradeType.LONG, 6.0, reason=ExitReason.TP2_FULL),
        ]
        summary = summarize_trades(trades, _curve([1000, 1003, 1009]))
        assert summary["count"] == 2
        assert summary["positions"] == 1
        assert summary["total_pnl"] == 9.0
        assert summary["by_side"]["LONG"]["count"] == 2
        assert set(summary["by_reason"]) == {"TP1_Partial", "TP2_Full"}
        assert summary["max_drawdown_pct"] == 0.0
