"""
Tests for the position state machine.
"""
import pandas as pd
import pytest

from cycletrader.evaluation.position import PositionManager, average_amplitude_pct
from cycletrader.shared.types import Candle, Cycle, Direction, ExitReason, TradeType
from cycletrader.signals.config import BotConfig

T0 = pd.Timestamp("2024-01-01", tz="UTC")


def bar(high, low, close, open_=None):
    return Candle(time=T0, open=close if open_ is None else open_, high=high, low=low, close=close)


def cycle(start_price, amplitude, start_index=0):
    return Cycle(
        start_index=start_index, end_index=start_index + 20, extremum_index=start_index + 10, duration=20,
        amplitude=amplitude, start_price=start_price, extremum_price=start_price + amplitude,
        end_price=start_price, first_potential_end=start_index + 20, direction=Direction.INVERTED,
    )


@pytest.fixture
def manager():
    """Fixed exits, no trailing, no fees: 1000 balance, 30% margin, 20x."""
    pm = PositionManager(BotConfig(use_dynamic_exits=False, use_trailing_stop=False, fees_enabled=False))
    pm.avg_index_pump = 10.0
    pm.avg_inverse_drop = 10.0
    return pm


class TestOpenPosition:
    def test_sizing_and_fixed_targets(self, manager):
        pos = manager.open_position(TradeType.LONG, 100.0, 5, stop_price=95.0)
        assert pos.capital_used == pytest.approx(300.0)
        assert pos.position_size == pytest.approx(60.0)
        assert pos.initial_capital == pos.capital_used
        assert pos.sl_price == 95.0
        assert pos.tp1_price == pytest.approx(103.0)
        assert pos.tp2_price == pytest.approx(115.0)

    def test_short_targets_below_entry(self, manager):
        pos = manager.open_position(TradeType.SHORT, 100.0, 5, stop_price=105.0)
        assert pos.tp1_price == pytest.approx(97.0)
        assert pos.tp2_price == pytest.approx(85.0)

    def test_counter_trend_halves_size(self, manager):
        pos = manager.open_position(TradeType.LONG, 100.0, 5, stop_price=95.0, counter_trend=True)
        assert pos.capital_used == pytest.approx(150.0)
        assert pos.counter_trend

    def test_single_position(self, manager):
        manager.open_position(TradeType.LONG, 100.0, 5, stop_price=95.0)
        with pytest.raises(RuntimeError, match="is open"):
            manager.open_position(TradeType.SHORT, 100.0, 6, stop_price=105.0)

    def test_non_positive_price(self, manager):
        with pytest.raises(ValueError, match="Entry price"):
            manager.open_position(TradeType.LONG, 0.0, 5, stop_price=0.0)

    def test_trade_ids_increase(self, manager):
        first = manager.open_position(TradeType.LONG, 100.0, 5, stop_price=95.0)
        manager.close_position(100.0, 6, ExitReason.CYCLE_END)
        second = manager.open_position(TradeType.LONG, 100.0, 7, stop_price=95.0)
        assert second.trade_id == first.trade_id + 1


class TestDynamicExits:
    def _manager(self):
        return PositionManager(BotConfig(use_dynamic_exits=True, use_trailing_stop=False, fees_enabled=False))

    def test_atr_levels(self):
        pos = self._manager().open_position(TradeType.LONG, 100.0, 0, stop_price=90.0, atr=2.0)
        assert pos.sl_price == pytest.approx(96.0)
        assert pos.tp1_price == pytest.approx(106.0)
        assert pos.tp2_price == pytest.approx(112.0)

    def test_short_atr_levels(self):
        pos = self._manager().open_position(TradeType.SHORT, 100.0, 0, stop_price=110.0, atr=2.0)
        assert pos.sl_price == pytest.approx(104.0)
        assert pos.tp2_price == pytest.approx(88.0)

    def test_liquidation_guard_refuses(self):
        """6% stop at 20x is 120% of margin."""
        pm = self._manager()
        assert pm.open_position(TradeType.LONG, 100.0, 0, stop_price=90.0, atr=3.0) is None
        assert pm.position is None

    def test_zero_atr_falls_back_to_cycle_stop(self):
        pos = self._manager().open_position(TradeType.LONG, 100.0, 0, stop_price=90.0, atr=0.0)
        assert pos.sl_price == 90.0


class TestExits:
    def test_stop_on_close(self, manager):
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        # wick through the stop without a close beyond it holds
        assert manager.check_exit(bar(high=100.5, low=94.0, close=96.0), 1) is None
        assert manager.check_exit(bar(high=99.0, low=93.5, close=94.0), 2) is ExitReason.SL_CYCLE_EXTREME
        trade = manager.trades[-1]
        assert trade.exit_price == 94.0
        assert trade.pnl == pytest.approx(-360.0)
        assert manager.balance == pytest.approx(640.0)
        assert manager.position is None

    def test_stop_checked_before_targets(self, manager):
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        assert manager.check_exit(bar(high=120.0, low=90.0, close=94.0), 1) is ExitReason.SL_CYCLE_EXTREME

    def test_tp1_partial_then_break_even(self, manager):
        pos = manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        assert manager.check_exit(bar(high=104.0, low=100.5, close=102.0), 1) is ExitReason.TP1_PARTIAL
        partial = manager.trades[-1]
        assert partial.partial and partial.fraction == 0.6
        assert partial.exit_price == pytest.approx(103.0)
        assert partial.pnl == pytest.approx(108.0)
        assert pos.capital_used == pytest.approx(pos.initial_capital * 0.4)
        assert pos.position_size == pytest.approx(pos.initial_size * 0.4)
        assert pos.break_even_active

        # below the old stop, but break-even replaces it
        assert manager.check_exit(bar(high=101.0, low=94.0, close=94.5), 2) is ExitReason.BREAK_EVEN
        assert manager.trades[-1].exit_price == 100.0
        assert manager.trades[-1].pnl == pytest.approx(0.0)
        assert manager.balance == pytest.approx(1108.0)

    def test_tp2_after_tp1(self, manager):
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        manager.check_exit(bar(high=104.0, low=100.5, close=102.0), 1)
        assert manager.check_exit(bar(high=116.0, low=110.0, close=112.0), 2) is ExitReason.TP2_FULL
        assert manager.trades[-1].exit_price == pytest.approx(115.0)
        assert manager.trades[-1].pnl == pytest.approx(360.0)
        assert [t.trade_id for t in manager.trades] == [1, 1]

    def test_tp2_needs_tp1_first(self, manager):
        """A bar through both targets only books the partial."""
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        assert manager.check_exit(bar(high=120.0, low=101.0, close=118.0), 1) is ExitReason.TP1_PARTIAL
        assert manager.position is not None

    def test_short_mirrors_long(self, manager):
        manager.open_position(TradeType.SHORT, 100.0, 0, stop_price=105.0)
        assert manager.check_exit(bar(high=99.5, low=96.0, close=98.0), 1) is ExitReason.TP1_PARTIAL
        assert manager.trades[-1].pnl == pytest.approx(108.0)
        assert manager.check_exit(bar(high=100.2, low=99.0, close=99.8), 2) is ExitReason.BREAK_EVEN

    def test_max_loss(self):
        pm = PositionManager(BotConfig(
            use_dynamic_exits=False, use_trailing_stop=False, fees_enabled=False, use_max_loss=True,
        ))
        pm.open_position(TradeType.LONG, 100.0, 0, stop_price=80.0)
        # 5% of 1000 over 6000 notional
        assert pm.max_loss_price() == pytest.approx(100 * (1 - 50 / 6000))
        assert pm.check_exit(bar(high=100.0, low=99.5, close=99.5), 1) is None
        assert pm.check_exit(bar(high=99.5, low=98.9, close=99.0), 2) is ExitReason.MAX_LOSS
        assert pm.balance == pytest.approx(940.0)

    def test_trailing_stop_only_tightens(self):
        pm = PositionManager(BotConfig(use_dynamic_exits=False, use_trailing_stop=True, fees_enabled=False))
        pos = pm.open_position(TradeType.LONG, 100.0, 0, stop_price=90.0)
        assert pm.check_exit(bar(high=102.0, low=100.0, close=101.5), 1) is None
        assert pos.sl_price == 90.0  # below activation
        assert pm.check_exit(bar(high=105.0, low=103.0, close=104.5), 2) is None
        assert pos.sl_price == pytest.approx(105.0 * 0.992)
        assert pm.check_exit(bar(high=104.6, low=104.2, close=104.3), 3) is None
        assert pos.sl_price == pytest.approx(105.0 * 0.992)
        assert pm.check_exit(bar(high=104.4, low=103.5, close=104.0), 4) is ExitReason.SL_CYCLE_EXTREME
        assert pm.trades[-1].pnl > 0

    def test_short_trailing_stop_only_lowers(self):
        pm = PositionManager(BotConfig(use_dynamic_exits=False, use_trailing_stop=True, fees_enabled=False))
        pos = pm.open_position(TradeType.SHORT, 100.0, 0, stop_price=110.0)
        assert pm.check_exit(bar(high=100.0, low=98.0, close=98.5), 1) is None
        assert pos.sl_price == 110.0  # below activation
        assert pm.check_exit(bar(high=97.0, low=95.0, close=95.5), 2) is None
        assert pos.sl_price == pytest.approx(95.0 * 1.008)
        # a bounce never loosens the stop; the high crosses it but the close does not
        assert pm.check_exit(bar(high=96.0, low=95.6, close=95.7), 3) is None
        assert pos.sl_price == pytest.approx(95.0 * 1.008)
        assert pos.lowest_price == 95.0
        assert pm.check_exit(bar(high=96.5, low=95.8, close=96.0), 4) is ExitReason.SL_CYCLE_EXTREME
        assert pm.trades[-1].exit_price == 96.0
        assert pm.trades[-1].pnl == pytest.approx(240.0)

    def test_no_position_no_exit(self, manager):
        assert manager.check_exit(bar(high=1.0, low=1.0, close=1.0), 0) is None


class TestAccounting:
    def test_fees_on_both_sides(self):
        pm = PositionManager(BotConfig(use_dynamic_exits=False, use_trailing_stop=False, fees_enabled=True))
        pm.open_position(TradeType.LONG, 100.0, 0, stop_price=90.0)
        trade = pm.close_position(100.0, 1, ExitReason.CYCLE_END)
        assert trade.fees == pytest.approx(2.4)
        assert trade.pnl == pytest.approx(-2.4)
        assert pm.total_fees == pytest.approx(2.4)

    def test_close_partial_validation(self, manager):
        with pytest.raises(RuntimeError, match="No open position"):
            manager.close_partial(100.0, 0, 0.5)
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        with pytest.raises(ValueError, match="fraction"):
            manager.close_partial(100.0, 1, 1.5)
        manager.close_partial(100.0, 1, 1.0)
        assert manager.position is None

    def test_drawdown_keeps_worst(self, manager):
        pos = manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        manager.update_drawdown(bar(high=100.0, low=98.0, close=99.0))
        manager.update_drawdown(bar(high=100.0, low=99.0, close=99.5))
        assert pos.max_drawdown_pct == pytest.approx(-40.0)

    def test_unrealized_and_equity(self, manager):
        assert manager.unrealized_pnl(101.0) == 0.0
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        assert manager.unrealized_pnl(101.0) == pytest.approx(60.0)
        assert manager.equity(101.0) == pytest.approx(1060.0)

    def test_stats(self, manager):
        manager.open_position(TradeType.LONG, 100.0, 0, stop_price=95.0)
        manager.close_position(94.0, 1, ExitReason.SL_CYCLE_EXTREME)
        stats = manager.stats()
        assert stats['total_trades'] == 1
        assert stats['losses'] == 1
        assert stats['win_rate'] == 0.0
        assert stats['pnl_percent'] == pytest.approx(-36.0)

    def test_trade_carries_cycle_metadata(self, manager):
        origin = cycle(100.0, 10.0, start_index=3)
        manager.open_position(TradeType.LONG, 100.0, 23, stop_price=95.0, origin_cycle=origin)
        trade = manager.close_position(101.0, 24, ExitReason.CYCLE_END)
        assert trade.cycle_metadata['cycle_start_index'] == 3
        assert trade.cycle_metadata['cycle_amplitude_pct'] == pytest.approx(10.0)


class TestAverageMoves:
    def test_average_amplitude_lookback(self):
        cycles = [cycle(100.0, a) for a in (50.0, 10.0, 20.0)]
        assert average_amplitude_pct(cycles, 2) == pytest.approx(15.0)
        assert average_amplitude_pct([], 10) == 0.0

    def test_update_average_moves(self, manager):
        manager.update_average_moves([cycle(100.0, 4.0)], [cycle(200.0, 10.0), cycle(100.0, 7.0)])
        assert manager.avg_index_pump == pytest.approx(4.0)
        assert manager.avg_inverse_drop == pytest.approx(6.0)
