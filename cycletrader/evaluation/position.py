"""
Position state machine.

Owns the account balance, the single live position and the trade log. The
same manager drives both the walk-forward simulation and live execution, so
exit decisions are identical in backtests and on the exchange.

Exit evaluation order on every bar (first match wins):
1. trailing stop ratchet (state update only, never closes by itself)
2. close beyond stop while break-even is inactive -> SL_CycleExtreme
3. close beyond the max-loss price (optional) -> MaxLoss
4. break-even touch -> BreakEven at entry
5. TP1 reached -> partial close at TP1, arms break-even
6. TP2 reached after TP1 -> full close at TP2
"""
import logging
from typing import Dict, List, Optional, Sequence

import pandas as pd

from ..shared.types import Candle, Cycle, ExitReason, TradeType
from ..signals.config import BotConfig
from .position_types import Position, Trade, cycle_metadata

logger = logging.getLogger(__name__)


def average_amplitude_pct(cycles: Sequence[Cycle], lookback: int) -> float:
    """Mean amplitude (percent of start price) of the last ``lookback`` cycles, 0.0 when none."""
    recent = list(cycles)[-lookback:]
    if not recent:
        return 0.0
    return sum(c.amplitude_pct for c in recent) / len(recent)


class PositionManager:
    """Balance, open position and trade log for one account (simulated or live)."""

    def __init__(self, config: Optional[BotConfig] = None):
        self.config = config or BotConfig()
        self.reset()

    def reset(self) -> None:
        self.balance: float = self.config.starting_balance
        self.position: Optional[Position] = None
        self.trades: List[Trade] = []
        self.avg_index_pump: float = 0.0  # Mean inverted-cycle amplitude %, sizes LONG targets
        self.avg_inverse_drop: float = 0.0  # Mean normal-cycle amplitude %, sizes SHORT targets
        self.total_fees: float = 0.0
        self.win_count: int = 0
        self.loss_count: int = 0
        self._next_trade_id: int = 1

    @property
    def has_position(self) -> bool:
        return self.position is not None

    def update_average_moves(self, inverted_cycles: Sequence[Cycle], normal_cycles: Sequence[Cycle]) -> None:
        lookback = self.config.avg_move_lookback_cycles
        self.avg_index_pump = average_amplitude_pct(inverted_cycles, lookback)
        self.avg_inverse_drop = average_amplitude_pct(normal_cycles, lookback)

    def open_position(
        self,
        trade_type: TradeType,
        price: float,
        index: int,
        stop_price: float,
        counter_trend: bool = False,
        origin_cycle: Optional[Cycle] = None,
        atr: float = 0.0,
        time: Optional[pd.Timestamp] = None,
    ) -> Optional[Position]:
        """
        Open a position at ``price``.

        Args:
            trade_type: LONG or SHORT
            price: Entry price
            index: Bar index of the entry
            stop_price: Cycle-extreme stop (replaced by the ATR stop in dynamic mode)
            counter_trend: Entry opposes the EMA trend (size is reduced)
            origin_cycle: Cycle that produced the signal
            atr: ATR at entry; dynamic exits apply only when > 0
            time: Entry candle time

        Returns:
            The new Position, or None when the liquidation guard refuses the entry

        Raises:
            RuntimeError: If a position is already open
            ValueError: If price is not positive
        """
        if self.position is not None:
            raise RuntimeError(
                f"Cannot open {trade_type.value}: {self.position.type.value} position #{self.position.trade_id} is open"
            )
        if price <= 0:
            raise ValueError(f"Entry price must be > 0, got {price}")

        cfg = self.config
        cap_percent = cfg.capital_percentage
        if counter_trend:
            cap_percent *= cfg.counter_trend_size_factor
        capital = self.balance * cap_percent / 100
        size = capital * cfg.leverage / price
        is_long = trade_type is TradeType.LONG

        if cfg.use_dynamic_exits and atr > 0:
            sl_distance = atr * cfg.dynamic_sl_multiplier
            tp_distance = atr * cfg.dynamic_tp_multiplier
            risk = sl_distance / price * cfg.leverage
            if risk >= cfg.liquidation_guard:
                logger.info(
                    f"Refusing {trade_type.value} at {price:.6g}: stop risk {risk:.0%} of margin "
                    f">= guard {cfg.liquidation_guard:.0%}"
                )
                return None
            sl = price - sl_distance if is_long else price + sl_distance
            tp1 = price + tp_distance if is_long else price - tp_distance
            tp2 = price + 2 * tp_distance if is_long else price - 2 * tp_distance
        else:
            sl = stop_price
            if is_long:
                tp1 = price * (1 + self.avg_index_pump * cfg.tp1_avg_percent / 10000)
                tp2 = price * (1 + self.avg_index_pump * cfg.tp2_avg_percent / 10000)
            else:
                tp1 = price * (1 - self.avg_inverse_drop * cfg.tp1_avg_percent / 10000)
                tp2 = price * (1 - self.avg_inverse_drop * cfg.tp2_avg_percent / 10000)

        self.position = Position(
            trade_id=self._next_trade_id,
            type=trade_type,
            entry_price=price,
            entry_index=index,
            capital_used=capital,
            position_size=size,
            sl_price=sl,
            tp1_price=tp1,
            tp2_price=tp2,
            initial_capital=capital,
            initial_size=size,
            counter_trend=counter_trend,
            highest_price=price,
            lowest_price=price,
            origin_cycle=origin_cycle,
            entry_time=time,
        )
        self._next_trade_id += 1
        logger.debug(
            f"Opened {trade_type.value} #{self.position.trade_id} at {price:.6g} (bar {index}): "
            f"SL {sl:.6g}, TP1 {tp1:.6g}, TP2 {tp2:.6g}, margin {capital:.2f}"
        )
        return self.position

    def _update_trailing_stop(self, candle: Candle) -> None:
        pos = self.position
        cfg = self.config
        if pos.is_long:
            pos.highest_price = max(pos.highest_price, candle.high)
            if not cfg.use_trailing_stop:
                return
            peak_profit = (pos.highest_price - pos.entry_price) / pos.entry_price * 100
            if peak_profit >= cfg.trailing_activation_percent:
                new_sl = pos.highest_price * (1 - cfg.trailing_callback_percent / 100)
                if new_sl > pos.sl_price:
                    pos.sl_price = new_sl
        else:
            pos.lowest_price = min(pos.lowest_price, candle.low)
            if not cfg.use_trailing_stop:
                return
            peak_profit = (pos.entry_price - pos.lowest_price) / pos.entry_price * 100
            if peak_profit >= cfg.trailing_activation_percent:
                new_sl = pos.lowest_price * (1 + cfg.trailing_callback_percent / 100)
                if new_sl < pos.sl_price:
                    pos.sl_price = new_sl

    def max_loss_price(self) -> Optional[float]:
        """Close price at which the loss equals max_loss_percent of the starting balance."""
        pos = self.position
        if pos is None or pos.capital_used <= 0:
            return None
        max_loss = self.config.starting_balance * self.config.max_loss_percent / 100
        offset = max_loss / (pos.capital_used * self.config.leverage)
        return pos.entry_price * (1 - offset) if pos.is_long else pos.entry_price * (1 + offset)

    def check_exit(self, candle: Candle, index: int) -> Optional[ExitReason]:
        """
        Evaluate stops and targets for the open position on one candle.

        Returns:
            The exit reason that fired (the close has already been booked), or None
        """
        pos = self.position
        if pos is None:
            return None
        cfg = self.config
        self._update_trailing_stop(candle)

        if pos.is_long:
            if candle.close < pos.sl_price and not pos.break_even_active:
                self.close_position(candle.close, index, ExitReason.SL_CYCLE_EXTREME, candle.time)
                return ExitReason.SL_CYCLE_EXTREME
            if cfg.use_max_loss:
                stop = self.max_loss_price()
                if stop is not None and candle.close <= stop:
                    self.close_position(candle.close, index, ExitReason.MAX_LOSS, candle.time)
                    return ExitReason.MAX_LOSS
            if pos.break_even_active and candle.low <= pos.entry_price:
                self.close_position(pos.entry_price, index, ExitReason.BREAK_EVEN, candle.time)
                return ExitReason.BREAK_EVEN
            if not pos.partial_closed and candle.high >= pos.tp1_price and pos.tp1_price > pos.entry_price:
                self.close_partial(pos.tp1_price, index, cfg.tp1_close_fraction, ExitReason.TP1_PARTIAL, candle.time)
                return ExitReason.TP1_PARTIAL
            if pos.partial_closed and candle.high >= pos.tp2_price and pos.tp2_price > pos.entry_price:
                self.close_position(pos.tp2_price, index, ExitReason.TP2_FULL, candle.time)
                return ExitReason.TP2_FULL
            return None

        if candle.close > pos.sl_price and not pos.break_even_active:
            self.close_position(candle.close, index, ExitReason.SL_CYCLE_EXTREME, candle.time)
            return ExitReason.SL_CYCLE_EXTREME
        if cfg.use_max_loss:
            stop = self.max_loss_price()
            if stop is not None and candle.close >= stop:
                self.close_position(candle.close, index, ExitReason.MAX_LOSS, candle.time)
                return ExitReason.MAX_LOSS
        if pos.break_even_active and candle.high >= pos.entry_price:
            self.close_position(pos.entry_price, index, ExitReason.BREAK_EVEN, candle.time)
            return ExitReason.BREAK_EVEN
        if not pos.partial_closed and candle.low <= pos.tp1_price and pos.tp1_price < pos.entry_price:
            self.close_partial(pos.tp1_price, index, cfg.tp1_close_fraction, ExitReason.TP1_PARTIAL, candle.time)
            return ExitReason.TP1_PARTIAL
        if pos.partial_closed and candle.low <= pos.tp2_price and pos.tp2_price < pos.entry_price:
            self.close_position(pos.tp2_price, index, ExitReason.TP2_FULL, candle.time)
            return ExitReason.TP2_FULL
        return None

    def _book(
        self,
        exit_price: float,
        index: int,
        capital: float,
        reason: ExitReason,
        partial: bool,
        fraction: float,
        time: Optional[pd.Timestamp],
    ) -> Trade:
        pos = self.position
        cfg = self.config
        price_diff = exit_price - pos.entry_price if pos.is_long else pos.entry_price - exit_price
        pnl = price_diff / pos.entry_price * capital * cfg.leverage
        fees = 0.0
        if cfg.fees_enabled:
            fees = capital * cfg.leverage * cfg.taker_fee_percent / 100 * 2
            pnl -= fees
            self.total_fees += fees

        self.balance += pnl
        if pnl > 0:
            self.win_count += 1
        else:
            self.loss_count += 1

        trade = Trade(
            trade_id=pos.trade_id,
            type=pos.type,
            entry_price=pos.entry_price,
            exit_price=exit_price,
            entry_index=pos.entry_index,
            exit_index=index,
            pnl=pnl,
            pnl_percent=price_diff / pos.entry_price * 100 * cfg.leverage,
            fees=fees,
            reason=reason,
            balance_after=self.balance,
            partial=partial,
            fraction=fraction,
            sl_price=pos.sl_price,
            tp1_price=pos.tp1_price,
            tp2_price=pos.tp2_price,
            max_drawdown_pct=pos.max_drawdown_pct,
            counter_trend=pos.counter_trend,
            entry_time=pos.entry_time,
            exit_time=time,
            cycle_metadata=cycle_metadata(pos.origin_cycle),
        )
        self.trades.append(trade)
        logger.debug(
            f"Closed {'part of ' if partial else ''}{pos.type.value} #{pos.trade_id} at {exit_price:.6g} "
            f"(bar {index}, {reason.value}): pnl {pnl:.2f}, balance {self.balance:.2f}"
        )
        return trade

    def close_partial(
        self,
        price: float,
        index: int,
        fraction: float,
        reason: ExitReason = ExitReason.TP1_PARTIAL,
        time: Optional[pd.Timestamp] = None,
    ) -> Trade:
        """
        Close ``fraction`` of the remaining position at ``price``.

        Capital and size shrink by exactly ``fraction`` of their previous
        values; the position stays open with break-even armed.

        Raises:
            RuntimeError: If no position is open
            ValueError: If fraction is not in (0, 1]
        """
        if self.position is None:
            raise RuntimeError("No open position to close")
        if not (0 < fraction <= 1):
            raise ValueError(f"fraction must be in (0, 1], got {fraction}")
        if fraction == 1:
            return self.close_position(price, index, reason, time)

        pos = self.position
        closed_capital = pos.capital_used * fraction
        closed_size = pos.position_size * fraction
        trade = self._book(price, index, closed_capital, reason, True, fraction, time)
        pos.capital_used -= closed_capital
        pos.position_size -= closed_size
        pos.partial_closed = True
        pos.break_even_active = True
        return trade

    def close_position(
        self,
        price: float,
        index: int,
        reason: ExitReason,
        time: Optional[pd.Timestamp] = None,
    ) -> Trade:
        """
        Close the remaining position at ``price``.

        Raises:
            RuntimeError: If no position is open
        """
        if self.position is None:
            raise RuntimeError("No open position to close")
        trade = self._book(price, index, self.position.capital_used, reason, False, 1.0, time)
        self.position = None
        return trade

    def update_drawdown(self, candle: Candle) -> None:
        """Track the worst leveraged excursion (low for LONG, high for SHORT)."""
        pos = self.position
        if pos is None:
            return
        if pos.is_long:
            excursion = (candle.low - pos.entry_price) / pos.entry_price * 100 * self.config.leverage
        else:
            excursion = (pos.entry_price - candle.high) / pos.entry_price * 100 * self.config.leverage
        if excursion < pos.max_drawdown_pct:
            pos.max_drawdown_pct = excursion

    def unrealized_pnl(self, price: float) -> float:
        """Gross PnL of the open position marked at ``price`` (0.0 when flat)."""
        pos = self.position
        if pos is None:
            return 0.0
        price_diff = price - pos.entry_price if pos.is_long else pos.entry_price - price
        return price_diff / pos.entry_price * pos.capital_used * self.config.leverage

    def equity(self, price: float) -> float:
        return self.balance + self.unrealized_pnl(price)

    def stats(self) -> Dict[str, float]:
        total = self.win_count + self.loss_count
        start = self.config.starting_balance
        return {
            'balance': self.balance,
            'total_pnl': self.balance - start,
            'pnl_percent': (self.balance - start) / start * 100,
            'total_trades': total,
            'wins': self.win_count,
            'losses': self.loss_count,
            'win_rate': self.win_count / total * 100 if total > 0 else 0.0,
            'total_fees': self.total_fees,
            'avg_index_pump': self.avg_index_pump,
            'avg_inverse_drop': self.avg_inverse_drop,
        }
