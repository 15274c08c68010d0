"""
Live cycle trader.

Runs the same detector and PositionManager as the walk-forward simulation
on the latest closed candles of an exchange and turns opens and closes into
market orders. One tick:

1. fetch candles and drop the one still forming
2. re-read the exchange position and reconcile local tracking
3. re-optimize the duration range when due (never while a position is open)
4. detect cycles on the latest prefix
5. stops, targets and cycle exits for the open position
6. fresh cycle signals open (or roll) a position

The exchange position is authoritative. Local state is snapshotted before
any order call and restored when the call fails, so a failed tick leaves
nothing half-applied; the next tick starts again from the exchange.
"""
import copy
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from ..broker.base import ExchangeClient, ExchangeError, ExchangePosition, OrderSide, floor_quantity
from ..evaluation.position import PositionManager
from ..evaluation.position_types import Position, Trade
from ..grid_test.grid_search import best_duration_range
from ..indicators.technical import TechnicalIndicators
from ..shared.types import Candle, CandleArrays, Cycle, Direction, ExitReason, TradeType
from ..signals.config import StrategyConfig
from ..signals.cycle_detector import CycleDetector
from .scheduler import PollingScheduler

logger = logging.getLogger(__name__)

CycleMap = Dict[Direction, List[Cycle]]


class LiveCycleTrader:
    """
    Live trading orchestrator for one symbol.

    Responsibilities:
    - Fetch closed candles and detect cycles with the configured range
    - Keep the local PositionManager in line with the exchange position
    - Evaluate exits with the same state machine as the backtests
    - Enter on fresh cycle signals and roll positions on cycle updates
    - Periodically re-optimize the duration range via the grid search
    """

    def __init__(
        self,
        client: ExchangeClient,
        config: StrategyConfig,
        scheduler: Optional[PollingScheduler] = None,
    ):
        """
        Initialize live trader.

        Args:
            client: Exchange client (connected, with credentials for trading)
            config: Strategy configuration (detector, bot and live sections)
            scheduler: Candle/optimization timing (default: from config.live)
        """
        self.client = client
        self.config = config
        self.live = config.live
        self.bot_config = config.bot
        self.detector_config = config.detector
        self.detector = CycleDetector(self.detector_config)
        self.manager = PositionManager(self.bot_config)
        self.technical_indicators = TechnicalIndicators(
            atr_period=self.bot_config.atr_period,
            ema_fast_period=self.bot_config.ema_fast_period,
            ema_slow_period=self.bot_config.ema_slow_period,
        )
        self.scheduler = scheduler or PollingScheduler(
            interval=self.live.interval,
            loop_interval_seconds=self.live.loop_interval_seconds,
            optimize_interval_hours=self.live.optimize_interval_hours,
        )

        self.last_signal_end: Dict[Direction, Optional[pd.Timestamp]] = {d: None for d in Direction}
        self.active_cycle_start: Dict[Direction, Optional[pd.Timestamp]] = {d: None for d in Direction}
        self.last_candle_time: Optional[pd.Timestamp] = None

        if self.bot_config.use_confirmation:
            logger.warning("Entry confirmation is a backtest-only gate; live entries open on the signal candle")

    # Setup -------------------------------------------------------------

    def initialize(self) -> bool:
        """
        Set leverage and sync the starting balance from the exchange.

        Returns:
            True if the exchange answered, False otherwise (the loop may still start)
        """
        if self.live.dry_run:
            logger.info("DRY RUN: orders are logged, not sent")
            return True
        try:
            self.client.set_leverage(self.live.symbol, self.bot_config.leverage)
            balance = self.client.get_balance()
        except ExchangeError as e:
            logger.error(f"Exchange setup failed: {e}")
            return False
        self.manager.balance = balance
        logger.info(f"Account balance: {balance:.2f} (leverage {self.bot_config.leverage}x)")
        return True

    def _set_durations(self, min_duration: int, max_duration: int) -> None:
        self.detector_config = replace(self.detector_config, min_duration=min_duration, max_duration=max_duration)
        self.detector = CycleDetector(self.detector_config)
        logger.info(f"Cycle duration range set to {min_duration}-{max_duration} bars")

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "manager": copy.deepcopy(self.manager),
            "last_signal_end": dict(self.last_signal_end),
            "active_cycle_start": dict(self.active_cycle_start),
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.manager = snapshot["manager"]
        self.last_signal_end = snapshot["last_signal_end"]
        self.active_cycle_start = snapshot["active_cycle_start"]
        logger.warning("Order failed; local state restored to the pre-order snapshot")

    # Order plumbing --------------------------------------------------

    def _send_open(self, trade_type: TradeType, quantity: float) -> None:
        side = OrderSide.opening(trade_type)
        if self.live.dry_run:
            logger.info(f"DRY RUN: would {side.value} {quantity} {self.live.symbol}")
            return
        self.client.open_market_order(self.live.symbol, side, quantity)

    def _send_close(self, trade_type: TradeType, quantity: float) -> None:
        if floor_quantity(quantity, self.live.quantity_precision) <= 0:
            logger.warning(f"Close of {quantity} {self.live.symbol} is below the order precision; not sent")
            return
        if self.live.dry_run:
            logger.info(f"DRY RUN: would close {quantity} of {trade_type.value} {self.live.symbol}")
            return
        self.client.close_position(self.live.symbol, quantity, trade_type)

    def _sync_size(self, position: Position, size: float) -> None:
        # keep margin proportional so PnL bookkeeping follows the filled size
        if position.position_size > 0:
            position.capital_used *= size / position.position_size
        position.position_size = size

    # Tick stages -----------------------------------------------------

    def _closed_candles(self, now) -> CandleArrays:
        frame = self.client.get_klines(self.live.symbol, self.live.interval, self.live.candle_limit)
        if len(frame) and not self.scheduler.is_closed(frame.index[-1], now):
            frame = frame.iloc[:-1]
        return CandleArrays.from_frame(frame)

    def _reconcile(self) -> Optional[ExchangePosition]:
        if self.live.dry_run:
            return None
        exchange_position = self.client.get_position(self.live.symbol)
        local = self.manager.position

        if exchange_position is None:
            if local is not None:
                logger.warning(
                    f"{local.type.value} position #{local.trade_id} was closed externally; clearing local tracking"
                )
                self.manager.position = None
            return None

        if local is not None and local.type is not exchange_position.side:
            logger.warning(
                f"Exchange holds {exchange_position.side.value} but local tracking has {local.type.value}; "
                f"dropping local position"
            )
            self.manager.position = None
        elif local is not None:
            tolerance = 0.5 * 10 ** -self.live.quantity_precision
            if abs(local.position_size - exchange_position.size) > tolerance:
                logger.warning(
                    f"Position size changed externally: {local.position_size} -> {exchange_position.size}"
                )
                self._sync_size(local, exchange_position.size)
        return exchange_position

    def _adopt(self, exchange_position: ExchangePosition, candles: CandleArrays) -> None:
        """Track an exchange position opened outside this trader."""
        lookback = self.detector_config.max_duration
        if exchange_position.side is TradeType.LONG:
            stop = float(candles.low[-lookback:].min())
        else:
            stop = float(candles.high[-lookback:].max())
        position = self.manager.open_position(
            exchange_position.side,
            exchange_position.entry_price,
            len(candles) - 1,
            stop,
            time=candles.time[-1],
        )
        position.position_size = exchange_position.size
        position.capital_used = exchange_position.size * exchange_position.entry_price / self.bot_config.leverage
        position.initial_size = position.position_size
        position.initial_capital = position.capital_used
        logger.warning(
            f"Adopted external {exchange_position.side.value} position: {exchange_position.size} "
            f"@ {exchange_position.entry_price:.6g}, SL {stop:.6g}"
        )

    def _maybe_optimize(self, candles: CandleArrays, now, exchange_position: Optional[ExchangePosition]) -> Optional[str]:
        if not self.scheduler.optimization_due(now):
            return None
        if self.manager.position is not None or exchange_position is not None:
            logger.info("Optimization due but skipped: a position is open")
            return "skipped"

        best = best_duration_range(
            candles,
            detector_config=self.detector_config,
            bot_config=self.bot_config,
            min_range=self.live.grid_min_range,
            max_range=self.live.grid_max_range,
            step=self.live.grid_step,
            min_gap=self.live.grid_min_gap,
        )
        self.scheduler.mark_optimized(now)
        if best is None:
            logger.info("Optimization found no viable range; keeping the current one")
            return "unchanged"
        self._set_durations(best.params['min_duration'], best.params['max_duration'])
        logger.info(
            f"Optimized range {best.params['min_duration']}-{best.params['max_duration']}: "
            f"PnL {best.pnl_percent:+.1f}% over {best.trades} closes"
        )
        return f"{best.params['min_duration']}-{best.params['max_duration']}"

    def _cycle_exit_reason(self, candles: CandleArrays, cycles: CycleMap, position: Position) -> Optional[ExitReason]:
        own = Direction.from_trade_type(position.type)

        def ended_after_entry(direction: Direction, skip_origin: bool) -> bool:
            if not cycles[direction]:
                return False
            last = cycles[direction][-1]
            if skip_origin and candles.time[last.start_index] == self.active_cycle_start[direction]:
                # an extension of the originating cycle rolls the position instead
                return False
            return candles.time[last.end_index] > position.entry_time

        if self.bot_config.close_on_opposite and ended_after_entry(own.opposite, False):
            return ExitReason.OPPOSITE_CYCLE
        if ended_after_entry(own, self.bot_config.multi_trade):
            return ExitReason.CYCLE_END
        return None

    def _manage_position(
        self,
        candles: CandleArrays,
        cycles: CycleMap,
        latest: Candle,
        exchange_position: Optional[ExchangePosition],
    ) -> List[Trade]:
        position = self.manager.position
        if position.entry_time is not None and latest.time <= position.entry_time:
            return []
        index = len(candles) - 1
        exchange_size = exchange_position.size if exchange_position is not None else position.position_size
        snapshot = self._snapshot()

        self.manager.update_drawdown(latest)
        before = len(self.manager.trades)
        reason = self.manager.check_exit(latest, index)
        if reason is None and self.manager.position is not None:
            reason = self._cycle_exit_reason(candles, cycles, self.manager.position)
            if reason is not None:
                self.manager.close_position(latest.close, index, reason, latest.time)
        closes = self.manager.trades[before:]

        try:
            for trade in closes:
                quantity = exchange_size * trade.fraction if trade.partial else exchange_size
                logger.info(
                    f"EXIT {trade.reason.value}: {'partial ' if trade.partial else ''}{trade.type.value} "
                    f"#{trade.trade_id} at {trade.exit_price:.6g}, pnl {trade.pnl:+.2f}"
                )
                self._send_close(trade.type, quantity)
        except ExchangeError:
            self._restore(snapshot)
            raise
        return closes

    def _passes_filters(self, candles: CandleArrays) -> bool:
        if not self.bot_config.use_volume_filter:
            return True
        sma = self.technical_indicators.calculate_sma(candles.volume, self.bot_config.volume_sma_period).iloc[-1]
        return candles.volume[-1] > sma * self.bot_config.volume_factor

    def _is_counter_trend(self, trade_type: TradeType, candles: CandleArrays) -> bool:
        if not self.bot_config.use_trend_filter:
            return False
        trend = self.technical_indicators.classify_trend(candles.close)
        return trend == ("bearish" if trade_type is TradeType.LONG else "bullish")

    def _current_atr(self, candles: CandleArrays) -> float:
        if not self.bot_config.use_dynamic_exits or len(candles) < self.bot_config.atr_period:
            return 0.0
        return float(self.technical_indicators.calculate_atr(candles.high, candles.low, candles.close).iloc[-1])

    def _side_enabled(self, trade_type: TradeType) -> bool:
        if trade_type is TradeType.LONG:
            return self.bot_config.enable_long
        return self.bot_config.enable_short

    def _enter(
        self,
        cycle: Cycle,
        candles: CandleArrays,
        latest: Candle,
        exchange_position: Optional[ExchangePosition],
        rolling: bool,
    ) -> Dict[str, Any]:
        direction = cycle.direction
        trade_type = direction.trade_type
        index = len(candles) - 1
        snapshot = self._snapshot()
        closed: List[Trade] = []

        try:
            if self.manager.position is not None:
                reason = ExitReason.CYCLE_UPDATE if rolling else ExitReason.OPPOSITE_SIGNAL
                trade = self.manager.close_position(latest.close, index, reason, latest.time)
                closed.append(trade)
                logger.info(f"EXIT {reason.value}: {trade.type.value} #{trade.trade_id} at {trade.exit_price:.6g}")
            if exchange_position is not None and (rolling or exchange_position.side is not trade_type):
                self._send_close(exchange_position.side, exchange_position.size)

            if self.live.dry_run:
                price = latest.close
            else:
                price = self.client.get_current_price(self.live.symbol)
                self.manager.balance = self.client.get_balance()

            if direction is Direction.INVERTED:
                stop = float(candles.low[cycle.end_index])
            else:
                stop = float(candles.high[cycle.end_index])
            position = self.manager.open_position(
                trade_type,
                price,
                index,
                stop,
                counter_trend=self._is_counter_trend(trade_type, candles),
                origin_cycle=cycle,
                atr=self._current_atr(candles),
                time=latest.time,
            )
            if position is None:
                return {
                    "status": "exited" if closed else "no_signal",
                    "reason": f"{trade_type.value} entry refused by the liquidation guard",
                    "exits": [t.reason.value for t in closed],
                }

            quantity = floor_quantity(position.position_size, self.live.quantity_precision)
            if quantity <= 0:
                raise ExchangeError(
                    f"Order size {position.position_size} rounds down to 0 at precision {self.live.quantity_precision}"
                )
            self._send_open(trade_type, quantity)
            self._sync_size(position, quantity)
        except ExchangeError:
            self._restore(snapshot)
            raise

        self.active_cycle_start[direction] = candles.time[cycle.start_index]
        logger.info(
            f"ENTRY {trade_type.value}{' (roll)' if rolling else ''}: {quantity} @ {price:.6g} | "
            f"SL {position.sl_price:.6g} | TP1 {position.tp1_price:.6g} | TP2 {position.tp2_price:.6g} | "
            f"cycle {candles.time[cycle.start_index]} -> {candles.time[cycle.end_index]}"
        )
        return {
            "status": "entered",
            "reason": f"{'Rolled' if rolling else 'Opened'} {trade_type.value} on a fresh {direction.value} cycle",
            "details": {
                "side": trade_type.value,
                "quantity": quantity,
                "price": price,
                "sl_price": position.sl_price,
                "tp1_price": position.tp1_price,
                "tp2_price": position.tp2_price,
                "cycle_start": str(candles.time[cycle.start_index]),
                "cycle_end": str(candles.time[cycle.end_index]),
                "rolled": rolling,
            },
            "exits": [t.reason.value for t in closed],
        }

    def _check_entries(
        self,
        candles: CandleArrays,
        cycles: CycleMap,
        latest: Candle,
        exchange_position: Optional[ExchangePosition],
    ) -> Optional[Dict[str, Any]]:
        n = len(candles)
        for direction in (Direction.INVERTED, Direction.NORMAL):
            if not cycles[direction]:
                continue
            cycle = cycles[direction][-1]
            end_time = candles.time[cycle.end_index]
            if cycle.end_index < n - self.live.signal_freshness_bars:
                continue
            last = self.last_signal_end[direction]
            if last is not None and end_time <= last:
                continue
            self.last_signal_end[direction] = end_time

            trade_type = direction.trade_type
            if not self._side_enabled(trade_type):
                logger.info(f"{trade_type.value} signal ignored: side disabled")
                continue
            if not self._passes_filters(candles):
                logger.info(f"{trade_type.value} signal ignored: volume filter")
                continue

            position = self.manager.position
            rolling = False
            if position is not None and position.type is trade_type:
                start_time = candles.time[cycle.start_index]
                if not (self.bot_config.multi_trade and self.active_cycle_start[direction] == start_time):
                    logger.info(f"{trade_type.value} signal ignored: already holding {trade_type.value}")
                    continue
                rolling = True
            elif position is not None and not self.bot_config.multi_trade:
                logger.info(f"{trade_type.value} signal ignored: holding {position.type.value} without multi-trade")
                continue
            try:
                return self._enter(cycle, candles, latest, exchange_position, rolling=rolling)
            except ExchangeError:
                # the signal stays fresh for the next tick
                self.last_signal_end[direction] = last
                raise
        return None

    # Public API ------------------------------------------------------

    def tick(self, now=None) -> Dict[str, Any]:
        """
        Run one fetch-detect-decide-order round trip.

        Args:
            now: Current time (default: scheduler clock); injected by tests

        Returns:
            Dict with status information:
            - status: "entered", "exited", "holding", "no_signal", "waiting", "idle", "error"
            - reason: explanation
            - details / exits / optimization: additional info when present
        """
        try:
            return self._tick(self.scheduler.to_utc(now))
        except Exception as e:
            logger.exception(f"Error in trading tick: {e}")
            return {
                "status": "error",
                "reason": f"Exception: {str(e)}"
            }

    def _tick(self, now) -> Dict[str, Any]:
        candles = self._closed_candles(now)
        n = len(candles)
        required = self.detector_config.max_duration + self.live.min_history_buffer
        if n < required:
            logger.info(f"Waiting for more candle data ({n}/{required})")
            return {"status": "waiting", "reason": f"{n} of {required} closed candles available"}

        latest = candles.candle(n - 1)
        if self.last_candle_time is not None and latest.time <= self.last_candle_time:
            return {"status": "idle", "reason": f"Candle {latest.time} already processed"}
        logger.info(f"New candle {latest.time} | close {latest.close:.6g}")

        exchange_position = self._reconcile()
        optimization = self._maybe_optimize(candles, now, exchange_position)

        cycles = self.detector.detect_both(candles)
        self.manager.update_average_moves(cycles[Direction.INVERTED], cycles[Direction.NORMAL])
        if exchange_position is not None and self.manager.position is None:
            self._adopt(exchange_position, candles)

        exits: List[Trade] = []
        if self.manager.position is not None:
            exits = self._manage_position(candles, cycles, latest, exchange_position)
            if exits and self.manager.position is None:
                exchange_position = None
            elif exits and exchange_position is not None:
                exchange_position = self.client.get_position(self.live.symbol)

        # exits are committed; a failed entry below is retried on the next candle
        self.last_candle_time = latest.time

        entry = self._check_entries(candles, cycles, latest, exchange_position)

        if entry is not None:
            result = entry
            result["exits"] = [t.reason.value for t in exits] + result.get("exits", [])
        elif exits:
            result = {
                "status": "exited",
                "reason": ", ".join(t.reason.value for t in exits),
                "exits": [t.reason.value for t in exits],
            }
        elif self.manager.position is not None:
            position = self.manager.position
            result = {
                "status": "holding",
                "reason": f"{position.type.value} #{position.trade_id} open",
                "details": {
                    "side": position.type.value,
                    "entry_price": position.entry_price,
                    "sl_price": position.sl_price,
                    "unrealized_pnl": self.manager.unrealized_pnl(latest.close),
                },
            }
        else:
            result = {"status": "no_signal", "reason": "No fresh cycle signal"}
        if optimization is not None:
            result["optimization"] = optimization
        return result

    def run(self, should_stop: Callable[[], bool] = lambda: False, max_ticks: Optional[int] = None) -> None:
        """
        Poll until ``should_stop`` returns True (or ``max_ticks`` ticks ran).

        Ticks are strictly sequential; each one runs to completion before the
        scheduler sleeps.
        """
        self.initialize()
        ticks = 0
        while not should_stop():
            result = self.tick()
            logger.info(f"Tick result: {result['status']} ({result['reason']})")
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            self.scheduler.sleep(should_stop=should_stop)
