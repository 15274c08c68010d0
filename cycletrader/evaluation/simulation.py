"""
Walk-forward simulation driver.

Replays a candle series bar by bar. At bar i the detector only ever sees
candles[0..i], so a cycle can only be traded once it would have been
detectable live. Per bar:
1. detect both directions on the prefix
2. refresh the trailing average cycle moves that size take-profits
3. route the newest cycle of each direction (new / updated / already seen)
4. advance a pending confirmation
5. evaluate exits for a position opened on an earlier bar
6. record one equity sample

The position still open after the last bar is left open.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..indicators.momentum import CycleSwingMomentum
from ..indicators.technical import TechnicalIndicators
from ..shared.types import Candle, CandleArrays, Cycle, Direction, ExitReason, TradeType
from ..signals.config import BotConfig, DetectorConfig
from ..signals.cycle_detector import CandleInput, CycleDetector, as_candle_arrays
from .position import PositionManager
from .simulation_types import EquityPoint, PendingSignal, SimulationResult, SimulationState

NEUTRAL_TREND = "neutral"


@dataclass
class _Bar:
    """What the driver knows at bar i."""
    index: int
    candle: Candle
    prefix: CandleArrays
    atr: float
    passes_filters: bool
    trend: str


class WalkForwardSimulator:
    """Bar-by-bar replay of cycle detection and the position state machine."""

    def __init__(
        self,
        detector_config: Optional[DetectorConfig] = None,
        bot_config: Optional[BotConfig] = None,
    ):
        """
        Initialize the simulator.

        Args:
            detector_config: Cycle detection settings (durations, pivots, filters)
            bot_config: Sizing, entry and exit settings
        """
        self.detector_config = detector_config or DetectorConfig()
        self.bot_config = bot_config or BotConfig()
        self.detector = CycleDetector(self.detector_config)
        self.technical_indicators = TechnicalIndicators(
            atr_period=self.bot_config.atr_period,
            ema_fast_period=self.bot_config.ema_fast_period,
            ema_slow_period=self.bot_config.ema_slow_period,
        )

    def _causal_atr(self, candles: CandleArrays) -> np.ndarray:
        # Wilder ATR at i only reads bars <= i once seeded; before the seed a
        # prefix is too short and yields 0.0
        period = self.bot_config.atr_period
        atr = self.technical_indicators.calculate_atr(candles.high, candles.low, candles.close).values.copy()
        atr[:max(period - 1, 0)] = 0.0
        return atr

    def _causal_volume_sma(self, candles: CandleArrays) -> np.ndarray:
        period = self.bot_config.volume_sma_period
        volume = pd.Series(candles.volume)
        sma = volume.rolling(period).mean()
        # a prefix shorter than the period averages what it has
        return sma.fillna(volume.expanding().mean()).values

    def _causal_trend(self, candles: CandleArrays) -> List[str]:
        if not self.bot_config.use_trend_filter:
            return [NEUTRAL_TREND] * len(candles)
        fast = self.technical_indicators.calculate_ema(candles.close, self.bot_config.ema_fast_period).values
        slow = self.technical_indicators.calculate_ema(candles.close, self.bot_config.ema_slow_period).values
        trend = []
        for f, s in zip(fast, slow):
            if np.isnan(f) or np.isnan(s) or f == s:
                trend.append(NEUTRAL_TREND)
            else:
                trend.append("bullish" if f > s else "bearish")
        return trend

    def simulate(self, candles: CandleInput, momentum: Optional[Sequence[float]] = None) -> SimulationResult:
        """
        Run the walk-forward simulation.

        Args:
            candles: Full candle series (DataFrame or CandleArrays)
            momentum: Optional momentum series aligned with candles; computed
                when the momentum filter is enabled and none is given

        Returns:
            SimulationResult with trades, one equity point per simulated bar
            and the final balance
        """
        candles = as_candle_arrays(candles)
        n = len(candles)
        state = SimulationState(manager=PositionManager(self.bot_config))

        if momentum is None and self.detector_config.use_momentum_filter:
            # the oscillator at k reads closes <= k only
            momentum = CycleSwingMomentum().calculate(candles.close).values
        if momentum is not None:
            momentum = np.asarray(momentum, dtype=float)

        atr = self._causal_atr(candles) if self.bot_config.use_dynamic_exits else np.zeros(n)
        volume_sma = self._causal_volume_sma(candles) if self.bot_config.use_volume_filter else None
        trend = self._causal_trend(candles)

        for i in range(self.detector_config.max_duration, n):
            prefix = candles.prefix(i + 1)
            passes = volume_sma is None or candles.volume[i] > volume_sma[i] * self.bot_config.volume_factor
            bar = _Bar(i, candles.candle(i), prefix, float(atr[i]), passes, trend[i])
            self._step(state, bar, None if momentum is None else momentum[:i + 1])

        final_cycles = self.detector.detect_both(candles, momentum=momentum) if n > 0 else {}
        return SimulationResult(
            trades=list(state.manager.trades),
            equity_curve=state.equity_curve,
            final_balance=state.manager.balance,
            starting_balance=self.bot_config.starting_balance,
            open_position=state.manager.position,
            cycles=final_cycles,
            stats=state.manager.stats(),
        )

    def _step(self, state: SimulationState, bar: _Bar, momentum: Optional[np.ndarray]) -> None:
        cycles = self.detector.detect_both(bar.prefix, momentum=momentum)
        manager = state.manager
        manager.update_average_moves(cycles[Direction.INVERTED], cycles[Direction.NORMAL])

        for direction in (Direction.INVERTED, Direction.NORMAL):
            self._process_direction(state, direction, cycles[direction], bar)

        self._process_pending(state, bar)

        position = manager.position
        if position is not None and position.entry_index < bar.index:
            manager.update_drawdown(bar.candle)
            if manager.check_exit(bar.candle, bar.index) is None and manager.position is not None:
                self._cycle_exit(state, cycles, bar)

        state.equity_curve.append(
            EquityPoint(
                index=bar.index,
                time=bar.candle.time,
                balance=manager.balance,
                equity=manager.equity(bar.candle.close),
            )
        )

    def _side_enabled(self, trade_type: TradeType) -> bool:
        if trade_type is TradeType.LONG:
            return self.bot_config.enable_long
        return self.bot_config.enable_short

    def _process_direction(self, state: SimulationState, direction: Direction, cycles: List[Cycle], bar: _Bar) -> None:
        if not cycles:
            return
        cfg = self.bot_config
        manager = state.manager
        trade_type = direction.trade_type
        last = cycles[-1]
        key = last.key

        if key not in state.processed_cycles:
            state.processed_cycles[key] = last.end_index
            if not bar.passes_filters:
                return
            state.cancel_pending(trade_type.opposite)
            position = manager.position
            can_open = position is None or (cfg.multi_trade and position.type is not trade_type)
            no_blocking_pending = state.pending is None or state.pending.trade_type is trade_type
            if (
                self._side_enabled(trade_type)
                and can_open
                and no_blocking_pending
                and last.start_index > state.last_traded_end[direction]
            ):
                self._enter(state, last, bar)
            return

        if state.processed_cycles[key] == last.end_index:
            return
        state.processed_cycles[key] = last.end_index
        if not (cfg.multi_trade and self._side_enabled(trade_type) and bar.passes_filters):
            return

        position = manager.position
        if (
            position is not None
            and position.type is trade_type
            and last.start_index == state.active_cycle_start[direction]
        ):
            # roll the position onto the new cycle extreme
            manager.close_position(bar.candle.close, bar.index, ExitReason.CYCLE_UPDATE, bar.candle.time)
            self._open(state, trade_type, last, self._cycle_stop(bar, last), self._is_counter_trend(trade_type, bar), bar)
            state.active_cycle_start[direction] = last.start_index
        elif position is None:
            state.cancel_pending(trade_type.opposite)
            self._enter(state, last, bar)

    def _cycle_stop(self, bar: _Bar, cycle: Cycle) -> float:
        if cycle.direction is Direction.INVERTED:
            return float(bar.prefix.low[cycle.end_index])
        return float(bar.prefix.high[cycle.end_index])

    def _is_counter_trend(self, trade_type: TradeType, bar: _Bar) -> bool:
        if not self.bot_config.use_trend_filter:
            return False
        against = "bearish" if trade_type is TradeType.LONG else "bullish"
        return bar.trend == against

    def _enter(self, state: SimulationState, cycle: Cycle, bar: _Bar) -> None:
        direction = cycle.direction
        trade_type = direction.trade_type
        state.active_cycle_start[direction] = cycle.start_index
        state.last_traded_end[direction] = cycle.end_index
        sl_price = self._cycle_stop(bar, cycle)
        counter_trend = self._is_counter_trend(trade_type, bar)

        if self.bot_config.use_confirmation:
            state.pending = PendingSignal(
                trade_type=trade_type,
                cycle=cycle,
                sl_price=sl_price,
                detection_index=bar.index,
                counter_trend=counter_trend,
            )
            return
        self._open(state, trade_type, cycle, sl_price, counter_trend, bar)

    def _open(
        self,
        state: SimulationState,
        trade_type: TradeType,
        cycle: Cycle,
        sl_price: float,
        counter_trend: bool,
        bar: _Bar,
    ) -> None:
        manager = state.manager
        if manager.position is not None:
            if manager.position.type is trade_type:
                return
            manager.close_position(bar.candle.close, bar.index, ExitReason.OPPOSITE_SIGNAL, bar.candle.time)
        manager.open_position(
            trade_type,
            bar.candle.close,
            bar.index,
            sl_price,
            counter_trend=counter_trend,
            origin_cycle=cycle,
            atr=bar.atr,
            time=bar.candle.time,
        )

    def _process_pending(self, state: SimulationState, bar: _Bar) -> None:
        pending = state.pending
        if pending is None or pending.detection_index >= bar.index:
            return
        position = state.manager.position
        if position is not None and not (self.bot_config.multi_trade and position.type is not pending.trade_type):
            return

        start = pending.cycle.start_index
        if pending.trade_type is TradeType.LONG:
            favourable = bar.candle.close > bar.prefix.low[start]
        else:
            favourable = bar.candle.close < bar.prefix.high[start]

        if not favourable:
            state.pending = None
            return
        pending.confirmed_bars += 1
        if pending.confirmed_bars >= self.bot_config.confirmation_bars:
            state.pending = None
            self._open(state, pending.trade_type, pending.cycle, pending.sl_price, pending.counter_trend, bar)

    def _cycle_exit(self, state: SimulationState, cycles: Dict[Direction, List[Cycle]], bar: _Bar) -> None:
        manager = state.manager
        position = manager.position
        own = Direction.from_trade_type(position.type)

        if self.bot_config.close_on_opposite:
            opposite = cycles[own.opposite]
            if opposite and opposite[-1].end_index > position.entry_index:
                manager.close_position(bar.candle.close, bar.index, ExitReason.OPPOSITE_CYCLE, bar.candle.time)
                return

        mine = cycles[own]
        if mine and mine[-1].end_index > position.entry_index:
            manager.close_position(bar.candle.close, bar.index, ExitReason.CYCLE_END, bar.candle.time)


def simulate(
    candles: CandleInput,
    detector_config: Optional[DetectorConfig] = None,
    bot_config: Optional[BotConfig] = None,
    momentum: Optional[Sequence[float]] = None,
) -> SimulationResult:
    """Convenience wrapper: ``WalkForwardSimulator(detector_config, bot_config).simulate(candles)``."""
    return WalkForwardSimulator(detector_config, bot_config).simulate(candles, momentum=momentum)
