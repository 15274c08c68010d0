"""
Cycle detector.

Finds swing-to-swing cycles in a candle sequence:
- INVERTED cycles run swing low -> highest high -> swing low (LONG setups)
- NORMAL cycles run swing high -> lowest low -> swing high (SHORT setups)

Detection only reads the candles it is given, so calling it on a prefix of a
series sees exactly what was knowable at the last bar of that prefix. The
optional RSI/Stochastic and momentum filters are computed on the same slice.
"""
from typing import Dict, List, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..indicators.momentum import CycleSwingMomentum
from ..indicators.technical import (
    TechnicalIndicators,
    is_bearish_confirmation,
    is_bullish_confirmation,
)
from ..shared.types import CandleArrays, Cycle, Direction, ManualCycleOverride
from .config import DetectorConfig
from .pivots import confirm_swing_high, confirm_swing_low, is_swing_high, is_swing_low

CandleInput = Union[CandleArrays, pd.DataFrame]


class _Oscillators(NamedTuple):
    rsi: np.ndarray
    stoch_k: np.ndarray
    stoch_d: np.ndarray


def as_candle_arrays(candles: CandleInput) -> CandleArrays:
    if isinstance(candles, CandleArrays):
        return candles
    return CandleArrays.from_frame(candles)


class CycleDetector:
    """
    Detects cycles of one or both directions.

    The detector holds configuration only; every call is independent, so one
    instance can be shared across walk-forward steps.
    """

    def __init__(self, config: Optional[DetectorConfig] = None):
        """
        Initialize the cycle detector.

        Args:
            config: DetectorConfig with duration bounds, pivot strengths and filters
        """
        self.config = config or DetectorConfig()
        self.technical_indicators = TechnicalIndicators(
            rsi_period=self.config.rsi_period,
            stoch_k_period=self.config.stoch_k_period,
            stoch_d_period=self.config.stoch_d_period,
        )
        self.momentum_indicator = CycleSwingMomentum()

    def _oscillators(self, candles: CandleArrays) -> Optional[_Oscillators]:
        if not self.config.use_rsi_stoch_filter or len(candles) == 0:
            return None
        rsi = self.technical_indicators.calculate_rsi(candles.close)
        k, d = self.technical_indicators.calculate_stochastic(candles.high, candles.low, candles.close)
        return _Oscillators(rsi.values, k.values, d.values)

    def _momentum(self, candles: CandleArrays, momentum: Optional[Sequence[float]]) -> Optional[np.ndarray]:
        if not self.config.use_momentum_filter:
            return None
        if momentum is None:
            return self.momentum_indicator.calculate(candles.close).values
        return np.asarray(momentum, dtype=float)[:len(candles)]

    def _momentum_ok(self, momentum: Optional[np.ndarray], index: int, direction: Direction) -> bool:
        if momentum is None:
            return True
        if index >= len(momentum):
            return False
        value = momentum[index]
        if np.isnan(value):
            return False
        if direction is Direction.INVERTED:
            return value <= 0
        return value >= 0

    def _oscillators_ok(self, osc: Optional[_Oscillators], index: int, direction: Direction) -> bool:
        if osc is None:
            return True
        prev = index - 1 if index > 0 else None
        args = (
            osc.rsi[index],
            osc.rsi[prev] if prev is not None else None,
            osc.stoch_k[index],
            osc.stoch_d[index],
            osc.stoch_k[prev] if prev is not None else None,
            osc.stoch_d[prev] if prev is not None else None,
        )
        if direction is Direction.INVERTED:
            return is_bullish_confirmation(
                *args, rsi_oversold=self.config.rsi_oversold, stoch_oversold=self.config.stoch_oversold
            )
        return is_bearish_confirmation(
            *args, rsi_overbought=self.config.rsi_overbought, stoch_overbought=self.config.stoch_overbought
        )

    def is_pivot(
        self,
        candles: CandleArrays,
        index: int,
        direction: Direction,
        strength: int,
        osc: Optional[_Oscillators] = None,
    ) -> bool:
        """
        Swing test plus confirmation for a cycle boundary of ``direction``.

        INVERTED boundaries are swing lows, NORMAL boundaries are swing highs.
        """
        window = self.config.confirmation_window(strength)
        ratio = self.config.pivot_body_ratio
        if direction is Direction.INVERTED:
            if not is_swing_low(candles.low, index, strength):
                return False
            if not self._oscillators_ok(osc, index, direction):
                return False
            return confirm_swing_low(candles, index, window, ratio)
        if not is_swing_high(candles.high, index, strength):
            return False
        if not self._oscillators_ok(osc, index, direction):
            return False
        return confirm_swing_high(candles, index, window, ratio)

    def is_start_condition(
        self,
        candles: CandleArrays,
        index: int,
        direction: Direction,
        momentum: Optional[np.ndarray] = None,
        osc: Optional[_Oscillators] = None,
    ) -> bool:
        if index >= len(candles) - 1:
            return False
        if not self._momentum_ok(momentum, index, direction):
            return False
        return self.is_pivot(candles, index, direction, self.config.swing_strength, osc)

    def _is_valid_end(
        self,
        candles: CandleArrays,
        index: int,
        direction: Direction,
        momentum: Optional[np.ndarray],
        osc: Optional[_Oscillators],
    ) -> bool:
        if not self._momentum_ok(momentum, index, direction):
            return False
        return self.is_pivot(candles, index, direction, self.config.end_swing_strength, osc)

    def find_cycle_end(
        self,
        candles: CandleArrays,
        start_index: int,
        direction: Direction,
        momentum: Optional[np.ndarray] = None,
        osc: Optional[_Oscillators] = None,
    ) -> Optional[Cycle]:
        """
        Choose the end pivot for a cycle starting at ``start_index``.

        Candidates lie in [start + min_duration, min(start + max_duration, last bar)].
        With prefer_shortest, start + min_duration wins outright when valid.
        Otherwise the most extreme valid candidate wins (lowest low for
        INVERTED, highest high for NORMAL; earliest on ties).
        """
        min_end = start_index + self.config.min_duration
        max_end = min(start_index + self.config.max_duration, len(candles) - 1)
        if min_end > max_end:
            return None

        inverted = direction is Direction.INVERTED
        first_valid = None
        best = None

        if self.config.prefer_shortest and self._is_valid_end(candles, min_end, direction, momentum, osc):
            return self.build_cycle(candles, start_index, min_end, direction, first_potential_end=min_end)

        for j in range(min_end, max_end + 1):
            if not self._is_valid_end(candles, j, direction, momentum, osc):
                continue
            if first_valid is None:
                first_valid = j
                best = j
            elif inverted and candles.low[j] < candles.low[best]:
                best = j
            elif not inverted and candles.high[j] > candles.high[best]:
                best = j

        if best is None:
            return None
        return self.build_cycle(candles, start_index, best, direction, first_potential_end=first_valid)

    def build_cycle(
        self,
        candles: CandleArrays,
        start_index: int,
        end_index: int,
        direction: Direction,
        first_potential_end: Optional[int] = None,
        is_manual: bool = False,
    ) -> Cycle:
        """Assemble a Cycle, locating the intermediate extremum strictly between start and end."""
        if end_index - start_index > 1:
            if direction is Direction.INVERTED:
                segment = candles.high[start_index + 1:end_index]
                extremum_index = start_index + 1 + int(np.argmax(segment))
            else:
                segment = candles.low[start_index + 1:end_index]
                extremum_index = start_index + 1 + int(np.argmin(segment))
        else:
            extremum_index = (start_index + end_index) // 2

        if direction is Direction.INVERTED:
            start_price = float(candles.low[start_index])
            extremum_price = float(candles.high[extremum_index])
            end_price = float(candles.low[end_index])
            amplitude = extremum_price - start_price
        else:
            start_price = float(candles.high[start_index])
            extremum_price = float(candles.low[extremum_index])
            end_price = float(candles.high[end_index])
            amplitude = start_price - extremum_price

        return Cycle(
            start_index=start_index,
            end_index=end_index,
            extremum_index=extremum_index,
            duration=end_index - start_index,
            amplitude=amplitude,
            start_price=start_price,
            extremum_price=extremum_price,
            end_price=end_price,
            first_potential_end=end_index if first_potential_end is None else first_potential_end,
            direction=direction,
            is_manual=is_manual,
        )

    def _scan(
        self,
        candles: CandleArrays,
        direction: Direction,
        begin: int,
        limit: int,
        momentum: Optional[np.ndarray],
        osc: Optional[_Oscillators],
        barrier: Optional[int] = None,
    ) -> List[Cycle]:
        cycles: List[Cycle] = []
        i = begin
        while i < limit - self.config.min_duration:
            if not self.is_start_condition(candles, i, direction, momentum, osc):
                i += 1
                continue
            cycle = self.find_cycle_end(candles, i, direction, momentum, osc)
            if cycle is None or (barrier is not None and cycle.end_index > barrier):
                i += 1
                continue
            cycles.append(cycle)
            # the end pivot may itself start the next cycle
            if self.is_start_condition(candles, cycle.end_index, direction, momentum, osc):
                i = cycle.end_index
            else:
                i = cycle.end_index + 1
        return cycles

    def detect_cycles(
        self,
        candles: CandleInput,
        direction: Direction,
        momentum: Optional[Sequence[float]] = None,
        manual_override: Optional[ManualCycleOverride] = None,
    ) -> List[Cycle]:
        """
        Detect cycles of one direction.

        Args:
            candles: Visible candles (DataFrame with OHLC columns or CandleArrays)
            direction: INVERTED or NORMAL
            momentum: Momentum series aligned with candles (computed when the
                momentum filter is on and none is given)
            manual_override: Forced cycle boundaries spliced into detection

        Returns:
            Cycles ordered by start index, non-overlapping. Empty when nothing qualifies.

        Raises:
            ValueError: If manual_override is out of range
        """
        candles = as_candle_arrays(candles)
        n = len(candles)
        mom = self._momentum(candles, momentum)
        osc = self._oscillators(candles)

        if manual_override is None:
            return self._scan(candles, direction, 0, n, mom, osc)

        manual_override.validate(n)
        cycles = self._scan(
            candles, direction, 0, manual_override.start_index, mom, osc,
            barrier=manual_override.start_index,
        )
        cycles.append(
            self.build_cycle(
                candles,
                manual_override.start_index,
                manual_override.end_index,
                direction,
                first_potential_end=manual_override.end_index,
                is_manual=True,
            )
        )
        cycles.extend(self._scan(candles, direction, manual_override.end_index, n, mom, osc))
        return cycles

    def detect_both(
        self,
        candles: CandleInput,
        momentum: Optional[Sequence[float]] = None,
    ) -> Dict[Direction, List[Cycle]]:
        """Detect INVERTED and NORMAL cycles on the same candles."""
        candles = as_candle_arrays(candles)
        return {
            direction: self.detect_cycles(candles, direction, momentum=momentum)
            for direction in (Direction.INVERTED, Direction.NORMAL)
        }
