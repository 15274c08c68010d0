"""
Cycle swing momentum oscillator.

Runs a recursive wave-throttle filter over a fixed window of closes at a fast
and a slow throttle and reports their difference (fast thrust - slow thrust).
The coefficients of the recursion do not depend on prices, so the filter is
evaluated for every window position at once: scalars carry the coefficient
state and a single array carries the price state.

Also provides pivot-based divergence detection between the oscillator and price.
"""
from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from ..shared.defaults import (
    MOMENTUM_CYCLE_LENGTH, MOMENTUM_FAST_CYCLES, MOMENTUM_SLOW_CYCLES,
)
from .technical import ArrayLike, _as_series

THROTTLE_PER_CYCLE = 160.0


@dataclass(frozen=True)
class Divergence:
    """A momentum/price divergence found at an oscillator pivot."""
    index: int
    kind: str  # "bullish", "hidden_bullish", "bearish", "hidden_bearish"
    price: float


class CycleSwingMomentum:
    """Cycle swing index momentum (fast thrust minus slow thrust)."""

    def __init__(
        self,
        cycle_length: int = MOMENTUM_CYCLE_LENGTH,
        fast_cycles: int = MOMENTUM_FAST_CYCLES,
        slow_cycles: int = MOMENTUM_SLOW_CYCLES,
        pivot_left: int = 5,
        pivot_right: int = 5,
        range_lower: int = 5,
        range_upper: int = 60,
    ):
        if cycle_length < 3:
            raise ValueError(f"cycle_length must be >= 3, got {cycle_length}")
        self.cycle_length = cycle_length
        self.fast_cycles = fast_cycles
        self.slow_cycles = slow_cycles
        self.pivot_left = pivot_left
        self.pivot_right = pivot_right
        self.range_lower = range_lower
        self.range_upper = range_upper

    def _swing_coefficient(self, i: int, throttle: float) -> float:
        last = self.cycle_length - 1
        if i in (0, last):
            return 1.0 + throttle
        if i in (1, last - 1):
            return 1.0 + 5.0 * throttle
        return 6.0 * throttle + 1.0

    def _momentum_coefficient(self, i: int, throttle: float) -> float:
        last = self.cycle_length - 1
        if i == last:
            return 0.0
        if i in (0, last - 1):
            return -2.0 * throttle
        return -4.0 * throttle

    def _acceleration_coefficient(self, i: int, throttle: float) -> float:
        if i >= self.cycle_length - 2:
            return 0.0
        return throttle

    def thrust(self, closes: ArrayLike, cycle_count: int) -> np.ndarray:
        """
        Wave-throttle processor output for every bar.

        Bars before ``cycle_length - 1`` have no full window and are 0.
        """
        values = np.asarray(_as_series(closes).values, dtype=float)
        n = len(values)
        out = np.zeros(n)
        cycs = self.cycle_length
        if n < cycs:
            return out

        throttle = THROTTLE_PER_CYCLE * cycle_count
        n_windows = n - cycs + 1

        wtt1 = wtt2 = wtt4 = wtt5 = 0.0
        prev_wtt1 = prev_wtt2 = prev_wtt5 = 0.0
        wtt3 = np.zeros(n_windows)
        prev_wtt3 = np.zeros(n_windows)
        current = np.zeros(n_windows)

        for i in range(cycs):
            swing = self._swing_coefficient(i, throttle) - wtt4 * wtt1 - prev_wtt5 * prev_wtt2
            if swing == 0:
                break
            momentum = self._momentum_coefficient(i, throttle)
            prev_wtt1 = wtt1
            wtt1 = (momentum - wtt4 * wtt2) / swing

            acceleration = self._acceleration_coefficient(i, throttle)
            prev_wtt2 = wtt2
            wtt2 = acceleration / swing

            # window position i reads close[k - (cycs - 1 - i)] for every k
            window_values = values[i:i + n_windows]
            current = (window_values - prev_wtt3 * prev_wtt5 - wtt3 * wtt4) / swing
            prev_wtt3 = wtt3
            wtt3 = current
            wtt4 = momentum - wtt5 * prev_wtt1
            prev_wtt5 = wtt5
            wtt5 = acceleration

        out[cycs - 1:] = current
        return out

    def calculate(self, closes: ArrayLike) -> pd.Series:
        """Momentum series aligned with ``closes`` (0 during warm-up)."""
        series = _as_series(closes)
        fast = self.thrust(series, self.fast_cycles)
        slow = self.thrust(series, self.slow_cycles)
        return pd.Series(fast - slow, index=series.index)

    def _is_pivot_low(self, src: np.ndarray, i: int) -> bool:
        if i - self.pivot_left < 0 or i + self.pivot_right >= len(src):
            return False
        val = src[i]
        if any(src[i - x] <= val for x in range(1, self.pivot_left + 1)):
            return False
        return not any(src[i + x] < val for x in range(1, self.pivot_right + 1))

    def _is_pivot_high(self, src: np.ndarray, i: int) -> bool:
        if i - self.pivot_left < 0 or i + self.pivot_right >= len(src):
            return False
        val = src[i]
        if any(src[i - x] >= val for x in range(1, self.pivot_left + 1)):
            return False
        return not any(src[i + x] > val for x in range(1, self.pivot_right + 1))

    def detect_divergences(self, momentum: ArrayLike, highs: ArrayLike, lows: ArrayLike) -> List[Divergence]:
        """
        Find regular and hidden divergences between oscillator pivots and price.

        Consecutive oscillator pivots of the same kind are compared when they
        lie ``range_lower..range_upper`` bars apart.
        """
        osc = np.asarray(_as_series(momentum).values, dtype=float)
        highs = np.asarray(_as_series(highs).values, dtype=float)
        lows = np.asarray(_as_series(lows).values, dtype=float)
        divergences: List[Divergence] = []
        pivot_lows = []
        pivot_highs = []

        for i in range(self.pivot_left, len(osc) - self.pivot_right):
            if self._is_pivot_low(osc, i):
                pivot_lows.append((i, osc[i], lows[i]))
                if len(pivot_lows) >= 2:
                    prev, curr = pivot_lows[-2], pivot_lows[-1]
                    if self.range_lower <= curr[0] - prev[0] <= self.range_upper:
                        if curr[2] < prev[2] and curr[1] > prev[1]:
                            divergences.append(Divergence(i, "bullish", float(curr[2])))
                        if curr[2] > prev[2] and curr[1] < prev[1]:
                            divergences.append(Divergence(i, "hidden_bullish", float(curr[2])))

            if self._is_pivot_high(osc, i):
                pivot_highs.append((i, osc[i], highs[i]))
                if len(pivot_highs) >= 2:
                    prev, curr = pivot_highs[-2], pivot_highs[-1]
                    if self.range_lower <= curr[0] - prev[0] <= self.range_upper:
                        if curr[2] > prev[2] and curr[1] < prev[1]:
                            divergences.append(Divergence(i, "bearish", float(curr[2])))
                        if curr[2] < prev[2] and curr[1] > prev[1]:
                            divergences.append(Divergence(i, "hidden_bearish", float(curr[2])))

        return divergences
