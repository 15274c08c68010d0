"""
Swing pivot tests.

A swing high/low must beat its left neighbours strictly and may tie its right
neighbours (so the first bar of a flat top/bottom is the pivot). A swing is
then confirmed by the first opposite-colour candle with a substantial body,
unless a close breaks the swing extreme first.
"""
import numpy as np

from ..shared.defaults import PIVOT_BODY_RATIO
from ..shared.types import CandleArrays


def is_swing_high(highs: np.ndarray, index: int, strength: int = 1) -> bool:
    """Raw swing-high test with ``strength`` neighbours on each side."""
    if index < strength or index >= len(highs) - strength:
        return False
    current = highs[index]
    for k in range(1, strength + 1):
        if highs[index - k] >= current:
            return False
        if highs[index + k] > current:
            return False
    return True


def is_swing_low(lows: np.ndarray, index: int, strength: int = 1) -> bool:
    """Raw swing-low test with ``strength`` neighbours on each side."""
    if index < strength or index >= len(lows) - strength:
        return False
    current = lows[index]
    for k in range(1, strength + 1):
        if lows[index - k] <= current:
            return False
        if lows[index + k] < current:
            return False
    return True


def _has_body(candles: CandleArrays, i: int, body_ratio: float) -> bool:
    price_range = candles.high[i] - candles.low[i]
    if price_range <= 0:
        return False
    return abs(candles.close[i] - candles.open[i]) / price_range >= body_ratio


def confirm_swing_high(
    candles: CandleArrays,
    index: int,
    window: int,
    body_ratio: float = PIVOT_BODY_RATIO,
) -> bool:
    """
    Confirm a swing high by scanning up to ``window`` bars forward.

    Rejected as soon as a close reaches the swing high; accepted on the first
    red candle whose body is at least ``body_ratio`` of its range. Bars beyond
    the visible candles are never consulted.
    """
    swing_high = candles.high[index]
    last = min(index + window, len(candles) - 1)
    for i in range(index + 1, last + 1):
        if candles.close[i] >= swing_high:
            return False
        if candles.close[i] < candles.open[i] and _has_body(candles, i, body_ratio):
            return True
    return False


def confirm_swing_low(
    candles: CandleArrays,
    index: int,
    window: int,
    body_ratio: float = PIVOT_BODY_RATIO,
) -> bool:
    """Mirror of confirm_swing_high: green candle confirms, a close at or below the low rejects."""
    swing_low = candles.low[index]
    last = min(index + window, len(candles) - 1)
    for i in range(index + 1, last + 1):
        if candles.close[i] <= swing_low:
            return False
        if candles.close[i] > candles.open[i] and _has_body(candles, i, body_ratio):
            return True
    return False
