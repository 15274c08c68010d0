"""
Shared types and defaults for the cycle trading system.

This module provides:
- Candle containers, Cycle records and the Direction/TradeType/ExitReason enums
- Centralized default values for detection, risk and live parameters
"""
from .types import (
    Candle, CandleArrays, Cycle, CycleKey, Direction,
    ExitReason, ManualCycleOverride, TradeType,
)
from .defaults import (
    MIN_DURATION, MAX_DURATION, SWING_STRENGTH,
    STARTING_BALANCE, LEVERAGE, CAPITAL_PERCENTAGE,
    LIVE_SYMBOL, LIVE_INTERVAL,
)

__all__ = [
    'Candle',
    'CandleArrays',
    'Cycle',
    'CycleKey',
    'Direction',
    'ExitReason',
    'ManualCycleOverride',
    'TradeType',
    'MIN_DURATION', 'MAX_DURATION', 'SWING_STRENGTH',
    'STARTING_BALANCE', 'LEVERAGE', 'CAPITAL_PERCENTAGE',
    'LIVE_SYMBOL', 'LIVE_INTERVAL',
]
