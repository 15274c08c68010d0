"""
Indicator calculation module.

Provides the indicators used by cycle detection and risk management:
- Technical indicators (RSI, Stochastic, ATR, SMA, EMA trend)
- Indicator confirmation helpers for swing pivots
- Cycle swing momentum oscillator and divergence detection
"""
from .technical import (
    TechnicalIndicators,
    is_bullish_confirmation,
    is_bearish_confirmation,
    is_rsi_oversold,
    is_rsi_overbought,
    is_stoch_bullish_cross,
    is_stoch_bearish_cross,
)
from .momentum import CycleSwingMomentum, Divergence

__all__ = [
    'TechnicalIndicators',
    'is_bullish_confirmation',
    'is_bearish_confirmation',
    'is_rsi_oversold',
    'is_rsi_overbought',
    'is_stoch_bullish_cross',
    'is_stoch_bearish_cross',
    'CycleSwingMomentum',
    'Divergence',
]
