"""
Technical indicators for cycle confirmation and risk sizing.

Provides RSI, Stochastic, ATR, SMA and EMA. Every series returned by
TechnicalIndicators is aligned 1:1 with its input and contains no NaN
(warm-up values are back-filled with the first stable value), except
calculate_ema which keeps pandas' min_periods semantics for the trend filter.
"""
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..shared.defaults import (
    RSI_PERIOD, RSI_OVERSOLD, RSI_OVERBOUGHT,
    STOCH_K_PERIOD, STOCH_D_PERIOD, STOCH_OVERSOLD, STOCH_OVERBOUGHT,
    ATR_PERIOD, EMA_FAST_PERIOD, EMA_SLOW_PERIOD,
)

ArrayLike = Union[pd.Series, np.ndarray, Sequence[float]]

NEUTRAL_OSCILLATOR = 50.0


def _as_series(values: ArrayLike) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float)
    return pd.Series(np.asarray(values, dtype=float))


def _wilder_smooth(values: pd.Series, period: int, seed_index: int, seed: float) -> pd.Series:
    """
    Wilder smoothing seeded with ``seed`` at ``seed_index``.

    avg[t] = (avg[t-1] * (period - 1) + x[t]) / period, NaN before the seed.
    """
    seeded = values.copy()
    seeded.iloc[:seed_index] = np.nan
    seeded.iloc[seed_index] = seed
    return seeded.ewm(alpha=1.0 / period, adjust=False).mean()


class TechnicalIndicators:
    """Calculates technical indicators from price data."""

    def __init__(
        self,
        rsi_period: int = RSI_PERIOD,
        stoch_k_period: int = STOCH_K_PERIOD,
        stoch_d_period: int = STOCH_D_PERIOD,
        atr_period: int = ATR_PERIOD,
        ema_fast_period: int = EMA_FAST_PERIOD,
        ema_slow_period: int = EMA_SLOW_PERIOD,
    ):
        """
        Initialize indicator calculator.

        Args:
            rsi_period: Period for RSI calculation (default: shared.defaults.RSI_PERIOD)
            stoch_k_period: Stochastic %K lookback (default: shared.defaults.STOCH_K_PERIOD)
            stoch_d_period: Stochastic %D smoothing (default: shared.defaults.STOCH_D_PERIOD)
            atr_period: ATR period (default: shared.defaults.ATR_PERIOD)
            ema_fast_period: Fast EMA of the trend classifier
            ema_slow_period: Slow EMA of the trend classifier
        """
        self.rsi_period = rsi_period
        self.stoch_k_period = stoch_k_period
        self.stoch_d_period = stoch_d_period
        self.atr_period = atr_period
        self.ema_fast_period = ema_fast_period
        self.ema_slow_period = ema_slow_period

    def calculate_rsi(self, prices: ArrayLike, period: Optional[int] = None) -> pd.Series:
        """
        Calculate Relative Strength Index (RSI) with Wilder smoothing.

        RSI = 100 - (100 / (1 + RS)), RS = Average Gain / Average Loss.
        The first value lands at index ``period`` (seeded with the simple mean
        of the first ``period`` changes); earlier values are back-filled.
        Fewer than ``period + 1`` prices yield the neutral value 50.
        """
        period = period or self.rsi_period
        prices = _as_series(prices)
        if len(prices) < period + 1:
            return pd.Series(NEUTRAL_OSCILLATOR, index=prices.index)

        delta = prices.diff()
        gain = delta.clip(lower=0.0)
        loss = (-delta).clip(lower=0.0)

        avg_gain = _wilder_smooth(gain, period, period, gain.iloc[1:period + 1].mean())
        avg_loss = _wilder_smooth(loss, period, period, loss.iloc[1:period + 1].mean())

        rs = avg_gain / avg_loss.replace(0.0, np.nan)
        rsi = 100 - (100 / (1 + rs))
        rsi = rsi.where(avg_loss != 0.0, 100.0)
        rsi.iloc[:period] = np.nan
        return rsi.bfill()

    def calculate_stochastic(
        self,
        highs: ArrayLike,
        lows: ArrayLike,
        closes: ArrayLike,
        k_period: Optional[int] = None,
        d_period: Optional[int] = None,
    ) -> Tuple[pd.Series, pd.Series]:
        """
        Calculate the Stochastic oscillator.

        Returns:
            Tuple of (%K, %D). A zero high-low range yields 50; fewer than
            ``k_period`` bars yield 50 everywhere.
        """
        k_period = k_period or self.stoch_k_period
        d_period = d_period or self.stoch_d_period
        highs, lows, closes = _as_series(highs), _as_series(lows), _as_series(closes)
        if len(closes) < k_period:
            neutral = pd.Series(NEUTRAL_OSCILLATOR, index=closes.index)
            return neutral, neutral.copy()

        lowest = lows.rolling(k_period).min()
        highest = highs.rolling(k_period).max()
        price_range = highest - lowest

        k = (closes - lowest) / price_range.replace(0.0, np.nan) * 100
        k = k.where(price_range != 0.0, NEUTRAL_OSCILLATOR).bfill()
        d = k.rolling(d_period).mean().bfill()
        return k, d

    def calculate_atr(
        self,
        highs: ArrayLike,
        lows: ArrayLike,
        closes: ArrayLike,
        period: Optional[int] = None,
    ) -> pd.Series:
        """
        Calculate ATR (Average True Range) with Wilder smoothing.

        The first bar's true range is its high-low range. The first ATR value
        (index ``period - 1``) is the mean true range of the first ``period``
        bars. Fewer than ``period`` bars yield 0.0, which disables ATR-based
        exits downstream.
        """
        period = period or self.atr_period
        highs, lows, closes = _as_series(highs), _as_series(lows), _as_series(closes)
        if len(closes) < period:
            return pd.Series(0.0, index=closes.index)

        prev_close = closes.shift(1)
        tr = pd.concat(
            [highs - lows, (highs - prev_close).abs(), (lows - prev_close).abs()],
            axis=1,
        ).max(axis=1)
        tr.iloc[0] = highs.iloc[0] - lows.iloc[0]

        atr = _wilder_smooth(tr, period, period - 1, tr.iloc[:period].mean())
        return atr.bfill()

    def calculate_sma(self, values: ArrayLike, period: int) -> pd.Series:
        """Simple moving average, back-filled; short inputs use the mean of what exists."""
        values = _as_series(values)
        if len(values) == 0:
            return values
        if len(values) < period:
            return pd.Series(values.mean(), index=values.index)
        return values.rolling(period).mean().bfill()

    def calculate_ema(self, prices: ArrayLike, period: int) -> pd.Series:
        """Calculate Exponential Moving Average."""
        return _as_series(prices).ewm(span=period, min_periods=period).mean()

    def classify_trend(self, prices: ArrayLike) -> str:
        """
        Classify the trend at the last bar from the fast/slow EMA pair.

        Returns:
            "bullish" when fast EMA > slow EMA, "bearish" when below, "neutral"
            when equal or when there is not enough history for the slow EMA.
        """
        prices = _as_series(prices)
        if len(prices) < self.ema_slow_period:
            return "neutral"
        fast = self.calculate_ema(prices, self.ema_fast_period).iloc[-1]
        slow = self.calculate_ema(prices, self.ema_slow_period).iloc[-1]
        if np.isnan(fast) or np.isnan(slow) or fast == slow:
            return "neutral"
        return "bullish" if fast > slow else "bearish"


def is_rsi_oversold(rsi: float, prev_rsi: Optional[float], threshold: float = RSI_OVERSOLD) -> bool:
    """RSI below threshold, or recovering upward from below it."""
    if rsi < threshold:
        return True
    return prev_rsi is not None and prev_rsi < threshold and rsi > prev_rsi


def is_rsi_overbought(rsi: float, prev_rsi: Optional[float], threshold: float = RSI_OVERBOUGHT) -> bool:
    """RSI above threshold, or turning downward from above it."""
    if rsi > threshold:
        return True
    return prev_rsi is not None and prev_rsi > threshold and rsi < prev_rsi


def is_stoch_bullish_cross(k: float, d: float, prev_k: Optional[float], prev_d: Optional[float]) -> bool:
    if prev_k is None or prev_d is None:
        return False
    return prev_k <= prev_d and k > d


def is_stoch_bearish_cross(k: float, d: float, prev_k: Optional[float], prev_d: Optional[float]) -> bool:
    if prev_k is None or prev_d is None:
        return False
    return prev_k >= prev_d and k < d


def is_bullish_confirmation(
    rsi: float,
    prev_rsi: Optional[float],
    k: float,
    d: float,
    prev_k: Optional[float],
    prev_d: Optional[float],
    rsi_oversold: float = RSI_OVERSOLD,
    stoch_oversold: float = STOCH_OVERSOLD,
) -> bool:
    """
    Indicator confirmation for a swing low.

    True when RSI is oversold (or recovering from it), or Stochastic %K is
    below the oversold level, or %K crossed above %D.
    """
    if is_rsi_oversold(rsi, prev_rsi, rsi_oversold):
        return True
    return k < stoch_oversold or is_stoch_bullish_cross(k, d, prev_k, prev_d)


def is_bearish_confirmation(
    rsi: float,
    prev_rsi: Optional[float],
    k: float,
    d: float,
    prev_k: Optional[float],
    prev_d: Optional[float],
    rsi_overbought: float = RSI_OVERBOUGHT,
    stoch_overbought: float = STOCH_OVERBOUGHT,
) -> bool:
    """Indicator confirmation for a swing high (mirror of is_bullish_confirmation)."""
    if is_rsi_overbought(rsi, prev_rsi, rsi_overbought):
        return True
    return k > stoch_overbought or is_stoch_bearish_cross(k, d, prev_k, prev_d)
