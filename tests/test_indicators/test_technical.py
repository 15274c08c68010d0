"""
Tests for technical indicators (RSI, Stochastic, ATR, SMA, EMA, trend) and confirmation helpers.
"""
import pytest
import pandas as pd
import numpy as np
from cycletrader.indicators.technical import (
    TechnicalIndicators,
    is_bearish_confirmation,
    is_bullish_confirmation,
    is_rsi_oversold,
    is_stoch_bullish_cross,
)


@pytest.fixture
def sample_prices():
    """Create sample price data for testing."""
    dates = pd.date_range('2024-01-01', periods=100, freq='h', tz='UTC')
    rng = np.random.default_rng(7)
    prices = pd.Series(
        100 + np.arange(100) * 0.5 + rng.normal(0, 2, 100),
        index=dates
    )
    return prices


@pytest.fixture
def sample_ohlcv():
    """Create sample OHLCV data for testing."""
    dates = pd.date_range('2024-01-01', periods=100, freq='h', tz='UTC')
    rng = np.random.default_rng(11)
    base = 100 + np.arange(100) * 0.5
    noise = rng.normal(0, 2, 100)

    df = pd.DataFrame({
        'Open': base + noise,
        'High': base + abs(noise) + 1,
        'Low': base - abs(noise) - 1,
        'Close': base + noise * 0.5,
        'Volume': rng.integers(1000, 5000, 100).astype(float)
    }, index=dates)

    return df


class TestRSI:
    """Test RSI calculation."""

    def test_rsi_range_and_length(self, sample_prices):
        """RSI should be between 0 and 100, aligned with input and never NaN."""
        rsi = TechnicalIndicators().calculate_rsi(sample_prices)

        assert len(rsi) == len(sample_prices)
        assert not rsi.isna().any()
        assert rsi.min() >= 0
        assert rsi.max() <= 100

    def test_rsi_short_input_is_neutral(self):
        """Fewer than period + 1 prices yield 50 everywhere."""
        rsi = TechnicalIndicators(rsi_period=14).calculate_rsi([1.0, 2.0, 3.0])
        assert list(rsi) == [50.0, 50.0, 50.0]

    def test_rsi_only_gains_is_100(self):
        """Zero average loss gives RSI 100."""
        rsi = TechnicalIndicators(rsi_period=5).calculate_rsi(np.arange(1.0, 21.0))
        assert (rsi == 100.0).all()

    def test_rsi_warmup_backfilled_with_first_value(self, sample_prices):
        """Values before the seed index equal the first computed value."""
        rsi = TechnicalIndicators(rsi_period=14).calculate_rsi(sample_prices)
        assert (rsi.iloc[:14] == rsi.iloc[14]).all()

    def test_rsi_period(self, sample_prices):
        """Different periods should give different results."""
        rsi7 = TechnicalIndicators(rsi_period=7).calculate_rsi(sample_prices)
        rsi14 = TechnicalIndicators(rsi_period=14).calculate_rsi(sample_prices)
        assert not rsi7.equals(rsi14)


class TestStochastic:
    """Test Stochastic oscillator."""

    def test_close_at_high_is_100(self):
        """A close at the window high gives %K = 100."""
        highs = np.arange(1.0, 31.0)
        lows = highs - 1.0
        k, d = TechnicalIndicators().calculate_stochastic(highs, lows, highs)
        assert k.iloc[-1] == pytest.approx(100.0)
        assert d.iloc[-1] == pytest.approx(100.0)

    def test_flat_range_is_neutral(self):
        """Zero high-low range gives 50."""
        flat = np.full(30, 5.0)
        k, d = TechnicalIndicators().calculate_stochastic(flat, flat, flat)
        assert (k == 50.0).all()
        assert (d == 50.0).all()

    def test_short_input_is_neutral(self):
        k, d = TechnicalIndicators(stoch_k_period=14).calculate_stochastic([2.0] * 5, [1.0] * 5, [1.5] * 5)
        assert (k == 50.0).all() and (d == 50.0).all()

    def test_no_nan(self, sample_ohlcv):
        k, d = TechnicalIndicators().calculate_stochastic(
            sample_ohlcv['High'], sample_ohlcv['Low'], sample_ohlcv['Close']
        )
        assert not k.isna().any()
        assert not d.isna().any()
        assert len(k) == len(d) == len(sample_ohlcv)


class TestATR:
    """Test Average True Range."""

    def test_constant_range(self):
        """Bars with a constant 2.0 range and unchanged closes have ATR 2.0."""
        closes = np.full(40, 100.0)
        atr = TechnicalIndicators(atr_period=14).calculate_atr(closes + 1.0, closes - 1.0, closes)
        assert np.allclose(atr.values, 2.0)

    def test_short_history_is_zero(self):
        """Fewer than period bars yield 0.0 (disables dynamic exits)."""
        atr = TechnicalIndicators(atr_period=14).calculate_atr([2.0] * 5, [1.0] * 5, [1.5] * 5)
        assert (atr == 0.0).all()

    def test_gap_uses_previous_close(self):
        """True range includes the gap from the previous close."""
        highs = np.array([11.0, 21.0])
        lows = np.array([9.0, 20.0])
        closes = np.array([10.0, 20.5])
        atr = TechnicalIndicators().calculate_atr(highs, lows, closes, period=2)
        # TR = [2, 11] -> seed mean at index 1
        assert atr.iloc[-1] == pytest.approx(6.5)


class TestMovingAverages:
    """Test SMA and EMA."""

    def test_sma_backfilled(self):
        sma = TechnicalIndicators().calculate_sma([1.0, 2.0, 3.0, 4.0, 5.0], 3)
        assert list(sma) == [2.0, 2.0, 2.0, 3.0, 4.0]

    def test_sma_short_uses_available_mean(self):
        sma = TechnicalIndicators().calculate_sma([2.0, 4.0], 20)
        assert list(sma) == [3.0, 3.0]

    def test_ema_nan_until_period(self, sample_prices):
        """EMA keeps min_periods semantics."""
        ema = TechnicalIndicators().calculate_ema(sample_prices, period=20)
        assert ema.iloc[:19].isna().all()
        assert not ema.iloc[19:].isna().any()


class TestTrend:
    """Test EMA trend classification."""

    def test_uptrend_is_bullish(self):
        assert TechnicalIndicators().classify_trend(np.linspace(100, 200, 120)) == "bullish"

    def test_downtrend_is_bearish(self):
        assert TechnicalIndicators().classify_trend(np.linspace(200, 100, 120)) == "bearish"

    def test_short_history_is_neutral(self):
        assert TechnicalIndicators(ema_slow_period=80).classify_trend(np.linspace(100, 200, 50)) == "neutral"


class TestConfirmationHelpers:
    """Test RSI/Stochastic confirmation helpers."""

    def test_rsi_recovering_from_oversold(self):
        """RSI rising from below the threshold counts as oversold."""
        assert is_rsi_oversold(35.0, 28.0)
        assert not is_rsi_oversold(35.0, 40.0)

    def test_stoch_cross_requires_previous_values(self):
        assert not is_stoch_bullish_cross(60.0, 50.0, None, None)
        assert is_stoch_bullish_cross(60.0, 50.0, 40.0, 45.0)

    def test_bullish_confirmation_from_stochastic(self):
        """Stochastic below oversold confirms even with neutral RSI."""
        assert is_bullish_confirmation(50.0, 50.0, 20.0, 30.0, 25.0, 30.0)
        assert not is_bullish_confirmation(50.0, 50.0, 50.0, 60.0, 55.0, 60.0)

    def test_bearish_confirmation_from_rsi(self):
        assert is_bearish_confirmation(75.0, 72.0, 50.0, 50.0, 50.0, 50.0)
        assert not is_bearish_confirmation(50.0, 50.0, 50.0, 40.0, 45.0, 40.0)
