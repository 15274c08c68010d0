"""
Tests for the cycle swing momentum oscillator.
"""
import pytest
import pandas as pd
import numpy as np
from cycletrader.indicators.momentum import CycleSwingMomentum


@pytest.fixture
def wave_closes():
    """Sine wave around 100 with a 40-bar period."""
    dates = pd.date_range('2024-01-01', periods=300, freq='h', tz='UTC')
    t = np.arange(300)
    return pd.Series(100 + 5 * np.sin(2 * np.pi * t / 40), index=dates)


class TestCycleSwingMomentum:
    """Test momentum calculation."""

    def test_aligned_with_input(self, wave_closes):
        momentum = CycleSwingMomentum(cycle_length=50).calculate(wave_closes)
        assert len(momentum) == len(wave_closes)
        assert momentum.index.equals(wave_closes.index)
        assert np.isfinite(momentum.values).all()

    def test_warmup_is_zero(self, wave_closes):
        """Bars without a full window are 0."""
        momentum = CycleSwingMomentum(cycle_length=50).calculate(wave_closes)
        assert (momentum.iloc[:49] == 0.0).all()

    def test_short_input_is_all_zero(self):
        momentum = CycleSwingMomentum(cycle_length=50).calculate(np.linspace(1, 2, 20))
        assert (momentum == 0.0).all()

    def test_invalid_cycle_length(self):
        with pytest.raises(ValueError, match="cycle_length"):
            CycleSwingMomentum(cycle_length=2)

    def test_causal(self, wave_closes):
        """Appending bars never changes earlier values."""
        calc = CycleSwingMomentum(cycle_length=30)
        full = calc.calculate(wave_closes)
        head = calc.calculate(wave_closes.iloc[:150])
        assert np.allclose(full.iloc[:150].values, head.values)


class TestDivergences:
    """Test pivot-based divergence detection."""

    def test_too_short_yields_nothing(self):
        calc = CycleSwingMomentum()
        assert calc.detect_divergences([1.0, 2.0, 3.0], [1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == []

    def test_bullish_divergence(self):
        """Lower price low with a higher oscillator low is bullish."""
        i = np.arange(40)
        osc = np.minimum(np.abs(i - 10) - 5.0, np.abs(i - 25) - 2.0)
        lows = np.full(40, 100.0)
        lows[10], lows[25] = 95.0, 90.0
        highs = lows + 1.0
        calc = CycleSwingMomentum(pivot_left=3, pivot_right=3)
        kinds = [(d.index, d.kind) for d in calc.detect_divergences(osc, highs, lows)]
        assert (25, "bullish") in kinds

    def test_flat_bottom_is_one_pivot(self):
        """
        Oscillator lows tie at 10 and 11; only bar 10 is a pivot, so the low
        at 25 is measured against it (higher price, higher oscillator: no signal).
        """
        i = np.arange(40)
        osc = np.minimum(np.abs(i - 10.5) - 5.5, np.abs(i - 25) - 2.0)
        lows = np.full(40, 100.0)
        lows[10], lows[11], lows[25] = 95.0, 97.0, 96.0
        calc = CycleSwingMomentum(pivot_left=3, pivot_right=3)
        assert calc.detect_divergences(osc, lows + 1.0, lows) == []

    def test_flat_top_is_one_pivot(self):
        i = np.arange(40)
        osc = -np.minimum(np.abs(i - 10.5) - 5.5, np.abs(i - 25) - 2.0)
        highs = np.full(40, 100.0)
        highs[10], highs[11], highs[25] = 105.0, 103.0, 104.0
        calc = CycleSwingMomentum(pivot_left=3, pivot_right=3)
        assert calc.detect_divergences(osc, highs, highs - 1.0) == []
