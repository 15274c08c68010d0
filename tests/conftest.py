"""
Shared fixtures: synthetic candle series with known cycle structure.
"""
import numpy as np
import pandas as pd
import pytest


def build_candles(mid, wick=0.2, start="2024-01-01", freq="h", volume=1000.0):
    """
    Candles whose closes follow ``mid``.

    Each bar opens at the previous close (the first one a point above its
    close); the wick extends ``wick`` beyond the close on the side the bar
    moved to and beyond the open on the other side.
    """
    mid = np.asarray(mid, dtype=float)
    opens = np.concatenate([[mid[0] + 1.0], mid[:-1]])
    closes = mid
    highs = np.maximum(opens, closes) + wick
    lows = np.minimum(opens, closes) - wick
    index = pd.date_range(start, periods=len(mid), freq=freq, tz="UTC", name="time")
    return pd.DataFrame(
        {"Open": opens, "High": highs, "Low": lows, "Close": closes, "Volume": np.full(len(mid), volume)},
        index=index,
    )


def v_shape_mid():
    """
    100-bar path: fall to 100 at bar 30, rise to 120 at bar 38, fall to 95
    at bar 58, then rise to the end.
    """
    t = np.arange(100, dtype=float)
    return np.select(
        [t <= 30, t <= 38, t <= 58],
        [130 - t, 100 + 2.5 * (t - 30), 120 - 1.25 * (t - 38)],
        95 + (t - 58),
    )


@pytest.fixture
def v_shape_candles():
    """One inverted cycle: start low at 30, high at 38, end low at 58 (confirmed by bar 59)."""
    return build_candles(v_shape_mid())


@pytest.fixture
def make_candles():
    """Factory for candle frames from a close path (see build_candles)."""
    return build_candles
