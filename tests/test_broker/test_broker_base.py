"""Tests for the exchange interface helpers."""
from datetime import timedelta

import pytest

from cycletrader.broker.base import OrderSide, floor_quantity, interval_to_timedelta
from cycletrader.shared.types import TradeType


class TestFloorQuantity:
    def test_never_rounds_up(self):
        assert floor_quantity(12.39, 1) == 12.3
        assert floor_quantity(0.999, 2) == 0.99

    def test_float_noise(self):
        assert floor_quantity(12.3, 1) == 12.3
        assert floor_quantity(0.1 + 0.2, 1) == 0.3

    def test_absolute_value_and_zero_precision(self):
        assert floor_quantity(-3.7, 0) == 3.0


class TestIntervals:
    @pytest.mark.parametrize("interval,expected", [
        ("15m", timedelta(minutes=15)),
        ("1h", timedelta(hours=1)),
        ("4h", timedelta(hours=4)),
        ("1d", timedelta(days=1)),
        ("1w", timedelta(weeks=1)),
    ])
    def test_known(self, interval, expected):
        assert interval_to_timedelta(interval) == expected

    @pytest.mark.parametrize("interval", ["", "h", "0h", "1y", "1.5h"])
    def test_unknown(self, interval):
        with pytest.raises(ValueError, match="Unsupported interval"):
            interval_to_timedelta(interval)


def test_order_sides():
    assert OrderSide.opening(TradeType.LONG) is OrderSide.BUY
    assert OrderSide.opening(TradeType.SHORT) is OrderSide.SELL
    assert OrderSide.closing(TradeType.LONG) is OrderSide.SELL
    assert OrderSide.closing(TradeType.SHORT) is OrderSide.BUY
    assert OrderSide("BUY") is OrderSide.BUY
