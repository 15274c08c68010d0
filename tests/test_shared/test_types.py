"""Tests for shared candle, cycle and enum types."""
import numpy as np
import pandas as pd
import pytest

from cycletrader.shared.types import (
    CandleArrays,
    Cycle,
    CycleKey,
    Direction,
    ExitReason,
    ManualCycleOverride,
    TradeType,
)


def _arrays(n=5):
    time = pd.date_range("2024-01-01", periods=n, freq="h", tz="UTC")
    close = np.arange(n, dtype=float) + 10
    return CandleArrays(time, close - 0.5, close + 1, close - 1, close, np.full(n, 7.0))


class TestEnums:
    def test_trade_type_opposite(self):
        assert TradeType.LONG.opposite is TradeType.SHORT
        assert TradeType.SHORT.opposite is TradeType.LONG

    def test_direction_maps_to_trade_type(self):
        assert Direction.INVERTED.trade_type is TradeType.LONG
        assert Direction.NORMAL.trade_type is TradeType.SHORT
        assert Direction.from_trade_type(TradeType.SHORT) is Direction.NORMAL
        assert Direction.INVERTED.opposite is Direction.NORMAL

    def test_exit_reason_labels(self):
        assert [r.value for r in ExitReason] == [
            "SL_CycleExtreme", "MaxLoss", "BreakEven", "TP1_Partial", "TP2_Full",
            "CycleEnd", "OppositeCycle", "CycleUpdate", "OppositeSignal",
        ]


class TestCandleArrays:
    def test_from_frame_and_back(self):
        arrays = _arrays()
        frame = arrays.to_frame()
        again = CandleArrays.from_frame(frame)
        np.testing.assert_array_equal(again.close, arrays.close)
        np.testing.assert_array_equal(again.volume, arrays.volume)
        assert list(frame.columns) == ["Open", "High", "Low", "Close", "Volume"]

    def test_volume_defaults_to_zero(self):
        frame = _arrays().to_frame().drop(columns=["Volume"])
        arrays = CandleArrays.from_frame(frame)
        assert arrays.volume.tolist() == [0.0] * 5

    def test_missing_column(self):
        frame = _arrays().to_frame().drop(columns=["Low"])
        with pytest.raises(ValueError, match="missing columns"):
            CandleArrays.from_frame(frame)

    def test_length_mismatch(self):
        time = pd.date_range("2024-01-01", periods=3, freq="h", tz="UTC")
        with pytest.raises(ValueError, match="'high' has 2 values"):
            CandleArrays(time, [1, 2, 3], [1, 2], [1, 2, 3], [1, 2, 3])
        with pytest.raises(ValueError, match="time has 3 values"):
            CandleArrays(time, [1, 2], [1, 2], [1, 2], [1, 2])

    def test_prefix_and_candle(self):
        arrays = _arrays()
        head = arrays.prefix(3)
        assert len(head) == 3
        assert head.time[-1] == arrays.time[2]
        candle = arrays.candle(2)
        assert candle.close == 12.0
        assert candle.open == 11.5
        assert candle.is_green and not candle.is_red


class TestCycle:
    def _cycle(self, start_price=100.0, amplitude=20.0):
        return Cycle(
            start_index=10, end_index=30, extremum_index=18, duration=20, amplitude=amplitude,
            start_price=start_price, extremum_price=start_price + amplitude, end_price=start_price - 2,
            first_potential_end=25, direction=Direction.INVERTED,
        )

    def test_key_ignores_end(self):
        assert self._cycle().key == CycleKey(Direction.INVERTED, 10)

    def test_amplitude_pct(self):
        assert self._cycle(start_price=80.0, amplitude=20.0).amplitude_pct == pytest.approx(25.0)
        assert self._cycle(start_price=0.0).amplitude_pct == 0.0


class TestManualCycleOverride:
    def test_valid(self):
        ManualCycleOverride(0, 10).validate(11)

    @pytest.mark.parametrize("start,end,n,match", [
        (-1, 5, 10, "start_index must be >= 0"),
        (5, 5, 10, "must be greater than start_index"),
        (2, 10, 10, "beyond the last candle"),
    ])
    def test_invalid(self, start, end, n, match):
        with pytest.raises(ValueError, match=match):
            ManualCycleOverride(start, end).validate(n)
