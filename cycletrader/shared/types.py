"""
Shared types for cycle detection and position management.

This module consolidates the candle containers, cycle records and the
direction / trade / exit enums used across detection, simulation and
live execution so every layer speaks the same vocabulary.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional

import numpy as np
import pandas as pd


class TradeType(Enum):
    """Side of a leveraged position."""
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "TradeType":
        return TradeType.SHORT if self is TradeType.LONG else TradeType.LONG


class Direction(Enum):
    """
    Shape of a cycle.

    INVERTED: Low -> High -> Low (start and end are swing lows), drives LONG entries.
    NORMAL: High -> Low -> High (start and end are swing highs), drives SHORT entries.
    """
    INVERTED = "inverted"
    NORMAL = "normal"

    @property
    def trade_type(self) -> TradeType:
        return TradeType.LONG if self is Direction.INVERTED else TradeType.SHORT

    @property
    def opposite(self) -> "Direction":
        return Direction.NORMAL if self is Direction.INVERTED else Direction.INVERTED

    @classmethod
    def from_trade_type(cls, trade_type: TradeType) -> "Direction":
        return cls.INVERTED if trade_type is TradeType.LONG else cls.NORMAL


class ExitReason(Enum):
    """Why a position (or part of it) was closed."""
    SL_CYCLE_EXTREME = "SL_CycleExtreme"
    MAX_LOSS = "MaxLoss"
    BREAK_EVEN = "BreakEven"
    TP1_PARTIAL = "TP1_Partial"
    TP2_FULL = "TP2_Full"
    CYCLE_END = "CycleEnd"
    OPPOSITE_CYCLE = "OppositeCycle"
    CYCLE_UPDATE = "CycleUpdate"
    OPPOSITE_SIGNAL = "OppositeSignal"


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar."""
    time: pd.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_green(self) -> bool:
        return self.close > self.open

    @property
    def is_red(self) -> bool:
        return self.close < self.open


class CandleArrays:
    """
    Column-wise numpy view over a candle DataFrame.

    Detection and simulation index bars by position, so the hot loops work on
    plain arrays instead of DataFrame rows. ``prefix(n)`` returns views, not
    copies, which keeps per-bar replays cheap.
    """

    __slots__ = ("time", "open", "high", "low", "close", "volume")

    def __init__(self, time, open, high, low, close, volume=None):
        self.time = pd.DatetimeIndex(time)
        self.open = np.asarray(open, dtype=float)
        self.high = np.asarray(high, dtype=float)
        self.low = np.asarray(low, dtype=float)
        self.close = np.asarray(close, dtype=float)
        if volume is None:
            volume = np.zeros(len(self.close))
        self.volume = np.asarray(volume, dtype=float)
        n = len(self.close)
        for name in ("open", "high", "low", "volume"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"Column '{name}' has {len(getattr(self, name))} values, expected {n}")
        if len(self.time) != n:
            raise ValueError(f"time has {len(self.time)} values, expected {n}")

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "CandleArrays":
        """Build from a DataFrame with Open/High/Low/Close[/Volume] columns and a DatetimeIndex."""
        missing = [c for c in ("Open", "High", "Low", "Close") if c not in df.columns]
        if missing:
            raise ValueError(f"Candle frame is missing columns: {missing}")
        volume = df["Volume"].values if "Volume" in df.columns else None
        return cls(df.index, df["Open"].values, df["High"].values, df["Low"].values, df["Close"].values, volume)

    def __len__(self) -> int:
        return len(self.close)

    def prefix(self, n: int) -> "CandleArrays":
        """First ``n`` candles (the only data visible at bar n - 1)."""
        return CandleArrays(
            self.time[:n], self.open[:n], self.high[:n], self.low[:n], self.close[:n], self.volume[:n]
        )

    def candle(self, i: int) -> Candle:
        return Candle(
            time=self.time[i],
            open=float(self.open[i]),
            high=float(self.high[i]),
            low=float(self.low[i]),
            close=float(self.close[i]),
            volume=float(self.volume[i]),
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "Open": self.open,
                "High": self.high,
                "Low": self.low,
                "Close": self.close,
                "Volume": self.volume,
            },
            index=self.time,
        )


@dataclass(frozen=True)
class Cycle:
    """
    A detected swing-to-swing structural move.

    For INVERTED cycles start/end are swing lows and the extremum is the
    highest high between them; NORMAL cycles mirror this.
    """
    start_index: int
    end_index: int
    extremum_index: int
    duration: int
    amplitude: float
    start_price: float
    extremum_price: float
    end_price: float
    first_potential_end: int
    direction: Direction
    is_manual: bool = False

    @property
    def key(self) -> "CycleKey":
        return CycleKey(self.direction, self.start_index)

    @property
    def amplitude_pct(self) -> float:
        """Amplitude as a percentage of the start price."""
        if self.start_price <= 0:
            return 0.0
        return self.amplitude / self.start_price * 100


class CycleKey(NamedTuple):
    """Identity of a cycle across walk-forward steps: its end may move, its start may not."""
    direction: Direction
    start_index: int


@dataclass(frozen=True)
class ManualCycleOverride:
    """User-forced cycle boundaries spliced into automatic detection."""
    start_index: int
    end_index: int

    def validate(self, n_candles: Optional[int] = None) -> None:
        if self.start_index < 0:
            raise ValueError(f"Manual cycle start_index must be >= 0, got {self.start_index}")
        if self.end_index <= self.start_index:
            raise ValueError(
                f"Manual cycle end_index ({self.end_index}) must be greater than start_index ({self.start_index})"
            )
        if n_candles is not None and self.end_index >= n_candles:
            raise ValueError(
                f"Manual cycle end_index ({self.end_index}) is beyond the last candle ({n_candles - 1})"
            )
