"""
Types for walk-forward simulation: per-run state, equity samples and results.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from ..shared.types import Cycle, CycleKey, Direction, TradeType
from .position import PositionManager
from .position_types import Position, Trade


@dataclass(frozen=True)
class EquityPoint:
    """One equity sample per simulated bar."""
    index: int
    time: Optional[pd.Timestamp]
    balance: float  # Realized
    equity: float  # Realized + open position marked at the bar close


@dataclass
class PendingSignal:
    """An entry waiting for consecutive favourable closes."""
    trade_type: TradeType
    cycle: Cycle
    sl_price: float
    detection_index: int
    counter_trend: bool = False
    confirmed_bars: int = 0


def _direction_map(value: int) -> Dict[Direction, int]:
    return {direction: value for direction in Direction}


@dataclass
class SimulationState:
    """
    Mutable state of one simulation run.

    Never shared: every run (and every grid-search worker) builds its own.
    """
    manager: PositionManager
    equity_curve: List[EquityPoint] = field(default_factory=list)
    processed_cycles: Dict[CycleKey, int] = field(default_factory=dict)  # key -> last seen end index
    last_traded_end: Dict[Direction, int] = field(default_factory=lambda: _direction_map(-1))
    active_cycle_start: Dict[Direction, int] = field(default_factory=lambda: _direction_map(-1))
    pending: Optional[PendingSignal] = None

    def cancel_pending(self, trade_type: TradeType) -> None:
        """Drop a pending signal of ``trade_type`` (no-op for the other side)."""
        if self.pending is not None and self.pending.trade_type is trade_type:
            self.pending = None


@dataclass
class SimulationResult:
    """Outcome of a walk-forward simulation."""
    trades: List[Trade]
    equity_curve: List[EquityPoint]
    final_balance: float
    starting_balance: float
    open_position: Optional[Position] = None  # Left open at the last bar
    cycles: Dict[Direction, List[Cycle]] = field(default_factory=dict)  # Detected on the full series
    stats: Dict[str, float] = field(default_factory=dict)

    @property
    def pnl(self) -> float:
        return self.final_balance - self.starting_balance

    @property
    def pnl_percent(self) -> float:
        return self.pnl / self.starting_balance * 100

    def trades_frame(self) -> pd.DataFrame:
        return pd.DataFrame([t.to_dict() for t in self.trades])

    def equity_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                'index': [p.index for p in self.equity_curve],
                'balance': [p.balance for p in self.equity_curve],
                'equity': [p.equity for p in self.equity_curve],
            },
            index=pd.Index([p.time for p in self.equity_curve], name='time'),
        )
