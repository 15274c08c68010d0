"""
Position and trade records for the position state machine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import pandas as pd

from ..shared.types import Cycle, ExitReason, TradeType


def cycle_metadata(cycle: Optional[Cycle]) -> Dict[str, Any]:
    """Cycle metrics attached to positions and trades (detection lag analysis)."""
    if cycle is None:
        return {}
    return {
        'cycle_direction': cycle.direction.value,
        'cycle_start_index': cycle.start_index,
        'cycle_end_index': cycle.end_index,
        'cycle_first_close_index': cycle.first_potential_end,
        'cycle_duration': cycle.duration,
        'cycle_amplitude_pct': cycle.amplitude_pct,
    }


@dataclass
class Position:
    """The single live position. Mutated in place by partial closes and stop updates."""
    trade_id: int
    type: TradeType
    entry_price: float
    entry_index: int
    capital_used: float  # Margin still committed (shrinks on partial closes)
    position_size: float  # Units still held
    sl_price: float
    tp1_price: float
    tp2_price: float
    initial_capital: float
    initial_size: float
    partial_closed: bool = False
    break_even_active: bool = False
    counter_trend: bool = False
    highest_price: float = 0.0
    lowest_price: float = 0.0
    max_drawdown_pct: float = 0.0  # Worst leveraged excursion (negative)
    origin_cycle: Optional[Cycle] = None
    entry_time: Optional[pd.Timestamp] = None

    @property
    def is_long(self) -> bool:
        return self.type is TradeType.LONG

    @property
    def cycle_metadata(self) -> Dict[str, Any]:
        return cycle_metadata(self.origin_cycle)


@dataclass(frozen=True)
class Trade:
    """A completed (full or partial) close. Trades are append-only."""
    trade_id: int
    type: TradeType
    entry_price: float
    exit_price: float
    entry_index: int
    exit_index: int
    pnl: float  # Net of fees
    pnl_percent: float  # Leveraged price move in percent
    fees: float
    reason: ExitReason
    balance_after: float
    partial: bool = False
    fraction: float = 1.0
    sl_price: float = 0.0
    tp1_price: float = 0.0
    tp2_price: float = 0.0
    max_drawdown_pct: float = 0.0
    counter_trend: bool = False
    entry_time: Optional[pd.Timestamp] = None
    exit_time: Optional[pd.Timestamp] = None
    cycle_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'type': self.type.value,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'entry_index': self.entry_index,
            'exit_index': self.exit_index,
            'entry_time': self.entry_time,
            'exit_time': self.exit_time,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'fees': self.fees,
            'reason': self.reason.value,
            'balance_after': self.balance_after,
            'partial': self.partial,
            'fraction': self.fraction,
            'sl_price': self.sl_price,
            'tp1_price': self.tp1_price,
            'tp2_price': self.tp2_price,
            'max_drawdown_pct': self.max_drawdown_pct,
            'counter_trend': self.counter_trend,
            **self.cycle_metadata,
        }
