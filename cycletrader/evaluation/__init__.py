"""
Evaluation module.

Provides:
- PositionManager: the position state machine shared by backtests and live trading
- WalkForwardSimulator: bar-by-bar replay without lookahead
- Trade analysis helpers (by side, by exit reason, drawdown)
"""
from .position import PositionManager, average_amplitude_pct
from .position_types import Position, Trade
from .simulation import WalkForwardSimulator, simulate
from .simulation_types import EquityPoint, PendingSignal, SimulationResult, SimulationState
from .trade_analysis import (
    aggregate_trades_by_reason,
    aggregate_trades_by_side,
    detection_lag,
    max_drawdown_pct,
    summarize_trades,
)

__all__ = [
    'PositionManager',
    'average_amplitude_pct',
    'Position',
    'Trade',
    'WalkForwardSimulator',
    'simulate',
    'EquityPoint',
    'PendingSignal',
    'SimulationResult',
    'SimulationState',
    'aggregate_trades_by_reason',
    'aggregate_trades_by_side',
    'detection_lag',
    'max_drawdown_pct',
    'summarize_trades',
]
