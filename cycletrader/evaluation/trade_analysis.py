"""
Trade analysis helpers: aggregate closes by side and by exit reason, equity drawdown.
"""
from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ..shared.types import ExitReason, TradeType
from .position_types import Trade
from .simulation_types import EquityPoint


def _metrics_for_trades(trades: Sequence[Trade]) -> Dict[str, Any]:
    n = len(trades)
    if n == 0:
        return {
            "count": 0,
            "wins": 0,
            "losses": 0,
            "win_rate_pct": 0.0,
            "total_pnl": 0.0,
            "total_fees": 0.0,
            "avg_pnl": 0.0,
            "avg_pnl_pct": 0.0,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "profit_factor": 0.0,
        }
    pnls = [t.pnl for t in trades]
    winners = [p for p in pnls if p > 0]
    losers = [p for p in pnls if p <= 0]
    gross_loss = -sum(losers)
    if gross_loss > 0:
        profit_factor = sum(winners) / gross_loss
    else:
        profit_factor = float("inf") if winners else 0.0
    return {
        "count": n,
        "wins": len(winners),
        "losses": len(losers),
        "win_rate_pct": len(winners) / n * 100,
        "total_pnl": sum(pnls),
        "total_fees": sum(t.fees for t in trades),
        "avg_pnl": sum(pnls) / n,
        "avg_pnl_pct": sum(t.pnl_percent for t in trades) / n,
        "avg_win": sum(winners) / len(winners) if winners else 0.0,
        "avg_loss": sum(losers) / len(losers) if losers else 0.0,
        "profit_factor": profit_factor,
    }


def aggregate_trades_by_side(trades: Sequence[Trade]) -> Dict[str, Dict[str, Any]]:
    """Metrics per side, keyed "LONG" and "SHORT". Partial closes count as separate closes."""
    return {
        side.value: _metrics_for_trades([t for t in trades if t.type is side])
        for side in TradeType
    }


def aggregate_trades_by_reason(trades: Sequence[Trade]) -> Dict[str, Dict[str, Any]]:
    """Metrics per exit reason (only reasons that occurred)."""
    out: Dict[str, Dict[str, Any]] = {}
    for reason in ExitReason:
        subset = [t for t in trades if t.reason is reason]
        if subset:
            out[reason.value] = _metrics_for_trades(subset)
    return out


def max_drawdown_pct(equity_curve: Sequence[EquityPoint]) -> float:
    """Largest peak-to-trough drop of the equity curve, in percent (0.0 for a flat or rising curve)."""
    peak = None
    worst = 0.0
    for point in equity_curve:
        value = point.equity
        if peak is None or value > peak:
            peak = value
        if peak and peak > 0:
            worst = max(worst, (peak - value) / peak * 100)
    return worst


def detection_lag(trades: Sequence[Trade]) -> List[int]:
    """Bars between the first valid end of the originating cycle and its chosen end, one per position."""
    lags = []
    seen = set()
    for t in trades:
        meta = t.cycle_metadata
        if t.trade_id in seen or 'cycle_end_index' not in meta:
            continue
        seen.add(t.trade_id)
        lags.append(meta['cycle_end_index'] - meta['cycle_first_close_index'])
    return lags


def summarize_trades(trades: Sequence[Trade], equity_curve: Sequence[EquityPoint] = ()) -> Dict[str, Any]:
    """
    One-stop summary used by the backtest and grid-search CLIs.

    Returns a dict with overall metrics plus "by_side", "by_reason",
    "positions" (distinct trade ids) and "max_drawdown_pct".
    """
    summary = _metrics_for_trades(trades)
    summary["positions"] = len({t.trade_id for t in trades})
    summary["by_side"] = aggregate_trades_by_side(trades)
    summary["by_reason"] = aggregate_trades_by_reason(trades)
    summary["max_drawdown_pct"] = max_drawdown_pct(equity_curve)
    return summary
