"""
Grid search over detection and risk parameters.

Every combination is simulated independently with its own detector and
position manager, so combinations can run in parallel worker processes.
A combination that raises is logged and skipped; the sweep continues.
"""
import itertools
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..evaluation.simulation import WalkForwardSimulator
from ..evaluation.trade_analysis import max_drawdown_pct
from ..shared.defaults import (
    GRID_MIN_RANGE, GRID_MAX_RANGE, GRID_STEP, GRID_MIN_GAP,
    MIN_TRADES_FOR_RANKING,
)
from ..shared.types import CandleArrays
from ..signals.config import BotConfig, DetectorConfig
from ..signals.cycle_detector import CandleInput, as_candle_arrays

logger = logging.getLogger(__name__)

DETECTOR_PARAMS = frozenset(f.name for f in fields(DetectorConfig))
BOT_PARAMS = frozenset(f.name for f in fields(BotConfig))


@dataclass
class GridResult:
    """Outcome of one parameter combination."""
    params: Dict[str, Any]
    pnl: float
    pnl_percent: float
    trades: int  # Closes, partial closes included
    positions: int  # Distinct positions opened and (at least partly) closed
    win_rate: float
    final_balance: float
    max_drawdown_pct: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.params,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'trades': self.trades,
            'positions': self.positions,
            'win_rate': self.win_rate,
            'final_balance': self.final_balance,
            'max_drawdown_pct': self.max_drawdown_pct,
        }


def generate_duration_grid(
    min_range: int = GRID_MIN_RANGE,
    max_range: int = GRID_MAX_RANGE,
    step: int = GRID_STEP,
    min_gap: int = GRID_MIN_GAP,
) -> List[Dict[str, int]]:
    """
    (min_duration, max_duration) combinations with ``max > min + min_gap``.

    Returns:
        List of {"min_duration": ..., "max_duration": ...} dicts
    """
    if step < 1:
        raise ValueError(f"step must be >= 1, got {step}")
    combos = []
    for min_duration in range(min_range, max_range + 1, step):
        for max_duration in range(min_duration, max_range + 1, step):
            if max_duration <= min_duration + min_gap:
                continue
            combos.append({'min_duration': min_duration, 'max_duration': max_duration})
    return combos


def expand_parameter_grid(grid: Dict[str, Sequence[Any]]) -> List[Dict[str, Any]]:
    """
    Cartesian product of ``{param_name: [values]}``.

    Raises:
        ValueError: If a name is not a DetectorConfig or BotConfig field, or a value list is empty
    """
    unknown = sorted(set(grid) - DETECTOR_PARAMS - BOT_PARAMS)
    if unknown:
        raise ValueError(f"Unknown grid parameters: {unknown}")
    empty = sorted(name for name, values in grid.items() if len(values) == 0)
    if empty:
        raise ValueError(f"Grid parameters without values: {empty}")
    names = list(grid)
    return [dict(zip(names, values)) for values in itertools.product(*(grid[n] for n in names))]


def apply_params(
    params: Dict[str, Any],
    detector_config: DetectorConfig,
    bot_config: BotConfig,
) -> Tuple[DetectorConfig, BotConfig]:
    """Copy both configs with ``params`` applied (validation re-runs on the copies)."""
    det_params = {k: v for k, v in params.items() if k in DETECTOR_PARAMS}
    bot_params = {k: v for k, v in params.items() if k in BOT_PARAMS}
    return replace(detector_config, **det_params), replace(bot_config, **bot_params)


def evaluate_combination(
    candles: CandleInput,
    params: Dict[str, Any],
    detector_config: Optional[DetectorConfig] = None,
    bot_config: Optional[BotConfig] = None,
) -> Optional[GridResult]:
    """
    Simulate one combination.

    Returns:
        GridResult, or None when the combination failed (invalid parameters or a
        simulation error). Failures are logged, never raised.
    """
    try:
        det, bot = apply_params(params, detector_config or DetectorConfig(), bot_config or BotConfig())
        result = WalkForwardSimulator(det, bot).simulate(candles)
    except Exception as e:
        logger.warning(f"Grid combination {params} failed: {e}")
        return None

    stats = result.stats
    return GridResult(
        params=dict(params),
        pnl=result.pnl,
        pnl_percent=result.pnl_percent,
        trades=len(result.trades),
        positions=len({t.trade_id for t in result.trades}),
        win_rate=stats.get('win_rate', 0.0),
        final_balance=result.final_balance,
        max_drawdown_pct=max_drawdown_pct(result.equity_curve),
    )


def _evaluate_combination_worker(args) -> Optional[GridResult]:
    """
    Worker function for parallel grid evaluation.

    This is a module-level function so it can be pickled for ProcessPoolExecutor.
    """
    candles, params, detector_config, bot_config = args
    return evaluate_combination(candles, params, detector_config, bot_config)


def run_grid_search(
    candles: CandleInput,
    grid: Optional[Dict[str, Sequence[Any]]] = None,
    detector_config: Optional[DetectorConfig] = None,
    bot_config: Optional[BotConfig] = None,
    max_workers: int = 1,
    min_trades: int = MIN_TRADES_FOR_RANKING,
    combinations: Optional[List[Dict[str, Any]]] = None,
    verbose: bool = False,
) -> List[GridResult]:
    """
    Evaluate every combination and rank the viable ones.

    Args:
        candles: Candle series shared by all combinations
        grid: {param: [values]} over DetectorConfig/BotConfig fields
            (default: the duration grid)
        detector_config: Base detection settings
        bot_config: Base risk settings
        max_workers: Worker processes (1 = run in this process)
        min_trades: Combinations with fewer closes are not ranked
        combinations: Explicit list of param dicts (overrides ``grid``)
        verbose: Print one progress line per combination

    Returns:
        Viable results ranked by PnL, best first

    Raises:
        ValueError: If the grid names unknown parameters
    """
    if combinations is None:
        combinations = expand_parameter_grid(grid) if grid else generate_duration_grid()
    else:
        for params in combinations:
            expand_parameter_grid({k: [v] for k, v in params.items()})

    arrays: CandleArrays = as_candle_arrays(candles)
    det = detector_config or DetectorConfig()
    bot = bot_config or BotConfig()
    total = len(combinations)
    raw: List[Optional[GridResult]] = []

    if max_workers > 1 and total > 1:
        job_args = [(arrays, params, det, bot) for params in combinations]
        with ProcessPoolExecutor(max_workers=max_workers) as executor:
            futures = {
                executor.submit(_evaluate_combination_worker, args): args[1]
                for args in job_args
            }
            completed = 0
            for future in as_completed(futures):
                params = futures[future]
                completed += 1
                try:
                    result = future.result()
                except Exception as e:
                    logger.warning(f"Grid worker for {params} failed: {e}")
                    result = None
                raw.append(result)
                if verbose:
                    _print_progress(completed, total, params, result)
    else:
        for k, params in enumerate(combinations, start=1):
            result = evaluate_combination(arrays, params, det, bot)
            raw.append(result)
            if verbose:
                _print_progress(k, total, params, result)

    viable = [r for r in raw if r is not None and r.trades >= min_trades]
    skipped = sum(1 for r in raw if r is None)
    if skipped:
        logger.info(f"Grid search skipped {skipped}/{total} failed combinations")
    viable.sort(key=lambda r: r.pnl, reverse=True)
    return viable


def _print_progress(completed: int, total: int, params: Dict[str, Any], result: Optional[GridResult]) -> None:
    label = ", ".join(f"{k}={v}" for k, v in params.items())
    if result is None:
        print(f"  [{completed}/{total}] {label}: FAILED", flush=True)
    else:
        print(
            f"  [{completed}/{total}] {label}: "
            f"Trades={result.trades}, Win={result.win_rate:.1f}%, PnL={result.pnl_percent:+.1f}%",
            flush=True,
        )


def best_duration_range(
    candles: CandleInput,
    detector_config: Optional[DetectorConfig] = None,
    bot_config: Optional[BotConfig] = None,
    min_range: int = GRID_MIN_RANGE,
    max_range: int = GRID_MAX_RANGE,
    step: int = GRID_STEP,
    min_gap: int = GRID_MIN_GAP,
    min_trades: int = MIN_TRADES_FOR_RANKING,
    max_workers: int = 1,
) -> Optional[GridResult]:
    """Best (min_duration, max_duration) over the duration grid, or None when nothing is viable."""
    results = run_grid_search(
        candles,
        detector_config=detector_config,
        bot_config=bot_config,
        max_workers=max_workers,
        min_trades=min_trades,
        combinations=generate_duration_grid(min_range, max_range, step, min_gap),
    )
    return results[0] if results else None
