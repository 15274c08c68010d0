#!/usr/bin/env python3
"""
Grid search CLI.

Sweeps cycle duration ranges (and optionally other detector/bot parameters)
over one candle file, ranks the viable combinations by PnL and writes a CSV
plus a duration heatmap.
"""
import argparse
import multiprocessing
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

import yaml

from cycletrader.data.loader import load_candles
from cycletrader.evaluation.simulation import WalkForwardSimulator
from cycletrader.grid_test.grid_search import expand_parameter_grid, generate_duration_grid, run_grid_search
from cycletrader.grid_test.reporter import GridReporter
from cycletrader.shared.defaults import GRID_MAX_RANGE, GRID_MIN_GAP, GRID_MIN_RANGE, GRID_STEP, MIN_TRADES_FOR_RANKING
from cycletrader.signals.config import BASELINE_CONFIG, PRESET_CONFIGS, get_preset
from cycletrader.signals.config_loader import load_config_from_yaml


def load_extra_grid(path: str) -> Dict[str, List[Any]]:
    """Read ``{param: [values]}`` from a YAML file (e.g. leverage: [10, 20])."""
    with open(path, 'r') as f:
        grid = yaml.safe_load(f) or {}
    if not isinstance(grid, dict):
        raise ValueError(f"Grid file must contain a mapping of parameter -> values: {path}")
    return {name: values if isinstance(values, list) else [values] for name, values in grid.items()}


def build_combinations(args) -> List[Dict[str, Any]]:
    durations = generate_duration_grid(args.min_range, args.max_range, args.step, args.min_gap)
    if not args.grid:
        return durations
    extra = expand_parameter_grid(load_extra_grid(args.grid))
    return [{**d, **e} for d in durations for e in extra]


def main():
    parser = argparse.ArgumentParser(
        description="Grid search over cycle duration ranges and strategy parameters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Default duration grid (5..55 step 2) on downloaded candles
    python -m cli.grid_search data/SUIUSDT_1h.csv

    # Narrow grid, 8 workers, plus a leverage sweep from a YAML file
    python -m cli.grid_search data/SUIUSDT_1h.csv --min-range 9 --max-range 41 --workers 8 --grid grids/leverage.yaml
        """
    )
    parser.add_argument("data", type=str, help="Candle file (.csv or .json)")
    parser.add_argument("--config", type=str, help="Base configuration YAML (default: baseline)")
    parser.add_argument(
        "--preset", "-p",
        type=str,
        choices=list(PRESET_CONFIGS.keys()),
        help="Base preset configuration",
    )
    parser.add_argument("--start-date", "-s", type=str, help="First candle time to include")
    parser.add_argument("--end-date", "-e", type=str, help="Last candle time to include")
    parser.add_argument("--min-range", type=int, default=GRID_MIN_RANGE, help=f"Smallest duration (default: {GRID_MIN_RANGE})")
    parser.add_argument("--max-range", type=int, default=GRID_MAX_RANGE, help=f"Largest duration (default: {GRID_MAX_RANGE})")
    parser.add_argument("--step", type=int, default=GRID_STEP, help=f"Grid step (default: {GRID_STEP})")
    parser.add_argument("--min-gap", type=int, default=GRID_MIN_GAP, help=f"Required max-min gap (default: {GRID_MIN_GAP})")
    parser.add_argument(
        "--min-trades",
        type=int,
        default=MIN_TRADES_FOR_RANKING,
        help=f"Combinations with fewer closes are not ranked (default: {MIN_TRADES_FOR_RANKING})",
    )
    parser.add_argument("--grid", type=str, help="YAML file with extra {param: [values]} to cross with the durations")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of parallel workers (default: auto = CPU count, or 1 if 1 CPU)",
    )
    parser.add_argument("--top", type=int, default=10, help="Rows to print (default: 10)")
    parser.add_argument(
        "--output-dir",
        type=str,
        help="Output directory for results (default: results/grid_<timestamp>)",
    )
    args = parser.parse_args()

    print("=" * 80)
    print("GRID SEARCH - CYCLE DURATION RANGES")
    print("=" * 80)

    try:
        if args.config:
            base = load_config_from_yaml(args.config)
        elif args.preset:
            base = get_preset(args.preset)
        else:
            base = BASELINE_CONFIG
        candles = load_candles(args.data, args.start_date, args.end_date)
        combinations = build_combinations(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not combinations:
        print("Error: the grid is empty (check --min-range/--max-range/--min-gap)", file=sys.stderr)
        return 1

    _cpus = multiprocessing.cpu_count()
    workers = args.workers if args.workers is not None else max(1, _cpus if _cpus and _cpus > 0 else 1)

    print(f"Base config: {base.name}")
    print(f"Candles:     {len(candles)} ({candles.index[0]} -> {candles.index[-1]})")
    print(f"Testing {len(combinations)} combinations with {workers} worker(s)...")
    print()

    t0 = time.perf_counter()
    results = run_grid_search(
        candles,
        detector_config=base.detector,
        bot_config=base.bot,
        max_workers=workers,
        min_trades=args.min_trades,
        combinations=combinations,
        verbose=True,
    )
    elapsed = time.perf_counter() - t0
    print(f"\nGrid search complete in {elapsed:.1f}s: {len(results)}/{len(combinations)} viable")

    output_dir = Path(args.output_dir) if args.output_dir else Path("results") / f"grid_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    reporter = GridReporter(str(output_dir))
    reporter.print_summary(results, top_n=args.top)

    csv_path = reporter.save_results_csv(results, "grid_results.csv")
    heatmap_path = reporter.plot_duration_heatmap(results)
    print(f"\nSaved: {csv_path}")
    if heatmap_path:
        print(f"Saved: {heatmap_path}")

    if results:
        best = results[0]
        best_config = base.with_durations(best.params['min_duration'], best.params['max_duration'])
        best_result = WalkForwardSimulator(best_config.detector, best_config.bot).simulate(candles)
        chart_path = reporter.plot_equity_curve(best_result, "best_equity_curve.png", title=f"Best: {best_config.name}")
        if chart_path:
            print(f"Saved: {chart_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
