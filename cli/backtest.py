#!/usr/bin/env python3
"""
Walk-forward backtest CLI.

Replays a candle file bar by bar with the cycle detector and the position
state machine, then prints a summary and optionally writes trades, the
equity curve and a chart.
"""
import argparse
import sys
from pathlib import Path

from cycletrader.data.loader import load_candles
from cycletrader.evaluation.simulation import WalkForwardSimulator
from cycletrader.evaluation.trade_analysis import detection_lag, summarize_trades
from cycletrader.grid_test.reporter import GridReporter
from cycletrader.shared.types import Direction
from cycletrader.signals.config import BASELINE_CONFIG, PRESET_CONFIGS, StrategyConfig, get_preset
from cycletrader.signals.config_loader import load_config_from_yaml


def resolve_config(args) -> StrategyConfig:
    """Config from --config, else --preset, else the baseline; --min/--max-duration override."""
    if args.config:
        config = load_config_from_yaml(args.config)
    elif args.preset:
        config = get_preset(args.preset)
    else:
        config = BASELINE_CONFIG
    if args.min_duration is not None or args.max_duration is not None:
        config = config.with_durations(
            args.min_duration if args.min_duration is not None else config.detector.min_duration,
            args.max_duration if args.max_duration is not None else config.detector.max_duration,
        )
    return config


def print_summary(config: StrategyConfig, result, summary: dict) -> None:
    print("=" * 80)
    print(f"BACKTEST RESULTS - {config.name}")
    print("=" * 80)
    print(f"Durations:        {config.detector.min_duration}-{config.detector.max_duration} bars")
    print(f"Starting balance: {result.starting_balance:.2f}")
    print(f"Final balance:    {result.final_balance:.2f} ({result.pnl_percent:+.2f}%)")
    print(f"Positions:        {summary['positions']} ({summary['count']} closes incl. partials)")
    print(f"Win rate:         {summary['win_rate_pct']:.1f}%")
    print(f"Profit factor:    {summary['profit_factor']:.2f}")
    print(f"Fees:             {summary['total_fees']:.2f}")
    print(f"Max drawdown:     {summary['max_drawdown_pct']:.1f}%")
    print(
        f"Cycles (full series): {len(result.cycles.get(Direction.INVERTED, []))} inverted, "
        f"{len(result.cycles.get(Direction.NORMAL, []))} normal"
    )
    lags = detection_lag(result.trades)
    if lags:
        print(f"Avg end-selection lag: {sum(lags) / len(lags):.1f} bars")
    if result.open_position is not None:
        pos = result.open_position
        print(f"Open at end:      {pos.type.value} #{pos.trade_id} @ {pos.entry_price:.6g}")

    print("\nBy side:")
    for side, metrics in summary["by_side"].items():
        print(f"  {side:<6} closes={metrics['count']:<4} win={metrics['win_rate_pct']:5.1f}%  pnl={metrics['total_pnl']:+.2f}")
    print("\nBy exit reason:")
    for reason, metrics in summary["by_reason"].items():
        print(f"  {reason:<16} closes={metrics['count']:<4} pnl={metrics['total_pnl']:+.2f}")


def main():
    parser = argparse.ArgumentParser(
        description="Walk-forward backtest of the cycle strategy on a candle file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Baseline settings on downloaded candles
    python -m cli.backtest data/SUIUSDT_1h.csv

    # Preset with a custom duration range, writing trades and a chart
    python -m cli.backtest data/SUIUSDT_1h.csv --preset conservative --min-duration 15 --max-duration 40 --output-dir results/
        """
    )
    parser.add_argument("data", type=str, help="Candle file (.csv or .json)")
    parser.add_argument("--config", type=str, help="Load configuration from YAML file")
    parser.add_argument(
        "--preset", "-p",
        type=str,
        choices=list(PRESET_CONFIGS.keys()),
        help="Use a preset configuration",
    )
    parser.add_argument("--start-date", "-s", type=str, help="First candle time to include")
    parser.add_argument("--end-date", "-e", type=str, help="Last candle time to include")
    parser.add_argument("--min-duration", type=int, help="Override minimum cycle duration (bars)")
    parser.add_argument("--max-duration", type=int, help="Override maximum cycle duration (bars)")
    parser.add_argument(
        "--output-dir",
        type=str,
        help="Write trades.csv, equity.csv and equity_curve.png here",
    )
    args = parser.parse_args()

    try:
        config = resolve_config(args)
        candles = load_candles(args.data, args.start_date, args.end_date)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Loaded {len(candles)} candles from {args.data} ({candles.index[0]} -> {candles.index[-1]})")
    if len(candles) <= config.detector.max_duration:
        print(f"Error: need more than {config.detector.max_duration} candles", file=sys.stderr)
        return 1

    result = WalkForwardSimulator(config.detector, config.bot).simulate(candles)
    summary = summarize_trades(result.trades, result.equity_curve)
    print_summary(config, result, summary)

    if args.output_dir:
        reporter = GridReporter(args.output_dir)
        trades_path = reporter.save_trades_csv(result)
        equity_path = Path(args.output_dir) / "equity.csv"
        result.equity_frame().to_csv(equity_path)
        chart_path = reporter.plot_equity_curve(result, title=f"{config.name}: {result.pnl_percent:+.1f}%")
        print(f"\nSaved: {trades_path}, {equity_path}{', ' + chart_path if chart_path else ''}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
