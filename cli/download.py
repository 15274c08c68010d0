#!/usr/bin/env python3
"""
Data download CLI.

Downloads historical futures klines from Binance and stores them as a
candle file that the backtest and grid search CLIs can read.
"""
import argparse
import sys
from pathlib import Path

import pandas as pd

from cycletrader.broker.base import ExchangeError, interval_to_timedelta
from cycletrader.broker.binance_client import BinanceFuturesClient
from cycletrader.data.loader import save_candles
from cycletrader.shared.defaults import LIVE_INTERVAL, LIVE_SYMBOL


def drop_forming_candle(candles: pd.DataFrame, interval: str, now: pd.Timestamp) -> pd.DataFrame:
    """Drop the last candle if it has not closed yet at ``now``."""
    if candles.empty:
        return candles
    if candles.index[-1] + interval_to_timedelta(interval) > now:
        return candles.iloc[:-1]
    return candles


def main():
    parser = argparse.ArgumentParser(
        description="Download historical futures candles from Binance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # One year of hourly SUIUSDT candles to data/SUIUSDT_1h.csv
    python -m cli.download --symbol SUIUSDT --interval 1h --start 2024-01-01 --end 2025-01-01

    # Everything since a date, as JSON
    python -m cli.download --symbol BTCUSDT --interval 4h --start 2023-06-01 --output data/btc_4h.json
        """
    )
    parser.add_argument("--symbol", type=str, default=LIVE_SYMBOL, help=f"Futures symbol (default: {LIVE_SYMBOL})")
    parser.add_argument("--interval", type=str, default=LIVE_INTERVAL, help=f"Kline interval (default: {LIVE_INTERVAL})")
    parser.add_argument("--start", type=str, required=True, help="First open time (e.g. 2024-01-01)")
    parser.add_argument("--end", type=str, help="Last open time (default: now)")
    parser.add_argument(
        "--output", "-o",
        type=str,
        help="Output file, .csv or .json (default: data/<SYMBOL>_<interval>.csv)",
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Suppress progress output")
    args = parser.parse_args()

    try:
        interval_to_timedelta(args.interval)
        start = pd.Timestamp(args.start, tz="UTC")
        end = pd.Timestamp(args.end, tz="UTC") if args.end else None
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    output = Path(args.output) if args.output else Path("data") / f"{args.symbol}_{args.interval}.csv"

    if not args.quiet:
        print(f"Downloading {args.symbol} {args.interval} from {start} to {end or 'now'}...")

    client = BinanceFuturesClient()
    try:
        candles = client.get_historical_klines(args.symbol, args.interval, start, end)
    except ExchangeError as e:
        print(f"  ✗ {args.symbol}: {e}", file=sys.stderr)
        return 1

    candles = drop_forming_candle(candles, args.interval, pd.Timestamp.now(tz="UTC"))
    if candles.empty:
        print(f"  ✗ {args.symbol}: no closed candles in range", file=sys.stderr)
        return 1

    path = save_candles(candles, output)
    if not args.quiet:
        print(f"  ✓ {len(candles)} candles ({candles.index[0]} -> {candles.index[-1]}) saved to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
