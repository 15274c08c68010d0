#!/usr/bin/env python3
"""
Automated cycle trading service.

Long-running service that:
1. Waits for the next polling tick
2. Fetches the latest closed candles from the exchange
3. Detects cycles and manages the open position (SL/TP/trailing/cycle exits)
4. Opens positions on fresh cycle signals via market orders
5. Periodically re-optimizes the cycle duration range

Usage:
    python -m cli.auto_trade [--config CONFIG] [--exchange binance|ibkr] [--dry-run]
"""
import argparse
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import yaml

from cycletrader.automation.scheduler import PollingScheduler
from cycletrader.automation.trader import LiveCycleTrader
from cycletrader.broker.base import ExchangeClient
from cycletrader.broker.binance_client import BinanceFuturesClient
from cycletrader.broker.ibkr_client import IBKRClient
from cycletrader.signals.config_loader import load_config_from_yaml


# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals (SIGTERM, SIGINT)."""
    global shutdown_requested
    logger = logging.getLogger(__name__)
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


def setup_logging(log_path: Optional[Path] = None, verbose: bool = False):
    """
    Setup logging to stdout and optionally to file.

    Args:
        log_path: Path to log file (None = stdout only)
        verbose: If True, use DEBUG level, otherwise INFO
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def load_automation_section(config_path: Path) -> dict:
    """Load the ``automation`` section of the config YAML (empty if absent)."""
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    return data.get('automation', {}) or {}


def create_client(exchange: str, automation: dict, testnet: bool, quantity_precision: int, dry_run: bool) -> Optional[ExchangeClient]:
    """
    Build the exchange client named by ``exchange``.

    Returns:
        Connected client, or None if the IBKR connection failed
    """
    logger = logging.getLogger(__name__)
    if exchange == "binance":
        return BinanceFuturesClient(testnet=testnet, quantity_precision=quantity_precision)

    ibkr = automation.get('ibkr', {}) or {}
    client = IBKRClient(
        exchange=ibkr.get('exchange', 'PAXOS'),
        currency=ibkr.get('currency', 'USD'),
        quantity_precision=quantity_precision,
    )
    connected = client.connect(
        host=ibkr.get('host', '127.0.0.1'),
        port=ibkr.get('port', 7497),
        client_id=ibkr.get('client_id', 1),
        timeout=ibkr.get('connection_timeout', 10),
    )
    if not connected:
        logger.error("Failed to connect to IBKR")
        return None
    if dry_run:
        logger.info("DRY RUN: IBKR connected for market data only")
    return client


def main():
    """Main service loop."""
    parser = argparse.ArgumentParser(description="Automated cycle trading service")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/live.yaml",
        help="Path to strategy/live config file (default: configs/live.yaml)"
    )
    parser.add_argument(
        "--exchange",
        type=str,
        choices=["binance", "ibkr"],
        help="Exchange to trade on (default: automation.exchange from the config, else binance)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch data and decide, but log orders instead of sending them"
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        help="Stop after this many polling ticks (default: run until SIGINT/SIGTERM)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)"
    )
    args = parser.parse_args()

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}", file=sys.stderr)
        return 1

    try:
        config = load_config_from_yaml(str(config_path))
        automation = load_automation_section(config_path)
    except (ValueError, yaml.YAMLError) as e:
        print(f"Error: Invalid config {config_path}: {e}", file=sys.stderr)
        return 1

    if args.dry_run:
        config = replace(config, live=replace(config.live, dry_run=True))
    exchange = args.exchange or automation.get('exchange', 'binance')

    log_path = Path(automation['log_path']) if automation.get('log_path') else None
    setup_logging(log_path, args.verbose)
    logger = logging.getLogger(__name__)

    logger.info("=" * 80)
    logger.info("Cycle Trading Service Starting")
    logger.info("=" * 80)
    logger.info(f"Config: {config_path} ({config.name})")
    logger.info(f"Exchange: {exchange}{' (testnet)' if exchange == 'binance' and config.live.testnet else ''}")
    logger.info(f"Symbol: {config.live.symbol} {config.live.interval}")
    logger.info(f"Durations: {config.detector.min_duration}-{config.detector.max_duration} bars")
    logger.info(f"Dry run: {config.live.dry_run}")

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    client = None
    try:
        logger.info(f"Initializing {exchange} client...")
        client = create_client(
            exchange,
            automation,
            testnet=config.live.testnet,
            quantity_precision=config.live.quantity_precision,
            dry_run=config.live.dry_run,
        )
        if client is None:
            return 1

        scheduler = PollingScheduler(
            interval=config.live.interval,
            loop_interval_seconds=config.live.loop_interval_seconds,
            optimize_interval_hours=config.live.optimize_interval_hours,
        )
        trader = LiveCycleTrader(client, config, scheduler=scheduler)
        logger.info("All components initialized successfully")

    except Exception as e:
        logger.exception(f"Failed to initialize components: {e}")
        return 1

    logger.info("Entering main service loop...")
    try:
        trader.run(should_stop=lambda: shutdown_requested, max_ticks=args.max_ticks)
    except Exception as e:
        logger.exception(f"Fatal error in main loop: {e}")
        return 1
    finally:
        logger.info("Shutting down...")
        if isinstance(client, IBKRClient) and client.is_connected():
            client.disconnect()
        logger.info("Service stopped")

    return 0


if __name__ == "__main__":
    sys.exit(main())
