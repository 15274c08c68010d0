"""
Command-line entry points for the cycle trader.

Provides command-line interfaces for:
- Data download (Binance futures klines)
- Walk-forward backtests
- Duration-range grid search
- Live automated trading
"""
