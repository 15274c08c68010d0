"""
Exchange integration module.

Provides the ExchangeClient interface and two implementations: Binance
futures over REST and Interactive Brokers via ib_insync.
"""
from .base import (
    ExchangeClient,
    ExchangeError,
    ExchangePosition,
    OrderSide,
    floor_quantity,
    interval_to_timedelta,
)
from .binance_client import BinanceFuturesClient
from .ibkr_client import IBKRClient

__all__ = [
    "ExchangeClient",
    "ExchangeError",
    "ExchangePosition",
    "OrderSide",
    "floor_quantity",
    "interval_to_timedelta",
    "BinanceFuturesClient",
    "IBKRClient",
]
