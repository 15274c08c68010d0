"""
Exchange interface used by the live trader.

Concrete clients (Binance futures over REST, Interactive Brokers over
ib_insync) implement ExchangeClient. Every failure surfaces as ExchangeError
so the trader has a single exception type to handle.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

import pandas as pd

from ..shared.types import TradeType


class ExchangeError(Exception):
    """Raised when an exchange call fails or returns an error payload."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def opening(cls, trade_type: TradeType) -> "OrderSide":
        """Side of the order that opens ``trade_type``."""
        return cls.BUY if trade_type is TradeType.LONG else cls.SELL

    @classmethod
    def closing(cls, trade_type: TradeType) -> "OrderSide":
        """Side of the order that closes ``trade_type``."""
        return cls.SELL if trade_type is TradeType.LONG else cls.BUY


@dataclass
class ExchangePosition:
    """Open position as reported by the exchange."""
    symbol: str
    side: TradeType
    size: float  # Absolute quantity in base units
    entry_price: float
    unrealized_pnl: float = 0.0
    leverage: int = 1


_INTERVAL_UNITS = {'m': 'minutes', 'h': 'hours', 'd': 'days', 'w': 'weeks'}


def interval_to_timedelta(interval: str) -> timedelta:
    """
    Convert a kline interval such as "15m", "1h" or "1d" to a timedelta.

    Raises:
        ValueError: If the interval is not recognised
    """
    unit = interval[-1:]
    amount = interval[:-1]
    if unit not in _INTERVAL_UNITS or not amount.isdigit() or int(amount) <= 0:
        raise ValueError(f"Unsupported interval '{interval}' (expected e.g. 15m, 1h, 4h, 1d)")
    return timedelta(**{_INTERVAL_UNITS[unit]: int(amount)})


def floor_quantity(quantity: float, precision: int) -> float:
    """Round ``quantity`` down to ``precision`` decimals (never up, so orders never exceed the budget)."""
    factor = 10 ** precision
    # the epsilon absorbs float noise such as 12.299999999 for 12.3
    return int(abs(quantity) * factor + 1e-9) / factor


class ExchangeClient(ABC):
    """Minimal futures exchange surface the live trader depends on."""

    @abstractmethod
    def get_klines(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        """Most recent candles, oldest first, as an OHLCV frame indexed by UTC time."""

    @abstractmethod
    def get_position(self, symbol: str) -> Optional[ExchangePosition]:
        """Open position for ``symbol``, or None when flat."""

    @abstractmethod
    def open_market_order(self, symbol: str, side: OrderSide, quantity: float) -> Dict[str, Any]:
        """Submit a market order; returns the exchange acknowledgement."""

    @abstractmethod
    def close_position(self, symbol: str, quantity: float, side: TradeType) -> Dict[str, Any]:
        """Reduce-only market order closing ``quantity`` of a ``side`` position."""

    @abstractmethod
    def get_current_price(self, symbol: str) -> float:
        """Last traded price."""

    @abstractmethod
    def get_balance(self) -> float:
        """Wallet balance in the quote currency."""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        """Set leverage for ``symbol``."""
