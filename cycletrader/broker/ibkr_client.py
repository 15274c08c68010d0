"""
IBKR API client for connection management and order placement.

Uses ib_insync library to communicate with TWS/IB Gateway. Exposes the same
ExchangeClient surface as the Binance client so the live trader can run
against a crypto contract routed through Interactive Brokers.
"""
import logging
import math
from typing import Any, Dict, Optional

import pandas as pd
from ib_insync import IB, Crypto, MarketOrder, util

from ..data.loader import candles_from_records
from ..shared.defaults import QUANTITY_PRECISION
from ..shared.types import TradeType
from .base import (
    ExchangeClient,
    ExchangeError,
    ExchangePosition,
    OrderSide,
    floor_quantity,
    interval_to_timedelta,
)

logger = logging.getLogger(__name__)

_BAR_SIZES = {
    "1m": "1 min", "5m": "5 mins", "15m": "15 mins", "30m": "30 mins",
    "1h": "1 hour", "2h": "2 hours", "4h": "4 hours", "8h": "8 hours",
    "1d": "1 day", "1w": "1 week",
}

_QUOTE_SUFFIXES = ("USDT", "USD")


def ib_symbol(symbol: str) -> str:
    """Map an exchange pair such as "BTCUSDT" to the IB crypto symbol "BTC"."""
    for suffix in _QUOTE_SUFFIXES:
        if symbol.endswith(suffix) and len(symbol) > len(suffix):
            return symbol[:-len(suffix)]
    return symbol


def duration_str(interval: str, limit: int) -> str:
    """IB ``durationStr`` covering ``limit`` bars of ``interval``."""
    seconds = int(interval_to_timedelta(interval).total_seconds()) * limit
    if seconds <= 86400:
        return f"{seconds} S"
    return f"{math.ceil(seconds / 86400)} D"


class IBKRClient(ExchangeClient):
    """
    Client for Interactive Brokers API.

    Manages connection to TWS/IB Gateway and provides:
    - Historical bars for a crypto contract
    - Market orders and position queries
    - Account balance
    """

    def __init__(
        self,
        exchange: str = "PAXOS",
        currency: str = "USD",
        quantity_precision: int = QUANTITY_PRECISION,
        ib: Optional[IB] = None,
    ):
        """
        Initialize IBKR client (not connected).

        Args:
            exchange: Crypto venue routed by IB (default: PAXOS)
            currency: Quote currency
            quantity_precision: Decimal places order quantities are floored to
            ib: Optional IB instance (default: a new one)
        """
        self.ib = ib or IB()
        self.exchange = exchange
        self.currency = currency
        self.quantity_precision = quantity_precision
        self._connected = False
        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._client_id: Optional[int] = None

    def connect(
        self,
        host: str = "127.0.0.1",
        port: int = 7497,
        client_id: int = 1,
        timeout: int = 10
    ) -> bool:
        """
        Connect to TWS or IB Gateway.

        Args:
            host: TWS/Gateway host (default: 127.0.0.1)
            port: TWS/Gateway port (7497=paper, 7496=live for TWS; 4002=paper, 4001=live for Gateway)
            client_id: Unique client ID (1-32)
            timeout: Connection timeout in seconds

        Returns:
            True if connected successfully, False otherwise
        """
        try:
            self.ib.connect(host, port, clientId=client_id, timeout=timeout)
            self._connected = True
            self._host = host
            self._port = port
            self._client_id = client_id
            logger.info(f"Connected to IBKR at {host}:{port} (client_id={client_id})")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to IBKR: {e}")
            self._connected = False
            return False

    def disconnect(self):
        """Disconnect from TWS/IB Gateway."""
        if self._connected:
            self.ib.disconnect()
            self._connected = False
            logger.info("Disconnected from IBKR")

    def is_connected(self) -> bool:
        return self._connected and self.ib.isConnected()

    def reconnect(self) -> bool:
        """
        Attempt to reconnect using previous connection parameters.

        Returns:
            True if reconnected successfully, False otherwise
        """
        if not self._host or not self._port or not self._client_id:
            logger.error("Cannot reconnect: no previous connection parameters")
            return False

        logger.info("Attempting to reconnect to IBKR...")
        self.disconnect()
        return self.connect(self._host, self._port, self._client_id)

    def _require_connection(self) -> None:
        if not self.is_connected():
            raise ExchangeError("Not connected to IBKR")

    def _contract(self, symbol: str) -> Crypto:
        contract = Crypto(ib_symbol(symbol), self.exchange, self.currency)
        self.ib.qualifyContracts(contract)
        return contract

    def get_klines(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        self._require_connection()
        if interval not in _BAR_SIZES:
            raise ExchangeError(f"Interval '{interval}' has no IB bar size (supported: {sorted(_BAR_SIZES)})")
        try:
            bars = self.ib.reqHistoricalData(
                self._contract(symbol),
                endDateTime="",
                durationStr=duration_str(interval, limit),
                barSizeSetting=_BAR_SIZES[interval],
                whatToShow="AGGTRADES",
                useRTH=False,
                formatDate=2,
            )
        except Exception as e:
            raise ExchangeError(f"Historical data request for {symbol} failed: {e}") from e
        if not bars:
            raise ExchangeError(f"No historical bars returned for {symbol}")
        df = util.df(bars)
        records = df[["date", "open", "high", "low", "close", "volume"]].to_dict("records")
        return candles_from_records(records).tail(limit)

    def get_position(self, symbol: str) -> Optional[ExchangePosition]:
        self._require_connection()
        base = ib_symbol(symbol)
        for pos in self.ib.positions():
            if pos.contract.symbol != base or pos.position == 0:
                continue
            return ExchangePosition(
                symbol=symbol,
                side=TradeType.LONG if pos.position > 0 else TradeType.SHORT,
                size=abs(float(pos.position)),
                entry_price=float(pos.avgCost),
            )
        return None

    def _place_market(self, symbol: str, side: OrderSide, quantity: float) -> Dict[str, Any]:
        self._require_connection()
        qty = floor_quantity(quantity, self.quantity_precision)
        if qty <= 0:
            raise ExchangeError(f"Quantity {quantity} rounds down to 0 at precision {self.quantity_precision}")
        try:
            trade = self.ib.placeOrder(self._contract(symbol), MarketOrder(side.value, qty))
            self.ib.sleep(1)
        except Exception as e:
            raise ExchangeError(f"Failed to place {side.value} order for {symbol}: {e}") from e
        status = trade.orderStatus
        if status.status in ("Cancelled", "ApiCancelled", "Inactive"):
            raise ExchangeError(f"{side.value} order for {symbol} was rejected ({status.status})")
        logger.info(f"Placed {side.value} market order for {qty} {symbol} (order {trade.order.orderId})")
        return {
            "order_id": trade.order.orderId,
            "status": status.status,
            "filled": status.filled,
            "avg_fill_price": status.avgFillPrice,
        }

    def open_market_order(self, symbol: str, side: OrderSide, quantity: float) -> Dict[str, Any]:
        return self._place_market(symbol, OrderSide(side), quantity)

    def close_position(self, symbol: str, quantity: float, side: TradeType) -> Dict[str, Any]:
        return self._place_market(symbol, OrderSide.closing(side), quantity)

    def get_current_price(self, symbol: str) -> float:
        self._require_connection()
        contract = self._contract(symbol)
        ticker = self.ib.reqMktData(contract)
        try:
            self.ib.sleep(1)
            price = ticker.marketPrice()
        finally:
            self.ib.cancelMktData(contract)
        if price is None or math.isnan(price) or price <= 0:
            raise ExchangeError(f"No market price for {symbol}")
        return float(price)

    def get_balance(self) -> float:
        self._require_connection()
        for av in self.ib.accountValues():
            if av.tag == "AvailableFunds" and av.currency == self.currency:
                return float(av.value)
        raise ExchangeError(f"Account field 'AvailableFunds' ({self.currency}) not found")

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        # IB crypto accounts are cash accounts
        if leverage != 1:
            logger.warning(f"IBKR crypto trades unleveraged; ignoring leverage {leverage}x for {symbol}")
        return {"symbol": symbol, "leverage": 1}
