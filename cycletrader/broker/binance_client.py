"""
Binance USDⓈ-M futures client over the REST API.

Market data always comes from the production endpoint (the testnet has
little history); signed account and order calls go to production or the
testnet depending on ``testnet``.

Retry policy:
- reads (klines, price, balance, position) retry transport failures,
  429 and 5xx responses with exponential back-off
- orders retry only when the connection was never established
  (ConnectTimeout); any failure after the request may have reached the
  exchange is raised immediately so an order is never sent twice
"""
import hashlib
import hmac
import logging
import os
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import pandas as pd
import requests

from ..data.loader import candles_from_klines
from ..shared.defaults import MAX_REQUEST_RETRIES, QUANTITY_PRECISION, RECV_WINDOW_MS, REQUEST_TIMEOUT_SECONDS
from ..shared.types import TradeType
from .base import ExchangeClient, ExchangeError, ExchangePosition, OrderSide, floor_quantity

logger = logging.getLogger(__name__)

DATA_URL = "https://fapi.binance.com"
TESTNET_URL = "https://testnet.binancefuture.com"
QUOTE_ASSET = "USDT"


class BinanceFuturesClient(ExchangeClient):
    """
    Client for the Binance futures REST API.

    Credentials default to the BINANCE_API_KEY / BINANCE_API_SECRET
    environment variables. Public market data works without them.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        testnet: bool = False,
        quantity_precision: int = QUANTITY_PRECISION,
        recv_window: int = RECV_WINDOW_MS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        max_retries: int = MAX_REQUEST_RETRIES,
        backoff_factor: float = 2.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: API key (default: $BINANCE_API_KEY)
            api_secret: API secret (default: $BINANCE_API_SECRET)
            testnet: Send signed calls to the futures testnet
            quantity_precision: Decimal places order quantities are floored to
            recv_window: Signed request validity window in ms
            timeout: Per-request timeout in seconds
            max_retries: Attempts per call (including the first)
            backoff_factor: Sleep ``backoff_factor ** attempt`` seconds between attempts
            session: Optional requests.Session (default: a new one)
        """
        self.api_key = api_key or os.getenv("BINANCE_API_KEY")
        self.api_secret = api_secret or os.getenv("BINANCE_API_SECRET")
        self.testnet = testnet
        self.data_url = DATA_URL
        self.trade_url = TESTNET_URL if testnet else DATA_URL
        self.quantity_precision = quantity_precision
        self.recv_window = recv_window
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor
        self.session = session or requests.Session()

    # Request plumbing ------------------------------------------------

    def _sign(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key or not self.api_secret:
            raise ExchangeError("Binance API credentials missing (set BINANCE_API_KEY and BINANCE_API_SECRET)")
        signed = dict(params)
        signed["timestamp"] = int(time.time() * 1000)
        signed["recvWindow"] = self.recv_window
        signed["signature"] = hmac.new(
            self.api_secret.encode("utf-8"),
            urlencode(signed).encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return signed

    @staticmethod
    def _parse(response: requests.Response) -> Any:
        try:
            data = response.json()
        except ValueError:
            raise ExchangeError(f"Non-JSON response (HTTP {response.status_code}): {response.text[:200]}")
        if isinstance(data, dict) and isinstance(data.get("code"), int) and data["code"] < 0:
            raise ExchangeError(f"Binance API error: {data.get('msg')} (code: {data['code']})", code=data["code"])
        if response.status_code >= 400:
            raise ExchangeError(f"HTTP {response.status_code}: {data}")
        return data

    def _request(
        self,
        method: str,
        base_url: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = False,
        is_order: bool = False,
    ) -> Any:
        url = f"{base_url}{path}"
        params = params or {}
        attempt = 0
        while True:
            attempt += 1
            # timestamp and signature are refreshed per attempt
            query = self._sign(params) if signed else params
            headers = {"X-MBX-APIKEY": self.api_key} if signed else None
            try:
                response = self.session.request(method, url, params=query, headers=headers, timeout=self.timeout)
            except requests.exceptions.ConnectTimeout as e:
                failure = f"connect timeout: {e}"
            except requests.exceptions.RequestException as e:
                if is_order:
                    raise ExchangeError(f"{method} {path} failed after the request was sent: {e}") from e
                failure = f"{type(e).__name__}: {e}"
            else:
                retryable = response.status_code == 429 or response.status_code >= 500
                if not retryable or is_order:
                    return self._parse(response)
                failure = f"HTTP {response.status_code}"

            if attempt >= self.max_retries:
                raise ExchangeError(f"{method} {path} failed after {attempt} attempts ({failure})")
            wait = self.backoff_factor ** attempt
            logger.warning(f"{method} {path} {failure}; retrying in {wait:.1f}s (attempt {attempt}/{self.max_retries})")
            time.sleep(wait)

    # Market data -----------------------------------------------------

    def get_klines(self, symbol: str, interval: str, limit: int) -> pd.DataFrame:
        data = self._request(
            "GET", self.data_url, "/fapi/v1/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit},
        )
        if not isinstance(data, list) or not data:
            raise ExchangeError(f"Unexpected klines payload: {str(data)[:200]}")
        return candles_from_klines(data)

    def get_historical_klines(
        self,
        symbol: str,
        interval: str,
        start: pd.Timestamp,
        end: Optional[pd.Timestamp] = None,
        batch_size: int = 1500,
    ) -> pd.DataFrame:
        """
        Page through klines from ``start`` to ``end`` (default: now).

        Returns:
            OHLCV frame indexed by UTC open time, including the still-forming candle
            when ``end`` is in the future
        """
        start_ms = int(pd.Timestamp(start).timestamp() * 1000)
        end_ms = int(pd.Timestamp(end).timestamp() * 1000) if end is not None else None
        rows: List[list] = []
        while True:
            params: Dict[str, Any] = {"symbol": symbol, "interval": interval, "limit": batch_size, "startTime": start_ms}
            if end_ms is not None:
                params["endTime"] = end_ms
            batch = self._request("GET", self.data_url, "/fapi/v1/klines", params=params)
            if not isinstance(batch, list):
                raise ExchangeError(f"Unexpected klines payload: {str(batch)[:200]}")
            if not batch:
                break
            rows.extend(batch)
            logger.debug(f"Fetched {len(batch)} {symbol} klines from {pd.Timestamp(batch[0][0], unit='ms', tz='UTC')}")
            if len(batch) < batch_size:
                break
            start_ms = int(batch[-1][0]) + 1
        if not rows:
            raise ExchangeError(f"No {symbol} klines between {start} and {end or 'now'}")
        return candles_from_klines(rows)

    def get_current_price(self, symbol: str) -> float:
        data = self._request("GET", self.data_url, "/fapi/v1/ticker/price", params={"symbol": symbol})
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExchangeError(f"Unexpected ticker payload: {data}") from e

    # Account ---------------------------------------------------------

    def get_balance(self) -> float:
        data = self._request("GET", self.trade_url, "/fapi/v2/balance", signed=True)
        for entry in data:
            if entry.get("asset") == QUOTE_ASSET:
                return float(entry["balance"])
        return 0.0

    def get_position(self, symbol: str) -> Optional[ExchangePosition]:
        data = self._request("GET", self.trade_url, "/fapi/v2/positionRisk", params={"symbol": symbol}, signed=True)
        for entry in data:
            if entry.get("symbol") != symbol:
                continue
            amount = float(entry.get("positionAmt", 0.0))
            if amount == 0:
                return None
            return ExchangePosition(
                symbol=symbol,
                side=TradeType.LONG if amount > 0 else TradeType.SHORT,
                size=abs(amount),
                entry_price=float(entry.get("entryPrice", 0.0)),
                unrealized_pnl=float(entry.get("unRealizedProfit", 0.0)),
                leverage=int(float(entry.get("leverage", 1))),
            )
        return None

    def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        logger.info(f"Setting {symbol} leverage to {leverage}x")
        return self._request(
            "POST", self.trade_url, "/fapi/v1/leverage",
            params={"symbol": symbol, "leverage": leverage}, signed=True,
        )

    # Orders ----------------------------------------------------------

    def _format_quantity(self, quantity: float) -> str:
        rounded = floor_quantity(quantity, self.quantity_precision)
        if rounded <= 0:
            raise ExchangeError(f"Quantity {quantity} rounds down to 0 at precision {self.quantity_precision}")
        return f"{rounded:.{self.quantity_precision}f}"

    def open_market_order(self, symbol: str, side: OrderSide, quantity: float) -> Dict[str, Any]:
        qty = self._format_quantity(quantity)
        side = OrderSide(side)
        logger.info(f"Opening {side.value} market order: {qty} {symbol}")
        return self._request(
            "POST", self.trade_url, "/fapi/v1/order",
            params={"symbol": symbol, "side": side.value, "type": "MARKET", "quantity": qty},
            signed=True, is_order=True,
        )

    def close_position(self, symbol: str, quantity: float, side: TradeType) -> Dict[str, Any]:
        qty = self._format_quantity(quantity)
        close_side = OrderSide.closing(side)
        logger.info(f"Closing {side.value} position: {close_side.value} {qty} {symbol} (reduce-only)")
        return self._request(
            "POST", self.trade_url, "/fapi/v1/order",
            params={
                "symbol": symbol,
                "side": close_side.value,
                "type": "MARKET",
                "quantity": qty,
                "reduceOnly": "true",
            },
            signed=True, is_order=True,
        )
