"""Venue adapter backed by ccxt's unified API."""

import asyncio
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, Optional

import ccxt.pro as ccxt
from loguru import logger

from ..config import ExchangeAccount
from ..utils import now_seconds, to_decimal
from .base import Balance, BaseExchange, OrderBook, OrderResult, TradingPair

# ccxt order statuses after which nothing more can fill
_DEAD_ORDER_STATUSES = ("canceled", "rejected", "expired")


class CcxtExchange(BaseExchange):
    """Spot exchange reached through a ccxt.pro client.

    ccxt uses unified ``BASE/QUOTE`` symbols, so no venue-specific symbol
    formatting is needed here.
    """

    def __init__(self, name: str, account: Optional[ExchangeAccount] = None,
                 client: Any = None, reconnect_delay_s: float = 5.0):
        super().__init__(name)
        self.account = account or ExchangeAccount()
        self.client = client
        self.reconnect_delay_s = reconnect_delay_s

    def _init_client(self):
        """Initialize the ccxt client for this venue."""
        if not hasattr(ccxt, self.name):
            raise ValueError(f"Unsupported exchange: {self.name}")
        params = {
            "enableRateLimit": True,
            "timeout": 10000,
            "options": {"defaultType": "spot"},
        }
        if self.account.key:
            params["apiKey"] = self.account.key
            params["secret"] = self.account.secret
        if self.account.password:
            params["password"] = self.account.password
        self.client = getattr(ccxt, self.name)(params)

        if self.account.sandbox:
            self.client.set_sandbox_mode(True)

    async def connect(self) -> bool:
        """Create the client and load markets."""
        try:
            if self.client is None:
                self._init_client()
            await self.client.load_markets()
            self._connected = True
            logger.info(f"{self.name} connector initialized ({len(self.client.markets)} markets)")
            return True
        except Exception as e:
            logger.error(f"Error initializing {self.name} connector: {e}")
            return False

    async def disconnect(self) -> None:
        """Close the client."""
        if self.client is None:
            return
        try:
            await self.client.close()
            logger.info(f"{self.name} disconnected")
        except Exception as e:
            logger.error(f"Error disconnecting from {self.name}: {e}")
        finally:
            self._connected = False

    def _to_order_book(self, pair: TradingPair, raw: Dict[str, Any], depth: int) -> Optional[OrderBook]:
        if not raw or raw.get("bids") is None or raw.get("asks") is None:
            logger.warning(f"Empty or invalid orderbook data from {self.name} for {pair}")
            return None
        try:
            return OrderBook(
                venue=self.name,
                pair=pair,
                bids=[level[:2] for level in raw["bids"][:depth]],
                asks=[level[:2] for level in raw["asks"][:depth]],
                observed_at=now_seconds(),
            )
        except (ValueError, TypeError, IndexError) as e:
            logger.warning(f"Malformed orderbook from {self.name} for {pair}: {e}")
            return None

    async def fetch_order_book(self, pair: TradingPair, depth: int = 5) -> Optional[OrderBook]:
        """Fetch order book for a pair."""
        if self.client is None:
            return None
        try:
            raw = await self.client.fetch_order_book(str(pair), depth)
        except Exception as e:
            logger.error(f"Error getting {self.name} orderbook for {pair}: {e}")
            return None
        return self._to_order_book(pair, raw, depth)

    async def watch_order_book(self, pair: TradingPair, depth: int = 5) -> AsyncGenerator[OrderBook, None]:
        """Stream order books over the venue's websocket feed."""
        if self.client is None or not self.client.has.get("watchOrderBook"):
            return
        symbol = str(pair)
        logger.info(f"{self.name} websocket established for {pair}")
        while True:
            try:
                raw = await self.client.watch_order_book(symbol, depth)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing {self.name} orderbook data for {pair}: {e}")
                await asyncio.sleep(self.reconnect_delay_s)
                continue
            book = self._to_order_book(pair, raw, depth)
            if book is not None:
                yield book

    async def fetch_balances(self) -> Dict[str, Balance]:
        """Fetch non-zero balances."""
        if self.client is None:
            return {}
        try:
            raw = await self.client.fetch_balance()
        except Exception as e:
            logger.error(f"Error getting {self.name} balances: {e}")
            return {}

        balances = {}
        for asset, free in (raw.get("free") or {}).items():
            available = to_decimal(free) or Decimal(0)
            on_order = to_decimal((raw.get("used") or {}).get(asset)) or Decimal(0)
            if available > 0 or on_order > 0:
                balances[asset] = Balance(asset=asset, available=available, on_order=on_order)
        return balances

    async def _fill_from_order(self, order: Dict[str, Any], symbol: str, side: str) -> OrderResult:
        """Build an OrderResult for an accepted order.

        The order is re-fetched when the venue returns no fill data. If the
        fill still cannot be established the result is marked ``fill_unknown``
        and keeps the order id.
        """
        order_id = order.get("id")
        if (not order.get("filled") and order_id and order.get("status") not in _DEAD_ORDER_STATUSES
                and self.client.has.get("fetchOrder")):
            try:
                order = await self.client.fetch_order(order_id, symbol)
            except Exception as e:
                logger.critical(f"{self.name} {side} order {order_id} for {symbol} accepted "
                                f"but fill unknown: {e}")
                return OrderResult.unconfirmed(order_id, str(e))

        filled = to_decimal(order.get("filled"))
        average = to_decimal(order.get("average"))
        if average is None:
            cost = to_decimal(order.get("cost"))
            if cost is not None and filled:
                average = cost / filled

        if order.get("status") in _DEAD_ORDER_STATUSES and not filled:
            return OrderResult.failed(f"{side} order {order_id} {order.get('status')} without fill",
                                      order_id=order_id)

        result = OrderResult.filled(filled, average, order_id=order_id)
        if not result.success:
            logger.critical(f"{self.name} {side} order {order_id} for {symbol} accepted "
                            f"but fill unknown: {result.error}")
            return OrderResult.unconfirmed(order_id, result.error)
        return result

    async def market_buy(self, pair: TradingPair, quote_amount: Decimal) -> OrderResult:
        """Spend ``quote_amount`` of the quote asset at market."""
        if self.client is None:
            return OrderResult.failed(f"{self.name} client not initialized")
        symbol = str(pair)
        try:
            if self.client.has.get("createMarketBuyOrderWithCost"):
                order = await self.client.create_market_buy_order_with_cost(symbol, float(quote_amount))
            else:
                ticker = await self.client.fetch_ticker(symbol)
                last = to_decimal(ticker.get("ask") or ticker.get("last"))
                if not last:
                    return OrderResult.failed(f"No reference price for {symbol} on {self.name}")
                amount = self.client.amount_to_precision(symbol, float(quote_amount / last))
                order = await self.client.create_market_order(symbol, "buy", float(amount))
        except Exception as e:
            logger.error(f"Error executing {self.name} market buy for {pair}: {e}")
            return OrderResult.failed(str(e))

        logger.info(f"{self.name} market buy order executed: {pair}, quote amount: {quote_amount}")
        return await self._fill_from_order(order, symbol, "buy")

    async def market_sell(self, pair: TradingPair, base_amount: Decimal) -> OrderResult:
        """Sell ``base_amount`` of the base asset at market."""
        if self.client is None:
            return OrderResult.failed(f"{self.name} client not initialized")
        symbol = str(pair)
        try:
            amount = self.client.amount_to_precision(symbol, float(base_amount))
            order = await self.client.create_market_order(symbol, "sell", float(amount))
        except Exception as e:
            logger.error(f"Error executing {self.name} market sell for {pair}: {e}")
            return OrderResult.failed(str(e))

        logger.info(f"{self.name} market sell order executed: {pair}, quantity: {amount}")
        return await self._fill_from_order(order, symbol, "sell")
