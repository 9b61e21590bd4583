"""Sample market data and a scriptable venue adapter for tests."""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

from crossarb.config import Config, DetectorConfig, ExecutionConfig, ScanConfig
from crossarb.exchanges.base import Balance, BaseExchange, OrderBook, OrderResult, TradingPair

BTC_USDT = TradingPair("BTC", "USDT")

# Two venues with a ~1.95% fee-adjusted spread: buy on "kucoin", sell on "binance".
WIDE_BOOKS = {
    "binance": {"bids": [(30750, 1.2), (30740, 2.0)], "asks": [(30760, 1.0), (30770, 3.0)]},
    "kucoin": {"bids": [(30090, 0.8), (30080, 1.5)], "asks": [(30100, 0.5), (30110, 2.0)]},
}

# Raw spread 0.16%, negative after 0.1% fees on each leg.
NARROW_BOOKS = {
    "binance": {"bids": [(30150.5, 1.0)], "asks": [(30160.0, 1.0)]},
    "kucoin": {"bids": [(30090.0, 1.0)], "asks": [(30100.2, 1.0)]},
}


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(min_spread: float = 0.5, paper: bool = True, order_size: float = 100.0,
                pairs: Optional[List[str]] = None, **scan) -> Config:
    return Config(
        detector=DetectorConfig(min_spread_percent=min_spread, max_book_age_ms=5000),
        execution=ExecutionConfig(order_size_quote=order_size, paper_trading=paper),
        scan=ScanConfig(trading_pairs=pairs or ["BTC/USDT"], **scan),
    )


def make_book(venue: str, bids, asks, pair: TradingPair = BTC_USDT,
              observed_at: Optional[float] = None) -> OrderBook:
    return OrderBook(venue=venue, pair=pair, bids=bids, asks=asks, observed_at=observed_at)


def load_books(store, books: Dict[str, dict], pair: TradingPair = BTC_USDT,
               observed_at: Optional[float] = None) -> None:
    for venue, sides in books.items():
        store.update(pair, venue, make_book(venue, sides["bids"], sides["asks"], pair, observed_at))


class FakeExchange(BaseExchange):
    """Venue adapter whose responses are set by the test."""

    def __init__(self, name: str, books: Optional[Dict[TradingPair, dict]] = None,
                 connect_ok: bool = True, fill_price: Optional[float] = None,
                 fill_qty: Optional[float] = None, delay: float = 0.0):
        super().__init__(name)
        self.books = books or {}
        self.connect_ok = connect_ok
        self.fill_price = fill_price
        self.fill_qty = fill_qty
        self.delay = delay
        self.buy_result: Optional[OrderResult] = None
        self.sell_result: Optional[OrderResult] = None
        self.sell_error: Optional[Exception] = None
        self.buys: List[Decimal] = []
        self.sells: List[Decimal] = []
        self.balance_calls = 0
        self.disconnected = False
        self.active_orders = 0
        self.max_active_orders = 0

    async def connect(self) -> bool:
        self._connected = self.connect_ok
        return self.connect_ok

    async def disconnect(self) -> None:
        self._connected = False
        self.disconnected = True

    async def fetch_balances(self) -> Dict[str, Balance]:
        self.balance_calls += 1
        return {"USDT": Balance("USDT", Decimal("1000")), "BTC": Balance("BTC", Decimal("0.5"))}

    async def fetch_order_book(self, pair: TradingPair, depth: int = 5) -> Optional[OrderBook]:
        sides = self.books.get(pair)
        if sides is None:
            return None
        return make_book(self.name, sides["bids"], sides["asks"], pair)

    async def _order(self) -> None:
        self.active_orders += 1
        self.max_active_orders = max(self.max_active_orders, self.active_orders)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active_orders -= 1

    async def market_buy(self, pair: TradingPair, quote_amount: Decimal) -> OrderResult:
        self.buys.append(quote_amount)
        await self._order()
        if self.buy_result is not None:
            return self.buy_result
        qty = self.fill_qty if self.fill_qty is not None else quote_amount / Decimal(str(self.fill_price))
        return OrderResult.filled(qty, self.fill_price, order_id=f"{self.name}-buy-{len(self.buys)}")

    async def market_sell(self, pair: TradingPair, base_amount: Decimal) -> OrderResult:
        self.sells.append(base_amount)
        await self._order()
        if self.sell_error is not None:
            raise self.sell_error
        if self.sell_result is not None:
            return self.sell_result
        return OrderResult.filled(base_amount, self.fill_price, order_id=f"{self.name}-sell-{len(self.sells)}")
