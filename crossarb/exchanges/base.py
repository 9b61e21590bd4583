"""Base exchange interface and market data types."""

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, Iterable, Optional, Tuple

from ..utils import to_decimal


@dataclass(frozen=True)
class TradingPair:
    """Base/quote asset pair, e.g. BTC/USDT. Symbols are upper-cased."""
    base: str
    quote: str

    def __post_init__(self):
        base = (self.base or "").strip().upper()
        quote = (self.quote or "").strip().upper()
        if not base or not quote:
            raise ValueError("TradingPair needs both base and quote")
        object.__setattr__(self, "base", base)
        object.__setattr__(self, "quote", quote)

    @classmethod
    def parse(cls, value: "str | TradingPair") -> "TradingPair":
        """Parse the standard BASE/QUOTE form."""
        if isinstance(value, TradingPair):
            return value
        parts = value.split("/")
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            raise ValueError(f"Invalid pair format: {value}. Expected format: BTC/USDT")
        return cls(parts[0], parts[1])

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True)
class PriceLevel:
    """One price level of an order book."""
    price: Decimal
    quantity: Decimal

    def __post_init__(self):
        price = to_decimal(self.price)
        quantity = to_decimal(self.quantity)
        if price is None or price <= 0:
            raise ValueError(f"Invalid price level price: {self.price!r}")
        if quantity is None or quantity < 0:
            raise ValueError(f"Invalid price level quantity: {self.quantity!r}")
        object.__setattr__(self, "price", price)
        object.__setattr__(self, "quantity", quantity)


def _coerce_levels(levels: Iterable[Any]) -> Tuple[PriceLevel, ...]:
    result = []
    for level in levels:
        if isinstance(level, PriceLevel):
            result.append(level)
        else:
            # ccxt style [price, amount] or (price, amount, ...)
            result.append(PriceLevel(level[0], level[1]))
    return tuple(result)


@dataclass(frozen=True)
class OrderBook:
    """Immutable order book snapshot.

    Bids are held in descending and asks in ascending price order, so the
    first level on each side is the best one.
    """
    venue: str
    pair: TradingPair
    bids: Tuple[PriceLevel, ...] = ()
    asks: Tuple[PriceLevel, ...] = ()
    observed_at: Optional[float] = None  # epoch seconds

    def __post_init__(self):
        bids = sorted(_coerce_levels(self.bids), key=lambda lvl: lvl.price, reverse=True)
        asks = sorted(_coerce_levels(self.asks), key=lambda lvl: lvl.price)
        object.__setattr__(self, "bids", tuple(bids))
        object.__setattr__(self, "asks", tuple(asks))
        object.__setattr__(self, "pair", TradingPair.parse(self.pair))

    @property
    def best_bid(self) -> Optional[Decimal]:
        """Highest bid price."""
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        """Lowest ask price."""
        return self.asks[0].price if self.asks else None

    def is_stale(self, max_age_s: float, now: float) -> bool:
        """A book with no observation time is treated as stale."""
        if self.observed_at is None:
            return True
        return now - self.observed_at > max_age_s

    def stamped(self, observed_at: float) -> "OrderBook":
        """Copy of this book with the observation time set."""
        return dataclasses.replace(self, observed_at=observed_at)


@dataclass(frozen=True)
class Balance:
    """Account balance for one asset."""
    asset: str
    available: Decimal
    on_order: Decimal = Decimal(0)

    @property
    def total(self) -> Decimal:
        return self.available + self.on_order


@dataclass(frozen=True)
class OrderResult:
    """Outcome of a market order: filled, failed, or accepted with an unknown fill.

    ``fill_unknown`` marks an order the venue accepted whose fill could not
    be confirmed; the asset may have moved even though ``success`` is False.
    """
    success: bool
    executed_qty: Decimal = Decimal(0)
    avg_price: Decimal = Decimal(0)
    order_id: Optional[str] = None
    error: Optional[str] = None
    fill_unknown: bool = False

    @classmethod
    def filled(cls, executed_qty: Any, avg_price: Any, order_id: Optional[str] = None) -> "OrderResult":
        qty = to_decimal(executed_qty)
        price = to_decimal(avg_price)
        if qty is None or price is None or qty <= 0 or price <= 0:
            return cls.failed(f"Invalid fill reported: qty={executed_qty!r} price={avg_price!r}",
                              order_id=order_id)
        return cls(True, executed_qty=qty, avg_price=price, order_id=order_id)

    @classmethod
    def failed(cls, error: str, order_id: Optional[str] = None) -> "OrderResult":
        return cls(False, order_id=order_id, error=error)

    @classmethod
    def unconfirmed(cls, order_id: Optional[str], error: str) -> "OrderResult":
        return cls(False, order_id=order_id, error=error, fill_unknown=True)

    @property
    def notional(self) -> Decimal:
        return self.executed_qty * self.avg_price


class BaseExchange(ABC):
    """Venue adapter interface.

    Implementations report failures through return values: ``None`` for a
    missing book, ``{}`` for unavailable balances and a failed
    :class:`OrderResult` for rejected orders. Timeouts are the adapter's
    responsibility.
    """

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the exchange."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the exchange."""

    @abstractmethod
    async def fetch_balances(self) -> Dict[str, Balance]:
        """Fetch account balances."""

    @abstractmethod
    async def fetch_order_book(self, pair: TradingPair, depth: int = 5) -> Optional[OrderBook]:
        """Fetch an order book snapshot."""

    @abstractmethod
    async def market_buy(self, pair: TradingPair, quote_amount: Decimal) -> OrderResult:
        """Buy ``quote_amount`` worth of the base asset at market."""

    @abstractmethod
    async def market_sell(self, pair: TradingPair, base_amount: Decimal) -> OrderResult:
        """Sell ``base_amount`` of the base asset at market."""

    async def watch_order_book(self, pair: TradingPair, depth: int = 5) -> AsyncGenerator[OrderBook, None]:
        """Stream order book updates. Venues without a push feed yield nothing."""
        return
        yield

    def is_connected(self) -> bool:
        """Check if exchange is connected."""
        return self._connected
