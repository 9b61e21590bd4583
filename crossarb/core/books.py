"""Order book storage and the venue feed channel."""

import asyncio
import dataclasses
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple, Union, overload

from loguru import logger

from ..exchanges.base import BaseExchange, OrderBook, TradingPair
from ..utils import now_seconds

BookKey = Tuple[TradingPair, str]


class OrderBookStore:
    """Latest order book per (pair, venue).

    Each key has its own lock, so writers for different venues never block
    each other. Stored books are immutable; readers get the stored instance.
    """

    def __init__(self, clock: Callable[[], float] = now_seconds):
        self._clock = clock
        self._books: Dict[BookKey, OrderBook] = {}
        self._locks: Dict[BookKey, threading.Lock] = {}
        self._venues: Dict[TradingPair, Set[str]] = defaultdict(set)
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: BookKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
                self._venues[key[0]].add(key[1])
            return lock

    def update(self, pair: Union[TradingPair, str], venue: str, book: OrderBook) -> OrderBook:
        """Replace the stored book for (pair, venue), stamping it if unstamped."""
        pair = TradingPair.parse(pair)
        changes: Dict[str, Any] = {}
        if book.observed_at is None:
            changes["observed_at"] = self._clock()
        if book.venue != venue:
            changes["venue"] = venue
        if book.pair != pair:
            changes["pair"] = pair
        if changes:
            book = dataclasses.replace(book, **changes)

        key = (pair, venue)
        with self._lock_for(key):
            self._books[key] = book
        return book

    @overload
    def get(self, pair: Union[TradingPair, str]) -> Dict[str, OrderBook]: ...

    @overload
    def get(self, pair: Union[TradingPair, str], venue: str) -> Optional[OrderBook]: ...

    def get(self, pair, venue=None):
        """Book for (pair, venue), or every venue's book for ``pair`` when venue is omitted."""
        pair = TradingPair.parse(pair)
        if venue is not None:
            key = (pair, venue)
            with self._registry_lock:
                lock = self._locks.get(key)
            if lock is None:
                return None
            with lock:
                return self._books.get(key)

        with self._registry_lock:
            venues = sorted(self._venues.get(pair, ()))
        books = {}
        for name in venues:
            book = self.get(pair, name)
            if book is not None:
                books[name] = book
        return books

    def remove(self, pair: Union[TradingPair, str], venue: str) -> None:
        """Forget the book for (pair, venue)."""
        key = (TradingPair.parse(pair), venue)
        with self._lock_for(key):
            self._books.pop(key, None)

    def pairs(self) -> Set[TradingPair]:
        with self._registry_lock:
            return set(self._venues)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of stored books."""
        now = self._clock()
        summary = {}
        for pair in sorted(self.pairs(), key=str):
            summary[str(pair)] = {
                venue: {
                    'best_bid': book.best_bid,
                    'best_ask': book.best_ask,
                    'age_s': now - book.observed_at,
                }
                for venue, book in self.get(pair).items()
            }
        return summary


@dataclass(frozen=True)
class OrderBookUpdate:
    """Order book message produced by a venue feed."""
    venue: str
    pair: TradingPair
    book: OrderBook


class BookFeed:
    """Channel between venue feeds and the order book store.

    Feeds publish :class:`OrderBookUpdate` messages; a single consumer
    (:meth:`run`) applies them to the store.
    """

    def __init__(self, store: OrderBookStore, retry_delay_s: float = 5.0):
        self.store = store
        self.retry_delay_s = retry_delay_s
        self.queue: "asyncio.Queue[OrderBookUpdate]" = asyncio.Queue()
        self.applied = 0

    def publish(self, book: OrderBook) -> None:
        """Queue a book for the store."""
        self.queue.put_nowait(OrderBookUpdate(venue=book.venue, pair=book.pair, book=book))

    def _apply(self, update: OrderBookUpdate) -> None:
        self.store.update(update.pair, update.venue, update.book)
        self.applied += 1

    def drain(self) -> int:
        """Apply every queued update without waiting. Returns the count applied."""
        count = 0
        while True:
            try:
                update = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return count
            self._apply(update)
            self.queue.task_done()
            count += 1

    async def run(self) -> None:
        """Consume updates until cancelled."""
        while True:
            update = await self.queue.get()
            try:
                self._apply(update)
            except Exception:
                logger.exception(f"Error updating orderbook for {update.pair} on {update.venue}")
            finally:
                self.queue.task_done()

    async def pump(self, exchange: BaseExchange, pair: TradingPair, depth: int = 5) -> None:
        """Forward one venue's order book stream into the channel until cancelled."""
        while True:
            try:
                async for book in exchange.watch_order_book(pair, depth):
                    self.publish(book)
                logger.debug(f"{exchange.name} has no push feed for {pair}, polling only")
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error monitoring {exchange.name} orderbook for {pair}: {e}")
                await asyncio.sleep(self.retry_delay_s)
                logger.info(f"Restarting monitoring for {exchange.name} {pair}")
