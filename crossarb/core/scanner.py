"""Arbitrage opportunity detection across venue pairs."""

from decimal import Decimal
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from loguru import logger

from ..config import Config
from ..exchanges.base import OrderBook, TradingPair
from ..utils import now_seconds, to_decimal
from .books import OrderBookStore
from .spread import calculate_spread
from .types import Opportunity


class OpportunityScanner:
    """Finds fee-adjusted spreads above threshold between every pair of venues.

    A scan only reads the store; it has no other side effects.
    """

    def __init__(self, config: Config, store: OrderBookStore,
                 clock: Callable[[], float] = now_seconds):
        self.config = config
        self.store = store
        self._clock = clock
        self.min_spread_percent = to_decimal(config.detector.min_spread_percent)
        self.fee_rate = to_decimal(config.detector.fee_rate)
        self.max_book_age_s = config.detector.max_book_age_ms / 1000

    def fresh_books(self, pair: TradingPair, now: Optional[float] = None) -> Dict[str, OrderBook]:
        """Books for ``pair`` observed within the freshness window."""
        now = self._clock() if now is None else now
        fresh = {}
        for venue, book in self.store.get(pair).items():
            if book.is_stale(self.max_book_age_s, now):
                logger.debug(f"Skipping stale {venue} book for {pair}")
                continue
            fresh[venue] = book
        return fresh

    def scan(self, pairs: Iterable[Union[TradingPair, str]],
             venues: Optional[Iterable[str]] = None,
             now: Optional[float] = None) -> List[Opportunity]:
        """Opportunities for the current instant of book state."""
        now = self._clock() if now is None else now
        allowed = set(venues) if venues is not None else None
        opportunities = []

        for pair in pairs:
            pair = TradingPair.parse(pair)
            books = self.fresh_books(pair, now)
            if allowed is not None:
                books = {venue: book for venue, book in books.items() if venue in allowed}
            if len(books) < 2:
                continue

            for venue_a, venue_b in combinations(sorted(books), 2):
                book_a, book_b = books[venue_a], books[venue_b]
                # Buy on B, sell on A
                opportunity = self._check_direction(pair, book_b, book_a, now)
                if opportunity:
                    opportunities.append(opportunity)
                # Buy on A, sell on B
                opportunity = self._check_direction(pair, book_a, book_b, now)
                if opportunity:
                    opportunities.append(opportunity)

        return opportunities

    def _check_direction(self, pair: TradingPair, buy_book: OrderBook, sell_book: OrderBook,
                         now: float) -> Optional[Opportunity]:
        buy_price = buy_book.best_ask
        sell_price = sell_book.best_bid
        if buy_price is None or sell_price is None:
            logger.debug(f"Missing prices for {pair}: {buy_book.venue} ask={buy_price}, "
                         f"{sell_book.venue} bid={sell_price}")
            return None

        spread = calculate_spread(sell_price, buy_price, self.fee_rate)
        if spread < self.min_spread_percent:
            return None

        opportunity = Opportunity(
            pair=pair,
            buy_venue=buy_book.venue,
            sell_venue=sell_book.venue,
            buy_price=buy_price,
            sell_price=sell_price,
            spread_percent=spread,
            detected_at=now,
        )
        logger.info(f"Arbitrage opportunity: {opportunity.describe()}")
        return opportunity

    def best_prices(self, pair: TradingPair, buy_venue: str, sell_venue: str,
                    now: Optional[float] = None) -> Optional[Tuple[Decimal, Decimal]]:
        """Current fresh (best ask on buy venue, best bid on sell venue), if both exist."""
        now = self._clock() if now is None else now
        buy_book = self.store.get(pair, buy_venue)
        sell_book = self.store.get(pair, sell_venue)
        if buy_book is None or sell_book is None:
            return None
        if buy_book.is_stale(self.max_book_age_s, now) or sell_book.is_stale(self.max_book_age_s, now):
            return None
        if buy_book.best_ask is None or sell_book.best_bid is None:
            return None
        return buy_book.best_ask, sell_book.best_bid

    def current_spread(self, pair: TradingPair, buy_venue: str, sell_venue: str,
                       now: Optional[float] = None) -> Optional[Tuple[Decimal, Decimal, Decimal]]:
        """Re-derive (buy_price, sell_price, spread) from current book state."""
        prices = self.best_prices(pair, buy_venue, sell_venue, now)
        if prices is None:
            return None
        buy_price, sell_price = prices
        return buy_price, sell_price, calculate_spread(sell_price, buy_price, self.fee_rate)
