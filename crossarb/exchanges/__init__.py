"""Exchange integrations for cross-exchange arbitrage."""

from .base import BaseExchange, TradingPair, PriceLevel, OrderBook, Balance, OrderResult
from .ccxt_exchange import CcxtExchange

__all__ = [
    'BaseExchange',
    'TradingPair',
    'PriceLevel',
    'OrderBook',
    'Balance',
    'OrderResult',
    'CcxtExchange',
]
