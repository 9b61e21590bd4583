"""Core arbitrage logic for cross-exchange trading."""

from .types import (
    EngineState,
    ExecutionResult,
    ExecutionStatus,
    FailureReason,
    OpenPosition,
    Opportunity,
)
from .spread import NO_OPPORTUNITY, calculate_spread
from .books import BookFeed, OrderBookStore, OrderBookUpdate
from .scanner import OpportunityScanner
from .ledger import PerformanceLedger
from .events import EngineEvent, EventHub
from .executor import ArbitrageExecutor
from .engine import ArbitrageEngine
from .symbols import format_pair, standardize_pair

__all__ = [
    'EngineState',
    'ExecutionResult',
    'ExecutionStatus',
    'FailureReason',
    'OpenPosition',
    'Opportunity',
    'NO_OPPORTUNITY',
    'calculate_spread',
    'BookFeed',
    'OrderBookStore',
    'OrderBookUpdate',
    'OpportunityScanner',
    'PerformanceLedger',
    'EngineEvent',
    'EventHub',
    'ArbitrageExecutor',
    'ArbitrageEngine',
    'format_pair',
    'standardize_pair',
]
