"""
Shared types and data structures for the arbitrage engine.
This file breaks circular imports between modules.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..exchanges.base import OrderResult, TradingPair
from ..utils import now_seconds


class EngineState(Enum):
    """Lifecycle state of the engine."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ExecutionStatus(Enum):
    """Outcome of an execution attempt."""
    COMPLETED = "completed"  # both legs filled (or simulated)
    FAILED = "failed"        # nothing left open
    PARTIAL = "partial"      # buy filled or unconfirmed, sell not done: unhedged position
    REJECTED = "rejected"    # preconditions not met, no order sent


class FailureReason(Enum):
    """Why an execution attempt did not complete."""
    NOT_RUNNING = "not_running"
    STALE_OPPORTUNITY = "stale_opportunity"
    INVALID_INPUT = "invalid_input"
    VENUE_UNAVAILABLE = "venue_unavailable"
    BUY_FAILED = "buy_failed"
    BUY_UNCONFIRMED = "buy_unconfirmed"
    SELL_FAILED = "sell_failed"
    ERROR = "error"


@dataclass(frozen=True)
class Opportunity:
    """Detected arbitrage opportunity: buy on ``buy_venue``, sell on ``sell_venue``."""
    pair: TradingPair
    buy_venue: str
    sell_venue: str
    buy_price: Decimal
    sell_price: Decimal
    spread_percent: Decimal
    detected_at: float = field(default_factory=now_seconds)

    def describe(self) -> str:
        return (f"{self.pair} - Buy on {self.buy_venue} at {self.buy_price}, "
                f"Sell on {self.sell_venue} at {self.sell_price}, "
                f"Spread: {self.spread_percent:.4f}%")


@dataclass(frozen=True)
class OpenPosition:
    """Base asset left on a venue after the sell leg failed.

    ``confirmed`` is False when the buy fill is unknown; quantity and price
    are then the expected values, not reported ones.
    """
    venue: str
    pair: TradingPair
    quantity: Decimal
    price: Decimal
    confirmed: bool = True


@dataclass(frozen=True)
class ExecutionResult:
    """Result of an execution attempt."""
    status: ExecutionStatus
    opportunity: Opportunity
    reason: Optional[FailureReason] = None
    buy_order: Optional[OrderResult] = None
    sell_order: Optional[OrderResult] = None
    profit: Decimal = Decimal(0)
    open_position: Optional[OpenPosition] = None
    simulated: bool = False
    error: Optional[str] = None
    finished_at: float = field(default_factory=now_seconds)

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.COMPLETED

    @property
    def attempted(self) -> bool:
        """False when preconditions stopped the attempt before any trade."""
        return self.status is not ExecutionStatus.REJECTED
