"""In-memory performance ledger for one engine instance."""

from collections import deque
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

from loguru import logger

from ..exchanges.base import Balance
from ..utils import format_duration, format_usdt, now_seconds
from .types import ExecutionResult, ExecutionStatus, OpenPosition, Opportunity

VenueBalances = Dict[str, Dict[str, Balance]]


class PerformanceLedger:
    """Trade counters, cumulative profit and bounded recent history.

    Mutated only by the execution coordinator; everything else reads it.
    """

    def __init__(self, history_size: int = 100, clock: Callable[[], float] = now_seconds):
        self._clock = clock
        self.started_at = clock()
        self.total_trades = 0
        self.successful_trades = 0
        self.failed_trades = 0
        self.cumulative_profit = Decimal(0)
        self.recent_opportunities: Deque[Opportunity] = deque(maxlen=history_size)
        self.recent_results: Deque[ExecutionResult] = deque(maxlen=history_size)
        self.open_positions: List[OpenPosition] = []
        self.start_balances: VenueBalances = {}
        self.current_balances: VenueBalances = {}

    def record_opportunity(self, opportunity: Opportunity) -> None:
        """Append to the recent opportunity history."""
        self.recent_opportunities.append(opportunity)

    def record_execution(self, result: ExecutionResult) -> None:
        """Count an execution attempt. Rejected attempts only go to history."""
        self.recent_results.append(result)
        if not result.attempted:
            return

        self.total_trades += 1
        if result.status is ExecutionStatus.COMPLETED:
            self.successful_trades += 1
            self.cumulative_profit += result.profit
        else:
            self.failed_trades += 1
            if result.open_position is not None:
                self.open_positions.append(result.open_position)

        logger.debug(f"Trade recorded: {result.opportunity.pair} {result.status.value}, "
                     f"profit: {format_usdt(result.profit)}")

    def update_balances(self, balances: VenueBalances) -> None:
        """Store the latest balances; the first call also sets the start balances."""
        if not self.start_balances:
            self.start_balances = {venue: dict(assets) for venue, assets in balances.items()}
        self.current_balances = {venue: dict(assets) for venue, assets in balances.items()}

    @property
    def success_rate(self) -> float:
        if not self.total_trades:
            return 0.0
        return self.successful_trades / self.total_trades

    def get_summary(self, running_since: Optional[float] = None) -> Dict[str, Any]:
        """Get performance summary."""
        since = self.started_at if running_since is None else running_since
        return {
            'running_time_s': max(0.0, self._clock() - since),
            'total_trades': self.total_trades,
            'successful_trades': self.successful_trades,
            'failed_trades': self.failed_trades,
            'success_rate': self.success_rate,
            'total_profit': self.cumulative_profit,
            'open_positions': len(self.open_positions),
            'recent_opportunities': len(self.recent_opportunities),
            'start_balance': self.start_balances,
            'current_balance': self.current_balances,
        }

    def log_summary(self) -> None:
        """Log current performance."""
        summary = self.get_summary()
        logger.info(f"Performance: {summary['total_trades']} trades "
                    f"({summary['successful_trades']} ok, {summary['failed_trades']} failed), "
                    f"profit {format_usdt(summary['total_profit'])}, "
                    f"uptime {format_duration(summary['running_time_s'])}")
        if self.open_positions:
            logger.warning(f"{len(self.open_positions)} unhedged position(s) need attention")
