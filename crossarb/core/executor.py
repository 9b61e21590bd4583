"""Paired buy/sell execution for detected opportunities."""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from loguru import logger

from ..config import Config
from ..exchanges.base import BaseExchange, OrderResult
from ..utils import format_usdt, to_decimal
from .events import EngineEvent, EventHub
from .ledger import PerformanceLedger
from .scanner import OpportunityScanner
from .types import (
    ExecutionResult,
    ExecutionStatus,
    FailureReason,
    OpenPosition,
    Opportunity,
)


class ArbitrageExecutor:
    """Executes opportunities, either simulated (paper trading) or live.

    Before committing capital the spread is re-derived from the current
    books; an opportunity that no longer clears the threshold is rejected.
    Attempts touching the same (venue, asset) are serialised. Nothing is
    retried.
    """

    def __init__(self, config: Config, exchanges: Dict[str, BaseExchange],
                 scanner: OpportunityScanner, ledger: PerformanceLedger,
                 is_running: Callable[[], bool] = lambda: True,
                 events: Optional[EventHub] = None):
        self.config = config
        self.exchanges = exchanges
        self.scanner = scanner
        self.ledger = ledger
        self.is_running = is_running
        self.events = events or EventHub()
        self.paper_trading = config.execution.paper_trading
        self.order_size = to_decimal(config.execution.order_size_quote)
        self.fee_rate = to_decimal(config.detector.fee_rate)
        self.min_spread_percent = to_decimal(config.detector.min_spread_percent)
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    @asynccontextmanager
    async def _reserve(self, opportunity: Opportunity) -> AsyncIterator[None]:
        """Hold the (venue, asset) locks for both legs, taken in sorted order."""
        pair = opportunity.pair
        keys = sorted({
            (opportunity.buy_venue, pair.base),
            (opportunity.buy_venue, pair.quote),
            (opportunity.sell_venue, pair.base),
            (opportunity.sell_venue, pair.quote),
        })
        async with AsyncExitStack() as stack:
            for key in keys:
                lock = self._locks.setdefault(key, asyncio.Lock())
                await stack.enter_async_context(lock)
            yield

    async def execute(self, opportunity: Opportunity) -> ExecutionResult:
        """Execute an opportunity and record the outcome in the ledger."""
        self.ledger.record_opportunity(opportunity)

        if not self.is_running():
            logger.warning(f"Engine not running, skipping {opportunity.pair}")
            return self._finish(ExecutionResult(
                ExecutionStatus.REJECTED, opportunity, reason=FailureReason.NOT_RUNNING))

        async with self._reserve(opportunity):
            try:
                result = await self._execute_reserved(opportunity)
            except Exception as e:
                logger.exception(f"Error executing arbitrage for {opportunity.pair}")
                result = ExecutionResult(ExecutionStatus.FAILED, opportunity,
                                         reason=FailureReason.ERROR, error=str(e))

        if not self.paper_trading and (result.buy_order is not None or result.sell_order is not None):
            await self.refresh_balances()
        return self._finish(result)

    async def _execute_reserved(self, opportunity: Opportunity) -> ExecutionResult:
        if not self.is_running():
            return ExecutionResult(ExecutionStatus.REJECTED, opportunity,
                                   reason=FailureReason.NOT_RUNNING)

        current = self.scanner.current_spread(opportunity.pair, opportunity.buy_venue,
                                              opportunity.sell_venue)
        if current is None or current[2] < self.min_spread_percent:
            spread = "n/a" if current is None else f"{current[2]:.4f}%"
            logger.info(f"Skipping arbitrage: {opportunity.pair} spread now {spread}, "
                        f"minimum {self.min_spread_percent}%")
            return ExecutionResult(ExecutionStatus.REJECTED, opportunity,
                                   reason=FailureReason.STALE_OPPORTUNITY)

        buy_price, sell_price, spread = current
        logger.info(f"Executing arbitrage: {opportunity.pair} - Buy on {opportunity.buy_venue} at "
                    f"{buy_price}, Sell on {opportunity.sell_venue} at {sell_price}, "
                    f"Spread: {spread:.4f}%")

        if self.paper_trading:
            return self.simulate(opportunity, buy_price, sell_price)
        return await self._execute_live(opportunity, buy_price)

    def simulate(self, opportunity: Opportunity, buy_price: Optional[Decimal] = None,
                 sell_price: Optional[Decimal] = None) -> ExecutionResult:
        """Paper trade: buy ``order_size`` of quote at buy price, sell it all at sell price.

        Net profit = qty * sell - order_size - fee * order_size - fee * qty * sell.
        """
        buy = to_decimal(opportunity.buy_price if buy_price is None else buy_price)
        sell = to_decimal(opportunity.sell_price if sell_price is None else sell_price)
        if buy is None or sell is None or buy <= 0 or sell <= 0:
            return ExecutionResult(ExecutionStatus.FAILED, opportunity, simulated=True,
                                   reason=FailureReason.INVALID_INPUT,
                                   error=f"Invalid prices buy={buy} sell={sell}")

        quantity = self.order_size / buy
        buy_total = self.order_size
        sell_total = quantity * sell
        gross = sell_total - buy_total
        fees = buy_total * self.fee_rate + sell_total * self.fee_rate
        net = gross - fees

        logger.info(f"[PAPER TRADING] Arbitrage simulated: {opportunity.pair} - "
                    f"Buy on {opportunity.buy_venue} ({quantity:.8f} @ {buy}), "
                    f"Sell on {opportunity.sell_venue} ({quantity:.8f} @ {sell})")
        return ExecutionResult(
            ExecutionStatus.COMPLETED,
            opportunity,
            buy_order=OrderResult(True, executed_qty=quantity, avg_price=buy, order_id="paper-buy"),
            sell_order=OrderResult(True, executed_qty=quantity, avg_price=sell, order_id="paper-sell"),
            profit=net,
            simulated=True,
        )

    async def _place(self, exchange: BaseExchange, side: str, opportunity: Opportunity,
                     amount: Decimal) -> OrderResult:
        """Send one leg; adapter exceptions become failed results."""
        try:
            if side == "buy":
                result = await exchange.market_buy(opportunity.pair, amount)
            else:
                result = await exchange.market_sell(opportunity.pair, amount)
        except Exception as e:
            logger.error(f"{side} order on {exchange.name} raised: {e}")
            return OrderResult.failed(str(e))
        if result is None:
            return OrderResult.failed(f"{exchange.name} returned no {side} result")
        return result

    async def _execute_live(self, opportunity: Opportunity, buy_price: Decimal) -> ExecutionResult:
        buy_exchange = self.exchanges.get(opportunity.buy_venue)
        sell_exchange = self.exchanges.get(opportunity.sell_venue)
        missing = [name for name, exchange in
                   ((opportunity.buy_venue, buy_exchange), (opportunity.sell_venue, sell_exchange))
                   if exchange is None or not exchange.is_connected()]
        if missing:
            error = f"Could not find exchange connectors for {', '.join(missing)}"
            logger.error(error)
            return ExecutionResult(ExecutionStatus.FAILED, opportunity,
                                   reason=FailureReason.VENUE_UNAVAILABLE, error=error)

        buy_order = await self._place(buy_exchange, "buy", opportunity, self.order_size)
        if not buy_order.success and buy_order.fill_unknown:
            # No sell: the fill quantity is unknown.
            position = OpenPosition(venue=opportunity.buy_venue, pair=opportunity.pair,
                                    quantity=self.order_size / buy_price, price=buy_price,
                                    confirmed=False)
            logger.critical(f"UNCONFIRMED BUY: order {buy_order.order_id} on {position.venue} may hold "
                            f"~{position.quantity:.8f} {opportunity.pair.base} @ {buy_price}; "
                            f"sell on {opportunity.sell_venue} not attempted: {buy_order.error}")
            return ExecutionResult(ExecutionStatus.PARTIAL, opportunity, buy_order=buy_order,
                                   reason=FailureReason.BUY_UNCONFIRMED, open_position=position,
                                   error=buy_order.error)
        if not buy_order.success:
            logger.error(f"Failed to execute buy order on {opportunity.buy_venue}: {buy_order.error}")
            return ExecutionResult(ExecutionStatus.FAILED, opportunity, buy_order=buy_order,
                                   reason=FailureReason.BUY_FAILED, error=buy_order.error)

        sell_order = await self._place(sell_exchange, "sell", opportunity, buy_order.executed_qty)
        if not sell_order.success:
            position = OpenPosition(venue=opportunity.buy_venue, pair=opportunity.pair,
                                    quantity=buy_order.executed_qty, price=buy_order.avg_price)
            logger.critical(f"UNHEDGED POSITION: bought {position.quantity} {opportunity.pair.base} "
                            f"on {position.venue} @ {position.price} but sell on "
                            f"{opportunity.sell_venue} failed: {sell_order.error}")
            return ExecutionResult(ExecutionStatus.PARTIAL, opportunity, buy_order=buy_order,
                                   sell_order=sell_order, reason=FailureReason.SELL_FAILED,
                                   open_position=position, error=sell_order.error)

        profit = sell_order.notional - buy_order.notional
        return ExecutionResult(ExecutionStatus.COMPLETED, opportunity, buy_order=buy_order,
                               sell_order=sell_order, profit=profit)

    async def refresh_balances(self) -> None:
        """Fetch balances from every connected venue into the ledger."""
        balances = {}
        for name, exchange in self.exchanges.items():
            if not exchange.is_connected():
                continue
            try:
                balances[name] = await exchange.fetch_balances()
            except Exception as e:
                logger.error(f"Error updating balances for {name}: {e}")
        self.ledger.update_balances(balances)

    def _finish(self, result: ExecutionResult) -> ExecutionResult:
        self.ledger.record_execution(result)
        self.events.publish(EngineEvent.EXECUTION, result)
        if result.status is ExecutionStatus.COMPLETED:
            prefix = "[PAPER TRADING] " if result.simulated else ""
            logger.info(f"{prefix}Arbitrage completed: Profit = {format_usdt(result.profit)} "
                        f"({result.opportunity.spread_percent:.2f}%)")
        return result
