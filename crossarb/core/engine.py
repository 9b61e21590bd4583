"""Engine lifecycle and the periodic scan-and-execute loop."""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..config import Config
from ..exceptions import EngineStartError
from ..exchanges.base import BaseExchange, TradingPair
from ..utils import now_seconds
from .books import BookFeed, OrderBookStore
from .events import EngineEvent, EventHub
from .executor import ArbitrageExecutor
from .ledger import PerformanceLedger
from .scanner import OpportunityScanner
from .types import EngineState, ExecutionResult, Opportunity


class ArbitrageEngine:
    """Owns the store, scanner, executor and ledger of one engine instance.

    States run ``stopped -> starting -> running -> stopping -> stopped``.
    ``start`` outside ``stopped`` and ``stop`` outside ``running`` are
    logged no-ops.
    """

    def __init__(self, config: Config, exchanges: Dict[str, BaseExchange],
                 clock: Callable[[], float] = now_seconds):
        self.config = config
        self.exchanges: Dict[str, BaseExchange] = dict(exchanges)
        self.pairs: List[TradingPair] = [TradingPair.parse(p) for p in config.scan.trading_pairs]
        self.interval_s = config.scan.interval_ms / 1000
        self.performance_interval_s = config.scan.performance_interval_s
        self._clock = clock

        self.events = EventHub()
        self.store = OrderBookStore(clock=clock)
        self.feed = BookFeed(self.store)
        self.scanner = OpportunityScanner(config, self.store, clock=clock)
        self.ledger = PerformanceLedger(config.ledger.history_size, clock=clock)
        self.executor = ArbitrageExecutor(config, self.exchanges, self.scanner, self.ledger,
                                          is_running=self.is_running, events=self.events)

        self.state = EngineState.STOPPED
        self.transitions: List[Tuple[EngineState, EngineState]] = []
        self.started_at: Optional[float] = None
        self._feed_tasks: List[asyncio.Task] = []
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._stop_task: Optional[asyncio.Task] = None
        self._last_summary = 0.0

    def is_running(self) -> bool:
        return self.state is EngineState.RUNNING

    def _set_state(self, state: EngineState) -> None:
        previous, self.state = self.state, state
        self.transitions.append((previous, state))
        logger.debug(f"Engine state {previous.value} -> {state.value}")
        self.events.publish(EngineEvent.STATE, state)

    async def start(self) -> None:
        """Connect venues, start feeds and the scan loop."""
        if self.state is not EngineState.STOPPED:
            logger.warning(f"Arbitrage engine is already {self.state.value}")
            return

        self._set_state(EngineState.STARTING)
        logger.info("Starting arbitrage engine...")
        try:
            await self._connect_exchanges()
        except EngineStartError:
            self._set_state(EngineState.STOPPED)
            raise

        await self.executor.refresh_balances()
        self._start_feeds()

        self.started_at = self._clock()
        self._last_summary = self.started_at
        self._set_state(EngineState.RUNNING)
        self._loop_task = asyncio.create_task(self._run_loop())

        logger.info(f"Arbitrage engine started. Monitoring {len(self.pairs)} trading pairs "
                    f"across {len(self.exchanges)} exchanges.")
        logger.info(f"Paper trading mode: {'ON' if self.config.execution.paper_trading else 'OFF'}")

    async def _connect_exchanges(self) -> None:
        connected = {}
        for name, exchange in self.exchanges.items():
            try:
                ok = await exchange.connect()
            except Exception as e:
                logger.error(f"Failed to connect to {name}: {e}")
                ok = False
            if ok:
                connected[name] = exchange
            else:
                logger.error(f"Exchange {name} unavailable, dropping it")

        if not connected:
            raise EngineStartError("Could not reach any exchange")
        if len(connected) < 2:
            logger.warning("Less than 2 exchanges connected. Arbitrage requires at least 2 exchanges.")

        # Keep the executor's view in sync: it holds the same dict.
        self.exchanges.clear()
        self.exchanges.update(connected)
        logger.info(f"Initialized {len(connected)} exchange connectors")

    async def _disconnect_exchanges(self) -> None:
        for name, exchange in self.exchanges.items():
            try:
                await exchange.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting {name}: {e}")

    def _start_feeds(self) -> None:
        depth = self.config.detector.book_depth
        self._feed_tasks.append(asyncio.create_task(self.feed.run()))
        for pair in self.pairs:
            for exchange in self.exchanges.values():
                self._feed_tasks.append(asyncio.create_task(self.feed.pump(exchange, pair, depth)))

    async def stop(self) -> None:
        """Let the in-flight tick finish, then stop feeds and disconnect."""
        if self.state is not EngineState.RUNNING:
            logger.warning(f"Arbitrage engine is not running ({self.state.value})")
            return

        logger.info("Stopping arbitrage engine...")
        self._set_state(EngineState.STOPPING)

        # The tick lock is held for a whole scan-and-execute round.
        async with self._tick_lock:
            if self._loop_task is not None:
                self._loop_task.cancel()
        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        for task in self._feed_tasks:
            task.cancel()
        if self._feed_tasks:
            await asyncio.gather(*self._feed_tasks, return_exceptions=True)
        self._feed_tasks.clear()

        await self._disconnect_exchanges()

        self.ledger.log_summary()
        self._stop_requested = False
        self._set_state(EngineState.STOPPED)
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("Arbitrage engine stopped")

    async def _run_loop(self) -> None:
        while self.is_running():
            await asyncio.sleep(self.interval_s)
            await self.tick()

    async def tick(self) -> List[ExecutionResult]:
        """One round: refresh missing books, scan, execute sequentially."""
        async with self._tick_lock:
            if not self.is_running():
                return []
            try:
                return await self._tick()
            except Exception:
                logger.exception("Error checking arbitrage opportunities")
                return []

    async def _tick(self) -> List[ExecutionResult]:
        self.feed.drain()
        await self.refresh_books()

        opportunities = self.scanner.scan(self.pairs, self.exchanges.keys())
        results = []
        for opportunity in opportunities:
            self.events.publish(EngineEvent.OPPORTUNITY, opportunity)
            # Checked again inside execute once the venue locks are held.
            if not self.is_running():
                break
            results.append(await self.executor.execute(opportunity))

        self._maybe_publish_summary()
        return results

    async def refresh_books(self) -> None:
        """Fetch books over REST for (pair, venue) keys with no fresh push data."""
        depth = self.config.detector.book_depth
        for pair in self.pairs:
            fresh = self.scanner.fresh_books(pair)
            for name, exchange in self.exchanges.items():
                if name in fresh:
                    continue
                try:
                    book = await exchange.fetch_order_book(pair, depth)
                except Exception as e:
                    logger.error(f"Error getting {name} orderbook for {pair}: {e}")
                    continue
                if book is not None:
                    self.store.update(pair, name, book)

    def _maybe_publish_summary(self) -> None:
        now = self._clock()
        if now - self._last_summary < self.performance_interval_s:
            return
        self._last_summary = now
        self.ledger.log_summary()
        self.events.publish(EngineEvent.PERFORMANCE, self.get_performance())

    def scan_once(self) -> List[Opportunity]:
        """Scan the current store without executing."""
        return self.scanner.scan(self.pairs, self.exchanges.keys())

    async def snapshot(self) -> List[Opportunity]:
        """Connect, fetch every book once, scan and disconnect.

        Only valid while stopped; the engine never enters the running
        state, so nothing is executed.
        """
        if self.state is not EngineState.STOPPED:
            logger.warning(f"Snapshot requested while {self.state.value}, scanning current books")
            return self.scan_once()

        await self._connect_exchanges()
        try:
            await self.refresh_books()
            return self.scan_once()
        finally:
            await self._disconnect_exchanges()

    def get_performance(self) -> dict:
        """Performance summary, with running time measured from start."""
        summary = self.ledger.get_summary(self.started_at)
        if not self.is_running():
            summary['running_time_s'] = 0.0
        summary['state'] = self.state.value
        return summary

    def request_stop(self) -> None:
        """Ask the engine to stop; usable from a signal handler.

        A request made before the engine is running is kept and honoured by
        :meth:`run_forever` once start-up completes.
        """
        self._stop_requested = True
        if self.state is EngineState.RUNNING and (self._stop_task is None or self._stop_task.done()):
            self._stop_task = asyncio.create_task(self.stop())
        elif self.state is not EngineState.RUNNING:
            logger.info(f"Stop requested while {self.state.value}")

    async def run_forever(self) -> None:
        """Start, then block until :meth:`stop` is called."""
        self._stop_event = asyncio.Event()
        await self.start()
        if self._stop_requested and self.is_running():
            await self.stop()
        await self._stop_event.wait()
