"""Tests for the ccxt-backed venue adapter using a mocked client."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from crossarb.config import ExchangeAccount
from crossarb.exchanges.ccxt_exchange import CcxtExchange

from sample_data import BTC_USDT


def make_client(**has):
    client = Mock()
    client.has = {"createMarketBuyOrderWithCost": True, "fetchOrder": True, "watchOrderBook": False}
    client.has.update(has)
    client.markets = {"BTC/USDT": {}}
    client.load_markets = AsyncMock(return_value=client.markets)
    client.close = AsyncMock()
    client.fetch_order_book = AsyncMock(return_value={
        "bids": [[30750.0, 1.2], [30740.0, 2.0], [30730.0, 1.0]],
        "asks": [[30760.0, 1.0], [30770.0, 3.0]],
    })
    client.fetch_balance = AsyncMock(return_value={
        "free": {"USDT": 1000.0, "BTC": 0.5, "ETH": 0.0},
        "used": {"USDT": 50.0},
    })
    client.fetch_order = AsyncMock()
    client.fetch_ticker = AsyncMock(return_value={"ask": 30000.0, "last": 29990.0})
    client.create_market_buy_order_with_cost = AsyncMock(
        return_value={"id": "1", "filled": 0.0033, "average": 30110.0})
    client.create_market_order = AsyncMock(
        return_value={"id": "2", "filled": 0.0033, "average": None, "cost": 101.442})
    client.amount_to_precision = Mock(side_effect=lambda symbol, amount: f"{amount:.4f}")
    return client


def run(coro):
    return asyncio.run(coro)


class TestConnection:

    def test_connect_loads_markets(self):
        exchange = CcxtExchange("binance", client=make_client())
        assert run(exchange.connect()) is True
        assert exchange.is_connected()

    def test_connect_failure_returns_false(self):
        client = make_client()
        client.load_markets.side_effect = ConnectionError("down")
        exchange = CcxtExchange("binance", client=client)
        assert run(exchange.connect()) is False
        assert not exchange.is_connected()

    def test_unknown_exchange(self):
        exchange = CcxtExchange("not-a-real-exchange", ExchangeAccount())
        assert run(exchange.connect()) is False

    def test_disconnect(self):
        client = make_client()
        exchange = CcxtExchange("binance", client=client)
        run(exchange.connect())
        run(exchange.disconnect())
        client.close.assert_awaited_once()
        assert not exchange.is_connected()


class TestMarketData:

    def test_fetch_order_book(self):
        client = make_client()
        exchange = CcxtExchange("binance", client=client)
        book = run(exchange.fetch_order_book(BTC_USDT, depth=2))

        client.fetch_order_book.assert_awaited_once_with("BTC/USDT", 2)
        assert book.venue == "binance"
        assert book.pair == BTC_USDT
        assert book.best_bid == Decimal("30750.0")
        assert book.best_ask == Decimal("30760.0")
        assert len(book.bids) == 2
        assert book.observed_at is not None

    def test_fetch_order_book_error_is_none(self):
        client = make_client()
        client.fetch_order_book.side_effect = TimeoutError()
        assert run(CcxtExchange("binance", client=client).fetch_order_book(BTC_USDT)) is None

    def test_invalid_book_is_none(self):
        client = make_client()
        client.fetch_order_book.return_value = {"bids": [[-1, 1]], "asks": []}
        assert run(CcxtExchange("binance", client=client).fetch_order_book(BTC_USDT)) is None

    def test_watch_without_support_yields_nothing(self):
        exchange = CcxtExchange("binance", client=make_client())

        async def collect():
            return [book async for book in exchange.watch_order_book(BTC_USDT)]

        assert run(collect()) == []

    def test_watch_order_book_streams(self):
        client = make_client(watchOrderBook=True)
        client.watch_order_book = AsyncMock(side_effect=[
            {"bids": [[100.0, 1.0]], "asks": [[101.0, 1.0]]},
            {"bids": [[102.0, 1.0]], "asks": [[103.0, 1.0]]},
        ])
        exchange = CcxtExchange("kucoin", client=client)

        async def collect():
            stream = exchange.watch_order_book(BTC_USDT)
            books = [await stream.__anext__(), await stream.__anext__()]
            await stream.aclose()
            return books

        books = run(collect())
        assert [b.best_bid for b in books] == [Decimal("100.0"), Decimal("102.0")]

    def test_fetch_balances(self):
        balances = run(CcxtExchange("binance", client=make_client()).fetch_balances())
        assert set(balances) == {"USDT", "BTC"}
        assert balances["USDT"].available == Decimal("1000.0")
        assert balances["USDT"].on_order == Decimal("50.0")
        assert balances["USDT"].total == Decimal("1050.0")

    def test_fetch_balances_error_is_empty(self):
        client = make_client()
        client.fetch_balance.side_effect = PermissionError("bad key")
        assert run(CcxtExchange("binance", client=client).fetch_balances()) == {}


class TestOrders:

    def test_market_buy_with_cost(self):
        client = make_client()
        result = run(CcxtExchange("binance", client=client).market_buy(BTC_USDT, Decimal(100)))

        client.create_market_buy_order_with_cost.assert_awaited_once_with("BTC/USDT", 100.0)
        assert result.success
        assert result.executed_qty == Decimal("0.0033")
        assert result.avg_price == Decimal("30110.0")

    def test_market_buy_via_ticker(self):
        client = make_client(createMarketBuyOrderWithCost=False)
        result = run(CcxtExchange("kucoin", client=client).market_buy(BTC_USDT, Decimal(99)))

        client.create_market_order.assert_awaited_once_with("BTC/USDT", "buy", 0.0033)
        assert result.success
        # average derived from cost / filled
        assert result.avg_price == Decimal("30740")

    def test_market_buy_refetches_unfilled_order(self):
        client = make_client()
        client.create_market_buy_order_with_cost.return_value = {"id": "9", "filled": None}
        client.fetch_order.return_value = {"id": "9", "filled": 0.002, "average": 30000.0}
        result = run(CcxtExchange("binance", client=client).market_buy(BTC_USDT, Decimal(60)))

        client.fetch_order.assert_awaited_once_with("9", "BTC/USDT")
        assert result.executed_qty == Decimal("0.002")

    def test_accepted_buy_with_failed_refetch_is_unconfirmed(self):
        client = make_client()
        client.create_market_buy_order_with_cost.return_value = {"id": "42", "filled": None}
        client.fetch_order.side_effect = ConnectionError("timeout")
        result = run(CcxtExchange("binance", client=client).market_buy(BTC_USDT, Decimal(100)))

        assert not result.success
        assert result.fill_unknown
        assert result.order_id == "42"
        assert result.error == "timeout"

    def test_accepted_buy_without_fill_data_is_unconfirmed(self):
        client = make_client(fetchOrder=False)
        client.create_market_buy_order_with_cost.return_value = {"id": "43", "filled": None}
        result = run(CcxtExchange("binance", client=client).market_buy(BTC_USDT, Decimal(100)))

        client.fetch_order.assert_not_awaited()
        assert result.fill_unknown
        assert result.order_id == "43"

    def test_canceled_order_without_fill_is_plain_failure(self):
        client = make_client()
        client.create_market_order.return_value = {"id": "44", "filled": 0.0, "status": "canceled"}
        result = run(CcxtExchange("binance", client=client).market_sell(BTC_USDT, Decimal("0.0033")))

        assert not result.success
        assert not result.fill_unknown
        assert result.order_id == "44"

    def test_market_buy_error_is_failed_result(self):
        client = make_client()
        client.create_market_buy_order_with_cost.side_effect = RuntimeError("insufficient funds")
        result = run(CcxtExchange("binance", client=client).market_buy(BTC_USDT, Decimal(100)))
        assert not result.success
        assert not result.fill_unknown
        assert result.order_id is None
        assert "insufficient funds" in result.error

    def test_market_sell(self):
        client = make_client()
        result = run(CcxtExchange("binance", client=client).market_sell(BTC_USDT, Decimal("0.0033")))

        client.create_market_order.assert_awaited_once_with("BTC/USDT", "sell", 0.0033)
        assert result.success
        assert result.notional == Decimal("101.442")

    @pytest.mark.parametrize("method, amount", [("market_buy", Decimal(1)), ("market_sell", Decimal(1))])
    def test_orders_without_client(self, method, amount):
        result = run(getattr(CcxtExchange("binance"), method)(BTC_USDT, amount))
        assert not result.success
