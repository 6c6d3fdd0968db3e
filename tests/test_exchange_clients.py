"""
Tests for the Binance spot client and the polling market feed, with the
ccxt exchange replaced by mocks.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt
import pytest

from core.types import Timeframe
from data.binance_client import BinanceClient, order_info_from_ccxt
from data.market_feed import MarketFeed
from execution.exchange import OrderStatus

from conftest import make_bars


@pytest.fixture
def ccxt_exchange():
    exchange = MagicMock()
    exchange.cost_to_precision = MagicMock(side_effect=lambda pair, v: f"{v:.2f}")
    exchange.amount_to_precision = MagicMock(side_effect=lambda pair, v: f"{v:.5f}")
    exchange.price_to_precision = MagicMock(side_effect=lambda pair, v: f"{v:.2f}")
    exchange.close = AsyncMock()
    return exchange


@pytest.fixture
def client(ccxt_exchange):
    return BinanceClient(exchange=ccxt_exchange)


class TestOrderStatus:

    @pytest.mark.parametrize("raw, expected", [
        ("NEW", OrderStatus.NEW),
        ("open", OrderStatus.NEW),
        ("closed", OrderStatus.FILLED),
        ("PARTIALLY_FILLED", OrderStatus.PARTIALLY_FILLED),
        ("canceled", OrderStatus.CANCELED),
        ("EXPIRED_IN_MATCH", OrderStatus.EXPIRED),
        ("weird", OrderStatus.UNKNOWN),
        (None, OrderStatus.UNKNOWN),
    ])
    def test_from_exchange(self, raw, expected):
        assert OrderStatus.from_exchange(raw) is expected

    def test_terminal(self):
        assert OrderStatus.FILLED.is_terminal
        assert not OrderStatus.PARTIALLY_FILLED.is_terminal

    def test_raw_binance_fields_preferred(self):
        info = order_info_from_ccxt({
            'id': '5', 'symbol': 'BTC/USDT', 'status': 'open', 'filled': 0.2, 'amount': 1.0, 'price': 100.0,
            'info': {'status': 'PARTIALLY_FILLED', 'symbol': 'BTCUSDT', 'side': 'BUY'},
        })
        assert info.order_id == '5'
        assert info.symbol == 'BTCUSDT'
        assert info.status is OrderStatus.PARTIALLY_FILLED
        assert info.executed_qty == pytest.approx(0.2)


class TestBinanceClient:

    @pytest.mark.asyncio
    async def test_market_buy_by_quote(self, client, ccxt_exchange, symbol):
        ccxt_exchange.create_order = AsyncMock(return_value={
            'id': '123', 'filled': 0.0015, 'status': 'closed', 'info': {'status': 'FILLED', 'orderId': 123},
        })

        result = await client.market_buy(symbol, 100.0)

        assert result.ok
        assert result.order_id == '123'
        assert result.filled_base == pytest.approx(0.0015)
        args = ccxt_exchange.create_order.await_args.args
        assert args[:3] == ('BTC/USDT', 'market', 'buy')
        assert args[5] == {'quoteOrderQty': '100.00'}

    @pytest.mark.asyncio
    async def test_exchange_errors_become_empty_results(self, client, ccxt_exchange, symbol):
        ccxt_exchange.create_order = AsyncMock(side_effect=ccxt.InsufficientFunds("no balance"))
        result = await client.market_sell(symbol, 100.0)
        assert not result.ok
        assert "no balance" in result.msg

        ccxt_exchange.fetch_open_orders = AsyncMock(side_effect=ccxt.NetworkError("down"))
        assert await client.open_orders(symbol) == []

        ccxt_exchange.cancel_order = AsyncMock(side_effect=ccxt.ExchangeError("nope"))
        assert await client.cancel_order(symbol, "1") is False

    @pytest.mark.asyncio
    async def test_non_positive_quote_is_rejected_locally(self, client, ccxt_exchange, symbol):
        ccxt_exchange.create_order = AsyncMock()
        result = await client.market_buy(symbol, 0.0)
        assert not result.ok
        ccxt_exchange.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oco_bracket(self, client, ccxt_exchange, symbol):
        ccxt_exchange.private_post_order_oco = AsyncMock(return_value={
            'orders': [{'orderId': 1}, {'orderId': 2}],
        })

        oco = await client.oco_sell_bracket(symbol, 0.01, 102.0, 98.5, 98.4)

        assert oco.order_ids == ['1', '2']
        params = ccxt_exchange.private_post_order_oco.await_args.args[0]
        assert params['symbol'] == 'BTCUSDT'
        assert params['side'] == 'SELL'
        assert params['stopPrice'] == '98.50'

    @pytest.mark.asyncio
    async def test_get_order_not_found(self, client, ccxt_exchange, symbol):
        ccxt_exchange.fetch_order = AsyncMock(side_effect=ccxt.OrderNotFound("gone"))
        assert await client.get_order(symbol, "9") is None

    @pytest.mark.asyncio
    async def test_cancel_all_with_nothing_open(self, client, ccxt_exchange, symbol):
        ccxt_exchange.cancel_all_orders = AsyncMock(side_effect=ccxt.OrderNotFound("none"))
        assert await client.cancel_all_open_orders(symbol) is True

    @pytest.mark.asyncio
    async def test_fetch_ohlcv_and_price(self, client, ccxt_exchange, symbol):
        ccxt_exchange.fetch_ohlcv = AsyncMock(return_value=[[0, 1, 2, 0.5, 1.5, 10], [300000, 1.5, 2, 1, 1.8, 5]])
        ccxt_exchange.fetch_ticker = AsyncMock(return_value={'last': 1.8})

        bars = await client.fetch_ohlcv(symbol, Timeframe.M5, limit=2)

        assert [b.close for b in bars] == [1.5, 1.8]
        assert await client.fetch_last_price(symbol) == pytest.approx(1.8)
        ccxt_exchange.fetch_ohlcv.assert_awaited_with('BTC/USDT', timeframe='5m', limit=2)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestMarketFeed:

    @pytest.fixture
    def feed_client(self):
        client = MagicMock()
        client.fetch_ohlcv = AsyncMock(return_value=make_bars([100.0, 101.0, 102.0], start=0))
        client.fetch_last_price = AsyncMock(return_value=102.5)
        return client

    @pytest.mark.asyncio
    async def test_forwards_closed_bars_once(self, feed_client, symbol):
        clock = FakeClock(650_000)
        feed = MarketFeed(feed_client, symbol, Timeframe.M5, clock=clock)
        bars, prices = [], []
        feed.on_bar = bars.append
        feed.on_price = prices.append

        assert await feed.poll_once() == 2
        assert [b.open_time for b in bars] == [0, 300_000]
        assert prices == [102.5]

        assert await feed.poll_once() == 0

        clock.now = 900_000
        assert await feed.poll_once() == 1
        assert bars[-1].open_time == 600_000

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, feed_client, symbol):
        feed = MarketFeed(feed_client, symbol, Timeframe.M5, poll_interval=0.01, clock=FakeClock(10_000_000))
        received = []
        feed.on_bar = received.append

        async def stop_after_first(*args, **kwargs):
            feed.stop()
            return make_bars([100.0], start=0)

        feed_client.fetch_ohlcv = AsyncMock(side_effect=stop_after_first)
        await feed.run()

        assert len(received) == 1
        assert not feed.is_running

    @pytest.mark.asyncio
    async def test_stop_before_run(self, feed_client, symbol):
        feed = MarketFeed(feed_client, symbol, Timeframe.M5, poll_interval=0.01)
        feed.stop()
        await asyncio.wait_for(feed.run(), timeout=5.0)
        feed_client.fetch_ohlcv.assert_not_awaited()
