"""
Tests for the live session: order gating, brackets, fills and the bar pipeline.
"""

import asyncio
from datetime import date

import pytest

from core.config import LiveSettings
from core.types import Signal, Timeframe
from execution.exchange import ExecutionReport, MarketResult, OrderSide
from execution.live_session import STOP_LIMIT_OFFSET, LiveSession
from execution.position_tracker import PositionTracker
from risk.daily_loss_guard import RiskManager
from strategies.signal_aggregator import SignalAggregator

from conftest import FakeExchange, ScriptedModule, make_bars


def build_session(exchange, symbol, scores=(50.0,), **settings):
    settings.setdefault('poll_interval', 0.01)
    aggregator = SignalAggregator([ScriptedModule(list(scores))], {"STUB": 1.0})
    return LiveSession(
        exchange=exchange,
        aggregator=aggregator,
        tracker=PositionTracker(),
        risk=RiskManager(max_daily_loss_pct=2.0, today=lambda: date(2024, 1, 1)),
        symbol=symbol,
        timeframe=Timeframe.M5,
        settings=LiveSettings(**settings),
        capital_base=1_000.0,
    )


class TestOrders:

    @pytest.mark.asyncio
    async def test_market_buy_updates_position_and_attaches_bracket(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, order_quote=100.0)
        session.update_price(100.0)

        result = await session.market_buy()

        assert result.ok
        assert session.position.base_qty == pytest.approx(1.0)
        assert session.position.avg_entry == pytest.approx(100.0)

        oco = [c for c in fake_exchange.calls if c[0] == "oco"][0]
        _, qty, take_profit, stop_price, stop_limit = oco
        assert qty == pytest.approx(1.0)
        assert take_profit == pytest.approx(102.0)
        assert stop_price == pytest.approx(98.5)
        assert stop_limit == pytest.approx(98.5 * STOP_LIMIT_OFFSET)
        assert sorted(t.order_id for t in session.reconciler.tracked) == sorted([result.order_id, "21", "22"])

    @pytest.mark.asyncio
    async def test_bracket_disabled(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, attach_bracket=False)
        session.update_price(100.0)
        await session.market_buy(50.0)
        assert [c[0] for c in fake_exchange.calls] == ["buy"]

    @pytest.mark.asyncio
    async def test_risk_gate_blocks_every_order(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.update_price(100.0)
        session.risk.add_loss_pct(2.5)

        result = await session.market_buy()
        assert not result.ok
        assert (await session.market_sell()).ok is False
        assert fake_exchange.calls == []

        session.reset_risk_day()
        assert (await session.market_buy()).ok

    @pytest.mark.asyncio
    async def test_close_position_sells_whole_holding(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, attach_bracket=False)
        session.update_price(100.0)
        await session.market_buy(250.0)

        await session.close_position()

        assert fake_exchange.calls[-1] == ("sell", pytest.approx(250.0))
        assert session.position.is_flat

    @pytest.mark.asyncio
    async def test_close_when_flat_is_noop(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.update_price(100.0)
        assert await session.close_position() is None
        assert fake_exchange.calls == []

    @pytest.mark.asyncio
    async def test_smart_close_cancels_first(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.update_price(100.0)
        await session.market_buy()

        await session.smart_close()

        names = [c[0] for c in fake_exchange.calls]
        assert names[-2:] == ["cancel_all", "sell"]
        assert session.position.is_flat


class TestFills:

    def test_losing_sell_reports_loss(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.apply_fill("BTCUSDT", OrderSide.BUY, 1.0, 100.0)
        session.apply_fill("BTCUSDT", OrderSide.SELL, 1.0, 90.0)
        # 10 quote lost on a 1000 capital base
        assert session.risk.state.daily_loss_accumulated_pct == pytest.approx(1.0)

    def test_winning_sell_reports_nothing(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.apply_fill("BTCUSDT", OrderSide.BUY, 1.0, 100.0)
        session.apply_fill("BTCUSDT", OrderSide.SELL, 1.0, 110.0)
        assert session.risk.state.daily_loss_accumulated_pct == 0.0

    @pytest.mark.asyncio
    async def test_stream_fill_of_immediate_order_is_deduplicated(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, attach_bracket=False)
        session.update_price(100.0)
        result = await session.market_buy(100.0)

        applied = session.handle_execution_report(ExecutionReport(
            symbol="BTCUSDT", side="BUY", last_exec_qty=1.0, last_exec_price=100.0,
            order_id=result.order_id, cumulative_qty=1.0,
        ))

        assert applied == 0.0
        assert session.position.base_qty == pytest.approx(1.0)

    def test_stream_fill_of_unknown_order_is_applied(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        applied = session.handle_execution_report(ExecutionReport(
            symbol="BTCUSDT", side="buy", last_exec_qty=0.5, last_exec_price=200.0, order_id="555",
        ))
        assert applied == pytest.approx(0.5)
        assert session.position.avg_entry == pytest.approx(200.0)


class TestPipeline:

    def test_full_bar_queue_drops(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, bar_queue_size=1)
        bars = make_bars([100.0, 101.0])
        assert session.push_bar(bars[0])
        assert not session.push_bar(bars[1])
        assert session.dropped_bars == 1

    @pytest.mark.asyncio
    async def test_decisions_only_without_auto_trade(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, scores=(90.0,), auto_trade=False)
        decision = await session.process_bar(make_bars([100.0])[0])
        assert decision.action == Signal.LONG
        assert fake_exchange.calls == []

    @pytest.mark.asyncio
    async def test_auto_trade_long_then_short(self, fake_exchange, symbol):
        session = build_session(
            fake_exchange, symbol, scores=(90.0, 90.0, 10.0), auto_trade=True, attach_bracket=False,
        )
        bars = make_bars([100.0, 100.0, 100.0])

        await session.process_bar(bars[0])
        assert not session.position.is_flat
        await session.process_bar(bars[1])
        assert [c[0] for c in fake_exchange.calls] == ["buy"]
        await session.process_bar(bars[2])
        assert [c[0] for c in fake_exchange.calls] == ["buy", "sell"]
        assert session.position.is_flat

    @pytest.mark.asyncio
    async def test_run_consumes_queues_until_stopped(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol, scores=(90.0,))
        session.push_bar(make_bars([100.0])[0])
        session.on_execution_report(ExecutionReport(
            symbol="BTCUSDT", side="BUY", last_exec_qty=0.5, last_exec_price=100.0, order_id="900",
        ))

        task = asyncio.create_task(session.run())
        await asyncio.sleep(0.1)
        session.stop()
        await asyncio.wait_for(task, timeout=5.0)

        assert session.last_decision is not None
        assert session.last_decision.action == Signal.LONG
        assert session.position.base_qty == pytest.approx(0.5)
        assert not session.is_running

class StreamFirstExchange(FakeExchange):
    """Reports the fill on the user-data stream before the REST reply returns."""

    def __init__(self, price: float = 100.0):
        super().__init__(price)
        self.session = None

    async def market_buy(self, symbol, quote_amount):
        self.calls.append(("buy", quote_amount))
        order_id = self._new_id()
        qty = quote_amount / self.price
        self.session.on_execution_report(ExecutionReport(
            symbol="BTCUSDT", side="BUY", last_exec_qty=qty, last_exec_price=self.price,
            order_id=order_id, cumulative_qty=qty,
        ))
        await asyncio.sleep(0.05)
        return MarketResult(order_id=order_id, filled_base=qty)


class TestFillRaces:

    @pytest.mark.asyncio
    async def test_stream_report_before_placement_reply(self, symbol):
        exchange = StreamFirstExchange()
        session = build_session(exchange, symbol, attach_bracket=False)
        exchange.session = session
        session.update_price(100.0)

        task = asyncio.create_task(session.run())
        await asyncio.sleep(0)
        await session.market_buy(100.0)
        session.stop()
        await asyncio.wait_for(task, timeout=5.0)

        assert session.position.base_qty == pytest.approx(1.0)

    def test_placement_reply_after_partial_stream_fill(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.handle_execution_report(ExecutionReport(
            symbol="BTCUSDT", side="BUY", last_exec_qty=0.4, last_exec_price=100.0,
            order_id="77", cumulative_qty=0.4,
        ))

        fresh = session.reconciler.track_fill("77", OrderSide.BUY, 1.0)

        assert fresh == pytest.approx(0.6)
        assert session.reconciler.tracked[0].last_executed_qty == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_stop_before_run_returns(self, fake_exchange, symbol):
        session = build_session(fake_exchange, symbol)
        session.stop()
        await asyncio.wait_for(session.run(), timeout=5.0)
        assert not session.is_running
