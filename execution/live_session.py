"""
live_session.py - Live Trading Session

Wires the decision pipeline to the exchange for one symbol:

- closed bars arrive on a bounded queue and are consumed by a single
  task that runs the signal aggregator (and, with auto trading enabled,
  submits orders);
- fills from the user-data stream arrive on a second queue, possibly
  from another thread;
- the order reconciler polls tracked orders on its own timer.

All three run on one event loop, so position and risk updates are
serialized without further locking here. Every order submission passes
the daily loss gate first; a closed gate silently skips the order.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from core.config import LiveSettings
from core.types import Bar, Signal, Symbol, Timeframe
from execution.exchange import (
    ExecutionReport,
    MarketResult,
    OcoResult,
    OrderSide,
    SpotExchange,
)
from execution.order_reconciler import OrderReconciler
from execution.position_tracker import NetPosition, PositionTracker
from monitoring import logger as event_log
from risk.daily_loss_guard import RiskManager
from strategies.signal_aggregator import Decision, SignalAggregator


logger = logging.getLogger(__name__)

# Stop-limit price sits just below the stop trigger
STOP_LIMIT_OFFSET = 0.999


class LiveSession:
    """
    Single-symbol live session.

    Usage:
        session = LiveSession(client, aggregator, tracker, risk, symbol, timeframe, settings)
        feed.on_bar = session.push_bar
        feed.on_price = session.update_price
        await session.run()
    """

    def __init__(
        self,
        exchange: SpotExchange,
        aggregator: SignalAggregator,
        tracker: PositionTracker,
        risk: RiskManager,
        symbol: Symbol,
        timeframe: Timeframe,
        settings: Optional[LiveSettings] = None,
        capital_base: float = 10_000.0,
    ):
        """
        Args:
            exchange: Spot exchange collaborator
            aggregator: Signal aggregator owned by this session
            tracker: Shared position tracker
            risk: Shared daily loss gate
            symbol: Traded symbol
            timeframe: Bar interval of the feed
            settings: Live parameters (defaults when None)
            capital_base: Quote amount realized losses are expressed against
        """
        self.exchange = exchange
        self.aggregator = aggregator
        self.tracker = tracker
        self.risk = risk
        self.symbol = symbol
        self.timeframe = timeframe
        self.settings = settings or LiveSettings()
        self.capital_base = float(capital_base)
        self.auto_trade = bool(self.settings.auto_trade)

        self.last_price = 0.0
        self.last_decision: Optional[Decision] = None
        self.dropped_bars = 0
        self.is_running = False
        self._stop_requested = False

        self._bar_queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.bar_queue_size)
        self._fill_queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: List[asyncio.Task] = []

        self.reconciler = OrderReconciler(
            exchange=exchange,
            symbol=symbol,
            price_source=lambda: self.last_price,
            fill_sink=self.apply_fill,
            poll_interval=self.settings.poll_interval,
            max_missed_polls=self.settings.max_missed_polls,
        )

        logger.info(
            f"LiveSession initialized: {symbol} {timeframe.value}, "
            f"auto_trade={self.auto_trade}, order_quote={self.settings.order_quote}"
        )

    # Inbound events

    def push_bar(self, bar: Bar) -> bool:
        """Queue a closed bar; drops it when the queue is full."""
        try:
            self._bar_queue.put_nowait(bar)
            return True
        except asyncio.QueueFull:
            self.dropped_bars += 1
            logger.warning(f"Bar queue full, dropping bar {bar.open_time} ({self.dropped_bars} dropped)")
            return False

    def update_price(self, price: float) -> None:
        if price > 0:
            self.last_price = float(price)

    def on_execution_report(self, report: ExecutionReport) -> None:
        """Queue a user-data fill. Safe to call from any thread."""
        loop = self._loop
        if loop is None:
            self._fill_queue.put_nowait(report)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._fill_queue.put_nowait(report)
        else:
            loop.call_soon_threadsafe(self._fill_queue.put_nowait, report)

    # Position bookkeeping

    @property
    def position(self) -> NetPosition:
        return self.tracker.get(self.symbol.name)

    def apply_fill(self, symbol: str, side: OrderSide, qty: float, price: float) -> None:
        """
        Apply a fill to the tracker.

        A sell below the average entry reports the realized loss, as a
        percentage of the capital base, to the risk manager.
        """
        if qty <= 0:
            return
        if side == OrderSide.BUY:
            self.tracker.on_fill_buy(symbol, qty, price)
            return

        before = self.tracker.get(symbol)
        self.tracker.on_fill_sell(symbol, qty, price)
        if before.base_qty > 0 and 0 < price < before.avg_entry:
            closed = min(qty, before.base_qty)
            loss_pct = (before.avg_entry - price) * closed / self.capital_base * 100.0
            self.risk.add_loss_pct(loss_pct)
            event_log.log_event("risk.loss", {
                'symbol': symbol,
                'qty': closed,
                'avg_entry': before.avg_entry,
                'price': price,
                'loss_pct': loss_pct,
            })

    def handle_execution_report(self, report: ExecutionReport) -> float:
        """
        Apply one user-data fill, deduplicated against the reconciler.

        Returns:
            Quantity applied
        """
        side = OrderSide.parse(report.side)
        qty = self.reconciler.claim_fill(report.order_id, float(report.last_exec_qty), report.cumulative_qty)
        if qty <= 0:
            return 0.0

        price = report.last_exec_price if report.last_exec_price > 0 else self.last_price
        self.apply_fill(report.symbol or self.symbol.name, side, qty, price)
        event_log.log_trade({
            'source': 'stream',
            'order_id': report.order_id,
            'symbol': report.symbol,
            'side': str(side),
            'qty': qty,
            'price': price,
        })
        return qty

    # Orders

    def _gate(self, action: str) -> bool:
        if self.risk.allow_trade():
            return True
        logger.info(f"Daily loss limit reached, {action} skipped")
        event_log.log_event("order.blocked", {'action': action, 'risk': self.risk.state.to_dict()})
        return False

    def _record_order(self, action: str, result: MarketResult, quote: float) -> None:
        event_log.log_event(f"order.{action}", {
            'symbol': self.symbol.name,
            'order_id': result.order_id,
            'quote': quote,
            'filled_base': result.filled_base,
            'price': self.last_price,
            'msg': result.msg,
        })

    async def _sell_quote(self, action: str, quote: float) -> MarketResult:
        result = await self.exchange.market_sell(self.symbol, quote)
        self._record_order(action, result, quote)
        fresh = self.reconciler.track_fill(result.order_id, OrderSide.SELL, result.filled_base)
        self.apply_fill(self.symbol.name, OrderSide.SELL, fresh, self.last_price)
        return result

    async def market_buy(self, quote: Optional[float] = None) -> MarketResult:
        """
        Market buy for `quote` (default order_quote), with an optional OCO
        take-profit / stop-loss bracket on the filled quantity.
        """
        quote = float(quote if quote is not None else self.settings.order_quote)
        if not self._gate("buy"):
            return MarketResult(msg="blocked by daily loss limit")

        result = await self.exchange.market_buy(self.symbol, quote)
        self._record_order("buy", result, quote)
        # The stream may already have applied part of this fill while the request was in flight
        fresh = self.reconciler.track_fill(result.order_id, OrderSide.BUY, result.filled_base)
        self.apply_fill(self.symbol.name, OrderSide.BUY, fresh, self.last_price)

        if self.settings.attach_bracket and result.filled_base > 0 and self.last_price > 0:
            await self.attach_bracket(result.filled_base, self.last_price)
        return result

    async def attach_bracket(self, qty: float, entry: float) -> OcoResult:
        take_profit = entry * (1.0 + self.settings.take_profit_pct / 100.0)
        stop_price = entry * (1.0 - self.settings.stop_loss_pct / 100.0)
        stop_limit = stop_price * STOP_LIMIT_OFFSET
        oco = await self.exchange.oco_sell_bracket(self.symbol, qty, take_profit, stop_price, stop_limit)
        event_log.log_event("order.oco", {
            'symbol': self.symbol.name,
            'qty': qty,
            'take_profit': take_profit,
            'stop_price': stop_price,
            'stop_limit': stop_limit,
            'order_ids': oco.order_ids,
            'msg': oco.msg,
        })
        for order_id in oco.order_ids:
            self.reconciler.track(order_id, OrderSide.SELL)
        return oco

    async def market_sell(self, quote: Optional[float] = None) -> MarketResult:
        quote = float(quote if quote is not None else self.settings.order_quote)
        if not self._gate("sell"):
            return MarketResult(msg="blocked by daily loss limit")
        return await self._sell_quote("sell", quote)

    async def close_position(self) -> Optional[MarketResult]:
        """Sell the whole net position at market; None when flat or blocked."""
        pos = self.position
        if pos.is_flat or self.last_price <= 0:
            return None
        if not self._gate("close"):
            return None
        return await self._sell_quote("close", pos.base_qty * self.last_price)

    async def smart_close(self) -> Optional[MarketResult]:
        """Cancel every open order (OCO legs included), then close the position."""
        cancelled = await self.exchange.cancel_all_open_orders(self.symbol)
        event_log.log_event("order.cancel_all", {'symbol': self.symbol.name, 'ok': cancelled})
        return await self.close_position()

    def reset_risk_day(self) -> None:
        self.risk.force_reset_day()

    def order_log(self, limit: int = 200) -> List[Dict]:
        """Newest-first order and fill events."""
        return event_log.get_manager().get_recent(limit)

    # Pipeline

    async def process_bar(self, bar: Bar) -> Decision:
        """Run one closed bar through the aggregator and act on it."""
        decision = self.aggregator.on_bar(self.symbol, self.timeframe, bar)
        self.last_decision = decision
        if self.last_price <= 0:
            self.last_price = bar.close

        logger.info(
            f"{self.symbol} bar {bar.open_time} close={bar.close:.2f} "
            f"score={decision.combined_score:.1f} action={decision.action}"
        )

        if self.auto_trade:
            flat = self.position.is_flat
            if decision.action == Signal.LONG and flat:
                await self.market_buy()
            elif decision.action == Signal.SHORT and not flat:
                await self.close_position()
        return decision

    async def _consume_bars(self) -> None:
        while self.is_running:
            try:
                bar = await asyncio.wait_for(self._bar_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self.process_bar(bar)
            except Exception as e:
                event_log.log_error("session.bar_failed", str(e), {'open_time': bar.open_time}, exc_info=True)

    async def _consume_fills(self) -> None:
        while self.is_running:
            try:
                report = await asyncio.wait_for(self._fill_queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                self.handle_execution_report(report)
            except Exception as e:
                event_log.log_error("session.fill_failed", str(e), exc_info=True)

    async def run(self) -> None:
        """Run consumers and the reconciler until stop() is called."""
        self._loop = asyncio.get_running_loop()
        self.is_running = not self._stop_requested
        event_log.log_event("session.start", {'symbol': self.symbol.name, 'timeframe': self.timeframe.value})
        self._tasks = [
            asyncio.create_task(self._consume_bars()),
            asyncio.create_task(self._consume_fills()),
            asyncio.create_task(self.reconciler.run()),
        ]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            self.is_running = False
            self._stop_requested = False
            event_log.log_event("session.stop", {
                'symbol': self.symbol.name,
                'position': self.position.to_dict(),
                'risk': self.risk.state.to_dict(),
            })

    def stop(self) -> None:
        """Stop consuming and polling; in-flight exchange calls are not aborted."""
        self.is_running = False
        self._stop_requested = True
        self.reconciler.stop()
