"""
order_reconciler.py - Order Status Polling and Fill Reconciliation

Polls every tracked order on a timer, turns increases in executed
quantity into fills, and drops orders once they reach a terminal status.
Does not place orders or make trading decisions.

Fill prices are approximated by the best currently known market price,
not the order's real average fill price.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from core.types import Symbol
from execution.exchange import OrderInfo, OrderSide, SpotExchange
from execution.position_tracker import PositionTracker
from monitoring import logger as event_log


logger = logging.getLogger(__name__)

# Untracked order ids whose applied quantity is remembered
SETTLED_HISTORY = 1000

# (symbol name, side, qty, price)
FillSink = Callable[[str, OrderSide, float, float], None]


@dataclass
class TrackedOrder:
    """
    Order followed by the reconciliation loop.

    Attributes:
        order_id: Exchange order id
        side: BUY or SELL
        last_executed_qty: Executed quantity already applied to the tracker
        missed_polls: Consecutive polls where the order could not be found
    """
    order_id: str
    side: OrderSide
    last_executed_qty: float = 0.0
    missed_polls: int = 0

    def to_dict(self) -> Dict:
        return {
            'order_id': self.order_id,
            'side': str(self.side),
            'last_executed_qty': self.last_executed_qty,
            'missed_polls': self.missed_polls,
        }


class OrderReconciler:
    """
    Timer-driven reconciliation of tracked orders against the exchange.

    Each poll is idempotent: polling the same exchange snapshot twice
    applies no further quantity.
    """

    def __init__(
        self,
        exchange: SpotExchange,
        symbol: Symbol,
        price_source: Callable[[], float],
        tracker: Optional[PositionTracker] = None,
        fill_sink: Optional[FillSink] = None,
        poll_interval: float = 2.0,
        max_missed_polls: int = 30,
    ):
        """
        Args:
            exchange: Spot exchange collaborator
            symbol: Symbol all tracked orders belong to
            price_source: Returns the best known market price (<= 0 if unknown)
            tracker: Position tracker fills are applied to when no sink is given
            fill_sink: Receives fills instead of the tracker
            poll_interval: Seconds between polls
            max_missed_polls: Consecutive misses before an order is dropped
        """
        if fill_sink is None and tracker is None:
            raise ValueError("Either a tracker or a fill_sink is required")
        self.exchange = exchange
        self.symbol = symbol
        self.price_source = price_source
        self.tracker = tracker
        self.fill_sink = fill_sink or self._apply_to_tracker
        self.poll_interval = float(poll_interval)
        self.max_missed_polls = int(max_missed_polls)

        self._orders: Dict[str, TrackedOrder] = {}
        # Executed quantity already applied for orders not (or no longer) tracked
        self._settled: "OrderedDict[str, float]" = OrderedDict()
        self.open_orders_cache: List[OrderInfo] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self.is_running = False

        logger.info(
            f"OrderReconciler initialized: symbol={symbol}, "
            f"poll_interval={poll_interval}s, max_missed_polls={max_missed_polls}"
        )

    def _apply_to_tracker(self, symbol: str, side: OrderSide, qty: float, price: float) -> None:
        if side == OrderSide.BUY:
            self.tracker.on_fill_buy(symbol, qty, price)
        else:
            self.tracker.on_fill_sell(symbol, qty, price)

    def track(self, order_id: str, side: OrderSide, executed_qty: float = 0.0) -> bool:
        """
        Start following an order.

        Args:
            order_id: Exchange order id (empty ids are ignored)
            side: Order side
            executed_qty: Quantity already applied by the caller

        Returns:
            True if the order was added
        """
        if not order_id or str(order_id) == "0":
            return False
        order_id = str(order_id)
        if order_id in self._orders:
            return False
        applied = max(float(executed_qty), self._settled.pop(order_id, 0.0))
        self._orders[order_id] = TrackedOrder(order_id, side, applied)
        logger.debug(f"Tracking order {order_id} ({side})")
        return True

    def track_fill(self, order_id: str, side: OrderSide, executed_qty: float) -> float:
        """
        Start following an order whose placement reply already reports
        `executed_qty`, and return the part of it nobody has applied yet.

        A stream report for the order may have been applied while the
        placement request was still in flight.
        """
        executed_qty = float(executed_qty)
        key = str(order_id or "")
        if not key or key == "0":
            return executed_qty

        tracked = self._orders.get(key)
        if tracked is not None:
            fresh = max(0.0, executed_qty - tracked.last_executed_qty)
            tracked.last_executed_qty = max(tracked.last_executed_qty, executed_qty)
            return fresh

        already = self._settled.get(key, 0.0)
        self.track(key, side, executed_qty)
        return max(0.0, executed_qty - already)

    def _remember(self, order_id: str, applied: float) -> None:
        self._settled[order_id] = applied
        self._settled.move_to_end(order_id)
        while len(self._settled) > SETTLED_HISTORY:
            self._settled.popitem(last=False)

    def untrack(self, order_id: str) -> None:
        tracked = self._orders.pop(str(order_id), None)
        if tracked is not None:
            self._remember(tracked.order_id, tracked.last_executed_qty)

    @property
    def tracked(self) -> List[TrackedOrder]:
        return list(self._orders.values())

    def claim_fill(self, order_id: str, last_qty: float, cumulative_qty: float = 0.0) -> float:
        """
        Account for a fill reported by another source (the user-data stream).

        The quantity already applied for the order, by polling, by the
        placement reply or by earlier stream reports, is subtracted. This
        holds for orders not tracked yet and for orders already dropped.

        Args:
            order_id: Order the fill belongs to
            last_qty: Quantity of the reported fill
            cumulative_qty: Executed total reported with the fill (0 if unknown)

        Returns:
            Quantity still to apply
        """
        key = str(order_id or "")
        tracked = self._orders.get(key)
        if tracked is None:
            if not key or key == "0":
                return float(last_qty)
            applied = self._settled.get(key, 0.0)
            if cumulative_qty > 0:
                self._remember(key, max(applied, cumulative_qty))
                return max(0.0, cumulative_qty - applied)
            self._remember(key, applied + last_qty)
            return float(last_qty)
        if cumulative_qty > 0:
            qty = max(0.0, cumulative_qty - tracked.last_executed_qty)
            tracked.last_executed_qty = max(tracked.last_executed_qty, cumulative_qty)
            return qty
        tracked.last_executed_qty += last_qty
        return float(last_qty)

    def _fill_price(self, info: OrderInfo) -> float:
        price = self.price_source()
        if price and price > 0:
            return float(price)
        return info.price

    async def poll_once(self) -> int:
        """
        Reconcile every tracked order once.

        Returns:
            Number of fills applied
        """
        self.open_orders_cache = await self.exchange.open_orders(self.symbol)

        fills = 0
        for order_id in list(self._orders):
            tracked = self._orders.get(order_id)
            if tracked is None:
                continue

            info = await self.exchange.get_order(self.symbol, order_id)
            if info is None:
                tracked.missed_polls += 1
                if tracked.missed_polls >= self.max_missed_polls:
                    logger.warning(f"Order {order_id} not found for {tracked.missed_polls} polls, dropping")
                    self.untrack(order_id)
                continue
            tracked.missed_polls = 0

            delta = max(0.0, info.executed_qty - tracked.last_executed_qty)
            if delta > 0:
                price = self._fill_price(info)
                self.fill_sink(self.symbol.name, tracked.side, delta, price)
                tracked.last_executed_qty = info.executed_qty
                fills += 1
                event_log.log_trade({
                    'source': 'poll',
                    'order_id': order_id,
                    'symbol': self.symbol.name,
                    'side': str(tracked.side),
                    'qty': delta,
                    'price': price,
                    'status': str(info.status),
                })

            if info.status.is_terminal:
                self.untrack(order_id)
                logger.info(f"Order {order_id} {info.status}, no longer tracked")

        return fills

    async def run(self) -> None:
        """
        Poll until stop() is called. A failing cycle is logged and retried.
        A stop() issued before run() makes it return without polling.
        """
        self._stop_event = asyncio.Event()
        self.is_running = not self._stop_requested
        logger.info("Order reconciliation started")
        try:
            while self.is_running:
                try:
                    await self.poll_once()
                except Exception as e:
                    logger.error(f"Reconciliation cycle failed: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            self._stop_requested = False
            logger.info("Order reconciliation stopped")

    def stop(self) -> None:
        """Stop scheduling polls; an in-flight poll is allowed to finish."""
        self.is_running = False
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()
