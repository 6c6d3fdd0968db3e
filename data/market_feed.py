"""
market_feed.py - Polling Market Data Feed

Polls the exchange for the latest candles and ticker price and forwards
closed bars, strictly increasing in open_time, to a callback. The last
candle returned by the exchange is usually still forming and is held
back until its interval has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

from core.types import Bar, Symbol, Timeframe
from data.binance_client import BinanceClient


logger = logging.getLogger(__name__)

BarCallback = Callable[[Bar], None]
PriceCallback = Callable[[float], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


class MarketFeed:
    """
    Closed-bar and last-price poller for one symbol and timeframe.

    Usage:
        feed = MarketFeed(client, Symbol.parse("BTC/USDT"), Timeframe.M5)
        feed.on_bar = session.push_bar
        feed.on_price = session.update_price
        await feed.run()
    """

    def __init__(
        self,
        client: BinanceClient,
        symbol: Symbol,
        timeframe: Timeframe,
        poll_interval: float = 5.0,
        candles_per_poll: int = 5,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        Args:
            client: Exchange client used for candles and ticker
            symbol: Symbol to follow
            timeframe: Bar interval
            poll_interval: Seconds between polls
            candles_per_poll: Candles requested per poll
            clock: Returns the current time in epoch milliseconds
        """
        self.client = client
        self.symbol = symbol
        self.timeframe = timeframe
        self.poll_interval = float(poll_interval)
        self.candles_per_poll = int(candles_per_poll)
        self.clock = clock

        self.on_bar: Optional[BarCallback] = None
        self.on_price: Optional[PriceCallback] = None

        self.last_open_time: Optional[int] = None
        self.is_running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False

    def _closed(self, bars: List[Bar]) -> List[Bar]:
        now = self.clock()
        span = self.timeframe.milliseconds
        return [b for b in bars if b.open_time + span <= now]

    async def poll_once(self) -> int:
        """
        Fetch once and forward anything new.

        Returns:
            Number of bars forwarded
        """
        bars = await self.client.fetch_ohlcv(self.symbol, self.timeframe, self.candles_per_poll)
        forwarded = 0
        for bar in self._closed(bars):
            if self.last_open_time is not None and bar.open_time <= self.last_open_time:
                continue
            self.last_open_time = bar.open_time
            forwarded += 1
            if self.on_bar is not None:
                self.on_bar(bar)

        price = await self.client.fetch_last_price(self.symbol)
        if price > 0 and self.on_price is not None:
            self.on_price(price)

        if forwarded:
            logger.debug(f"{self.symbol} {self.timeframe.value}: forwarded {forwarded} closed bar(s)")
        return forwarded

    async def run(self) -> None:
        self._stop_event = asyncio.Event()
        self.is_running = not self._stop_requested
        logger.info(f"Market feed started: {self.symbol} {self.timeframe.value} every {self.poll_interval}s")
        try:
            while self.is_running:
                try:
                    await self.poll_once()
                except Exception as e:
                    logger.error(f"Market feed poll failed: {e}", exc_info=True)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.is_running = False
            self._stop_requested = False
            logger.info("Market feed stopped")

    def stop(self) -> None:
        """Stop polling; also honoured when called before run()."""
        self.is_running = False
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()
