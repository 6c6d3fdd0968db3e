"""
ema_cross.py - Fast/Slow EMA Cross Module

Scores the relative gap between a short and a long exponential moving
average of closing prices. Above 50 the short average leads (uptrend),
below 50 it lags (downtrend).
"""

from __future__ import annotations

from core.types import Bar, ModuleResult, Symbol, Timeframe
from data.candles import Indicators
from strategies.base import CloseHistoryModule, cross_result


class EmaCrossModule(CloseHistoryModule):
    """
    Fast/slow exponential moving average cross.

    Args:
        short_period: Fast EMA period (default 20)
        long_period: Slow EMA period (default 50)
    """

    def __init__(self, short_period: int = 20, long_period: int = 50):
        if short_period <= 0 or long_period <= 0:
            raise ValueError("EMA periods must be > 0")
        super().__init__()
        self.short_period = int(short_period)
        self.long_period = int(long_period)

    def id(self) -> str:
        return "SMA_EMA"

    def warmup_bars(self) -> int:
        return max(self.short_period, self.long_period) + 5

    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> ModuleResult:
        self._push_close(bar.close)
        if not self._ready():
            return self._neutral()

        closes = self._series()
        ema_short = float(Indicators.ema(closes, self.short_period).iloc[-1])
        ema_long = float(Indicators.ema(closes, self.long_period).iloc[-1])
        return cross_result(ema_short, ema_long, self.warmup_bars())
