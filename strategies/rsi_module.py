"""
rsi_module.py - RSI Extremes Module

Contrarian relative-strength scorer: overbought markets (RSI > 70) score
high with a SHORT suggestion, oversold markets (RSI < 30) score high with
a LONG suggestion, everything in between is neutral.
"""

from __future__ import annotations

from core.types import Bar, ModuleResult, Signal, Symbol, Timeframe
from data.candles import Indicators
from strategies.base import CloseHistoryModule


OVERBOUGHT = 70.0
OVERSOLD = 30.0


class RsiModule(CloseHistoryModule):
    """Relative strength index over the last `period` closes."""

    def __init__(self, period: int = 14):
        if period <= 0:
            raise ValueError("RSI period must be > 0")
        super().__init__()
        self.period = int(period)

    def id(self) -> str:
        return "RSI"

    def warmup_bars(self) -> int:
        return max(self.period + 1, 20)

    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> ModuleResult:
        self._push_close(bar.close)
        if not self._ready():
            return self._neutral()

        rsi = Indicators.rsi_last(self._series(), self.period)
        if rsi > OVERBOUGHT:
            return ModuleResult(score=rsi, signal=Signal.SHORT, warmup_bars=self.warmup_bars())
        if rsi < OVERSOLD:
            return ModuleResult(score=100.0 - rsi, signal=Signal.LONG, warmup_bars=self.warmup_bars())
        return ModuleResult(score=50.0, signal=Signal.NEUTRAL, warmup_bars=self.warmup_bars())
