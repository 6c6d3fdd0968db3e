"""
bollinger.py - Bollinger Band Position Module

Locates the last close inside the Bollinger band. The score measures how
far the close sits from the middle of the band; the signal fades the
extremes (upper 30% -> SHORT, lower 30% -> LONG).
"""

from __future__ import annotations

from core.types import Bar, ModuleResult, Signal, Symbol, Timeframe, clamp
from data.candles import Indicators
from strategies.base import CloseHistoryModule


class BollingerModule(CloseHistoryModule):
    """
    Band position scorer.

    Args:
        period: Rolling window for mean and standard deviation (default 20)
        k: Band width in standard deviations (default 2.0)
    """

    def __init__(self, period: int = 20, k: float = 2.0):
        if period <= 0:
            raise ValueError("Bollinger period must be > 0")
        super().__init__()
        self.period = int(period)
        self.k = float(k)

    def id(self) -> str:
        return "BOLL"

    def warmup_bars(self) -> int:
        return self.period + 5

    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> ModuleResult:
        self._push_close(bar.close)
        if not self._ready():
            return self._neutral()

        _, upper, lower = Indicators.bollinger_last(self._series(), self.period, self.k)
        close = self._closes[-1]
        if upper == lower:
            pos = 0.5
        else:
            pos = clamp((close - lower) / (upper - lower), 0.0, 1.0)

        score = pos * 100.0 if pos > 0.5 else (1.0 - pos) * 100.0
        if pos > 0.7:
            signal = Signal.SHORT
        elif pos < 0.3:
            signal = Signal.LONG
        else:
            signal = Signal.NEUTRAL
        return ModuleResult(score=score, signal=signal, warmup_bars=self.warmup_bars())
