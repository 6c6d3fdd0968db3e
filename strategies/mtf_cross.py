"""
mtf_cross.py - Multi-Timeframe EMA Cross Module

Builds a higher-timeframe close series out of the incoming bars and runs
the fast/slow EMA cross on it. Every `factor` received bars produce one
synthetic close (e.g. factor 12 turns M5 bars into H1 closes).

The synthetic bar is only the close of the factor-th low-timeframe bar,
not a true OHLC rollup. Good enough for a trend filter, but the high and
low of the higher timeframe are never seen.
"""

from __future__ import annotations

from collections import deque
from typing import Deque

import pandas as pd

from core.types import Bar, ModuleResult, Symbol, Timeframe
from data.candles import Indicators
from strategies.base import IndicatorModule, cross_result


class MtfCrossModule(IndicatorModule):
    """
    Fast/slow EMA cross on synthetic higher-timeframe closes.

    Args:
        factor: Low-timeframe bars per synthetic bar (default 12, minimum 1)
        fast_period: Fast EMA period in synthetic bars (default 10)
        slow_period: Slow EMA period in synthetic bars (default 30)
    """

    def __init__(self, factor: int = 12, fast_period: int = 10, slow_period: int = 30):
        if fast_period <= 0 or slow_period <= 0:
            raise ValueError("EMA periods must be > 0")
        self.factor = max(1, int(factor))
        self.fast_period = int(fast_period)
        self.slow_period = int(slow_period)

        self._hi_closes: Deque[float] = deque(maxlen=self.slow_period + 50)
        # Bars received since the last synthetic close
        self._pending = 0

    def id(self) -> str:
        return "MTF_SMA"

    def warmup_bars(self) -> int:
        """Synthetic bars needed, not low-timeframe bars."""
        return max(self.fast_period, self.slow_period) + 3

    def reset(self) -> None:
        self._hi_closes.clear()
        self._pending = 0

    @property
    def synthetic_count(self) -> int:
        return len(self._hi_closes)

    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> ModuleResult:
        close = float(bar.close)
        self._pending += 1
        if self._pending >= self.factor:
            self._hi_closes.append(close)
            self._pending = 0

        if len(self._hi_closes) < self.warmup_bars():
            return ModuleResult.neutral(self.warmup_bars())

        closes = pd.Series(self._hi_closes, dtype=float)
        ema_fast = float(Indicators.ema(closes, self.fast_period).iloc[-1])
        ema_slow = float(Indicators.ema(closes, self.slow_period).iloc[-1])
        return cross_result(ema_fast, ema_slow, self.warmup_bars())
