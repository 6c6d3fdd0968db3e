"""
base.py - Abstract Base Class for Indicator Modules

Defines the contract every indicator module implements. A module keeps a
rolling window of its own history, scores each new bar in [0, 100] and
suggests a direction. Modules never trade and never raise on data: while
warming up they return a neutral result.

Modules are not safe for concurrent mutation. One pipeline (a backtest
run or the live session) owns a module and feeds it bars in
non-decreasing open_time order; out-of-order bars are not detected.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque

import pandas as pd

from core.types import Bar, ModuleResult, Signal, Symbol, Timeframe


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Closes retained per module
MAX_HISTORY = 2000


class IndicatorModule(ABC):
    """
    Abstract base class for all indicator modules.

    Capability set: id(), warmup_bars(), reset(), on_bar().
    """

    @abstractmethod
    def id(self) -> str:
        """Stable identifier used as the aggregation key (e.g. 'RSI')."""

    @abstractmethod
    def warmup_bars(self) -> int:
        """Minimum observations before the score is meaningful."""

    @abstractmethod
    def reset(self) -> None:
        """Clear all rolling state."""

    @abstractmethod
    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> ModuleResult:
        """
        Consume one new closed bar and score it.

        Must be called exactly once per bar, in time order.

        Args:
            symbol: Instrument the bar belongs to
            timeframe: Bar interval
            bar: The new bar

        Returns:
            ModuleResult for this bar
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id()}, warmup={self.warmup_bars()})"


class CloseHistoryModule(IndicatorModule):
    """Indicator module over a capped history of close prices."""

    def __init__(self, max_history: int = MAX_HISTORY):
        self._closes: Deque[float] = deque(maxlen=max_history)

    def reset(self) -> None:
        self._closes.clear()

    def _push_close(self, close: float) -> None:
        self._closes.append(float(close))

    def _ready(self) -> bool:
        return len(self._closes) >= self.warmup_bars()

    def _series(self) -> pd.Series:
        return pd.Series(self._closes, dtype=float)

    def _neutral(self) -> ModuleResult:
        return ModuleResult.neutral(self.warmup_bars())


def cross_result(ema_fast: float, ema_slow: float, warmup_bars: int) -> ModuleResult:
    """
    Score a fast/slow average cross.

    The relative gap between the averages is scaled so that a 1% gap moves
    the score 50 points away from neutral.
    """
    diff = ema_fast - ema_slow
    norm = diff / ema_slow if abs(ema_slow) > 1e-12 else 0.0
    score = 50.0 + norm * 5000.0
    if diff > 0:
        signal = Signal.LONG
    elif diff < 0:
        signal = Signal.SHORT
    else:
        signal = Signal.NEUTRAL
    return ModuleResult(score=score, signal=signal, warmup_bars=warmup_bars)
