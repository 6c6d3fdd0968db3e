"""
types.py - Shared Market and Signal Types

Plain data types passed between indicator modules, the decision engine,
the backtest engine and the live session. No behaviour beyond validation
and formatting lives here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Timeframe(Enum):
    """Bar interval, valued by its ccxt interval string."""
    M1 = "1m"
    M3 = "3m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @classmethod
    def parse(cls, text: str) -> "Timeframe":
        """Accept either the enum name ('M5') or the interval string ('5m')."""
        key = str(text).strip()
        for tf in cls:
            if key == tf.value or key.upper() == tf.name:
                return tf
        raise ValueError(f"Unknown timeframe: {text}")

    @property
    def milliseconds(self) -> int:
        units = {"m": 60_000, "h": 3_600_000, "d": 86_400_000}
        return int(self.value[:-1]) * units[self.value[-1]]


class Signal(Enum):
    """Directional trading signal."""
    LONG = "LONG"
    SHORT = "SHORT"
    NEUTRAL = "NEUTRAL"

    def __str__(self):
        return "WAIT" if self is Signal.NEUTRAL else self.value


@dataclass(frozen=True)
class Bar:
    """
    One OHLCV sample.

    Attributes:
        open_time: Bar open time in milliseconds since epoch
        open: Open price
        high: High price
        low: Low price
        close: Close price
        volume: Traded base volume
    """
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict:
        return {
            'open_time': self.open_time,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }


@dataclass(frozen=True)
class Symbol:
    """Spot trading pair."""
    base: str = "BTC"
    quote: str = "USDT"

    @property
    def name(self) -> str:
        """Exchange-native name, e.g. 'BTCUSDT'."""
        return self.base + self.quote

    @property
    def pair(self) -> str:
        """ccxt unified name, e.g. 'BTC/USDT'."""
        return f"{self.base}/{self.quote}"

    @classmethod
    def parse(cls, text: str) -> "Symbol":
        """
        Build a Symbol from 'BTC/USDT' or 'BTCUSDT'.

        The concatenated form assumes a four letter quote asset.
        """
        raw = str(text).strip().upper()
        if "/" in raw:
            base, quote = raw.split("/", 1)
            return cls(base=base, quote=quote)
        if len(raw) >= 6:
            return cls(base=raw[:-4], quote=raw[-4:])
        return cls(base=raw, quote="USDT")

    def __str__(self):
        return self.name


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


@dataclass
class ModuleResult:
    """
    Output of one indicator module for one bar.

    Attributes:
        score: Module score in [0, 100]; 50 is neutral
        signal: Directional suggestion of the module
        warmup_bars: Bars the module needs before its score is meaningful
    """
    score: float = 50.0
    signal: Signal = Signal.NEUTRAL
    warmup_bars: int = 0

    def __post_init__(self):
        self.score = clamp(float(self.score), 0.0, 100.0)

    @classmethod
    def neutral(cls, warmup_bars: int) -> "ModuleResult":
        """Safe default returned while a module is warming up."""
        return cls(score=50.0, signal=Signal.NEUTRAL, warmup_bars=warmup_bars)
