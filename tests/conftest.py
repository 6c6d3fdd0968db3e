"""
Pytest configuration file.
Adds project root to Python path to allow imports from main package,
and provides small bar and exchange fixtures shared by the test modules.
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

# Add project root to sys.path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from core.types import Bar, ModuleResult, Signal, Symbol, Timeframe  # noqa: E402
from execution.exchange import (  # noqa: E402
    MarketResult,
    OcoResult,
    OrderInfo,
    SpotExchange,
)
from strategies.base import IndicatorModule  # noqa: E402


STEP_MS = 300_000


def make_bars(closes: Sequence[float], start: int = 1_700_000_000_000, step: int = STEP_MS) -> List[Bar]:
    """Bars whose open/high/low all sit at the close."""
    return [
        Bar(open_time=start + i * step, open=c, high=c, low=c, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


def random_walk(n: int, seed: int = 7, start: float = 100.0) -> List[float]:
    rng = np.random.default_rng(seed)
    steps = rng.normal(0.0, 0.8, size=n)
    return list(np.maximum(1.0, start + np.cumsum(steps)))


class ScriptedModule(IndicatorModule):
    """Returns a scripted score per bar; the last score repeats."""

    def __init__(self, scores: Sequence[float], module_id: str = "STUB"):
        self.scores = list(scores)
        self.module_id = module_id
        self.calls = 0

    def id(self) -> str:
        return self.module_id

    def warmup_bars(self) -> int:
        return 0

    def reset(self) -> None:
        self.calls = 0

    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> ModuleResult:
        score = self.scores[min(self.calls, len(self.scores) - 1)]
        self.calls += 1
        return ModuleResult(score=score, signal=Signal.NEUTRAL)


class FakeExchange(SpotExchange):
    """
    In-memory SpotExchange.

    Market orders fill immediately at `price`; `orders` holds what
    get_order reports and tests mutate it to simulate fills.
    """

    def __init__(self, price: float = 100.0):
        self.price = price
        self.orders: Dict[str, OrderInfo] = {}
        self.calls: List[tuple] = []
        self._next_id = 10
        self.oco_ids = ["21", "22"]

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    async def market_buy(self, symbol, quote_amount):
        self.calls.append(("buy", quote_amount))
        return MarketResult(order_id=self._new_id(), filled_base=quote_amount / self.price)

    async def market_sell(self, symbol, quote_amount):
        self.calls.append(("sell", quote_amount))
        return MarketResult(order_id=self._new_id(), filled_base=quote_amount / self.price)

    async def oco_sell_bracket(self, symbol, qty, take_profit, stop_price, stop_limit_price):
        self.calls.append(("oco", qty, take_profit, stop_price, stop_limit_price))
        return OcoResult(order_ids=list(self.oco_ids))

    async def open_orders(self, symbol):
        return [o for o in self.orders.values() if not o.status.is_terminal]

    async def get_order(self, symbol, order_id) -> Optional[OrderInfo]:
        return self.orders.get(str(order_id))

    async def cancel_order(self, symbol, order_id):
        self.calls.append(("cancel", order_id))
        return True

    async def cancel_all_open_orders(self, symbol):
        self.calls.append(("cancel_all",))
        return True


@pytest.fixture
def symbol() -> Symbol:
    return Symbol("BTC", "USDT")


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange()
