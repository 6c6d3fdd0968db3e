"""
position_tracker.py - Net Position Bookkeeping

Per-symbol net base quantity and average entry price, fed by fills from
the order reconciliation loop and the user-data stream. Both sources may
call in concurrently, so every operation holds the tracker lock.

Realized P&L is not computed here; callers that need it read the average
entry before applying a sell.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict


logger = logging.getLogger(__name__)

# Quantities at or below this are treated as flat
QTY_EPSILON = 1e-12


@dataclass
class NetPosition:
    """
    Net holding in one symbol.

    Attributes:
        base_qty: Base asset quantity (never negative)
        avg_entry: Weighted average entry price (0 when flat)
    """
    base_qty: float = 0.0
    avg_entry: float = 0.0

    @property
    def is_flat(self) -> bool:
        return self.base_qty <= QTY_EPSILON

    def to_dict(self) -> Dict[str, float]:
        return {'base_qty': self.base_qty, 'avg_entry': self.avg_entry}


class PositionTracker:
    """Thread-safe map of symbol name -> NetPosition."""

    def __init__(self):
        self._positions: Dict[str, NetPosition] = {}
        self._lock = threading.Lock()

    def on_fill_buy(self, symbol: str, qty: float, price: float) -> None:
        """
        Apply a buy fill; recomputes the average entry.

        Args:
            symbol: Symbol name (e.g. 'BTCUSDT')
            qty: Filled base quantity
            price: Fill price
        """
        with self._lock:
            pos = self._positions.setdefault(symbol, NetPosition())
            new_qty = pos.base_qty + qty
            if new_qty <= 0:
                pos.base_qty = 0.0
                pos.avg_entry = 0.0
                return
            pos.avg_entry = (pos.base_qty * pos.avg_entry + qty * price) / new_qty
            pos.base_qty = new_qty
        logger.debug(f"BUY fill {symbol}: +{qty} @ {price}")

    def on_fill_sell(self, symbol: str, qty: float, price: float) -> None:
        """
        Apply a sell fill. Average entry is left unchanged unless the
        position goes flat. Sells for a symbol never bought are ignored.
        """
        with self._lock:
            pos = self._positions.get(symbol)
            if pos is None:
                logger.debug(f"SELL fill for untracked {symbol} ignored")
                return
            pos.base_qty -= qty
            if pos.base_qty <= QTY_EPSILON:
                pos.base_qty = 0.0
                pos.avg_entry = 0.0
        logger.debug(f"SELL fill {symbol}: -{qty} @ {price}")

    def get(self, symbol: str) -> NetPosition:
        """Copy of the position, or a zero position if never seen."""
        with self._lock:
            pos = self._positions.get(symbol)
            return replace(pos) if pos is not None else NetPosition()

    def snapshot(self) -> Dict[str, NetPosition]:
        with self._lock:
            return {sym: replace(pos) for sym, pos in self._positions.items()}
