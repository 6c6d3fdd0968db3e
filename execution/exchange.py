"""
exchange.py - Spot Exchange Contract

Types exchanged with the trading venue and the abstract async interface
the live session and reconciliation loop depend on. Implementations
(see data/binance_client.py) absorb transport failures and return empty
or zero results instead of raising, so callers only ever see "nothing
happened".
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from core.types import Symbol


class OrderStatus(Enum):
    """Exchange order status."""
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.FILLED,
            OrderStatus.CANCELED,
            OrderStatus.REJECTED,
            OrderStatus.EXPIRED,
        )

    @classmethod
    def from_exchange(cls, raw: Optional[str]) -> "OrderStatus":
        """
        Map a raw Binance status or a ccxt unified status onto OrderStatus.

        ccxt only reports 'open' / 'closed' / 'canceled' / 'expired' /
        'rejected'; 'open' is reported as NEW.
        """
        if not raw:
            return cls.UNKNOWN
        key = str(raw).strip().upper()
        aliases = {
            "OPEN": cls.NEW,
            "CLOSED": cls.FILLED,
            "CANCELLED": cls.CANCELED,
            "PENDING_CANCEL": cls.CANCELED,
            "EXPIRED_IN_MATCH": cls.EXPIRED,
        }
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN

    def __str__(self):
        return self.value


class OrderSide(Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, raw: str) -> "OrderSide":
        return cls(str(raw).strip().upper())

    def __str__(self):
        return self.value


@dataclass
class OrderInfo:
    """Snapshot of one exchange order."""
    order_id: str
    symbol: str = ""
    side: str = ""
    type: str = ""
    status: OrderStatus = OrderStatus.UNKNOWN
    price: float = 0.0
    orig_qty: float = 0.0
    executed_qty: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'order_id': self.order_id,
            'symbol': self.symbol,
            'side': self.side,
            'type': self.type,
            'status': self.status.value,
            'price': self.price,
            'orig_qty': self.orig_qty,
            'executed_qty': self.executed_qty,
        }


@dataclass
class MarketResult:
    """
    Result of a market order.

    Attributes:
        order_id: Exchange order id ('' when the order was not placed)
        filled_base: Base quantity filled immediately
        msg: Raw response or error text
    """
    order_id: str = ""
    filled_base: float = 0.0
    msg: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.order_id)


@dataclass
class OcoResult:
    """Order ids of both legs of an OCO bracket (empty on failure)."""
    order_ids: List[str] = field(default_factory=list)
    msg: str = ""


@dataclass
class ExecutionReport:
    """
    Fill notification from the user-data stream.

    Attributes:
        symbol: Symbol name (e.g. 'BTCUSDT')
        side: 'BUY' or 'SELL'
        last_exec_qty: Quantity of this fill
        last_exec_price: Price of this fill
        order_id: Order the fill belongs to
        cumulative_qty: Total executed on the order so far (0 if unknown)
        status: Order status after this fill
    """
    symbol: str
    side: str
    last_exec_qty: float
    last_exec_price: float
    order_id: str = ""
    cumulative_qty: float = 0.0
    status: OrderStatus = OrderStatus.UNKNOWN


class SpotExchange(ABC):
    """
    Async spot trading collaborator.

    No method raises on transport or exchange errors; failures come back
    as empty ids, zero quantities, empty lists, None or False.
    """

    @abstractmethod
    async def market_buy(self, symbol: Symbol, quote_amount: float) -> MarketResult:
        """Market buy spending `quote_amount` of the quote asset."""

    @abstractmethod
    async def market_sell(self, symbol: Symbol, quote_amount: float) -> MarketResult:
        """Market sell worth `quote_amount` of the quote asset."""

    @abstractmethod
    async def oco_sell_bracket(
        self,
        symbol: Symbol,
        qty: float,
        take_profit: float,
        stop_price: float,
        stop_limit_price: float,
    ) -> OcoResult:
        """Take-profit / stop-loss sell pair where one fill cancels the other."""

    @abstractmethod
    async def open_orders(self, symbol: Symbol) -> List[OrderInfo]:
        """Currently open orders for the symbol."""

    @abstractmethod
    async def get_order(self, symbol: Symbol, order_id: str) -> Optional[OrderInfo]:
        """One order by id, None if it cannot be located."""

    @abstractmethod
    async def cancel_order(self, symbol: Symbol, order_id: str) -> bool:
        """Cancel one order; True when the exchange confirmed it."""

    @abstractmethod
    async def cancel_all_open_orders(self, symbol: Symbol) -> bool:
        """Cancel every open order for the symbol."""
