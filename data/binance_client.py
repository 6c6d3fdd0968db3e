"""
Binance Spot Client
-------------------
Async ccxt client for Binance spot (testnet/live) implementing the
SpotExchange contract, plus the candle and ticker fetches used by the
market feed.

Error policy: every ccxt error is caught here, logged, and turned into an
empty result (empty order id, zero fill, empty list, None, False). Nothing
above this layer has to handle exchange exceptions.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import ccxt.async_support as ccxt

from core.types import Bar, Symbol, Timeframe
from data.candles import bars_from_ohlcv
from execution.exchange import (
    MarketResult,
    OcoResult,
    OrderInfo,
    OrderStatus,
    SpotExchange,
)

logger = logging.getLogger(__name__)


def _to_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _dump(payload: Any) -> str:
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return str(payload)


def order_info_from_ccxt(order: Dict[str, Any]) -> OrderInfo:
    """Convert a ccxt unified order into OrderInfo, preferring Binance raw fields."""
    raw = order.get('info') or {}
    status = OrderStatus.from_exchange(raw.get('status') or order.get('status'))
    return OrderInfo(
        order_id=str(order.get('id') or raw.get('orderId') or ""),
        symbol=str(raw.get('symbol') or order.get('symbol') or ""),
        side=str(raw.get('side') or order.get('side') or "").upper(),
        type=str(raw.get('type') or order.get('type') or "").upper(),
        status=status,
        price=_to_float(order.get('price') or raw.get('price')),
        orig_qty=_to_float(order.get('amount') or raw.get('origQty')),
        executed_qty=_to_float(order.get('filled') if order.get('filled') is not None else raw.get('executedQty')),
    )


class BinanceClient(SpotExchange):
    """
    Async Binance spot client.

    Features:
    - Market orders sized by quote amount (quoteOrderQty)
    - OCO take-profit / stop-loss sell brackets
    - Order status, open orders and cancellation
    - OHLCV and ticker fetches
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        testnet: bool = True,
        exchange: Optional[Any] = None,
    ):
        """
        Initialize Binance client.

        Args:
            api_key: Binance API key
            secret_key: Binance secret key
            testnet: Use the spot testnet sandbox if True
            exchange: Pre-built ccxt exchange instance (tests)
        """
        self.testnet = testnet
        self.exchange = exchange or ccxt.binance({
            'apiKey': api_key,
            'secret': secret_key,
            'enableRateLimit': True,
            'options': {'defaultType': 'spot'},
        })
        if testnet and exchange is None:
            self.exchange.set_sandbox_mode(True)
        self._initialized = exchange is not None

        logger.info(f"BinanceClient created: testnet={testnet}")

    async def initialize(self) -> None:
        """Load markets. Raises on failure so startup problems are visible."""
        if self._initialized:
            return
        try:
            await self.exchange.load_markets()
            self._initialized = True
            logger.info("✓ Binance client initialized successfully")
        except ccxt.BaseError as e:
            logger.error(f"✗ Failed to initialize Binance client: {e}")
            raise

    async def close(self) -> None:
        """Close the exchange connection."""
        await self.exchange.close()
        self._initialized = False
        logger.info("Binance client connection closed")

    # Market data

    async def fetch_ohlcv(self, symbol: Symbol, timeframe: Timeframe, limit: int = 5) -> List[Bar]:
        """Most recent candles, oldest first (the last one may still be open)."""
        try:
            raw = await self.exchange.fetch_ohlcv(symbol.pair, timeframe=timeframe.value, limit=limit)
        except ccxt.BaseError as e:
            logger.warning(f"Error fetching {symbol} {timeframe.value} candles: {e}")
            return []
        return bars_from_ohlcv(raw or [])

    async def fetch_last_price(self, symbol: Symbol) -> float:
        """Last traded price, 0.0 when unavailable."""
        try:
            ticker = await self.exchange.fetch_ticker(symbol.pair)
        except ccxt.BaseError as e:
            logger.warning(f"Error fetching {symbol} ticker: {e}")
            return 0.0
        return _to_float(ticker.get('last'))

    # Trading

    async def _market_order(self, symbol: Symbol, side: str, quote_amount: float) -> MarketResult:
        if quote_amount <= 0:
            return MarketResult(msg="quote amount must be > 0")
        try:
            order = await self.exchange.create_order(
                symbol.pair,
                'market',
                side,
                None,
                None,
                {'quoteOrderQty': self.exchange.cost_to_precision(symbol.pair, quote_amount)},
            )
        except ccxt.InsufficientFunds as e:
            logger.error(f"✗ Insufficient funds for {side} {symbol}: {e}")
            return MarketResult(msg=str(e))
        except ccxt.InvalidOrder as e:
            logger.error(f"✗ Invalid {side} order for {symbol}: {e}")
            return MarketResult(msg=str(e))
        except ccxt.BaseError as e:
            logger.error(f"✗ Exchange error placing {side} order for {symbol}: {e}")
            return MarketResult(msg=str(e))

        info = order_info_from_ccxt(order)
        logger.info(
            f"✓ Market {side.upper()} {symbol} quote={quote_amount:.2f} "
            f"filled={info.executed_qty} (ID: {info.order_id})"
        )
        return MarketResult(order_id=info.order_id, filled_base=info.executed_qty, msg=_dump(order.get('info')))

    async def market_buy(self, symbol: Symbol, quote_amount: float) -> MarketResult:
        return await self._market_order(symbol, 'buy', quote_amount)

    async def market_sell(self, symbol: Symbol, quote_amount: float) -> MarketResult:
        return await self._market_order(symbol, 'sell', quote_amount)

    async def oco_sell_bracket(
        self,
        symbol: Symbol,
        qty: float,
        take_profit: float,
        stop_price: float,
        stop_limit_price: float,
    ) -> OcoResult:
        """Place an OCO sell through Binance's order/oco endpoint."""
        pair = symbol.pair
        try:
            response = await self.exchange.private_post_order_oco({
                'symbol': symbol.name,
                'side': 'SELL',
                'quantity': self.exchange.amount_to_precision(pair, qty),
                'price': self.exchange.price_to_precision(pair, take_profit),
                'stopPrice': self.exchange.price_to_precision(pair, stop_price),
                'stopLimitPrice': self.exchange.price_to_precision(pair, stop_limit_price),
                'stopLimitTimeInForce': 'GTC',
            })
        except ccxt.BaseError as e:
            logger.error(f"✗ OCO bracket failed for {symbol}: {e}")
            return OcoResult(msg=str(e))

        order_ids = [str(o['orderId']) for o in (response.get('orders') or []) if 'orderId' in o]
        logger.info(f"✓ OCO bracket {symbol} qty={qty} tp={take_profit} sl={stop_price} ids={order_ids}")
        return OcoResult(order_ids=order_ids, msg=_dump(response))

    async def open_orders(self, symbol: Symbol) -> List[OrderInfo]:
        try:
            orders = await self.exchange.fetch_open_orders(symbol.pair)
        except ccxt.BaseError as e:
            logger.warning(f"Error fetching open orders for {symbol}: {e}")
            return []
        return [order_info_from_ccxt(o) for o in orders]

    async def get_order(self, symbol: Symbol, order_id: str) -> Optional[OrderInfo]:
        try:
            order = await self.exchange.fetch_order(str(order_id), symbol.pair)
        except ccxt.OrderNotFound:
            logger.debug(f"Order {order_id} not found")
            return None
        except ccxt.BaseError as e:
            logger.warning(f"Error fetching order {order_id}: {e}")
            return None
        return order_info_from_ccxt(order)

    async def cancel_order(self, symbol: Symbol, order_id: str) -> bool:
        try:
            await self.exchange.cancel_order(str(order_id), symbol.pair)
        except ccxt.BaseError as e:
            logger.warning(f"Cancel of order {order_id} failed: {e}")
            return False
        logger.info(f"Order {order_id} canceled")
        return True

    async def cancel_all_open_orders(self, symbol: Symbol) -> bool:
        """Cancel everything open; having nothing to cancel counts as success."""
        try:
            await self.exchange.cancel_all_orders(symbol.pair)
        except ccxt.OrderNotFound:
            return True
        except ccxt.BaseError as e:
            logger.warning(f"Cancel-all for {symbol} failed: {e}")
            return False
        logger.info(f"All open orders canceled for {symbol}")
        return True

    def __repr__(self) -> str:
        return f"BinanceClient(testnet={self.testnet}, initialized={self._initialized})"
