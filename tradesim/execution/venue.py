"""
Order venues.

A venue is told about every open and close the engine books and may
return an opaque confirmation record, which is stored on the position
and on the resulting trade.  Accounting never depends on it: paper
trading simply returns nothing.

**Note**: `MT5Venue` requires the `MetaTrader5` package and a locally
installed MT5 terminal.  Offline backtests never touch it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..config.schema import MT5Config
from .models import Direction, ExitReason, Position

# Attempt to import MetaTrader5.  If unavailable, mt5 will be None.
try:
    import MetaTrader5 as mt5  # type: ignore
except ImportError:
    mt5 = None  # Will be checked at runtime


logger = logging.getLogger(__name__)


class Venue:
    """Interface for order placement side effects."""

    def open_position(self, position: Position) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def close_position(
        self,
        position: Position,
        quantity: float,
        price: float,
        reason: ExitReason,
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class PaperVenue(Venue):
    """Paper trading: nothing is sent anywhere."""

    def open_position(self, position: Position) -> Optional[Dict[str, Any]]:
        return None

    def close_position(self, position, quantity, price, reason) -> Optional[Dict[str, Any]]:
        return None


class MT5Venue(Venue):
    """Send market orders to a MetaTrader 5 terminal.

    The terminal connection is owned by `MT5DataFeed`; connect the feed
    before the first order.
    """

    def __init__(self, config: MT5Config, magic: int = 240601) -> None:
        self.config = config
        self.magic = magic

    def _send(self, symbol: str, side: Direction, volume: float, price: float, comment: str) -> Dict[str, Any]:
        if mt5 is None:
            raise RuntimeError(
                "MetaTrader5 package is not installed.  Install it with 'pip install MetaTrader5' to use live trading."
            )
        order_type = mt5.ORDER_TYPE_BUY if side is Direction.LONG else mt5.ORDER_TYPE_SELL
        request = {
            'action': mt5.TRADE_ACTION_DEAL,
            'symbol': symbol,
            'volume': float(volume),
            'type': order_type,
            'price': float(price),
            'deviation': self.config.deviation,
            'magic': self.magic,
            'comment': comment,
            'type_time': mt5.ORDER_TIME_GTC,
            'type_filling': mt5.ORDER_FILLING_IOC,
        }
        result = mt5.order_send(request)
        if result is None:
            raise RuntimeError(f"MT5 order_send failed: {mt5.last_error()}")
        if result.retcode != mt5.TRADE_RETCODE_DONE:
            raise RuntimeError(f"MT5 order rejected: retcode={result.retcode} comment={result.comment}")
        logger.info("MT5 order %s filled: %s %s %.6f", result.order, side.value, symbol, volume)
        return {
            'venue': 'mt5',
            'order': result.order,
            'deal': result.deal,
            'price': result.price,
            'volume': result.volume,
        }

    def open_position(self, position: Position) -> Optional[Dict[str, Any]]:
        return self._send(
            position.symbol,
            position.direction,
            position.quantity,
            position.entry_price,
            position.id,
        )

    def close_position(self, position, quantity, price, reason) -> Optional[Dict[str, Any]]:
        opposite = Direction.SHORT if position.direction is Direction.LONG else Direction.LONG
        return self._send(position.symbol, opposite, quantity, price, f"{position.id} {reason.value}")
