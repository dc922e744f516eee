"""
Trade lifecycle.

`TradeLifecycle` evaluates one open position against one bar and closes
it (fully or partially) when an exit condition is met.  Per bar:

1. trailing-stop update, so a trade can exit at its own new trail
   within the same bar (reported as a trail exit only on the bar the
   stop moved);
2. stop-loss, then take-profit levels.  When both the stop and a
   target lie inside the bar's range the stop is assumed to have been
   hit first: the intrabar path is unknown and this is the
   conservative choice;
3. time exit at the bar's close;
4. mark-to-market of whatever is left.

A closed position never reopens.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
import pandas as pd

from ..config.schema import CostsConfig, ExitConfig
from .ledger import PositionLedger
from .models import ClosedTrade, Direction, ExitReason, Position
from .venue import Venue


logger = logging.getLogger(__name__)

_DUST = 1e-12


class TradeLifecycle:
    """Decide whether and how an open position closes on a bar."""

    def __init__(
        self,
        exits: ExitConfig,
        costs: CostsConfig,
        ledger: PositionLedger,
        venue: Optional[Venue] = None,
    ) -> None:
        self.exits = exits
        self.costs = costs
        self.ledger = ledger
        self.venue = venue

    def _update_trailing_stop(self, position: Position, high: float, low: float) -> bool:
        """Tighten the stop behind the bar extreme; True if it moved."""
        activation = self.exits.trail_activation_pct
        distance = self.exits.trail_distance_pct
        entry = position.entry_price
        if position.direction is Direction.LONG:
            if (high - entry) / entry >= activation:
                new_stop = high * (1.0 - distance)
                if new_stop > position.stop_loss:
                    position.stop_loss = new_stop
                    position.trail_active = True
                    return True
        else:
            if (entry - low) / entry >= activation:
                new_stop = low * (1.0 + distance)
                if new_stop < position.stop_loss:
                    position.stop_loss = new_stop
                    position.trail_active = True
                    return True
        return False

    def exit_fill(self, position: Position, price: float) -> float:
        # Market exits fill against the position
        return price * (1.0 - self.costs.slippage_pct * position.direction.sign)

    def evaluate(self, position: Position, ts: pd.Timestamp, bar: pd.Series) -> List[ClosedTrade]:
        """Run one bar against `position` and return the trades it produced.

        Parameters
        ----------
        position : Position
            An open position from the ledger.
        ts : pandas.Timestamp
            Timestamp of the bar.
        bar : pandas.Series
            A row containing ``open``, ``high``, ``low`` and ``close``.
        """
        high = float(bar['high'])
        low = float(bar['low'])
        close = float(bar['close'])
        if ts > position.entry_time:
            position.bars_held += 1

        trailed = self.exits.trailing_stop and self._update_trailing_stop(position, high, low)

        trades: List[ClosedTrade] = []
        long = position.direction is Direction.LONG
        stop_hit = low <= position.stop_loss if long else high >= position.stop_loss
        if stop_hit:
            reason = ExitReason.CLOSED_TRAIL if trailed else ExitReason.CLOSED_STOP
            trades.append(self.close(position, self.exit_fill(position, position.stop_loss), ts, reason))
            return trades

        while position.take_profits:
            level = position.take_profits[0]
            if not (high >= level.price if long else low <= level.price):
                break
            position.take_profits.pop(0)
            if position.take_profits:
                quantity = min(position.original_quantity * level.ratio, position.quantity)
            else:
                quantity = position.quantity
            trade = self.close(position, level.price, ts, ExitReason.CLOSED_TARGET, quantity)
            trades.append(trade)
            if position.symbol not in self.ledger.portfolio.open_positions:
                return trades

        max_bars = self.exits.max_holding_bars
        if max_bars and position.bars_held >= max_bars:
            trades.append(self.close(position, self.exit_fill(position, close), ts, ExitReason.CLOSED_TIME))
            return trades

        position.mark(close)
        return trades

    def close(
        self,
        position: Position,
        exit_price: float,
        ts: pd.Timestamp,
        reason: ExitReason,
        quantity: Optional[float] = None,
        venue_confirmation: Optional[Dict[str, Any]] = None,
    ) -> ClosedTrade:
        """Close `quantity` (default: all) of `position` at `exit_price`."""
        if quantity is None or quantity >= position.quantity - _DUST:
            quantity = position.quantity
        remaining = position.quantity - quantity
        decimals = self.costs.money_decimals

        gross_pnl = round((exit_price - position.entry_price) * quantity * position.direction.sign, decimals)
        entry_fee = round(position.entry_fee * quantity / position.quantity, decimals)
        exit_fee = round(quantity * exit_price * self.costs.fee_rate, decimals)
        net_pnl = round(gross_pnl - entry_fee - exit_fee, decimals)

        if venue_confirmation is None and self.venue is not None:
            venue_confirmation = self.venue.close_position(position, quantity, exit_price, reason)

        # Watermarks include the exit itself
        position.mark(exit_price)
        share = quantity / position.quantity
        trade = ClosedTrade(
            id=position.id,
            symbol=position.symbol,
            direction=position.direction,
            entry_price=position.entry_price,
            exit_price=exit_price,
            quantity=quantity,
            initial_stop=position.initial_stop,
            stop_loss=position.stop_loss,
            entry_time=position.entry_time,
            exit_time=ts,
            entry_fee=entry_fee,
            exit_fee=exit_fee,
            gross_pnl=gross_pnl,
            net_pnl=net_pnl,
            exit_reason=reason,
            bars_held=position.bars_held,
            max_favorable_excursion=position.max_favorable_excursion * share,
            max_adverse_excursion=position.max_adverse_excursion * share,
            confidence=position.confidence,
            venue_confirmation=venue_confirmation if venue_confirmation is not None else position.venue_confirmation,
        )
        self.ledger.book_close(position, trade, remaining if remaining > _DUST else 0.0)
        return trade
