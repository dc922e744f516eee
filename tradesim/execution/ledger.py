"""
Position ledger.

`PositionLedger` owns a `Portfolio` and is the only code that adds or
removes positions, books realised P&L and advances the equity
high-water mark.  It is driven by the risk sizer (opens) and by the
trade lifecycle (closes).
"""

from __future__ import annotations

import logging
import math
from typing import List

import pandas as pd

from .errors import StateCorruption, RejectedSignal, REASON_POSITION_EXISTS
from .models import ClosedTrade, EquityPoint, Portfolio, Position, Signal


logger = logging.getLogger(__name__)

_TOLERANCE = 1e-6


class PositionLedger:
    """Book-keeping for open positions and the closed-trade log."""

    def __init__(self, portfolio: Portfolio) -> None:
        self.portfolio = portfolio

    @property
    def open_positions(self) -> List[Position]:
        return list(self.portfolio.open_positions.values())

    def get(self, symbol: str):
        return self.portfolio.open_positions.get(symbol)

    def next_id(self, symbol: str) -> str:
        self.portfolio.trade_seq += 1
        return f"{symbol}-{self.portfolio.trade_seq:06d}"

    def open(
        self,
        signal: Signal,
        quantity: float,
        margin: float,
        fee_rate: float,
        timestamp: pd.Timestamp,
    ) -> Position:
        """Record a new position filled at ``signal.entry_price``."""
        if signal.symbol in self.portfolio.open_positions:
            raise RejectedSignal(REASON_POSITION_EXISTS, signal.symbol)
        position = Position(
            id=self.next_id(signal.symbol),
            symbol=signal.symbol,
            direction=signal.direction,
            entry_price=signal.entry_price,
            quantity=quantity,
            stop_loss=signal.stop_loss,
            take_profits=list(signal.take_profits),
            entry_time=timestamp,
            entry_fee=quantity * signal.entry_price * fee_rate,
            margin=margin,
            confidence=signal.confidence,
        )
        self.portfolio.open_positions[signal.symbol] = position
        logger.info(
            "Opened %s %s %.6f @ %.6f (stop=%.6f, fee=%.2f)",
            position.direction.value,
            position.symbol,
            position.quantity,
            position.entry_price,
            position.stop_loss,
            position.entry_fee,
        )
        return position

    def cancel(self, position: Position) -> None:
        """Drop a position whose order never reached the venue."""
        self.portfolio.open_positions.pop(position.symbol, None)
        logger.warning("Cancelled %s: venue order failed", position.id)

    def book_close(self, position: Position, trade: ClosedTrade, remaining: float) -> None:
        """Apply a (partial) close produced by the trade lifecycle.

        The closed share of the reserved margin is released and the
        trade's net P&L is credited to the balance, so free cash grows
        by ``entry_notional + net_pnl`` of the closed quantity.
        """
        portfolio = self.portfolio
        closed_share = trade.quantity / position.quantity
        portfolio.balance += trade.net_pnl
        if trade.net_pnl > 0:
            portfolio.wins += 1
            portfolio.gross_profit += trade.net_pnl
        else:
            portfolio.losses += 1
            portfolio.gross_loss += abs(trade.net_pnl)
        portfolio.closed_trades.append(trade)

        if remaining <= 0:
            del portfolio.open_positions[position.symbol]
        else:
            position.margin *= 1.0 - closed_share
            position.max_favorable_excursion *= 1.0 - closed_share
            position.max_adverse_excursion *= 1.0 - closed_share
            position.entry_fee -= trade.entry_fee
            position.quantity = remaining
            position.mark(position.current_price)
        logger.info(
            "Closed %s %s %.6f @ %.6f (%s) net=%.2f balance=%.2f",
            trade.direction.value,
            trade.symbol,
            trade.quantity,
            trade.exit_price,
            trade.exit_reason.value,
            trade.net_pnl,
            portfolio.balance,
        )

    def record_equity(self, timestamp: pd.Timestamp) -> EquityPoint:
        """Advance peak equity / max drawdown and append to the equity curve."""
        portfolio = self.portfolio
        equity = portfolio.equity
        if equity > portfolio.peak_equity:
            portfolio.peak_equity = equity
        drawdown = portfolio.drawdown
        if drawdown > portfolio.max_drawdown:
            portfolio.max_drawdown = drawdown
        point = EquityPoint(timestamp=timestamp, equity=equity)
        portfolio.equity_curve.append(point)
        return point

    def check_invariants(self) -> None:
        """Raise `StateCorruption` if the ledger is inconsistent."""
        portfolio = self.portfolio
        if not math.isfinite(portfolio.balance):
            raise StateCorruption(f"non-finite balance {portfolio.balance}")
        if portfolio.balance < 0:
            raise StateCorruption(f"negative balance {portfolio.balance:.2f}")
        for position in portfolio.open_positions.values():
            if not math.isfinite(position.quantity) or position.quantity <= 0:
                raise StateCorruption(f"{position.id} has quantity {position.quantity}")
            if not math.isfinite(position.unrealized_pnl):
                raise StateCorruption(f"{position.id} has unrealized P&L {position.unrealized_pnl}")
            expected = position.pnl_at(position.current_price)
            if abs(position.unrealized_pnl - expected) > _TOLERANCE * max(1.0, abs(expected)):
                raise StateCorruption(
                    f"{position.id} unrealized P&L {position.unrealized_pnl} != {expected}"
                )
        if not math.isfinite(portfolio.equity):
            raise StateCorruption(f"non-finite equity {portfolio.equity}")
        if portfolio.free_cash < -_TOLERANCE:
            raise StateCorruption(f"negative free cash {portfolio.free_cash:.2f}")
        if portfolio.equity > portfolio.peak_equity + _TOLERANCE:
            raise StateCorruption(
                f"equity {portfolio.equity:.2f} above peak {portfolio.peak_equity:.2f}"
            )
        if portfolio.max_drawdown < 0 or portfolio.max_drawdown < portfolio.drawdown - _TOLERANCE:
            raise StateCorruption(f"max drawdown {portfolio.max_drawdown} inconsistent")
