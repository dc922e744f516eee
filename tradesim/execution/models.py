"""
Signal, position, trade and portfolio models.

These dataclasses are the objects passed between the signal provider,
the risk layer, the trade lifecycle and the reporting code.  Keeping
them in a separate module improves readability and makes unit testing
easier.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import pandas as pd

from .errors import (
    RejectedSignal,
    REASON_INVALID_PRICE,
    REASON_INVERTED_STOP,
    REASON_INVERTED_TARGET,
)


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class ExitReason(str, Enum):
    """Terminal states of a position."""
    CLOSED_STOP = "CLOSED_STOP"
    CLOSED_TARGET = "CLOSED_TARGET"
    CLOSED_TRAIL = "CLOSED_TRAIL"
    CLOSED_TIME = "CLOSED_TIME"
    CLOSED_SESSION_END = "CLOSED_SESSION_END"
    CLOSED_MANUAL = "CLOSED_MANUAL"


@dataclass(frozen=True)
class TakeProfitLevel:
    """A target price and the fraction of the original quantity it closes."""
    price: float
    ratio: float = 1.0


@dataclass
class Signal:
    """A candidate trade proposed by a signal provider."""
    symbol: str
    direction: Direction
    entry_price: float
    stop_loss: float
    take_profits: List[TakeProfitLevel] = field(default_factory=list)
    confidence: float = 0.0
    risk_reward: float = 0.0
    timestamp: Optional[pd.Timestamp] = None
    reasoning: str = ""

    def validate(self) -> None:
        """Raise `RejectedSignal` if the proposal is malformed."""
        prices = [self.entry_price, self.stop_loss] + [level.price for level in self.take_profits]
        if not all(math.isfinite(price) for price in prices):
            raise RejectedSignal(
                REASON_INVALID_PRICE,
                f"entry={self.entry_price} stop={self.stop_loss} targets={prices[2:]}",
            )
        if self.entry_price <= 0 or self.stop_loss <= 0:
            raise RejectedSignal(
                REASON_INVALID_PRICE,
                f"entry={self.entry_price} stop={self.stop_loss}",
            )
        sign = self.direction.sign
        if (self.entry_price - self.stop_loss) * sign <= 0:
            raise RejectedSignal(
                REASON_INVERTED_STOP,
                f"{self.direction.value} entry={self.entry_price} stop={self.stop_loss}",
            )
        for level in self.take_profits:
            if level.price <= 0 or (level.price - self.entry_price) * sign <= 0:
                raise RejectedSignal(
                    REASON_INVERTED_TARGET,
                    f"{self.direction.value} entry={self.entry_price} target={level.price}",
                )

    def with_entry(self, entry_price: float, timestamp: Optional[pd.Timestamp] = None) -> "Signal":
        """Return a copy re-anchored at an actual fill price."""
        return Signal(
            symbol=self.symbol,
            direction=self.direction,
            entry_price=entry_price,
            stop_loss=self.stop_loss,
            take_profits=list(self.take_profits),
            confidence=self.confidence,
            risk_reward=self.risk_reward,
            timestamp=timestamp if timestamp is not None else self.timestamp,
            reasoning=self.reasoning,
        )


@dataclass
class Position:
    """An open trade.  Owned by the ledger; only the lifecycle moves the stop."""
    id: str
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    stop_loss: float
    take_profits: List[TakeProfitLevel]
    entry_time: pd.Timestamp
    entry_fee: float
    margin: float
    original_quantity: float = 0.0
    initial_stop: float = 0.0
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0
    bars_held: int = 0
    trail_active: bool = False
    confidence: float = 0.0
    venue_confirmation: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        if not self.original_quantity:
            self.original_quantity = self.quantity
        if not self.initial_stop:
            self.initial_stop = self.stop_loss
        if not self.current_price:
            self.current_price = self.entry_price

    @property
    def entry_notional(self) -> float:
        return self.entry_price * self.quantity

    @property
    def risk_amount(self) -> float:
        return abs(self.entry_price - self.stop_loss) * self.quantity

    def pnl_at(self, price: float) -> float:
        return (price - self.entry_price) * self.quantity * self.direction.sign

    def mark(self, price: float) -> None:
        """Mark the position to `price` and advance the excursion watermarks."""
        self.current_price = price
        self.unrealized_pnl = self.pnl_at(price)
        if self.unrealized_pnl > self.max_favorable_excursion:
            self.max_favorable_excursion = self.unrealized_pnl
        if self.unrealized_pnl < self.max_adverse_excursion:
            self.max_adverse_excursion = self.unrealized_pnl


@dataclass(frozen=True)
class ClosedTrade:
    """Represents a completed trade (or the closed part of a position)."""
    id: str
    symbol: str
    direction: Direction
    entry_price: float
    exit_price: float
    quantity: float
    initial_stop: float
    stop_loss: float
    entry_time: pd.Timestamp
    exit_time: pd.Timestamp
    entry_fee: float
    exit_fee: float
    gross_pnl: float
    net_pnl: float
    exit_reason: ExitReason
    bars_held: int = 0
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0
    confidence: float = 0.0
    venue_confirmation: Optional[Dict[str, Any]] = None

    @property
    def holding_period(self) -> pd.Timedelta:
        return self.exit_time - self.entry_time

    @property
    def fees(self) -> float:
        return self.entry_fee + self.exit_fee

    @property
    def return_pct(self) -> float:
        notional = self.entry_price * self.quantity
        return self.net_pnl / notional * 100.0 if notional else 0.0


@dataclass
class EquityPoint:
    """Represents the account equity at a given timestamp."""
    timestamp: pd.Timestamp
    equity: float


@dataclass
class Portfolio:
    """Complete account state carried between bars and between engine ticks."""
    balance: float
    peak_equity: float = 0.0
    max_drawdown: float = 0.0
    open_positions: Dict[str, Position] = field(default_factory=dict)
    closed_trades: List[ClosedTrade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    pending_signals: Dict[str, Signal] = field(default_factory=dict)
    last_bar_time: Dict[str, pd.Timestamp] = field(default_factory=dict)
    wins: int = 0
    losses: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    trade_seq: int = 0

    def __post_init__(self) -> None:
        if not self.peak_equity:
            self.peak_equity = self.equity

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.open_positions.values())

    @property
    def equity(self) -> float:
        return self.balance + self.unrealized_pnl

    @property
    def reserved_margin(self) -> float:
        return sum(p.margin for p in self.open_positions.values())

    @property
    def free_cash(self) -> float:
        return self.balance - self.reserved_margin

    @property
    def drawdown(self) -> float:
        if self.peak_equity <= 0:
            return 0.0
        return max((self.peak_equity - self.equity) / self.peak_equity, 0.0)
