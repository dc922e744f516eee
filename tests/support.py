"""Builders shared by the test modules."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from tradesim.execution.models import (
    ClosedTrade,
    Direction,
    ExitReason,
    Signal,
    TakeProfitLevel,
)
from tradesim.strategy.base import SignalProvider


def make_bars(rows: List[Tuple[float, float, float, float]], start: str = "2024-01-01 00:00",
              freq: str = "h", volume: float = 1000.0) -> pd.DataFrame:
    """Build an OHLCV frame from ``(open, high, low, close)`` tuples."""
    index = pd.date_range(start, periods=len(rows), freq=freq, tz="UTC")
    return pd.DataFrame(
        {
            "open": [r[0] for r in rows],
            "high": [r[1] for r in rows],
            "low": [r[2] for r in rows],
            "close": [r[3] for r in rows],
            "volume": [volume] * len(rows),
        },
        index=index,
    )


def wave_bars(n: int = 120, start: str = "2024-01-01 00:00") -> pd.DataFrame:
    """A deterministic oscillating series that produces breakouts both ways."""
    rows = []
    prev = 100.0
    for i in range(n):
        close = 100.0 + 10.0 * math.sin(i / 6.0) + 0.05 * i
        rows.append((prev, max(prev, close) + 1.0, min(prev, close) - 1.0, close))
        prev = close
    return make_bars(rows, start=start)


class ScriptedProvider(SignalProvider):
    """Emit pre-planned signals at the bar close.

    Plan keys are a timestamp (any symbol) or a ``(symbol, timestamp)`` pair.
    """

    min_lookback = 1

    def __init__(self, plan: Dict[Any, Tuple[Direction, float, float]]) -> None:
        self.plan = plan

    def generate(self, symbol: str, history: pd.DataFrame) -> List[Signal]:
        ts = history.index[-1]
        planned = self.plan.get((symbol, ts), self.plan.get(ts))
        if planned is None:
            return []
        direction, stop, target = planned
        close = float(history["close"].iloc[-1])
        return [
            Signal(
                symbol=symbol,
                direction=direction,
                entry_price=close,
                stop_loss=stop,
                take_profits=[TakeProfitLevel(price=target, ratio=1.0)],
                confidence=1.0,
                timestamp=ts,
            )
        ]


def make_trade(net_pnl: float, exit_time: Optional[pd.Timestamp] = None,
               reason: ExitReason = ExitReason.CLOSED_TARGET) -> ClosedTrade:
    """A closed long of 10 units from 100 whose net P&L is `net_pnl`."""
    entry_time = pd.Timestamp("2024-01-01", tz="UTC")
    exit_time = exit_time if exit_time is not None else entry_time + pd.Timedelta(hours=4)
    return ClosedTrade(
        id="TEST-000001",
        symbol="TEST",
        direction=Direction.LONG,
        entry_price=100.0,
        exit_price=100.0 + net_pnl / 10.0,
        quantity=10.0,
        initial_stop=97.0,
        stop_loss=97.0,
        entry_time=entry_time,
        exit_time=exit_time,
        entry_fee=0.0,
        exit_fee=0.0,
        gross_pnl=net_pnl,
        net_pnl=net_pnl,
        exit_reason=reason,
        bars_held=4,
    )
