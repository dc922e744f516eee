"""
Performance metrics calculations.

This module provides helpers to compute common performance statistics
from a list of closed trades and an equity curve.  These metrics are
used both for backtesting reports and for monitoring live trading
performance.  Nothing here mutates the trades or the portfolio.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Sequence
import math

from ..execution.models import ClosedTrade, EquityPoint

# Reported instead of infinity when there are profits and no losses
PROFIT_FACTOR_CAP = 999.0


@dataclass
class PerformanceReport:
    """Summary statistics of a run.  Ratios are fractions, not percent."""
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    expectancy: float = 0.0
    max_drawdown: float = 0.0
    sharpe: float = 0.0
    max_consecutive_losses: int = 0
    total_net_pnl: float = 0.0
    total_fees: float = 0.0
    avg_trade: float = 0.0
    total_return: float = 0.0
    avg_bars_held: float = 0.0
    exits_by_reason: Dict[str, int] = field(default_factory=dict)
    monthly_pnl: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def max_drawdown(equity: Sequence[float], start: Optional[float] = None) -> float:
    """Largest fractional decline from a running peak.

    Parameters
    ----------
    equity : sequence of float
        Equity values in time order.
    start : float, optional
        Equity before the first value; seeds the running peak.
    """
    peak = start if start is not None else (equity[0] if equity else 0.0)
    worst = 0.0
    for value in equity:
        if value > peak:
            peak = value
        if peak > 0:
            worst = max(worst, (peak - value) / peak)
    return worst


def max_consecutive_losses(trades: Sequence[ClosedTrade]) -> int:
    longest = 0
    current = 0
    for trade in trades:
        if trade.net_pnl < 0:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def sharpe_ratio(returns: Sequence[float]) -> float:
    """Mean over sample standard deviation of per-trade returns."""
    if len(returns) < 2:
        return 0.0
    mean_ret = sum(returns) / len(returns)
    variance = sum((r - mean_ret) ** 2 for r in returns) / (len(returns) - 1)
    std_dev = math.sqrt(variance)
    return mean_ret / std_dev if std_dev > 0 else 0.0


def compute_metrics(
    trades: List[ClosedTrade],
    equity_curve: Optional[List[EquityPoint]] = None,
    initial_balance: Optional[float] = None,
) -> PerformanceReport:
    """Compute a set of summary statistics for a trade log.

    Parameters
    ----------
    trades : list of ClosedTrade
        Completed trades in the order they closed.
    equity_curve : list of EquityPoint, optional
        Equity after every processed bar.  When omitted, drawdown is
        measured on the cumulative net P&L starting from
        `initial_balance`.
    initial_balance : float, optional
        Starting equity; used for total return and to seed the drawdown
        peak.

    Returns
    -------
    PerformanceReport
    """
    report = PerformanceReport()
    total = len(trades)

    if equity_curve:
        values = [pt.equity for pt in equity_curve]
    elif initial_balance is not None:
        values = []
        running = initial_balance
        for trade in trades:
            running += trade.net_pnl
            values.append(running)
    else:
        values = []
    report.max_drawdown = max_drawdown(values, initial_balance)

    if initial_balance:
        ending = values[-1] if values else initial_balance
        report.total_return = (ending - initial_balance) / initial_balance

    if total == 0:
        return report

    wins = [t.net_pnl for t in trades if t.net_pnl > 0]
    losses = [t.net_pnl for t in trades if t.net_pnl <= 0]
    report.total_trades = total
    report.wins = len(wins)
    report.losses = len(losses)
    report.win_rate = len(wins) / total
    report.gross_profit = sum(wins)
    report.gross_loss = -sum(losses)
    if report.gross_loss > 0:
        report.profit_factor = report.gross_profit / report.gross_loss
    elif report.gross_profit > 0:
        report.profit_factor = PROFIT_FACTOR_CAP
    report.avg_win = report.gross_profit / len(wins) if wins else 0.0
    report.avg_loss = report.gross_loss / len(losses) if losses else 0.0
    report.expectancy = report.avg_win * report.win_rate - report.avg_loss * (1.0 - report.win_rate)

    report.sharpe = sharpe_ratio([t.return_pct for t in trades])
    report.max_consecutive_losses = max_consecutive_losses(trades)
    report.total_net_pnl = sum(t.net_pnl for t in trades)
    report.total_fees = sum(t.fees for t in trades)
    report.avg_trade = report.total_net_pnl / total
    report.avg_bars_held = sum(t.bars_held for t in trades) / total

    for trade in trades:
        reason = trade.exit_reason.value
        report.exits_by_reason[reason] = report.exits_by_reason.get(reason, 0) + 1
        month = trade.exit_time.strftime('%Y-%m')
        report.monthly_pnl[month] = report.monthly_pnl.get(month, 0.0) + trade.net_pnl
    return report
