"""
Portfolio heat.

Heat is the risk currently at stake across all open positions as a
fraction of equity.  Two estimates are taken and the larger wins:

- stop-distance risk, ``sum(|entry - stop| * qty) / equity``;
- position-value risk, ``sum(qty * price) / equity * adverse_move``.

The second acts as a floor when a position has run in its favour and
the stop has not followed.
"""

from __future__ import annotations

from ..config.schema import RiskConfig
from ..execution.models import Portfolio


class HeatTracker:
    """Compute aggregate open risk for a portfolio."""

    def __init__(self, config: RiskConfig) -> None:
        self.config = config

    def stop_heat(self, portfolio: Portfolio) -> float:
        equity = portfolio.equity
        total = sum(p.risk_amount for p in portfolio.open_positions.values())
        return total / equity if equity > 0 else float('inf')

    def value_heat(self, portfolio: Portfolio) -> float:
        equity = portfolio.equity
        total = sum(p.quantity * p.current_price for p in portfolio.open_positions.values())
        if equity <= 0:
            return float('inf')
        return total / equity * self.config.adverse_move_assumption

    def current_heat(self, portfolio: Portfolio) -> float:
        """Return the larger of the two heat estimates (0 when flat)."""
        if not portfolio.open_positions:
            return 0.0
        return max(self.stop_heat(portfolio), self.value_heat(portfolio))

    def available_heat(self, portfolio: Portfolio) -> float:
        return self.config.max_portfolio_heat - self.current_heat(portfolio)
