import os
import sys
import math
import pandas as pd

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradesim.config.schema import RiskConfig
from tradesim.execution.models import Direction, Portfolio, Position, TakeProfitLevel
from tradesim.risk.heat import HeatTracker

import unittest


def position(symbol: str, entry: float, qty: float, stop: float) -> Position:
    return Position(
        id=f"{symbol}-000001",
        symbol=symbol,
        direction=Direction.LONG,
        entry_price=entry,
        quantity=qty,
        stop_loss=stop,
        take_profits=[TakeProfitLevel(price=entry * 1.1)],
        entry_time=pd.Timestamp("2024-01-01", tz="UTC"),
        entry_fee=0.0,
        margin=entry * qty,
    )


class TestHeatTracker(unittest.TestCase):
    def test_flat_portfolio_has_no_heat(self) -> None:
        tracker = HeatTracker(RiskConfig())
        self.assertEqual(tracker.current_heat(Portfolio(balance=10_000.0)), 0.0)
        self.assertAlmostEqual(tracker.available_heat(Portfolio(balance=10_000.0)), 0.06)

    def test_stop_distance_heat_dominates_wide_stops(self) -> None:
        portfolio = Portfolio(balance=10_000.0)
        portfolio.open_positions["A"] = position("A", 100.0, 10.0, 50.0)
        tracker = HeatTracker(RiskConfig())
        # 500 at risk against 1 000 * 0.10 value heat
        self.assertAlmostEqual(tracker.stop_heat(portfolio), 0.05)
        self.assertAlmostEqual(tracker.value_heat(portfolio), 0.01)
        self.assertAlmostEqual(tracker.current_heat(portfolio), 0.05)

    def test_value_heat_is_a_floor_for_tight_stops(self) -> None:
        portfolio = Portfolio(balance=10_000.0)
        portfolio.open_positions["A"] = position("A", 100.0, 10.0, 97.0)
        portfolio.open_positions["B"] = position("B", 200.0, 5.0, 196.0)
        tracker = HeatTracker(RiskConfig())
        self.assertAlmostEqual(tracker.stop_heat(portfolio), 0.005)
        self.assertAlmostEqual(tracker.value_heat(portfolio), 0.02)
        self.assertAlmostEqual(tracker.current_heat(portfolio), 0.02)

    def test_uses_marked_prices(self) -> None:
        portfolio = Portfolio(balance=10_000.0)
        pos = position("A", 100.0, 10.0, 97.0)
        portfolio.open_positions["A"] = pos
        pos.mark(110.0)
        tracker = HeatTracker(RiskConfig())
        # 1 100 notional over 10 100 equity
        self.assertAlmostEqual(tracker.value_heat(portfolio), 1_100.0 / 10_100.0 * 0.10)

    def test_non_positive_equity_is_infinite_heat(self) -> None:
        portfolio = Portfolio(balance=100.0)
        pos = position("A", 100.0, 10.0, 97.0)
        portfolio.open_positions["A"] = pos
        pos.mark(80.0)
        self.assertTrue(math.isinf(HeatTracker(RiskConfig()).current_heat(portfolio)))


if __name__ == '__main__':
    unittest.main()
