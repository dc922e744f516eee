import os
import sys
import random

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradesim.config.schema import RiskConfig
from tradesim.execution.errors import (
    RejectedSignal,
    REASON_HEAT_EXHAUSTED,
    REASON_INSUFFICIENT_BALANCE,
    REASON_INVALID_PRICE,
    REASON_INVALID_QUANTITY,
    REASON_NO_EQUITY,
    REASON_RISK_TOO_HIGH,
    REASON_STOP_TOO_CLOSE,
)
from tradesim.execution.models import Direction, Signal, TakeProfitLevel
from tradesim.risk.sizing import RiskSizer

import unittest


def long_signal(entry: float = 100.0, stop: float = 97.0) -> Signal:
    return Signal(
        symbol="TEST",
        direction=Direction.LONG,
        entry_price=entry,
        stop_loss=stop,
        take_profits=[TakeProfitLevel(price=entry * 1.06)],
    )


class TestRiskSizer(unittest.TestCase):
    def test_sizes_to_risk_per_trade(self) -> None:
        """1 % of 10 000 over a 3.00 stop distance is 33.33 units."""
        result = RiskSizer(RiskConfig()).size(long_signal(), equity=10_000.0, heat=0.0, balance=10_000.0)
        self.assertAlmostEqual(result.quantity, 100.0 / 3.0, places=6)
        self.assertAlmostEqual(result.risk_amount, 100.0, places=6)
        self.assertAlmostEqual(result.risk_fraction, 0.01, places=9)
        self.assertEqual(result.bound_by, 'risk')

    def test_heat_scales_down_size(self) -> None:
        """A 2 % request with 1 % heat left is halved to 1 % risk."""
        cfg = RiskConfig(risk_per_trade=0.02, max_portfolio_heat=0.06)
        result = RiskSizer(cfg).size(long_signal(), equity=10_000.0, heat=0.05, balance=10_000.0)
        self.assertAlmostEqual(result.heat_scale, 0.5, places=9)
        self.assertAlmostEqual(result.risk_fraction, 0.01, places=9)
        self.assertAlmostEqual(result.quantity, 100.0 / 3.0, places=6)
        self.assertEqual(result.bound_by, 'heat')

    def test_heat_exhausted(self) -> None:
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(RiskConfig()).size(long_signal(), equity=10_000.0, heat=0.06, balance=10_000.0)
        self.assertEqual(ctx.exception.reason, REASON_HEAT_EXHAUSTED)

    def test_stop_too_close(self) -> None:
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(RiskConfig()).size(long_signal(stop=99.95), equity=10_000.0, heat=0.0, balance=10_000.0)
        self.assertEqual(ctx.exception.reason, REASON_STOP_TOO_CLOSE)

    def test_no_equity(self) -> None:
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(RiskConfig()).size(long_signal(), equity=0.0, heat=0.0, balance=0.0)
        self.assertEqual(ctx.exception.reason, REASON_NO_EQUITY)

    def test_notional_cap(self) -> None:
        # 1 % over a 0.50 stop would be 200 units = 20 000 notional
        result = RiskSizer(RiskConfig()).size(long_signal(stop=99.5), equity=10_000.0, heat=0.0, balance=10_000.0)
        self.assertAlmostEqual(result.notional, 5_000.0, places=6)
        self.assertEqual(result.bound_by, 'notional')
        self.assertLess(result.risk_fraction, 0.01)

    def test_balance_shortfall_shrinks_within_tolerance(self) -> None:
        result = RiskSizer(RiskConfig()).size(long_signal(), equity=10_000.0, heat=0.0, balance=2_000.0)
        # 2 000 * 0.95 / 100
        self.assertAlmostEqual(result.quantity, 19.0, places=9)
        self.assertEqual(result.bound_by, 'balance')
        self.assertLessEqual(result.notional, 2_000.0)

    def test_balance_shortfall_beyond_tolerance_is_rejected(self) -> None:
        cfg = RiskConfig(risk_tolerance_multiplier=0.5)
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(cfg).size(long_signal(), equity=10_000.0, heat=0.0, balance=2_000.0)
        self.assertEqual(ctx.exception.reason, REASON_INSUFFICIENT_BALANCE)

    def test_hard_ceiling(self) -> None:
        cfg = RiskConfig(hard_risk_multiplier=0.5)
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(cfg).size(long_signal(), equity=10_000.0, heat=0.0, balance=10_000.0)
        self.assertEqual(ctx.exception.reason, REASON_RISK_TOO_HIGH)

    def test_short_signal_sizes_on_distance(self) -> None:
        signal = Signal(
            symbol="TEST",
            direction=Direction.SHORT,
            entry_price=50.0,
            stop_loss=52.0,
            take_profits=[TakeProfitLevel(price=46.0)],
        )
        result = RiskSizer(RiskConfig()).size(signal, equity=10_000.0, heat=0.0, balance=10_000.0)
        self.assertAlmostEqual(result.quantity, 50.0, places=9)

    def test_non_finite_prices_rejected(self) -> None:
        sizer = RiskSizer(RiskConfig())
        for entry, stop in ((100.0, float("nan")), (float("inf"), 97.0), (100.0, float("-inf"))):
            with self.assertRaises(RejectedSignal) as ctx:
                sizer.size(long_signal(entry, stop), equity=10_000.0, heat=0.0, balance=10_000.0)
            self.assertEqual(ctx.exception.reason, REASON_INVALID_PRICE)

    def test_nan_heat_is_exhausted(self) -> None:
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(RiskConfig()).size(long_signal(), equity=10_000.0, heat=float("nan"), balance=10_000.0)
        self.assertEqual(ctx.exception.reason, REASON_HEAT_EXHAUSTED)

    def test_non_finite_quantity_rejected(self) -> None:
        # inf risk times a zero heat scale sizes to NaN
        cfg = RiskConfig(risk_per_trade=float("inf"))
        with self.assertRaises(RejectedSignal) as ctx:
            RiskSizer(cfg).size(long_signal(), equity=10_000.0, heat=0.0, balance=10_000.0)
        self.assertEqual(ctx.exception.reason, REASON_INVALID_QUANTITY)

    def test_accepted_risk_never_exceeds_ceiling(self) -> None:
        cfg = RiskConfig()
        sizer = RiskSizer(cfg)
        rng = random.Random(7)
        accepted = 0
        for _ in range(500):
            entry = rng.uniform(1.0, 1_000.0)
            stop = entry * (1.0 - rng.uniform(0.0005, 0.2))
            equity = rng.uniform(100.0, 50_000.0)
            balance = equity * rng.uniform(-0.1, 1.0)
            heat = rng.uniform(0.0, 0.08)
            try:
                result = sizer.size(long_signal(entry, stop), equity=equity, heat=heat, balance=balance)
            except RejectedSignal:
                continue
            accepted += 1
            self.assertGreater(result.quantity, 0.0)
            self.assertLessEqual(result.risk_fraction, cfg.risk_per_trade * cfg.hard_risk_multiplier + 1e-12)
            self.assertLessEqual(result.notional, equity * cfg.max_position_pct + 1e-6)
        self.assertGreater(accepted, 0)


if __name__ == '__main__':
    unittest.main()
