import os
import sys
import tempfile

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from tradesim.config.schema import Config, apply_overrides, config_from_dict, load_config

import unittest


CONFIG_YAML = """
symbols: [EURUSD, GBPUSD]
timeframe: H1
risk:
  initial_balance: 25000
  risk_per_trade: 0.005
exits:
  trailing_stop: true
  max_holding_bars: 12
strategy:
  tp_levels:
    - {pct: 0.03, ratio: 0.5}
    - {pct: 0.06, ratio: 0.5}
session:
  enabled: true
  start: "07:00"
  end: "17:00"
sweeps:
  - name: tight
    overrides:
      strategy: {sl_pct: 0.02}
"""


class TestLoadConfig(unittest.TestCase):
    def test_yaml_values_and_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.yaml')
            with open(path, 'w', encoding='utf-8') as fh:
                fh.write(CONFIG_YAML)
            cfg = load_config(path)
        self.assertEqual(cfg.symbols, ['EURUSD', 'GBPUSD'])
        self.assertEqual(cfg.risk.initial_balance, 25_000.0)
        self.assertIsInstance(cfg.risk.initial_balance, float)
        self.assertEqual(cfg.risk.risk_per_trade, 0.005)
        # untouched keys keep their defaults
        self.assertEqual(cfg.risk.max_portfolio_heat, 0.06)
        self.assertEqual(cfg.costs.fee_rate, 0.001)
        self.assertTrue(cfg.exits.trailing_stop)
        self.assertEqual(cfg.exits.max_holding_bars, 12)
        self.assertEqual(len(cfg.strategy.tp_levels), 2)
        self.assertEqual(cfg.session.start, "07:00")
        self.assertEqual(cfg.sweeps[0]['name'], 'tight')

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'config.yaml')
            open(path, 'w', encoding='utf-8').close()
            cfg = load_config(path)
        self.assertEqual(cfg, Config())


class TestValidation(unittest.TestCase):
    def test_unknown_key_rejected(self) -> None:
        with self.assertRaises(ValueError):
            config_from_dict({'risk': {'risk_per_trad': 0.01}})

    def test_tolerance_above_hard_ceiling_rejected(self) -> None:
        with self.assertRaises(ValueError):
            config_from_dict({'risk': {'risk_tolerance_multiplier': 3.0, 'hard_risk_multiplier': 2.0}})

    def test_bad_risk_fraction_rejected(self) -> None:
        with self.assertRaises(ValueError):
            config_from_dict({'risk': {'risk_per_trade': 1.5}})

    def test_bad_data_source_rejected(self) -> None:
        with self.assertRaises(ValueError):
            config_from_dict({'data': {'source': 'ftp'}})

    def test_fractional_integer_rejected(self) -> None:
        with self.assertRaises(ValueError):
            config_from_dict({'risk': {'max_open_positions': 2.5}})
        with self.assertRaises(ValueError):
            config_from_dict({'poll_seconds': 0.5})

    def test_whole_float_accepted_for_integer(self) -> None:
        cfg = config_from_dict({'risk': {'max_open_positions': 2.0}, 'state_equity_points': '100'})
        self.assertEqual(cfg.risk.max_open_positions, 2)
        self.assertIsInstance(cfg.risk.max_open_positions, int)
        self.assertEqual(cfg.state_equity_points, 100)


class TestOverrides(unittest.TestCase):
    def test_overrides_return_new_config(self) -> None:
        base = config_from_dict({'strategy': {'lookback': 20}})
        tuned = apply_overrides(base, {'strategy': {'sl_pct': 0.02}, 'costs': {'slippage_pct': 0.0005}})
        self.assertEqual(tuned.strategy.sl_pct, 0.02)
        self.assertEqual(tuned.strategy.lookback, 20)
        self.assertEqual(tuned.costs.slippage_pct, 0.0005)
        self.assertEqual(base.strategy.sl_pct, 0.03)
        self.assertEqual(base.costs.slippage_pct, 0.0)

    def test_no_overrides_is_a_copy(self) -> None:
        base = Config()
        self.assertEqual(apply_overrides(base, None), base)
        self.assertIsNot(apply_overrides(base, None), base)


if __name__ == '__main__':
    unittest.main()
