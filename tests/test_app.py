import os
import sys
import tempfile

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
for path in (PROJECT_ROOT, CURRENT_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

import yaml

from tradesim.app import main
from tradesim.utils.persistence import JsonStateStore
from support import wave_bars

import unittest


class TestCommandLine(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        root = self.tmp.name
        os.makedirs(os.path.join(root, 'data'))
        bars = wave_bars()
        bars.index.name = 'time'
        bars.to_csv(os.path.join(root, 'data', 'TEST.csv'))
        self.results = os.path.join(root, 'results')
        self.state = os.path.join(root, 'state', 'portfolio.json')
        self.config_path = os.path.join(root, 'config.yaml')
        with open(self.config_path, 'w', encoding='utf-8') as fh:
            yaml.safe_dump({
                'symbols': ['TEST'],
                'strategy': {'lookback': 5, 'volume_multiplier': 0.0},
                'data': {'csv_dir': os.path.join(root, 'data')},
                'results_dir': self.results,
                'state_file': self.state,
                'sweeps': [{'name': 'tight', 'overrides': {'strategy': {'sl_pct': 0.02}}}],
            }, fh)

    def test_backtest_writes_report(self) -> None:
        main(['backtest', '--config', self.config_path])
        self.assertTrue(os.path.exists(os.path.join(self.results, 'summary.json')))
        self.assertTrue(os.path.exists(os.path.join(self.results, 'trades.csv')))

    def test_sweep_writes_table(self) -> None:
        main(['sweep', '--config', self.config_path])
        self.assertTrue(os.path.exists(os.path.join(self.results, 'sweep.csv')))

    def test_paper_tick_saves_state(self) -> None:
        main(['tick', '--config', self.config_path])
        portfolio = JsonStateStore(self.state, 10_000.0).load()
        self.assertEqual(len(portfolio.equity_curve), 1)
        self.assertFalse(os.path.exists(self.state + '.lock'))

    def test_live_needs_mt5_feed(self) -> None:
        with self.assertRaises(ValueError):
            main(['tick', '--live', '--config', self.config_path])


if __name__ == '__main__':
    unittest.main()
