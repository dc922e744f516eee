"""
Application entry point.

This module defines a simple command‑line interface for the
simulator:

- ``backtest``: replay the CSV history and write a report;
- ``tick``: run one engine tick against the configured feed;
- ``run``: poll the feed and tick until interrupted;
- ``sweep``: backtest every parameter set listed under ``sweeps:``.

Engine ticks trade on paper unless ``--live`` is given, in which case
orders are sent to MetaTrader 5.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from .config.schema import Config, load_config
from .data.csv_data import CSVDataLoader
from .data.mt5_data import MT5DataFeed
from .execution.live_exec import LiveEngine
from .execution.runner import SimulationRunner, run_sweep
from .execution.venue import MT5Venue, PaperVenue
from .reporting.report import generate_backtest_report, write_sweep_report
from .strategy.breakout import BreakoutSignalProvider
from .utils.persistence import JsonStateStore


logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def _provider(config: Config) -> BreakoutSignalProvider:
    return BreakoutSignalProvider(config.strategy)


def _backtest(config: Config) -> None:
    loader = CSVDataLoader(config.data.csv_dir, config.data.timezone)
    data = loader.load_many(config.symbols)
    runner = SimulationRunner(config, _provider(config))
    result = runner.run(data)
    metrics = generate_backtest_report(
        result.trades,
        result.equity_curve,
        out_dir=config.results_dir,
        initial_balance=config.risk.initial_balance,
    )
    logger.info(
        "Backtest complete: %d trades, win rate %.1f%%, profit factor %.2f, max DD %.2f%%, %d rejections",
        metrics.total_trades,
        metrics.win_rate * 100,
        metrics.profit_factor,
        metrics.max_drawdown * 100,
        len(result.rejections),
    )
    logger.info("Results saved to the '%s' directory.", config.results_dir)


def _engine(config: Config, live: bool) -> tuple:
    if config.data.source == 'mt5':
        feed = MT5DataFeed(config.mt5, config.data.timezone, config.timeframe, config.symbols)
        feed.connect()
    else:
        if live:
            raise ValueError("Live trading needs data.source: mt5")
        feed = CSVDataLoader(config.data.csv_dir, config.data.timezone)
    venue = MT5Venue(config.mt5) if live else PaperVenue()
    store = JsonStateStore(config.state_file, config.risk.initial_balance, config.state_equity_points)
    return LiveEngine(config, feed, _provider(config), store, venue), feed


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command‑line arguments and dispatch to the appropriate mode."""
    parser = argparse.ArgumentParser(description="Risk-bounded trade simulator")
    parser.add_argument('command', choices=['backtest', 'tick', 'run', 'sweep'], help="What to run")
    parser.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    parser.add_argument('--live', action='store_true', help="Send engine orders to MetaTrader 5")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    config = load_config(args.config)

    if args.command == 'backtest':
        logger.info("Running backtest...")
        _backtest(config)
    elif args.command == 'sweep':
        if not config.sweeps:
            parser.error("no 'sweeps' defined in the configuration")
        loader = CSVDataLoader(config.data.csv_dir, config.data.timezone)
        results = run_sweep(config, loader.load_many(config.symbols), _provider)
        path = write_sweep_report(results, config.results_dir)
        logger.info("Sweep of %d variants written to %s", len(results), path)
    else:
        config.mode = 'live' if args.live else 'paper'
        engine, feed = _engine(config, args.live)
        logger.info("Starting %s engine...", config.mode)
        try:
            if args.command == 'tick':
                engine.run_once()
            else:
                engine.run()
        finally:
            if isinstance(feed, MT5DataFeed):
                feed.shutdown()


if __name__ == '__main__':
    main()
