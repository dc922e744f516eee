"""
Live and paper execution engine.

`LiveEngine` drives the simulation runner one tick at a time against a
bar feed.  Every tick loads the portfolio from the state store, applies
all closed bars that have not been processed yet, and saves the
portfolio again.  The whole load-mutate-save cycle runs under the
store's lock, so two processes can never interleave on one state file.

In paper mode orders go to `PaperVenue` (nothing is sent).  In live
mode they go to MetaTrader 5 through `MT5Venue`.
"""

from __future__ import annotations

import time
from typing import Dict, Optional, Protocol
import logging
import pandas as pd

from ..config.schema import Config
from ..strategy.base import SignalProvider
from ..utils.persistence import StateStore
from .runner import SimulationRunner, SimulationResult
from .venue import PaperVenue, Venue


logger = logging.getLogger(__name__)


class BarFeed(Protocol):
    def get_bars(self, symbol: str, count: int) -> pd.DataFrame:
        ...


class LiveEngine:
    """Run the simulator tick by tick in paper or live mode."""

    def __init__(
        self,
        config: Config,
        feed: BarFeed,
        provider: SignalProvider,
        store: StateStore,
        venue: Optional[Venue] = None,
    ) -> None:
        self.config = config
        self.feed = feed
        self.provider = provider
        self.store = store
        self.venue = venue if venue is not None else PaperVenue()

    def run_once(self) -> SimulationResult:
        """Process every new closed bar for all symbols and save the state.

        Raises
        ------
        PersistenceFailure
            If the state cannot be locked, loaded or saved.  Losing state
            would let the next tick bypass the risk limits, so this is
            never swallowed.
        StateCorruption
            If a ledger invariant breaks while processing.
        """
        with self.store.lock():
            portfolio = self.store.load()
            runner = SimulationRunner(
                self.config,
                self.provider,
                portfolio=portfolio,
                store=self.store,
                venue=self.venue,
                live=True,
            )
            data: Dict[str, pd.DataFrame] = {}
            for symbol in self.config.symbols:
                bars = self.feed.get_bars(symbol, self.config.data.history_bars)
                if bars.empty:
                    logger.warning("No bars received for %s", symbol)
                    continue
                if symbol not in portfolio.last_bar_time and len(bars) > 1:
                    # First sight of the symbol: older bars are lookback only
                    portfolio.last_bar_time[symbol] = bars.index[-2]
                data[symbol] = bars
            result = runner.run(data, finish=False)
            self.store.save(runner.portfolio)
        portfolio = result.portfolio
        logger.info(
            "Tick done: balance=%.2f equity=%.2f open=%d closed=%d",
            portfolio.balance,
            portfolio.equity,
            len(portfolio.open_positions),
            len(portfolio.closed_trades),
        )
        return result

    def run(self, max_ticks: Optional[int] = None) -> None:
        """Poll the feed forever (or `max_ticks` times).

        Press Ctrl+C to stop; the state saved by the last completed tick
        is kept.
        """
        logger.info("Starting engine for %s", ", ".join(self.config.symbols))
        ticks = 0
        try:
            while max_ticks is None or ticks < max_ticks:
                self.run_once()
                ticks += 1
                if max_ticks is None or ticks < max_ticks:
                    time.sleep(self.config.poll_seconds)
        except KeyboardInterrupt:
            logger.info("Shutting down engine...")
