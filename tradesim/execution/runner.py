"""
Simulation runner.

`SimulationRunner` drives bars through the engine strictly in timestamp
order.  For every bar of a symbol it

1. fills the symbol's pending signal at the bar's open (backtest);
2. runs the trade lifecycle against the open position;
3. closes the position if the bar is outside the trading session;
4. updates equity, peak equity and drawdown and checks the ledger;
5. asks the signal provider for a new trade if there is room and
   sizes it (queued for the next open in a backtest, filled at once
   in live/paper mode);
6. saves the portfolio through the injected state store.

The same runner backs historical backtests and the tick-by-tick live
engine, so both follow identical accounting rules.  Bars at or before
a symbol's last processed timestamp are skipped, which makes resuming
from saved state equivalent to an uninterrupted run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
import pandas as pd

from ..config.schema import Config, apply_overrides
from ..reporting.metrics import PerformanceReport, compute_metrics
from ..risk.heat import HeatTracker
from ..risk.sizing import RiskSizer
from ..strategy.base import SignalProvider
from ..utils.persistence import StateStore
from ..utils.timeutils import is_in_session, parse_time_str
from .errors import (
    DataGap,
    PersistenceFailure,
    RejectedSignal,
    REASON_POSITION_EXISTS,
)
from .ledger import PositionLedger
from .lifecycle import TradeLifecycle
from .models import ClosedTrade, Direction, EquityPoint, ExitReason, Portfolio, Position, Signal
from .venue import Venue


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejection:
    """A signal the engine refused, with its observable reason string."""
    timestamp: pd.Timestamp
    symbol: str
    reason: str
    detail: str = ""


@dataclass
class SimulationResult:
    """Everything a finished run exposes to reporting."""
    portfolio: Portfolio
    initial_balance: float
    rejections: List[Rejection] = field(default_factory=list)

    @property
    def trades(self) -> List[ClosedTrade]:
        return self.portfolio.closed_trades

    @property
    def equity_curve(self) -> List[EquityPoint]:
        return self.portfolio.equity_curve

    def metrics(self) -> PerformanceReport:
        return compute_metrics(self.trades, self.equity_curve, self.initial_balance)


class SimulationRunner:
    """Run a portfolio through a sequence of bars."""

    def __init__(
        self,
        config: Config,
        provider: SignalProvider,
        portfolio: Optional[Portfolio] = None,
        store: Optional[StateStore] = None,
        venue: Optional[Venue] = None,
        live: bool = False,
    ) -> None:
        self.config = config
        self.provider = provider
        self.portfolio = portfolio if portfolio is not None else Portfolio(balance=config.risk.initial_balance)
        self.store = store
        self.venue = venue
        self.live = live
        self.ledger = PositionLedger(self.portfolio)
        self.sizer = RiskSizer(config.risk)
        self.heat = HeatTracker(config.risk)
        self.lifecycle = TradeLifecycle(config.exits, config.costs, self.ledger, venue)
        self.rejections: List[Rejection] = []
        self.session_start = parse_time_str(config.session.start)
        self.session_end = parse_time_str(config.session.end)

    # ------------------------------------------------------------------
    # Driving loops

    def _symbol_order(self, symbols) -> List[str]:
        configured = [s for s in self.config.symbols if s in symbols]
        return configured + sorted(s for s in symbols if s not in configured)

    def run(self, data: Dict[str, pd.DataFrame], finish: bool = True) -> SimulationResult:
        """Process every bar of `data` in timestamp order.

        Parameters
        ----------
        data : dict of str -> pandas.DataFrame
            OHLCV bars per symbol, indexed by ascending timestamp.
        finish : bool
            Close whatever is still open at the end of the data with
            ``CLOSED_SESSION_END``.  Pass ``False`` to stop at a point
            the run will later be resumed from.
        """
        events: List[Tuple[pd.Timestamp, int, str, int]] = []
        for rank, symbol in enumerate(self._symbol_order(data)):
            frame = data[symbol]
            if not frame.index.is_monotonic_increasing:
                raise ValueError(f"Bars for {symbol} are not in ascending timestamp order")
            events.extend((ts, rank, symbol, i) for i, ts in enumerate(frame.index))
        events.sort(key=lambda e: (e[0], e[1]))

        for ts, _, symbol, i in events:
            last = self.portfolio.last_bar_time.get(symbol)
            if last is not None and ts <= last:
                continue
            frame = data[symbol]
            self.process_bar(symbol, ts, frame.iloc[i], frame.iloc[: i + 1])

        if finish:
            self.finish()
        return self.result()

    def result(self) -> SimulationResult:
        return SimulationResult(
            portfolio=self.portfolio,
            initial_balance=self.config.risk.initial_balance,
            rejections=list(self.rejections),
        )

    def process_bar(self, symbol: str, ts: pd.Timestamp, bar: pd.Series, history: pd.DataFrame) -> None:
        """Apply one bar of `symbol` to the portfolio."""
        try:
            self._check_bar(symbol, ts, bar)
        except DataGap as exc:
            logger.warning("Skipping bar: %s", exc)
            return

        pending = self.portfolio.pending_signals.pop(symbol, None)
        if pending is not None:
            fill = self._entry_fill(pending.direction, float(bar['open']))
            self._open(pending.with_entry(fill, ts), ts)

        position = self.ledger.get(symbol)
        if position is not None:
            self.lifecycle.evaluate(position, ts, bar)

        in_session = self._in_session(ts)
        position = self.ledger.get(symbol)
        if position is not None and not in_session:
            logger.info("%s outside session at %s, closing %s", symbol, ts, position.id)
            self.lifecycle.close(
                position,
                self.lifecycle.exit_fill(position, float(bar['close'])),
                ts,
                ExitReason.CLOSED_SESSION_END,
            )

        self.ledger.record_equity(ts)
        self.ledger.check_invariants()

        if in_session:
            self._intake(symbol, ts, history)

        self.portfolio.last_bar_time[symbol] = ts
        self._persist()

    def finish(self, ts: Optional[pd.Timestamp] = None) -> List[ClosedTrade]:
        """Close everything at the end of the data or session."""
        return self.flush(ExitReason.CLOSED_SESSION_END, ts)

    def flush(self, reason: ExitReason = ExitReason.CLOSED_MANUAL, ts: Optional[pd.Timestamp] = None) -> List[ClosedTrade]:
        """Close all open positions at their last price and drop pending signals."""
        trades: List[ClosedTrade] = []
        self.portfolio.pending_signals.clear()
        for position in list(self.ledger.open_positions):
            exit_ts = ts if ts is not None else self.portfolio.last_bar_time.get(position.symbol, position.entry_time)
            price = self.lifecycle.exit_fill(position, position.current_price)
            trades.append(self.lifecycle.close(position, price, exit_ts, reason))
        if trades:
            last_ts = ts if ts is not None else max(t.exit_time for t in trades)
            self.ledger.record_equity(last_ts)
            self.ledger.check_invariants()
        self._persist()
        return trades

    # ------------------------------------------------------------------
    # Helpers

    def _check_bar(self, symbol: str, ts: pd.Timestamp, bar: pd.Series) -> None:
        prices = [bar.get(col) for col in ('open', 'high', 'low', 'close')]
        if any(p is None or pd.isna(p) for p in prices):
            raise DataGap(f"{symbol} bar {ts} has missing prices")
        if float(bar['high']) < float(bar['low']) or min(float(p) for p in prices) <= 0:
            raise DataGap(f"{symbol} bar {ts} has invalid prices")

    def _in_session(self, ts: pd.Timestamp) -> bool:
        if not self.config.session.enabled:
            return True
        return is_in_session(ts, self.session_start, self.session_end, self.config.data.timezone)

    def _entry_fill(self, direction: Direction, price: float) -> float:
        return price * (1.0 + self.config.costs.slippage_pct * direction.sign)

    def _reject(self, ts: pd.Timestamp, symbol: str, exc: RejectedSignal) -> None:
        logger.info("Rejected %s signal at %s: %s", symbol, ts, exc)
        self.rejections.append(Rejection(timestamp=ts, symbol=symbol, reason=exc.reason, detail=exc.detail))

    def _intake(self, symbol: str, ts: pd.Timestamp, history: pd.DataFrame) -> None:
        portfolio = self.portfolio
        if symbol in portfolio.open_positions or symbol in portfolio.pending_signals:
            return
        if len(history) < self.provider.min_lookback:
            return
        if len(portfolio.open_positions) + len(portfolio.pending_signals) >= self.config.risk.max_open_positions:
            logger.debug("%s: position limit reached, no signal requested", symbol)
            return
        if self.heat.current_heat(portfolio) >= self.config.risk.max_portfolio_heat:
            logger.debug("%s: heat cap reached, no signal requested", symbol)
            return

        try:
            signals = self.provider.generate(symbol, history)
        except DataGap as exc:
            logger.warning("No signal for %s at %s: %s", symbol, ts, exc)
            return

        valid: List[Signal] = []
        for signal in signals:
            try:
                signal.validate()
            except RejectedSignal as exc:
                self._reject(ts, symbol, exc)
                continue
            valid.append(signal)
        if not valid:
            return
        signal = max(valid, key=lambda s: s.confidence)
        logger.info(
            "Signal %s %s @ %.6f stop=%.6f confidence=%.2f",
            signal.direction.value, symbol, signal.entry_price, signal.stop_loss, signal.confidence,
        )
        if self.live:
            self._open(signal.with_entry(self._entry_fill(signal.direction, signal.entry_price), ts), ts)
        else:
            portfolio.pending_signals[symbol] = signal

    def _open(self, signal: Signal, ts: pd.Timestamp) -> Optional[Position]:
        portfolio = self.portfolio
        try:
            signal.validate()
            if signal.symbol in portfolio.open_positions:
                raise RejectedSignal(REASON_POSITION_EXISTS, signal.symbol)
            sizing = self.sizer.size(
                signal,
                equity=portfolio.equity,
                heat=self.heat.current_heat(portfolio),
                balance=portfolio.free_cash,
            )
        except RejectedSignal as exc:
            self._reject(ts, signal.symbol, exc)
            return None

        position = self.ledger.open(signal, sizing.quantity, sizing.margin, self.config.costs.fee_rate, ts)
        logger.debug(
            "Sized %s: risk %.2f%% bound by %s", position.id, sizing.risk_fraction * 100, sizing.bound_by,
        )
        if self.venue is not None:
            try:
                position.venue_confirmation = self.venue.open_position(position)
            except Exception:
                self.ledger.cancel(position)
                raise
        return position

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self.portfolio)
        except PersistenceFailure:
            if self.live:
                raise
            logger.exception("Could not save backtest state; continuing in memory")


def run_sweep(
    config: Config,
    data: Dict[str, pd.DataFrame],
    provider_factory: Callable[[Config], SignalProvider],
    variants: Optional[List[dict]] = None,
) -> List[Tuple[str, PerformanceReport]]:
    """Run the same data under several parameter sets.

    Each variant is ``{'name': ..., 'overrides': {...}}`` with overrides
    nested like the YAML configuration.  Runs are independent: each one
    gets a fresh portfolio.
    """
    results: List[Tuple[str, PerformanceReport]] = []
    for i, variant in enumerate(variants if variants is not None else config.sweeps):
        name = str(variant.get('name', f"variant_{i}"))
        cfg = apply_overrides(config, variant.get('overrides'))
        runner = SimulationRunner(cfg, provider_factory(cfg))
        report = runner.run(data).metrics()
        logger.info(
            "Sweep %s: %d trades, return %.2f%%, max DD %.2f%%",
            name, report.total_trades, report.total_return * 100, report.max_drawdown * 100,
        )
        results.append((name, report))
    return results
