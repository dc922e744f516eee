"""
State persistence utilities.

Paper and live trading sessions need to remember their portfolio
across restarts: open positions, signals waiting for their fill, the
closed-trade log and the timestamp of the last processed bar per
symbol.  This module turns a `Portfolio` into plain JSON and back, and
provides the stores the runner saves through.

A `JsonStateStore` must have a single writer.  `lock()` takes an
advisory lock file next to the state file for the duration of a
load-mutate-save cycle.
"""

from __future__ import annotations

import copy
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
import pandas as pd

from ..execution.errors import PersistenceFailure
from ..execution.models import (
    ClosedTrade,
    Direction,
    EquityPoint,
    ExitReason,
    Portfolio,
    Position,
    Signal,
    TakeProfitLevel,
)


def _ts(value: Optional[pd.Timestamp]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[pd.Timestamp]:
    return pd.Timestamp(value) if value is not None else None


def _levels_to_list(levels) -> list:
    return [{'price': lvl.price, 'ratio': lvl.ratio} for lvl in levels]


def _levels_from_list(raw) -> list:
    return [TakeProfitLevel(price=float(lvl['price']), ratio=float(lvl['ratio'])) for lvl in raw]


def _signal_to_dict(signal: Signal) -> Dict[str, Any]:
    return {
        'symbol': signal.symbol,
        'direction': signal.direction.value,
        'entry_price': signal.entry_price,
        'stop_loss': signal.stop_loss,
        'take_profits': _levels_to_list(signal.take_profits),
        'confidence': signal.confidence,
        'risk_reward': signal.risk_reward,
        'timestamp': _ts(signal.timestamp),
        'reasoning': signal.reasoning,
    }


def _signal_from_dict(raw: Dict[str, Any]) -> Signal:
    return Signal(
        symbol=raw['symbol'],
        direction=Direction(raw['direction']),
        entry_price=raw['entry_price'],
        stop_loss=raw['stop_loss'],
        take_profits=_levels_from_list(raw['take_profits']),
        confidence=raw['confidence'],
        risk_reward=raw['risk_reward'],
        timestamp=_parse_ts(raw['timestamp']),
        reasoning=raw.get('reasoning', ''),
    )


def _position_to_dict(pos: Position) -> Dict[str, Any]:
    return {
        'id': pos.id,
        'symbol': pos.symbol,
        'direction': pos.direction.value,
        'entry_price': pos.entry_price,
        'quantity': pos.quantity,
        'original_quantity': pos.original_quantity,
        'stop_loss': pos.stop_loss,
        'initial_stop': pos.initial_stop,
        'take_profits': _levels_to_list(pos.take_profits),
        'entry_time': _ts(pos.entry_time),
        'entry_fee': pos.entry_fee,
        'margin': pos.margin,
        'current_price': pos.current_price,
        'unrealized_pnl': pos.unrealized_pnl,
        'max_favorable_excursion': pos.max_favorable_excursion,
        'max_adverse_excursion': pos.max_adverse_excursion,
        'bars_held': pos.bars_held,
        'trail_active': pos.trail_active,
        'confidence': pos.confidence,
        'venue_confirmation': pos.venue_confirmation,
    }


def _position_from_dict(raw: Dict[str, Any]) -> Position:
    return Position(
        id=raw['id'],
        symbol=raw['symbol'],
        direction=Direction(raw['direction']),
        entry_price=raw['entry_price'],
        quantity=raw['quantity'],
        original_quantity=raw['original_quantity'],
        stop_loss=raw['stop_loss'],
        initial_stop=raw['initial_stop'],
        take_profits=_levels_from_list(raw['take_profits']),
        entry_time=_parse_ts(raw['entry_time']),
        entry_fee=raw['entry_fee'],
        margin=raw['margin'],
        current_price=raw['current_price'],
        unrealized_pnl=raw['unrealized_pnl'],
        max_favorable_excursion=raw['max_favorable_excursion'],
        max_adverse_excursion=raw['max_adverse_excursion'],
        bars_held=raw['bars_held'],
        trail_active=raw['trail_active'],
        confidence=raw['confidence'],
        venue_confirmation=raw.get('venue_confirmation'),
    )


def trade_to_dict(trade: ClosedTrade) -> Dict[str, Any]:
    return {
        'id': trade.id,
        'symbol': trade.symbol,
        'direction': trade.direction.value,
        'entry_price': trade.entry_price,
        'exit_price': trade.exit_price,
        'quantity': trade.quantity,
        'initial_stop': trade.initial_stop,
        'stop_loss': trade.stop_loss,
        'entry_time': _ts(trade.entry_time),
        'exit_time': _ts(trade.exit_time),
        'entry_fee': trade.entry_fee,
        'exit_fee': trade.exit_fee,
        'gross_pnl': trade.gross_pnl,
        'net_pnl': trade.net_pnl,
        'exit_reason': trade.exit_reason.value,
        'bars_held': trade.bars_held,
        'max_favorable_excursion': trade.max_favorable_excursion,
        'max_adverse_excursion': trade.max_adverse_excursion,
        'confidence': trade.confidence,
        'venue_confirmation': trade.venue_confirmation,
    }


def _trade_from_dict(raw: Dict[str, Any]) -> ClosedTrade:
    values = dict(raw)
    values['direction'] = Direction(raw['direction'])
    values['exit_reason'] = ExitReason(raw['exit_reason'])
    values['entry_time'] = _parse_ts(raw['entry_time'])
    values['exit_time'] = _parse_ts(raw['exit_time'])
    return ClosedTrade(**values)


def portfolio_to_dict(portfolio: Portfolio, max_equity_points: int = 0) -> Dict[str, Any]:
    """Convert a portfolio into a JSON-serialisable dictionary.

    With ``max_equity_points`` > 0 only the newest points of the equity
    curve are kept.  Peak equity and max drawdown are stored on their
    own, so a trimmed curve does not change the restored ledger.
    """
    curve = portfolio.equity_curve
    if max_equity_points > 0:
        curve = curve[-max_equity_points:]
    return {
        'balance': portfolio.balance,
        'peak_equity': portfolio.peak_equity,
        'max_drawdown': portfolio.max_drawdown,
        'open_positions': {sym: _position_to_dict(p) for sym, p in portfolio.open_positions.items()},
        'closed_trades': [trade_to_dict(t) for t in portfolio.closed_trades],
        'equity_curve': [
            {'timestamp': _ts(pt.timestamp), 'equity': pt.equity} for pt in curve
        ],
        'pending_signals': {sym: _signal_to_dict(s) for sym, s in portfolio.pending_signals.items()},
        'last_bar_time': {sym: _ts(ts) for sym, ts in portfolio.last_bar_time.items()},
        'wins': portfolio.wins,
        'losses': portfolio.losses,
        'gross_profit': portfolio.gross_profit,
        'gross_loss': portfolio.gross_loss,
        'trade_seq': portfolio.trade_seq,
    }


def portfolio_from_dict(raw: Dict[str, Any]) -> Portfolio:
    """Rebuild a portfolio from `portfolio_to_dict` output."""
    try:
        return Portfolio(
            balance=raw['balance'],
            peak_equity=raw['peak_equity'],
            max_drawdown=raw['max_drawdown'],
            open_positions={sym: _position_from_dict(p) for sym, p in raw['open_positions'].items()},
            closed_trades=[_trade_from_dict(t) for t in raw['closed_trades']],
            equity_curve=[
                EquityPoint(timestamp=_parse_ts(pt['timestamp']), equity=pt['equity'])
                for pt in raw['equity_curve']
            ],
            pending_signals={sym: _signal_from_dict(s) for sym, s in raw['pending_signals'].items()},
            last_bar_time={sym: _parse_ts(ts) for sym, ts in raw['last_bar_time'].items()},
            wins=raw['wins'],
            losses=raw['losses'],
            gross_profit=raw['gross_profit'],
            gross_loss=raw['gross_loss'],
            trade_seq=raw['trade_seq'],
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise PersistenceFailure(f"Malformed portfolio state: {exc!r}") from exc


class StateStore:
    """Load/save boundary between the runner and durable storage."""

    def __init__(self, initial_balance: float) -> None:
        self.initial_balance = initial_balance

    def default(self) -> Portfolio:
        return Portfolio(balance=self.initial_balance)

    def load(self) -> Portfolio:
        raise NotImplementedError

    def save(self, portfolio: Portfolio) -> None:
        raise NotImplementedError

    @contextmanager
    def lock(self) -> Iterator[None]:
        yield


class MemoryStateStore(StateStore):
    """Keeps a serialised snapshot in memory; useful for tests and sweeps."""

    def __init__(self, initial_balance: float) -> None:
        super().__init__(initial_balance)
        self._snapshot: Optional[Dict[str, Any]] = None

    def load(self) -> Portfolio:
        if self._snapshot is None:
            return self.default()
        return portfolio_from_dict(copy.deepcopy(self._snapshot))

    def save(self, portfolio: Portfolio) -> None:
        self._snapshot = portfolio_to_dict(portfolio)


class JsonStateStore(StateStore):
    """Persist the portfolio to a JSON file.

    Parameters
    ----------
    path : str
        Path to the JSON state file.
    initial_balance : float
        Balance of the default portfolio returned when no file exists.
    max_equity_points : int
        Cap on the equity-curve points written per save (0 keeps all).
    """

    def __init__(self, path: str, initial_balance: float, max_equity_points: int = 0) -> None:
        super().__init__(initial_balance)
        self.max_equity_points = max_equity_points
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + '.lock')

    def load(self) -> Portfolio:
        if not self.path.exists():
            return self.default()
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as exc:
            raise PersistenceFailure(f"Cannot read state file {self.path}: {exc}") from exc
        return portfolio_from_dict(raw)

    def save(self, portfolio: Portfolio) -> None:
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            state = portfolio_to_dict(portfolio, self.max_equity_points)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(state, fh, ensure_ascii=False, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"Cannot write state file {self.path}: {exc}") from exc

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold ``<state>.lock`` for the duration of the block."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as exc:
            raise PersistenceFailure(
                f"State file {self.path} is locked by another process ({self.lock_path})"
            ) from exc
        try:
            try:
                os.write(fd, str(os.getpid()).encode("ascii"))
            finally:
                os.close(fd)
            yield
        finally:
            os.unlink(self.lock_path)
