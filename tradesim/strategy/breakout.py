"""
Volume-confirmed range breakout.

This provider tracks the highest high and lowest low of the previous
`lookback` bars and proposes a long (short) trade when the current bar
closes above (below) that range on volume of at least
`volume_multiplier` times the range's average.  It never proposes both
directions at once: a bar whose range engulfs both levels is skipped.
"""

from __future__ import annotations

from typing import List
import pandas as pd

from ..config.schema import StrategyConfig
from ..execution.errors import DataGap
from ..execution.models import Direction, Signal, TakeProfitLevel
from .base import SignalProvider


class BreakoutSignalProvider(SignalProvider):
    """Generate trading signals based on range breakout logic."""

    def __init__(self, config: StrategyConfig) -> None:
        self.config = config
        self.min_lookback = config.lookback + 1

    def _targets(self, direction: Direction, entry: float) -> List[TakeProfitLevel]:
        sign = direction.sign
        levels = self.config.tp_levels or [{'pct': self.config.tp_pct, 'ratio': 1.0}]
        return [
            TakeProfitLevel(price=entry * (1.0 + sign * float(lvl['pct'])), ratio=float(lvl['ratio']))
            for lvl in sorted(levels, key=lambda lvl: float(lvl['pct']))
        ]

    def generate(self, symbol: str, history: pd.DataFrame) -> List[Signal]:
        """Evaluate the last bar of `history`.

        Parameters
        ----------
        symbol : str
            Instrument the history belongs to.
        history : pandas.DataFrame
            Bars up to and including the current one, with ``high``,
            ``low``, ``close`` and optionally ``volume`` columns.

        Returns
        -------
        list of Signal
            Zero or one signal.
        """
        lookback = self.config.lookback
        if len(history) < lookback + 1:
            return []
        window = history.iloc[-(lookback + 1):-1]
        bar = history.iloc[-1]
        if window[['high', 'low']].isna().any().any() or pd.isna(bar['close']):
            raise DataGap(f"{symbol}: missing prices in breakout window ending {history.index[-1]}")

        range_high = float(window['high'].max())
        range_low = float(window['low'].min())
        close = float(bar['close'])

        volume_ratio = 1.0
        if 'volume' in history.columns and self.config.volume_multiplier > 0:
            avg_volume = float(window['volume'].mean())
            if pd.isna(avg_volume) or pd.isna(bar['volume']):
                raise DataGap(f"{symbol}: missing volume in breakout window ending {history.index[-1]}")
            if avg_volume <= 0:
                return []
            volume_ratio = float(bar['volume']) / avg_volume
            if volume_ratio < self.config.volume_multiplier:
                return []

        # Skip outside bars that break both levels
        if bar['high'] > range_high and bar['low'] < range_low:
            return []

        if close > range_high:
            direction = Direction.LONG
        elif close < range_low:
            direction = Direction.SHORT
        else:
            return []

        sl_pct = self.config.sl_pct
        stop = close * (1.0 - direction.sign * sl_pct)
        targets = self._targets(direction, close)
        return [
            Signal(
                symbol=symbol,
                direction=direction,
                entry_price=close,
                stop_loss=stop,
                take_profits=targets,
                confidence=volume_ratio,
                risk_reward=abs(targets[-1].price - close) / (close * sl_pct) if sl_pct else 0.0,
                timestamp=history.index[-1],
                reasoning=f"close {close:.6f} broke {lookback}-bar range [{range_low:.6f}, {range_high:.6f}]",
            )
        ]
