"""Signal provider interface consumed by the runner."""

from __future__ import annotations

from typing import List
import pandas as pd

from ..execution.models import Signal


class SignalProvider:
    """Produce candidate trades from market data.

    `generate` receives every bar up to and including the current one
    and must not look further ahead.  It may raise `DataGap` when the
    history contains no usable data for this bar.
    """

    #: Bars of history required before `generate` is called.
    min_lookback: int = 1

    def generate(self, symbol: str, history: pd.DataFrame) -> List[Signal]:
        raise NotImplementedError
