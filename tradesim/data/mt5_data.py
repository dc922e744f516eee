"""
MetaTrader 5 bar feed.

`MT5DataFeed` serves the live engine: every tick it asks the terminal
for the last ``count`` closed bars of a symbol.  The terminal always
reports the bar that is still forming as the newest one, so one extra
bar is requested and that one is dropped.

The `MetaTrader5` package is only needed here and in `MT5Venue`;
offline backtests never import it successfully and never need to.
"""

from __future__ import annotations

import logging
from typing import Iterable
import pandas as pd

from ..config.schema import MT5Config

# Attempt to import MetaTrader5.  If unavailable, mt5 will be None.
try:
    import MetaTrader5 as mt5  # type: ignore
except ImportError:
    mt5 = None  # Will be checked at runtime


logger = logging.getLogger(__name__)

COLUMNS = ['open', 'high', 'low', 'close', 'volume']
SUPPORTED_TIMEFRAMES = ('M1', 'M5', 'M15', 'M30', 'H1', 'H4', 'D1')


def _require_mt5():
    if mt5 is None:
        raise RuntimeError(
            "MetaTrader5 package is not installed.  Install it with 'pip install MetaTrader5' to use paper or live trading."
        )
    return mt5


class MT5DataFeed:
    """Closed bars from a locally running MetaTrader 5 terminal.

    Parameters
    ----------
    config : MT5Config
        Terminal path and account credentials.
    timezone : str
        Timezone the returned index is converted to.
    timeframe : str
        One of `SUPPORTED_TIMEFRAMES`.
    symbols : iterable of str
        Symbols added to Market Watch on `connect`.
    """

    def __init__(self, config: MT5Config, timezone: str, timeframe: str = "H4", symbols: Iterable[str] = ()) -> None:
        if timeframe.upper() not in SUPPORTED_TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe for MT5: {timeframe}")
        self.config = config
        self.timezone = timezone
        self.timeframe = timeframe.upper()
        self.symbols = list(symbols)
        self._connected = False

    def connect(self) -> None:
        """Initialise the terminal and select every configured symbol.

        Raises
        ------
        RuntimeError
            If the package is missing, the terminal cannot be initialised
            or a symbol is unknown to the broker.
        """
        terminal = _require_mt5()
        if not terminal.initialize(
            path=self.config.path,
            login=self.config.login,
            password=self.config.password,
            server=self.config.server,
        ):
            raise RuntimeError(f"MT5 initialisation failed: {terminal.last_error()}")
        self._connected = True
        for symbol in self.symbols:
            if not terminal.symbol_select(symbol, True):
                self.shutdown()
                raise RuntimeError(f"MT5 cannot select symbol {symbol}: {terminal.last_error()}")
        logger.info("Connected to MT5 (%s, %s)", self.config.server or "default server", self.timeframe)

    def shutdown(self) -> None:
        if mt5 is not None and self._connected:
            mt5.shutdown()
            self._connected = False

    def get_bars(self, symbol: str, count: int) -> pd.DataFrame:
        """Return up to `count` closed bars, oldest first.

        An empty frame (with the usual columns) means the terminal had
        no data for the symbol.
        """
        if not self._connected:
            raise RuntimeError("MT5DataFeed is not connected.  Call connect() before requesting data.")
        terminal = _require_mt5()
        timeframe = getattr(terminal, f"TIMEFRAME_{self.timeframe}")
        rates = terminal.copy_rates_from_pos(symbol, timeframe, 0, count + 1)
        if rates is None or len(rates) < 2:
            logger.warning("%s: MT5 returned no closed bars (%s)", symbol, terminal.last_error())
            return pd.DataFrame(columns=COLUMNS)
        frame = pd.DataFrame(rates)
        index = pd.DatetimeIndex(pd.to_datetime(frame['time'], unit='s', utc=True), name='time')
        bars = frame.rename(columns={'tick_volume': 'volume'}).reindex(columns=COLUMNS).astype(float)
        bars.index = index.tz_convert(self.timezone)
        return bars.sort_index().iloc[:-1]
