"""
CSV data loader.

This module provides a class to load historical OHLCV data from CSV
files.  Two layouts are recognised:

```
time,open,high,low,close,volume
```

and the tab-separated MetaTrader 5 export
(``<DATE> <TIME> <OPEN> <HIGH> <LOW> <CLOSE> <TICKVOL> ...``).

Only the time, open, high, low and close columns are required; a
missing volume column is filled with NaN.  Timestamps are localised
(naive) or converted (aware) to the configured timezone and the frame
is returned in ascending time order without duplicate timestamps.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable
import pandas as pd


logger = logging.getLogger(__name__)

COLUMNS = ['open', 'high', 'low', 'close', 'volume']


class CSVDataLoader:
    """Load OHLCV data from CSV files for backtesting.

    Parameters
    ----------
    csv_dir : str
        Directory where the CSV files are located.  Each symbol’s file
        must be named `{SYMBOL}.csv`.
    timezone : str
        IANA timezone name used to localise timestamps.
    """

    def __init__(self, csv_dir: str, timezone: str) -> None:
        self.csv_dir = Path(csv_dir)
        self.timezone = timezone

    def _localise(self, index: pd.DatetimeIndex) -> pd.DatetimeIndex:
        if index.tz is None:
            return index.tz_localize(self.timezone)
        return index.tz_convert(self.timezone)

    def _finish(self, df: pd.DataFrame, symbol: str) -> pd.DataFrame:
        df = df.sort_index(kind='mergesort')
        duplicated = df.index.duplicated(keep='last')
        if duplicated.any():
            logger.warning("%s: dropping %d duplicate timestamps", symbol, int(duplicated.sum()))
            df = df[~duplicated]
        return df

    def _load_standard(self, df: pd.DataFrame, symbol: str) -> pd.DataFrame:
        df.columns = [str(c).strip().lower() for c in df.columns]
        if 'volume' not in df.columns and 'tick_volume' in df.columns:
            df = df.rename(columns={'tick_volume': 'volume'})
        missing = [c for c in ['time', 'open', 'high', 'low', 'close'] if c not in df.columns]
        if missing:
            raise ValueError(f"CSV for {symbol} is missing columns {missing}")
        index = pd.DatetimeIndex(pd.to_datetime(df['time'], errors='raise'))
        out = df.reindex(columns=COLUMNS).astype(float)
        out.index = self._localise(index)
        out.index.name = 'time'
        return out

    def _load_mt5(self, file_path: Path, symbol: str) -> pd.DataFrame:
        df = pd.read_csv(file_path, sep="\t", engine="python")
        df.columns = [c.strip() for c in df.columns]

        required = ["<DATE>", "<TIME>", "<OPEN>", "<HIGH>", "<LOW>", "<CLOSE>"]
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise ValueError(
                f"Unrecognized CSV format for {symbol}. Missing columns: {missing}. "
                f"Found columns: {list(df.columns)}"
            )

        dt = df["<DATE>"].astype(str).str.strip() + " " + df["<TIME>"].astype(str).str.strip()
        ts = pd.to_datetime(dt, format="%Y.%m.%d %H:%M:%S", errors="coerce")
        if ts.isna().any():
            # fallback if format differs
            ts = pd.to_datetime(dt, errors="coerce")
        if ts.isna().any():
            bad = dt[ts.isna()].head(5).tolist()
            raise ValueError(f"Could not parse MT5 DATE/TIME for {symbol}. Examples: {bad}")

        volume_col = next((c for c in ("<TICKVOL>", "<VOL>") if c in df.columns), None)
        out = pd.DataFrame(
            {
                "open": df["<OPEN>"].astype(float).values,
                "high": df["<HIGH>"].astype(float).values,
                "low": df["<LOW>"].astype(float).values,
                "close": df["<CLOSE>"].astype(float).values,
                "volume": df[volume_col].astype(float).values if volume_col else float("nan"),
            },
            index=self._localise(pd.DatetimeIndex(ts)),
        )
        out.index.name = 'time'
        return out

    def load(self, symbol: str) -> pd.DataFrame:
        """Return the bars of `symbol` indexed by timestamp."""
        file_path = self.csv_dir / f"{symbol}.csv"
        if not file_path.exists():
            raise FileNotFoundError(f"CSV file not found for symbol {symbol}: {file_path}")

        with file_path.open("r", encoding="utf-8") as fh:
            header = fh.readline()
        if "<DATE>" in header:
            return self._finish(self._load_mt5(file_path, symbol), symbol)
        return self._finish(self._load_standard(pd.read_csv(file_path), symbol), symbol)

    def load_many(self, symbols: Iterable[str]) -> Dict[str, pd.DataFrame]:
        return {symbol: self.load(symbol) for symbol in symbols}

    def get_bars(self, symbol: str, count: int) -> pd.DataFrame:
        """Feed interface used by the live engine: the last `count` bars."""
        return self.load(symbol).iloc[-count:]
