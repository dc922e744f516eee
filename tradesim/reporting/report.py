"""
Report generation utilities.

This module turns simulation results into human‑readable artefacts:
CSV files of trades and equity curve, a JSON summary of performance
metrics and a PNG chart of the equity curve.  Having a central place
for report generation makes it easy to extend the output formats in
future (e.g. HTML reports).
"""

from __future__ import annotations

import os
import json
from typing import List, Optional, Tuple
import pandas as pd
import matplotlib

# Use non‑interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..execution.models import ClosedTrade, EquityPoint
from ..utils.persistence import trade_to_dict
from .metrics import PerformanceReport, compute_metrics


def trades_frame(trades: List[ClosedTrade]) -> pd.DataFrame:
    """Tabulate the trade log, one row per closed trade."""
    rows = []
    for t in trades:
        row = trade_to_dict(t)
        row.pop('venue_confirmation')
        row['fees'] = t.fees
        row['return_pct'] = t.return_pct
        row['holding_hours'] = t.holding_period.total_seconds() / 3600.0
        rows.append(row)
    return pd.DataFrame(rows)


def generate_backtest_report(
    trades: List[ClosedTrade],
    equity_curve: List[EquityPoint],
    out_dir: str = "results",
    initial_balance: Optional[float] = None,
) -> PerformanceReport:
    """Generate report files for a backtest run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv` – detailed list of trades
    - `equity_curve.csv` – account equity and drawdown after each bar
    - `summary.json` – performance metrics
    - `equity_curve.png` – equity curve above a drawdown panel

    Returns the computed metrics.
    """
    os.makedirs(out_dir, exist_ok=True)

    trades_frame(trades).to_csv(os.path.join(out_dir, 'trades.csv'), index=False)

    df_eq = pd.DataFrame(
        {
            'timestamp': [pt.timestamp.isoformat() for pt in equity_curve],
            'equity': [pt.equity for pt in equity_curve],
        },
        columns=['timestamp', 'equity'],
    )
    peak = df_eq['equity'].cummax()
    if initial_balance is not None:
        peak = peak.clip(lower=initial_balance)
    df_eq['drawdown'] = (peak - df_eq['equity']) / peak
    df_eq.to_csv(os.path.join(out_dir, 'equity_curve.csv'), index=False)

    metrics = compute_metrics(trades, equity_curve, initial_balance)
    summary_path = os.path.join(out_dir, 'summary.json')
    with open(summary_path, 'w', encoding='utf-8') as fh:
        json.dump(metrics.to_dict(), fh, indent=2, ensure_ascii=False)

    fig, (ax_eq, ax_dd) = plt.subplots(2, 1, figsize=(10, 6), sharex=True, gridspec_kw={'height_ratios': [3, 1]})
    if not df_eq.empty:
        times = pd.to_datetime(df_eq['timestamp'], utc=True)
        ax_eq.plot(times, df_eq['equity'], linewidth=1.5)
        ax_eq.set_title('Equity Curve')
        ax_eq.set_ylabel('Equity')
        ax_dd.fill_between(times, -df_eq['drawdown'] * 100, 0, color='tab:red', alpha=0.4)
        ax_dd.set_ylabel('Drawdown %')
        ax_dd.set_xlabel('Time')
        fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(os.path.join(out_dir, 'equity_curve.png'))
    plt.close(fig)
    return metrics


def write_sweep_report(results: List[Tuple[str, PerformanceReport]], out_dir: str = "results") -> str:
    """Write one row per sweep variant to `sweep.csv` and return its path."""
    os.makedirs(out_dir, exist_ok=True)
    rows = []
    for name, report in results:
        row = report.to_dict()
        row.pop('exits_by_reason')
        row.pop('monthly_pnl')
        rows.append({'name': name, **row})
    path = os.path.join(out_dir, 'sweep.csv')
    pd.DataFrame(rows).to_csv(path, index=False)
    return path
