"""
Risk-based position sizing.

`RiskSizer` turns a validated signal into a quantity of the underlying,
or rejects it.  The order of the steps matters:

1. reject degenerate stops;
2. size so that hitting the stop loses ``risk_per_trade`` of equity;
3. shrink to the heat that is still available;
4. cap the notional at ``max_position_pct`` of equity;
5. if the cash is not there, shrink to what is affordable, but only
   while the resulting risk stays within the tolerance band;
6. enforce the hard risk ceiling.

A balance shortfall never turns into a silent risk increase beyond the
tolerance band: it is either absorbed or the signal is rejected.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from ..config.schema import RiskConfig
from ..execution.errors import (
    RejectedSignal,
    REASON_HEAT_EXHAUSTED,
    REASON_INSUFFICIENT_BALANCE,
    REASON_INVALID_PRICE,
    REASON_INVALID_QUANTITY,
    REASON_NO_EQUITY,
    REASON_RISK_TOO_HIGH,
    REASON_STOP_TOO_CLOSE,
)
from ..execution.models import Signal


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SizingResult:
    """An accepted size and how it was reached."""
    quantity: float
    notional: float
    margin: float
    risk_amount: float
    risk_fraction: float
    heat_scale: float
    bound_by: str  # 'risk', 'heat', 'notional' or 'balance'


class RiskSizer:
    """Size positions under a per-trade risk budget and a heat cap."""

    def __init__(self, config: RiskConfig) -> None:
        self.config = config

    def size(self, signal: Signal, equity: float, heat: float, balance: float) -> SizingResult:
        """Return the executable size for `signal`.

        Parameters
        ----------
        signal : Signal
            A validated proposal; ``entry_price`` is the expected fill.
        equity : float
            Current portfolio equity.
        heat : float
            Current portfolio heat (fraction of equity).
        balance : float
            Cash available to fund the position.

        Raises
        ------
        RejectedSignal
            With one of the ``REASON_*`` strings from
            `tradesim.execution.errors`.
        """
        cfg = self.config
        entry = signal.entry_price
        if not (math.isfinite(entry) and math.isfinite(signal.stop_loss)) or entry <= 0:
            raise RejectedSignal(REASON_INVALID_PRICE, f"entry={entry} stop={signal.stop_loss}")
        if not math.isfinite(equity) or equity <= 0:
            raise RejectedSignal(REASON_NO_EQUITY, f"equity={equity:.2f}")

        stop_distance = abs(entry - signal.stop_loss)
        if stop_distance <= entry * cfg.min_stop_distance_pct:
            raise RejectedSignal(
                REASON_STOP_TOO_CLOSE,
                f"{stop_distance:.6f} <= {entry * cfg.min_stop_distance_pct:.6f}",
            )

        risk_amount = equity * cfg.risk_per_trade
        quantity = risk_amount / stop_distance
        bound_by = 'risk'

        available_heat = cfg.max_portfolio_heat - heat
        if math.isnan(available_heat) or available_heat <= 0:
            raise RejectedSignal(
                REASON_HEAT_EXHAUSTED,
                f"heat {heat:.2%} >= cap {cfg.max_portfolio_heat:.2%}",
            )
        heat_scale = min(available_heat / cfg.risk_per_trade, 1.0)
        if heat_scale < 1.0:
            quantity *= heat_scale
            bound_by = 'heat'

        max_notional = equity * cfg.max_position_pct
        if quantity * entry > max_notional:
            quantity = max_notional / entry
            bound_by = 'notional'

        required_cash = quantity * entry / cfg.leverage
        if required_cash > balance:
            affordable = max(balance, 0.0) * (1.0 - cfg.fee_buffer_pct) * cfg.leverage / entry
            affordable_risk = affordable * stop_distance / equity
            tolerance = cfg.risk_per_trade * cfg.risk_tolerance_multiplier
            logger.debug(
                "%s needs %.2f cash, %.2f free; affordable %.6f units at %.2f%% risk",
                signal.symbol, required_cash, balance, affordable, affordable_risk * 100,
            )
            if affordable_risk > tolerance:
                raise RejectedSignal(
                    REASON_INSUFFICIENT_BALANCE,
                    f"affordable risk {affordable_risk:.2%} > tolerance {tolerance:.2%}",
                )
            quantity = affordable
            bound_by = 'balance'

        if not math.isfinite(quantity) or quantity <= 0:
            raise RejectedSignal(REASON_INVALID_QUANTITY, f"quantity={quantity}")
        risk_fraction = quantity * stop_distance / equity
        ceiling = cfg.risk_per_trade * cfg.hard_risk_multiplier
        if risk_fraction > ceiling:
            raise RejectedSignal(
                REASON_RISK_TOO_HIGH,
                f"risk {risk_fraction:.2%} > ceiling {ceiling:.2%}",
            )

        notional = quantity * entry
        return SizingResult(
            quantity=quantity,
            notional=notional,
            margin=notional / cfg.leverage,
            risk_amount=quantity * stop_distance,
            risk_fraction=risk_fraction,
            heat_scale=heat_scale,
            bound_by=bound_by,
        )
