"""
Error taxonomy for the simulation engine.

Rejections and data gaps are recoverable: the runner logs them and
moves on to the next opportunity.  State corruption and persistence
failures are fatal on the paths that depend on them and must reach the
caller.

The rejection reason strings below are shown verbatim by every
consumer (CLI output, dashboards, logs), so treat them as part of the
public interface.
"""

from __future__ import annotations


REASON_INVALID_PRICE = "non-positive or non-finite price"
REASON_INVERTED_STOP = "stop loss on wrong side of entry"
REASON_INVERTED_TARGET = "take profit on wrong side of entry"
REASON_STOP_TOO_CLOSE = "stop distance below minimum"
REASON_NO_EQUITY = "no equity available"
REASON_HEAT_EXHAUSTED = "heat exhausted"
REASON_INSUFFICIENT_BALANCE = "insufficient balance for acceptable risk"
REASON_INVALID_QUANTITY = "invalid position size"
REASON_RISK_TOO_HIGH = "risk exceeds hard ceiling"
REASON_POSITION_EXISTS = "position already open for symbol"
REASON_MAX_POSITIONS = "max open positions reached"


class SimulationError(Exception):
    """Base class for every error raised by the engine."""


class RejectedSignal(SimulationError):
    """A proposed trade is malformed or economically unsound."""

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = f"{reason}: {detail}" if detail else reason
        super().__init__(message)


class DataGap(SimulationError):
    """A bar or analysis input is missing; skip to the next bar."""


class StateCorruption(SimulationError):
    """A ledger invariant no longer holds."""


class PersistenceFailure(SimulationError):
    """Portfolio state could not be loaded or saved."""
