"""
Configuration schema and loader.

This module defines dataclasses that mirror the expected structure of
the YAML configuration file (`config.yaml`).  A helper function
`load_config()` reads a YAML file from disk and returns an instance
of `Config` populated with reasonable defaults for any missing
fields.

Using dataclasses provides type hints and a clear contract for what
values are expected.  When extending the configuration, add new
fields to the appropriate dataclass; the loader picks them up from
the dataclass defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from typing import List, Optional, Dict, Any
import yaml


@dataclass
class RiskConfig:
    """Position sizing and portfolio risk limits.

    Attributes
    ----------
    initial_balance : float
        Starting cash balance of a fresh portfolio.
    risk_per_trade : float
        Fraction of equity put at risk (entry to stop) by one trade.
    max_portfolio_heat : float
        Cap on aggregate open risk as a fraction of equity.
    max_position_pct : float
        Cap on the notional value of one position as a fraction of equity.
    min_stop_distance_pct : float
        Signals whose stop is closer than this fraction of the entry
        price are rejected.
    fee_buffer_pct : float
        Share of free cash held back for fees when a position has to be
        shrunk to what the balance can afford.
    risk_tolerance_multiplier : float
        How far above `risk_per_trade` a balance-constrained position may
        go before it is rejected.
    hard_risk_multiplier : float
        Absolute ceiling on the risk of any accepted position, as a
        multiple of `risk_per_trade`.
    adverse_move_assumption : float
        Assumed adverse move used for the position-value heat estimate.
    leverage : float
        Notional divided by reserved cash.  ``1.0`` means fully funded.
    max_open_positions : int
        Maximum number of simultaneously open positions.
    """

    initial_balance: float = 10_000.0
    risk_per_trade: float = 0.01
    max_portfolio_heat: float = 0.06
    max_position_pct: float = 0.5
    min_stop_distance_pct: float = 0.001
    fee_buffer_pct: float = 0.05
    risk_tolerance_multiplier: float = 1.5
    hard_risk_multiplier: float = 2.0
    adverse_move_assumption: float = 0.10
    leverage: float = 1.0
    max_open_positions: int = 3


@dataclass
class ExitConfig:
    """Exit management beyond the signal's own stop and targets.

    Attributes
    ----------
    trailing_stop : bool
        Enable the trailing stop.
    trail_activation_pct : float
        Favourable move (from entry to the bar extreme) that arms the trail.
    trail_distance_pct : float
        Distance of the trailed stop from the bar extreme.
    max_holding_bars : int
        Force-close after this many bars.  ``0`` disables the time exit.
    """

    trailing_stop: bool = False
    trail_activation_pct: float = 0.015
    trail_distance_pct: float = 0.01
    max_holding_bars: int = 0


@dataclass
class CostsConfig:
    """Models trading costs.

    Attributes
    ----------
    fee_rate : float
        Fee charged on notional for every fill (0.001 = 0.1 %).
    slippage_pct : float
        Adverse price movement applied to market fills (entries, stop,
        time and session exits), as a fraction of price.  Take-profit
        fills are limit orders and get no slippage.
    money_decimals : int
        Decimal places P&L and fees are rounded to when a trade closes.
    """

    fee_rate: float = 0.001
    slippage_pct: float = 0.0
    money_decimals: int = 2


@dataclass
class StrategyConfig:
    """Parameters of the bundled breakout signal provider.

    Attributes
    ----------
    lookback : int
        Number of prior bars forming the breakout range.
    volume_multiplier : float
        Required ratio of the bar's volume to the range's average volume.
    sl_pct, tp_pct : float
        Stop-loss and take-profit distance as a fraction of the entry price.
    tp_levels : list of dict
        Optional scaled targets, e.g. ``[{pct: 0.03, ratio: 0.5},
        {pct: 0.06, ratio: 0.5}]``.  Overrides `tp_pct` when given.
    """

    lookback: int = 10
    volume_multiplier: float = 2.0
    sl_pct: float = 0.03
    tp_pct: float = 0.06
    tp_levels: List[Dict[str, float]] = field(default_factory=list)


@dataclass
class SessionConfig:
    """Defines the trading session for each day.

    Attributes
    ----------
    enabled : bool
        When false the market is treated as always open.
    start : str
        Start time in `HH:MM` 24‑hour format.  The time is interpreted in
        the timezone specified by the `data.timezone` configuration.
    end : str
        End time in `HH:MM` format.  The end is exclusive: bars outside
        the window close any open position and take no new signals.
    """

    enabled: bool = False
    start: str = "06:00"
    end: str = "20:00"


@dataclass
class MT5Config:
    """Holds parameters required to connect to a MetaTrader 5 terminal.

    Attributes
    ----------
    login : int
        Account login number.
    password : str
        Password for the account.
    server : str
        Broker server name (e.g. ``Bidget-MT5-Live``).
    path : str
        File system path to the MetaTrader 5 terminal executable
        (`terminal64.exe`).
    deviation : int
        Maximum price deviation in points accepted for market orders.
    """

    login: int = 0
    password: str = ""
    server: str = ""
    path: str = ""
    deviation: int = 20


@dataclass
class DataConfig:
    """Data source configuration.

    Attributes
    ----------
    source : str
        ``csv`` or ``mt5``; the bar feed used by the engine.
    csv_dir : str
        Directory containing one CSV file per symbol.
    timezone : str
        IANA timezone name used for timestamps and the trading session.
    history_bars : int
        Number of bars requested from a live feed on every tick.
    """

    source: str = "csv"
    csv_dir: str = "data"
    timezone: str = "UTC"
    history_bars: int = 200


@dataclass
class Config:
    """Root configuration for the simulator.

    Attributes
    ----------
    symbols : List[str]
        Instruments to trade, in tie-break order for equal timestamps.
    timeframe : str
        Bar timeframe, used by the MT5 feed.
    mode : str
        ``backtest``, ``paper`` or ``live``.
    state_file : str
        JSON file holding the engine's portfolio between ticks.
    results_dir : str
        Output directory for reports.
    poll_seconds : int
        Sleep between ticks of the polling engine.
    state_equity_points : int
        Newest equity-curve points kept in the state file (0 keeps all).
    sweeps : list of dict
        Named override sets for parameter sweeps, each
        ``{name: ..., overrides: {...}}``.
    """

    symbols: List[str] = field(default_factory=lambda: ["BTCUSDT"])
    timeframe: str = "H4"
    mode: str = "backtest"
    risk: RiskConfig = field(default_factory=RiskConfig)
    exits: ExitConfig = field(default_factory=ExitConfig)
    costs: CostsConfig = field(default_factory=CostsConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    data: DataConfig = field(default_factory=DataConfig)
    mt5: MT5Config = field(default_factory=MT5Config)
    state_file: str = "state/portfolio.json"
    results_dir: str = "results"
    poll_seconds: int = 60
    state_equity_points: int = 5000
    sweeps: List[Dict[str, Any]] = field(default_factory=list)


_SECTIONS = {
    'risk': RiskConfig,
    'exits': ExitConfig,
    'costs': CostsConfig,
    'strategy': StrategyConfig,
    'session': SessionConfig,
    'data': DataConfig,
    'mt5': MT5Config,
}


def _merge_dict(defaults: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge two dictionaries.

    The values in `override` take precedence over those in `defaults`.
    This helper is used when loading YAML into nested dataclasses.
    """
    result: Dict[str, Any] = defaults.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def _as_int(key: str, value: Any) -> int:
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"{key} must be a whole number, got {value!r}")
    return int(number)


def _build_section(cls, values: Dict[str, Any]):
    known = {f.name: f for f in fields(cls)}
    unknown = set(values) - set(known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    kwargs: Dict[str, Any] = {}
    for name, value in values.items():
        default = getattr(cls(), name)
        # Coerce YAML scalars to the type of the dataclass default
        if isinstance(default, bool):
            kwargs[name] = bool(value)
        elif isinstance(default, int) and value is not None:
            kwargs[name] = _as_int(f"{cls.__name__}.{name}", value)
        elif isinstance(default, (float, str)) and value is not None:
            kwargs[name] = type(default)(value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def validate_config(cfg: Config) -> None:
    """Raise `ValueError` for settings the engine cannot honour."""
    risk = cfg.risk
    if risk.initial_balance <= 0:
        raise ValueError("risk.initial_balance must be positive")
    if not 0 < risk.risk_per_trade < 1:
        raise ValueError("risk.risk_per_trade must be in (0, 1)")
    if risk.max_portfolio_heat <= 0:
        raise ValueError("risk.max_portfolio_heat must be positive")
    if risk.leverage < 1:
        raise ValueError("risk.leverage must be >= 1")
    if risk.risk_tolerance_multiplier > risk.hard_risk_multiplier:
        raise ValueError("risk.risk_tolerance_multiplier must not exceed risk.hard_risk_multiplier")
    if not 0 <= risk.fee_buffer_pct < 1:
        raise ValueError("risk.fee_buffer_pct must be in [0, 1)")
    if cfg.costs.fee_rate < 0 or cfg.costs.slippage_pct < 0:
        raise ValueError("costs must be non-negative")
    if cfg.exits.max_holding_bars < 0:
        raise ValueError("exits.max_holding_bars must be >= 0")
    if cfg.strategy.lookback < 1:
        raise ValueError("strategy.lookback must be >= 1")
    if cfg.data.source not in ('csv', 'mt5'):
        raise ValueError(f"Unsupported data.source: {cfg.data.source}")
    if cfg.mode not in ('backtest', 'paper', 'live'):
        raise ValueError(f"Unsupported mode: {cfg.mode}")
    if cfg.state_equity_points < 0:
        raise ValueError("state_equity_points must be >= 0")


def config_from_dict(raw: Dict[str, Any]) -> Config:
    """Build a validated `Config` from a (possibly partial) nested dict."""
    merged = _merge_dict(config_to_dict(Config()), raw or {})
    sections = {name: _build_section(cls, merged[name]) for name, cls in _SECTIONS.items()}
    cfg = Config(
        symbols=[str(s) for s in merged.get('symbols', [])],
        timeframe=str(merged.get('timeframe', 'H4')),
        mode=str(merged.get('mode', 'backtest')).lower(),
        state_file=str(merged.get('state_file', 'state/portfolio.json')),
        results_dir=str(merged.get('results_dir', 'results')),
        poll_seconds=_as_int('poll_seconds', merged.get('poll_seconds', 60)),
        state_equity_points=_as_int('state_equity_points', merged.get('state_equity_points', 5000)),
        sweeps=list(merged.get('sweeps') or []),
        **sections,
    )
    validate_config(cfg)
    return cfg


def config_to_dict(cfg: Config) -> Dict[str, Any]:
    return asdict(cfg)


def apply_overrides(cfg: Config, overrides: Optional[Dict[str, Any]]) -> Config:
    """Return a new configuration with nested `overrides` merged in."""
    return config_from_dict(_merge_dict(config_to_dict(cfg), overrides or {}))


def load_config(path: str) -> Config:
    """Load a configuration file from the given YAML path.

    Parameters
    ----------
    path : str
        Path to the YAML file.

    Returns
    -------
    Config
        A populated configuration object.  Missing fields are filled with
        sensible defaults defined in the dataclasses.
    """
    with open(path, "r", encoding="utf-8") as fh:
        raw: Dict[str, Any] = yaml.safe_load(fh) or {}
    return config_from_dict(raw)
