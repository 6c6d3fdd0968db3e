"""
config.py - Application Configuration

Loads the YAML configuration file and merges each section over the
built-in defaults. Sections map onto small dataclasses so callers get
typed attributes instead of nested dicts.

Usage:
    from core.config import load_config

    cfg = load_config("core/config.yaml")
    cfg.backtest.fee_rate
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "core/config.yaml"


class ConfigError(ValueError):
    """Raised when the configuration file cannot be parsed or is malformed."""


@dataclass
class ModuleSettings:
    """Indicator module parameters."""
    ema_short: int = 20
    ema_long: int = 50
    rsi_period: int = 14
    boll_period: int = 20
    boll_k: float = 2.0
    use_mtf: bool = True
    mtf_factor: int = 12
    mtf_fast: int = 10
    mtf_slow: int = 30


@dataclass
class DecisionSettings:
    """Combined-score thresholds."""
    thr_long: float = 70.0
    thr_short: float = 30.0


@dataclass
class BacktestSettings:
    """Simulated portfolio parameters."""
    initial_cash: float = 10_000.0
    fee_rate: float = 0.0004
    position_fraction: float = 0.2
    grid_top_n: int = 10
    grid_workers: int = 1


@dataclass
class RiskSettings:
    """Daily loss gate."""
    max_daily_loss_pct: float = 2.0
    # Quote-currency base against which realized losses are expressed in percent
    capital_base: float = 10_000.0


@dataclass
class LiveSettings:
    """Live session parameters."""
    symbol: str = "BTC/USDT"
    timeframe: str = "5m"
    testnet: bool = True
    auto_trade: bool = False
    order_quote: float = 100.0
    attach_bracket: bool = True
    take_profit_pct: float = 2.0
    stop_loss_pct: float = 1.5
    poll_interval: float = 2.0
    feed_poll_interval: float = 5.0
    bar_queue_size: int = 256
    max_missed_polls: int = 30


@dataclass
class MonitoringSettings:
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _default_weights() -> Dict[str, float]:
    return {"SMA_EMA": 0.4, "RSI": 0.3, "BOLL": 0.2, "MTF_SMA": 0.1}


@dataclass
class AppConfig:
    """Top-level configuration."""
    modules: ModuleSettings = field(default_factory=ModuleSettings)
    weights: Dict[str, float] = field(default_factory=_default_weights)
    decision: DecisionSettings = field(default_factory=DecisionSettings)
    backtest: BacktestSettings = field(default_factory=BacktestSettings)
    risk: RiskSettings = field(default_factory=RiskSettings)
    live: LiveSettings = field(default_factory=LiveSettings)
    monitoring: MonitoringSettings = field(default_factory=MonitoringSettings)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SECTIONS = {
    "modules": ModuleSettings,
    "decision": DecisionSettings,
    "backtest": BacktestSettings,
    "risk": RiskSettings,
    "live": LiveSettings,
    "monitoring": MonitoringSettings,
}


def _build_section(cls, raw: Any, section: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"Section '{section}' must be a mapping, got {type(raw).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{section}': {sorted(unknown)}")
    return cls(**{k: v for k, v in raw.items() if k in known})


def config_from_dict(raw: Optional[Dict[str, Any]]) -> AppConfig:
    """
    Build an AppConfig from a plain dict, section by section.

    Args:
        raw: Parsed YAML document (may be None or partial)

    Returns:
        AppConfig with defaults for anything not provided

    Raises:
        ConfigError: If a section has the wrong shape
    """
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping")

    kwargs: Dict[str, Any] = {}
    for name, cls in _SECTIONS.items():
        kwargs[name] = _build_section(cls, raw.get(name), name)

    try:
        top_n = int(kwargs["backtest"].grid_top_n)
    except (TypeError, ValueError):
        raise ConfigError("backtest.grid_top_n must be an integer")
    if top_n < 1:
        raise ConfigError(f"backtest.grid_top_n must be at least 1, got {top_n}")

    weights = raw.get("weights")
    if weights is None:
        kwargs["weights"] = _default_weights()
    elif isinstance(weights, dict):
        try:
            kwargs["weights"] = {str(k): float(v) for k, v in weights.items()}
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid weights: {e}")
    else:
        raise ConfigError("Section 'weights' must be a mapping of module id to weight")

    return AppConfig(**kwargs)


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file (defaults to core/config.yaml)

    Returns:
        AppConfig; built-in defaults when the file does not exist

    Raises:
        ConfigError: If the YAML cannot be parsed
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, using defaults")
        return AppConfig()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to load config: {e}")
        raise ConfigError(f"Invalid configuration file: {e}")

    cfg = config_from_dict(raw)
    logger.info(f"Configuration loaded from {config_path}")
    return cfg
