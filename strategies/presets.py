"""
presets.py - Standard indicator module set.

Every call builds fresh instances; callers own the returned list.
"""

from __future__ import annotations

from typing import List, Optional

from core.config import ModuleSettings
from strategies.base import IndicatorModule
from strategies.bollinger import BollingerModule
from strategies.ema_cross import EmaCrossModule
from strategies.mtf_cross import MtfCrossModule
from strategies.rsi_module import RsiModule


def build_modules(settings: Optional[ModuleSettings] = None) -> List[IndicatorModule]:
    """
    Build [SMA_EMA, RSI, BOLL] plus MTF_SMA when enabled.

    Args:
        settings: Module parameters (defaults when None)

    Returns:
        New list of new module instances
    """
    s = settings or ModuleSettings()
    modules: List[IndicatorModule] = [
        EmaCrossModule(s.ema_short, s.ema_long),
        RsiModule(s.rsi_period),
        BollingerModule(s.boll_period, s.boll_k),
    ]
    if s.use_mtf:
        modules.append(MtfCrossModule(s.mtf_factor, s.mtf_fast, s.mtf_slow))
    return modules
