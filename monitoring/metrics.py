"""
metrics.py - Trade and equity metrics collector.

Responsibilities:
- Record closed trades (realized P&L) and equity samples.
- Aggregate win rate, profit factor, realized P&L and drawdown.
- Export trades and the equity curve as pandas DataFrames for reports.

Design notes:
- The collector only records; it never decides when trades open or close.
- All public methods are thread-safe.
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

import pandas as pd


@dataclass(frozen=True)
class TradeRecord:
    """A closed (realized) trade."""
    symbol: str
    entry_ts: int          # milliseconds since epoch
    exit_ts: int           # milliseconds since epoch
    qty: float
    entry_price: float
    exit_price: float
    pnl: float             # net of fees (positive = profit)
    fees: float = 0.0
    side: str = "LONG"
    info: Dict[str, Any] = field(default_factory=dict)

    @property
    def return_pct(self) -> float:
        notional = self.qty * self.entry_price
        return (self.pnl / notional * 100.0) if notional > 0 else 0.0


@dataclass(frozen=True)
class EquitySample:
    ts: int       # milliseconds since epoch
    equity: float


def compute_drawdown(equities: List[float]) -> Tuple[float, float]:
    """
    Maximum drawdown of an equity series.

    Returns:
        (max_drawdown_abs, max_drawdown_fraction); the fraction divides by
        max(1, peak) so tiny peaks cannot blow it up.
    """
    if not equities:
        return 0.0, 0.0
    peak = equities[0]
    max_abs = 0.0
    max_frac = 0.0
    for eq in equities:
        if eq > peak:
            peak = eq
        dd = peak - eq
        max_abs = max(max_abs, dd)
        max_frac = max(max_frac, dd / max(1.0, peak))
    return max_abs, max_frac


def profit_factor(trades: List[TradeRecord]) -> Optional[float]:
    """Gross profit / gross loss; inf with no losing trade, None with no trades."""
    if not trades:
        return None
    gross_profit = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = -sum(t.pnl for t in trades if t.pnl < 0)
    if gross_loss == 0:
        return float('inf') if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Key methods:
      - record_trade(trade: TradeRecord)
      - record_equity(ts_ms: int, equity: float)
      - get_overall_metrics() -> dict
    """

    def __init__(self, equity_retention: Optional[int] = None):
        """
        Args:
            equity_retention: maximum number of equity samples kept (None = all)
        """
        self._lock = threading.RLock()
        self._trades: List[TradeRecord] = []
        self._equity: Deque[EquitySample] = deque(maxlen=equity_retention)

    def record_trade(self, trade: TradeRecord) -> None:
        with self._lock:
            self._trades.append(trade)

    def record_equity(self, ts_ms: int, equity: float) -> None:
        """Append an equity sample; samples are expected in time order."""
        with self._lock:
            self._equity.append(EquitySample(ts=int(ts_ms), equity=float(equity)))

    @property
    def trades(self) -> List[TradeRecord]:
        with self._lock:
            return list(self._trades)

    @property
    def equity_curve(self) -> List[EquitySample]:
        with self._lock:
            return list(self._equity)

    def get_overall_metrics(self) -> Dict[str, Any]:
        """
        Aggregated metrics across all recorded data:
            - total_trades, wins, losses, win_rate_pct
            - realized_pnl, avg_trade_pnl, profit_factor
            - starting_equity, latest_equity
            - max_drawdown_abs, max_drawdown_pct
        """
        with self._lock:
            trades = list(self._trades)
            samples = list(self._equity)

        total = len(trades)
        wins = sum(1 for t in trades if t.pnl > 0)
        realized = sum(t.pnl for t in trades)
        dd_abs, dd_frac = compute_drawdown([s.equity for s in samples])

        return {
            "total_trades": total,
            "wins": wins,
            "losses": total - wins,
            "win_rate_pct": (wins / total * 100.0) if total else None,
            "realized_pnl": realized,
            "avg_trade_pnl": (realized / total) if total else None,
            "profit_factor": profit_factor(trades),
            "starting_equity": samples[0].equity if samples else None,
            "latest_equity": samples[-1].equity if samples else None,
            "max_drawdown_abs": dd_abs,
            "max_drawdown_pct": dd_frac * 100.0,
        }

    def reset(self) -> None:
        with self._lock:
            self._trades.clear()
            self._equity.clear()

    def export_trades(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(asdict(t)) for t in self._trades]

    def trades_frame(self) -> pd.DataFrame:
        rows = self.export_trades()
        return pd.DataFrame(rows) if rows else pd.DataFrame(
            columns=['symbol', 'entry_ts', 'exit_ts', 'qty', 'entry_price', 'exit_price', 'pnl', 'fees', 'side']
        )

    def equity_frame(self) -> pd.DataFrame:
        """Equity curve indexed by UTC datetime."""
        samples = self.equity_curve
        df = pd.DataFrame({'ts': [s.ts for s in samples], 'equity': [s.equity for s in samples]})
        df.index = pd.to_datetime(df['ts'], unit='ms', utc=True)
        return df
