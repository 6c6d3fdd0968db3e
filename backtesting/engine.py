"""
Backtesting engine.

Responsibilities:
- Replay a bar sequence through caller-supplied indicator modules and the
  decision engine
- Simulate a single-asset, long-only portfolio: LONG opens a position
  sized at a fixed fraction of cash, SHORT only flattens an open long
- Charge a proportional fee on the notional of every entry and exit
- Record closed trades and per-bar equity via MetricsCollector

Design notes:
- A SHORT decision never opens short inventory. The short-cover branch
  is kept for a symmetric extension but is unreachable as long as the
  engine only buys.
- Runs are single-threaded and deterministic: the same bars, modules and
  weights give bit-identical results.
- Modules are caller-owned and must be fresh for each run.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.config import AppConfig, BacktestSettings, DecisionSettings
from core.types import Bar, Signal, Symbol, Timeframe
from monitoring.metrics import MetricsCollector, TradeRecord, profit_factor
from strategies.base import IndicatorModule
from strategies.presets import build_modules
from strategies.signal_aggregator import SignalAggregator, Weights


logger = logging.getLogger(__name__)


class BacktestError(RuntimeError):
    pass


@dataclass
class ExecutionConfig:
    """Simulated portfolio and decision parameters."""
    initial_cash: float = 10_000.0
    fee_rate: float = 0.0004          # fraction of notional per leg
    position_fraction: float = 0.2    # share of cash committed per entry
    thr_up: float = 70.0
    thr_down: float = 30.0

    @classmethod
    def from_settings(
        cls,
        backtest: Optional[BacktestSettings] = None,
        decision: Optional[DecisionSettings] = None,
    ) -> "ExecutionConfig":
        b = backtest or BacktestSettings()
        d = decision or DecisionSettings()
        return cls(
            initial_cash=b.initial_cash,
            fee_rate=b.fee_rate,
            position_fraction=b.position_fraction,
            thr_up=d.thr_long,
            thr_down=d.thr_short,
        )

    def validate(self) -> None:
        if self.initial_cash <= 0:
            raise BacktestError(f"initial_cash must be > 0, got {self.initial_cash}")
        if not 0 <= self.fee_rate < 1:
            raise BacktestError(f"fee_rate must be in [0, 1), got {self.fee_rate}")
        if not 0 < self.position_fraction <= 1:
            raise BacktestError(f"position_fraction must be in (0, 1], got {self.position_fraction}")
        if self.thr_down > self.thr_up:
            raise BacktestError(f"thr_down ({self.thr_down}) above thr_up ({self.thr_up})")


@dataclass
class BacktestResult:
    """
    Outcome of one simulation.

    Attributes:
        final_equity: Cash after the final forced close
        trade_count: Closed trades (including the forced close)
        max_drawdown: Maximum drawdown as a fraction of the running peak
        equity_curve: Equity after every bar
        trades: Closed trades
        weights: Weights the run used
    """
    final_equity: float
    trade_count: int
    max_drawdown: float
    equity_curve: List[float] = field(default_factory=list)
    trades: List[TradeRecord] = field(default_factory=list)
    weights: Dict[str, float] = field(default_factory=dict)

    @property
    def win_rate(self) -> float:
        """Winning trades in percent (0 with no trades)."""
        if not self.trades:
            return 0.0
        return sum(1 for t in self.trades if t.pnl > 0) / len(self.trades) * 100.0

    @property
    def profit_factor(self) -> Optional[float]:
        return profit_factor(self.trades)

    def summary_line(self) -> str:
        return (f"Final equity: {self.final_equity:.2f} | Trades: {self.trade_count} | "
                f"MaxDD: {self.max_drawdown * 100.0:.2f}%")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'final_equity': self.final_equity,
            'trade_count': self.trade_count,
            'max_drawdown': self.max_drawdown,
            'win_rate': self.win_rate,
            'profit_factor': self.profit_factor,
            'weights': dict(self.weights),
        }


class BacktestEngine:
    """
    Bar-by-bar portfolio simulator.

    Public API:
      - run(bars, modules, weights) -> BacktestResult
      - get_metrics() -> Dict (from the last run)
    """

    def __init__(
        self,
        exec_cfg: Optional[ExecutionConfig] = None,
        symbol: Optional[Symbol] = None,
        timeframe: Timeframe = Timeframe.M5,
    ):
        self.exec_cfg = exec_cfg or ExecutionConfig()
        self.exec_cfg.validate()
        self.symbol = symbol or Symbol()
        self.timeframe = timeframe
        self._lock = threading.RLock()
        self._metrics = MetricsCollector()
        self._reset_state()

    def _reset_state(self) -> None:
        self._cash = float(self.exec_cfg.initial_cash)
        self._qty = 0.0
        self._entry_price = 0.0
        self._entry_fee = 0.0
        self._entry_ts = 0
        self._trade_count = 0
        self._trades: List[TradeRecord] = []

    # -------------------------
    # Portfolio mutations
    # -------------------------
    def _fee(self, notional: float) -> float:
        return abs(notional) * self.exec_cfg.fee_rate

    def _record_close(self, bar: Bar, qty: float, exit_price: float, exit_fee: float, pnl: float, side: str) -> None:
        trade = TradeRecord(
            symbol=self.symbol.name,
            entry_ts=self._entry_ts,
            exit_ts=bar.open_time,
            qty=qty,
            entry_price=self._entry_price,
            exit_price=exit_price,
            pnl=pnl,
            fees=self._entry_fee + exit_fee,
            side=side,
        )
        self._trades.append(trade)
        self._metrics.record_trade(trade)
        self._trade_count += 1
        self._qty = 0.0
        self._entry_price = 0.0
        self._entry_fee = 0.0

    def _open_long(self, bar: Bar) -> None:
        price = bar.close
        qty = (self._cash * self.exec_cfg.position_fraction) / price if price > 0 else 0.0
        if qty <= 0:
            return
        notional = qty * price
        fee = self._fee(notional)
        self._cash -= notional + fee
        self._qty += qty
        self._entry_price = price
        self._entry_fee = fee
        self._entry_ts = bar.open_time

    def _close_long(self, bar: Bar, price: float) -> None:
        qty = self._qty
        notional = qty * price
        exit_fee = self._fee(notional)
        self._cash += notional - exit_fee
        pnl = (price - self._entry_price) * qty - self._entry_fee - exit_fee
        self._record_close(bar, qty, price, exit_fee, pnl, "LONG")

    def _close_short(self, bar: Bar, price: float) -> None:
        qty = -self._qty
        notional = qty * price
        exit_fee = self._fee(notional)
        self._cash -= notional + exit_fee
        pnl = (self._entry_price - price) * qty - self._entry_fee - exit_fee
        self._record_close(bar, qty, price, exit_fee, pnl, "SHORT")

    # -------------------------
    # Replay
    # -------------------------
    def run(
        self,
        bars: Sequence[Bar],
        modules: List[IndicatorModule],
        weights: Weights,
    ) -> BacktestResult:
        """
        Simulate the bar sequence.

        Args:
            bars: Bars in non-decreasing open_time order
            modules: Fresh indicator modules for this run
            weights: Weight per module id

        Returns:
            BacktestResult; an empty sequence returns the initial cash untouched

        Raises:
            BacktestError: If no modules are given
        """
        if not modules:
            raise BacktestError("At least one indicator module is required")

        with self._lock:
            self._reset_state()
            self._metrics.reset()
            aggregator = SignalAggregator(modules, weights, self.exec_cfg.thr_up, self.exec_cfg.thr_down)

            equity_peak = self._cash
            max_drawdown = 0.0
            curve: List[float] = []

            for bar in bars:
                decision = aggregator.on_bar(self.symbol, self.timeframe, bar)

                if decision.action == Signal.LONG and self._qty <= 0:
                    if self._qty < 0:
                        self._close_short(bar, bar.close)
                    self._open_long(bar)
                elif decision.action == Signal.SHORT and self._qty > 0:
                    self._close_long(bar, bar.close)

                equity = self._cash + self._qty * bar.close
                equity_peak = max(equity_peak, equity)
                max_drawdown = max(max_drawdown, (equity_peak - equity) / max(1.0, equity_peak))
                curve.append(equity)
                self._metrics.record_equity(bar.open_time, equity)

            if bars and self._qty > 0:
                last = bars[-1]
                self._close_long(last, last.close)

            result = BacktestResult(
                final_equity=self._cash,
                trade_count=self._trade_count,
                max_drawdown=max_drawdown,
                equity_curve=curve,
                trades=list(self._trades),
                weights=dict(weights),
            )

        logger.debug(f"Backtest done: {result.summary_line()} weights={weights}")
        return result

    def get_metrics(self) -> Dict[str, Any]:
        """Aggregated trade/equity metrics of the last run."""
        return self._metrics.get_overall_metrics()

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics


def run_backtest(
    bars: Sequence[Bar],
    config: Optional[AppConfig] = None,
    weights: Optional[Weights] = None,
) -> BacktestResult:
    """
    Run one backtest with the standard module set built from config.

    Args:
        bars: Bars to replay
        config: Application config (defaults when None)
        weights: Weights overriding config.weights

    Returns:
        BacktestResult
    """
    cfg = config or AppConfig()
    engine = BacktestEngine(ExecutionConfig.from_settings(cfg.backtest, cfg.decision))
    return engine.run(bars, build_modules(cfg.modules), weights if weights is not None else cfg.weights)
