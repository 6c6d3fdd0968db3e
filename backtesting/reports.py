"""
reports.py - Backtest reporting utilities

Responsibilities:
- Summarize a BacktestResult as a dict and as text
- Render the grid-search leaderboard as a text table
- Plot the equity curve and drawdown to PNG (Agg backend, headless safe)

No trading logic is present here: formatting and plotting only.
"""

from __future__ import annotations

import math
import os
import threading
from typing import Any, Dict, List, Optional, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402

from backtesting.engine import BacktestResult  # noqa: E402
from backtesting.grid_search import GridResult  # noqa: E402

_LOCK = threading.RLock()


def _safe_mkdir(path: str) -> None:
    with _LOCK:
        os.makedirs(path, exist_ok=True)


def _fmt_pf(pf: Optional[float]) -> str:
    if pf is None:
        return "-"
    if math.isinf(pf):
        return "inf"
    return f"{pf:.2f}"


def summarize_result(result: BacktestResult) -> Dict[str, Any]:
    """Headline numbers of one run."""
    pnl = [t.pnl for t in result.trades]
    return {
        'final_equity': result.final_equity,
        'trade_count': result.trade_count,
        'max_drawdown_pct': result.max_drawdown * 100.0,
        'win_rate_pct': result.win_rate,
        'profit_factor': result.profit_factor,
        'realized_pnl': sum(pnl),
        'best_trade': max(pnl) if pnl else None,
        'worst_trade': min(pnl) if pnl else None,
        'weights': dict(result.weights),
    }


def format_summary(result: BacktestResult) -> str:
    s = summarize_result(result)
    lines = [
        result.summary_line(),
        f"Win rate: {s['win_rate_pct']:.1f}% | Profit factor: {_fmt_pf(s['profit_factor'])} | "
        f"Realized P&L: {s['realized_pnl']:.2f}",
    ]
    return "\n".join(lines)


def format_grid_table(results: Sequence[GridResult]) -> str:
    """Leaderboard, one row per combination, best first."""
    header = f"{'#':>3} {'SMA_EMA':>8} {'RSI':>5} {'BOLL':>5} {'Final equity':>14} {'Trades':>7} {'MaxDD%':>7} {'Win%':>6} {'PF':>6}"
    rows: List[str] = [header, "-" * len(header)]
    for rank, g in enumerate(results, start=1):
        r = g.result
        rows.append(
            f"{rank:>3} {g.weights.get('SMA_EMA', 0.0):>8.1f} {g.weights.get('RSI', 0.0):>5.1f} "
            f"{g.weights.get('BOLL', 0.0):>5.1f} {r.final_equity:>14.2f} {r.trade_count:>7d} "
            f"{r.max_drawdown * 100.0:>7.2f} {r.win_rate:>6.1f} {_fmt_pf(r.profit_factor):>6}"
        )
    return "\n".join(rows)


def grid_frame(results: Sequence[GridResult]) -> pd.DataFrame:
    """Leaderboard as a DataFrame (for CSV export)."""
    return pd.DataFrame([
        {
            'sma_ema': g.weights.get('SMA_EMA', 0.0),
            'rsi': g.weights.get('RSI', 0.0),
            'boll': g.weights.get('BOLL', 0.0),
            'mtf_sma': g.weights.get('MTF_SMA', 0.0),
            'final_equity': g.result.final_equity,
            'trade_count': g.result.trade_count,
            'max_drawdown': g.result.max_drawdown,
            'win_rate': g.result.win_rate,
        }
        for g in results
    ])


def plot_equity(result: BacktestResult, out_dir: str = "reports", name: str = "equity_curve") -> Optional[str]:
    """
    Save equity curve and drawdown as a PNG.

    Returns:
        Path of the written file, None when the run has no bars
    """
    if not result.equity_curve:
        return None
    _safe_mkdir(out_dir)

    equity = pd.Series(result.equity_curve, dtype=float)
    peak = equity.cummax().clip(lower=1.0)
    drawdown = (peak - equity) / peak * 100.0

    path = os.path.join(out_dir, f"{name}.png")
    fig, (ax_eq, ax_dd) = plt.subplots(2, 1, figsize=(10, 6), sharex=True, gridspec_kw={'height_ratios': [3, 1]})
    try:
        ax_eq.plot(equity.index, equity.values, color="tab:blue", linewidth=1.0)
        ax_eq.set_title(result.summary_line())
        ax_eq.set_ylabel("Equity")
        ax_eq.grid(True, alpha=0.3)

        ax_dd.fill_between(drawdown.index, 0, -drawdown.values, color="tab:red", alpha=0.4)
        ax_dd.set_ylabel("Drawdown %")
        ax_dd.set_xlabel("Bar")
        ax_dd.grid(True, alpha=0.3)

        fig.tight_layout()
        with _LOCK:
            fig.savefig(path, dpi=100)
    finally:
        plt.close(fig)
    return path
