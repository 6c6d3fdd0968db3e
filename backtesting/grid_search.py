"""
grid_search.py - Weight grid search over the standard module set.

Enumerates every integer weight triple (i, j, k) with i, j, k >= 1 and
i + j + k = 10 for SMA_EMA / RSI / BOLL (in tenths), runs an independent
backtest per triple with fresh modules, and keeps the best results by
final equity.

Combinations share nothing, so they may run on a process pool; results
come back in enumeration order and are merged by one stable sort.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from core.config import AppConfig
from core.types import Bar
from backtesting.engine import BacktestEngine, BacktestResult, ExecutionConfig
from strategies.presets import build_modules
from strategies.signal_aggregator import Weights


logger = logging.getLogger(__name__)

GRID_TOTAL = 10
# Fixed multi-timeframe weight while the other three are searched
MTF_GRID_WEIGHT = 0.2


def weight_grid(total: int = GRID_TOTAL) -> Iterator[Tuple[int, int, int]]:
    """Yield (i, j, k), all >= 1, with i + j + k == total."""
    for i in range(1, total - 1):
        for j in range(1, total - i):
            k = total - i - j
            if k >= 1:
                yield i, j, k


def weights_for(triple: Tuple[int, int, int], use_mtf: bool, total: int = GRID_TOTAL) -> Weights:
    i, j, k = triple
    weights = {"SMA_EMA": i / total, "RSI": j / total, "BOLL": k / total}
    if use_mtf:
        weights["MTF_SMA"] = MTF_GRID_WEIGHT
    return weights


@dataclass(frozen=True)
class GridResult:
    """One ranked grid combination."""
    triple: Tuple[int, int, int]
    result: BacktestResult

    @property
    def weights(self) -> Weights:
        return self.result.weights

    @property
    def final_equity(self) -> float:
        return self.result.final_equity


def simulate(bars: Sequence[Bar], config: AppConfig, weights: Weights) -> BacktestResult:
    """One independent simulation with fresh modules and a fresh portfolio."""
    engine = BacktestEngine(ExecutionConfig.from_settings(config.backtest, config.decision))
    return engine.run(bars, build_modules(config.modules), weights)


# Per-process context, set once by the pool initializer
_worker_bars: Sequence[Bar] = ()
_worker_config: Optional[AppConfig] = None


def _init_worker(bars: Sequence[Bar], config: AppConfig) -> None:
    global _worker_bars, _worker_config
    _worker_bars = bars
    _worker_config = config


def _simulate_in_worker(weights: Weights) -> BacktestResult:
    return simulate(_worker_bars, _worker_config, weights)


def _resolve_workers(n_items: int, max_workers: Optional[int]) -> int:
    if max_workers is None:
        return max(1, min(os.cpu_count() or 1, n_items))
    return max(1, min(int(max_workers), n_items))


def run_grid_search(
    bars: Sequence[Bar],
    config: Optional[AppConfig] = None,
    max_workers: Optional[int] = 1,
    top_n: int = 10,
) -> List[GridResult]:
    """
    Evaluate the whole weight grid.

    Args:
        bars: Bars to replay for every combination
        config: Application config (module and portfolio settings)
        max_workers: Process pool size; 1 runs sequentially, None uses all CPUs
        top_n: Results kept

    Returns:
        At most top_n results, sorted by final equity descending
        (enumeration order breaks ties)
    """
    cfg = config or AppConfig()
    bars = list(bars)
    triples = list(weight_grid())
    combos = [weights_for(t, cfg.modules.use_mtf) for t in triples]
    workers = _resolve_workers(len(combos), max_workers)

    logger.info(f"Grid search: {len(combos)} combinations, {len(bars)} bars, workers={workers}")

    if workers == 1:
        results = [simulate(bars, cfg, w) for w in combos]
    else:
        with ProcessPoolExecutor(
            max_workers=workers,
            initializer=_init_worker,
            initargs=(bars, cfg),
        ) as pool:
            results = list(pool.map(_simulate_in_worker, combos))

    ranked = sorted(
        (GridResult(triple=t, result=r) for t, r in zip(triples, results)),
        key=lambda g: g.final_equity,
        reverse=True,
    )
    return ranked[:max(0, int(top_n))]
