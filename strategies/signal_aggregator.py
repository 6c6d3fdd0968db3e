"""
signal_aggregator.py - Weighted score combiner and decision engine.

Combines the latest score of every indicator module into one combined
score in [0, 100] and maps it onto a trading action with two thresholds.
`decide` is a pure function; `SignalAggregator` owns the module list and
the latest score map for one pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from core.types import Bar, Signal, Symbol, Timeframe
from strategies.base import IndicatorModule


logger = logging.getLogger(__name__)

# module id -> weight (need not sum to 1)
Weights = Dict[str, float]
# module id -> latest score
Scores = Dict[str, float]

DEFAULT_THR_UP = 70.0
DEFAULT_THR_DOWN = 30.0


@dataclass(frozen=True)
class Decision:
    """Combined score and the action it maps to."""
    combined_score: float = 50.0
    action: Signal = Signal.NEUTRAL

    def to_dict(self) -> Dict:
        return {'combined_score': self.combined_score, 'action': str(self.action)}


def decide(
    scores: Scores,
    weights: Weights,
    thr_up: float = DEFAULT_THR_UP,
    thr_down: float = DEFAULT_THR_DOWN,
) -> Decision:
    """
    Weighted average of module scores mapped onto an action.

    Scores without a matching weight are ignored. With no usable weight the
    combined score is 50.0 and the action is NEUTRAL.

    Args:
        scores: Latest score per module id
        weights: Weight per module id
        thr_up: Combined score above which the action is LONG
        thr_down: Combined score below which the action is SHORT

    Returns:
        Decision
    """
    acc = 0.0
    sum_w = 0.0
    for module_id, score in scores.items():
        weight = weights.get(module_id)
        if weight is None:
            continue
        acc += weight * (score / 100.0)
        sum_w += weight

    combined = 100.0 * (acc / sum_w) if sum_w > 0 else 50.0
    if combined > thr_up:
        action = Signal.LONG
    elif combined < thr_down:
        action = Signal.SHORT
    else:
        action = Signal.NEUTRAL
    return Decision(combined_score=combined, action=action)


class SignalAggregator:
    """
    Feeds bars through an ordered, caller-owned list of modules.

    Scores persist across bars: a module's last score stays in the map
    until the aggregator is reset.
    """

    def __init__(
        self,
        modules: List[IndicatorModule],
        weights: Optional[Weights] = None,
        thr_up: float = DEFAULT_THR_UP,
        thr_down: float = DEFAULT_THR_DOWN,
    ):
        """
        Args:
            modules: Indicator modules, fed in list order
            weights: Weight per module id (default 1.0 for every module)
            thr_up: LONG threshold
            thr_down: SHORT threshold
        """
        if not modules:
            raise ValueError("At least one indicator module is required")
        self.modules = list(modules)
        self.weights: Weights = dict(weights) if weights is not None else {m.id(): 1.0 for m in self.modules}
        self.thr_up = float(thr_up)
        self.thr_down = float(thr_down)
        self.scores: Scores = {}
        self.last_decision: Optional[Decision] = None

    def on_bar(self, symbol: Symbol, timeframe: Timeframe, bar: Bar) -> Decision:
        """Advance every module by one bar and decide."""
        for module in self.modules:
            result = module.on_bar(symbol, timeframe, bar)
            self.scores[module.id()] = result.score

        decision = decide(self.scores, self.weights, self.thr_up, self.thr_down)
        self.last_decision = decision
        logger.debug(
            "[Aggregator] t=%d close=%.6f combined=%.2f action=%s scores=%s",
            bar.open_time,
            bar.close,
            decision.combined_score,
            decision.action,
            self.scores,
        )
        return decision

    def reset(self) -> None:
        for module in self.modules:
            module.reset()
        self.scores.clear()
        self.last_decision = None


__all__ = ["Decision", "Scores", "Weights", "decide", "SignalAggregator"]
