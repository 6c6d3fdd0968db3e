"""
daily_loss_guard.py - Daily Loss Budget Gate

Coarse trade gate: accumulates realized loss percentages reported by the
caller and refuses new trades once the daily budget is spent. The budget
resets on the first call after the local calendar day changes.

This is not a ledger. It never raises, never blocks, and the
allow_trade() / add_loss_pct() pair is not atomic; two submissions racing
through allow_trade() may both pass.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Any


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def day_key(day: date) -> int:
    """Encode a date as yyyymmdd."""
    return day.year * 10000 + day.month * 100 + day.day


@dataclass(frozen=True)
class RiskState:
    """
    Snapshot of the daily loss gate.

    Attributes:
        day_key: Current day as yyyymmdd
        daily_loss_accumulated_pct: Loss reported so far today, in percent
        max_daily_loss_pct: Daily budget in percent
    """
    day_key: int
    daily_loss_accumulated_pct: float
    max_daily_loss_pct: float

    @property
    def remaining_pct(self) -> float:
        return max(0.0, self.max_daily_loss_pct - self.daily_loss_accumulated_pct)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'day_key': self.day_key,
            'daily_loss_accumulated_pct': self.daily_loss_accumulated_pct,
            'max_daily_loss_pct': self.max_daily_loss_pct,
        }


class RiskManager:
    """
    Daily loss budget with calendar-day rollover.

    The calendar source is injectable so day rollover can be driven
    deterministically.
    """

    def __init__(
        self,
        max_daily_loss_pct: float = 2.0,
        today: Callable[[], date] = date.today,
    ):
        """
        Args:
            max_daily_loss_pct: Daily loss budget in percent
            today: Callable returning the current local date
        """
        self.max_daily_loss_pct = float(max_daily_loss_pct)
        self._today = today
        self._lock = threading.Lock()
        self._day = day_key(self._today())
        self._daily_loss = 0.0

        logger.info(f"RiskManager initialized: max_daily_loss={self.max_daily_loss_pct:.2f}%")

    def _roll_day(self) -> None:
        current = day_key(self._today())
        if current != self._day:
            logger.info(
                f"New trading day {current}: resetting daily loss "
                f"({self._daily_loss:.2f}% on {self._day})"
            )
            self._day = current
            self._daily_loss = 0.0

    def allow_trade(self) -> bool:
        """True while today's accumulated loss is below the budget."""
        with self._lock:
            self._roll_day()
            return self._daily_loss < self.max_daily_loss_pct

    def add_loss_pct(self, pct: float) -> None:
        """Add a realized loss, in percent, to today's total."""
        with self._lock:
            self._roll_day()
            self._daily_loss += pct
            total = self._daily_loss
        logger.info(f"Daily loss now {total:.2f}% of {self.max_daily_loss_pct:.2f}%")
        if total >= self.max_daily_loss_pct:
            logger.warning("Daily loss budget exhausted: new trades blocked until tomorrow")

    def force_reset_day(self) -> None:
        """Zero the accumulator and adopt the current day."""
        with self._lock:
            self._daily_loss = 0.0
            self._day = day_key(self._today())
        logger.info("Daily loss manually reset")

    @property
    def state(self) -> RiskState:
        with self._lock:
            return RiskState(
                day_key=self._day,
                daily_loss_accumulated_pct=self._daily_loss,
                max_daily_loss_pct=self.max_daily_loss_pct,
            )

    def __repr__(self) -> str:
        s = self.state
        return (f"RiskManager(day={s.day_key}, loss={s.daily_loss_accumulated_pct:.2f}%, "
                f"max={s.max_daily_loss_pct:.2f}%)")
