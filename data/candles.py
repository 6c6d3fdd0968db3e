"""
candles.py - OHLCV Loading and Indicator Math

Turns historical bar files and raw exchange OHLCV rows into Bar sequences,
and provides the pandas indicator calculations used by the indicator
modules. Pure data processing with no trading decision logic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from core.types import Bar, clamp


logger = logging.getLogger(__name__)

BAR_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']
PRICE_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


def load_bars_csv(path: Union[str, Path]) -> List[Bar]:
    """
    Load a historical bar file.

    The first line is a header and is discarded. Every following line is
    ``timestamp,open,high,low,close,volume``; a line where any field fails
    to parse (or is not finite) is skipped.

    Args:
        path: Path to the CSV file

    Returns:
        Bars in file order (may be empty)

    Raises:
        FileNotFoundError: If the file does not exist
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"bars file not found: {path}")

    try:
        raw = pd.read_csv(
            p,
            header=None,
            skiprows=1,
            names=BAR_COLUMNS,
            index_col=False,
            dtype=str,
            on_bad_lines='skip',
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        logger.warning(f"No data rows in {path}")
        return []

    numeric = raw.apply(pd.to_numeric, errors='coerce')
    valid = numeric.notna().all(axis=1) & np.isfinite(numeric[PRICE_COLUMNS]).all(axis=1)
    skipped = int((~valid).sum())
    if skipped:
        logger.warning(f"Skipped {skipped} malformed rows in {path}")

    df = numeric[valid]
    bars = [
        Bar(
            open_time=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]
    logger.info(f"Loaded {len(bars)} bars from {path}")
    return bars


def bars_from_ohlcv(raw_data: Sequence[Sequence]) -> List[Bar]:
    """
    Convert raw exchange OHLCV rows to Bars.

    Args:
        raw_data: [[timestamp_ms, open, high, low, close, volume], ...]

    Returns:
        Bars in input order; malformed rows are dropped
    """
    bars: List[Bar] = []
    for row in raw_data:
        try:
            ts, o, h, l, c, v = row[:6]
            bar = Bar(int(ts), float(o), float(h), float(l), float(c), float(v))
        except (TypeError, ValueError):
            logger.debug(f"Dropping malformed OHLCV row: {row}")
            continue
        if all(np.isfinite([bar.open, bar.high, bar.low, bar.close, bar.volume])):
            bars.append(bar)
    return bars


# Technical Indicators

class Indicators:
    """
    Collection of technical indicator calculations.

    All methods are static and stateless - pure mathematical transformations
    of price data with no trading logic.
    """

    @staticmethod
    def ema(series: pd.Series, period: int) -> pd.Series:
        """
        Exponential Moving Average seeded with the first value.

        Args:
            series: Price series
            period: Number of periods (smoothing k = 2 / (period + 1))

        Returns:
            EMA series
        """
        return series.ewm(span=period, adjust=False).mean()

    @staticmethod
    def rsi_last(series: pd.Series, period: int = 14) -> float:
        """
        Relative Strength Index of the last `period` deltas, from plain sums.

        Zero deltas count as gains. With no losses the strength ratio is
        capped at 1000; with neither gains nor losses the RSI is 50.

        Args:
            series: Price series
            period: RSI period (default 14)

        Returns:
            RSI in [0, 100]
        """
        if len(series) <= period:
            return 50.0
        delta = series.iloc[-(period + 1):].diff().iloc[1:]
        gains = float(delta[delta >= 0].sum())
        losses = float(-delta[delta < 0].sum())
        if gains == 0 and losses == 0:
            return 50.0
        rs = 1000.0 if losses == 0 else gains / losses
        return clamp(100.0 - (100.0 / (1.0 + rs)), 0.0, 100.0)

    @staticmethod
    def bollinger_last(
        series: pd.Series,
        period: int = 20,
        std_dev: float = 2.0
    ) -> Tuple[float, float, float]:
        """
        Bollinger Bands over the last `period` values.

        Uses the population standard deviation. With fewer than `period`
        values all three bands collapse onto the last value.

        Args:
            series: Price series
            period: MA period
            std_dev: Number of standard deviations

        Returns:
            (middle, upper, lower)
        """
        if len(series) < period:
            last = float(series.iloc[-1]) if len(series) else 0.0
            return last, last, last
        window = series.iloc[-period:]
        middle = float(window.mean())
        sd = float(window.std(ddof=0))
        return middle, middle + std_dev * sd, middle - std_dev * sd
