"""
Candle geometry: body/shadow measurements and context helpers shared by all
pattern detectors. Pure functions; zero-range candles return neutral values.
"""

from __future__ import annotations
from typing import Sequence

from decision_engine.core.types import Candle

DOJI_BODY_RATIO = 0.15
TREND_LOOKBACK = 5


def body_size(c: Candle) -> float:
    return abs(c.close - c.open)


def total_range(c: Candle) -> float:
    return c.high - c.low


def body_percent(c: Candle) -> float:
    """Body as a fraction of the full range; 0 for a zero-range candle."""
    rng = total_range(c)
    return body_size(c) / rng if rng > 0 else 0.0


def upper_shadow(c: Candle) -> float:
    return c.high - max(c.open, c.close)


def lower_shadow(c: Candle) -> float:
    return min(c.open, c.close) - c.low


def is_bullish(c: Candle) -> bool:
    return c.close > c.open


def is_bearish(c: Candle) -> bool:
    return c.close < c.open


def is_doji(c: Candle, threshold: float = DOJI_BODY_RATIO) -> bool:
    """
    Body under `threshold` of range. 15% is wider than the textbook 5-10%
    to tolerate 24/7 wick noise. A zero-range candle counts as a doji.
    """
    rng = total_range(c)
    if rng == 0:
        return True
    return body_size(c) / rng < threshold


def avg_body_size(candles: Sequence[Candle]) -> float:
    if not candles:
        return 0.0
    return sum(body_size(c) for c in candles) / len(candles)


def avg_range(candles: Sequence[Candle]) -> float:
    if not candles:
        return 0.0
    return sum(total_range(c) for c in candles) / len(candles)


def body_mid(c: Candle) -> float:
    return (c.open + c.close) / 2


def body_top(c: Candle) -> float:
    return max(c.open, c.close)


def body_bottom(c: Candle) -> float:
    return min(c.open, c.close)


def prior_trend(candles: Sequence[Candle], lookback: int = TREND_LOOKBACK) -> float:
    """
    Trend score of the context window: percent move of the last `lookback`
    closes plus a small bias for the bull/bear candle balance.
    Positive = uptrend, negative = downtrend, 0 when there is too little data.
    """
    if len(candles) < 2:
        return 0.0
    window = candles[-lookback:]
    first, last = window[0], window[-1]
    if first.close == 0:
        return 0.0
    move = (last.close - first.close) / first.close
    bull = sum(1 for c in window if is_bullish(c))
    bear = sum(1 for c in window if is_bearish(c))
    bias = (bull - bear) / len(window)
    return move * 100 + bias * 2


def volume_confirmation(current: Candle, context: Sequence[Candle]) -> float:
    """Reliability bonus for above-average volume: +0.10 at 2x, +0.05 at 1.5x."""
    if not context or current.volume <= 0:
        return 0.0
    avg_vol = sum(c.volume for c in context) / len(context)
    if avg_vol <= 0:
        return 0.0
    ratio = current.volume / avg_vol
    if ratio >= 2.0:
        return 0.1
    if ratio >= 1.5:
        return 0.05
    return 0.0


def volatility_penalty(current: Candle, context: Sequence[Candle]) -> float:
    """Reliability penalty for an outsized candle: -0.10 above 3x, -0.05 above 2x."""
    if len(context) < 3:
        return 0.0
    avg = avg_range(context)
    if avg == 0:
        return 0.0
    ratio = total_range(current) / avg
    if ratio > 3:
        return -0.1
    if ratio > 2:
        return -0.05
    return 0.0


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
