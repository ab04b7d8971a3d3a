"""
Two-candle detectors over (previous, current) plus trailing context.
"""

from __future__ import annotations
from typing import List, Optional, Sequence

from decision_engine.core.types import Candle, PatternCategory, PatternMatch
from decision_engine.patterns.base import EPSILON, DoubleDetector, make_pattern
from decision_engine.patterns.geometry import (
    avg_body_size,
    avg_range,
    body_bottom,
    body_mid,
    body_size,
    body_top,
    clamp,
    is_bearish,
    is_bullish,
    prior_trend,
    volume_confirmation,
)

Cat = PatternCategory


def detect_bullish_engulfing(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(prev) and is_bullish(cur)):
        return None
    if not (body_top(cur) > body_top(prev) and body_bottom(cur) < body_bottom(prev)):
        return None
    engulf_ratio = body_size(cur) / max(body_size(prev), EPSILON)
    bonus = 0.1 if prior_trend(ctx) < -1 else 0.0
    strength = 0.5 + (engulf_ratio - 1) * 0.15 + bonus
    reliability = clamp(0.55 + bonus + volume_confirmation(cur, ctx), 0.3, 0.7)
    return make_pattern("bullish_engulfing", Cat.REVERSAL_BULLISH, reliability, strength, 2,
                        "Bullish engulfing: buyers swallow the prior bearish body")


def detect_bearish_engulfing(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(prev) and is_bearish(cur)):
        return None
    if not (body_top(cur) > body_top(prev) and body_bottom(cur) < body_bottom(prev)):
        return None
    engulf_ratio = body_size(cur) / max(body_size(prev), EPSILON)
    bonus = 0.1 if prior_trend(ctx) > 1 else 0.0
    strength = 0.5 + (engulf_ratio - 1) * 0.15 + bonus
    reliability = clamp(0.55 + bonus + volume_confirmation(cur, ctx), 0.3, 0.7)
    return make_pattern("bearish_engulfing", Cat.REVERSAL_BEARISH, reliability, strength, 2,
                        "Bearish engulfing: sellers swallow the prior bullish body")


def detect_piercing_line(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(prev) and is_bullish(cur)):
        return None
    # crypto rarely gaps; allow the open within 0.2% of the prior body bottom
    if cur.open > body_bottom(prev) * 1.002:
        return None
    if not (body_mid(prev) < cur.close < body_top(prev)):
        return None
    penetration = (cur.close - body_bottom(prev)) / max(body_size(prev), EPSILON)
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.4 + penetration * 0.2 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.65)
    return make_pattern("piercing_line", Cat.REVERSAL_BULLISH, reliability, strength, 2,
                        "Piercing line: recovery past the midpoint of the prior bearish body")


def detect_dark_cloud_cover(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(prev) and is_bearish(cur)):
        return None
    if cur.open < body_top(prev) * 0.998:
        return None
    if not (body_bottom(prev) < cur.close < body_mid(prev)):
        return None
    penetration = (body_top(prev) - cur.close) / max(body_size(prev), EPSILON)
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.4 + penetration * 0.2 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.65)
    return make_pattern("dark_cloud_cover", Cat.REVERSAL_BEARISH, reliability, strength, 2,
                        "Dark cloud cover: selloff below the midpoint of the prior bullish body")


def detect_tweezer_bottom(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(prev) and is_bullish(cur)):
        return None
    avg = avg_range(ctx)
    if avg == 0:
        return None
    threshold = min(avg * 0.05, prev.low * 0.002)
    diff = abs(prev.low - cur.low)
    if diff > threshold:
        return None
    precision = 1 - diff / max(threshold, EPSILON)
    bonus = 0.1 if prior_trend(ctx) < -1 else 0.0
    strength = 0.4 + precision * 0.3 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.65)
    return make_pattern("tweezer_bottom", Cat.REVERSAL_BULLISH, reliability, strength, 2,
                        "Tweezer bottom: matching lows hold as support")


def detect_tweezer_top(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(prev) and is_bearish(cur)):
        return None
    avg = avg_range(ctx)
    if avg == 0:
        return None
    threshold = min(avg * 0.05, prev.high * 0.002)
    diff = abs(prev.high - cur.high)
    if diff > threshold:
        return None
    precision = 1 - diff / max(threshold, EPSILON)
    bonus = 0.1 if prior_trend(ctx) > 1 else 0.0
    strength = 0.4 + precision * 0.3 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.65)
    return make_pattern("tweezer_top", Cat.REVERSAL_BEARISH, reliability, strength, 2,
                        "Tweezer top: matching highs hold as resistance")


def _harami_size_ratio(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[float]:
    """Size of the inside body relative to the mother body, or None if not a harami."""
    if not (body_top(cur) < body_top(prev) and body_bottom(cur) > body_bottom(prev)):
        return None
    avg_body = avg_body_size(ctx)
    if avg_body > 0 and body_size(prev) < avg_body * 0.8:
        return None
    size_ratio = body_size(cur) / max(body_size(prev), EPSILON)
    if size_ratio > 0.6:
        return None
    return size_ratio


def detect_bullish_harami(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(prev) and is_bullish(cur)):
        return None
    size_ratio = _harami_size_ratio(prev, cur, ctx)
    if size_ratio is None:
        return None
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.4 + (1 - size_ratio) * 0.3 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.6)
    return make_pattern("bullish_harami", Cat.REVERSAL_BULLISH, reliability, strength, 2,
                        "Bullish harami: small bullish body inside the prior bearish body")


def detect_bearish_harami(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(prev) and is_bearish(cur)):
        return None
    size_ratio = _harami_size_ratio(prev, cur, ctx)
    if size_ratio is None:
        return None
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.4 + (1 - size_ratio) * 0.3 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.6)
    return make_pattern("bearish_harami", Cat.REVERSAL_BEARISH, reliability, strength, 2,
                        "Bearish harami: small bearish body inside the prior bullish body")


def _kicker_bodies_ok(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> bool:
    avg_body = avg_body_size(ctx)
    if avg_body <= 0:
        return True
    return body_size(prev) >= avg_body * 0.5 and body_size(cur) >= avg_body * 0.5


def detect_bullish_kicker(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(prev) and is_bullish(cur)):
        return None
    if prev.open <= 0 or cur.open < prev.open * 0.998:
        return None
    if not _kicker_bodies_ok(prev, cur, ctx):
        return None
    gap = (cur.open - prev.open) / prev.open
    gap_bonus = 0.1 if gap > 0.005 else 0.0
    body_ratio = body_size(cur) / max(body_size(prev), EPSILON)
    strength = 0.6 + gap_bonus + (body_ratio - 1) * 0.1
    reliability = clamp(0.6 + gap_bonus + volume_confirmation(cur, ctx), 0.4, 0.7)
    return make_pattern("bullish_kicker", Cat.REVERSAL_BULLISH, reliability, strength, 2,
                        "Bullish kicker: opens at or above the prior open and rallies")


def detect_bearish_kicker(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(prev) and is_bearish(cur)):
        return None
    if prev.open <= 0 or cur.open > prev.open * 1.002:
        return None
    if not _kicker_bodies_ok(prev, cur, ctx):
        return None
    gap = (prev.open - cur.open) / prev.open
    gap_bonus = 0.1 if gap > 0.005 else 0.0
    body_ratio = body_size(cur) / max(body_size(prev), EPSILON)
    strength = 0.6 + gap_bonus + (body_ratio - 1) * 0.1
    reliability = clamp(0.6 + gap_bonus + volume_confirmation(cur, ctx), 0.4, 0.7)
    return make_pattern("bearish_kicker", Cat.REVERSAL_BEARISH, reliability, strength, 2,
                        "Bearish kicker: opens at or below the prior open and sells off")


def detect_matching_low(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(prev) and is_bearish(cur)):
        return None
    avg = avg_range(ctx)
    if avg == 0:
        return None
    threshold = min(avg * 0.03, prev.close * 0.001)
    diff = abs(prev.close - cur.close)
    if diff > threshold:
        return None
    precision = 1 - diff / max(threshold, EPSILON)
    bonus = 0.1 if prior_trend(ctx) < -1 else 0.0
    strength = 0.4 + precision * 0.3 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.65)
    return make_pattern("matching_low", Cat.REVERSAL_BULLISH, reliability, strength, 2,
                        "Matching low: two bearish closes stall at the same level")


def detect_matching_high(prev: Candle, cur: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(prev) and is_bullish(cur)):
        return None
    avg = avg_range(ctx)
    if avg == 0:
        return None
    threshold = min(avg * 0.03, prev.close * 0.001)
    diff = abs(prev.close - cur.close)
    if diff > threshold:
        return None
    precision = 1 - diff / max(threshold, EPSILON)
    bonus = 0.1 if prior_trend(ctx) > 1 else 0.0
    strength = 0.4 + precision * 0.3 + bonus
    reliability = clamp(0.5 + bonus + volume_confirmation(cur, ctx), 0.3, 0.65)
    return make_pattern("matching_high", Cat.REVERSAL_BEARISH, reliability, strength, 2,
                        "Matching high: two bullish closes stall at the same level")


TWO_CANDLE_DETECTORS: List[DoubleDetector] = [
    detect_bullish_engulfing,
    detect_bearish_engulfing,
    detect_piercing_line,
    detect_dark_cloud_cover,
    detect_tweezer_bottom,
    detect_tweezer_top,
    detect_bullish_harami,
    detect_bearish_harami,
    detect_bullish_kicker,
    detect_bearish_kicker,
    detect_matching_low,
    detect_matching_high,
]
