"""
Single-candle detectors. Each examines the newest candle against the trailing
context and returns a PatternMatch or None.
"""

from __future__ import annotations
from typing import List, Optional, Sequence

from decision_engine.core.types import Candle, PatternCategory, PatternMatch
from decision_engine.patterns.base import EPSILON, SingleDetector, make_pattern
from decision_engine.patterns.geometry import (
    DOJI_BODY_RATIO,
    avg_body_size,
    avg_range,
    body_percent,
    body_size,
    clamp,
    is_bearish,
    is_bullish,
    lower_shadow,
    prior_trend,
    total_range,
    upper_shadow,
    volatility_penalty,
    volume_confirmation,
)

Cat = PatternCategory


def _wick_balance(c: Candle) -> float:
    us, ls = upper_shadow(c), lower_shadow(c)
    longest = max(us, ls)
    return min(us, ls) / longest if longest > 0 else 1.0


def detect_doji(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0:
        return None
    body_ratio = body_size(c) / rng
    if body_ratio >= DOJI_BODY_RATIO:
        return None
    avg = avg_range(ctx)
    # tiny candles in a quiet tape are noise, not indecision
    if avg > 0 and rng < avg * 0.2:
        return None
    strength = (1 - body_ratio) * (0.5 + _wick_balance(c) * 0.5)
    reliability = clamp(0.35 + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.5)
    return make_pattern("doji", Cat.INDECISION, reliability, strength, 1,
                        "Doji: open and close nearly equal, market indecision")


def detect_long_legged_doji(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0:
        return None
    body_ratio = body_size(c) / rng
    if body_ratio >= DOJI_BODY_RATIO:
        return None
    if upper_shadow(c) < rng * 0.35 or lower_shadow(c) < rng * 0.35:
        return None
    avg = avg_range(ctx)
    if avg > 0 and rng < avg * 0.8:
        return None
    strength = (1 - body_ratio) * _wick_balance(c)
    reliability = clamp(0.4 + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.5)
    return make_pattern("long_legged_doji", Cat.INDECISION, reliability, strength, 1,
                        "Long-legged doji: long wicks both ways, heavy indecision")


def detect_dragonfly_doji(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0 or body_size(c) / rng >= DOJI_BODY_RATIO:
        return None
    if lower_shadow(c) < rng * 0.6 or upper_shadow(c) > rng * 0.1:
        return None
    downtrend = prior_trend(ctx) < -1
    bonus = 0.1 if downtrend else 0.0
    category = Cat.REVERSAL_BULLISH if downtrend else Cat.INDECISION
    strength = lower_shadow(c) / rng
    reliability = clamp(0.4 + bonus + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.5)
    return make_pattern("dragonfly_doji", category, reliability, strength, 1,
                        "Dragonfly doji: sellers rejected, long lower wick")


def detect_gravestone_doji(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0 or body_size(c) / rng >= DOJI_BODY_RATIO:
        return None
    if upper_shadow(c) < rng * 0.6 or lower_shadow(c) > rng * 0.1:
        return None
    uptrend = prior_trend(ctx) > 1
    bonus = 0.1 if uptrend else 0.0
    category = Cat.REVERSAL_BEARISH if uptrend else Cat.INDECISION
    strength = upper_shadow(c) / rng
    reliability = clamp(0.4 + bonus + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.5)
    return make_pattern("gravestone_doji", category, reliability, strength, 1,
                        "Gravestone doji: buyers rejected, long upper wick")


def _small_body(c: Candle) -> Optional[float]:
    """Body between 5% and 40% of range, else None."""
    rng = total_range(c)
    if rng == 0:
        return None
    body = body_size(c)
    if body < rng * 0.05 or body > rng * 0.4:
        return None
    return body


def detect_hammer(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    body = _small_body(c)
    if body is None:
        return None
    if lower_shadow(c) < body * 2 or upper_shadow(c) > body * 0.5:
        return None
    trend = prior_trend(ctx)
    if trend > 2:
        return None
    wick_ratio = lower_shadow(c) / max(body, EPSILON)
    bonus = 0.1 if trend < -2 else 0.0
    strength = 0.5 + (wick_ratio - 2) * 0.1 + (0.05 if is_bullish(c) else 0.0)
    reliability = clamp(0.4 + bonus + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.15, 0.5)
    return make_pattern("hammer", Cat.REVERSAL_BULLISH, reliability, strength, 1,
                        "Hammer: long lower wick after a decline")


def detect_inverted_hammer(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    body = _small_body(c)
    if body is None:
        return None
    if upper_shadow(c) < body * 2 or lower_shadow(c) > body * 0.5:
        return None
    trend = prior_trend(ctx)
    if trend > 2:
        return None
    wick_ratio = upper_shadow(c) / max(body, EPSILON)
    bonus = 0.1 if trend < -2 else 0.0
    strength = 0.45 + (wick_ratio - 2) * 0.1
    reliability = clamp(0.35 + bonus + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.5)
    return make_pattern("inverted_hammer", Cat.REVERSAL_BULLISH, reliability, strength, 1,
                        "Inverted hammer: buyers probing higher after a decline")


def detect_shooting_star(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    body = _small_body(c)
    if body is None:
        return None
    if upper_shadow(c) < body * 2 or lower_shadow(c) > body * 0.5:
        return None
    trend = prior_trend(ctx)
    if trend < -2:
        return None
    wick_ratio = upper_shadow(c) / max(body, EPSILON)
    bonus = 0.1 if trend > 2 else 0.0
    strength = 0.5 + (wick_ratio - 2) * 0.1 + (0.05 if is_bearish(c) else 0.0)
    reliability = clamp(0.4 + bonus + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.15, 0.5)
    return make_pattern("shooting_star", Cat.REVERSAL_BEARISH, reliability, strength, 1,
                        "Shooting star: long upper wick after a rally")


def detect_hanging_man(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    body = _small_body(c)
    if body is None:
        return None
    if lower_shadow(c) < body * 2 or upper_shadow(c) > body * 0.5:
        return None
    trend = prior_trend(ctx)
    if trend < 1:
        return None
    wick_ratio = lower_shadow(c) / max(body, EPSILON)
    bonus = 0.1 if trend > 3 else 0.0
    strength = 0.45 + (wick_ratio - 2) * 0.1 + (0.05 if is_bearish(c) else 0.0)
    reliability = clamp(0.35 + bonus + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.5)
    return make_pattern("hanging_man", Cat.REVERSAL_BEARISH, reliability, strength, 1,
                        "Hanging man: hammer shape at the top of a rally")


def detect_spinning_top(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0:
        return None
    body_ratio = body_size(c) / rng
    if body_ratio < 0.15 or body_ratio > 0.4:
        return None
    us, ls = upper_shadow(c), lower_shadow(c)
    if us < rng * 0.15 or ls < rng * 0.15:
        return None
    balance = min(us, ls) / max(us, ls)
    if balance < 0.4:
        return None
    strength = (1 - body_ratio) * balance
    reliability = clamp(0.3 + volume_confirmation(c, ctx) + volatility_penalty(c, ctx), 0.1, 0.45)
    return make_pattern("spinning_top", Cat.INDECISION, reliability, strength, 1,
                        "Spinning top: small body with balanced wicks")


def _marubozu_size_bonus(c: Candle, ctx: Sequence[Candle]) -> float:
    avg_body = avg_body_size(ctx)
    return 0.1 if avg_body > 0 and body_size(c) > avg_body * 1.5 else 0.0


def detect_bullish_marubozu(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0 or not is_bullish(c):
        return None
    if body_size(c) < rng * 0.85 or upper_shadow(c) > rng * 0.08 or lower_shadow(c) > rng * 0.08:
        return None
    size_bonus = _marubozu_size_bonus(c, ctx)
    strength = body_size(c) / rng + size_bonus
    reliability = clamp(0.4 + size_bonus + volume_confirmation(c, ctx), 0.2, 0.5)
    return make_pattern("bullish_marubozu", Cat.CONTINUATION_BULLISH, reliability, strength, 1,
                        "Bullish marubozu: full-bodied buying candle")


def detect_bearish_marubozu(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0 or not is_bearish(c):
        return None
    if body_size(c) < rng * 0.85 or upper_shadow(c) > rng * 0.08 or lower_shadow(c) > rng * 0.08:
        return None
    size_bonus = _marubozu_size_bonus(c, ctx)
    strength = body_size(c) / rng + size_bonus
    reliability = clamp(0.4 + size_bonus + volume_confirmation(c, ctx), 0.2, 0.5)
    return make_pattern("bearish_marubozu", Cat.CONTINUATION_BEARISH, reliability, strength, 1,
                        "Bearish marubozu: full-bodied selling candle")


def detect_bullish_belt_hold(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0 or not is_bullish(c):
        return None
    if lower_shadow(c) > rng * 0.05 or body_size(c) < rng * 0.6:
        return None
    avg_body = avg_body_size(ctx)
    if avg_body > 0 and body_size(c) < avg_body * 0.8:
        return None
    trend = prior_trend(ctx)
    if trend > 3:
        return None
    bonus = 0.1 if trend < -1 else 0.0
    strength = body_percent(c) + bonus
    reliability = clamp(0.45 + bonus + volume_confirmation(c, ctx), 0.25, 0.6)
    return make_pattern("bullish_belt_hold", Cat.REVERSAL_BULLISH, reliability, strength, 1,
                        "Bullish belt hold: opens on the low and drives higher")


def detect_bearish_belt_hold(c: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    rng = total_range(c)
    if rng == 0 or not is_bearish(c):
        return None
    if upper_shadow(c) > rng * 0.05 or body_size(c) < rng * 0.6:
        return None
    avg_body = avg_body_size(ctx)
    if avg_body > 0 and body_size(c) < avg_body * 0.8:
        return None
    trend = prior_trend(ctx)
    if trend < -3:
        return None
    bonus = 0.1 if trend > 1 else 0.0
    strength = body_percent(c) + bonus
    reliability = clamp(0.45 + bonus + volume_confirmation(c, ctx), 0.25, 0.6)
    return make_pattern("bearish_belt_hold", Cat.REVERSAL_BEARISH, reliability, strength, 1,
                        "Bearish belt hold: opens on the high and drives lower")


SINGLE_CANDLE_DETECTORS: List[SingleDetector] = [
    detect_doji,
    detect_long_legged_doji,
    detect_dragonfly_doji,
    detect_gravestone_doji,
    detect_hammer,
    detect_inverted_hammer,
    detect_shooting_star,
    detect_hanging_man,
    detect_spinning_top,
    detect_bullish_marubozu,
    detect_bearish_marubozu,
    detect_bullish_belt_hold,
    detect_bearish_belt_hold,
]
