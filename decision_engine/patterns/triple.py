"""
Three-candle detectors over (c1, c2, c3) where c3 is the newest candle.
"""

from __future__ import annotations
from typing import List, Optional, Sequence

from decision_engine.core.types import Candle, PatternCategory, PatternMatch
from decision_engine.patterns.base import EPSILON, TripleDetector, make_pattern
from decision_engine.patterns.geometry import (
    DOJI_BODY_RATIO,
    avg_body_size,
    avg_range,
    body_bottom,
    body_mid,
    body_size,
    body_top,
    clamp,
    is_bearish,
    is_bullish,
    is_doji,
    lower_shadow,
    prior_trend,
    total_range,
    upper_shadow,
    volume_confirmation,
)

Cat = PatternCategory


def detect_morning_star(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not is_bearish(c1) or not is_bullish(c3):
        return None
    avg = avg_body_size(ctx)
    b1, b2, b3 = body_size(c1), body_size(c2), body_size(c3)
    if avg > 0 and (b1 < avg * 0.7 or b3 < avg * 0.5):
        return None
    if b2 > b1 * 0.4 or b2 > b3 * 0.4:
        return None
    if c3.close <= body_mid(c1):
        return None
    recovery = b3 / max(b1, EPSILON)
    star_small = 1 - b2 / max(b1, EPSILON)
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.5 + recovery * 0.15 + star_small * 0.1 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.9)
    return make_pattern("morning_star", Cat.REVERSAL_BULLISH, reliability, strength, 3,
                        "Morning star: decline, small star, strong bullish recovery")


def detect_evening_star(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not is_bullish(c1) or not is_bearish(c3):
        return None
    avg = avg_body_size(ctx)
    b1, b2, b3 = body_size(c1), body_size(c2), body_size(c3)
    if avg > 0 and (b1 < avg * 0.7 or b3 < avg * 0.5):
        return None
    if b2 > b1 * 0.4 or b2 > b3 * 0.4:
        return None
    if c3.close >= body_mid(c1):
        return None
    recovery = b3 / max(b1, EPSILON)
    star_small = 1 - b2 / max(b1, EPSILON)
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.5 + recovery * 0.15 + star_small * 0.1 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.9)
    return make_pattern("evening_star", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Evening star: rally, small star, strong bearish follow-through")


def _consistency(candles: Sequence[Candle], ctx: Sequence[Candle]) -> float:
    avg = avg_body_size(ctx)
    if avg <= 0:
        return 0.5
    return min(avg_body_size(candles) / avg, 2) / 2


def _shadow_ratio_ok(candles: Sequence[Candle], shadow) -> bool:
    for c in candles:
        rng = total_range(c)
        if rng == 0 or shadow(c) / rng > 0.3:
            return False
    return True


def detect_three_white_soldiers(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    trio = (c1, c2, c3)
    if not all(is_bullish(c) for c in trio):
        return None
    if not (c2.close > c1.close and c3.close > c2.close):
        return None
    if not (c1.open <= c2.open <= c1.close and c2.open <= c3.open <= c2.close):
        return None
    if not _shadow_ratio_ok(trio, upper_shadow):
        return None
    avg = avg_body_size(ctx)
    if avg > 0 and any(body_size(c) < avg * 0.3 for c in trio):
        return None
    bonus = 0.05 if prior_trend(ctx) < 0 else 0.0
    strength = 0.6 + _consistency(trio, ctx) * 0.2 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.85)
    return make_pattern("three_white_soldiers", Cat.REVERSAL_BULLISH, reliability, strength, 3,
                        "Three white soldiers: three steady bullish closes")


def detect_three_black_crows(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    trio = (c1, c2, c3)
    if not all(is_bearish(c) for c in trio):
        return None
    if not (c2.close < c1.close and c3.close < c2.close):
        return None
    if not (c1.close <= c2.open <= c1.open and c2.close <= c3.open <= c2.open):
        return None
    if not _shadow_ratio_ok(trio, lower_shadow):
        return None
    avg = avg_body_size(ctx)
    if avg > 0 and any(body_size(c) < avg * 0.3 for c in trio):
        return None
    bonus = 0.05 if prior_trend(ctx) > 0 else 0.0
    strength = 0.6 + _consistency(trio, ctx) * 0.2 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.85)
    return make_pattern("three_black_crows", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Three black crows: three steady bearish closes")


def detect_three_inside_up(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(c1) and is_bullish(c2) and is_bullish(c3)):
        return None
    if not (body_top(c2) < body_top(c1) and body_bottom(c2) > body_bottom(c1)):
        return None
    if c3.close <= body_top(c1):
        return None
    b1 = body_size(c1)
    avg = avg_body_size(ctx)
    if avg > 0 and b1 < avg * 0.5:
        return None
    confirm = (c3.close - body_top(c1)) / max(b1, EPSILON)
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.55 + confirm * 0.2 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.85)
    return make_pattern("three_inside_up", Cat.REVERSAL_BULLISH, reliability, strength, 3,
                        "Three inside up: bullish harami confirmed by a higher close")


def detect_three_inside_down(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bearish(c2) and is_bearish(c3)):
        return None
    if not (body_top(c2) < body_top(c1) and body_bottom(c2) > body_bottom(c1)):
        return None
    if c3.close >= body_bottom(c1):
        return None
    b1 = body_size(c1)
    avg = avg_body_size(ctx)
    if avg > 0 and b1 < avg * 0.5:
        return None
    confirm = (body_bottom(c1) - c3.close) / max(b1, EPSILON)
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.55 + confirm * 0.2 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.85)
    return make_pattern("three_inside_down", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Three inside down: bearish harami confirmed by a lower close")


def detect_bullish_abandoned_baby(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(c1) and is_bullish(c3) and is_doji(c2, 0.2)):
        return None
    if not (body_top(c2) < body_bottom(c1) and body_top(c2) < body_bottom(c3)):
        return None
    gap_score = 0.0
    if c2.high < body_bottom(c1):
        gap_score += 0.1
    if c2.high < body_bottom(c3):
        gap_score += 0.1
    bonus = 0.05 if prior_trend(ctx) < -2 else 0.0
    strength = 0.6 + gap_score + bonus
    reliability = clamp(0.75 + gap_score + bonus, 0.5, 0.9)
    return make_pattern("bullish_abandoned_baby", Cat.REVERSAL_BULLISH, reliability, strength, 3,
                        "Bullish abandoned baby: isolated doji below two opposing bodies")


def detect_bearish_abandoned_baby(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bearish(c3) and is_doji(c2, 0.2)):
        return None
    if not (body_bottom(c2) > body_top(c1) and body_bottom(c2) > body_top(c3)):
        return None
    gap_score = 0.0
    if c2.low > body_top(c1):
        gap_score += 0.1
    if c2.low > body_top(c3):
        gap_score += 0.1
    bonus = 0.05 if prior_trend(ctx) > 2 else 0.0
    strength = 0.6 + gap_score + bonus
    reliability = clamp(0.75 + gap_score + bonus, 0.5, 0.9)
    return make_pattern("bearish_abandoned_baby", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Bearish abandoned baby: isolated doji above two opposing bodies")


def detect_three_outside_up(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(c1) and is_bullish(c2) and is_bullish(c3)):
        return None
    if not (body_top(c2) > body_top(c1) and body_bottom(c2) < body_bottom(c1)):
        return None
    if c3.close <= c2.close:
        return None
    b2 = body_size(c2)
    avg = avg_body_size(ctx)
    if avg > 0 and b2 < avg * 0.5:
        return None
    confirm = (c3.close - c2.close) / max(b2, EPSILON)
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.55 + confirm * 0.15 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.85)
    return make_pattern("three_outside_up", Cat.REVERSAL_BULLISH, reliability, strength, 3,
                        "Three outside up: bullish engulfing confirmed by a higher close")


def detect_three_outside_down(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bearish(c2) and is_bearish(c3)):
        return None
    if not (body_top(c2) > body_top(c1) and body_bottom(c2) < body_bottom(c1)):
        return None
    if c3.close >= c2.close:
        return None
    b2 = body_size(c2)
    avg = avg_body_size(ctx)
    if avg > 0 and b2 < avg * 0.5:
        return None
    confirm = (c2.close - c3.close) / max(b2, EPSILON)
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.55 + confirm * 0.15 + bonus
    reliability = clamp(0.7 + bonus + volume_confirmation(c3, ctx), 0.5, 0.85)
    return make_pattern("three_outside_down", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Three outside down: bearish engulfing confirmed by a lower close")


def detect_tri_star(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    trio = (c1, c2, c3)
    if not all(total_range(c) > 0 and is_doji(c, DOJI_BODY_RATIO) for c in trio):
        return None
    avg = avg_range(ctx)
    if avg > 0 and any(total_range(c) < avg * 0.3 for c in trio):
        return None
    trend = prior_trend(ctx)
    if abs(trend) < 1:
        return None
    category = Cat.REVERSAL_BULLISH if trend < -1 else Cat.REVERSAL_BEARISH
    bonus = 0.05 if abs(trend) > 3 else 0.0
    strength = 0.6 + bonus
    reliability = clamp(0.75 + bonus, 0.55, 0.9)
    return make_pattern("tri_star", category, reliability, strength, 3,
                        "Tri-star: three dojis at the end of a trend")


def detect_rising_three_methods(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bullish(c3)):
        return None
    b1, b2, b3 = body_size(c1), body_size(c2), body_size(c3)
    avg = avg_body_size(ctx)
    if avg > 0 and (b1 < avg * 0.7 or b3 < avg * 0.5):
        return None
    if b2 > b1 * 0.5:
        return None
    if c2.high > c1.high or c2.low < c1.low:
        return None
    if c3.close <= c1.close:
        return None
    pullback = 0.05 if is_bearish(c2) else 0.0
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.5 + pullback + bonus
    reliability = clamp(0.6 + bonus + pullback + volume_confirmation(c3, ctx), 0.4, 0.8)
    return make_pattern("rising_three_methods", Cat.CONTINUATION_BULLISH, reliability, strength, 3,
                        "Rising three methods: contained pause then a new high close")


def detect_falling_three_methods(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(c1) and is_bearish(c3)):
        return None
    b1, b2, b3 = body_size(c1), body_size(c2), body_size(c3)
    avg = avg_body_size(ctx)
    if avg > 0 and (b1 < avg * 0.7 or b3 < avg * 0.5):
        return None
    if b2 > b1 * 0.5:
        return None
    if c2.high > c1.high or c2.low < c1.low:
        return None
    if c3.close >= c1.close:
        return None
    pullback = 0.05 if is_bullish(c2) else 0.0
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.5 + pullback + bonus
    reliability = clamp(0.6 + bonus + pullback + volume_confirmation(c3, ctx), 0.4, 0.8)
    return make_pattern("falling_three_methods", Cat.CONTINUATION_BEARISH, reliability, strength, 3,
                        "Falling three methods: contained bounce then a new low close")


def detect_mat_hold(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bullish(c3)):
        return None
    b1 = body_size(c1)
    avg = avg_body_size(ctx)
    if avg > 0 and b1 < avg * 0.8:
        return None
    if c2.open < body_mid(c1) or body_size(c2) > b1 * 0.5:
        return None
    if c2.low < body_bottom(c1):
        return None
    if c3.close <= c1.high:
        return None
    bonus = 0.05 if prior_trend(ctx) > 2 else 0.0
    strength = 0.55 + bonus
    reliability = clamp(0.65 + bonus + volume_confirmation(c3, ctx), 0.45, 0.8)
    return make_pattern("mat_hold", Cat.CONTINUATION_BULLISH, reliability, strength, 3,
                        "Mat hold: shallow pause held above the first body, then breakout")


def detect_upside_tasuki_gap(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bullish(c2) and is_bearish(c3)):
        return None
    if c2.open <= c1.close:
        return None
    if not (c2.open <= c3.open <= c2.close):
        return None
    if not (c1.close < c3.close < c2.open):
        return None
    bonus = 0.05 if prior_trend(ctx) > 1 else 0.0
    strength = 0.5 + bonus
    reliability = clamp(0.55 + bonus + volume_confirmation(c3, ctx), 0.35, 0.7)
    return make_pattern("upside_tasuki_gap", Cat.CONTINUATION_BULLISH, reliability, strength, 3,
                        "Upside tasuki gap: pullback fails to close the gap")


def detect_downside_tasuki_gap(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bearish(c1) and is_bearish(c2) and is_bullish(c3)):
        return None
    if c2.open >= c1.close:
        return None
    if not (c2.close <= c3.open <= c2.open):
        return None
    if not (c2.open < c3.close < c1.close):
        return None
    bonus = 0.05 if prior_trend(ctx) < -1 else 0.0
    strength = 0.5 + bonus
    reliability = clamp(0.55 + bonus + volume_confirmation(c3, ctx), 0.35, 0.7)
    return make_pattern("downside_tasuki_gap", Cat.CONTINUATION_BEARISH, reliability, strength, 3,
                        "Downside tasuki gap: bounce fails to close the gap")


def detect_advance_block(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bullish(c2) and is_bullish(c3)):
        return None
    if not (c2.close > c1.close and c3.close > c2.close):
        return None
    b1, b2, b3 = body_size(c1), body_size(c2), body_size(c3)
    if not (b1 > b2 > b3):
        return None
    growing_shadows = upper_shadow(c2) >= upper_shadow(c1) and upper_shadow(c3) >= upper_shadow(c2)
    shadow_bonus = 0.1 if growing_shadows else 0.0
    exhaustion = 1 - b3 / b1
    bonus = 0.05 if prior_trend(ctx) > 2 else 0.0
    strength = 0.4 + exhaustion * 0.3 + shadow_bonus + bonus
    reliability = clamp(0.6 + shadow_bonus + bonus + volume_confirmation(c3, ctx), 0.4, 0.8)
    return make_pattern("advance_block", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Advance block: rising closes on shrinking bodies")


def detect_deliberation(c1: Candle, c2: Candle, c3: Candle, ctx: Sequence[Candle]) -> Optional[PatternMatch]:
    if not (is_bullish(c1) and is_bullish(c2) and is_bullish(c3)):
        return None
    b1, b2, b3 = body_size(c1), body_size(c2), body_size(c3)
    avg = avg_body_size(ctx)
    if avg > 0 and (b1 < avg * 0.6 or b2 < avg * 0.6):
        return None
    if b3 > b1 * 0.3 or b3 > b2 * 0.3:
        return None
    if c3.close <= c1.close:
        return None
    hesitation = 1 - b3 / max(b2, EPSILON)
    bonus = 0.05 if prior_trend(ctx) > 2 else 0.0
    strength = 0.4 + hesitation * 0.3 + bonus
    reliability = clamp(0.55 + bonus + volume_confirmation(c3, ctx), 0.35, 0.75)
    return make_pattern("deliberation", Cat.REVERSAL_BEARISH, reliability, strength, 3,
                        "Deliberation: two strong bullish candles then a stalling third")


THREE_CANDLE_DETECTORS: List[TripleDetector] = [
    detect_morning_star,
    detect_evening_star,
    detect_three_white_soldiers,
    detect_three_black_crows,
    detect_three_inside_up,
    detect_three_inside_down,
    detect_bullish_abandoned_baby,
    detect_bearish_abandoned_baby,
    detect_three_outside_up,
    detect_three_outside_down,
    detect_tri_star,
    detect_rising_three_methods,
    detect_falling_three_methods,
    detect_mat_hold,
    detect_upside_tasuki_gap,
    detect_downside_tasuki_gap,
    detect_advance_block,
    detect_deliberation,
]
