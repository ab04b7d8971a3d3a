"""
Pattern library entry points: run every detector on the newest candles,
score reversal evidence, and detect short-horizon trend exhaustion.
"""

from __future__ import annotations
import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from decision_engine.core.types import Candle, ExhaustionSignal, PatternMatch, ReversalDirection
from decision_engine.patterns.double import TWO_CANDLE_DETECTORS
from decision_engine.patterns.geometry import body_size, clamp, is_bearish, is_bullish, lower_shadow, total_range, upper_shadow
from decision_engine.patterns.single import SINGLE_CANDLE_DETECTORS
from decision_engine.patterns.triple import THREE_CANDLE_DETECTORS

logger = logging.getLogger("decision_engine.patterns")

CONTEXT_WINDOW = 15
MIN_CANDLES = 3
EXHAUSTION_WINDOW = 5

_CANDLE_WEIGHT = {1: 1.0, 2: 1.5, 3: 2.0}


def detect_all_candlestick_patterns(candles: Sequence[Candle], timeframe: Optional[str] = None) -> List[PatternMatch]:
    """
    Run all detectors against the newest 1-3 candles. The shared context is up
    to 14 candles preceding the newest one. Sorted by (reliability, strength) desc.
    """
    n = len(candles)
    if n < MIN_CANDLES:
        return []
    context = list(candles[max(0, n - CONTEXT_WINDOW):n - 1])
    c1, c2, c3 = candles[-3], candles[-2], candles[-1]

    found: List[PatternMatch] = []
    for detect in SINGLE_CANDLE_DETECTORS:
        match = detect(c3, context)
        if match:
            found.append(match)
    for detect in TWO_CANDLE_DETECTORS:
        match = detect(c2, c3, context)
        if match:
            found.append(match)
    for detect in THREE_CANDLE_DETECTORS:
        match = detect(c1, c2, c3, context)
        if match:
            found.append(match)

    if timeframe:
        found = [replace(p, timeframe=timeframe) for p in found]
    found.sort(key=lambda p: (p.reliability, p.strength), reverse=True)
    if found:
        logger.debug("%s patterns on %s: %s", len(found), timeframe or "-", ", ".join(p.name for p in found))
    return found


def score_reversal_signal(patterns: Sequence[PatternMatch], direction: ReversalDirection) -> Tuple[int, str]:
    """Aggregate reversal evidence in one direction into a 0-100 score."""
    relevant = [p for p in patterns if p.category is direction.reversal_category]
    if not relevant:
        return 0, f"No {direction.value} reversal patterns"
    total_weight = sum(_CANDLE_WEIGHT[p.candles_used] for p in relevant)
    weighted = sum(p.reliability * p.strength * _CANDLE_WEIGHT[p.candles_used] for p in relevant)
    avg = weighted / total_weight
    multiplicity = min((len(relevant) - 1) * 5, 15)
    score = int(clamp(round(avg * 100 + multiplicity), 0, 100))
    if score >= 70:
        label = "Strong"
    elif score >= 40:
        label = "Moderate"
    else:
        label = "Weak"
    names = ", ".join(p.name for p in relevant[:3])
    return score, f"{label} {direction.value} reversal ({names})"


def detect_exhaustion_pattern(candles: Sequence[Candle]) -> Optional[ExhaustionSignal]:
    """
    Detect a trend losing steam over the last five candles: shrinking bodies,
    growing adverse wicks, declining volume, widening range with a shrinking
    body, and decelerating progress. Needs >= 2 signals and a score >= 20.
    """
    if len(candles) < EXHAUSTION_WINDOW:
        return None
    window = list(candles[-EXHAUSTION_WINDOW:])
    bull_count = sum(1 for c in window if is_bullish(c))
    bear_count = sum(1 for c in window if is_bearish(c))
    if bull_count >= 3:
        bullish = True
    elif bear_count >= 3:
        bullish = False
    else:
        return None

    last3 = window[-3:]
    signals: List[str] = []
    score = 0

    bodies = [body_size(c) for c in last3]
    if bodies[0] > 0 and bodies[1] < bodies[0] and bodies[2] < bodies[1]:
        score += round((1 - bodies[2] / bodies[0]) * 30)
        signals.append("shrinking_bodies")

    wick = upper_shadow if bullish else lower_shadow
    wicks = [wick(c) for c in last3]
    if wicks[0] > 0 and wicks[1] > wicks[0] and wicks[2] > wicks[1]:
        score += min(round(wicks[2] / wicks[0] * 10), 25)
        signals.append("growing_wicks")

    volumes = [c.volume for c in last3]
    if volumes[0] > 0 and volumes[1] < volumes[0] and volumes[2] < volumes[1]:
        score += round((1 - volumes[2] / volumes[0]) * 25)
        signals.append("declining_volume")

    ranges = [total_range(c) for c in last3]
    body_pcts = [bodies[i] / ranges[i] if ranges[i] > 0 else 0.0 for i in range(3)]
    if ranges[2] > ranges[0] and body_pcts[0] > 0 and body_pcts[2] < body_pcts[0]:
        score += round((body_pcts[0] - body_pcts[2]) * 30)
        signals.append("range_expansion_body_contraction")

    moves = [window[i + 1].close - window[i].close for i in range(EXHAUSTION_WINDOW - 1)]
    if not bullish:
        moves = [-m for m in moves]
    early = (moves[0] + moves[1]) / 2
    late = (moves[2] + moves[3]) / 2
    if early > 0 and late < early * 0.5:
        score += round((1 - late / early) * 20)
        signals.append("decelerating_progress")

    score = int(min(score, 100))
    if score < 20 or len(signals) < 2:
        return None
    direction = "bullish_exhaustion" if bullish else "bearish_exhaustion"
    trend = "uptrend" if bullish else "downtrend"
    return ExhaustionSignal(
        direction=direction,
        score=score,
        signals=signals,
        description=f"{trend.capitalize()} exhaustion ({len(signals)} signals: {', '.join(signals)})",
    )
