"""
Multi-timeframe reversal detector. Fuses candlestick patterns, exhaustion,
RSI divergence, volume spikes and MACD crossovers across an ordered list of
timeframes (leading -> confirming) into one ReversalSignal with a transparent
score breakdown.
"""

from __future__ import annotations
import logging
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence

from decision_engine.core.config import ReversalConfig
from decision_engine.core.types import (
    Candle,
    ExhaustionSignal,
    Indicators,
    PatternCategory,
    PatternMatch,
    ReversalDirection,
    ReversalPhase,
    ReversalSignal,
    ReversalUrgency,
    ScoreComponent,
    TimeframeReversalDetail,
    TradeDirection,
)
from decision_engine.patterns.library import (
    detect_all_candlestick_patterns,
    detect_exhaustion_pattern,
    score_reversal_signal,
)

logger = logging.getLogger("decision_engine.reversal")

MIN_CANDLES = 5
MIN_CANDLES_LOOKBACK = 10

PATTERN_POINTS = ((3, 30.0, "3-candle"), (2, 20.0, "2-candle"), (1, 10.0, "1-candle"))
CONFLUENCE_POINTS = 15.0
DIVERGENCE_POINTS = 15.0
VOLUME_SPIKE_POINTS = 10.0
MACD_POINTS = 10.0
EXHAUSTION_POINTS = 10.0
EXHAUSTION_MIN_SCORE = 30
CONTINUATION_PENALTY = 20.0
SINGLE_TIMEFRAME_PENALTY = 10.0
RANGING_PENALTY = 8.0

_EXHAUSTION_FOR = {
    ReversalDirection.BEARISH: "bullish_exhaustion",
    ReversalDirection.BULLISH: "bearish_exhaustion",
}


def sought_direction(current: Optional[TradeDirection]) -> Optional[ReversalDirection]:
    """A long position looks for a bearish reversal, a short for a bullish one."""
    if current is None:
        return None
    return ReversalDirection.BEARISH if current is TradeDirection.LONG else ReversalDirection.BULLISH


def timeframe_weights(count: int) -> List[float]:
    """Linear 0.6 (leading) -> 1.4 (confirming); a single timeframe weighs 1.0."""
    if count <= 1:
        return [1.0] * count
    return [0.6 + 0.8 * i / (count - 1) for i in range(count)]


def _is_relevant(p: PatternMatch, sought: Optional[ReversalDirection]) -> bool:
    if p.category is PatternCategory.INDECISION:
        return True
    if sought is None:
        return p.category.is_reversal
    return p.category is sought.reversal_category


def _is_low_volatility(ind: Indicators, price: float, cfg: ReversalConfig) -> bool:
    if price <= 0:
        return False
    if ind.atr > 0 and ind.atr / price * 100 < cfg.low_vol_atr_percent * cfg.liquidity_factor:
        return True
    width = ind.bb_width
    if width is None and ind.bb_upper is not None and ind.bb_lower is not None:
        width = (ind.bb_upper - ind.bb_lower) / price * 100
    return width is not None and width < cfg.low_vol_bb_width_percent * cfg.liquidity_factor


def _discount_single_candle(p: PatternMatch) -> PatternMatch:
    """Quiet tape makes single-candle shapes unreliable; returns a new record."""
    if p.candles_used != 1:
        return p
    if p.category is PatternCategory.INDECISION:
        return replace(p, reliability=p.reliability * 0.4, strength=p.strength * 0.5)
    return replace(p, reliability=p.reliability * 0.6)


def _exhaustion_matches(ex: Optional[ExhaustionSignal], sought: Optional[ReversalDirection]) -> bool:
    if ex is None:
        return False
    return sought is None or ex.direction == _EXHAUSTION_FOR[sought]


def _rsi_divergence(
    candles: Sequence[Candle],
    rsi: float,
    sought: Optional[ReversalDirection],
    cfg: ReversalConfig,
) -> Optional[ReversalDirection]:
    """Price breaks the prior extreme by the margin while RSI stays in its neutral band."""
    window = list(candles[-MIN_CANDLES_LOOKBACK:])
    prior, recent = window[:5], window[-3:]
    if sought in (None, ReversalDirection.BEARISH):
        recent_high = max(c.high for c in recent)
        prior_high = max(c.high for c in prior)
        lo, hi = cfg.bearish_divergence_rsi_band
        if recent_high > prior_high * (1 + cfg.divergence_margin) and lo < rsi < hi:
            return ReversalDirection.BEARISH
    if sought in (None, ReversalDirection.BULLISH):
        recent_low = min(c.low for c in recent)
        prior_low = min(c.low for c in prior)
        lo, hi = cfg.bullish_divergence_rsi_band
        if recent_low < prior_low * (1 - cfg.divergence_margin) and lo < rsi < hi:
            return ReversalDirection.BULLISH
    return None


def _volume_spike_ratio(candles: Sequence[Candle]) -> float:
    """Newest volume relative to the mean of the nine before it; 0 when undefined."""
    previous = candles[-MIN_CANDLES_LOOKBACK:-1]
    avg = sum(c.volume for c in previous) / len(previous)
    if avg <= 0:
        return 0.0
    return candles[-1].volume / avg


def _macd_cross(histogram: float, sought: Optional[ReversalDirection], cfg: ReversalConfig) -> Optional[ReversalDirection]:
    dz, cap = cfg.macd_dead_zone, cfg.macd_cross_max
    if sought in (None, ReversalDirection.BEARISH) and -cap < histogram < -dz:
        return ReversalDirection.BEARISH
    if sought in (None, ReversalDirection.BULLISH) and dz < histogram < cap:
        return ReversalDirection.BULLISH
    return None


def determine_reversal_phase(
    has_three_candle: bool,
    has_two_candle: bool,
    has_indecision: bool,
    exhaustion_score: float,
    confidence: int,
    confluence_count: int,
) -> ReversalPhase:
    """Strict precedence: confirmation > initiation > indecision > exhaustion."""
    if (
        (has_three_candle and confluence_count >= 2)
        or (has_three_candle and confidence >= 60)
        or (has_two_candle and confluence_count >= 2 and confidence >= 50)
    ):
        return ReversalPhase.CONFIRMATION
    if has_two_candle:
        return ReversalPhase.INITIATION
    if has_indecision and exhaustion_score > EXHAUSTION_MIN_SCORE:
        return ReversalPhase.INDECISION
    return ReversalPhase.EXHAUSTION


def determine_reversal_urgency(phase: ReversalPhase, confidence: int) -> ReversalUrgency:
    if phase is ReversalPhase.CONFIRMATION and confidence >= 70:
        return ReversalUrgency.IMMEDIATE
    if phase in (ReversalPhase.INITIATION, ReversalPhase.CONFIRMATION) and confidence >= 50:
        return ReversalUrgency.DEVELOPING
    return ReversalUrgency.EARLY_WARNING


def detect_reversal(
    candles_by_timeframe: Mapping[str, Sequence[Candle]],
    indicators_by_timeframe: Mapping[str, Indicators],
    current_direction: Optional[TradeDirection],
    timeframe_priority: Sequence[str],
    config: Optional[ReversalConfig] = None,
) -> ReversalSignal:
    """
    Score reversal evidence across `timeframe_priority` (leading first).
    Timeframes with fewer than five candles are skipped and reported as None.
    Divergence, volume spike and MACD crossover each count at most once per call.
    """
    cfg = config or ReversalConfig()
    sought = sought_direction(current_direction)
    priority = list(timeframe_priority)
    if not priority:
        return ReversalSignal()

    weights = timeframe_weights(len(priority))
    total = 0.0
    max_possible = 0.0
    breakdown: List[ScoreComponent] = []
    details: Dict[str, Optional[TimeframeReversalDetail]] = {}
    all_patterns: List[PatternMatch] = []
    reversals_by_tf: Dict[str, List[PatternMatch]] = {}
    exhaustion_score = 0

    # 1. per-timeframe pattern evidence
    for tf, weight in zip(priority, weights):
        candles = candles_by_timeframe.get(tf) or []
        if len(candles) < MIN_CANDLES:
            details[tf] = None
            continue
        patterns = detect_all_candlestick_patterns(candles, tf)
        exhaustion = detect_exhaustion_pattern(candles)
        ind = indicators_by_timeframe.get(tf)
        if ind is not None and _is_low_volatility(ind, candles[-1].close, cfg):
            patterns = [_discount_single_candle(p) for p in patterns]

        relevant = [p for p in patterns if _is_relevant(p, sought)]
        reversals = [p for p in relevant if p.category.is_reversal]
        if reversals:
            reversals_by_tf[tf] = reversals
        if _exhaustion_matches(exhaustion, sought):
            exhaustion_score = max(exhaustion_score, exhaustion.score)

        if relevant:
            signal = max(relevant, key=lambda p: p.reliability * p.strength).name
        elif exhaustion is not None:
            signal = exhaustion.direction
        else:
            signal = "neutral"
        details[tf] = TimeframeReversalDetail(patterns=patterns, exhaustion=exhaustion, signal=signal)
        all_patterns.extend(patterns)

        for candles_used, base, label in PATTERN_POINTS:
            max_points = base * weight
            max_possible += max_points
            group = [p for p in reversals if p.candles_used == candles_used]
            if not group:
                continue
            best = max(group, key=lambda p: p.reliability)
            points = max_points * best.reliability
            total += points
            breakdown.append(ScoreComponent(
                name=f"{label} {tf}",
                points=round(points, 1),
                max_points=round(max_points, 1),
                detail=f"{best.name} (rel: {round(best.reliability * 100)}%)",
            ))

    # 2. confluence
    confluence_count = len(reversals_by_tf)
    max_possible += CONFLUENCE_POINTS
    if confluence_count >= 2:
        total += CONFLUENCE_POINTS
        breakdown.append(ScoreComponent(
            "Multi-timeframe confluence", CONFLUENCE_POINTS, CONFLUENCE_POINTS,
            f"{confluence_count} timeframes: {', '.join(reversals_by_tf)}",
        ))

    # 3. RSI divergence, counted once
    max_possible += DIVERGENCE_POINTS
    for tf in priority:
        candles = candles_by_timeframe.get(tf) or []
        ind = indicators_by_timeframe.get(tf)
        if len(candles) < MIN_CANDLES_LOOKBACK or ind is None:
            continue
        divergence = _rsi_divergence(candles, ind.rsi, sought, cfg)
        if divergence is not None:
            total += DIVERGENCE_POINTS
            breakdown.append(ScoreComponent(
                f"RSI divergence {tf}", DIVERGENCE_POINTS, DIVERGENCE_POINTS,
                f"{divergence.value} divergence, RSI {ind.rsi:.1f}",
            ))
            break

    # 4. volume spike, confirming end first, counted once
    max_possible += VOLUME_SPIKE_POINTS
    for tf in reversed(priority):
        candles = candles_by_timeframe.get(tf) or []
        if len(candles) < MIN_CANDLES_LOOKBACK:
            continue
        ratio = _volume_spike_ratio(candles)
        if ratio >= cfg.volume_spike_ratio:
            total += VOLUME_SPIKE_POINTS
            breakdown.append(ScoreComponent(
                f"Volume spike {tf}", VOLUME_SPIKE_POINTS, VOLUME_SPIKE_POINTS, f"{ratio:.1f}x average volume",
            ))
            break

    # 5. MACD histogram crossover, counted once
    max_possible += MACD_POINTS
    for tf in reversed(priority):
        ind = indicators_by_timeframe.get(tf)
        if ind is None or ind.histogram is None:
            continue
        cross = _macd_cross(ind.histogram, sought, cfg)
        if cross is not None:
            total += MACD_POINTS
            breakdown.append(ScoreComponent(
                f"MACD cross {tf}", MACD_POINTS, MACD_POINTS, f"{cross.value} histogram {ind.histogram:.6f}",
            ))
            break

    # 6. exhaustion
    max_possible += EXHAUSTION_POINTS
    if exhaustion_score > EXHAUSTION_MIN_SCORE:
        points = exhaustion_score / 100 * EXHAUSTION_POINTS
        total += points
        breakdown.append(ScoreComponent(
            "Trend exhaustion", round(points, 1), EXHAUSTION_POINTS, f"score {exhaustion_score}",
        ))

    # 7. continuation in the holding direction argues against reversing
    if current_direction is not None:
        holding = (
            PatternCategory.CONTINUATION_BULLISH
            if current_direction is TradeDirection.LONG
            else PatternCategory.CONTINUATION_BEARISH
        )
        continuations = [p for p in all_patterns if p.category is holding]
        if continuations:
            strongest = max(continuations, key=lambda p: p.reliability)
            penalty = CONTINUATION_PENALTY * strongest.reliability
            total -= penalty
            breakdown.append(ScoreComponent(
                "Continuation penalty", -round(penalty, 1), 0.0, f"{strongest.name} ({strongest.timeframe})",
            ))

    # 8. lone single-candle evidence
    if confluence_count == 1:
        only = next(iter(reversals_by_tf.values()))
        if all(p.candles_used == 1 for p in only):
            total -= SINGLE_TIMEFRAME_PENALTY
            breakdown.append(ScoreComponent(
                "Single-timeframe penalty", -SINGLE_TIMEFRAME_PENALTY, 0.0, "only single-candle patterns on one timeframe",
            ))

    # 9. confirming timeframe ranging in a quiet tape
    confirming = priority[-1]
    confirming_candles = candles_by_timeframe.get(confirming) or []
    confirming_ind = indicators_by_timeframe.get(confirming)
    if confirming_candles and confirming_ind is not None:
        price = confirming_candles[-1].close
        if (
            0.3 <= confirming_ind.bb_pos <= 0.7
            and confirming_ind.atr > 0
            and price > 0
            and confirming_ind.atr / price * 100 < cfg.ranging_atr_percent
        ):
            total -= RANGING_PENALTY
            breakdown.append(ScoreComponent(
                "Ranging penalty", -RANGING_PENALTY, 0.0, f"{confirming} mid-band with low ATR",
            ))

    confidence = 0
    if max_possible > 0:
        confidence = int(max(0, min(100, round(100 * total / max_possible))))

    if sought is not None:
        direction = sought
    else:
        bull, _ = score_reversal_signal(all_patterns, ReversalDirection.BULLISH)
        bear, _ = score_reversal_signal(all_patterns, ReversalDirection.BEARISH)
        direction = ReversalDirection.BULLISH if bull >= bear else ReversalDirection.BEARISH

    relevant_reversals = [p for group in reversals_by_tf.values() for p in group]
    phase = determine_reversal_phase(
        has_three_candle=any(p.candles_used == 3 for p in relevant_reversals),
        has_two_candle=any(p.candles_used == 2 for p in relevant_reversals),
        has_indecision=any(p.category is PatternCategory.INDECISION for p in all_patterns),
        exhaustion_score=exhaustion_score,
        confidence=confidence,
        confluence_count=confluence_count,
    )
    urgency = determine_reversal_urgency(phase, confidence)

    parts = [f"{direction.value.capitalize()} reversal {phase.value} ({confidence}%)"]
    if relevant_reversals:
        top = sorted(relevant_reversals, key=lambda p: p.reliability, reverse=True)[:3]
        parts.append(", ".join(f"{p.name}@{p.timeframe}" for p in top))
    if confluence_count >= 2:
        parts.append(f"confluence on {confluence_count} timeframes")
    if exhaustion_score > EXHAUSTION_MIN_SCORE:
        parts.append(f"exhaustion {exhaustion_score}")

    logger.debug("Reversal %s %s conf=%s total=%.1f/%.1f", direction.value, phase.value, confidence, total, max_possible)
    return ReversalSignal(
        phase=phase,
        direction=direction,
        confidence=confidence,
        timeframes=details,
        patterns=sorted(all_patterns, key=lambda p: (p.reliability, p.strength), reverse=True),
        exhaustion_score=exhaustion_score,
        urgency=urgency,
        score_breakdown=breakdown,
        description=" | ".join(parts),
    )


def detect_short_term_reversal(
    candles_5m: Sequence[Candle],
    candles_15m: Sequence[Candle],
    indicators_5m: Optional[Indicators],
    indicators_15m: Optional[Indicators],
    current_direction: Optional[TradeDirection],
    config: Optional[ReversalConfig] = None,
) -> ReversalSignal:
    """5m leading, 15m confirming."""
    indicators = {}
    if indicators_5m is not None:
        indicators["5m"] = indicators_5m
    if indicators_15m is not None:
        indicators["15m"] = indicators_15m
    return detect_reversal(
        {"5m": candles_5m, "15m": candles_15m},
        indicators,
        current_direction,
        ["5m", "15m"],
        config,
    )
