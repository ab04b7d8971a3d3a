"""
Exit-pressure engine: weights the active contributors into one composite
pressure, applies the profit-aware threshold and decides urgency and reason.

A position at a loss never produces an exit recommendation. The guard lives in
ExitSignal.should_exit, so no caller can assemble a signal that violates it.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from decision_engine.core.config import StrategyConfig
from decision_engine.core.types import (
    EnrichmentBundle,
    ExitPressure,
    ExitReason,
    ExitSignal,
    ExitUrgency,
    Indicators,
    MarketRegime,
    PositionState,
    PressureSource,
    RegimeAnalysis,
    TimePhase,
    no_exit_signal,
)
from decision_engine.exits.pressures import (
    DEFAULT_PRESSURE_WEIGHTS,
    KNIFE_OVERRIDE_PHASES,
    PRESSURE_REASONS,
    STRONG_TREND_FLIP,
    anti_greed_pressure,
    get_time_phase,
    knife_opposes,
    knife_pressure,
    macd_reversal_pressure,
    momentum_fading_pressure,
    reversal_pressure,
    rsi_exhaustion_pressure,
    timebox_pressure,
    trend_exhaustion_pressure,
    trend_flip_pressure,
    volume_dry_up_pressure,
    whale_pressure,
)
from decision_engine.reversal.detector import sought_direction

logger = logging.getLogger("decision_engine.exits")

HOUR_MS = 3_600_000
KNIFE_THRESHOLD_CAP = 50.0
STRONG_TREND_THRESHOLD_CAP = 80.0


@dataclass
class ExitStatus:
    label: str
    color: str  # green | yellow | orange | red | gray


def calculate_exit_threshold(
    position: PositionState,
    strategy: StrategyConfig,
    regime: Optional[RegimeAnalysis] = None,
    knife_override: bool = False,
) -> float:
    """Base threshold raised with profit and in strong trends, lowered under an active knife."""
    base = strategy.exit.exit_pressure_threshold
    pnl_percent = max(position.unrealized_pnl_percent, position.unrealized_pnl_levered_percent)
    if pnl_percent > 20:
        threshold = base + 10
    elif pnl_percent > 10:
        threshold = base + 5
    else:
        threshold = base
    if regime is not None and regime.regime is MarketRegime.STRONG_TREND:
        threshold = min(STRONG_TREND_THRESHOLD_CAP, threshold + 10)
    if knife_override:
        threshold = min(threshold, KNIFE_THRESHOLD_CAP)
    return threshold


def determine_urgency(time_phase: TimePhase, in_profit: bool, total_pressure: float) -> ExitUrgency:
    if total_pressure >= 90:
        return ExitUrgency.IMMEDIATE
    if time_phase is TimePhase.OVERDUE:
        return ExitUrgency.IMMEDIATE if in_profit else ExitUrgency.SOON
    if time_phase is TimePhase.URGENT:
        return ExitUrgency.SOON if in_profit else ExitUrgency.CONSIDER
    if time_phase is TimePhase.ESCALATING:
        if total_pressure >= 60:
            return ExitUrgency.SOON
        return ExitUrgency.CONSIDER if in_profit else ExitUrgency.MONITOR
    if time_phase is TimePhase.MONITOR:
        return ExitUrgency.CONSIDER if total_pressure >= 70 else ExitUrgency.MONITOR
    return ExitUrgency.CONSIDER if total_pressure >= 80 else ExitUrgency.MONITOR


def select_primary_reason(pressures: List[ExitPressure], time_phase: TimePhase) -> ExitReason:
    """Fixed precedence over the active contributors."""
    active: Dict[PressureSource, ExitPressure] = {p.source: p for p in pressures}
    if PressureSource.ANTI_GREED in active:
        return ExitReason.ANTI_GREED
    if PressureSource.KNIFE in active:
        return ExitReason.KNIFE_DETECTED
    if PressureSource.REVERSAL in active:
        return ExitReason.REVERSAL_DETECTED
    flip = active.get(PressureSource.TREND_FLIP)
    if flip is not None and flip.value >= STRONG_TREND_FLIP:
        return ExitReason.TREND_REVERSAL
    if time_phase is TimePhase.OVERDUE:
        return ExitReason.TIMEBOX_EXPIRED
    if any(PRESSURE_REASONS[s] is ExitReason.MOMENTUM_EXHAUSTION for s in active):
        return ExitReason.MOMENTUM_EXHAUSTION
    if PressureSource.VOLUME_DRY_UP in active:
        return ExitReason.CONDITION_DETERIORATION
    return ExitReason.TIMEBOX_APPROACHING


def composite_pressure(pressures: List[ExitPressure]) -> float:
    total_weight = sum(p.weight for p in pressures)
    if total_weight <= 0:
        return 0.0
    return sum(p.value * p.weight for p in pressures) / total_weight


def _hours_in_trade(position: PositionState, now_ms: int) -> float:
    if position.opened_at:
        return max(0, now_ms - position.opened_at) / HOUR_MS
    return position.time_in_trade_ms / HOUR_MS


def analyze_exit_conditions(
    position: PositionState,
    indicators_15m: Optional[Indicators],
    indicators_1h: Optional[Indicators],
    indicators_5m: Optional[Indicators],
    now_ms: int,
    strategy: Optional[StrategyConfig] = None,
    enrichment: Optional[EnrichmentBundle] = None,
) -> ExitSignal:
    """Score every active exit contributor for an open position and decide."""
    if not position.is_open or position.direction is None:
        return no_exit_signal()
    strategy = strategy or StrategyConfig()
    enrichment = enrichment or EnrichmentBundle()
    direction = position.direction
    regime = enrichment.regime
    policy = strategy.underwater_policy

    effective_max = regime.adjusted_timebox_max_hours if regime is not None else strategy.timebox.max_hours
    hours = _hours_in_trade(position, now_ms)
    time_phase = get_time_phase(hours, effective_max)
    in_profit = position.unrealized_pnl > 0
    recovery = policy.enabled and position.unrealized_pnl < 0

    weights = dict(DEFAULT_PRESSURE_WEIGHTS)
    if regime is not None:
        weights[PressureSource.TIMEBOX] = regime.adjusted_timebox_weight
    if recovery:
        if policy.suppress_timebox_pressure_when_underwater:
            weights[PressureSource.TIMEBOX] = 0.0
        else:
            weights[PressureSource.TIMEBOX] *= policy.underwater_timebox_weight_multiplier
    reversal = enrichment.reversal
    if reversal is not None and reversal.detected and reversal.direction is sought_direction(direction):
        weights[PressureSource.MACD_REVERSAL] /= 2

    src = PressureSource
    candidates = [
        timebox_pressure(hours, strategy.timebox, effective_max, weights[src.TIMEBOX]),
        rsi_exhaustion_pressure(indicators_15m, direction, weights[src.RSI_EXHAUSTION]),
        macd_reversal_pressure(indicators_1h, direction, weights[src.MACD_REVERSAL]),
        volume_dry_up_pressure(indicators_15m, indicators_5m, in_profit, weights[src.VOLUME_DRY_UP]),
        anti_greed_pressure(position, strategy.anti_greed, weights[src.ANTI_GREED]),
        momentum_fading_pressure(indicators_15m, direction, weights[src.MOMENTUM_FADING]),
        trend_flip_pressure(indicators_1h, direction, weights[src.TREND_FLIP]),
        reversal_pressure(reversal, direction, weights[src.REVERSAL]),
        knife_pressure(enrichment.knife, direction, weights[src.KNIFE]),
        whale_pressure(enrichment.whale, direction, weights[src.WHALE_IMBALANCE]),
    ]
    if enrichment.indicators_4h is not None:
        candidates.append(trend_exhaustion_pressure(enrichment.indicators_4h, direction, weights[src.TREND_EXHAUSTION]))
    pressures = [p for p in candidates if p is not None]

    total = composite_pressure(pressures)
    if time_phase is TimePhase.OVERDUE and in_profit and not recovery:
        total = max(total, strategy.exit.soft_floor_pressure)
    total = min(100.0, total)

    knife = enrichment.knife
    knife_override = knife_opposes(knife, direction) and knife.phase in KNIFE_OVERRIDE_PHASES
    threshold = calculate_exit_threshold(position, strategy, regime, knife_override)

    urgency = determine_urgency(time_phase, in_profit, total)
    if recovery and urgency.rank > policy.max_urgency_when_underwater.rank:
        urgency = policy.max_urgency_when_underwater

    reason = select_primary_reason(pressures, time_phase)
    signal = ExitSignal(
        urgency=urgency,
        reason=reason,
        explanation="",
        pressures=pressures,
        total_pressure=total,
        effective_threshold=threshold,
        unrealized_pnl=position.unrealized_pnl,
        min_profit_for_exit=strategy.exit.min_profit_for_exit,
        time_phase=time_phase,
    )
    explanation = _build_explanation(signal, position, hours, recovery, knife_override)
    signal = replace(signal, explanation=explanation)

    if signal.should_exit:
        logger.info(
            "Exit recommended: %s pressure %.0f >= %.0f, close %d%%",
            reason.value, total, threshold, signal.suggested_exit_percent,
        )
    else:
        logger.debug("Holding: pressure %.0f / threshold %.0f (%s)", total, threshold, time_phase.value)
    return signal


def _build_explanation(
    signal: ExitSignal,
    position: PositionState,
    hours: float,
    recovery: bool,
    knife_override: bool,
) -> str:
    parts: List[str] = []
    if signal.should_exit:
        parts.append(f"Exit recommended (pressure {signal.total_pressure:.0f} >= {signal.effective_threshold:.0f}).")
    elif position.unrealized_pnl > 0:
        parts.append(f"In profit, pressure {signal.total_pressure:.0f} below {signal.effective_threshold:.0f}.")
    else:
        parts.append("At a loss, holding: no exit at a loss.")
    if signal.time_phase is not TimePhase.NORMAL:
        parts.append(f"Time: {hours:.1f}h ({signal.time_phase.value}).")
    if position.unrealized_pnl > 0:
        parts.append(f"P&L: +{position.unrealized_pnl:.2f}.")
    if recovery:
        parts.append("Recovery mode: timebox pressure reduced.")
    if knife_override:
        parts.append("Knife active: threshold capped.")
    top = sorted(signal.pressures, key=lambda p: p.value * p.weight, reverse=True)[:3]
    if top:
        parts.append("Drivers: " + "; ".join(f"{p.source.value} {p.value:.0f} ({p.detail})" for p in top) + ".")
    return " ".join(parts)


def get_exit_status_summary(signal: ExitSignal) -> ExitStatus:
    """Display label and colour for an exit verdict."""
    if not signal.should_exit and signal.total_pressure == 0:
        return ExitStatus("Holding", "green")
    labels = {
        ExitUrgency.IMMEDIATE: ExitStatus("EXIT NOW", "red"),
        ExitUrgency.SOON: ExitStatus("Exit Soon", "orange"),
        ExitUrgency.CONSIDER: ExitStatus("Consider Exit", "yellow"),
        ExitUrgency.MONITOR: ExitStatus("Monitoring", "green"),
    }
    return labels.get(signal.urgency, ExitStatus("Holding", "gray"))
