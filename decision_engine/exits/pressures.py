"""
Exit-pressure contributors. Each returns an ExitPressure when active and None
otherwise, so an inactive or missing input never enters the weighted sum.
"""

from __future__ import annotations
from typing import Dict, Optional

from decision_engine.core.config import AntiGreedConfig, TimeboxConfig
from decision_engine.core.types import (
    ExitPressure,
    ExitReason,
    Indicators,
    KnifePhase,
    KnifeStatus,
    PositionState,
    PressureSource,
    ReversalPhase,
    ReversalSignal,
    TimePhase,
    TradeDirection,
    Trend,
    WhaleActivity,
)
from decision_engine.patterns.geometry import clamp
from decision_engine.reversal.detector import sought_direction

Src = PressureSource

DEFAULT_PRESSURE_WEIGHTS: Dict[PressureSource, float] = {
    Src.TIMEBOX: 0.20,
    Src.RSI_EXHAUSTION: 0.25,
    Src.MACD_REVERSAL: 0.18,
    Src.VOLUME_DRY_UP: 0.15,
    Src.ANTI_GREED: 0.25,
    Src.MOMENTUM_FADING: 0.15,
    Src.TREND_FLIP: 0.25,
    Src.REVERSAL: 0.20,
    Src.KNIFE: 0.22,
    Src.WHALE_IMBALANCE: 0.12,
    Src.TREND_EXHAUSTION: 0.15,
}

PRESSURE_REASONS: Dict[PressureSource, ExitReason] = {
    Src.TIMEBOX: ExitReason.TIMEBOX_APPROACHING,
    Src.RSI_EXHAUSTION: ExitReason.MOMENTUM_EXHAUSTION,
    Src.MACD_REVERSAL: ExitReason.MOMENTUM_EXHAUSTION,
    Src.VOLUME_DRY_UP: ExitReason.CONDITION_DETERIORATION,
    Src.ANTI_GREED: ExitReason.ANTI_GREED,
    Src.MOMENTUM_FADING: ExitReason.MOMENTUM_EXHAUSTION,
    Src.TREND_FLIP: ExitReason.TREND_REVERSAL,
    Src.REVERSAL: ExitReason.REVERSAL_DETECTED,
    Src.KNIFE: ExitReason.KNIFE_DETECTED,
    Src.WHALE_IMBALANCE: ExitReason.CONDITION_DETERIORATION,
    Src.TREND_EXHAUSTION: ExitReason.MOMENTUM_EXHAUSTION,
}

REVERSAL_PHASE_FACTORS: Dict[ReversalPhase, float] = {
    ReversalPhase.CONFIRMATION: 1.0,
    ReversalPhase.INITIATION: 0.8,
    ReversalPhase.INDECISION: 0.55,
    ReversalPhase.EXHAUSTION: 0.4,
}

KNIFE_PHASE_FACTORS: Dict[KnifePhase, float] = {
    KnifePhase.IMPULSE: 1.0,
    KnifePhase.CAPITULATION: 0.9,
    KnifePhase.STABILIZING: 0.5,
    KnifePhase.CONFIRMING: 0.25,
    KnifePhase.SAFE: 0.0,
    KnifePhase.NONE: 0.0,
}

KNIFE_OVERRIDE_PHASES = (KnifePhase.IMPULSE, KnifePhase.CAPITULATION)

MOMENTUM_HIST_BAND = 0.0001
FLAT_SLOPE = 0.02
WHALE_EXCESS = 2
STRONG_TREND_FLIP = 80.0


def _opposing_trend(direction: TradeDirection) -> Trend:
    return Trend.BEARISH if direction is TradeDirection.LONG else Trend.BULLISH


# --- time ------------------------------------------------------------------

def get_time_phase(hours_in_trade: float, effective_max_hours: float) -> TimePhase:
    if effective_max_hours <= 0:
        return TimePhase.OVERDUE
    ratio = hours_in_trade / effective_max_hours
    if ratio < 0.25:
        return TimePhase.NORMAL
    if ratio < 0.5:
        return TimePhase.MONITOR
    if ratio < 0.75:
        return TimePhase.ESCALATING
    if ratio < 1.0:
        return TimePhase.URGENT
    return TimePhase.OVERDUE


def calculate_timebox_pressure(
    hours_in_trade: float,
    timebox: TimeboxConfig,
    effective_max_hours: Optional[float] = None,
) -> float:
    """
    Interpolate the step table. Step hours are stretched when the effective
    box is wider than the configured one.
    """
    steps = timebox.steps
    if not steps:
        return 0.0
    scale = (effective_max_hours or timebox.max_hours) / timebox.max_hours if timebox.max_hours > 0 else 1.0
    points = [(s.hours * scale, s.pressure) for s in steps]
    if hours_in_trade <= points[0][0]:
        return points[0][1]
    for (h0, p0), (h1, p1) in zip(points, points[1:]):
        if hours_in_trade <= h1:
            if h1 == h0:
                return p1
            return p0 + (p1 - p0) * (hours_in_trade - h0) / (h1 - h0)
    return points[-1][1]


def timebox_pressure(
    hours_in_trade: float,
    timebox: TimeboxConfig,
    effective_max_hours: float,
    weight: float,
) -> Optional[ExitPressure]:
    if weight <= 0:
        return None
    value = calculate_timebox_pressure(hours_in_trade, timebox, effective_max_hours)
    if value <= 0:
        return None
    return ExitPressure(Src.TIMEBOX, value, weight, f"{hours_in_trade:.1f}h of {effective_max_hours:.0f}h box")


def is_approaching_timebox(hours_in_trade: float, effective_max_hours: float) -> bool:
    return get_time_phase(hours_in_trade, effective_max_hours) is TimePhase.URGENT


# --- indicator contributors --------------------------------------------------

def rsi_exhaustion_pressure(ind: Optional[Indicators], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    if ind is None:
        return None
    rsi = ind.rsi
    if direction is TradeDirection.LONG:
        value = 90.0 if rsi > 75 else 60.0 if rsi > 70 else 0.0
    else:
        value = 90.0 if rsi < 25 else 60.0 if rsi < 30 else 0.0
    if value == 0:
        return None
    return ExitPressure(Src.RSI_EXHAUSTION, value, weight, f"15m RSI {rsi:.1f}")


def macd_reversal_pressure(ind: Optional[Indicators], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    hist = ind.histogram if ind is not None else None
    if hist is None:
        return None
    sign = 1 if direction is TradeDirection.LONG else -1
    if hist * sign >= 0:
        return None
    value = 80.0 if ind.macd * sign < 0 else 50.0
    return ExitPressure(Src.MACD_REVERSAL, value, weight, f"1h MACD histogram {hist:.6f} against position")


def volume_dry_up_pressure(
    ind_15m: Optional[Indicators],
    ind_5m: Optional[Indicators],
    in_profit: bool,
    weight: float,
) -> Optional[ExitPressure]:
    """Average the volume ratio over whichever of 15m and 5m is available."""
    ratios = [ind.vol_ratio for ind in (ind_15m, ind_5m) if ind is not None]
    if not in_profit or not ratios:
        return None
    ratio = sum(ratios) / len(ratios)
    if ratio < 0.5:
        value = 80.0
    elif ratio < 0.7:
        value = 50.0
    else:
        return None
    return ExitPressure(Src.VOLUME_DRY_UP, value, weight, f"volume at {ratio:.2f}x average")


def momentum_fading_pressure(ind: Optional[Indicators], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    if ind is None:
        return None
    hist = ind.histogram if ind.histogram is not None else 0.0
    if direction is TradeDirection.LONG:
        hist_fading = 0 < hist < MOMENTUM_HIST_BAND
    else:
        hist_fading = -MOMENTUM_HIST_BAND < hist < 0
    signals = [hist_fading, 45 < ind.rsi < 55, abs(ind.ema20_slope) < FLAT_SLOPE]
    count = sum(signals)
    if count < 2:
        return None
    return ExitPressure(Src.MOMENTUM_FADING, 60.0, weight, f"{count}/3 fading signals on 15m")


def trend_flip_pressure(ind: Optional[Indicators], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    against = _opposing_trend(direction)
    if ind is None or ind.trend is not against:
        return None
    if ind.ema_alignment is against:
        return ExitPressure(Src.TREND_FLIP, 90.0, weight, f"1h trend and EMAs turned {against.value}")
    return ExitPressure(Src.TREND_FLIP, 60.0, weight, f"1h trend turned {against.value}")


def trend_exhaustion_pressure(ind: Indicators, direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    """Needs at least two of: stretched RSI, opposing histogram, band extreme, flattening EMA."""
    hist = ind.histogram
    if direction is TradeDirection.LONG:
        conditions = [ind.rsi > 70, hist is not None and hist < 0, ind.bb_pos > 0.9]
    else:
        conditions = [ind.rsi < 30, hist is not None and hist > 0, ind.bb_pos < 0.1]
    conditions.append(abs(ind.ema20_slope) < FLAT_SLOPE)
    count = sum(conditions)
    if count < 2:
        return None
    value = {2: 60.0, 3: 80.0}.get(count, 95.0)
    return ExitPressure(Src.TREND_EXHAUSTION, value, weight, f"{count}/4 higher-timeframe exhaustion signals")


# --- position contributors ---------------------------------------------------

def is_anti_greed_triggered(position: PositionState, cfg: AntiGreedConfig) -> bool:
    if not cfg.enabled or position.high_water_mark_pnl < cfg.min_hwm_to_track:
        return False
    if position.unrealized_pnl < cfg.min_pnl_to_activate:
        return False
    return position.drawdown_from_hwm_percent >= cfg.drawdown_threshold_percent


def anti_greed_pressure(position: PositionState, cfg: AntiGreedConfig, weight: float) -> Optional[ExitPressure]:
    if not is_anti_greed_triggered(position, cfg):
        return None
    return ExitPressure(
        Src.ANTI_GREED, 90.0, weight,
        f"gave back {position.drawdown_from_hwm_percent:.0f}% of peak {position.high_water_mark_pnl:.2f}",
    )


# --- enrichment contributors -------------------------------------------------

def reversal_pressure(reversal: Optional[ReversalSignal], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    if reversal is None or not reversal.detected or reversal.direction is not sought_direction(direction):
        return None
    value = clamp(reversal.confidence * REVERSAL_PHASE_FACTORS[reversal.phase], 0, 100)
    return ExitPressure(
        Src.REVERSAL, value, weight,
        f"{reversal.direction.value} reversal {reversal.phase.value} ({reversal.confidence}%)",
    )


def knife_opposes(knife: Optional[KnifeStatus], direction: TradeDirection) -> bool:
    if knife is None or not knife.is_knife:
        return False
    adverse = "falling" if direction is TradeDirection.LONG else "rising"
    return knife.direction == adverse


def knife_pressure(knife: Optional[KnifeStatus], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    if not knife_opposes(knife, direction):
        return None
    factor = KNIFE_PHASE_FACTORS[knife.phase]
    if factor <= 0:
        return None
    value = clamp(knife.knife_score * factor, 0, 100)
    return ExitPressure(Src.KNIFE, value, weight, f"{knife.direction} knife, {knife.phase.value} (score {knife.knife_score:.0f})")


def whale_pressure(whale: Optional[WhaleActivity], direction: TradeDirection, weight: float) -> Optional[ExitPressure]:
    if whale is None:
        return None
    if direction is TradeDirection.LONG:
        excess = whale.recent_large_sells - whale.recent_large_buys
        book_against = whale.imbalance < -0.3
    else:
        excess = whale.recent_large_buys - whale.recent_large_sells
        book_against = whale.imbalance > 0.3
    if excess <= WHALE_EXCESS:
        return None
    value = 50.0 + 10.0 * (excess - WHALE_EXCESS) + (10.0 if book_against else 0.0)
    side = "selling" if direction is TradeDirection.LONG else "buying"
    return ExitPressure(Src.WHALE_IMBALANCE, min(90.0, value), weight, f"whale {side}: {excess} net large orders")
