"""
DCA opportunity engine.

A DCA is recommended only when price has moved against the position AND the
adverse move shows momentum exhaustion. Fixed percentage drops alone never
trigger an add.
"""

from __future__ import annotations
import logging
from typing import List, Optional, Sequence

from decision_engine.core.config import DCAExhaustionThresholds, StrategyConfig
from decision_engine.core.types import (
    Candle,
    DCAConditionSignal,
    DCAExhaustionType,
    DCASignal,
    Indicators,
    PositionState,
    TimePhase,
    TradeDirection,
    Trend,
)
from decision_engine.exits.pressures import get_time_phase
from decision_engine.position.sizing import calculate_dca_size

logger = logging.getLogger("decision_engine.dca")

HOUR_MS = 3_600_000
ADVERSE_TREND_PENALTY = 10
LIQUIDATION_WARNING_PERCENT = 10.0

# condition name -> (weight, exhaustion type)
CONDITION_WEIGHTS = {
    "rsi_exhaustion": (0.25, DCAExhaustionType.RSI_DIVERGENCE),
    "volume_decline": (0.20, DCAExhaustionType.VOLUME_DRY_UP),
    "macd_convergence": (0.20, DCAExhaustionType.MACD_CONVERGENCE),
    "bb_middle": (0.15, DCAExhaustionType.BB_EXTREME_HOLD),
    "price_stabilizing": (0.20, DCAExhaustionType.CANDLE_REJECTION),
}


def calculate_drawdown_percent(direction: TradeDirection, avg_price: float, current_price: float) -> float:
    """Adverse move from the average entry, in percent. Negative when in favour."""
    if avg_price <= 0:
        return 0.0
    if direction is TradeDirection.LONG:
        return (avg_price - current_price) / avg_price * 100
    return (current_price - avg_price) / avg_price * 100


def count_stabilizing_candles(candles: Sequence[Candle], direction: TradeDirection, lookback: int) -> int:
    """Higher lows for a long (sellers fading), lower highs for a short."""
    recent = list(candles[-(lookback + 1):]) if lookback > 0 else []
    matches = 0
    for prev, cur in zip(recent, recent[1:]):
        if direction is TradeDirection.LONG and cur.low > prev.low:
            matches += 1
        elif direction is TradeDirection.SHORT and cur.high < prev.high:
            matches += 1
    return matches


def evaluate_exhaustion_conditions(
    direction: TradeDirection,
    indicators_15m: Optional[Indicators],
    indicators_5m: Optional[Indicators],
    candles_5m: Sequence[Candle],
    thresholds: DCAExhaustionThresholds,
) -> List[DCAConditionSignal]:
    """
    One row per condition. A condition whose timeframe has no indicators is
    reported inactive with value 0 rather than judged on neutral defaults.
    """
    t = thresholds
    ind15, ind5 = indicators_15m, indicators_5m

    rsi_active = macd_active = bb_active = False
    rsi = bb_pos = gap = 0.0
    hist = None
    if ind15 is not None:
        rsi, bb_pos = ind15.rsi, ind15.bb_pos
        if direction is TradeDirection.LONG:
            rsi_active = rsi < t.rsi_oversold
        else:
            rsi_active = rsi > t.rsi_overbought
        hist = ind15.histogram
        gap = abs(ind15.macd - ind15.macd_signal)
        macd_active = (hist is not None and abs(hist) < t.macd_near_zero) or gap < t.macd_signal_proximity
        bb_active = t.bb_middle_low <= bb_pos <= t.bb_middle_high

    vol_5m = ind5.vol_ratio if ind5 is not None else 0.0
    volume_active = False
    if ind5 is not None:
        volume_active = vol_5m < t.volume_fading_5m or (
            ind15 is not None and vol_5m < t.volume_decline_5m and ind15.vol_ratio < t.volume_decline_15m
        )

    matches = count_stabilizing_candles(candles_5m, direction, t.price_stabilizing_lookback)
    stabilizing_active = matches >= t.price_stabilizing_min_matches

    rows = [
        ("rsi_exhaustion", rsi_active, rsi, "15m"),
        ("volume_decline", volume_active, vol_5m, "5m"),
        ("macd_convergence", macd_active, hist if hist is not None else gap, "15m"),
        ("bb_middle", bb_active, bb_pos, "15m"),
        ("price_stabilizing", stabilizing_active, float(matches), "5m"),
    ]
    return [
        DCAConditionSignal(name=name, active=active, value=value, weight=CONDITION_WEIGHTS[name][0], timeframe=tf)
        for name, active, value, tf in rows
    ]


def exhaustion_confidence(signals: List[DCAConditionSignal]) -> int:
    total = sum(s.weight for s in signals)
    if total <= 0:
        return 0
    return int(round(sum(s.weight for s in signals if s.active) / total * 100))


def classify_exhaustion(signals: List[DCAConditionSignal]) -> DCAExhaustionType:
    active = [s for s in signals if s.active]
    if not active:
        return DCAExhaustionType.NONE
    if len(active) > 1:
        return DCAExhaustionType.MULTI_SIGNAL
    return CONDITION_WEIGHTS[active[0].name][1]


def _adverse_trend(direction: TradeDirection, indicators_1h: Optional[Indicators]) -> bool:
    if indicators_1h is None:
        return False
    against = Trend.BEARISH if direction is TradeDirection.LONG else Trend.BULLISH
    return indicators_1h.trend is against


def analyze_dca_opportunity(
    position: PositionState,
    indicators_15m: Optional[Indicators],
    indicators_1h: Optional[Indicators],
    indicators_5m: Optional[Indicators],
    candles_5m: Sequence[Candle],
    current_price: float,
    now_ms: int,
    strategy: Optional[StrategyConfig] = None,
    available_margin: Optional[float] = None,
    time_phase: Optional[TimePhase] = None,
) -> DCASignal:
    """
    Check the DCA preconditions (level, drawdown, spacing, margin, timebox
    midpoint) and score the exhaustion conditions. Conditions are reported
    even when a precondition blocks the add.
    """
    strategy = strategy or StrategyConfig()
    if not position.is_open or position.direction is None:
        return DCASignal(reason="No open position")

    sizing = strategy.position_sizing
    dca_cfg = strategy.dca
    policy = strategy.underwater_policy
    direction = position.direction
    level = position.dca_count + 1

    if position.dca_count >= sizing.max_dca_count:
        return DCASignal(
            dca_level=position.dca_count,
            reason=f"Maximum DCA count reached ({sizing.max_dca_count})",
            warnings=["No DCA capacity left"],
        )

    drawdown = calculate_drawdown_percent(direction, position.avg_price, current_price)
    if time_phase is None:
        hours = max(0, now_ms - position.opened_at) / HOUR_MS if position.opened_at else 0.0
        time_phase = get_time_phase(hours, strategy.timebox.max_hours)
    overdue_underwater = policy.enabled and time_phase is TimePhase.OVERDUE and position.unrealized_pnl < 0

    min_drawdown = dca_cfg.min_drawdown_for_dca
    min_confidence = dca_cfg.min_exhaustion_confidence
    spacing = dca_cfg.exhaustion_thresholds.min_hours_between_by_level.get(level, dca_cfg.min_time_between_dcas)
    if overdue_underwater:
        adj = policy.overdue_dca
        min_drawdown = max(0.0, min_drawdown + adj.min_drawdown_adjustment)
        min_confidence = max(0.0, min_confidence + adj.confidence_adjustment)
        spacing *= adj.time_spacing_multiplier

    signals = evaluate_exhaustion_conditions(
        direction, indicators_15m, indicators_5m, candles_5m, dca_cfg.exhaustion_thresholds
    )
    confidence = exhaustion_confidence(signals)
    warnings: List[str] = []
    if _adverse_trend(direction, indicators_1h):
        confidence = max(0, confidence - ADVERSE_TREND_PENALTY)
        warnings.append("1h trend still against the position")
    if level == sizing.max_dca_count:
        warnings.append("Final DCA level")
    if position.liquidation_distance_percent < LIQUIDATION_WARNING_PERCENT:
        warnings.append(f"Liquidation {position.liquidation_distance_percent:.1f}% away")
    if overdue_underwater:
        warnings.append("Overdue and underwater: relaxed DCA thresholds")

    blockers: List[str] = []
    if drawdown < min_drawdown:
        blockers.append(f"drawdown {drawdown:.2f}% below {min_drawdown:.2f}%")
    last_entry = position.last_entry_time
    if last_entry is not None:
        since = max(0, now_ms - last_entry) / HOUR_MS
        if since < spacing:
            blockers.append(f"{since:.1f}h since last entry, need {spacing:.1f}h")
    if not dca_cfg.allow_dca_after_midpoint and position.timebox_progress > 50:
        blockers.append("past timebox midpoint")

    if available_margin is not None:
        equity = position.total_margin_used + available_margin
    elif position.total_margin_percent > 0:
        equity = position.total_margin_used / (position.total_margin_percent / 100)
        available_margin = equity - position.total_margin_used
    else:
        equity = available_margin = 0.0
    size = calculate_dca_size(
        level, position.total_margin_used, equity, available_margin, sizing, dca_cfg.dca_size_scale_factor
    )
    if size is None:
        blockers.append("no margin headroom")
    if confidence < min_confidence:
        blockers.append(f"exhaustion confidence {confidence}% below {min_confidence:.0f}%")

    should_dca = not blockers
    active_names = [s.name.replace("_", " ") for s in signals if s.active]
    if should_dca:
        reason = f"DCA {level}: {drawdown:.1f}% adverse with exhaustion ({', '.join(active_names)})"
        logger.info("DCA %s recommended at %.5f, confidence %s%%", level, current_price, confidence)
    else:
        reason = "No DCA: " + "; ".join(blockers)

    return DCASignal(
        should_dca=should_dca,
        confidence=confidence,
        dca_level=level,
        exhaustion_type=classify_exhaustion(signals),
        drawdown_percent=drawdown,
        signals=signals,
        reason=reason,
        suggested_margin_percent=size.margin_percent if size is not None and should_dca else 0.0,
        warnings=warnings,
    )
