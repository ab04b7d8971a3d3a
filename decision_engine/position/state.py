"""
Position state model: builds the canonical PositionState from a raw source,
carries the high-water mark between ticks and applies lifecycle updates
(entry, DCA add, price tick, close).
"""

from __future__ import annotations
import logging
from dataclasses import replace
from typing import List, Optional, TYPE_CHECKING

from decision_engine.core.config import StrategyConfig
from decision_engine.core.types import (
    AccountBalance,
    EntryRecord,
    EntryType,
    PositionPhase,
    PositionState,
    TradeDirection,
)
from decision_engine.position.liquidation import calculate_liquidation_distance, calculate_liquidation_price
from decision_engine.position.sources import RawPosition, normalize_position

if TYPE_CHECKING:
    from decision_engine.core.types import DCASignal, ExitSignal

logger = logging.getLogger("decision_engine.position")

HOUR_MS = 3_600_000
ROLLOVER_RATE_PER_4H = 0.0002
EXIT_WATCH_PRESSURE = 30.0


def _derive_state(
    direction: TradeDirection,
    entries: List[EntryRecord],
    margin_used: float,
    margin_percent: float,
    total_fees: float,
    opened_at: int,
    leverage: int,
    current_price: float,
    now_ms: int,
    max_hours: float,
    max_dca_count: int,
    account: Optional[AccountBalance],
) -> PositionState:
    """Compute every derived field from the entry list and the current mark."""
    total_volume = sum(e.volume for e in entries)
    if total_volume <= 0:
        return PositionState()
    avg_price = sum(e.price * e.volume for e in entries) / total_volume

    diff = current_price - avg_price if direction is TradeDirection.LONG else avg_price - current_price
    pnl = diff * total_volume - total_fees
    notional = avg_price * total_volume
    pnl_percent = pnl / notional * 100 if notional > 0 else 0.0
    levered_percent = pnl / margin_used * 100 if margin_used > 0 else 0.0

    liq = calculate_liquidation_price(direction, avg_price, total_volume, margin_used, leverage, account)
    distance = calculate_liquidation_distance(direction, current_price, liq)

    time_in_trade = max(0, now_ms - opened_at) if opened_at else 0
    hours = time_in_trade / HOUR_MS
    hwm = max(0.0, pnl)
    return PositionState(
        is_open=True,
        direction=direction,
        phase=PositionPhase.ENTRY,
        entries=entries,
        avg_price=avg_price,
        total_volume=total_volume,
        total_margin_used=margin_used,
        total_margin_percent=margin_percent,
        dca_count=max(0, min(len(entries) - 1, max_dca_count)),
        unrealized_pnl=pnl,
        unrealized_pnl_percent=pnl_percent,
        unrealized_pnl_levered_percent=levered_percent,
        high_water_mark_pnl=hwm,
        drawdown_from_hwm=hwm - pnl,
        drawdown_from_hwm_percent=(hwm - pnl) / hwm * 100 if hwm > 0 else 0.0,
        opened_at=opened_at or None,
        time_in_trade_ms=time_in_trade,
        hours_remaining=max(0.0, max_hours - hours),
        timebox_progress=min(100.0, hours / max_hours * 100) if max_hours > 0 else 0.0,
        liquidation_price=liq,
        liquidation_distance_percent=distance,
        leverage=leverage,
        total_fees=total_fees,
        rollover_cost_per_4h=notional * ROLLOVER_RATE_PER_4H,
    )


def _margin_percent(margin: float, available_margin: float) -> float:
    denom = margin + available_margin
    return margin / denom * 100 if denom > 0 else 0.0


def build_position_state(
    raw: Optional[RawPosition],
    current_price: float,
    available_margin: float,
    now_ms: int,
    account: Optional[AccountBalance] = None,
    strategy: Optional[StrategyConfig] = None,
    max_hours: Optional[float] = None,
) -> PositionState:
    """
    Normalize a raw source into a PositionState. Grouped fills become the entry
    history (level 0 = initial, then DCA levels); without fills a single
    synthetic entry at the reported average price is used.
    """
    strategy = strategy or StrategyConfig()
    if raw is None:
        return PositionState()
    norm = normalize_position(raw, strategy.position_sizing.leverage)
    if norm.volume <= 0:
        return PositionState()

    margin = norm.margin_used or sum(g.margin for g in norm.fills)
    equity = margin + available_margin
    if norm.fills:
        entries = [
            EntryRecord(
                id=g.id,
                entry_type=EntryType.INITIAL if idx == 0 else EntryType.DCA,
                dca_level=idx,
                price=g.price,
                volume=g.volume,
                margin_used=g.margin,
                margin_percent=g.margin / equity * 100 if equity > 0 else 0.0,
                timestamp=g.timestamp,
            )
            for idx, g in enumerate(norm.fills)
        ]
        fill_volume = sum(e.volume for e in entries)
        if abs(fill_volume - norm.volume) > 1e-9 * max(1.0, norm.volume):
            logger.debug("Fill volume %.8f differs from position volume %.8f", fill_volume, norm.volume)
    else:
        entries = [
            EntryRecord(
                id=f"{norm.source}-{norm.opened_at}",
                entry_type=EntryType.INITIAL,
                dca_level=0,
                price=norm.avg_price,
                volume=norm.volume,
                margin_used=margin,
                margin_percent=_margin_percent(margin, available_margin),
                timestamp=norm.opened_at,
            )
        ]

    return _derive_state(
        direction=norm.direction,
        entries=entries,
        margin_used=margin,
        margin_percent=_margin_percent(margin, available_margin),
        total_fees=norm.total_fees,
        opened_at=norm.opened_at,
        leverage=norm.leverage,
        current_price=current_price,
        now_ms=now_ms,
        max_hours=max_hours or strategy.timebox.max_hours,
        max_dca_count=strategy.position_sizing.max_dca_count,
        account=account,
    )


def _same_position(a: PositionState, b: PositionState) -> bool:
    return a.is_open and b.is_open and a.direction is b.direction and a.opened_at == b.opened_at


def carry_high_water_mark(previous: Optional[PositionState], current: PositionState) -> PositionState:
    """
    HWM cell transition (previous, fresh) -> next. The mark only rises while the
    same position stays open and is 0 once it is closed.
    """
    if not current.is_open:
        return replace(current, high_water_mark_pnl=0.0, drawdown_from_hwm=0.0, drawdown_from_hwm_percent=0.0)
    prior = previous.high_water_mark_pnl if previous is not None and _same_position(previous, current) else 0.0
    hwm = max(prior, current.unrealized_pnl, 0.0)
    drawdown = max(0.0, hwm - current.unrealized_pnl)
    return replace(
        current,
        high_water_mark_pnl=hwm,
        drawdown_from_hwm=drawdown,
        drawdown_from_hwm_percent=drawdown / hwm * 100 if hwm > 0 else 0.0,
    )


def create_position_from_entry(
    direction: TradeDirection,
    price: float,
    volume: float,
    margin_used: float,
    available_margin: float,
    now_ms: int,
    strategy: Optional[StrategyConfig] = None,
    confidence: float = 0.0,
    reason: str = "",
) -> PositionState:
    """Open a fresh position from its initial fill."""
    strategy = strategy or StrategyConfig()
    entry = EntryRecord(
        id=f"entry-{now_ms}",
        entry_type=EntryType.INITIAL,
        dca_level=0,
        price=price,
        volume=volume,
        margin_used=margin_used,
        margin_percent=_margin_percent(margin_used, available_margin),
        timestamp=now_ms,
        confidence=confidence,
        reason=reason,
    )
    logger.info("Opened %s %.4f @ %.5f", direction.value, volume, price)
    return _derive_state(
        direction, [entry], margin_used, _margin_percent(margin_used, available_margin), 0.0, now_ms,
        strategy.position_sizing.leverage, price, now_ms, strategy.timebox.max_hours,
        strategy.position_sizing.max_dca_count, None,
    )


def add_dca_to_position(
    position: PositionState,
    price: float,
    volume: float,
    margin_used: float,
    available_margin: float,
    now_ms: int,
    strategy: Optional[StrategyConfig] = None,
    confidence: float = 0.0,
    reason: str = "",
) -> PositionState:
    """Append a DCA fill and recompute the weighted average. Refuses beyond the DCA cap."""
    strategy = strategy or StrategyConfig()
    if not position.is_open or position.direction is None:
        raise ValueError("Cannot DCA into a closed position")
    if position.dca_count >= strategy.position_sizing.max_dca_count:
        raise ValueError(f"DCA limit reached ({strategy.position_sizing.max_dca_count})")
    level = position.dca_count + 1
    entry = EntryRecord(
        id=f"dca{level}-{now_ms}",
        entry_type=EntryType.DCA,
        dca_level=level,
        price=price,
        volume=volume,
        margin_used=margin_used,
        margin_percent=_margin_percent(margin_used, available_margin),
        timestamp=now_ms,
        confidence=confidence,
        reason=reason,
    )
    total_margin = position.total_margin_used + margin_used
    updated = _derive_state(
        position.direction, position.entries + [entry], total_margin,
        _margin_percent(total_margin, available_margin), position.total_fees, position.opened_at or now_ms,
        position.leverage, price, now_ms, strategy.timebox.max_hours,
        strategy.position_sizing.max_dca_count, None,
    )
    logger.info("DCA %s added: %.4f @ %.5f, new avg %.5f", level, volume, price, updated.avg_price)
    return carry_high_water_mark(position, updated)


def update_position_state(
    position: PositionState,
    current_price: float,
    now_ms: int,
    max_hours: float,
    account: Optional[AccountBalance] = None,
    max_dca_count: int = 3,
) -> PositionState:
    """Re-mark an open position (P&L, time, liquidation, HWM) without fresh fills."""
    if not position.is_open or position.direction is None:
        return position
    updated = _derive_state(
        position.direction, position.entries, position.total_margin_used, position.total_margin_percent,
        position.total_fees, position.opened_at or now_ms, position.leverage, current_price, now_ms,
        max_hours, max_dca_count, account,
    )
    return carry_high_water_mark(position, replace(updated, phase=position.phase))


def close_position(position: PositionState) -> PositionState:
    """Replace a position with the empty state; the high-water mark resets."""
    if position.is_open:
        logger.info("Closed %s at P&L %.2f", position.direction.value if position.direction else "-", position.unrealized_pnl)
    return PositionState(phase=PositionPhase.CLOSED)


def refine_position_phase(
    position: PositionState,
    exit_signal: "ExitSignal",
    dca_signal: "DCASignal",
) -> PositionState:
    """Tag the lifecycle phase from the latest exit and DCA verdicts."""
    if not position.is_open:
        return position
    if exit_signal.should_exit:
        phase = PositionPhase.EXITING
    elif exit_signal.total_pressure >= EXIT_WATCH_PRESSURE:
        phase = PositionPhase.EXIT_WATCH
    elif dca_signal.should_dca:
        phase = PositionPhase.IN_DCA
    elif position.dca_count == 0 and position.unrealized_pnl < 0:
        phase = PositionPhase.DCA_WATCH
    else:
        phase = PositionPhase.ENTRY
    return replace(position, phase=phase)
