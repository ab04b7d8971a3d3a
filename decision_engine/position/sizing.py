"""
Entry and DCA sizing: margin allocation bounded by confidence, total margin
utilization and a free-margin reserve.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from decision_engine.core.config import PositionSizingConfig
from decision_engine.core.types import PositionState

logger = logging.getLogger("decision_engine.sizing")


@dataclass
class EntrySize:
    """Result of entry sizing."""
    mode: str  # "full" | "cautious"
    margin: float
    margin_percent: float
    notional: float
    volume: float


@dataclass
class DCASize:
    level: int
    margin: float
    margin_percent: float
    reason: str = ""


@dataclass
class DCACapacity:
    remaining_dcas: int
    utilization_percent: float
    headroom_margin: float


def calculate_entry_size(
    confidence: float,
    price: float,
    available_margin: float,
    sizing: PositionSizingConfig,
) -> Optional[EntrySize]:
    """Full size at high confidence, cautious size above the minimum, None below it."""
    if price <= 0:
        raise ValueError(f"Price must be positive, got {price}")
    if confidence < sizing.min_entry_confidence or available_margin <= 0:
        return None
    if confidence >= sizing.full_entry_confidence:
        mode, pct = "full", sizing.full_entry_margin_percent
    else:
        mode, pct = "cautious", sizing.cautious_entry_margin_percent
    margin = available_margin * pct / 100
    notional = margin * sizing.leverage
    return EntrySize(mode, margin, pct, notional, notional / price)


def calculate_dca_size(
    level: int,
    total_margin_used: float,
    equity: float,
    available_margin: float,
    sizing: PositionSizingConfig,
    scale_factor: float = 1.0,
) -> Optional[DCASize]:
    """
    Margin for DCA `level` (1-based): the configured DCA slice scaled per level,
    limited by the total-margin cap and the free-margin reserve.
    """
    if level < 1 or level > sizing.max_dca_count or equity <= 0:
        return None
    utilization = total_margin_used / equity * 100
    if utilization >= sizing.max_total_margin_percent:
        logger.debug("DCA %s skipped: utilization %.1f%% at cap", level, utilization)
        return None
    target = equity * sizing.dca_margin_percent / 100 * scale_factor ** (level - 1)
    headroom = equity * sizing.max_total_margin_percent / 100 - total_margin_used
    reserve_cap = available_margin * (1 - sizing.min_free_margin_percent / 100)
    margin = min(target, headroom, reserve_cap)
    if margin <= 0:
        return None
    reason = "full slice" if margin == target else "capped by margin limits"
    return DCASize(level, margin, margin / equity * 100, reason)


def calculate_dca_capacity(position: PositionState, equity: float, sizing: PositionSizingConfig) -> DCACapacity:
    remaining = max(0, sizing.max_dca_count - position.dca_count) if position.is_open else sizing.max_dca_count
    utilization = position.total_margin_used / equity * 100 if equity > 0 else 0.0
    headroom = max(0.0, equity * sizing.max_total_margin_percent / 100 - position.total_margin_used)
    return DCACapacity(remaining, utilization, headroom)
