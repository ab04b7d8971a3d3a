"""
Liquidation price, liquidation distance and position health.
Cross-margin formula when account figures are known, leverage-based estimate otherwise.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from decision_engine.core.types import AccountBalance, PositionState, TradeDirection

MAINTENANCE_MARGIN_RATIO = 0.4
FALLBACK_LIQUIDATION_MOVE = 0.6
DANGER_DISTANCE_PERCENT = 5.0
WARNING_DISTANCE_PERCENT = 10.0


def calculate_liquidation_price(
    direction: TradeDirection,
    entry_price: float,
    volume: float,
    margin: float,
    leverage: int,
    account: Optional[AccountBalance] = None,
) -> float:
    """
    Cross margin: the whole trade balance backs the position and liquidation
    happens when equity falls to 40% of the position margin.
    """
    if leverage <= 0:
        raise ValueError(f"Leverage must be positive, got {leverage}")
    if account is not None and account.equity > 0 and volume > 0:
        tb = account.trade_balance
        if direction is TradeDirection.LONG:
            return max(0.0, entry_price - (tb - margin * MAINTENANCE_MARGIN_RATIO) / volume)
        return leverage * (tb + entry_price * volume) / (volume * (MAINTENANCE_MARGIN_RATIO + leverage))
    move = FALLBACK_LIQUIDATION_MOVE / leverage
    if direction is TradeDirection.LONG:
        return entry_price * (1 - move)
    return entry_price * (1 + move)


def calculate_liquidation_distance(direction: TradeDirection, current_price: float, liquidation_price: float) -> float:
    """
    Percent of price between mark and liquidation; positive = safe. Reported
    as 100 when either price is unknown (<= 0) so no false alert fires.
    """
    if liquidation_price <= 0 or current_price <= 0:
        return 100.0
    if direction is TradeDirection.LONG:
        return (current_price - liquidation_price) / current_price * 100
    return (liquidation_price - current_price) / current_price * 100


@dataclass
class PositionHealth:
    liquidation_status: str  # "safe" | "warning" | "danger"
    liquidation_distance_percent: float
    margin_level: Optional[float]
    risk_factors: List[str] = field(default_factory=list)


def calculate_position_health(position: PositionState, account: Optional[AccountBalance] = None) -> PositionHealth:
    """Summarize liquidation proximity and the main risk factors of an open position."""
    distance = position.liquidation_distance_percent
    if distance < DANGER_DISTANCE_PERCENT:
        status = "danger"
    elif distance < WARNING_DISTANCE_PERCENT:
        status = "warning"
    else:
        status = "safe"

    margin_level = None
    if account is not None and position.total_margin_used > 0:
        margin_level = account.equity / position.total_margin_used * 100

    risks: List[str] = []
    if status != "safe":
        risks.append(f"Liquidation {distance:.1f}% away")
    if margin_level is not None and margin_level < 150:
        risks.append(f"Margin level {margin_level:.0f}%")
    if position.total_margin_percent > 80:
        risks.append(f"{position.total_margin_percent:.0f}% of margin committed")
    if position.drawdown_from_hwm_percent >= 50:
        risks.append(f"Gave back {position.drawdown_from_hwm_percent:.0f}% of peak profit")
    if position.timebox_progress >= 100:
        risks.append("Timebox expired")
    return PositionHealth(status, distance, margin_level, risks)
