"""
Decision engine orchestration: one tick turns a raw position plus market data
into the position state, reversal verdict, exit and DCA signals and a display
summary. The engine owns the only piece of state that outlives a tick, the
high-water mark of the open position.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from decision_engine.core.config import StrategyConfig
from decision_engine.core.types import (
    AccountBalance,
    Candle,
    DCASignal,
    EnrichmentBundle,
    ExitSignal,
    Indicators,
    KnifeStatus,
    PositionState,
    PressureSource,
    RegimeAnalysis,
    ReversalSignal,
    TimePhase,
    WhaleActivity,
    to_plain,
)
from decision_engine.dca.engine import analyze_dca_opportunity
from decision_engine.exits.engine import analyze_exit_conditions, get_exit_status_summary
from decision_engine.position.liquidation import DANGER_DISTANCE_PERCENT, PositionHealth, calculate_position_health
from decision_engine.position.sources import RawPosition
from decision_engine.position.state import build_position_state, carry_high_water_mark, refine_position_phase
from decision_engine.regime import detect_market_regime
from decision_engine.reversal.detector import detect_reversal, sought_direction
from decision_engine.utils.timeframes import order_timeframes

logger = logging.getLogger("decision_engine.engine")


@dataclass
class EngineInput:
    """Everything one tick needs. Candles and indicators are keyed by timeframe label."""
    raw_position: Optional[RawPosition]
    current_price: float
    now_ms: int
    candles: Dict[str, List[Candle]] = field(default_factory=dict)
    indicators: Dict[str, Indicators] = field(default_factory=dict)
    available_margin: float = 0.0
    account: Optional[AccountBalance] = None
    knife: Optional[KnifeStatus] = None
    whale: Optional[WhaleActivity] = None


@dataclass
class EngineSummary:
    headline: str
    status: str  # green | yellow | orange | red | gray
    metrics: Dict[str, Any] = field(default_factory=dict)
    alerts: List[str] = field(default_factory=list)


@dataclass
class EngineOutput:
    position: PositionState
    reversal: ReversalSignal
    exit: ExitSignal
    dca: DCASignal
    summary: EngineSummary
    regime: Optional[RegimeAnalysis] = None
    health: Optional[PositionHealth] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position.to_dict(),
            "reversal": self.reversal.to_dict(),
            "exit": self.exit.to_dict(),
            "dca": self.dca.to_dict(),
            "summary": to_plain(self.summary),
            "regime": to_plain(self.regime),
            "health": to_plain(self.health),
        }


def build_engine_summary(
    position: PositionState,
    exit_signal: ExitSignal,
    dca_signal: DCASignal,
    reversal: ReversalSignal,
    health: Optional[PositionHealth] = None,
) -> EngineSummary:
    """Headline, status colour, key metrics and alerts for display."""
    alerts: List[str] = []
    if not position.is_open or position.direction is None:
        if reversal.detected:
            alerts.append(reversal.description)
        return EngineSummary(headline="No open position", status="gray", alerts=alerts)

    status = get_exit_status_summary(exit_signal)
    if exit_signal.should_exit:
        headline = f"{status.label}: close {exit_signal.suggested_exit_percent}% ({exit_signal.reason.value})"
    elif dca_signal.should_dca:
        headline = f"DCA {dca_signal.dca_level} opportunity ({dca_signal.confidence}%)"
    else:
        headline = (
            f"Holding {position.direction.value} "
            f"{position.unrealized_pnl:+.2f} ({position.unrealized_pnl_percent:+.1f}%)"
        )

    metrics = {
        "unrealized_pnl": position.unrealized_pnl,
        "unrealized_pnl_percent": position.unrealized_pnl_percent,
        "unrealized_pnl_levered_percent": position.unrealized_pnl_levered_percent,
        "high_water_mark_pnl": position.high_water_mark_pnl,
        "drawdown_from_hwm_percent": position.drawdown_from_hwm_percent,
        "hours_in_trade": position.hours_in_trade,
        "timebox_progress": position.timebox_progress,
        "liquidation_distance_percent": position.liquidation_distance_percent,
        "exit_pressure": exit_signal.total_pressure,
        "exit_threshold": exit_signal.effective_threshold,
        "dca_count": position.dca_count,
    }

    if position.liquidation_distance_percent < DANGER_DISTANCE_PERCENT:
        alerts.append(f"Liquidation within {position.liquidation_distance_percent:.1f}%")
        logger.warning(
            "Liquidation %.1f%% away (price %.5f)",
            position.liquidation_distance_percent, position.liquidation_price,
        )
    if any(p.source is PressureSource.ANTI_GREED for p in exit_signal.pressures):
        alerts.append(f"Anti-greed: {position.drawdown_from_hwm_percent:.0f}% of peak profit given back")
    if exit_signal.time_phase is TimePhase.OVERDUE:
        alerts.append("Timebox expired" if position.unrealized_pnl > 0 else "Timebox expired, holding underwater")
    if reversal.detected and reversal.direction is sought_direction(position.direction):
        alerts.append(reversal.description)
    alerts.extend(dca_signal.warnings if dca_signal.should_dca else [])
    if health is not None:
        alerts.extend(r for r in health.risk_factors if r not in alerts and not r.startswith("Liquidation"))

    return EngineSummary(headline=headline, status=status.color, metrics=metrics, alerts=alerts)


class DecisionEngine:
    """
    Runs the decision pipeline tick by tick. The high-water mark of the open
    position is the only state carried between ticks; a lock serializes ticks
    so concurrent callers cannot interleave the read and write of that cell.
    """

    def __init__(self, strategy: Optional[StrategyConfig] = None, timeframes: Optional[Sequence[str]] = None):
        self.strategy = strategy or StrategyConfig()
        self.timeframes = order_timeframes(timeframes or self.strategy.reversal.timeframes)
        self._lock = threading.Lock()
        self._position: Optional[PositionState] = None

    @property
    def position(self) -> Optional[PositionState]:
        return self._position

    def reset(self) -> None:
        with self._lock:
            self._position = None

    def tick(self, inp: EngineInput) -> EngineOutput:
        with self._lock:
            output = self._run(inp, self._position)
            self._position = output.position
        return output

    def _run(self, inp: EngineInput, previous: Optional[PositionState]) -> EngineOutput:
        strategy = self.strategy
        ind = inp.indicators
        regime = None
        if "4h" in ind or "1h" in ind:
            regime = detect_market_regime(ind.get("4h"), ind.get("1h"), strategy.regime)
        max_hours = regime.adjusted_timebox_max_hours if regime is not None else strategy.timebox.max_hours

        position = build_position_state(
            inp.raw_position, inp.current_price, inp.available_margin, inp.now_ms,
            inp.account, strategy, max_hours,
        )
        position = carry_high_water_mark(previous, position)

        reversal = detect_reversal(
            inp.candles, ind, position.direction, self.timeframes, strategy.reversal
        )
        enrichment = EnrichmentBundle(
            reversal=reversal,
            knife=inp.knife,
            whale=inp.whale,
            regime=regime,
            indicators_4h=ind.get("4h"),
        )
        ind_5m = ind.get("5m")
        ind_15m = ind.get("15m")
        ind_1h = ind.get("1h")
        exit_signal = analyze_exit_conditions(position, ind_15m, ind_1h, ind_5m, inp.now_ms, strategy, enrichment)
        dca_signal = analyze_dca_opportunity(
            position, ind_15m, ind_1h, ind_5m, inp.candles.get("5m", []), inp.current_price, inp.now_ms,
            strategy, inp.available_margin, exit_signal.time_phase if position.is_open else None,
        )
        position = refine_position_phase(position, exit_signal, dca_signal)
        health = calculate_position_health(position, inp.account) if position.is_open else None
        summary = build_engine_summary(position, exit_signal, dca_signal, reversal, health)
        logger.debug("Tick %s: %s", inp.now_ms, summary.headline)
        return EngineOutput(
            position=position,
            reversal=reversal,
            exit=exit_signal,
            dca=dca_signal,
            summary=summary,
            regime=regime,
            health=health,
        )

