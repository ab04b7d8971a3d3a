"""
Core data types for candles, indicators, patterns, signals, and position state.
Output records expose to_dict() returning plain JSON-friendly values.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class TradeDirection(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> "TradeDirection":
        return TradeDirection.SHORT if self is TradeDirection.LONG else TradeDirection.LONG


class Trend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class PatternCategory(str, Enum):
    REVERSAL_BULLISH = "reversal_bullish"
    REVERSAL_BEARISH = "reversal_bearish"
    CONTINUATION_BULLISH = "continuation_bullish"
    CONTINUATION_BEARISH = "continuation_bearish"
    INDECISION = "indecision"

    @property
    def is_reversal(self) -> bool:
        return self in (PatternCategory.REVERSAL_BULLISH, PatternCategory.REVERSAL_BEARISH)


class ReversalDirection(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"

    @property
    def reversal_category(self) -> PatternCategory:
        if self is ReversalDirection.BULLISH:
            return PatternCategory.REVERSAL_BULLISH
        return PatternCategory.REVERSAL_BEARISH


class ReversalPhase(str, Enum):
    EXHAUSTION = "exhaustion"
    INDECISION = "indecision"
    INITIATION = "initiation"
    CONFIRMATION = "confirmation"


class ReversalUrgency(str, Enum):
    IMMEDIATE = "immediate"
    DEVELOPING = "developing"
    EARLY_WARNING = "early_warning"


class PositionPhase(str, Enum):
    IDLE = "idle"
    ENTRY = "entry"
    DCA_WATCH = "dca_watch"
    IN_DCA = "in_dca"
    EXIT_WATCH = "exit_watch"
    EXITING = "exiting"
    CLOSED = "closed"


class EntryType(str, Enum):
    INITIAL = "initial"
    DCA = "dca"


class TimePhase(str, Enum):
    NORMAL = "normal"
    MONITOR = "monitor"
    ESCALATING = "escalating"
    URGENT = "urgent"
    OVERDUE = "overdue"


class ExitUrgency(str, Enum):
    MONITOR = "monitor"
    CONSIDER = "consider"
    SOON = "soon"
    IMMEDIATE = "immediate"

    @property
    def rank(self) -> int:
        return _URGENCY_ORDER.index(self)


_URGENCY_ORDER = [ExitUrgency.MONITOR, ExitUrgency.CONSIDER, ExitUrgency.SOON, ExitUrgency.IMMEDIATE]


class ExitReason(str, Enum):
    TIMEBOX_EXPIRED = "timebox_expired"
    TIMEBOX_APPROACHING = "timebox_approaching"
    TREND_REVERSAL = "trend_reversal"
    MOMENTUM_EXHAUSTION = "momentum_exhaustion"
    ANTI_GREED = "anti_greed"
    CONDITION_DETERIORATION = "condition_deterioration"
    KNIFE_DETECTED = "knife_detected"
    REVERSAL_DETECTED = "reversal_detected"


class PressureSource(str, Enum):
    """Closed set of exit-pressure contributors."""
    TIMEBOX = "timebox"
    RSI_EXHAUSTION = "rsi_exhaustion"
    MACD_REVERSAL = "macd_reversal"
    VOLUME_DRY_UP = "volume_dry_up"
    ANTI_GREED = "anti_greed"
    MOMENTUM_FADING = "momentum_fading"
    TREND_FLIP = "trend_flip"
    REVERSAL = "reversal"
    KNIFE = "knife"
    WHALE_IMBALANCE = "whale_imbalance"
    TREND_EXHAUSTION = "trend_exhaustion"


class DCAExhaustionType(str, Enum):
    NONE = "none"
    RSI_DIVERGENCE = "rsi_divergence"
    VOLUME_DRY_UP = "volume_dry_up"
    MACD_CONVERGENCE = "macd_convergence"
    BB_EXTREME_HOLD = "bb_extreme_hold"
    EMA_SLOPE_FLATTEN = "ema_slope_flatten"
    CANDLE_REJECTION = "candle_rejection"
    MULTI_SIGNAL = "multi_signal"


class KnifePhase(str, Enum):
    NONE = "none"
    IMPULSE = "impulse"
    CAPITULATION = "capitulation"
    STABILIZING = "stabilizing"
    CONFIRMING = "confirming"
    SAFE = "safe"


class MarketRegime(str, Enum):
    STRONG_TREND = "strong_trend"
    TRENDING = "trending"
    RANGING = "ranging"
    LOW_VOLATILITY = "low_volatility"


def to_plain(value: Any) -> Any:
    """Recursively convert dataclasses, enums and containers to plain values."""
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(to_plain(k)): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


# --- Market data -----------------------------------------------------------

@dataclass(frozen=True)
class Candle:
    """OHLCV candle. time is epoch milliseconds."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass
class Indicators:
    """Per-timeframe indicator snapshot supplied by the indicator provider."""
    rsi: float = 50.0
    macd: float = 0.0
    macd_signal: float = 0.0
    histogram: Optional[float] = None
    bb_pos: float = 0.5
    bb_upper: Optional[float] = None
    bb_lower: Optional[float] = None
    bb_width: Optional[float] = None  # percent of price
    atr: float = 0.0
    vol_ratio: float = 1.0
    ema20_slope: float = 0.0
    trend: Trend = Trend.NEUTRAL
    ema_alignment: Trend = Trend.MIXED
    adx: Optional[float] = None


# --- Patterns and reversal -------------------------------------------------

@dataclass(frozen=True)
class PatternMatch:
    """One detected candlestick pattern."""
    name: str
    category: PatternCategory
    reliability: float
    strength: float
    candles_used: int
    description: str
    timeframe: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


@dataclass(frozen=True)
class ExhaustionSignal:
    """Trend exhaustion over the last five candles."""
    direction: str  # "bullish_exhaustion" | "bearish_exhaustion"
    score: int
    signals: List[str]
    description: str
    detected: bool = True


@dataclass
class ScoreComponent:
    name: str
    points: float
    max_points: float
    detail: str


@dataclass
class TimeframeReversalDetail:
    patterns: List[PatternMatch]
    exhaustion: Optional[ExhaustionSignal]
    signal: str


DETECTION_THRESHOLD = 25


@dataclass
class ReversalSignal:
    """Composite multi-timeframe reversal verdict."""
    phase: ReversalPhase = ReversalPhase.EXHAUSTION
    direction: ReversalDirection = ReversalDirection.BULLISH
    confidence: int = 0
    timeframes: Dict[str, Optional[TimeframeReversalDetail]] = field(default_factory=dict)
    patterns: List[PatternMatch] = field(default_factory=list)
    exhaustion_score: int = 0
    urgency: ReversalUrgency = ReversalUrgency.EARLY_WARNING
    score_breakdown: List[ScoreComponent] = field(default_factory=list)
    description: str = "No reversal signals detected"

    @property
    def detected(self) -> bool:
        return self.confidence >= DETECTION_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        data = to_plain(self)
        data["detected"] = self.detected
        return data


# --- Position --------------------------------------------------------------

@dataclass
class AccountBalance:
    """Account figures used only for the cross-margin liquidation formula."""
    equity: float = 0.0
    trade_balance: float = 0.0


@dataclass
class EntryRecord:
    """One logical fill: the initial entry or a DCA add."""
    id: str
    entry_type: EntryType
    dca_level: int
    price: float
    volume: float
    margin_used: float
    margin_percent: float
    timestamp: int
    confidence: float = 0.0
    reason: str = ""


@dataclass
class PositionState:
    """Canonical state of the single tracked position."""
    is_open: bool = False
    direction: Optional[TradeDirection] = None
    phase: PositionPhase = PositionPhase.IDLE
    entries: List[EntryRecord] = field(default_factory=list)
    avg_price: float = 0.0
    total_volume: float = 0.0
    total_margin_used: float = 0.0
    total_margin_percent: float = 0.0
    dca_count: int = 0
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    unrealized_pnl_levered_percent: float = 0.0
    high_water_mark_pnl: float = 0.0
    drawdown_from_hwm: float = 0.0
    drawdown_from_hwm_percent: float = 0.0
    opened_at: Optional[int] = None
    time_in_trade_ms: int = 0
    hours_remaining: float = 0.0
    timebox_progress: float = 0.0
    liquidation_price: float = 0.0
    liquidation_distance_percent: float = 100.0
    leverage: int = 10
    total_fees: float = 0.0
    rollover_cost_per_4h: float = 0.0

    @property
    def hours_in_trade(self) -> float:
        return self.time_in_trade_ms / 3_600_000

    @property
    def last_entry_time(self) -> Optional[int]:
        if not self.entries:
            return self.opened_at
        return max(e.timestamp for e in self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


# --- Exit ------------------------------------------------------------------

@dataclass(frozen=True)
class ExitPressure:
    source: PressureSource
    value: float
    weight: float
    detail: str


@dataclass(frozen=True)
class ExitSignal:
    """
    Exit verdict. should_exit, confidence and suggested_exit_percent are derived
    and cannot be set: a position at a loss can never produce should_exit.
    """
    urgency: ExitUrgency
    reason: ExitReason
    explanation: str
    pressures: List[ExitPressure]
    total_pressure: float
    effective_threshold: float
    unrealized_pnl: float
    min_profit_for_exit: float
    time_phase: TimePhase = TimePhase.NORMAL

    @property
    def should_exit(self) -> bool:
        if self.unrealized_pnl <= 0:
            return False
        if self.unrealized_pnl < self.min_profit_for_exit:
            return False
        return self.total_pressure >= self.effective_threshold

    @property
    def confidence(self) -> int:
        if not self.should_exit:
            return 0
        return min(95, int(round(self.total_pressure)))

    @property
    def suggested_exit_percent(self) -> int:
        if not self.should_exit:
            return 0
        if self.urgency is ExitUrgency.IMMEDIATE:
            return 100
        if self.urgency is ExitUrgency.SOON:
            return 100 if self.total_pressure >= 80 else 75
        if self.urgency is ExitUrgency.CONSIDER:
            return 50
        return 0

    def to_dict(self) -> Dict[str, Any]:
        data = to_plain(self)
        data["should_exit"] = self.should_exit
        data["confidence"] = self.confidence
        data["suggested_exit_percent"] = self.suggested_exit_percent
        return data


def no_exit_signal() -> ExitSignal:
    """Verdict for a flat book. Built per call so callers never share its pressures list."""
    return ExitSignal(
        urgency=ExitUrgency.MONITOR,
        reason=ExitReason.TIMEBOX_APPROACHING,
        explanation="No position open",
        pressures=[],
        total_pressure=0.0,
        effective_threshold=100.0,
        unrealized_pnl=0.0,
        min_profit_for_exit=0.0,
    )


# --- DCA -------------------------------------------------------------------

@dataclass
class DCAConditionSignal:
    name: str
    active: bool
    value: float
    weight: float
    timeframe: str


@dataclass
class DCASignal:
    should_dca: bool = False
    confidence: int = 0
    dca_level: int = 0
    exhaustion_type: DCAExhaustionType = DCAExhaustionType.NONE
    drawdown_percent: float = 0.0
    signals: List[DCAConditionSignal] = field(default_factory=list)
    reason: str = ""
    suggested_margin_percent: float = 0.0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


# --- Optional enrichment ---------------------------------------------------

@dataclass
class KnifeStatus:
    """Sharp-move classifier output."""
    is_knife: bool = False
    direction: Optional[str] = None  # "falling" | "rising"
    phase: KnifePhase = KnifePhase.NONE
    knife_score: float = 0.0
    reversal_readiness: float = 0.0


@dataclass
class WhaleActivity:
    """Large-order counters and order book imbalance (-1..1, positive = bids)."""
    recent_large_buys: int = 0
    recent_large_sells: int = 0
    imbalance: float = 0.0


@dataclass
class RegimeAnalysis:
    regime: MarketRegime
    confidence: int
    adjusted_timebox_max_hours: float
    adjusted_timebox_weight: float
    reason: str = ""


@dataclass
class EnrichmentBundle:
    """Optional external signals. A missing field omits its exit contributor."""
    reversal: Optional[ReversalSignal] = None
    knife: Optional[KnifeStatus] = None
    whale: Optional[WhaleActivity] = None
    regime: Optional[RegimeAnalysis] = None
    indicators_4h: Optional[Indicators] = None
