"""
Load configuration from config.yaml and .env. Strategy parameters live in
section dataclasses so every engine receives typed, validated settings.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from decision_engine.core.types import ExitUrgency
from decision_engine.utils.timeframes import timeframe_minutes


class ConfigError(ValueError):
    """Raised when config.yaml or env overrides describe an invalid strategy."""


@dataclass
class PositionSizingConfig:
    leverage: int = 10
    full_entry_margin_percent: float = 20.0
    cautious_entry_margin_percent: float = 10.0
    min_entry_confidence: float = 40.0
    full_entry_confidence: float = 65.0
    max_dca_count: int = 3
    dca_margin_percent: float = 15.0
    max_total_margin_percent: float = 80.0
    min_free_margin_percent: float = 10.0


@dataclass
class TimeboxStep:
    hours: float
    pressure: float
    label: str = ""


def _default_steps() -> List[TimeboxStep]:
    return [
        TimeboxStep(0, 0, "fresh"),
        TimeboxStep(12, 10, "settling"),
        TimeboxStep(24, 25, "aging"),
        TimeboxStep(36, 50, "escalating"),
        TimeboxStep(48, 80, "expired"),
        TimeboxStep(60, 100, "overdue"),
    ]


@dataclass
class TimeboxConfig:
    max_hours: float = 48.0
    steps: List[TimeboxStep] = field(default_factory=_default_steps)


@dataclass
class ExitConfig:
    exit_pressure_threshold: float = 60.0
    min_profit_for_exit: float = 0.5
    soft_floor_pressure: float = 60.0


@dataclass
class AntiGreedConfig:
    enabled: bool = True
    drawdown_threshold_percent: float = 30.0
    min_pnl_to_activate: float = 1.0
    min_hwm_to_track: float = 5.0


@dataclass
class OverdueDCAAdjustment:
    confidence_adjustment: float = -10.0
    min_drawdown_adjustment: float = -1.0
    time_spacing_multiplier: float = 0.5


@dataclass
class UnderwaterPolicy:
    enabled: bool = True
    suppress_timebox_pressure_when_underwater: bool = False
    underwater_timebox_weight_multiplier: float = 0.25
    max_urgency_when_underwater: ExitUrgency = ExitUrgency.CONSIDER
    overdue_dca: OverdueDCAAdjustment = field(default_factory=OverdueDCAAdjustment)


def _default_spacing() -> Dict[int, float]:
    return {1: 2.0, 2: 4.0, 3: 6.0}


@dataclass
class DCAExhaustionThresholds:
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    volume_decline_5m: float = 0.8
    volume_fading_5m: float = 0.6
    volume_decline_15m: float = 0.9
    macd_near_zero: float = 0.0002
    macd_signal_proximity: float = 0.0001
    bb_middle_low: float = 0.3
    bb_middle_high: float = 0.7
    price_stabilizing_lookback: int = 5
    price_stabilizing_min_matches: int = 3
    min_hours_between_by_level: Dict[int, float] = field(default_factory=_default_spacing)


@dataclass
class DCAConfig:
    min_drawdown_for_dca: float = 3.0
    min_time_between_dcas: float = 2.0
    min_exhaustion_confidence: float = 55.0
    dca_size_scale_factor: float = 1.0
    allow_dca_after_midpoint: bool = True
    exhaustion_thresholds: DCAExhaustionThresholds = field(default_factory=DCAExhaustionThresholds)


@dataclass
class ReversalConfig:
    timeframes: List[str] = field(default_factory=lambda: ["5m", "15m"])
    low_vol_atr_percent: float = 0.3
    low_vol_bb_width_percent: float = 0.5
    liquidity_factor: float = 1.0
    divergence_margin: float = 0.001
    bearish_divergence_rsi_band: Tuple[float, float] = (30.0, 60.0)
    bullish_divergence_rsi_band: Tuple[float, float] = (40.0, 70.0)
    volume_spike_ratio: float = 1.5
    macd_dead_zone: float = 0.00005
    macd_cross_max: float = 0.001
    ranging_atr_percent: float = 0.5


@dataclass
class RegimeConfig:
    strong_trend_adx: float = 35.0
    trending_adx: float = 20.0
    low_vol_bb_width: float = 0.8
    strong_trend_max_hours: float = 72.0
    trending_max_hours: float = 48.0
    ranging_max_hours: float = 36.0
    strong_trend_timebox_weight: float = 0.05
    trending_timebox_weight: float = 0.10
    ranging_timebox_weight: float = 0.20


@dataclass
class StrategyConfig:
    """All tunables for one trading profile."""
    name: str = "aggressive_swing_10x"
    position_sizing: PositionSizingConfig = field(default_factory=PositionSizingConfig)
    timebox: TimeboxConfig = field(default_factory=TimeboxConfig)
    exit: ExitConfig = field(default_factory=ExitConfig)
    anti_greed: AntiGreedConfig = field(default_factory=AntiGreedConfig)
    underwater_policy: UnderwaterPolicy = field(default_factory=UnderwaterPolicy)
    dca: DCAConfig = field(default_factory=DCAConfig)
    reversal: ReversalConfig = field(default_factory=ReversalConfig)
    regime: RegimeConfig = field(default_factory=RegimeConfig)


def _section(cls, data: Optional[dict], **nested: Any):
    """Build a section dataclass from a YAML mapping, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in known and k not in nested}
    kwargs.update({k: v for k, v in nested.items() if v is not None})
    return cls(**kwargs)


def strategy_from_dict(data: Optional[dict]) -> StrategyConfig:
    """Build a StrategyConfig from the `strategy:` mapping of config.yaml."""
    data = data or {}

    timebox_data = data.get("timebox") or {}
    steps = None
    if "steps" in timebox_data:
        steps = [TimeboxStep(float(s["hours"]), float(s["pressure"]), s.get("label", "")) for s in timebox_data["steps"]]

    uw_data = data.get("underwater_policy") or {}
    max_urgency = uw_data.get("max_urgency_when_underwater")
    underwater = _section(
        UnderwaterPolicy,
        uw_data,
        max_urgency_when_underwater=ExitUrgency(max_urgency) if max_urgency else None,
        overdue_dca=_section(OverdueDCAAdjustment, uw_data.get("overdue_dca")),
    )

    dca_data = data.get("dca") or {}
    thr_data = dict(dca_data.get("exhaustion_thresholds") or {})
    spacing = thr_data.pop("min_hours_between_by_level", None)
    thresholds = _section(
        DCAExhaustionThresholds,
        thr_data,
        min_hours_between_by_level={int(k): float(v) for k, v in spacing.items()} if spacing else None,
    )

    rev_data = dict(data.get("reversal") or {})
    for band in ("bearish_divergence_rsi_band", "bullish_divergence_rsi_band"):
        if band in rev_data:
            rev_data[band] = tuple(float(x) for x in rev_data[band])

    return StrategyConfig(
        name=data.get("name", "aggressive_swing_10x"),
        position_sizing=_section(PositionSizingConfig, data.get("position_sizing")),
        timebox=_section(TimeboxConfig, timebox_data, steps=steps),
        exit=_section(ExitConfig, data.get("exit")),
        anti_greed=_section(AntiGreedConfig, data.get("anti_greed")),
        underwater_policy=underwater,
        dca=_section(DCAConfig, dca_data, exhaustion_thresholds=thresholds),
        reversal=_section(ReversalConfig, rev_data),
        regime=_section(RegimeConfig, data.get("regime")),
    )


def validate_strategy(strategy: StrategyConfig) -> List[str]:
    """Return a list of problems; empty when the strategy is usable."""
    errors: List[str] = []
    sizing = strategy.position_sizing
    if sizing.leverage <= 0:
        errors.append("position_sizing.leverage must be positive")
    if sizing.max_dca_count < 0:
        errors.append("position_sizing.max_dca_count must be >= 0")
    if sizing.cautious_entry_margin_percent > sizing.full_entry_margin_percent:
        errors.append("cautious entry margin exceeds full entry margin")
    if sizing.min_entry_confidence > sizing.full_entry_confidence:
        errors.append("min_entry_confidence exceeds full_entry_confidence")
    if not 0 < sizing.max_total_margin_percent <= 100:
        errors.append("position_sizing.max_total_margin_percent must be in (0, 100]")
    if strategy.timebox.max_hours <= 0:
        errors.append("timebox.max_hours must be positive")
    hours = [s.hours for s in strategy.timebox.steps]
    if hours != sorted(hours):
        errors.append("timebox.steps must be ordered by hours")
    if not 0 <= strategy.exit.exit_pressure_threshold <= 100:
        errors.append("exit.exit_pressure_threshold must be in [0, 100]")
    if strategy.exit.min_profit_for_exit < 0:
        errors.append("exit.min_profit_for_exit must be >= 0")
    if not 0 <= strategy.underwater_policy.underwater_timebox_weight_multiplier <= 1:
        errors.append("underwater_timebox_weight_multiplier must be in [0, 1]")
    if not strategy.reversal.timeframes:
        errors.append("reversal.timeframes must not be empty")
    for tf in strategy.reversal.timeframes:
        try:
            timeframe_minutes(tf)
        except ValueError:
            errors.append(f"unsupported reversal timeframe: {tf}")
    return errors


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Config":
    """Load config.yaml and overlay with env. Raises ConfigError on an invalid strategy."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    strategy = strategy_from_dict(data.get("strategy"))
    sizing = strategy.position_sizing
    sizing.leverage = env_int("LEVERAGE", sizing.leverage)
    sizing.max_dca_count = env_int("MAX_DCA_COUNT", sizing.max_dca_count)
    strategy.exit.exit_pressure_threshold = env_float("EXIT_PRESSURE_THRESHOLD", strategy.exit.exit_pressure_threshold)
    strategy.exit.min_profit_for_exit = env_float("MIN_PROFIT_FOR_EXIT", strategy.exit.min_profit_for_exit)
    strategy.timebox.max_hours = env_float("TIMEBOX_MAX_HOURS", strategy.timebox.max_hours)
    strategy.underwater_policy.enabled = env_bool("UNDERWATER_POLICY_ENABLED", strategy.underwater_policy.enabled)

    errors = validate_strategy(strategy)
    if errors:
        raise ConfigError("; ".join(errors))

    logging_cfg = data.get("logging", {})
    return Config(
        symbol=env("SYMBOL", data.get("symbol", "XRPEUR")).upper(),
        timeframes=data.get("timeframes", ["5m", "15m", "1h", "4h"]),
        strategy=strategy,
        log_level=env("LOG_LEVEL", logging_cfg.get("level", "INFO")),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "decision_engine.log"),
    )


class Config:
    """Unified configuration. Immutable after load."""

    __slots__ = ("symbol", "timeframes", "strategy", "log_level", "log_dir", "log_file")

    def __init__(
        self,
        symbol: str = "XRPEUR",
        timeframes: Optional[List[str]] = None,
        strategy: Optional[StrategyConfig] = None,
        log_level: str = "INFO",
        log_dir: Path = None,
        log_file: str = "decision_engine.log",
    ):
        self.symbol = symbol
        self.timeframes = list(timeframes or ["5m", "15m", "1h", "4h"])
        self.strategy = strategy or StrategyConfig()
        self.log_level = log_level
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.log_file = log_file
