"""Core: config, types, logging."""

from decision_engine.core.config import load_config, Config, ConfigError, StrategyConfig
from decision_engine.core.types import Candle, Indicators, PatternMatch, PositionState, TradeDirection
from decision_engine.core.logger import setup_logging

__all__ = [
    "load_config",
    "Config",
    "ConfigError",
    "StrategyConfig",
    "Candle",
    "Indicators",
    "PatternMatch",
    "PositionState",
    "TradeDirection",
    "setup_logging",
]
