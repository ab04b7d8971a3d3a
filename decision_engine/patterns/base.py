"""Shared constructor and detector signatures for the pattern library."""

from __future__ import annotations
from typing import Callable, Optional, Sequence

from decision_engine.core.types import Candle, PatternCategory, PatternMatch
from decision_engine.patterns.geometry import clamp

EPSILON = 1e-4

SingleDetector = Callable[[Candle, Sequence[Candle]], Optional[PatternMatch]]
DoubleDetector = Callable[[Candle, Candle, Sequence[Candle]], Optional[PatternMatch]]
TripleDetector = Callable[[Candle, Candle, Candle, Sequence[Candle]], Optional[PatternMatch]]


def make_pattern(
    name: str,
    category: PatternCategory,
    reliability: float,
    strength: float,
    candles_used: int,
    description: str,
) -> PatternMatch:
    """Build a PatternMatch with reliability and strength kept inside [0, 1]."""
    return PatternMatch(
        name=name,
        category=category,
        reliability=clamp(reliability, 0.0, 1.0),
        strength=clamp(strength, 0.0, 1.0),
        candles_used=candles_used,
        description=description,
    )
