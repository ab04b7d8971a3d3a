"""Candlestick patterns: geometry, detectors, aggregation, exhaustion."""

from decision_engine.patterns.library import (
    detect_all_candlestick_patterns,
    detect_exhaustion_pattern,
    score_reversal_signal,
)

__all__ = [
    "detect_all_candlestick_patterns",
    "detect_exhaustion_pattern",
    "score_reversal_signal",
]
