"""Multi-timeframe reversal detection."""

from decision_engine.reversal.detector import (
    detect_reversal,
    detect_short_term_reversal,
    determine_reversal_phase,
    determine_reversal_urgency,
)

__all__ = [
    "detect_reversal",
    "detect_short_term_reversal",
    "determine_reversal_phase",
    "determine_reversal_urgency",
]
