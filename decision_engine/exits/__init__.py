"""Exit-pressure engine."""

from decision_engine.exits.engine import (
    ExitStatus,
    analyze_exit_conditions,
    calculate_exit_threshold,
    determine_urgency,
    get_exit_status_summary,
    select_primary_reason,
)
from decision_engine.exits.pressures import (
    DEFAULT_PRESSURE_WEIGHTS,
    PRESSURE_REASONS,
    calculate_timebox_pressure,
    get_time_phase,
    is_anti_greed_triggered,
    is_approaching_timebox,
)

__all__ = [
    "ExitStatus",
    "analyze_exit_conditions",
    "calculate_exit_threshold",
    "determine_urgency",
    "get_exit_status_summary",
    "select_primary_reason",
    "DEFAULT_PRESSURE_WEIGHTS",
    "PRESSURE_REASONS",
    "calculate_timebox_pressure",
    "get_time_phase",
    "is_anti_greed_triggered",
    "is_approaching_timebox",
]
