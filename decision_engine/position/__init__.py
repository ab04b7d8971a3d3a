"""Position state model: raw-source adapters, liquidation, sizing, lifecycle."""

from decision_engine.position.liquidation import (
    PositionHealth,
    calculate_liquidation_distance,
    calculate_liquidation_price,
    calculate_position_health,
)
from decision_engine.position.sizing import calculate_dca_capacity, calculate_dca_size, calculate_entry_size
from decision_engine.position.sources import (
    ExchangeFill,
    ExchangePosition,
    PaperPosition,
    RawPosition,
    group_fills,
    normalize_position,
)
from decision_engine.position.state import (
    add_dca_to_position,
    build_position_state,
    carry_high_water_mark,
    close_position,
    create_position_from_entry,
    refine_position_phase,
    update_position_state,
)

__all__ = [
    "PositionHealth",
    "calculate_liquidation_distance",
    "calculate_liquidation_price",
    "calculate_position_health",
    "calculate_dca_capacity",
    "calculate_dca_size",
    "calculate_entry_size",
    "ExchangeFill",
    "ExchangePosition",
    "PaperPosition",
    "RawPosition",
    "group_fills",
    "normalize_position",
    "add_dca_to_position",
    "build_position_state",
    "carry_high_water_mark",
    "close_position",
    "create_position_from_entry",
    "refine_position_phase",
    "update_position_state",
]
