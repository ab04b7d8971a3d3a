"""DCA opportunity engine."""

from decision_engine.dca.engine import analyze_dca_opportunity, calculate_drawdown_percent

__all__ = ["analyze_dca_opportunity", "calculate_drawdown_percent"]
