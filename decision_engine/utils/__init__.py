"""Utilities: timeframe labels, DataFrame conversion."""
