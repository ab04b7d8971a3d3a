"""Timeframe label helpers."""

from typing import Iterable, List


def timeframe_minutes(tf: str) -> int:
    """Convert a timeframe label (e.g. '5m', '1h', '4h', '1d') to minutes."""
    tf = tf.strip().lower()
    if tf.endswith("m"):
        return int(tf[:-1])
    if tf.endswith("h"):
        return int(tf[:-1]) * 60
    if tf.endswith("d"):
        return int(tf[:-1]) * 60 * 24
    raise ValueError(f"Unsupported timeframe: {tf}")


def order_timeframes(labels: Iterable[str]) -> List[str]:
    """Sort timeframe labels from shortest (leading) to longest (confirming)."""
    return sorted(labels, key=timeframe_minutes)
