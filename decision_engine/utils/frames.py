"""DataFrame -> Candle conversion for OHLCV frames."""

from __future__ import annotations
from typing import List

import pandas as pd

from decision_engine.core.types import Candle

REQUIRED_COLUMNS = ("open", "high", "low", "close")
_EPOCH = pd.Timestamp("1970-01-01", tz="UTC")


def _epoch_millis(df: pd.DataFrame) -> List[int]:
    if "time" in df.columns:
        if pd.api.types.is_numeric_dtype(df["time"]):
            return [int(t) for t in df["time"]]
        times = pd.to_datetime(df["time"], utc=True)
    elif isinstance(df.index, pd.DatetimeIndex):
        times = pd.Series(df.index.tz_localize("UTC") if df.index.tz is None else df.index)
    else:
        return list(range(len(df)))
    return [int(v) for v in (times - _EPOCH) // pd.Timedelta(milliseconds=1)]


def candles_from_frame(df: pd.DataFrame) -> List[Candle]:
    """
    Convert an OHLCV DataFrame (columns open/high/low/close[/volume], time as
    epoch-ms column, datetime column or DatetimeIndex) into Candles, oldest first.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"OHLCV frame missing columns: {missing}")
    millis = _epoch_millis(df)
    volume = df["volume"] if "volume" in df.columns else pd.Series(0.0, index=df.index)
    candles = [
        Candle(t, float(o), float(h), float(l), float(c), float(v))
        for t, o, h, l, c, v in zip(millis, df["open"], df["high"], df["low"], df["close"], volume)
    ]
    candles.sort(key=lambda c: c.time)
    return candles
