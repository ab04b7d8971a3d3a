"""
Indicator snapshots from OHLCV frames.
The decision modules take Indicators as inputs; this module is the provider
used by the CLI and by callers that only hold raw candles.
"""

from __future__ import annotations
import math
from typing import Optional

import numpy as np
import pandas as pd

from decision_engine.core.types import Indicators, Trend

RSI_LEN = 14
ATR_LEN = 14
ADX_LEN = 14
BB_LEN = 20
BB_STD = 2.0
VOL_MA_LEN = 20
SLOPE_LOOKBACK = 5


def compute_indicator_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Add EMA20/50, RSI, MACD, Bollinger, ATR, volume ratio, EMA20 slope and ADX columns."""
    df = df.copy()
    close = df["close"]
    df["ema20"] = close.ewm(span=20, adjust=False).mean()
    df["ema50"] = close.ewm(span=50, adjust=False).mean()
    # RSI
    delta = close.diff()
    up = delta.clip(lower=0)
    down = (-delta).clip(lower=0)
    rs = up.rolling(RSI_LEN).mean() / down.rolling(RSI_LEN).mean().replace(0, np.nan)
    df["rsi"] = 100 - (100 / (1 + rs))
    df.loc[down.rolling(RSI_LEN).mean() == 0, "rsi"] = 100.0
    # MACD 12/26/9
    df["macd"] = close.ewm(span=12, adjust=False).mean() - close.ewm(span=26, adjust=False).mean()
    df["macd_signal"] = df["macd"].ewm(span=9, adjust=False).mean()
    df["histogram"] = df["macd"] - df["macd_signal"]
    # Bollinger
    mid = close.rolling(BB_LEN).mean()
    std = close.rolling(BB_LEN).std(ddof=0)
    df["bb_upper"] = mid + BB_STD * std
    df["bb_lower"] = mid - BB_STD * std
    band = (df["bb_upper"] - df["bb_lower"]).replace(0, np.nan)
    df["bb_pos"] = (close - df["bb_lower"]) / band
    df["bb_width"] = band / mid * 100
    # ATR
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - close.shift()).abs()
    low_close = (df["low"] - close.shift()).abs()
    tr = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)
    df["atr"] = tr.rolling(ATR_LEN).mean()
    # Volume
    if "volume" in df.columns:
        df["vol_ratio"] = df["volume"] / df["volume"].rolling(VOL_MA_LEN).mean().replace(0, np.nan)
    else:
        df["vol_ratio"] = np.nan
    df["ema20_slope"] = df["ema20"].pct_change(SLOPE_LOOKBACK) * 100
    # ADX
    up_move = df["high"].diff()
    down_move = -df["low"].diff()
    plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
    minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)
    atr_adx = tr.rolling(ADX_LEN).mean().replace(0, np.nan)
    plus_di = 100 * plus_dm.rolling(ADX_LEN).mean() / atr_adx
    minus_di = 100 * minus_dm.rolling(ADX_LEN).mean() / atr_adx
    dx = 100 * (plus_di - minus_di).abs() / (plus_di + minus_di).replace(0, np.nan)
    df["adx"] = dx.rolling(ADX_LEN).mean()
    return df


def _num(value, default: Optional[float]) -> Optional[float]:
    if value is None:
        return default
    value = float(value)
    return default if math.isnan(value) or math.isinf(value) else value


def classify_trend(close: float, ema20: float, ema50: float) -> Trend:
    if close > ema20 > ema50:
        return Trend.BULLISH
    if close < ema20 < ema50:
        return Trend.BEARISH
    return Trend.NEUTRAL


def classify_alignment(ema20: float, ema50: float) -> Trend:
    if ema20 > ema50:
        return Trend.BULLISH
    if ema20 < ema50:
        return Trend.BEARISH
    return Trend.MIXED


def snapshot_indicators(df: pd.DataFrame, closed_only: bool = False) -> Indicators:
    """
    Indicators of the latest row. With closed_only the still-forming last
    candle is skipped (iloc[-2]) to avoid repainting.
    """
    if df.empty:
        return Indicators()
    if "ema20" not in df.columns:
        df = compute_indicator_frame(df)
    if closed_only and len(df) >= 2:
        row = df.iloc[-2]
    else:
        row = df.iloc[-1]
    close = float(row["close"])
    ema20 = _num(row["ema20"], close)
    ema50 = _num(row["ema50"], close)
    return Indicators(
        rsi=_num(row["rsi"], 50.0),
        macd=_num(row["macd"], 0.0),
        macd_signal=_num(row["macd_signal"], 0.0),
        histogram=_num(row["histogram"], None),
        bb_pos=_num(row["bb_pos"], 0.5),
        bb_upper=_num(row["bb_upper"], None),
        bb_lower=_num(row["bb_lower"], None),
        bb_width=_num(row["bb_width"], None),
        atr=_num(row["atr"], 0.0),
        vol_ratio=_num(row["vol_ratio"], 1.0),
        ema20_slope=_num(row["ema20_slope"], 0.0),
        trend=classify_trend(close, ema20, ema50),
        ema_alignment=classify_alignment(ema20, ema50),
        adx=_num(row["adx"], None),
    )
