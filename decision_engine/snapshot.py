"""
JSON snapshot -> EngineInput.

Snapshot layout:
    {
      "now_ms": 1700000000000,
      "current_price": 0.55,
      "available_margin": 400.0,
      "account": {"equity": 500.0, "trade_balance": 480.0},
      "position": {"source": "paper", ...} | {"source": "exchange", ...} | null,
      "candles": {"5m": [[time, open, high, low, close, volume], ...] | [{...}], ...},
      "indicators": {"1h": {"rsi": 55.0, "trend": "bullish", ...}},
      "knife": {...}, "whale": {...}
    }

Timeframes with candles but no indicators get a snapshot computed from the
candles.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from decision_engine.core.types import (
    AccountBalance,
    Candle,
    Indicators,
    KnifePhase,
    KnifeStatus,
    Trend,
    WhaleActivity,
)
from decision_engine.engine import EngineInput
from decision_engine.indicators import snapshot_indicators
from decision_engine.position.sources import ExchangePosition, PaperPosition, RawPosition
from decision_engine.utils.timeframes import timeframe_minutes

logger = logging.getLogger("decision_engine.snapshot")

MIN_CANDLES_FOR_INDICATORS = 30
_CANDLE_KEYS = ("time", "open", "high", "low", "close", "volume")


def parse_candles(rows: List[Any]) -> List[Candle]:
    candles = []
    for row in rows:
        if isinstance(row, dict):
            values = [row.get(k, 0.0) for k in _CANDLE_KEYS]
        else:
            values = list(row) + [0.0] * (6 - len(row))
        candles.append(Candle(int(values[0]), *(float(v) for v in values[1:6])))
    candles.sort(key=lambda c: c.time)
    return candles


def parse_indicators(data: Dict[str, Any]) -> Indicators:
    fields = dict(data)
    for key in ("trend", "ema_alignment"):
        if key in fields:
            fields[key] = Trend(str(fields[key]).lower())
    return Indicators(**fields)


def parse_position(data: Optional[Dict[str, Any]]) -> Optional[RawPosition]:
    if not data:
        return None
    source = str(data.get("source", "paper")).lower()
    if source == "exchange":
        return ExchangePosition.from_dict(data)
    if source == "paper":
        return PaperPosition.from_dict(data)
    raise ValueError(f"Unknown position source: {source}")


def indicators_from_candles(candles: List[Candle]) -> Indicators:
    df = pd.DataFrame(
        {
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    )
    return snapshot_indicators(df)


def load_snapshot(data: Dict[str, Any]) -> EngineInput:
    """Build an EngineInput from a parsed JSON snapshot. Raises ValueError on bad input."""
    if "current_price" not in data or "now_ms" not in data:
        raise ValueError("Snapshot needs current_price and now_ms")
    candles = {tf: parse_candles(rows) for tf, rows in (data.get("candles") or {}).items()}
    indicators = {tf: parse_indicators(v) for tf, v in (data.get("indicators") or {}).items()}
    for tf in list(candles) + list(indicators):
        timeframe_minutes(tf)
    for tf, cs in candles.items():
        if tf not in indicators and len(cs) >= MIN_CANDLES_FOR_INDICATORS:
            indicators[tf] = indicators_from_candles(cs)
            logger.debug("Computed %s indicators from %d candles", tf, len(cs))

    knife = data.get("knife")
    if knife:
        knife = KnifeStatus(**{**knife, "phase": KnifePhase(knife.get("phase", "none"))})
    whale = data.get("whale")
    account = data.get("account")
    return EngineInput(
        raw_position=parse_position(data.get("position")),
        current_price=float(data["current_price"]),
        now_ms=int(data["now_ms"]),
        candles=candles,
        indicators=indicators,
        available_margin=float(data.get("available_margin", 0.0)),
        account=AccountBalance(**account) if account else None,
        knife=knife or None,
        whale=WhaleActivity(**whale) if whale else None,
    )
