"""
Raw position sources and their normalizers. Each source shape has exactly one
adapter; nothing downstream inspects source-specific fields.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from decision_engine.core.types import TradeDirection


@dataclass(frozen=True)
class ExchangeFill:
    """One fill reported by the exchange. Partial fills share an order_id."""
    id: str
    cost: float
    volume: float
    timestamp: int
    fee: float = 0.0
    margin: float = 0.0
    order_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangeFill":
        return cls(
            id=str(data.get("id") or data.get("txid") or ""),
            cost=float(data.get("cost", 0.0)),
            volume=float(data.get("vol", data.get("volume", 0.0))),
            timestamp=_millis(data.get("time", data.get("timestamp", 0))),
            fee=float(data.get("fee", 0.0)),
            margin=float(data.get("margin", 0.0)),
            order_id=data.get("ordertxid") or data.get("order_id"),
        )


@dataclass
class ExchangePosition:
    """Exchange margin position. side "buy" is long, "sell" is short."""
    side: str
    cost: float
    volume: float
    margin: float
    opened_at: int
    fee: float = 0.0
    leverage: Optional[int] = None
    pair: str = ""
    fills: List[ExchangeFill] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangePosition":
        return cls(
            side=str(data.get("type", data.get("side", "buy"))).lower(),
            cost=float(data.get("cost", 0.0)),
            volume=float(data.get("vol", data.get("volume", 0.0))),
            margin=float(data.get("margin", 0.0)),
            opened_at=_millis(data.get("time", data.get("opened_at", 0))),
            fee=float(data.get("fee", 0.0)),
            leverage=_parse_leverage(data.get("leverage")),
            pair=str(data.get("pair", "")),
            fills=[ExchangeFill.from_dict(f) for f in data.get("fills", [])],
        )


@dataclass
class PaperPosition:
    """Simulated position tracked locally."""
    side: TradeDirection
    avg_entry_price: float
    volume: float
    margin_used: float
    opened_at: int
    leverage: Optional[int] = None
    total_fees: float = 0.0
    fills: List[ExchangeFill] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaperPosition":
        return cls(
            side=TradeDirection(str(data.get("side", "long")).lower()),
            avg_entry_price=float(data["avg_entry_price"]),
            volume=float(data["volume"]),
            margin_used=float(data.get("margin_used", 0.0)),
            opened_at=_millis(data.get("opened_at", 0)),
            leverage=_parse_leverage(data.get("leverage")),
            total_fees=float(data.get("total_fees", 0.0)),
            fills=[ExchangeFill.from_dict(f) for f in data.get("fills", [])],
        )


RawPosition = Union[ExchangePosition, PaperPosition]


@dataclass(frozen=True)
class GroupedFill:
    """One logical entry after aggregating partial fills of the same order."""
    id: str
    price: float
    cost: float
    volume: float
    fee: float
    margin: float
    timestamp: int


@dataclass
class NormalizedPosition:
    """Source-independent view handed to the state builder."""
    direction: TradeDirection
    avg_price: float
    volume: float
    margin_used: float
    leverage: int
    total_fees: float
    opened_at: int
    fills: List[GroupedFill]
    source: str


def _millis(value: Any) -> int:
    """Accept epoch seconds (float, exchange style) or milliseconds."""
    ts = float(value or 0)
    return int(ts * 1000) if 0 < ts < 1e11 else int(ts)


def _parse_leverage(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    text = str(value)
    if ":" in text:
        text = text.split(":", 1)[0]
    return int(float(text))


def group_fills(fills: Sequence[ExchangeFill]) -> List[GroupedFill]:
    """
    Aggregate partial fills by order id (falling back to the fill id): sum
    cost, volume, fee and margin, keep the earliest timestamp. Sorted by time.
    """
    groups: Dict[str, Dict[str, float]] = {}
    for f in fills:
        key = f.order_id or f.id
        g = groups.get(key)
        if g is None:
            groups[key] = {"cost": f.cost, "volume": f.volume, "fee": f.fee, "margin": f.margin, "timestamp": f.timestamp}
            continue
        g["cost"] += f.cost
        g["volume"] += f.volume
        g["fee"] += f.fee
        g["margin"] += f.margin
        g["timestamp"] = min(g["timestamp"], f.timestamp)

    grouped = [
        GroupedFill(
            id=key,
            price=g["cost"] / g["volume"] if g["volume"] > 0 else 0.0,
            cost=g["cost"],
            volume=g["volume"],
            fee=g["fee"],
            margin=g["margin"],
            timestamp=int(g["timestamp"]),
        )
        for key, g in groups.items()
        if g["volume"] > 0
    ]
    grouped.sort(key=lambda g: g.timestamp)
    return grouped


def normalize_exchange_position(raw: ExchangePosition, default_leverage: int) -> NormalizedPosition:
    if raw.side not in ("buy", "sell"):
        raise ValueError(f"Unknown exchange position side: {raw.side}")
    grouped = group_fills(raw.fills)
    timestamps = [g.timestamp for g in grouped]
    if raw.opened_at:
        timestamps.append(raw.opened_at)
    return NormalizedPosition(
        direction=TradeDirection.SHORT if raw.side == "sell" else TradeDirection.LONG,
        avg_price=raw.cost / raw.volume if raw.volume > 0 else 0.0,
        volume=raw.volume,
        margin_used=raw.margin,
        leverage=raw.leverage or default_leverage,
        total_fees=raw.fee or sum(g.fee for g in grouped),
        opened_at=min(timestamps) if timestamps else 0,
        fills=grouped,
        source="exchange",
    )


def normalize_paper_position(raw: PaperPosition, default_leverage: int) -> NormalizedPosition:
    return NormalizedPosition(
        direction=raw.side,
        avg_price=raw.avg_entry_price,
        volume=raw.volume,
        margin_used=raw.margin_used,
        leverage=raw.leverage or default_leverage,
        total_fees=raw.total_fees,
        opened_at=raw.opened_at,
        fills=group_fills(raw.fills),
        source="paper",
    )


def normalize_position(raw: RawPosition, default_leverage: int = 10) -> NormalizedPosition:
    """Dispatch a raw position to its source adapter."""
    if isinstance(raw, ExchangePosition):
        return normalize_exchange_position(raw, default_leverage)
    if isinstance(raw, PaperPosition):
        return normalize_paper_position(raw, default_leverage)
    raise ValueError(f"Unsupported raw position type: {type(raw).__name__}")
