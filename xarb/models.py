from __future__ import annotations

from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Optional, Dict, List, Any
import time


@dataclass
class PriceLevel:
    price: Decimal
    size: Decimal


@dataclass
class Tick:
    symbol: str
    bid: Optional[float] = None
    ask: Optional[float] = None


@dataclass
class BookUpdate:
    kind: str  # "snapshot" | "delta"
    symbol: str
    bids: List[Any] = field(default_factory=list)  # raw levels: {"price","size"} or [price, size]
    asks: List[Any] = field(default_factory=list)
    sequence: Optional[int] = None  # venue offset, carried but not gap-checked


@dataclass
class Snapshot:
    """Flushed statistics of one symbol over one window (or one minute)."""

    symbol: str
    timestamp: int
    avg_bid: Optional[float]
    avg_ask: Optional[float]
    avg_spread: Optional[float]
    min_bid: Optional[float]
    max_bid: Optional[float]
    min_ask: Optional[float]
    max_ask: Optional[float]
    tick_count: int

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Snapshot":
        return cls(
            symbol=row["symbol"],
            timestamp=int(row["timestamp"]),
            avg_bid=row.get("avg_bid"),
            avg_ask=row.get("avg_ask"),
            avg_spread=row.get("avg_spread"),
            min_bid=row.get("min_bid"),
            max_bid=row.get("max_bid"),
            min_ask=row.get("min_ask"),
            max_ask=row.get("max_ask"),
            tick_count=int(row.get("tick_count") or 0),
        )


# A minute rollup carries the same columns as a window snapshot.
MinuteRecord = Snapshot


@dataclass
class ExchangePrice:
    exchange: str
    symbol: str
    timestamp: int
    bid: float
    ask: float
    spread: Optional[float] = None
    source: str = "snapshots"  # "snapshots" | "minutes"


@dataclass
class ArbitrageOpportunity:
    symbol: str
    buy_from: str
    sell_to: str
    buy_price: float   # ask on the buy exchange
    sell_price: float  # bid on the sell exchange
    profit: float
    profit_percent: float
    timestamp: int
    data_age: int      # ms, 0 for historical rows

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChannelResult:
    type: str
    status: str  # "sent" | "failed"
    error: Optional[str] = None


@dataclass
class AlertEvent:
    id: str
    config_id: str
    timestamp: int
    opportunity: Dict[str, Any]
    status: str = "pending"  # "pending" | "sent" | "failed"
    channels: List[ChannelResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AlertChannel:
    type: str  # key into alerts.channels.CHANNELS
    config: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True


@dataclass
class AlertConfig:
    id: str
    name: str
    exchanges: List[str]
    enabled: bool = False
    min_profit_percent: float = 0.5
    symbols: List[str] = field(default_factory=list)  # empty = all symbols
    channels: List[AlertChannel] = field(default_factory=list)
    cooldown_minutes: float = 5
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertConfig":
        channels = [
            c if isinstance(c, AlertChannel) else AlertChannel(
                type=c["type"], config=dict(c.get("config") or {}), enabled=bool(c.get("enabled", True))
            )
            for c in data.get("channels") or []
        ]
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            exchanges=list(data.get("exchanges") or []),
            enabled=bool(data.get("enabled", False)),
            min_profit_percent=float(data.get("min_profit_percent", 0.5)),
            symbols=list(data.get("symbols") or []),
            channels=channels,
            cooldown_minutes=float(data.get("cooldown_minutes", 5)),
            created_at=int(data.get("created_at") or 0),
            updated_at=int(data.get("updated_at") or 0),
        )


def now_ms() -> int:
    return int(time.time() * 1000)
