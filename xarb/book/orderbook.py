"""Local order book reconstruction from snapshot + delta feeds.

Bids are kept in a SortedDict keyed descending and asks ascending, so the
best level of each side is always at index 0.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Tuple

from sortedcontainers import SortedDict

from ..errors import InvalidInput
from ..logger import get_logger
from ..models import BookUpdate, PriceLevel

logger = get_logger("xarb.book")

BID = "bid"
ASK = "ask"


def parse_level(raw: Any) -> PriceLevel:
    """Normalize a raw level into a PriceLevel.

    Accepts PriceLevel, {"price", "size"} mappings and [price, size] pairs,
    with string or numeric values. Raises InvalidInput on anything else.
    """
    if isinstance(raw, PriceLevel):
        price, size = raw.price, raw.size
    elif isinstance(raw, dict):
        price, size = raw.get("price"), raw.get("size")
    elif isinstance(raw, (list, tuple)) and len(raw) >= 2:
        price, size = raw[0], raw[1]
    else:
        raise InvalidInput(f"unrecognized level {raw!r}")
    try:
        p = Decimal(str(price))
        s = Decimal(str(size))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidInput(f"unparseable level {raw!r}") from None
    if not p.is_finite() or not s.is_finite():
        raise InvalidInput(f"non-finite level {raw!r}")
    if p <= 0:
        raise InvalidInput(f"non-positive price in level {raw!r}")
    if s < 0:
        raise InvalidInput(f"negative size in level {raw!r}")
    return PriceLevel(price=p, size=s)


class OrderBookView:
    """One venue symbol's authoritative local book.

    State is populated only by a snapshot; deltas received before the first
    snapshot (startup, or after reset()) are discarded. A crossed book is
    not an error and is reported as-is.
    """

    def __init__(self, venue: str, symbol: str) -> None:
        self.venue = venue
        self.symbol = symbol
        self.bids: SortedDict = SortedDict(lambda x: -x)
        self.asks: SortedDict = SortedDict()
        self._ready = False
        self.last_sequence: Optional[int] = None

    @property
    def ready(self) -> bool:
        return self._ready

    def reset(self) -> None:
        self.bids.clear()
        self.asks.clear()
        self._ready = False
        self.last_sequence = None

    def apply(self, update: BookUpdate) -> None:
        if update.kind == "snapshot":
            self.apply_snapshot(update.bids, update.asks)
        elif update.kind == "delta":
            if update.bids:
                self.apply_delta(BID, update.bids)
            if update.asks:
                self.apply_delta(ASK, update.asks)
        else:
            logger.warning(f"{self.venue}:{self.symbol} unknown book update kind {update.kind!r}, dropped")
            return
        if update.sequence is not None:
            self.last_sequence = update.sequence

    def apply_snapshot(self, bids: Iterable[Any], asks: Iterable[Any]) -> None:
        new_bids: SortedDict = SortedDict(lambda x: -x)
        new_asks: SortedDict = SortedDict()
        for side, raw_levels, target in ((BID, bids, new_bids), (ASK, asks, new_asks)):
            for lvl in self._valid_levels(side, raw_levels):
                if lvl.size > 0:
                    target[lvl.price] = lvl.size
        self.bids = new_bids
        self.asks = new_asks
        self._ready = True

    def apply_delta(self, side: str, levels: Iterable[Any]) -> None:
        if not self._ready:
            logger.debug(f"{self.venue}:{self.symbol} delta before snapshot, dropped")
            return
        if side == BID:
            book = self.bids
        elif side == ASK:
            book = self.asks
        else:
            logger.warning(f"{self.venue}:{self.symbol} unknown side {side!r}, delta dropped")
            return
        for lvl in self._valid_levels(side, levels):
            if lvl.size > 0:
                book[lvl.price] = lvl.size
            else:
                book.pop(lvl.price, None)

    def best_bid(self) -> Optional[Decimal]:
        if not self.bids:
            return None
        return self.bids.peekitem(0)[0]

    def best_ask(self) -> Optional[Decimal]:
        if not self.asks:
            return None
        return self.asks.peekitem(0)[0]

    def top(self) -> Tuple[Optional[float], Optional[float]]:
        """Best bid/ask as floats, the shape the window aggregator records."""
        bid = self.best_bid()
        ask = self.best_ask()
        return (float(bid) if bid is not None else None, float(ask) if ask is not None else None)

    def depth(self, levels: int = 10) -> dict:
        return {
            "bids": [[float(p), float(s)] for p, s in self.bids.items()[:levels]],
            "asks": [[float(p), float(s)] for p, s in self.asks.items()[:levels]],
        }

    def _valid_levels(self, side: str, raw_levels: Iterable[Any]) -> List[PriceLevel]:
        out: List[PriceLevel] = []
        for raw in raw_levels or []:
            try:
                out.append(parse_level(raw))
            except InvalidInput as e:
                logger.warning(f"{self.venue}:{self.symbol} {side} level dropped: {e}")
        return out
