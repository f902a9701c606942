from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from ..models import BookUpdate
from .base import Connector


class LighterConnector(Connector):
    """Lighter order book depth via REST.

    `/api/v1/orderBookOrders` returns resting orders per side; each poll is
    turned into a full snapshot for local reconstruction. Markets are keyed
    by numeric market_id, resolved from `/api/v1/orderBooks`.
    """

    def __init__(self, host: str = "https://mainnet.zklighter.elliot.ai", symbol_map: Optional[Dict[str, str]] = None) -> None:
        super().__init__(name="lighter", host=host, symbol_map=symbol_map)
        self.market_ids: Dict[str, int] = {}

    async def fetch_market_map(self) -> Dict[str, int]:
        """Fetch symbol -> market_id, e.g. {"BTC": 1, "ETH": 0}."""
        data = await self.get_json("/api/v1/orderBooks")
        books: List[Dict[str, Any]] = data.get("order_books", [])
        mapping: Dict[str, int] = {}
        for ob in books:
            mapping[str(ob.get("symbol"))] = int(ob.get("market_id"))
        self.market_ids = mapping
        return mapping

    async def fetch_book(self, symbol: str, levels: int = 20) -> BookUpdate:
        if symbol not in self.market_ids:
            await self.fetch_market_map()
        market_id = self.market_ids.get(symbol)
        if market_id is None:
            raise KeyError(f"unknown lighter symbol {symbol}")
        data = await self.get_json("/api/v1/orderBookOrders", params={"market_id": market_id, "limit": levels})
        return BookUpdate(
            kind="snapshot",
            symbol=self.canonical(symbol),
            bids=_levels(data.get("bids", [])),
            asks=_levels(data.get("asks", [])),
        )


def _levels(orders: List[Dict[str, Any]]) -> List[List[Any]]:
    """Merge individual resting orders into one [price, size] level per price."""
    merged: Dict[Any, Decimal] = {}
    malformed: List[List[Any]] = []
    for o in orders:
        price = o.get("price")
        raw_size = o.get("remaining_base_amount", o.get("initial_base_amount", 0))
        try:
            size = Decimal(str(raw_size))
        except InvalidOperation:
            # passed through so the book drops and logs it
            malformed.append([price, raw_size])
            continue
        merged[price] = merged.get(price, Decimal(0)) + size
    return [[p, s] for p, s in merged.items()] + malformed
