from __future__ import annotations

from typing import Dict, List, Optional

from ..models import Tick
from .base import Connector


def _price(raw) -> Optional[float]:
    try:
        v = float(raw)
    except (TypeError, ValueError):
        return None
    return v if v > 0 else None


class AsterConnector(Connector):
    """Aster futures best bid/ask via the Binance-style
    `/fapi/v1/ticker/bookTicker` endpoint.
    """

    def __init__(self, host: str = "https://fapi.asterdex.com", symbol_map: Optional[Dict[str, str]] = None) -> None:
        super().__init__(name="aster", host=host, symbol_map=symbol_map)

    async def fetch_ticks(self, symbols: List[str]) -> List[Tick]:
        # one request for all symbols, filtered locally
        data = await self.get_json("/fapi/v1/ticker/bookTicker")
        if isinstance(data, dict):
            data = [data]
        wanted = set(symbols)
        ticks: List[Tick] = []
        for row in data:
            sym = row.get("symbol")
            if wanted and sym not in wanted:
                continue
            bid = _price(row.get("bidPrice"))
            ask = _price(row.get("askPrice"))
            if bid is None and ask is None:
                continue
            ticks.append(Tick(symbol=self.canonical(sym), bid=bid, ask=ask))
        return ticks
