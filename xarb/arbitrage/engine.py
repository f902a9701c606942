"""Cross-exchange arbitrage detection.

For every symbol seen on at least two exchanges, each unordered exchange
pair is evaluated in both directions: buy at one venue's ask, sell at the
other's bid. Work is O(S * E^2), fine for a single-digit exchange count.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..errors import InsufficientExchanges, MissingRangeParameters
from ..logger import get_logger
from ..models import ArbitrageOpportunity, ExchangePrice, now_ms
from ..storage.sqlite import table_for

logger = get_logger("xarb.arbitrage")


class PriceStore(Protocol):
    async def latest_price_rows(self, source: str, granularity: str, symbol: Optional[str] = None) -> List[Dict[str, Any]]: ...

    async def range_price_rows(self, source: str, granularity: str, symbol: str, from_ts: int, to_ts: int) -> List[Dict[str, Any]]: ...


def _to_price(exchange: str, granularity: str, row: Dict[str, Any]) -> Optional[ExchangePrice]:
    bid, ask = row.get("bid"), row.get("ask")
    if bid is None or ask is None or bid <= 0 or ask <= 0:
        return None
    return ExchangePrice(
        exchange=exchange,
        symbol=row["symbol"],
        timestamp=int(row["timestamp"]),
        bid=float(bid),
        ask=float(ask),
        spread=row.get("spread"),
        source=granularity,
    )


def _distinct(exchanges: List[str]) -> List[str]:
    # first occurrence wins; a venue paired with itself is not an opportunity
    return list(dict.fromkeys(exchanges))


def _direction(symbol: str, buy: ExchangePrice, sell: ExchangePrice, timestamp: int, data_age: int) -> ArbitrageOpportunity:
    profit = sell.bid - buy.ask
    return ArbitrageOpportunity(
        symbol=symbol,
        buy_from=buy.exchange,
        sell_to=sell.exchange,
        buy_price=buy.ask,
        sell_price=sell.bid,
        profit=profit,
        profit_percent=profit / buy.ask * 100,
        timestamp=timestamp,
        data_age=data_age,
    )


def pairwise(symbol: str, prices: List[ExchangePrice], now: Optional[int]) -> List[ArbitrageOpportunity]:
    """Both directions for every unordered pair of prices.

    With `now` set, data_age is measured from the fresher leg; None means a
    historical bucket and data_age is 0.
    """
    out: List[ArbitrageOpportunity] = []
    for i in range(len(prices)):
        for j in range(i + 1, len(prices)):
            p1, p2 = prices[i], prices[j]
            ts = max(p1.timestamp, p2.timestamp)
            age = now - ts if now is not None else 0
            out.append(_direction(symbol, p1, p2, ts, age))
            out.append(_direction(symbol, p2, p1, ts, age))
    return out


class ArbitrageEngine:
    """Read-only scanner over the persisted per-venue price series."""

    def __init__(self, store: PriceStore, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self._clock = clock

    async def latest_prices(self, exchange: str, symbol: Optional[str] = None, granularity: str = "snapshots") -> List[ExchangePrice]:
        table_for(granularity)
        try:
            rows = await self.store.latest_price_rows(exchange, granularity, symbol)
        except Exception as e:
            logger.error(f"failed to fetch prices from {exchange}: {e}")
            return []
        prices = []
        for row in rows:
            p = _to_price(exchange, granularity, row)
            if p is None:
                logger.debug(f"{exchange}:{row.get('symbol')} row without two-sided prices skipped")
                continue
            prices.append(p)
        return prices

    async def scan(
        self,
        exchanges: List[str],
        symbol: Optional[str] = None,
        min_profit_percent: float = 0.0,
        granularity: str = "snapshots",
    ) -> List[ArbitrageOpportunity]:
        exchanges = _distinct(exchanges)
        if len(exchanges) < 2:
            raise InsufficientExchanges(len(exchanges))
        table_for(granularity)

        by_exchange = await asyncio.gather(*(self.latest_prices(ex, symbol, granularity) for ex in exchanges))
        by_symbol: Dict[str, List[ExchangePrice]] = {}
        for prices in by_exchange:
            for p in prices:
                by_symbol.setdefault(p.symbol, []).append(p)

        now = self._clock()
        opportunities: List[ArbitrageOpportunity] = []
        for sym, prices in by_symbol.items():
            if len(prices) < 2:
                continue
            for opp in pairwise(sym, prices, now):
                if opp.profit_percent >= min_profit_percent:
                    opportunities.append(opp)

        opportunities.sort(key=lambda o: o.profit_percent, reverse=True)
        return opportunities

    async def get_historical_arbitrage(
        self,
        exchanges: List[str],
        symbol: Optional[str],
        from_ts: Optional[int],
        to_ts: Optional[int],
        interval: str = "minutes",
    ) -> List[ArbitrageOpportunity]:
        """Unfiltered per-bucket opportunities over [from_ts, to_ts] for charting."""
        exchanges = _distinct(exchanges)
        if len(exchanges) < 2:
            raise InsufficientExchanges(len(exchanges))
        if not symbol or from_ts is None or to_ts is None:
            raise MissingRangeParameters("symbol, from and to are required")
        if from_ts > to_ts:
            raise MissingRangeParameters(f"from ({from_ts}) is after to ({to_ts})")
        table_for(interval)

        series = await asyncio.gather(
            *(self.store.range_price_rows(ex, interval, symbol, from_ts, to_ts) for ex in exchanges)
        )
        by_ts: Dict[int, List[ExchangePrice]] = {}
        for ex, rows in zip(exchanges, series):
            for row in rows:
                p = _to_price(ex, interval, row)
                if p is not None:
                    by_ts.setdefault(p.timestamp, []).append(p)

        out: List[ArbitrageOpportunity] = []
        for ts in sorted(by_ts):
            prices = by_ts[ts]
            if len(prices) < 2:
                continue
            out.extend(pairwise(symbol, prices, None))
        return out
