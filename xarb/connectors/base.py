from __future__ import annotations

import abc
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from ..logger import get_logger
from ..models import BookUpdate, Tick

logger = get_logger("xarb.connectors")


class Connector(abc.ABC):
    """Read-only REST connector producing normalized feed items.

    Venues either publish best bid/ask directly (fetch_ticks) or a depth
    snapshot the caller reconstructs locally (fetch_book). Symbols are
    translated to canonical names through `symbol_map` so that the same
    asset joins across venues.
    """

    name: str

    def __init__(self, name: str, host: str, symbol_map: Optional[Dict[str, str]] = None, timeout_s: float = 10.0) -> None:
        self.name = name
        self.host = host.rstrip("/")
        self.symbol_map = symbol_map or {}
        self.timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    def canonical(self, venue_symbol: str) -> str:
        return self.symbol_map.get(venue_symbol, venue_symbol)

    async def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        s = await self.session()
        async with s.get(self.host + path, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def fetch_ticks(self, symbols: List[str]) -> List[Tick]:
        raise NotImplementedError(f"{self.name} does not publish best bid/ask")

    async def fetch_book(self, symbol: str, levels: int = 20) -> BookUpdate:
        raise NotImplementedError(f"{self.name} does not publish depth snapshots")


async def poll_ticks(conn: Connector, actor, symbols: List[str], poll_ms: int) -> None:
    """Feed an actor from a best bid/ask connector until cancelled."""
    while True:
        try:
            for tick in await conn.fetch_ticks(symbols):
                actor.submit_tick(tick)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            logger.error(f"[{conn.name}] tick poll failed: {e}")
        await asyncio.sleep(poll_ms / 1000)


async def poll_books(conn: Connector, actor, symbols: List[str], poll_ms: int, levels: int = 20) -> None:
    """Feed an actor with depth snapshots until cancelled.

    A failed poll resets the actor's books so stale depth is never reused.
    """
    while True:
        failed = False
        for symbol in symbols:
            try:
                actor.submit_book(await conn.fetch_book(symbol, levels))
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
                logger.error(f"[{conn.name}] book poll failed for {symbol}: {e}")
                failed = True
        if failed:
            actor.submit_reset()
        await asyncio.sleep(poll_ms / 1000)
