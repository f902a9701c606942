"""
Shared fixtures: a controllable clock and an in-memory store that speaks
both the aggregator and the arbitrage persistence contracts.
"""

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from xarb.storage.sqlite import SqliteStore


class FakeClock:
    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class MemoryStore:
    """In-memory rows keyed by source. Any method listed in `fail` raises."""

    def __init__(self):
        self.snapshots: Dict[str, List[Dict[str, Any]]] = {}
        self.minutes: Dict[str, Dict[tuple, Dict[str, Any]]] = {}
        self.fail: set = set()
        self.calls: List[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    async def insert_snapshots(self, source, rows):
        self._check("insert_snapshots")
        self.snapshots.setdefault(source, []).extend(dict(r) for r in rows)

    async def query_minute_candidates(self, source, from_ts, to_ts):
        self._check("query_minute_candidates")
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for r in self.snapshots.get(source, []):
            if from_ts <= r["timestamp"] < to_ts:
                grouped.setdefault(r["symbol"], []).append(r)
        return grouped

    async def upsert_minute(self, source, row):
        self._check("upsert_minute")
        self.minutes.setdefault(source, {})[(row["symbol"], row["timestamp"])] = dict(row)

    async def delete_snapshots_before(self, source, ts):
        self._check("delete_snapshots_before")
        rows = self.snapshots.get(source, [])
        kept = [r for r in rows if r["timestamp"] >= ts]
        self.snapshots[source] = kept
        return len(rows) - len(kept)

    async def delete_minutes_before(self, source, ts):
        self._check("delete_minutes_before")
        rows = self.minutes.get(source, {})
        old = [k for k, r in rows.items() if r["timestamp"] < ts]
        for k in old:
            del rows[k]
        return len(old)

    def _table(self, source, granularity):
        if granularity == "minutes":
            return list(self.minutes.get(source, {}).values())
        return list(self.snapshots.get(source, []))

    async def latest_price_rows(self, source, granularity, symbol: Optional[str] = None):
        self._check("latest_price_rows")
        latest: Dict[str, Dict[str, Any]] = {}
        for r in self._table(source, granularity):
            if symbol and r["symbol"] != symbol:
                continue
            cur = latest.get(r["symbol"])
            if cur is None or r["timestamp"] >= cur["timestamp"]:
                latest[r["symbol"]] = r
        return [
            {"symbol": r["symbol"], "timestamp": r["timestamp"], "bid": r["avg_bid"], "ask": r["avg_ask"], "spread": r.get("avg_spread")}
            for r in latest.values()
        ]

    async def range_price_rows(self, source, granularity, symbol, from_ts, to_ts):
        self._check("range_price_rows")
        rows = [
            r for r in self._table(source, granularity)
            if r["symbol"] == symbol and from_ts <= r["timestamp"] <= to_ts
        ]
        rows.sort(key=lambda r: r["timestamp"])
        return [
            {"symbol": r["symbol"], "timestamp": r["timestamp"], "bid": r["avg_bid"], "ask": r["avg_ask"], "spread": r.get("avg_spread")}
            for r in rows
        ]

    def put_price(self, source, symbol, timestamp, bid, ask, granularity="snapshots"):
        row = {
            "symbol": symbol, "timestamp": timestamp, "avg_bid": bid, "avg_ask": ask,
            "avg_spread": (ask - bid) if bid is not None and ask is not None else None,
            "min_bid": bid, "max_bid": bid, "min_ask": ask, "max_ask": ask, "tick_count": 1,
        }
        if granularity == "minutes":
            self.minutes.setdefault(source, {})[(symbol, timestamp)] = row
        else:
            self.snapshots.setdefault(source, []).append(row)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = await SqliteStore.open(str(tmp_path / "db" / "xarb.db"))
    yield store
    await store.close()
