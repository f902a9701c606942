from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import aiosqlite

from ..errors import PersistenceFailure
from ..models import Snapshot


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS orderbook_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    symbol TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    avg_bid REAL,
    avg_ask REAL,
    avg_spread REAL,
    min_bid REAL,
    max_bid REAL,
    min_ask REAL,
    max_ask REAL,
    tick_count INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snapshots_source_symbol ON orderbook_snapshots(source, symbol, timestamp);

CREATE TABLE IF NOT EXISTS orderbook_minutes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    symbol TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    avg_bid REAL,
    avg_ask REAL,
    avg_spread REAL,
    min_bid REAL,
    max_bid REAL,
    min_ask REAL,
    max_ask REAL,
    tick_count INTEGER NOT NULL,
    UNIQUE(source, symbol, timestamp)
);
CREATE INDEX IF NOT EXISTS idx_minutes_source_symbol ON orderbook_minutes(source, symbol, timestamp);
"""

ROW_COLUMNS = [
    "symbol",
    "timestamp",
    "avg_bid",
    "avg_ask",
    "avg_spread",
    "min_bid",
    "max_bid",
    "min_ask",
    "max_ask",
    "tick_count",
]

TABLES = {
    "snapshots": "orderbook_snapshots",
    "minutes": "orderbook_minutes",
}


def table_for(granularity: str) -> str:
    try:
        return TABLES[granularity]
    except KeyError:
        raise ValueError(f"unknown granularity {granularity!r}, expected one of {sorted(TABLES)}") from None


async def open_db(path: str) -> aiosqlite.Connection:
    dirname = os.path.dirname(path)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    db = await aiosqlite.connect(path)
    await db.executescript(CREATE_TABLES_SQL)
    await db.commit()
    return db


def _row_values(source: str, row: Dict[str, Any]) -> tuple:
    return (source,) + tuple(row.get(c) for c in ROW_COLUMNS)


def _row_dict(r: tuple) -> Dict[str, Any]:
    return {c: r[i] for i, c in enumerate(ROW_COLUMNS)}


class SqliteStore:
    """Snapshot/minute persistence for the aggregator and price reads for
    the arbitrage engine, all partitioned by `source` (the venue name).

    Every aiosqlite error is rolled back and re-raised as PersistenceFailure.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    @classmethod
    async def open(cls, path: str) -> "SqliteStore":
        return cls(await open_db(path))

    async def close(self) -> None:
        await self.db.close()

    async def _fail(self, what: str, e: Exception) -> PersistenceFailure:
        await self.db.rollback()
        return PersistenceFailure(f"{what} failed: {e}")

    async def _fetchall(self, what: str, sql: str, params: tuple) -> List[tuple]:
        try:
            cursor = await self.db.execute(sql, params)
            rows = await cursor.fetchall()
            await cursor.close()
        except aiosqlite.Error as e:
            raise await self._fail(what, e) from e
        return list(rows)

    # --- aggregator contract ---

    async def insert_snapshots(self, source: str, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        cols_sql = ", ".join(["source"] + ROW_COLUMNS)
        placeholders = ", ".join(["?"] * (len(ROW_COLUMNS) + 1))
        try:
            await self.db.executemany(
                f"INSERT INTO orderbook_snapshots({cols_sql}) VALUES ({placeholders})",
                [_row_values(source, r) for r in rows],
            )
            await self.db.commit()
        except aiosqlite.Error as e:
            raise await self._fail(f"[{source}] snapshot insert", e) from e

    async def query_minute_candidates(self, source: str, from_ts: int, to_ts: int) -> Dict[str, List[Dict[str, Any]]]:
        cols_sql = ", ".join(ROW_COLUMNS)
        rows = await self._fetchall(
            f"[{source}] minute candidate query",
            f"SELECT {cols_sql} FROM orderbook_snapshots WHERE source = ? AND timestamp >= ? AND timestamp < ? "
            "ORDER BY symbol, timestamp",
            (source, from_ts, to_ts),
        )
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for r in rows:
            d = _row_dict(r)
            grouped.setdefault(d["symbol"], []).append(d)
        return grouped

    async def upsert_minute(self, source: str, row: Dict[str, Any]) -> None:
        cols_sql = ", ".join(["source"] + ROW_COLUMNS)
        placeholders = ", ".join(["?"] * (len(ROW_COLUMNS) + 1))
        updates = ", ".join(f"{c}=excluded.{c}" for c in ROW_COLUMNS if c not in ("symbol", "timestamp"))
        try:
            await self.db.execute(
                f"INSERT INTO orderbook_minutes({cols_sql}) VALUES ({placeholders}) "
                f"ON CONFLICT(source, symbol, timestamp) DO UPDATE SET {updates}",
                _row_values(source, row),
            )
            await self.db.commit()
        except aiosqlite.Error as e:
            raise await self._fail(f"[{source}] minute upsert", e) from e

    async def delete_snapshots_before(self, source: str, ts: int) -> int:
        return await self._delete_before("orderbook_snapshots", source, ts)

    async def delete_minutes_before(self, source: str, ts: int) -> int:
        return await self._delete_before("orderbook_minutes", source, ts)

    async def _delete_before(self, table: str, source: str, ts: int) -> int:
        try:
            cursor = await self.db.execute(f"DELETE FROM {table} WHERE source = ? AND timestamp < ?", (source, ts))
            deleted = cursor.rowcount
            await cursor.close()
            await self.db.commit()
        except aiosqlite.Error as e:
            raise await self._fail(f"[{source}] {table} cleanup", e) from e
        return max(deleted, 0)

    # --- arbitrage contract ---

    async def latest_price_rows(self, source: str, granularity: str, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent row per symbol: [{symbol, timestamp, bid, ask, spread}]."""
        table = table_for(granularity)
        sym_sql = "AND symbol = ? " if symbol else ""
        params: tuple = (source, symbol, source) if symbol else (source, source)
        sql = (
            f"SELECT t.symbol, t.timestamp, t.avg_bid, t.avg_ask, t.avg_spread FROM {table} t "
            f"JOIN (SELECT symbol, MAX(timestamp) ts FROM {table} WHERE source = ? {sym_sql}GROUP BY symbol) m "
            "ON t.symbol = m.symbol AND t.timestamp = m.ts "
            "WHERE t.source = ? ORDER BY t.symbol, t.id DESC"
        )
        rows = await self._fetchall(f"[{source}] latest price query", sql, params)
        out: List[Dict[str, Any]] = []
        seen = set()
        for r in rows:
            # several rows can share the max timestamp; keep the last written
            if r[0] in seen:
                continue
            seen.add(r[0])
            out.append({"symbol": r[0], "timestamp": r[1], "bid": r[2], "ask": r[3], "spread": r[4]})
        return out

    async def range_price_rows(
        self, source: str, granularity: str, symbol: str, from_ts: int, to_ts: int
    ) -> List[Dict[str, Any]]:
        table = table_for(granularity)
        rows = await self._fetchall(
            f"[{source}] price range query",
            f"SELECT symbol, timestamp, avg_bid, avg_ask, avg_spread FROM {table} "
            "WHERE source = ? AND symbol = ? AND timestamp >= ? AND timestamp <= ? ORDER BY timestamp ASC",
            (source, symbol, from_ts, to_ts),
        )
        return [{"symbol": r[0], "timestamp": r[1], "bid": r[2], "ask": r[3], "spread": r[4]} for r in rows]

    # --- panel reads ---

    async def list_rows(
        self,
        source: str,
        granularity: str,
        symbol: Optional[str] = None,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Snapshot]:
        """Stored windows or minutes for one source, newest first."""
        table = table_for(granularity)
        conditions = ["source = ?"]
        params: List[Any] = [source]
        if symbol:
            conditions.append("symbol = ?")
            params.append(symbol)
        if from_ts is not None:
            conditions.append("timestamp >= ?")
            params.append(from_ts)
        if to_ts is not None:
            conditions.append("timestamp <= ?")
            params.append(to_ts)
        params.extend([limit, offset])
        rows = await self._fetchall(
            f"[{source}] {granularity} listing",
            f"SELECT {', '.join(ROW_COLUMNS)} FROM {table} WHERE {' AND '.join(conditions)} "
            "ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?",
            tuple(params),
        )
        return [Snapshot.from_row(_row_dict(r)) for r in rows]

    async def minute_overview(self, source: Optional[str] = None) -> List[Dict[str, Any]]:
        """Per (source, symbol) totals over the retained minute rows."""
        where = "WHERE source = ? " if source else ""
        rows = await self._fetchall(
            "minute overview",
            "SELECT source, symbol, COUNT(*), MIN(timestamp), MAX(timestamp), AVG(avg_bid), AVG(avg_ask), "
            f"SUM(tick_count) FROM orderbook_minutes {where}GROUP BY source, symbol ORDER BY source, symbol",
            (source,) if source else (),
        )
        return [
            {
                "source": r[0],
                "symbol": r[1],
                "total_minutes": r[2],
                "first_minute": r[3],
                "last_minute": r[4],
                "overall_avg_bid": r[5],
                "overall_avg_ask": r[6],
                "total_ticks": r[7],
            }
            for r in rows
        ]

    async def count_rows(self, source: str) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for name, table in TABLES.items():
            rows = await self._fetchall(f"[{source}] row count", f"SELECT COUNT(*) FROM {table} WHERE source = ?", (source,))
            out[name] = int(rows[0][0]) if rows else 0
        return out
