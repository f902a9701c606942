"""
SQLite store tests against a real on-disk database.
"""

import pytest

from xarb.errors import PersistenceFailure
from xarb.storage.sqlite import table_for


def _row(symbol, ts, bid, ask, ticks=1):
    return {
        "symbol": symbol, "timestamp": ts, "avg_bid": bid, "avg_ask": ask,
        "avg_spread": ask - bid, "min_bid": bid, "max_bid": bid,
        "min_ask": ask, "max_ask": ask, "tick_count": ticks,
    }


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_insert_and_group_minute_candidates(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [
            _row("BTC", 60000, 1.0, 2.0),
            _row("ETH", 75000, 3.0, 4.0),
            _row("BTC", 105000, 5.0, 6.0),
            _row("BTC", 120000, 7.0, 8.0),
        ])
        grouped = await sqlite_store.query_minute_candidates("edgex", 60000, 120000)
        assert sorted(grouped) == ["BTC", "ETH"]
        assert [r["timestamp"] for r in grouped["BTC"]] == [60000, 105000]
        assert grouped["ETH"][0]["avg_bid"] == 3.0

    @pytest.mark.asyncio
    async def test_sources_are_isolated(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [_row("BTC", 60000, 1.0, 2.0)])
        await sqlite_store.insert_snapshots("lighter", [_row("BTC", 60000, 9.0, 10.0)])
        assert await sqlite_store.query_minute_candidates("aster", 0, 10**6) == {}
        deleted = await sqlite_store.delete_snapshots_before("edgex", 10**6)
        assert deleted == 1
        assert (await sqlite_store.count_rows("lighter"))["snapshots"] == 1

    @pytest.mark.asyncio
    async def test_empty_insert_is_noop(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [])
        assert await sqlite_store.count_rows("edgex") == {"snapshots": 0, "minutes": 0}

    @pytest.mark.asyncio
    async def test_constraint_violation_raises_persistence_failure(self, sqlite_store):
        bad = _row("BTC", 60000, 1.0, 2.0)
        bad["tick_count"] = None
        with pytest.raises(PersistenceFailure):
            await sqlite_store.insert_snapshots("edgex", [_row("ETH", 60000, 1.0, 2.0), bad])
        assert (await sqlite_store.count_rows("edgex"))["snapshots"] == 0

    @pytest.mark.asyncio
    async def test_delete_before_is_exclusive(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [_row("BTC", 60000, 1.0, 2.0), _row("BTC", 120000, 1.0, 2.0)])
        assert await sqlite_store.delete_snapshots_before("edgex", 120000) == 1
        assert (await sqlite_store.count_rows("edgex"))["snapshots"] == 1


class TestMinutes:
    @pytest.mark.asyncio
    async def test_upsert_replaces_existing_minute(self, sqlite_store):
        await sqlite_store.upsert_minute("edgex", _row("BTC", 60000, 1.0, 2.0, ticks=3))
        await sqlite_store.upsert_minute("edgex", _row("BTC", 60000, 5.0, 6.0, ticks=7))
        await sqlite_store.upsert_minute("lighter", _row("BTC", 60000, 9.0, 10.0))
        assert (await sqlite_store.count_rows("edgex"))["minutes"] == 1
        [latest] = await sqlite_store.latest_price_rows("edgex", "minutes")
        assert latest["bid"] == 5.0
        assert latest["ask"] == 6.0

    @pytest.mark.asyncio
    async def test_delete_minutes_before(self, sqlite_store):
        for ts in (0, 60000, 120000):
            await sqlite_store.upsert_minute("edgex", _row("BTC", ts, 1.0, 2.0))
        assert await sqlite_store.delete_minutes_before("edgex", 100000) == 2
        assert await sqlite_store.delete_minutes_before("edgex", 100000) == 0


class TestPriceReads:
    @pytest.mark.asyncio
    async def test_latest_row_per_symbol(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [
            _row("BTC", 15000, 1.0, 2.0),
            _row("BTC", 30000, 3.0, 4.0),
            _row("ETH", 15000, 5.0, 6.0),
        ])
        await sqlite_store.insert_snapshots("lighter", [_row("BTC", 45000, 7.0, 8.0)])
        rows = await sqlite_store.latest_price_rows("edgex", "snapshots")
        assert rows == [
            {"symbol": "BTC", "timestamp": 30000, "bid": 3.0, "ask": 4.0, "spread": 1.0},
            {"symbol": "ETH", "timestamp": 15000, "bid": 5.0, "ask": 6.0, "spread": 1.0},
        ]

    @pytest.mark.asyncio
    async def test_latest_symbol_filter(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [_row("BTC", 15000, 1.0, 2.0), _row("ETH", 15000, 5.0, 6.0)])
        rows = await sqlite_store.latest_price_rows("edgex", "snapshots", symbol="ETH")
        assert [r["symbol"] for r in rows] == ["ETH"]

    @pytest.mark.asyncio
    async def test_latest_tie_keeps_last_written(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [_row("BTC", 15000, 1.0, 2.0)])
        await sqlite_store.insert_snapshots("edgex", [_row("BTC", 15000, 3.0, 4.0)])
        [row] = await sqlite_store.latest_price_rows("edgex", "snapshots")
        assert row["bid"] == 3.0

    @pytest.mark.asyncio
    async def test_range_is_ascending_and_inclusive(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [
            _row("BTC", 45000, 3.0, 4.0),
            _row("BTC", 15000, 1.0, 2.0),
            _row("BTC", 30000, 2.0, 3.0),
            _row("ETH", 30000, 9.0, 9.5),
        ])
        rows = await sqlite_store.range_price_rows("edgex", "snapshots", "BTC", 15000, 30000)
        assert [r["timestamp"] for r in rows] == [15000, 30000]

    @pytest.mark.asyncio
    async def test_unknown_granularity(self, sqlite_store):
        with pytest.raises(ValueError):
            await sqlite_store.latest_price_rows("edgex", "hours")


def test_table_for():
    assert table_for("snapshots") == "orderbook_snapshots"
    assert table_for("minutes") == "orderbook_minutes"
    with pytest.raises(ValueError):
        table_for("seconds")


class TestErrorPath:
    @pytest.mark.asyncio
    async def test_cleanup_failure_raises_persistence_failure(self, sqlite_store):
        await sqlite_store.db.execute("DROP TABLE orderbook_snapshots")
        with pytest.raises(PersistenceFailure):
            await sqlite_store.delete_snapshots_before("edgex", 60000)
        with pytest.raises(PersistenceFailure):
            await sqlite_store.query_minute_candidates("edgex", 0, 60000)

    @pytest.mark.asyncio
    async def test_minute_prune_failure_raises_persistence_failure(self, sqlite_store):
        await sqlite_store.db.execute("DROP TABLE orderbook_minutes")
        with pytest.raises(PersistenceFailure):
            await sqlite_store.delete_minutes_before("edgex", 60000)
        with pytest.raises(PersistenceFailure):
            await sqlite_store.minute_overview()


class TestListing:
    @pytest.mark.asyncio
    async def test_list_snapshots_newest_first_with_paging(self, sqlite_store):
        await sqlite_store.insert_snapshots("edgex", [
            _row("BTC", 15000, 1.0, 2.0),
            _row("BTC", 30000, 3.0, 4.0),
            _row("ETH", 45000, 5.0, 6.0),
        ])
        rows = await sqlite_store.list_rows("edgex", "snapshots")
        assert [(r.symbol, r.timestamp) for r in rows] == [("ETH", 45000), ("BTC", 30000), ("BTC", 15000)]
        page = await sqlite_store.list_rows("edgex", "snapshots", symbol="BTC", limit=1, offset=1)
        assert [r.timestamp for r in page] == [15000]
        assert page[0].avg_bid == 1.0
        assert page[0].tick_count == 1

    @pytest.mark.asyncio
    async def test_list_minutes_range(self, sqlite_store):
        for ts in (0, 60000, 120000):
            await sqlite_store.upsert_minute("edgex", _row("BTC", ts, 1.0, 2.0))
        rows = await sqlite_store.list_rows("edgex", "minutes", from_ts=60000, to_ts=120000)
        assert [r.timestamp for r in rows] == [120000, 60000]

    @pytest.mark.asyncio
    async def test_minute_overview(self, sqlite_store):
        await sqlite_store.upsert_minute("edgex", _row("BTC", 0, 1.0, 2.0, ticks=3))
        await sqlite_store.upsert_minute("edgex", _row("BTC", 60000, 3.0, 4.0, ticks=5))
        await sqlite_store.upsert_minute("lighter", _row("ETH", 0, 9.0, 10.0))
        [btc] = await sqlite_store.minute_overview("edgex")
        assert btc == {
            "source": "edgex", "symbol": "BTC", "total_minutes": 2, "first_minute": 0,
            "last_minute": 60000, "overall_avg_bid": 2.0, "overall_avg_ask": 3.0, "total_ticks": 8,
        }
        assert len(await sqlite_store.minute_overview()) == 2
