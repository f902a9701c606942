"""
Arbitrage engine tests: pairwise directions, thresholds, data age and
historical bucketing.
"""

import pytest

from xarb.arbitrage.engine import ArbitrageEngine, pairwise
from xarb.errors import InsufficientExchanges, MissingRangeParameters
from xarb.models import ExchangePrice


@pytest.fixture
def engine(memory_store, clock):
    return ArbitrageEngine(memory_store, clock=clock)


class TestScan:
    @pytest.mark.asyncio
    async def test_profitable_direction_only(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now - 2000, bid=100.0, ask=101.0)
        memory_store.put_price("B", "BTC", clock.now - 500, bid=105.0, ask=106.0)
        [opp] = await engine.scan(["A", "B"], min_profit_percent=0)
        assert opp.buy_from == "A"
        assert opp.sell_to == "B"
        assert opp.buy_price == 101.0
        assert opp.sell_price == 105.0
        assert opp.profit == pytest.approx(4.0)
        assert opp.profit_percent == pytest.approx(3.9604, abs=1e-4)
        assert opp.timestamp == clock.now - 500
        assert opp.data_age == 500

    @pytest.mark.asyncio
    async def test_zero_profit_is_kept_at_zero_threshold(self, engine, memory_store, clock):
        memory_store.put_price("A", "ETH", clock.now, bid=9.0, ask=10.0)
        memory_store.put_price("B", "ETH", clock.now, bid=10.0, ask=11.0)
        opps = await engine.scan(["A", "B"], min_profit_percent=0)
        assert [(o.buy_from, o.sell_to, o.profit) for o in opps] == [("A", "B", 0.0)]

    @pytest.mark.asyncio
    async def test_negative_threshold_keeps_losing_directions(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=101.0)
        memory_store.put_price("B", "BTC", clock.now, bid=105.0, ask=106.0)
        opps = await engine.scan(["A", "B"], min_profit_percent=-10)
        assert len(opps) == 2
        assert opps[1].profit == pytest.approx(-6.0)

    @pytest.mark.asyncio
    async def test_insufficient_exchanges_raises(self, engine):
        with pytest.raises(InsufficientExchanges):
            await engine.scan(["A"])
        with pytest.raises(InsufficientExchanges):
            await engine.scan([])

    @pytest.mark.asyncio
    async def test_symbols_on_one_exchange_are_skipped(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=101.0)
        memory_store.put_price("B", "ETH", clock.now, bid=105.0, ask=106.0)
        assert await engine.scan(["A", "B"], min_profit_percent=-100) == []

    @pytest.mark.asyncio
    async def test_latest_row_per_symbol_is_used(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now - 30000, bid=200.0, ask=201.0)
        memory_store.put_price("A", "BTC", clock.now - 15000, bid=100.0, ask=101.0)
        memory_store.put_price("B", "BTC", clock.now - 15000, bid=105.0, ask=106.0)
        [opp] = await engine.scan(["A", "B"])
        assert opp.buy_price == 101.0

    @pytest.mark.asyncio
    async def test_results_sorted_by_profit_percent(self, engine, memory_store, clock):
        for ex, bid, ask in [("A", 100.0, 100.5), ("B", 101.0, 101.5), ("C", 103.0, 103.5)]:
            memory_store.put_price(ex, "BTC", clock.now, bid=bid, ask=ask)
        opps = await engine.scan(["A", "B", "C"])
        pct = [o.profit_percent for o in opps]
        assert pct == sorted(pct, reverse=True)
        assert (opps[0].buy_from, opps[0].sell_to) == ("A", "C")
        assert len(opps) == 3

    @pytest.mark.asyncio
    async def test_symbol_filter(self, engine, memory_store, clock):
        for sym in ("BTC", "ETH"):
            memory_store.put_price("A", sym, clock.now, bid=100.0, ask=101.0)
            memory_store.put_price("B", sym, clock.now, bid=105.0, ask=106.0)
        opps = await engine.scan(["A", "B"], symbol="ETH")
        assert {o.symbol for o in opps} == {"ETH"}

    @pytest.mark.asyncio
    async def test_minute_granularity(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=101.0, granularity="minutes")
        memory_store.put_price("B", "BTC", clock.now, bid=105.0, ask=106.0, granularity="minutes")
        assert await engine.scan(["A", "B"]) == []
        assert len(await engine.scan(["A", "B"], granularity="minutes")) == 1

    @pytest.mark.asyncio
    async def test_unknown_granularity_rejected(self, engine):
        with pytest.raises(ValueError):
            await engine.scan(["A", "B"], granularity="hours")

    @pytest.mark.asyncio
    async def test_one_sided_rows_are_ignored(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=None)
        memory_store.put_price("B", "BTC", clock.now, bid=105.0, ask=106.0)
        assert await engine.scan(["A", "B"], min_profit_percent=-100) == []

    @pytest.mark.asyncio
    async def test_failing_exchange_read_yields_no_prices(self, engine, memory_store, clock, monkeypatch):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=101.0)

        async def broken(source, granularity, symbol=None):
            raise RuntimeError("db locked")

        monkeypatch.setattr(memory_store, "latest_price_rows", broken)
        assert await engine.latest_prices("A") == []


class TestHistorical:
    @pytest.mark.asyncio
    async def test_groups_by_timestamp_without_threshold(self, engine, memory_store):
        for ts, a, b in [(60000, (100.0, 101.0), (105.0, 106.0)), (120000, (100.0, 101.0), (99.0, 100.0))]:
            memory_store.put_price("A", "BTC", ts, *a, granularity="minutes")
            memory_store.put_price("B", "BTC", ts, *b, granularity="minutes")
        memory_store.put_price("A", "BTC", 180000, 1.0, 2.0, granularity="minutes")

        rows = await engine.get_historical_arbitrage(["A", "B"], "BTC", 0, 200000)
        assert len(rows) == 4
        assert [r.timestamp for r in rows] == [60000, 60000, 120000, 120000]
        assert all(r.data_age == 0 for r in rows)
        assert any(r.profit < 0 for r in rows)

    @pytest.mark.asyncio
    async def test_range_is_inclusive(self, engine, memory_store):
        for ts in (15000, 30000, 45000):
            memory_store.put_price("A", "BTC", ts, 100.0, 101.0)
            memory_store.put_price("B", "BTC", ts, 100.0, 101.0)
        rows = await engine.get_historical_arbitrage(["A", "B"], "BTC", 15000, 30000, interval="snapshots")
        assert sorted({r.timestamp for r in rows}) == [15000, 30000]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("symbol,from_ts,to_ts", [(None, 0, 1), ("BTC", None, 1), ("BTC", 0, None), ("BTC", 5, 1)])
    async def test_missing_range_parameters(self, engine, symbol, from_ts, to_ts):
        with pytest.raises(MissingRangeParameters):
            await engine.get_historical_arbitrage(["A", "B"], symbol, from_ts, to_ts)

    @pytest.mark.asyncio
    async def test_insufficient_exchanges(self, engine):
        with pytest.raises(InsufficientExchanges):
            await engine.get_historical_arbitrage(["A"], "BTC", 0, 1)


def test_pairwise_evaluates_both_directions():
    a = ExchangePrice("A", "BTC", 10, bid=100.0, ask=101.0)
    b = ExchangePrice("B", "BTC", 20, bid=105.0, ask=106.0)
    opps = pairwise("BTC", [a, b], now=50)
    assert {(o.buy_from, o.sell_to) for o in opps} == {("A", "B"), ("B", "A")}
    ba = next(o for o in opps if o.buy_from == "B")
    assert ba.profit == pytest.approx(-6.0)
    assert ba.profit_percent == pytest.approx(-6.0 / 106.0 * 100)
    assert all(o.data_age == 30 for o in opps)


class TestDuplicateExchanges:
    @pytest.mark.asyncio
    async def test_repeated_name_counts_once(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=101.0)
        with pytest.raises(InsufficientExchanges):
            await engine.scan(["A", "A"], min_profit_percent=-100)
        with pytest.raises(InsufficientExchanges):
            await engine.get_historical_arbitrage(["A", "A"], "BTC", 0, clock.now)

    @pytest.mark.asyncio
    async def test_no_self_pairs(self, engine, memory_store, clock):
        memory_store.put_price("A", "BTC", clock.now, bid=100.0, ask=101.0)
        memory_store.put_price("B", "BTC", clock.now, bid=105.0, ask=106.0)
        opps = await engine.scan(["A", "B", "A"], min_profit_percent=-100)
        assert len(opps) == 2
        assert all(o.buy_from != o.sell_to for o in opps)
