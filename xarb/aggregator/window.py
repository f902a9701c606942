"""Streaming window aggregation of best bid/ask ticks.

Each symbol gets one open bucket per window holding running sums, counts
and extrema, so memory is O(active symbols) whatever the tick rate. A flush
turns the buckets into one Snapshot row per symbol; the last window of each
minute also rolls that minute's snapshots into a MinuteRecord.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..logger import get_logger
from ..models import MinuteRecord, Snapshot, now_ms

logger = get_logger("xarb.aggregator")

MINUTE_MS = 60000


class AggregateStore(Protocol):
    async def insert_snapshots(self, source: str, rows: List[Dict[str, Any]]) -> None: ...

    async def query_minute_candidates(self, source: str, from_ts: int, to_ts: int) -> Dict[str, List[Dict[str, Any]]]: ...

    async def upsert_minute(self, source: str, row: Dict[str, Any]) -> None: ...

    async def delete_snapshots_before(self, source: str, ts: int) -> int: ...

    async def delete_minutes_before(self, source: str, ts: int) -> int: ...


@dataclass
class SymbolWindowBucket:
    bid_sum: float = 0.0
    bid_count: int = 0
    ask_sum: float = 0.0
    ask_count: int = 0
    spread_sum: float = 0.0
    spread_count: int = 0
    min_bid: Optional[float] = None
    max_bid: Optional[float] = None
    min_ask: Optional[float] = None
    max_ask: Optional[float] = None

    def add(self, bid: Optional[float], ask: Optional[float]) -> None:
        if bid is not None:
            self.bid_sum += bid
            self.bid_count += 1
            self.min_bid = bid if self.min_bid is None else min(self.min_bid, bid)
            self.max_bid = bid if self.max_bid is None else max(self.max_bid, bid)
        if ask is not None:
            self.ask_sum += ask
            self.ask_count += 1
            self.min_ask = ask if self.min_ask is None else min(self.min_ask, ask)
            self.max_ask = ask if self.max_ask is None else max(self.max_ask, ask)
        if bid is not None and ask is not None:
            self.spread_sum += ask - bid
            self.spread_count += 1

    @property
    def empty(self) -> bool:
        return self.bid_count == 0 and self.ask_count == 0

    def to_snapshot(self, symbol: str, timestamp: int) -> Snapshot:
        return Snapshot(
            symbol=symbol,
            timestamp=timestamp,
            avg_bid=self.bid_sum / self.bid_count if self.bid_count else None,
            avg_ask=self.ask_sum / self.ask_count if self.ask_count else None,
            avg_spread=self.spread_sum / self.spread_count if self.spread_count else None,
            min_bid=self.min_bid,
            max_bid=self.max_bid,
            min_ask=self.min_ask,
            max_ask=self.max_ask,
            tick_count=max(self.bid_count, self.ask_count),
        )


def _clean_price(value: Any) -> Optional[float]:
    """Return a positive finite float, or None for an absent/invalid side."""
    if value is None:
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v <= 0:
        return None
    return v


def _mean(values: List[Optional[float]]) -> Optional[float]:
    vals = [v for v in values if v is not None]
    return sum(vals) / len(vals) if vals else None


def _min(values: List[Optional[float]]) -> Optional[float]:
    vals = [v for v in values if v is not None]
    return min(vals) if vals else None


def _max(values: List[Optional[float]]) -> Optional[float]:
    vals = [v for v in values if v is not None]
    return max(vals) if vals else None


def rollup_minute(symbol: str, minute_start: int, rows: List[Dict[str, Any]]) -> MinuteRecord:
    """Roll window snapshots into one minute record.

    Averages are the plain mean of the snapshot averages, not weighted by
    tick_count. Nulls are ignored the way SQL AVG/MIN/MAX ignore them.
    """
    return MinuteRecord(
        symbol=symbol,
        timestamp=minute_start,
        avg_bid=_mean([r.get("avg_bid") for r in rows]),
        avg_ask=_mean([r.get("avg_ask") for r in rows]),
        avg_spread=_mean([r.get("avg_spread") for r in rows]),
        min_bid=_min([r.get("min_bid") for r in rows]),
        max_bid=_max([r.get("max_bid") for r in rows]),
        min_ask=_min([r.get("min_ask") for r in rows]),
        max_ask=_max([r.get("max_ask") for r in rows]),
        tick_count=sum(int(r.get("tick_count") or 0) for r in rows),
    )


class WindowAggregator:
    """Per-venue window aggregator.

    Not thread-safe: record/flush must run on one serialized path (see
    VenueActor). Persistence errors are logged and swallowed; in-memory state
    is cleared on every flush regardless.
    """

    def __init__(
        self,
        source: str,
        store: AggregateStore,
        window_ms: int = 15000,
        windows_per_minute: int = 4,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if window_ms <= 0 or windows_per_minute <= 0 or window_ms * windows_per_minute != MINUTE_MS:
            raise ValueError(
                f"window_ms * windows_per_minute must equal {MINUTE_MS} "
                f"(got {window_ms} * {windows_per_minute})"
            )
        self.source = source
        self.store = store
        self.window_ms = window_ms
        self.windows_per_minute = windows_per_minute
        self._clock = clock
        self._buckets: Dict[str, SymbolWindowBucket] = {}
        self.window_start: int = clock()
        self._flushing = False
        logger.info(f"[{source}] aggregator started, window={window_ms}ms")

    def record(self, symbol: str, bid: Any, ask: Any) -> None:
        b = _clean_price(bid)
        a = _clean_price(ask)
        if bid is not None and b is None:
            logger.debug(f"[{self.source}] {symbol} invalid bid {bid!r} dropped")
        if ask is not None and a is None:
            logger.debug(f"[{self.source}] {symbol} invalid ask {ask!r} dropped")
        if b is None and a is None:
            return
        bucket = self._buckets.get(symbol)
        if bucket is None:
            bucket = self._buckets[symbol] = SymbolWindowBucket()
        bucket.add(b, a)

    def window_timestamp(self, ts: Optional[int] = None) -> int:
        ts = self.window_start if ts is None else ts
        return (ts // self.window_ms) * self.window_ms

    def flush_due(self, now: Optional[int] = None) -> bool:
        now = self._clock() if now is None else now
        return now - self.window_start >= self.window_ms

    async def flush(self, now: Optional[int] = None) -> List[Snapshot]:
        if self._flushing:
            logger.warning(f"[{self.source}] flush already in flight, skipped")
            return []
        now = self._clock() if now is None else now
        self._flushing = True
        try:
            if not self._buckets:
                self.window_start = now
                return []
            timestamp = self.window_timestamp()
            snapshots = [
                bucket.to_snapshot(symbol, timestamp)
                for symbol, bucket in self._buckets.items()
                if not bucket.empty
            ]
            self._buckets = {}
            self.window_start = now

            logger.info(f"[{self.source}] flushing {len(snapshots)} symbols for window {timestamp}")
            try:
                await self.store.insert_snapshots(self.source, [s.to_row() for s in snapshots])
            except Exception as e:
                logger.error(f"[{self.source}] flush error, window {timestamp} lost: {e}")
            await self.rollup_if_due(timestamp)
            return snapshots
        finally:
            self._flushing = False

    def is_last_window_of_minute(self, ts: int) -> bool:
        minute_start = (ts // MINUTE_MS) * MINUTE_MS
        return (ts - minute_start) // self.window_ms == self.windows_per_minute - 1

    async def rollup_if_due(self, ts: int) -> List[MinuteRecord]:
        if not self.is_last_window_of_minute(ts):
            return []
        minute_start = (ts // MINUTE_MS) * MINUTE_MS
        records: List[MinuteRecord] = []
        try:
            grouped = await self.store.query_minute_candidates(
                self.source, minute_start, minute_start + MINUTE_MS
            )
            for symbol, rows in grouped.items():
                if not rows:
                    continue
                record = rollup_minute(symbol, minute_start, rows)
                await self.store.upsert_minute(self.source, record.to_row())
                records.append(record)
            await self.store.delete_snapshots_before(self.source, minute_start)
            logger.info(f"[{self.source}] rolled up {len(records)} minute records for {minute_start}")
        except Exception as e:
            logger.error(f"[{self.source}] minute rollup error for {minute_start}: {e}")
        return records

    async def prune_minutes(self, retention_ms: int = 3600000) -> int:
        cutoff = self._clock() - retention_ms
        try:
            deleted = await self.store.delete_minutes_before(self.source, cutoff)
        except Exception as e:
            logger.error(f"[{self.source}] minute prune error: {e}")
            return 0
        if deleted:
            logger.info(f"[{self.source}] deleted {deleted} old minute records")
        return deleted or 0

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "current_symbols": len(self._buckets),
            "window_start": self.window_start,
            "window_elapsed": now - self.window_start,
            "window_duration": self.window_ms,
        }
