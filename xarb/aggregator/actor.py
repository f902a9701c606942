from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional

from ..book.orderbook import OrderBookView
from ..logger import get_logger
from ..models import BookUpdate, Tick, now_ms
from .window import AggregateStore, WindowAggregator

logger = get_logger("xarb.actor")


class _Signal:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


FLUSH_DUE = _Signal("flush-due")
PRUNE_DUE = _Signal("prune-due")
RESET = _Signal("reset")
_STOP = _Signal("stop")


class VenueActor:
    """Single serialized loop for one venue.

    Feed messages (ticks, book updates, resets) and timer signals share one
    inbox and are handled strictly in arrival order, so the aggregator's
    buckets are never mutated concurrently with a flush.
    """

    def __init__(
        self,
        venue: str,
        store: AggregateStore,
        window_ms: int = 15000,
        windows_per_minute: int = 4,
        flush_check_ms: int = 5000,
        prune_interval_ms: int = 60000,
        minute_retention_ms: int = 3600000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.venue = venue
        self.flush_check_ms = flush_check_ms
        self.prune_interval_ms = prune_interval_ms
        self.minute_retention_ms = minute_retention_ms
        self._clock = clock
        self.aggregator = WindowAggregator(
            venue, store, window_ms=window_ms, windows_per_minute=windows_per_minute, clock=clock
        )
        self.books: Dict[str, OrderBookView] = {}
        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._last_prune = clock()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def submit_tick(self, tick: Tick) -> None:
        self._inbox.put_nowait(tick)

    def submit_book(self, update: BookUpdate) -> None:
        self._inbox.put_nowait(update)

    def submit_reset(self) -> None:
        """Discard all book state, e.g. after the feed reconnected."""
        self._inbox.put_nowait(RESET)

    async def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name=f"actor-{self.venue}")
        self._timer_task = asyncio.create_task(self._timer(), name=f"actor-timer-{self.venue}")
        logger.info(f"[{self.venue}] actor started")

    async def stop(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        if self._loop_task is not None:
            self._inbox.put_nowait(_STOP)
            await self._loop_task
            self._loop_task = None
        await self.aggregator.flush()
        logger.info(f"[{self.venue}] actor stopped")

    async def handle(self, msg: Any) -> None:
        if isinstance(msg, Tick):
            self.aggregator.record(msg.symbol, msg.bid, msg.ask)
        elif isinstance(msg, BookUpdate):
            self._apply_book(msg)
        elif msg is FLUSH_DUE:
            if self.aggregator.flush_due():
                await self.aggregator.flush()
        elif msg is PRUNE_DUE:
            await self.aggregator.prune_minutes(self.minute_retention_ms)
        elif msg is RESET:
            for book in self.books.values():
                book.reset()
            logger.info(f"[{self.venue}] books reset, awaiting fresh snapshots")
        else:
            logger.warning(f"[{self.venue}] unknown message {msg!r} dropped")

    def _apply_book(self, update: BookUpdate) -> None:
        book = self.books.get(update.symbol)
        if book is None:
            book = self.books[update.symbol] = OrderBookView(self.venue, update.symbol)
        book.apply(update)
        if not book.ready:
            return
        bid, ask = book.top()
        if bid is None and ask is None:
            return
        self.aggregator.record(update.symbol, bid, ask)

    async def _run(self) -> None:
        while True:
            msg = await self._inbox.get()
            try:
                if msg is _STOP:
                    break
                await self.handle(msg)
            except Exception as e:
                logger.exception(f"[{self.venue}] error handling {type(msg).__name__}: {e}")
            finally:
                self._inbox.task_done()

    async def _timer(self) -> None:
        while True:
            await asyncio.sleep(self.flush_check_ms / 1000)
            self._inbox.put_nowait(FLUSH_DUE)
            now = self._clock()
            if now - self._last_prune >= self.prune_interval_ms:
                self._last_prune = now
                self._inbox.put_nowait(PRUNE_DUE)

    def stats(self) -> Dict[str, Any]:
        return {
            "venue": self.venue,
            "running": self.running,
            "queued": self._inbox.qsize(),
            "books": {s: {"ready": b.ready, "best_bid": b.top()[0], "best_ask": b.top()[1]} for s, b in self.books.items()},
            **self.aggregator.stats(),
        }
