"""In-process view counter (tier 1) and its burst flusher.

``record_view`` runs on every content view, so it only touches a dict under a
thread lock. Accumulated counts are handed off in bursts: to Redis when the
shared tier is configured and reachable, otherwise straight to the database.
A crash loses at most one flush interval's worth of views.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from chapturs_analytics.infra.config import VIEW_FLUSH_INTERVAL_S
from chapturs_analytics.models.view_key import build_view_key
from chapturs_analytics.services.aggregation_store import (
    AggregationStore,
    AggregationStoreError,
    get_aggregation_store,
)
from chapturs_analytics.services.durable_flush import flush_counts_to_database

logger = logging.getLogger(__name__)


@dataclass
class FlushOutcome:
    """Where one burst of counts went."""

    target: str  # "aggregation_store", "database", "dropped" or "empty"
    keys: int = 0
    views: int = 0
    fallback_keys: int = 0  # keys Redis rejected, sent to the database instead


class ViewCounter:
    """Accumulate view increments in memory and flush them periodically."""

    def __init__(
        self,
        store: AggregationStore | None = None,
        flush_interval: float = VIEW_FLUSH_INTERVAL_S,
        db_flush: Callable[[dict[str, int]], Awaitable[object]] = flush_counts_to_database,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self.flush_interval = flush_interval
        self._db_flush = db_flush
        self._clock = clock

        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._last_flush = clock()
        # Counts of the running flush not yet written anywhere
        self._unsent: dict[str, int] = {}

        self._inflight: set[asyncio.Task] = set()
        self._timer: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def store(self) -> AggregationStore:
        if self._store is None:
            self._store = get_aggregation_store()
        return self._store

    # ── Hot path ──────────────────────────────────

    def record_view(self, work_id: str, section_id: str | None = None) -> None:
        """Count one view. Never raises and never waits on I/O."""
        try:
            key = build_view_key(work_id, section_id)
        except ValueError:
            logger.warning("Ignoring view with invalid ids work=%r section=%r", work_id, section_id)
            return

        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            now = self._clock()
            due = now - self._last_flush > self.flush_interval
            if due:
                # Claim this window so concurrent callers do not schedule duplicate flushes
                self._last_flush = now

        if due:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop here; the background timer or flush_now() picks the counts up
        task = loop.create_task(self.flush_now())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    # ── Reads ─────────────────────────────────────

    def pending(self, work_id: str, section_id: str | None = None) -> int:
        return self.pending_for_key(build_view_key(work_id, section_id))

    def pending_for_key(self, key: str) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    # ── Flushing ──────────────────────────────────

    def _take_snapshot(self) -> dict[str, int]:
        with self._lock:
            snapshot, self._counts = self._counts, {}
            self._last_flush = self._clock()
        return snapshot

    def _restore(self, counts: dict[str, int]) -> None:
        with self._lock:
            for key, n in counts.items():
                self._counts[key] = self._counts.get(key, 0) + n

    async def flush_now(self) -> FlushOutcome:
        """Hand every pending count to Redis, or to the database as fallback.

        The in-memory map is reset before any I/O, so counts are never sent
        twice. Keys Redis rejects individually go to the database on their
        own. If the database write also fails those counts are dropped and
        logged. A flush cancelled before its counts were written puts them
        back in memory for the next one.
        """
        async with self._flush_lock:
            snapshot = self._take_snapshot()
            if not snapshot:
                return FlushOutcome("empty")
            self._unsent = snapshot
            try:
                return await self._hand_off(snapshot)
            except asyncio.CancelledError:
                if self._unsent:
                    self._restore(self._unsent)
                    logger.warning(
                        "View flush cancelled, kept %d views for %d keys in memory",
                        sum(self._unsent.values()), len(self._unsent),
                    )
                raise
            finally:
                self._unsent = {}

    async def _hand_off(self, snapshot: dict[str, int]) -> FlushOutcome:
        keys, views = len(snapshot), sum(snapshot.values())

        store = self.store
        if store.enabled:
            try:
                rejected = await store.batch_increment(snapshot)
            except AggregationStoreError:
                logger.warning(
                    "Failed to flush %d view keys to Redis, writing to the database instead",
                    keys, exc_info=True,
                )
            else:
                self._unsent = rejected
                if rejected:
                    logger.warning(
                        "Redis rejected %d of %d view keys, writing them to the database: %s",
                        len(rejected), keys, ", ".join(sorted(rejected)),
                    )
                    await self._write_database(rejected)
                return FlushOutcome("aggregation_store", keys, views, fallback_keys=len(rejected))

        if not await self._write_database(snapshot):
            return FlushOutcome("dropped", keys, views)
        return FlushOutcome("database", keys, views)

    async def _write_database(self, counts: dict[str, int]) -> bool:
        try:
            await self._db_flush(counts)
        except Exception:
            logger.exception(
                "Dropped %d views for %d keys: direct database flush failed",
                sum(counts.values()), len(counts),
            )
            written = False
        else:
            written = True
        self._unsent = {}
        return written

    # ── Lifecycle ─────────────────────────────────

    def start(self) -> None:
        """Start the background flush timer on the running loop."""
        if self._timer is None or self._timer.done():
            self._stopping = asyncio.Event()
            self._timer = asyncio.get_running_loop().create_task(self._run_timer(self._stopping))

    async def _run_timer(self, stopping: asyncio.Event) -> None:
        while not stopping.is_set():
            try:
                await asyncio.wait_for(stopping.wait(), timeout=self.flush_interval)
            except asyncio.TimeoutError:
                try:
                    await self.flush_now()
                except Exception:
                    logger.exception("Background view flush failed")

    async def stop(self) -> FlushOutcome:
        """Stop the timer, wait for flushes already running, then flush what is left.

        The timer is signalled rather than cancelled, so a flush it started
        completes before the final one.
        """
        if self._timer is not None:
            self._stopping.set()
            await self._timer
            self._timer = None
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        return await self.flush_now()


_counter: ViewCounter | None = None


def get_view_counter() -> ViewCounter:
    """Return the process-wide counter used by the HTTP layer."""
    global _counter
    if _counter is None:
        _counter = ViewCounter()
    return _counter


def reset_view_counter() -> None:
    global _counter
    _counter = None
