"""Durable sync queue and the worker that drains it into the remote sink.

The queue is a FIFO of accepted-but-unconfirmed records. Every mutation is a
plain synchronous method (no ``await`` inside), so on a single event loop a
mutation can never interleave with another one. The worker dispatches at most
one batch at a time; a periodic timer and manual triggers share its in-flight
flag.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional

from ..core.keys import K_PENDING_SYNC
from .harvest_config import BATCH_SIZE, MAX_RETRIES, SYNC_INTERVAL_SECONDS
from .records import RecordState, SubdomainRecord
from .sink_client import SinkClient, SinkReply, SyncError
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class SyncQueue:
    """FIFO of records awaiting delivery, persisted under ``pendingSync``.

    Records handed out by :meth:`take` stay in the persisted snapshot (ahead of
    the queue) until they are settled or requeued, so a crash mid-dispatch
    redelivers them on restart.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._pending: Deque[SubdomainRecord] = deque()
        self._in_flight: List[SubdomainRecord] = []
        for item in store.get(K_PENDING_SYNC) or []:
            try:
                record = SubdomainRecord.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("skipping unreadable queued record %r: %s", item, exc)
                continue
            record.state = RecordState.PENDING
            self._pending.append(record)
        if self._pending:
            logger.info("restored %d pending records", len(self._pending))

    def __len__(self) -> int:
        return len(self._pending)

    def pending(self) -> List[SubdomainRecord]:
        return list(self._pending)

    def in_flight(self) -> List[SubdomainRecord]:
        return list(self._in_flight)

    def enqueue(self, record: SubdomainRecord) -> None:
        record.state = RecordState.PENDING
        self._pending.append(record)
        self._save()

    def take(self, limit: int) -> List[SubdomainRecord]:
        """Remove up to ``limit`` records from the head and mark them in flight."""
        batch: List[SubdomainRecord] = []
        while self._pending and len(batch) < limit:
            record = self._pending.popleft()
            record.state = RecordState.IN_FLIGHT
            batch.append(record)
        self._in_flight.extend(batch)
        self._save()
        return batch

    def requeue_front(self, records: Iterable[SubdomainRecord]) -> None:
        """Put records back at the head, keeping their relative order."""
        records = list(records)
        if not records:
            return
        for record in reversed(records):
            record.state = RecordState.PENDING
            self._pending.appendleft(record)
        self._release(records)
        self._save()

    def settle(self, records: Iterable[SubdomainRecord], state: RecordState) -> None:
        """Finish records as ACKED or DROPPED; they leave the queue for good."""
        records = list(records)
        if not records:
            return
        for record in records:
            record.state = state
        self._release(records)
        self._save()

    def _release(self, records: List[SubdomainRecord]) -> None:
        ids = {id(r) for r in records}
        self._in_flight = [r for r in self._in_flight if id(r) not in ids]

    def _save(self) -> None:
        snapshot = [r.to_dict() for r in self._in_flight]
        snapshot.extend(r.to_dict() for r in self._pending)
        self._store.set(K_PENDING_SYNC, snapshot)


@dataclass
class SyncOutcome:
    """What one sync cycle did. ``status`` is one of
    idle, busy, disabled, acked, partial, failed."""

    status: str
    sent: int = 0
    acked: int = 0
    requeued: int = 0
    dropped: int = 0
    error: Optional[str] = None


class SyncWorker:
    """Batches queued records to the sink and reconciles the reply."""

    def __init__(
        self,
        queue: SyncQueue,
        sink: Optional[SinkClient],
        *,
        batch_size: int = BATCH_SIZE,
        max_retries: int = MAX_RETRIES,
        interval: float = SYNC_INTERVAL_SECONDS,
    ) -> None:
        self.queue = queue
        self.sink = sink
        self.batch_size = max(1, batch_size)
        self.max_retries = max_retries
        self.interval = interval
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run_sync_cycle(self) -> SyncOutcome:
        if not len(self.queue):
            return SyncOutcome("idle")
        if self._in_flight:
            return SyncOutcome("busy")
        if self.sink is None:
            return SyncOutcome("disabled")
        self._in_flight = True
        try:
            batch = self.queue.take(self.batch_size)
            try:
                reply = await self.sink.add_subdomains(batch)
            except asyncio.CancelledError:
                # shutdown mid-dispatch is not a delivery failure
                self.queue.requeue_front(batch)
                raise
            except SyncError as exc:
                return self._handle_failure(batch, str(exc))
            except Exception as exc:
                logger.exception("unexpected error while sending %d records", len(batch))
                return self._handle_failure(batch, f"{type(exc).__name__}: {exc}")
            return self._handle_reply(batch, reply)
        finally:
            self._in_flight = False

    def _handle_reply(self, batch: List[SubdomainRecord], reply: SinkReply) -> SyncOutcome:
        # the batch we sent is the total; a differing total_requested is only logged
        total = len(batch)
        if reply.total_requested != total:
            logger.warning("sink reported total_requested=%d for a batch of %d", reply.total_requested, total)
        added = min(reply.added, total)
        acked, rest = batch[:added], batch[added:]
        self.queue.settle(acked, RecordState.ACKED)
        if not rest:
            logger.info("synced %d records", added)
            return SyncOutcome("acked", sent=total, acked=added)
        self.queue.requeue_front(rest)
        logger.info("partial sync: %d/%d accepted, %d requeued", added, total, len(rest))
        return SyncOutcome("partial", sent=total, acked=added, requeued=len(rest))

    def _handle_failure(self, batch: List[SubdomainRecord], error: str) -> SyncOutcome:
        retry: List[SubdomainRecord] = []
        dropped: List[SubdomainRecord] = []
        for record in batch:
            record.retry_count += 1
            if record.retry_count > self.max_retries:
                dropped.append(record)
            else:
                retry.append(record)
        self.queue.settle(dropped, RecordState.DROPPED)
        for record in dropped:
            logger.warning("dropping %s after %d failed attempts: %s", record.domain, record.retry_count, error)
        self.queue.requeue_front(retry)
        logger.warning("sync of %d records failed (%d requeued, %d dropped): %s", len(batch), len(retry), len(dropped), error)
        return SyncOutcome("failed", sent=len(batch), requeued=len(retry), dropped=len(dropped), error=error)

    async def trigger(self) -> SyncOutcome:
        """Manual sync; a no-op while a timer-driven cycle is in flight."""
        return await self.run_sync_cycle()

    async def drain(self, max_cycles: Optional[int] = None) -> List[SyncOutcome]:
        """Run cycles back to back until the queue is empty or a cycle makes no progress."""
        outcomes: List[SyncOutcome] = []
        while max_cycles is None or len(outcomes) < max_cycles:
            outcome = await self.run_sync_cycle()
            outcomes.append(outcome)
            if outcome.status not in {"acked", "partial"} or outcome.acked == 0:
                break
            if not len(self.queue):
                break
        return outcomes

    def start(self) -> None:
        """Start the periodic timer on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run_periodic())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            outcome = await self.run_sync_cycle()
            if outcome.status not in {"idle", "busy"}:
                logger.debug("periodic sync: %s", outcome)
