"""
One client's live view of the OPD queue.

A :class:`QueueFeed` owns a single merged view and is the only place
that view changes. Snapshot refreshes and push events both go through
it, in arrival order, so the last completed operation wins per entry.
The reducer itself lives in :mod:`opd.reconcile`; this module only adds
the I/O edges, the liveness flag and the polling fallback.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Mapping, Optional

import structlog

from opd.reconcile import MalformedRecord, QueueEntry, apply_event, entry_from_record, parse_change_event, reconcile

log = structlog.get_logger(__name__)

SnapshotFetcher = Callable[[], Awaitable[Iterable[Mapping]]]


class QueueFeed:
    """Serialized reducer host for one view.

    ``refresh`` holds a lock for the whole fetch-then-reconcile pass so
    overlapping timer ticks and manual refreshes queue up instead of
    interleaving. A failed fetch leaves the current view untouched; a
    fetch that completes after :meth:`close` is thrown away.
    """

    def __init__(self, fetch_snapshot: SnapshotFetcher, *, poll_interval: float = 30.0):
        self._fetch_snapshot = fetch_snapshot
        self._entries: list[QueueEntry] = []
        self._lock = asyncio.Lock()
        self.poll_interval = poll_interval
        self.alive = True
        self.stream_connected = False
        self.last_error: Optional[BaseException] = None

    @property
    def entries(self) -> list[QueueEntry]:
        return list(self._entries)

    def close(self) -> None:
        self.alive = False

    async def refresh(self) -> bool:
        """Fetch a snapshot and reconcile it into the view.

        Returns True when the view was replaced. Fetch errors are
        recorded in ``last_error`` and reported through the return value;
        they never propagate.
        """
        async with self._lock:
            if not self.alive:
                return False
            try:
                records = await self._fetch_snapshot()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.last_error = exc
                log.warning('queue_snapshot_failed', error=str(exc), exc_type=type(exc).__name__)
                return False
            if not self.alive:
                log.debug('queue_snapshot_discarded', reason='feed_closed')
                return False
            self._entries = reconcile(self._entries, self._entries_from(records))
            self.last_error = None
            return True

    def apply(self, payload) -> bool:
        """Apply one push payload. Returns False if it was ignored."""
        if not self.alive:
            return False
        event = parse_change_event(payload)
        if event is None:
            return False
        self._entries = apply_event(self._entries, event)
        return True

    @staticmethod
    def _entries_from(records: Iterable[Mapping]) -> list[QueueEntry]:
        entries = []
        for record in records:
            try:
                entries.append(entry_from_record(record))
            except MalformedRecord as exc:
                log.warning('queue_snapshot_row_dropped', reason=str(exc))
        return entries


async def _open_subscription(subscribe):
    subscription = subscribe()
    try:
        await subscription.open()
    except Exception as exc:
        log.warning('queue_stream_unavailable', error=str(exc))
        return None
    return subscription


async def _close_subscription(subscription) -> None:
    try:
        await subscription.close()
    except Exception as exc:
        log.warning('queue_stream_close_failed', error=str(exc))


async def run_feed(feed: QueueFeed, subscribe, *, on_change: Optional[Callable[[QueueFeed], None]] = None) -> None:
    """Keep ``feed`` current until it is closed or the task is cancelled.

    ``subscribe`` returns a fresh, unopened subscription (see
    :class:`opd.realtime.subscription.QueueSubscription`). Snapshots are
    taken every ``feed.poll_interval`` seconds whatever the push state.
    While the push channel is down the feed lives on snapshots alone and
    the subscription is retried once per poll tick.
    """
    def changed():
        if on_change is not None:
            on_change(feed)

    loop = asyncio.get_running_loop()
    subscription = None
    if await feed.refresh():
        changed()
    next_poll = loop.time() + feed.poll_interval
    reconnect_at = 0.0
    try:
        while feed.alive:
            if subscription is None and loop.time() >= reconnect_at:
                subscription = await _open_subscription(subscribe)
                if subscription is None:
                    reconnect_at = next_poll
                else:
                    log.info('queue_stream_connected')
                feed.stream_connected = subscription is not None

            timeout = max(0.0, next_poll - loop.time())
            if subscription is not None:
                try:
                    payload = await asyncio.wait_for(subscription.receive(), timeout)
                except asyncio.TimeoutError:
                    payload = None
                except Exception as exc:
                    log.warning('queue_stream_lost', error=str(exc), fallback='polling')
                    await _close_subscription(subscription)
                    subscription = None
                    feed.stream_connected = False
                    reconnect_at = next_poll
                    payload = None
                if payload is not None and feed.apply(payload):
                    changed()
            else:
                await asyncio.sleep(timeout)

            if loop.time() >= next_poll:
                if await feed.refresh():
                    changed()
                next_poll = loop.time() + feed.poll_interval
    finally:
        if subscription is not None:
            await _close_subscription(subscription)
        feed.stream_connected = False
