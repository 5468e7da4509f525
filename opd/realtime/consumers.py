import asyncio
import contextlib
import json

import structlog
from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.contrib.auth.models import AnonymousUser

from opd.access import has_access, role_for_user
from opd.realtime.feed import QueueFeed
from opd.services.queue import board_payload, load_snapshot

log = structlog.get_logger(__name__)


def _report_poll_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error('queue_board_poll_stopped', error=str(exc), exc_type=type(exc).__name__)


async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """
    Uniform error frame.
    App codes: 4xxx client errors, 5xxx server errors.
    """
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


class QueueBoardConsumer(AsyncWebsocketConsumer):
    """Live OPD board: one merged queue view per connection.

    The connection owns its subscription to the queue group and its
    :class:`QueueFeed`; both are released on disconnect. Snapshots are
    taken on connect, on every poll tick and on ``{"type": "refresh"}``;
    change events from the group are applied in between.
    """
    FEATURE = "opdQueue"

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        role = await database_sync_to_async(role_for_user)(user)
        if not has_access(role, self.FEATURE):
            await self.close(code=4003)
            return

        self.group_name = settings.OPD_QUEUE_GROUP
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

        self.feed = QueueFeed(
            database_sync_to_async(load_snapshot),
            poll_interval=settings.OPD_POLL_INTERVAL,
        )
        await self._refresh_and_send()
        self.poll_task = asyncio.ensure_future(self._poll())
        self.poll_task.add_done_callback(_report_poll_failure)

    async def disconnect(self, close_code):
        feed = getattr(self, "feed", None)
        if feed is not None:
            feed.close()
        task = getattr(self, "poll_task", None)
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return

        try:
            data = json.loads(text_data)
        except ValueError:
            await _ws_error(self, 4000, "invalid_json")
            return

        if not isinstance(data, dict):
            await _ws_error(self, 4001, "invalid_payload")
            return

        if data.get("type") != "refresh":
            await _ws_error(self, 4002, "unsupported_type")
            return

        await self._refresh_and_send()

    # group_send handler:
    # await channel_layer.group_send("opd_queue", {"type": "queue.change", "eventType": "INSERT", "new": {...}, "old": None})
    async def queue_change(self, event):
        if self.feed.apply(event):
            await self._send_view("change", eventType=str(event.get("eventType", "")).upper())

    async def _poll(self):
        while self.feed.alive:
            await asyncio.sleep(self.feed.poll_interval)
            await self._refresh_and_send()

    async def _refresh_and_send(self):
        if await self.feed.refresh():
            await self._send_view("snapshot")
        elif self.feed.alive:
            await _ws_error(self, 5001, "snapshot_failed")

    async def _send_view(self, kind: str, **extra):
        payload = {"type": kind, **extra, "entries": board_payload(self.feed.entries)}
        await self.send(json.dumps(payload))
