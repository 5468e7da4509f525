"""
Scoped subscription to the ``opd_queue`` change group.

Whoever opens a :class:`QueueSubscription` owns it and must close it;
nothing here is shared between views. Use it as an async context
manager so the group membership is released on every exit path::

    async with QueueSubscription(get_channel_layer()) as sub:
        async for payload in sub:
            feed.apply(payload)
"""
from __future__ import annotations

from typing import Optional

import structlog
from django.conf import settings

log = structlog.get_logger(__name__)


class SubscriptionError(RuntimeError):
    """The push channel cannot be opened."""


class QueueSubscription:
    def __init__(self, channel_layer, group: Optional[str] = None):
        self.channel_layer = channel_layer
        self.group = group or settings.OPD_QUEUE_GROUP
        self.channel_name: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.channel_name is not None

    async def open(self) -> "QueueSubscription":
        if self.channel_layer is None:
            raise SubscriptionError('no channel layer configured')
        if self.is_open:
            return self
        channel_name = await self.channel_layer.new_channel('opd-queue.')
        await self.channel_layer.group_add(self.group, channel_name)
        self.channel_name = channel_name
        log.debug('queue_subscription_opened', group=self.group, channel=channel_name)
        return self

    async def close(self) -> None:
        if not self.is_open:
            return
        channel_name, self.channel_name = self.channel_name, None
        await self.channel_layer.group_discard(self.group, channel_name)
        log.debug('queue_subscription_closed', group=self.group, channel=channel_name)

    async def receive(self) -> dict:
        """Wait for the next change record (the channel-layer ``type`` key is stripped)."""
        if not self.is_open:
            raise SubscriptionError('subscription is closed')
        message = await self.channel_layer.receive(self.channel_name)
        return {k: v for k, v in message.items() if k != 'type'}

    async def __aenter__(self) -> "QueueSubscription":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict:
        if not self.is_open:
            raise StopAsyncIteration
        return await self.receive()
