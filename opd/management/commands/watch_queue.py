"""
Terminal view of the live OPD board.

Keeps one :class:`~opd.realtime.feed.QueueFeed` current from the queue
group and periodic snapshots, redrawing the table on every change.
"""
import asyncio

from channels.db import database_sync_to_async
from channels.layers import InMemoryChannelLayer, get_channel_layer
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from opd.realtime.feed import QueueFeed, run_feed
from opd.realtime.subscription import QueueSubscription
from opd.services.queue import board_payload, load_snapshot

COLUMNS = (
    ("tokenNumber", "Token", 6),
    ("name", "Patient", 24),
    ("department", "Dept", 11),
    ("status", "Status", 10),
    ("assignedDoctor", "Doctor", 16),
    ("waitTimeDisplay", "Waiting", 9),
)


def board_mode(feed, channel_layer) -> str:
    """``live`` only when push events can reach this process.

    An in-memory channel layer is private to the process, so the server's
    changes never arrive on it and the board is kept by polling alone.
    """
    if feed.stream_connected and not isinstance(channel_layer, InMemoryChannelLayer):
        return "live"
    return "polling"


def render_board(entries, now=None) -> str:
    rows = board_payload(entries, now)
    header = " ".join(title.ljust(width) for _, title, width in COLUMNS)
    lines = [header, "-" * len(header)]
    for row in rows:
        cells = []
        for key, _, width in COLUMNS:
            value = row.get(key)
            cells.append(str("" if value is None else value)[:width].ljust(width))
        line = " ".join(cells).rstrip()
        if row["isNew"]:
            line += "  *new"
        lines.append(line)
    if not rows:
        lines.append("(queue is empty)")
    return "\n".join(lines)


class Command(BaseCommand):
    help = "Watch the OPD queue in the terminal (push updates with polling fallback)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--interval", type=float, default=None,
            help="snapshot interval in seconds (default: OPD_POLL_INTERVAL)",
        )
        parser.add_argument("--once", action="store_true", help="print one snapshot and exit")

    def handle(self, *args, **opts):
        interval = opts["interval"] or settings.OPD_POLL_INTERVAL
        if interval <= 0:
            raise CommandError("--interval must be positive")
        feed = QueueFeed(database_sync_to_async(load_snapshot), poll_interval=interval)
        try:
            asyncio.run(self.watch(feed, once=opts["once"]))
        except KeyboardInterrupt:
            feed.close()
            self.stdout.write("stopped")

    async def watch(self, feed, *, once=False):
        if once:
            if not await feed.refresh():
                raise CommandError(f"could not load the queue: {feed.last_error}")
            self.draw(feed)
            return
        self.channel_layer = get_channel_layer()
        if isinstance(self.channel_layer, InMemoryChannelLayer):
            self.stderr.write("in-process channel layer: set REDIS_URL for live updates, polling only")
        await run_feed(
            feed,
            lambda: QueueSubscription(self.channel_layer),
            on_change=self.draw,
        )

    def draw(self, feed):
        mode = board_mode(feed, getattr(self, "channel_layer", None))
        stamp = timezone.localtime().strftime("%H:%M:%S")
        self.stdout.write(f"\nOPD queue [{mode}] {stamp}")
        self.stdout.write(render_board(feed.entries))
