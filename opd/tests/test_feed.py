import asyncio

from asgiref.sync import async_to_sync

from opd.realtime.feed import QueueFeed, run_feed
from opd.realtime.subscription import SubscriptionError


def record(entry_id, minute=0, status='waiting'):
    return {
        'id': entry_id,
        'name': f'Patient {entry_id}',
        'department': 'General',
        'status': status,
        'assigned_doctor': '',
        'token_number': None,
        'joined_at': f'2026-03-02T09:{minute:02d}:00+00:00',
        'registration_time': None,
    }


class Snapshots:
    """Async snapshot source returning canned results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeSubscription:
    def __init__(self, payloads=(), fail_open=False, fail_receive=False):
        self.payloads = list(payloads)
        self.fail_open = fail_open
        self.fail_receive = fail_receive
        self.opened = False
        self.closed = False
        self.queue = None

    async def open(self):
        if self.fail_open:
            raise SubscriptionError('layer down')
        self.queue = asyncio.Queue()
        for payload in self.payloads:
            self.queue.put_nowait(payload)
        self.opened = True
        return self

    async def receive(self):
        if self.fail_receive:
            raise ConnectionError('stream reset')
        return await self.queue.get()

    async def close(self):
        self.closed = True


def factory(*subscriptions):
    handed_out = []
    pending = list(subscriptions)

    def subscribe():
        sub = pending.pop(0) if len(pending) > 1 else pending[0]
        handed_out.append(sub)
        return sub
    return subscribe, handed_out


def ids(feed):
    return [e.id for e in feed.entries]


def test_refresh_replaces_view_and_flags_new():
    async def scenario():
        feed = QueueFeed(Snapshots([record('A')], [record('A'), record('B', 5)]))
        assert await feed.refresh()
        assert await feed.refresh()
        return feed

    feed = async_to_sync(scenario)()
    assert [(e.id, e.is_new) for e in feed.entries] == [('A', False), ('B', True)]
    assert feed.last_error is None


def test_failed_snapshot_keeps_previous_view():
    async def scenario():
        feed = QueueFeed(Snapshots([record('A')], RuntimeError('db down')))
        first = await feed.refresh()
        second = await feed.refresh()
        return feed, first, second

    feed, first, second = async_to_sync(scenario)()
    assert first is True
    assert second is False
    assert ids(feed) == ['A']
    assert isinstance(feed.last_error, RuntimeError)


def test_snapshot_finishing_after_close_is_discarded():
    async def scenario():
        release = asyncio.Event()

        async def slow_fetch():
            await release.wait()
            return [record('late')]

        feed = QueueFeed(slow_fetch)
        task = asyncio.ensure_future(feed.refresh())
        await asyncio.sleep(0)
        feed.close()
        release.set()
        return feed, await task

    feed, applied = async_to_sync(scenario)()
    assert applied is False
    assert feed.entries == []


def test_overlapping_refreshes_are_serialized():
    async def scenario():
        active = 0
        peak = 0

        async def fetch():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return [record('A')]

        feed = QueueFeed(fetch)
        await asyncio.gather(feed.refresh(), feed.refresh(), feed.refresh())
        return peak

    assert async_to_sync(scenario)() == 1


def test_bad_snapshot_rows_are_skipped():
    async def scenario():
        feed = QueueFeed(Snapshots([record('A'), {'id': 'B', 'status': 'lost'}]))
        await feed.refresh()
        return feed

    assert ids(async_to_sync(scenario)()) == ['A']


def test_apply_ignores_malformed_and_closed():
    feed = QueueFeed(Snapshots([]))
    assert feed.apply({'eventType': 'INSERT', 'new': record('A')})
    assert not feed.apply({'eventType': 'BOGUS'})
    assert not feed.apply({'eventType': 'DELETE', 'old': None})
    feed.close()
    assert not feed.apply({'eventType': 'INSERT', 'new': record('B')})
    assert ids(feed) == ['A']


def _run(feed, subscribe, stop_when, timeout=2.0):
    def on_change(f):
        if stop_when(f):
            f.close()

    async def scenario():
        await asyncio.wait_for(run_feed(feed, subscribe, on_change=on_change), timeout)

    async_to_sync(scenario)()


def test_run_feed_applies_pushed_changes():
    sub = FakeSubscription([{'eventType': 'INSERT', 'new': record('B', 5)}])
    subscribe, handed_out = factory(sub)
    feed = QueueFeed(Snapshots([record('A')]), poll_interval=5)

    _run(feed, subscribe, lambda f: 'B' in ids(f))

    assert ids(feed) == ['A', 'B']
    assert sub.closed
    assert not feed.stream_connected


def test_run_feed_polls_until_subscription_recovers():
    down = FakeSubscription(fail_open=True)
    up = FakeSubscription([{'eventType': 'DELETE', 'old': {'id': 'A'}}])
    subscribe, handed_out = factory(down, up)
    snapshots = Snapshots([record('A')])
    feed = QueueFeed(snapshots, poll_interval=0.02)

    _run(feed, subscribe, lambda f: f.stream_connected and 'A' not in ids(f))

    assert handed_out[:2] == [down, up]
    assert snapshots.calls >= 2
    assert ids(feed) == []
    assert up.closed


def test_run_feed_falls_back_to_polling_when_stream_drops():
    broken = FakeSubscription(fail_receive=True)
    healthy = FakeSubscription([{'eventType': 'INSERT', 'new': record('C', 9)}])
    subscribe, handed_out = factory(broken, healthy)
    snapshots = Snapshots([record('A')], [record('A'), record('B', 3)])
    feed = QueueFeed(snapshots, poll_interval=0.02)

    _run(feed, subscribe, lambda f: 'C' in ids(f))

    assert broken.closed
    assert healthy.closed
    assert ids(feed) == ['A', 'B', 'C']
