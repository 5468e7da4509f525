import asyncio
from datetime import timedelta

import pytest
from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.utils import timezone

from opd.models import Profile, QueueEntry
from opd.realtime import consumers
from opd.realtime.routing import websocket_urlpatterns

pytestmark = pytest.mark.django_db(transaction=True)

application = URLRouter(websocket_urlpatterns)


@pytest.fixture(autouse=True)
def in_memory_layer(settings):
    settings.CHANNEL_LAYERS = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}
    settings.OPD_POLL_INTERVAL = 60


def make_user(username, role):
    user = get_user_model().objects.create_user(username=username, password="P@ssw0rd1")
    Profile.objects.create(user=user, role=role)
    return user


def communicator_for(user=None):
    communicator = WebsocketCommunicator(application, "/ws/opd-queue/")
    if user is not None:
        communicator.scope["user"] = user
    return communicator


def insert_message(entry_id, minutes_ago=0):
    joined = timezone.now() - timedelta(minutes=minutes_ago)
    return {
        "type": "queue.change",
        "eventType": "INSERT",
        "new": {
            "id": entry_id, "name": "Rohan Das", "department": "ENT", "status": "waiting",
            "assigned_doctor": "", "token_number": 9, "joined_at": joined.isoformat(),
            "registration_time": None,
        },
        "old": None,
    }


def test_board_sends_snapshot_then_changes():
    nurse = make_user("nurse1", "nurse")
    QueueEntry.objects.create(id="e1", name="Aarav Sharma", department="ENT",
                              joined_at=timezone.now() - timedelta(minutes=20))

    async def scenario():
        communicator = communicator_for(nurse)
        connected, _ = await communicator.connect()
        assert connected

        snapshot = await communicator.receive_json_from(timeout=2)
        assert snapshot["type"] == "snapshot"
        assert [(e["id"], e["isNew"]) for e in snapshot["entries"]] == [("e1", True)]

        await get_channel_layer().group_send("opd_queue", insert_message("e2"))
        change = await communicator.receive_json_from(timeout=2)
        assert change["type"] == "change"
        assert change["eventType"] == "INSERT"
        assert [(e["id"], e["isNew"]) for e in change["entries"]] == [("e1", True), ("e2", True)]

        await communicator.send_json_to({"type": "refresh"})
        refreshed = await communicator.receive_json_from(timeout=2)
        assert refreshed["type"] == "snapshot"
        # e2 only ever existed as a pushed event; the snapshot is the source of truth
        assert [(e["id"], e["isNew"]) for e in refreshed["entries"]] == [("e1", False)]

        await communicator.disconnect()

    async_to_sync(scenario)()


def test_malformed_group_events_are_dropped():
    nurse = make_user("nurse1", "nurse")

    async def scenario():
        communicator = communicator_for(nurse)
        await communicator.connect()
        await communicator.receive_json_from(timeout=2)

        await get_channel_layer().group_send("opd_queue", {"type": "queue.change", "eventType": "BOGUS"})
        await get_channel_layer().group_send(
            "opd_queue", {"type": "queue.change", "eventType": "DELETE", "old": None},
        )
        assert await communicator.receive_nothing(timeout=0.2)
        await communicator.disconnect()

    async_to_sync(scenario)()


def test_client_message_errors():
    doctor = make_user("doctor1", "doctor")

    async def scenario():
        communicator = communicator_for(doctor)
        await communicator.connect()
        await communicator.receive_json_from(timeout=2)

        await communicator.send_to(text_data="not json")
        assert await communicator.receive_json_from(timeout=2) == {
            "type": "error", "code": 4000, "message": "invalid_json",
        }
        await communicator.send_json_to(["refresh"])
        assert (await communicator.receive_json_from(timeout=2))["code"] == 4001
        await communicator.send_json_to({"type": "subscribe"})
        assert (await communicator.receive_json_from(timeout=2))["code"] == 4002
        await communicator.disconnect()

    async_to_sync(scenario)()


@pytest.mark.parametrize("role", ["patient", None])
def test_users_without_queue_access_are_refused(role):
    user = make_user("someone", role) if role else None

    async def scenario():
        communicator = communicator_for(user)
        connected, code = await communicator.connect()
        assert not connected
        assert code == 4003
        await communicator.disconnect()

    async_to_sync(scenario)()


def test_snapshot_failure_reports_error(monkeypatch):
    staff = make_user("staff1", "staff")

    def broken_snapshot(now=None):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(consumers, "load_snapshot", broken_snapshot)

    async def scenario():
        communicator = communicator_for(staff)
        connected, _ = await communicator.connect()
        assert connected
        assert await communicator.receive_json_from(timeout=2) == {
            "type": "error", "code": 5001, "message": "snapshot_failed",
        }
        await communicator.disconnect()

    async_to_sync(scenario)()


def test_poll_tick_sends_fresh_snapshot(settings):
    settings.OPD_POLL_INTERVAL = 0.05
    nurse = make_user("nurse1", "nurse")

    async def scenario():
        communicator = communicator_for(nurse)
        await communicator.connect()
        first = await communicator.receive_json_from(timeout=2)
        assert first["entries"] == []

        await database_sync_to_async(QueueEntry.objects.create)(id="e9", name="Diya Patel", department="Cardio")
        for _ in range(20):
            polled = await communicator.receive_json_from(timeout=2)
            assert polled["type"] == "snapshot"
            if polled["entries"]:
                break
        assert [e["id"] for e in polled["entries"]] == ["e9"]
        await communicator.disconnect()

    async_to_sync(scenario)()



def test_poll_failure_is_logged(monkeypatch):
    logged = []

    class Recorder:
        def error(self, event, **kw):
            logged.append((event, kw))

    monkeypatch.setattr(consumers, "log", Recorder())

    async def scenario():
        async def boom():
            raise ConnectionError("socket gone")

        task = asyncio.ensure_future(boom())
        with pytest.raises(ConnectionError):
            await task
        consumers._report_poll_failure(task)

        cancelled = asyncio.ensure_future(asyncio.sleep(10))
        cancelled.cancel()
        with pytest.raises(asyncio.CancelledError):
            await cancelled
        consumers._report_poll_failure(cancelled)

    async_to_sync(scenario)()
    assert logged == [("queue_board_poll_stopped", {"error": "socket gone", "exc_type": "ConnectionError"})]


def test_disconnect_waits_for_the_poll_task(monkeypatch):
    nurse = make_user("nurse1", "nurse")
    finished = []

    async def poll_forever(self):
        try:
            await asyncio.sleep(3600)
        finally:
            finished.append(True)

    monkeypatch.setattr(consumers.QueueBoardConsumer, "_poll", poll_forever)

    async def scenario():
        communicator = communicator_for(nurse)
        await communicator.connect()
        await communicator.receive_json_from(timeout=2)
        await communicator.disconnect()
        return list(finished)

    assert async_to_sync(scenario)() == [True]
