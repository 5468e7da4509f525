from datetime import datetime, timedelta, timezone
from io import StringIO

import pytest
from channels.layers import InMemoryChannelLayer
from django.core.management import call_command
from rest_framework.authtoken.models import Token

from opd.management.commands.watch_queue import board_mode, render_board
from opd.models import Profile, QueueEntry
from opd.realtime.feed import QueueFeed
from opd.reconcile import COMPLETED, QueueEntry as BoardEntry

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_render_board_marks_new_rows():
    entries = [
        BoardEntry(id='a', display_name='Aarav Sharma', category='ENT', lifecycle_state='waiting',
                   enqueued_at=T0, token_number=1, is_new=True),
        BoardEntry(id='b', display_name='Diya Patel', category='Cardio', lifecycle_state=COMPLETED,
                   enqueued_at=T0, assigned_doctor='Dr. Rao', token_number=2),
    ]
    lines = render_board(entries, now=T0 + timedelta(minutes=75)).splitlines()
    assert lines[0].startswith('Token')
    assert 'Aarav Sharma' in lines[2] and lines[2].endswith('*new')
    assert '1h 15m' in lines[2]
    assert 'Dr. Rao' in lines[3] and not lines[3].endswith('*new')


def test_render_board_empty():
    assert render_board([], now=T0).splitlines()[-1] == '(queue is empty)'


@pytest.mark.django_db
def test_seed_queue_creates_users_and_entries(monkeypatch):
    monkeypatch.setattr('opd.services.queue.get_channel_layer', lambda: None)
    out = StringIO()
    call_command('seed_queue', '--count', '5', stdout=out)

    assert QueueEntry.objects.count() == 5
    assert Profile.objects.filter(role='doctor').count() == 1
    assert Token.objects.count() == 5
    assert 'OPD queue seeded.' in out.getvalue()

    call_command('seed_queue', '--count', '2', '--no-users', stdout=StringIO())
    assert QueueEntry.objects.count() == 7
    assert Token.objects.count() == 5


@pytest.mark.django_db(transaction=True)
def test_watch_queue_once_prints_the_board():
    QueueEntry.objects.create(id='e1', name='Meera Nair', department='Neuro', token_number=3)
    out = StringIO()
    call_command('watch_queue', '--once', stdout=out)
    assert 'Meera Nair' in out.getvalue()
    assert '[polling]' in out.getvalue()


def test_board_mode_is_polling_on_a_process_local_layer():
    feed = QueueFeed(lambda: None)
    feed.stream_connected = True
    assert board_mode(feed, InMemoryChannelLayer()) == 'polling'
    assert board_mode(feed, object()) == 'live'
    feed.stream_connected = False
    assert board_mode(feed, object()) == 'polling'
