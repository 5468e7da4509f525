from __future__ import annotations

from typing import Iterable, Optional

import structlog
from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, Max
from django.utils import timezone

from opd.models import QueueEntry, QueueEntryTransition
from opd.reconcile import QueueEntry as BoardEntry
from opd.serializers import QueueEntryRecordSerializer

log = structlog.get_logger(__name__)

EVENT_INSERT = 'INSERT'
EVENT_UPDATE = 'UPDATE'
EVENT_DELETE = 'DELETE'

TOKEN_ALLOCATION_ATTEMPTS = 5


class QueueError(Exception):
    code = 'queue_error'


class QueueEntryNotFound(QueueError):
    code = 'not_found'


class InvalidTransition(QueueError):
    code = 'invalid_transition'


def can_transition(current: str, new: str) -> bool:
    """Return True if a queue entry may move from ``current`` to ``new``."""
    transitions = {
        QueueEntry.STATUS_WAITING: [QueueEntry.STATUS_ASSIGNED, QueueEntry.STATUS_COMPLETED],
        QueueEntry.STATUS_ASSIGNED: [QueueEntry.STATUS_COMPLETED],
        QueueEntry.STATUS_COMPLETED: [],
    }
    return new in transitions.get(current, [])


def format_wait_time(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}m"


def serialize_record(entry: QueueEntry, now=None) -> dict:
    return dict(QueueEntryRecordSerializer(entry, context={'now': now or timezone.now()}).data)


def load_snapshot(now=None) -> list[dict]:
    """Full current queue as records, newest arrivals first."""
    qs = QueueEntry.objects.order_by('-joined_at')
    data = QueueEntryRecordSerializer(qs, many=True, context={'now': now or timezone.now()}).data
    return [dict(row) for row in data]


def board_payload(entries: Iterable[BoardEntry], now=None) -> list[dict]:
    """camelCase rows for the board, in the order given."""
    now = now or timezone.now()
    rows = []
    for e in entries:
        waited = e.wait_minutes(now)
        rows.append({
            'id': e.id,
            'name': e.display_name,
            'department': e.category,
            'status': e.lifecycle_state,
            'assignedDoctor': e.assigned_doctor,
            'tokenNumber': e.token_number,
            'joinedAt': e.enqueued_at.isoformat(),
            'waitTime': waited,
            'waitTimeDisplay': format_wait_time(waited),
            'isNew': e.is_new,
        })
    return rows


def publish_change(event_type: str, *, new: Optional[dict] = None, old: Optional[dict] = None) -> None:
    """Fan a change record out to everyone subscribed to the queue group."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    payload = {
        'type': 'queue.change',
        'eventType': event_type,
        'new': new,
        'old': old,
    }
    try:
        async_to_sync(channel_layer.group_send)(settings.OPD_QUEUE_GROUP, payload)
    except Exception as exc:
        # the write is already committed; boards catch up on their next poll
        log.warning('queue_publish_failed', event_type=event_type, error=str(exc), exc_type=type(exc).__name__)


def _next_token(today) -> int:
    current = QueueEntry.objects.filter(token_date=today).aggregate(m=Max('token_number'))['m']
    return (current or 0) + 1


def join_queue(*, name: str, department: str, symptoms: str = '', operator=None) -> QueueEntry:
    """Register a visit: add the patient to the queue with today's next token."""
    now = timezone.now()
    today = timezone.localdate(now)
    for attempt in range(1, TOKEN_ALLOCATION_ATTEMPTS + 1):
        try:
            with transaction.atomic():
                entry = QueueEntry.objects.create(
                    name=name,
                    department=department,
                    symptoms=symptoms or '',
                    joined_at=now,
                    registration_time=now,
                    token_date=today,
                    token_number=_next_token(today),
                )
                QueueEntryTransition.objects.create(
                    entry=entry,
                    from_status=None,
                    to_status=QueueEntry.STATUS_WAITING,
                    operator=operator,
                    reason='Visit registered',
                )
            break
        except IntegrityError:
            # a concurrent join took the same token
            if attempt == TOKEN_ALLOCATION_ATTEMPTS:
                raise
            log.warning('queue_token_conflict', token_date=str(today), attempt=attempt)
    log.info('queue_entry_joined', entry_id=entry.id, token=entry.token_number, department=department)
    publish_change(EVENT_INSERT, new=serialize_record(entry, now))
    return entry


def _transition(entry_id: str, new_status: str, *, operator=None, reason: str = '', **fields) -> QueueEntry:
    with transaction.atomic():
        entry = QueueEntry.objects.select_for_update().filter(id=entry_id).first()
        if entry is None:
            raise QueueEntryNotFound(f'queue entry {entry_id} not found')
        if not can_transition(entry.status, new_status):
            raise InvalidTransition(f'cannot move from {entry.status} to {new_status}')
        old_status = entry.status
        entry.status = new_status
        for name, value in fields.items():
            setattr(entry, name, value)
        entry.save()
        QueueEntryTransition.objects.create(
            entry=entry,
            from_status=old_status,
            to_status=new_status,
            operator=operator,
            reason=reason,
        )
    log.info('queue_entry_transition', entry_id=entry.id, from_status=old_status, to_status=new_status)
    publish_change(EVENT_UPDATE, new=serialize_record(entry))
    return entry


def assign_doctor(entry_id: str, doctor: str, *, operator=None) -> QueueEntry:
    return _transition(
        entry_id, QueueEntry.STATUS_ASSIGNED,
        operator=operator, reason=f'Assigned to {doctor}', assigned_doctor=doctor,
    )


def complete_visit(entry_id: str, *, operator=None) -> QueueEntry:
    return _transition(
        entry_id, QueueEntry.STATUS_COMPLETED,
        operator=operator, reason='Visit completed', completed_at=timezone.now(),
    )


def remove_entry(entry_id: str, *, operator=None) -> bool:
    """Delete an entry. Removing an id that is already gone is a no-op."""
    deleted, _ = QueueEntry.objects.filter(id=entry_id).delete()
    if not deleted:
        return False
    log.info('queue_entry_removed', entry_id=entry_id, operator=getattr(operator, 'pk', None))
    publish_change(EVENT_DELETE, old={'id': entry_id})
    return True


def queue_stats(now=None) -> dict:
    now = now or timezone.now()
    by_status = {
        row['status']: row['n']
        for row in QueueEntry.objects.values('status').annotate(n=Count('id')).order_by()
    }
    waiting = list(
        QueueEntry.objects.filter(status=QueueEntry.STATUS_WAITING).only('joined_at', 'registration_time')
    )
    waits = [
        max(0, int((now - (e.registration_time or e.joined_at)).total_seconds() // 60))
        for e in waiting
    ]
    by_department = {
        row['department']: row['n']
        for row in QueueEntry.objects.exclude(status=QueueEntry.STATUS_COMPLETED)
        .values('department').annotate(n=Count('id')).order_by()
    }
    return {
        'total': sum(by_status.values()),
        'waitingCount': by_status.get(QueueEntry.STATUS_WAITING, 0),
        'assignedCount': by_status.get(QueueEntry.STATUS_ASSIGNED, 0),
        'completedCount': by_status.get(QueueEntry.STATUS_COMPLETED, 0),
        'activeByDepartment': by_department,
        'avgWaitMin': round(sum(waits) / len(waits)) if waits else 0,
        'longestWaitMin': max(waits) if waits else 0,
    }
